"""
Core data models for the sample ingestion pipeline.

Immutable value types for decoded audio and analysis results, plus the
append-only BatchResult the orchestrator fills in.
"""

from __future__ import annotations

import json
import math
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import PurePosixPath
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

PITCH_CLASSES: Tuple[str, ...] = (
    'C', 'C#', 'D', 'D#', 'E', 'F', 'F#', 'G', 'G#', 'A', 'A#', 'B'
)

MIN_BPM = 60
MAX_BPM = 200

DEFAULT_DURATION = 30.0  # seconds, last resort when nothing else is usable
FALLBACK_BYTES_PER_SAMPLE = 2  # 16-bit PCM


def _is_usable(value: Optional[float]) -> bool:
    return value is not None and math.isfinite(value) and value > 0


def resolve_duration(
    reported: Optional[float],
    frame_count: int,
    sample_rate: int,
    channel_count: int,
    byte_size: Optional[int] = None,
) -> float:
    """
    Pick a usable duration in seconds.

    Order: decoder-reported value, frames / rate, byte size assuming 16-bit
    PCM, then DEFAULT_DURATION.
    """
    if _is_usable(reported):
        return float(reported)

    if frame_count and sample_rate > 0:
        duration = frame_count / sample_rate
        if _is_usable(duration):
            return duration

    if byte_size and sample_rate > 0 and channel_count > 0:
        duration = byte_size / (sample_rate * channel_count * FALLBACK_BYTES_PER_SAMPLE)
        if _is_usable(duration):
            return duration

    return DEFAULT_DURATION


@dataclass(frozen=True, eq=False)
class AudioBuffer:
    """
    Decoded PCM audio.

    ``channels`` has shape (channel_count, frame_count), float32 in [-1, 1],
    and is marked read-only so analyzers can share it across threads.
    """

    channels: np.ndarray
    sample_rate: int
    duration_seconds: float
    bit_depth: Optional[int] = None

    @classmethod
    def from_pcm(
        cls,
        channels: Any,
        sample_rate: int,
        reported_duration: Optional[float] = None,
        byte_size: Optional[int] = None,
        bit_depth: Optional[int] = None,
    ) -> "AudioBuffer":
        """
        Build a buffer from per-channel samples.

        Accepts a 1-D array (mono), a 2-D channel-major array, or a list of
        per-channel sequences.
        """
        data = np.array(channels, dtype=np.float32, copy=True)
        if data.ndim == 1:
            data = data[np.newaxis, :]
        if data.ndim != 2:
            raise ValueError(f"Expected 1-D or 2-D PCM data, got shape {data.shape}")
        data.setflags(write=False)

        duration = resolve_duration(
            reported_duration,
            frame_count=data.shape[1],
            sample_rate=sample_rate,
            channel_count=data.shape[0],
            byte_size=byte_size,
        )
        return cls(
            channels=data,
            sample_rate=int(sample_rate),
            duration_seconds=duration,
            bit_depth=bit_depth,
        )

    @property
    def channel_count(self) -> int:
        return int(self.channels.shape[0])

    @property
    def frame_count(self) -> int:
        return int(self.channels.shape[1])

    @property
    def is_empty(self) -> bool:
        return self.channel_count == 0 or self.frame_count == 0

    def channel(self, index: int = 0) -> np.ndarray:
        """Samples of one channel (read-only view)."""
        return self.channels[index]


class Quality(str, Enum):
    """Coarse quality bucket from the scoring rubric."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class QualityMetrics:
    """Quality heuristics computed from channel 0."""

    bitrate_bps: float
    dynamic_range_db: float
    noise_floor_db: float
    clipping_percent: float
    quality: Quality

    def to_dict(self) -> Dict[str, Any]:
        return {
            'bitrate': _finite_or_none(self.bitrate_bps),
            'dynamicRange': _finite_or_none(self.dynamic_range_db),
            'noiseFloor': _finite_or_none(self.noise_floor_db),
            'clippingPercentage': self.clipping_percent,
            'quality': self.quality.value,
        }


@dataclass(frozen=True)
class TempoEstimate:
    """Tempo estimate; bpm is None when undetectable or out of range."""

    bpm: Optional[int]
    confidence: float

    def __post_init__(self) -> None:
        validate_confidence(self.confidence)
        if self.bpm is not None:
            validate_bpm(self.bpm)


@dataclass(frozen=True)
class KeyEstimate:
    """Dominant pitch class estimate."""

    key: Optional[str]
    confidence: float

    def __post_init__(self) -> None:
        validate_confidence(self.confidence)
        if self.key is not None and self.key not in PITCH_CLASSES:
            raise ValueError(f"Unknown pitch class: {self.key}")


@dataclass(frozen=True)
class WaveformSeries:
    """Min/max envelope as alternating (max, min) values."""

    points: Tuple[float, ...]

    @property
    def pairs(self) -> List[Tuple[float, float]]:
        return list(zip(self.points[0::2], self.points[1::2]))

    def __len__(self) -> int:
        return len(self.points)


@dataclass(frozen=True)
class PricingOptions:
    """Format availability and prices, chosen by the uploader."""

    has_wav: bool = True
    has_stems: bool = False
    has_midi: bool = False
    wav_price: Optional[float] = 0.99
    stems_price: Optional[float] = None
    midi_price: Optional[float] = None

    @classmethod
    def from_config(cls, config: Optional[Dict[str, Any]] = None) -> "PricingOptions":
        config = config or {}
        defaults = cls()
        return cls(
            has_wav=config.get('has_wav', defaults.has_wav),
            has_stems=config.get('has_stems', defaults.has_stems),
            has_midi=config.get('has_midi', defaults.has_midi),
            wav_price=config.get('wav_price', defaults.wav_price),
            stems_price=config.get('stems_price', defaults.stems_price),
            midi_price=config.get('midi_price', defaults.midi_price),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'hasWav': self.has_wav,
            'hasStems': self.has_stems,
            'hasMidi': self.has_midi,
            'wavPrice': self.wav_price,
            'stemsPrice': self.stems_price,
            'midiPrice': self.midi_price,
        }


@dataclass(frozen=True)
class SourceFile:
    """One uploaded file as received from the client."""

    filename: str
    data: bytes = field(repr=False)
    mime_type: str = ""

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def extension(self) -> str:
        return PurePosixPath(self.filename).suffix.lower()


@dataclass(frozen=True)
class ProcessedSample:
    """Everything the analysis stage knows about one file."""

    title: str
    format: str
    sample_rate: int
    bit_depth: int
    channel_count: int
    duration_seconds: float
    peak_amplitude_db: float
    tempo: TempoEstimate
    key: KeyEstimate
    waveform: WaveformSeries
    quality: QualityMetrics
    pricing: PricingOptions = field(default_factory=PricingOptions)

    @property
    def bpm(self) -> Optional[int]:
        return self.tempo.bpm

    @property
    def bpm_confidence(self) -> float:
        return self.tempo.confidence

    @property
    def key_name(self) -> Optional[str]:
        return self.key.key

    @property
    def key_confidence(self) -> float:
        return self.key.confidence

    @property
    def is_silent(self) -> bool:
        """True when the peak level is -inf (no non-zero sample)."""
        return self.peak_amplitude_db == float('-inf')

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the camelCase dict used by the storefront API."""
        data = {
            'title': self.title,
            'bpm': self.bpm,
            'bpmConfidence': self.bpm_confidence,
            'key': self.key_name,
            'keyConfidence': self.key_confidence,
            'duration': self.duration_seconds,
            'format': self.format,
            'sampleRate': self.sample_rate,
            'bitDepth': self.bit_depth,
            'channels': self.channel_count,
            'peakAmplitude': _finite_or_none(self.peak_amplitude_db),
            'waveformData': list(self.waveform.points),
            'quality': self.quality.to_dict(),
        }
        data.update(self.pricing.to_dict())
        return data


@dataclass(frozen=True)
class UploadedSample:
    """A sample that was analyzed, stored and validated."""

    sample: ProcessedSample
    url: str

    def to_dict(self) -> Dict[str, Any]:
        data = self.sample.to_dict()
        data['url'] = self.url
        return data


@dataclass(frozen=True)
class FailedFile:
    """A file that did not make it through the pipeline."""

    filename: str
    error: str

    def to_dict(self) -> Dict[str, Any]:
        return {'filename': self.filename, 'error': self.error}


@dataclass
class BatchResult:
    """
    Outcome of a batch run.

    Entries are appended in the order files settle. Appends go through
    add_success/add_failure, which are safe to call from several tasks or
    threads at once.
    """

    successful: List[UploadedSample] = field(default_factory=list)
    failed: List[FailedFile] = field(default_factory=list)
    total_files: int = 0
    total_time: float = 0.0
    cancelled: bool = False
    _lock: threading.Lock = field(
        default_factory=threading.Lock, repr=False, compare=False
    )

    def add_success(self, sample: ProcessedSample, url: str) -> None:
        with self._lock:
            self.successful.append(UploadedSample(sample=sample, url=url))

    def add_failure(self, filename: str, error: str) -> None:
        with self._lock:
            self.failed.append(FailedFile(filename=filename, error=error))

    @property
    def success_count(self) -> int:
        return len(self.successful)

    @property
    def failure_count(self) -> int:
        return len(self.failed)

    @property
    def completed_count(self) -> int:
        return self.success_count + self.failure_count

    @property
    def success_rate(self) -> float:
        """Success rate as percentage."""
        if self.total_files == 0:
            return 0.0
        return (self.success_count / self.total_files) * 100

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            return {
                'successful': [entry.to_dict() for entry in self.successful],
                'failed': [entry.to_dict() for entry in self.failed],
            }

    def to_json(self, indent: Optional[int] = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent, allow_nan=False)

    def get_summary(self) -> str:
        summary = f"{self.success_count}/{self.total_files} succeeded, {self.failure_count} failed"
        if self.cancelled:
            summary += " (cancelled)"
        return summary


# Validation helpers

def validate_confidence(confidence: float) -> None:
    """Validate confidence score is in valid range."""
    if not (0.0 <= confidence <= 1.0):
        raise ValueError(f"Confidence must be in [0.0, 1.0], got {confidence}")


def validate_bpm(bpm: int) -> None:
    """Validate a reported tempo is within the supported range."""
    if not (MIN_BPM <= bpm <= MAX_BPM):
        raise ValueError(f"BPM must be in [{MIN_BPM}, {MAX_BPM}], got {bpm}")


def round_half_up(value: float) -> int:
    """Round to the nearest integer, .5 going up (not banker's rounding)."""
    return int(math.floor(value + 0.5))


def _finite_or_none(value: float) -> Optional[float]:
    return value if math.isfinite(value) else None
