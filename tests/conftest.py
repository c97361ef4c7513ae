"""Shared fixtures for pipeline tests."""

import asyncio
import logging
import time
from typing import Dict, Iterable, Optional

import numpy as np
import pytest

from sample_pipeline.core.models import (
    AudioBuffer,
    KeyEstimate,
    ProcessedSample,
    Quality,
    QualityMetrics,
    SourceFile,
    TempoEstimate,
    WaveformSeries,
)
from sample_pipeline.core.sample_analyzer import SampleAnalyzer
from sample_pipeline.core.storage import InMemoryStorage
from sample_pipeline.utils.errors import DecodeError, StorageError, UploadError


# ---------------------------------------------------------------------------
# Signal builders
# ---------------------------------------------------------------------------


def make_sine(
    frequency: float = 440.0,
    sample_rate: int = 44100,
    seconds: float = 1.0,
    amplitude: float = 0.5,
    channels: int = 1,
) -> AudioBuffer:
    t = np.arange(int(sample_rate * seconds)) / sample_rate
    tone = amplitude * np.sin(2 * np.pi * frequency * t)
    return AudioBuffer.from_pcm(np.tile(tone, (channels, 1)), sample_rate=sample_rate)


def make_click_track(
    interval_samples: int = 2000,
    sample_rate: int = 8000,
    seconds: float = 4.0,
) -> AudioBuffer:
    """
    Decaying 1 kHz clicks every ``interval_samples``, starting at one interval.

    With the default 8 kHz rate the energy hop is 200 samples, so each click
    lands on a frame boundary and peaks are 10 frames apart (120 BPM).
    """
    samples = np.zeros(int(sample_rate * seconds))
    length = 300
    click = 0.9 * np.exp(-np.arange(length) / 60.0) * np.sin(
        2 * np.pi * 1000 * np.arange(length) / sample_rate
    )
    # keep the first sample non-zero so the click starts exactly on the frame
    click[0] = 0.9
    for start in range(interval_samples, samples.size - length, interval_samples):
        samples[start:start + length] = click
    return AudioBuffer.from_pcm(samples, sample_rate=sample_rate)


def make_silence(sample_rate: int = 44100, seconds: float = 1.0) -> AudioBuffer:
    return AudioBuffer.from_pcm(np.zeros(int(sample_rate * seconds)), sample_rate=sample_rate)


def make_source(filename: str, mime_type: str = "audio/wav", size: int = 64) -> SourceFile:
    return SourceFile(filename=filename, data=b"\x00" * size, mime_type=mime_type)


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class FakeDecoder:
    """Returns a canned buffer per filename; listed names fail to decode.

    ``delay`` blocks the calling thread, like a slow real decode.
    """

    def __init__(
        self,
        buffer: Optional[AudioBuffer] = None,
        failures: Iterable[str] = (),
        buffers: Optional[Dict[str, AudioBuffer]] = None,
        delay: float = 0.0,
    ):
        self.delay = delay
        self.buffer = buffer if buffer is not None else make_sine(sample_rate=8000, seconds=0.5)
        self.failures = set(failures)
        self.buffers = buffers or {}
        self.calls = []

    def decode(self, data: bytes, filename: str = "") -> AudioBuffer:
        self.calls.append(filename)
        if self.delay:
            time.sleep(self.delay)
        if filename in self.failures:
            raise DecodeError(f"Failed to decode audio data from {filename}", filename=filename)
        return self.buffers.get(filename, self.buffer)


class RecordingStorage(InMemoryStorage):
    """InMemoryStorage that counts calls and can be told to misbehave."""

    def __init__(
        self,
        fail_put: bool = False,
        fail_delete: bool = False,
        put_delay: float = 0.0,
    ):
        super().__init__()
        self.fail_put = fail_put
        self.fail_delete = fail_delete
        self.put_delay = put_delay
        self.put_calls = []
        self.delete_calls = []

    async def put(self, data: bytes, filename: str = "") -> str:
        self.put_calls.append(filename)
        if self.put_delay:
            await asyncio.sleep(self.put_delay)
        if self.fail_put:
            raise UploadError("Failed to save file: disk full")
        return await super().put(data, filename)

    async def delete(self, url: str) -> None:
        self.delete_calls.append(url)
        if self.fail_delete:
            raise StorageError(f"Failed to delete file: {url}", url=url)
        await super().delete(url)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def restore_root_logger():
    """setup_logging replaces root handlers; put them back after each test."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers = handlers
    root.setLevel(level)


@pytest.fixture
def sine_buffer():
    """One second of a 440 Hz sine at 44.1 kHz."""
    return make_sine()


@pytest.fixture
def click_buffer():
    """Four seconds of clicks every quarter second at 8 kHz."""
    return make_click_track()


@pytest.fixture
def silent_buffer():
    """One second of digital silence."""
    return make_silence()


@pytest.fixture
def sample_analyzer():
    analyzer = SampleAnalyzer()
    yield analyzer
    analyzer.shutdown()


@pytest.fixture
def storage():
    return RecordingStorage()


def build_sample(title="Kick 01", peak_db=-3.0, noise_floor_db=-40.0, bpm=120, key='A'):
    """A ProcessedSample with plausible values for model and validation tests."""
    return ProcessedSample(
        title=title,
        format="audio/wav",
        sample_rate=44100,
        bit_depth=16,
        channel_count=2,
        duration_seconds=1.5,
        peak_amplitude_db=peak_db,
        tempo=TempoEstimate(bpm=bpm, confidence=0.8 if bpm else 0.0),
        key=KeyEstimate(key=key, confidence=0.6 if key else 0.0),
        waveform=WaveformSeries(points=(0.5, -0.5) * 200),
        quality=QualityMetrics(
            bitrate_bps=1411200.0,
            dynamic_range_db=-3.0,
            noise_floor_db=noise_floor_db,
            clipping_percent=0.0,
            quality=Quality.MEDIUM,
        ),
    )
