"""
Chroma histogram key analyzer.

Folds FFT magnitudes from eight evenly spaced frames into 12 pitch classes
and reports the strongest one.
"""

from typing import Optional

import librosa
import numpy as np

from sample_pipeline.core.analyzer_base import BaseAnalyzer
from sample_pipeline.core.models import PITCH_CLASSES, AudioBuffer, KeyEstimate

MIN_FREQUENCY = 20.0  # Hz, exclusive
MAX_FREQUENCY = 5000.0  # Hz, exclusive
CONFIDENCE_SCALE = 3.0


class ChromaKeyDetector(BaseAnalyzer[KeyEstimate]):
    """
    Dominant pitch class of channel 0.

    For each of ``segments`` equal slices of the signal, one Blackman-windowed
    frame of ``fft_size`` samples is taken from the slice start (zero-padded
    if the slice is shorter). Magnitudes between 20 Hz and 5 kHz are summed
    per pitch class. Confidence is three times the dominant class's share of
    the total, capped at 1.
    """

    def __init__(self, fft_size: int = 4096, segments: int = 8):
        super().__init__("chroma_key", "1.0.0")
        self.fft_size = fft_size
        self.segments = segments
        self._window = np.blackman(fft_size)

    def _analyze_impl(self, buffer: AudioBuffer) -> KeyEstimate:
        histogram = self.pitch_class_histogram(buffer.channel(0), buffer.sample_rate)
        total = float(histogram.sum())

        if total <= 0 or not np.isfinite(total):
            return KeyEstimate(key=None, confidence=0.0)

        shares = histogram / total
        dominant = int(np.argmax(shares))
        confidence = min(1.0, round(float(shares[dominant]) * CONFIDENCE_SCALE, 2))

        return KeyEstimate(key=PITCH_CLASSES[dominant], confidence=confidence)

    def pitch_class_histogram(self, samples: np.ndarray, sample_rate: int) -> np.ndarray:
        """Summed linear magnitude per pitch class (C first)."""
        histogram = np.zeros(len(PITCH_CLASSES), dtype=np.float64)
        if samples.size == 0 or sample_rate <= 0:
            return histogram

        frequencies = librosa.fft_frequencies(sr=sample_rate, n_fft=self.fft_size)
        in_band = (frequencies > MIN_FREQUENCY) & (frequencies < MAX_FREQUENCY)
        if not np.any(in_band):
            return histogram

        # round half up, matching note-number conventions
        midi = np.floor(librosa.hz_to_midi(frequencies[in_band]) + 0.5).astype(np.int64)
        pitch_classes = np.mod(midi, 12)

        for frame in self._segment_frames(samples):
            magnitudes = self._magnitude_spectrum(frame)[in_band]
            histogram += np.bincount(
                pitch_classes, weights=magnitudes, minlength=len(PITCH_CLASSES)
            )

        return histogram

    def _segment_frames(self, samples: np.ndarray):
        segment_length = samples.size // self.segments
        if segment_length == 0:
            starts = [0]
            segment_length = samples.size
        else:
            starts = [i * segment_length for i in range(self.segments)]

        span = min(self.fft_size, segment_length)
        for start in starts:
            frame = np.zeros(self.fft_size, dtype=np.float64)
            chunk = samples[start:start + span]
            frame[:chunk.size] = chunk
            yield frame

    def _magnitude_spectrum(self, frame: np.ndarray) -> np.ndarray:
        spectrum = np.fft.rfft(frame * self._window)
        return np.abs(spectrum) / self.fft_size

    @staticmethod
    def key_for_frequency(frequency: float) -> Optional[str]:
        """Pitch class name for a frequency in Hz."""
        if frequency <= 0:
            return None
        midi = int(np.floor(librosa.hz_to_midi(frequency) + 0.5))
        return PITCH_CLASSES[midi % 12]
