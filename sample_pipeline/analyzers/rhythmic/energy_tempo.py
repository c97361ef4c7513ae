"""
Energy-envelope tempo analyzer.

Heuristic beat detector: short-term energy, adaptive peak picking, then the
spread of inter-peak intervals. Deterministic and fast; not a beat tracker.
"""

from typing import Optional

import librosa
import numpy as np
from numpy.lib.stride_tricks import sliding_window_view

from sample_pipeline.core.analyzer_base import BaseAnalyzer
from sample_pipeline.core.models import (
    MAX_BPM,
    MIN_BPM,
    AudioBuffer,
    TempoEstimate,
    round_half_up,
)

# Envelope frames on either side of a candidate used for the local threshold
PEAK_WINDOW = 10
THRESHOLD_FACTOR = 1.5
# Seconds per envelope frame used for BPM conversion (hop of a 50ms window)
FRAME_SECONDS = 0.05


class EnergyTempoDetector(BaseAnalyzer[TempoEstimate]):
    """
    Tempo from peaks in the short-term energy envelope of channel 0.

    Confidence is 1 minus the coefficient of variation of the inter-peak
    intervals, halved when the tempo falls outside [60, 200] BPM (in which
    case no BPM is reported).
    """

    def __init__(self, tempo_range: tuple = (MIN_BPM, MAX_BPM)):
        super().__init__("energy_tempo", "1.0.0")
        self.tempo_range = tempo_range

    def _analyze_impl(self, buffer: AudioBuffer) -> TempoEstimate:
        energy = self.energy_envelope(buffer.channel(0), buffer.sample_rate)
        peaks = self.pick_peaks(energy)

        if len(peaks) < 2:
            return TempoEstimate(bpm=None, confidence=0.0)

        intervals = np.diff(peaks).astype(np.float64)
        mean_interval = float(intervals.mean())
        std_interval = float(intervals.std())

        bpm = round_half_up(60.0 / (mean_interval * FRAME_SECONDS))
        confidence = max(0.0, 1.0 - std_interval / mean_interval)

        low, high = self.tempo_range
        reported: Optional[int] = bpm
        if bpm < low or bpm > high:
            confidence *= 0.5
            reported = None

        self.logger.debug(
            f"{len(peaks)} peaks, mean interval {mean_interval:.2f} frames -> {bpm} BPM"
        )
        return TempoEstimate(bpm=reported, confidence=round(confidence, 2))

    @staticmethod
    def energy_envelope(samples: np.ndarray, sample_rate: int) -> np.ndarray:
        """
        Mean squared amplitude over ~50ms windows with 50% overlap.

        A window never ends on the final sample, so the last sample is left
        out of framing.
        """
        window = sample_rate // 20
        hop = max(1, window // 2)
        usable = samples[:-1]
        if window < 1 or usable.size < window:
            return np.zeros(0, dtype=np.float64)

        frames = librosa.util.frame(
            np.ascontiguousarray(usable, dtype=np.float64),
            frame_length=window,
            hop_length=hop,
        )
        return np.mean(frames ** 2, axis=0)

    @staticmethod
    def pick_peaks(energy: np.ndarray) -> np.ndarray:
        """
        Indices of local maxima that exceed 1.5x the local median.

        The median for index i is the upper median of energy[i-10:i+10].
        The first and last 10 frames are never peaks.
        """
        n = energy.size
        if n <= 2 * PEAK_WINDOW:
            return np.zeros(0, dtype=np.int64)

        windows = sliding_window_view(energy, 2 * PEAK_WINDOW)[: n - 2 * PEAK_WINDOW]
        local_median = np.partition(windows, PEAK_WINDOW, axis=1)[:, PEAK_WINDOW]

        idx = np.arange(PEAK_WINDOW, n - PEAK_WINDOW)
        values = energy[idx]
        is_peak = (
            (values > local_median * THRESHOLD_FACTOR)
            & (values > energy[idx - 1])
            & (values > energy[idx + 1])
        )
        return idx[is_peak]
