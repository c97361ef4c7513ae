"""
Level and quality analyzer.

Computes the peak level across all channels and the quality heuristics
(bitrate, dynamic range, noise floor, clipping) that drive the catalog's
low/medium/high badge.
"""

from typing import Optional, Tuple

import numpy as np

from sample_pipeline.core.analyzer_base import BaseAnalyzer
from sample_pipeline.core.models import AudioBuffer, Quality, QualityMetrics

CLIPPING_THRESHOLD = 0.99


def amplitude_to_db(amplitude: float) -> float:
    """20*log10(amplitude); zero maps to -inf."""
    if amplitude <= 0:
        return float('-inf')
    return float(20.0 * np.log10(amplitude))


def score_quality(
    bitrate_bps: float,
    dynamic_range_db: float,
    noise_floor_db: float,
    clipping_percent: float,
) -> Quality:
    """
    Map the four metrics onto a quality bucket.

    Each of bitrate, dynamic range and noise floor scores 3/2/1. Clipping
    adds 3 (<=0.1%), 1 (<=1%) or takes 1 away. A total of 10 or more is
    high, 6 or more is medium.
    """
    score = 0

    if bitrate_bps >= 320000:
        score += 3
    elif bitrate_bps >= 192000:
        score += 2
    else:
        score += 1

    if dynamic_range_db >= 60:
        score += 3
    elif dynamic_range_db >= 40:
        score += 2
    else:
        score += 1

    if noise_floor_db <= -60:
        score += 3
    elif noise_floor_db <= -40:
        score += 2
    else:
        score += 1

    if clipping_percent <= 0.1:
        score += 3
    elif clipping_percent <= 1:
        score += 1
    else:
        score -= 1

    if score >= 10:
        return Quality.HIGH
    if score >= 6:
        return Quality.MEDIUM
    return Quality.LOW


class FeatureExtractor(BaseAnalyzer[Tuple[float, QualityMetrics]]):
    """
    Peak level plus quality metrics.

    Quality metrics only look at channel 0; the peak covers every channel.
    """

    def __init__(self):
        super().__init__("feature_extractor", "1.0.0")

    def _analyze_impl(
        self,
        buffer: AudioBuffer,
        file_size_bytes: Optional[int] = None,
    ) -> Tuple[float, QualityMetrics]:
        """
        Args:
            buffer: Decoded audio
            file_size_bytes: Size of the encoded upload, for the bitrate.
                Falls back to the raw PCM size at 16 bits when unknown.

        Returns:
            (peak_amplitude_db, QualityMetrics)
        """
        peak_db = self.peak_amplitude_db(buffer)
        if file_size_bytes is None:
            file_size_bytes = buffer.frame_count * buffer.channel_count * 2
        return peak_db, self.quality_metrics(buffer, file_size_bytes)

    @staticmethod
    def peak_amplitude_db(buffer: AudioBuffer) -> float:
        if buffer.is_empty:
            return float('-inf')
        return amplitude_to_db(float(np.max(np.abs(buffer.channels))))

    @staticmethod
    def quality_metrics(buffer: AudioBuffer, file_size_bytes: int) -> QualityMetrics:
        samples = buffer.channel(0).astype(np.float64)
        magnitudes = np.abs(samples)

        bitrate = (file_size_bytes * 8) / buffer.duration_seconds

        if samples.size:
            dynamic_range = amplitude_to_db(
                max(abs(float(samples.max())), abs(float(samples.min())))
            )
            noise_floor = amplitude_to_db(float(magnitudes.mean()))
            clipping = float(np.count_nonzero(magnitudes > CLIPPING_THRESHOLD)) / samples.size * 100
        else:
            dynamic_range = float('-inf')
            noise_floor = float('-inf')
            clipping = 0.0

        return QualityMetrics(
            bitrate_bps=float(bitrate),
            dynamic_range_db=dynamic_range,
            noise_floor_db=noise_floor,
            clipping_percent=clipping,
            quality=score_quality(bitrate, dynamic_range, noise_floor, clipping),
        )
