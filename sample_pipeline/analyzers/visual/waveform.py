"""
Waveform envelope generator.

Downsamples channel 0 to a fixed number of (max, min) pairs for the
storefront's waveform preview.
"""

import numpy as np

from sample_pipeline.core.analyzer_base import BaseAnalyzer
from sample_pipeline.core.models import AudioBuffer, WaveformSeries

DEFAULT_POINTS = 200


class WaveformGenerator(BaseAnalyzer[WaveformSeries]):
    """
    Fixed-length min/max envelope.

    The signal is cut into ``point_count`` blocks of ``len // point_count``
    samples (at least 1). Each block yields (max, min) with both starting at
    0, so the envelope always straddles the zero line. Blocks past the end of
    short signals yield (0, 0). Output length is always 2 * point_count.
    """

    def __init__(self, point_count: int = DEFAULT_POINTS):
        super().__init__("waveform", "1.0.0")
        if point_count < 1:
            raise ValueError(f"point_count must be positive, got {point_count}")
        self.point_count = point_count

    @property
    def series_length(self) -> int:
        return 2 * self.point_count

    def _analyze_impl(self, buffer: AudioBuffer) -> WaveformSeries:
        samples = buffer.channel(0)
        block_size = max(1, samples.size // self.point_count)
        covered = min(samples.size // block_size, self.point_count)

        maxima = np.zeros(self.point_count, dtype=np.float32)
        minima = np.zeros(self.point_count, dtype=np.float32)

        if covered:
            blocks = samples[: covered * block_size].reshape(covered, block_size)
            maxima[:covered] = np.maximum(blocks.max(axis=1), 0.0)
            minima[:covered] = np.minimum(blocks.min(axis=1), 0.0)

        interleaved = np.empty(self.series_length, dtype=np.float32)
        interleaved[0::2] = maxima
        interleaved[1::2] = minima

        return WaveformSeries(points=tuple(float(v) for v in interleaved))
