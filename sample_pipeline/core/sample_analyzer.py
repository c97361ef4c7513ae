"""
Sample analyzer for the ingestion pipeline.

Composes the level/quality, tempo, key and waveform analyzers into one
ProcessedSample per file. Performs no I/O.
"""

import logging
import re
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Optional

from sample_pipeline.analyzers.musical.chroma_key import ChromaKeyDetector
from sample_pipeline.analyzers.quality.feature_extractor import FeatureExtractor
from sample_pipeline.analyzers.rhythmic.energy_tempo import EnergyTempoDetector
from sample_pipeline.analyzers.visual.waveform import WaveformGenerator
from sample_pipeline.core.models import (
    AudioBuffer,
    PricingOptions,
    ProcessedSample,
    SourceFile,
)
from sample_pipeline.utils.errors import EmptyAudioError

MIME_BIT_DEPTHS = {
    'audio/flac': 24,
}
DEFAULT_BIT_DEPTH = 16

_EXTENSION = re.compile(r'\.[^/.]+$')


def title_from_filename(filename: str) -> str:
    """Strip the final extension: "Kick 01.wav" -> "Kick 01"."""
    return _EXTENSION.sub('', filename)


class SampleAnalyzer:
    """
    Runs all analyzers over one decoded buffer.

    Design:
    - Dependency Injection: analyzers are injected (testable)
    - Parallel Execution: the four analyzers share a read-only buffer and
      run concurrently on a thread pool
    """

    def __init__(
        self,
        feature_extractor: Optional[FeatureExtractor] = None,
        tempo_detector: Optional[EnergyTempoDetector] = None,
        key_detector: Optional[ChromaKeyDetector] = None,
        waveform_generator: Optional[WaveformGenerator] = None,
        max_workers: int = 4,
        pricing: Optional[PricingOptions] = None,
    ):
        self.feature_extractor = feature_extractor or FeatureExtractor()
        self.tempo_detector = tempo_detector or EnergyTempoDetector()
        self.key_detector = key_detector or ChromaKeyDetector()
        self.waveform_generator = waveform_generator or WaveformGenerator()
        self.default_pricing = pricing or PricingOptions()
        self.executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="analyzer"
        )
        self.logger = logging.getLogger('sample_analyzer')

    @property
    def analyzer_versions(self) -> Dict[str, str]:
        return {
            analyzer.name: analyzer.version
            for analyzer in (
                self.feature_extractor,
                self.tempo_detector,
                self.key_detector,
                self.waveform_generator,
            )
        }

    def analyze(
        self,
        buffer: AudioBuffer,
        source: SourceFile,
        pricing: Optional[PricingOptions] = None,
    ) -> ProcessedSample:
        """
        Analyze one decoded file.

        Args:
            buffer: Decoded audio for ``source``
            source: The uploaded file (name, size and declared MIME type)
            pricing: Caller-chosen pricing flags (analyzer default if None)

        Returns:
            ProcessedSample

        Raises:
            EmptyAudioError: The buffer has no frames
            AnalysisError: An analyzer failed
        """
        if buffer.is_empty:
            raise EmptyAudioError(
                f"Audio file is empty: {source.filename}", filename=source.filename
            )

        start_time = time.perf_counter()

        features_future = self.executor.submit(
            self.feature_extractor.analyze, buffer, file_size_bytes=source.size
        )
        tempo_future = self.executor.submit(self.tempo_detector.analyze, buffer)
        key_future = self.executor.submit(self.key_detector.analyze, buffer)
        waveform_future = self.executor.submit(self.waveform_generator.analyze, buffer)

        peak_db, quality = features_future.result()
        tempo = tempo_future.result()
        key = key_future.result()
        waveform = waveform_future.result()

        sample = ProcessedSample(
            title=title_from_filename(source.filename),
            format=source.mime_type,
            sample_rate=buffer.sample_rate,
            bit_depth=self._bit_depth(buffer, source),
            channel_count=buffer.channel_count,
            duration_seconds=buffer.duration_seconds,
            peak_amplitude_db=peak_db,
            tempo=tempo,
            key=key,
            waveform=waveform,
            quality=quality,
            pricing=pricing or self.default_pricing,
        )

        self.logger.info(
            f"Analyzed {source.filename} in {time.perf_counter() - start_time:.3f}s: "
            f"bpm={tempo.bpm} key={key.key} quality={quality.quality.value}"
        )
        return sample

    @staticmethod
    def _bit_depth(buffer: AudioBuffer, source: SourceFile) -> int:
        if buffer.bit_depth:
            return buffer.bit_depth
        return MIME_BIT_DEPTHS.get(source.mime_type, DEFAULT_BIT_DEPTH)

    def shutdown(self) -> None:
        """Shutdown thread pool gracefully."""
        self.executor.shutdown(wait=True)

    def __enter__(self) -> "SampleAnalyzer":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.shutdown()


def create_sample_analyzer(config: Optional[Dict[str, Any]] = None) -> SampleAnalyzer:
    """
    Factory function to create a SampleAnalyzer from the full config dict.
    """
    if config is None:
        config = {}

    analysis_config = config.get('analysis', {})

    return SampleAnalyzer(
        key_detector=ChromaKeyDetector(
            fft_size=analysis_config.get('fft_size', 4096),
            segments=analysis_config.get('key_segments', 8),
        ),
        waveform_generator=WaveformGenerator(
            point_count=analysis_config.get('waveform_points', 200)
        ),
        max_workers=analysis_config.get('max_workers', 4),
        pricing=PricingOptions.from_config(config.get('pricing')),
    )
