"""
Analyzer implementations: level/quality, tempo, key and waveform.
"""

from sample_pipeline.analyzers.quality.feature_extractor import FeatureExtractor
from sample_pipeline.analyzers.rhythmic.energy_tempo import EnergyTempoDetector
from sample_pipeline.analyzers.musical.chroma_key import ChromaKeyDetector
from sample_pipeline.analyzers.visual.waveform import WaveformGenerator

__all__ = [
    "FeatureExtractor",
    "EnergyTempoDetector",
    "ChromaKeyDetector",
    "WaveformGenerator",
]
