"""
Core module containing data models, decoding, storage and the batch
orchestrator.

Uses lazy imports for modules with heavy dependencies (librosa, soundfile).
"""

# Models are lightweight - import directly
from sample_pipeline.core.models import (
    AudioBuffer,
    Quality,
    QualityMetrics,
    TempoEstimate,
    KeyEstimate,
    WaveformSeries,
    PricingOptions,
    SourceFile,
    ProcessedSample,
    UploadedSample,
    FailedFile,
    BatchResult,
    validate_confidence,
)

__all__ = [
    # Models (always available)
    "AudioBuffer",
    "Quality",
    "QualityMetrics",
    "TempoEstimate",
    "KeyEstimate",
    "WaveformSeries",
    "PricingOptions",
    "SourceFile",
    "ProcessedSample",
    "UploadedSample",
    "FailedFile",
    "BatchResult",
    "validate_confidence",
    # Heavy modules (lazy loaded)
    "Analyzer",
    "BaseAnalyzer",
    "SoundfileDecoder",
    "create_decoder",
    "SampleAnalyzer",
    "create_sample_analyzer",
    "InMemoryStorage",
    "LocalFileStorage",
    "create_storage",
    # Batch processing
    "BatchOrchestrator",
    "CancellationToken",
    "FileState",
    "create_batch_orchestrator",
    "ResultWriter",
    "TextResultWriter",
    "JSONResultWriter",
    "create_result_writer",
]

_LAZY = {
    "Analyzer": "sample_pipeline.core.analyzer_base",
    "BaseAnalyzer": "sample_pipeline.core.analyzer_base",
    "SoundfileDecoder": "sample_pipeline.core.decoder",
    "create_decoder": "sample_pipeline.core.decoder",
    "SampleAnalyzer": "sample_pipeline.core.sample_analyzer",
    "create_sample_analyzer": "sample_pipeline.core.sample_analyzer",
    "InMemoryStorage": "sample_pipeline.core.storage",
    "LocalFileStorage": "sample_pipeline.core.storage",
    "create_storage": "sample_pipeline.core.storage",
    "BatchOrchestrator": "sample_pipeline.core.orchestrator",
    "CancellationToken": "sample_pipeline.core.orchestrator",
    "FileState": "sample_pipeline.core.orchestrator",
    "create_batch_orchestrator": "sample_pipeline.core.orchestrator",
    "ResultWriter": "sample_pipeline.core.result_writer",
    "TextResultWriter": "sample_pipeline.core.result_writer",
    "JSONResultWriter": "sample_pipeline.core.result_writer",
    "create_result_writer": "sample_pipeline.core.result_writer",
}


def __getattr__(name: str):
    """Lazy load modules with heavy dependencies."""
    module_name = _LAZY.get(name)
    if module_name is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    import importlib
    return getattr(importlib.import_module(module_name), name)
