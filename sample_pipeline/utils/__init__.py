"""
Utility modules for configuration, logging, and error handling.
"""

from sample_pipeline.utils.errors import (
    SampleIngestError,
    ValidationError,
    UnsupportedFormatError,
    FileTooLargeError,
    DecodeError,
    EmptyAudioError,
    AnalysisError,
    StorageError,
    UploadError,
    RecordValidationError,
    StageTimeoutError,
    BatchCancelledError,
    ConfigurationError,
)
from sample_pipeline.utils.logging import (
    JSONFormatter,
    create_logger_with_context,
    get_logger,
    setup_logging,
)
from sample_pipeline.utils.config import ConfigManager, get_default_config, load_config

__all__ = [
    "SampleIngestError",
    "ValidationError",
    "UnsupportedFormatError",
    "FileTooLargeError",
    "DecodeError",
    "EmptyAudioError",
    "AnalysisError",
    "StorageError",
    "UploadError",
    "RecordValidationError",
    "StageTimeoutError",
    "BatchCancelledError",
    "ConfigurationError",
    "JSONFormatter",
    "create_logger_with_context",
    "get_logger",
    "setup_logging",
    "ConfigManager",
    "get_default_config",
    "load_config",
]
