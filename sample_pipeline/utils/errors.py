"""
Custom exceptions for the sample ingestion pipeline.

Every error a single file can raise derives from SampleIngestError, so the
batch orchestrator can record it against that file and keep going.
"""

from typing import Any, List, Optional


class SampleIngestError(Exception):
    """Base exception for all sample ingestion errors."""

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} (Details: {self.details})"
        return self.message


class ValidationError(SampleIngestError):
    """Raised when an uploaded file is rejected before decoding."""

    def __init__(self, message: str, filename: Optional[str] = None):
        super().__init__(message, details={"filename": filename})
        self.filename = filename


class UnsupportedFormatError(ValidationError):
    """Raised when the MIME type or extension is not accepted."""

    def __init__(
        self,
        message: str,
        filename: Optional[str] = None,
        mime_type: Optional[str] = None,
    ):
        super().__init__(message, filename=filename)
        self.mime_type = mime_type
        self.details = {"filename": filename, "mime_type": mime_type}


class FileTooLargeError(ValidationError):
    """Raised when an uploaded file exceeds the size limit."""

    def __init__(
        self,
        message: str,
        filename: Optional[str] = None,
        file_size: Optional[int] = None,
        max_size: Optional[int] = None,
    ):
        super().__init__(message, filename=filename)
        self.file_size = file_size
        self.max_size = max_size
        self.details = {"filename": filename, "file_size": file_size, "max_size": max_size}


class DecodeError(SampleIngestError):
    """Raised when audio bytes cannot be decoded into PCM."""

    def __init__(self, message: str, filename: Optional[str] = None):
        super().__init__(message, details={"filename": filename})
        self.filename = filename


class EmptyAudioError(DecodeError):
    """Raised when a decoded buffer has no frames."""


class AnalysisError(SampleIngestError):
    """Raised when an analyzer fails."""

    def __init__(
        self,
        message: str,
        analyzer_name: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.analyzer_name = analyzer_name
        self.original_error = original_error
        self.details = {
            "analyzer_name": analyzer_name,
            "original_error": str(original_error) if original_error else None,
        }


class StorageError(SampleIngestError):
    """Raised when the storage backend fails."""

    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(message, details={"url": url})
        self.url = url


class UploadError(StorageError):
    """Raised when storing an uploaded file fails."""


class RecordValidationError(SampleIngestError):
    """Raised when an assembled sample record fails validation."""

    def __init__(self, problems: List[str], title: Optional[str] = None):
        super().__init__(
            "Sample validation failed: " + "; ".join(problems),
            details={"title": title, "problems": problems},
        )
        self.problems = problems
        self.title = title


class StageTimeoutError(SampleIngestError):
    """Raised when a pipeline stage exceeds its configured timeout."""

    def __init__(self, stage: str, timeout: float):
        super().__init__(f"{stage} timed out after {timeout:g}s")
        self.stage = stage
        self.timeout = timeout


class BatchCancelledError(SampleIngestError):
    """Recorded for files that never started because the batch was cancelled."""

    def __init__(self) -> None:
        super().__init__("cancelled")


class ConfigurationError(SampleIngestError):
    """Raised when configuration is invalid or missing."""

    def __init__(self, message: str, config_key: Optional[str] = None):
        super().__init__(message)
        self.config_key = config_key
        self.details = {"config_key": config_key}
