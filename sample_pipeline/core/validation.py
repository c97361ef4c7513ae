"""
Validation rules for uploads and assembled sample records.
"""

import math
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from sample_pipeline.core.models import (
    MAX_BPM,
    MIN_BPM,
    PITCH_CLASSES,
    ProcessedSample,
    SourceFile,
)
from sample_pipeline.utils.errors import (
    FileTooLargeError,
    RecordValidationError,
    UnsupportedFormatError,
)

MAX_FILE_SIZE = 52428800  # 50MB
DEFAULT_MIME_TYPES = frozenset({
    'audio/wav', 'audio/wave', 'audio/x-wav',
    'audio/mpeg', 'audio/mp3',
    'audio/aiff', 'audio/x-aiff',
})
DEFAULT_EXTENSIONS = frozenset({'.wav', '.mp3', '.aif', '.aiff'})
# Browsers send these when they can't tell; fall back to the extension
GENERIC_MIME_TYPES = frozenset({'', 'application/octet-stream'})
DEFAULT_BASE_URL = '/uploads'
# Always accepted, whatever the local base URL is
REMOTE_URL_PREFIXES = ('http://', 'https://', 'memory://')


@dataclass(frozen=True)
class UploadPolicy:
    """What an upload must satisfy before it is decoded."""

    max_file_size: int = MAX_FILE_SIZE
    allowed_mime_types: FrozenSet[str] = DEFAULT_MIME_TYPES
    allowed_extensions: FrozenSet[str] = DEFAULT_EXTENSIONS

    @classmethod
    def from_config(cls, config: Optional[Dict[str, Any]] = None) -> "UploadPolicy":
        config = config or {}
        return cls(
            max_file_size=config.get('max_file_size', MAX_FILE_SIZE),
            allowed_mime_types=frozenset(
                m.lower() for m in config.get('allowed_mime_types', DEFAULT_MIME_TYPES)
            ),
            allowed_extensions=frozenset(
                e.lower() for e in config.get('allowed_extensions', DEFAULT_EXTENSIONS)
            ),
        )


@dataclass(frozen=True)
class RecordPolicy:
    """What an assembled record must satisfy before it is kept."""

    require_bpm: bool = False
    require_key: bool = False
    waveform_length: Optional[int] = field(default=None)
    base_url: str = DEFAULT_BASE_URL

    @property
    def url_prefixes(self) -> Tuple[str, ...]:
        return (self.base_url.rstrip('/') + '/',) + REMOTE_URL_PREFIXES

    @classmethod
    def from_config(cls, config: Optional[Dict[str, Any]] = None) -> "RecordPolicy":
        config = config or {}
        record = config.get('record', {})
        points = config.get('analysis', {}).get('waveform_points')
        base_url = config.get('storage', {}).get('base_url', DEFAULT_BASE_URL)
        return cls(
            require_bpm=record.get('require_bpm', False),
            require_key=record.get('require_key', False),
            waveform_length=2 * points if points else None,
            base_url=base_url,
        )


def validate_upload(source: SourceFile, policy: Optional[UploadPolicy] = None) -> None:
    """
    Reject oversized files and unsupported formats.

    Raises:
        FileTooLargeError: Declared size exceeds the policy limit
        UnsupportedFormatError: Neither MIME type nor extension is accepted
    """
    policy = policy or UploadPolicy()

    if source.size > policy.max_file_size:
        raise FileTooLargeError(
            f"File size exceeds {policy.max_file_size / 1024 / 1024:g}MB limit",
            filename=source.filename,
            file_size=source.size,
            max_size=policy.max_file_size,
        )

    mime_type = source.mime_type.lower()
    if mime_type in policy.allowed_mime_types:
        return
    if mime_type in GENERIC_MIME_TYPES and source.extension in policy.allowed_extensions:
        return

    raise UnsupportedFormatError(
        "Invalid file type. Supported formats: WAV, MP3, AIFF",
        filename=source.filename,
        mime_type=source.mime_type,
    )


def validate_record(
    sample: ProcessedSample,
    url: str,
    policy: Optional[RecordPolicy] = None,
) -> None:
    """
    Check an uploaded sample's record before it is persisted.

    All problems are collected and reported together.

    Raises:
        RecordValidationError: One or more fields are invalid
    """
    policy = policy or RecordPolicy()
    problems: List[str] = []

    if not sample.title.strip():
        problems.append("Title is required")

    if not url:
        problems.append("File path or URL is required")
    elif not url.startswith(policy.url_prefixes):
        problems.append(
            f"URL must be a path starting with {policy.url_prefixes[0]} or a full URL"
        )

    if sample.bpm is None:
        if policy.require_bpm:
            problems.append("BPM is required for all samples")
    elif not (MIN_BPM <= sample.bpm <= MAX_BPM):
        problems.append(f"BPM must be between {MIN_BPM} and {MAX_BPM}")

    if sample.key_name is None:
        if policy.require_key:
            problems.append("Key is required for all samples")
    elif sample.key_name not in PITCH_CLASSES:
        problems.append(f"Unknown key: {sample.key_name}")

    if sample.sample_rate <= 0:
        problems.append("Sample rate must be positive")
    if sample.channel_count < 1:
        problems.append("At least one channel is required")
    if not (math.isfinite(sample.duration_seconds) and sample.duration_seconds > 0):
        problems.append("Duration must be a positive number")

    if policy.waveform_length is not None and len(sample.waveform) != policy.waveform_length:
        problems.append(
            f"Waveform must have {policy.waveform_length} points, got {len(sample.waveform)}"
        )

    if problems:
        raise RecordValidationError(problems, title=sample.title)
