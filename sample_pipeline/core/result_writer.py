"""
Result writer for batch ingestion reports.

Follows SOLID principles:
- Single Responsibility: Only handles report formatting and writing
- Open/Closed: New output formats can be added without modifying existing code
"""

import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import TextIO

from sample_pipeline.core.models import BatchResult, UploadedSample


class ResultWriter(ABC):
    """Abstract base class for result writers (Strategy Pattern)."""

    @abstractmethod
    def write(self, result: BatchResult, output_path: Path) -> None:
        """Write a batch result to the specified path."""
        pass


class TextResultWriter(ResultWriter):
    """Writes a human-readable batch report."""

    def __init__(self, include_timestamp: bool = True):
        """
        Args:
            include_timestamp: Whether to include timestamp in output
        """
        self.include_timestamp = include_timestamp
        self.logger = logging.getLogger("result_writer.text")

    def write(self, result: BatchResult, output_path: Path) -> None:
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        with open(output_path, 'w', encoding='utf-8') as f:
            f.write("=" * 70 + "\n")
            f.write("SAMPLE INGESTION RESULTS\n")
            f.write("=" * 70 + "\n")

            if self.include_timestamp:
                f.write(f"Generated: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}\n")

            f.write(f"Total Files: {result.total_files}\n")
            f.write(f"Summary: {result.get_summary()}\n")
            f.write("=" * 70 + "\n\n")

            for entry in result.successful:
                self._write_sample(f, entry)

            if result.failed:
                f.write("-" * 70 + "\n")
                f.write("FAILED FILES\n")
                f.write("-" * 70 + "\n")
                for failure in result.failed:
                    f.write(f"  {failure.filename}: {failure.error}\n")
                f.write("\n")

            f.write("=" * 70 + "\n")
            f.write("END OF REPORT\n")
            f.write("=" * 70 + "\n")

        self.logger.info(f"Results written to: {output_path}")

    def _write_sample(self, f: TextIO, entry: UploadedSample) -> None:
        sample = entry.sample
        f.write("-" * 70 + "\n")
        f.write(f"TITLE: {sample.title}\n")
        f.write(f"URL: {entry.url}\n")
        f.write("-" * 70 + "\n")

        f.write(f"Format: {sample.format or 'unknown'}, {sample.sample_rate} Hz, "
                f"{sample.bit_depth}-bit, {sample.channel_count} ch\n")
        f.write(f"Duration: {sample.duration_seconds:.2f}s\n")
        if sample.is_silent:
            f.write("Peak: silent\n")
        else:
            f.write(f"Peak: {sample.peak_amplitude_db:.1f} dBFS\n")

        if sample.bpm is not None:
            f.write(f"Tempo: {sample.bpm} BPM ({sample.bpm_confidence:.0%})\n")
        else:
            f.write("Tempo: not detected\n")
        if sample.key_name is not None:
            f.write(f"Key: {sample.key_name} ({sample.key_confidence:.0%})\n")
        else:
            f.write("Key: not detected\n")

        f.write(f"Quality: {sample.quality.quality.value}\n")
        f.write("\n")


class JSONResultWriter(ResultWriter):
    """Writes the batch result as JSON (null for non-finite levels)."""

    def __init__(self, indent: int = 2):
        self.indent = indent
        self.logger = logging.getLogger("result_writer.json")

    def write(self, result: BatchResult, output_path: Path) -> None:
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        output_data = {
            "generated": datetime.now().isoformat(),
            "total_files": result.total_files,
            "success_count": result.success_count,
            "failure_count": result.failure_count,
            "cancelled": result.cancelled,
            **result.to_dict(),
        }

        with open(output_path, 'w', encoding='utf-8') as f:
            json.dump(output_data, f, indent=self.indent, allow_nan=False)

        self.logger.info(f"Results written to: {output_path}")


def create_result_writer(format: str = "text", **kwargs) -> ResultWriter:
    """
    Factory function to create appropriate result writer.

    Args:
        format: Output format ("text" or "json")
        **kwargs: Additional arguments for the writer
    """
    writers = {
        "text": TextResultWriter,
        "txt": TextResultWriter,
        "json": JSONResultWriter,
    }

    writer_class = writers.get(format.lower())
    if writer_class is None:
        raise ValueError(f"Unknown format: {format}. Supported: {list(writers.keys())}")

    return writer_class(**kwargs)
