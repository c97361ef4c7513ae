"""
sample-pipeline - batch ingestion CLI

Decodes, analyzes and stores audio samples, then prints a summary. With
--storage memory nothing is written to disk (dry run).

Example usage:
    sample-pipeline samples/
    sample-pipeline --recursive --concurrency 4 samples/
    sample-pipeline --storage memory --output-json results.json kick.wav snare.wav
"""

import argparse
import mimetypes
import signal
import sys
from pathlib import Path
from typing import Iterable, List, Optional

from dotenv import load_dotenv

from sample_pipeline import __version__
from sample_pipeline.core.models import BatchResult, SourceFile
from sample_pipeline.core.orchestrator import CancellationToken, create_batch_orchestrator
from sample_pipeline.core.result_writer import JSONResultWriter, TextResultWriter
from sample_pipeline.core.storage import InMemoryStorage
from sample_pipeline.utils.config import load_config
from sample_pipeline.utils.errors import SampleIngestError
from sample_pipeline.utils.logging import get_logger, setup_logging

logger = get_logger("cli")


def collect_files(
    inputs: Iterable[Path],
    extensions: Iterable[str],
    recursive: bool = False,
) -> List[Path]:
    """Expand files and directories into a sorted, de-duplicated file list."""
    extensions = {e.lower() for e in extensions}
    files = []
    for path in inputs:
        path = Path(path)
        if path.is_file():
            if path.suffix.lower() in extensions:
                files.append(path)
            else:
                logger.warning(f"Skipping non-audio file: {path}")
        elif path.is_dir():
            pattern = "**/*" if recursive else "*"
            files.extend(
                p for p in path.glob(pattern)
                if p.is_file() and p.suffix.lower() in extensions
            )
        else:
            logger.warning(f"Path not found: {path}")

    return sorted(set(files))


def read_source(path: Path) -> SourceFile:
    """Read a file the way a browser upload would present it."""
    mime_type, _ = mimetypes.guess_type(path.name)
    return SourceFile(
        filename=path.name,
        data=path.read_bytes(),
        mime_type=mime_type or "application/octet-stream",
    )


def print_summary(result: BatchResult) -> None:
    print("\n" + "=" * 60)
    print("BATCH INGESTION COMPLETE" if not result.cancelled else "BATCH INGESTION CANCELLED")
    print("=" * 60)
    print(f"Total Files: {result.total_files}")
    print(f"Successful: {result.success_count}")
    print(f"Failed: {result.failure_count}")
    print(f"Success Rate: {result.success_rate:.1f}%")
    print(f"Total Time: {result.total_time:.2f}s")

    if result.successful:
        print("\nStored:")
        for entry in result.successful:
            sample = entry.sample
            bpm = f"{sample.bpm} BPM" if sample.bpm is not None else "no tempo"
            key = sample.key_name or "no key"
            print(f"  {sample.title}: {bpm}, {key}, {sample.quality.quality.value} -> {entry.url}")

    if result.failed:
        print("\nFailed Files:")
        for failure in result.failed:
            print(f"  {failure.filename}: {failure.error}")


def ingest(
    inputs: List[Path],
    config: dict,
    recursive: bool = False,
    output_txt: Optional[Path] = None,
    output_json: Optional[Path] = None,
    verbose: bool = False,
) -> int:
    """
    Ingest every audio file found under ``inputs``.

    Returns:
        Exit code (0 when every file succeeded, 1 otherwise)
    """
    files = collect_files(inputs, config["upload"]["allowed_extensions"], recursive)
    if not files:
        print("No audio files found.")
        return 1

    storage = InMemoryStorage() if config["storage"]["backend"] == "memory" else None
    orchestrator = create_batch_orchestrator(config, storage=storage)
    token = CancellationToken()

    def on_progress(percent: int) -> None:
        print(f"[{percent:3d}%] {len(files)} files")

    def on_interrupt(signum, frame) -> None:
        print("\nCancelling after the current files finish...")
        token.cancel()

    previous_handler = signal.signal(signal.SIGINT, on_interrupt)
    try:
        sources = [read_source(path) for path in files]
        result = orchestrator.run(sources, on_progress=on_progress, cancel_token=token)
    except (OSError, SampleIngestError) as e:
        print(f"Error during batch ingestion: {e}")
        if verbose:
            import traceback
            traceback.print_exc()
        return 1
    finally:
        signal.signal(signal.SIGINT, previous_handler)
        orchestrator.analyzer.shutdown()

    print_summary(result)

    if output_txt:
        TextResultWriter().write(result, output_txt)
        print(f"\nText results saved to: {output_txt}")
    if output_json:
        JSONResultWriter().write(result, output_json)
        print(f"JSON results saved to: {output_json}")

    return 0 if result.failure_count == 0 else 1


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for sample-pipeline."""
    parser = argparse.ArgumentParser(
        prog="sample-pipeline",
        description="Analyze and ingest audio samples in batches",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  sample-pipeline samples/
  sample-pipeline --recursive samples/
  sample-pipeline --storage memory --output-json results.json kick.wav
        """
    )
    parser.add_argument(
        "inputs",
        type=Path,
        nargs="+",
        help="Audio file(s) or directories to ingest"
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to configuration file"
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose output"
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"sample-pipeline {__version__}"
    )
    parser.add_argument(
        "--recursive",
        "-r",
        action="store_true",
        help="Search directories recursively"
    )
    parser.add_argument(
        "--concurrency",
        "-c",
        type=int,
        default=None,
        help="Files processed per window (overrides config)"
    )
    parser.add_argument(
        "--storage",
        choices=["memory", "local"],
        default=None,
        help="Storage backend (overrides config; 'memory' is a dry run)"
    )
    parser.add_argument(
        "--output-file",
        "-o",
        type=Path,
        default=None,
        help="Path to save text results file (.txt)"
    )
    parser.add_argument(
        "--output-json",
        type=Path,
        default=None,
        help="Path to save JSON results file"
    )

    args = parser.parse_args(argv)

    load_dotenv()

    try:
        config = load_config(str(args.config) if args.config else None)
    except SampleIngestError as e:
        print(f"Error: {e}")
        return 1

    if args.concurrency is not None:
        if args.concurrency < 1:
            parser.error("--concurrency must be at least 1")
        config["batch"]["concurrency"] = args.concurrency
    if args.storage:
        config["storage"]["backend"] = args.storage

    logging_config = config.get("logging", {})
    setup_logging(
        level="DEBUG" if args.verbose else logging_config.get("level", "INFO"),
        log_format=logging_config.get("format", "text"),
        log_file=logging_config.get("file"),
        colored=sys.stderr.isatty(),
    )

    return ingest(
        inputs=args.inputs,
        config=config,
        recursive=args.recursive,
        output_txt=args.output_file,
        output_json=args.output_json,
        verbose=args.verbose,
    )


if __name__ == "__main__":
    sys.exit(main())
