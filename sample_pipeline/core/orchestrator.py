"""
Batch orchestrator for ingesting uploaded samples.

Each file goes through validate -> decode/analyze -> upload -> persist as a
saga: if the record fails validation after the upload, the uploaded blob is
deleted again. Files run in fixed windows of ``concurrency``; a window is
awaited as a whole before the next one starts. No file's failure can stop
the batch, and every input ends up in exactly one of successful/failed.
"""

import asyncio
import logging
import threading
import time
from concurrent.futures import Executor
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from sample_pipeline.core.decoder import AsyncDecoder, Decoder, create_decoder
from sample_pipeline.core.models import BatchResult, SourceFile, round_half_up
from sample_pipeline.core.saga import Saga, SagaStep
from sample_pipeline.core.sample_analyzer import SampleAnalyzer, create_sample_analyzer
from sample_pipeline.core.storage import Storage, create_storage
from sample_pipeline.core.validation import (
    RecordPolicy,
    UploadPolicy,
    validate_record,
    validate_upload,
)
from sample_pipeline.utils.errors import BatchCancelledError, SampleIngestError
from sample_pipeline.utils.logging import create_logger_with_context

DEFAULT_CONCURRENCY = 3

FileInput = Union[SourceFile, Tuple[str, bytes, str]]
ProgressCallback = Callable[[int], None]
StateCallback = Callable[[str, "FileState"], None]


class FileState(str, Enum):
    """Where a file is in its pipeline."""

    QUEUED = "queued"
    VALIDATING = "validating"
    EXTRACTING = "extracting"
    UPLOADING = "uploading"
    PERSISTING = "persisting"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


# Saga step name -> state entered when the step starts
STEP_STATES: Dict[str, FileState] = {
    "validate": FileState.VALIDATING,
    "decode": FileState.EXTRACTING,
    "analyze": FileState.EXTRACTING,
    "upload": FileState.UPLOADING,
    "persist": FileState.PERSISTING,
}


@dataclass
class FileTask:
    """Tracks one file's state transitions."""

    source: SourceFile
    state: FileState = FileState.QUEUED
    history: List[FileState] = field(default_factory=lambda: [FileState.QUEUED])
    error: Optional[str] = None

    @property
    def filename(self) -> str:
        return self.source.filename

    def transition(self, state: FileState) -> bool:
        """Move to ``state``; returns False if already there."""
        if state == self.state:
            return False
        if self.state in (FileState.SUCCEEDED, FileState.FAILED):
            raise RuntimeError(f"{self.filename} already settled as {self.state.value}")
        self.state = state
        self.history.append(state)
        return True


@dataclass(frozen=True)
class StageTimeouts:
    """Per-stage time limits in seconds; None means no limit."""

    decode: Optional[float] = None
    analysis: Optional[float] = None
    upload: Optional[float] = None
    persist: Optional[float] = None
    delete: Optional[float] = None

    @classmethod
    def from_config(cls, config: Optional[Dict[str, Any]] = None) -> "StageTimeouts":
        config = config or {}
        return cls(
            decode=config.get('decode'),
            analysis=config.get('analysis'),
            upload=config.get('upload'),
            persist=config.get('persist'),
            delete=config.get('delete'),
        )


class CancellationToken:
    """
    Cooperative cancellation flag for a batch.

    Can be tripped from any thread (e.g. a signal handler). Files already in
    flight finish; no new window starts.
    """

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()


class BatchOrchestrator:
    """
    Drives SampleAnalyzer plus the upload/validate/rollback protocol over
    many files.

    Collaborators are injected: the storage backend, the decoder and the
    analyzer. Blocking work (decode, analysis) runs on ``executor``.
    """

    def __init__(
        self,
        analyzer: SampleAnalyzer,
        storage: Storage,
        decoder: Optional[Decoder] = None,
        upload_policy: Optional[UploadPolicy] = None,
        record_policy: Optional[RecordPolicy] = None,
        concurrency: int = DEFAULT_CONCURRENCY,
        timeouts: Optional[StageTimeouts] = None,
        executor: Optional[Executor] = None,
    ):
        """
        Args:
            analyzer: SampleAnalyzer used for the extracting stage
            storage: Upload/delete backend; must allow concurrent calls
            decoder: Bytes -> AudioBuffer (SoundfileDecoder if None)
            upload_policy: Size and format limits
            record_policy: Rules for the assembled record
            concurrency: Files per window
            timeouts: Per-stage timeouts
            executor: Executor for decode/analysis (loop default if None)
        """
        if concurrency < 1:
            raise ValueError(f"concurrency must be at least 1, got {concurrency}")

        self.analyzer = analyzer
        self.storage = storage
        self.decoder = decoder if decoder is not None else create_decoder()
        self.upload_policy = upload_policy or UploadPolicy()
        self.record_policy = record_policy or RecordPolicy()
        self.concurrency = concurrency
        self.timeouts = timeouts or StageTimeouts()
        self.executor = executor
        self._async_decoder = AsyncDecoder(self.decoder, executor)
        self.logger = logging.getLogger("orchestrator")
        # windows executed by the most recent process() call
        self.windows_run = 0

    async def process(
        self,
        files: Iterable[FileInput],
        on_progress: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancellationToken] = None,
        on_state_change: Optional[StateCallback] = None,
    ) -> BatchResult:
        """
        Ingest a batch of files.

        Args:
            files: SourceFile objects or (filename, bytes, mime_type) tuples
            on_progress: Called with the completed percentage (0-100) after
                each window settles
            cancel_token: Checked before each window starts
            on_state_change: Called with (filename, state) on every transition

        Returns:
            BatchResult covering every input file exactly once
        """
        self.windows_run = 0
        start_time = time.perf_counter()
        tasks = [FileTask(source=_as_source(f)) for f in files]
        result = BatchResult(total_files=len(tasks))

        if not tasks:
            self.logger.warning("No files to process")
            return result

        self.logger.info(
            f"Processing {len(tasks)} files with concurrency {self.concurrency}"
        )

        for offset in range(0, len(tasks), self.concurrency):
            if cancel_token is not None and cancel_token.is_cancelled:
                self._cancel_remaining(tasks[offset:], result, on_state_change)
                break

            window = tasks[offset:offset + self.concurrency]
            self.windows_run += 1
            await asyncio.gather(
                *(self._process_file(task, result, on_state_change) for task in window)
            )

            percent = round_half_up(result.completed_count / result.total_files * 100)
            self._notify(on_progress, percent)

        result.total_time = time.perf_counter() - start_time
        self.logger.info(
            f"Batch complete: {result.get_summary()} in {result.total_time:.2f}s"
        )
        return result

    def run(
        self,
        files: Iterable[FileInput],
        on_progress: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancellationToken] = None,
        on_state_change: Optional[StateCallback] = None,
    ) -> BatchResult:
        """Synchronous wrapper around process()."""
        return asyncio.run(
            self.process(
                files,
                on_progress=on_progress,
                cancel_token=cancel_token,
                on_state_change=on_state_change,
            )
        )

    async def _process_file(
        self,
        task: FileTask,
        result: BatchResult,
        on_state_change: Optional[StateCallback],
    ) -> None:
        """Run one file's saga and record its outcome. Never raises."""
        logger = create_logger_with_context("orchestrator", {"upload": task.filename})

        def enter(step_name: str) -> None:
            state = STEP_STATES[step_name]
            if task.transition(state):
                logger.debug(f"-> {state.value}", extra={"stage": step_name})
                self._notify(on_state_change, task.filename, state)

        saga = Saga(self._build_steps(task), logger=logger, on_enter=enter)

        try:
            context = await saga.run({"source": task.source})
        except Exception as e:
            task.error = _error_message(e)
            task.transition(FileState.FAILED)
            result.add_failure(task.filename, task.error)
            logger.warning(f"Failed in {task.history[-2].value}: {task.error}")
        else:
            task.transition(FileState.SUCCEEDED)
            result.add_success(context["sample"], context["url"])
            logger.info(f"Stored at {context['url']}")

        self._notify(on_state_change, task.filename, task.state)

    def _notify(self, callback: Optional[Callable[..., None]], *args: Any) -> None:
        """Call a caller-supplied hook; its errors are logged, never raised."""
        if callback is None:
            return
        try:
            callback(*args)
        except Exception as e:
            self.logger.error(f"Callback {callback!r} failed: {e}")

    def _build_steps(self, task: FileTask) -> List[SagaStep]:
        source = task.source
        loop_executor = self.executor

        async def validate(ctx: Dict[str, Any]) -> None:
            validate_upload(source, self.upload_policy)

        async def decode(ctx: Dict[str, Any]) -> None:
            ctx["buffer"] = await self._async_decoder.decode(source.data, source.filename)

        async def analyze(ctx: Dict[str, Any]) -> None:
            loop = asyncio.get_running_loop()
            ctx["sample"] = await loop.run_in_executor(
                loop_executor, self.analyzer.analyze, ctx["buffer"], source
            )

        async def upload(ctx: Dict[str, Any]) -> None:
            ctx["url"] = await self.storage.put(source.data, source.filename)

        async def remove_upload(ctx: Dict[str, Any]) -> None:
            await self.storage.delete(ctx["url"])

        async def persist(ctx: Dict[str, Any]) -> None:
            validate_record(ctx["sample"], ctx["url"], self.record_policy)

        return [
            SagaStep("validate", validate),
            SagaStep("decode", decode, timeout=self.timeouts.decode),
            SagaStep("analyze", analyze, timeout=self.timeouts.analysis),
            SagaStep(
                "upload",
                upload,
                compensate=remove_upload,
                timeout=self.timeouts.upload,
                compensate_timeout=self.timeouts.delete,
            ),
            SagaStep("persist", persist, timeout=self.timeouts.persist),
        ]

    def _cancel_remaining(
        self,
        tasks: Sequence[FileTask],
        result: BatchResult,
        on_state_change: Optional[StateCallback],
    ) -> None:
        self.logger.warning(f"Batch cancelled; {len(tasks)} files not started")
        result.cancelled = True
        message = BatchCancelledError().message
        for task in tasks:
            task.error = message
            task.transition(FileState.FAILED)
            result.add_failure(task.filename, message)
            self._notify(on_state_change, task.filename, task.state)


def _as_source(item: FileInput) -> SourceFile:
    if isinstance(item, SourceFile):
        return item
    filename, data, mime_type = item
    return SourceFile(filename=filename, data=data, mime_type=mime_type)


def _error_message(error: Exception) -> str:
    if isinstance(error, SampleIngestError):
        return error.message
    return str(error) or type(error).__name__


def create_batch_orchestrator(
    config: Dict[str, Any],
    storage: Optional[Storage] = None,
    decoder: Optional[Decoder] = None,
    analyzer: Optional[SampleAnalyzer] = None,
) -> BatchOrchestrator:
    """
    Factory function to create a fully configured orchestrator.

    Args:
        config: Full configuration dict (see utils.config.get_default_config)
        storage: Storage override (built from ``storage`` config if None)
        decoder: Decoder override
        analyzer: SampleAnalyzer override
    """
    batch_config = config.get('batch', {})

    return BatchOrchestrator(
        analyzer=analyzer if analyzer is not None else create_sample_analyzer(config),
        storage=storage if storage is not None else create_storage(config.get('storage', {})),
        decoder=decoder if decoder is not None else create_decoder(config.get('decoder', {})),
        upload_policy=UploadPolicy.from_config(config.get('upload', {})),
        record_policy=RecordPolicy.from_config(config),
        concurrency=batch_config.get('concurrency', DEFAULT_CONCURRENCY),
        timeouts=StageTimeouts.from_config(batch_config.get('timeouts', {})),
    )
