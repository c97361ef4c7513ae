"""Tests for BatchOrchestrator: windows, progress, rollback, cancellation."""

import pytest

from sample_pipeline.core.orchestrator import (
    BatchOrchestrator,
    CancellationToken,
    FileState,
    FileTask,
    StageTimeouts,
    create_batch_orchestrator,
)
from sample_pipeline.core.storage import InMemoryStorage
from sample_pipeline.core.validation import RecordPolicy
from sample_pipeline.utils.config import get_default_config

from conftest import FakeDecoder, RecordingStorage, make_click_track, make_source


def build_orchestrator(sample_analyzer, storage, decoder=None, **kwargs):
    return BatchOrchestrator(
        analyzer=sample_analyzer,
        storage=storage,
        decoder=decoder or FakeDecoder(),
        **kwargs,
    )


def five_files():
    return [make_source(f"file{i}.wav") for i in range(1, 6)]


# ---------------------------------------------------------------------------
# Happy path and windows
# ---------------------------------------------------------------------------


class TestBatchProcessing:
    def test_all_files_succeed(self, sample_analyzer, storage):
        orchestrator = build_orchestrator(sample_analyzer, storage)
        result = orchestrator.run(five_files())

        assert result.success_count == 5
        assert result.failure_count == 0
        assert len(storage) == 5
        for entry in result.successful:
            assert entry.url in storage
            assert len(entry.sample.waveform) == 400

    def test_one_decode_failure_in_five(self, sample_analyzer, storage):
        decoder = FakeDecoder(failures={"file3.wav"})
        orchestrator = build_orchestrator(sample_analyzer, storage, decoder, concurrency=3)
        progress = []

        result = orchestrator.run(five_files(), on_progress=progress.append)

        assert progress == [60, 100]
        assert orchestrator.windows_run == 2
        assert result.success_count == 4
        assert [f.filename for f in result.failed] == ["file3.wav"]
        assert result.failed[0].error == "Failed to decode audio data from file3.wav"
        # never uploaded
        assert "file3.wav" not in storage.put_calls

    def test_every_file_accounted_for_once(self, sample_analyzer, storage):
        decoder = FakeDecoder(failures={"file2.wav", "file5.wav"})
        orchestrator = build_orchestrator(sample_analyzer, storage, decoder, concurrency=2)
        files = five_files()

        result = orchestrator.run(files)

        names = [e.sample.title + ".wav" for e in result.successful] + [f.filename for f in result.failed]
        assert sorted(names) == sorted(f.filename for f in files)
        assert result.completed_count == result.total_files == 5

    def test_progress_with_uneven_windows(self, sample_analyzer, storage):
        orchestrator = build_orchestrator(sample_analyzer, storage, concurrency=2)
        progress = []
        orchestrator.run(make_source(f"f{i}.wav") for i in range(3))
        orchestrator.run([make_source(f"g{i}.wav") for i in range(3)], on_progress=progress.append)
        assert progress == [67, 100]

    def test_accepts_tuples(self, sample_analyzer, storage):
        orchestrator = build_orchestrator(sample_analyzer, storage)
        result = orchestrator.run([("kick.wav", b"\x00" * 32, "audio/wav")])
        assert result.success_count == 1
        assert result.successful[0].sample.title == "kick"

    def test_empty_batch(self, sample_analyzer, storage):
        progress = []
        result = build_orchestrator(sample_analyzer, storage).run([], on_progress=progress.append)
        assert result.total_files == 0
        assert progress == []

    def test_concurrency_must_be_positive(self, sample_analyzer, storage):
        with pytest.raises(ValueError):
            build_orchestrator(sample_analyzer, storage, concurrency=0)

    @pytest.mark.asyncio
    async def test_process_is_awaitable(self, sample_analyzer, storage):
        orchestrator = build_orchestrator(sample_analyzer, storage)
        result = await orchestrator.process(five_files()[:2])
        assert result.success_count == 2


# ---------------------------------------------------------------------------
# Rollback
# ---------------------------------------------------------------------------


class TestRollback:
    def test_record_failure_deletes_upload_once(self, sample_analyzer, storage):
        orchestrator = build_orchestrator(
            sample_analyzer, storage, record_policy=RecordPolicy(require_bpm=True)
        )

        result = orchestrator.run([make_source("pad.wav")])

        assert result.failure_count == 1
        assert result.failed[0].error == (
            "Sample validation failed: BPM is required for all samples"
        )
        assert len(storage.put_calls) == 1
        assert len(storage.delete_calls) == 1
        assert len(storage) == 0

    def test_record_with_tempo_is_kept(self, sample_analyzer, storage):
        decoder = FakeDecoder(buffer=make_click_track())
        orchestrator = build_orchestrator(
            sample_analyzer, storage, decoder, record_policy=RecordPolicy(require_bpm=True)
        )

        result = orchestrator.run([make_source("loop.wav")])

        assert result.success_count == 1
        assert result.successful[0].sample.bpm == 120
        assert storage.delete_calls == []

    def test_delete_failure_keeps_original_error(self, sample_analyzer):
        storage = RecordingStorage(fail_delete=True)
        orchestrator = build_orchestrator(
            sample_analyzer, storage, record_policy=RecordPolicy(require_key=True, require_bpm=True)
        )

        result = orchestrator.run([make_source("pad.wav")])

        assert len(storage.delete_calls) == 1
        assert result.failed[0].error.startswith("Sample validation failed:")
        # the orphaned blob stays behind
        assert len(storage) == 1

    def test_upload_failure_has_nothing_to_delete(self, sample_analyzer):
        storage = RecordingStorage(fail_put=True)
        orchestrator = build_orchestrator(sample_analyzer, storage)

        result = orchestrator.run([make_source("kick.wav")])

        assert result.failed[0].error == "Failed to save file: disk full"
        assert storage.delete_calls == []

    def test_invalid_upload_is_never_stored(self, sample_analyzer, storage):
        decoder = FakeDecoder()
        orchestrator = build_orchestrator(sample_analyzer, storage, decoder)

        result = orchestrator.run([
            make_source("notes.txt", mime_type="text/plain"),
            make_source("huge.wav", size=52428801),
        ])

        errors = {f.filename: f.error for f in result.failed}
        assert errors["notes.txt"] == "Invalid file type. Supported formats: WAV, MP3, AIFF"
        assert errors["huge.wav"] == "File size exceeds 50MB limit"
        assert storage.put_calls == []
        assert decoder.calls == []


# ---------------------------------------------------------------------------
# Cancellation and timeouts
# ---------------------------------------------------------------------------


class TestCancellation:
    def test_cancel_between_windows(self, sample_analyzer, storage):
        orchestrator = build_orchestrator(sample_analyzer, storage, concurrency=2)
        token = CancellationToken()
        progress = []

        def on_progress(percent):
            progress.append(percent)
            token.cancel()

        result = orchestrator.run(five_files(), on_progress=on_progress, cancel_token=token)

        assert result.cancelled
        assert progress == [40]
        assert orchestrator.windows_run == 1
        assert result.success_count == 2
        assert [f.filename for f in result.failed] == ["file3.wav", "file4.wav", "file5.wav"]
        assert all(f.error == "cancelled" for f in result.failed)
        assert len(storage) == 2

    def test_cancel_before_start(self, sample_analyzer, storage):
        token = CancellationToken()
        token.cancel()
        result = build_orchestrator(sample_analyzer, storage).run(five_files(), cancel_token=token)
        assert result.failure_count == 5
        assert storage.put_calls == []


class TestTimeouts:
    def test_upload_timeout(self, sample_analyzer):
        storage = RecordingStorage(put_delay=1.0)
        orchestrator = build_orchestrator(
            sample_analyzer, storage, timeouts=StageTimeouts(upload=0.05)
        )

        result = orchestrator.run([make_source("kick.wav")])

        assert result.failed[0].error == "upload timed out after 0.05s"
        assert len(storage) == 0

    def test_decode_timeout(self, sample_analyzer, storage):
        decoder = FakeDecoder(delay=0.5)
        orchestrator = build_orchestrator(
            sample_analyzer, storage, decoder, timeouts=StageTimeouts(decode=0.05)
        )

        result = orchestrator.run([make_source("kick.wav")])

        assert result.failed[0].error == "decode timed out after 0.05s"
        assert storage.put_calls == []

    def test_slow_decode_within_limit(self, sample_analyzer, storage):
        decoder = FakeDecoder(delay=0.05)
        orchestrator = build_orchestrator(
            sample_analyzer, storage, decoder, timeouts=StageTimeouts(decode=5.0)
        )
        assert orchestrator.run([make_source("kick.wav")]).success_count == 1

    def test_timeouts_from_config(self):
        timeouts = StageTimeouts.from_config({"decode": 5, "delete": 2.5})
        assert timeouts.decode == 5
        assert timeouts.delete == 2.5
        assert timeouts.upload is None


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------


class TestFileStates:
    def test_success_path(self, sample_analyzer, storage):
        states = []
        orchestrator = build_orchestrator(sample_analyzer, storage)
        orchestrator.run(
            [make_source("kick.wav")],
            on_state_change=lambda name, state: states.append(state),
        )
        assert states == [
            FileState.VALIDATING,
            FileState.EXTRACTING,
            FileState.UPLOADING,
            FileState.PERSISTING,
            FileState.SUCCEEDED,
        ]

    def test_decode_failure_path(self, sample_analyzer, storage):
        states = []
        decoder = FakeDecoder(failures={"bad.wav"})
        orchestrator = build_orchestrator(sample_analyzer, storage, decoder)
        orchestrator.run(
            [make_source("bad.wav")],
            on_state_change=lambda name, state: states.append(state),
        )
        assert states == [FileState.VALIDATING, FileState.EXTRACTING, FileState.FAILED]

    def test_settled_task_cannot_move(self):
        task = FileTask(source=make_source("kick.wav"))
        task.transition(FileState.FAILED)
        with pytest.raises(RuntimeError):
            task.transition(FileState.UPLOADING)

    def test_same_state_is_a_no_op(self):
        task = FileTask(source=make_source("kick.wav"))
        assert task.transition(FileState.EXTRACTING)
        assert not task.transition(FileState.EXTRACTING)
        assert task.history == [FileState.QUEUED, FileState.EXTRACTING]


def test_factory_uses_config():
    config = get_default_config()
    config["batch"]["concurrency"] = 5
    storage = InMemoryStorage()

    orchestrator = create_batch_orchestrator(config, storage=storage)
    try:
        assert orchestrator.concurrency == 5
        assert orchestrator.storage is storage
        assert orchestrator.timeouts.decode == 30.0
        assert orchestrator.record_policy.waveform_length == 400
    finally:
        orchestrator.analyzer.shutdown()


def test_factory_keeps_injected_collaborators(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    storage = InMemoryStorage()
    decoder = FakeDecoder()

    orchestrator = create_batch_orchestrator(get_default_config(), storage=storage, decoder=decoder)
    try:
        result = orchestrator.run([make_source("kick.wav")])
    finally:
        orchestrator.analyzer.shutdown()

    assert orchestrator.storage is storage
    assert orchestrator.decoder is decoder
    assert result.success_count == 1
    assert len(storage) == 1
    assert not (tmp_path / "uploads").exists()


def test_custom_base_url_is_accepted(tmp_path):
    config = get_default_config()
    config["storage"]["root"] = str(tmp_path / "media")
    config["storage"]["base_url"] = "/media"

    orchestrator = create_batch_orchestrator(config, decoder=FakeDecoder())
    try:
        result = orchestrator.run([make_source("kick.wav")])
    finally:
        orchestrator.analyzer.shutdown()

    assert result.failed == []
    assert result.successful[0].url.startswith("/media/audio/")
    assert len(list((tmp_path / "media" / "audio").iterdir())) == 1


class TestCallbackErrors:
    def test_failing_state_callback_does_not_abort_batch(self, sample_analyzer, storage):
        def on_state_change(name, state):
            if state in (FileState.SUCCEEDED, FileState.UPLOADING):
                raise RuntimeError("listener broke")

        orchestrator = build_orchestrator(sample_analyzer, storage, concurrency=2)
        result = orchestrator.run(five_files(), on_state_change=on_state_change)

        assert result.success_count == 5
        assert result.completed_count == 5

    def test_failing_progress_callback_does_not_abort_batch(self, sample_analyzer, storage):
        calls = []

        def on_progress(percent):
            calls.append(percent)
            raise ValueError("bad listener")

        orchestrator = build_orchestrator(sample_analyzer, storage, concurrency=2)
        result = orchestrator.run(five_files(), on_progress=on_progress)

        assert calls == [40, 80, 100]
        assert result.success_count == 5
