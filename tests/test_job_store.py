import threading

import pytest

from ttschunker.errors import ConflictError, NotFoundError
from ttschunker.models import JobStatus
from ttschunker.services.job_store import JobStore


def test_job_lifecycle():
    store = JobStore()

    queued = store.create("s1")
    assert queued.status is JobStatus.QUEUED
    assert queued.progress == 0

    running = store.mark_running("s1", total=4)
    assert running.status is JobStatus.RUNNING
    assert running.total == 4

    store.record_progress("s1", 1, 4)
    assert store.get("s1").progress == 25.0

    done = store.complete("s1", "https://cdn/s1/merged.mp3", [3, 1], audio=b"mp3", media_type="audio/mpeg")
    assert done.status is JobStatus.DONE
    assert done.progress == 100.0
    assert done.failed_indices == (1, 3)
    assert store.get_audio("s1") == (b"mp3", "audio/mpeg")


def test_snapshots_are_immutable_copies():
    store = JobStore()
    before = store.create("s1")
    store.mark_running("s1", total=2)

    assert before.status is JobStatus.QUEUED
    with pytest.raises(Exception):
        before.status = JobStatus.DONE


def test_active_job_conflicts():
    store = JobStore()
    store.create("s1")

    with pytest.raises(ConflictError):
        store.create("s1")

    store.mark_running("s1", 1)
    with pytest.raises(ConflictError):
        store.create("s1")


def test_finished_job_can_be_resubmitted():
    store = JobStore()
    store.create("s1")
    store.fail("s1", "boom")

    assert store.create("s1").status is JobStatus.QUEUED


def test_progress_never_decreases():
    store = JobStore()
    store.create("s1")
    store.mark_running("s1", 10)

    store.record_progress("s1", 6, 10)
    store.record_progress("s1", 4, 10)

    snapshot = store.get("s1")
    assert snapshot.progress == 60.0
    assert snapshot.completed == 6


def test_concurrent_progress_updates_end_at_maximum():
    store = JobStore()
    store.create("s1")
    store.mark_running("s1", 200)

    threads = [
        threading.Thread(target=store.record_progress, args=("s1", n, 200)) for n in range(1, 201)
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert store.get("s1").progress == 100.0
    assert store.get("s1").completed == 200


def test_failure_records_message():
    store = JobStore()
    store.create("s1")

    snapshot = store.fail("s1", "All 3 segments failed to synthesize")

    assert snapshot.status is JobStatus.ERROR
    assert snapshot.error_message == "All 3 segments failed to synthesize"
    with pytest.raises(NotFoundError):
        store.get_audio("s1")


def test_unknown_session():
    store = JobStore()
    with pytest.raises(NotFoundError):
        store.get("missing")
    with pytest.raises(NotFoundError):
        store.record_progress("missing", 1, 2)


def test_audio_not_ready_while_running():
    store = JobStore()
    store.create("s1")
    store.mark_running("s1", 3)

    with pytest.raises(NotFoundError, match="not ready"):
        store.get_audio("s1")


def test_oldest_finished_jobs_are_evicted():
    store = JobStore(max_finished=2)
    for sid in ("s1", "s2", "s3"):
        store.create(sid)
        store.complete(sid, None, audio=sid.encode(), media_type="audio/mpeg")

    with pytest.raises(NotFoundError):
        store.get("s1")
    assert store.get_audio("s2") == (b"s2", "audio/mpeg")
    assert store.get_audio("s3") == (b"s3", "audio/mpeg")


def test_active_jobs_are_never_evicted():
    store = JobStore(max_finished=1)
    store.create("busy")
    store.mark_running("busy", 3)
    for sid in ("s1", "s2"):
        store.create(sid)
        store.fail(sid, "boom")

    assert store.get("busy").status is JobStatus.RUNNING
    assert store.get("s2").status is JobStatus.ERROR
    with pytest.raises(NotFoundError):
        store.get("s1")


def test_resubmitted_job_is_not_counted_as_finished():
    store = JobStore(max_finished=1)
    store.create("s1")
    store.complete("s1", None)
    store.create("s1")
    store.create("s2")
    store.complete("s2", None)

    assert store.get("s1").status is JobStatus.QUEUED


def test_done_job_is_never_seen_without_its_audio():
    store = JobStore()
    store.create("s1")
    store.mark_running("s1", 1)
    seen = []

    def reader():
        for _ in range(2000):
            snapshot = store.get("s1")
            if snapshot.status is JobStatus.DONE:
                seen.append(store.get_audio("s1"))
                return

    thread = threading.Thread(target=reader)
    thread.start()
    store.complete("s1", None, audio=b"mp3")
    thread.join()

    assert all(audio == (b"mp3", "audio/mpeg") for audio in seen)
