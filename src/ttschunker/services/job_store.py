from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from collections.abc import Iterable
from datetime import datetime, timezone

from ttschunker.errors import ConflictError, NotFoundError
from ttschunker.models import JobSnapshot, JobStatus

logger = logging.getLogger(__name__)

DEFAULT_MAX_FINISHED_JOBS = 100


def _now() -> datetime:
    return datetime.now(timezone.utc)


class JobStore:
    """In-process registry of background jobs keyed by session id.

    Writers replace the stored snapshot under a lock; readers only ever see
    complete frozen snapshots. Finished audio is kept alongside so it can be
    served without another round trip to storage. Only the most recent
    ``max_finished`` done or failed jobs are retained; queued and running
    jobs are never evicted.
    """

    def __init__(self, max_finished: int = DEFAULT_MAX_FINISHED_JOBS) -> None:
        self.max_finished = max_finished
        self._lock = threading.Lock()
        self._jobs: dict[str, JobSnapshot] = {}
        self._audio: dict[str, tuple[bytes, str]] = {}
        # Finished session ids, oldest first
        self._finished: OrderedDict[str, None] = OrderedDict()

    def create(self, session_id: str) -> JobSnapshot:
        with self._lock:
            existing = self._jobs.get(session_id)
            if existing is not None and existing.is_active:
                raise ConflictError(f"A job for session {session_id} is already {existing.status.value}")
            now = _now()
            snapshot = JobSnapshot(session_id=session_id, created_at=now, updated_at=now)
            self._jobs[session_id] = snapshot
            self._audio.pop(session_id, None)
            self._finished.pop(session_id, None)
        logger.info(f"Job {session_id}: queued")
        return snapshot

    def _finish_locked(self, session_id: str) -> None:
        self._finished[session_id] = None
        self._finished.move_to_end(session_id)
        while len(self._finished) > self.max_finished:
            evicted, _ = self._finished.popitem(last=False)
            self._jobs.pop(evicted, None)
            self._audio.pop(evicted, None)
            logger.debug(f"Job {evicted}: evicted")

    def get(self, session_id: str) -> JobSnapshot:
        with self._lock:
            snapshot = self._jobs.get(session_id)
        if snapshot is None:
            raise NotFoundError(f"No job found for session {session_id}")
        return snapshot

    def _update_locked(self, session_id: str, **changes) -> JobSnapshot:
        current = self._jobs.get(session_id)
        if current is None:
            raise NotFoundError(f"No job found for session {session_id}")
        snapshot = current.model_copy(update={**changes, "updated_at": _now()})
        self._jobs[session_id] = snapshot
        return snapshot

    def _update(self, session_id: str, **changes) -> JobSnapshot:
        with self._lock:
            return self._update_locked(session_id, **changes)

    def mark_running(self, session_id: str, total: int) -> JobSnapshot:
        logger.info(f"Job {session_id}: running ({total} segments)")
        return self._update(
            session_id, status=JobStatus.RUNNING, total=total, completed=0, progress=0.0
        )

    def record_progress(self, session_id: str, completed: int, total: int) -> JobSnapshot:
        with self._lock:
            current = self._jobs.get(session_id)
            if current is None:
                raise NotFoundError(f"No job found for session {session_id}")
            progress = round(completed / total * 100, 2) if total else 100.0
            # Progress never goes backwards, even if callbacks arrive out of order
            if progress <= current.progress and completed <= current.completed:
                return current
            snapshot = current.model_copy(
                update={
                    "completed": max(completed, current.completed),
                    "total": total,
                    "progress": min(max(progress, current.progress), 100.0),
                    "updated_at": _now(),
                }
            )
            self._jobs[session_id] = snapshot
        return snapshot

    def complete(
        self,
        session_id: str,
        result_ref: str | None,
        failed_indices: Iterable[int] = (),
        audio: bytes | None = None,
        media_type: str = "audio/mpeg",
    ) -> JobSnapshot:
        with self._lock:
            snapshot = self._update_locked(
                session_id,
                status=JobStatus.DONE,
                progress=100.0,
                result_ref=result_ref,
                failed_indices=tuple(sorted(failed_indices)),
            )
            if audio is not None:
                self._audio[session_id] = (audio, media_type)
            self._finish_locked(session_id)
        logger.info(f"Job {session_id}: done ({result_ref or 'inline audio'})")
        return snapshot

    def fail(self, session_id: str, message: str) -> JobSnapshot:
        logger.error(f"Job {session_id}: error: {message}")
        with self._lock:
            snapshot = self._update_locked(
                session_id, status=JobStatus.ERROR, error_message=message
            )
            self._finish_locked(session_id)
        return snapshot

    def get_audio(self, session_id: str) -> tuple[bytes, str]:
        """Return ``(audio, media_type)`` for a finished job."""
        snapshot = self.get(session_id)
        if snapshot.status is not JobStatus.DONE:
            raise NotFoundError(f"Audio for session {session_id} is not ready ({snapshot.status.value})")
        with self._lock:
            stored = self._audio.get(session_id)
        if stored is None:
            raise NotFoundError(f"No audio stored for session {session_id}")
        return stored
