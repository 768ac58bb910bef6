from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass

from ttschunker.errors import StorageError
from ttschunker.infrastructure.object_store import ObjectStore
from ttschunker.models import AudioEncoding
from ttschunker.services.retry import RetryPolicy, is_transient_storage_error

logger = logging.getLogger(__name__)

DEFAULT_UPLOAD_POLICY = RetryPolicy(
    max_attempts=3, base_delay=1.0, max_delay=10.0, is_retryable=is_transient_storage_error
)


def chunk_key(session_id: str, index: int, encoding: AudioEncoding) -> str:
    return f"{session_id}/chunk-{index}.{encoding.extension}"


def merged_key(session_id: str, encoding: AudioEncoding) -> str:
    return f"{session_id}/merged.{encoding.extension}"


def program_key(session_id: str, extension: str = "mp3") -> str:
    return f"{session_id}/final.{extension}"


@dataclass(frozen=True)
class UploadItem:
    key: str
    data: bytes
    content_type: str


@dataclass(frozen=True)
class UploadResult:
    key: str
    url: str | None = None
    error: StorageError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class Publisher:
    """Uploads artifacts, retrying transient storage failures with backoff."""

    def __init__(
        self,
        store: ObjectStore,
        retry_policy: RetryPolicy = DEFAULT_UPLOAD_POLICY,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.store = store
        self.retry_policy = retry_policy
        self._sleep = sleep

    async def publish(
        self,
        data: bytes,
        key: str,
        content_type: str,
        metadata: dict[str, str] | None = None,
    ) -> str:
        """Upload *data* to *key* and return its public URL.

        Raises StorageError (chained to the last underlying error) when the
        failure is permanent or retries are exhausted.
        """
        attempts = 0

        async def _upload() -> str:
            nonlocal attempts
            attempts += 1
            return await self.store.put_object(key, data, content_type, metadata)

        try:
            url = await self.retry_policy.run(
                _upload, description=f"upload {key}", sleep=self._sleep
            )
        except Exception as e:
            permanent = not self.retry_policy.is_retryable(e)
            reason = "permanent error" if permanent else f"giving up after {attempts} attempts"
            raise StorageError(
                f"Upload of {key} failed ({reason}): {e}",
                key=key,
                attempts=attempts,
                permanent=permanent,
            ) from e

        logger.info(f"Published {key} ({len(data)} bytes) after {attempts} attempt(s)")
        return url

    async def publish_many(
        self, items: Sequence[UploadItem], max_concurrency: int = 3
    ) -> list[UploadResult]:
        """Upload *items* with at most *max_concurrency* in flight.

        A failed item is reported in its result and does not stop the others.
        Results are returned in input order.
        """
        sem = asyncio.Semaphore(max_concurrency)

        async def _one(item: UploadItem) -> UploadResult:
            async with sem:
                try:
                    url = await self.publish(item.data, item.key, item.content_type)
                except StorageError as e:
                    logger.error(f"Upload of {item.key} failed: {e.message}")
                    return UploadResult(key=item.key, error=e)
                return UploadResult(key=item.key, url=url)

        return list(await asyncio.gather(*(_one(item) for item in items)))
