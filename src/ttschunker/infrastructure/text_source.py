from __future__ import annotations

import asyncio
import logging
import re
from abc import ABC, abstractmethod

from ttschunker.infrastructure.object_store import ObjectStore

logger = logging.getLogger(__name__)

_INDEX_IN_KEY = re.compile(r"(\d+)(?=\.[^./]+$|$)")


class TextSource(ABC):
    """Supplies the ordered ``(index, text)`` pairs of a document."""

    @abstractmethod
    async def fetch(self, session_id: str) -> list[tuple[int, str]]:
        """Return the document's text parts sorted by index; empty when none exist."""


class InlineTextSource(TextSource):
    """Text supplied directly with the request."""

    def __init__(self, text: str) -> None:
        self.text = text

    async def fetch(self, session_id: str) -> list[tuple[int, str]]:
        return [(0, self.text)] if self.text and self.text.strip() else []


class ObjectStoreTextSource(TextSource):
    """Text parts stored as ``{prefix}{sessionId}/<name><n>.txt`` objects.

    Parts are ordered by the trailing number in the key name, not lexically,
    so ``chunk-10.txt`` follows ``chunk-9.txt``.
    """

    def __init__(self, store: ObjectStore, prefix: str = "", max_concurrency: int = 4) -> None:
        self.store = store
        self.prefix = prefix
        self.max_concurrency = max_concurrency

    @staticmethod
    def index_for_key(key: str, fallback: int) -> int:
        match = _INDEX_IN_KEY.search(key.rsplit("/", 1)[-1])
        return int(match.group(1)) if match else fallback

    async def fetch(self, session_id: str) -> list[tuple[int, str]]:
        session_prefix = f"{self.prefix}{session_id}/"
        keys = sorted(
            key
            for key in await self.store.list_keys(session_prefix)
            if key.endswith(".txt") and not key.endswith("/")
        )
        if not keys:
            logger.info(f"No text objects found for session {session_id}")
            return []

        ordered = sorted(
            ((self.index_for_key(key, position), key) for position, key in enumerate(keys)),
            key=lambda item: (item[0], item[1]),
        )
        logger.info(f"Retrieved {len(ordered)} text objects for session {session_id}")

        sem = asyncio.Semaphore(self.max_concurrency)

        async def _download(key: str) -> str:
            async with sem:
                return await self.store.get_text(key)

        texts = await asyncio.gather(*(_download(key) for _, key in ordered))
        return [(position, text) for position, text in enumerate(texts)]
