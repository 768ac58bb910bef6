from __future__ import annotations

import asyncio
import functools
import logging
import time
from concurrent.futures import ThreadPoolExecutor

from ttschunker.errors import ErrorKind, ProviderError
from ttschunker.infrastructure.tts import SynthesisProvider
from ttschunker.models import Segment, VoiceConfig
from ttschunker.services.markup import PlainTextEnricher, SsmlEnricher

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 45.0


class SynthesisClient:
    """One provider call per segment, bounded by a hard per-call timeout.

    The blocking provider SDK runs on a dedicated thread pool. A timed-out
    call is abandoned (its thread finishes in the background) and reported
    as ``ErrorKind.TIMEOUT``; this class never retries.
    """

    def __init__(
        self,
        provider: SynthesisProvider,
        *,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        enricher: PlainTextEnricher | SsmlEnricher | None = None,
        executor: ThreadPoolExecutor | None = None,
        max_workers: int = 16,
    ) -> None:
        self.provider = provider
        self.timeout = timeout
        self.enricher = enricher or PlainTextEnricher()
        self._executor = executor or ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="tts-synth"
        )

    def wire_size(self, text: str) -> int:
        """Size of *text* as it will be sent to the provider."""
        return self.enricher.wire_size(text)

    async def synthesize(self, segment: Segment, config: VoiceConfig) -> bytes:
        if not segment.text or not segment.text.strip():
            raise ProviderError(
                f"Segment {segment.index} has no text to synthesize", kind=ErrorKind.EMPTY_INPUT
            )

        payload = self.enricher.enrich(segment.text)
        is_ssml = self.enricher.is_ssml and self.provider.supports_ssml
        if self.enricher.is_ssml and not is_ssml:
            payload = segment.text

        call = functools.partial(
            self.provider.synthesize,
            text=payload,
            config=config,
            is_ssml=is_ssml,
            timeout=self.timeout,
        )
        loop = asyncio.get_running_loop()
        start = time.perf_counter()
        try:
            audio = await asyncio.wait_for(
                loop.run_in_executor(self._executor, call), timeout=self.timeout
            )
        except asyncio.TimeoutError as e:
            logger.warning(f"Segment {segment.index} timed out after {self.timeout:.0f}s")
            raise ProviderError(
                f"Synthesis of segment {segment.index} timed out after {self.timeout:.0f}s",
                kind=ErrorKind.TIMEOUT,
            ) from e
        except ProviderError:
            raise
        except Exception as e:
            logger.error(
                f"Segment {segment.index} synthesis failed via {self.provider.name}: "
                f"{type(e).__name__}: {e} | text sample: {segment.text[:100]!r}"
            )
            raise ProviderError(
                f"Synthesis of segment {segment.index} failed: {e}",
                kind=ErrorKind.PROVIDER_ERROR,
            ) from e

        if not audio:
            raise ProviderError(
                f"Provider returned empty audio for segment {segment.index}",
                kind=ErrorKind.EMPTY_RESPONSE,
            )

        logger.debug(
            f"Segment {segment.index}: {len(audio)} bytes in {time.perf_counter() - start:.2f}s"
        )
        return bytes(audio)

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
