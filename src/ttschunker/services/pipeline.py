"""End-to-end orchestration: text -> segments -> audio -> merged file -> URLs."""

from __future__ import annotations

import asyncio
import base64
import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from botocore.exceptions import ClientError

from ttschunker.errors import (
    AllSegmentsFailedError,
    InputError,
    NotFoundError,
    PipelineTimeoutError,
    StorageError,
    TTSChunkerError,
)
from ttschunker.infrastructure.text_source import InlineTextSource, TextSource
from ttschunker.models import (
    AudioEncoding,
    ChunkResult,
    JobSnapshot,
    MergedAudio,
    PodcastResponse,
    Segment,
    SynthesisOutcome,
    SynthesisTask,
    TTSRequest,
    TTSResponse,
    VoiceConfig,
)
from ttschunker.services.audio_assembler import AudioAssembler
from ttschunker.services.job_store import JobStore
from ttschunker.services.markup import validate_ssml
from ttschunker.services.program_assembler import ProgramAssembler
from ttschunker.services.publisher import (
    Publisher,
    UploadItem,
    chunk_key,
    merged_key,
    program_key,
)
from ttschunker.services.result_collector import collect, failure_warnings
from ttschunker.services.retry import RetryPolicy
from ttschunker.services.segmenter import segment_pairs
from ttschunker.services.synthesis_client import SynthesisClient
from ttschunker.services.worker_pool import BoundedWorkerPool

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[SynthesisOutcome, int, int], None]

# pydub/ffmpeg format names for the media types the pipeline produces
_DECODE_FORMATS = {
    "audio/mpeg": "mp3",
    "audio/wav": "wav",
    "audio/ogg": "ogg",
}
_MEDIA_TYPES = {fmt: media_type for media_type, fmt in _DECODE_FORMATS.items()}

# Stored as x-amz-meta-* headers on finished programs
PROGRAM_METADATA = {"processed": "true", "service": "ttschunker"}


@dataclass
class PreparedRequest:
    session_id: str
    config: VoiceConfig
    segments: list[Segment]
    concurrency: int


@dataclass
class _Tally:
    """Segment counts visible to the timeout handler while a run is in flight."""

    total: int = 0
    pool: BoundedWorkerPool | None = None

    @property
    def completed(self) -> int:
        return self.pool.completed if self.pool is not None else 0


@dataclass
class ChunkOutput:
    index: int
    byte_count: int
    url: str | None = None
    base64: str | None = None


@dataclass
class PipelineResult:
    session_id: str
    encoding: AudioEncoding
    count: int
    chunks: list[ChunkOutput]
    total_bytes: int
    merged: MergedAudio
    merged_url: str | None = None
    failed_indices: list[int] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_response(self) -> TTSResponse:
        return TTSResponse(
            session_id=self.session_id,
            count=self.count,
            chunks=[
                ChunkResult(index=c.index, url=c.url, base64=c.base64, bytes_approx=c.byte_count)
                for c in self.chunks
            ],
            summary_bytes_approx=self.total_bytes,
            merged_url=self.merged_url,
            failed_indices=self.failed_indices,
            warnings=self.warnings,
        )


class TTSPipeline:
    """Runs one chunked synthesis request from text to published audio."""

    def __init__(
        self,
        client: SynthesisClient,
        assembler: AudioAssembler,
        *,
        publisher: Publisher | None = None,
        text_source: TextSource | None = None,
        program_assembler: ProgramAssembler | None = None,
        job_store: JobStore | None = None,
        defaults: VoiceConfig | None = None,
        max_segment_bytes: int = 3400,
        default_concurrency: int = 3,
        max_concurrency: int = 16,
        operation_timeout: float = 600.0,
        synthesis_retry: RetryPolicy | None = None,
        intro_key: str | None = None,
        outro_key: str | None = None,
        upload_concurrency: int = 3,
        program_format: str = "mp3",
    ) -> None:
        self.client = client
        self.assembler = assembler
        self.publisher = publisher
        self.text_source = text_source
        self.program_assembler = program_assembler or ProgramAssembler()
        self.jobs = job_store or JobStore()
        self.defaults = defaults or VoiceConfig()
        self.max_segment_bytes = max_segment_bytes
        self.default_concurrency = default_concurrency
        self.max_concurrency = max_concurrency
        self.operation_timeout = operation_timeout
        self.synthesis_retry = synthesis_retry
        self.intro_key = intro_key
        self.outro_key = outro_key
        self.upload_concurrency = upload_concurrency
        self.program_format = program_format

    # ------------------------------------------------------------------
    # Preparation
    # ------------------------------------------------------------------

    def resolve_config(self, request: TTSRequest) -> VoiceConfig:
        """Merge the request's voice settings over the defaults; InputError if invalid."""
        config = VoiceConfig.from_request(request.voice, request.audio_config, self.defaults)
        if not self.client.provider.supports_encoding(config.encoding):
            raise InputError(
                f"{self.client.provider.name} cannot produce {config.encoding.value} audio"
            )
        return config

    async def prepare(self, request: TTSRequest) -> PreparedRequest:
        """Validate the voice config, fetch the text and segment it.

        Nothing is synthesized until this succeeds.
        """
        config = self.resolve_config(request)

        if request.text is not None:
            source: TextSource = InlineTextSource(request.text)
        elif self.text_source is not None:
            source = self.text_source
        else:
            raise InputError("No text supplied and no text source is configured")

        pairs = await source.fetch(request.session_id)
        if not pairs:
            raise NotFoundError(f"No text found for session {request.session_id}")

        segments = segment_pairs(pairs, self.max_segment_bytes, self.client.wire_size)
        if not segments:
            raise NotFoundError(f"Text for session {request.session_id} produced no segments")

        if self.client.enricher.is_ssml:
            problems = validate_ssml(self.client.enricher.enrich(segments[0].text))
            if problems:
                raise InputError(f"Generated SSML is invalid: {'; '.join(problems)}")

        concurrency = min(request.concurrency or self.default_concurrency, self.max_concurrency)
        logger.info(
            f"Session {request.session_id}: {len(segments)} segments, "
            f"{sum(s.byte_size for s in segments)} bytes, concurrency {concurrency}"
        )
        return PreparedRequest(
            session_id=request.session_id,
            config=config,
            segments=segments,
            concurrency=concurrency,
        )

    # ------------------------------------------------------------------
    # Synchronous run
    # ------------------------------------------------------------------

    async def run(
        self, request: TTSRequest, on_progress: ProgressCallback | None = None
    ) -> PipelineResult:
        """Fetch, synthesize, assemble and publish under the operation timeout."""
        tally = _Tally()

        async def _operation() -> PipelineResult:
            prepared = await self.prepare(request)
            return await self._execute(prepared, request, tally, on_progress)

        return await self._within_timeout(request.session_id, _operation(), tally)

    async def _within_timeout(self, session_id: str, operation, tally: _Tally):
        try:
            return await asyncio.wait_for(operation, timeout=self.operation_timeout)
        except asyncio.TimeoutError as e:
            logger.error(
                f"Session {session_id}: timed out after {self.operation_timeout:.0f}s "
                f"({tally.completed}/{tally.total} segments done)"
            )
            raise PipelineTimeoutError(tally.completed, tally.total) from e

    async def _execute(
        self,
        prepared: PreparedRequest,
        request: TTSRequest,
        tally: _Tally,
        on_progress: ProgressCallback | None = None,
    ) -> PipelineResult:
        session_id = prepared.session_id
        encoding = prepared.config.encoding
        tasks = [SynthesisTask(segment=s, config=prepared.config) for s in prepared.segments]
        pool = BoundedWorkerPool(
            prepared.concurrency,
            abort_on_failure=request.abort_on_failure,
            retry_policy=self.synthesis_retry,
        )
        tally.total = len(tasks)
        tally.pool = pool

        async def _call(task: SynthesisTask) -> bytes:
            return await self.client.synthesize(task.segment, task.config)

        outcomes = await pool.run(tasks, _call, on_progress)

        results = collect(outcomes)
        if results.all_failed:
            raise AllSegmentsFailedError(results.failed, results.total)
        warnings = failure_warnings(results)
        if results.is_partial:
            logger.warning(
                f"Session {session_id}: {len(results.failed)}/{results.total} segments failed"
            )

        merged = await self.assembler.assemble([audio for _, audio in results.succeeded], encoding)

        chunks = [ChunkOutput(index=i, byte_count=len(audio)) for i, audio in results.succeeded]
        merged_url = None
        if request.return_base64:
            for chunk, (_, audio) in zip(chunks, results.succeeded):
                chunk.base64 = base64.b64encode(audio).decode("ascii")
        else:
            merged_url = await self._publish(session_id, encoding, merged, results.succeeded, chunks, warnings)

        logger.info(
            f"Session {session_id}: {results.succeeded_count}/{results.total} segments, "
            f"{merged.byte_count} bytes merged"
        )
        return PipelineResult(
            session_id=session_id,
            encoding=encoding,
            count=results.total,
            chunks=chunks,
            total_bytes=results.total_bytes,
            merged=merged,
            merged_url=merged_url,
            failed_indices=results.failed,
            warnings=warnings,
        )

    async def _publish(
        self,
        session_id: str,
        encoding: AudioEncoding,
        merged: MergedAudio,
        succeeded: list[tuple[int, bytes]],
        chunks: list[ChunkOutput],
        warnings: list[str],
    ) -> str:
        publisher = self._require_publisher()
        merged_url = await publisher.publish(
            merged.data, merged_key(session_id, encoding), encoding.mime_type
        )
        uploads = await publisher.publish_many(
            [
                UploadItem(chunk_key(session_id, i, encoding), audio, encoding.mime_type)
                for i, audio in succeeded
            ],
            max_concurrency=self.upload_concurrency,
        )
        for chunk, upload in zip(chunks, uploads):
            if upload.ok:
                chunk.url = upload.url
            else:
                warnings.append(f"segment {chunk.index}: upload failed: {upload.error.message}")
        return merged_url

    def _require_publisher(self) -> Publisher:
        if self.publisher is None:
            raise StorageError("Object storage is not configured", key="", attempts=0, permanent=True)
        return self.publisher

    # ------------------------------------------------------------------
    # Background jobs
    # ------------------------------------------------------------------

    def submit(self, request: TTSRequest) -> JobSnapshot:
        """Register a queued job; the caller schedules :meth:`run_job`.

        The voice config is checked first so an invalid request is rejected
        before anything is queued.
        """
        self.resolve_config(request)
        return self.jobs.create(request.session_id)

    async def run_job(self, request: TTSRequest) -> PipelineResult | None:
        """Drive a queued job through running to done or error.

        Failures are recorded on the job instead of raised, since nothing
        awaits a background task's result.
        """
        session_id = request.session_id

        def _progress(outcome: SynthesisOutcome, completed: int, total: int) -> None:
            self.jobs.record_progress(session_id, completed, total)

        tally = _Tally()

        async def _operation() -> PipelineResult:
            prepared = await self.prepare(request)
            self.jobs.mark_running(session_id, len(prepared.segments))
            return await self._execute(prepared, request, tally, _progress)

        try:
            result = await self._within_timeout(session_id, _operation(), tally)
        except asyncio.CancelledError:
            self.jobs.fail(session_id, "Job was cancelled")
            raise
        except TTSChunkerError as e:
            self.jobs.fail(session_id, e.message)
            return None
        except Exception as e:
            logger.error(f"Job {session_id} failed unexpectedly: {e}", exc_info=True)
            self.jobs.fail(session_id, f"Unexpected error: {e}")
            return None

        self.jobs.complete(
            session_id,
            result.merged_url,
            result.failed_indices,
            audio=result.merged.data,
            media_type=result.encoding.mime_type,
        )
        return result

    # ------------------------------------------------------------------
    # Program (podcast) assembly
    # ------------------------------------------------------------------

    async def create_program(
        self,
        session_id: str,
        intro_key: str | None = None,
        outro_key: str | None = None,
    ) -> PodcastResponse:
        """Wrap the session's merged audio with intro/outro and publish it."""
        publisher = self._require_publisher()
        intro_key = intro_key or self.intro_key
        outro_key = outro_key or self.outro_key
        if not intro_key or not outro_key:
            raise InputError("Both introKey and outroKey are required")

        content, content_format = await self._load_content(session_id)
        intro, outro = await asyncio.gather(
            self._load_object(intro_key), self._load_object(outro_key)
        )

        program = await self.program_assembler.assemble(
            content,
            intro,
            outro,
            input_format=content_format,
            bumper_format=intro_key.rsplit(".", 1)[-1].lower() if "." in intro_key else "mp3",
            output_format=self.program_format,
        )
        key = program_key(session_id, self.program_format)
        url = await publisher.publish(
            program.data, key, _MEDIA_TYPES[self.program_format], metadata=PROGRAM_METADATA
        )
        logger.info(f"Session {session_id}: program published to {key} ({program.byte_count} bytes)")
        return PodcastResponse(session_id=session_id, url=url, bytes=program.byte_count)

    async def _load_content(self, session_id: str) -> tuple[bytes, str]:
        try:
            audio, media_type = self.jobs.get_audio(session_id)
        except NotFoundError:
            pass
        else:
            if media_type in _DECODE_FORMATS:
                return audio, _DECODE_FORMATS[media_type]
            raise InputError(f"Cannot build a program from {media_type} audio")

        key = merged_key(session_id, AudioEncoding.MP3)
        return await self._load_object(key), "mp3"

    async def _load_object(self, key: str) -> bytes:
        store = self._require_publisher().store
        try:
            return await store.get_bytes(key)
        except Exception as e:
            if _is_missing_key(e):
                raise NotFoundError(f"Audio object not found: {key}") from e
            raise StorageError(f"Could not download {key}: {e}", key=key, attempts=1) from e


def _is_missing_key(exc: BaseException) -> bool:
    if not isinstance(exc, ClientError):
        return False
    code = exc.response.get("Error", {}).get("Code")
    return code in ("NoSuchKey", "404", "NotFound")
