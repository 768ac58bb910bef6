"""FastAPI dependency providers; tests replace them via ``app.dependency_overrides``."""

import logging
from functools import lru_cache

from fastapi import Depends

from ttschunker.infrastructure import ObjectStore, ObjectStoreTextSource, create_provider
from ttschunker.services.audio_assembler import AudioAssembler
from ttschunker.services.job_store import JobStore
from ttschunker.services.markup import PlainTextEnricher, SsmlEnricher
from ttschunker.services.pipeline import TTSPipeline
from ttschunker.services.program_assembler import ProgramAssembler
from ttschunker.services.publisher import Publisher
from ttschunker.services.retry import RetryPolicy, is_retryable_provider_error, is_transient_storage_error
from ttschunker.services.synthesis_client import SynthesisClient

from .settings import Settings, get_settings

logger = logging.getLogger(__name__)


def _object_store(settings: Settings, bucket: str) -> ObjectStore:
    return ObjectStore(
        bucket=bucket,
        endpoint_url=settings.r2_endpoint,
        access_key_id=settings.r2_access_key_id,
        secret_access_key=settings.r2_secret_access_key,
        public_base_url=settings.r2_public_base_url,
        region=settings.r2_region,
        request_timeout=settings.upload_timeout_seconds,
    )


def build_pipeline(settings: Settings, job_store: JobStore) -> TTSPipeline:
    if settings.tts_provider == "google":
        provider = create_provider(
            "google",
            credentials_json=settings.google_application_credentials_json,
            location=settings.google_tts_location,
        )
    else:
        provider = create_provider(
            "openai", api_key=settings.openai_api_key, model=settings.openai_tts_model
        )

    enricher = SsmlEnricher(settings.ssml_break_ms) if settings.ssml_enabled else PlainTextEnricher()
    client = SynthesisClient(
        provider,
        timeout=settings.synthesis_timeout_seconds,
        enricher=enricher,
        max_workers=settings.max_concurrency,
    )

    publisher = None
    text_source = None
    if settings.storage_configured:
        audio_store = _object_store(settings, settings.r2_audio_bucket)
        publisher = Publisher(
            audio_store,
            RetryPolicy(
                max_attempts=settings.upload_max_attempts,
                base_delay=settings.upload_base_delay_seconds,
                max_delay=settings.upload_max_delay_seconds,
                is_retryable=is_transient_storage_error,
            ),
        )
        text_bucket = settings.r2_text_bucket or settings.r2_audio_bucket
        text_source = ObjectStoreTextSource(
            _object_store(settings, text_bucket), prefix=settings.text_key_prefix
        )
    else:
        logger.warning("Object storage not configured; only returnBase64 requests will succeed")

    synthesis_retry = None
    if settings.synthesis_max_attempts > 1:
        synthesis_retry = RetryPolicy(
            max_attempts=settings.synthesis_max_attempts,
            is_retryable=is_retryable_provider_error,
        )

    return TTSPipeline(
        client,
        AudioAssembler(settings.ffmpeg_path, timeout=settings.assembly_timeout_seconds),
        publisher=publisher,
        text_source=text_source,
        program_assembler=ProgramAssembler(
            min_intro_seconds=settings.min_intro_seconds,
            min_outro_seconds=settings.min_outro_seconds,
        ),
        job_store=job_store,
        defaults=settings.default_voice(),
        max_segment_bytes=settings.max_segment_bytes,
        default_concurrency=settings.default_concurrency,
        max_concurrency=settings.max_concurrency,
        operation_timeout=settings.operation_timeout_seconds,
        synthesis_retry=synthesis_retry,
        intro_key=settings.intro_key,
        outro_key=settings.outro_key,
        upload_concurrency=settings.upload_concurrency,
    )


@lru_cache
def get_job_store() -> JobStore:  # pragma: no cover
    return JobStore(max_finished=get_settings().max_finished_jobs)


@lru_cache
def _cached_pipeline() -> TTSPipeline:  # pragma: no cover
    return build_pipeline(get_settings(), get_job_store())


def get_pipeline() -> TTSPipeline:
    return _cached_pipeline()


def get_jobs(pipeline: TTSPipeline = Depends(get_pipeline)) -> JobStore:
    return pipeline.jobs
