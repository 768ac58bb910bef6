import logging
from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

from ttschunker.models import VoiceConfig


class Settings(BaseSettings):
    """Application settings loaded from environment variables or `.env` file."""

    env: Literal["dev", "docker", "production"] = Field(
        default="dev",
        description="Runtime environment: dev (local), docker (docker-compose), or production",
    )
    log_level: str = Field(default="INFO", description="Logging level")
    expose_error_details: bool | None = Field(
        default=None,
        description="Include error messages in responses (defaults to off in production)",
        validate_default=True,
    )

    # Synthesis provider
    tts_provider: Literal["google", "openai"] = "google"
    google_application_credentials_json: str | None = None
    google_tts_location: str | None = None
    openai_api_key: str | None = None
    openai_tts_model: str = "tts-1-hd"

    # Default voice
    default_language_code: str = "en-GB"
    default_voice_name: str = "en-GB-Wavenet-D"
    default_audio_encoding: str = "MP3"
    default_speaking_rate: float = 1.25
    default_pitch: float = -2.0
    default_volume_gain_db: float = 1.5
    default_effects_profile: str | None = "studio"

    # Segmentation and markup
    ssml_enabled: bool = True
    ssml_break_ms: int = Field(default=360, ge=0)
    max_segment_bytes: int = Field(default=3400, ge=1)

    # Concurrency and timeouts
    default_concurrency: int = Field(default=3, ge=1)
    max_concurrency: int = Field(default=16, ge=1)
    synthesis_timeout_seconds: float = 45.0
    synthesis_max_attempts: int = Field(default=1, ge=1)
    operation_timeout_seconds: float = 600.0

    # Background jobs
    max_finished_jobs: int = Field(default=100, ge=1)

    # Uploads
    upload_max_attempts: int = Field(default=3, ge=1)
    upload_base_delay_seconds: float = 1.0
    upload_max_delay_seconds: float = 10.0
    upload_timeout_seconds: float = 90.0
    upload_concurrency: int = Field(default=3, ge=1)

    # Cloudflare R2 (any S3-compatible endpoint works)
    r2_endpoint: str | None = None
    r2_access_key_id: str | None = None
    r2_secret_access_key: str | None = None
    r2_region: str = "auto"
    r2_text_bucket: str | None = None
    r2_audio_bucket: str | None = None
    r2_public_base_url: str | None = None
    text_key_prefix: str = ""

    # Program (podcast) assembly
    intro_key: str | None = None
    outro_key: str | None = None
    min_intro_seconds: float = 16.0
    min_outro_seconds: float = 15.0

    # Audio tooling
    ffmpeg_path: str = "ffmpeg"
    assembly_timeout_seconds: float = 300.0

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "populate_by_name": True,
        "extra": "ignore",
    }

    @field_validator("expose_error_details", mode="after")
    @classmethod
    def default_error_details(cls, v: bool | None, values) -> bool:
        """Expose details everywhere except production unless set explicitly."""
        if v is None:
            return values.data.get("env", "dev") != "production"
        return v

    @property
    def storage_configured(self) -> bool:
        return bool(
            self.r2_endpoint
            and self.r2_access_key_id
            and self.r2_secret_access_key
            and self.r2_audio_bucket
        )

    def default_voice(self) -> VoiceConfig:
        return VoiceConfig(
            language_code=self.default_language_code,
            voice_name=self.default_voice_name,
            encoding=self.default_audio_encoding,
            speaking_rate=self.default_speaking_rate,
            pitch=self.default_pitch,
            volume_gain_db=self.default_volume_gain_db,
            effects_profile_id=(self.default_effects_profile,) if self.default_effects_profile else (),
        )


@lru_cache
def get_settings() -> Settings:  # pragma: no cover
    """Return a cached instance of Settings."""
    s = Settings()
    logging.basicConfig(level=s.log_level)
    logger = logging.getLogger(__name__)

    logger.info("=" * 60)
    logger.info(f"Starting ttschunker in {s.env.upper()} environment")
    logger.info("=" * 60)
    logger.info(f"TTS Provider: {s.tts_provider}")
    logger.info(f"Default voice: {s.default_voice_name} ({s.default_audio_encoding})")
    logger.info(f"Max segment bytes: {s.max_segment_bytes} | SSML: {s.ssml_enabled}")
    logger.info(f"Concurrency: default {s.default_concurrency}, max {s.max_concurrency}")
    logger.info(f"R2 endpoint: {s.r2_endpoint} | Audio bucket: {s.r2_audio_bucket}")
    logger.info("=" * 60)

    if s.env == "production":
        if s.tts_provider == "google" and not s.google_application_credentials_json:
            logger.warning("GOOGLE_APPLICATION_CREDENTIALS_JSON not set; relying on ambient credentials")
        if s.tts_provider == "openai" and not s.openai_api_key:
            logger.warning("OPENAI_API_KEY not set in production!")
        if not s.storage_configured:
            logger.warning("R2 credentials not set in production - uploads will fail!")

    return s
