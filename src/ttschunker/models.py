from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ttschunker.errors import ErrorKind, InputError

# =============================================================================
# Audio encodings
# =============================================================================


class AudioEncoding(str, Enum):
    """Encodings the synthesis providers can return."""

    MP3 = "MP3"
    LINEAR16 = "LINEAR16"
    OGG_OPUS = "OGG_OPUS"
    MULAW = "MULAW"
    ALAW = "ALAW"
    PCM = "PCM"  # raw little-endian samples, no header

    @property
    def extension(self) -> str:
        return _EXTENSIONS[self]

    @property
    def mime_type(self) -> str:
        return _MIME_TYPES[self]

    @property
    def is_headerless(self) -> bool:
        """True when buffers can be joined byte-for-byte without a container tool."""
        return self is AudioEncoding.PCM


_EXTENSIONS = {
    AudioEncoding.MP3: "mp3",
    AudioEncoding.LINEAR16: "wav",
    AudioEncoding.OGG_OPUS: "ogg",
    AudioEncoding.MULAW: "wav",
    AudioEncoding.ALAW: "wav",
    AudioEncoding.PCM: "pcm",
}

_MIME_TYPES = {
    AudioEncoding.MP3: "audio/mpeg",
    AudioEncoding.LINEAR16: "audio/wav",
    AudioEncoding.OGG_OPUS: "audio/ogg",
    AudioEncoding.MULAW: "audio/wav",
    AudioEncoding.ALAW: "audio/wav",
    AudioEncoding.PCM: "audio/L16",
}

VALID_SAMPLE_RATES = (8000, 16000, 22050, 24000, 32000, 44100, 48000)


# =============================================================================
# Voice configuration
# =============================================================================


class VoiceConfig(BaseModel):
    """Voice and audio settings applied to every segment of a request."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    language_code: str = Field("en-GB", alias="languageCode", min_length=2)
    voice_name: str = Field("en-GB-Wavenet-D", alias="voiceName", min_length=1)
    encoding: AudioEncoding = Field(AudioEncoding.MP3, alias="audioEncoding")
    speaking_rate: float = Field(1.0, alias="speakingRate", ge=0.25, le=4.0)
    pitch: float = Field(0.0, ge=-20.0, le=20.0)
    volume_gain_db: float = Field(0.0, alias="volumeGainDb", ge=-96.0, le=16.0)
    sample_rate_hertz: int | None = Field(None, alias="sampleRateHertz")
    effects_profile_id: tuple[str, ...] = Field((), alias="effectsProfileId")

    @field_validator("encoding", mode="before")
    @classmethod
    def _upper_encoding(cls, v: Any) -> Any:
        return v.upper() if isinstance(v, str) else v

    @field_validator("sample_rate_hertz")
    @classmethod
    def _check_sample_rate(cls, v: int | None) -> int | None:
        if v is not None and v not in VALID_SAMPLE_RATES:
            allowed = ", ".join(str(rate) for rate in VALID_SAMPLE_RATES)
            raise ValueError(f"Invalid sample rate. Must be one of: {allowed}")
        return v

    @classmethod
    def from_request(
        cls,
        voice: dict[str, Any] | None,
        audio_config: dict[str, Any] | None,
        defaults: VoiceConfig | None = None,
    ) -> VoiceConfig:
        """Merge Google-style ``voice``/``audioConfig`` objects over *defaults*.

        Raises InputError listing every invalid field, so a bad request fails
        before any synthesis call is made.
        """
        merged: dict[str, Any] = (defaults or cls()).model_dump(by_alias=True)
        voice = voice or {}
        if "languageCode" in voice:
            merged["languageCode"] = voice["languageCode"]
        if "name" in voice:
            merged["voiceName"] = voice["name"]
        for key, value in (audio_config or {}).items():
            if key in merged:
                merged[key] = value
        try:
            return cls.model_validate(merged)
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
            )
            raise InputError(f"Invalid audio configuration: {problems}") from e


# =============================================================================
# Pipeline work items and outcomes
# =============================================================================


@dataclass(frozen=True)
class Segment:
    """One bounded unit of text; ``byte_size`` is the size of its wire payload."""

    index: int
    text: str
    byte_size: int


@dataclass(frozen=True)
class SynthesisTask:
    segment: Segment
    config: VoiceConfig

    @property
    def index(self) -> int:
        return self.segment.index


@dataclass(frozen=True)
class SynthesisSuccess:
    index: int
    audio: bytes
    byte_count: int

    ok = True


@dataclass(frozen=True)
class SynthesisFailure:
    index: int
    error_kind: ErrorKind
    message: str

    ok = False


SynthesisOutcome = Union[SynthesisSuccess, SynthesisFailure]


@dataclass
class CollectedResults:
    """Outcomes regrouped by index: what can be assembled and what is missing."""

    succeeded: list[tuple[int, bytes]]
    failed: list[int]
    total_bytes: int
    total: int
    failures: dict[int, SynthesisFailure] = field(default_factory=dict)

    @property
    def succeeded_count(self) -> int:
        return len(self.succeeded)

    @property
    def all_failed(self) -> bool:
        return not self.succeeded

    @property
    def is_partial(self) -> bool:
        return bool(self.succeeded) and bool(self.failed)


@dataclass
class MergedAudio:
    data: bytes
    byte_count: int
    segment_count: int

    @classmethod
    def from_bytes(cls, data: bytes, segment_count: int) -> MergedAudio:
        return cls(data=data, byte_count=len(data), segment_count=segment_count)


# =============================================================================
# Job state
# =============================================================================


class JobStatus(str, Enum):
    """Asynchronous job lifecycle."""

    QUEUED = "queued"
    RUNNING = "running"
    DONE = "done"
    ERROR = "error"


class JobSnapshot(BaseModel):
    """Immutable view of a job; the store swaps snapshots instead of mutating."""

    model_config = ConfigDict(frozen=True)

    session_id: str
    status: JobStatus = JobStatus.QUEUED
    progress: float = Field(0.0, ge=0.0, le=100.0)
    completed: int = 0
    total: int = 0
    failed_indices: tuple[int, ...] = ()
    result_ref: str | None = None
    error_message: str | None = None
    created_at: datetime
    updated_at: datetime

    @property
    def is_active(self) -> bool:
        return self.status in (JobStatus.QUEUED, JobStatus.RUNNING)


# =============================================================================
# HTTP request / response models
# =============================================================================


class TTSRequest(BaseModel):
    """Body of ``POST /tts`` and ``POST /tts/chunked``."""

    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(..., alias="sessionId", min_length=1)
    text: str | None = Field(None, description="Inline text; otherwise read from storage")
    voice: dict[str, Any] | None = None
    audio_config: dict[str, Any] | None = Field(None, alias="audioConfig")
    concurrency: int | None = Field(None, ge=1)
    return_base64: bool = Field(False, alias="returnBase64")
    abort_on_failure: bool = Field(False, alias="abortOnFailure")

    @field_validator("session_id")
    @classmethod
    def _clean_session_id(cls, v: str) -> str:
        v = v.strip().strip("/")
        if not v:
            raise ValueError("sessionId is required")
        if ".." in v or "/" in v:
            raise ValueError("sessionId must be a single path component")
        return v


class ChunkResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    index: int
    url: str | None = None
    base64: str | None = None
    bytes_approx: int = Field(..., alias="bytesApprox")


class TTSResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(..., alias="sessionId")
    count: int
    chunks: list[ChunkResult]
    summary_bytes_approx: int = Field(..., alias="summaryBytesApprox")
    merged_url: str | None = Field(None, alias="mergedUrl")
    failed_indices: list[int] = Field(default_factory=list, alias="failedIndices")
    warnings: list[str] = Field(default_factory=list)


class JobAcceptedResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(..., alias="sessionId")
    status_url: str = Field(..., alias="statusUrl")
    result_url: str = Field(..., alias="resultUrl")


class JobStatusResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(..., alias="sessionId")
    status: JobStatus
    progress: float
    failed_indices: list[int] = Field(default_factory=list, alias="failedIndices")
    error: str | None = None


class PodcastRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    intro_key: str | None = Field(None, alias="introKey")
    outro_key: str | None = Field(None, alias="outroKey")


class PodcastResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(..., alias="sessionId")
    url: str
    bytes: int
