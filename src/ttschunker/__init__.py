"""
ttschunker – chunked text-to-speech for long documents.

This top-level package exposes the core models: a document is split into
byte-bounded segments, synthesized in parallel and merged back in order.
"""

from .models import (
    AudioEncoding,
    JobStatus,
    TTSRequest,
    TTSResponse,
    VoiceConfig,
)

__all__ = [
    "AudioEncoding",
    "JobStatus",
    "TTSRequest",
    "TTSResponse",
    "VoiceConfig",
]
