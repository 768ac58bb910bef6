from __future__ import annotations

from abc import ABC, abstractmethod

from ttschunker.models import AudioEncoding, VoiceConfig


class SynthesisProvider(ABC):
    """Abstract base class for text-to-speech providers.

    Implementations are shared across concurrent calls and must not keep
    per-request mutable state.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the (unique) short-name for this provider (e.g. 'google')."""

    @property
    def supports_ssml(self) -> bool:
        return False

    def supports_encoding(self, encoding: AudioEncoding) -> bool:
        return True

    @abstractmethod
    def synthesize(
        self,
        *,  # force keyword-only args
        text: str,
        config: VoiceConfig,
        is_ssml: bool = False,
        timeout: float | None = None,
    ) -> bytes:
        """Blocking call returning the audio bytes for *text* in ``config.encoding``."""
