from __future__ import annotations

import os

from openai import OpenAI

from ttschunker.infrastructure.tts.base import SynthesisProvider
from ttschunker.models import AudioEncoding, VoiceConfig
from ttschunker.services.markup import strip_markup

# OpenAI response formats for the encodings it can produce
_RESPONSE_FORMATS = {
    AudioEncoding.MP3: "mp3",
    AudioEncoding.LINEAR16: "wav",
    AudioEncoding.OGG_OPUS: "opus",
    AudioEncoding.PCM: "pcm",
}


class OpenAIProvider(SynthesisProvider):
    """TTS provider for OpenAI API (v1.0+).

    ``config.voice_name`` must be an OpenAI voice id (alloy, echo, fable, onyx,
    nova, shimmer). SSML is not supported, so markup is stripped first.
    """

    name: str = "openai"

    def __init__(self, api_key: str | None = None, model: str = "tts-1-hd") -> None:
        key = api_key or os.getenv("OPENAI_API_KEY")
        if not key:
            raise ValueError("OpenAI API key not found. Set OPENAI_API_KEY or pass api_key.")
        self.client = OpenAI(api_key=key)
        self.model = model

    def supports_encoding(self, encoding: AudioEncoding) -> bool:
        return encoding in _RESPONSE_FORMATS

    def synthesize(
        self,
        *,
        text: str,
        config: VoiceConfig,
        is_ssml: bool = False,
        timeout: float | None = None,
    ) -> bytes:
        if is_ssml:
            text = strip_markup(text)

        response = self.client.audio.speech.create(
            model=self.model,
            voice=config.voice_name,  # type: ignore[arg-type]
            input=text,
            response_format=_RESPONSE_FORMATS[config.encoding],  # type: ignore[arg-type]
            speed=min(max(config.speaking_rate, 0.25), 4.0),
            timeout=timeout,
        )
        return response.content
