from __future__ import annotations

import json
import logging

from google.cloud import texttospeech
from google.oauth2 import service_account

from ttschunker.infrastructure.tts.base import SynthesisProvider
from ttschunker.models import VoiceConfig

logger = logging.getLogger(__name__)


class GoogleTTSProvider(SynthesisProvider):
    """Google Cloud Text-to-Speech.

    Credentials come from an inline service-account JSON string when given,
    otherwise from Application Default Credentials.
    """

    name: str = "google"

    def __init__(
        self,
        credentials_json: str | None = None,
        location: str | None = None,
        client: texttospeech.TextToSpeechClient | None = None,
    ) -> None:
        if client is None:
            kwargs = {}
            if credentials_json:
                info = json.loads(credentials_json)
                kwargs["credentials"] = service_account.Credentials.from_service_account_info(info)
            if location:
                kwargs["client_options"] = {
                    "api_endpoint": f"{location}-texttospeech.googleapis.com"
                }
            client = texttospeech.TextToSpeechClient(**kwargs)
        self.client = client

    @property
    def supports_ssml(self) -> bool:
        return True

    def synthesize(
        self,
        *,
        text: str,
        config: VoiceConfig,
        is_ssml: bool = False,
        timeout: float | None = None,
    ) -> bytes:
        synthesis_input = (
            texttospeech.SynthesisInput(ssml=text)
            if is_ssml
            else texttospeech.SynthesisInput(text=text)
        )
        voice = texttospeech.VoiceSelectionParams(
            language_code=config.language_code,
            name=config.voice_name,
        )
        audio_config = texttospeech.AudioConfig(
            audio_encoding=texttospeech.AudioEncoding[config.encoding.value],
            speaking_rate=config.speaking_rate,
            pitch=config.pitch,
            volume_gain_db=config.volume_gain_db,
            effects_profile_id=list(config.effects_profile_id),
        )
        if config.sample_rate_hertz:
            audio_config.sample_rate_hertz = config.sample_rate_hertz

        response = self.client.synthesize_speech(
            input=synthesis_input,
            voice=voice,
            audio_config=audio_config,
            timeout=timeout,
        )
        return response.audio_content
