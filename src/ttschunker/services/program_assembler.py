"""Wrap merged content audio with intro and outro bumpers."""

from __future__ import annotations

import asyncio
import io
import logging

from pydub import AudioSegment

from ttschunker.errors import AssemblyError, InputError
from ttschunker.models import MergedAudio

logger = logging.getLogger(__name__)

INTRO_FADE_IN_MS = 2000
INTRO_FADE_OUT_MS = 2000
CONTENT_FADE_IN_MS = 1000
CONTENT_FADE_OUT_MS = 3000
OUTRO_FADE_IN_MS = 2000

DEFAULT_MIN_INTRO_SECONDS = 16.0
DEFAULT_MIN_OUTRO_SECONDS = 15.0
OUTPUT_BITRATE = "192k"


def _fade(audio: AudioSegment, fade_in_ms: int = 0, fade_out_ms: int = 0) -> AudioSegment:
    """Apply fades no longer than half the clip each.

    pydub pads a clip that is shorter than its fade instead of fading it.
    """
    limit = len(audio) // 2
    fade_in_ms = min(fade_in_ms, limit)
    fade_out_ms = min(fade_out_ms, limit)
    if fade_in_ms:
        audio = audio.fade_in(fade_in_ms)
    if fade_out_ms:
        audio = audio.fade_out(fade_out_ms)
    return audio


def _decode(data: bytes, audio_format: str, label: str) -> AudioSegment:
    if not data:
        raise InputError(f"{label} audio is empty")
    try:
        return AudioSegment.from_file(io.BytesIO(data), format=audio_format)
    except Exception as e:
        raise AssemblyError(f"Could not decode {label} audio as {audio_format}: {e}") from e


class ProgramAssembler:
    """Joins intro + content + outro into a finished program with fades."""

    def __init__(
        self,
        min_intro_seconds: float = DEFAULT_MIN_INTRO_SECONDS,
        min_outro_seconds: float = DEFAULT_MIN_OUTRO_SECONDS,
        bitrate: str = OUTPUT_BITRATE,
    ) -> None:
        self.min_intro_seconds = min_intro_seconds
        self.min_outro_seconds = min_outro_seconds
        self.bitrate = bitrate

    async def assemble(
        self,
        content: bytes,
        intro: bytes,
        outro: bytes,
        *,
        input_format: str = "mp3",
        bumper_format: str = "mp3",
        output_format: str = "mp3",
    ) -> MergedAudio:
        return await asyncio.to_thread(
            self._assemble_sync, content, intro, outro, input_format, bumper_format, output_format
        )

    def _assemble_sync(
        self,
        content: bytes,
        intro: bytes,
        outro: bytes,
        input_format: str,
        bumper_format: str,
        output_format: str,
    ) -> MergedAudio:
        intro_audio = _decode(intro, bumper_format, "intro")
        outro_audio = _decode(outro, bumper_format, "outro")

        intro_seconds = len(intro_audio) / 1000
        outro_seconds = len(outro_audio) / 1000
        if intro_seconds < self.min_intro_seconds:
            raise InputError(
                f"Intro is {intro_seconds:.1f}s; at least {self.min_intro_seconds:.0f}s required"
            )
        if outro_seconds < self.min_outro_seconds:
            raise InputError(
                f"Outro is {outro_seconds:.1f}s; at least {self.min_outro_seconds:.0f}s required"
            )

        content_audio = _decode(content, input_format, "content")

        # Bumpers and content may differ in rate/channels; match the content
        intro_audio = intro_audio.set_frame_rate(content_audio.frame_rate).set_channels(
            content_audio.channels
        )
        outro_audio = outro_audio.set_frame_rate(content_audio.frame_rate).set_channels(
            content_audio.channels
        )

        program = (
            _fade(intro_audio, INTRO_FADE_IN_MS, INTRO_FADE_OUT_MS)
            + _fade(content_audio, CONTENT_FADE_IN_MS, CONTENT_FADE_OUT_MS)
            + _fade(outro_audio, OUTRO_FADE_IN_MS)
        )
        logger.info(
            f"Program assembled: intro {intro_seconds:.1f}s, content "
            f"{len(content_audio) / 1000:.1f}s, outro {outro_seconds:.1f}s"
        )

        buffer = io.BytesIO()
        export_kwargs = {"format": output_format}
        if output_format == "mp3":
            export_kwargs["bitrate"] = self.bitrate
        try:
            program.export(buffer, **export_kwargs)
        except Exception as e:
            raise AssemblyError(f"Could not export program as {output_format}: {e}") from e

        return MergedAudio.from_bytes(buffer.getvalue(), segment_count=3)
