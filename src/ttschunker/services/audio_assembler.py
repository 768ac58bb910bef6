from __future__ import annotations

import asyncio
import logging
import tempfile
from collections.abc import Awaitable, Callable, Sequence
from pathlib import Path

from ttschunker.errors import AssemblyError
from ttschunker.models import AudioEncoding, MergedAudio

logger = logging.getLogger(__name__)

CommandRunner = Callable[[list[str], float], Awaitable[tuple[int, bytes]]]


async def run_command(args: list[str], timeout: float) -> tuple[int, bytes]:
    """Run *args* and return ``(returncode, stderr)``; the process is killed on timeout."""
    try:
        proc = await asyncio.create_subprocess_exec(
            *args,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as e:
        raise AssemblyError(f"Concatenation tool not found: {args[0]}") from e

    try:
        _, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except (asyncio.TimeoutError, asyncio.CancelledError):
        proc.kill()
        await proc.wait()
        raise
    return proc.returncode, stderr or b""


def write_concat_manifest(paths: Sequence[Path], manifest: Path) -> None:
    """Write an ffmpeg concat-demuxer list, one ``file '<path>'`` line per input."""
    lines = []
    for path in paths:
        escaped = str(path.resolve()).replace("'", "'\\''")
        lines.append(f"file '{escaped}'")
    manifest.write_text("\n".join(lines) + "\n", encoding="utf-8")


class AudioAssembler:
    """Join ordered audio buffers of one encoding into a single playable file.

    Raw headerless PCM is joined in memory. Every container format (MP3,
    WAV, Ogg) goes through the ffmpeg concat demuxer with stream copy, so
    per-file headers, Xing/ID3 frames and duration metadata are rewritten
    for the merged file instead of being spliced into the middle of it.
    """

    def __init__(
        self,
        ffmpeg_path: str = "ffmpeg",
        *,
        timeout: float = 300.0,
        temp_dir: str | None = None,
        runner: CommandRunner = run_command,
    ) -> None:
        self.ffmpeg_path = ffmpeg_path
        self.timeout = timeout
        self.temp_dir = temp_dir
        self.runner = runner

    async def assemble(self, buffers: Sequence[bytes], encoding: AudioEncoding) -> MergedAudio:
        if not buffers:
            raise AssemblyError("No audio buffers to assemble")
        if any(not buf for buf in buffers):
            raise AssemblyError("Cannot assemble an empty audio buffer")

        if len(buffers) == 1:
            return MergedAudio.from_bytes(bytes(buffers[0]), segment_count=1)

        if encoding.is_headerless:
            merged = b"".join(buffers)
            logger.info(f"Byte-joined {len(buffers)} {encoding.value} buffers ({len(merged)} bytes)")
            return MergedAudio.from_bytes(merged, segment_count=len(buffers))

        return await self._concat_with_ffmpeg(buffers, encoding)

    async def _concat_with_ffmpeg(
        self, buffers: Sequence[bytes], encoding: AudioEncoding
    ) -> MergedAudio:
        ext = encoding.extension
        with tempfile.TemporaryDirectory(prefix="ttschunker-", dir=self.temp_dir) as tmp:
            tmp_dir = Path(tmp)
            part_paths = []
            for i, buf in enumerate(buffers):
                part = tmp_dir / f"part-{i:05d}.{ext}"
                part.write_bytes(buf)
                part_paths.append(part)

            manifest = tmp_dir / "concat.txt"
            write_concat_manifest(part_paths, manifest)
            output = tmp_dir / f"merged.{ext}"

            args = [
                self.ffmpeg_path,
                "-hide_banner",
                "-loglevel",
                "error",
                "-y",
                "-f",
                "concat",
                "-safe",
                "0",
                "-i",
                str(manifest),
                "-c",
                "copy",
                str(output),
            ]
            logger.info(f"Concatenating {len(buffers)} {encoding.value} segments with ffmpeg")
            try:
                returncode, stderr = await self.runner(args, self.timeout)
            except asyncio.TimeoutError as e:
                raise AssemblyError(f"Audio concatenation timed out after {self.timeout:.0f}s") from e

            if returncode != 0:
                detail = stderr.decode("utf-8", "ignore").strip()[-500:]
                logger.error(f"ffmpeg exited with code {returncode}: {detail}")
                raise AssemblyError(f"ffmpeg exited with code {returncode}: {detail}")
            if not output.exists() or output.stat().st_size == 0:
                raise AssemblyError("Concatenation produced no output")

            data = output.read_bytes()

        logger.info(f"Merged {len(buffers)} segments into {len(data)} bytes")
        return MergedAudio.from_bytes(data, segment_count=len(buffers))
