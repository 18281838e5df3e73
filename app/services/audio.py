"""Audio intake: validate an uploaded clip and decode it with ffmpeg.

The clip is written to a uniquely named temp file, handed to ffmpeg, and
read back from stdout as mono 16 kHz float32 PCM. The temp file is removed
on every exit path.
"""

import asyncio
import logging
import re
import secrets
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

import numpy as np

from app import config
from app.errors import InvalidInput, Timeout, TranscodeError

logger = logging.getLogger(__name__)

SAMPLE_RATE = 16000
BYTES_PER_SAMPLE = 4
DEFAULT_EXTENSION = ".webm"

_EXTENSION_RE = re.compile(r"[^a-z0-9]")


@dataclass
class DecodedAudio:
    samples: np.ndarray
    sample_rate: int = SAMPLE_RATE

    @property
    def sample_count(self) -> int:
        return int(self.samples.shape[0])

    @property
    def duration_seconds(self) -> float:
        return self.sample_count / self.sample_rate


def normalize_extension(extension: str | None) -> str:
    """Reduce a declared extension or filename to a safe ``.ext`` suffix."""
    if not extension:
        return DEFAULT_EXTENSION
    token = extension.rsplit(".", 1)[-1].lower()
    token = _EXTENSION_RE.sub("", token)[:8]
    return f".{token}" if token else DEFAULT_EXTENSION


_MIME_EXTENSIONS = {
    "audio/webm": ".webm",
    "audio/ogg": ".ogg",
    "audio/mpeg": ".mp3",
    "audio/mp4": ".m4a",
    "audio/x-m4a": ".m4a",
    "audio/wav": ".wav",
    "audio/x-wav": ".wav",
    "audio/3gpp": ".3gp",
}


def extension_for_upload(filename: str | None, content_type: str | None) -> str:
    """Prefer the upload's filename suffix, then its MIME type."""
    if filename and "." in filename:
        return normalize_extension(filename)
    if content_type:
        mime = content_type.split(";", 1)[0].strip().lower()
        if mime in _MIME_EXTENSIONS:
            return _MIME_EXTENSIONS[mime]
    return DEFAULT_EXTENSION


def validate_audio(data: bytes | None) -> bytes:
    if not data:
        raise InvalidInput("No audio file provided")
    if len(data) > config.AUDIO_MAX_BYTES:
        raise InvalidInput(
            f"Audio file too large ({len(data)} bytes, limit {config.AUDIO_MAX_BYTES})"
        )
    return data


def temp_audio_path(extension: str) -> Path:
    """Collision-resistant temp path: millisecond timestamp plus random suffix."""
    name = f"asha-audio-{int(time.time() * 1000)}-{secrets.token_hex(6)}{extension}"
    return Path(config.AUDIO_TMP_DIR) / name


@contextmanager
def scoped_temp_audio(data: bytes, extension: str) -> Iterator[Path]:
    path = temp_audio_path(extension)
    try:
        path.write_bytes(data)
        yield path
    finally:
        path.unlink(missing_ok=True)
        logger.debug("Removed temp audio %s", path.name)


def pcm_from_bytes(raw: bytes) -> np.ndarray:
    """Reinterpret little-endian float32 bytes; a trailing partial sample is dropped."""
    usable = len(raw) - (len(raw) % BYTES_PER_SAMPLE)
    return np.frombuffer(raw[:usable], dtype="<f4")


def ffmpeg_command(source: Path) -> list[str]:
    return [
        config.FFMPEG_BINARY,
        "-nostdin",
        "-hide_banner",
        "-loglevel", "error",
        "-i", str(source),
        "-ar", str(SAMPLE_RATE),
        "-ac", "1",
        "-f", "f32le",
        "-acodec", "pcm_f32le",
        "pipe:1",
    ]


async def _run_transcoder(source: Path, timeout: float) -> bytes:
    try:
        proc = await asyncio.create_subprocess_exec(
            *ffmpeg_command(source),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        raise TranscodeError(f"Could not launch {config.FFMPEG_BINARY}: {e}") from e

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        raise Timeout(f"Audio transcoding exceeded {timeout:.0f}s") from None

    if proc.returncode != 0:
        detail = (stderr or b"").decode("utf-8", errors="replace").strip()[-300:]
        raise TranscodeError(f"ffmpeg exited with code {proc.returncode}: {detail}")
    return stdout


async def decode_audio(data: bytes, extension: str | None = None, timeout: float | None = None) -> DecodedAudio:
    """Decode an uploaded clip into mono 16 kHz float32 PCM."""
    validate_audio(data)
    suffix = normalize_extension(extension)
    timeout = timeout or config.TRANSCODE_TIMEOUT_SECONDS

    with scoped_temp_audio(data, suffix) as source:
        logger.info("Decoding %d bytes of %s audio", len(data), suffix)
        raw = await _run_transcoder(source, timeout)

    audio = DecodedAudio(samples=pcm_from_bytes(raw))
    logger.info("Decoded %d samples (%.2fs)", audio.sample_count, audio.duration_seconds)
    return audio
