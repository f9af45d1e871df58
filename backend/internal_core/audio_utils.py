from __future__ import annotations

import logging
import re
import shutil
import subprocess
import uuid
import wave
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import numpy as np

from .errors import ConversionError

logger = logging.getLogger(__name__)

CANONICAL_SAMPLE_RATE = 16000
CANONICAL_CHANNELS = 1
CANONICAL_SAMPLE_WIDTH = 2
_DEFAULT_UPLOAD_SUFFIX = ".webm"
_SAFE_SUFFIX_RE = re.compile(r"^\.[a-z0-9]{1,8}$")


@dataclass(frozen=True)
class MediaArtifacts:
    original_path: Path
    canonical_path: Path


def _which(cmd: str) -> Optional[str]:
    return shutil.which(cmd)


def _upload_suffix(filename: Optional[str]) -> str:
    suffix = Path(str(filename or "")).suffix.lower()
    if _SAFE_SUFFIX_RE.match(suffix):
        return suffix
    return _DEFAULT_UPLOAD_SUFFIX


def load_wav16k_mono_float32(path: Path) -> np.ndarray:
    with wave.open(str(path), "rb") as wf:
        channels = wf.getnchannels()
        rate = wf.getframerate()
        width = wf.getsampwidth()
        frames = wf.getnframes()
        if channels != CANONICAL_CHANNELS:
            raise ValueError(f"Expected mono WAV, got {channels} channels")
        if rate != CANONICAL_SAMPLE_RATE:
            raise ValueError(f"Expected 16kHz WAV, got {rate}Hz")
        if width != CANONICAL_SAMPLE_WIDTH:
            raise ValueError(f"Expected 16-bit PCM WAV, got sampwidth={width}")
        raw = wf.readframes(frames)
    audio_i16 = np.frombuffer(raw, dtype="<i2")
    return (audio_i16.astype(np.float32) / 32768.0).clip(-1.0, 1.0)


def save_upload_bytes(data: bytes, media_dir: Path, prefix: str, filename: Optional[str] = None) -> Path:
    media_dir.mkdir(parents=True, exist_ok=True)
    out_path = media_dir / f"{prefix}_upload{_upload_suffix(filename)}"
    with open(out_path, "wb") as f:
        f.write(data)
    return out_path


def _is_canonical_wav(path: Path) -> bool:
    if path.suffix.lower() != ".wav":
        return False
    try:
        with wave.open(str(path), "rb") as wf:
            sr = wf.getframerate()
            ch = wf.getnchannels()
            width = wf.getsampwidth()
    except (wave.Error, EOFError, OSError):
        return False
    return (
        int(sr) == CANONICAL_SAMPLE_RATE
        and int(ch) == CANONICAL_CHANNELS
        and int(width) == CANONICAL_SAMPLE_WIDTH
    )


def _transcode_with_ffmpeg(ffmpeg: str, input_path: Path, out_path: Path) -> None:
    cmd = [
        ffmpeg,
        "-y",
        "-i",
        str(input_path),
        "-ac",
        str(CANONICAL_CHANNELS),
        "-ar",
        str(CANONICAL_SAMPLE_RATE),
        "-sample_fmt",
        "s16",
        str(out_path),
    ]
    try:
        subprocess.run(cmd, check=True, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
    except subprocess.CalledProcessError as e:
        stderr = (
            e.stderr.decode("utf-8", "ignore")
            if isinstance(e.stderr, (bytes, bytearray))
            else str(e.stderr)
        )
        raise ConversionError(
            f"Audio conversion failed via ffmpeg: {stderr.strip()[-300:] or 'unknown error'}"
        ) from e
    except OSError as e:
        raise ConversionError(f"ffmpeg could not be started: {e}") from e


def _transcode_with_miniaudio(input_path: Path, out_path: Path) -> None:
    try:
        import miniaudio  # type: ignore
    except ImportError as e:
        raise ConversionError(
            "Audio conversion requires `ffmpeg` or the Python dependency `miniaudio`."
        ) from e

    try:
        decoded = miniaudio.decode_file(
            str(input_path),
            output_format=miniaudio.SampleFormat.SIGNED16,
            nchannels=CANONICAL_CHANNELS,
            sample_rate=CANONICAL_SAMPLE_RATE,
        )
        pcm_bytes = decoded.samples.tobytes()
        with wave.open(str(out_path), "wb") as wf:
            wf.setnchannels(CANONICAL_CHANNELS)
            wf.setsampwidth(CANONICAL_SAMPLE_WIDTH)
            wf.setframerate(CANONICAL_SAMPLE_RATE)
            wf.writeframes(pcm_bytes)
    except Exception as e:
        raise ConversionError(f"Audio conversion failed: {e}") from e


def _confirm_canonical(path: Path) -> None:
    try:
        audio = load_wav16k_mono_float32(path)
    except (ValueError, wave.Error, EOFError, OSError) as e:
        raise ConversionError(f"Canonical audio unreadable: {e}") from e
    if audio.size == 0:
        raise ConversionError("Canonical audio is empty")


def normalize_to_wav16k_mono(input_path: Path, media_dir: Path, prefix: str) -> Path:
    """
    Normalize an uploaded file to 16kHz mono 16-bit WAV.
    Prefers ffmpeg when present; falls back to `miniaudio` decode/convert.
    The input file is never removed here.
    """
    if not input_path.exists():
        raise ConversionError(f"Audio file not found: {input_path}")
    media_dir.mkdir(parents=True, exist_ok=True)

    if _is_canonical_wav(input_path):
        _confirm_canonical(input_path)
        return input_path

    out_path = media_dir / f"{prefix}_canonical_{uuid.uuid4().hex[:8]}.wav"
    ffmpeg = _which("ffmpeg")
    try:
        if ffmpeg:
            _transcode_with_ffmpeg(ffmpeg, input_path, out_path)
        else:
            _transcode_with_miniaudio(input_path, out_path)
        _confirm_canonical(out_path)
    except ConversionError:
        out_path.unlink(missing_ok=True)
        raise
    return out_path


class MediaNormalizer:
    def __init__(self, media_dir: Path):
        self._media_dir = media_dir

    @property
    def media_dir(self) -> Path:
        return self._media_dir

    def store_original(self, data: bytes, filename: Optional[str] = None) -> Path:
        prefix = uuid.uuid4().hex[:12]
        return save_upload_bytes(data, self._media_dir, prefix, filename)

    def normalize(self, original_path: Path) -> MediaArtifacts:
        prefix = original_path.stem.split("_upload")[0]
        canonical = normalize_to_wav16k_mono(original_path, self._media_dir, prefix)
        logger.info(
            "audio_normalized original=%s canonical=%s", original_path.name, canonical.name
        )
        return MediaArtifacts(original_path=original_path, canonical_path=canonical)
