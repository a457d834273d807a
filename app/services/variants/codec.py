from __future__ import annotations

"""
Codec tool interface (ffprobe / ffmpeg).

`CodecTool` is what the variant generator needs from a transcoder: probe a
file, pull one frame, transcode video/audio, decode mono PCM. The ffmpeg
implementation shells out with `subprocess.run` inside worker threads; a
non-zero exit raises `CodecError` carrying the tail of stderr.

`waveform_peaks` turns decoded 16-bit PCM into normalized peak buckets.
"""

import array
import asyncio
import json
import logging
import subprocess
import sys
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Sequence

logger = logging.getLogger(__name__)


class CodecError(RuntimeError):
    """The codec tool could not read or produce a file."""


@dataclass
class MediaProbe:
    width: Optional[int] = None
    height: Optional[int] = None
    duration_seconds: Optional[float] = None
    bitrate_bps: Optional[int] = None
    sample_rate: Optional[int] = None
    channels: Optional[int] = None
    has_video: bool = False
    has_audio: bool = False


class CodecTool(Protocol):
    async def probe(self, path: str) -> MediaProbe: ...
    async def extract_frame(self, src: str, dst: str, *, at_seconds: float) -> None: ...
    async def transcode_video(self, src: str, dst: str, *, height: int, bitrate_kbps: int) -> None: ...
    async def transcode_audio(self, src: str, dst: str, *, codec: str, bitrate_kbps: int) -> None: ...
    async def pcm_samples(self, src: str, *, sample_rate: int = 8000) -> bytes: ...


def _int(v: Any) -> Optional[int]:
    try:
        return int(v) if v not in (None, "", "N/A") else None
    except (TypeError, ValueError):
        return None


def _float(v: Any) -> Optional[float]:
    try:
        return float(v) if v not in (None, "", "N/A") else None
    except (TypeError, ValueError):
        return None


def parse_probe(data: Dict[str, Any]) -> MediaProbe:
    """Map `ffprobe -print_format json -show_format -show_streams` output."""
    fmt = data.get("format") or {}
    streams = data.get("streams") or []
    video = next((s for s in streams if s.get("codec_type") == "video"), None)
    audio = next((s for s in streams if s.get("codec_type") == "audio"), None)

    out = MediaProbe(
        duration_seconds=_float(fmt.get("duration")),
        bitrate_bps=_int(fmt.get("bit_rate")),
        has_video=video is not None,
        has_audio=audio is not None,
    )
    if video is not None:
        out.width = _int(video.get("width"))
        out.height = _int(video.get("height"))
        out.duration_seconds = out.duration_seconds or _float(video.get("duration"))
    if audio is not None:
        out.sample_rate = _int(audio.get("sample_rate"))
        out.channels = _int(audio.get("channels"))
        # Stream bitrate is the audio payload; format bitrate includes container overhead.
        out.bitrate_bps = _int(audio.get("bit_rate")) or out.bitrate_bps
        out.duration_seconds = out.duration_seconds or _float(audio.get("duration"))
    return out


class FfmpegCodecTool:
    def __init__(self, *, ffmpeg: str = "ffmpeg", ffprobe: str = "ffprobe") -> None:
        self.ffmpeg = ffmpeg
        self.ffprobe = ffprobe

    async def _run(self, cmd: Sequence[str], *, text: bool = True) -> subprocess.CompletedProcess:
        try:
            result = await asyncio.to_thread(subprocess.run, list(cmd), capture_output=True, text=text, check=False)
        except FileNotFoundError as e:
            raise CodecError(f"{cmd[0]} not found") from e
        if result.returncode != 0:
            stderr = result.stderr if text else result.stderr.decode("utf-8", "replace")
            tail = (stderr or "").strip().splitlines()[-3:]
            raise CodecError(f"{cmd[0]} exited {result.returncode}: {' | '.join(tail)}")
        return result

    async def probe(self, path: str) -> MediaProbe:
        result = await self._run([
            self.ffprobe, "-v", "quiet", "-print_format", "json", "-show_format", "-show_streams", path,
        ])
        try:
            data = json.loads(result.stdout or "{}")
        except json.JSONDecodeError as e:
            raise CodecError(f"unreadable ffprobe output: {e}") from e
        if not data:
            raise CodecError("ffprobe returned no data")
        return parse_probe(data)

    async def extract_frame(self, src: str, dst: str, *, at_seconds: float) -> None:
        await self._run([
            self.ffmpeg, "-y", "-ss", f"{max(0.0, at_seconds):.3f}", "-i", src,
            "-frames:v", "1", "-q:v", "2", dst,
        ])

    async def transcode_video(self, src: str, dst: str, *, height: int, bitrate_kbps: int) -> None:
        await self._run([
            self.ffmpeg, "-y", "-i", src,
            "-vf", f"scale=-2:{height}",
            "-c:v", "libx264", "-preset", "fast", "-crf", "22",
            "-maxrate", f"{bitrate_kbps}k", "-bufsize", f"{bitrate_kbps * 2}k",
            "-c:a", "aac", "-b:a", "128k",
            "-movflags", "+faststart",
            dst,
        ])

    async def transcode_audio(self, src: str, dst: str, *, codec: str, bitrate_kbps: int) -> None:
        encoder = {"mp3": "libmp3lame", "aac": "aac"}.get(codec, codec)
        await self._run([
            self.ffmpeg, "-y", "-i", src, "-vn", "-c:a", encoder, "-b:a", f"{bitrate_kbps}k", dst,
        ])

    async def pcm_samples(self, src: str, *, sample_rate: int = 8000) -> bytes:
        result = await self._run([
            self.ffmpeg, "-v", "quiet", "-i", src, "-vn", "-ac", "1", "-ar", str(sample_rate),
            "-f", "s16le", "-",
        ], text=False)
        return result.stdout or b""


def waveform_peaks(pcm: bytes, buckets: int = 200) -> List[float]:
    """Peak |amplitude| per bucket of little-endian s16 mono PCM, scaled to 0..1."""
    if buckets <= 0:
        raise ValueError("buckets must be > 0")
    samples = array.array("h")
    samples.frombytes(pcm[: len(pcm) - (len(pcm) % 2)])
    if sys.byteorder != "little":
        samples.byteswap()
    n = len(samples)
    if n == 0:
        return [0.0] * buckets

    peaks: List[float] = []
    for b in range(buckets):
        start = b * n // buckets
        end = max(start + 1, (b + 1) * n // buckets)
        chunk = samples[start:end] if start < n else array.array("h")
        peak = max((abs(s) for s in chunk), default=0)
        peaks.append(round(min(peak, 32767) / 32767, 4))
    return peaks


__all__ = ["CodecError", "CodecTool", "FfmpegCodecTool", "MediaProbe", "parse_probe", "waveform_peaks"]
