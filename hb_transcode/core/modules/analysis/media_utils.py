"""
Media utilities for hb_transcode.

This module provides media-specific utilities including:
- FFprobe metadata extraction into SourceMetadata
- Bitrate derivation when the container does not report one
- Codec skip checks
"""

import json
import subprocess
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, Optional, Tuple

from ..system.system_utils import run_command
from ...exceptions import ProbeError
from ....utils.logging import get_logger

logger = get_logger("media_utils")


class ColorProfile(str, Enum):
    """Chroma subsampling / bit depth of the primary video stream."""
    YUV420P = "yuv420p"
    YUV420P10LE = "yuv420p10le"
    YUV444P = "yuv444p"
    YUV444P10LE = "yuv444p10le"
    YUV420P12LE = "yuv420p12le"
    YUV444P12LE = "yuv444p12le"
    OTHER = "other"

    @classmethod
    def from_pix_fmt(cls, pix_fmt: Optional[str]) -> 'ColorProfile':
        try:
            return cls((pix_fmt or "").lower())
        except ValueError:
            return cls.OTHER


@dataclass(frozen=True)
class SourceMetadata:
    """Probe results for one media file. Sizes in decimal MB, bitrates in Mb/s."""
    path: Path
    codec: str
    pixel_format: str
    duration_seconds: float
    size_megabytes: float
    bitrate_mbps: float

    @property
    def color_profile(self) -> ColorProfile:
        return ColorProfile.from_pix_fmt(self.pixel_format)

    def is_eight_bit(self, eight_bit_profiles: Iterable[str]) -> bool:
        return self.pixel_format.lower() in {p.lower() for p in eight_bit_profiles}


FFPROBE_CMD = [
    "ffprobe", "-v", "error",
    "-select_streams", "v:0",
    "-show_entries", "stream=codec_name,pix_fmt,bit_rate",
    "-show_entries", "format=duration,bit_rate",
    "-of", "json",
]

# (path, mtime_ns, size) -> metadata; a changed file gets a new key
_probe_cache: Dict[Tuple[str, int, int], SourceMetadata] = {}


def clear_probe_cache():
    _probe_cache.clear()


def _parse_number(value) -> Optional[float]:
    if value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None


def compute_bitrate_mbps(size_bytes: int, duration_seconds: float) -> float:
    """Average bitrate in Mb/s from file size and duration."""
    if duration_seconds <= 0:
        raise ValueError(f"duration must be positive, got {duration_seconds}")
    return size_bytes * 8 / duration_seconds / 1_000_000


def parse_ffprobe_output(file: Path, output: str, size_bytes: int) -> SourceMetadata:
    """Build SourceMetadata from ffprobe JSON output."""
    try:
        data = json.loads(output or "{}")
    except json.JSONDecodeError as e:
        raise ProbeError(f"Unreadable ffprobe output for {file.name}: {e}", path=file) from e

    streams = data.get("streams") or []
    stream = streams[0] if streams else {}
    fmt = data.get("format") or {}

    codec = (stream.get("codec_name") or "").strip().lower()
    if not codec:
        raise ProbeError(f"No video stream found in {file.name}", path=file)

    duration = _parse_number(fmt.get("duration"))
    if duration is None:
        raise ProbeError(f"Could not determine duration of {file.name}", path=file)
    if size_bytes <= 0:
        raise ProbeError(f"{file.name} is empty", path=file)

    # Stream bitrate first, then container bitrate, then derived from size
    reported = _parse_number(stream.get("bit_rate")) or _parse_number(fmt.get("bit_rate"))
    if reported is not None:
        bitrate = reported / 1_000_000
    else:
        bitrate = compute_bitrate_mbps(size_bytes, duration)

    return SourceMetadata(
        path=file,
        codec=codec,
        pixel_format=(stream.get("pix_fmt") or "").strip().lower(),
        duration_seconds=round(duration, 2),
        size_megabytes=round(size_bytes / 1_000_000, 2),
        bitrate_mbps=round(bitrate, 2),
    )


def probe_media(file: Path, use_cache: bool = True) -> SourceMetadata:
    """Run ffprobe on ``file``. Raises ProbeError when metadata is unusable."""
    try:
        stat = file.stat()
    except OSError as e:
        raise ProbeError(f"Cannot stat {file}: {e}", path=file) from e
    if not file.is_file():
        raise ProbeError(f"Not a file: {file}", path=file)

    cache_key = (str(file), stat.st_mtime_ns, stat.st_size)
    if use_cache and cache_key in _probe_cache:
        return _probe_cache[cache_key]

    cmd = FFPROBE_CMD + [str(file)]
    try:
        result = run_command(cmd, timeout=60)
    except (OSError, subprocess.TimeoutExpired) as e:
        raise ProbeError(f"ffprobe failed for {file.name}: {e}", path=file, command=cmd) from e
    if result.returncode != 0:
        stderr = (result.stderr or "").strip().splitlines()
        detail = stderr[-1] if stderr else f"exit code {result.returncode}"
        raise ProbeError(f"ffprobe failed for {file.name}: {detail}", path=file, command=cmd)

    metadata = parse_ffprobe_output(file, result.stdout, stat.st_size)
    logger.debug(f"Probed {file.name}: {metadata}")

    if use_cache:
        _probe_cache[cache_key] = metadata
    return metadata


def should_skip_codec(codec: Optional[str], skip_codecs: Iterable[str]) -> bool:
    """Check if a codec is already in a terminal/acceptable format."""
    if not codec:
        return False
    return codec.lower() in {c.lower() for c in skip_codecs}
