"""Configuration management for hb-transcode."""

import json
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional, Dict, Any, Tuple


DEFAULT_BITRATE_RANGES = {
    "anime": (1.0, 2.5),
    "shows": (2.0, 4.0),
    "movies": (3.0, 6.0),
}

DEFAULT_KEEP_EXTENSIONS = (
    ".mp4", ".ass", ".srt", ".usf", ".vtt", ".sub", ".sup", ".textst", ".dvb",
)


@dataclass(frozen=True)
class BitrateRange:
    """Acceptable output bitrate band in Mb/s."""
    min_mbps: float
    max_mbps: float

    def __post_init__(self):
        if self.min_mbps < 0 or self.min_mbps >= self.max_mbps:
            raise ValueError(f"Invalid bitrate range [{self.min_mbps}, {self.max_mbps}]: "
                             f"min must be >= 0 and below max")

    def contains(self, bitrate_mbps: float) -> bool:
        return self.min_mbps <= bitrate_mbps <= self.max_mbps


@dataclass
class TranscodeConfig:
    """Every knob the transcoder reads. Passed explicitly into each component."""

    # Encoder binary and presets
    handbrake_path: str = "HandBrakeCLI"
    subtitle_preset_file: Optional[Path] = None
    no_subtitle_preset_file: Optional[Path] = None

    # Quality search window
    quality_low: float = 7.0
    quality_high: float = 40.0
    quality_granularity: float = 0.1
    quality_step: float = 1.0
    min_bound_gap: float = 0.3
    max_attempts: int = 6
    default_quality: float = 25.0
    size_margin: float = 0.95
    bitrate_margin: float = 0.95

    # Sampling
    sample_count: int = 10
    sample_length: int = 15

    # Categories
    bitrate_ranges: Dict[str, Tuple[float, float]] = field(
        default_factory=lambda: dict(DEFAULT_BITRATE_RANGES))
    default_category: str = "movies"

    # File selection
    allowed_extensions: Tuple[str, ...] = (".mp4", ".mkv", ".avi", ".mov", ".flv", ".webm")
    skip_codecs: Tuple[str, ...] = ("av1",)
    keep_extensions: Tuple[str, ...] = DEFAULT_KEEP_EXTENSIONS
    processed_marker: str = "_HBPROCESSED"
    output_extension: str = ".mp4"

    # Encoders
    eight_bit_profiles: Tuple[str, ...] = ("yuv420p", "yuv444p")
    hw_encoder: str = "vce_h265"
    hw_encoder_10bit: str = "vce_h265_10bit"
    sw_encoder: str = "x265"
    sw_encoder_10bit: str = "x265_10bit"
    hw_accel_enabled: bool = True
    hw_decoder: str = "vcn"

    # Delays (seconds)
    strategy_backoff: float = 5.0
    sample_pause: float = 1.0
    search_retry_pause: float = 2.0

    # Operating hours
    respect_sleep_hours: bool = False
    sleep_from_hour: int = 23
    sleep_to_hour: int = 7
    sleep_to_minute: int = 30

    # Process
    lock_file: Optional[Path] = None
    lock_timeout: Optional[float] = None
    path_style: str = "native"
    debug: bool = False
    log_level: str = "INFO"
    log_file: Optional[Path] = None

    def validate(self) -> 'TranscodeConfig':
        """Raise ValueError when values contradict each other."""
        if not (0 < self.quality_low < self.quality_high <= 51):
            raise ValueError(f"Quality window must satisfy 0 < low < high <= 51, "
                             f"got [{self.quality_low}, {self.quality_high}]")
        if not (0 < self.default_quality <= 51):
            raise ValueError(f"default_quality out of range: {self.default_quality}")
        if self.quality_granularity <= 0 or self.quality_step <= 0:
            raise ValueError("quality_granularity and quality_step must be positive")
        if self.max_attempts <= 0:
            raise ValueError("max_attempts must be positive")
        if self.sample_count <= 0 or self.sample_length <= 0:
            raise ValueError("sample_count and sample_length must be positive")
        if not (0 < self.size_margin <= 1.5) or not (0 < self.bitrate_margin <= 1.5):
            raise ValueError("size_margin and bitrate_margin must be in (0, 1.5]")
        if self.default_category not in self.bitrate_ranges:
            raise ValueError(f"default_category '{self.default_category}' has no bitrate range")
        for lo, hi in self.bitrate_ranges.values():
            BitrateRange(lo, hi)
        if not self.processed_marker:
            raise ValueError("processed_marker must not be empty")
        if self.path_style not in ("native", "wsl"):
            raise ValueError(f"Unknown path_style: {self.path_style}")
        if self.log_level.upper() not in ("DEBUG", "INFO", "WARN", "ERROR"):
            raise ValueError(f"Unknown log_level: {self.log_level}")
        return self

    def bitrate_range_for(self, category: str) -> BitrateRange:
        """Pick the band whose key appears in the category name, else the default band."""
        lowered = (category or "").lower()
        for name, (lo, hi) in self.bitrate_ranges.items():
            if name == self.default_category:
                continue
            if name.lower() in lowered:
                return BitrateRange(lo, hi)
        lo, hi = self.bitrate_ranges[self.default_category]
        return BitrateRange(lo, hi)

    def with_overrides(self, **changes: Any) -> 'TranscodeConfig':
        return replace(self, **changes)


def load_env_file(env_path: Optional[Path] = None) -> Dict[str, str]:
    """Parse KEY=value lines into a dict with lowercased keys.

    Without an explicit path, the first .env found in the working directory or
    next to the package is used. A missing file yields an empty dict.
    """
    if env_path is None:
        env_path = next(
            (p for p in (Path.cwd() / ".env", Path(__file__).parent.parent / ".env") if p.exists()),
            None,
        )
    if env_path is None or not env_path.exists():
        return {}

    values = {}
    for raw in env_path.read_text(encoding="utf-8").splitlines():
        entry = raw.strip()
        if not entry or entry.startswith("#") or "=" not in entry:
            continue
        key, _, value = entry.partition("=")
        values[key.strip().lower()] = value.strip().strip("\"'")
    return values


def _as_bool(value: str) -> bool:
    return value.strip().lower() in ('true', '1', 'yes', 'on')


def _as_list(value: str) -> Tuple[str, ...]:
    return tuple(item.strip() for item in value.split(",") if item.strip())


def _as_extensions(value: str) -> Tuple[str, ...]:
    return tuple(ext.lower() if ext.startswith(".") else f".{ext.lower()}" for ext in _as_list(value))


def parse_bitrate_ranges(value: str) -> Dict[str, Tuple[float, float]]:
    """Parse ``anime:1-2.5,shows:2-4,movies:3-6`` into a range table."""
    ranges: Dict[str, Tuple[float, float]] = {}
    for entry in _as_list(value):
        if ":" not in entry or "-" not in entry:
            raise ValueError(f"Malformed bitrate range entry: '{entry}'")
        name, span = entry.split(":", 1)
        lo, hi = span.split("-", 1)
        ranges[name.strip().lower()] = (float(lo), float(hi))
    return ranges


# name in .env / environment -> (field, converter)
_FIELDS = {
    'handbrake_path': ('handbrake_path', str),
    'subtitle_preset_file': ('subtitle_preset_file', Path),
    'no_subtitle_preset_file': ('no_subtitle_preset_file', Path),
    'quality_low': ('quality_low', float),
    'quality_high': ('quality_high', float),
    'quality_granularity': ('quality_granularity', float),
    'quality_step': ('quality_step', float),
    'min_bound_gap': ('min_bound_gap', float),
    'max_attempts': ('max_attempts', int),
    'default_quality': ('default_quality', float),
    'size_margin': ('size_margin', float),
    'bitrate_margin': ('bitrate_margin', float),
    'sample_count': ('sample_count', int),
    'sample_length': ('sample_length', int),
    'bitrate_ranges': ('bitrate_ranges', parse_bitrate_ranges),
    'default_category': ('default_category', lambda v: v.strip().lower()),
    'allowed_extensions': ('allowed_extensions', _as_extensions),
    'skip_codecs': ('skip_codecs', lambda v: tuple(c.lower() for c in _as_list(v))),
    'keep_extensions': ('keep_extensions', _as_extensions),
    'processed_marker': ('processed_marker', str),
    'output_extension': ('output_extension', lambda v: v if v.startswith(".") else f".{v}"),
    'eight_bit_profiles': ('eight_bit_profiles', _as_list),
    'hw_encoder': ('hw_encoder', str),
    'hw_encoder_10bit': ('hw_encoder_10bit', str),
    'sw_encoder': ('sw_encoder', str),
    'sw_encoder_10bit': ('sw_encoder_10bit', str),
    'hw_accel_enabled': ('hw_accel_enabled', _as_bool),
    'hw_decoder': ('hw_decoder', str),
    'strategy_backoff': ('strategy_backoff', float),
    'sample_pause': ('sample_pause', float),
    'search_retry_pause': ('search_retry_pause', float),
    'respect_sleep_hours': ('respect_sleep_hours', _as_bool),
    'sleep_from_hour': ('sleep_from_hour', int),
    'sleep_to_hour': ('sleep_to_hour', int),
    'sleep_to_minute': ('sleep_to_minute', int),
    'lock_file': ('lock_file', Path),
    'lock_timeout': ('lock_timeout', float),
    'path_style': ('path_style', lambda v: v.strip().lower()),
    'debug': ('debug', _as_bool),
    'log_level': ('log_level', lambda v: v.strip().upper()),
    'log_file': ('log_file', Path),
}


def get_config(env_path: Optional[Path] = None) -> TranscodeConfig:
    """Get configuration from environment variables and .env file.

    Keys defined in the .env file win over the process environment.
    """
    env_vars = load_env_file(env_path)
    values: Dict[str, Any] = {}

    for key, (attr, convert) in _FIELDS.items():
        raw = env_vars.get(key, os.getenv(key.upper()))
        if raw is None or raw == "":
            continue
        try:
            values[attr] = convert(raw)
        except ValueError as e:
            raise ValueError(f"Invalid value for {key.upper()}: {raw!r} ({e})") from e

    return TranscodeConfig(**values).validate()


def load_batch_metadata(json_path: Path) -> Dict[str, Any]:
    """Read the batch metadata JSON dropped by the download client.

    Only ``category`` is consumed; other keys are returned untouched.
    """
    with open(json_path, 'r', encoding='utf-8') as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Metadata file {json_path} does not contain a JSON object")
    return data
