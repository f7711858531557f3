"""
HandBrakeCommandBuilder: Centralized HandBrakeCLI command construction

Also builds the ordered encoder fallback chain (hardware, degraded hardware,
software) for a given source file.
"""

import json
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

from .analysis.media_utils import SourceMetadata
from ...utils.logging import get_logger

logger = get_logger("encoder_config")


@dataclass(frozen=True)
class EncoderStrategy:
    """One encoder configuration in the fallback chain."""
    name: str
    encoder_id: str
    extra_flags: Tuple[str, ...] = ()
    enabled: bool = True


@dataclass(frozen=True)
class TimeRange:
    """Portion of the source to encode: ``duration_seconds`` starting at ``start_second``."""
    start_second: int
    duration_seconds: int

    def __post_init__(self):
        if self.start_second < 0 or self.duration_seconds <= 0:
            raise ValueError(f"Invalid time range start={self.start_second} "
                             f"duration={self.duration_seconds}")


@dataclass(frozen=True)
class PresetSelection:
    """HandBrake preset import file and the preset name it defines."""
    file: Path
    name: str


def select_encoders(metadata: SourceMetadata, config) -> Tuple[str, str]:
    """Return (hardware_encoder, software_encoder) for the source's bit depth."""
    if metadata.is_eight_bit(config.eight_bit_profiles):
        return config.hw_encoder, config.sw_encoder
    return config.hw_encoder_10bit, config.sw_encoder_10bit


def build_strategies(metadata: SourceMetadata, config) -> List[EncoderStrategy]:
    """Ordered fallback chain for one file."""
    hardware, software = select_encoders(metadata, config)
    hw_accel = bool(config.hw_accel_enabled and config.hw_decoder)

    strategies = [
        EncoderStrategy(
            name="HW Accel",
            encoder_id=hardware,
            extra_flags=("--enable-hw-decoding", config.hw_decoder) if hw_accel else (),
            enabled=hw_accel,
        ),
        EncoderStrategy(name="Semi-Software Fallback", encoder_id=hardware),
        EncoderStrategy(name="Full Software Fallback", encoder_id=software),
    ]
    logger.debug(f"Encoder chain for {metadata.path.name}: "
                 + ", ".join(f"{s.name}={s.encoder_id}{'' if s.enabled else ' (disabled)'}"
                             for s in strategies))
    return strategies


def read_preset_name(preset_file: Path) -> Optional[str]:
    """Read ``PresetList[0].PresetName`` from a HandBrake preset export."""
    try:
        with open(preset_file, 'r', encoding='utf-8') as f:
            data = json.load(f)
        return data["PresetList"][0]["PresetName"]
    except FileNotFoundError:
        logger.error(f"Handbrake preset file not found: {preset_file}")
    except (json.JSONDecodeError, KeyError, IndexError, TypeError) as e:
        logger.error(f"Handbrake preset file {preset_file} is malformed: {e}")
    return None


def select_preset(source: Path, config) -> Optional[PresetSelection]:
    """Matroska sources get the no-subtitle preset, everything else the subtitle one."""
    preset_file = (config.no_subtitle_preset_file if source.suffix.lower() == ".mkv"
                   else config.subtitle_preset_file)
    if preset_file is None:
        return None
    name = read_preset_name(preset_file)
    if name is None:
        return None
    return PresetSelection(file=Path(preset_file), name=name)


def format_quality(quality: float) -> str:
    """Render a quality value the way HandBrake's -q accepts it (24, 23.5)."""
    rounded = round(float(quality), 2)
    if rounded == int(rounded):
        return str(int(rounded))
    return f"{rounded:g}"


class HandBrakeCommandBuilder:
    """Builds HandBrakeCLI commands with consistent argument ordering."""

    def __init__(self, binary: str = "HandBrakeCLI"):
        self.binary = binary
        self.reset()

    def reset(self) -> 'HandBrakeCommandBuilder':
        """Reset builder state for new command."""
        self.preset: Optional[PresetSelection] = None
        self.input_file: Optional[str] = None
        self.output_file: Optional[str] = None
        self.time_range: Optional[TimeRange] = None
        self.encoder: Optional[str] = None
        self.quality: Optional[float] = None
        self.extra_flags: Tuple[str, ...] = ()
        self._preset_paths: Tuple[str, str] = ("", "")
        return self

    def set_preset(self, preset: Optional[PresetSelection],
                   encoder_path: Optional[str] = None) -> 'HandBrakeCommandBuilder':
        self.preset = preset
        if preset is not None:
            self._preset_paths = (encoder_path or str(preset.file), preset.name)
        return self

    def set_io(self, input_file: str, output_file: str) -> 'HandBrakeCommandBuilder':
        self.input_file = input_file
        self.output_file = output_file
        return self

    def set_time_range(self, time_range: Optional[TimeRange]) -> 'HandBrakeCommandBuilder':
        self.time_range = time_range
        return self

    def set_encoder(self, strategy: EncoderStrategy, quality: float) -> 'HandBrakeCommandBuilder':
        self.encoder = strategy.encoder_id
        self.quality = quality
        self.extra_flags = tuple(strategy.extra_flags)
        return self

    def build_command(self) -> List[str]:
        if not self.input_file or not self.output_file:
            raise ValueError("Input and output must be set before building a command")
        if self.encoder is None or self.quality is None:
            raise ValueError("Encoder and quality must be set before building a command")

        cmd = [self.binary]
        if self.preset is not None:
            preset_path, preset_name = self._preset_paths
            cmd.extend(["--preset-import-file", preset_path, "-Z", preset_name])

        cmd.extend(["-i", self.input_file, "-o", self.output_file])

        if self.time_range is not None:
            # --stop-at is measured from --start-at
            cmd.extend(["--start-at", f"seconds:{self.time_range.start_second}",
                        "--stop-at", f"seconds:{self.time_range.duration_seconds}"])

        cmd.extend(["-e", self.encoder, "-q", format_quality(self.quality)])
        cmd.extend(self.extra_flags)
        return cmd
