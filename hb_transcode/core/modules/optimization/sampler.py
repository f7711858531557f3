"""
Sample-based bitrate estimation for hb_transcode.

Encoding a whole file per search step is far too slow, so each candidate
quality is estimated from several short encodes spread evenly across the
source:

1. The source is split into ``sample_count`` equal slots
2. One window is encoded at the start of each slot (never at timestamp 0)
3. Each scratch encode is probed, then deleted
4. Valid bitrates are averaged and scaled to the full duration
"""

import math
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional

from ..analysis.media_utils import SourceMetadata, probe_media
from ..encoder_config import TimeRange, format_quality
from ..processing.transcoding_engine import EncodeRequest, EncoderInvoker
from ..system.system_utils import DelayPolicy, TEMP_FILES, remove_file
from ...exceptions import ProbeError, SamplingError
from ....utils.logging import get_logger, create_progress_bar, format_duration

logger = get_logger("sampler")

MAX_QUALITY = 51


@dataclass(frozen=True)
class SampleSpec:
    index: int
    start_second: int
    duration_seconds: int
    output_path: Path

    @property
    def end_second(self) -> int:
        return self.start_second + self.duration_seconds


@dataclass(frozen=True)
class SampleResult:
    quality: float
    average_bitrate_mbps: float
    estimated_full_size_megabytes: float
    valid_samples: int
    total_samples: int


def effective_sample_length(duration_seconds: float, sample_count: int, sample_length: int) -> int:
    """Longest window that fits every slot once the first start is nudged to 1s."""
    slot = math.floor(duration_seconds / sample_count)
    length = min(sample_length, slot)
    if 1 + length > slot:
        length = slot - 1
    return length


def plan_samples(duration_seconds: float, sample_count: int, sample_length: int,
                 scratch_base: Path) -> List[SampleSpec]:
    """Evenly spaced, non-overlapping sample windows inside ``[1, duration)``.

    ``scratch_base`` is the path prefix for scratch outputs; sample ``n`` is
    written to ``<scratch_base>_<n>.mp4``.
    """
    if duration_seconds <= 0 or sample_count <= 0 or sample_length <= 0:
        raise ValueError("duration, sample_count and sample_length must be positive")

    length = effective_sample_length(duration_seconds, sample_count, sample_length)
    if length < 1:
        raise SamplingError(f"Source is too short ({duration_seconds}s) for {sample_count} samples")

    slot = math.floor(duration_seconds / sample_count)
    specs = []
    for i in range(sample_count):
        start = i * slot
        specs.append(SampleSpec(
            index=i,
            start_second=1 if start == 0 else start,
            duration_seconds=length,
            output_path=scratch_base.with_name(f"{scratch_base.name}_{i}.mp4"),
        ))
    return specs


class Sampler:
    """Estimates full-file bitrate and size for a quality value."""

    def __init__(self, invoker: EncoderInvoker, metadata: SourceMetadata,
                 scratch_base: Path, delay: Optional[DelayPolicy] = None,
                 probe: Callable[..., SourceMetadata] = probe_media):
        self.invoker = invoker
        self.metadata = metadata
        self.scratch_base = scratch_base
        self.delay = delay or DelayPolicy()
        self.probe = probe

    def _measure(self, spec: SampleSpec) -> Optional[SourceMetadata]:
        try:
            return self.probe(spec.output_path, use_cache=False)
        except ProbeError as e:
            logger.debug(f"Sample #{spec.index + 1} probe failed: {e}")
            return None

    def sample(self, quality: float, sample_count: int, sample_length: int) -> SampleResult:
        if quality <= 0 or quality > MAX_QUALITY:
            raise ValueError(f"Quality must be within (0, {MAX_QUALITY}], got {quality}")
        if sample_count <= 0 or sample_length <= 0:
            raise ValueError(f"Invalid sample options: count={sample_count} length={sample_length}")

        duration = self.metadata.duration_seconds
        specs = plan_samples(duration, sample_count, sample_length, self.scratch_base)
        q = format_quality(quality)

        logger.sample(f"Running {len(specs)} samples of {specs[0].duration_seconds}s each at q={q}")

        total_bitrate = 0.0
        valid = 0

        with create_progress_bar(total=len(specs), desc=f"Sampling q={q}", unit="samples",
                                 leave=False) as pbar:
            for spec in specs:
                if spec.index > 0:
                    self.delay.between_samples()
                started = time.monotonic()
                TEMP_FILES.add(spec.output_path)
                try:
                    outcome = self.invoker.encode(EncodeRequest(
                        input_path=self.metadata.path,
                        output_path=spec.output_path,
                        quality=quality,
                        time_range=TimeRange(spec.start_second, spec.duration_seconds),
                    ))
                    stats = self._measure(spec) if outcome.success else None
                finally:
                    remove_file(spec.output_path)

                runtime = format_duration(time.monotonic() - started)
                if stats is not None and stats.bitrate_mbps > 0:
                    total_bitrate += stats.bitrate_mbps
                    valid += 1
                    logger.sample(f"Sample #{spec.index + 1} completed in {runtime}. "
                                  f"Bitrate: {stats.bitrate_mbps} Mb/s. Size: {stats.size_megabytes} MB")
                else:
                    logger.warn(f"Sample #{spec.index + 1} failed to get valid stats ({runtime}). "
                                f"Excluding from average.")
                pbar.update(1)

        if valid == 0:
            raise SamplingError("All samples failed to produce valid statistics",
                                path=self.metadata.path, quality=quality,
                                failed_samples=len(specs))

        average = round(total_bitrate / valid, 2)
        estimated_size = round(average * duration / 8, 2)
        logger.sample(f"q={q}: estimated size {estimated_size} MB, average bitrate {average} Mb/s "
                      f"({valid}/{len(specs)} valid samples)")
        return SampleResult(
            quality=quality,
            average_bitrate_mbps=average,
            estimated_full_size_megabytes=estimated_size,
            valid_samples=valid,
            total_samples=len(specs),
        )
