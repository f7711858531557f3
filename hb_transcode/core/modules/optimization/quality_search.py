"""
Quality search engine for hb_transcode.

Bounded binary search over the HandBrake quality dial. Every candidate is
estimated with the Sampler and classified against the source and the
category bitrate band. Lower quality values mean higher fidelity and larger
output, so:

- a candidate that is too big pushes ``low`` above it (smaller output)
- a candidate that fits, or falls under the band, pulls ``high`` below it
  (try for more bitrate)

The best candidate is the highest-bitrate one that fit the band or fell
under it. If nothing qualifies the configured default quality is used.
"""

from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import List, Optional

from .sampler import Sampler, SampleResult
from ..analysis.media_utils import SourceMetadata
from ..encoder_config import format_quality
from ..system.system_utils import DelayPolicy
from ...exceptions import SamplingError
from ....config import BitrateRange
from ....utils.logging import get_logger

logger = get_logger("quality_search")


class Verdict(str, Enum):
    TOO_LARGE = "too_large"
    ABOVE_SOURCE_BITRATE = "above_source_bitrate"
    ABOVE_BAND = "above_band"
    BELOW_BAND = "below_band"
    FEASIBLE = "feasible"

    @property
    def raises_lower_bound(self) -> bool:
        return self in (Verdict.TOO_LARGE, Verdict.ABOVE_SOURCE_BITRATE, Verdict.ABOVE_BAND)

    @property
    def is_candidate(self) -> bool:
        """Whether the result may be recorded as best."""
        return self in (Verdict.BELOW_BAND, Verdict.FEASIBLE)


def classify_candidate(result: SampleResult, metadata: SourceMetadata, band: BitrateRange,
                       size_margin: float = 0.95, bitrate_margin: float = 0.95) -> Verdict:
    """First matching rule wins."""
    if result.estimated_full_size_megabytes > metadata.size_megabytes * size_margin:
        return Verdict.TOO_LARGE
    if result.average_bitrate_mbps > metadata.bitrate_mbps * bitrate_margin:
        return Verdict.ABOVE_SOURCE_BITRATE
    if band.contains(result.average_bitrate_mbps):
        return Verdict.FEASIBLE
    if result.average_bitrate_mbps > band.max_mbps:
        return Verdict.ABOVE_BAND
    return Verdict.BELOW_BAND


def round_to_granularity(value: float, granularity: float) -> float:
    """Round half-up to a multiple of ``granularity`` (23.45 -> 23.5 for 0.1)."""
    step = Decimal(str(granularity))
    # Drop binary noise first so 36.65 is not seen as 36.6499999...
    units = (Decimal(repr(round(value, 9))) / step).quantize(Decimal(1), rounding=ROUND_HALF_UP)
    return float(units * step)


@dataclass
class SearchStep:
    """One sampled candidate and what it did to the bounds."""
    attempt: int
    quality: float
    low_before: float
    high_before: float
    verdict: Optional[Verdict] = None
    result: Optional[SampleResult] = None
    error: Optional[str] = None


@dataclass
class SearchState:
    low: float
    high: float
    mid: Optional[float] = None
    attempts: int = 0
    best_quality: Optional[float] = None
    best_bitrate: Optional[float] = None
    history: List[SearchStep] = field(default_factory=list)

    def is_finished(self, max_attempts: int, min_gap: float) -> bool:
        return (self.attempts >= max_attempts
                or self.low >= self.high
                or self.high - self.low < min_gap)

    def record_best(self, quality: float, bitrate: float) -> bool:
        if self.best_bitrate is None or bitrate > self.best_bitrate:
            self.best_quality = quality
            self.best_bitrate = bitrate
            return True
        return False


@dataclass
class SearchOutcome:
    quality: float
    used_default: bool
    attempts: int
    best_bitrate: Optional[float] = None
    history: List[SearchStep] = field(default_factory=list)


class QualitySearchEngine:
    """Finds a quality value for one source using sample encodes."""

    def __init__(self, sampler: Sampler, config, delay: Optional[DelayPolicy] = None):
        self.sampler = sampler
        self.config = config
        self.delay = delay or DelayPolicy.from_config(config)

    def _apply(self, state: SearchState, step: SearchStep):
        cfg = self.config
        mid = step.quality
        result = step.result
        label = step.verdict.value.replace("_", " ")
        if step.verdict.raises_lower_bound:
            state.low = round(mid + cfg.quality_step, 6)
            logger.search(f"q={format_quality(mid)} {label} "
                          f"({result.average_bitrate_mbps} Mb/s, {result.estimated_full_size_megabytes} MB), "
                          f"raising low bound to {format_quality(state.low)}")
            return

        if state.record_best(mid, result.average_bitrate_mbps):
            logger.search(f"New best q={format_quality(mid)} at {result.average_bitrate_mbps} Mb/s "
                          f"({label})")
        state.high = round(mid - cfg.quality_step, 6)
        logger.search(f"q={format_quality(mid)} {label} "
                      f"({result.average_bitrate_mbps} Mb/s), lowering high bound to "
                      f"{format_quality(state.high)}")

    def search(self, metadata: SourceMetadata, band: BitrateRange) -> SearchOutcome:
        cfg = self.config
        state = SearchState(low=cfg.quality_low, high=cfg.quality_high)

        logger.search(f"Searching quality for {metadata.path.name}: "
                      f"{metadata.bitrate_mbps} Mb/s, {metadata.size_megabytes} MB, "
                      f"band [{band.min_mbps}, {band.max_mbps}] Mb/s")

        while not state.is_finished(cfg.max_attempts, cfg.min_bound_gap):
            # mid survives a failed sampling pass so the retry hits the same candidate
            if state.mid is None:
                state.mid = round_to_granularity((state.low + state.high) / 2,
                                                 cfg.quality_granularity)
            state.attempts += 1
            step = SearchStep(attempt=state.attempts, quality=state.mid,
                              low_before=state.low, high_before=state.high)
            state.history.append(step)
            logger.search_debug(f"Attempt {state.attempts}/{cfg.max_attempts}: "
                                f"low={state.low} high={state.high} mid={state.mid}")

            try:
                step.result = self.sampler.sample(state.mid, cfg.sample_count, cfg.sample_length)
            except SamplingError as e:
                step.error = str(e)
                logger.warn(f"Sampling failed at q={format_quality(state.mid)}: {e}")
                if state.is_finished(cfg.max_attempts, cfg.min_bound_gap):
                    break
                if not self.delay.before_search_retry():
                    logger.warn("Quality search cancelled")
                    break
                continue

            step.verdict = classify_candidate(step.result, metadata, band,
                                              cfg.size_margin, cfg.bitrate_margin)
            self._apply(state, step)
            state.mid = None

        if state.best_quality is None:
            logger.warn(f"No acceptable quality found for {metadata.path.name} after "
                        f"{state.attempts} attempts, using default q={format_quality(cfg.default_quality)}")
            return SearchOutcome(quality=cfg.default_quality, used_default=True,
                                 attempts=state.attempts, history=state.history)

        logger.result(f"Selected q={format_quality(state.best_quality)} for {metadata.path.name} "
                      f"({state.best_bitrate} Mb/s, {state.attempts} attempts)")
        return SearchOutcome(quality=state.best_quality, used_default=False,
                             attempts=state.attempts, best_bitrate=state.best_bitrate,
                             history=state.history)

    def find_quality(self, metadata: SourceMetadata, band: BitrateRange) -> float:
        return self.search(metadata, band).quality
