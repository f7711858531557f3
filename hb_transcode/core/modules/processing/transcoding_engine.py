"""
Transcoding engine module for hb_transcode.

This module runs HandBrakeCLI through the encoder fallback chain:
- One blocking process per strategy attempt
- Backoff between failed strategies
- A tagged outcome describing every attempt
"""

import shlex
import subprocess
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence

from ..encoder_config import (
    EncoderStrategy, HandBrakeCommandBuilder, PresetSelection, TimeRange, format_quality
)
from ..system.path_translation import PathTranslator
from ..system.system_utils import DelayPolicy
from ...exceptions import EncoderUnavailableError
from ....utils.logging import get_logger, format_duration

logger = get_logger("transcoding_engine")


@dataclass(frozen=True)
class EncodeRequest:
    input_path: Path
    output_path: Path
    quality: float
    time_range: Optional[TimeRange] = None


@dataclass(frozen=True)
class StrategyAttempt:
    name: str
    returncode: Optional[int]
    error: Optional[str] = None

    @property
    def spawn_failed(self) -> bool:
        return self.returncode is None


@dataclass
class EncodeOutcome:
    """Result of running a request through the fallback chain."""
    success: bool
    strategy: Optional[str] = None
    attempts: List[StrategyAttempt] = field(default_factory=list)
    elapsed_seconds: float = 0.0


class EncoderInvoker:
    """Runs HandBrakeCLI with each enabled strategy until one exits 0."""

    def __init__(self, strategies: Sequence[EncoderStrategy], handbrake_path: str = "HandBrakeCLI",
                 preset: Optional[PresetSelection] = None,
                 translator: Optional[PathTranslator] = None,
                 delay: Optional[DelayPolicy] = None):
        self.strategies = list(strategies)
        self.handbrake_path = handbrake_path
        self.preset = preset
        self.translator = translator or PathTranslator()
        self.delay = delay or DelayPolicy()

    @property
    def enabled_strategies(self) -> List[EncoderStrategy]:
        return [s for s in self.strategies if s.enabled]

    def build_command(self, request: EncodeRequest, strategy: EncoderStrategy) -> List[str]:
        builder = HandBrakeCommandBuilder(self.handbrake_path)
        if self.preset is not None:
            builder.set_preset(self.preset, self.translator.to_encoder(self.preset.file))
        return (builder
                .set_io(self.translator.to_encoder(request.input_path),
                        self.translator.to_encoder(request.output_path))
                .set_time_range(request.time_range)
                .set_encoder(strategy, request.quality)
                .build_command())

    def _run(self, cmd: List[str]) -> subprocess.CompletedProcess:
        logger.cmd(" ".join(shlex.quote(c) for c in cmd))
        # HandBrake echoes tags and file names in whatever encoding they were stored in
        return subprocess.run(cmd, capture_output=True, text=True,
                              encoding="utf-8", errors="replace")

    def encode(self, request: EncodeRequest) -> EncodeOutcome:
        """Try every enabled strategy in order.

        Raises EncoderUnavailableError only when the encoder could not be
        spawned at all for any strategy.
        """
        strategies = self.enabled_strategies
        if not strategies:
            raise ValueError("No enabled encoder strategies")

        outcome = EncodeOutcome(success=False)
        output_name = request.output_path.name
        started = time.monotonic()

        for index, strategy in enumerate(strategies):
            cmd = self.build_command(request, strategy)
            try:
                result = self._run(cmd)
            except OSError as e:
                attempt = StrategyAttempt(strategy.name, None, str(e))
                logger.warn(f"Failed to spawn Handbrake ({strategy.name}) for {output_name}: {e}")
            else:
                if result.returncode == 0:
                    outcome.attempts.append(StrategyAttempt(strategy.name, 0))
                    outcome.success = True
                    outcome.strategy = strategy.name
                    outcome.elapsed_seconds = time.monotonic() - started
                    logger.encoder(f"Handbrake ({strategy.name}) for {output_name} succeeded "
                                   f"in {format_duration(outcome.elapsed_seconds)}")
                    return outcome
                stderr = (result.stderr or "").strip().splitlines()
                attempt = StrategyAttempt(strategy.name, result.returncode,
                                          stderr[-1] if stderr else None)
                logger.warn(f"Handbrake ({strategy.name}) for {output_name} failed "
                            f"with exit code {result.returncode}")
                if attempt.error:
                    logger.debug(f"Handbrake stderr: {attempt.error}")

            outcome.attempts.append(attempt)
            if index < len(strategies) - 1:
                self.delay.after_strategy_failure()

        outcome.elapsed_seconds = time.monotonic() - started
        if all(a.spawn_failed for a in outcome.attempts):
            raise EncoderUnavailableError(
                f"Could not start {self.handbrake_path} for any strategy "
                f"({outcome.attempts[-1].error})",
                path=request.input_path,
                command=self.build_command(request, strategies[-1]),
            )

        logger.error(f"All encoder strategies failed for {output_name} "
                     f"(q={format_quality(request.quality)})")
        return outcome
