"""
Job Processing Module

Drives one batch directory end to end:
- Discover sources and probe each one
- Search a quality once per source directory and reuse it for siblings
- Run the full-length encode of every eligible file
- Cleanup and rename passes once every file has been handled
"""

import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from .file_manager import FileManager
from .transcoding_engine import EncodeRequest, EncoderInvoker
from ..analysis.media_utils import SourceMetadata, probe_media, should_skip_codec
from ..encoder_config import build_strategies, format_quality, select_preset
from ..optimization.quality_search import QualitySearchEngine, SearchOutcome
from ..optimization.sampler import Sampler
from ..system.path_translation import PathTranslator, get_path_translator
from ..system.scheduling import SleepScheduler
from ..system.system_utils import DelayPolicy, remove_file
from ...exceptions import ProbeError, TranscodeError
from ....config import BitrateRange, TranscodeConfig
from ....utils.logging import (
    get_logger, create_progress_bar, format_duration, format_size, print_section_header
)

logger = get_logger("job_processor")

InvokerFactory = Callable[[SourceMetadata], EncoderInvoker]
SearchFactory = Callable[[SourceMetadata, EncoderInvoker], QualitySearchEngine]


@dataclass
class BatchReport:
    """What happened to every file of one run."""
    category: str
    band: BitrateRange
    transcoded: List[Path] = field(default_factory=list)
    failed: List[Path] = field(default_factory=list)
    skipped: List[Tuple[Path, str]] = field(default_factory=list)  # (file, reason)
    retained: List[Path] = field(default_factory=list)
    deleted: List[Path] = field(default_factory=list)
    renamed: List[Path] = field(default_factory=list)
    directory_qualities: Dict[Path, float] = field(default_factory=dict)
    searches: Dict[Path, SearchOutcome] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


class TranscodeOrchestrator:
    """Sequential batch transcoder. One encoder process at a time."""

    def __init__(self, config: TranscodeConfig,
                 probe: Callable[..., SourceMetadata] = probe_media,
                 invoker_factory: Optional[InvokerFactory] = None,
                 search_factory: Optional[SearchFactory] = None,
                 scheduler: Optional[SleepScheduler] = None,
                 delay: Optional[DelayPolicy] = None,
                 translator: Optional[PathTranslator] = None,
                 file_manager: Optional[FileManager] = None):
        self.config = config
        self.probe = probe
        self.delay = delay or DelayPolicy.from_config(config)
        self.translator = translator or get_path_translator(config.path_style)
        self.scheduler = scheduler or SleepScheduler.from_config(config, timer=self.delay.timer)
        self.file_manager = file_manager or FileManager(config)
        self.invoker_factory = invoker_factory or self._default_invoker
        self.search_factory = search_factory or self._default_search

    def _default_invoker(self, metadata: SourceMetadata) -> EncoderInvoker:
        return EncoderInvoker(
            build_strategies(metadata, self.config),
            handbrake_path=self.config.handbrake_path,
            preset=select_preset(metadata.path, self.config),
            translator=self.translator,
            delay=self.delay,
        )

    def _default_search(self, metadata: SourceMetadata, invoker: EncoderInvoker) -> QualitySearchEngine:
        sampler = Sampler(invoker, metadata,
                          scratch_base=self.file_manager.scratch_base_for(metadata.path),
                          delay=self.delay, probe=self.probe)
        return QualitySearchEngine(sampler, self.config, delay=self.delay)

    def _quality_for(self, metadata: SourceMetadata, invoker: EncoderInvoker,
                     report: BatchReport) -> float:
        directory = metadata.path.parent
        quality = report.directory_qualities.get(directory)
        if quality is not None:
            logger.transcode(f"Reusing q={format_quality(quality)} for {metadata.path.name}")
            return quality

        outcome = self.search_factory(metadata, invoker).search(metadata, report.band)
        # Only recorded once the search returns; a raised search leaves the directory unresolved
        report.directory_qualities[directory] = outcome.quality
        report.searches[directory] = outcome
        return outcome.quality

    def _output_conflict(self, source: Path, output: Path, report: BatchReport) -> Optional[str]:
        if output in report.transcoded:
            return f"{output.name} was already produced from another source with the same name"
        target = self.file_manager.final_name_for(output)
        if target != source and target in report.retained:
            return f"its output would replace retained file {target.name}"
        return None

    def _encode(self, metadata: SourceMetadata, invoker: EncoderInvoker, quality: float,
                report: BatchReport):
        source = metadata.path
        output = self.file_manager.output_path_for(source)
        conflict = self._output_conflict(source, output, report)
        if conflict:
            report.failed.append(source)
            logger.error(f"Not transcoding {source.name}: {conflict}")
            return
        logger.transcode(f"Transcoding {source.name} at q={format_quality(quality)} -> {output.name}")

        started = time.monotonic()
        try:
            outcome = invoker.encode(EncodeRequest(input_path=source, output_path=output,
                                                   quality=quality))
        except TranscodeError:
            remove_file(output)
            raise

        if outcome.success and output.exists():
            size_bytes = output.stat().st_size
            report.transcoded.append(output)
            logger.transcode(f"Finished {source.name} with {outcome.strategy} in "
                             f"{format_duration(time.monotonic() - started)} "
                             f"({format_size(int(metadata.size_megabytes * 1_000_000))} -> "
                             f"{format_size(size_bytes)})")
            return

        if outcome.success:
            logger.error(f"Encoder reported success but {output.name} is missing")
        remove_file(output)
        report.failed.append(source)
        logger.error(f"Transcode failed for {source.name}, leaving it out of the deliverables")

    def process_file(self, source: Path, report: BatchReport, search_only: bool = False):
        try:
            metadata = self.probe(source)
        except ProbeError as e:
            report.skipped.append((source, str(e)))
            logger.warn(f"Skipping {source.name}: {e}")
            return

        if should_skip_codec(metadata.codec, self.config.skip_codecs):
            report.retained.append(source)
            logger.transcode(f"Keeping {source.name} as-is (codec {metadata.codec})")
            return

        invoker = self.invoker_factory(metadata)
        quality = self._quality_for(metadata, invoker, report)
        if search_only:
            return
        self._encode(metadata, invoker, quality, report)

    def run(self, working_dir: Path, category: str = "", search_only: bool = False) -> BatchReport:
        """Process every media file under ``working_dir``."""
        working_dir = Path(working_dir)
        band = self.config.bitrate_range_for(category)
        report = BatchReport(category=category, band=band)

        print_section_header(f"hb-transcode: {working_dir} "
                             f"(category '{category or self.config.default_category}', "
                             f"band {band.min_mbps}-{band.max_mbps} Mb/s)")
        discovery = self.file_manager.discover_media_files(working_dir)

        with create_progress_bar(total=len(discovery.files), desc="Files", unit="file") as pbar:
            for source in discovery.files:
                self.scheduler.wait_if_sleeping()
                try:
                    self.process_file(source, report, search_only=search_only)
                except (TranscodeError, OSError) as e:
                    report.failed.append(source)
                    logger.error(f"Error processing {source.name}: {e}")
                pbar.update(1)

        if search_only:
            for directory, quality in report.directory_qualities.items():
                logger.result(f"{directory}: q={format_quality(quality)}")
            return report

        cleanup = self.file_manager.cleanup_pass(working_dir, retained=report.retained)
        report.deleted = cleanup.deleted
        report.renamed = self.file_manager.rename_pass(report.transcoded)

        logger.result(f"Transcoded {len(report.renamed)}, failed {len(report.failed)}, "
                      f"skipped {len(report.skipped)}, retained {len(report.retained)}, "
                      f"deleted {len(report.deleted)}")
        return report
