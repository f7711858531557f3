"""
File Processing Workflows Module

Discovery of source media in a batch directory and the two post-batch
passes:
- Cleanup: delete everything that is not a deliverable
- Rename: strip the processed marker from successful outputs
"""

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional, Set

from ..system.system_utils import remove_file
from ....utils.logging import get_logger

# Module logger
logger = get_logger("file_manager")


@dataclass
class FileDiscoveryResult:
    """Result of file discovery operation."""
    files: List[Path]
    hidden_files_skipped: int = 0
    artifacts_skipped: int = 0
    total_files_found: int = 0


@dataclass
class CleanupResult:
    deleted: List[Path] = field(default_factory=list)
    failed: List[Path] = field(default_factory=list)


class FileManager:
    """Discovery, cleanup and rename for one batch directory."""

    def __init__(self, config):
        self.allowed_extensions = {e.lower() for e in config.allowed_extensions}
        self.keep_extensions = {e.lower() for e in config.keep_extensions}
        self.marker = config.processed_marker
        self.output_extension = config.output_extension.lower()
        self._artifact = re.compile(re.escape(self.marker.lower()) + r"(_\d+)?$")

    def output_path_for(self, source: Path) -> Path:
        """``<stem><marker><output_ext>`` beside the source."""
        return source.with_name(f"{source.stem}{self.marker}{self.output_extension}")

    def scratch_base_for(self, source: Path) -> Path:
        """Prefix for numbered sample outputs (``<stem><marker>_<n>.mp4``)."""
        return source.with_name(f"{source.stem}{self.marker}")

    def has_marker(self, file_path: Path) -> bool:
        """Stem ends with the processed marker (case-insensitive, like artifact detection)."""
        return file_path.stem.lower().endswith(self.marker.lower())

    def is_processed_or_artifact(self, file_path: Path) -> bool:
        """Processed outputs and sample scratch files carry the marker at the end of the stem."""
        return bool(self._artifact.search(file_path.stem.lower()))

    def discover_media_files(self, base_path: Path) -> FileDiscoveryResult:
        """
        Recursively list eligible source files.

        Args:
            base_path: Directory to search

        Returns:
            FileDiscoveryResult with files ordered by (parent directory, name)
        """
        if not base_path.is_dir():
            raise ValueError(f"Not a directory: {base_path}")

        found = [p for p in base_path.rglob("*")
                 if p.is_file() and p.suffix.lower() in self.allowed_extensions]
        total_found = len(found)

        # Filter hidden files and macOS resource forks
        visible = [f for f in found if not f.name.startswith('.')]
        hidden_skipped = total_found - len(visible)

        files = [f for f in visible if not self.is_processed_or_artifact(f)]
        artifacts_skipped = len(visible) - len(files)

        files.sort(key=lambda p: (str(p.parent), p.name))
        logger.discovery(f"Found {len(files)} media files under {base_path} "
                         f"({hidden_skipped} hidden, {artifacts_skipped} processed/artifacts skipped)")

        return FileDiscoveryResult(
            files=files,
            hidden_files_skipped=hidden_skipped,
            artifacts_skipped=artifacts_skipped,
            total_files_found=total_found,
        )

    def should_delete(self, file_path: Path, retained: Set[Path]) -> bool:
        if file_path in retained:
            return False
        suffix = file_path.suffix.lower()
        if suffix not in self.keep_extensions:
            return True
        # Unmarked container outputs are leftovers or originals, not deliverables
        return suffix == self.output_extension and not self.has_marker(file_path)

    def cleanup_pass(self, base_path: Path, retained: Optional[Iterable[Path]] = None) -> CleanupResult:
        """Delete every non-deliverable file under ``base_path``."""
        keep = {Path(p) for p in (retained or ())}
        result = CleanupResult()

        for file_path in sorted(p for p in base_path.rglob("*") if p.is_file()):
            if not self.should_delete(file_path, keep):
                continue
            try:
                remove_file(file_path)
                result.deleted.append(file_path)
                logger.cleanup(f"Deleted {file_path}")
            except OSError as e:
                result.failed.append(file_path)
                logger.warn(f"Could not delete {file_path}: {e}")

        logger.cleanup(f"Cleanup removed {len(result.deleted)} files")
        return result

    def final_name_for(self, output_path: Path) -> Path:
        stem = output_path.stem
        if self.has_marker(output_path):
            stem = stem[:-len(self.marker)]
        return output_path.with_name(f"{stem}{output_path.suffix}")

    def rename_pass(self, outputs: Iterable[Path]) -> List[Path]:
        """Strip the marker from successful outputs. Returns the final paths."""
        renamed = []
        for output in outputs:
            if not output.exists():
                logger.warn(f"Expected output missing, not renaming: {output}")
                continue
            target = self.final_name_for(output)
            if target == output:
                renamed.append(output)
                continue
            if target.exists():
                logger.error(f"Not renaming {output.name}: {target.name} already exists")
                continue
            try:
                output.replace(target)
            except OSError as e:
                logger.error(f"Could not rename {output.name} -> {target.name}: {e}")
                continue
            logger.cleanup(f"Renamed {output.name} -> {target.name}")
            renamed.append(target)
        return renamed
