"""
Main transcoding orchestration module for hb_transcode.

Wires configuration, the single-instance lock, the sleep scheduler and the
batch orchestrator behind one argparse entry point.
"""

import argparse
import sys
from pathlib import Path
from typing import List, Optional

from .exceptions import LockError
from .modules.processing.job_processor import TranscodeOrchestrator
from .modules.system.instance_lock import instance_lock
from .modules.system.path_translation import get_path_translator
from .modules.system.system_utils import cleanup_temp_files
from ..config import get_config, load_batch_metadata
from ..utils.logging import get_logger, set_debug_mode, set_quiet_mode, set_log_file, set_log_level

# Module logger
logger = get_logger("transcode_main")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="hb-transcode",
        description="Batch HandBrake transcoding with sample-based quality search")
    parser.add_argument("directory", help="Batch directory to process (searched recursively)")

    category_group = parser.add_mutually_exclusive_group()
    category_group.add_argument("--category", default="",
                                help="Media category used to pick the bitrate band (anime, shows, movies)")
    category_group.add_argument("--metadata", metavar="JSON",
                                help="Batch metadata file carrying a 'category' key")

    parser.add_argument("--search-only", action="store_true",
                        help="Only report the quality chosen per directory; no final encodes")
    parser.add_argument("--respect-sleep-hours", action="store_true",
                        help="Pause between files during the configured sleep hours")
    parser.add_argument("--no-lock", action="store_true", help="Do not take the instance lock")
    parser.add_argument("--env-file", metavar="PATH", help="Read settings from this .env file")
    parser.add_argument("--log-file", metavar="PATH", help="Append log output to this file")
    parser.add_argument("--debug", action="store_true", help="Enable debug output")
    parser.add_argument("--quiet", action="store_true", help="Only show warnings and errors")
    parser.add_argument("--log-level", type=str.upper, choices=["DEBUG", "INFO", "WARN", "ERROR"],
                        help="Minimum level shown (overrides LOG_LEVEL)")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    if args.debug:
        set_debug_mode(True)
    if args.quiet:
        set_quiet_mode(True)

    try:
        config = get_config(Path(args.env_file) if args.env_file else None)
    except (OSError, ValueError) as e:
        logger.error(f"Invalid configuration: {e}")
        return 1

    overrides = {}
    if args.respect_sleep_hours:
        overrides["respect_sleep_hours"] = True
    if args.debug:
        overrides["debug"] = True
    if args.log_file:
        overrides["log_file"] = Path(args.log_file)
    if args.log_level:
        overrides["log_level"] = args.log_level
    config = config.with_overrides(**overrides)

    if config.debug:
        set_debug_mode(True)
    if config.log_file:
        set_log_file(config.log_file)
    set_log_level(config.log_level)

    # Accept paths as the user copied them, e.g. a Windows path when running under WSL
    translator = get_path_translator(config.path_style)
    working_dir = translator.to_local(args.directory).resolve()
    if not working_dir.is_dir():
        logger.error(f"Directory does not exist: {working_dir}")
        return 1

    category = args.category
    if args.metadata:
        try:
            category = str(load_batch_metadata(translator.to_local(args.metadata)).get("category", ""))
        except (OSError, ValueError) as e:
            logger.error(f"Could not read batch metadata {args.metadata}: {e}")
            return 1

    lock_file = None if args.no_lock else config.lock_file
    try:
        with instance_lock(lock_file, timeout=config.lock_timeout):
            report = TranscodeOrchestrator(config).run(working_dir, category,
                                                       search_only=args.search_only)
    except LockError as e:
        logger.error(str(e))
        return 1

    if report.failed:
        logger.warn(f"{len(report.failed)} file(s) failed: "
                    + ", ".join(p.name for p in report.failed))
    return 0


if __name__ == "__main__":
    import signal

    signal.signal(signal.SIGTERM, lambda s, f: (cleanup_temp_files(), sys.exit(1)))

    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\n[INTERRUPTED] Cleaning up...")
        cleanup_temp_files()
        sys.exit(1)
