"""
Tag-prefixed console logging for hb_transcode.

Every line starts with a bracketed tag so batch logs can be grepped:
- [INFO] / [WARN] / [ERROR] / [DEBUG] carry the module name
- [SEARCH], [SAMPLE], [ENCODER], [TRANSCODE], [DISCOVERY], [CLEANUP],
  [SCHEDULE] and [RESULT] mark pipeline stages

Lines go through tqdm.write so they never tear an active progress bar, and
can be mirrored into an append-only log file with timestamps.

Usage:
    from hb_transcode.utils.logging import get_logger, set_debug_mode

    set_debug_mode(True)
    logger = get_logger("sampler")
    logger.sample("Running 10 samples at q=23.5")
"""

import os
from datetime import datetime
from enum import IntEnum
from pathlib import Path
from typing import Optional

from tqdm import tqdm


class LogLevel(IntEnum):
    DEBUG = 0
    INFO = 1
    WARN = 2
    ERROR = 3


_debug = os.getenv('DEBUG', '').lower() in ('1', 'true', 'yes')
_quiet = False
_threshold = LogLevel.INFO
_log_file: Optional[Path] = None


def set_debug_mode(enabled: bool):
    """Show [DEBUG], [SEARCH-DEBUG] and [CMD] lines."""
    global _debug
    _debug = enabled


def set_quiet_mode(enabled: bool):
    """Hide everything below WARN and disable progress bars."""
    global _quiet
    _quiet = enabled


def set_log_level(level: str):
    """Minimum level shown: DEBUG, INFO, WARN or ERROR (unknown names mean INFO)."""
    global _threshold
    _threshold = LogLevel.__members__.get(level.upper(), LogLevel.INFO)


def set_log_file(path: Optional[Path]):
    """Mirror every emitted line into an append-only log file (None disables)."""
    global _log_file
    _log_file = Path(path) if path else None


def _enabled(level: LogLevel) -> bool:
    if _quiet and level < LogLevel.WARN:
        return False
    return level >= _threshold


def _emit(line: str):
    tqdm.write(line)
    if _log_file is None:
        return
    stamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    try:
        with open(_log_file, 'a', encoding='utf-8') as f:
            f.write(f"[{stamp}] {line}\n")
    except OSError as e:
        tqdm.write(f"[ERROR] Could not write to log file {_log_file}: {e}")


class Logger:
    """Per-module logger. Level lines carry the module name, stage lines do not."""

    def __init__(self, module_name: str = ""):
        self.module_name = module_name
        self.prefix = f"[{module_name}] " if module_name else ""

    def _leveled(self, level: LogLevel, message: str):
        if _enabled(level):
            _emit(f"[{level.name}] {self.prefix}{message}")

    def _stage(self, tag: str, message: str, level: LogLevel = LogLevel.INFO):
        if _enabled(level):
            _emit(f"[{tag}] {message}")

    def debug(self, message: str):
        if _debug:
            self._leveled(LogLevel.DEBUG, message)

    def info(self, message: str):
        self._leveled(LogLevel.INFO, message)

    def warn(self, message: str):
        self._leveled(LogLevel.WARN, message)

    def error(self, message: str):
        self._leveled(LogLevel.ERROR, message)

    def result(self, message: str):
        self._stage("RESULT", f"{self.prefix}{message}")

    def search(self, message: str):
        self._stage("SEARCH", message)

    def search_debug(self, message: str):
        if _debug:
            self._stage("SEARCH-DEBUG", message, LogLevel.DEBUG)

    def sample(self, message: str):
        self._stage("SAMPLE", message)

    def encoder(self, message: str):
        self._stage("ENCODER", message)

    def transcode(self, message: str):
        self._stage("TRANSCODE", message)

    def discovery(self, message: str):
        self._stage("DISCOVERY", message)

    def cleanup(self, message: str):
        self._stage("CLEANUP", message)

    def schedule(self, message: str):
        self._stage("SCHEDULE", message)

    def cmd(self, message: str):
        """External command about to run; debug only."""
        if _debug:
            self._stage("CMD", message, LogLevel.DEBUG)


def get_logger(module_name: str = "") -> Logger:
    return Logger(module_name)


def create_progress_bar(total: Optional[int] = None, desc: str = "", unit: str = "it",
                        position: Optional[int] = None, leave: bool = True) -> tqdm:
    """tqdm bar that stays silent in quiet mode."""
    return tqdm(total=total, desc=desc, unit=unit, position=position, leave=leave,
                disable=_quiet)


def print_section_header(title: str, width: int = 90):
    if _quiet:
        return
    rule = "=" * width
    for line in (rule, title, rule):
        _emit(line)


def format_duration(seconds: float) -> str:
    """42.0s, 3.5m, or 1h 2m."""
    if seconds < 60:
        return f"{seconds:.1f}s"
    if seconds < 3600:
        return f"{seconds / 60:.1f}m"
    hours, remainder = divmod(int(seconds), 3600)
    return f"{hours}h {remainder // 60}m"


def format_size(bytes_size: int) -> str:
    """Binary units: 500 B, 1.50 KB, 2.00 GB."""
    sign = "-" if bytes_size < 0 else ""
    size = float(abs(bytes_size))
    if size < 1024:
        return f"{sign}{int(size)} B"
    for unit in ('KB', 'MB', 'GB', 'TB', 'PB'):
        size /= 1024.0
        if size < 1024 or unit == 'PB':
            return f"{sign}{size:.2f} {unit}"
