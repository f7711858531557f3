"""
Exception hierarchy for hb_transcode.

Validation problems (bad arguments, inconsistent configuration) raise
ValueError. The classes below describe expected runtime failures that
callers catch and turn into skip/retry decisions.
"""

from pathlib import Path
from typing import List, Optional


class TranscodeError(Exception):
    """Base exception for transcoding pipeline errors."""

    def __init__(self, message: str, path: Optional[Path] = None,
                 command: Optional[List[str]] = None):
        self.message = message
        self.path = path
        self.command = command
        super().__init__(self.message)


class ProbeError(TranscodeError):
    """ffprobe could not produce usable metadata for a file."""


class SamplingError(TranscodeError):
    """No sample at a given quality produced a valid measurement."""

    def __init__(self, message: str, path: Optional[Path] = None,
                 quality: Optional[float] = None, failed_samples: int = 0):
        super().__init__(message, path=path)
        self.quality = quality
        self.failed_samples = failed_samples


class EncoderUnavailableError(TranscodeError):
    """The encoder binary could not be started for any strategy."""


class LockError(TranscodeError):
    """Another instance holds the lock file."""
