"""Core search, encode and batch modules."""

from .exceptions import (
    TranscodeError, ProbeError, SamplingError, EncoderUnavailableError, LockError
)
from .main import main

__all__ = [
    "TranscodeError",
    "ProbeError",
    "SamplingError",
    "EncoderUnavailableError",
    "LockError",
    "main",
]
