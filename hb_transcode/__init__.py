"""
hb-transcode - Batch HandBrake transcoding with sample-based quality search.
"""

__version__ = "1.0.0"

from .config import BitrateRange, TranscodeConfig, get_config, load_env_file

__all__ = [
    "BitrateRange",
    "TranscodeConfig",
    "get_config",
    "load_env_file",
]
