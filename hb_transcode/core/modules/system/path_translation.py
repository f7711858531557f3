"""
Path translation between the host running hb_transcode and the encoder.

When the encoder is a Windows executable driven from WSL, paths handed to it
must be Windows-style while everything else works with the Linux view. The
core only ever sees resolved local paths; the encoder invoker asks the
translator for the form the encoder expects.
"""

import re
from pathlib import Path, PureWindowsPath
from typing import Union

_WSL_MOUNT = re.compile(r"^/mnt/([a-zA-Z])(/.*)?$")
_WIN_DRIVE = re.compile(r"^([a-zA-Z]):[\\/](.*)$")
_WSL_UNC = re.compile(r"^\\\\wsl(?:\.localhost|\$)\\[^\\]+(\\.*)?$", re.IGNORECASE)


class PathTranslator:
    """Identity translation: encoder and host share the same path space."""

    style = "native"

    def to_encoder(self, path: Union[str, Path]) -> str:
        return str(path)

    def to_local(self, path: Union[str, Path]) -> Path:
        return Path(str(path).strip("'\""))


class WslPathTranslator(PathTranslator):
    """Linux (WSL) paths locally, Windows paths for the encoder."""

    style = "wsl"

    def __init__(self, distro: str = "Ubuntu"):
        self.distro = distro

    def to_encoder(self, path: Union[str, Path]) -> str:
        text = str(path)
        match = _WSL_MOUNT.match(text)
        if match:
            drive, rest = match.group(1), match.group(2) or "/"
            return f"{drive.upper()}:" + rest.replace("/", "\\")
        if _WIN_DRIVE.match(text) or text.startswith("\\\\"):
            return text
        # Linux-only location, reachable from Windows through the WSL share
        return f"\\\\wsl.localhost\\{self.distro}" + text.replace("/", "\\")

    def to_local(self, path: Union[str, Path]) -> Path:
        text = str(path).strip("'\"")
        match = _WIN_DRIVE.match(text)
        if match:
            drive, rest = match.group(1).lower(), match.group(2)
            parts = PureWindowsPath(rest).parts
            return Path("/mnt", drive, *parts)
        match = _WSL_UNC.match(text)
        if match:
            rest = match.group(1) or "\\"
            return Path(rest.replace("\\", "/"))
        return Path(text)


def get_path_translator(style: str) -> PathTranslator:
    if style == "wsl":
        return WslPathTranslator()
    if style == "native":
        return PathTranslator()
    raise ValueError(f"Unknown path style: {style}")
