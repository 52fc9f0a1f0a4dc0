"""
Environment facts — the machine-specific values the engine needs.

Built once at the program boundary and passed inward, so the
manifest, path remapping and restore logic never read the home
directory or hostname from process globals themselves.
"""

from __future__ import annotations

import platform
import socket
import sys
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class EnvironmentFacts:
    """Facts about the machine a backup or restore runs on.

    Attributes:
        home: Absolute home directory of the current user.
        hostname: Network name of the machine.
        os: Platform identifier (linux, darwin, win32).
        arch: CPU architecture (x86_64, arm64, ...).
    """

    home: str = ""
    hostname: str = ""
    os: str = ""
    arch: str = ""

    @classmethod
    def detect(cls) -> "EnvironmentFacts":
        """Read the facts from the running process."""
        try:
            home = str(Path.home())
        except RuntimeError:
            home = ""
        return cls(
            home=home,
            hostname=socket.gethostname(),
            os=sys.platform,
            arch=platform.machine(),
        )
