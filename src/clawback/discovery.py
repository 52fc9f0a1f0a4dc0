"""
Workspace discovery — find the agent workspace to back up.

A directory counts as a workspace when it holds one of the marker
files. Search order: explicit path, current directory, its parents,
then the usual install locations under the home directory.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

logger = logging.getLogger("clawback.discovery")

WORKSPACE_MARKERS = ("SOUL.md", "AGENTS.md")

# Relative to the home directory
COMMON_WORKSPACE_DIRS = (".openclaw", "clawd", "openclaw")


def has_markers(directory: Path) -> bool:
    """True if the directory contains any workspace marker file."""
    return any((Path(directory) / marker).exists() for marker in WORKSPACE_MARKERS)


def discover_workspace(
    explicit: Optional[str | Path] = None,
    cwd: Optional[Path] = None,
    home: Optional[Path] = None,
) -> Optional[Path]:
    """Locate the workspace root.

    Args:
        explicit: Path given by the user. Trusted if it exists, with or
            without markers.
        cwd: Starting directory. Defaults to the process cwd.
        home: Home directory for the common locations.

    Returns:
        Optional[Path]: Absolute workspace root, or None.
    """
    if explicit:
        candidate = Path(explicit).expanduser().resolve()
        return candidate if candidate.exists() else None

    start = Path(cwd or Path.cwd()).resolve()
    for directory in (start, *start.parents):
        if has_markers(directory):
            logger.debug("Found workspace at %s", directory)
            return directory

    home_dir = Path(home) if home else Path.home()
    for name in COMMON_WORKSPACE_DIRS:
        candidate = home_dir / name
        if has_markers(candidate):
            logger.debug("Found workspace at %s", candidate)
            return candidate.resolve()

    return None
