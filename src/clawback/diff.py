"""
Diff — compare two snapshots file by file.

Works on manifests plus a way to fetch each side's content, so the
same engine compares archive vs archive and archive vs live
workspace (the live side gets a throwaway manifest).

Line deltas are net line-count differences, not a real diff:
a file with one line changed shows as +0/-0 but still MODIFIED.

Usage:
    clawback diff agent-2026-02-10.clawback                 # vs live workspace
    clawback diff old.clawback new.clawback                 # archive vs archive
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from .archive import UnpackedArchive, open_archive
from .manifest import create_manifest
from .models import Manifest

logger = logging.getLogger("clawback.diff")

ContentAccessor = Callable[[str], Optional[bytes]]


class DiffStatus(str, Enum):
    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"
    UNCHANGED = "unchanged"


@dataclass
class DiffEntry:
    """Comparison result for one path."""

    path: str
    status: DiffStatus
    lines_added: Optional[int] = None
    lines_removed: Optional[int] = None


@dataclass
class DiffResult:
    """All entries, sorted by path."""

    entries: list[DiffEntry] = field(default_factory=list)

    def by_status(self, status: DiffStatus) -> list[DiffEntry]:
        return [e for e in self.entries if e.status == status]

    @property
    def has_changes(self) -> bool:
        return any(e.status != DiffStatus.UNCHANGED for e in self.entries)


def count_lines(content: str) -> int:
    """Number of lines, not counting the empty tail after a final newline."""
    if not content:
        return 0
    lines = content.split("\n")
    return len(lines) - 1 if lines[-1] == "" else len(lines)


def _line_count(content: Optional[bytes]) -> int:
    return count_lines((content or b"").decode("utf-8", errors="replace"))


def diff_manifests(
    old_manifest: Manifest,
    old_contents: ContentAccessor,
    new_manifest: Manifest,
    new_contents: ContentAccessor,
) -> DiffResult:
    """Classify every path from either manifest.

    Args:
        old_manifest: Baseline manifest.
        old_contents: Fetches baseline bytes by relative path.
        new_manifest: Comparison manifest.
        new_contents: Fetches comparison bytes by relative path.

    Returns:
        DiffResult with exactly one entry per distinct path.
    """
    old_paths = {f.path for f in old_manifest.files}
    new_paths = {f.path for f in new_manifest.files}
    entries: list[DiffEntry] = []

    for path in old_paths | new_paths:
        if path not in old_paths:
            entries.append(DiffEntry(path, DiffStatus.ADDED))
        elif path not in new_paths:
            entries.append(DiffEntry(path, DiffStatus.DELETED))
        elif old_manifest.checksums.get(path) == new_manifest.checksums.get(path):
            entries.append(DiffEntry(path, DiffStatus.UNCHANGED))
        else:
            old_lines = _line_count(old_contents(path))
            new_lines = _line_count(new_contents(path))
            entries.append(DiffEntry(
                path,
                DiffStatus.MODIFIED,
                lines_added=max(0, new_lines - old_lines),
                lines_removed=max(0, old_lines - new_lines),
            ))

    entries.sort(key=lambda e: e.path)
    return DiffResult(entries=entries)


def _archive_accessor(archive: UnpackedArchive) -> ContentAccessor:
    return archive.file_content


def diff_archive_vs_workspace(
    archive_path: str | Path,
    workspace: str | Path,
    password: Optional[str] = None,
    exclude: Optional[list[str]] = None,
) -> DiffResult:
    """Compare an archive (baseline) with a live workspace.

    Raises:
        FileNotFoundError: If the archive or workspace does not exist.
    """
    root = Path(workspace).expanduser()
    if not root.is_dir():
        raise FileNotFoundError(f"Workspace not found: {root}")

    archive = open_archive(Path(archive_path), password)
    live = create_manifest(root, exclude=exclude)

    def live_contents(path: str) -> Optional[bytes]:
        try:
            return (root / path).read_bytes()
        except OSError:
            return None

    result = diff_manifests(archive.manifest, _archive_accessor(archive), live, live_contents)
    logger.debug("Diffed %s against %s: %d entries", archive_path, root, len(result.entries))
    return result


def diff_archive_vs_archive(
    old_path: str | Path,
    new_path: str | Path,
    password: Optional[str] = None,
) -> DiffResult:
    """Compare two archives, the first being the baseline."""
    old = open_archive(Path(old_path), password)
    new = open_archive(Path(new_path), password)
    return diff_manifests(old.manifest, _archive_accessor(old), new.manifest, _archive_accessor(new))


def format_diff(result: DiffResult) -> str:
    """Render a diff as aligned text, one status per line."""
    lines: list[str] = []

    for entry in result.by_status(DiffStatus.ADDED):
        lines.append(f"  ADDED     {entry.path}")
    for entry in result.by_status(DiffStatus.MODIFIED):
        line_info = ""
        if entry.lines_added is not None or entry.lines_removed is not None:
            line_info = f" (+{entry.lines_added or 0} lines, -{entry.lines_removed or 0} lines)"
        lines.append(f"  MODIFIED  {entry.path}{line_info}")
    for entry in result.by_status(DiffStatus.DELETED):
        lines.append(f"  DELETED   {entry.path}")

    unchanged = [e.path for e in result.by_status(DiffStatus.UNCHANGED)]
    if unchanged:
        if len(unchanged) <= 3:
            lines.append(f"  UNCHANGED {', '.join(unchanged)}")
        else:
            lines.append(f"  UNCHANGED {', '.join(unchanged[:2])} ({len(unchanged)} files)")

    return "\n".join(lines)
