"""
Workspace classifier — turn a directory into a file inventory.

Allowlist approach: root-level files are always considered, but
only the known agent directories (memory/, config/, skills/,
scripts/) are recursed into, plus whatever the caller explicitly
includes. Everything else at the root (projects, data dumps,
virtualenvs) stays out of the archive.

Symlinks are never followed and every entry is checked against
the default denylist and the caller's exclude patterns before
recursion. Directory listings are sorted so two runs over the
same tree produce the same inventory.
"""

from __future__ import annotations

import fnmatch
import logging
from pathlib import Path, PurePosixPath
from typing import Iterable, Optional

from .errors import PathEscape
from .models import FileCategory, WorkspaceFile

logger = logging.getLogger("clawback.classifier")

# Known agent files at the workspace root
IDENTITY_ROOT_FILES = {
    "SOUL.md",
    "AGENTS.md",
    "IDENTITY.md",
    "USER.md",
    "MEMORY.md",
    "HEARTBEAT.md",
    "CHECKLIST.md",
    "TOOLS.md",
    "本我.md",
}

# Directories whose contents are identity files
IDENTITY_DIRS = {"memory"}

# Directories mapped to a specific category
CATEGORY_DIRS = {
    "config": FileCategory.CONFIG,
    "skills": FileCategory.SKILL,
    "scripts": FileCategory.SCRIPT,
}

KNOWN_AGENT_DIRS = IDENTITY_DIRS | set(CATEGORY_DIRS)

ROOT_CONFIG_FILES = {"cron-jobs.json", "env-map.json"}

# Restore leaves these behind in the target; they are not agent state
RESTORE_ARTIFACTS = {".clawback-restored", "restore-fixup.sh", ".clawback-originals"}

DEFAULT_EXCLUDE_NAMES = {
    "node_modules",
    ".git",
    ".DS_Store",
    ".venv",
    "__pycache__",
    ".cache",
    "dist",
    "tmp",
} | RESTORE_ARTIFACTS

DEFAULT_EXCLUDE_EXTENSIONS = (".clawback", ".log")


def is_default_excluded(name: str) -> bool:
    """Check a file or directory name against the built-in denylist."""
    if name in DEFAULT_EXCLUDE_NAMES:
        return True
    return name.endswith(DEFAULT_EXCLUDE_EXTENSIONS)


def matches_exclude_pattern(rel_path: str, name: str, patterns: Iterable[str]) -> bool:
    """Check an entry against caller-supplied exclude patterns.

    Supported forms:
        ``*.ext``  : basename suffix
        ``dir/``   : the directory and everything below it
        ``name``   : exact basename, exact relative path, or directory prefix
        other globs fall back to fnmatch on basename or relative path

    Args:
        rel_path: Posix path relative to the workspace root.
        name: Basename of the entry.
        patterns: Exclude patterns.

    Returns:
        bool: True if the entry should be skipped.
    """
    for pattern in patterns:
        if not pattern:
            continue
        if pattern.startswith("*.") and not any(c in pattern[2:] for c in "*?["):
            if name.endswith(pattern[1:]):
                return True
        elif pattern.endswith("/"):
            dir_name = pattern[:-1]
            if rel_path == dir_name or rel_path.startswith(dir_name + "/"):
                return True
        elif any(c in pattern for c in "*?["):
            if fnmatch.fnmatchcase(name, pattern) or fnmatch.fnmatchcase(rel_path, pattern):
                return True
        else:
            if name == pattern or rel_path == pattern:
                return True
            if rel_path.startswith(pattern + "/"):
                return True
    return False


def categorize_file(rel_path: str) -> FileCategory:
    """Derive the category of a workspace-relative path.

    Priority: category directory, memory directory, known identity
    document at the root, root-level YAML or known config JSON,
    then identity as the catch-all.
    """
    parts = rel_path.split("/")
    file_name = parts[-1]
    top_dir = parts[0] if len(parts) > 1 else None

    if top_dir in CATEGORY_DIRS:
        return CATEGORY_DIRS[top_dir]

    if top_dir in IDENTITY_DIRS:
        return FileCategory.IDENTITY

    if len(parts) == 1:
        if file_name in IDENTITY_ROOT_FILES:
            return FileCategory.IDENTITY
        if PurePosixPath(file_name).suffix in (".yaml", ".yml"):
            return FileCategory.CONFIG
        if file_name in ROOT_CONFIG_FILES:
            return FileCategory.CONFIG

    return FileCategory.IDENTITY


def is_inside(root: Path, candidate: Path) -> bool:
    """True if ``candidate`` is ``root`` or lies below it (both resolved)."""
    return candidate == root or root in candidate.parents


def classify_workspace(
    workspace: Path,
    exclude: Optional[list[str]] = None,
    include: Optional[list[str]] = None,
) -> list[WorkspaceFile]:
    """Inventory a workspace.

    Args:
        workspace: Workspace root directory.
        exclude: Extra exclude patterns.
        include: Extra directories (relative to the root) to recurse into.

    Returns:
        list[WorkspaceFile]: Deterministically ordered file entries. Only
        path, category and size are filled in; hashing happens later.

    Raises:
        PathEscape: If an included directory resolves outside the root.
        FileNotFoundError: If an included directory does not exist.
        NotADirectoryError: If an included path is not a directory.
    """
    exclude = list(exclude or [])
    include = [d.strip("/") for d in (include or []) if d.strip("/")]
    root = Path(workspace).resolve()

    for rel_dir in include:
        resolved = (root / rel_dir).resolve()
        # Check containment before existence so escapes are always reported
        if not is_inside(root, resolved):
            raise PathEscape(f"Included directory is outside workspace: {rel_dir}")
        if not resolved.exists():
            raise FileNotFoundError(f"Included directory does not exist: {rel_dir}")
        if not resolved.is_dir():
            raise NotADirectoryError(f"Included path is not a directory: {rel_dir}")

    files: list[WorkspaceFile] = []
    walked: list[str] = []

    if root.is_dir():
        for item in sorted(root.iterdir(), key=lambda p: p.name):
            name = item.name
            if is_default_excluded(name):
                continue
            if matches_exclude_pattern(name, name, exclude):
                continue
            if item.is_symlink():
                continue

            if item.is_file():
                files.append(WorkspaceFile(
                    path=name,
                    category=categorize_file(name),
                    size=item.stat().st_size,
                ))
            elif item.is_dir() and (name in KNOWN_AGENT_DIRS or name in include):
                files.extend(_walk_directory(item, root, exclude))
                walked.append(name)

    for rel_dir in include:
        if any(rel_dir == done or rel_dir.startswith(done + "/") for done in walked):
            continue
        files.extend(_walk_directory(root / rel_dir, root, exclude))
        walked.append(rel_dir)

    logger.debug("Classified %d files under %s", len(files), root)
    return files


def _walk_directory(directory: Path, root: Path, exclude: list[str]) -> list[WorkspaceFile]:
    """Recursively collect files below ``directory``, sorted by name."""
    entries: list[WorkspaceFile] = []
    try:
        items = sorted(directory.iterdir(), key=lambda p: p.name)
    except OSError as exc:
        logger.warning("Cannot read %s: %s", directory, exc)
        return entries

    for item in items:
        rel_path = item.relative_to(root).as_posix()
        if is_default_excluded(item.name):
            continue
        if matches_exclude_pattern(rel_path, item.name, exclude):
            continue
        if item.is_symlink():
            continue
        if not is_inside(root, item.resolve()):
            continue

        if item.is_dir():
            entries.extend(_walk_directory(item, root, exclude))
        elif item.is_file():
            entries.append(WorkspaceFile(
                path=rel_path,
                category=categorize_file(rel_path),
                size=item.stat().st_size,
            ))

    return entries
