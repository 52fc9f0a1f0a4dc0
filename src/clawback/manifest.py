"""
Checksum ledger — build the manifest for a workspace.

Every file the classifier finds gets an algorithm-tagged SHA-256
checksum (``sha256:<hex>``) so the format can grow new digests
later without breaking old archives.
"""

from __future__ import annotations

import hashlib
import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Mapping, Optional

from . import FORMAT_VERSION
from .classifier import classify_workspace
from .environment import EnvironmentFacts
from .models import AgentInfo, Manifest, SourceInfo

logger = logging.getLogger("clawback.manifest")

HASH_ALGORITHM = "sha256"

PRIMARY_IDENTITY_FILE = "SOUL.md"
IDENTITY_METADATA_FILE = "IDENTITY.md"

# "Name: X", "**Name:** X", "- **Name:** X", "- Name: X"
_NAME_FIELD = re.compile(r"^[-\s]*\*{0,2}Name\*{0,2}:\*{0,2}\s*(.+)$", re.IGNORECASE | re.MULTILINE)
_HEADING = re.compile(r"^#\s+(.+)$", re.MULTILINE)


def hash_bytes(data: bytes) -> str:
    """Return the tagged SHA-256 checksum of a byte string."""
    return f"{HASH_ALGORITHM}:{hashlib.sha256(data).hexdigest()}"


def hash_file(filepath: Path) -> str:
    """Return the tagged SHA-256 checksum of a file.

    Args:
        filepath: Path to the file.

    Returns:
        str: ``sha256:<hex digest>``.
    """
    h = hashlib.sha256()
    with open(filepath, "rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            h.update(chunk)
    return f"{HASH_ALGORITHM}:{h.hexdigest()}"


def utc_timestamp() -> str:
    """Current time as an ISO-8601 UTC string with millisecond precision."""
    now = datetime.now(timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def extract_agent_name(workspace: Path) -> str:
    """Work out the agent's display name. Never raises.

    Tries the Name field of IDENTITY.md, then the first heading of
    SOUL.md, then falls back to the workspace directory name.
    """
    workspace = Path(workspace)

    identity = _read_text(workspace / IDENTITY_METADATA_FILE)
    if identity:
        match = _NAME_FIELD.search(identity)
        if match and match.group(1).strip():
            return match.group(1).strip()

    soul = _read_text(workspace / PRIMARY_IDENTITY_FILE)
    if soul:
        match = _HEADING.search(soul)
        if match and match.group(1).strip():
            return match.group(1).strip()

    return workspace.resolve().name or "agent"


def _read_text(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return ""


def create_manifest(
    workspace: Path,
    exclude: Optional[list[str]] = None,
    include: Optional[list[str]] = None,
    facts: Optional[EnvironmentFacts] = None,
) -> Manifest:
    """Classify and checksum a workspace into a manifest.

    Args:
        workspace: Workspace root.
        exclude: Extra exclude patterns.
        include: Extra directories to scan.
        facts: Source machine facts. Detected when omitted.

    Returns:
        Manifest: A fresh manifest with ``credentials`` set to False.
    """
    facts = facts or EnvironmentFacts.detect()
    root = Path(workspace)
    files = classify_workspace(root, exclude=exclude, include=include)

    checksums = {entry.path: hash_file(root / entry.path) for entry in files}

    soul_path = root / PRIMARY_IDENTITY_FILE
    soul_hash = hash_file(soul_path) if soul_path.is_file() else ""

    manifest = Manifest(
        clawback_version=FORMAT_VERSION,
        created=utc_timestamp(),
        agent=AgentInfo(name=extract_agent_name(root), identity_hash=soul_hash),
        source=SourceInfo(
            hostname=facts.hostname,
            os=facts.os,
            arch=facts.arch,
            workspace=str(workspace),
        ),
        checksums=checksums,
        files=files,
    )
    manifest.refresh_contents()

    logger.info(
        "Manifest for '%s': %d files, %d bytes",
        manifest.agent.name, len(files), manifest.contents.total_bytes,
    )
    return manifest


def recompute_manifest(
    manifest: Manifest,
    workspace: Path,
    overrides: Optional[Mapping[str, bytes]] = None,
    removed: Optional[set[str]] = None,
) -> Manifest:
    """Bring a manifest back in line after content substitution or exclusion.

    Args:
        manifest: Manifest to update in place.
        workspace: Workspace root the file entries are relative to.
        overrides: Replacement content by relative path.
        removed: Relative paths to drop from the manifest.

    Returns:
        Manifest: The same manifest, for chaining.
    """
    overrides = overrides or {}
    removed = removed or set()

    manifest.files = [f for f in manifest.files if f.path not in removed]
    manifest.checksums = {}
    for entry in manifest.files:
        override = overrides.get(entry.path)
        if override is not None:
            entry.size = len(override)
            manifest.checksums[entry.path] = hash_bytes(override)
        else:
            full_path = Path(workspace) / entry.path
            entry.size = full_path.stat().st_size
            manifest.checksums[entry.path] = hash_file(full_path)
    manifest.refresh_contents()
    return manifest
