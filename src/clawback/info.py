"""
Info — describe an archive without restoring it.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from .archive import read_container, unpack_archive
from .crypto import is_encrypted_archive
from .models import Manifest


@dataclass
class InfoResult:
    """Manifest plus facts about the archive file itself."""

    manifest: Manifest
    file_size_bytes: int
    archive_checksum: str
    encrypted: bool = False


def get_archive_info(archive_path: str | Path, password: Optional[str] = None) -> InfoResult:
    """Read an archive's manifest and container-level metadata.

    The checksum and size describe the file on disk, encrypted or not.

    Raises:
        FileNotFoundError: If the archive does not exist.
        EncryptedArchive: If it is encrypted and no password was given.
        MissingManifest: If it has no usable manifest.
    """
    path = Path(archive_path).expanduser()
    if not path.is_file():
        raise FileNotFoundError(f"Archive not found: {path}")

    raw = path.read_bytes()
    archive = unpack_archive(read_container(path, password))
    return InfoResult(
        manifest=archive.manifest,
        file_size_bytes=len(raw),
        archive_checksum=f"sha256:{hashlib.sha256(raw).hexdigest()}",
        encrypted=is_encrypted_archive(raw),
    )


def format_bytes(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size / (1024 * 1024):.1f} MB"


def format_relative(created: str, now: Optional[datetime] = None) -> str:
    """``2026-02-10 14:30 (3 hours ago)``; unparseable stamps come back as-is."""
    try:
        when = datetime.fromisoformat(created.replace("Z", "+00:00"))
    except ValueError:
        return created
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)

    now = now or datetime.now(timezone.utc)
    minutes = int((now - when).total_seconds() // 60)
    hours = minutes // 60
    days = hours // 24

    if minutes < 1:
        ago = "just now"
    elif minutes < 60:
        ago = f"{minutes} minute{'' if minutes == 1 else 's'} ago"
    elif hours < 24:
        ago = f"{hours} hour{'' if hours == 1 else 's'} ago"
    else:
        ago = f"{days} day{'' if days == 1 else 's'} ago"

    stamp = when.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M")
    return f"{stamp} ({ago})"


def format_info(info: InfoResult, now: Optional[datetime] = None) -> str:
    """Render archive info as plain text lines."""
    m = info.manifest
    c = m.contents
    lines = [
        f"Agent: {m.agent.name}",
        f"Created: {format_relative(m.created, now)}",
        f"Source: {m.source.os} {m.source.arch} ({m.source.hostname})",
        f"Size: {format_bytes(info.file_size_bytes)} ({format_bytes(c.total_bytes)} uncompressed)",
        f"Files: {c.total_files} ({c.identity_files} identity, {c.config_files} config, "
        f"{c.custom_skills} skills, {c.scripts} scripts)",
        f"Credentials: {'yes (encrypted)' if c.credentials else 'no'}",
        f"Checksum: {info.archive_checksum}",
    ]
    if info.encrypted:
        lines.append("Encrypted: yes (whole archive)")
    return "\n".join(lines)
