"""
Archive container — pack and unpack .clawback files.

A .clawback file is a gzip-compressed tar archive (optionally wrapped
in a whole-archive envelope, see ``crypto``). Layout:

    manifest.json                 # snapshot metadata + file checksums
    README.md                     # human-readable summary
    config/env-map.json           # source machine paths
    config/gateway.yaml           # redacted runtime config
    config/cron-jobs.json         # schedule entries
    credentials-manifest.json     # secret names, never values
    credentials.age               # encrypted credential vault
    agent/SOUL.md                 # identity files, memory/, extra dirs
    agent/memory/2026-02-10.md
    config/...                    # config/ directory
    skills/...                    # skills/ directory
    scripts/...                   # scripts/ directory

Entries are written in that order. Reading never needs random access:
the stream is consumed once into an in-memory name -> bytes map.
"""

from __future__ import annotations

import gzip
import logging
import tarfile
import time
from dataclasses import dataclass, field
from io import BytesIO
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from .crypto import decrypt_archive, is_encrypted_archive
from .errors import EncryptedArchive, MissingManifest
from .models import Manifest

logger = logging.getLogger("clawback.archive")

MANIFEST_ENTRY = "manifest.json"
README_ENTRY = "README.md"
ENV_MAP_ENTRY = "config/env-map.json"
GATEWAY_ENTRY = "config/gateway.yaml"
CRON_ENTRY = "config/cron-jobs.json"
CREDENTIALS_MANIFEST_ENTRY = "credentials-manifest.json"
VAULT_ENTRY = "credentials.age"

IDENTITY_PREFIX = "agent"

# Workspace directories stored under their own name
DIRECT_ARCHIVE_DIRS = {"config", "skills", "scripts"}

GENERATED_MODE = 0o644


def get_archive_path(rel_path: str) -> str:
    """Map a workspace-relative path to its archive entry name.

    Files under config/, skills/ and scripts/ keep their path; every
    other file (root files, memory/, extra included directories) goes
    under agent/. The mapping is one-to-one, so restore always finds
    a file where backup put it.
    """
    top_dir = rel_path.split("/", 1)[0] if "/" in rel_path else None
    if top_dir in DIRECT_ARCHIVE_DIRS:
        return rel_path
    return f"{IDENTITY_PREFIX}/{rel_path}"


@dataclass
class ArchiveEntry:
    """One named blob destined for the tar stream."""

    name: str
    data: bytes
    mode: int = GENERATED_MODE
    mtime: float = 0.0


@dataclass
class UnpackedArchive:
    """An archive read fully into memory."""

    manifest: Manifest
    entries: dict[str, bytes] = field(default_factory=dict)
    modes: dict[str, int] = field(default_factory=dict)

    def file_content(self, rel_path: str) -> Optional[bytes]:
        """Archived bytes of a manifest file, or None if absent."""
        return self.entries.get(get_archive_path(rel_path))

    def file_mode(self, rel_path: str) -> int:
        """Archived permission bits of a manifest file."""
        return self.modes.get(get_archive_path(rel_path), GENERATED_MODE)

    def has(self, name: str) -> bool:
        return name in self.entries


def pack_archive(
    manifest: Manifest,
    workspace: Path,
    readme: str,
    env_map_json: Optional[str] = None,
    gateway_config: Optional[str] = None,
    cron_jobs_json: Optional[str] = None,
    credentials_manifest_json: Optional[str] = None,
    vault: Optional[bytes] = None,
    overrides: Optional[dict[str, bytes]] = None,
    compression_level: int = 9,
) -> bytes:
    """Serialize a snapshot into a compressed container.

    Args:
        manifest: Final manifest (checksums already recomputed).
        workspace: Root the manifest paths are relative to.
        readme: README.md text.
        env_map_json: Serialized env map, if any.
        gateway_config: Redacted runtime config text, if any.
        cron_jobs_json: Serialized schedule export, if any.
        credentials_manifest_json: Serialized credential inventory.
        vault: Encrypted vault envelope.
        overrides: Replacement content by relative path.
        compression_level: gzip level 0-9.

    Returns:
        bytes: The gzip-compressed tar stream.
    """
    overrides = overrides or {}
    workspace = Path(workspace)
    now = time.time()

    file_entries: list[ArchiveEntry] = []
    for entry in manifest.files:
        full_path = workspace / entry.path
        st = full_path.stat()
        content = overrides.get(entry.path)
        if content is None:
            content = full_path.read_bytes()
        file_entries.append(ArchiveEntry(
            name=get_archive_path(entry.path),
            data=content,
            mode=st.st_mode & 0o777,
            mtime=st.st_mtime,
        ))
    taken = {e.name for e in file_entries}

    generated = [(MANIFEST_ENTRY, manifest.model_dump_json(indent=2)), (README_ENTRY, readme)]
    optional = [
        (ENV_MAP_ENTRY, env_map_json),
        (GATEWAY_ENTRY, gateway_config),
        (CRON_ENTRY, cron_jobs_json),
        (CREDENTIALS_MANIFEST_ENTRY, credentials_manifest_json),
    ]
    for name, text in optional:
        if text is None:
            continue
        # A workspace file stored under the same name takes the slot
        if name in taken:
            logger.debug("Skipping generated %s: workspace file uses that name", name)
            continue
        generated.append((name, text))

    entries = [ArchiveEntry(name, text.encode("utf-8"), mtime=now) for name, text in generated]
    if vault is not None:
        entries.append(ArchiveEntry(VAULT_ENTRY, vault, mode=0o600, mtime=now))
    entries.extend(file_entries)

    buffer = BytesIO()
    with tarfile.open(fileobj=buffer, mode="w", format=tarfile.PAX_FORMAT) as tar:
        for entry in entries:
            info = tarfile.TarInfo(name=entry.name)
            info.size = len(entry.data)
            info.mode = entry.mode
            info.mtime = int(entry.mtime)
            tar.addfile(info, BytesIO(entry.data))

    compressed = gzip.compress(buffer.getvalue(), compresslevel=compression_level, mtime=0)
    logger.debug(
        "Packed %d entries (%d files) into %d bytes",
        len(entries), len(file_entries), len(compressed),
    )
    return compressed


def unpack_archive(data: bytes) -> UnpackedArchive:
    """Read a compressed container into memory.

    Raises:
        MissingManifest: If the container cannot be read, has no
            manifest.json, or the manifest does not parse.
    """
    entries: dict[str, bytes] = {}
    modes: dict[str, int] = {}
    try:
        with tarfile.open(fileobj=BytesIO(data), mode="r|gz") as tar:
            for member in tar:
                if not member.isfile():
                    continue
                f = tar.extractfile(member)
                if f is None:
                    continue
                entries[member.name] = f.read()
                modes[member.name] = member.mode & 0o777
    except (tarfile.TarError, OSError, EOFError) as exc:
        raise MissingManifest(f"Not a readable clawback archive: {exc}") from exc

    raw_manifest = entries.get(MANIFEST_ENTRY)
    if raw_manifest is None:
        raise MissingManifest("Archive does not contain manifest.json")
    try:
        manifest = Manifest.model_validate_json(raw_manifest)
    except ValidationError as exc:
        raise MissingManifest(f"Invalid manifest.json: {exc}") from exc

    return UnpackedArchive(manifest=manifest, entries=entries, modes=modes)


def read_container(path: Path, password: Optional[str] = None) -> bytes:
    """Load an archive file, removing the whole-archive envelope if present.

    Raises:
        FileNotFoundError: If the archive does not exist.
        EncryptedArchive: If it is encrypted and no password was given.
        InvalidPassword: If the password does not open it.
    """
    archive = Path(path).expanduser()
    if not archive.is_file():
        raise FileNotFoundError(f"Archive not found: {archive}")

    data = archive.read_bytes()
    if is_encrypted_archive(data):
        if not password:
            raise EncryptedArchive(f"Archive is encrypted, a password is required: {archive.name}")
        data = decrypt_archive(data, password)
    return data


def open_archive(path: Path, password: Optional[str] = None) -> UnpackedArchive:
    """Read and unpack an archive file in one step."""
    return unpack_archive(read_container(path, password))
