"""
Verify — check every archived file against its manifest checksum.

Unlike restore, verification never stops at the first problem: it
reports ok / corrupted / missing for every file and leaves the
verdict to the caller.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .archive import read_container, unpack_archive
from .errors import MissingManifest
from .manifest import hash_bytes
from .models import Manifest

logger = logging.getLogger("clawback.verify")

STATUS_OK = "ok"
STATUS_CORRUPTED = "corrupted"
STATUS_MISSING = "missing"


@dataclass
class VerifyFileResult:
    """Check result for one manifest file."""

    path: str
    status: str
    expected: Optional[str] = None
    actual: Optional[str] = None


@dataclass
class VerifyResult:
    """Outcome of verifying an archive.

    Attributes:
        valid: True only if every file is ok and the manifest was readable.
        manifest: The archive manifest, or None if it could not be read.
        files: Per-file results in manifest order.
        error: Why the archive could not be checked at all.
    """

    valid: bool
    manifest: Optional[Manifest] = None
    files: list[VerifyFileResult] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def failures(self) -> list[VerifyFileResult]:
        return [f for f in self.files if f.status != STATUS_OK]


def verify_archive(archive_path: str | Path, password: Optional[str] = None) -> VerifyResult:
    """Verify an archive's integrity.

    Args:
        archive_path: The .clawback file.
        password: Needed only for whole-archive-encrypted files.

    Returns:
        VerifyResult with one entry per manifest file.

    Raises:
        FileNotFoundError: If the archive does not exist.
        EncryptedArchive: If it is encrypted and no password was given.
    """
    data = read_container(Path(archive_path), password)
    try:
        archive = unpack_archive(data)
    except MissingManifest as exc:
        return VerifyResult(valid=False, error=str(exc))

    manifest = archive.manifest
    results: list[VerifyFileResult] = []
    for entry in manifest.files:
        expected = manifest.checksums.get(entry.path)
        content = archive.file_content(entry.path)
        if content is None:
            results.append(VerifyFileResult(entry.path, STATUS_MISSING, expected=expected))
            continue
        actual = hash_bytes(content)
        if actual != expected:
            results.append(VerifyFileResult(entry.path, STATUS_CORRUPTED, expected=expected, actual=actual))
        else:
            results.append(VerifyFileResult(entry.path, STATUS_OK))

    valid = all(r.status == STATUS_OK for r in results)
    logger.info("Verified %d files in %s: %s", len(results), archive_path, "ok" if valid else "FAILED")
    return VerifyResult(valid=valid, manifest=manifest, files=results)
