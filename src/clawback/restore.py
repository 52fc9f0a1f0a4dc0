"""
Restore — bring a .clawback archive back to life in a target directory.

Flow:
    read archive -> verify every checksum -> check target paths ->
    write files (remapping paths) -> vault -> dependency check ->
    restore marker + fixup script

Nothing is written until the whole archive has passed the integrity
check. The target directory is always explicit; restore never falls
back to the current directory or the original workspace.
"""

from __future__ import annotations

import json
import logging
import os
import re
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .archive import CRON_ENTRY, ENV_MAP_ENTRY, VAULT_ENTRY, UnpackedArchive, open_archive
from .backup import GATEWAY_OVERRIDE_PATHS
from .classifier import is_inside
from .config import ClawbackConfig, load_config
from .credentials import (
    find_config_credential_targets,
    format_provider_name,
    inject_config_credentials,
    restore_credential_files,
)
from .cron import CronJob, import_cron_jobs, validate_cron_export
from .crypto import decrypt_vault
from .environment import EnvironmentFacts
from .errors import IntegrityMismatch, PathEscape, UsageError
from .manifest import hash_bytes, utc_timestamp
from .models import VaultPayload
from .pathmap import (
    PATH_REMAP_FILES,
    EnvMap,
    build_target_env_map,
    env_map_from_json,
    remap_between,
)
from .prompt import ClickPromptProvider, PromptProvider

logger = logging.getLogger("clawback.restore")

# Overwriting these with different content deserves a warning
IDENTITY_FILES = ("SOUL.md", "AGENTS.md")

PROTECTED_FILES = [
    "SOUL.md",
    "IDENTITY.md",
    "MEMORY.md",
    "AGENTS.md",
    "USER.md",
    "HEARTBEAT.md",
    "TOOLS.md",
]

RESTORE_MARKER = ".clawback-restored"
FIXUP_SCRIPT = "restore-fixup.sh"
ORIGINALS_DIR = ".clawback-originals"

# Config locations checked for secret injection, in order
GATEWAY_INJECT_PATHS = ("config/gateway.yaml", "config/gateway.yml", "gateway.yaml", "gateway.yml")

TOOLS_FILE = "TOOLS.md"
_TOOL_LINE = re.compile(r"^-\s+(\w+):\s+(.+)$", re.MULTILINE)


@dataclass
class RestoredFile:
    """One file written (or, in a dry run, planned) by restore."""

    path: str
    remapped: bool = False


@dataclass
class RestoreResult:
    """Outcome of a restore.

    Attributes:
        target_dir: Directory the workspace was restored into.
        restored_files: Every manifest file, with its remap flag.
        identity_warnings: Identity files overwritten with new content.
        missing_deps: Tools listed in TOOLS.md whose path does not exist.
        dry_run: True if nothing was written.
        agent_name: Agent name from the manifest.
        credentials_restored: Absolute paths of restored secret files.
        cron_jobs: Schedule entries remapped for this machine, for the
            agent runtime to import.
    """

    target_dir: Path
    restored_files: list[RestoredFile] = field(default_factory=list)
    identity_warnings: list[str] = field(default_factory=list)
    missing_deps: list[str] = field(default_factory=list)
    dry_run: bool = False
    agent_name: str = ""
    credentials_restored: list[str] = field(default_factory=list)
    cron_jobs: list[CronJob] = field(default_factory=list)


def build_fixup_script(archive_path: Path, protected_files: list[str]) -> str:
    """Bash script that re-extracts protected identity files from the archive.

    Current copies are kept under .clawback-originals/ first.
    """
    files_list = "\n".join(f"  {shlex.quote(name)}" for name in protected_files)
    return f"""#!/usr/bin/env bash
set -euo pipefail

WORKSPACE_DIR="$(cd "$(dirname "${{BASH_SOURCE[0]}}")" && pwd)"
DEFAULT_ARCHIVE={shlex.quote(str(Path(archive_path).resolve()))}
ARCHIVE_PATH="${{1:-$DEFAULT_ARCHIVE}}"
ORIGINALS_DIR="${{WORKSPACE_DIR}}/{ORIGINALS_DIR}"
PROTECTED_FILES=(
{files_list}
)

if [ ! -f "$ARCHIVE_PATH" ]; then
  echo "Archive not found: $ARCHIVE_PATH"
  echo "Pass the archive path as the first argument."
  exit 1
fi

mkdir -p "$ORIGINALS_DIR"

restored=()

for file in "${{PROTECTED_FILES[@]}}"; do
  if [ -e "${{WORKSPACE_DIR}}/${{file}}" ]; then
    mkdir -p "${{ORIGINALS_DIR}}/$(dirname "${{file}}")"
    cp -a "${{WORKSPACE_DIR}}/${{file}}" "${{ORIGINALS_DIR}}/${{file}}"
  fi
  if tar -tzf "$ARCHIVE_PATH" "agent/${{file}}" >/dev/null 2>&1; then
    tar -xzf "$ARCHIVE_PATH" -C "$WORKSPACE_DIR" --strip-components=1 "agent/${{file}}"
    restored+=("${{file}}")
  fi
done

if [ ${{#restored[@]}} -eq 0 ]; then
  echo "No protected files restored."
else
  echo "Restored protected files:"
  for file in "${{restored[@]}}"; do
    echo "  - ${{file}}"
  done
fi

echo "Originals backed up to: ${{ORIGINALS_DIR}}"
"""


def write_restore_artifacts(target_dir: Path, archive_path: Path, file_count: int) -> None:
    """Leave the restore marker and the fixup script in the target."""
    marker = {
        "restored_at": utc_timestamp(),
        "archive_path": Path(archive_path).name,
        "file_count": file_count,
        "protected_files": PROTECTED_FILES,
    }
    (target_dir / RESTORE_MARKER).write_text(json.dumps(marker, indent=2) + "\n", encoding="utf-8")

    fixup_path = target_dir / FIXUP_SCRIPT
    fixup_path.write_text(build_fixup_script(archive_path, PROTECTED_FILES), encoding="utf-8")
    fixup_path.chmod(0o755)


def verify_integrity(archive: UnpackedArchive) -> None:
    """Check every manifest file against its archived bytes.

    Raises:
        IntegrityMismatch: On the first missing or altered file.
    """
    for entry in archive.manifest.files:
        content = archive.file_content(entry.path)
        if content is None:
            raise IntegrityMismatch(
                entry.path, f"Archive integrity check failed: missing file {entry.path}"
            )
        if hash_bytes(content) != archive.manifest.checksums.get(entry.path):
            raise IntegrityMismatch(
                entry.path, f"Archive integrity check failed: checksum mismatch for {entry.path}"
            )


def _load_env_map(archive: UnpackedArchive) -> EnvMap:
    raw = archive.entries.get(ENV_MAP_ENTRY)
    if raw is None:
        return {}
    try:
        return env_map_from_json(raw)
    except ValueError as exc:
        logger.warning("Ignoring unreadable env map: %s", exc)
        return {}


def _remap_content(content: bytes, old_map: EnvMap, new_map: EnvMap) -> Optional[bytes]:
    """Remapped content, or None when nothing changed."""
    try:
        text = content.decode("utf-8")
    except UnicodeDecodeError:
        return None
    updated = remap_between(text, old_map, new_map)
    if updated == text:
        return None
    return updated.encode("utf-8")


def find_missing_deps(tools_text: str, old_map: EnvMap, new_map: EnvMap) -> list[str]:
    """Tools listed as ``- name: /path`` whose path does not exist here."""
    missing = []
    for match in _TOOL_LINE.finditer(tools_text):
        name, tool_path = match.group(1), match.group(2).strip()
        if new_map:
            tool_path = remap_between(tool_path, old_map, new_map)
        if not os.path.exists(tool_path):
            missing.append(name)
    return missing


def restore_backup(
    archive_path: str | Path,
    target: Optional[str | Path] = None,
    dry_run: bool = False,
    skip_credentials: bool = False,
    password: Optional[str] = None,
    prompt: Optional[PromptProvider] = None,
    facts: Optional[EnvironmentFacts] = None,
    config: Optional[ClawbackConfig] = None,
) -> RestoreResult:
    """Restore an archive into a target directory.

    Args:
        archive_path: The .clawback file.
        target: Directory to restore into. Required.
        dry_run: Report what would happen without writing anything.
        skip_credentials: Leave the vault sealed and do not prompt.
        password: Password for the archive and/or the vault.
        prompt: Asked for a missing password or provider key.
        facts: Target machine facts. Detected when omitted.
        config: Credential key patterns for re-entry prompts. Loaded when
            omitted.

    Returns:
        RestoreResult describing the restored files.

    Raises:
        UsageError: If no target is given.
        FileNotFoundError: If the archive does not exist.
        EncryptedArchive: If the archive is encrypted and no password given.
        MissingManifest: If the archive has no usable manifest.
        IntegrityMismatch: If any archived file fails its checksum.
        PathEscape: If a file would land outside the target.
        InvalidPassword: If the vault or archive password is wrong.
    """
    if not target:
        raise UsageError("The --workspace flag is required for restore. Specify a target directory.")

    facts = facts or EnvironmentFacts.detect()
    config = config or load_config()
    archive_path = Path(archive_path).expanduser()
    archive = open_archive(archive_path, password)
    manifest = archive.manifest

    verify_integrity(archive)

    target_dir = Path(target).expanduser().resolve()
    for entry in manifest.files:
        if not is_inside(target_dir, (target_dir / entry.path).resolve()):
            raise PathEscape(f"Refusing to restore outside the target: {entry.path}")

    old_map = _load_env_map(archive)
    new_map = build_target_env_map(old_map, str(target_dir), facts.home)
    remap_paths = set(PATH_REMAP_FILES) | GATEWAY_OVERRIDE_PATHS

    result = RestoreResult(target_dir=target_dir, dry_run=dry_run, agent_name=manifest.agent.name)

    for name in IDENTITY_FILES:
        existing = target_dir / name
        archived = archive.file_content(name) if manifest.find(name) else None
        if archived is not None and existing.is_file() and existing.read_bytes() != archived:
            result.identity_warnings.append(
                f"{name} will be overwritten (contents differ from existing file)"
            )

    if not dry_run:
        target_dir.mkdir(parents=True, exist_ok=True)

    for entry in manifest.files:
        content = archive.file_content(entry.path)
        remapped = False
        if entry.path in remap_paths and old_map:
            updated = _remap_content(content, old_map, new_map)
            if updated is not None:
                content, remapped = updated, True

        if not dry_run:
            target_path = target_dir / entry.path
            target_path.parent.mkdir(parents=True, exist_ok=True)
            target_path.write_bytes(content)
            os.chmod(target_path, archive.file_mode(entry.path))

        result.restored_files.append(RestoredFile(path=entry.path, remapped=remapped))

    if not dry_run and not skip_credentials:
        provider = prompt or ClickPromptProvider()
        if archive.has(VAULT_ENTRY):
            result.credentials_restored = _restore_vault(
                archive.entries[VAULT_ENTRY], target_dir, old_map, new_map, password, provider
            )
        else:
            _prompt_for_provider_key(target_dir, provider, config.credential_key_patterns)

    if manifest.find(TOOLS_FILE):
        tools_text = archive.file_content(TOOLS_FILE).decode("utf-8", errors="replace")
        result.missing_deps = find_missing_deps(tools_text, old_map, new_map)

    raw_cron = archive.entries.get(CRON_ENTRY)
    if raw_cron is not None:
        try:
            export = validate_cron_export(json.loads(raw_cron))
        except ValueError:
            export = None
        if export is None:
            logger.warning("Ignoring invalid %s", CRON_ENTRY)
        else:
            result.cron_jobs = import_cron_jobs(export, new_map)

    if not dry_run:
        write_restore_artifacts(target_dir, archive_path, len(result.restored_files))

    logger.info(
        "Restored %d files to %s%s",
        len(result.restored_files), target_dir, " (dry run)" if dry_run else "",
    )
    return result


def _gateway_path(target_dir: Path) -> Optional[Path]:
    for rel_path in GATEWAY_INJECT_PATHS:
        candidate = target_dir / rel_path
        if candidate.is_file():
            return candidate
    return None


def _restore_vault(
    vault: bytes,
    target_dir: Path,
    old_map: EnvMap,
    new_map: EnvMap,
    password: Optional[str],
    prompt: PromptProvider,
) -> list[str]:
    if not password:
        password = prompt.prompt_password("Enter password to decrypt credentials: ", False)
    payload = VaultPayload.model_validate_json(decrypt_vault(vault, password))

    restored = restore_credential_files(payload.files, old_map, new_map)

    gateway_path = _gateway_path(target_dir)
    if gateway_path is not None and payload.gateway:
        current = gateway_path.read_text(encoding="utf-8")
        updated = inject_config_credentials(
            current, [(value.key_path, value.value) for value in payload.gateway]
        )
        gateway_path.write_text(updated, encoding="utf-8")
        logger.info("Injected %d config credential(s) into %s", len(payload.gateway), gateway_path.name)
    return restored


def _prompt_for_provider_key(
    target_dir: Path, prompt: PromptProvider, patterns: Optional[list[str]] = None
) -> None:
    """Without a vault, ask for the first redacted provider key only."""
    gateway_path = _gateway_path(target_dir)
    if gateway_path is None:
        return
    current = gateway_path.read_text(encoding="utf-8")
    targets = find_config_credential_targets(current, patterns)
    if not targets:
        return

    first = targets[0]
    key = prompt.prompt_secret(
        f"Enter your {format_provider_name(first['provider'])} API key (or press Enter to skip): "
    )
    if key and key.strip():
        gateway_path.write_text(
            inject_config_credentials(current, [(first["key_path"], key.strip())]),
            encoding="utf-8",
        )
