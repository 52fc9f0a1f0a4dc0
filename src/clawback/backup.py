"""
Backup — snapshot an agent workspace into a .clawback archive.

Flow:
    discover workspace -> manifest -> env map -> export + redact runtime
    config -> drop credential files -> recompute manifest -> seal vault
    -> pack -> (optionally) encrypt the whole archive -> write

Secret values only ever travel inside the encrypted vault. The
plaintext archive carries the redacted config and, at most, the
names of the secrets that were sealed.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from . import ARCHIVE_SUFFIX
from .archive import pack_archive
from .config import ClawbackConfig, load_config
from .credentials import (
    build_credential_manifest,
    build_vault_payload,
    check_credential_options,
    detect_credential_files,
    extract_config_credentials,
    resolve_credential_paths_in_workspace,
)
from .cron import CronJob, export_cron_jobs
from .crypto import encrypt_archive, encrypt_vault
from .discovery import discover_workspace
from .environment import EnvironmentFacts
from .errors import UsageError
from .manifest import create_manifest, recompute_manifest
from .models import ConfigSecret, Manifest
from .pathmap import EnvMap, apply_remap, build_env_map, env_map_to_json, scan_workspace_for_paths
from .prompt import ClickPromptProvider, PromptProvider

logger = logging.getLogger("clawback.backup")

# Where the runtime config is looked for, first match wins
GATEWAY_EXPORT_PATHS = (
    "gateway.yaml",
    "config/gateway.yaml",
    ".openclaw/gateway.yaml",
)

# Manifest files whose content is replaced by the redacted config
GATEWAY_OVERRIDE_PATHS = {
    "config/gateway.yaml",
    "config/gateway.yml",
    "gateway.yaml",
    "gateway.yml",
}


@dataclass
class BackupResult:
    """Outcome of a backup.

    Attributes:
        output_path: Where the archive was written.
        manifest: The final manifest stored in the archive.
        file_count: Number of workspace files archived.
        total_bytes: Uncompressed size of those files.
        encrypted: Whether the whole archive is encrypted.
        credentials: Names of the secrets sealed in the vault.
        path_files: Remap files that embed machine paths, with the
            placeholders found in each.
    """

    output_path: Path
    manifest: Manifest
    file_count: int
    total_bytes: int
    encrypted: bool = False
    credentials: list[str] = field(default_factory=list)
    path_files: dict[str, list[str]] = field(default_factory=dict)


def slugify(name: str) -> str:
    """Lowercase a name and collapse anything not [a-z0-9] into dashes."""
    return re.sub(r"[^a-z0-9]+", "-", name.lower())


def default_output_name(agent_name: str, when: Optional[datetime] = None) -> str:
    """``<agent-slug>-<YYYY-MM-DD>.clawback``."""
    date = (when or datetime.now(timezone.utc)).strftime("%Y-%m-%d")
    return f"{slugify(agent_name)}-{date}{ARCHIVE_SUFFIX}"


def generate_readme(manifest: Manifest, archive_name: str) -> str:
    """Human-readable summary stored as README.md in the archive."""
    contents = manifest.contents
    source = manifest.source
    return f"""# Clawback Backup

Agent: {manifest.agent.name}
Created: {manifest.created}
Source: {source.os} {source.arch} ({source.hostname})

## Contents

- Identity files: {contents.identity_files}
- Config files: {contents.config_files}
- Custom skills: {contents.custom_skills}
- Scripts: {contents.scripts}
- Credentials: {"yes (encrypted)" if contents.credentials else "no"}
- Total size: {contents.total_bytes} bytes

## How to Restore

```bash
pip install clawback
clawback restore {archive_name} --workspace ~/agent
```

## Integrity

This archive includes SHA-256 checksums for every file in manifest.json.
Run `clawback verify <file>` to validate integrity.
"""


def export_gateway_config(workspace: Path, env_map: EnvMap) -> Optional[str]:
    """Read the runtime config with environment paths made portable.

    Returns:
        Optional[str]: Config text, or None if no config file exists.
    """
    for rel_path in GATEWAY_EXPORT_PATHS:
        config_path = Path(workspace) / rel_path
        if not config_path.is_file():
            continue
        try:
            content = config_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Cannot read runtime config %s: %s", config_path, exc)
            continue
        logger.debug("Exported runtime config from %s", rel_path)
        return apply_remap(content, env_map)
    return None


def _require_password(
    password: Optional[str],
    prompt: Optional[PromptProvider],
    message: str,
) -> str:
    if password:
        return password
    provider = prompt or ClickPromptProvider()
    password = provider.prompt_password(message, True)
    if not password:
        raise UsageError("A password is required for encryption")
    return password


def create_backup(
    workspace: Optional[str | Path] = None,
    output: Optional[str | Path] = None,
    exclude: Optional[list[str]] = None,
    include: Optional[list[str]] = None,
    with_credentials: bool = False,
    include_credential: Optional[list[str]] = None,
    password: Optional[str] = None,
    encrypt: bool = False,
    prompt: Optional[PromptProvider] = None,
    facts: Optional[EnvironmentFacts] = None,
    cron_jobs: Optional[list[CronJob]] = None,
    config: Optional[ClawbackConfig] = None,
) -> BackupResult:
    """Create a .clawback archive from a workspace.

    Args:
        workspace: Workspace root. Discovered when omitted.
        output: Archive path. Defaults to ``<agent>-<date>.clawback`` in
            the configured output directory or the current directory.
        exclude: Extra exclude patterns (added to the configured ones).
        include: Extra workspace directories to archive.
        with_credentials: Seal detected secrets into an encrypted vault.
        include_credential: Extra files to seal as secrets.
        password: Password for the vault and/or whole-archive encryption.
        encrypt: Encrypt the whole archive.
        prompt: Asked for a password when one is needed and missing.
        facts: Source machine facts. Detected when omitted.
        cron_jobs: Schedule entries exported from the agent runtime.
        config: User configuration. Loaded when omitted.

    Returns:
        BackupResult describing the written archive.

    Raises:
        FileNotFoundError: If no workspace can be found.
        UsageError: If credential options conflict.
        PathEscape: If an included directory leaves the workspace.
    """
    check_credential_options(with_credentials, include_credential)

    facts = facts or EnvironmentFacts.detect()
    config = config or load_config()

    root = discover_workspace(workspace, home=Path(facts.home) if facts.home else None)
    if root is None:
        if workspace:
            raise FileNotFoundError(f"Workspace not found at: {workspace}")
        raise FileNotFoundError("No agent workspace found. Use --workspace to specify the path.")

    manifest = create_manifest(
        root,
        exclude=list(config.exclude) + list(exclude or []),
        include=include,
        facts=facts,
    )
    env_map = build_env_map(str(root), facts.home)
    path_files = scan_workspace_for_paths(root, env_map) if env_map else {}
    for rel_path, placeholders in path_files.items():
        logger.info("%s embeds %s; paths will be remapped on restore", rel_path, ", ".join(placeholders))

    gateway_config = export_gateway_config(root, env_map)
    config_secrets: list[ConfigSecret] = []
    if gateway_config is not None:
        gateway_config, config_secrets = extract_config_credentials(
            gateway_config, config.credential_key_patterns
        )

    cron_jobs_json = export_cron_jobs(cron_jobs, env_map).to_json() if cron_jobs else None

    credential_files = detect_credential_files(
        root,
        include_credential,
        home=Path(facts.home) if with_credentials and facts.home else None,
    )
    removed = resolve_credential_paths_in_workspace(root, credential_files)
    if removed:
        logger.info("Keeping %d credential file(s) out of the plaintext archive", len(removed))

    overrides: dict[str, bytes] = {}
    if gateway_config is not None:
        for entry in manifest.files:
            if entry.path in GATEWAY_OVERRIDE_PATHS:
                overrides[entry.path] = gateway_config.encode("utf-8")

    recompute_manifest(manifest, root, overrides=overrides, removed=removed)

    vault: Optional[bytes] = None
    credentials_manifest_json: Optional[str] = None
    credential_names: list[str] = []
    if with_credentials:
        password = _require_password(password, prompt, "Enter password to encrypt credentials: ")
        credential_manifest = build_credential_manifest(config_secrets, credential_files)
        payload = build_vault_payload(config_secrets, credential_files)
        vault = encrypt_vault(payload.model_dump_json().encode("utf-8"), password)
        credentials_manifest_json = credential_manifest.model_dump_json(indent=2, exclude_none=True)
        credential_names = [record.name for record in credential_manifest.credentials]
        manifest.contents.credentials = True
    else:
        manifest.contents.credentials = False

    if output:
        output_path = Path(output).expanduser()
    else:
        out_dir = config.output_dir.expanduser() if config.output_dir else Path.cwd()
        output_path = out_dir / default_output_name(manifest.agent.name)

    data = pack_archive(
        manifest,
        root,
        readme=generate_readme(manifest, output_path.name),
        env_map_json=env_map_to_json(env_map) if env_map else None,
        gateway_config=gateway_config,
        cron_jobs_json=cron_jobs_json,
        credentials_manifest_json=credentials_manifest_json,
        vault=vault,
        overrides=overrides,
        compression_level=config.compression_level,
    )

    if encrypt:
        password = _require_password(password, prompt, "Enter password to encrypt archive: ")
        data = encrypt_archive(data, password)

    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_bytes(data)

    logger.info(
        "Backup created: %s (%d files, %d bytes -> %d bytes on disk)",
        output_path, len(manifest.files), manifest.contents.total_bytes, len(data),
    )

    return BackupResult(
        output_path=output_path,
        manifest=manifest,
        file_count=len(manifest.files),
        total_bytes=manifest.contents.total_bytes,
        encrypted=encrypt,
        credentials=credential_names,
        path_files=path_files,
    )
