"""
Credential handling — redact, inventory and vault agent secrets.

Two kinds of secrets are handled:

    config secrets  credential-looking keys in the runtime config
                    (``providers.anthropic.apiKey``), replaced by REDACTED
                    in the plaintext archive
    file secrets    whole files that hold tokens or cookies (.env,
                    *-cookies.json, OAuth caches), dropped from the
                    plaintext archive entirely

Both are sealed together into the vault payload. Only names, sources
and locations ever land in ``credentials-manifest.json``.
"""

from __future__ import annotations

import base64
import logging
import os
import re
import stat
from pathlib import Path
from typing import Any, Iterable, Optional

import yaml

from .classifier import is_inside
from .config import DEFAULT_CREDENTIAL_KEY_PATTERNS
from .errors import UsageError
from .manifest import utc_timestamp
from .models import (
    ConfigSecret,
    CredentialFile,
    CredentialManifest,
    CredentialRecord,
    CredentialSource,
    VaultConfigValue,
    VaultFile,
    VaultPayload,
)
from .pathmap import EnvMap, remap_between

logger = logging.getLogger("clawback.credentials")

REDACTED_VALUE = "REDACTED"

# Section names that never identify a provider on their own
GENERIC_SECTIONS = {"providers", "models", "gateway", "config"}

_KEY_VALUE_LINE = re.compile(r"^(\s*)([A-Za-z0-9_-]+)\s*:\s*(.+)$")

ROOT_ENV_FILE = ".env"
COOKIE_SUFFIX = "-cookies.json"
TOKEN_SUFFIX = ".token"
TOKEN_CACHE_FILES = {"auth-profiles.json", "models.json"}

# OAuth and credential caches, relative to the workspace
CREDENTIAL_CACHE_PATHS = (
    ".openclaw/auth.json",
    ".openclaw/oauth.json",
    ".openclaw/credentials.json",
    "config/auth.json",
    "config/oauth.json",
)

# Node pairing state, relative to the home directory
DEVICE_PAIRING_PATHS = (
    ".openclaw/devices/paired.json",
    ".openclaw/devices/pending.json",
)


def compile_key_pattern(patterns: Optional[Iterable[str]] = None) -> re.Pattern:
    """Join credential key fragments into one case-insensitive regex."""
    fragments = list(patterns) if patterns else list(DEFAULT_CREDENTIAL_KEY_PATTERNS)
    return re.compile("|".join(fragments), re.IGNORECASE)


def derive_provider(path_parts: list[str]) -> Optional[str]:
    """Nearest enclosing key that names a provider rather than a section."""
    for part in reversed(path_parts):
        if part not in GENERIC_SECTIONS and not part.isdigit():
            return part
    return None


def build_credential_name(provider: Optional[str], key: str) -> str:
    """``("anthropic", "apiKey")`` -> ``ANTHROPIC_APIKEY``."""
    base = f"{provider}_{key}" if provider else key
    return re.sub(r"[^A-Za-z0-9]+", "_", base).strip("_").upper()


def format_provider_name(provider: Optional[str]) -> str:
    """Human label for a provider key, used in prompts."""
    if not provider:
        return "AI provider"
    normalized = re.sub(r"[_-]+", " ", provider).strip()
    return normalized[:1].upper() + normalized[1:]


# ---------------------------------------------------------------------------
# Config secrets
# ---------------------------------------------------------------------------


def _dump_yaml(data: Any) -> str:
    return yaml.safe_dump(data, sort_keys=False, default_flow_style=False, allow_unicode=True)


def _redact_tree(
    value: Any,
    path_parts: list[str],
    pattern: re.Pattern,
    found: list[ConfigSecret],
) -> Any:
    """Return a copy of ``value`` with credential leaves redacted."""
    if isinstance(value, list):
        return [
            _redact_tree(item, path_parts + [str(idx)], pattern, found)
            for idx, item in enumerate(value)
        ]
    if isinstance(value, dict):
        redacted = {}
        for key, val in value.items():
            key_name = str(key)
            if isinstance(val, str) and val.strip() and pattern.search(key_name):
                provider = derive_provider(path_parts)
                found.append(ConfigSecret(
                    name=build_credential_name(provider, key_name),
                    key_path=".".join(path_parts + [key_name]),
                    value=val,
                    provider=provider,
                ))
                redacted[key] = REDACTED_VALUE
            else:
                redacted[key] = _redact_tree(val, path_parts + [key_name], pattern, found)
        return redacted
    return value


def extract_config_credentials(
    text: str,
    patterns: Optional[Iterable[str]] = None,
) -> tuple[str, list[ConfigSecret]]:
    """Redact credential values from runtime config text.

    Args:
        text: YAML config text.
        patterns: Credential key regex fragments. Defaults to the
            built-in list.

    Returns:
        tuple: (redacted text, extracted secrets). When nothing is found
        the text comes back unchanged.
    """
    pattern = compile_key_pattern(patterns)
    try:
        parsed = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        mark = getattr(exc, "problem_mark", None)
        if mark is not None:
            logger.debug(
                "Config is not valid YAML (%s at line %d, column %d), using line scan",
                type(exc).__name__, mark.line + 1, mark.column + 1,
            )
        else:
            logger.debug("Config is not valid YAML (%s), using line scan", type(exc).__name__)
        return _extract_by_lines(text, pattern)

    found: list[ConfigSecret] = []
    redacted = _redact_tree(parsed, [], pattern, found)
    if not found:
        return text, []

    logger.info("Redacted %d config credential(s): %s", len(found), ", ".join(s.name for s in found))
    return _dump_yaml(redacted), found


def _extract_by_lines(text: str, pattern: re.Pattern) -> tuple[str, list[ConfigSecret]]:
    found: list[ConfigSecret] = []
    lines = []
    for line in re.split(r"\r?\n", text):
        match = _KEY_VALUE_LINE.match(line)
        if match and pattern.search(match.group(2)) and match.group(3).strip():
            indent, key, value = match.groups()
            found.append(ConfigSecret(
                name=build_credential_name(None, key),
                key_path=key,
                value=value.strip(),
            ))
            line = f"{indent}{key}: {REDACTED_VALUE}"
        lines.append(line)
    if not found:
        return text, []
    return "\n".join(lines), found


def find_config_credential_targets(
    text: str,
    patterns: Optional[Iterable[str]] = None,
) -> list[dict[str, Optional[str]]]:
    """List credential leaves that are redacted or empty.

    Returns:
        list[dict]: ``key_path``, ``provider`` and ``key_name`` per target,
        in document order. Unparseable text yields no targets.
    """
    pattern = compile_key_pattern(patterns)
    try:
        parsed = yaml.safe_load(text)
    except yaml.YAMLError:
        return []

    targets: list[dict[str, Optional[str]]] = []

    def walk(value: Any, path_parts: list[str]) -> None:
        if isinstance(value, list):
            for idx, item in enumerate(value):
                walk(item, path_parts + [str(idx)])
        elif isinstance(value, dict):
            for key, val in value.items():
                key_name = str(key)
                if (
                    isinstance(val, str)
                    and pattern.search(key_name)
                    and (not val.strip() or val.strip().upper() == REDACTED_VALUE)
                ):
                    targets.append({
                        "key_path": ".".join(path_parts + [key_name]),
                        "provider": derive_provider(path_parts),
                        "key_name": key_name,
                    })
                else:
                    walk(val, path_parts + [key_name])

    walk(parsed, [])
    return targets


def inject_config_credentials(text: str, values: list[tuple[str, str]]) -> str:
    """Write secret values back into config text by dotted key path.

    Args:
        text: Redacted YAML config text.
        values: ``(key_path, value)`` pairs.

    Returns:
        str: Config text with the values in place.
    """
    if not values:
        return text
    try:
        parsed = yaml.safe_load(text)
    except yaml.YAMLError:
        parsed = None

    if not isinstance(parsed, (dict, list)):
        return _inject_by_lines(text, values)

    for key_path, value in values:
        _set_nested(parsed, [p for p in key_path.split(".") if p], value)
    return _dump_yaml(parsed)


def _inject_by_lines(text: str, values: list[tuple[str, str]]) -> str:
    updated = text
    for key_path, value in values:
        key = key_path.split(".")[-1]
        if not key:
            continue
        line = re.compile(rf"(^\s*{re.escape(key)}\s*:)\s*.+$", re.MULTILINE)
        updated = line.sub(lambda m: f"{m.group(1)} {value}", updated, count=1)
    return updated


def _set_nested(container: Any, parts: list[str], value: str) -> None:
    current = container
    for idx, part in enumerate(parts):
        last = idx == len(parts) - 1
        if isinstance(current, list):
            if not part.isdigit() or int(part) >= len(current):
                return
            if last:
                current[int(part)] = value
                return
            current = current[int(part)]
        elif isinstance(current, dict):
            if last:
                current[part] = value
                return
            if not isinstance(current.get(part), (dict, list)):
                current[part] = {}
            current = current[part]
        else:
            return


# ---------------------------------------------------------------------------
# File secrets
# ---------------------------------------------------------------------------


def detect_credential_files(
    workspace: Path,
    include_credential: Optional[list[str]] = None,
    home: Optional[Path] = None,
) -> list[CredentialFile]:
    """Find files that hold secrets.

    Args:
        workspace: Workspace root.
        include_credential: Extra files to treat as secrets.
        home: Home directory to look for device pairing files in.

    Returns:
        list[CredentialFile]: One entry per distinct absolute path.

    Raises:
        FileNotFoundError: If an explicitly included file does not exist.
    """
    root = Path(workspace).resolve()
    entries: list[CredentialFile] = []
    seen: set[str] = set()

    def add(path: Path, source: CredentialSource) -> None:
        original = str(path)
        if original in seen:
            return
        seen.add(original)
        entries.append(CredentialFile(name=path.name, source=source, original_path=original))

    try:
        root_items = sorted(root.iterdir(), key=lambda p: p.name)
    except OSError:
        root_items = []

    for item in root_items:
        if not item.is_file():
            continue
        name = item.name
        if name == ROOT_ENV_FILE or name.startswith(ROOT_ENV_FILE + "."):
            add(item, CredentialSource.ENV_FILE)
        elif name.endswith(COOKIE_SUFFIX):
            add(item, CredentialSource.COOKIES)
        elif name in TOKEN_CACHE_FILES or name.endswith(TOKEN_SUFFIX):
            add(item, CredentialSource.OAUTH_TOKEN)

    for rel_path in CREDENTIAL_CACHE_PATHS:
        candidate = root / rel_path
        if candidate.is_file():
            add(candidate, CredentialSource.OAUTH_TOKEN)

    if home is not None:
        for rel_path in DEVICE_PAIRING_PATHS:
            candidate = Path(home) / rel_path
            if candidate.is_file():
                add(candidate.resolve(), CredentialSource.OAUTH_TOKEN)

    for raw in include_credential or []:
        resolved = Path(raw).expanduser().resolve()
        if not resolved.exists():
            raise FileNotFoundError(f"Included credential not found: {raw}")
        add(resolved, CredentialSource.INCLUDED)

    logger.debug("Detected %d credential file(s)", len(entries))
    return entries


def check_credential_options(with_credentials: bool, include_credential: Optional[list[str]]) -> None:
    """Reject extra credential files when credential inclusion is off."""
    if include_credential and not with_credentials:
        raise UsageError("--include-credential requires --with-credentials")


def resolve_credential_paths_in_workspace(workspace: Path, files: list[CredentialFile]) -> set[str]:
    """Workspace-relative paths of the credential files that live inside it."""
    root = Path(workspace).resolve()
    inside: set[str] = set()
    for entry in files:
        path = Path(entry.original_path).resolve()
        if path != root and is_inside(root, path):
            inside.add(path.relative_to(root).as_posix())
    return inside


def build_credential_manifest(
    config_secrets: list[ConfigSecret],
    files: list[CredentialFile],
) -> CredentialManifest:
    """Describe every sealed secret without its value."""
    records = [
        CredentialRecord(
            name=secret.name,
            source=CredentialSource.CONFIG,
            required=secret.required,
            key_path=secret.key_path,
        )
        for secret in config_secrets
    ]
    records.extend(
        CredentialRecord(
            name=entry.name,
            source=entry.source,
            required=entry.required,
            original_path=entry.original_path,
        )
        for entry in files
    )
    return CredentialManifest(credentials=records)


def build_vault_payload(
    config_secrets: list[ConfigSecret],
    files: list[CredentialFile],
) -> VaultPayload:
    """Gather secret values and file contents into the vault plaintext."""
    vault_files = []
    for entry in files:
        path = Path(entry.original_path)
        st = path.stat()
        vault_files.append(VaultFile(
            original_path=entry.original_path,
            data=base64.b64encode(path.read_bytes()).decode("ascii"),
            mode=stat.S_IMODE(st.st_mode),
            mtime_ms=st.st_mtime * 1000,
        ))

    return VaultPayload(
        created=utc_timestamp(),
        gateway=[
            VaultConfigValue(
                name=secret.name,
                key_path=secret.key_path,
                value=secret.value.get_secret_value(),
            )
            for secret in config_secrets
        ],
        files=vault_files,
    )


def remap_credential_path(original_path: str, old_map: EnvMap, new_map: EnvMap) -> str:
    """Move a secret's absolute path into the target environment."""
    return remap_between(original_path, old_map, new_map)


def restore_credential_files(
    files: list[VaultFile],
    old_map: EnvMap,
    new_map: EnvMap,
) -> list[str]:
    """Write vaulted files back with their original mode and mtime.

    Returns:
        list[str]: Absolute paths written.
    """
    restored = []
    for entry in files:
        target = Path(remap_credential_path(entry.original_path, old_map, new_map))
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(base64.b64decode(entry.data))
        try:
            os.chmod(target, entry.mode)
            mtime = entry.mtime_ms / 1000
            os.utime(target, (mtime, mtime))
        except OSError as exc:
            logger.warning("Could not restore metadata for %s: %s", target, exc)
        restored.append(str(target))
    logger.info("Restored %d credential file(s)", len(restored))
    return restored
