"""
Path remapping — make absolute paths portable across machines.

An env map pairs placeholders with the absolute paths seen on the
source machine:

    {"${WORKSPACE}": "/home/ana/agent", "${HOME}": "/home/ana"}

Forward remapping swaps values for placeholders (longest value
first, so the workspace is never half-eaten by the home prefix).
Reverse remapping expands placeholders with the target machine's
values. Restore chains the two: old paths -> placeholders -> new
paths.

Only a handful of text files are ever rewritten; touching
arbitrary files would corrupt binaries and unrelated text.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Optional

logger = logging.getLogger("clawback.pathmap")

EnvMap = dict[str, str]

WORKSPACE_PLACEHOLDER = "${WORKSPACE}"
HOME_PLACEHOLDER = "${HOME}"

# Files most likely to embed absolute paths
PATH_REMAP_FILES = (
    "TOOLS.md",
    "config/gateway.yaml",
    "HEARTBEAT.md",
    "AGENTS.md",
)


def build_env_map(workspace: Optional[str], home: Optional[str]) -> EnvMap:
    """Create the env map for one environment.

    The workspace goes first (more specific), then home. Empty or
    relative values are left out.

    Args:
        workspace: Absolute workspace root.
        home: Absolute home directory.

    Returns:
        EnvMap: Ordered placeholder -> path mapping.
    """
    env_map: EnvMap = {}
    if workspace and os.path.isabs(workspace):
        env_map[WORKSPACE_PLACEHOLDER] = str(workspace)
    if home and os.path.isabs(home):
        env_map[HOME_PLACEHOLDER] = str(home)
    return env_map


def build_target_env_map(old_map: EnvMap, workspace: str, home: Optional[str]) -> EnvMap:
    """Build the target environment's map over the source map's placeholders."""
    fresh = build_env_map(workspace, home)
    return {key: fresh[key] for key in old_map if key in fresh}


def detect_paths(content: str, env_map: EnvMap) -> list[str]:
    """Return the placeholders whose values appear in ``content``."""
    return [placeholder for placeholder, value in env_map.items() if value and value in content]


def apply_remap(content: str, env_map: EnvMap) -> str:
    """Replace environment paths with placeholders, longest value first."""
    if not env_map:
        return content
    result = content
    for placeholder, value in sorted(env_map.items(), key=lambda kv: len(kv[1]), reverse=True):
        if value:
            result = result.replace(value, placeholder)
    return result


def unapply_remap(content: str, env_map: EnvMap) -> str:
    """Expand placeholders with environment paths.

    Placeholders with no value in ``env_map`` are left as they are.
    """
    result = content
    for placeholder, value in env_map.items():
        if value:
            result = result.replace(placeholder, value)
    return result


def remap_between(content: str, old_map: EnvMap, new_map: EnvMap) -> str:
    """Rewrite source-machine paths into target-machine paths."""
    if not old_map:
        return content
    return unapply_remap(apply_remap(content, old_map), new_map)


def scan_workspace_for_paths(workspace: Path, env_map: EnvMap) -> dict[str, list[str]]:
    """Find which remap files embed which environment paths.

    Returns:
        dict: Relative path -> detected placeholders, only for files
        with at least one hit.
    """
    results: dict[str, list[str]] = {}
    for rel_path in PATH_REMAP_FILES:
        full_path = Path(workspace) / rel_path
        if not full_path.is_file():
            continue
        try:
            content = full_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            logger.debug("Skipping %s: %s", rel_path, exc)
            continue
        detected = detect_paths(content, env_map)
        if detected:
            results[rel_path] = detected
    return results


def env_map_to_json(env_map: EnvMap) -> str:
    """Serialize an env map for config/env-map.json."""
    return json.dumps(env_map, indent=2)


def env_map_from_json(raw: bytes | str) -> EnvMap:
    """Parse config/env-map.json, keeping only string pairs."""
    data = json.loads(raw)
    if not isinstance(data, dict):
        return {}
    return {str(k): v for k, v in data.items() if isinstance(v, str)}
