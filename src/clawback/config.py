"""
User configuration for clawback.

Read from ~/.config/clawback/config.yaml (or $CLAWBACK_CONFIG).
Everything here has a sane default, so the file is optional.

Example:
    exclude:
      - "*.tmp"
      - drafts/
    credential_key_patterns:
      - api[_-]?key
      - token
      - password
    compression_level: 6
    output_dir: ~/backups
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, ValidationError

from . import CLAWBACK_CONFIG

logger = logging.getLogger("clawback.config")

DEFAULT_CREDENTIAL_KEY_PATTERNS = [
    r"api[_-]?key",
    r"token",
    r"secret",
    r"access[_-]?token",
    r"refresh[_-]?token",
]


class ClawbackConfig(BaseModel):
    """Tunable behaviour for backup and restore."""

    exclude: list[str] = Field(default_factory=list)
    credential_key_patterns: list[str] = Field(
        default_factory=lambda: list(DEFAULT_CREDENTIAL_KEY_PATTERNS)
    )
    compression_level: int = Field(default=9, ge=0, le=9)
    output_dir: Optional[Path] = None


def load_config(path: Optional[Path] = None) -> ClawbackConfig:
    """Load configuration from disk.

    Args:
        path: Config file to read. Defaults to $CLAWBACK_CONFIG.

    Returns:
        ClawbackConfig loaded from YAML, or defaults.
    """
    config_file = (path or Path(CLAWBACK_CONFIG)).expanduser()
    if not config_file.exists():
        return ClawbackConfig()
    try:
        data = yaml.safe_load(config_file.read_text(encoding="utf-8")) or {}
        return ClawbackConfig(**data)
    except (OSError, yaml.YAMLError, ValidationError, TypeError) as exc:
        logger.warning("Failed to load config %s: %s; using defaults", config_file, exc)
    return ClawbackConfig()
