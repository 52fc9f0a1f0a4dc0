"""Shared utilities for all CLI command modules.

Provides the Rich console instance, error reporting and the
encrypted-archive password retry used by every archive reader.
"""

from __future__ import annotations

from typing import Callable, Optional, TypeVar

from rich.console import Console
from rich.markup import escape

from ..errors import ClawbackError, EncryptedArchive
from ..prompt import ClickPromptProvider

console = Console()

T = TypeVar("T")

# Errors reported as a red message with exit status 1
HANDLED_ERRORS = (ClawbackError, FileNotFoundError, NotADirectoryError)

PASSWORD_ENVVAR = "CLAWBACK_PASSWORD"


def fail(exc: object) -> None:
    """Print an error and exit with status 1."""
    console.print(f"[red]{escape(str(exc))}[/]")
    raise SystemExit(1)


def with_archive_password(action: Callable[[Optional[str]], T], password: Optional[str]) -> T:
    """Run ``action(password)``, asking once for a password if the archive is encrypted."""
    try:
        return action(password)
    except EncryptedArchive:
        console.print("[yellow]This archive is encrypted.[/]")
        password = ClickPromptProvider().prompt_password("Archive password: ", False)
        return action(password)
