"""
Interactive prompts for passwords and secrets.

The engine only ever asks through a PromptProvider, so tests and
batch callers can answer without a terminal.
"""

from __future__ import annotations

from typing import Protocol

import click


class PromptProvider(Protocol):
    """Anything that can ask the user for a hidden string."""

    def prompt_password(self, message: str, confirm: bool) -> str:
        ...

    def prompt_secret(self, message: str) -> str:
        ...


class ClickPromptProvider:
    """Ask on the terminal with hidden input."""

    def prompt_password(self, message: str, confirm: bool) -> str:
        return click.prompt(
            message,
            hide_input=True,
            confirmation_prompt=confirm,
            prompt_suffix="",
        )

    def prompt_secret(self, message: str) -> str:
        return click.prompt(
            message,
            hide_input=True,
            default="",
            show_default=False,
            prompt_suffix="",
        )
