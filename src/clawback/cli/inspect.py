"""Inspection commands: verify, diff, info."""

from __future__ import annotations

from pathlib import Path

import click
from rich.markup import escape
from rich.table import Table

from ._common import HANDLED_ERRORS, PASSWORD_ENVVAR, console, fail, with_archive_password

STATUS_STYLE = {
    "ok": "[green]OK[/]",
    "corrupted": "[bold red]CORRUPTED[/]",
    "missing": "[bold red]MISSING[/]",
}


def register_inspect_commands(main: click.Group) -> None:
    """Register verify, diff and info."""

    @main.command("verify")
    @click.argument("archive", type=click.Path())
    @click.option("--password", envvar=PASSWORD_ENVVAR, default=None, help="Archive password.")
    def verify(archive, password):
        """Check every file in an archive against its checksum.

        Exits with status 1 if anything is corrupted or missing.

        Examples:

            clawback verify agent-2026-02-10.clawback
        """
        from ..verify import verify_archive

        try:
            result = with_archive_password(lambda pw: verify_archive(archive, pw), password)
        except HANDLED_ERRORS as exc:
            fail(exc)

        if result.error:
            console.print(f"[red]Invalid archive:[/] {escape(result.error)}")
            raise SystemExit(1)

        table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2))
        table.add_column("File", style="cyan")
        table.add_column("Status")
        for file_result in result.files:
            table.add_row(file_result.path, STATUS_STYLE.get(file_result.status, file_result.status))
        console.print(table)

        if result.valid:
            console.print(f"\n[bold green]Archive OK[/]: {len(result.files)} file(s) verified\n")
        else:
            console.print(f"\n[bold red]Archive FAILED[/]: {len(result.failures)} problem(s)\n")
            raise SystemExit(1)

    @main.command("diff")
    @click.argument("archive", type=click.Path())
    @click.argument("other", required=False, type=click.Path())
    @click.option("--workspace", "-w", default=None, type=click.Path(),
                  help="Live workspace to compare against.")
    @click.option("--password", envvar=PASSWORD_ENVVAR, default=None, help="Archive password.")
    def diff(archive, other, workspace, password):
        """Compare an archive with a live workspace or another archive.

        Examples:

            clawback diff agent.clawback -w ~/clawd

            clawback diff monday.clawback friday.clawback
        """
        from ..diff import diff_archive_vs_archive, diff_archive_vs_workspace, format_diff
        from ..discovery import discover_workspace

        try:
            if other:
                result = with_archive_password(
                    lambda pw: diff_archive_vs_archive(archive, other, pw), password
                )
            else:
                root = discover_workspace(workspace)
                if root is None:
                    fail("No agent workspace found. Use --workspace to specify the path.")
                result = with_archive_password(
                    lambda pw: diff_archive_vs_workspace(archive, root, pw), password
                )
        except HANDLED_ERRORS as exc:
            fail(exc)

        if not result.entries:
            console.print("\n[dim]Nothing to compare.[/]\n")
            return
        console.print(format_diff(result), markup=False, highlight=False, soft_wrap=True)
        if not result.has_changes:
            console.print("\n[green]No changes.[/]")

    @main.command("info")
    @click.argument("archive", type=click.Path())
    @click.option("--password", envvar=PASSWORD_ENVVAR, default=None, help="Archive password.")
    def info(archive, password):
        """Show what an archive contains without restoring it.

        Examples:

            clawback info agent-2026-02-10.clawback
        """
        from ..info import format_info, get_archive_info

        try:
            result = with_archive_password(lambda pw: get_archive_info(Path(archive), pw), password)
        except HANDLED_ERRORS as exc:
            fail(exc)

        console.print(format_info(result), markup=False, highlight=False, soft_wrap=True)
