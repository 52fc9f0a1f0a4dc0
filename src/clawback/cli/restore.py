"""Restore command: unpack an archive into a target workspace."""

from __future__ import annotations

import click
from rich.panel import Panel
from rich.table import Table

from ._common import HANDLED_ERRORS, PASSWORD_ENVVAR, console, fail, with_archive_password


def register_restore_commands(main: click.Group) -> None:
    """Register the restore command."""

    @main.command("restore")
    @click.argument("archive", type=click.Path())
    @click.option("--workspace", "-w", default=None, type=click.Path(),
                  help="Target directory (required).")
    @click.option("--dry-run", is_flag=True, help="Show what would be restored.")
    @click.option("--skip-credentials", is_flag=True, help="Leave the credential vault sealed.")
    @click.option("--password", envvar=PASSWORD_ENVVAR, default=None, help="Archive or vault password.")
    def restore(archive, workspace, dry_run, skip_credentials, password):
        """Restore a .clawback archive into a target directory.

        Every file is checked against the manifest before anything is
        written. Paths recorded on the source machine are rewritten
        for this one.

        Examples:

            clawback restore agent-2026-02-10.clawback -w ~/agent

            clawback restore agent.clawback -w ~/agent --dry-run
        """
        from ..restore import restore_backup

        try:
            result = with_archive_password(
                lambda pw: restore_backup(
                    archive,
                    target=workspace,
                    dry_run=dry_run,
                    skip_credentials=skip_credentials,
                    password=pw,
                ),
                password,
            )
        except HANDLED_ERRORS as exc:
            fail(exc)

        for warning in result.identity_warnings:
            console.print(f"[yellow]Warning:[/] {warning}")

        if dry_run:
            table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2))
            table.add_column("File", style="cyan")
            table.add_column("Paths")
            for restored in result.restored_files:
                table.add_row(restored.path, "[yellow]remapped[/]" if restored.remapped else "")
            console.print(f"\n[bold]Dry run:[/] {len(result.restored_files)} file(s) would be restored:\n")
            console.print(table)
            console.print()
            return

        remapped = sum(1 for f in result.restored_files if f.remapped)
        lines = [
            "[bold green]Restore complete[/]",
            f"Agent: {result.agent_name}",
            f"Files: {len(result.restored_files)} ({remapped} remapped)",
            f"Target: [cyan]{result.target_dir}[/]",
        ]
        if result.credentials_restored:
            lines.append(f"Credential files: {len(result.credentials_restored)}")
        console.print(Panel("\n".join(lines), title="Restore Complete", border_style="green"))

        if result.missing_deps:
            console.print("[yellow]Missing dependencies:[/] " + ", ".join(result.missing_deps))
        if result.cron_jobs:
            console.print(f"[dim]{len(result.cron_jobs)} scheduled job(s) ready to import:[/]")
            for job in result.cron_jobs:
                console.print(f"  [cyan]{job.id}[/] {job.name or ''}")
