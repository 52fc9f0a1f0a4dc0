"""Backup command: snapshot a workspace into a .clawback archive."""

from __future__ import annotations

import json
from pathlib import Path

import click
from pydantic import ValidationError
from rich.panel import Panel

from ._common import HANDLED_ERRORS, PASSWORD_ENVVAR, console, fail


def _load_cron_file(path: str) -> list:
    """Read a runtime cron listing (a JSON list, or an object with ``jobs``)."""
    from ..cron import CronJob

    data = json.loads(Path(path).read_text(encoding="utf-8"))
    jobs = data.get("jobs", []) if isinstance(data, dict) else data
    return [CronJob.model_validate(job) for job in jobs]


def register_backup_commands(main: click.Group) -> None:
    """Register the backup command."""

    @main.command("backup")
    @click.option("--workspace", "-w", default=None, type=click.Path(), help="Workspace to back up.")
    @click.option("--output", "-o", default=None, type=click.Path(), help="Archive path.")
    @click.option("--exclude", "-x", multiple=True, help="Exclude pattern (repeatable).")
    @click.option("--include", "-i", multiple=True, help="Extra workspace directory (repeatable).")
    @click.option("--with-credentials", is_flag=True, help="Seal secrets into an encrypted vault.")
    @click.option("--include-credential", multiple=True, type=click.Path(),
                  help="Extra secret file for the vault (repeatable).")
    @click.option("--encrypt", is_flag=True, help="Encrypt the whole archive.")
    @click.option("--password", envvar=PASSWORD_ENVVAR, default=None, help="Encryption password.")
    @click.option("--cron-file", default=None, type=click.Path(exists=True),
                  help="JSON cron job listing exported from the agent runtime.")
    def backup(workspace, output, exclude, include, with_credentials,
               include_credential, encrypt, password, cron_file):
        """Create a .clawback archive of an agent workspace.

        Identity files, memory, config, skills and scripts are archived
        with SHA-256 checksums. Secrets are redacted from the config;
        with --with-credentials they are sealed in an encrypted vault.

        Examples:

            clawback backup

            clawback backup -w ~/clawd -o /mnt/usb/agent.clawback

            clawback backup --with-credentials --encrypt
        """
        from ..backup import create_backup
        from ..info import format_bytes

        try:
            cron_jobs = _load_cron_file(cron_file) if cron_file else None
        except (OSError, ValueError, ValidationError) as exc:
            fail(f"Invalid cron file {cron_file}: {exc}")

        try:
            console.print("\n[cyan]Creating backup...[/]")
            result = create_backup(
                workspace=workspace,
                output=output,
                exclude=list(exclude),
                include=list(include),
                with_credentials=with_credentials,
                include_credential=list(include_credential),
                password=password,
                encrypt=encrypt,
                cron_jobs=cron_jobs,
            )
        except HANDLED_ERRORS as exc:
            fail(exc)

        lines = [
            "[bold green]Backup created[/]",
            f"Agent: {result.manifest.agent.name}",
            f"Files: {result.file_count}",
            f"Size: {format_bytes(result.total_bytes)} uncompressed",
        ]
        if result.credentials:
            lines.append(f"Credentials: {len(result.credentials)} sealed ({', '.join(result.credentials)})")
        if result.encrypted:
            lines.append("Encrypted: [green]yes[/]")
        lines.append(f"Path: [cyan]{result.output_path}[/]")

        console.print(Panel("\n".join(lines), title="Backup Complete", border_style="green"))
