"""Tests for restore."""

from __future__ import annotations

import io
import json
import os
import shlex
import stat
import tarfile
from pathlib import Path

import pytest
import yaml

from clawback.backup import create_backup
from clawback.config import ClawbackConfig
from clawback.cron import CronJob
from clawback.diff import diff_archive_vs_workspace
from clawback.environment import EnvironmentFacts
from clawback.errors import EncryptedArchive, IntegrityMismatch, InvalidPassword, PathEscape, UsageError
from clawback.manifest import hash_bytes
from clawback.models import FileCategory, Manifest, WorkspaceFile
from clawback.restore import (
    FIXUP_SCRIPT,
    PROTECTED_FILES,
    RESTORE_MARKER,
    build_fixup_script,
    find_missing_deps,
    restore_backup,
)


@pytest.fixture
def target_facts(tmp_path: Path) -> EnvironmentFacts:
    """A different machine to restore onto."""
    new_home = tmp_path / "newhome"
    new_home.mkdir()
    return EnvironmentFacts(home=str(new_home), hostname="newhost", os="linux", arch="aarch64")


@pytest.fixture
def target(target_facts: EnvironmentFacts) -> Path:
    """Restore destination on the new machine (not created yet)."""
    return Path(target_facts.home) / "agent"


@pytest.fixture
def make_backup(tmp_path: Path, facts: EnvironmentFacts, config: ClawbackConfig):
    """Back up a workspace to tmp_path/backup.clawback."""

    def _make(workspace: Path, **kwargs) -> Path:
        result = create_backup(
            workspace, output=tmp_path / "backup.clawback", facts=facts, config=config, **kwargs
        )
        return result.output_path

    return _make


@pytest.fixture
def gateway_workspace(full_workspace: Path) -> Path:
    """Workspace with a runtime config, a secret file and path-bearing notes."""
    (full_workspace / "config" / "gateway.yaml").write_text(
        "providers:\n"
        "  anthropic:\n"
        "    apiKey: sk-live-1\n"
        f"workspace: {full_workspace}/data\n"
    )
    (full_workspace / ".env").write_text("OPENAI_API_KEY=sk-env-2\n")
    return full_workspace


class TestRestoreBasics:
    """Writing a workspace back out."""

    def test_target_required(self, workspace: Path, make_backup) -> None:
        archive = make_backup(workspace)
        with pytest.raises(UsageError):
            restore_backup(archive, None)

    def test_missing_archive(self, tmp_path: Path, target: Path) -> None:
        with pytest.raises(FileNotFoundError):
            restore_backup(tmp_path / "nope.clawback", target)

    def test_roundtrip_is_clean(
        self, full_workspace: Path, make_backup, target: Path, target_facts: EnvironmentFacts, stub_prompt
    ) -> None:
        archive = make_backup(full_workspace)
        result = restore_backup(archive, target, prompt=stub_prompt, facts=target_facts)

        assert result.target_dir == target.resolve()
        assert result.agent_name == "Clawd"
        assert len(result.restored_files) == 7
        assert not any(f.remapped for f in result.restored_files)
        for entry in result.restored_files:
            assert (target / entry.path).read_bytes() == (full_workspace / entry.path).read_bytes()

        assert not diff_archive_vs_workspace(archive, target).has_changes
        assert stub_prompt.password_calls == []
        assert stub_prompt.secret_calls == []

    def test_modes_restored(
        self, full_workspace: Path, make_backup, target: Path, target_facts: EnvironmentFacts, stub_prompt
    ) -> None:
        restore_backup(make_backup(full_workspace), target, prompt=stub_prompt, facts=target_facts)
        assert stat.S_IMODE(os.stat(target / "scripts" / "hello.sh").st_mode) == 0o755

    def test_marker_and_fixup_script(
        self, full_workspace: Path, make_backup, target: Path, target_facts: EnvironmentFacts, stub_prompt
    ) -> None:
        archive = make_backup(full_workspace)
        restore_backup(archive, target, prompt=stub_prompt, facts=target_facts)

        marker = json.loads((target / RESTORE_MARKER).read_text())
        assert marker["archive_path"] == "backup.clawback"
        assert marker["file_count"] == 7
        assert marker["protected_files"] == PROTECTED_FILES

        fixup = target / FIXUP_SCRIPT
        assert os.access(fixup, os.X_OK)
        script = fixup.read_text()
        assert script.startswith("#!/usr/bin/env bash")
        assert str(archive.resolve()) in script
        assert "  SOUL.md\n" in script

    def test_dry_run_writes_nothing(
        self, full_workspace: Path, make_backup, target: Path, target_facts: EnvironmentFacts, stub_prompt
    ) -> None:
        result = restore_backup(
            make_backup(full_workspace), target, dry_run=True, prompt=stub_prompt, facts=target_facts
        )

        assert result.dry_run is True
        assert len(result.restored_files) == 7
        assert not target.exists()
        assert stub_prompt.password_calls == []

    def test_identity_overwrite_warning(
        self, workspace: Path, make_backup, target: Path, target_facts: EnvironmentFacts, stub_prompt
    ) -> None:
        archive = make_backup(workspace)
        target.mkdir()
        (target / "SOUL.md").write_text("# Someone else\n")

        result = restore_backup(archive, target, prompt=stub_prompt, facts=target_facts)

        assert result.identity_warnings == [
            "SOUL.md will be overwritten (contents differ from existing file)"
        ]
        assert (target / "SOUL.md").read_text() == "# Agent\n"

    def test_same_identity_no_warning(
        self, workspace: Path, make_backup, target: Path, target_facts: EnvironmentFacts, stub_prompt
    ) -> None:
        archive = make_backup(workspace)
        target.mkdir()
        (target / "SOUL.md").write_text("# Agent\n")

        result = restore_backup(archive, target, prompt=stub_prompt, facts=target_facts)
        assert result.identity_warnings == []


class TestRestoreSafety:
    """Nothing is written unless the archive checks out."""

    def test_tampered_file_blocks_restore(
        self, workspace: Path, make_backup, target: Path, target_facts: EnvironmentFacts, rewrite_archive
    ) -> None:
        archive = make_backup(workspace)
        rewrite_archive(archive, lambda name, data: b"# Tampered\n" if name == "agent/SOUL.md" else data)

        with pytest.raises(IntegrityMismatch) as exc_info:
            restore_backup(archive, target, facts=target_facts)
        assert exc_info.value.path == "SOUL.md"
        assert not target.exists()

    def test_missing_file_blocks_restore(
        self, workspace: Path, make_backup, target: Path, target_facts: EnvironmentFacts, rewrite_archive
    ) -> None:
        archive = make_backup(workspace)
        rewrite_archive(archive, lambda name, data: None if name == "agent/MEMORY.md" else data)

        with pytest.raises(IntegrityMismatch, match="missing file MEMORY.md"):
            restore_backup(archive, target, facts=target_facts)
        assert not target.exists()

    def test_path_escape_blocks_restore(
        self, tmp_path: Path, target: Path, target_facts: EnvironmentFacts
    ) -> None:
        content = b"evil"
        manifest = Manifest(
            files=[WorkspaceFile(path="../evil.md", category=FileCategory.IDENTITY, size=len(content))],
            checksums={"../evil.md": hash_bytes(content)},
        )
        buffer = io.BytesIO()
        with tarfile.open(fileobj=buffer, mode="w:gz") as tar:
            for name, data in (("manifest.json", manifest.model_dump_json().encode()), ("agent/../evil.md", content)):
                info = tarfile.TarInfo(name)
                info.size = len(data)
                tar.addfile(info, io.BytesIO(data))
        archive = tmp_path / "evil.clawback"
        archive.write_bytes(buffer.getvalue())

        with pytest.raises(PathEscape):
            restore_backup(archive, target, facts=target_facts)
        assert not target.exists()
        assert not (target.parent / "evil.md").exists()

    def test_encrypted_archive(
        self, workspace: Path, make_backup, target: Path, target_facts: EnvironmentFacts, stub_prompt
    ) -> None:
        archive = make_backup(workspace, encrypt=True, password="pw")

        with pytest.raises(EncryptedArchive):
            restore_backup(archive, target, facts=target_facts)
        result = restore_backup(archive, target, password="pw", prompt=stub_prompt, facts=target_facts)
        assert (target / "SOUL.md").read_text() == "# Agent\n"
        assert len(result.restored_files) == 2


class TestPathRemapping:
    """Absolute paths follow the workspace to its new home."""

    def test_tools_remapped_and_deps_checked(
        self, workspace: Path, make_backup, target: Path, target_facts: EnvironmentFacts, stub_prompt
    ) -> None:
        (workspace / "TOOLS.md").write_text(f"- git: {workspace}/bin/git\n- sh: /bin/sh\n")
        (workspace / "notes.md").write_text(f"lives in {workspace}\n")

        result = restore_backup(make_backup(workspace), target, prompt=stub_prompt, facts=target_facts)
        resolved = target.resolve()

        assert (target / "TOOLS.md").read_text() == f"- git: {resolved}/bin/git\n- sh: /bin/sh\n"
        assert (target / "notes.md").read_text() == f"lives in {workspace}\n"
        remapped = {f.path for f in result.restored_files if f.remapped}
        assert remapped == {"TOOLS.md"}
        assert result.missing_deps == ["git"]

    def test_find_missing_deps_without_map(self, tmp_path: Path) -> None:
        tool = tmp_path / "tool"
        tool.write_text("")
        text = f"- tool: {tool}\n- gone: {tmp_path}/gone\nnot a tool line\n"
        assert find_missing_deps(text, {}, {}) == ["gone"]

    def test_cron_jobs_remapped(
        self, workspace: Path, make_backup, target: Path, target_facts: EnvironmentFacts, stub_prompt
    ) -> None:
        job = CronJob(
            id="daily",
            schedule={"kind": "cron", "expr": "0 9 * * *"},
            payload={"kind": "systemEvent", "text": f"Read {workspace}/HEARTBEAT.md"},
        )
        archive = make_backup(workspace, cron_jobs=[job])

        result = restore_backup(archive, target, prompt=stub_prompt, facts=target_facts)
        assert [j.id for j in result.cron_jobs] == ["daily"]
        assert result.cron_jobs[0].payload["text"] == f"Read {target.resolve()}/HEARTBEAT.md"

    def test_fixup_script_lists_files(self, tmp_path: Path) -> None:
        script = build_fixup_script(tmp_path / "a.clawback", ["SOUL.md", "TOOLS.md"])
        assert "  SOUL.md\n  TOOLS.md\n" in script
        assert "--strip-components=1" in script

    def test_fixup_script_quotes_archive_path(self, tmp_path: Path) -> None:
        odd = tmp_path / 'we"ird $HOME `id`' / "a.clawback"
        script = build_fixup_script(odd, ["SOUL.md", "my notes.md"])

        assert f"DEFAULT_ARCHIVE={shlex.quote(str(odd.resolve()))}\n" in script
        assert 'ARCHIVE_PATH="${1:-$DEFAULT_ARCHIVE}"' in script
        assert "  'my notes.md'\n" in script


class TestRestoreCredentials:
    """Vault opening and provider key prompting."""

    def test_vault_restored(
        self, gateway_workspace: Path, make_backup, target: Path, target_facts: EnvironmentFacts, stub_prompt
    ) -> None:
        archive = make_backup(gateway_workspace, with_credentials=True, password="pw")

        result = restore_backup(archive, target, password="pw", prompt=stub_prompt, facts=target_facts)
        resolved = target.resolve()

        assert (target / ".env").read_text() == "OPENAI_API_KEY=sk-env-2\n"
        assert result.credentials_restored == [str(resolved / ".env")]
        gateway = yaml.safe_load((target / "config" / "gateway.yaml").read_text())
        assert gateway["providers"]["anthropic"]["apiKey"] == "sk-live-1"
        assert gateway["workspace"] == f"{resolved}/data"
        assert stub_prompt.password_calls == []

    def test_vault_password_prompted(
        self, gateway_workspace: Path, make_backup, target: Path, target_facts: EnvironmentFacts, stub_prompt
    ) -> None:
        archive = make_backup(gateway_workspace, with_credentials=True, password="hunter2")

        restore_backup(archive, target, prompt=stub_prompt, facts=target_facts)
        assert stub_prompt.password_calls == [("Enter password to decrypt credentials: ", False)]
        assert (target / ".env").is_file()

    def test_wrong_vault_password(
        self, gateway_workspace: Path, make_backup, target: Path, target_facts: EnvironmentFacts, stub_prompt
    ) -> None:
        archive = make_backup(gateway_workspace, with_credentials=True, password="pw")

        with pytest.raises(InvalidPassword):
            restore_backup(archive, target, password="wrong", prompt=stub_prompt, facts=target_facts)
        assert not (target / ".env").exists()

    def test_provider_key_prompt_without_vault(
        self, gateway_workspace: Path, make_backup, target: Path, target_facts: EnvironmentFacts, stub_prompt
    ) -> None:
        stub_prompt.secret = "sk-new"
        archive = make_backup(gateway_workspace)

        restore_backup(archive, target, prompt=stub_prompt, facts=target_facts)

        assert stub_prompt.secret_calls == ["Enter your Anthropic API key (or press Enter to skip): "]
        gateway = yaml.safe_load((target / "config" / "gateway.yaml").read_text())
        assert gateway["providers"]["anthropic"]["apiKey"] == "sk-new"

    def test_provider_key_skipped_on_empty_answer(
        self, gateway_workspace: Path, make_backup, target: Path, target_facts: EnvironmentFacts, stub_prompt
    ) -> None:
        restore_backup(make_backup(gateway_workspace), target, prompt=stub_prompt, facts=target_facts)

        gateway = yaml.safe_load((target / "config" / "gateway.yaml").read_text())
        assert gateway["providers"]["anthropic"]["apiKey"] == "REDACTED"

    def test_custom_key_pattern_prompted(
        self, workspace: Path, tmp_path: Path, facts: EnvironmentFacts, target: Path,
        target_facts: EnvironmentFacts, stub_prompt,
    ) -> None:
        (workspace / "config").mkdir()
        (workspace / "config" / "gateway.yaml").write_text("plugins:\n  acme:\n    licenseCode: lic-42\n")
        custom = ClawbackConfig(credential_key_patterns=["license"])
        archive = create_backup(
            workspace, output=tmp_path / "custom.clawback", facts=facts, config=custom
        ).output_path
        stub_prompt.secret = "lic-new"

        restore_backup(archive, target, prompt=stub_prompt, facts=target_facts, config=custom)

        assert stub_prompt.secret_calls == ["Enter your Acme API key (or press Enter to skip): "]
        gateway = yaml.safe_load((target / "config" / "gateway.yaml").read_text())
        assert gateway["plugins"]["acme"]["licenseCode"] == "lic-new"

    def test_skip_credentials(
        self, gateway_workspace: Path, make_backup, target: Path, target_facts: EnvironmentFacts, stub_prompt
    ) -> None:
        archive = make_backup(gateway_workspace, with_credentials=True, password="pw")

        result = restore_backup(archive, target, skip_credentials=True, prompt=stub_prompt, facts=target_facts)

        assert result.credentials_restored == []
        assert not (target / ".env").exists()
        assert stub_prompt.password_calls == []
        assert stub_prompt.secret_calls == []
