"""Shared test fixtures for clawback."""

from __future__ import annotations

import tarfile
from io import BytesIO
from pathlib import Path
from typing import Callable, Optional

import pytest

from clawback.config import ClawbackConfig
from clawback.environment import EnvironmentFacts


class StubPrompt:
    """PromptProvider that answers from canned values and records every question."""

    def __init__(self, password: str = "hunter2", secret: str = "") -> None:
        self.password = password
        self.secret = secret
        self.password_calls: list[tuple[str, bool]] = []
        self.secret_calls: list[str] = []

    def prompt_password(self, message: str, confirm: bool) -> str:
        self.password_calls.append((message, confirm))
        return self.password

    def prompt_secret(self, message: str) -> str:
        self.secret_calls.append(message)
        return self.secret


@pytest.fixture(autouse=True)
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Never read the developer's real ~/.config/clawback/config.yaml."""
    monkeypatch.setattr("clawback.config.CLAWBACK_CONFIG", str(tmp_path / "no-config.yaml"))


@pytest.fixture
def home_dir(tmp_path: Path) -> Path:
    """A fake home directory."""
    home = tmp_path / "home"
    home.mkdir()
    return home


@pytest.fixture
def facts(home_dir: Path) -> EnvironmentFacts:
    """Environment facts pointing at the fake home."""
    return EnvironmentFacts(home=str(home_dir), hostname="testhost", os="linux", arch="x86_64")


@pytest.fixture
def config() -> ClawbackConfig:
    """Default configuration."""
    return ClawbackConfig()


@pytest.fixture
def workspace(home_dir: Path) -> Path:
    """A minimal agent workspace inside the fake home."""
    ws = home_dir / "clawd"
    ws.mkdir()
    (ws / "SOUL.md").write_text("# Agent\n")
    (ws / "MEMORY.md").write_text("# Memory\n")
    return ws.resolve()


@pytest.fixture
def full_workspace(workspace: Path) -> Path:
    """A workspace with every category of file."""
    (workspace / "IDENTITY.md").write_text("- **Name:** Clawd\n")
    (workspace / "memory").mkdir()
    (workspace / "memory" / "2026-02-10.md").write_text("Met the user.\nLearned things.\n")
    (workspace / "skills" / "weather").mkdir(parents=True)
    (workspace / "skills" / "weather" / "SKILL.md").write_text("# Weather\n")
    (workspace / "scripts").mkdir()
    script = workspace / "scripts" / "hello.sh"
    script.write_text("#!/bin/sh\necho hello\n")
    script.chmod(0o755)
    (workspace / "config").mkdir()
    (workspace / "config" / "settings.json").write_text('{"theme": "dark"}\n')
    return workspace


@pytest.fixture
def stub_prompt() -> StubPrompt:
    """Prompt provider with canned answers."""
    return StubPrompt()


@pytest.fixture
def rewrite_archive() -> Callable[[Path, Callable[[str, bytes], Optional[bytes]]], None]:
    """Rewrite an archive's entries in place, bypassing the manifest.

    The callback receives (entry name, data) and returns new data, or
    None to drop the entry.
    """

    def _rewrite(archive_path: Path, mutate: Callable[[str, bytes], Optional[bytes]]) -> None:
        with tarfile.open(archive_path, "r:gz") as tar:
            members = [(m, tar.extractfile(m).read()) for m in tar.getmembers() if m.isfile()]

        buffer = BytesIO()
        with tarfile.open(fileobj=buffer, mode="w:gz") as tar:
            for member, data in members:
                new_data = mutate(member.name, data)
                if new_data is None:
                    continue
                member.size = len(new_data)
                tar.addfile(member, BytesIO(new_data))
        archive_path.write_bytes(buffer.getvalue())

    return _rewrite
