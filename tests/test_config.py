"""Tests for user configuration loading."""

from __future__ import annotations

from pathlib import Path

import pytest

from clawback.config import DEFAULT_CREDENTIAL_KEY_PATTERNS, ClawbackConfig, load_config


class TestLoadConfig:
    """Reading ~/.config/clawback/config.yaml."""

    def test_defaults_when_missing(self, tmp_path: Path) -> None:
        config = load_config(tmp_path / "missing.yaml")
        assert config == ClawbackConfig()
        assert config.credential_key_patterns == DEFAULT_CREDENTIAL_KEY_PATTERNS
        assert config.compression_level == 9
        assert config.output_dir is None

    def test_values_read(self, tmp_path: Path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text(
            "exclude:\n  - '*.tmp'\n"
            "credential_key_patterns:\n  - password\n"
            "compression_level: 6\n"
            "output_dir: ~/backups\n"
        )

        config = load_config(path)
        assert config.exclude == ["*.tmp"]
        assert config.credential_key_patterns == ["password"]
        assert config.compression_level == 6
        assert config.output_dir == Path("~/backups")

    def test_env_location(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        path = tmp_path / "custom.yaml"
        path.write_text("compression_level: 1\n")
        monkeypatch.setattr("clawback.config.CLAWBACK_CONFIG", str(path))
        assert load_config().compression_level == 1

    def test_empty_file(self, tmp_path: Path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text("")
        assert load_config(path) == ClawbackConfig()

    @pytest.mark.parametrize(
        "content",
        ["compression_level: 42\n", "exclude: [unclosed\n", "- just\n- a list\n"],
    )
    def test_invalid_falls_back(self, tmp_path: Path, content: str, caplog: pytest.LogCaptureFixture) -> None:
        path = tmp_path / "config.yaml"
        path.write_text(content)

        assert load_config(path) == ClawbackConfig()
        assert "Failed to load config" in caplog.text
