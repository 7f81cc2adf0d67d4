"""Tests for oneserver.config — Settings."""

from __future__ import annotations

from pathlib import Path

import pytest

from oneserver.config import DEFAULT_LOG_DIR, Settings


class TestSettings:
    def test_defaults(self):
        settings = Settings.from_env({})
        assert settings.log_dir == Path(DEFAULT_LOG_DIR)
        assert settings.debug is False
        assert settings.settle_seconds == 3.0

    def test_log_dir_override(self, tmp_path):
        settings = Settings.from_env({"ONESERVER_LOG_DIR": str(tmp_path)})
        assert settings.log_file("php") == tmp_path / "php.log"

    @pytest.mark.parametrize("value", ["true", "1", "YES", "on"])
    def test_debug_truthy(self, value):
        assert Settings.from_env({"SCRIPT_DEBUG": value}).debug is True

    @pytest.mark.parametrize("value", ["false", "0", "", "nope"])
    def test_debug_falsy(self, value):
        assert Settings.from_env({"SCRIPT_DEBUG": value}).debug is False

    def test_settle_seconds(self):
        assert Settings.from_env({"ONESERVER_SETTLE_SECONDS": "0.5"}).settle_seconds == 0.5

    def test_invalid_settle_falls_back(self):
        assert Settings.from_env({"ONESERVER_SETTLE_SECONDS": "soon"}).settle_seconds == 3.0

    def test_negative_settle_clamped(self):
        assert Settings.from_env({"ONESERVER_SETTLE_SECONDS": "-2"}).settle_seconds == 0.0

    def test_reads_process_environment(self, monkeypatch, tmp_path):
        monkeypatch.setenv("ONESERVER_LOG_DIR", str(tmp_path))
        monkeypatch.setenv("SCRIPT_DEBUG", "true")
        settings = Settings.from_env()
        assert settings.log_dir == tmp_path
        assert settings.debug is True
