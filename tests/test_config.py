"""Tests for settings loading, engine wiring and logging setup."""

import asyncio
import json
from datetime import timedelta

import pytest
import structlog

from edit_engine.config import ENV_PREFIX, EngineSettings, load_settings
from edit_engine.engine import EditEngine
from edit_engine.logging_setup import configure_logging
from edit_engine.models import CodeBlock, CodeBlockType
from edit_engine.services.exceptions import ConfigurationError

SETTING_NAMES = (
    "CONTEXT_LINES",
    "HUNK_THRESHOLD",
    "TRIM_TRAILING_WHITESPACE",
    "UNDO_WINDOW_MINUTES",
    "CREATE_BACKUP",
    "CHECK_FOR_CONFLICTS",
    "PRESERVE_LINE_ENDINGS",
    "ENABLE_BACKUPS",
    "ENABLE_ROLLBACK",
    "ROLLBACK_ON_PARTIAL_FAILURE",
    "CONTINUE_ON_FAILURE",
    "VALIDATE_BEFORE_APPLY",
    "BACKUP_DIR",
    "LOG_LEVEL",
    "JSON_LOGS",
)


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """Unset every engine variable and restore them after the test.

    Setting then deleting each variable makes monkeypatch remove values a
    .env file loads during the test.
    """
    for name in SETTING_NAMES:
        monkeypatch.setenv(ENV_PREFIX + name, "unset")
        monkeypatch.delenv(ENV_PREFIX + name)
    return str(tmp_path / "absent.env")


class TestLoadSettings:
    """Tests for load_settings."""

    def test_defaults(self, clean_env):
        settings = load_settings(clean_env)

        assert settings.diff_options.context_lines == 3
        assert settings.diff_options.hunk_separation_threshold == 6
        assert settings.apply_options.undo_window == timedelta(minutes=30)
        assert settings.proposal_options.enable_rollback is True
        assert settings.log_level == "INFO"
        assert settings.json_logs is False

    def test_environment_overrides(self, clean_env, monkeypatch):
        monkeypatch.setenv("EDIT_ENGINE_CONTEXT_LINES", "5")
        monkeypatch.setenv("EDIT_ENGINE_UNDO_WINDOW_MINUTES", "10")
        monkeypatch.setenv("EDIT_ENGINE_ENABLE_ROLLBACK", "false")
        monkeypatch.setenv("EDIT_ENGINE_ROLLBACK_ON_PARTIAL_FAILURE", "yes")
        monkeypatch.setenv("EDIT_ENGINE_LOG_LEVEL", "debug")

        settings = load_settings(clean_env)

        assert settings.diff_options.context_lines == 5
        assert settings.apply_options.undo_window == timedelta(minutes=10)
        assert settings.proposal_options.enable_rollback is False
        assert settings.proposal_options.rollback_on_partial_failure is True
        assert settings.log_level == "DEBUG"

    def test_env_file(self, clean_env, tmp_path):
        env_file = tmp_path / "engine.env"
        env_file.write_text(
            "EDIT_ENGINE_BACKUP_DIR=/var/backups/engine\n"
            "EDIT_ENGINE_JSON_LOGS=on\n"
            "EDIT_ENGINE_HUNK_THRESHOLD=9\n"
        )

        settings = load_settings(str(env_file))

        assert settings.backup_dir == "/var/backups/engine"
        assert settings.json_logs is True
        assert settings.diff_options.hunk_separation_threshold == 9

    def test_environment_wins_over_env_file(self, clean_env, monkeypatch, tmp_path):
        env_file = tmp_path / "engine.env"
        env_file.write_text("EDIT_ENGINE_CONTEXT_LINES=2\n")
        monkeypatch.setenv("EDIT_ENGINE_CONTEXT_LINES", "7")

        assert load_settings(str(env_file)).diff_options.context_lines == 7

    @pytest.mark.parametrize(
        "name,value",
        [
            ("CREATE_BACKUP", "maybe"),
            ("CONTEXT_LINES", "three"),
            ("CONTEXT_LINES", "-1"),
            ("HUNK_THRESHOLD", "0"),
        ],
    )
    def test_invalid_values_raise(self, clean_env, monkeypatch, name, value):
        monkeypatch.setenv(ENV_PREFIX + name, value)
        with pytest.raises(ConfigurationError):
            load_settings(clean_env)


class TestEditEngine:

    def test_from_settings_wires_shared_services(self, tmp_path):
        workspace = tmp_path / "ws"
        workspace.mkdir()
        settings = EngineSettings(backup_dir=str(tmp_path / "backups"))

        engine = EditEngine.from_settings(str(workspace), settings)

        assert engine.file_changes.events is engine.events
        assert engine.proposals.workspace_path == engine.file_changes.workspace_path
        assert engine.backup_store.backup_dir == str(tmp_path / "backups")

    def test_engine_applies_and_undoes(self, tmp_path):
        workspace = tmp_path / "ws"
        workspace.mkdir()
        (workspace / "f.txt").write_text("before")
        engine = EditEngine.from_settings(
            str(workspace), EngineSettings(backup_dir=str(tmp_path / "backups"))
        )
        block = CodeBlock(target_path="f.txt", content="after", block_type=CodeBlockType.COMPLETE_FILE)

        result = asyncio.run(engine.file_changes.apply_code_block(block))
        assert result.success is True
        assert (workspace / "f.txt").read_text() == "after"

        assert asyncio.run(engine.file_changes.undo_last_change("f.txt")) is True
        assert (workspace / "f.txt").read_text() == "before"


class TestConfigureLogging:

    @pytest.fixture(autouse=True)
    def reset_structlog(self):
        yield
        structlog.reset_defaults()

    def test_json_output(self, capsys):
        configure_logging("INFO", json_output=True)
        structlog.get_logger("test").info("engine_ready", workspace="/ws")

        line = capsys.readouterr().out.strip().splitlines()[-1]
        payload = json.loads(line)
        assert payload["event"] == "engine_ready"
        assert payload["workspace"] == "/ws"
        assert payload["level"] == "info"

    def test_level_filters(self, capsys):
        configure_logging("WARNING", json_output=True)
        structlog.get_logger("test").info("hidden")
        assert capsys.readouterr().out == ""
