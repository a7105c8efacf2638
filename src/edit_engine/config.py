"""Engine settings loaded from the environment and an optional .env file."""

import os
from datetime import timedelta
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

from edit_engine.models.options import (
    DEFAULT_CONTEXT_LINES,
    DEFAULT_HUNK_SEPARATION_THRESHOLD,
    DEFAULT_UNDO_WINDOW,
    ApplyOptions,
    DiffOptions,
    ProposalServiceOptions,
)
from edit_engine.services.exceptions import ConfigurationError

ENV_PREFIX = "EDIT_ENGINE_"
DEFAULT_BACKUP_DIR = str(Path.home() / ".edit-engine" / "backups")
DEFAULT_LOG_LEVEL = "INFO"

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES = frozenset({"0", "false", "no", "off"})


class EngineSettings(BaseModel):
    """Everything needed to build an EditEngine besides the workspace path."""

    model_config = ConfigDict(frozen=True)

    backup_dir: str = DEFAULT_BACKUP_DIR
    log_level: str = DEFAULT_LOG_LEVEL
    json_logs: bool = False
    diff_options: DiffOptions = Field(default_factory=DiffOptions.default)
    apply_options: ApplyOptions = Field(default_factory=ApplyOptions.default)
    proposal_options: ProposalServiceOptions = Field(default_factory=ProposalServiceOptions.default)


def _env(name: str) -> str | None:
    value = os.getenv(ENV_PREFIX + name)
    if value is None or not value.strip():
        return None
    return value.strip()


def _env_bool(name: str, default: bool) -> bool:
    value = _env(name)
    if value is None:
        return default
    lowered = value.lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ConfigurationError(f"{ENV_PREFIX}{name} must be a boolean, got {value!r}")


def _env_int(name: str, default: int, minimum: int = 0) -> int:
    value = _env(name)
    if value is None:
        return default
    try:
        parsed = int(value)
    except ValueError as e:
        raise ConfigurationError(f"{ENV_PREFIX}{name} must be an integer, got {value!r}") from e
    if parsed < minimum:
        raise ConfigurationError(f"{ENV_PREFIX}{name} must be >= {minimum}, got {parsed}")
    return parsed


def load_settings(env_file: str | None = None) -> EngineSettings:
    """Build settings from EDIT_ENGINE_* environment variables.

    Variables already set in the environment take precedence over the
    .env file.

    Args:
        env_file: Path to a .env file. When None, python-dotenv searches
            for one starting from the current directory.

    Returns:
        EngineSettings with every unset variable at its default.

    Raises:
        ConfigurationError: If a variable holds an unparseable value.
    """
    load_dotenv(env_file)

    diff_options = DiffOptions(
        context_lines=_env_int("CONTEXT_LINES", DEFAULT_CONTEXT_LINES),
        hunk_separation_threshold=_env_int(
            "HUNK_THRESHOLD", DEFAULT_HUNK_SEPARATION_THRESHOLD, minimum=1
        ),
        trim_trailing_whitespace=_env_bool("TRIM_TRAILING_WHITESPACE", True),
    )
    undo_minutes = _env_int(
        "UNDO_WINDOW_MINUTES", int(DEFAULT_UNDO_WINDOW.total_seconds() // 60)
    )
    apply_options = ApplyOptions(
        create_backup=_env_bool("CREATE_BACKUP", True),
        check_for_conflicts=_env_bool("CHECK_FOR_CONFLICTS", True),
        preserve_line_endings=_env_bool("PRESERVE_LINE_ENDINGS", True),
        undo_window=timedelta(minutes=undo_minutes),
    )
    proposal_options = ProposalServiceOptions(
        enable_backups=_env_bool("ENABLE_BACKUPS", True),
        enable_rollback=_env_bool("ENABLE_ROLLBACK", True),
        rollback_on_partial_failure=_env_bool("ROLLBACK_ON_PARTIAL_FAILURE", False),
        continue_on_failure=_env_bool("CONTINUE_ON_FAILURE", True),
        validate_before_apply=_env_bool("VALIDATE_BEFORE_APPLY", True),
    )

    return EngineSettings(
        backup_dir=_env("BACKUP_DIR") or DEFAULT_BACKUP_DIR,
        log_level=(_env("LOG_LEVEL") or DEFAULT_LOG_LEVEL).upper(),
        json_logs=_env_bool("JSON_LOGS", False),
        diff_options=diff_options,
        apply_options=apply_options,
        proposal_options=proposal_options,
    )
