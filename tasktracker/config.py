"""Environment-driven settings for the task tracker server."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from .errors import BadInputError

SERVER_ROOT = Path(__file__).resolve().parent.parent

TASK_FILE_ENV = "TASK_FILE_PATH"
LOG_LEVEL_ENV = "TASKTRACKER_LOG_LEVEL"
LOG_FILE_ENV = "TASKTRACKER_LOG_FILE"
VELOCITY_DAYS_ENV = "TASKTRACKER_VELOCITY_DAYS"
EVENT_RETENTION_ENV = "TASKTRACKER_EVENT_RETENTION"

DEFAULT_TASK_FILE = "tasks.json"
DEFAULT_VELOCITY_DAYS = 7
DEFAULT_EVENT_RETENTION = 100


@dataclass(slots=True, frozen=True)
class Settings:
    """Resolved server configuration."""

    task_file: Path
    log_level: str = "INFO"
    log_file: Optional[Path] = None
    velocity_days: int = DEFAULT_VELOCITY_DAYS
    event_retention: int = DEFAULT_EVENT_RETENTION


def _resolve_task_file(raw: Optional[str], base: Path) -> Path:
    if not raw:
        return base / DEFAULT_TASK_FILE
    path = Path(raw).expanduser()
    if not path.is_absolute():
        path = base / path
    return path


def _positive_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise BadInputError(f"Environment variable {name} must be an integer, got '{raw}'.") from None
    if value <= 0:
        raise BadInputError(f"Environment variable {name} must be positive, got {value}.")
    return value


def load_settings(env: Optional[Mapping[str, str]] = None, *, base_dir: Optional[Path] = None) -> Settings:
    """Build settings from environment variables.

    Relative ``TASK_FILE_PATH`` values resolve against the server directory,
    not the working directory, so the data file does not move when the
    client launches the server from elsewhere.
    """
    env = os.environ if env is None else env
    base = base_dir or SERVER_ROOT

    log_file = env.get(LOG_FILE_ENV)
    return Settings(
        task_file=_resolve_task_file(env.get(TASK_FILE_ENV), base),
        log_level=(env.get(LOG_LEVEL_ENV) or "INFO").upper(),
        log_file=Path(log_file).expanduser() if log_file else None,
        velocity_days=_positive_int(env, VELOCITY_DAYS_ENV, DEFAULT_VELOCITY_DAYS),
        event_retention=_positive_int(env, EVENT_RETENTION_ENV, DEFAULT_EVENT_RETENTION),
    )
