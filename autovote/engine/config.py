"""Process-level configuration dataclasses.

Everything the process needs before the settings document is loaded: API
endpoint and credentials, file locations, and scheduler run options.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

from autovote.hub.constants import (
    CONFIG_DEBOUNCE_SECONDS,
    CONFIG_POLL_INTERVAL_SECONDS,
    RECENT_TOUCH_WINDOW_SECONDS,
)

_TRUE_VALUES = ("1", "true", "yes", "on")


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be a number, got {raw!r}") from e


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in _TRUE_VALUES


@dataclass
class ApiConfig:
    """Challenge service connection settings."""
    base_url: str = "http://localhost:8080/api"
    token: str = ""
    timeout_s: float = 30.0

    @classmethod
    def from_env(cls):
        return cls(
            base_url=os.environ.get("AUTOVOTE_API_URL", cls.base_url).rstrip("/"),
            token=os.environ.get("AUTOVOTE_TOKEN", ""),
            timeout_s=_env_float("AUTOVOTE_API_TIMEOUT", cls.timeout_s),
        )


@dataclass
class PathConfig:
    """Data directory paths."""
    data_dir: Path = field(default_factory=lambda: Path.home() / ".autovote")

    @property
    def settings_db_path(self) -> Path:
        return self.data_dir / "settings.db"

    @classmethod
    def from_env(cls):
        data_dir = os.environ.get("AUTOVOTE_DATA_DIR")
        if data_dir:
            return cls(data_dir=Path(data_dir).expanduser())
        return cls()


@dataclass
class RunConfig:
    """Scheduler run options."""
    dry_run: bool = False
    action_delay_min_s: float = 2.0
    action_delay_max_s: float = 5.0
    config_poll_interval_s: float = CONFIG_POLL_INTERVAL_SECONDS
    config_debounce_s: float = CONFIG_DEBOUNCE_SECONDS
    recent_touch_window_s: float = RECENT_TOUCH_WINDOW_SECONDS

    def __post_init__(self):
        if self.action_delay_min_s < 0 or self.action_delay_max_s < 0:
            raise ValueError("Action delays must not be negative")
        if self.action_delay_max_s < self.action_delay_min_s:
            raise ValueError(
                f"action_delay_max_s ({self.action_delay_max_s}) must be >= "
                f"action_delay_min_s ({self.action_delay_min_s})"
            )

    @classmethod
    def from_env(cls):
        return cls(
            dry_run=_env_bool("AUTOVOTE_DRY_RUN"),
            action_delay_min_s=_env_float("AUTOVOTE_ACTION_DELAY_MIN", cls.action_delay_min_s),
            action_delay_max_s=_env_float("AUTOVOTE_ACTION_DELAY_MAX", cls.action_delay_max_s),
            config_poll_interval_s=_env_float("AUTOVOTE_CONFIG_POLL_INTERVAL", cls.config_poll_interval_s),
            config_debounce_s=_env_float("AUTOVOTE_CONFIG_DEBOUNCE", cls.config_debounce_s),
            recent_touch_window_s=_env_float("AUTOVOTE_RECENT_WINDOW", cls.recent_touch_window_s),
        )


@dataclass
class AppConfig:
    """Top-level config composing all sub-configs."""
    api: ApiConfig = field(default_factory=ApiConfig)
    paths: PathConfig = field(default_factory=PathConfig)
    run: RunConfig = field(default_factory=RunConfig)

    @classmethod
    def from_env(cls):
        """Create config from environment variables."""
        return cls(
            api=ApiConfig.from_env(),
            paths=PathConfig.from_env(),
            run=RunConfig.from_env(),
        )
