import os
from pathlib import Path
from typing import Dict, Any, Optional
from pydantic import BaseModel, Field, ValidationError, field_validator

from browserwarden.core.logging import log
from browserwarden.core.constants import (
    SESSION_TIMEOUT_SECONDS,
    CLEANUP_INTERVAL_SECONDS,
    SHUTDOWN_TIMEOUT_SECONDS,
    MAX_MEMORY_MB,
    MEMORY_EVICTION_FRACTION,
    ZOMBIE_SLACK_FACTOR,
    ENGINE_PROCESS_PATTERN,
    ZOMBIE_KILL_PATTERN,
    DEFAULT_USER_AGENT,
    DEFAULT_VIEWPORT,
    SCREENSHOT_DIRNAME,
    TEST_DIRNAME,
    LOG_DIRNAME,
)
from browserwarden.utils.file_io import safe_read_json, safe_write_json


class LifecycleSettings(BaseModel):
    """Tunables for one lifecycle manager instance.

    The tick interval and the idle timeout are independent values; neither
    is derived from the other.
    """

    session_timeout_seconds: float = SESSION_TIMEOUT_SECONDS
    cleanup_interval_seconds: float = CLEANUP_INTERVAL_SECONDS
    max_memory_mb: float = MAX_MEMORY_MB
    memory_eviction_fraction: float = MEMORY_EVICTION_FRACTION
    zombie_slack_factor: int = ZOMBIE_SLACK_FACTOR
    engine_process_pattern: str = ENGINE_PROCESS_PATTERN
    zombie_kill_pattern: str = ZOMBIE_KILL_PATTERN
    shutdown_timeout_seconds: float = SHUTDOWN_TIMEOUT_SECONDS
    headless: bool = True
    user_agent: str = DEFAULT_USER_AGENT
    default_viewport: Dict[str, int] = Field(default_factory=lambda: dict(DEFAULT_VIEWPORT))
    base_dir: Path = Field(default_factory=lambda: Path.cwd() / "playwright")

    @field_validator(
        "session_timeout_seconds",
        "cleanup_interval_seconds",
        "max_memory_mb",
        "shutdown_timeout_seconds",
    )
    @classmethod
    def _positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("must be greater than zero")
        return value

    @field_validator("memory_eviction_fraction")
    @classmethod
    def _fraction(cls, value: float) -> float:
        if not 0 < value <= 1:
            raise ValueError("must be in (0, 1]")
        return value

    @field_validator("zombie_slack_factor")
    @classmethod
    def _slack(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value

    @property
    def screenshot_dir(self) -> Path:
        return self.base_dir / SCREENSHOT_DIRNAME

    @property
    def test_dir(self) -> Path:
        return self.base_dir / TEST_DIRNAME

    @property
    def log_dir(self) -> Path:
        return self.base_dir / LOG_DIRNAME

    def ensure_dirs(self) -> None:
        for path in (self.screenshot_dir, self.test_dir, self.log_dir):
            path.mkdir(parents=True, exist_ok=True)


class ConfigManager:
    """Loads BrowserWarden configuration from disk and the environment."""

    APP_NAME = "browserwarden"
    CONFIG_DIR = Path.home() / f".{APP_NAME}"
    CONFIG_FILE = CONFIG_DIR / "config.json"
    LOCAL_FILES = [".browserwardenrc", "browserwarden.json"]
    ENV_PREFIX = "BROWSERWARDEN_"

    @classmethod
    def ensure_config_dir(cls):
        """Ensure configuration directory exists."""
        cls.CONFIG_DIR.mkdir(parents=True, exist_ok=True)

    @classmethod
    def env_overrides(cls) -> Dict[str, Any]:
        """Collect BROWSERWARDEN_<FIELD> variables that name a settings field."""
        overrides = {}
        for name in LifecycleSettings.model_fields:
            value = os.environ.get(f"{cls.ENV_PREFIX}{name.upper()}")
            if value is not None:
                overrides[name] = value
        return overrides

    @classmethod
    def load_config(cls, cwd: Optional[Path] = None) -> Dict[str, Any]:
        """Merge the global file, the first local override file and the environment."""
        config = safe_read_json(cls.CONFIG_FILE, default={})

        cwd = Path(cwd) if cwd else Path.cwd()
        for local_file in cls.LOCAL_FILES:
            local_path = cwd / local_file
            if local_path.exists():
                config.update(safe_read_json(local_path, default={}))
                log(f"Applied local overrides from {local_file}", level="debug")
                break

        config.update(cls.env_overrides())
        return config

    @classmethod
    def load_settings(cls, cwd: Optional[Path] = None, **overrides: Any) -> LifecycleSettings:
        """Build validated settings; explicit overrides win over every file."""
        config = cls.load_config(cwd)
        config.update({k: v for k, v in overrides.items() if v is not None})
        try:
            return LifecycleSettings(**config)
        except ValidationError as e:
            raise ValueError(f"Invalid configuration: {e}") from e

    @classmethod
    def save_config(cls, config: Dict[str, Any]) -> bool:
        """Persist global configuration after validating it."""
        LifecycleSettings(**config)
        cls.ensure_config_dir()
        return safe_write_json(cls.CONFIG_FILE, config)
