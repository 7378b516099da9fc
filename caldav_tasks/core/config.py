"""Configuration management using Pydantic Settings."""

import logging
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from caldav_tasks.core.models import Priority

logger = logging.getLogger(__name__)


class SyncConfig(BaseSettings):
    """Configuration for automatic synchronization."""

    auto_sync: bool = True
    # Minutes between automatic syncs (0 disables the timer)
    sync_interval: int = 15
    sync_on_startup: bool = True

    # Connectivity probe used to decide whether the app is offline
    network_probe_url: str = "https://www.google.com/generate_204"
    network_probe_timeout: float = 5.0

    @field_validator("sync_interval", mode="before")
    @classmethod
    def validate_sync_interval(cls, v: int) -> int:
        """Validate sync interval."""
        v = int(v)
        if v < 0:
            raise ValueError("Sync interval must be zero or a positive number of minutes")
        return v

    @field_validator("network_probe_url", mode="before")
    @classmethod
    def validate_probe_url(cls, v: str) -> str:
        """Validate probe URL format."""
        if v and not v.startswith(("http://", "https://")):
            raise ValueError("Network probe URL must start with http:// or https://")
        return v


class TaskDefaultsConfig(BaseSettings):
    """Defaults applied to newly created tasks."""

    default_calendar_id: str | None = None
    default_priority: Priority = Priority.NONE
    default_tags: list[str] = Field(default_factory=list)

    # What happens to subtasks when their parent is deleted: "delete" or "keep"
    delete_subtasks_with_parent: str = "delete"

    @field_validator("delete_subtasks_with_parent", mode="before")
    @classmethod
    def validate_delete_mode(cls, v: str) -> str:
        """Validate subtask deletion mode."""
        valid_modes = {"delete", "keep"}
        v = v.lower()
        if v not in valid_modes:
            raise ValueError(f"Subtask deletion mode must be one of: {', '.join(sorted(valid_modes))}")
        return v


class GeneralConfig(BaseSettings):
    """General application configuration."""

    log_level: str = "INFO"
    data_dir: Path = Field(default_factory=lambda: Path.home() / ".caldav-tasks")
    log_file_name: str = "caldav-tasks.log"
    log_file_max_bytes: int = 5 * 1024 * 1024
    log_file_backup_count: int = 3
    # Runtime metadata - not serialized to config file
    config_file: Path | None = Field(default=None, exclude=True)

    @field_validator("log_level", mode="before")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v = v.upper()
        if v not in valid_levels:
            raise ValueError(f"Log level must be one of: {', '.join(sorted(valid_levels))}")
        return v

    @field_validator("data_dir", mode="before")
    @classmethod
    def expand_data_dir(cls, v: str | Path) -> Path:
        """Expand user home directory in data directory path."""
        return Path(v).expanduser().resolve()


class AppConfig(BaseSettings):
    """Main application configuration."""

    model_config = SettingsConfigDict(
        env_prefix="CALDAV_TASKS_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    general: GeneralConfig = Field(default_factory=GeneralConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    defaults: TaskDefaultsConfig = Field(default_factory=TaskDefaultsConfig)

    @classmethod
    def load_from_file(cls, config_path: Path) -> "AppConfig":
        """Load configuration from a TOML file."""
        if not config_path.exists():
            logger.warning(f"Config file not found: {config_path}, using defaults")
            return cls()

        import tomllib

        with open(config_path, "rb") as f:
            config_dict = tomllib.load(f)

        return cls(**config_dict)

    def save_to_file(self, config_path: Path) -> None:
        """Save configuration to a TOML file."""
        import tomli_w

        config_path.parent.mkdir(parents=True, exist_ok=True)

        # TOML has no null, so None values are dropped
        config_dict = self.model_dump(mode="json", exclude_none=True)

        with open(config_path, "wb") as f:
            tomli_w.dump(config_dict, f)

        logger.info(f"Configuration saved to {config_path}")

    def ensure_data_dir(self) -> None:
        """Ensure data directory exists."""
        self.general.data_dir.mkdir(parents=True, exist_ok=True)
        logger.debug(f"Data directory: {self.general.data_dir}")

    @property
    def db_path(self) -> Path:
        """Path to the task store database."""
        return self.general.data_dir / "tasks.db"

    @property
    def log_dir(self) -> Path:
        return self.general.data_dir / "logs"

    @property
    def default_config_path(self) -> Path:
        """Get default configuration file path."""
        return self.general.data_dir / "config.toml"


# Global configuration instance
_config: AppConfig | None = None


def set_config(config: AppConfig) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config
    _config.ensure_data_dir()


def load_config(config_path: Path | None = None) -> AppConfig:
    """Load configuration from file or create default."""
    if config_path is None:
        config = AppConfig()
        config_path = config.default_config_path

    if config_path.exists():
        config = AppConfig.load_from_file(config_path)
    else:
        config = AppConfig()

    config.general.config_file = config_path
    set_config(config)
    return config
