"""Configuration management for Commesse."""

import json
import logging
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Optional

from platformdirs import user_config_dir, user_data_dir, user_log_dir

__all__ = [
    "Config",
    "SyncSettings",
    "SessionDefaults",
    "setup_logging",
    "DEFAULT_PAGE_SIZE",
    "MAX_PAGE_SIZE",
]

logger = logging.getLogger(__name__)

APP_NAME = "Commesse"
APP_AUTHOR = "Commesse"

# Sync settings
DEFAULT_PAGE_SIZE = 200
MAX_PAGE_SIZE = 400
DEFAULT_TIMEOUT = 30  # seconds


@dataclass
class SyncSettings:
    """Remote mirror sync configuration."""

    enabled: bool = True
    page_size: int = DEFAULT_PAGE_SIZE
    pull_interval_seconds: int = 0  # 0 = pull only at launch
    timeout: int = DEFAULT_TIMEOUT


@dataclass
class SessionDefaults:
    """Defaults applied to new work sessions."""

    default_rounding: str = "off"


@dataclass
class Config:
    """Main configuration object."""

    remote_url: Optional[str] = None  # None = local-only mode
    device_id: Optional[str] = None
    db_path: Optional[str] = None
    sync: SyncSettings = field(default_factory=SyncSettings)
    sessions: SessionDefaults = field(default_factory=SessionDefaults)
    debug_mode: bool = False

    @classmethod
    def get_config_dir(cls) -> Path:
        """Get the configuration directory path."""
        return Path(user_config_dir(APP_NAME, APP_AUTHOR))

    @classmethod
    def get_data_dir(cls) -> Path:
        """Get the data directory path (for the SQLite store)."""
        return Path(user_data_dir(APP_NAME, APP_AUTHOR))

    @classmethod
    def get_log_dir(cls) -> Path:
        """Get the log directory path."""
        return Path(user_log_dir(APP_NAME, APP_AUTHOR))

    @classmethod
    def get_config_file(cls) -> Path:
        """Get the config file path."""
        return cls.get_config_dir() / "config.json"

    @property
    def database_path(self) -> Path:
        """Location of the local SQLite store."""
        if self.db_path:
            return Path(self.db_path).expanduser()
        return self.get_data_dir() / "commesse.db"

    @property
    def page_size(self) -> int:
        """Pull page size clamped to what the remote accepts."""
        return max(1, min(self.sync.page_size, MAX_PAGE_SIZE))

    @classmethod
    def load(cls, config_file: Optional[Path] = None) -> "Config":
        """Load config from file, or return defaults."""
        config_file = config_file or cls.get_config_file()
        if config_file.exists():
            try:
                with open(config_file, "r") as f:
                    data = json.load(f)
                return cls._from_dict(data)
            except Exception as e:
                logger.warning(f"Failed to load config: {e}, using defaults")
        return cls()

    @classmethod
    def _from_dict(cls, data: dict) -> "Config":
        """Create Config from dictionary."""
        sync_data = data.pop("sync", {})
        sessions_data = data.pop("sessions", {})

        return cls(
            sync=SyncSettings(**sync_data) if sync_data else SyncSettings(),
            sessions=SessionDefaults(**sessions_data) if sessions_data else SessionDefaults(),
            **{k: v for k, v in data.items() if k in cls.__dataclass_fields__},
        )

    def save(self, config_file: Optional[Path] = None) -> None:
        """Save config to file."""
        config_file = config_file or self.get_config_file()
        config_file.parent.mkdir(parents=True, exist_ok=True)

        data = asdict(self)
        with open(config_file, "w") as f:
            json.dump(data, f, indent=2)
        logger.info(f"Config saved to {config_file}")


def setup_logging(debug: bool = False) -> None:
    """Configure logging."""
    log_dir = Config.get_log_dir()
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "commesse.log"

    level = logging.DEBUG if debug else logging.INFO
    format_str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=level,
        format=format_str,
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler(),
        ],
    )

    # Reduce noise from libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("requests").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
