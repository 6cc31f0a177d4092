"""Configuration parser for the reminder tracker."""

import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

from croniter import croniter

STORAGE_BACKENDS = ("settings", "json")
DEFAULT_STORAGE_PATHS = {
    "settings": "state.ini",
    "json": "state.json",
}


@dataclass
class GeneralConfig:
    """General settings for the reminder tracker."""
    log_level: str = "INFO"
    check_interval: float = 1.0  # seconds
    reconcile_schedule: str = "* * * * *"  # Cron string

    @classmethod
    def from_dict(cls, settings: dict) -> "GeneralConfig":
        """Create a GeneralConfig from a dictionary."""
        reconcile_schedule = settings.get("reconcile_schedule", "* * * * *")
        if not croniter.is_valid(reconcile_schedule):
            raise ValueError(f"Invalid reconcile_schedule cron expression: {reconcile_schedule}")

        check_interval = float(settings.get("check_interval", 1.0))
        if check_interval <= 0:
            raise ValueError(f"check_interval must be positive, got {check_interval}")

        return cls(
            log_level=str(settings.get("log_level", "INFO")).upper(),
            check_interval=check_interval,
            reconcile_schedule=reconcile_schedule,
        )


@dataclass
class StorageConfig:
    """Where and how the reminder state is persisted."""
    backend: str
    path: Path  # Full path to the state file

    def __post_init__(self):
        if isinstance(self.path, str):
            self.path = Path(self.path)

    @classmethod
    def default(cls, config_dir: Path) -> "StorageConfig":
        return cls(backend="settings", path=config_dir / DEFAULT_STORAGE_PATHS["settings"])

    @classmethod
    def from_dict(cls, settings: dict, config_dir: Path) -> "StorageConfig":
        """Create a StorageConfig from a dictionary."""
        backend = settings.get("backend", "settings")
        if backend not in STORAGE_BACKENDS:
            raise ValueError(
                f"Unknown storage backend '{backend}' (expected one of {', '.join(STORAGE_BACKENDS)})"
            )

        # Relative paths are resolved against the config directory
        path = Path(settings.get("path", DEFAULT_STORAGE_PATHS[backend])).expanduser()
        if not path.is_absolute():
            path = config_dir / path

        return cls(backend=backend, path=path)


def parse_config_data(config_data: dict, config_dir: Path) -> tuple[GeneralConfig, StorageConfig]:
    """
    Parse configuration data into GeneralConfig and StorageConfig.

    Args:
        config_data: Raw parsed TOML data
        config_dir: Directory relative storage paths are resolved against

    Returns:
        Tuple of (GeneralConfig, StorageConfig)
    """
    general = config_data.get("general", {})
    storage = config_data.get("storage", {})
    if not isinstance(general, dict) or not isinstance(storage, dict):
        raise ValueError("[general] and [storage] must be tables")

    return GeneralConfig.from_dict(general), StorageConfig.from_dict(storage, config_dir)


def load_config_file(config_file: Path) -> dict:
    """Load and parse a TOML configuration file."""
    if not config_file.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_file}\n"
            f"Please create a config file at {config_file}"
        )

    with open(config_file, "rb") as f:
        return tomllib.load(f)


class ConfigManager:
    """Manages loading and parsing of the tracker configuration."""

    DEFAULT_CONFIG_DIR = Path.home() / ".config" / "reminder-tracker"
    CONFIG_FILE = "config.toml"

    def __init__(self, config_dir: Optional[Path] = None):
        self.config_dir = Path(config_dir) if config_dir else self.DEFAULT_CONFIG_DIR
        self.config_file = self.config_dir / self.CONFIG_FILE
        self.general: GeneralConfig = GeneralConfig()
        self.storage: StorageConfig = StorageConfig.default(self.config_dir)

    def ensure_config_dir(self) -> None:
        """Create the config directory if it doesn't exist."""
        self.config_dir.mkdir(parents=True, exist_ok=True)

    def load_config(self) -> GeneralConfig:
        """Load and parse the configuration file."""
        config_data = load_config_file(self.config_file)
        self.general, self.storage = parse_config_data(config_data, self.config_dir)
        return self.general

    def load_from_data(self, config_data: dict) -> GeneralConfig:
        """Load settings from already-parsed config data."""
        self.general, self.storage = parse_config_data(config_data, self.config_dir)
        return self.general

    def load_or_default(self) -> GeneralConfig:
        """Load the configuration file, keeping the defaults if it is missing."""
        if self.config_file.exists():
            return self.load_config()
        return self.general

    def create_example_config(self) -> None:
        """Create an example configuration file."""
        self.ensure_config_dir()

        example_config = '''# Reminder Tracker Configuration

[general]
log_level = "INFO"                  # DEBUG, INFO, WARNING, ERROR
check_interval = 1.0                # Seconds between checks for due reminders
reconcile_schedule = "* * * * *"    # Cron schedule for re-syncing triggers

[storage]
backend = "settings"  # "settings" (Qt INI file) or "json"
path = "state.ini"    # Relative to this directory
'''

        with open(self.config_file, "w") as f:
            f.write(example_config)

        print(f"Created example config at: {self.config_file}")
