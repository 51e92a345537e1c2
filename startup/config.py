"""Configuration management for deferload.

Loads configuration from:
1. deferload.toml (defaults)
2. Environment variables (overrides)
"""

import os
import tomllib
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

# Load .env file if present
load_dotenv()

CONFIG_FILE = "deferload.toml"


class ConfigError(Exception):
    """Raised when the configuration file is invalid."""

    pass


def _default_data_dir() -> Path:
    base = os.getenv("XDG_DATA_HOME") or str(Path.home() / ".local" / "share")
    return Path(base) / "deferload"


@dataclass
class StartupConfig:
    """Startup context and manifest configuration."""

    manifest: str = ""  # plugins.yaml path (empty = search cwd and parents)
    config_dir: str = ""  # Directory with modules named by 'call' actions (empty = manifest dir)
    # Extra editor options that take a value argument (added to the defaults)
    value_options: list[str] = field(default_factory=list)
    disabled_plugins: list[str] = field(default_factory=list)


@dataclass
class InstallerConfig:
    """Git installer configuration."""

    enabled: bool = True
    packages_dir: str = ""  # Checkouts directory (empty = $XDG_DATA_HOME/deferload/pack)
    base_url: str = "https://github.com"
    git_executable: str = "git"
    timeout: int = 300  # Seconds per git command

    def resolved_packages_dir(self) -> Path:
        if self.packages_dir:
            return Path(self.packages_dir).expanduser()
        return _default_data_dir() / "pack"


@dataclass
class SchedulerConfig:
    """Scheduling configuration."""

    idle_delay: float = 0.0  # Seconds between first paint and the idle tick
    command_timeout: int = 300  # Seconds for 'run' hook and configure actions


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "WARNING"


@dataclass
class Config:
    """Main configuration container."""

    startup: StartupConfig = field(default_factory=StartupConfig)
    installer: InstallerConfig = field(default_factory=InstallerConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Config":
        """Create Config from dictionary.

        Raises:
            ConfigError: If a section contains unknown keys
        """
        return cls(
            startup=_section(StartupConfig, data, "startup"),
            installer=_section(InstallerConfig, data, "installer"),
            scheduler=_section(SchedulerConfig, data, "scheduler"),
            logging=_section(LoggingConfig, data, "logging"),
        )


def _section(section_cls, data: dict[str, Any], name: str):
    values = data.get(name, {})
    if not isinstance(values, dict):
        raise ConfigError(f"[{name}] must be a table")

    known = {f.name for f in fields(section_cls)}
    unknown = set(values) - known
    if unknown:
        raise ConfigError(f"Unknown keys in [{name}]: {', '.join(sorted(unknown))}")
    return section_cls(**values)


def find_config_file() -> Path | None:
    """Find deferload.toml in current or parent directories.

    Returns:
        Path to deferload.toml or None if not found.
    """
    current = Path.cwd()

    for directory in [current, *current.parents]:
        config_path = directory / CONFIG_FILE
        if config_path.exists():
            return config_path

    return None


def load_config(config_path: Path | str | None = None) -> Config:
    """Load configuration from file and environment.

    Args:
        config_path: Optional explicit path to deferload.toml

    Returns:
        Config object with merged settings.

    Raises:
        ConfigError: If the file cannot be parsed
    """
    # Start with defaults
    config_data: dict[str, Any] = {}

    # Load from file if available
    if config_path is None:
        config_path = find_config_file()

    if config_path is not None:
        path = Path(config_path)
        if path.exists():
            try:
                with open(path, "rb") as f:
                    config_data = tomllib.load(f)
            except tomllib.TOMLDecodeError as e:
                raise ConfigError(f"Invalid TOML in {path}: {e}")

    # Apply environment variable overrides
    env_overrides = {
        "startup": {
            "manifest": os.getenv("DEFERLOAD_MANIFEST"),
        },
        "installer": {
            "packages_dir": os.getenv("DEFERLOAD_PACKAGES_DIR"),
            "base_url": os.getenv("DEFERLOAD_BASE_URL"),
            "timeout": _int_or_none(os.getenv("DEFERLOAD_GIT_TIMEOUT")),
        },
        "scheduler": {
            "idle_delay": _float_or_none(os.getenv("DEFERLOAD_IDLE_DELAY")),
        },
        "logging": {
            "level": os.getenv("DEFERLOAD_LOG_LEVEL") or os.getenv("LOG_LEVEL"),
        },
    }

    # Merge env overrides (only non-None values)
    for section, values in env_overrides.items():
        if section not in config_data:
            config_data[section] = {}
        for key, value in values.items():
            if value is not None:
                config_data[section][key] = value

    return Config.from_dict(config_data)


def _int_or_none(value: str | None) -> int | None:
    """Convert string to int, or return None."""
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def _float_or_none(value: str | None) -> float | None:
    """Convert string to float, or return None."""
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


# Global config instance (lazy loaded)
_config: Config | None = None


def get_config() -> Config:
    """Get the global configuration instance.

    Returns:
        Config object (loaded once, cached).
    """
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config(config_path: Path | str | None = None) -> Config:
    """Force reload of configuration.

    Args:
        config_path: Optional explicit path to deferload.toml

    Returns:
        Fresh Config object.
    """
    global _config
    _config = load_config(config_path)
    return _config
