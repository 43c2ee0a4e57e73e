"""
Configuration management for quaydesk.

This module provides configuration file support with YAML format and
default settings.

Features:
- YAML configuration file at ~/.config/quaydesk/config.yaml
  (directory overridable with QUAYDESK_CONFIG_DIR)
- Default values with user overrides
- Engine access mode: structured API ("api") or CLI text output ("cli")
- Optional timeout for pull/log/CLI calls
- Log location and rotation

Architecture:
- ConfigManager: Main configuration interface
- Merges user config with defaults
- Provides typed access to settings
- Handles missing/invalid config gracefully
"""

import os
import yaml
import logging
from functools import lru_cache
from typing import Dict, Any, Optional
from dataclasses import dataclass, field, asdict
from pathlib import Path

logger = logging.getLogger(__name__)

MODES = ("api", "cli")


@dataclass
class DockerConfig:
    """Docker-related configuration."""
    mode: str = "api"
    base_url: Optional[str] = None  # None: DOCKER_HOST / local socket
    cli_path: str = "docker"
    log_tail: int = 100
    operation_timeout: Optional[float] = None  # seconds, None for unbounded
    strict_timestamps: bool = False


@dataclass
class LogConfig:
    """Logging configuration."""
    level: str = "INFO"
    file_path: Optional[str] = None  # None for default
    max_size_mb: int = 10
    backup_count: int = 5


@dataclass
class AppConfig:
    """Main application configuration."""
    docker: DockerConfig = field(default_factory=DockerConfig)
    logging: LogConfig = field(default_factory=LogConfig)


def default_config_dir() -> Path:
    env_dir = os.environ.get("QUAYDESK_CONFIG_DIR")
    if env_dir:
        return Path(env_dir).expanduser()
    return Path.home() / ".config" / "quaydesk"


class ConfigManager:
    """Configuration manager with YAML file support."""

    def __init__(self, config_dir: Optional[Path] = None):
        self.config_dir = Path(config_dir) if config_dir else default_config_dir()
        self.config_file = self.config_dir / "config.yaml"
        self._config: AppConfig = AppConfig()
        self.load_config()

    def load_config(self) -> None:
        """Load configuration from YAML file."""
        try:
            if self.config_file.exists():
                with open(self.config_file, 'r') as f:
                    user_config = yaml.safe_load(f) or {}

                # Merge with defaults
                self._config = self._merge_configs(AppConfig(), user_config)
                logger.debug(f"Loaded configuration from {self.config_file}")
            else:
                # Create default config file
                self.save_config()
                logger.info(f"Created default configuration at {self.config_file}")
        except (OSError, yaml.YAMLError, AttributeError, TypeError) as e:
            logger.error(f"Failed to load config: {e}, using defaults")
            self._config = AppConfig()

    def save_config(self) -> None:
        """Save current configuration to YAML file."""
        try:
            self.config_dir.mkdir(parents=True, exist_ok=True)
            with open(self.config_file, 'w') as f:
                yaml.dump(asdict(self._config), f, default_flow_style=False, indent=2)
            logger.debug(f"Saved configuration to {self.config_file}")
        except OSError as e:
            logger.error(f"Failed to save config: {e}")

    def get_config(self) -> AppConfig:
        """Get current configuration."""
        return self._config

    def _merge_configs(self, default: AppConfig, user: Dict[str, Any]) -> AppConfig:
        """Merge user config with defaults."""
        if 'docker' in user:
            self._merge_dataclass(default.docker, user['docker'] or {})
        if 'logging' in user:
            self._merge_dataclass(default.logging, user['logging'] or {})

        if default.docker.mode not in MODES:
            logger.warning(f"Unknown docker.mode {default.docker.mode!r}, falling back to 'api'")
            default.docker.mode = "api"
        return default

    def _merge_dataclass(self, obj: Any, updates: Dict[str, Any]) -> None:
        """Merge updates into dataclass object."""
        for key, value in updates.items():
            if hasattr(obj, key):
                setattr(obj, key, value)
            else:
                logger.warning(f"Ignoring unknown config key: {key}")

    def get_mode(self) -> str:
        return self._config.docker.mode

    def get_log_level(self) -> str:
        """Get configured log level."""
        return self._config.logging.level.upper()

    def get_custom_log_path(self) -> Optional[str]:
        """Get custom log file path if configured."""
        return self._config.logging.file_path


@lru_cache
def get_config_manager() -> ConfigManager:
    """Get the cached configuration manager."""
    return ConfigManager()
