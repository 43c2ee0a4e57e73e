"""
quaydesk - runtime connection and telemetry core for a Docker desktop client.

This package sits between a desktop shell and the local Docker engine. It
connects to the engine, lists and inspects containers and images, runs
lifecycle commands, relays live engine events and pull progress, and derives
resource usage figures from raw counters.

Main Components:
  - connection.py: Engine connection lifecycle (lazy, race-free init)
  - normalize.py: Raw API records / CLI output -> canonical model
  - stats.py: CPU/memory/network/block IO derivation
  - relay.py: Event and pull-progress stream relay
  - backend.py: Structured (API) and text (CLI) engine backends
  - commands.py: Operation façade returning recovered results
  - model.py: Data structures (Container, Image, Stats, ...)

Dependencies:
  - docker>=7.0.0 (docker-py client)
  - PyYAML (configuration file)
  - Python 3.10+
"""

import os
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

__version__ = "0.1.0"

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'


def get_log_path() -> str:
    """
    Get the log file path following XDG Base Directory spec.

    Returns XDG_DATA_HOME/quaydesk/logs/quaydesk.log with fallback to /tmp.
    Creates directory if it doesn't exist.

    Returns:
        str: Absolute path to log file (/tmp/quaydesk.log as fallback)
    """
    xdg_data_home = os.environ.get('XDG_DATA_HOME')
    if not xdg_data_home:
        # Default fallback: ~/.local/share
        xdg_data_home = Path.home() / '.local' / 'share'
    else:
        xdg_data_home = Path(xdg_data_home)

    log_dir = xdg_data_home / 'quaydesk' / 'logs'

    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        return str(log_dir / 'quaydesk.log')
    except (PermissionError, OSError):
        # Fallback to /tmp if permission denied
        return '/tmp/quaydesk.log'


def setup_logging(log_config: Optional["LogConfig"] = None) -> logging.Logger:
    """
    Attach a rotating file handler to the package logger.

    Calling it again replaces the handler installed by a previous call.
    """
    from .config import LogConfig

    log_config = log_config or LogConfig()
    path = log_config.file_path or get_log_path()

    package_logger = logging.getLogger(__name__)
    for handler in list(package_logger.handlers):
        if getattr(handler, "_quaydesk", False):
            package_logger.removeHandler(handler)
            handler.close()

    handler = RotatingFileHandler(
        path,
        maxBytes=log_config.max_size_mb * 1024 * 1024,
        backupCount=log_config.backup_count,
    )
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler._quaydesk = True
    package_logger.addHandler(handler)
    package_logger.setLevel(log_config.level.upper())
    return package_logger
