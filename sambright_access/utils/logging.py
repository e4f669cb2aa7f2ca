"""
Logging helpers shared by every sambright_access module.

All loggers are children of the ``sambright_access`` logger so a single
handler configured here covers the library, the web app and the CLI.
"""

import logging
import os
import sys
from typing import Optional

ROOT_LOGGER_NAME = "sambright_access"

LOG_FORMAT = "[%(asctime)s] %(levelname)s %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# CLI verbosity 0-4 mapped onto logging levels
VERBOSITY_LEVELS = {
    0: logging.CRITICAL,
    1: logging.ERROR,
    2: logging.WARNING,
    3: logging.INFO,
    4: logging.DEBUG,
}


def get_logger(name: str) -> logging.Logger:
    """
    Return a logger namespaced under ``sambright_access``.

    Module names that already live in the package are used as-is; anything
    else (e.g. 'rbac.audit') is attached below the package root.
    """
    if name == ROOT_LOGGER_NAME or name.startswith(ROOT_LOGGER_NAME + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


def _install_handler(level: int) -> None:
    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(level)
    if not any(getattr(h, "_sambright_handler", False) for h in root.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
        handler._sambright_handler = True
        root.addHandler(handler)
    # Keep urllib3 connection chatter out of the service logs
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def setup_logging(level: Optional[str] = None) -> None:
    """
    Configure logging for long-running services (web app).

    Args:
        level: Level name ('DEBUG', 'INFO', ...). Falls back to the
               SAMBRIGHT_LOG_LEVEL environment variable, then INFO.
    """
    level_name = (level or os.environ.get("SAMBRIGHT_LOG_LEVEL", "INFO")).upper()
    _install_handler(getattr(logging, level_name, logging.INFO))


def setup_cli_logging(verbosity: int = 3) -> None:
    """Configure logging for CLI commands from a 0-4 verbosity level."""
    verbosity = max(0, min(4, verbosity))
    _install_handler(VERBOSITY_LEVELS[verbosity])
