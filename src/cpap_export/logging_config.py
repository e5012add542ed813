"""
Logging setup for the cpap-export CLI.

Console messages go to stderr at INFO (DEBUG with --verbose). Every run also
appends DEBUG detail to a rotating log file under the config directory.
Third-party libraries are held at WARNING.
"""

import logging
import logging.config

from pathlib import Path
from typing import Any

from cpap_export.constants import (
    DEFAULT_LOG_BACKUP_COUNT,
    DEFAULT_LOG_DIR,
    DEFAULT_LOG_FILE,
    DEFAULT_LOG_MAX_BYTES,
)

PACKAGE_LOGGER = "cpap_export"

_logging_configured = False


def get_log_path() -> Path:
    return DEFAULT_LOG_DIR / DEFAULT_LOG_FILE


def build_logging_config(verbose: bool = False, file_logging: bool = True) -> dict[str, Any]:
    """
    dictConfig for the CLI.

    Handlers sit on the root logger; the package logger only lowers the
    threshold for its own records.
    """
    handlers: dict[str, dict[str, Any]] = {
        "console": {
            "class": "logging.StreamHandler",
            "level": "DEBUG" if verbose else "INFO",
            "formatter": "console",
            "stream": "ext://sys.stderr",
        },
    }
    if file_logging:
        handlers["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": "DEBUG",
            "formatter": "file",
            "filename": str(get_log_path()),
            "maxBytes": DEFAULT_LOG_MAX_BYTES,
            "backupCount": DEFAULT_LOG_BACKUP_COUNT,
            "encoding": "utf-8",
        }

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "console": {"format": "%(levelname)s: %(message)s"},
            "file": {"format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s"},
        },
        "handlers": handlers,
        "loggers": {PACKAGE_LOGGER: {"level": "DEBUG"}},
        "root": {"level": "WARNING", "handlers": list(handlers)},
    }


def setup_logging(verbose: bool = False) -> None:
    """
    Configure logging once per process.

    If the log directory cannot be created, logging continues on the
    console only.
    """
    global _logging_configured

    if _logging_configured:
        return

    try:
        DEFAULT_LOG_DIR.mkdir(mode=0o700, parents=True, exist_ok=True)
        logging.config.dictConfig(build_logging_config(verbose))
    except (OSError, ValueError) as e:
        logging.config.dictConfig(build_logging_config(verbose, file_logging=False))
        logging.getLogger(__name__).warning(f"File logging disabled: {e}")

    _logging_configured = True
