"""Process-wide logging setup for service and deployment commands."""

from __future__ import annotations

import logging
import sys

LOG_FORMAT = "[%(asctime)s] %(levelname)s %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"


def config_configure_logging(log_level: str = "INFO", log_file: str | None = None) -> None:
    """Install timestamped stdout logging and an optional file handler.

    Args:
        log_level: Root log level name.
        log_file: Optional path that receives a copy of every record.

    Returns:
        None: Configures the root logger as side effect.

    Raises:
        OSError: Raised when the log file cannot be opened.
    """

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    logging.basicConfig(
        level=log_level,
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        handlers=handlers,
        force=True,
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
