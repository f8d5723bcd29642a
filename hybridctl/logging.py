"""Logging configuration for the hybridctl package."""
import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
NOISY_LOGGERS = ('paramiko', 'urllib3', 'kubernetes', 'ansible_runner')


def setup_logging(debug_mode: bool = False, log_file: Optional[str] = None) -> None:
    """Configure root logging for a CLI invocation.

    Args:
        debug_mode: Log at DEBUG instead of INFO
        log_file: Optional audit log path, defaults to $HYBRIDCTL_LOG_FILE
    """
    log_level = logging.DEBUG if debug_mode else logging.INFO
    handlers = [logging.StreamHandler()]

    log_file = log_file or os.getenv("HYBRIDCTL_LOG_FILE")
    if log_file:
        path = Path(log_file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(RotatingFileHandler(path, maxBytes=10 * 1024 * 1024, backupCount=3))

    logging.basicConfig(level=log_level, format=LOG_FORMAT, handlers=handlers, force=True)

    # Disable debug logging for noisy libraries
    if not debug_mode:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)
