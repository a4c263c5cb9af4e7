"""Logging utilities for restoid."""

import logging
import sys
from typing import Optional

from tqdm import tqdm


LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class ProgressAwareHandler(logging.StreamHandler):
    """Writes records to stderr through ``tqdm.write``.

    Log lines then appear above a running progress bar instead of being
    drawn over it. stdout stays reserved for the JSON result document.
    """

    def __init__(self):
        super().__init__(sys.stderr)

    def emit(self, record: logging.LogRecord):
        try:
            tqdm.write(self.format(record), file=self.stream)
        except Exception:
            self.handleError(record)


def setup_logging(level: str = "INFO", log_file: Optional[str] = None):
    """Configure the root logger for one CLI run.

    Unknown level names fall back to INFO. Every shell command is logged at
    DEBUG, so ``--log-level DEBUG`` traces what ran on the device.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)
    formatter = logging.Formatter(LOG_FORMAT)

    handlers = [ProgressAwareHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    for handler in handlers:
        handler.setFormatter(formatter)

    logging.basicConfig(level=log_level, handlers=handlers, force=True)
