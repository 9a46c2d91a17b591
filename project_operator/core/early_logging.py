"""
Logging for the window between process start and validated settings.

Only LOG_TO_FILE, LOG_FILE_PATH and LOG_LEVEL are read, straight from the
environment, so that a configuration error is still reported properly.
"""

import logging
import os

from project_operator.utils.logging_config import setup_logging


def initialize_logging() -> None:
    setup_logging(
        log_to_file=os.environ.get("LOG_TO_FILE", "false").lower() == "true",
        log_file_path=os.environ.get("LOG_FILE_PATH", "log.txt"),
        log_level=os.environ.get("LOG_LEVEL", "DEBUG"),
    )
    logging.getLogger(__name__).debug("Early logging initialized, waiting for settings")
