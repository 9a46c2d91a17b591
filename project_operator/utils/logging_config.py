import logging
import logging.handlers
from pathlib import Path

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Third-party loggers that drown out the reconciliation log at DEBUG/INFO
NOISY_LOGGERS = {
    "kopf": logging.INFO,
    "kopf.objects": logging.WARNING,
    "kopf.activities": logging.WARNING,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "uvicorn.access": logging.WARNING,
}

LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUP_COUNT = 5


def _file_handler(log_file_path: str, formatter: logging.Formatter) -> logging.Handler:
    Path(log_file_path).parent.mkdir(parents=True, exist_ok=True)
    handler = logging.handlers.RotatingFileHandler(
        log_file_path, maxBytes=LOG_FILE_MAX_BYTES, backupCount=LOG_FILE_BACKUP_COUNT
    )
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(formatter)
    return handler


def setup_logging(log_to_file: bool = False, log_file_path: str = "log.txt", log_level: str = "DEBUG") -> None:
    """
    Route all logging to stdout and, optionally, to a rotating file.

    Calling it again replaces the handlers of the previous call, so the early
    configuration can be swapped for the settings-driven one.

    Args:
        log_to_file: Also write to `log_file_path`
        log_file_path: Target of the file handler
        log_level: Level of the project_operator loggers; everything else stays at INFO
    """
    formatter = logging.Formatter(LOG_FORMAT)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(logging.INFO)

    logging.getLogger("project_operator").setLevel(log_level.upper())
    for name, level in NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(level)

    stdout_handler = logging.StreamHandler()
    stdout_handler.setLevel(logging.DEBUG)
    stdout_handler.setFormatter(formatter)
    root_logger.addHandler(stdout_handler)

    if not log_to_file:
        return

    try:
        root_logger.addHandler(_file_handler(log_file_path, formatter))
    except OSError as e:
        logging.exception(f"Cannot log to {log_file_path}, continuing on stdout only: {e}")
        return
    logging.info(f"File logging enabled: {log_file_path}")
