import logging
import sys
from pathlib import Path

from .config import Settings

LOGGER_NAME = "catalog_service"


def setup_logging(settings: Settings) -> logging.Logger:
    """
    Configure the service logger: console handler plus a file handler
    when the log directory is writable. Safe to call more than once.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(settings.log_level)
    logger.propagate = False

    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)

    formatter = logging.Formatter(settings.log_format, datefmt="%Y-%m-%d %H:%M:%S")

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(settings.log_level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if settings.log_file:
        log_file = Path(settings.log_file)
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True, mode=0o755)
            file_handler = logging.FileHandler(log_file, encoding='utf-8', mode='a')
            file_handler.setLevel(settings.log_level)
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)
        except (OSError, PermissionError) as e:
            logger.warning(f"Could not create file handler: {e}. Logging to console only.")

    return logger
