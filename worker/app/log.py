import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from celery.signals import after_setup_logger, after_setup_task_logger

from .config import settings

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def setup_file_logging(logger: logging.Logger, log_file: Optional[str], level: str = "INFO") -> None:
    if not log_file:
        return
    path = Path(log_file).resolve()
    for handler in logger.handlers:
        if isinstance(handler, RotatingFileHandler) and Path(handler.baseFilename) == path:
            return
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(path, maxBytes=1_000_000, backupCount=3)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.setLevel(level.upper())
    logger.addHandler(handler)


@after_setup_logger.connect
@after_setup_task_logger.connect
def attach_file_handler(logger=None, **kwargs):
    if logger is not None:
        setup_file_logging(logger, settings.log_file, settings.log_level)
