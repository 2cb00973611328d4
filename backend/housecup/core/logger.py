import logging
from logging.handlers import RotatingFileHandler

from housecup.core.settings import get_settings

_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _build(name: str) -> logging.Logger:
    settings = get_settings()
    logger = logging.getLogger(f"housecup.{name}")
    logger.setLevel(settings.log_level)

    # Prevent duplicate handlers
    if not logger.handlers:
        formatter = logging.Formatter(_FORMAT)
        console = logging.StreamHandler()
        console.setFormatter(formatter)
        logger.addHandler(console)
        if settings.log_file:
            # Rotating file handler: max 5 MB per file, keep 3 backups
            file_handler = RotatingFileHandler(settings.log_file, maxBytes=5 * 1024 * 1024, backupCount=3)
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)
        logger.propagate = False
    return logger


election_logger = _build("election")
attendance_logger = _build("attendance")
realtime_logger = _build("realtime")

__all__ = ["election_logger", "attendance_logger", "realtime_logger"]
