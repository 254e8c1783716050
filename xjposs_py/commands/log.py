from typing import Optional
from pathlib import Path
import logging
from logging.handlers import RotatingFileHandler

from xjposs_py.commands.env import LOG_LEVEL, LOG_PATH

_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
_LOG_MAX_BYTES = 10 * 1024 * 1024
_LOG_BACKUP_COUNT = 3


def get_logger(
    name: str,
    fmt: str = _LOG_FORMAT,
    filename: Optional[Path] = LOG_PATH,
    level: str = LOG_LEVEL,
) -> logging.Logger:
    """Get a logger which writes to the running log file

    Nothing is written to the file when `level` is above every record, which is
    the case with the default `CRITICAL`.
    """

    logger = logging.getLogger(name)
    logger.setLevel(logging.getLevelName(level.upper()))

    if filename is not None and level.upper() != "CRITICAL" and not logger.handlers:
        filename.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            filename, maxBytes=_LOG_MAX_BYTES, backupCount=_LOG_BACKUP_COUNT, encoding="utf-8"
        )
        handler.setFormatter(logging.Formatter(fmt))
        logger.addHandler(handler)

    return logger
