import logging
import os
import threading
import time
from logging.handlers import RotatingFileHandler

from dalil_tables.Common.Constants import (
    LOG_DIR, LOG_LEVEL, LOG_MAX_BYTES, LOG_BACKUP_COUNT
)

FILE_FORMAT = logging.Formatter(
    "%(asctime)s | %(name)s | %(levelname)-8s | %(module)s.%(funcName)s:%(lineno)d | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S"
)
CONSOLE_FORMAT = logging.Formatter("%(asctime)s %(levelname)-8s [%(name)s] %(message)s", datefmt="%H:%M:%S")


def log_file_path() -> str:
    """Daily log file inside LOG_DIR, or the package's logs/ folder when unset"""
    directory = LOG_DIR or os.path.join(os.path.dirname(os.path.dirname(__file__)), "logs")
    os.makedirs(directory, exist_ok=True)
    return os.path.join(directory, time.strftime("table_service_%Y%m%d.log"))


class SafeRotatingFileHandler(RotatingFileHandler):
    """
    A RotatingFileHandler that keeps logging when the file cannot be rotated
    """

    def doRollover(self):
        try:
            super().doRollover()
        except PermissionError:
            # File held open by another process; keep appending
            pass


def _file_handler(path: str) -> logging.Handler:
    try:
        return SafeRotatingFileHandler(path, maxBytes=LOG_MAX_BYTES, backupCount=LOG_BACKUP_COUNT, encoding="utf-8")
    except OSError:
        # Rotation unavailable (read-only or locked directory)
        return logging.FileHandler(path, encoding="utf-8", delay=True)


class TableLogger:
    """
    Per-service loggers for the table pipeline, created once per name.
    Each writes to the shared rotating file and to the console.
    """

    _lock = threading.Lock()
    _loggers = {}

    def __init__(self, logger_name="TableExtraction"):
        self.logger_name = logger_name
        with self._lock:
            logger = self._loggers.get(logger_name)
            if logger is None:
                logger = self._loggers[logger_name] = self._configure(logging.getLogger(logger_name))
        self.logger = logger

    @staticmethod
    def _configure(logger: logging.Logger) -> logging.Logger:
        level = getattr(logging, str(LOG_LEVEL).upper(), logging.INFO)
        logger.setLevel(level)
        for handler in list(logger.handlers):
            logger.removeHandler(handler)

        for handler, formatter in ((_file_handler(log_file_path()), FILE_FORMAT),
                                   (logging.StreamHandler(), CONSOLE_FORMAT)):
            handler.setLevel(level)
            handler.setFormatter(formatter)
            logger.addHandler(handler)

        logger.propagate = False
        return logger


def get_table_logger(name="TableExtraction"):
    """
    Get TableLogger instance
    """
    return TableLogger(name)


def get_standard_logger(name="TableExtraction"):
    """
    Get standard Python logger instance for the services and exception aspects
    """
    return TableLogger(name).logger
