import logging
import os

import pytest

from dalil_tables.Logger.table_logger import get_standard_logger, get_table_logger, SafeRotatingFileHandler


@pytest.mark.unit
class TestTableLogger:

    def test_named_loggers_are_shared(self):
        assert get_standard_logger("TestLoggerShared") is get_standard_logger("TestLoggerShared")
        assert get_table_logger("TestLoggerShared").logger is get_standard_logger("TestLoggerShared")

    def test_file_and_console_handlers(self):
        logger = get_standard_logger("TestLoggerHandlers")

        kinds = {type(handler) for handler in logger.handlers}
        assert SafeRotatingFileHandler in kinds or logging.FileHandler in kinds
        assert logging.StreamHandler in kinds
        assert logger.propagate is False

    def test_log_file_is_dated_table_service_log(self):
        logger = get_standard_logger("TestLoggerFile")
        logger.info("table extraction started")

        file_handler = next(h for h in logger.handlers if isinstance(h, logging.FileHandler))
        name = os.path.basename(file_handler.baseFilename)
        assert name.startswith("table_service_") and name.endswith(".log")
