from datetime import datetime

import pytesseract

from dalil_tables import __version__
from dalil_tables.Logger.table_logger import get_standard_logger
from dalil_tables.Exceptions.custom_exceptions import (
    handle_general_operations, log_method_entry_exit, ExceptionSeverity
)


class HealthCheckService:
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(HealthCheckService, cls).__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if not self._initialized:
            self.logger = get_standard_logger("HealthCheckService")
            self._initialized = True

    def tesseract_version(self):
        try:
            return str(pytesseract.get_tesseract_version())
        except (pytesseract.TesseractNotFoundError, OSError) as e:
            self.logger.warning(f"Tesseract unavailable: {e}")
            return None

    @log_method_entry_exit
    @handle_general_operations(severity=ExceptionSeverity.LOW)
    def get_health_status(self):
        """Get health check status"""
        tesseract = self.tesseract_version()
        return {
            "status": "healthy" if tesseract else "degraded",
            "timestamp": datetime.now().isoformat(),
            "service": "Table Extraction Service",
            "version": __version__,
            "cell_reader": {"tesseract": tesseract},
        }
