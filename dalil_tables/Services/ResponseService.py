from datetime import datetime
from typing import List

from fastapi import HTTPException

from dalil_tables.Common.Config import ExtractionConfig, DEFAULT_EXTRACTION_CONFIG
from dalil_tables.Logger.table_logger import get_standard_logger
from dalil_tables.Models.TableModels import ReconstructedTable
from dalil_tables.Exceptions.custom_exceptions import (
    BaseTableException, ValidationException, ConfigurationException,
    handle_general_operations, log_method_entry_exit, ExceptionSeverity
)


class ResponseService:
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(ResponseService, cls).__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if not self._initialized:
            self.logger = get_standard_logger("ResponseService")
            self._initialized = True

    @log_method_entry_exit
    @handle_general_operations(severity=ExceptionSeverity.MEDIUM)
    def handle_table_extraction_response(
        self,
        tables: List[ReconstructedTable],
        file_name: str = "",
        page_count: int = 0,
        processing_time: float = 0.0,
        config: ExtractionConfig = DEFAULT_EXTRACTION_CONFIG,
    ):
        """Build the extraction payload, telling 'no tables' apart from low-confidence results"""
        low_confidence = [t.id for t in tables if t.confidence < config.confidence_threshold]
        if not tables:
            status, message = "no_tables", f"No tables detected in {file_name}"
        elif low_confidence:
            status = "low_confidence"
            message = f"Extracted {len(tables)} tables from {file_name}, {len(low_confidence)} with low confidence"
        else:
            status, message = "success", f"Successfully extracted {len(tables)} tables from {file_name}"

        return {
            "status": status,
            "message": message,
            "file_name": file_name,
            "page_count": page_count,
            "table_count": len(tables),
            "low_confidence_tables": low_confidence,
            "processing_time": processing_time,
            "tables": [t.to_dict() for t in tables],
            "timestamp": datetime.now().isoformat(),
        }

    @log_method_entry_exit
    @handle_general_operations(severity=ExceptionSeverity.MEDIUM)
    def handle_merge_response(self, tables: List[ReconstructedTable], input_count: int):
        return {
            "status": "success",
            "input_count": input_count,
            "table_count": len(tables),
            "tables": [t.to_dict() for t in tables],
        }

    @log_method_entry_exit
    @handle_general_operations(severity=ExceptionSeverity.MEDIUM)
    def handle_health_check_response(self, service_response):
        """Handle health check service response"""
        return service_response

    @log_method_entry_exit
    def handle_table_extraction_error(self, error, operation_type="extraction"):
        """Convert service errors to HTTP exceptions"""
        if isinstance(error, HTTPException):
            raise error
        if isinstance(error, (ValidationException, ConfigurationException)):
            self.logger.warning(f"Rejected {operation_type} request: {error.message}")
            raise HTTPException(status_code=error.status_code, detail=error.message)
        if isinstance(error, BaseTableException):
            self.logger.error(f"{operation_type.capitalize()} failed: {error.message}")
            raise HTTPException(status_code=error.status_code, detail=error.message)
        self.logger.error(f"Unexpected error in {operation_type}: {error}")
        raise HTTPException(status_code=500, detail=f"Failed to process {operation_type}: {str(error)}")
