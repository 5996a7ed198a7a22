import time
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, File, Query, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, Response

from dalil_tables.Common.Config import ExtractionConfig, MergeConfig
from dalil_tables.Models.TableModels import ReconstructedTable
from dalil_tables.Services.CellReaders import TesseractCellReader
from dalil_tables.Services.FileValidationService import FileValidationService
from dalil_tables.Services.HealthCheckService import HealthCheckService
from dalil_tables.Services.ImageLoaderService import ImageLoaderService
from dalil_tables.Services.ResponseService import ResponseService
from dalil_tables.Services.TableExportService import TableExportService, SUPPORTED_EXPORT_FORMATS
from dalil_tables.Services.TableExtractionService import TableExtractionService
from dalil_tables.Services.TableMergeService import TableMergeService

from dalil_tables.Logger.table_logger import get_standard_logger
from dalil_tables.Exceptions.custom_exceptions import (
    ValidationException, log_method_entry_exit, monitor_performance
)

# Initialize router
router = APIRouter()
logger = get_standard_logger("TableController")

# Initialize services
table_extraction_service = TableExtractionService()
table_merge_service = TableMergeService()
table_export_service = TableExportService()
file_validation_service = FileValidationService()
image_loader_service = ImageLoaderService()
health_check_service = HealthCheckService()
response_service = ResponseService()
cell_reader = TesseractCellReader()

EXCEL_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _parse_table(payload: Dict[str, Any]) -> ReconstructedTable:
    try:
        return ReconstructedTable.from_dict(payload)
    except (KeyError, TypeError, ValueError) as e:
        raise ValidationException(f"Malformed table payload: {e}")


@router.get("/health")
@log_method_entry_exit
async def health_check():
    """Health check endpoint"""
    response = health_check_service.get_health_status()
    return response_service.handle_health_check_response(response)


@router.post("/tables/extract")
@monitor_performance
@log_method_entry_exit
async def extract_tables(
    file: UploadFile = File(..., description="Page image (PNG, JPEG, WebP, BMP, TIFF) or PDF"),
    merge: bool = Query(True, description="Merge tables split across regions or pages"),
    detect_implicit_lines: Optional[bool] = Query(None),
    handle_merged_cells: Optional[bool] = Query(None),
    max_tables_per_page: Optional[int] = Query(None),
):
    """Extract every table of an uploaded document"""
    start_time = time.perf_counter()
    try:
        content = await file.read()
        file_validation_service.validate_upload(file.filename, content, file.content_type or "")

        overrides = {
            key: value for key, value in {
                "detect_implicit_lines": detect_implicit_lines,
                "handle_merged_cells": handle_merged_cells,
                "max_tables_per_page": max_tables_per_page,
            }.items() if value is not None
        }
        config = ExtractionConfig().updated(**overrides)

        pages = await run_in_threadpool(image_loader_service.load_pages, file.filename, content)
        tables = await table_extraction_service.extract_tables_from_document(
            pages, cell_reader, extraction_config=config, merge=merge
        )
        return response_service.handle_table_extraction_response(
            tables,
            file_name=file.filename,
            page_count=len(pages),
            processing_time=time.perf_counter() - start_time,
            config=config,
        )
    except Exception as e:
        return response_service.handle_table_extraction_error(e, "table extraction")


@router.post("/tables/merge")
@log_method_entry_exit
async def merge_tables(payload: Dict[str, Any] = Body(...)):
    """Merge already extracted tables, body: {"tables": [...], "config": {...}}"""
    try:
        raw_tables = payload.get("tables")
        if not isinstance(raw_tables, list):
            raise ValidationException("Field 'tables' must be a list of tables")
        tables = [_parse_table(t) for t in raw_tables]
        config = MergeConfig.from_dict(payload.get("config") or {})
        merged = table_merge_service.merge_tables(tables, config)
        return response_service.handle_merge_response(merged, len(tables))
    except Exception as e:
        return response_service.handle_table_extraction_error(e, "table merge")


@router.post("/tables/export/{fmt}")
@log_method_entry_exit
async def export_table(fmt: str, payload: Dict[str, Any] = Body(...)):
    """Export one table as csv, json or xlsx"""
    try:
        fmt = fmt.lower()
        table = _parse_table(payload)
        if fmt == "csv":
            return Response(
                content=table_export_service.export_csv(table),
                media_type="text/csv",
                headers={"Content-Disposition": f'attachment; filename="{table.id}.csv"'},
            )
        if fmt == "json":
            return JSONResponse(content=table_export_service.export_json(table))
        if fmt == "xlsx":
            return Response(
                content=table_export_service.export_excel([table]),
                media_type=EXCEL_MEDIA_TYPE,
                headers={"Content-Disposition": f'attachment; filename="{table.id}.xlsx"'},
            )
        raise ValidationException(f"Unsupported export format: {fmt}", details={"supported": SUPPORTED_EXPORT_FORMATS})
    except Exception as e:
        return response_service.handle_table_extraction_error(e, "table export")
