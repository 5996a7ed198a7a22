import asyncio
import threading
import time
from typing import Any, List, Optional, Sequence

from dalil_tables.Common.Config import (
    ExtractionConfig, MergeConfig, DEFAULT_EXTRACTION_CONFIG, DEFAULT_MERGE_CONFIG
)
from dalil_tables.Logger.table_logger import get_standard_logger
from dalil_tables.Models.TableModels import RasterImage, ReconstructedTable, TableRegion
from dalil_tables.Services.LineDetectionService import LineDetectionService
from dalil_tables.Services.ImplicitStructureService import ImplicitStructureService
from dalil_tables.Services.TableRegionService import TableRegionService
from dalil_tables.Services.CellGridService import CellGridService
from dalil_tables.Services.CellContentService import CellContentService
from dalil_tables.Services.TableReconstructionService import TableReconstructionService
from dalil_tables.Services.TableMergeService import TableMergeService
from dalil_tables.Exceptions.custom_exceptions import (
    ImageProcessingException, TableReconstructionException,
    handle_table_extraction, log_method_entry_exit, monitor_performance, ExceptionSeverity
)

logger = get_standard_logger("TableExtractionService")


def make_table_id(index: int, page_number: Optional[int] = None) -> str:
    if page_number is None:
        return f"table_{index}"
    return f"table_p{page_number}_{index}"


class TableExtractionService:
    """
    Runs the whole table pipeline on page rasters.

    Stages per page: ruling lines, implicit lines, table regions, then for each
    region the cell grid, merged cells, cell text and row reconstruction. A
    failing table is logged and skipped without affecting its siblings.
    """

    _instance = None
    _lock = threading.Lock()

    def __new__(cls):
        with cls._lock:
            if cls._instance is None:
                cls._instance = super(TableExtractionService, cls).__new__(cls)
                cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if not hasattr(self, '_initialized') or not self._initialized:
            self.logger = logger
            self.line_detection_service = LineDetectionService()
            self.implicit_structure_service = ImplicitStructureService()
            self.table_region_service = TableRegionService()
            self.cell_grid_service = CellGridService()
            self.cell_content_service = CellContentService()
            self.table_reconstruction_service = TableReconstructionService()
            self.table_merge_service = TableMergeService()
            self._initialized = True

    @log_method_entry_exit
    @handle_table_extraction(severity=ExceptionSeverity.HIGH)
    def detect_table_regions(
        self, image: RasterImage, config: ExtractionConfig = DEFAULT_EXTRACTION_CONFIG
    ) -> List[TableRegion]:
        if image is None or image.is_empty:
            return []
        horizontal = self.line_detection_service.detect_horizontal_lines(image)
        vertical = self.line_detection_service.detect_vertical_lines(image)

        if config.detect_implicit_lines:
            implicit_horizontal, implicit_vertical = self.implicit_structure_service.detect_implicit_lines(image)
            horizontal = horizontal + implicit_horizontal
            vertical = vertical + implicit_vertical

        return self.table_region_service.create_table_regions(horizontal, vertical, config)

    @log_method_entry_exit
    @monitor_performance
    @handle_table_extraction(severity=ExceptionSeverity.HIGH)
    async def extract_tables_from_page(
        self,
        image: RasterImage,
        reader: Any,
        config: ExtractionConfig = DEFAULT_EXTRACTION_CONFIG,
        page_number: Optional[int] = None,
    ) -> List[ReconstructedTable]:
        """Extract every table of one page; an unusable image yields no tables"""
        if image is None or image.is_empty:
            self.logger.warning("Empty page image, no tables extracted")
            return []

        loop = asyncio.get_running_loop()
        try:
            # Raster scanning is CPU-bound; keep it off the event loop
            regions = await loop.run_in_executor(None, self.detect_table_regions, image, config)
        except ImageProcessingException as e:
            self.logger.warning(f"Page {page_number} could not be analysed: {e.message}")
            return []

        if not regions:
            self.logger.info(f"No table regions found on page {page_number}")
            return []

        tables = []
        for index, region in enumerate(regions):
            try:
                table = await self.extract_table_from_region(
                    image, region, reader, config, make_table_id(index, page_number), page_number
                )
                tables.append(table)
            except Exception as e:
                failure = TableReconstructionException(index, details={"error": str(e), "page": page_number})
                self.logger.error(f"{failure.message}: {e}", exc_info=True)

        self.logger.info(f"Extracted {len(tables)} tables from page {page_number}")
        return tables

    async def extract_table_from_region(
        self,
        image: RasterImage,
        region: TableRegion,
        reader: Any,
        config: ExtractionConfig,
        table_id: str,
        page_number: Optional[int] = None,
    ) -> ReconstructedTable:
        start_time = time.perf_counter()
        grid, merges = await asyncio.get_running_loop().run_in_executor(
            None, self._grid_with_merges, image, region, config
        )
        cells = await self.cell_content_service.resolve_cells(image, grid, merges, reader, config)
        return self.table_reconstruction_service.reconstruct_table(
            table_id, region, cells, page_number=page_number,
            processing_time=time.perf_counter() - start_time,
        )

    def _grid_with_merges(self, image: RasterImage, region: TableRegion, config: ExtractionConfig):
        grid = self.cell_grid_service.build_cell_grid(region)
        merges = self.cell_grid_service.detect_merged_cells(grid, image) if config.handle_merged_cells else []
        return grid, merges

    @log_method_entry_exit
    @monitor_performance
    @handle_table_extraction(severity=ExceptionSeverity.HIGH)
    async def extract_tables_from_document(
        self,
        pages: Sequence[RasterImage],
        reader: Any,
        extraction_config: ExtractionConfig = DEFAULT_EXTRACTION_CONFIG,
        merge_config: MergeConfig = DEFAULT_MERGE_CONFIG,
        merge: bool = True,
    ) -> List[ReconstructedTable]:
        """Extract tables page by page (pages numbered from 1), then merge across them"""
        tables: List[ReconstructedTable] = []
        for page_number, image in enumerate(pages, start=1):
            tables.extend(await self.extract_tables_from_page(image, reader, extraction_config, page_number))

        if merge and len(tables) > 1:
            tables = self.table_merge_service.merge_tables(tables, merge_config)

        self.logger.info(f"Document extraction produced {len(tables)} tables from {len(pages)} pages")
        return tables
