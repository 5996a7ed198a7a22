import asyncio
import inspect
import re
from typing import Any, Dict, List, Optional, Tuple

from dalil_tables.Common.Config import ExtractionConfig, DEFAULT_EXTRACTION_CONFIG
from dalil_tables.Common.Constants import (
    CELL_BORDER_INSET_PX, TEXT_CONFIDENCE_BASE, TEXT_CONFIDENCE_LENGTH_SHORT,
    TEXT_CONFIDENCE_LENGTH_LONG, TEXT_CONFIDENCE_ALLOWED_PATTERN, NUMERIC_TEXT_PATTERN
)
from dalil_tables.Logger.table_logger import get_standard_logger
from dalil_tables.Models.TableModels import (
    RasterImage, GridCell, CellMergeCandidate, CellReading, TableCell, CellAlignment
)
from dalil_tables.Services.CellGridService import CellGridService
from dalil_tables.Services.CellReaders.BaseCellReader import coerce_reading
from dalil_tables.Exceptions.custom_exceptions import (
    BaseTableException, CellReadTimeoutException,
    handle_cell_reading, handle_table_extraction, log_method_entry_exit, ExceptionSeverity
)

_ALLOWED_TEXT = re.compile(TEXT_CONFIDENCE_ALLOWED_PATTERN)
_NUMERIC_TEXT = re.compile(NUMERIC_TEXT_PATTERN)


def is_numeric_text(text: str) -> bool:
    return bool(_NUMERIC_TEXT.match((text or "").strip()))


class CellContentService:
    """Reads the text of every cell of a table through a pluggable cell reader."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(CellContentService, cls).__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if not self._initialized:
            self.logger = get_standard_logger("CellContentService")
            self._initialized = True

    def estimate_text_confidence(self, text: str) -> float:
        """Heuristic confidence derived from the text alone"""
        if not text or not text.strip():
            return 0.0

        confidence = TEXT_CONFIDENCE_BASE
        if len(text) > TEXT_CONFIDENCE_LENGTH_SHORT:
            confidence += 0.2
        if len(text) > TEXT_CONFIDENCE_LENGTH_LONG:
            confidence += 0.1
        if any(ch.isalnum() for ch in text):
            confidence += 0.2
        if _ALLOWED_TEXT.match(text):
            confidence += 0.1
        return min(confidence, 1.0)

    def reconcile_confidence(
        self,
        text: str,
        reader_confidence: Optional[float],
        text_confidence: float,
        weight: float = DEFAULT_EXTRACTION_CONFIG.reader_confidence_weight,
    ) -> float:
        """
        Weighted mean of the reader's confidence and the text heuristic.

        Empty text is always 0. A reader that reports no confidence leaves the
        heuristic as the only estimate.
        """
        if not text or not text.strip():
            return 0.0
        if reader_confidence is None:
            return text_confidence
        reader_confidence = min(max(float(reader_confidence), 0.0), 1.0)
        return weight * reader_confidence + (1.0 - weight) * text_confidence

    @log_method_entry_exit
    @handle_table_extraction(severity=ExceptionSeverity.HIGH)
    async def resolve_cells(
        self,
        image: RasterImage,
        cells: List[GridCell],
        merge_candidates: List[CellMergeCandidate],
        reader: Any,
        config: ExtractionConfig = DEFAULT_EXTRACTION_CONFIG,
    ) -> List[TableCell]:
        """Resolve every cell not absorbed by a merge, concurrently, in grid order"""
        by_origin: Dict[Tuple[int, int], CellMergeCandidate] = {
            (m.cell.row, m.cell.col): m for m in merge_candidates
        }
        absorbed = CellGridService.absorbed_positions(merge_candidates)
        semaphore = asyncio.Semaphore(config.max_concurrent_reads)

        pending = [
            self._resolve_cell(image, cell, by_origin.get((cell.row, cell.col)), reader, config, semaphore)
            for cell in sorted(cells, key=lambda c: (c.row, c.col))
            if (cell.row, cell.col) not in absorbed
        ]
        resolved = await asyncio.gather(*pending)
        self.logger.info(
            f"Resolved {len(resolved)} cells ({sum(1 for c in resolved if not c.is_empty)} with text)"
        )
        return list(resolved)

    async def _resolve_cell(
        self,
        image: RasterImage,
        cell: GridCell,
        merge: Optional[CellMergeCandidate],
        reader: Any,
        config: ExtractionConfig,
        semaphore: asyncio.Semaphore,
    ) -> TableCell:
        bounds = merge.merged_bounds if merge else cell.bbox
        region = image.crop(bounds.inset(CELL_BORDER_INSET_PX))

        async with semaphore:
            try:
                reading = await asyncio.wait_for(self.read_cell(reader, region), timeout=config.cell_read_timeout)
            except asyncio.TimeoutError:
                timeout = CellReadTimeoutException(cell.row, cell.col, config.cell_read_timeout)
                self.logger.warning(timeout.message)
                reading = CellReading("", 0.0)
            except BaseTableException as e:
                self.logger.warning(f"Cell ({cell.row}, {cell.col}) degraded to empty: {e.message}")
                reading = CellReading("", 0.0)

        text = (reading.text or "").strip()
        text_confidence = self.estimate_text_confidence(text)
        reader_confidence = reading.confidence
        if reader_confidence is not None:
            reader_confidence = min(max(float(reader_confidence), 0.0), 1.0)

        return TableCell(
            row=cell.row,
            col=cell.col,
            bbox=bounds,
            text=text,
            confidence=self.reconcile_confidence(
                text, reader_confidence, text_confidence, config.reader_confidence_weight
            ),
            col_span=merge.col_span if merge else 1,
            row_span=merge.row_span if merge else 1,
            is_header=cell.row == 0,
            is_empty=not text,
            alignment=CellAlignment.RIGHT if is_numeric_text(text) else CellAlignment.LEFT,
            reader_confidence=reader_confidence,
            text_confidence=text_confidence,
        )

    @handle_cell_reading(severity=ExceptionSeverity.MEDIUM, retryable=True, max_retries=1)
    async def read_cell(self, reader: Any, region: RasterImage) -> CellReading:
        """Call the reader, sync or async, and normalise its answer"""
        if region.is_empty:
            return CellReading("", 0.0)
        if inspect.iscoroutinefunction(reader.read_cell_text):
            result = await reader.read_cell_text(region)
        else:
            loop = asyncio.get_running_loop()
            result = await loop.run_in_executor(None, reader.read_cell_text, region)
            if inspect.isawaitable(result):
                result = await result
        return coerce_reading(result)
