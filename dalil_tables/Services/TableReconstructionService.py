import math
from dataclasses import dataclass, replace
from typing import List, Optional, Tuple

from dalil_tables.Common.Constants import (
    WIDE_CELL_RATIO, LONG_CONTENT_CELL_RATIO, LONG_CONTENT_CHARS, SMALL_GAP_MAX_COLUMNS,
    NUMERIC_ROW_RATIO, IMPLICIT_CELL_CONFIDENCE, IMPLICIT_CELL_CONFIDENCE_MERGING,
    DEFAULT_IMPLICIT_CELL_WIDTH, DEFAULT_IMPLICIT_CELL_HEIGHT, DEFAULT_STRUCTURAL_CONFIDENCE
)
from dalil_tables.Logger.table_logger import get_standard_logger
from dalil_tables.Models.TableModels import (
    TableRegion, TableCell, MergedAway, RowSlot, ReconstructedTable, TableMetadata,
    BoundingBox, CellAlignment
)
from dalil_tables.Services.CellContentService import is_numeric_text
from dalil_tables.Exceptions.custom_exceptions import (
    handle_table_extraction, log_method_entry_exit, ExceptionSeverity
)

@dataclass(frozen=True)
class ColumnGap:
    start_col: int
    end_col: int
    suggested_merge: bool


@dataclass(frozen=True)
class RowStructure:
    has_implicit_merging: bool
    gaps: Tuple[ColumnGap, ...]


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class TableReconstructionService:
    """Turns resolved cells into headers and complete body rows."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(TableReconstructionService, cls).__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if not self._initialized:
            self.logger = get_standard_logger("TableReconstructionService")
            self._initialized = True

    def extract_headers(self, cells: List[TableCell], column_count: int) -> List[str]:
        """One header per grid column, ``Col N`` where row 0 has no text for it"""
        first_row = {c.col: c for c in cells if c.row == 0}
        return [
            first_row[col].text if col in first_row and first_row[col].text else f"Col {col + 1}"
            for col in range(column_count)
        ]

    def detect_implicit_row_structure(self, row_cells: List[TableCell]) -> RowStructure:
        """Find column gaps wider than one slot between consecutive cells of a row"""
        ordered = sorted(row_cells, key=lambda c: c.col)
        gaps = []
        for current, following in zip(ordered, ordered[1:]):
            start = current.col + current.col_span
            gap = following.col - start
            if gap > 1:
                gaps.append(ColumnGap(start, following.col, gap <= SMALL_GAP_MAX_COLUMNS))
        return RowStructure(has_implicit_merging=bool(gaps), gaps=tuple(gaps))

    def suggest_col_span(self, cell: TableCell, row_cells: List[TableCell]) -> int:
        """Column span suggested by the cell's width and content relative to its row"""
        average_width = sum(c.bbox.width for c in row_cells) / len(row_cells)
        if average_width <= 0:
            return 1
        suggested = 1
        if cell.bbox.width > average_width * WIDE_CELL_RATIO:
            suggested = _round_half_up(cell.bbox.width / average_width)
        if len(cell.text) > LONG_CONTENT_CHARS and cell.bbox.width > average_width * LONG_CONTENT_CELL_RATIO:
            suggested = max(suggested, 2)
        return suggested

    def detect_implicit_alignment(self, row_cells: List[TableCell]) -> CellAlignment:
        if not row_cells:
            return CellAlignment.LEFT
        numeric = sum(1 for c in row_cells if is_numeric_text(c.text))
        return CellAlignment.RIGHT if numeric >= len(row_cells) * NUMERIC_ROW_RATIO else CellAlignment.LEFT

    def assemble_row_slots(
        self,
        row_cells: List[TableCell],
        column_count: int,
    ) -> List[RowSlot]:
        """
        Lay a row out over every logical column slot.

        Each slot ends up holding an explicit cell, an implicit cell or a
        MergedAway marker for a slot subsumed by a column span in this row.
        Slots under a cell spanning down from an earlier row are filled with
        implicit cells so the row still covers every header.
        """
        by_col = {c.col: c for c in row_cells}
        structure = self.detect_implicit_row_structure(row_cells)
        row_index = row_cells[0].row if row_cells else 0

        slots: List[RowSlot] = []
        col = 0
        while col < column_count:
            explicit = by_col.get(col)
            if explicit is not None:
                wanted = max(explicit.col_span, self.suggest_col_span(explicit, row_cells))
                span = self._clamp_span(col, explicit.col_span, wanted, column_count, by_col)
                cell = explicit if span == explicit.col_span else replace(explicit, col_span=span)
            else:
                cell = self._implicit_cell(col, row_index, row_cells, structure)
                span = self._clamp_span(col, 1, cell.col_span, column_count, by_col)
                if span != cell.col_span:
                    cell = replace(cell, col_span=span, bbox=replace(cell.bbox, width=cell.bbox.width / cell.col_span * span))

            slots.append(cell)
            for merged_col in range(col + 1, col + span):
                slots.append(MergedAway(col=merged_col, owner_row=cell.row, owner_col=col))
            col += span

        return slots

    def prune_row(self, slots: List[RowSlot]) -> List[TableCell]:
        """Drop MergedAway slots and renumber the remaining cells left to right"""
        cells = [slot for slot in slots if isinstance(slot, TableCell)]
        return [cell if cell.col == index else replace(cell, col=index) for index, cell in enumerate(cells)]

    def fill_implicit_cells(
        self,
        row_cells: List[TableCell],
        column_count: int,
    ) -> List[TableCell]:
        return self.prune_row(self.assemble_row_slots(row_cells, column_count))

    @log_method_entry_exit
    @handle_table_extraction(severity=ExceptionSeverity.HIGH)
    def reconstruct_rows(self, cells: List[TableCell], headers: List[str]) -> List[List[TableCell]]:
        """Rebuild every body row (row > 0) so its spans tile the header width"""
        if not cells:
            return []

        column_count = len(headers)
        rows = []
        for row in range(1, max(c.row for c in cells) + 1):
            row_cells = sorted((c for c in cells if c.row == row), key=lambda c: c.col)
            if not row_cells:
                continue
            rows.append(self.fill_implicit_cells(row_cells, column_count))
        return rows

    def calculate_table_confidence(self, cells: List[TableCell], structural_confidence: Optional[float]) -> float:
        if not cells:
            return 0.0
        positive = [c.confidence for c in cells if c.confidence > 0]
        average_cell = sum(positive) / max(len(positive), 1)
        structural = structural_confidence or DEFAULT_STRUCTURAL_CONFIDENCE
        return (average_cell + structural) / 2

    @log_method_entry_exit
    @handle_table_extraction(severity=ExceptionSeverity.HIGH)
    def reconstruct_table(
        self,
        table_id: str,
        region: TableRegion,
        cells: List[TableCell],
        page_number: Optional[int] = None,
        processing_time: float = 0.0,
    ) -> ReconstructedTable:
        headers = self.extract_headers(cells, region.column_count)
        rows = self.reconstruct_rows(cells, headers)
        table = ReconstructedTable(
            id=table_id,
            headers=tuple(headers),
            rows=tuple(tuple(row) for row in rows),
            confidence=self.calculate_table_confidence(cells, region.confidence),
            bounding_box=region.bbox,
            metadata=TableMetadata(
                border_style=region.border_style,
                has_headers=True,
                extraction_method="advanced_algorithm",
                processing_time=processing_time,
                structural_confidence=region.confidence,
                page_number=page_number,
                row_count=len(rows),
                column_count=len(headers),
            ),
        )
        self.logger.info(
            f"Reconstructed {table_id}: {len(headers)} columns, {len(rows)} body rows, "
            f"confidence {table.confidence:.2f}"
        )
        return table

    def _clamp_span(self, col, base_span, wanted, column_count, by_col) -> int:
        """Stop a widened span at a non-empty cell or the last column"""
        end = min(col + max(wanted, base_span), column_count)
        for other in range(col + base_span, end):
            neighbour = by_col.get(other)
            blocked = neighbour is not None and not (
                neighbour.is_empty and neighbour.col_span == 1 and neighbour.row_span == 1
            )
            if blocked:
                end = other
                break
        return max(min(end, column_count) - col, 1)

    def _implicit_cell(self, col: int, row: int, row_cells: List[TableCell], structure: RowStructure) -> TableCell:
        if row_cells:
            average_width = sum(c.bbox.width for c in row_cells) / len(row_cells)
            average_height = sum(c.bbox.height for c in row_cells) / len(row_cells)
            left = min(c.bbox.x for c in row_cells)
            top = row_cells[0].bbox.y
        else:
            average_width, average_height = DEFAULT_IMPLICIT_CELL_WIDTH, DEFAULT_IMPLICIT_CELL_HEIGHT
            left, top = 0.0, 0.0

        span = 1
        for gap in structure.gaps:
            if gap.suggested_merge and gap.start_col <= col < gap.end_col:
                span = gap.end_col - col
                break

        return TableCell(
            row=row,
            col=col,
            bbox=BoundingBox(left + col * average_width, top, average_width * span, average_height),
            text="",
            confidence=IMPLICIT_CELL_CONFIDENCE_MERGING if structure.has_implicit_merging else IMPLICIT_CELL_CONFIDENCE,
            col_span=span,
            row_span=1,
            is_header=False,
            is_empty=True,
            alignment=self.detect_implicit_alignment(row_cells),
        )

