from typing import Dict, List, Tuple

from dalil_tables.Common.Constants import EMPTY_CELL_DARK_RATIO, CELL_BORDER_INSET_PX
from dalil_tables.Logger.table_logger import get_standard_logger
from dalil_tables.Models.TableModels import (
    RasterImage, TableRegion, GridCell, CellMergeCandidate, BoundingBox
)
from dalil_tables.Services.LineDetectionService import LineDetectionService
from dalil_tables.Exceptions.custom_exceptions import (
    handle_table_extraction, log_method_entry_exit, ExceptionSeverity
)


class CellGridService:
    """Builds the base cell grid of a region and finds cells that absorb empty neighbours."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(CellGridService, cls).__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if not self._initialized:
            self.logger = get_standard_logger("CellGridService")
            self.line_detection_service = LineDetectionService()
            self._initialized = True

    @log_method_entry_exit
    @handle_table_extraction(severity=ExceptionSeverity.HIGH)
    def build_cell_grid(self, region: TableRegion) -> List[GridCell]:
        """Emit one GridCell per pair of consecutive horizontal and vertical lines, row-major"""
        horizontals = region.horizontal_lines
        verticals = region.vertical_lines
        cells = []
        for row in range(len(horizontals) - 1):
            top, bottom = horizontals[row].position, horizontals[row + 1].position
            for col in range(len(verticals) - 1):
                left, right = verticals[col].position, verticals[col + 1].position
                cells.append(GridCell(
                    row=row,
                    col=col,
                    bbox=BoundingBox(left, top, right - left, bottom - top),
                ))
        self.logger.debug(f"Built {len(cells)} grid cells ({region.row_count}x{region.column_count})")
        return cells

    def is_cell_empty(self, image: RasterImage, cell: GridCell) -> bool:
        """A cell is empty when under 5% of its interior (borders excluded) is dark"""
        interior = cell.bbox.inset(CELL_BORDER_INSET_PX)
        return self.line_detection_service.dark_ratio(image, interior) < EMPTY_CELL_DARK_RATIO

    @log_method_entry_exit
    @handle_table_extraction(severity=ExceptionSeverity.MEDIUM)
    def detect_merged_cells(self, cells: List[GridCell], image: RasterImage) -> List[CellMergeCandidate]:
        """
        Scan cells row-major and let each one absorb its empty right and lower neighbours.

        A cell already absorbed neither originates a merge nor is absorbed again.
        When both neighbours are empty the diagonal cell must be empty as well so
        the merged group stays rectangular; otherwise only the right neighbour is taken.
        """
        by_position: Dict[Tuple[int, int], GridCell] = {(c.row, c.col): c for c in cells}
        emptiness: Dict[Tuple[int, int], bool] = {}

        def empty(position):
            if position not in emptiness:
                emptiness[position] = self.is_cell_empty(image, by_position[position])
            return emptiness[position]

        def available(position):
            return position in by_position and position not in absorbed and empty(position)

        absorbed = set()
        candidates = []
        for cell in sorted(cells, key=lambda c: (c.row, c.col)):
            origin = (cell.row, cell.col)
            if origin in absorbed:
                continue

            right = (cell.row, cell.col + 1)
            below = (cell.row + 1, cell.col)
            diagonal = (cell.row + 1, cell.col + 1)

            group = []
            if available(right) and available(below):
                group = [right, below, diagonal] if available(diagonal) else [right]
            elif available(right):
                group = [right]
            elif available(below):
                group = [below]

            if not group:
                continue

            absorbed.update(group)
            absorbed_cells = tuple(by_position[p] for p in group)
            bounds = cell.bbox
            for other in absorbed_cells:
                bounds = bounds.union(other.bbox)
            candidates.append(CellMergeCandidate(cell=cell, absorbed=absorbed_cells, merged_bounds=bounds))

        self.logger.info(f"Detected {len(candidates)} merged cells")
        return candidates

    @staticmethod
    def absorbed_positions(candidates: List[CellMergeCandidate]) -> set:
        return {(c.row, c.col) for candidate in candidates for c in candidate.absorbed}
