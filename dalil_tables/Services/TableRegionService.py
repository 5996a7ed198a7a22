from dataclasses import replace
from typing import List

from dalil_tables.Common.Config import ExtractionConfig, DEFAULT_EXTRACTION_CONFIG
from dalil_tables.Common.Constants import LINE_MERGE_TOLERANCE_PX, LINE_COVERAGE_TOLERANCE_PX
from dalil_tables.Logger.table_logger import get_standard_logger
from dalil_tables.Models.TableModels import BoundingBox, DetectedLine, TableRegion, LineKind
from dalil_tables.Exceptions.custom_exceptions import (
    handle_table_extraction, log_method_entry_exit, ExceptionSeverity
)


class TableRegionService:
    """Pairs horizontal rules with the vertical rules crossing both to form table regions."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(TableRegionService, cls).__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if not self._initialized:
            self.logger = get_standard_logger("TableRegionService")
            self._initialized = True

    @log_method_entry_exit
    @handle_table_extraction(severity=ExceptionSeverity.HIGH)
    def create_table_regions(
        self,
        horizontal_lines: List[DetectedLine],
        vertical_lines: List[DetectedLine],
        config: ExtractionConfig = DEFAULT_EXTRACTION_CONFIG,
    ) -> List[TableRegion]:
        """Assemble, filter and cap the table regions of one page"""
        horizontals = self.collapse_parallel_lines(horizontal_lines)
        verticals = self.collapse_parallel_lines(vertical_lines)
        if len(horizontals) < 2 or len(verticals) < 2:
            return []

        regions = []
        for i, top in enumerate(horizontals[:-1]):
            for bottom in horizontals[i + 1:]:
                region = self._region_between(top, bottom, horizontals, verticals)
                if region is not None:
                    regions.append(region)

        minimum = config.minimum_cell_size
        regions = [
            r for r in regions
            if r.bbox.width >= minimum.width and r.bbox.height >= minimum.height
        ]

        if config.suppress_nested_regions:
            regions = self.suppress_nested_regions(regions)

        selected = regions[:config.max_tables_per_page]
        self.logger.info(f"Assembled {len(selected)} table regions (from {len(regions)} candidates)")
        return selected

    def collapse_parallel_lines(self, lines: List[DetectedLine]) -> List[DetectedLine]:
        """Sort lines by position and fold rules sampled twice into one line"""
        collapsed: List[DetectedLine] = []
        for line in sorted(lines, key=lambda l: (l.position, l.start)):
            merged = False
            for index in range(len(collapsed) - 1, -1, -1):
                kept = collapsed[index]
                if line.position - kept.position > LINE_MERGE_TOLERANCE_PX:
                    break
                if line.start <= kept.end and kept.start <= line.end:
                    collapsed[index] = self._fold(kept, line)
                    merged = True
                    break
            if not merged:
                collapsed.append(line)
        return collapsed

    def suppress_nested_regions(self, regions: List[TableRegion]) -> List[TableRegion]:
        kept = []
        for i, region in enumerate(regions):
            nested = any(
                other.bbox.contains(region.bbox) and (other.bbox != region.bbox or j < i)
                for j, other in enumerate(regions) if j != i
            )
            if not nested:
                kept.append(region)
        return kept

    def _region_between(self, top, bottom, horizontals, verticals):
        tol = LINE_COVERAGE_TOLERANCE_PX
        span_left = min(top.x1, bottom.x1)
        span_right = max(top.x2, bottom.x2)

        crossing = [
            v for v in verticals
            if v.y1 <= top.y1 + tol and v.y2 >= bottom.y1 - tol
            and max(v.x1, span_left - tol) <= min(v.x2, span_right + tol)
        ]
        if len(crossing) < 2:
            return None

        left, right = crossing[0], crossing[-1]
        bbox = BoundingBox(left.x1, top.y1, right.x1 - left.x1, bottom.y1 - top.y1)
        interior = [
            h for h in horizontals
            if top.y1 < h.y1 < bottom.y1 and h.x1 <= bbox.x + tol and h.x2 >= bbox.right - tol
        ]
        return TableRegion(
            bbox=bbox,
            horizontal_lines=tuple([top] + interior + [bottom]),
            vertical_lines=tuple(crossing),
            confidence=(top.confidence + bottom.confidence + left.confidence + right.confidence) / 4,
        )

    @staticmethod
    def _fold(kept: DetectedLine, line: DetectedLine) -> DetectedLine:
        kind = LineKind.EXPLICIT if LineKind.EXPLICIT in (kept.kind, line.kind) else LineKind.IMPLICIT
        if kept.is_horizontal:
            x1, x2 = min(kept.x1, line.x1), max(kept.x2, line.x2)
            return replace(kept, x1=x1, x2=x2, length=max(kept.length, line.length, x2 - x1),
                           confidence=max(kept.confidence, line.confidence), kind=kind)
        y1, y2 = min(kept.y1, line.y1), max(kept.y2, line.y2)
        return replace(kept, y1=y1, y2=y2, length=max(kept.length, line.length, y2 - y1),
                       confidence=max(kept.confidence, line.confidence), kind=kind)
