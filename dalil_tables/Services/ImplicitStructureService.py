from typing import List, Tuple

from dalil_tables.Common.Constants import (
    TEXT_ALIGNMENT_TOLERANCE_PX, IMPLICIT_LINE_MIN_REGIONS, IMPLICIT_LINE_FULL_CONFIDENCE_REGIONS
)
from dalil_tables.Logger.table_logger import get_standard_logger
from dalil_tables.Models.TableModels import (
    RasterImage, DetectedLine, TextRegion, LineOrientation, LineKind
)
from dalil_tables.Services.LineDetectionService import LineDetectionService
from dalil_tables.Exceptions.custom_exceptions import (
    handle_table_extraction, log_method_entry_exit, ExceptionSeverity
)


class ImplicitStructureService:
    """Infers ruling lines for borderless tables from aligned text tiles."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(ImplicitStructureService, cls).__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if not self._initialized:
            self.logger = get_standard_logger("ImplicitStructureService")
            self.line_detection_service = LineDetectionService()
            self._initialized = True

    @log_method_entry_exit
    @handle_table_extraction(severity=ExceptionSeverity.MEDIUM)
    def detect_implicit_lines(self, image: RasterImage) -> Tuple[List[DetectedLine], List[DetectedLine]]:
        """Return (horizontal, vertical) implicit lines built from text alignment"""
        regions = self.line_detection_service.detect_text_regions(image)
        if not regions:
            self.logger.debug("No text regions, no implicit structure available")
            return [], []

        horizontal = self.find_horizontal_alignment(regions)
        vertical = self.find_vertical_alignment(regions)
        self.logger.info(
            f"Inferred {len(horizontal)} implicit horizontal and {len(vertical)} implicit vertical lines"
        )
        return horizontal, vertical

    def find_horizontal_alignment(self, regions: List[TextRegion]) -> List[DetectedLine]:
        lines = []
        for y, group in self._group_by(regions, lambda r: r.y):
            min_x = min(r.x for r in group)
            max_x = max(r.x + r.width for r in group)
            lines.append(DetectedLine(
                orientation=LineOrientation.HORIZONTAL,
                x1=min_x, y1=y, x2=max_x, y2=y,
                length=max_x - min_x,
                confidence=self._group_confidence(group),
                kind=LineKind.IMPLICIT,
            ))
        return lines

    def find_vertical_alignment(self, regions: List[TextRegion]) -> List[DetectedLine]:
        lines = []
        for x, group in self._group_by(regions, lambda r: r.x):
            min_y = min(r.y for r in group)
            max_y = max(r.y + r.height for r in group)
            lines.append(DetectedLine(
                orientation=LineOrientation.VERTICAL,
                x1=x, y1=min_y, x2=x, y2=max_y,
                length=max_y - min_y,
                confidence=self._group_confidence(group),
                kind=LineKind.IMPLICIT,
            ))
        return lines

    def _group_by(self, regions, coordinate):
        """Yield (coordinate, regions within tolerance) for each distinct coordinate"""
        for value in sorted({coordinate(r) for r in regions}):
            group = [r for r in regions if abs(coordinate(r) - value) < TEXT_ALIGNMENT_TOLERANCE_PX]
            if len(group) >= IMPLICIT_LINE_MIN_REGIONS:
                yield value, group

    @staticmethod
    def _group_confidence(group) -> float:
        return min(len(group) / IMPLICIT_LINE_FULL_CONFIDENCE_REGIONS, 1.0)
