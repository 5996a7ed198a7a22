import numpy as np
from typing import List, Optional

from dalil_tables.Common.Constants import (
    DARK_LUMINANCE_THRESHOLD, LINE_SCAN_STRIDE, MIN_LINE_LENGTH_RATIO,
    TEXT_TILE_SIZE, TEXT_DENSITY_MIN, TEXT_DENSITY_MAX
)
from dalil_tables.Logger.table_logger import get_standard_logger
from dalil_tables.Models.TableModels import (
    RasterImage, BoundingBox, DetectedLine, TextRegion, LineOrientation, LineKind
)
from dalil_tables.Exceptions.custom_exceptions import (
    handle_image_processing, log_method_entry_exit, ExceptionSeverity
)


def _dark_runs(mask_line: np.ndarray):
    """Yield (start, end_inclusive) for every contiguous run of True values"""
    padded = np.concatenate(([False], mask_line, [False])).astype(np.int8)
    edges = np.diff(padded)
    starts = np.flatnonzero(edges == 1)
    ends = np.flatnonzero(edges == -1)
    for start, end in zip(starts, ends):
        yield int(start), int(end) - 1


def _is_unusable(image: Optional[RasterImage]) -> bool:
    return image is None or image.is_empty


class LineDetectionService:
    """Finds ruling lines and text-like tiles in a page raster."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(LineDetectionService, cls).__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if not self._initialized:
            self.logger = get_standard_logger("LineDetectionService")
            self._initialized = True

    @log_method_entry_exit
    @handle_image_processing(severity=ExceptionSeverity.MEDIUM)
    def detect_horizontal_lines(self, image: RasterImage) -> List[DetectedLine]:
        """Scan every other pixel row for dark runs longer than 30% of the width"""
        if _is_unusable(image):
            return []

        dark = image.dark_mask(DARK_LUMINANCE_THRESHOLD)
        min_run = image.width * MIN_LINE_LENGTH_RATIO
        lines = []
        for y in range(0, image.height, LINE_SCAN_STRIDE):
            for start, end in _dark_runs(dark[y]):
                run = end - start + 1
                if run > min_run:
                    lines.append(DetectedLine(
                        orientation=LineOrientation.HORIZONTAL,
                        x1=start, y1=y, x2=end, y2=y,
                        length=run,
                        confidence=min(run / image.width, 1.0),
                        kind=LineKind.EXPLICIT,
                    ))

        self.logger.info(f"Detected {len(lines)} horizontal lines")
        return lines

    @log_method_entry_exit
    @handle_image_processing(severity=ExceptionSeverity.MEDIUM)
    def detect_vertical_lines(self, image: RasterImage) -> List[DetectedLine]:
        """Scan every other pixel column for dark runs longer than 30% of the height"""
        if _is_unusable(image):
            return []

        dark = image.dark_mask(DARK_LUMINANCE_THRESHOLD)
        min_run = image.height * MIN_LINE_LENGTH_RATIO
        lines = []
        for x in range(0, image.width, LINE_SCAN_STRIDE):
            for start, end in _dark_runs(dark[:, x]):
                run = end - start + 1
                if run > min_run:
                    lines.append(DetectedLine(
                        orientation=LineOrientation.VERTICAL,
                        x1=x, y1=start, x2=x, y2=end,
                        length=run,
                        confidence=min(run / image.height, 1.0),
                        kind=LineKind.EXPLICIT,
                    ))

        self.logger.info(f"Detected {len(lines)} vertical lines")
        return lines

    @log_method_entry_exit
    @handle_image_processing(severity=ExceptionSeverity.MEDIUM)
    def detect_text_regions(self, image: RasterImage) -> List[TextRegion]:
        """Classify full 20x20 tiles whose dark fraction looks like text"""
        if _is_unusable(image):
            return []

        tile = TEXT_TILE_SIZE
        rows, cols = image.height // tile, image.width // tile
        if rows == 0 or cols == 0:
            return []

        dark = image.dark_mask(DARK_LUMINANCE_THRESHOLD)[:rows * tile, :cols * tile]
        # (rows, tile, cols, tile) -> dark fraction per tile
        densities = dark.reshape(rows, tile, cols, tile).mean(axis=(1, 3))

        regions = []
        for ty, tx in zip(*np.nonzero((densities > TEXT_DENSITY_MIN) & (densities < TEXT_DENSITY_MAX))):
            regions.append(TextRegion(
                x=int(tx) * tile,
                y=int(ty) * tile,
                width=tile,
                height=tile,
                density=float(densities[ty, tx]),
            ))

        self.logger.debug(f"Detected {len(regions)} text regions")
        return regions

    def dark_ratio(self, image: RasterImage, bbox: BoundingBox) -> float:
        """Fraction of dark pixels inside ``bbox``; 0 when the box falls outside the image"""
        if _is_unusable(image):
            return 0.0
        region = image.crop(bbox)
        if region.is_empty:
            return 0.0
        return float(region.dark_mask(DARK_LUMINANCE_THRESHOLD).mean())
