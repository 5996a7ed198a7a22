"""Typed records exchanged between the table extraction stages."""
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

import numpy as np
from PIL import Image

from dalil_tables.Common.Constants import DARK_LUMINANCE_THRESHOLD
from dalil_tables.Exceptions.custom_exceptions import InvalidImageException


class LineOrientation(str, Enum):
    HORIZONTAL = "horizontal"
    VERTICAL = "vertical"


class LineKind(str, Enum):
    EXPLICIT = "explicit"
    IMPLICIT = "implicit"


class BorderStyle(str, Enum):
    EXPLICIT = "explicit"
    MIXED = "mixed"
    IMPLICIT = "implicit"


class CellAlignment(str, Enum):
    LEFT = "left"
    CENTER = "center"
    RIGHT = "right"


class MergeType(str, Enum):
    HORIZONTAL = "horizontal"
    VERTICAL = "vertical"
    CONTINUATION = "continuation"


@dataclass(frozen=True)
class BoundingBox:
    x: float
    y: float
    width: float
    height: float

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @property
    def center(self) -> Tuple[float, float]:
        return (self.x + self.width / 2.0, self.y + self.height / 2.0)

    @property
    def area(self) -> float:
        return max(self.width, 0) * max(self.height, 0)

    def union(self, other: "BoundingBox") -> "BoundingBox":
        x = min(self.x, other.x)
        y = min(self.y, other.y)
        return BoundingBox(x, y, max(self.right, other.right) - x, max(self.bottom, other.bottom) - y)

    def contains(self, other: "BoundingBox") -> bool:
        return (
            self.x <= other.x and self.y <= other.y
            and self.right >= other.right and self.bottom >= other.bottom
        )

    def inset(self, margin: float) -> "BoundingBox":
        """Shrink by ``margin`` on every side; boxes too small to shrink are returned as is."""
        if self.width <= 2 * margin or self.height <= 2 * margin:
            return self
        return BoundingBox(self.x + margin, self.y + margin, self.width - 2 * margin, self.height - 2 * margin)

    def to_dict(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BoundingBox":
        return cls(
            x=float(data.get("x", 0)),
            y=float(data.get("y", 0)),
            width=float(data.get("width", 0)),
            height=float(data.get("height", 0)),
        )


@dataclass(frozen=True, eq=False)
class RasterImage:
    """Decoded page raster, ``pixels`` shaped (height, width, channels)."""

    width: int
    height: int
    pixels: Optional[np.ndarray]

    def __post_init__(self):
        if self.pixels is None:
            return
        if self.pixels.ndim == 2:
            object.__setattr__(self, "pixels", self.pixels[:, :, np.newaxis])
        if self.pixels.shape[0] != self.height or self.pixels.shape[1] != self.width:
            raise InvalidImageException(
                f"buffer shape {self.pixels.shape[:2]} does not match {self.height}x{self.width}"
            )
        self.pixels.setflags(write=False)

    @classmethod
    def from_rgba_bytes(cls, width: int, height: int, buffer: bytes) -> "RasterImage":
        if width <= 0 or height <= 0 or not buffer:
            return cls(max(width, 0), max(height, 0), None)
        expected = width * height * 4
        if len(buffer) != expected:
            raise InvalidImageException(f"expected {expected} bytes for RGBA {width}x{height}, got {len(buffer)}")
        pixels = np.frombuffer(buffer, dtype=np.uint8).reshape(height, width, 4).copy()
        return cls(width, height, pixels)

    @classmethod
    def from_array(cls, array: np.ndarray) -> "RasterImage":
        pixels = np.ascontiguousarray(array, dtype=np.uint8).copy()
        return cls(pixels.shape[1], pixels.shape[0], pixels)

    @classmethod
    def from_pil(cls, image: Image.Image) -> "RasterImage":
        if image.mode != "RGBA":
            image = image.convert("RGBA")
        return cls.from_array(np.asarray(image))

    @property
    def is_empty(self) -> bool:
        return self.pixels is None or self.width <= 0 or self.height <= 0 or self.pixels.size == 0

    def luminance(self) -> np.ndarray:
        """Per-pixel brightness, the mean of the colour channels (alpha ignored)."""
        if self.is_empty:
            return np.zeros((0, 0), dtype=np.float32)
        channels = self.pixels.shape[2]
        if channels >= 3:
            return self.pixels[:, :, :3].astype(np.float32).mean(axis=2)
        return self.pixels[:, :, 0].astype(np.float32)

    def dark_mask(self, threshold: int = DARK_LUMINANCE_THRESHOLD) -> np.ndarray:
        return self.luminance() < threshold

    def crop(self, bbox: BoundingBox) -> "RasterImage":
        if self.is_empty:
            return RasterImage(0, 0, None)
        x0 = int(max(0, min(self.width, round(bbox.x))))
        y0 = int(max(0, min(self.height, round(bbox.y))))
        x1 = int(max(x0, min(self.width, round(bbox.right))))
        y1 = int(max(y0, min(self.height, round(bbox.bottom))))
        if x1 == x0 or y1 == y0:
            return RasterImage(0, 0, None)
        return RasterImage(x1 - x0, y1 - y0, self.pixels[y0:y1, x0:x1].copy())

    def to_pil(self) -> Image.Image:
        if self.pixels.shape[2] == 1:
            return Image.fromarray(self.pixels[:, :, 0], mode="L")
        if self.pixels.shape[2] == 3:
            return Image.fromarray(self.pixels, mode="RGB")
        return Image.fromarray(self.pixels[:, :, :4], mode="RGBA")


@dataclass(frozen=True)
class DetectedLine:
    orientation: LineOrientation
    x1: float
    y1: float
    x2: float
    y2: float
    length: float
    confidence: float
    kind: LineKind = LineKind.EXPLICIT

    @property
    def is_horizontal(self) -> bool:
        return self.orientation == LineOrientation.HORIZONTAL

    @property
    def position(self) -> float:
        """Fixed coordinate: y for horizontal lines, x for vertical ones."""
        return self.y1 if self.is_horizontal else self.x1

    @property
    def start(self) -> float:
        return self.x1 if self.is_horizontal else self.y1

    @property
    def end(self) -> float:
        return self.x2 if self.is_horizontal else self.y2

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["orientation"] = self.orientation.value
        data["kind"] = self.kind.value
        return data


@dataclass(frozen=True)
class TextRegion:
    x: int
    y: int
    width: int
    height: int
    density: float


@dataclass(frozen=True)
class TableRegion:
    bbox: BoundingBox
    horizontal_lines: Tuple[DetectedLine, ...]
    vertical_lines: Tuple[DetectedLine, ...]
    confidence: float

    @property
    def bounding_lines(self) -> Tuple[DetectedLine, ...]:
        return (
            self.horizontal_lines[0], self.horizontal_lines[-1],
            self.vertical_lines[0], self.vertical_lines[-1],
        )

    @property
    def border_style(self) -> BorderStyle:
        kinds = {line.kind for line in self.bounding_lines}
        if kinds == {LineKind.EXPLICIT}:
            return BorderStyle.EXPLICIT
        if kinds == {LineKind.IMPLICIT}:
            return BorderStyle.IMPLICIT
        return BorderStyle.MIXED

    @property
    def row_count(self) -> int:
        return max(len(self.horizontal_lines) - 1, 0)

    @property
    def column_count(self) -> int:
        return max(len(self.vertical_lines) - 1, 0)


@dataclass(frozen=True)
class GridCell:
    row: int
    col: int
    bbox: BoundingBox


@dataclass(frozen=True)
class CellMergeCandidate:
    cell: GridCell
    absorbed: Tuple[GridCell, ...]
    merged_bounds: BoundingBox

    @property
    def col_span(self) -> int:
        cols = {self.cell.col} | {c.col for c in self.absorbed}
        return max(cols) - min(cols) + 1

    @property
    def row_span(self) -> int:
        rows = {self.cell.row} | {c.row for c in self.absorbed}
        return max(rows) - min(rows) + 1


@dataclass(frozen=True)
class CellReading:
    text: str
    confidence: Optional[float] = None


@dataclass(frozen=True)
class CellBorders:
    top: bool = True
    right: bool = True
    bottom: bool = True
    left: bool = True


@dataclass(frozen=True)
class TableCell:
    row: int
    col: int
    bbox: BoundingBox
    text: str = ""
    confidence: float = 0.0
    col_span: int = 1
    row_span: int = 1
    is_header: bool = False
    is_empty: bool = True
    borders: CellBorders = field(default_factory=CellBorders)
    alignment: CellAlignment = CellAlignment.LEFT
    reader_confidence: Optional[float] = None
    text_confidence: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "row": self.row,
            "col": self.col,
            "bounds": self.bbox.to_dict(),
            "text": self.text,
            "confidence": self.confidence,
            "col_span": self.col_span,
            "row_span": self.row_span,
            "is_header": self.is_header,
            "is_empty": self.is_empty,
            "borders": asdict(self.borders),
            "alignment": self.alignment.value,
            "reader_confidence": self.reader_confidence,
            "text_confidence": self.text_confidence,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TableCell":
        text = data.get("text", data.get("content", "")) or ""
        borders = data.get("borders") or {}
        return cls(
            row=int(data.get("row", 0)),
            col=int(data.get("col", 0)),
            bbox=BoundingBox.from_dict(data.get("bounds") or data),
            text=text,
            confidence=float(data.get("confidence", 0.0)),
            col_span=int(data.get("col_span", data.get("colSpan", 1))),
            row_span=int(data.get("row_span", data.get("rowSpan", 1))),
            is_header=bool(data.get("is_header", data.get("isHeader", False))),
            is_empty=bool(data.get("is_empty", data.get("isEmpty", not text.strip()))),
            borders=CellBorders(**{k: bool(v) for k, v in borders.items() if k in ("top", "right", "bottom", "left")}),
            alignment=CellAlignment(data.get("alignment", CellAlignment.LEFT.value)),
            reader_confidence=data.get("reader_confidence"),
            text_confidence=float(data.get("text_confidence", 0.0)),
        )


@dataclass(frozen=True)
class MergedAway:
    """Row slot subsumed by a spanning cell; never part of a finished row."""

    col: int
    owner_row: int
    owner_col: int


RowSlot = Union[TableCell, MergedAway]


@dataclass(frozen=True)
class TableMetadata:
    border_style: BorderStyle = BorderStyle.EXPLICIT
    has_headers: bool = True
    extraction_method: str = "advanced_algorithm"
    processing_time: float = 0.0
    structural_confidence: float = 0.8
    page_number: Optional[int] = None
    row_count: int = 0
    column_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["border_style"] = self.border_style.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TableMetadata":
        return cls(
            border_style=BorderStyle(data.get("border_style", data.get("borderStyle", BorderStyle.EXPLICIT.value))),
            has_headers=bool(data.get("has_headers", data.get("hasHeaders", True))),
            extraction_method=data.get("extraction_method", data.get("extractionMethod", "advanced_algorithm")),
            processing_time=float(data.get("processing_time", data.get("processingTime", 0.0))),
            structural_confidence=float(data.get("structural_confidence", data.get("confidence", 0.8))),
            page_number=data.get("page_number"),
            row_count=int(data.get("row_count", data.get("rowCount", 0))),
            column_count=int(data.get("column_count", data.get("columnCount", 0))),
        )


@dataclass(frozen=True)
class ReconstructedTable:
    id: str
    headers: Tuple[str, ...]
    rows: Tuple[Tuple[TableCell, ...], ...]
    confidence: float
    bounding_box: BoundingBox
    metadata: TableMetadata = field(default_factory=TableMetadata)

    @property
    def column_count(self) -> int:
        return len(self.headers)

    @property
    def row_count(self) -> int:
        return len(self.rows)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "headers": list(self.headers),
            "rows": [[cell.to_dict() for cell in row] for row in self.rows],
            "confidence": self.confidence,
            "bounding_box": self.bounding_box.to_dict(),
            "metadata": self.metadata.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ReconstructedTable":
        rows = data.get("rows") or data.get("cells") or []
        return cls(
            id=str(data["id"]),
            headers=tuple(str(h) for h in data.get("headers") or []),
            rows=tuple(tuple(TableCell.from_dict(cell) for cell in row) for row in rows),
            confidence=float(data.get("confidence", 0.0)),
            bounding_box=BoundingBox.from_dict(data.get("bounding_box") or data.get("boundingBox") or {}),
            metadata=TableMetadata.from_dict(data.get("metadata") or {}),
        )


@dataclass(frozen=True)
class TableMergeCandidate:
    primary: ReconstructedTable
    secondary: ReconstructedTable
    merge_score: float
    merge_type: MergeType
    confidence: float
    alignment_quality: float
    distance: float = 0.0
    content_similarity: float = 1.0


def rows_as_text(table: ReconstructedTable) -> List[List[str]]:
    return [[cell.text for cell in row] for row in table.rows]
