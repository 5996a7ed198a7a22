"""
Pytest configuration and shared fixtures for the table extraction tests
"""

import os
import sys
import tempfile

import numpy as np
import pytest
from fastapi.testclient import TestClient

# Keep test logs out of the package directory
os.environ.setdefault("DALIL_TABLES_LOG_DIR", tempfile.mkdtemp(prefix="dalil_tables_logs_"))

# Add the parent directory to the Python path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from Main import app1
from dalil_tables.Common.Config import ExtractionConfig
from dalil_tables.Models.TableModels import (
    RasterImage, BoundingBox, TableCell, ReconstructedTable, TableMetadata, CellReading
)


class PageBuilder:
    """Draws synthetic page rasters: white background, black rules and text blocks"""

    def __init__(self, width=200, height=120, background=255):
        self.pixels = np.full((height, width, 4), background, dtype=np.uint8)
        self.pixels[:, :, 3] = 255

    def hline(self, y, x0, x1, thickness=2):
        self.pixels[y:y + thickness, x0:x1 + thickness, :3] = 0
        return self

    def vline(self, x, y0, y1, thickness=2):
        self.pixels[y0:y1 + thickness, x:x + thickness, :3] = 0
        return self

    def grid(self, xs, ys, thickness=2):
        for y in ys:
            self.hline(y, xs[0], xs[-1], thickness)
        for x in xs:
            self.vline(x, ys[0], ys[-1], thickness)
        return self

    def block(self, x, y, width, height, value=0):
        self.pixels[y:y + height, x:x + width, :3] = value
        return self

    def build(self):
        return RasterImage.from_array(self.pixels)


class MarkerReader:
    """Answers with a marker derived from the width of the dark block in the crop"""

    def __init__(self, confidence=0.9):
        self.confidence = confidence
        self.calls = 0

    def read_cell_text(self, region):
        self.calls += 1
        dark_columns = int(region.dark_mask().any(axis=0).sum())
        if dark_columns == 0:
            return CellReading("", 0.0)
        return CellReading(f"w{dark_columns}", self.confidence)


class AsyncMarkerReader(MarkerReader):
    async def read_cell_text(self, region):
        return MarkerReader.read_cell_text(self, region)


@pytest.fixture(scope="session")
def test_client():
    """Create a test client for the FastAPI app"""
    return TestClient(app1)


@pytest.fixture
def page_builder():
    return PageBuilder


@pytest.fixture
def marker_reader():
    return MarkerReader()


@pytest.fixture
def async_marker_reader():
    return AsyncMarkerReader()


@pytest.fixture
def explicit_only_config():
    """Extraction options with text-alignment inference switched off"""
    return ExtractionConfig(detect_implicit_lines=False)


@pytest.fixture
def grid_2x2_page():
    """Three horizontal and three vertical rules, a distinct text block in every cell"""
    builder = PageBuilder(200, 120).grid([10, 100, 190], [10, 60, 110])
    builder.block(20, 25, 20, 16)
    builder.block(110, 25, 26, 16)
    builder.block(20, 75, 32, 16)
    builder.block(110, 75, 38, 16)
    return builder.build()


@pytest.fixture
def grid_2x3_merged_page():
    """2x3 grid whose body row has an empty middle cell"""
    builder = PageBuilder(300, 120).grid([10, 100, 190, 280], [10, 60, 110])
    builder.block(20, 25, 20, 16)
    builder.block(110, 25, 26, 16)
    builder.block(200, 25, 32, 16)
    builder.block(20, 75, 38, 16)
    builder.block(200, 75, 44, 16)
    return builder.build()


def make_cell(row, col, x, y, width=50, height=20, text="", col_span=1, row_span=1, confidence=None):
    text = text or ""
    return TableCell(
        row=row,
        col=col,
        bbox=BoundingBox(x, y, width, height),
        text=text,
        confidence=(0.8 if text else 0.0) if confidence is None else confidence,
        col_span=col_span,
        row_span=row_span,
        is_header=row == 0,
        is_empty=not text.strip(),
    )


def make_table(table_id, bbox, headers, body, page_number=None, confidence=0.8, **metadata):
    """Build a ReconstructedTable from header names and rows of text"""
    x, y, width, height = bbox
    column_width = width / max(len(headers), 1)
    rows = tuple(
        tuple(
            make_cell(r + 1, c, x + c * column_width, y + (r + 1) * 20, column_width, 20, text)
            for c, text in enumerate(row)
        )
        for r, row in enumerate(body)
    )
    return ReconstructedTable(
        id=table_id,
        headers=tuple(headers),
        rows=rows,
        confidence=confidence,
        bounding_box=BoundingBox(x, y, width, height),
        metadata=TableMetadata(
            page_number=page_number,
            row_count=len(rows),
            column_count=len(headers),
            **metadata
        ),
    )


@pytest.fixture
def cell_factory():
    return make_cell


@pytest.fixture
def table_factory():
    return make_table


@pytest.fixture
def sample_table():
    return make_table(
        "table_p1_0",
        (0, 0, 200, 60),
        ["Wilaya", "Code", "Population"],
        [["Alger", "16", "2988145"], ["Oran", "31", "1454078"]],
        page_number=1,
    )


# Test markers for different types of tests
def pytest_configure(config):
    """Configure custom pytest markers"""
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test"
    )
    config.addinivalue_line(
        "markers", "api: mark test as an API test"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )
