import asyncio

import pytest

from dalil_tables.Common.Config import ExtractionConfig
from dalil_tables.Exceptions.custom_exceptions import TesseractException
from dalil_tables.Models.TableModels import (
    BoundingBox, GridCell, CellMergeCandidate, CellReading, CellAlignment, RasterImage
)
from dalil_tables.Services.CellContentService import CellContentService, is_numeric_text
from dalil_tables.Services.CellReaders import coerce_reading


def grid_2x2_cells():
    return [
        GridCell(row, col, BoundingBox(10 + 90 * col, 10 + 50 * row, 90, 50))
        for row in range(2) for col in range(2)
    ]


class FailingReader:
    def __init__(self):
        self.calls = 0

    def read_cell_text(self, region):
        self.calls += 1
        raise RuntimeError("reader crashed")


class FlakyReader:
    """Fails once with a retryable reader error, then answers"""

    def __init__(self):
        self.calls = 0

    def read_cell_text(self, region):
        self.calls += 1
        if self.calls == 1:
            raise TesseractException()
        return CellReading("Oran", 0.6)


class SlowReader:
    async def read_cell_text(self, region):
        await asyncio.sleep(1)
        return CellReading("late", 1.0)


class FixedReader:
    def __init__(self, result):
        self.result = result

    def read_cell_text(self, region):
        return self.result


@pytest.fixture
def service():
    return CellContentService()


@pytest.mark.unit
class TestTextConfidence:

    @pytest.mark.parametrize("text, expected", [
        ("", 0.0),
        ("   ", 0.0),
        ("ab", 0.8),
        ("abcd", 1.0),
        ("!!!!", 0.7),
        ("@@", 0.5),
        ("Population totale", 1.0),
    ])
    def test_heuristic(self, service, text, expected):
        assert service.estimate_text_confidence(text) == pytest.approx(expected)

    def test_arabic_text_counts_as_alphanumeric(self, service):
        assert service.estimate_text_confidence("وهران") == pytest.approx(1.0)

    def test_empty_text_reconciles_to_zero(self, service):
        assert service.reconcile_confidence("", 0.95, 0.0) == 0.0

    def test_missing_reader_confidence_keeps_heuristic(self, service):
        assert service.reconcile_confidence("Alger", None, 0.9) == pytest.approx(0.9)

    def test_weighted_mean(self, service):
        assert service.reconcile_confidence("Alger", 0.6, 1.0) == pytest.approx(0.8)
        assert service.reconcile_confidence("Alger", 0.6, 1.0, weight=1.0) == pytest.approx(0.6)

    def test_reader_confidence_is_clamped(self, service):
        assert service.reconcile_confidence("Alger", 7.0, 0.5) == pytest.approx(0.75)

    @pytest.mark.parametrize("text, numeric", [
        ("42", True), ("3,5", True), ("1454078", True), ("12.50", True),
        ("12a", False), ("", False), ("1.2.3", False),
    ])
    def test_numeric_text(self, text, numeric):
        assert is_numeric_text(text) is numeric


@pytest.mark.unit
class TestReaderResultCoercion:

    def test_shapes(self):
        assert coerce_reading("x") == CellReading("x", None)
        assert coerce_reading(None) == CellReading("", 0.0)
        assert coerce_reading({"text": "a", "confidence": 0.4}) == CellReading("a", 0.4)
        assert coerce_reading(("b", 0.3)) == CellReading("b", 0.3)

    def test_unsupported_shape(self):
        with pytest.raises(TypeError):
            coerce_reading(42)


@pytest.mark.unit
class TestResolveCells:

    def test_every_cell_is_read_in_grid_order(self, service, grid_2x2_page, marker_reader):
        cells = asyncio.run(service.resolve_cells(grid_2x2_page, grid_2x2_cells(), [], marker_reader))

        assert [(c.row, c.col) for c in cells] == [(0, 0), (0, 1), (1, 0), (1, 1)]
        assert [c.text for c in cells] == ["w20", "w26", "w32", "w38"]
        assert marker_reader.calls == 4
        assert all(c.reader_confidence == pytest.approx(0.9) for c in cells)
        assert [c.is_header for c in cells] == [True, True, False, False]

    def test_async_reader_is_awaited(self, service, grid_2x2_page, async_marker_reader):
        cells = asyncio.run(service.resolve_cells(grid_2x2_page, grid_2x2_cells(), [], async_marker_reader))

        assert [c.text for c in cells] == ["w20", "w26", "w32", "w38"]

    def test_absorbed_cells_are_skipped_and_spans_set(self, service, page_builder, marker_reader):
        page = page_builder(200, 120).block(20, 25, 20, 16).build()
        cells = grid_2x2_cells()
        merge = CellMergeCandidate(
            cell=cells[0], absorbed=tuple(cells[1:]), merged_bounds=BoundingBox(10, 10, 180, 100)
        )

        resolved = asyncio.run(service.resolve_cells(page, cells, [merge], marker_reader))

        assert len(resolved) == 1
        assert resolved[0].bbox == BoundingBox(10, 10, 180, 100)
        assert (resolved[0].col_span, resolved[0].row_span) == (2, 2)
        assert resolved[0].text == "w20"

    def test_failing_reader_degrades_to_empty_cells(self, service, grid_2x2_page):
        reader = FailingReader()

        cells = asyncio.run(service.resolve_cells(grid_2x2_page, grid_2x2_cells(), [], reader))

        assert len(cells) == 4
        assert all(c.is_empty and c.text == "" and c.confidence == 0.0 for c in cells)

    def test_reader_errors_are_retried_once(self, service, grid_2x2_page):
        reader = FlakyReader()

        cells = asyncio.run(service.resolve_cells(grid_2x2_page, grid_2x2_cells()[:1], [], reader))

        assert reader.calls == 2
        assert cells[0].text == "Oran"

    def test_slow_reader_times_out_to_empty_cell(self, service, grid_2x2_page):
        config = ExtractionConfig(cell_read_timeout=0.05)

        cells = asyncio.run(
            service.resolve_cells(grid_2x2_page, grid_2x2_cells()[:2], [], SlowReader(), config)
        )

        assert [c.text for c in cells] == ["", ""]
        assert all(c.confidence == 0.0 for c in cells)

    def test_numeric_cells_are_right_aligned(self, service, grid_2x2_page):
        cells = asyncio.run(
            service.resolve_cells(grid_2x2_page, grid_2x2_cells()[:1], [], FixedReader(("2988145", 0.9)))
        )

        assert cells[0].alignment == CellAlignment.RIGHT
        assert cells[0].confidence == pytest.approx(0.5 * 0.9 + 0.5 * 1.0)

    def test_reader_text_is_trimmed(self, service, grid_2x2_page):
        cells = asyncio.run(
            service.resolve_cells(grid_2x2_page, grid_2x2_cells()[:1], [], FixedReader("  Alger \n"))
        )

        assert cells[0].text == "Alger"
        assert cells[0].reader_confidence is None
        assert cells[0].confidence == pytest.approx(cells[0].text_confidence)

    def test_cell_outside_the_image_is_not_sent_to_reader(self, service, grid_2x2_page, marker_reader):
        outside = [GridCell(0, 0, BoundingBox(500, 500, 40, 40))]

        cells = asyncio.run(service.resolve_cells(grid_2x2_page, outside, [], marker_reader))

        assert marker_reader.calls == 0
        assert cells[0].is_empty

    def test_empty_raster_region_reads_as_empty(self, service, marker_reader):
        reading = asyncio.run(service.read_cell(marker_reader, RasterImage(0, 0, None)))

        assert reading == CellReading("", 0.0)
