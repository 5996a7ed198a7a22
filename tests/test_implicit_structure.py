import pytest

from dalil_tables.Models.TableModels import RasterImage, TextRegion, LineKind, LineOrientation
from dalil_tables.Services.ImplicitStructureService import ImplicitStructureService


def tile(x, y, density=0.3):
    return TextRegion(x=x, y=y, width=20, height=20, density=density)


@pytest.fixture
def service():
    return ImplicitStructureService()


@pytest.mark.unit
class TestImplicitStructure:

    def test_row_of_tiles_gives_implicit_horizontal_line(self, service):
        lines = service.find_horizontal_alignment([tile(0, 40), tile(40, 40), tile(80, 40)])

        assert len(lines) == 1
        line = lines[0]
        assert line.kind == LineKind.IMPLICIT
        assert line.orientation == LineOrientation.HORIZONTAL
        assert (line.x1, line.x2, line.y1) == (0, 100, 40)
        assert line.length == 100
        assert line.confidence == pytest.approx(0.6)

    def test_single_tile_does_not_make_a_line(self, service):
        assert service.find_horizontal_alignment([tile(0, 0), tile(0, 60)]) == []

    def test_tolerance_is_strict(self, service):
        # 10 px apart is not "within 10 px"
        assert service.find_horizontal_alignment([tile(0, 0), tile(40, 10)]) == []

    def test_every_coordinate_in_a_cluster_is_reported(self, service):
        lines = service.find_horizontal_alignment([tile(0, 0), tile(40, 5)])

        assert [line.y1 for line in lines] == [0, 5]

    def test_confidence_saturates_at_five_regions(self, service):
        regions = [tile(0, y) for y in range(0, 140, 20)]

        lines = service.find_vertical_alignment(regions)

        assert len(lines) == 1
        assert lines[0].confidence == 1.0
        assert (lines[0].y1, lines[0].y2) == (0, 140)

    def test_blank_image_has_no_implicit_structure(self, service, page_builder):
        assert service.detect_implicit_lines(page_builder(100, 100).build()) == ([], [])
        assert service.detect_implicit_lines(RasterImage(0, 0, None)) == ([], [])

    def test_text_grid_infers_both_orientations(self, service, page_builder):
        builder = page_builder(100, 100)
        for x in (0, 40):
            for y in (0, 40):
                builder.block(x + 2, y + 2, 8, 10)

        horizontal, vertical = service.detect_implicit_lines(builder.build())

        assert sorted(line.y1 for line in horizontal) == [0, 40]
        assert sorted(line.x1 for line in vertical) == [0, 40]
