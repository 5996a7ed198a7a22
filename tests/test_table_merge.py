from unittest.mock import patch

import pytest

from dalil_tables.Common.Config import MergeConfig
from dalil_tables.Exceptions.custom_exceptions import TableMergeException
from dalil_tables.Models.TableModels import MergeType, BoundingBox, rows_as_text
from dalil_tables.Services.TableMergeService import TableMergeService

HEADERS = ["Wilaya", "Code", "Population"]


@pytest.fixture
def service():
    return TableMergeService()


@pytest.fixture
def upper(table_factory):
    return table_factory("table_0", (0, 0, 100, 20), HEADERS, [["Alger", "16", "2988145"]], confidence=0.8)


@pytest.fixture
def lower(table_factory):
    return table_factory("table_1", (0, 25, 100, 20), HEADERS, [["Oran", "31", "1454078"]], confidence=0.6)


@pytest.mark.unit
class TestMergeScoring:

    def test_nearby_stacked_tables_are_vertical_candidates(self, service, upper, lower):
        candidate = service.analyze_merge_compatibility(upper, lower)

        assert candidate is not None
        assert candidate.merge_type == MergeType.VERTICAL
        assert candidate.distance == pytest.approx(25.0)
        assert candidate.merge_score == pytest.approx(0.75)
        assert candidate.alignment_quality == pytest.approx(0.5)

    def test_pair_is_ordered_by_reading_order(self, service, upper, lower):
        candidate = service.analyze_merge_compatibility(lower, upper)

        assert candidate.primary is upper
        assert candidate.secondary is lower

    def test_distant_tables_are_rejected(self, service, table_factory, upper):
        far = table_factory("table_far", (0, 200, 100, 20), HEADERS, [["Oran", "31", "1454078"]])

        assert service.analyze_merge_compatibility(upper, far) is None

    def test_different_headers_are_rejected(self, service, table_factory, upper):
        other = table_factory("table_x", (0, 25, 100, 20), ["Prix", "Date", "Total"], [["1", "2", "3"]])

        assert service.analyze_merge_compatibility(upper, other) is None

    def test_cross_page_merging_can_be_disabled(self, service, table_factory):
        first = table_factory("table_p1_0", (0, 0, 100, 20), HEADERS, [["Alger", "16", "1"]], page_number=1)
        second = table_factory("table_p2_0", (0, 25, 100, 20), HEADERS, [["Oran", "31", "2"]], page_number=2)

        assert service.analyze_merge_compatibility(first, second) is not None
        assert service.analyze_merge_compatibility(
            first, second, MergeConfig(enable_cross_page_merging=False)
        ) is None

    def test_continuation_ignores_content_by_default(self, service, table_factory):
        numeric = table_factory("table_p1_0", (0, 0, 100, 20), HEADERS, [["1", "2", "3"]], page_number=1)
        textual = table_factory("table_p2_0", (0, 0, 100, 20), HEADERS, [["a", "b", "c"]], page_number=2)

        candidate = service.analyze_merge_compatibility(numeric, textual)

        assert candidate.merge_type == MergeType.CONTINUATION
        assert candidate.content_similarity < 0.7

    def test_continuation_content_gate_when_enabled(self, service, table_factory):
        gated = MergeConfig(gate_continuations_on_content=True)
        numeric = table_factory("table_p1_0", (0, 0, 100, 20), HEADERS, [["1", "2", "3"]], page_number=1)
        textual = table_factory("table_p2_0", (0, 0, 100, 20), HEADERS, [["a", "b", "c"]], page_number=2)
        similar = table_factory("table_p2_1", (0, 0, 100, 20), HEADERS, [["4", "5", "6"]], page_number=2)

        assert service.analyze_merge_compatibility(numeric, textual, gated) is None
        candidate = service.analyze_merge_compatibility(numeric, similar, gated)
        assert candidate.merge_type == MergeType.CONTINUATION
        assert candidate.content_similarity == pytest.approx(1.0)

    def test_side_by_side_tables_are_horizontal_candidates(self, service, table_factory):
        left = table_factory("left", (0, 0, 100, 40), HEADERS, [["Alger", "16", "1"]])
        right = table_factory("right", (105, 0, 100, 40), HEADERS, [["Oran", "31", "2"]])

        candidate = service.analyze_merge_compatibility(left, right, MergeConfig(max_merge_distance=200))

        assert candidate.merge_type == MergeType.HORIZONTAL

    def test_text_similarity(self, service):
        assert service.calculate_text_similarity("Wilaya", " wilaya ") == 1.0
        assert service.calculate_text_similarity("abc", "abd") == pytest.approx(2 / 3)
        assert service.calculate_text_similarity("", "abc") == 0.0

    def test_header_comparison(self, service):
        assert service.compare_headers([], ["a"]) == (0.5, 0.3)
        assert service.compare_headers(["Code", "Nom"], ["Code", "Nom"]) == (1.0, 1.0)
        score, confidence = service.compare_headers(["Code", "Nom"], ["Code"])
        assert (score, confidence) == (0.5, 0.5)

    def test_identical_metadata_scores_one(self, service, upper, lower):
        assert service.compare_metadata(upper, lower) == pytest.approx(1.0)

    def test_alignment_of_stacked_boxes(self, service):
        alignment = service.analyze_alignment(BoundingBox(0, 0, 100, 20), BoundingBox(0, 25, 100, 20))

        assert alignment["horizontal_overlap"] == pytest.approx(1.0)
        assert alignment["vertical_overlap"] == 0.0


@pytest.mark.unit
class TestMergeTables:

    def test_vertical_merge(self, service, upper, lower):
        merged = service.merge_tables([upper, lower])

        assert len(merged) == 1
        table = merged[0]
        assert table.id == "merged_vertical_table_0_table_1"
        assert table.headers == tuple(HEADERS)
        assert rows_as_text(table) == [["Alger", "16", "2988145"], ["Oran", "31", "1454078"]]
        assert [row[0].row for row in table.rows] == [1, 2]
        assert table.confidence == pytest.approx(0.7)
        assert table.bounding_box == BoundingBox(0, 0, 100, 45)
        assert table.metadata.extraction_method == "intelligent_vertical_merge"
        assert table.metadata.row_count == 2

    def test_merge_is_idempotent(self, service, upper, lower):
        once = service.merge_tables([upper, lower])
        twice = service.merge_tables(once)

        assert [t.id for t in twice] == [t.id for t in once]

    def test_single_table_is_returned_unchanged(self, service, upper):
        assert service.merge_tables([upper]) == [upper]
        assert service.merge_tables([]) == []

    def test_each_table_merges_at_most_once(self, service, table_factory, upper, lower):
        third = table_factory("table_2", (0, 50, 100, 20), HEADERS, [["Blida", "09", "1002937"]])

        merged = service.merge_tables([upper, lower, third])

        assert [t.id for t in merged] == ["merged_vertical_table_0_table_1", "table_2"]

    def test_merged_table_takes_primary_position(self, service, table_factory, upper, lower):
        unrelated = table_factory("table_9", (500, 500, 100, 20), ["A", "B"], [["x", "y"]])

        merged = service.merge_tables([unrelated, lower, upper])

        assert [t.id for t in merged] == ["table_9", "merged_vertical_table_0_table_1"]

    def test_horizontal_merge_pads_shorter_side(self, service, table_factory):
        left = table_factory("left", (0, 0, 100, 60), HEADERS, [["Alger", "16", "1"], ["Oran", "31", "2"]])
        right = table_factory("right", (105, 0, 100, 60), HEADERS, [["Blida", "09", "3"]])

        merged = service.merge_tables([left, right], MergeConfig(max_merge_distance=200))

        table = merged[0]
        assert table.id == "merged_horizontal_left_right"
        assert len(table.headers) == 6
        assert rows_as_text(table) == [
            ["Alger", "16", "1", "Blida", "09", "3"],
            ["Oran", "31", "2", "", "", ""],
        ]
        assert [c.col for c in table.rows[1]] == [0, 1, 2, 3, 4, 5]

    def test_failed_pair_merge_keeps_both_tables(self, service, upper, lower):
        with patch.object(service, "merge_pair", side_effect=TableMergeException("cannot stitch")):
            merged = service.merge_tables([upper, lower])

        assert [t.id for t in merged] == ["table_0", "table_1"]

    def test_candidates_are_sorted_by_score(self, service, table_factory, upper, lower):
        third = table_factory("table_2", (0, 50, 100, 20), HEADERS, [["Blida", "09", "1002937"]])

        candidates = service.find_merge_candidates([upper, lower, third])

        scores = [c.merge_score for c in candidates]
        assert scores == sorted(scores, reverse=True)
        assert all(score > 0.5 for score in scores)

    def test_scoring_error_only_drops_that_pair(self, service, table_factory, upper, lower):
        broken = table_factory("table_2", (0, 50, 100, 20), HEADERS, [["Blida", "09", "1002937"]])
        score_alignment = service.analyze_alignment

        def alignment_failing_for_broken(box1, box2):
            if broken.bounding_box in (box1, box2):
                raise ValueError("degenerate bounding box")
            return score_alignment(box1, box2)

        with patch.object(service, "analyze_alignment", side_effect=alignment_failing_for_broken):
            merged = service.merge_tables([upper, lower, broken])

        assert [t.id for t in merged] == ["merged_vertical_table_0_table_1", "table_2"]
        assert rows_as_text(merged[0]) == [["Alger", "16", "2988145"], ["Oran", "31", "1454078"]]
