import math
from dataclasses import replace
from typing import Dict, List, Optional, Tuple

from dalil_tables.Common.Config import MergeConfig, DEFAULT_MERGE_CONFIG
from dalil_tables.Common.Constants import (
    EDGE_ALIGNMENT_TOLERANCE_PX, MERGE_TYPE_OVERLAP_RATIO, MIN_MERGE_SCORE, HEADER_MATCH_SIMILARITY,
    MERGE_WEIGHT_DISTANCE, MERGE_WEIGHT_STRUCTURE, MERGE_WEIGHT_ALIGNMENT
)
from dalil_tables.Logger.table_logger import get_standard_logger
from dalil_tables.Models.TableModels import (
    BoundingBox, ReconstructedTable, TableCell, TableMergeCandidate, MergeType
)
from dalil_tables.Services.CellContentService import is_numeric_text
from dalil_tables.Exceptions.custom_exceptions import (
    BaseTableException, TableMergeException,
    handle_table_merge, log_method_entry_exit, monitor_performance, ExceptionSeverity
)

MERGE_METHODS = {
    MergeType.VERTICAL: "intelligent_vertical_merge",
    MergeType.HORIZONTAL: "intelligent_horizontal_merge",
    MergeType.CONTINUATION: "intelligent_continuation_merge",
}


def _reading_order(table: ReconstructedTable):
    page = table.metadata.page_number or 0
    return (page, table.bounding_box.y, table.bounding_box.x)


class TableMergeService:
    """Finds tables split across regions or pages and stitches them back together."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(TableMergeService, cls).__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if not self._initialized:
            self.logger = get_standard_logger("TableMergeService")
            self._initialized = True

    @log_method_entry_exit
    @monitor_performance
    @handle_table_merge(severity=ExceptionSeverity.MEDIUM)
    def merge_tables(
        self, tables: List[ReconstructedTable], config: MergeConfig = DEFAULT_MERGE_CONFIG
    ) -> List[ReconstructedTable]:
        """
        Merge compatible table pairs greedily by descending score.

        Each table takes part in at most one merge. The merged table sits where
        its primary was; every other table keeps its relative order.
        """
        self.logger.info(f"Starting intelligent merge of {len(tables)} tables")
        if len(tables) <= 1:
            return list(tables)

        ranked = self._rank_candidates(tables, config)
        self.logger.info(f"Identified {len(ranked)} merge candidates")

        consumed = set()
        merged_at: Dict[int, ReconstructedTable] = {}
        for first, second, candidate in ranked:
            if first in consumed or second in consumed:
                continue
            try:
                merged = self.merge_pair(candidate)
            except BaseTableException as e:
                self.logger.warning(
                    f"Merge of {candidate.primary.id} and {candidate.secondary.id} failed, "
                    f"keeping both: {e.message}"
                )
                continue
            consumed.update((first, second))
            primary_index = first if candidate.primary is tables[first] else second
            merged_at[primary_index] = merged
            self.logger.info(
                f"Merged {candidate.primary.id} and {candidate.secondary.id} "
                f"({candidate.merge_type.value}, score {candidate.merge_score:.2f})"
            )

        result = []
        for index, table in enumerate(tables):
            if index in merged_at:
                result.append(merged_at[index])
            elif index not in consumed:
                result.append(table)

        self.logger.info(f"Merge finished: {len(tables)} -> {len(result)} tables")
        return result

    def find_merge_candidates(
        self, tables: List[ReconstructedTable], config: MergeConfig = DEFAULT_MERGE_CONFIG
    ) -> List[TableMergeCandidate]:
        return [candidate for _, _, candidate in self._rank_candidates(tables, config)]

    def _rank_candidates(self, tables, config) -> List[Tuple[int, int, TableMergeCandidate]]:
        ranked = []
        for i in range(len(tables)):
            for j in range(i + 1, len(tables)):
                try:
                    candidate = self.analyze_merge_compatibility(tables[i], tables[j], config)
                except Exception as e:
                    self.logger.warning(
                        f"Scoring {tables[i].id} against {tables[j].id} failed, leaving the pair unmerged: {e}"
                    )
                    continue
                if candidate is not None and candidate.merge_score > MIN_MERGE_SCORE:
                    ranked.append((i, j, candidate))
        ranked.sort(key=lambda item: item[2].merge_score, reverse=True)
        return ranked

    def analyze_merge_compatibility(
        self,
        first: ReconstructedTable,
        second: ReconstructedTable,
        config: MergeConfig = DEFAULT_MERGE_CONFIG,
    ) -> Optional[TableMergeCandidate]:
        """Score one pair; None when a gate rejects it"""
        primary, secondary = sorted((first, second), key=_reading_order)

        page_a, page_b = primary.metadata.page_number, secondary.metadata.page_number
        if not config.enable_cross_page_merging and page_a is not None and page_b is not None and page_a != page_b:
            return None

        distance = self.calculate_spatial_distance(primary.bounding_box, secondary.bounding_box)
        if distance > config.max_merge_distance:
            return None

        structure_score, structure_confidence = self.analyze_structural_compatibility(primary, secondary, config)
        if structure_score < config.structure_similarity_threshold:
            return None

        alignment = self.analyze_alignment(primary.bounding_box, secondary.bounding_box)
        merge_type = self.determine_merge_type(primary.bounding_box, secondary.bounding_box, alignment)

        content_similarity = 1.0
        if merge_type == MergeType.CONTINUATION:
            content_similarity = self.calculate_content_similarity(primary, secondary)
            if config.gate_continuations_on_content and content_similarity < config.content_similarity_threshold:
                return None

        distance_score = max(0.0, 1.0 - distance / config.max_merge_distance)
        merge_score = (
            distance_score * MERGE_WEIGHT_DISTANCE
            + structure_score * MERGE_WEIGHT_STRUCTURE
            + alignment["quality"] * MERGE_WEIGHT_ALIGNMENT
        )
        return TableMergeCandidate(
            primary=primary,
            secondary=secondary,
            merge_score=merge_score,
            merge_type=merge_type,
            confidence=structure_confidence,
            alignment_quality=alignment["quality"],
            distance=distance,
            content_similarity=content_similarity,
        )

    @staticmethod
    def calculate_spatial_distance(box1: BoundingBox, box2: BoundingBox) -> float:
        (x1, y1), (x2, y2) = box1.center, box2.center
        return math.hypot(x2 - x1, y2 - y1)

    def analyze_structural_compatibility(
        self, table1: ReconstructedTable, table2: ReconstructedTable, config: MergeConfig
    ) -> Tuple[float, float]:
        """Return (score, confidence) from column counts, headers and metadata"""
        score = 0.0
        confidence = 0.0

        columns1, columns2 = table1.column_count, table2.column_count
        if columns1 == columns2:
            score += 0.4
            confidence += 0.3
        elif abs(columns1 - columns2) <= 1:
            score += 0.2
            confidence += 0.1

        if config.intelligent_header_matching:
            header_score, header_confidence = self.compare_headers(table1.headers, table2.headers)
            score += header_score * 0.4
            confidence += header_confidence * 0.3

        metadata_similarity = self.compare_metadata(table1, table2)
        score += metadata_similarity * 0.2
        confidence += metadata_similarity * 0.2

        return min(score, 1.0), min(confidence, 1.0)

    def compare_headers(self, headers1, headers2) -> Tuple[float, float]:
        if not headers1 or not headers2:
            return 0.5, 0.3

        longest = max(len(headers1), len(headers2))
        total = 0.0
        matches = 0
        for index in range(longest):
            header1 = headers1[index] if index < len(headers1) else ""
            header2 = headers2[index] if index < len(headers2) else ""
            if header1 and header2:
                similarity = self.calculate_text_similarity(header1, header2)
                total += similarity
                if similarity > HEADER_MATCH_SIMILARITY:
                    matches += 1

        average = total / longest
        match_ratio = matches / longest
        return (average + match_ratio) / 2, match_ratio

    @staticmethod
    def calculate_text_similarity(text1: str, text2: str) -> float:
        """Per-position case-insensitive character match ratio"""
        if not text1 or not text2:
            return 0.0
        a, b = text1.lower().strip(), text2.lower().strip()
        if a == b:
            return 1.0
        longest = max(len(a), len(b))
        if longest == 0:
            return 1.0
        return sum(1 for x, y in zip(a, b) if x == y) / longest

    @staticmethod
    def compare_metadata(table1: ReconstructedTable, table2: ReconstructedTable) -> float:
        meta1, meta2 = table1.metadata, table2.metadata
        score = 0.3 if meta1.border_style == meta2.border_style else 0.1
        score += 0.2 if meta1.has_headers == meta2.has_headers else 0.0
        score += 0.2 if meta1.extraction_method == meta2.extraction_method else 0.1
        return score / 0.7

    def analyze_alignment(self, box1: BoundingBox, box2: BoundingBox) -> Dict[str, float]:
        horizontal_overlap = self._overlap(box1.x, box1.right, box2.x, box2.right, max(box1.width, box2.width))
        vertical_overlap = self._overlap(box1.y, box1.bottom, box2.y, box2.bottom, max(box1.height, box2.height))

        tol = EDGE_ALIGNMENT_TOLERANCE_PX
        left_aligned = abs(box1.x - box2.x) < tol
        right_aligned = abs(box1.right - box2.right) < tol
        top_aligned = abs(box1.y - box2.y) < tol
        bottom_aligned = abs(box1.bottom - box2.bottom) < tol

        quality = 0.0
        for overlap in (horizontal_overlap, vertical_overlap):
            if overlap > 0.8:
                quality += 0.4
            elif overlap > 0.5:
                quality += 0.2
        if left_aligned or right_aligned:
            quality += 0.1
        if top_aligned or bottom_aligned:
            quality += 0.1

        return {
            "horizontal_overlap": horizontal_overlap,
            "vertical_overlap": vertical_overlap,
            "quality": min(quality, 1.0),
        }

    @staticmethod
    def _overlap(start1, end1, start2, end2, extent) -> float:
        low, high = max(start1, start2), min(end1, end2)
        if low >= high or extent <= 0:
            return 0.0
        return (high - low) / extent

    @staticmethod
    def determine_merge_type(box1: BoundingBox, box2: BoundingBox, alignment: Dict[str, float]) -> MergeType:
        if alignment["horizontal_overlap"] > MERGE_TYPE_OVERLAP_RATIO and box2.y > box1.bottom:
            return MergeType.VERTICAL
        if alignment["vertical_overlap"] > MERGE_TYPE_OVERLAP_RATIO and box2.x > box1.right:
            return MergeType.HORIZONTAL
        return MergeType.CONTINUATION

    def calculate_content_similarity(self, table1: ReconstructedTable, table2: ReconstructedTable) -> float:
        """1 minus the mean difference of the per-column share of numeric cells"""
        profile1, profile2 = self._numeric_profile(table1), self._numeric_profile(table2)
        columns = max(len(profile1), len(profile2))
        if columns == 0:
            return 1.0
        difference = sum(
            abs((profile1[c] if c < len(profile1) else 0.0) - (profile2[c] if c < len(profile2) else 0.0))
            for c in range(columns)
        )
        return 1.0 - difference / columns

    @staticmethod
    def _numeric_profile(table: ReconstructedTable) -> List[float]:
        filled: Dict[int, int] = {}
        numeric: Dict[int, int] = {}
        for row in table.rows:
            for cell in row:
                if cell.is_empty:
                    continue
                filled[cell.col] = filled.get(cell.col, 0) + 1
                if is_numeric_text(cell.text):
                    numeric[cell.col] = numeric.get(cell.col, 0) + 1
        if not filled:
            return []
        return [numeric.get(c, 0) / filled[c] if filled.get(c) else 0.0 for c in range(max(filled) + 1)]

    @handle_table_merge(severity=ExceptionSeverity.MEDIUM)
    def merge_pair(self, candidate: TableMergeCandidate) -> ReconstructedTable:
        if candidate.merge_type == MergeType.HORIZONTAL:
            return self.merge_horizontally(candidate.primary, candidate.secondary)
        if candidate.merge_type in (MergeType.VERTICAL, MergeType.CONTINUATION):
            return self.merge_vertically(candidate.primary, candidate.secondary, candidate.merge_type)
        raise TableMergeException(f"Unknown merge type: {candidate.merge_type}")

    def merge_vertically(
        self, table1: ReconstructedTable, table2: ReconstructedTable, merge_type: MergeType = MergeType.VERTICAL
    ) -> ReconstructedTable:
        """Append the body rows of ``table2`` under those of ``table1``"""
        offset = len(table1.rows)
        appended = tuple(
            tuple(replace(cell, row=offset + index + 1) for cell in row)
            for index, row in enumerate(table2.rows)
        )
        rows = table1.rows + appended
        return self._merged(table1, table2, merge_type, table1.headers, rows)

    def merge_horizontally(self, table1: ReconstructedTable, table2: ReconstructedTable) -> ReconstructedTable:
        """Place ``table2`` to the right: headers concatenated, rows zipped"""
        rows = []
        for index in range(max(len(table1.rows), len(table2.rows))):
            left = table1.rows[index] if index < len(table1.rows) else self._empty_row(table1, index)
            right = table2.rows[index] if index < len(table2.rows) else self._empty_row(table2, index)
            rows.append(tuple(
                replace(cell, row=index + 1, col=col) for col, cell in enumerate(left + right)
            ))
        return self._merged(table1, table2, MergeType.HORIZONTAL, table1.headers + table2.headers, tuple(rows))

    @staticmethod
    def _empty_row(table: ReconstructedTable, index: int) -> Tuple[TableCell, ...]:
        """Placeholder cells for a body row the shorter side of a horizontal merge lacks"""
        box = table.bounding_box
        width = box.width / max(table.column_count, 1)
        height = box.height / max(table.row_count + 1, 1)
        return tuple(
            TableCell(
                row=index + 1,
                col=col,
                bbox=BoundingBox(box.x + col * width, box.y + (index + 1) * height, width, height),
            )
            for col in range(table.column_count)
        )

    def _merged(self, table1, table2, merge_type, headers, rows) -> ReconstructedTable:
        return ReconstructedTable(
            id=f"merged_{merge_type.value}_{table1.id}_{table2.id}",
            headers=tuple(headers),
            rows=tuple(rows),
            confidence=(table1.confidence + table2.confidence) / 2,
            bounding_box=table1.bounding_box.union(table2.bounding_box),
            metadata=replace(
                table1.metadata,
                extraction_method=MERGE_METHODS[merge_type],
                structural_confidence=(table1.metadata.structural_confidence + table2.metadata.structural_confidence) / 2,
                row_count=len(rows),
                column_count=len(headers),
            ),
        )
