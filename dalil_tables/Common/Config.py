from dataclasses import dataclass, field, fields, replace, asdict
from typing import Any, Dict, Optional

from dalil_tables.Exceptions.custom_exceptions import InvalidConfigurationException, handle_configuration


# Keys accepted from callers still using the camelCase option names of the web client
_CAMEL_CASE_ALIASES = {
    "maxTablesPerPage": "max_tables_per_page",
    "confidenceThreshold": "confidence_threshold",
    "detectImplicitLines": "detect_implicit_lines",
    "handleMergedCells": "handle_merged_cells",
    "minimumCellSize": "minimum_cell_size",
    "suppressNestedRegions": "suppress_nested_regions",
    "cellReadTimeout": "cell_read_timeout",
    "maxConcurrentReads": "max_concurrent_reads",
    "readerConfidenceWeight": "reader_confidence_weight",
    "maxMergeDistance": "max_merge_distance",
    "structureSimilarityThreshold": "structure_similarity_threshold",
    "contentSimilarityThreshold": "content_similarity_threshold",
    "enableCrossPageMerging": "enable_cross_page_merging",
    "intelligentHeaderMatching": "intelligent_header_matching",
    "gateContinuationsOnContent": "gate_continuations_on_content",
}


def _normalize_keys(values: Dict[str, Any]) -> Dict[str, Any]:
    return {_CAMEL_CASE_ALIASES.get(key, key): value for key, value in values.items()}


def _check_unit_interval(key: str, value: float):
    if not 0.0 <= value <= 1.0:
        raise InvalidConfigurationException(key, value)


def _check_positive(key: str, value):
    if value <= 0:
        raise InvalidConfigurationException(key, value)


@dataclass(frozen=True)
class MinimumCellSize:
    width: int = 20
    height: int = 15

    def __post_init__(self):
        if self.width < 0:
            raise InvalidConfigurationException("minimum_cell_size.width", self.width)
        if self.height < 0:
            raise InvalidConfigurationException("minimum_cell_size.height", self.height)


@dataclass(frozen=True)
class ExtractionConfig:
    """Options for one table extraction run.

    Instances are immutable; ``updated`` returns a new configuration for
    subsequent calls instead of changing the one a running pipeline holds.
    """

    max_tables_per_page: int = 10
    confidence_threshold: float = 0.7
    detect_implicit_lines: bool = True
    handle_merged_cells: bool = True
    minimum_cell_size: MinimumCellSize = field(default_factory=MinimumCellSize)
    suppress_nested_regions: bool = True
    cell_read_timeout: float = 10.0
    max_concurrent_reads: int = 8
    reader_confidence_weight: float = 0.5

    def __post_init__(self):
        if isinstance(self.minimum_cell_size, dict):
            object.__setattr__(self, "minimum_cell_size", MinimumCellSize(**self.minimum_cell_size))
        _check_positive("max_tables_per_page", self.max_tables_per_page)
        _check_unit_interval("confidence_threshold", self.confidence_threshold)
        _check_positive("cell_read_timeout", self.cell_read_timeout)
        _check_positive("max_concurrent_reads", self.max_concurrent_reads)
        _check_unit_interval("reader_confidence_weight", self.reader_confidence_weight)

    def updated(self, **changes) -> "ExtractionConfig":
        return replace(self, **_normalize_keys(changes))

    @classmethod
    @handle_configuration()
    def from_dict(cls, values: Optional[Dict[str, Any]]) -> "ExtractionConfig":
        values = _normalize_keys(values or {})
        known = {f.name for f in fields(cls)}
        unknown = set(values) - known
        if unknown:
            raise InvalidConfigurationException("extraction", sorted(unknown))
        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class MergeConfig:
    """Options for the cross-table merge engine."""

    max_merge_distance: float = 50.0
    structure_similarity_threshold: float = 0.8
    content_similarity_threshold: float = 0.7
    enable_cross_page_merging: bool = True
    intelligent_header_matching: bool = True
    # Off by default: continuation candidates pass on spatial and structural gates alone
    gate_continuations_on_content: bool = False

    def __post_init__(self):
        _check_positive("max_merge_distance", self.max_merge_distance)
        _check_unit_interval("structure_similarity_threshold", self.structure_similarity_threshold)
        _check_unit_interval("content_similarity_threshold", self.content_similarity_threshold)

    def updated(self, **changes) -> "MergeConfig":
        return replace(self, **_normalize_keys(changes))

    @classmethod
    @handle_configuration()
    def from_dict(cls, values: Optional[Dict[str, Any]]) -> "MergeConfig":
        values = _normalize_keys(values or {})
        known = {f.name for f in fields(cls)}
        unknown = set(values) - known
        if unknown:
            raise InvalidConfigurationException("merge", sorted(unknown))
        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


DEFAULT_EXTRACTION_CONFIG = ExtractionConfig()
DEFAULT_MERGE_CONFIG = MergeConfig()
