"""Search index construction and querying."""

from .builder import SEARCHABLE_FIELDS, IndexBuilder, searchable_record
from .engine import EngineMatch, FuzzyMatchingEngine
from .search_index import WILDCARD, ResultGroup, SearchIndex, related_score

__all__ = [
    "EngineMatch",
    "FuzzyMatchingEngine",
    "IndexBuilder",
    "ResultGroup",
    "SEARCHABLE_FIELDS",
    "SearchIndex",
    "WILDCARD",
    "related_score",
    "searchable_record",
]
