"""Assemble the weighted searchable records and the search index."""
from __future__ import annotations

from typing import Dict, List, Sequence

from backend.tour_search.context import IndexBuildContext
from backend.tour_search.contracts import CorpusEntry

from .engine import FuzzyMatchingEngine
from .search_index import SearchIndex

SEARCHABLE_FIELDS = ("label", "business_name", "subtitle", "business_tag", "tags", "parent_label")


def searchable_record(entry: CorpusEntry) -> Dict[str, str]:
    """Flatten an entry into the fields the matching engine scores."""

    record = entry.record
    values = (
        entry.label,
        record.name if record is not None else "",
        entry.subtitle,
        record.match_tag if record is not None else "",
        " ".join(entry.tags),
        entry.parent_label,
    )
    return dict(zip(SEARCHABLE_FIELDS, values))


class IndexBuilder:
    """Hand the finalized corpus to the matching engine."""

    def __init__(self, context: IndexBuildContext) -> None:
        self._context = context
        self._settings = context.config.search
        self._log = context.logger

    def build(self, corpus: Sequence[CorpusEntry]) -> SearchIndex:
        """Return a :class:`SearchIndex` over ``corpus``.

        Args:
            corpus: Deduplicated, labeled entries.

        Returns:
            SearchIndex: Index with engine, weights and boost table.
        """
        records: List[Dict[str, str]] = [searchable_record(entry) for entry in corpus]
        boosts = self.boost_table(corpus)
        field_weights = self._settings.field_weights.as_mapping()
        engine = FuzzyMatchingEngine(
            records,
            field_weights,
            threshold=self._settings.threshold,
            boosts=boosts,
        )
        index = SearchIndex(
            corpus,
            engine,
            self._settings,
            searchable_records=records,
            build_id=self._context.build_id,
        )
        self._log.info("Search index built", extra={"summary": index.summary()})
        return index

    @staticmethod
    def boost_table(corpus: Sequence[CorpusEntry]) -> List[float]:
        """Return per-entry boosts aligned with the searchable records."""

        return [entry.search_boost for entry in corpus]


__all__ = ["IndexBuilder", "SEARCHABLE_FIELDS", "searchable_record"]
