"""Searchable view over the finalized corpus with grouped presentation."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from backend.tour_search.config import RelatedCriteriaConfig, SearchConfig
from backend.tour_search.contracts import CorpusEntry

from .engine import FuzzyMatchingEngine

LOGGER = logging.getLogger(__name__)

WILDCARD = "*"
_SUBSTRING_TRIGGER = re.compile(r"[\d_\-]")


@dataclass(frozen=True)
class ResultGroup:
    """Entries of one presentation group, in display order."""

    type: str
    title: str
    entries: Tuple[CorpusEntry, ...]


def _scene_key(entry: CorpusEntry) -> Optional[str]:
    if entry.parent_key is not None:
        return entry.parent_key
    return entry.entity.key if entry.entity is not None else None


def _metadata_values(entry: CorpusEntry) -> Tuple[str, str]:
    description = entry.record.description if entry.record is not None else ""
    return entry.subtitle, description


def _metadata_similarity(selected: CorpusEntry, candidate: CorpusEntry) -> float:
    compared = 0
    matched = 0
    for left, right in zip(_metadata_values(selected), _metadata_values(candidate)):
        if not (left and right):
            continue
        compared += 1
        left, right = left.lower(), right.lower()
        if left in right or right in left:
            matched += 1
    return matched / compared if compared else 0.0


def related_score(selected: CorpusEntry, candidate: CorpusEntry, criteria: RelatedCriteriaConfig) -> float:
    """Return a 0..1 similarity between two entries.

    Each active criterion contributes its weight times a partial score: equal
    presentation group, tag overlap relative to the larger tag set, the same
    scene (siblings, or a scene and its children), and case-insensitive
    containment of subtitle or description. The sum is normalized by the total
    active weight.
    """

    total_score = 0.0
    total_weight = 0.0
    if criteria.group_type.active:
        total_weight += criteria.group_type.weight
        if selected.group == candidate.group:
            total_score += criteria.group_type.weight
    if criteria.tags.active:
        total_weight += criteria.tags.weight
        selected_tags = {tag.lower() for tag in selected.tags}
        candidate_tags = {tag.lower() for tag in candidate.tags}
        shared = selected_tags & candidate_tags
        if shared:
            total_score += criteria.tags.weight * len(shared) / max(len(selected_tags), len(candidate_tags))
    if criteria.parent.active:
        total_weight += criteria.parent.weight
        scene = _scene_key(selected)
        if scene is not None and scene == _scene_key(candidate):
            total_score += criteria.parent.weight
    if criteria.metadata.active:
        total_weight += criteria.metadata.weight
        total_score += criteria.metadata.weight * _metadata_similarity(selected, candidate)
    return total_score / total_weight if total_weight else 0.0


class SearchIndex:
    """Immutable index produced by one build."""

    def __init__(
        self,
        entries: Sequence[CorpusEntry],
        engine: FuzzyMatchingEngine,
        settings: SearchConfig,
        *,
        searchable_records: Sequence[Mapping[str, str]] = (),
        build_id: Optional[str] = None,
    ) -> None:
        self._entries: Tuple[CorpusEntry, ...] = tuple(entries)
        self._engine = engine
        self._settings = settings
        self._records: Tuple[Mapping[str, str], ...] = tuple(searchable_records)
        self.build_id = build_id
        self._priority: Dict[str, int] = {name: rank for rank, name in enumerate(settings.type_order)}

    @classmethod
    def empty(cls, settings: SearchConfig, *, build_id: Optional[str] = None) -> "SearchIndex":
        """Return an index with no entries; every search returns nothing."""

        engine = FuzzyMatchingEngine([], settings.field_weights.as_mapping(), threshold=settings.threshold)
        return cls([], engine, settings, build_id=build_id)

    @property
    def entries(self) -> Tuple[CorpusEntry, ...]:
        return self._entries

    @property
    def searchable_records(self) -> Tuple[Mapping[str, str], ...]:
        return self._records

    def __len__(self) -> int:
        return len(self._entries)

    def search(self, term: str) -> List[CorpusEntry]:
        """Return entries matching ``term`` ranked by relevance.

        ``"*"`` returns every entry in presentation order, terms shorter than
        ``min_search_chars`` return nothing, and terms containing digits,
        hyphens or underscores must appear verbatim in some field.
        """

        query = (term or "").strip()
        if query == WILDCARD:
            return self.get_all()
        if len(query) < self._settings.min_search_chars:
            return []
        require_substring = bool(_SUBSTRING_TRIGGER.search(query))
        matches = self._engine.search(
            query,
            require_substring=require_substring,
            limit=self._settings.max_results,
        )
        return [self._entries[match.index] for match in matches]

    def get_all(self) -> List[CorpusEntry]:
        """Return the whole corpus in presentation order."""

        return sorted(self._entries, key=self._presentation_key)

    def group(self, entries: Sequence[CorpusEntry]) -> List[ResultGroup]:
        """Group entries for display.

        Args:
            entries: Entries to present, typically search results.

        Returns:
            List[ResultGroup]: Non-empty groups in configured priority order,
            unknown groups last; entries sorted by sort key then label.
        """
        buckets: Dict[str, List[CorpusEntry]] = {}
        for entry in entries:
            if not self._group_visible(entry.group):
                continue
            buckets.setdefault(entry.group, []).append(entry)
        ordered = sorted(buckets, key=lambda name: (self._priority.get(name, len(self._priority)), name))
        groups: List[ResultGroup] = []
        for name in ordered:
            members = sorted(buckets[name], key=lambda entry: (entry.sort_key, entry.label.lower()))
            groups.append(
                ResultGroup(
                    type=name,
                    title=self._settings.display_labels.get(name, name),
                    entries=tuple(members),
                )
            )
        return groups

    def find(self, label: str, parent_label: Optional[str] = None) -> Optional[CorpusEntry]:
        """Return the first entry in presentation order with ``label``.

        Labels compare case-insensitively; ``parent_label`` narrows the lookup
        to children of that scene (an empty string selects top-level entries).
        """

        wanted = (label or "").strip().lower()
        for entry in self.get_all():
            if entry.label.lower() != wanted:
                continue
            if parent_label is not None and entry.parent_label.lower() != parent_label.strip().lower():
                continue
            return entry
        return None

    def related(self, entry: CorpusEntry, limit: Optional[int] = None) -> List[CorpusEntry]:
        """Return entries similar to ``entry``, most similar first.

        Args:
            entry: Selected entry; it is never part of the result.
            limit: Maximum number of entries; defaults to
                ``related_content.max_items``.

        Returns:
            List[CorpusEntry]: Entries with a positive score, ties kept in
            presentation order.
        """
        settings = self._settings.related_content
        scored: List[Tuple[float, int, CorpusEntry]] = []
        for position, candidate in enumerate(self.get_all()):
            if candidate is entry or candidate == entry:
                continue
            score = related_score(entry, candidate, settings.criteria)
            if score > 0:
                scored.append((score, position, candidate))
        scored.sort(key=lambda item: (-item[0], item[1]))
        return [candidate for _, _, candidate in scored[: limit or settings.max_items]]

    def summary(self) -> Dict[str, Any]:
        """Return counts describing the index for logs and diagnostics."""

        by_group: Dict[str, int] = {}
        for entry in self._entries:
            by_group[entry.group] = by_group.get(entry.group, 0) + 1
        return {"build_id": self.build_id, "entries": len(self._entries), "groups": by_group}

    def _group_visible(self, name: str) -> bool:
        result_types = self._settings.result_types
        if result_types.mode == "whitelist" and result_types.allowed_types:
            return name in result_types.allowed_types
        if result_types.mode == "blacklist" and result_types.blacklisted_types:
            return name not in result_types.blacklisted_types
        return True

    def _presentation_key(self, entry: CorpusEntry) -> Tuple[int, str, int, str]:
        rank = self._priority.get(entry.group, len(self._priority))
        return (rank, entry.group, entry.sort_key, entry.label.lower())


__all__ = ["ResultGroup", "SearchIndex", "WILDCARD", "related_score"]
