"""Merge walked entities and external records into the search corpus."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Set, Tuple

from backend.tour_search.config import BoostConfig
from backend.tour_search.context import IndexBuildContext
from backend.tour_search.contracts import (
    ORIGIN_DIRECTORY,
    ORIGIN_TOUR,
    CorpusEntry,
    EntityType,
    ExternalRecord,
    RawEntity,
)
from backend.tour_search.feeds.selection import FeedSelection

from .filters import InclusionFilter
from .labels import LabelResolver, ResolvedLabel
from .matcher import MatchPlan

CHILD_SORT_STRIDE = 1000
STANDALONE_SORT_BASE = 10000


@dataclass(slots=True)
class EntryDraft:
    """Mutable entry assembled during reconciliation, frozen once labeled."""

    type: EntityType
    sort_key: int
    primary: str
    entity: Optional[RawEntity] = None
    record: Optional[ExternalRecord] = None
    parent_key: Optional[str] = None
    parent_label: str = ""
    parent_sort_key: Optional[int] = None
    origin: Set[str] = field(default_factory=set)

    @property
    def primary_record(self) -> Optional[ExternalRecord]:
        """Return the attached record when its feed is the primary source."""

        if self.record is not None and self.record.source == self.primary:
            return self.record
        return None

    @property
    def is_child(self) -> bool:
        return self.parent_key is not None

    def group(self) -> str:
        """Return the presentation group for the entry."""

        record = self.record
        if record is not None and record.source == ORIGIN_DIRECTORY:
            if self.primary != ORIGIN_DIRECTORY:
                return EntityType.BUSINESS.value
            if record.declared_element_type:
                declared = EntityType.parse(record.declared_element_type)
                return declared.value if declared is not None else record.declared_element_type
        return self.type.value

    def to_entry(self, resolved: ResolvedLabel, boost: float) -> CorpusEntry:
        """Freeze the draft into a :class:`CorpusEntry`."""

        return CorpusEntry(
            type=self.type,
            label=resolved.label,
            subtitle=resolved.subtitle,
            tags=self.entity.tags if self.entity is not None else self.record.match_tags,
            image_url=resolved.image_url,
            search_boost=boost,
            sort_key=self.sort_key,
            origin=frozenset(self.origin),
            group=self.group(),
            parent_key=self.parent_key,
            parent_label=self.parent_label,
            parent_sort_key=self.parent_sort_key,
            entity=self.entity,
            record=self.record,
        )


def provenance_boost(draft: EntryDraft, boosts: BoostConfig) -> float:
    """Return the relevance boost implied by an entry's provenance.

    Primary-enhanced entries (standalone or not, children included) rank
    highest; other children rank lowest.
    """

    if draft.primary_record is not None:
        return boosts.primary_enhanced
    if draft.is_child:
        return boosts.child
    if draft.record is not None and draft.entity is not None:
        return boosts.secondary_enhanced
    if draft.entity is None or draft.entity.label:
        return boosts.labeled
    return boosts.unlabeled


class Reconciler:
    """Apply filters, merge matches, add standalone entries and deduplicate."""

    def __init__(
        self,
        context: IndexBuildContext,
        label_resolver: Optional[LabelResolver] = None,
        inclusion_filter: Optional[InclusionFilter] = None,
        selection: Optional[FeedSelection] = None,
    ) -> None:
        self._context = context
        self._config = context.config
        self._labels = label_resolver or LabelResolver(context)
        self._filter = inclusion_filter or InclusionFilter(context)
        # records only reach the plan from feeds that were active
        self._selection = selection or FeedSelection(
            directory_enabled=True, spreadsheet_enabled=True, primary=ORIGIN_TOUR
        )
        self._log = context.logger

    def filter_entities(self, entities: Sequence[RawEntity]) -> List[RawEntity]:
        """Drop entities failing the inclusion filters, cascading to children.

        Args:
            entities: Walked entities in discovery order.

        Returns:
            List[RawEntity]: Surviving entities in discovery order.
        """
        kept: List[RawEntity] = []
        dropped_scenes: Set[str] = set()
        for entity in entities:
            if entity.parent_key is not None and entity.parent_key in dropped_scenes:
                continue
            if not self._filter.include_entity(entity):
                if not entity.is_child:
                    dropped_scenes.add(entity.key)
                continue
            kept.append(entity)
        self._log.info("Inclusion filters kept %d of %d entities", len(kept), len(entities))
        return kept

    def reconcile(
        self,
        entities: Sequence[RawEntity],
        plan: Optional[MatchPlan] = None,
        primary: str = ORIGIN_TOUR,
        *,
        filtered: bool = False,
    ) -> List[CorpusEntry]:
        """Build the deduplicated, labeled corpus.

        Args:
            entities: Walked entities in discovery order.
            plan: Match plan for the active feed, if any.
            primary: Source whose name and description win.
            filtered: Whether ``entities`` already went through
                :meth:`filter_entities`.

        Returns:
            List[CorpusEntry]: Corpus in discovery order.
        """
        plan = plan or MatchPlan()
        boosts = self._config.search.boosts
        kept = list(entities) if filtered else self.filter_entities(entities)
        entries: List[CorpusEntry] = []
        scenes: Dict[str, Tuple[str, int]] = {}
        for entity in kept:
            draft = self._draft_for_entity(entity, plan.record_for(entity.key), primary, scenes)
            if draft is None:
                continue
            resolved = self._labels.resolve(draft)
            entry = draft.to_entry(resolved, provenance_boost(draft, boosts))
            if not entity.is_child:
                scenes[entity.key] = (entry.label, entry.sort_key)
            entries.append(entry)

        for record in plan.standalone:
            entry = self._standalone_entry(record, primary, boosts)
            if entry is not None:
                entries.append(entry)

        return self._deduplicate(entries)

    def _draft_for_entity(
        self,
        entity: RawEntity,
        record: Optional[ExternalRecord],
        primary: str,
        scenes: Dict[str, Tuple[str, int]],
    ) -> Optional[EntryDraft]:
        origin = {ORIGIN_TOUR}
        if record is not None:
            origin.add(record.source)
        if entity.parent_key is None:
            return EntryDraft(
                type=entity.kind,
                sort_key=entity.ordinal_position,
                primary=primary,
                entity=entity,
                record=record,
                origin=origin,
            )
        parent = scenes.get(entity.parent_key)
        if parent is None:
            self._log.debug("Child %s has no indexed parent; skipped", entity.key)
            return None
        parent_label, parent_sort_key = parent
        return EntryDraft(
            type=entity.kind,
            sort_key=parent_sort_key * CHILD_SORT_STRIDE + entity.ordinal_position,
            primary=primary,
            entity=entity,
            record=record,
            parent_key=entity.parent_key,
            parent_label=parent_label,
            parent_sort_key=parent_sort_key,
            origin=origin,
        )

    def _standalone_entry(
        self, record: ExternalRecord, primary: str, boosts: BoostConfig
    ) -> Optional[CorpusEntry]:
        if not self._selection.standalone_allowed(record.source, self._context):
            self._log.debug("Standalone %s entries disabled; %s skipped", record.source, record.display_key)
            return None
        entity_type = EntityType.parse(record.declared_element_type) or EntityType.ELEMENT
        if not self._filter.include_record(record, entity_type, record.name or record.id):
            return None
        draft = EntryDraft(
            type=entity_type,
            sort_key=STANDALONE_SORT_BASE + record.position,
            primary=primary,
            record=record,
            origin={record.source},
        )
        return draft.to_entry(self._labels.resolve(draft), provenance_boost(draft, boosts))

    def _deduplicate(self, entries: List[CorpusEntry]) -> List[CorpusEntry]:
        """Keep the first entry per (label, parent) and per (identity, parent)."""

        seen_labels: Dict[Tuple[str, Optional[str]], CorpusEntry] = {}
        seen_ids: Dict[Tuple[str, Optional[str]], CorpusEntry] = {}
        unique: List[CorpusEntry] = []
        for entry in entries:
            label_key = (entry.label.lower(), entry.parent_key)
            identity = entry.identity
            id_key = (identity, entry.parent_key) if identity else None
            kept = seen_labels.get(label_key) or (seen_ids.get(id_key) if id_key else None)
            if kept is not None:
                self._context.diagnostics.record(
                    "duplicate",
                    f"Duplicate entry '{entry.label}' dropped",
                    label=entry.label,
                    type=entry.type.value,
                    parent=entry.parent_key,
                    kept_type=kept.type.value,
                    by="label" if label_key in seen_labels else "id",
                )
                continue
            seen_labels[label_key] = entry
            if id_key is not None:
                seen_ids[id_key] = entry
            unique.append(entry)
        self._log.info("Corpus assembled with %d entries (%d before dedup)", len(unique), len(entries))
        return unique


__all__ = ["EntryDraft", "Reconciler", "provenance_boost"]
