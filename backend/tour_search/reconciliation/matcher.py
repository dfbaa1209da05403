"""Ranked matching of external records onto walked scene entities."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from backend.tour_search.context import IndexBuildContext
from backend.tour_search.contracts import EntityType, ExternalRecord, MatchCandidate, RawEntity

WEIGHT_ID = 3
WEIGHT_TAG = 2
WEIGHT_NAME = 1


@dataclass(frozen=True)
class MatchPlan:
    """Outcome of matching one or more feeds against the entity table."""

    matches: Mapping[str, ExternalRecord] = field(default_factory=dict)
    candidates: Mapping[str, MatchCandidate] = field(default_factory=dict)
    standalone: Tuple[ExternalRecord, ...] = ()
    losers: Tuple[ExternalRecord, ...] = ()
    skipped: Tuple[ExternalRecord, ...] = ()

    def record_for(self, entity_key: str) -> Optional[ExternalRecord]:
        """Return the record merged into ``entity_key``, if any."""

        return self.matches.get(entity_key)

    @property
    def matched_records(self) -> List[ExternalRecord]:
        return list(self.matches.values())


@dataclass(slots=True)
class _Claim:
    record: ExternalRecord
    candidate: MatchCandidate
    arrival: int


def _declared_type(record: ExternalRecord) -> Optional[EntityType]:
    return EntityType.parse(record.declared_element_type)


class Matcher:
    """Find and resolve scene entities for external records."""

    def __init__(self, context: IndexBuildContext) -> None:
        self._context = context
        self._log = context.logger

    def match(self, record: ExternalRecord, entities: Sequence[RawEntity]) -> List[MatchCandidate]:
        """Return one candidate per entity for the strongest rule that holds.

        Args:
            record: Normalized external record.
            entities: Walked entities in discovery order.

        Returns:
            List[MatchCandidate]: Candidates in discovery order.
        """
        candidates: List[MatchCandidate] = []
        for order, entity in enumerate(entities):
            scored = self._score(record, entity)
            if scored is None:
                continue
            weight, rule = scored
            candidates.append(MatchCandidate(entity_key=entity.key, weight=weight, rule=rule, order=order))
        return candidates

    def resolve(
        self,
        record: ExternalRecord,
        candidates: Sequence[MatchCandidate],
        entities: Mapping[str, RawEntity],
    ) -> Optional[MatchCandidate]:
        """Pick the single entity a record is merged into.

        Ties on weight are broken by the record's declared type, then by the
        longer entity subtitle; a remaining tie keeps the first candidate and
        records an ``ambiguity`` diagnostic naming every contender.

        Args:
            record: Record being resolved.
            candidates: Candidates produced by :meth:`match`.
            entities: Entity table keyed by entity key.

        Returns:
            Optional[MatchCandidate]: Chosen candidate or ``None`` when empty.
        """
        if not candidates:
            return None
        best_weight = max(candidate.weight for candidate in candidates)
        contenders = sorted((c for c in candidates if c.weight == best_weight), key=lambda c: c.order)
        if len(contenders) == 1:
            return contenders[0]

        declared = _declared_type(record)
        if declared is not None:
            typed = [c for c in contenders if entities[c.entity_key].kind == declared]
            if len(typed) == 1:
                return self._resolved(record, contenders, typed[0], "declared_type")
            if typed:
                contenders = typed

        longest = max(len(entities[c.entity_key].subtitle) for c in contenders)
        richest = [c for c in contenders if len(entities[c.entity_key].subtitle) == longest]
        if len(richest) == 1:
            return self._resolved(record, contenders, richest[0], "subtitle_length")

        return self._resolved(record, richest, richest[0], "first_candidate")

    def assign(self, records: Sequence[ExternalRecord], entities: Sequence[RawEntity]) -> MatchPlan:
        """Match a whole feed, consuming each record at most once.

        Args:
            records: Normalized records in feed order.
            entities: Entities eligible for merging, in discovery order.

        Returns:
            MatchPlan: Winners keyed by entity, standalone candidates, losers
            and records skipped because they were already consumed.
        """
        table: Dict[str, RawEntity] = {entity.key: entity for entity in entities}
        claims: Dict[str, List[_Claim]] = {}
        unmatched: List[ExternalRecord] = []
        skipped: List[ExternalRecord] = []
        for arrival, record in enumerate(records):
            if self._context.is_consumed(record.id, record.match_tags):
                self._log.debug("Record %s skipped: already consumed", record.display_key)
                skipped.append(record)
                continue
            chosen = self.resolve(record, self.match(record, entities), table)
            if chosen is None:
                unmatched.append(record)
                continue
            claims.setdefault(chosen.entity_key, []).append(_Claim(record, chosen, arrival))

        matches: Dict[str, ExternalRecord] = {}
        chosen_candidates: Dict[str, MatchCandidate] = {}
        losers: List[ExternalRecord] = []
        for entity_key, entity_claims in claims.items():
            winner = self._settle(table[entity_key], entity_claims)
            matches[entity_key] = winner.record
            chosen_candidates[entity_key] = winner.candidate
            for claim in entity_claims:
                self._context.consume(claim.record.id, claim.record.match_tags)
                if claim is not winner:
                    losers.append(claim.record)

        standalone: List[ExternalRecord] = []
        for record in unmatched:
            if self._context.is_consumed(record.id, record.match_tags):
                skipped.append(record)
                continue
            standalone.append(record)

        self._log.info(
            "Matched %d record(s); %d standalone candidate(s), %d loser(s), %d skipped",
            len(matches),
            len(standalone),
            len(losers),
            len(skipped),
        )
        return MatchPlan(
            matches=matches,
            candidates=chosen_candidates,
            standalone=tuple(standalone),
            losers=tuple(losers),
            skipped=tuple(skipped),
        )

    def _settle(self, entity: RawEntity, claims: List[_Claim]) -> _Claim:
        """Choose one record among several claiming the same entity."""

        if len(claims) == 1:
            return claims[0]
        best_weight = max(claim.candidate.weight for claim in claims)
        contenders = [claim for claim in claims if claim.candidate.weight == best_weight]
        rule = "weight"
        if len(contenders) > 1:
            typed = [claim for claim in contenders if _declared_type(claim.record) == entity.kind]
            if typed:
                rule = "declared_type"
                contenders = typed
        if len(contenders) > 1:
            longest = max(len(claim.record.description) for claim in contenders)
            contenders = [claim for claim in contenders if len(claim.record.description) == longest]
            rule = "description_length"
        if len(contenders) > 1:
            rule = "first_record"
        winner = min(contenders, key=lambda claim: claim.arrival)
        self._context.diagnostics.record(
            "ambiguity",
            f"{len(claims)} records matched entity {entity.key}; kept {winner.record.display_key}",
            entity=entity.key,
            resolution=rule,
            kept=winner.record.display_key,
            candidates=[claim.record.display_key for claim in claims],
        )
        return winner

    def _resolved(
        self,
        record: ExternalRecord,
        contenders: Sequence[MatchCandidate],
        chosen: MatchCandidate,
        rule: str,
    ) -> MatchCandidate:
        self._context.diagnostics.record(
            "ambiguity",
            f"Record {record.display_key} matched {len(contenders)} entities; kept {chosen.entity_key}",
            record=record.display_key,
            resolution=rule,
            kept=chosen.entity_key,
            candidates=[candidate.entity_key for candidate in contenders],
        )
        return chosen

    @staticmethod
    def _score(record: ExternalRecord, entity: RawEntity) -> Optional[Tuple[int, str]]:
        # ids and tags compare case-insensitively
        native_id = (entity.native_id or "").casefold()
        record_id = record.id.casefold()
        record_tags = {tag.casefold() for tag in record.match_tags}
        if record_id and native_id and record_id == native_id:
            return WEIGHT_ID, "id"
        entity_tags = {tag.casefold() for tag in entity.tags}
        if record_tags & entity_tags:
            return WEIGHT_TAG, "tag"
        if native_id and native_id in record_tags:
            return WEIGHT_TAG, "tag"
        if record_id and record_id in entity_tags:
            return WEIGHT_TAG, "tag"
        if record.name and entity.label and record.name.lower() == entity.label.lower():
            return WEIGHT_NAME, "name"
        return None


__all__ = ["Matcher", "MatchPlan", "WEIGHT_ID", "WEIGHT_NAME", "WEIGHT_TAG"]
