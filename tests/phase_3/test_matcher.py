from __future__ import annotations

from backend.tour_search.config import load_config
from backend.tour_search.context import IndexBuildContext
from backend.tour_search.contracts import EntityType, ExternalRecord, RawEntity
from backend.tour_search.reconciliation import Matcher
from backend.tour_search.reconciliation.matcher import WEIGHT_ID, WEIGHT_NAME, WEIGHT_TAG


def _scene(key: str, native_id: str, label: str, *, tags=(), subtitle: str = "", position: int = 0) -> RawEntity:
    return RawEntity(
        key=key,
        kind=EntityType.PANORAMA,
        source_container="main",
        ordinal_position=position,
        native_id=native_id,
        label=label,
        subtitle=subtitle,
        tags=tuple(tags),
    )


def _hotspot(key: str, parent_key: str, label: str, *, tags=()) -> RawEntity:
    return RawEntity(
        key=key,
        kind=EntityType.HOTSPOT,
        source_container="main",
        ordinal_position=0,
        label=label,
        tags=tuple(tags),
        parent_key=parent_key,
    )


def _record(position: int = 0, **fields) -> ExternalRecord:
    return ExternalRecord(source="directory", position=position, **fields)


def _matcher() -> tuple[Matcher, IndexBuildContext]:
    context = IndexBuildContext(load_config(), build_id="match-test")
    return Matcher(context), context


def test_match_prefers_strongest_rule_per_entity() -> None:
    matcher, _ = _matcher()
    entities = [
        _scene("main:0", "rm001", "Lobby", tags=["lobby"]),
        _scene("main:1", "rm002", "Grand Hall", tags=["rm001"]),
        _scene("main:2", "rm003", "Cafe"),
    ]

    candidates = matcher.match(_record(id="rm001", match_tags=("lobby",), name="Cafe"), entities)

    assert [(c.entity_key, c.weight, c.rule) for c in candidates] == [
        ("main:0", WEIGHT_ID, "id"),
        ("main:1", WEIGHT_TAG, "tag"),
        ("main:2", WEIGHT_NAME, "name"),
    ]
    assert matcher.resolve(_record(id="rm001"), candidates, {e.key: e for e in entities}).entity_key == "main:0"


def test_name_match_is_case_insensitive_and_requires_label() -> None:
    matcher, _ = _matcher()
    entities = [_scene("main:0", "", ""), _scene("main:1", "", "grand lobby")]

    candidates = matcher.match(_record(name="Grand Lobby"), entities)

    assert [c.entity_key for c in candidates] == ["main:1"]


def test_two_records_claiming_one_scene_keep_first_and_log_ambiguity() -> None:
    matcher, context = _matcher()
    entities = [_scene("main:0", "pano-1", "Lobby", tags=["lobby"])]
    first = _record(0, id="biz-1", match_tags=("lobby",), name="Lobby Cafe")
    second = _record(1, id="biz-2", match_tags=("lobby",), name="Lobby Bar")

    plan = matcher.assign([first, second], entities)

    assert plan.record_for("main:0") == first
    assert plan.losers == (second,)
    assert plan.standalone == ()
    (ambiguity,) = context.diagnostics.by_category("ambiguity")
    assert ambiguity.details["resolution"] == "first_record"
    assert ambiguity.details["candidates"] == ["Lobby Cafe", "Lobby Bar"]
    assert context.is_consumed("biz-2", ()) is True


def test_declared_type_breaks_ties_between_competing_records() -> None:
    matcher, context = _matcher()
    entities = [_scene("main:0", "pano-1", "Lobby", tags=["lobby"])]
    hotspot_row = _record(0, id="biz-1", match_tags=("lobby",), declared_element_type="Hotspot")
    scene_row = _record(1, id="biz-2", match_tags=("lobby",), declared_element_type="panorama")

    plan = matcher.assign([hotspot_row, scene_row], entities)

    assert plan.record_for("main:0") == scene_row
    assert context.diagnostics.by_category("ambiguity")[0].details["resolution"] == "declared_type"


def test_longer_description_breaks_ties_between_competing_records() -> None:
    matcher, context = _matcher()
    entities = [_scene("main:0", "pano-1", "Lobby", tags=["lobby"])]
    terse = _record(0, id="biz-1", match_tags=("lobby",), description="Cafe")
    detailed = _record(1, id="biz-2", match_tags=("lobby",), description="Cafe with terrace seating")

    plan = matcher.assign([terse, detailed], entities)

    assert plan.record_for("main:0") == detailed
    assert context.diagnostics.by_category("ambiguity")[0].details["resolution"] == "description_length"


def test_higher_weight_claim_wins_without_ambiguity_tiebreak() -> None:
    matcher, context = _matcher()
    entities = [_scene("main:0", "pano-1", "Lobby", tags=["lobby"])]
    by_tag = _record(0, id="biz-1", match_tags=("lobby",))
    by_id = _record(1, id="pano-1")

    plan = matcher.assign([by_tag, by_id], entities)

    assert plan.record_for("main:0") == by_id
    assert plan.candidates["main:0"].rule == "id"
    assert context.diagnostics.by_category("ambiguity")[0].details["resolution"] == "weight"


def test_record_matching_several_entities_resolves_by_declared_type() -> None:
    matcher, context = _matcher()
    entities = [
        _scene("main:0", "pano-1", "Lobby", tags=["desk"]),
        _hotspot("main:0.0", "main:0", "Front desk", tags=["desk"]),
    ]
    record = _record(id="biz-9", match_tags=("desk",), declared_element_type="Hotspot")

    plan = matcher.assign([record], entities)

    assert plan.record_for("main:0.0") == record
    assert plan.record_for("main:0") is None
    (ambiguity,) = context.diagnostics.by_category("ambiguity")
    assert ambiguity.details["candidates"] == ["main:0", "main:0.0"]


def test_unresolvable_tie_keeps_first_candidate() -> None:
    matcher, context = _matcher()
    entities = [
        _scene("main:0", "pano-1", "Lobby", tags=["shared"], position=0),
        _scene("main:1", "pano-2", "Hall", tags=["shared"], position=1),
    ]

    plan = matcher.assign([_record(id="biz-3", match_tags=("shared",))], entities)

    assert list(plan.matches) == ["main:0"]
    assert context.diagnostics.by_category("ambiguity")[0].details["resolution"] == "first_candidate"


def test_unmatched_records_become_standalone_unless_consumed() -> None:
    matcher, context = _matcher()
    entities = [_scene("main:0", "pano-1", "Lobby")]
    context.consume("", ("reused-tag",))
    fresh = _record(0, id="biz-4", name="Florist")
    reused = _record(1, id="biz-5", match_tags=("reused-tag",))

    plan = matcher.assign([fresh, reused], entities)

    assert plan.standalone == (fresh,)
    assert plan.skipped == (reused,)
    assert plan.matches == {}


def test_records_consumed_by_one_feed_are_skipped_by_the_next() -> None:
    matcher, _ = _matcher()
    entities = [_scene("main:0", "rm001", "Lobby")]
    directory_row = _record(id="rm001", name="Grand Lobby")
    sheet_row = ExternalRecord(source="spreadsheet", id="rm001", name="Lobby (sheet)")

    first = matcher.assign([directory_row], entities)
    second = matcher.assign([sheet_row], entities)

    assert first.record_for("main:0") == directory_row
    assert second.matches == {}
    assert second.skipped == (sheet_row,)


def test_id_and_tag_rules_ignore_case() -> None:
    matcher, _ = _matcher()
    entities = [
        _scene("main:0", "rm001", "Lobby"),
        _scene("main:1", "rm002", "Hall", tags=["Reception"]),
        _scene("main:2", "RM003", "Cafe"),
    ]

    assert [(c.entity_key, c.rule) for c in matcher.match(_record(id="RM001"), entities)] == [("main:0", "id")]
    assert [(c.entity_key, c.weight) for c in matcher.match(_record(match_tags=("reception",)), entities)] == [
        ("main:1", WEIGHT_TAG)
    ]
    assert [c.entity_key for c in matcher.match(_record(match_tags=("rm003",)), entities)] == ["main:2"]


def test_consumption_is_case_insensitive_across_feeds() -> None:
    matcher, context = _matcher()
    entities = [_scene("main:0", "rm001", "Lobby")]

    matcher.assign([_record(id="rm001", name="Grand Lobby")], entities)
    plan = matcher.assign([_record(id="RM001", name="Lobby Again")], entities)

    assert plan.matches == {}
    assert [record.id for record in plan.skipped] == ["RM001"]
    assert context.is_consumed("Rm001", ())
