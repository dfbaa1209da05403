from __future__ import annotations

import logging
from typing import List

from backend.tour_search.config import AppConfig, SceneFilterConfig, ValueFilterConfig, load_config
from backend.tour_search.context import IndexBuildContext
from backend.tour_search.contracts import EntityType, ExternalRecord, RawEntity
from backend.tour_search.feeds import FeedSelection
from backend.tour_search.reconciliation import Matcher, Reconciler


def _config(**sections) -> AppConfig:
    config = load_config()
    updates = {name: getattr(config, name).model_copy(update=values) for name, values in sections.items()}
    return config.model_copy(update=updates)


def _entity(key: str, kind: EntityType, label: str = "", **fields) -> RawEntity:
    parent_key = fields.pop("parent_key", None)
    position = int(key.rsplit(".", 1)[-1]) if parent_key else int(key.split(":")[1])
    return RawEntity(
        key=key,
        kind=kind,
        source_container="main",
        ordinal_position=position,
        label=label,
        parent_key=parent_key,
        **fields,
    )


def _tour() -> List[RawEntity]:
    return [
        _entity("main:0", EntityType.PANORAMA, "Lobby", native_id="rm001", tags=("lobby",)),
        _entity("main:0.0", EntityType.HOTSPOT, "Goto Hall", parent_key="main:0"),
        _entity("main:0.1", EntityType.WEBFRAME, "Menu", parent_key="main:0", native_id="frame-1"),
        _entity("main:1", EntityType.PANORAMA, "Hall", native_id="rm002"),
    ]


def test_tour_only_corpus_matches_filtered_entities() -> None:
    context = IndexBuildContext(load_config(), build_id="recon")
    reconciler = Reconciler(context)
    entities = _tour()

    corpus = reconciler.reconcile(entities)

    assert len(corpus) == len(reconciler.filter_entities(entities)) == 4
    assert [entry.label for entry in corpus] == ["Lobby", "Goto Hall", "Menu", "Hall"]
    lobby, hotspot, frame, hall = corpus
    assert lobby.origin == frozenset({"tour"})
    assert lobby.search_boost == 1.5
    assert hotspot.search_boost == 0.8
    assert hotspot.parent_label == "Lobby"
    assert (hotspot.sort_key, frame.sort_key, hall.sort_key) == (0, 1, 1)
    assert frame.parent_sort_key == 0
    assert frame.group == "Webframe"
    assert len(context.diagnostics) == 0


def test_primary_directory_record_replaces_scene_label() -> None:
    config = _config(directory={"enabled": True, "replace_tour_data": True})
    context = IndexBuildContext(config, build_id="recon")
    reconciler = Reconciler(context)
    entities = reconciler.filter_entities(_tour())
    record = ExternalRecord(source="directory", id="rm001", name="Grand Lobby", description="Check-in and lounge")
    plan = Matcher(context).assign([record], entities)

    corpus = reconciler.reconcile(entities, plan, primary="directory")

    lobby = corpus[0]
    assert lobby.label == "Grand Lobby"
    assert lobby.subtitle == "Check-in and lounge"
    assert lobby.origin == frozenset({"tour", "directory"})
    assert lobby.search_boost == 3.0
    assert lobby.group == "Panorama"
    assert lobby.native_label == "Lobby"
    assert corpus[1].parent_label == "Grand Lobby"


def test_secondary_directory_record_groups_entry_as_business() -> None:
    context = IndexBuildContext(_config(directory={"enabled": True, "replace_tour_data": False}), build_id="recon")
    reconciler = Reconciler(context)
    entities = _tour()
    record = ExternalRecord(source="directory", id="rm002", name="Ballroom")
    plan = Matcher(context).assign([record], entities)

    corpus = reconciler.reconcile(entities, plan, primary="tour")

    hall = corpus[-1]
    assert hall.label == "Hall"
    assert hall.group == "Business"
    assert hall.search_boost == 2.0
    assert hall.record == record


def test_declared_type_sets_group_for_primary_directory_records() -> None:
    context = IndexBuildContext(_config(directory={"enabled": True}), build_id="recon")
    reconciler = Reconciler(context)
    entities = _tour()
    record = ExternalRecord(source="directory", id="frame-1", name="Dinner menu", declared_element_type="business")
    plan = Matcher(context).assign([record], entities)

    corpus = reconciler.reconcile(entities, plan, primary="directory")

    menu = next(entry for entry in corpus if entry.identity == "frame-1")
    assert menu.label == "Dinner menu"
    assert menu.group == "Business"
    assert menu.search_boost == 3.0


def test_standalone_records_are_appended_when_enabled() -> None:
    config = _config(directory={"enabled": True, "include_standalone_entries": True})
    context = IndexBuildContext(config, build_id="recon")
    reconciler = Reconciler(context)
    entities = _tour()
    florist = ExternalRecord(
        source="directory", id="biz-7", name="Florist", declared_element_type="Business", position=4
    )
    plan = Matcher(context).assign([florist], entities)

    corpus = reconciler.reconcile(entities, plan, primary="tour")

    standalone = corpus[-1]
    assert standalone.is_standalone is True
    assert standalone.type is EntityType.BUSINESS
    assert standalone.group == "Business"
    assert standalone.sort_key == 10004
    assert standalone.origin == frozenset({"directory"})
    assert standalone.image_url == "assets/business-default.jpg"


def test_standalone_records_are_dropped_when_disabled() -> None:
    context = IndexBuildContext(_config(directory={"enabled": True}), build_id="recon")
    reconciler = Reconciler(context)
    entities = _tour()
    plan = Matcher(context).assign([ExternalRecord(source="directory", id="biz-7", name="Florist")], entities)

    corpus = reconciler.reconcile(entities, plan, primary="directory")

    assert len(corpus) == 4


def test_standalone_record_with_unknown_type_defaults_to_element() -> None:
    config = _config(spreadsheet={"enabled": True, "include_standalone_entries": True})
    context = IndexBuildContext(config, build_id="recon")
    reconciler = Reconciler(context)
    record = ExternalRecord(source="spreadsheet", id="row-1", name="Vending machine", declared_element_type="Kiosk")
    plan = Matcher(context).assign([record], [])

    (entry,) = reconciler.reconcile([], plan, primary="spreadsheet")

    assert entry.type is EntityType.ELEMENT
    assert entry.search_boost == 3.0


def test_duplicate_labels_and_identities_are_collapsed() -> None:
    context = IndexBuildContext(load_config(), build_id="recon")
    reconciler = Reconciler(context)
    entities = [
        _entity("main:0", EntityType.PANORAMA, "Lobby", native_id="pano-1"),
        _entity("main:1", EntityType.PANORAMA, "lobby", native_id="pano-2"),
        _entity("main:2", EntityType.PANORAMA, "Hall", native_id="pano-3"),
        _entity("main:2.0", EntityType.HOTSPOT, "Door A", parent_key="main:2", native_id="door"),
        _entity("main:2.1", EntityType.HOTSPOT, "Door B", parent_key="main:2", native_id="door"),
    ]

    corpus = reconciler.reconcile(entities)

    assert [entry.label for entry in corpus] == ["Lobby", "Hall", "Door A"]
    duplicates = context.diagnostics.by_category("duplicate")
    assert [item.details["by"] for item in duplicates] == ["label", "id"]


def test_same_label_under_different_parents_is_kept() -> None:
    reconciler = Reconciler(IndexBuildContext(load_config(), build_id="recon"))
    entities = [
        _entity("main:0", EntityType.PANORAMA, "Lobby"),
        _entity("main:0.0", EntityType.HOTSPOT, "Exit", parent_key="main:0"),
        _entity("main:1", EntityType.PANORAMA, "Hall"),
        _entity("main:1.0", EntityType.HOTSPOT, "Exit", parent_key="main:1"),
    ]

    assert len(reconciler.reconcile(entities)) == 4


def test_scene_filters_cascade_to_children() -> None:
    config = _config(
        include={"element_types": {**load_config().include.element_types, "Webframe": False}},
        filters={"scenes": SceneFilterConfig(mode="whitelist", allowed_values=["Hall"])},
    )
    reconciler = Reconciler(IndexBuildContext(config, build_id="recon"))
    entities = _tour() + [_entity("main:1.0", EntityType.WEBFRAME, "Bar menu", parent_key="main:1")]

    kept = reconciler.filter_entities(entities)

    assert [entity.key for entity in kept] == ["main:1"]


def test_model_scenes_can_be_switched_off() -> None:
    config = _config(include={"element_types": {**load_config().include.element_types, "3DModel": False}})
    reconciler = Reconciler(IndexBuildContext(config, build_id="recon"))
    entities = [
        _entity("main:0", EntityType.MODEL_3D, "Engine"),
        _entity("main:0.0", EntityType.HOTSPOT, "Piston", parent_key="main:0"),
        _entity("main:1", EntityType.PANORAMA, "Garage"),
    ]

    assert [entity.key for entity in reconciler.filter_entities(entities)] == ["main:1"]


def test_unlabeled_scene_switches() -> None:
    entities = [
        _entity("main:0", EntityType.PANORAMA, "", subtitle="Rooftop"),
        _entity("main:1", EntityType.PANORAMA, "", tags=("roof",)),
        _entity("main:2", EntityType.PANORAMA, ""),
    ]
    strict = _config(
        include={"unlabeled_with_subtitles": False, "unlabeled_with_tags": True, "completely_blank": False}
    )

    kept = Reconciler(IndexBuildContext(strict, build_id="recon")).filter_entities(entities)
    corpus = Reconciler(IndexBuildContext(load_config(), build_id="recon")).reconcile(entities)

    assert [entity.key for entity in kept] == ["main:1"]
    assert [entry.label for entry in corpus] == ["Rooftop", "roof", "Panorama 3"]
    assert [entry.search_boost for entry in corpus] == [1.0, 1.0, 1.0]


def test_element_label_and_tag_filters() -> None:
    config = _config(
        filters={
            "element_labels": ValueFilterConfig(mode="blacklist", blacklisted=["Menu"]),
            "tags": ValueFilterConfig(mode="whitelist", allowed=["vip"]),
        }
    )
    reconciler = Reconciler(IndexBuildContext(config, build_id="recon"))
    entities = [
        _entity("main:0", EntityType.PANORAMA, "Lobby"),
        _entity("main:0.0", EntityType.WEBFRAME, "Dinner Menu", parent_key="main:0"),
        _entity("main:0.1", EntityType.HOTSPOT, "Lounge", parent_key="main:0", tags=("vip",)),
        _entity("main:0.2", EntityType.HOTSPOT, "Storage", parent_key="main:0", tags=("staff",)),
        _entity("main:0.3", EntityType.HOTSPOT, "Exit", parent_key="main:0"),
    ]

    kept = reconciler.filter_entities(entities)

    assert [entity.key for entity in kept] == ["main:0", "main:0.1", "main:0.3"]


def test_standalone_entries_follow_the_active_feed_selection() -> None:
    config = _config(directory={"enabled": True, "include_standalone_entries": True})
    context = IndexBuildContext(config, build_id="recon")
    selection = FeedSelection(directory_enabled=False, spreadsheet_enabled=False, primary="tour")
    reconciler = Reconciler(context, selection=selection)
    entities = _tour()
    plan = Matcher(context).assign([ExternalRecord(source="directory", id="biz-7", name="Florist")], entities)

    corpus = reconciler.reconcile(entities, plan, primary="tour")

    assert [entry.label for entry in corpus] == ["Lobby", "Goto Hall", "Menu", "Hall"]


def test_prefiltered_entities_are_not_filtered_twice(caplog) -> None:
    config = _config(filters={"scenes": SceneFilterConfig(mode="whitelist", allowed_values=["Hall"])})
    reconciler = Reconciler(IndexBuildContext(config, build_id="recon"))

    with caplog.at_level(logging.INFO, logger="backend.tour_search.context"):
        kept = reconciler.filter_entities(_tour())
        corpus = reconciler.reconcile(kept, filtered=True)
        unfiltered = reconciler.reconcile(_tour()[:1], filtered=True)

    assert [entry.label for entry in corpus] == ["Hall"]
    assert [entry.label for entry in unfiltered] == ["Lobby"]
    assert sum("Inclusion filters kept" in record.getMessage() for record in caplog.records) == 1
