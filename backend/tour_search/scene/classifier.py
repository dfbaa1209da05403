"""Deterministic element type classification for host scene nodes."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from backend.tour_search.contracts import EntityType

from .host import HostAccessError, class_name, node_id, node_label, read_field, read_list

LOGGER = logging.getLogger(__name__)

Predicate = Callable[[Any, str], bool]
Resolver = Callable[[Any, str], EntityType]

CLASS_TABLE: Dict[str, EntityType] = {
    "FramePanoramaOverlay": EntityType.WEBFRAME,
    "QuadVideoPanoramaOverlay": EntityType.VIDEO,
    "VideoPanoramaOverlay": EntityType.VIDEO,
    "ImagePanoramaOverlay": EntityType.IMAGE,
    "TextPanoramaOverlay": EntityType.TEXT,
    "ProjectedImagePanoramaOverlay": EntityType.PROJECTED_IMAGE,
    "HotspotPanoramaOverlay": EntityType.HOTSPOT,
    "Model3DObject": EntityType.MODEL_3D,
    "SpriteModel3DObject": EntityType.HOTSPOT_3D,
    "SpriteHotspotObject": EntityType.HOTSPOT_3D,
    "Sprite3DObject": EntityType.HOTSPOT_3D,
}

PROPERTY_TABLE: Tuple[Tuple[str, EntityType], ...] = (
    ("url", EntityType.WEBFRAME),
    ("video", EntityType.VIDEO),
    ("model3d", EntityType.MODEL_3D),
    ("sprite3d", EntityType.HOTSPOT_3D),
)

LABEL_PATTERNS: Tuple[Tuple[str, EntityType], ...] = (
    ("web", EntityType.WEBFRAME),
    ("video", EntityType.VIDEO),
    ("image", EntityType.IMAGE),
    ("text", EntityType.TEXT),
    ("polygon", EntityType.POLYGON),
    ("goto", EntityType.HOTSPOT),
    ("info", EntityType.HOTSPOT),
    ("3d-model", EntityType.MODEL_3D),
    ("model3d", EntityType.MODEL_3D),
    ("3d-hotspot", EntityType.HOTSPOT_3D),
    ("sprite", EntityType.HOTSPOT_3D),
)


@dataclass(frozen=True, slots=True)
class ClassificationRule:
    """Named predicate paired with the type it assigns."""

    name: str
    predicate: Predicate
    result: Resolver


def _data(node: Any) -> Any:
    return read_field(node, "data")


def _flag(node: Any, *names: str) -> bool:
    return any(bool(read_field(node, name)) for name in names)


def _data_flag(node: Any, name: str) -> bool:
    data = _data(node)
    return data is not None and bool(read_field(data, name))


def _nested(node: Any, name: str) -> Any:
    """Return ``name`` read from the node or from its ``data`` block."""

    value = read_field(node, name)
    if value:
        return value
    data = _data(node)
    return read_field(data, name) if data is not None else None


def _vertex_count(node: Any) -> int:
    best = 0
    for holder in (node, _data(node)):
        if holder is None:
            continue
        for name in ("vertices", "polygon"):
            best = max(best, len(read_list(holder, name)))
    return best


def _label_of(node: Any, fallback_label: str) -> str:
    return (node_label(node) or fallback_label or "").lower()


def _geometry_type(node: Any, _label: str) -> EntityType:
    if _nested(node, "video"):
        return EntityType.VIDEO
    if _nested(node, "image"):
        return EntityType.IMAGE
    return EntityType.POLYGON


def _class_type(node: Any, label: str) -> EntityType:
    declared = class_name(node)
    base = CLASS_TABLE[declared]
    if declared == "HotspotPanoramaOverlay":
        if "polygon" in label:
            return EntityType.POLYGON
        if label == "image":
            return EntityType.IMAGE
    if declared == "SpriteModel3DObject":
        spatial = any(marker in label for marker in ("3d", "model", "sprite"))
        navigational = any(marker in label for marker in ("goto", "info", "hotspot"))
        if navigational and not spatial:
            return EntityType.HOTSPOT
    return base


def _property_type(node: Any, _label: str) -> EntityType:
    for name, entity_type in PROPERTY_TABLE:
        if _nested(node, name):
            return entity_type
    raise LookupError("no classifying property present")


def _pattern_type(_node: Any, label: str) -> EntityType:
    for pattern, entity_type in LABEL_PATTERNS:
        if pattern in label:
            return entity_type
    raise LookupError("no label pattern matched")


def _constant(entity_type: EntityType) -> Resolver:
    return lambda _node, _label: entity_type


DEFAULT_RULES: Sequence[ClassificationRule] = (
    ClassificationRule(
        "projected_flag",
        lambda node, _label: _flag(node, "projected", "isProjected"),
        _constant(EntityType.PROJECTED_IMAGE),
    ),
    ClassificationRule(
        "polygon_flag", lambda node, _label: _data_flag(node, "isPolygon"), _constant(EntityType.POLYGON)
    ),
    ClassificationRule("text_flag", lambda node, _label: _data_flag(node, "hasText"), _constant(EntityType.TEXT)),
    ClassificationRule(
        "panorama_action_flag",
        lambda node, _label: _data_flag(node, "hasPanoramaAction"),
        _constant(EntityType.HOTSPOT),
    ),
    ClassificationRule("geometry", lambda node, _label: _vertex_count(node) > 2, _geometry_type),
    ClassificationRule(
        "sprite_identifier",
        lambda node, _label: "sprite" in (node_id(node) or "").lower(),
        _constant(EntityType.HOTSPOT_3D),
    ),
    ClassificationRule("class_table", lambda node, _label: class_name(node) in CLASS_TABLE, _class_type),
    ClassificationRule(
        "property_presence",
        lambda node, _label: any(_nested(node, name) for name, _ in PROPERTY_TABLE),
        _property_type,
    ),
    ClassificationRule(
        "label_pattern",
        lambda _node, label: bool(label) and any(pattern in label for pattern, _ in LABEL_PATTERNS),
        _pattern_type,
    ),
)


class TypeClassifier:
    """Assign an :class:`EntityType` to a host node using an ordered rule table."""

    def __init__(self, rules: Optional[Iterable[ClassificationRule]] = None) -> None:
        self._rules: List[ClassificationRule] = list(rules if rules is not None else DEFAULT_RULES)

    @property
    def rules(self) -> List[ClassificationRule]:
        return list(self._rules)

    def classify(self, raw_node: Any, fallback_label: str = "") -> EntityType:
        """Return the type of ``raw_node``; the first matching rule wins.

        Args:
            raw_node: Host scene node, mapping, or ``None``.
            fallback_label: Label used when the node carries none.

        Returns:
            EntityType: Assigned type, ``Element`` when no rule matches.
        """
        if raw_node is None:
            return EntityType.ELEMENT
        try:
            label = _label_of(raw_node, fallback_label)
        except HostAccessError:
            label = (fallback_label or "").lower()
        for rule in self._rules:
            try:
                if rule.predicate(raw_node, label):
                    return rule.result(raw_node, label)
            except Exception as exc:  # noqa: BLE001 - a failing rule never matches
                LOGGER.debug("Classification rule %s skipped: %s", rule.name, exc)
                continue
        return EntityType.ELEMENT

    def explain(self, raw_node: Any, fallback_label: str = "") -> Optional[str]:
        """Return the name of the rule that classifies ``raw_node``, if any."""

        if raw_node is None:
            return None
        try:
            label = _label_of(raw_node, fallback_label)
        except HostAccessError:
            label = (fallback_label or "").lower()
        for rule in self._rules:
            try:
                if rule.predicate(raw_node, label):
                    return rule.name
            except Exception:  # noqa: BLE001
                continue
        return None


__all__ = [
    "CLASS_TABLE",
    "ClassificationRule",
    "DEFAULT_RULES",
    "LABEL_PATTERNS",
    "PROPERTY_TABLE",
    "TypeClassifier",
]
