"""Lazy traversal of the host scene graph into raw searchable entities."""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Callable, Iterator, List, Optional, Sequence, Tuple

from backend.tour_search.context import IndexBuildContext
from backend.tour_search.contracts import EntityType, RawEntity

from .classifier import TypeClassifier
from .host import (
    HostAccessError,
    class_name,
    node_id,
    node_label,
    node_subtitle,
    node_tags,
    read_field,
    read_list,
    read_path,
)

MAIN_CONTAINER = "main"
DETAIL_CONTAINER = "root"

ROLE_PANORAMA = "panorama"
ROLE_MODEL = "model3d"
ROLE_ELEMENT = "element"
ROLE_MODEL_OBJECT = "model_object"

REGISTRY_CLASSES: Tuple[str, ...] = (
    "SpriteModel3DObject",
    "Model3DObject",
    "Sprite3DObject",
    "SpriteHotspotObject",
    "PanoramaOverlay",
)
SPRITE_CLASSES: Tuple[str, ...] = ("SpriteModel3DObject", "Sprite3DObject", "SpriteHotspotObject")

_UNOWNED = object()


@dataclass(frozen=True, slots=True)
class WalkedNode:
    """Single node visited by the walker."""

    container_id: str
    position_index: int
    raw_node: Any
    role: str
    key: str
    ordinal: int
    parent_key: Optional[str] = None
    media: Any = None

    @property
    def is_scene(self) -> bool:
        return self.role in (ROLE_PANORAMA, ROLE_MODEL)


def registry_objects(host: Any, class_name_filter: str) -> List[Any]:
    """Return registry objects of ``class_name_filter`` from the host player.

    The registry is either a callable ``getByClassName`` or a flat ``objects``
    list carrying ``class`` fields.
    """

    player = read_field(host, "player")
    if player is None:
        return []
    lookup = read_field(player, "getByClassName")
    if callable(lookup):
        try:
            found = lookup(class_name_filter)
        except Exception as exc:  # noqa: BLE001 - host registry is opaque
            raise HostAccessError(f"Registry lookup failed for {class_name_filter}") from exc
        return list(found or [])
    return [obj for obj in read_list(player, "objects") if class_name(obj) == class_name_filter]


class SceneWalker:
    """Visit every navigable scene and interactive sub-element of a tour."""

    def __init__(self, context: IndexBuildContext, classifier: Optional[TypeClassifier] = None) -> None:
        self._context = context
        self._classifier = classifier or TypeClassifier()
        self._log = context.logger

    def walk(self, host: Any) -> Iterator[WalkedNode]:
        """Yield scene and sub-element nodes in discovery order.

        Args:
            host: Host scene graph handle or JSON snapshot.

        Yields:
            WalkedNode: Visited nodes; scenes precede their children.
        """
        containers = self._containers(host)
        if not containers:
            self._log.warning("No navigable container found on host")
            return
        offset = 0
        first_scene_seen = False
        for container_id, items in containers:
            for index, item in enumerate(items):
                position = offset + index
                try:
                    scene = self._scene_node(container_id, position, item)
                except HostAccessError as exc:
                    self._traversal_error("scene item", container_id, position, exc)
                    continue
                yield scene
                attach_unowned = not first_scene_seen
                first_scene_seen = True
                try:
                    children = self._children(host, scene, attach_unowned)
                except HostAccessError as exc:
                    self._traversal_error("sub-elements", container_id, position, exc)
                    continue
                role = ROLE_MODEL_OBJECT if scene.role == ROLE_MODEL else ROLE_ELEMENT
                for child_index, child in enumerate(children):
                    yield WalkedNode(
                        container_id=container_id,
                        position_index=position,
                        raw_node=child,
                        role=role,
                        key=f"{scene.key}.{child_index}",
                        ordinal=child_index,
                        parent_key=scene.key,
                    )
            offset += len(items)

    def collect_entities(self, host: Any) -> List[RawEntity]:
        """Materialize the walk into :class:`RawEntity` instances.

        Args:
            host: Host scene graph handle or JSON snapshot.

        Returns:
            List[RawEntity]: Entities in discovery order.
        """
        entities: List[RawEntity] = []
        dropped_parents = set()
        for node in self.walk(host):
            if node.parent_key is not None and node.parent_key in dropped_parents:
                continue
            try:
                entities.append(self._to_entity(node))
            except HostAccessError as exc:
                self._traversal_error("node", node.container_id, node.position_index, exc)
                if node.is_scene:
                    dropped_parents.add(node.key)
        self._log.info(
            "Scene walk produced %d entities (%d scenes)",
            len(entities),
            sum(1 for entity in entities if not entity.is_child),
        )
        return entities

    def _containers(self, host: Any) -> List[Tuple[str, List[Any]]]:
        containers: List[Tuple[str, List[Any]]] = []
        readers: Sequence[Tuple[str, Callable[[Any], Any]]] = [(MAIN_CONTAINER, self._main_catalog)]
        if self._context.config.scene.include_detail_catalog:
            readers = [*readers, (DETAIL_CONTAINER, self._detail_catalog)]
        for container_id, reader in readers:
            try:
                catalog = reader(host)
            except HostAccessError as exc:
                self._traversal_error("container", container_id, -1, exc)
                continue
            if catalog is None:
                self._log.info("Container %s not present on host", container_id)
                continue
            items = read_list(catalog, "items")
            if not items:
                self._log.info("Container %s has no items", container_id)
                continue
            containers.append((container_id, items))
        return containers

    @staticmethod
    def _main_catalog(host: Any) -> Any:
        catalog = read_field(host, "mainPlayList")
        if catalog is not None:
            return catalog
        for playlist in registry_objects(host, "PlayList"):
            if node_id(playlist) == "mainPlayList":
                return playlist
        return None

    @staticmethod
    def _detail_catalog(host: Any) -> Any:
        return read_path(host, "locManager", "rootPlayer", "mainPlayList")

    @staticmethod
    def _scene_node(container_id: str, position: int, item: Any) -> WalkedNode:
        if item is None:
            raise HostAccessError("Playlist item is empty")
        media = read_field(item, "media")
        is_model = class_name(item) == "Model3DPlayListItem" and class_name(media) == "Model3D"
        return WalkedNode(
            container_id=container_id,
            position_index=position,
            raw_node=item,
            role=ROLE_MODEL if is_model else ROLE_PANORAMA,
            key=f"{container_id}:{position}",
            ordinal=position,
            media=media,
        )

    def _children(self, host: Any, scene: WalkedNode, attach_unowned: bool) -> List[Any]:
        if scene.role == ROLE_MODEL:
            objects = read_list(scene.media, "objects")
            return objects or read_list(scene.raw_node, "objects")
        strategies: Sequence[Tuple[str, Callable[[], List[Any]]]] = (
            ("scene_overlays", lambda: self._own_overlays(scene)),
            ("tagged_overlays", lambda: self._tagged_overlays(scene)),
            ("registry_owned", lambda: self._registry_owned(host, scene)),
            ("registry_unowned", lambda: self._registry_unowned(host) if attach_unowned else []),
        )
        for name, strategy in strategies:
            try:
                found = [child for child in strategy() if child is not None]
            except HostAccessError as exc:
                self._traversal_error(f"{name} strategy", scene.container_id, scene.position_index, exc)
                continue
            if found:
                self._log.debug("Scene %s sub-elements found via %s (%d)", scene.key, name, len(found))
                return found
        return []

    @staticmethod
    def _own_overlays(scene: WalkedNode) -> List[Any]:
        overlays = read_list(scene.media, "overlays")
        return overlays or read_list(scene.raw_node, "overlays")

    @staticmethod
    def _tagged_overlays(scene: WalkedNode) -> List[Any]:
        grouped = read_field(scene.media, "overlaysByTags")
        if not isinstance(grouped, Mapping):
            return []
        flattened: List[Any] = []
        for group in grouped.values():
            if isinstance(group, (list, tuple)):
                flattened.extend(group)
        return flattened

    def _registry_owned(self, host: Any, scene: WalkedNode) -> List[Any]:
        media_id = node_id(scene.media)
        owned: List[Any] = []
        for declared in REGISTRY_CLASSES:
            for obj in registry_objects(host, declared):
                owner = self._owner_of(obj)
                if owner is None or (owner is not _UNOWNED and owner == media_id):
                    owned.append(obj)
        return owned

    def _registry_unowned(self, host: Any) -> List[Any]:
        unowned: List[Any] = []
        for declared in SPRITE_CLASSES:
            for obj in registry_objects(host, declared):
                if self._owner_of(obj) is _UNOWNED:
                    unowned.append(obj)
        return unowned

    @staticmethod
    def _owner_of(obj: Any) -> Any:
        """Return the owning media id, ``_UNOWNED``, or ``None`` when unreadable."""

        try:
            parent = read_field(obj, "parent")
            if parent is not None:
                return parent if isinstance(parent, str) else node_id(parent)
            media = read_field(obj, "media")
            if media is not None:
                return media if isinstance(media, str) else node_id(media)
        except HostAccessError:
            return None
        return _UNOWNED

    def _to_entity(self, node: WalkedNode) -> RawEntity:
        if node.is_scene:
            metadata = node.media if node.media is not None else node.raw_node
            kind = EntityType.MODEL_3D if node.role == ROLE_MODEL else EntityType.PANORAMA
            return RawEntity(
                key=node.key,
                kind=kind,
                source_container=node.container_id,
                ordinal_position=node.ordinal,
                native_id=node_id(metadata) or node_id(node.raw_node),
                label=node_label(metadata),
                subtitle=node_subtitle(metadata),
                tags=tuple(node_tags(metadata)),
                handle=node.raw_node,
            )
        label = node_label(node.raw_node)
        if node.role == ROLE_MODEL_OBJECT:
            kind = EntityType.MODEL_3D_OBJECT
        else:
            kind = self._classifier.classify(node.raw_node, label)
        return RawEntity(
            key=node.key,
            kind=kind,
            source_container=node.container_id,
            ordinal_position=node.ordinal,
            native_id=node_id(node.raw_node),
            label=label,
            subtitle=node_subtitle(node.raw_node),
            tags=tuple(node_tags(node.raw_node)),
            parent_key=node.parent_key,
            handle=node.raw_node,
        )

    def _traversal_error(self, what: str, container_id: str, position: int, exc: Exception) -> None:
        self._context.diagnostics.record(
            "traversal",
            f"Skipped {what} during scene walk",
            container=container_id,
            position=position,
            error=str(exc),
        )


__all__ = [
    "DETAIL_CONTAINER",
    "MAIN_CONTAINER",
    "REGISTRY_CLASSES",
    "SceneWalker",
    "WalkedNode",
    "registry_objects",
]
