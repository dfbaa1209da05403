"""Inclusion filters applied before entries reach the corpus."""
from __future__ import annotations

from typing import Callable, Iterable, List, Sequence

from backend.tour_search.config import FilterMode, ValueFilterConfig
from backend.tour_search.context import IndexBuildContext
from backend.tour_search.contracts import EntityType, ExternalRecord, RawEntity


def _mode_rejects(
    mode: FilterMode,
    allowed: Sequence[str],
    blacklisted: Sequence[str],
    matches: Callable[[str], bool],
) -> bool:
    """Evaluate an allow/deny pair; an empty list never filters."""

    if mode == "whitelist" and allowed:
        return not any(matches(value) for value in allowed)
    if mode == "blacklist" and blacklisted:
        return any(matches(value) for value in blacklisted)
    return False


class InclusionFilter:
    """Decide which scenes, sub-elements and standalone records are indexed."""

    def __init__(self, context: IndexBuildContext) -> None:
        self._filters = context.config.filters
        self._include = context.config.include
        self._log = context.logger

    def include_entity(self, entity: RawEntity) -> bool:
        """Return whether a walked entity passes the filters."""

        if entity.is_child:
            return self.include_element(entity.kind, entity.label, entity.tags)
        if entity.kind == EntityType.MODEL_3D and not self._include.includes_type(entity.kind.value):
            return self._drop(entity, "3D model scenes switched off")
        return self.include_scene(entity)

    def include_scene(self, entity: RawEntity) -> bool:
        """Apply exact-value, media-index and unlabeled switches to a scene.

        Args:
            entity: Scene entity (panorama or 3D model).

        Returns:
            bool: ``True`` when the scene is indexed.
        """
        scenes = self._filters.scenes
        label, subtitle = entity.label, entity.subtitle
        has_tags = bool(entity.tags)
        if scenes.mode == "whitelist" and scenes.allowed_values:
            if label not in scenes.allowed_values and subtitle not in scenes.allowed_values:
                if label or subtitle:
                    return self._drop(entity, "scene not in allow list")
        elif scenes.mode == "blacklist" and scenes.blacklisted_values:
            if (label and label in scenes.blacklisted_values) or (
                subtitle and subtitle in scenes.blacklisted_values
            ):
                return self._drop(entity, "scene in deny list")

        if not label and not subtitle and not has_tags:
            position = entity.ordinal_position
            if scenes.mode == "whitelist" and scenes.allowed_media_indexes:
                if position not in scenes.allowed_media_indexes:
                    return self._drop(entity, "media index not allowed")
            if scenes.mode == "blacklist" and position in scenes.blacklisted_media_indexes:
                return self._drop(entity, "media index denied")
            if not self._include.completely_blank:
                return self._drop(entity, "completely blank scene")

        if not label:
            keep = (
                (bool(subtitle) and self._include.unlabeled_with_subtitles)
                or (has_tags and self._include.unlabeled_with_tags)
                or (not subtitle and not has_tags and self._include.completely_blank)
            )
            if not keep:
                return self._drop(entity, "unlabeled scene")
        return True

    def include_element(self, entity_type: EntityType, label: str, tags: Iterable[str]) -> bool:
        """Apply label, type and tag filters to a sub-element or standalone record."""

        include = self._include
        tag_list: List[str] = list(tags)
        if not label and include.skip_empty_labels:
            return False
        if label and include.min_label_length > 0 and len(label) < include.min_label_length:
            return False
        type_name = entity_type.value
        if not include.includes_type(type_name):
            return False
        if self._rejects(self._filters.element_types, lambda value: value == type_name):
            return False
        if label and self._rejects(self._filters.element_labels, lambda value: value in label):
            return False
        if tag_list and self._rejects(self._filters.tags, lambda value: value in tag_list):
            return False
        return True

    def include_record(self, record: ExternalRecord, entity_type: EntityType, label: str) -> bool:
        """Apply element filters to a record that would become a standalone entry."""

        keep = self.include_element(entity_type, label, record.match_tags)
        if not keep:
            self._log.debug("Standalone %s record %s filtered out", record.source, record.display_key)
        return keep

    @staticmethod
    def _rejects(settings: ValueFilterConfig, matches: Callable[[str], bool]) -> bool:
        return _mode_rejects(settings.mode, settings.allowed, settings.blacklisted, matches)

    def _drop(self, entity: RawEntity, reason: str) -> bool:
        self._log.debug("Scene %s filtered out: %s", entity.key, reason)
        return False


__all__ = ["InclusionFilter"]
