"""Display label, description and thumbnail resolution."""
from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Optional, Sequence, Tuple

from backend.tour_search.context import IndexBuildContext
from backend.tour_search.contracts import ExternalRecord

if TYPE_CHECKING:  # pragma: no cover
    from .reconciler import EntryDraft


@dataclass(frozen=True, slots=True)
class ResolvedLabel:
    """Final presentation text and image for one corpus entry."""

    label: str
    subtitle: str
    image_url: str
    source: str = "placeholder"


class LabelResolver:
    """Resolve labels through a lazily evaluated fallback chain."""

    def __init__(self, context: IndexBuildContext) -> None:
        self._labels = context.config.labels
        self._thumbnails = context.config.thumbnails

    def resolve(self, draft: "EntryDraft") -> ResolvedLabel:
        """Compute label, subtitle and thumbnail for a draft entry.

        Args:
            draft: Mutable entry assembled by the reconciler.

        Returns:
            ResolvedLabel: First populated label in chain order.
        """
        image_url = self._image_for(draft)
        if draft.entity is None:
            return self._standalone(draft, image_url)

        entity = draft.entity
        primary = draft.primary_record
        chain: Sequence[Tuple[str, Callable[[], str]]] = (
            ("primary", lambda: primary.name if primary is not None else ""),
            ("native", lambda: entity.label),
            ("subtitle", lambda: entity.subtitle if self._labels.use_subtitles else ""),
            ("tags", lambda: ", ".join(entity.tags) if self._labels.use_tags else ""),
            (
                "element_type",
                lambda: f"{draft.type.value} {entity.ordinal_position + 1}" if self._labels.use_element_type else "",
            ),
        )
        label, source = self._labels.placeholder, "placeholder"
        for name, candidate in chain:
            value = candidate().strip()
            if value:
                label, source = value, name
                break

        if primary is not None:
            subtitle = primary.description
        elif source == "subtitle":
            subtitle = ""
        else:
            subtitle = entity.subtitle
        return ResolvedLabel(label=label, subtitle=subtitle, image_url=image_url, source=source)

    def _standalone(self, draft: "EntryDraft", image_url: str) -> ResolvedLabel:
        record: Optional[ExternalRecord] = draft.record
        if record is None:
            return ResolvedLabel(self._labels.placeholder, "", image_url)
        if record.name:
            label, source = record.name, "record_name"
        elif record.id:
            label, source = record.id, "record_id"
        else:
            label, source = self._labels.placeholder, "placeholder"
        return ResolvedLabel(label=label, subtitle=record.description, image_url=image_url, source=source)

    def _image_for(self, draft: "EntryDraft") -> str:
        if draft.record is not None and draft.record.image_url:
            return draft.record.image_url
        return self._thumbnails.image_for(draft.type.value)


__all__ = ["LabelResolver", "ResolvedLabel"]
