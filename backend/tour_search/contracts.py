"""Immutable data contracts for the tour search backend."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, FrozenSet, Optional, Tuple

from typing_extensions import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

FeedSource = Literal["directory", "spreadsheet"]

ORIGIN_TOUR = "tour"
ORIGIN_DIRECTORY = "directory"
ORIGIN_SPREADSHEET = "spreadsheet"


class EntityType(str, Enum):
    """Classification tag for a discovered or external element."""

    PANORAMA = "Panorama"
    HOTSPOT = "Hotspot"
    POLYGON = "Polygon"
    VIDEO = "Video"
    WEBFRAME = "Webframe"
    IMAGE = "Image"
    TEXT = "Text"
    PROJECTED_IMAGE = "ProjectedImage"
    MODEL_3D = "3DModel"
    HOTSPOT_3D = "3DHotspot"
    MODEL_3D_OBJECT = "3DModelObject"
    ELEMENT = "Element"
    BUSINESS = "Business"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["EntityType"]:
        """Return the member matching ``value`` case-insensitively, if any."""

        if not value:
            return None
        lowered = str(value).strip().lower()
        for member in cls:
            if member.value.lower() == lowered:
                return member
        return None


class _FrozenBaseModel(BaseModel):
    """Base model enforcing immutability after creation."""

    model_config = ConfigDict(frozen=True)


class ExternalRecord(_FrozenBaseModel):
    """Normalized row from the directory or spreadsheet feed."""

    source: FeedSource
    id: str = ""
    match_tags: Tuple[str, ...] = Field(default_factory=tuple)
    name: str = ""
    description: str = ""
    image_url: str = ""
    declared_element_type: Optional[str] = None
    position: int = Field(0, ge=0, description="Row order within the source feed.")

    @field_validator("match_tags")
    @classmethod
    def _strip_tags(cls, value: Tuple[str, ...]) -> Tuple[str, ...]:
        """Drop blank tags and surrounding whitespace while preserving order.

        Args:
            value: Raw tag tuple supplied by the normalizer.

        Returns:
            Tuple[str, ...]: De-duplicated, non-empty tags.
        """
        cleaned = []
        for tag in value:
            stripped = str(tag).strip()
            if stripped and stripped not in cleaned:
                cleaned.append(stripped)
        return tuple(cleaned)

    @property
    def match_tag(self) -> str:
        """Return the primary match tag or an empty string."""

        return self.match_tags[0] if self.match_tags else ""

    @property
    def has_key(self) -> bool:
        """Return whether the record carries any usable key."""

        return bool(self.id or self.match_tags or self.name)

    @property
    def display_key(self) -> str:
        """Return a human-readable identifier for log messages."""

        return self.name or self.id or self.match_tag or f"{self.source}#{self.position}"


@dataclass(frozen=True, slots=True)
class RawEntity:
    """Element discovered directly from the host scene graph."""

    key: str
    kind: EntityType
    source_container: str
    ordinal_position: int
    native_id: Optional[str] = None
    label: str = ""
    subtitle: str = ""
    tags: Tuple[str, ...] = ()
    parent_key: Optional[str] = None
    handle: Any = field(default=None, compare=False, repr=False)

    @property
    def is_child(self) -> bool:
        """Return whether the entity is a nested sub-element."""

        return self.parent_key is not None


@dataclass(frozen=True, slots=True)
class MatchCandidate:
    """Scene entity proposed as the target of an external record."""

    entity_key: str
    weight: int
    rule: str
    order: int


@dataclass(frozen=True, slots=True)
class CorpusEntry:
    """Final, deduplicated, labeled unit indexed for search."""

    type: EntityType
    label: str
    subtitle: str
    tags: Tuple[str, ...]
    image_url: str
    search_boost: float
    sort_key: int
    origin: FrozenSet[str]
    group: str
    parent_key: Optional[str] = None
    parent_label: str = ""
    parent_sort_key: Optional[int] = None
    entity: Optional[RawEntity] = field(default=None, compare=False)
    record: Optional[ExternalRecord] = field(default=None, compare=False)

    @property
    def is_standalone(self) -> bool:
        """Return whether the entry was derived only from an external record."""

        return self.entity is None

    @property
    def is_child(self) -> bool:
        """Return whether the entry represents a nested sub-element."""

        return self.parent_key is not None

    @property
    def native_label(self) -> str:
        """Return the tour-native label, if the entry came from the tour."""

        return self.entity.label if self.entity is not None else ""

    @property
    def identity(self) -> str:
        """Return the most stable identifier available for the entry."""

        if self.entity is not None and self.entity.native_id:
            return self.entity.native_id
        if self.record is not None and self.record.id:
            return self.record.id
        return ""


__all__ = [
    "CorpusEntry",
    "EntityType",
    "ExternalRecord",
    "FeedSource",
    "MatchCandidate",
    "ORIGIN_DIRECTORY",
    "ORIGIN_SPREADSHEET",
    "ORIGIN_TOUR",
    "RawEntity",
]
