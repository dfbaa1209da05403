"""Per-build context threaded through every indexing stage."""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Set

from typing_extensions import Literal

from backend.tour_search.config import AppConfig

LOGGER = logging.getLogger(__name__)

DiagnosticCategory = Literal["traversal", "feed", "ambiguity", "config_conflict", "duplicate", "fatal"]

DIAGNOSTIC_CATEGORIES = ("traversal", "feed", "ambiguity", "config_conflict", "duplicate", "fatal")


class _BuildLoggerAdapter(logging.LoggerAdapter):
    """Prefix messages with the build identifier."""

    def process(self, msg: Any, kwargs: Any) -> Any:
        extra = dict(kwargs.get("extra") or {})
        extra.setdefault("build_id", self.extra["build_id"])
        kwargs["extra"] = extra
        return f"[build {self.extra['build_id']}] {msg}", kwargs


@dataclass(frozen=True, slots=True)
class Diagnostic:
    """Structured warning recorded during a build."""

    category: DiagnosticCategory
    message: str
    details: Mapping[str, Any] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        """Return a JSON-friendly representation of the diagnostic."""

        return {"category": self.category, "message": self.message, "details": dict(self.details)}


class BuildDiagnostics:
    """Collector of structured warnings produced during one build."""

    def __init__(self, logger: logging.LoggerAdapter) -> None:
        self._logger = logger
        self._items: List[Diagnostic] = []

    def record(self, category: DiagnosticCategory, message: str, **details: Any) -> Diagnostic:
        """Record and log a diagnostic.

        Args:
            category: Diagnostic category.
            message: Human-readable summary.
            **details: Structured payload describing the event.

        Returns:
            Diagnostic: The recorded diagnostic.
        """
        if category not in DIAGNOSTIC_CATEGORIES:
            raise ValueError(f"Unknown diagnostic category: {category}")
        diagnostic = Diagnostic(category=category, message=message, details=details)
        self._items.append(diagnostic)
        level = logging.ERROR if category == "fatal" else logging.WARNING
        self._logger.log(level, "%s: %s", category, message, extra={"diagnostic": diagnostic.as_dict()})
        return diagnostic

    def by_category(self, category: DiagnosticCategory) -> List[Diagnostic]:
        """Return the diagnostics recorded under ``category``."""

        return [item for item in self._items if item.category == category]

    def counts(self) -> Dict[str, int]:
        """Return the number of diagnostics recorded per category."""

        totals = {category: 0 for category in DIAGNOSTIC_CATEGORIES}
        for item in self._items:
            totals[item.category] += 1
        return totals

    @property
    def items(self) -> List[Diagnostic]:
        return list(self._items)

    def __len__(self) -> int:
        return len(self._items)


class IndexBuildContext:
    """State shared by the stages of a single index build.

    A context is single-use: the consumption sets and diagnostics belong to one
    build and are discarded with it.
    """

    def __init__(self, config: AppConfig, *, build_id: Optional[str] = None) -> None:
        self.config = config
        self.build_id = build_id or uuid.uuid4().hex[:12]
        self.logger = _BuildLoggerAdapter(LOGGER, {"build_id": self.build_id})
        self.diagnostics = BuildDiagnostics(self.logger)
        self.consumed_ids: Set[str] = set()
        self.consumed_tags: Set[str] = set()

    def is_consumed(self, record_id: str, tags: Any) -> bool:
        """Return whether a record's id or any of its tags was already consumed.

        Keys compare case-insensitively.
        """

        if record_id and record_id.casefold() in self.consumed_ids:
            return True
        return any(tag.casefold() in self.consumed_tags for tag in tags if tag)

    def consume(self, record_id: str, tags: Any) -> None:
        """Mark a record's id and tags as consumed for the rest of the build."""

        if record_id:
            self.consumed_ids.add(record_id.casefold())
        for tag in tags:
            if tag:
                self.consumed_tags.add(tag.casefold())


__all__ = [
    "BuildDiagnostics",
    "DIAGNOSTIC_CATEGORIES",
    "Diagnostic",
    "DiagnosticCategory",
    "IndexBuildContext",
]
