"""Feed activation and primary-source selection."""
from __future__ import annotations

from dataclasses import dataclass

from typing_extensions import Literal

from backend.tour_search.context import IndexBuildContext
from backend.tour_search.contracts import ORIGIN_DIRECTORY, ORIGIN_SPREADSHEET, ORIGIN_TOUR

PrimarySource = Literal["tour", "directory", "spreadsheet"]


@dataclass(frozen=True, slots=True)
class FeedSelection:
    """Feeds active for a build and the source whose labels win."""

    directory_enabled: bool
    spreadsheet_enabled: bool
    primary: PrimarySource

    def is_primary(self, source: str) -> bool:
        return self.primary == source

    def standalone_allowed(self, source: str, context: IndexBuildContext) -> bool:
        """Return whether unmatched records from ``source`` become entries."""

        if source == ORIGIN_DIRECTORY:
            return self.directory_enabled and context.config.directory.include_standalone_entries
        if source == ORIGIN_SPREADSHEET:
            return self.spreadsheet_enabled and context.config.spreadsheet.include_standalone_entries
        return False


def select_feeds(context: IndexBuildContext) -> FeedSelection:
    """Resolve which feeds are active and which source is primary.

    When both feeds are enabled the directory wins: the spreadsheet is
    disabled for the build and a ``config_conflict`` diagnostic is recorded.

    Args:
        context: Active build context.

    Returns:
        FeedSelection: Effective feed activation for the build.
    """
    config = context.config
    directory_enabled = config.directory.enabled
    spreadsheet_enabled = config.spreadsheet.enabled
    if directory_enabled and spreadsheet_enabled:
        context.diagnostics.record(
            "config_conflict",
            "Directory and spreadsheet feeds are both enabled; spreadsheet feed disabled",
            kept=ORIGIN_DIRECTORY,
            disabled=ORIGIN_SPREADSHEET,
        )
        spreadsheet_enabled = False
    primary: PrimarySource = ORIGIN_TOUR
    if directory_enabled and config.directory.replace_tour_data:
        primary = ORIGIN_DIRECTORY
    elif spreadsheet_enabled and config.spreadsheet.use_as_data_source:
        primary = ORIGIN_SPREADSHEET
    context.logger.info(
        "Feed selection: directory=%s spreadsheet=%s primary=%s",
        directory_enabled,
        spreadsheet_enabled,
        primary,
    )
    return FeedSelection(
        directory_enabled=directory_enabled,
        spreadsheet_enabled=spreadsheet_enabled,
        primary=primary,
    )


__all__ = ["FeedSelection", "PrimarySource", "select_feeds"]
