"""Index build orchestration."""

from backend.tour_search.orchestration.service import (
    BuildFatalError,
    BuildReport,
    SearchIndexService,
    snapshot_host_provider,
)

__all__ = [
    "BuildFatalError",
    "BuildReport",
    "SearchIndexService",
    "snapshot_host_provider",
]
