"""Single-flight orchestration of search index builds."""
from __future__ import annotations

import asyncio
import json
import logging
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx

from backend.tour_search.config import REPO_ROOT, AppConfig
from backend.tour_search.context import IndexBuildContext
from backend.tour_search.feeds import FeedLoader, FeedPayload, FeedSelection, select_feeds
from backend.tour_search.indexing import IndexBuilder, SearchIndex
from backend.tour_search.reconciliation import Matcher, Reconciler
from backend.tour_search.scene import SceneWalker, TypeClassifier, wait_until_ready

LOGGER = logging.getLogger(__name__)

HostProvider = Callable[[], Any]
ClientFactory = Callable[[], httpx.AsyncClient]


class BuildFatalError(RuntimeError):
    """Raised inside a build when no usable index can be produced."""


@dataclass(frozen=True)
class BuildReport:
    """Summary of one index build."""

    build_id: str
    status: str
    entries: int
    primary: str
    duration_ms: float
    diagnostics: List[Dict[str, Any]] = field(default_factory=list)
    coalesced: bool = False

    def as_dict(self) -> Dict[str, Any]:
        return {
            "build_id": self.build_id,
            "status": self.status,
            "entries": self.entries,
            "primary": self.primary,
            "duration_ms": self.duration_ms,
            "diagnostics": list(self.diagnostics),
            "coalesced": self.coalesced,
        }


def snapshot_host_provider(config: AppConfig) -> HostProvider:
    """Return a provider reading the host scene graph from a JSON snapshot.

    Relative snapshot paths resolve against the repository root. The provider
    returns ``None`` when no snapshot is configured.
    """

    def _provide() -> Any:
        raw_path = config.scene.snapshot_path
        if not raw_path:
            return None
        path = Path(raw_path).expanduser()
        if not path.is_absolute():
            path = REPO_ROOT / path
        with path.open("r", encoding="utf-8") as handle:
            return json.load(handle)

    return _provide


class SearchIndexService:
    """Own the active :class:`SearchIndex` and rebuild it one build at a time.

    A rebuild requested while another is running is coalesced into a single
    follow-up build. ``rebuild`` never raises: failures yield an empty index and
    a ``fatal`` diagnostic.
    """

    def __init__(
        self,
        config: AppConfig,
        *,
        host_provider: Optional[HostProvider] = None,
        client_factory: Optional[ClientFactory] = None,
        classifier: Optional[TypeClassifier] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ) -> None:
        self._config = config
        self._host_provider = host_provider or snapshot_host_provider(config)
        self._client_factory = client_factory
        self._classifier = classifier or TypeClassifier()
        self._sleep = sleep
        self._state_lock = threading.Lock()
        self._building = False
        self._pending = False
        self._index = SearchIndex.empty(config.search)
        self._last_report: Optional[BuildReport] = None

    @property
    def index(self) -> SearchIndex:
        return self._index

    @property
    def last_report(self) -> Optional[BuildReport]:
        return self._last_report

    @property
    def is_building(self) -> bool:
        with self._state_lock:
            return self._building

    def rebuild(self) -> BuildReport:
        """Run a build, or coalesce the request into the running one.

        Returns:
            BuildReport: Report of the build this call ran, or the latest
            report flagged ``coalesced`` when another caller owns the build.
        """
        with self._state_lock:
            if self._building:
                self._pending = True
                LOGGER.info("Index build already running; request coalesced")
                previous = self._last_report
                return BuildReport(
                    build_id=previous.build_id if previous else "",
                    status="coalesced",
                    entries=len(self._index),
                    primary=previous.primary if previous else "tour",
                    duration_ms=0.0,
                    coalesced=True,
                )
            self._building = True
        try:
            while True:
                report = self._run_build()
                with self._state_lock:
                    if not self._pending:
                        self._building = False
                        return report
                    self._pending = False
                LOGGER.info("Running coalesced follow-up index build")
        except BaseException:  # pragma: no cover - only interpreter shutdown reaches here
            with self._state_lock:
                self._building = False
                self._pending = False
            raise

    def search(self, term: str) -> List[Any]:
        return self._index.search(term)

    def _run_build(self) -> BuildReport:
        context = IndexBuildContext(self._config)
        start_time = time.monotonic()
        primary = "tour"
        try:
            index, primary = self._build(context)
            status = "ok" if len(index) else "empty"
        except BuildFatalError as exc:
            context.diagnostics.record("fatal", str(exc))
            index, status = SearchIndex.empty(self._config.search, build_id=context.build_id), "failed"
        except Exception as exc:  # noqa: BLE001 - a build failure must not reach the host
            LOGGER.exception("Unexpected failure during index build %s", context.build_id)
            context.diagnostics.record("fatal", "Unexpected build failure", error=str(exc))
            index, status = SearchIndex.empty(self._config.search, build_id=context.build_id), "failed"
        self._index = index
        duration_ms = (time.monotonic() - start_time) * 1000
        report = BuildReport(
            build_id=context.build_id,
            status=status,
            entries=len(index),
            primary=primary,
            duration_ms=duration_ms,
            diagnostics=[item.as_dict() for item in context.diagnostics.items],
        )
        self._last_report = report
        context.logger.info(
            "Index build finished",
            extra={"status": status, "entries": len(index), "duration_ms": duration_ms},
        )
        return report

    def _build(self, context: IndexBuildContext) -> Tuple[SearchIndex, str]:
        host = self._host_provider()
        if host is None:
            raise BuildFatalError("No host scene graph available")
        if wait_until_ready(host, context, sleep=self._sleep) is None:
            raise BuildFatalError("Host scene graph never became ready")
        entities = SceneWalker(context, self._classifier).collect_entities(host)
        if not entities:
            raise BuildFatalError("No navigable container found on host")

        selection = select_feeds(context)
        payload = self._fetch_feeds(context, selection)

        reconciler = Reconciler(context, selection=selection)
        eligible = reconciler.filter_entities(entities)
        plan = Matcher(context).assign([*payload.directory, *payload.spreadsheet], eligible)
        corpus = reconciler.reconcile(eligible, plan, selection.primary, filtered=True)
        return IndexBuilder(context).build(corpus), selection.primary

    def _fetch_feeds(self, context: IndexBuildContext, selection: FeedSelection) -> FeedPayload:
        if not (selection.directory_enabled or selection.spreadsheet_enabled):
            return FeedPayload()

        async def _fetch() -> FeedPayload:
            client = self._client_factory() if self._client_factory is not None else None
            try:
                return await FeedLoader(context, client=client).fetch_all(selection)
            finally:
                if client is not None:
                    await client.aclose()

        return asyncio.run(_fetch())


__all__ = ["BuildFatalError", "BuildReport", "SearchIndexService", "snapshot_host_provider"]
