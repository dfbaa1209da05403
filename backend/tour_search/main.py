"""FastAPI application factory for the tour search backend."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from starlette.concurrency import run_in_threadpool

from backend.tour_search.config import AppConfig, load_config
from backend.tour_search.contracts import CorpusEntry
from backend.tour_search.indexing import ResultGroup
from backend.tour_search.orchestration import SearchIndexService

LOGGER = logging.getLogger(__name__)


class EntryPayload(BaseModel):
    """Serialized corpus entry returned to the presentation layer."""

    type: str
    group: str
    label: str
    subtitle: str = ""
    tags: List[str] = Field(default_factory=list)
    image_url: str = ""
    parent_label: str = ""
    sort_key: int
    search_boost: float
    origin: List[str] = Field(default_factory=list)
    native_id: Optional[str] = None
    record_id: Optional[str] = None
    standalone: bool = False


class GroupPayload(BaseModel):
    """Result group with its display title."""

    type: str
    title: str
    entries: List[EntryPayload]


class SearchResponse(BaseModel):
    """Grouped search results."""

    query: str
    total: int
    groups: List[GroupPayload]


class EntriesResponse(BaseModel):
    """Whole corpus in presentation order."""

    total: int
    entries: List[EntryPayload]


class RelatedResponse(BaseModel):
    """Entries related to a selected one, most similar first."""

    label: str
    total: int
    entries: List[EntryPayload]


class RebuildResponse(BaseModel):
    """Outcome of a rebuild request."""

    build_id: str
    status: str
    entries: int
    primary: str
    duration_ms: float
    coalesced: bool = False
    diagnostics: List[Dict[str, Any]] = Field(default_factory=list)


def _entry_payload(entry: CorpusEntry) -> EntryPayload:
    return EntryPayload(
        type=entry.type.value,
        group=entry.group,
        label=entry.label,
        subtitle=entry.subtitle,
        tags=list(entry.tags),
        image_url=entry.image_url,
        parent_label=entry.parent_label,
        sort_key=entry.sort_key,
        search_boost=entry.search_boost,
        origin=sorted(entry.origin),
        native_id=entry.entity.native_id if entry.entity is not None else None,
        record_id=(entry.record.id or None) if entry.record is not None else None,
        standalone=entry.is_standalone,
    )


def _group_payload(group: ResultGroup) -> GroupPayload:
    return GroupPayload(
        type=group.type,
        title=group.title,
        entries=[_entry_payload(entry) for entry in group.entries],
    )


def create_app(
    config: AppConfig | None = None,
    service: Optional[SearchIndexService] = None,
) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        config: Optional pre-loaded configuration. If omitted, the default
            configuration defined in config.yaml is used.
        service: Optional index service. When omitted one is built from the
            configuration, reading the scene snapshot configured under
            ``scene.snapshot_path``.

    Returns:
        FastAPI: Configured FastAPI application.
    """

    resolved_config = config or load_config()
    app = FastAPI(title="Tour Search API", version=resolved_config.pipeline.version)
    app.state.app_config = resolved_config
    app.state.index_service = service or SearchIndexService(resolved_config)

    allowed_origins = resolved_config.service.allowed_origins
    if allowed_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=allowed_origins,
            allow_credentials=False,
            allow_methods=["GET", "POST"],
            allow_headers=["*"],
        )

    if resolved_config.service.build_on_startup:

        @app.on_event("startup")
        async def _initial_build() -> None:
            report = await run_in_threadpool(app.state.index_service.rebuild)
            LOGGER.info(
                "Initial index build completed",
                extra={"build_id": report.build_id, "status": report.status, "entries": report.entries},
            )

    def _service(request: Request) -> SearchIndexService:
        index_service: Optional[SearchIndexService] = getattr(request.app.state, "index_service", None)
        if index_service is None:
            raise HTTPException(status_code=503, detail="Search index service unavailable")
        return index_service

    @app.get("/health", tags=["system"], summary="Service health probe")
    def health() -> dict[str, str]:
        """Return service health information."""

        return {"status": "ok", "pipeline_version": resolved_config.pipeline.version}

    @app.get("/api/search", tags=["search"], summary="Search the tour index", response_model=SearchResponse)
    def search(
        request: Request,
        q: str = Query("", description="Search term; '*' lists everything"),
    ) -> SearchResponse:
        """Return grouped results for ``q``."""

        index = _service(request).index
        results = index.search(q)
        groups = index.group(results)
        return SearchResponse(
            query=q,
            total=sum(len(group.entries) for group in groups),
            groups=[_group_payload(group) for group in groups],
        )

    @app.get("/api/entries", tags=["search"], summary="List every indexed entry", response_model=EntriesResponse)
    def entries(request: Request) -> EntriesResponse:
        """Return the corpus in presentation order."""

        all_entries = _service(request).index.get_all()
        return EntriesResponse(total=len(all_entries), entries=[_entry_payload(entry) for entry in all_entries])

    @app.get("/api/related", tags=["search"], summary="Entries related to one entry", response_model=RelatedResponse)
    def related(
        request: Request,
        label: str = Query(..., min_length=1, description="Label of the selected entry"),
        parent_label: Optional[str] = Query(None, description="Parent scene label of the selected entry"),
        limit: Optional[int] = Query(None, ge=1, description="Maximum number of related entries"),
    ) -> RelatedResponse:
        """Return entries related to the entry labeled ``label``."""

        index = _service(request).index
        selected = index.find(label, parent_label)
        if selected is None:
            raise HTTPException(status_code=404, detail=f"No entry labeled '{label}'")
        matches = index.related(selected, limit)
        return RelatedResponse(
            label=selected.label,
            total=len(matches),
            entries=[_entry_payload(entry) for entry in matches],
        )

    @app.post(
        "/api/index/rebuild",
        tags=["index"],
        summary="Rebuild the search index",
        response_model=RebuildResponse,
    )
    def rebuild(request: Request) -> RebuildResponse:
        """Run a rebuild, coalescing with one already in flight."""

        report = _service(request).rebuild()
        return RebuildResponse(**report.as_dict())

    @app.get("/api/index/diagnostics", tags=["index"], summary="Diagnostics from the latest build")
    def diagnostics(request: Request) -> Dict[str, Any]:
        """Return the latest build report, or an idle status before the first build."""

        report = _service(request).last_report
        if report is None:
            return {"status": "idle", "diagnostics": []}
        return report.as_dict()

    return app


__all__ = ["create_app"]
