from __future__ import annotations

import asyncio
import json
from pathlib import Path

import httpx

from backend.tour_search.config import AppConfig, load_config
from backend.tour_search.context import IndexBuildContext
from backend.tour_search.feeds import (
    ExternalFeedNormalizer,
    FeedLoader,
    FeedPayload,
    FeedSelection,
    rewrite_sheet_url,
)

DIRECTORY_URL = "https://tour.example.com/business-data/business.json"
SHEET_URL = "https://docs.google.com/spreadsheets/d/e/2PACX-abc/pubhtml"

BOTH = FeedSelection(directory_enabled=True, spreadsheet_enabled=True, primary="directory")


def _config(**sections) -> AppConfig:
    config = load_config()
    updates = {}
    for name, values in sections.items():
        updates[name] = getattr(config, name).model_copy(update=values)
    return config.model_copy(update=updates)


def _feeds_config(**service) -> AppConfig:
    return _config(
        directory={"enabled": True, "url": DIRECTORY_URL},
        spreadsheet={"enabled": True, "url": SHEET_URL},
        service=service or {},
    )


def _fetch(context: IndexBuildContext, selection: FeedSelection, handler, **kwargs) -> FeedPayload:
    async def _run() -> FeedPayload:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            loader = FeedLoader(context, client=client, **kwargs)
            return await loader.fetch_all(selection)

    return asyncio.run(_run())


def test_rewrite_sheet_url_variants() -> None:
    assert rewrite_sheet_url(SHEET_URL) == "https://docs.google.com/spreadsheets/d/e/2PACX-abc/pub?output=csv"
    assert (
        rewrite_sheet_url("https://docs.google.com/spreadsheets/d/e/2PACX-abc/pub?gid=0&single=true")
        == "https://docs.google.com/spreadsheets/d/e/2PACX-abc/pub?gid=0&single=true&output=csv"
    )
    assert (
        rewrite_sheet_url("https://docs.google.com/spreadsheets/d/abc123/edit#gid=77")
        == "https://docs.google.com/spreadsheets/d/abc123/export?format=csv&gid=77"
    )
    already = "https://docs.google.com/spreadsheets/d/e/2PACX-abc/pub?output=csv"
    assert rewrite_sheet_url(already) == already
    assert rewrite_sheet_url("https://example.com/data.csv") == "https://example.com/data.csv"


def test_fetches_both_feeds_concurrently() -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(str(request.url))
        if request.url.host == "tour.example.com":
            return httpx.Response(200, json=[{"id": "rm001", "name": "Grand Lobby"}, {"description": "no key"}])
        return httpx.Response(200, text="id,name\nrm002,Hall\n")

    context = IndexBuildContext(_feeds_config(), build_id="feeds")

    payload = _fetch(context, BOTH, handler)

    assert [record.id for record in payload.directory] == ["rm001"]
    assert [record.id for record in payload.spreadsheet] == ["rm002"]
    assert "https://docs.google.com/spreadsheets/d/e/2PACX-abc/pub?output=csv" in seen
    assert len(context.diagnostics) == 0


def test_failing_feed_contributes_nothing_and_records_diagnostic() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "tour.example.com":
            return httpx.Response(503, text="maintenance")
        return httpx.Response(200, text="id,name\nrm002,Hall\n")

    context = IndexBuildContext(_feeds_config(), build_id="feeds")

    payload = _fetch(context, BOTH, handler)

    assert payload.directory == []
    assert [record.id for record in payload.spreadsheet] == ["rm002"]
    (diagnostic,) = context.diagnostics.by_category("feed")
    assert diagnostic.details["source"] == "directory"
    assert "503" in diagnostic.details["error"]


def test_invalid_directory_payloads_are_rejected() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "tour.example.com":
            return httpx.Response(200, json={"id": "not-an-array"})
        return httpx.Response(200, text="{broken")

    selection = FeedSelection(directory_enabled=True, spreadsheet_enabled=True, primary="directory")
    config = _config(
        directory={"enabled": True, "url": DIRECTORY_URL},
        spreadsheet={"enabled": True, "url": "https://sheets.example.com/rows.json", "fetch_mode": "json"},
    )
    context = IndexBuildContext(config, build_id="feeds")

    payload = _fetch(context, selection, handler)

    assert payload == FeedPayload()
    assert len(context.diagnostics.by_category("feed")) == 2


def test_slow_feed_is_cut_off_at_deadline() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "tour.example.com":
            await asyncio.sleep(5)
        return httpx.Response(200, text="id\nrm002\n")

    context = IndexBuildContext(_feeds_config(feed_deadline_seconds=0.05), build_id="feeds")

    payload = _fetch(context, BOTH, handler)

    assert payload.directory == []
    assert [record.id for record in payload.spreadsheet] == ["rm002"]
    (diagnostic,) = context.diagnostics.by_category("feed")
    assert "deadline" in diagnostic.message


def test_disabled_feeds_are_not_requested() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError(f"unexpected request to {request.url}")

    selection = FeedSelection(directory_enabled=False, spreadsheet_enabled=False, primary="tour")
    context = IndexBuildContext(load_config(), build_id="feeds")

    assert _fetch(context, selection, handler) == FeedPayload()


def test_missing_url_is_reported() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    selection = FeedSelection(directory_enabled=True, spreadsheet_enabled=False, primary="directory")
    context = IndexBuildContext(_config(directory={"enabled": True, "url": ""}), build_id="feeds")

    assert _fetch(context, selection, handler).directory == []
    assert "not configured" in context.diagnostics.by_category("feed")[0].details["error"]


def test_local_directory_file_is_read_relative_to_base_path(tmp_path: Path) -> None:
    data_dir = tmp_path / "business-data"
    data_dir.mkdir()
    (data_dir / "business.json").write_text(json.dumps([{"id": "rm009", "name": "Gym"}]), encoding="utf-8")
    selection = FeedSelection(directory_enabled=True, spreadsheet_enabled=False, primary="directory")
    context = IndexBuildContext(
        _config(directory={"enabled": True, "url": "business-data/business.json"}), build_id="feeds"
    )

    async def _run() -> FeedPayload:
        return await FeedLoader(context, base_path=tmp_path).fetch_all(selection)

    payload = asyncio.run(_run())

    assert [record.name for record in payload.directory] == ["Gym"]


def test_badly_shaped_sheet_json_degrades_to_no_records() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"feed": {"entry": ["oops"]}})

    selection = FeedSelection(directory_enabled=False, spreadsheet_enabled=True, primary="tour")
    config = _config(spreadsheet={"enabled": True, "url": "https://sheets.example.com/rows.json", "fetch_mode": "json"})
    context = IndexBuildContext(config, build_id="feeds")

    payload = _fetch(context, selection, handler)

    assert payload == FeedPayload()
    assert context.diagnostics.by_category("feed") == []


class _BrokenNormalizer(ExternalFeedNormalizer):
    def normalize_spreadsheet(self, rows):
        raise AttributeError("'str' object has no attribute 'items'")


def test_unexpected_loader_error_becomes_feed_diagnostic() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "tour.example.com":
            return httpx.Response(200, json=[{"id": "rm001", "name": "Grand Lobby"}])
        return httpx.Response(200, text="id,name\nrm002,Hall\n")

    context = IndexBuildContext(_feeds_config(), build_id="feeds")

    payload = _fetch(context, BOTH, handler, normalizer=_BrokenNormalizer(context))

    assert [record.id for record in payload.directory] == ["rm001"]
    assert payload.spreadsheet == []
    (diagnostic,) = context.diagnostics.by_category("feed")
    assert diagnostic.details["source"] == "spreadsheet"
    assert diagnostic.details["error"].startswith("AttributeError")
