"""Concurrent, time-bounded retrieval of the external data feeds."""
from __future__ import annotations

import asyncio
import csv
import json
import re
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, List, Optional
from urllib.parse import parse_qs, urlencode, urlsplit

import httpx

from backend.tour_search.config import REPO_ROOT
from backend.tour_search.context import IndexBuildContext
from backend.tour_search.contracts import ExternalRecord

from .normalizer import ExternalFeedNormalizer
from .selection import FeedSelection

_SHEET_PATH = re.compile(r"/spreadsheets/d/(e/)?([a-zA-Z0-9_-]+)")
_GID = re.compile(r"gid=(\d+)")


class FeedError(RuntimeError):
    """Raised when a feed cannot be fetched or decoded."""


@dataclass(frozen=True)
class FeedPayload:
    """Normalized records retrieved for one build."""

    directory: List[ExternalRecord] = field(default_factory=list)
    spreadsheet: List[ExternalRecord] = field(default_factory=list)


def rewrite_sheet_url(url: str) -> str:
    """Rewrite a published or editor spreadsheet URL to its raw CSV export form.

    Args:
        url: URL configured for the spreadsheet feed.

    Returns:
        str: URL that serves CSV; unrelated URLs are returned unchanged.
    """
    if "docs.google.com/spreadsheets/" not in url:
        return url
    parts = urlsplit(url)
    query = parse_qs(parts.query)
    match = _SHEET_PATH.search(parts.path)
    if match is None:
        return url
    published, sheet_id = match.groups()
    if published or "/pub" in parts.path:
        if query.get("output") == ["csv"]:
            return url
        query["output"] = ["csv"]
        base = re.sub(r"/pub(html)?$", "", parts.path.rstrip("/"))
        return f"{parts.scheme}://{parts.netloc}{base}/pub?{urlencode(query, doseq=True)}"
    if "/export" in parts.path:
        return url
    gid_match = _GID.search(parts.fragment) or _GID.search(parts.query)
    export = f"https://docs.google.com/spreadsheets/d/{sheet_id}/export?format=csv"
    if gid_match:
        export = f"{export}&gid={gid_match.group(1)}"
    return export


def _is_remote(location: str) -> bool:
    return urlsplit(location).scheme in {"http", "https"}


class FeedLoader:
    """Fetch and normalize the enabled feeds concurrently."""

    def __init__(
        self,
        context: IndexBuildContext,
        normalizer: Optional[ExternalFeedNormalizer] = None,
        *,
        client: Optional[httpx.AsyncClient] = None,
        base_path: Optional[Path] = None,
    ) -> None:
        self._context = context
        self._config = context.config
        self._normalizer = normalizer or ExternalFeedNormalizer(context)
        self._client = client
        self._base_path = base_path or REPO_ROOT
        self._log = context.logger

    async def fetch_all(self, selection: FeedSelection) -> FeedPayload:
        """Fetch every enabled feed within the configured deadline.

        Args:
            selection: Active feeds after conflict resolution.

        Returns:
            FeedPayload: Normalized records; a failing feed contributes nothing.
        """
        deadline = self._config.service.feed_deadline_seconds
        should_close = self._client is None
        client = self._client or httpx.AsyncClient(follow_redirects=True)
        try:
            directory_task = (
                self._guard("directory", self._load_directory(client), deadline)
                if selection.directory_enabled
                else self._empty()
            )
            spreadsheet_task = (
                self._guard("spreadsheet", self._load_spreadsheet(client), deadline)
                if selection.spreadsheet_enabled
                else self._empty()
            )
            directory, spreadsheet = await asyncio.gather(directory_task, spreadsheet_task)
        finally:
            if should_close:
                await client.aclose()
        return FeedPayload(directory=directory, spreadsheet=spreadsheet)

    @staticmethod
    async def _empty() -> List[ExternalRecord]:
        return []

    async def _guard(
        self, source: str, loader: Awaitable[List[ExternalRecord]], deadline: float
    ) -> List[ExternalRecord]:
        start_time = time.monotonic()
        try:
            records = await asyncio.wait_for(loader, timeout=deadline)
        except asyncio.TimeoutError:
            self._context.diagnostics.record(
                "feed", f"{source} feed exceeded the {deadline:g}s deadline", source=source
            )
            return []
        except (FeedError, httpx.HTTPError, OSError, ValueError, csv.Error) as exc:
            self._context.diagnostics.record("feed", f"{source} feed unavailable", source=source, error=str(exc))
            return []
        except Exception as exc:  # noqa: BLE001
            self._log.exception("Unexpected failure while loading the %s feed", source)
            self._context.diagnostics.record(
                "feed", f"{source} feed unavailable", source=source, error=f"{type(exc).__name__}: {exc}"
            )
            return []
        latency_ms = (time.monotonic() - start_time) * 1000
        self._log.info(
            "Loaded %s feed",
            source,
            extra={"source": source, "records": len(records), "latency_ms": latency_ms},
        )
        return records

    async def _load_directory(self, client: httpx.AsyncClient) -> List[ExternalRecord]:
        settings = self._config.directory
        if not settings.url:
            raise FeedError("Directory feed URL is not configured")
        text = await self._read(client, settings.url, settings.timeout_seconds)
        try:
            payload = json.loads(text)
        except ValueError as exc:
            raise FeedError("Directory feed is not valid JSON") from exc
        if not isinstance(payload, list):
            raise FeedError("Directory feed must be a JSON array")
        return self._normalizer.normalize_directory(payload)

    async def _load_spreadsheet(self, client: httpx.AsyncClient) -> List[ExternalRecord]:
        settings = self._config.spreadsheet
        if not settings.url:
            raise FeedError("Spreadsheet feed URL is not configured")
        url = rewrite_sheet_url(settings.url) if settings.fetch_mode == "csv" else settings.url
        if url != settings.url:
            self._log.debug("Spreadsheet URL rewritten to %s", url)
        text = await self._read(client, url, settings.timeout_seconds)
        rows: List[Any]
        if settings.fetch_mode == "csv":
            rows = self._normalizer.parse_delimited(text, settings.csv_options)
        else:
            try:
                payload = json.loads(text)
            except ValueError as exc:
                raise FeedError("Spreadsheet feed is not valid JSON") from exc
            rows = self._normalizer.parse_sheet_json(payload)
        return self._normalizer.normalize_spreadsheet(rows)

    async def _read(self, client: httpx.AsyncClient, location: str, timeout: float) -> str:
        if not _is_remote(location):
            path = Path(location).expanduser()
            if not path.is_absolute():
                path = self._base_path / path
            return await asyncio.to_thread(path.read_text, encoding="utf-8")
        response = await client.get(location, timeout=timeout)
        if not response.is_success:
            raise FeedError(f"{location} returned {response.status_code}")
        return response.text


__all__ = ["FeedError", "FeedLoader", "FeedPayload", "rewrite_sheet_url"]
