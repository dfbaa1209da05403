"""Normalization of directory and spreadsheet feed rows into external records."""
from __future__ import annotations

import csv
import io
import re
from collections.abc import Mapping
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from pydantic import ValidationError

from backend.tour_search.config import CSVOptions
from backend.tour_search.context import IndexBuildContext
from backend.tour_search.contracts import ExternalRecord, FeedSource

Row = Union[Mapping[str, Any], Sequence[Any]]

_NUMBER_PATTERN = re.compile(r"^[-+]?\d+(\.\d+)?$")

HEADERLESS_COLUMNS = ("id", "tag", "name", "description", "image_url", "element_type")

HEADER_ALIASES: Dict[str, str] = {
    "id": "id",
    "tag": "tag",
    "matchtag": "tag",
    "tags": "tags",
    "matchtags": "tags",
    "name": "name",
    "description": "description",
    "image": "image_url",
    "imageurl": "image_url",
    "localimage": "image_url",
    "type": "element_type",
    "elementtype": "element_type",
}

IDENTIFIER_FIELDS = ("id", "tag")


def canonical_header(header: Any) -> Optional[str]:
    """Map a raw column header onto a canonical field name.

    Matching ignores case, whitespace, underscores and hyphens, so ``Image URL``,
    ``image_url`` and ``imageUrl`` all resolve to ``image_url``.
    """

    if header is None:
        return None
    compact = re.sub(r"[\s_\-]+", "", str(header)).lower()
    return HEADER_ALIASES.get(compact)


def coerce_token(token: str) -> Any:
    """Convert numeric and boolean tokens the way auto-typing parsers do."""

    stripped = token.strip()
    if _NUMBER_PATTERN.match(stripped):
        if "." in stripped:
            return float(stripped)
        return int(stripped)
    lowered = stripped.lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    return stripped


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def _split_tags(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [_as_text(item) for item in value if _as_text(item)]
    return [part.strip() for part in _as_text(value).split(",") if part.strip()]


class ExternalFeedNormalizer:
    """Turn heterogeneous feed payloads into :class:`ExternalRecord` lists."""

    def __init__(self, context: IndexBuildContext) -> None:
        self._context = context
        self._log = context.logger
        self.dropped_rows: Dict[str, int] = {"directory": 0, "spreadsheet": 0}

    def parse_delimited(self, text: str, options: Optional[CSVOptions] = None) -> List[Row]:
        """Parse delimited text into rows.

        Args:
            text: Raw CSV (or other delimiter) content.
            options: Parsing switches; defaults to :class:`CSVOptions`.

        Returns:
            List[Row]: Header-keyed mappings when ``options.header`` is set,
            positional lists otherwise.
        """
        settings = options or CSVOptions()
        reader = csv.reader(io.StringIO(text), delimiter=settings.delimiter, skipinitialspace=True)
        raw_rows: List[List[str]] = []
        for raw in reader:
            if settings.skip_empty_lines and not any(cell.strip() for cell in raw):
                continue
            raw_rows.append(raw)
        headers: List[str] = []
        if settings.header and raw_rows:
            headers = [cell.strip() for cell in raw_rows.pop(0)]
        rows: List[Row] = []
        for raw in raw_rows:
            values: List[Any] = [
                coerce_token(cell) if settings.dynamic_typing else cell.strip() for cell in raw
            ]
            if settings.header:
                rows.append({header: values[index] for index, header in enumerate(headers) if index < len(values)})
            else:
                rows.append(values)
        return rows

    def parse_sheet_json(self, payload: Any) -> List[Row]:
        """Flatten the JSON shapes produced by published spreadsheets.

        Accepts the legacy ``feed.entry`` layout with ``gsx$`` keys, the
        ``values`` matrix whose first row is the header, and plain arrays.
        """

        if isinstance(payload, Mapping):
            feed = payload.get("feed")
            if isinstance(feed, Mapping) and isinstance(feed.get("entry"), list):
                rows: List[Row] = []
                for position, entry in enumerate(feed["entry"]):
                    if not isinstance(entry, Mapping):
                        self._log.warning("Skipping spreadsheet entry %d: not an object", position)
                        continue
                    row: Dict[str, Any] = {}
                    for key, cell in entry.items():
                        if not str(key).startswith("gsx$"):
                            continue
                        row[key[4:]] = cell.get("$t") if isinstance(cell, Mapping) else cell
                    rows.append(row)
                return rows
            values = payload.get("values")
            if isinstance(values, list):
                if not values:
                    return []
                if not isinstance(values[0], list):
                    self._log.warning("Spreadsheet values matrix has no header row")
                    return []
                headers = [str(header) for header in values[0]]
                matrix: List[Row] = []
                for position, row in enumerate(values[1:], start=1):
                    if not isinstance(row, list):
                        self._log.warning("Skipping spreadsheet values row %d: not a list", position)
                        continue
                    matrix.append(
                        {header: (row[index] if index < len(row) else None) for index, header in enumerate(headers)}
                    )
                return matrix
            return [payload]
        if isinstance(payload, list):
            return list(payload)
        self._log.warning("Unsupported spreadsheet JSON payload of type %s", type(payload).__name__)
        return []

    def normalize_directory(self, rows: Iterable[Row]) -> List[ExternalRecord]:
        """Normalize directory feed rows."""

        return self._normalize("directory", rows)

    def normalize_spreadsheet(self, rows: Iterable[Row]) -> List[ExternalRecord]:
        """Normalize spreadsheet feed rows (header-keyed or positional)."""

        return self._normalize("spreadsheet", rows)

    def _normalize(self, source: FeedSource, rows: Iterable[Row]) -> List[ExternalRecord]:
        records: List[ExternalRecord] = []
        dropped = 0
        for row in rows:
            fields = self._map_row(row)
            record = self._build_record(source, fields, len(records))
            if record is None or not record.has_key:
                dropped += 1
                continue
            records.append(record)
        self.dropped_rows[source] += dropped
        if dropped:
            self._log.warning("Dropped %d %s row(s) without id, tag or name", dropped, source)
        self._log.info("Normalized %d %s record(s)", len(records), source)
        return records

    @staticmethod
    def _map_row(row: Row) -> Dict[str, Any]:
        fields: Dict[str, Any] = {}
        if isinstance(row, Mapping):
            for header, value in row.items():
                name = canonical_header(header)
                if name is None:
                    continue
                if name == "tags":
                    fields.setdefault("tags", []).extend(_split_tags(value))
                elif name not in fields or not _as_text(fields[name]):
                    fields[name] = value
            return fields
        if isinstance(row, (list, tuple)):
            for index, value in enumerate(row[: len(HEADERLESS_COLUMNS)]):
                fields[HEADERLESS_COLUMNS[index]] = value
        return fields

    def _build_record(self, source: FeedSource, fields: Dict[str, Any], position: int) -> Optional[ExternalRecord]:
        # a single tag cell may still hold a comma-separated list
        tags = _split_tags(fields.get("tag"))
        tags.extend(fields.get("tags", []))
        element_type = _as_text(fields.get("element_type")) or None
        try:
            return ExternalRecord(
                source=source,
                id=_as_text(fields.get("id")),
                match_tags=tuple(tags),
                name=_as_text(fields.get("name")),
                description=_as_text(fields.get("description")),
                image_url=_as_text(fields.get("image_url")),
                declared_element_type=element_type,
                position=position,
            )
        except ValidationError as exc:
            self._log.warning("Invalid %s row skipped: %s", source, exc)
            return None


__all__ = [
    "ExternalFeedNormalizer",
    "HEADERLESS_COLUMNS",
    "HEADER_ALIASES",
    "canonical_header",
    "coerce_token",
]
