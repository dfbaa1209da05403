#!/usr/bin/env python3
"""Build the tour search index from a scene snapshot and optionally query it."""
from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, List, Optional, Sequence

from backend.tour_search.config import ConfigError, load_config
from backend.tour_search.orchestration import SearchIndexService


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse command line arguments for the index builder.

    Returns:
        argparse.Namespace: Parsed command line arguments.
    """
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--scene", type=Path, required=True, help="Path to a JSON scene graph snapshot")
    parser.add_argument("--query", default=None, help="Optional search term to run against the index")
    parser.add_argument("--config", type=Path, default=None, help="Alternate config.yaml location")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def _load_scene(path: Path) -> Any:
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def format_groups(groups: Sequence[Any]) -> List[str]:
    """Render grouped results as indented text lines."""

    lines: List[str] = []
    for group in groups:
        lines.append(f"{group.title} ({len(group.entries)})")
        for entry in group.entries:
            suffix = f" - {entry.subtitle}" if entry.subtitle else ""
            lines.append(f"  {entry.label}{suffix}")
    return lines


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Entry point for the index builder CLI.

    Returns:
        int: Exit status code where ``0`` indicates success.
    """
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="[%(levelname)s] %(message)s",
    )
    try:
        config = load_config(args.config)
    except ConfigError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2
    try:
        scene = _load_scene(args.scene)
    except (OSError, ValueError) as exc:
        print(f"Unable to read scene snapshot {args.scene}: {exc}", file=sys.stderr)
        return 2

    service = SearchIndexService(config, host_provider=lambda: scene)
    report = service.rebuild()
    summary = service.index.summary()
    print(
        "Index build",
        f"status={report.status}",
        f"entries={report.entries}",
        f"primary={report.primary}",
        f"diagnostics={len(report.diagnostics)}",
    )
    for group_name, count in sorted(summary["groups"].items()):
        print(f"  {group_name}: {count}")
    for diagnostic in report.diagnostics:
        print(f"[{diagnostic['category']}] {diagnostic['message']}", file=sys.stderr)

    if args.query is not None:
        groups = service.index.group(service.index.search(args.query))
        print(f"Results for {args.query!r}:")
        for line in format_groups(groups) or ["  (no results)"]:
            print(line)
    return 0 if report.status != "failed" else 1


if __name__ == "__main__":
    raise SystemExit(main())
