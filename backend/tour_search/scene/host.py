"""Tolerant accessors over the loosely-typed host scene graph."""
from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, Iterable, List, Optional

LOGGER = logging.getLogger(__name__)

_MISSING = object()


class HostAccessError(RuntimeError):
    """Raised when a host node cannot be introspected."""


def _raw_field(node: Any, name: str) -> Any:
    if node is None:
        return _MISSING
    if isinstance(node, Mapping):
        return node.get(name, _MISSING)
    getter = getattr(node, "get", None)
    if callable(getter):
        try:
            value = getter(name)
        except (KeyError, TypeError, AttributeError):
            value = None
        if value is not None:
            return value
    return getattr(node, name, _MISSING)


def read_field(node: Any, name: str, default: Any = None) -> Any:
    """Read ``name`` from a host node.

    The host exposes values through ``.get(name)`` accessors, mapping keys or
    plain attributes; all three are tried.

    Args:
        node: Host object, mapping, or ``None``.
        name: Field name to read.
        default: Value returned when the field is absent.

    Returns:
        Any: The field value or ``default``.

    Raises:
        HostAccessError: If the host raises while the field is read.
    """
    try:
        value = _raw_field(node, name)
    except HostAccessError:
        raise
    except Exception as exc:  # noqa: BLE001 - host objects are opaque
        raise HostAccessError(f"Unable to read '{name}' from host node") from exc
    if value is _MISSING or value is None:
        return default
    return value


def read_path(node: Any, *names: str, default: Any = None) -> Any:
    """Follow a dotted chain of fields, returning ``default`` on the first gap."""

    current = node
    for name in names:
        current = read_field(current, name)
        if current is None:
            return default
    return current


def read_text(node: Any, name: str) -> str:
    """Read a field and coerce it to a stripped string."""

    value = read_field(node, name)
    if value is None or isinstance(value, (Mapping, list, tuple)):
        return ""
    return str(value).strip()


def read_list(node: Any, name: str) -> List[Any]:
    """Read a list-like field, returning an empty list when absent."""

    value = read_field(node, name)
    if value is None or isinstance(value, (str, bytes, Mapping)):
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    try:
        return list(value)
    except TypeError:
        return []


def class_name(node: Any) -> str:
    """Return the host-declared class of a node (``class`` or ``className``)."""

    for name in ("class", "className"):
        value = read_text(node, name)
        if value:
            return value
    return ""


def node_label(node: Any) -> str:
    """Return ``data.label`` falling back to ``label``."""

    data = read_field(node, "data")
    label = read_text(data, "label") if data is not None else ""
    return label or read_text(node, "label")


def node_subtitle(node: Any) -> str:
    """Return ``data.subtitle`` falling back to ``subtitle``."""

    data = read_field(node, "data")
    subtitle = read_text(data, "subtitle") if data is not None else ""
    return subtitle or read_text(node, "subtitle")


def node_tags(node: Any) -> List[str]:
    """Return the node's tags from ``data.tags`` or ``tags``."""

    data = read_field(node, "data")
    raw: Iterable[Any] = read_list(data, "tags") if data is not None else []
    if not raw:
        raw = read_list(node, "tags")
    tags: List[str] = []
    for tag in raw:
        text = str(tag).strip() if tag is not None else ""
        if text and text not in tags:
            tags.append(text)
    return tags


def node_id(node: Any) -> Optional[str]:
    """Return the node identifier as a string, or ``None``."""

    value = read_field(node, "id")
    if value is None:
        return None
    text = str(value).strip()
    return text or None


__all__ = [
    "HostAccessError",
    "class_name",
    "node_id",
    "node_label",
    "node_subtitle",
    "node_tags",
    "read_field",
    "read_list",
    "read_path",
    "read_text",
]
