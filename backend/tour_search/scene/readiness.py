"""Host readiness probes tried with bounded exponential backoff."""
from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence

from backend.tour_search.config import ReadinessConfig
from backend.tour_search.context import IndexBuildContext

from .host import HostAccessError, read_field, read_list, read_path

SleepFn = Callable[[float], None]


@dataclass(frozen=True, slots=True)
class ReadinessProbe:
    """Idempotent check that the host scene graph can be walked."""

    name: str
    check: Callable[[Any], bool]

    def is_ready(self, host: Any) -> bool:
        try:
            return bool(self.check(host))
        except HostAccessError:
            return False


def _main_playlist_items(host: Any) -> bool:
    return bool(read_list(read_field(host, "mainPlayList"), "items"))


def _root_playlist_items(host: Any) -> bool:
    return bool(read_list(read_path(host, "locManager", "rootPlayer", "mainPlayList"), "items"))


def _registry_has_playlists(host: Any) -> bool:
    player = read_field(host, "player")
    if player is None:
        return False
    lookup = read_field(player, "getByClassName")
    if callable(lookup):
        return bool(lookup("PlayList"))
    return any(read_field(obj, "class") == "PlayList" for obj in read_list(player, "objects"))


DEFAULT_PROBES: Sequence[ReadinessProbe] = (
    ReadinessProbe("main_playlist_items", _main_playlist_items),
    ReadinessProbe("root_playlist_items", _root_playlist_items),
    ReadinessProbe("registry_has_playlists", _registry_has_playlists),
)


def backoff_delays(settings: ReadinessConfig) -> Sequence[float]:
    """Return the sleep schedule between readiness attempts."""

    delays = []
    delay = settings.initial_delay_seconds
    for _ in range(settings.max_attempts - 1):
        delays.append(min(delay, settings.max_delay_seconds))
        delay *= settings.backoff_factor
    return delays


def wait_until_ready(
    host: Any,
    context: IndexBuildContext,
    *,
    probes: Sequence[ReadinessProbe] = DEFAULT_PROBES,
    sleep: Optional[SleepFn] = None,
) -> Optional[str]:
    """Poll the ranked probes until one reports the host as ready.

    Args:
        host: Host scene graph handle.
        context: Active build context.
        probes: Probes ranked from most to least specific.
        sleep: Injectable sleep function, ``time.sleep`` by default.

    Returns:
        Optional[str]: Name of the first probe that succeeded, or ``None`` when
        the attempts are exhausted.
    """
    sleeper = sleep or time.sleep
    settings = context.config.scene.readiness
    delays = list(backoff_delays(settings))
    for attempt in range(settings.max_attempts):
        for probe in probes:
            if probe.is_ready(host):
                context.logger.debug("Host ready via probe %s after %d attempt(s)", probe.name, attempt + 1)
                return probe.name
        if attempt < len(delays):
            sleeper(delays[attempt])
    context.logger.warning("Host not ready after %d attempt(s)", settings.max_attempts)
    return None


__all__ = ["DEFAULT_PROBES", "ReadinessProbe", "backoff_delays", "wait_until_ready"]
