"""Named health checks and the metadata informer sync check."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Protocol


class HealthCheckError(Exception):
    """Raised by a health check that does not pass."""


class HealthChecker(Protocol):
    """A named check that raises :class:`HealthCheckError` when unhealthy."""

    name: str

    def check(self, request: Any = None) -> None: ...


class CacheSyncWaiter(Protocol):
    """Reports, per informer, whether its cache has synced."""

    def wait_for_cache_sync(self, stop_event: threading.Event) -> Mapping[Any, bool]: ...


@dataclass(frozen=True)
class NamedCheck:
    """A health check built from a name and a function that raises on failure."""

    name: str
    check_func: Callable[[Any], None]

    def check(self, request: Any = None) -> None:
        self.check_func(request)


@dataclass(frozen=True)
class MetadataInformerSync:
    """Passes only once every informer of the waiter has synced."""

    name: str
    cache_sync_waiter: CacheSyncWaiter

    def check(self, request: Any = None) -> None:
        # An already set event makes the waiter report the current state at once.
        stop_event = threading.Event()
        stop_event.set()
        synced = self.cache_sync_waiter.wait_for_cache_sync(stop_event)
        not_started = [str(informer) for informer, started in synced.items() if not started]
        if not_started:
            raise HealthCheckError(
                f"{len(not_started)} informers not started yet: [{' '.join(not_started)}]"
            )


def metadata_informer_sync_healthz(
    name: str, cache_sync_waiter: CacheSyncWaiter
) -> MetadataInformerSync:
    """Return a check that passes only if all informers of the waiter have synced."""
    return MetadataInformerSync(name=name, cache_sync_waiter=cache_sync_waiter)