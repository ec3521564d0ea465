"""The scrape loop, its probes and the registration of server metrics."""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional, Protocol, TypeVar, Union

from nodemetrics.health import (
    CacheSyncWaiter,
    HealthCheckError,
    HealthChecker,
    NamedCheck,
    metadata_informer_sync_healthz,
)
from nodemetrics.metrics import Histogram, Registry, buckets_for_scrape_duration
from nodemetrics.storage import MetricsStorage, register_storage_metrics
from nodemetrics.types import MetricsBatch

logger = logging.getLogger(__name__)

T = TypeVar("T")
Duration = Union[timedelta, float, int]

_CACHE_SYNC_POLL_SECONDS = 0.1

# Replaced by register_server_metrics; unnamed, so it exposes nothing until then.
_tick_duration = Histogram()


class Controller(Protocol):
    """An informer that runs until stopped and reports whether it has synced."""

    def run(self, stop_event: threading.Event) -> None: ...

    def has_synced(self) -> bool: ...


class Scraper(Protocol):
    """Collects one batch of metrics within the given timeout."""

    def scrape(self, timeout: timedelta) -> MetricsBatch: ...


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _as_timedelta(duration: Duration) -> timedelta:
    if isinstance(duration, timedelta):
        return duration
    return timedelta(seconds=duration)


def register_server_metrics(registration_func: Callable[[Histogram], T], resolution: Duration) -> T:
    """Create the tick duration histogram and register it."""
    global _tick_duration
    _tick_duration = Histogram(
        namespace="metrics_server",
        subsystem="manager",
        name="tick_duration_seconds",
        help_text="The total time spent collecting and storing metrics in seconds.",
        buckets=buckets_for_scrape_duration(_as_timedelta(resolution)),
    )
    return registration_func(_tick_duration)


def register_metrics(registry: Registry, metric_resolution: Duration) -> None:
    """Register the server and storage metrics in the registry."""
    try:
        register_server_metrics(registry.register, metric_resolution)
    except ValueError as err:
        raise ValueError(f"unable to register server metrics: {err}") from err
    try:
        register_storage_metrics(registry.register)
    except ValueError as err:
        raise ValueError(f"unable to register storage metrics: {err}") from err


def _wait_for_cache_sync(stop_event: threading.Event, *synced: Callable[[], bool]) -> bool:
    while True:
        if all(has_synced() for has_synced in synced):
            return True
        if stop_event.wait(_CACHE_SYNC_POLL_SECONDS):
            return False


class Server:
    """Scrapes metrics on every resolution interval and stores them."""

    def __init__(
        self,
        nodes: Controller,
        pods: Controller,
        storage: MetricsStorage,
        scraper: Scraper,
        resolution: Duration,
        serve: Optional[Callable[[threading.Event], Any]] = None,
    ) -> None:
        self.resolution = _as_timedelta(resolution)
        if self.resolution <= timedelta(0):
            raise ValueError("metric resolution must be positive")
        self.nodes = nodes
        self.pods = pods
        self.storage = storage
        self.scraper = scraper
        self.serve = serve
        self.readyz_checks: list[HealthChecker] = []
        self.livez_checks: list[HealthChecker] = []
        self.healthz_checks: list[HealthChecker] = []
        self._tick_lock = threading.Lock()
        self._tick_last_start: Optional[datetime] = None

    @property
    def tick_last_start(self) -> Optional[datetime]:
        """Start time of the most recent tick, or None before the first."""
        with self._tick_lock:
            return self._tick_last_start

    def run_until(self, stop_event: threading.Event) -> None:
        """Start the informers and, once synced, the scrape loop and the server."""
        cancel = threading.Event()
        for controller in (self.nodes, self.pods):
            threading.Thread(target=controller.run, args=(stop_event,), daemon=True).start()
        if not _wait_for_cache_sync(stop_event, self.nodes.has_synced):
            return
        if not _wait_for_cache_sync(stop_event, self.pods.has_synced):
            return
        threading.Thread(target=self._run_scrape, args=(cancel,), daemon=True).start()
        try:
            if self.serve is None:
                stop_event.wait()
            else:
                self.serve(stop_event)
        finally:
            cancel.set()

    def _run_scrape(self, cancel: threading.Event) -> None:
        interval = self.resolution.total_seconds()
        self.tick(_now())
        next_due = time.monotonic() + interval
        while not cancel.wait(max(0.0, next_due - time.monotonic())):
            self.tick(_now())
            next_due += interval
            now = time.monotonic()
            # Like a ticker, skip the ticks that a slow cycle missed.
            while next_due <= now:
                next_due += interval

    def tick(self, start_time: Optional[datetime] = None) -> None:
        """Run one scrape-and-store cycle that began at ``start_time``."""
        if start_time is None:
            start_time = _now()
        with self._tick_lock:
            self._tick_last_start = start_time
        logger.debug("Scraping metrics")
        data = self.scraper.scrape(self.resolution)
        logger.debug("Storing metrics")
        self.storage.store(data)
        collect_time = _now() - start_time
        _tick_duration.observe(collect_time.total_seconds())
        logger.debug("Scraping cycle complete")

    @staticmethod
    def _add_checks(checks: list[HealthChecker], *new: HealthChecker) -> None:
        names = {check.name for check in checks}
        for check in new:
            if check.name in names:
                raise ValueError(f"health check {check.name!r} is already registered")
            names.add(check.name)
        checks.extend(new)

    def register_probes(self, waiter: CacheSyncWaiter) -> None:
        """Install the readiness, liveness and health probes."""
        self._add_checks(self.readyz_checks, self.probe_metric_storage_ready("metric-storage-ready"))
        self._add_checks(self.readyz_checks, self.probe_metric_cache_has_synced("metric-informer-sync"))
        self._add_checks(
            self.livez_checks, self.probe_metric_collection_timely("metric-collection-timely")
        )
        health = metadata_informer_sync_healthz("metadata-informer-sync", waiter)
        # General health checks also count towards liveness and readiness.
        for checks in (self.healthz_checks, self.livez_checks, self.readyz_checks):
            self._add_checks(checks, health)

    def probe_metric_collection_timely(self, name: str) -> NamedCheck:
        """Fails when the current tick has been running too long."""

        def check(_request: Any) -> None:
            last_start = self.tick_last_start
            max_tick_wait = self.resolution * 1.5
            if last_start is None:
                return
            tick_wait = _now() - last_start
            if tick_wait > max_tick_wait:
                err = HealthCheckError("metric collection didn't finish on time")
                logger.info(
                    "Failed probe %s: %s (duration=%s maxDuration=%s)",
                    name,
                    err,
                    tick_wait,
                    max_tick_wait,
                )
                raise err

        return NamedCheck(name, check)

    def probe_metric_storage_ready(self, name: str) -> NamedCheck:
        """Fails until the storage can serve metrics."""

        def check(_request: Any) -> None:
            if not self.storage.ready():
                err = HealthCheckError("no metrics to serve")
                logger.info("Failed probe %s: %s", name, err)
                raise err

        return NamedCheck(name, check)

    def probe_metric_cache_has_synced(self, name: str) -> NamedCheck:
        """Fails until both node and pod informer caches have synced."""

        def check(_request: Any) -> None:
            for controller, kind in ((self.nodes, "node"), (self.pods, "pod")):
                if not controller.has_synced():
                    err = HealthCheckError(f"cache for {kind} informer has not synced")
                    logger.info("Failed probe %s: %s", name, err)
                    raise err

        return NamedCheck(name, check)