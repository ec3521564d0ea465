"""In-memory storage of the last two metric scrapes for nodes and pods."""

from __future__ import annotations

import dataclasses
import logging
import threading
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Callable, TypeVar, Union

from nodemetrics.metrics import GaugeVec
from nodemetrics.types import (
    ZERO_TIME,
    ContainerMetrics,
    MetricsBatch,
    MetricsPoint,
    NamespacedName,
    Node,
    NodeMetrics,
    PodMetadata,
    PodMetrics,
    PodMetricsPoint,
    ResourceUsageError,
    TimeInfo,
    resource_usage,
)

logger = logging.getLogger(__name__)

# A fresh container needs at least this long between start and measurement
# before its start time can stand in for a previous point.
FRESH_CONTAINER_MIN_METRICS_RESOLUTION = timedelta(seconds=10)

POINTS_STORED = GaugeVec(
    namespace="metrics_server",
    subsystem="storage",
    name="points",
    help_text="Number of metrics points stored.",
    label_name="type",
)

T = TypeVar("T")


def register_storage_metrics(registration_func: Callable[[GaugeVec], T]) -> T:
    """Register the gauge counting stored metric points."""
    return registration_func(POINTS_STORED)


def _as_timedelta(duration: Union[timedelta, float, int]) -> timedelta:
    if isinstance(duration, timedelta):
        return duration
    return timedelta(seconds=duration)


class MetricsStorage(ABC):
    """What the server needs from a metrics store."""

    @abstractmethod
    def store(self, batch: MetricsBatch) -> None: ...

    @abstractmethod
    def ready(self) -> bool: ...

    @abstractmethod
    def get_node_metrics(self, *nodes: Node) -> list[NodeMetrics]: ...

    @abstractmethod
    def get_pod_metrics(self, *pods: PodMetadata) -> list[PodMetrics]: ...


class NodeStorage:
    """Keeps the last two node points and derives usage from them.

    A point is only kept if it is newer than what is already stored.
    """

    def __init__(self) -> None:
        self.last: dict[str, MetricsPoint] = {}
        self.prev: dict[str, MetricsPoint] = {}

    def get_metrics(self, *nodes: Node) -> list[NodeMetrics]:
        results: list[NodeMetrics] = []
        for node in nodes:
            last = self.last.get(node.name)
            prev = self.prev.get(node.name)
            if last is None or prev is None:
                continue
            try:
                usage, time_info = resource_usage(last, prev)
            except ResourceUsageError as err:
                logger.error("Skipping node usage metric for node %s: %s", node.name, err)
                continue
            results.append(
                NodeMetrics(
                    name=node.name,
                    labels=node.labels,
                    timestamp=time_info.timestamp,
                    window=time_info.window,
                    usage=usage,
                )
            )
        return results

    def store(self, batch: MetricsBatch) -> None:
        last_nodes: dict[str, MetricsPoint] = {}
        prev_nodes: dict[str, MetricsPoint] = {}
        for node_name, new_point in batch.nodes.items():
            last_nodes[node_name] = new_point
            stored_last = self.last.get(node_name)
            if stored_last is None:
                continue
            if new_point.timestamp > stored_last.timestamp:
                prev_nodes[node_name] = stored_last
                continue
            stored_prev = self.prev.get(node_name)
            if stored_prev is None:
                continue
            if stored_prev.timestamp < new_point.timestamp:
                prev_nodes[node_name] = stored_prev
            else:
                logger.info(
                    "Found new node metrics point is older than stored previous, "
                    "drop previous: node=%s previousTimestamp=%s timestamp=%s",
                    node_name,
                    stored_prev.timestamp,
                    new_point.timestamp,
                )
        self.last = last_nodes
        self.prev = prev_nodes
        # Only count nodes for which metrics can be returned.
        POINTS_STORED.set("node", len(prev_nodes))


class PodStorage:
    """Keeps the last two container points of each pod and derives usage.

    Previous points share the start time of the last ones, so no restart
    lies between them.
    """

    def __init__(self, metric_resolution: Union[timedelta, float, int]) -> None:
        self.metric_resolution = _as_timedelta(metric_resolution)
        self.last: dict[NamespacedName, PodMetricsPoint] = {}
        self.prev: dict[NamespacedName, PodMetricsPoint] = {}

    def get_metrics(self, *pods: PodMetadata) -> list[PodMetrics]:
        results: list[PodMetrics] = []
        for pod in pods:
            ref = NamespacedName(namespace=pod.namespace, name=pod.name)
            last_pod = self.last.get(ref)
            prev_pod = self.prev.get(ref)
            if last_pod is None or prev_pod is None:
                continue
            containers: list[ContainerMetrics] = []
            earliest = TimeInfo()
            all_present = True
            for name, last_container in last_pod.containers.items():
                prev_container = prev_pod.containers.get(name)
                if prev_container is None:
                    all_present = False
                    break
                try:
                    usage, time_info = resource_usage(last_container, prev_container)
                except ResourceUsageError as err:
                    logger.error(
                        "Skipping container usage metric for container %s in pod %s: %s",
                        name,
                        ref,
                        err,
                    )
                    continue
                containers.append(ContainerMetrics(name=name, usage=usage))
                if earliest.timestamp == ZERO_TIME or earliest.timestamp > time_info.timestamp:
                    earliest = time_info
            if all_present:
                results.append(
                    PodMetrics(
                        name=pod.name,
                        namespace=pod.namespace,
                        labels=pod.labels,
                        timestamp=earliest.timestamp,
                        window=earliest.window,
                        containers=containers,
                    )
                )
        return results

    def _previous_point(
        self, ref: NamespacedName, name: str, new_point: MetricsPoint
    ) -> MetricsPoint | None:
        age = new_point.timestamp - new_point.start_time
        if (
            new_point.start_time < new_point.timestamp
            and age < self.metric_resolution
            and age >= FRESH_CONTAINER_MIN_METRICS_RESOLUTION
        ):
            return dataclasses.replace(
                new_point, timestamp=new_point.start_time, cumulative_cpu_used=0
            )
        last_pod = self.last.get(ref)
        if last_pod is None:
            return None
        last_container = last_pod.containers.get(name)
        # A start time after the stored timestamp means the container restarted.
        if last_container is None or not new_point.start_time < last_container.timestamp:
            return None
        if new_point.timestamp > last_container.timestamp:
            return last_container
        prev_pod = self.prev.get(ref)
        if prev_pod is None:
            return None
        prev_container = prev_pod.containers.get(name)
        if prev_container is None:
            return None
        if prev_container.timestamp < new_point.timestamp:
            return prev_container
        logger.info(
            "Found new container metrics point is older than stored previous, "
            "drop previous: container=%s pod=%s previousTimestamp=%s timestamp=%s",
            name,
            ref,
            prev_container.timestamp,
            new_point.timestamp,
        )
        return None

    def store(self, batch: MetricsBatch) -> None:
        last_pods: dict[NamespacedName, PodMetricsPoint] = {}
        prev_pods: dict[NamespacedName, PodMetricsPoint] = {}
        container_count = 0
        for ref, new_pod in batch.pods.items():
            ref = NamespacedName(namespace=ref.namespace, name=ref.name)
            new_last = PodMetricsPoint(containers=dict(new_pod.containers))
            new_prev = PodMetricsPoint()
            for name, new_point in new_pod.containers.items():
                previous = self._previous_point(ref, name, new_point)
                if previous is not None:
                    new_prev.containers[name] = previous
            if new_prev.containers:
                prev_pods[ref] = new_prev
            last_pods[ref] = new_last
            # Only count containers for which metrics can be returned.
            container_count += len(new_prev.containers)
        self.last = last_pods
        self.prev = prev_pods
        POINTS_STORED.set("container", container_count)


class Storage(MetricsStorage):
    """Thread-safe store of node and pod metrics."""

    def __init__(self, metric_resolution: Union[timedelta, float, int]) -> None:
        self._lock = threading.Lock()
        self.pods = PodStorage(metric_resolution)
        self.nodes = NodeStorage()

    def ready(self) -> bool:
        """True once enough points are stored to serve some metrics."""
        with self._lock:
            return bool(self.nodes.prev) or bool(self.pods.prev)

    def get_node_metrics(self, *nodes: Node) -> list[NodeMetrics]:
        with self._lock:
            return self.nodes.get_metrics(*nodes)

    def get_pod_metrics(self, *pods: PodMetadata) -> list[PodMetrics]:
        with self._lock:
            return self.pods.get_metrics(*pods)

    def store(self, batch: MetricsBatch) -> None:
        with self._lock:
            self.nodes.store(batch)
            self.pods.store(batch)