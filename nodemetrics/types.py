"""Metric points, resource quantities and the objects metrics are served for."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum

logger = logging.getLogger(__name__)

ZERO_TIME = datetime.min.replace(tzinfo=timezone.utc)
MAX_INT64 = 2**63 - 1
MAX_UINT64 = 2**64 - 1

RESOURCE_CPU = "cpu"
RESOURCE_MEMORY = "memory"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Format(str, Enum):
    """How a quantity is meant to be rendered."""

    DECIMAL_EXPONENT = "DecimalExponent"
    BINARY_SI = "BinarySI"
    DECIMAL_SI = "DecimalSI"


@dataclass(frozen=True)
class Quantity:
    """An integer ``value`` scaled by ``10 ** scale``."""

    value: int
    scale: int = 0
    format: Format = Format.DECIMAL_SI

    def to_decimal(self) -> Decimal:
        return Decimal(self.value).scaleb(self.scale)


ResourceList = dict[str, Quantity]


class ResourceUsageError(ValueError):
    """Raised when two metric points cannot yield a usage value."""


@dataclass(frozen=True)
class NamespacedName:
    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass(frozen=True)
class MetricsPoint:
    """Cumulative CPU and memory of a node or container at one moment.

    Times are timezone-aware; ``ZERO_TIME`` stands for an unknown start time.
    CPU is in nanocore-seconds, memory in bytes.
    """

    start_time: datetime = ZERO_TIME
    timestamp: datetime = ZERO_TIME
    cumulative_cpu_used: int = 0
    memory_usage: int = 0


@dataclass
class PodMetricsPoint:
    containers: dict[str, MetricsPoint] = field(default_factory=dict)


@dataclass
class MetricsBatch:
    """One scrape's worth of node and pod metrics."""

    nodes: dict[str, MetricsPoint] = field(default_factory=dict)
    pods: dict[NamespacedName, PodMetricsPoint] = field(default_factory=dict)


@dataclass(frozen=True)
class TimeInfo:
    timestamp: datetime = ZERO_TIME
    window: timedelta = timedelta(0)


class NodeAddressType(str, Enum):
    HOSTNAME = "Hostname"
    INTERNAL_IP = "InternalIP"
    EXTERNAL_IP = "ExternalIP"
    INTERNAL_DNS = "InternalDNS"
    EXTERNAL_DNS = "ExternalDNS"


@dataclass(frozen=True)
class NodeAddress:
    type: NodeAddressType
    address: str


@dataclass
class Node:
    name: str
    labels: dict[str, str] = field(default_factory=dict)
    addresses: list[NodeAddress] = field(default_factory=list)


@dataclass
class PodMetadata:
    name: str
    namespace: str
    labels: dict[str, str] = field(default_factory=dict)


@dataclass
class ContainerMetrics:
    name: str
    usage: ResourceList


@dataclass
class NodeMetrics:
    name: str
    timestamp: datetime
    window: timedelta
    usage: ResourceList
    labels: dict[str, str] = field(default_factory=dict)
    creation_timestamp: datetime = field(default_factory=_now)


@dataclass
class PodMetrics:
    name: str
    namespace: str
    timestamp: datetime
    window: timedelta
    containers: list[ContainerMetrics]
    labels: dict[str, str] = field(default_factory=dict)
    creation_timestamp: datetime = field(default_factory=_now)


def _duration_seconds(duration: timedelta) -> float:
    micros = duration // timedelta(microseconds=1)
    whole, rest = divmod(micros, 1_000_000)
    return whole + (rest * 1000) / 1e9


def resource_usage(last: MetricsPoint, prev: MetricsPoint) -> tuple[ResourceList, TimeInfo]:
    """Compute CPU rate and memory usage between two points of one series."""
    if last.start_time < prev.start_time:
        raise ResourceUsageError("unexpected decrease in startTime of node/container")
    if last.cumulative_cpu_used < prev.cumulative_cpu_used:
        raise ResourceUsageError("unexpected decrease in cumulative CPU usage value")
    window = last.timestamp - prev.timestamp
    if window <= timedelta(0):
        raise ResourceUsageError("time window between metric points is not positive")
    cpu_usage = float(last.cumulative_cpu_used - prev.cumulative_cpu_used) / _duration_seconds(
        window
    )
    usage = {
        RESOURCE_CPU: uint64_quantity(min(int(cpu_usage), MAX_UINT64), Format.DECIMAL_SI, -9),
        RESOURCE_MEMORY: uint64_quantity(last.memory_usage, Format.BINARY_SI, 0),
    }
    return usage, TimeInfo(timestamp=last.timestamp, window=window)


def uint64_quantity(val: int, format: Format, scale: int) -> Quantity:
    """Build a quantity from an unsigned 64-bit value.

    Values beyond the signed 64-bit range lose one decimal digit of precision.
    """
    if not 0 <= val <= MAX_UINT64:
        raise ValueError(f"value {val} is outside the unsigned 64-bit range")
    if val > MAX_INT64:
        logger.debug(
            "Found unexpectedly large resource value, losing precision to fit "
            "in a scaled quantity: %d",
            val,
        )
        return Quantity(val // 10, scale + 1, format)
    return Quantity(val, scale, format)