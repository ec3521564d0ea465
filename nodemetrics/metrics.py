"""Metric primitives with Prometheus text exposition and bucket helpers."""

from __future__ import annotations

import bisect
import math
import threading
from datetime import timedelta
from decimal import Decimal
from itertools import accumulate
from typing import Iterable, Optional, Protocol, Union

DEF_BUCKETS: tuple[float, ...] = (
    0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0,
)

Duration = Union[timedelta, float, int]


class Registerable(Protocol):
    """Anything a :class:`Registry` can hold."""

    fq_name: str

    def expose(self) -> str: ...


def _to_seconds(duration: Duration) -> float:
    if isinstance(duration, timedelta):
        return duration.total_seconds()
    return float(duration)


def buckets_for_scrape_duration(scrape_timeout: Duration) -> list[float]:
    """Return the default histogram buckets extended around the scrape timeout.

    ``scrape_timeout`` is a :class:`datetime.timedelta` or a number of seconds.
    """
    buckets = list(DEF_BUCKETS)
    max_bucket = buckets[-1]
    timeout = _to_seconds(scrape_timeout)
    if timeout > max_bucket:
        halfway = max_bucket + (timeout - max_bucket) / 2
        buckets.extend((halfway, timeout, timeout * 1.5, timeout * 2.0))
    elif timeout < max_bucket:
        index = next(i for i, bucket in enumerate(buckets) if bucket > timeout)
        bucket = buckets[index]
        too_close_above = bucket - timeout < buckets[0]
        too_close_below = index > 0 and timeout - buckets[index - 1] < buckets[0]
        if too_close_above or too_close_below:
            return buckets
        buckets.insert(index, timeout)
    return buckets


def _format_float(value: float) -> str:
    """Format a float the way the Prometheus text format does (shortest %g)."""
    value = float(value)
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    if value == 0:
        return "0"
    sign = "-" if value < 0 else ""
    _, digit_tuple, exponent = Decimal(repr(abs(value))).normalize().as_tuple()
    digits = "".join(map(str, digit_tuple))
    point = len(digits) + exponent
    exp = point - 1
    if exp < -4 or exp >= 6:
        mantissa = digits[0] + ("." + digits[1:] if len(digits) > 1 else "")
        exp_sign = "+" if exp >= 0 else "-"
        return f"{sign}{mantissa}e{exp_sign}{abs(exp):02d}"
    if point <= 0:
        body = "0." + "0" * (-point) + digits
    elif point >= len(digits):
        body = digits + "0" * (point - len(digits))
    else:
        body = digits[:point] + "." + digits[point:]
    return sign + body


def _fq_name(namespace: str, subsystem: str, name: str) -> str:
    if not name:
        return ""
    return "_".join(part for part in (namespace, subsystem, name) if part)


def _escape_label(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


def _escape_help(value: str) -> str:
    return value.replace("\\", "\\\\").replace("\n", "\\n")


def _header(name: str, help_text: str, kind: str) -> list[str]:
    return [
        f"# HELP {name} [ALPHA] {_escape_help(help_text)}",
        f"# TYPE {name} {kind}",
    ]


class GaugeVec:
    """A gauge partitioned by the values of a single label."""

    def __init__(
        self,
        *,
        name: str,
        label_name: str,
        help_text: str = "",
        namespace: str = "",
        subsystem: str = "",
    ) -> None:
        self.fq_name = _fq_name(namespace, subsystem, name)
        self.label_name = label_name
        self.help_text = help_text
        self._values: dict[str, float] = {}
        self._lock = threading.Lock()

    def set(self, label_value: str, value: float) -> None:
        with self._lock:
            self._values[label_value] = float(value)

    def get(self, label_value: str) -> float:
        """Return the current value; raises KeyError if it was never set."""
        with self._lock:
            return self._values[label_value]

    def reset(self) -> None:
        with self._lock:
            self._values.clear()

    def expose(self) -> str:
        with self._lock:
            items = sorted(self._values.items())
        if not items or not self.fq_name:
            return ""
        lines = _header(self.fq_name, self.help_text, "gauge")
        lines.extend(
            f'{self.fq_name}{{{self.label_name}="{_escape_label(label)}"}} '
            f"{_format_float(value)}"
            for label, value in items
        )
        return "\n".join(lines) + "\n"


class Histogram:
    """A cumulative histogram over fixed upper bounds."""

    def __init__(
        self,
        *,
        name: str = "",
        help_text: str = "",
        namespace: str = "",
        subsystem: str = "",
        buckets: Optional[Iterable[float]] = None,
    ) -> None:
        bounds = tuple(float(b) for b in (DEF_BUCKETS if buckets is None else buckets))
        if bounds and math.isinf(bounds[-1]) and bounds[-1] > 0:
            bounds = bounds[:-1]
        if any(lower >= upper for lower, upper in zip(bounds, bounds[1:])):
            raise ValueError("histogram buckets must be in strictly increasing order")
        self.fq_name = _fq_name(namespace, subsystem, name)
        self.help_text = help_text
        self.buckets = bounds
        self._counts = [0] * len(bounds)
        self._sum = 0.0
        self._count = 0
        self._lock = threading.Lock()

    @property
    def count(self) -> int:
        with self._lock:
            return self._count

    @property
    def sum(self) -> float:
        with self._lock:
            return self._sum

    def observe(self, value: float) -> None:
        value = float(value)
        index = bisect.bisect_left(self.buckets, value)
        with self._lock:
            if index < len(self._counts):
                self._counts[index] += 1
            self._sum += value
            self._count += 1

    def expose(self) -> str:
        if not self.fq_name:
            return ""
        with self._lock:
            counts = list(self._counts)
            total = self._sum
            count = self._count
        name = self.fq_name
        lines = _header(name, self.help_text, "histogram")
        lines.extend(
            f'{name}_bucket{{le="{_format_float(bound)}"}} {cumulative}'
            for bound, cumulative in zip(self.buckets, accumulate(counts))
        )
        lines.append(f'{name}_bucket{{le="+Inf"}} {count}')
        lines.append(f"{name}_sum {_format_float(total)}")
        lines.append(f"{name}_count {count}")
        return "\n".join(lines) + "\n"


class Registry:
    """A set of uniquely named metrics that can be exposed together."""

    def __init__(self) -> None:
        self._metrics: dict[str, Registerable] = {}
        self._lock = threading.Lock()

    def register(self, metric: Registerable) -> None:
        """Add a metric; raises ValueError for unnamed or duplicate metrics."""
        name = metric.fq_name
        if not name:
            raise ValueError("cannot register a metric without a name")
        with self._lock:
            if name in self._metrics:
                raise ValueError(
                    f"duplicate metrics collector registration attempted: {name}"
                )
            self._metrics[name] = metric

    def expose(self) -> str:
        with self._lock:
            metrics = [self._metrics[name] for name in sorted(self._metrics)]
        return "".join(metric.expose() for metric in metrics)