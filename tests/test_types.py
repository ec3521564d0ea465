from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from nodemetrics.types import (
    MAX_INT64,
    RESOURCE_CPU,
    RESOURCE_MEMORY,
    ZERO_TIME,
    Format,
    MetricsPoint,
    NamespacedName,
    Quantity,
    ResourceUsageError,
    TimeInfo,
    resource_usage,
    uint64_quantity,
)

START = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def point(st, ts, cpu, memory):
    return MetricsPoint(
        start_time=st, timestamp=ts, cumulative_cpu_used=cpu, memory_usage=memory
    )


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (MAX_INT64 + 10, Quantity(MAX_INT64 // 10 + 1, 1)),
        (MAX_INT64 + 20, Quantity(MAX_INT64 // 10 + 2, 1)),
        (MAX_INT64 - 10, Quantity(MAX_INT64 - 10, 0)),
        (MAX_INT64 - 100, Quantity(MAX_INT64 - 100, 0)),
    ],
)
def test_uint64_quantity(value, expected):
    assert uint64_quantity(value, Format.DECIMAL_SI, 0) == expected


def test_uint64_quantity_keeps_format():
    assert uint64_quantity(600, Format.BINARY_SI, 0).format is Format.BINARY_SI


@pytest.mark.parametrize("value", [-1, 2**64])
def test_uint64_quantity_out_of_range(value):
    with pytest.raises(ValueError):
        uint64_quantity(value, Format.DECIMAL_SI, 0)


def test_resource_usage_success():
    last = point(START, START + timedelta(milliseconds=20), 500, 600)
    prev = point(START, START + timedelta(milliseconds=10), 300, 400)
    usage, time_info = resource_usage(last, prev)
    assert usage == {
        RESOURCE_CPU: uint64_quantity(20000, Format.DECIMAL_SI, -9),
        RESOURCE_MEMORY: uint64_quantity(600, Format.BINARY_SI, 0),
    }
    assert time_info == TimeInfo(
        timestamp=START + timedelta(milliseconds=20),
        window=timedelta(milliseconds=10),
    )


def test_resource_usage_decreased_start_time():
    last = point(START, START + timedelta(milliseconds=20), 500, 600)
    prev = point(
        START + timedelta(milliseconds=20), START + timedelta(milliseconds=10), 300, 400
    )
    with pytest.raises(ResourceUsageError, match="startTime"):
        resource_usage(last, prev)


def test_resource_usage_decreased_cpu():
    last = point(START, START + timedelta(milliseconds=20), 100, 600)
    prev = point(START, START + timedelta(milliseconds=10), 300, 400)
    with pytest.raises(ResourceUsageError, match="cumulative CPU"):
        resource_usage(last, prev)


def test_resource_usage_zero_window():
    same = point(START, START + timedelta(seconds=5), 100, 600)
    with pytest.raises(ResourceUsageError):
        resource_usage(same, same)


def test_resource_usage_with_unknown_start_time():
    last = point(ZERO_TIME, START + timedelta(seconds=20), 20 * 10**9, 3)
    prev = point(ZERO_TIME, START + timedelta(seconds=10), 10 * 10**9, 2)
    usage, time_info = resource_usage(last, prev)
    assert usage[RESOURCE_CPU] == Quantity(10**9, -9)
    assert usage[RESOURCE_MEMORY] == Quantity(3, 0, Format.BINARY_SI)
    assert time_info.window == timedelta(seconds=10)


def test_quantity_to_decimal():
    assert Quantity(10**9, -9).to_decimal() == Decimal(1)
    assert Quantity(5, 1).to_decimal() == Decimal(50)


def test_default_metrics_point_uses_zero_time():
    assert MetricsPoint().start_time == ZERO_TIME
    assert MetricsPoint().start_time < START


def test_namespaced_name_is_hashable_key():
    refs = {NamespacedName(namespace="ns1", name="pod1"): 1}
    assert refs[NamespacedName(namespace="ns1", name="pod1")] == 1
    assert str(NamespacedName(namespace="ns1", name="pod1")) == "ns1/pod1"