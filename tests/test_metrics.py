from datetime import timedelta

import pytest

from nodemetrics.metrics import (
    DEF_BUCKETS,
    GaugeVec,
    Histogram,
    Registry,
    buckets_for_scrape_duration,
)

MAX_DEFAULT = DEF_BUCKETS[-1]


def _points_gauge():
    return GaugeVec(
        namespace="metrics_server",
        subsystem="storage",
        name="points",
        help_text="Number of metrics points stored.",
        label_name="type",
    )


@pytest.mark.parametrize(
    "timeout",
    [timedelta(seconds=15), timedelta(seconds=5), timedelta(seconds=MAX_DEFAULT)],
)
def test_buckets_strictly_increasing(timeout):
    buckets = buckets_for_scrape_duration(timeout)
    assert buckets[0] > 0
    assert all(a < b for a, b in zip(buckets, buckets[1:]))


def test_buckets_around_long_timeout():
    buckets = buckets_for_scrape_duration(timedelta(seconds=15))
    assert 15.0 in buckets
    assert 30.0 in buckets


def test_buckets_include_short_timeout():
    assert 5.0 in buckets_for_scrape_duration(timedelta(seconds=5))


def test_buckets_include_timeout_equal_to_max_default():
    buckets = buckets_for_scrape_duration(timedelta(seconds=MAX_DEFAULT))
    assert MAX_DEFAULT in buckets
    assert buckets == list(DEF_BUCKETS)


def test_buckets_insert_new_value_in_order():
    buckets = buckets_for_scrape_duration(timedelta(seconds=7))
    assert 7.0 in buckets
    assert len(buckets) == len(DEF_BUCKETS) + 1
    assert buckets == sorted(buckets)


def test_buckets_accept_seconds_number():
    assert buckets_for_scrape_duration(15) == buckets_for_scrape_duration(
        timedelta(seconds=15)
    )


def test_empty_gauge_exposes_nothing():
    assert _points_gauge().expose() == ""


def test_gauge_exposition_after_first_store():
    gauge = _points_gauge()
    gauge.set("node", 0)
    gauge.set("container", 0)
    assert gauge.expose() == (
        "# HELP metrics_server_storage_points [ALPHA] Number of metrics points stored.\n"
        "# TYPE metrics_server_storage_points gauge\n"
        'metrics_server_storage_points{type="container"} 0\n'
        'metrics_server_storage_points{type="node"} 0\n'
    )


def test_gauge_exposition_after_update():
    gauge = _points_gauge()
    gauge.set("container", 0)
    gauge.set("node", 0)
    gauge.set("node", 1)
    assert gauge.expose() == (
        "# HELP metrics_server_storage_points [ALPHA] Number of metrics points stored.\n"
        "# TYPE metrics_server_storage_points gauge\n"
        'metrics_server_storage_points{type="container"} 0\n'
        'metrics_server_storage_points{type="node"} 1\n'
    )


def test_gauge_get_and_reset():
    gauge = _points_gauge()
    gauge.set("container", 2)
    assert gauge.get("container") == 2.0
    gauge.reset()
    with pytest.raises(KeyError):
        gauge.get("container")
    assert gauge.expose() == ""


@pytest.mark.parametrize(
    ("value", "text"),
    [(1e6, "1e+06"), (0.005, "0.005"), (123456, "123456"), (2.5, "2.5")],
)
def test_gauge_value_formatting(value, text):
    gauge = _points_gauge()
    gauge.set("node", value)
    assert gauge.expose().splitlines()[-1] == (
        f'metrics_server_storage_points{{type="node"}} {text}'
    )


def test_histogram_exposition():
    histogram = Histogram(
        namespace="metrics_server",
        subsystem="manager",
        name="tick_duration_seconds",
        help_text="The total time spent collecting and storing metrics in seconds.",
        buckets=[1.0, 2.5],
    )
    for value in (0.5, 2.0, 7.0):
        histogram.observe(value)
    assert histogram.count == 3
    assert histogram.sum == pytest.approx(9.5)
    name = "metrics_server_manager_tick_duration_seconds"
    assert histogram.expose().splitlines()[2:] == [
        f'{name}_bucket{{le="1"}} 1',
        f'{name}_bucket{{le="2.5"}} 2',
        f'{name}_bucket{{le="+Inf"}} 3',
        f"{name}_sum 9.5",
        f"{name}_count 3",
    ]


def test_histogram_bucket_bound_is_inclusive():
    histogram = Histogram(name="h", buckets=[1.0, 2.0])
    histogram.observe(1.0)
    assert 'h_bucket{le="1"} 1' in histogram.expose().splitlines()


def test_histogram_rejects_unordered_buckets():
    with pytest.raises(ValueError):
        Histogram(name="h", buckets=[2.0, 1.0])


def test_unnamed_histogram_exposes_nothing_and_cannot_register():
    histogram = Histogram()
    histogram.observe(1.0)
    assert histogram.expose() == ""
    with pytest.raises(ValueError):
        Registry().register(histogram)


def test_registry_rejects_duplicates():
    registry = Registry()
    registry.register(_points_gauge())
    with pytest.raises(ValueError, match="duplicate"):
        registry.register(_points_gauge())


def test_registry_exposes_sorted_by_name():
    registry = Registry()
    gauge = _points_gauge()
    gauge.set("node", 1)
    histogram = Histogram(
        namespace="metrics_server", subsystem="manager", name="tick_duration_seconds"
    )
    histogram.observe(0.1)
    registry.register(gauge)
    registry.register(histogram)
    text = registry.expose()
    assert text.index("metrics_server_manager_tick_duration_seconds") < text.index(
        "metrics_server_storage_points"
    )
    assert text == histogram.expose() + gauge.expose()