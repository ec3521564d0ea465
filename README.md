# nodemetrics

`nodemetrics` keeps the two most recent resource-usage samples for nodes and
pod containers. From each pair of samples it works out the current CPU rate and
memory working set. It also has:

- a periodic scrape loop with readiness and liveness probes;
- small Prometheus-style instruments.

It has no dependencies outside the standard library.

## Installation

```
pip install nodemetrics
```

To install the test dependencies as well:

```
pip install "nodemetrics[test]"
```

## Types

`nodemetrics.types` holds the data classes used throughout the package.

**Samples and batches**

- `MetricsPoint` is one sample of a node or container. Its fields are:
  - `start_time`;
  - `timestamp`;
  - `cumulative_cpu_used`, in nanocore-seconds;
  - `memory_usage`, in bytes.

  Times should be timezone-aware. `ZERO_TIME` stands for an unknown start time.
- `PodMetricsPoint` maps container names to points.
- `MetricsBatch` holds one scrape. Its `nodes` map node names to points, and its
  `pods` map a `NamespacedName` to a `PodMetricsPoint`.

**Query objects**

- `Node` carries a name, labels and a list of `NodeAddress` values.
- `PodMetadata` carries a name, a namespace and labels.

**Results**

- `NodeMetrics`, `PodMetrics` and `ContainerMetrics` are the results of queries.
- Usage is a dict from `"cpu"` and `"memory"` to a `Quantity`. A `Quantity` is an
  integer `value` scaled by `10 ** scale`, together with a `Format`.

### Computing usage directly

`resource_usage(last, prev)` returns a `(usage, TimeInfo)` pair. The CPU figure
is the rate between the two samples. The memory figure is the last working set.
It raises `ResourceUsageError` in these cases:

- the start time goes backwards;
- cumulative CPU decreases;
- the window between the samples is not positive.

`uint64_quantity(val, format, scale)` builds a `Quantity` from an unsigned
64-bit value. If the value is larger than the signed 64-bit maximum, it drops
one decimal digit and raises the scale by one. It raises `ValueError` for
values outside the unsigned 64-bit range.

## Storing and reading metrics

`nodemetrics.storage.Storage` is a thread-safe store built from two parts:

- a `NodeStorage`;
- a `PodStorage`.

Each part keeps the latest and the previous point per node or container. A new
point replaces the stored ones only if it is newer than them. `ready()` becomes
true once a usage rate can be computed for at least one node or container.

```python
from datetime import datetime, timedelta, timezone

from nodemetrics.storage import Storage
from nodemetrics.types import MetricsBatch, MetricsPoint, Node

store = Storage(timedelta(seconds=60))
start = datetime.now(timezone.utc)

store.store(MetricsBatch(nodes={
    "node1": MetricsPoint(start, start + timedelta(seconds=10), 10 * 10**9, 2 * 2**20),
}))
store.store(MetricsBatch(nodes={
    "node1": MetricsPoint(start, start + timedelta(seconds=20), 20 * 10**9, 3 * 2**20),
}))

assert store.ready()
(metrics,) = store.get_node_metrics(Node(name="node1"))
print(metrics.window, metrics.usage)
```

### Pods

Pods are queried with `get_pod_metrics(*pods)`, passing `PodMetadata` objects.

- A pod is reported only when every container in its latest sample also has a
  previous point.
- A container whose usage cannot be computed is left out of the pod's list.
- The pod's timestamp and window come from the container with the earliest
  timestamp.

A newly started container is treated specially when it has been running for at
least 10 seconds, but for less than the metric resolution. In that case its
start time, with zero CPU, stands in for the previous sample. This lets it
report after a single scrape.

`MetricsStorage` is the abstract interface that `Storage` implements and that
the server expects.

## Instrumentation

`nodemetrics.metrics` provides the following:

- `Registry`: `register(metric)` rejects unnamed or duplicate metrics with
  `ValueError`, and `expose()` renders every registered metric in the Prometheus
  text format.
- `GaugeVec`: a gauge with one label, offering `set`, `get`, `reset` and `expose`.
- `Histogram`: cumulative buckets, offering `observe` and `expose`, plus `count`
  and `sum`.
- `buckets_for_scrape_duration(timeout)`: the default buckets extended around a
  scrape timeout, which may be a `timedelta` or a number of seconds.

The following functions register the package's own instruments:

- `nodemetrics.storage.register_storage_metrics(registration_func)` registers
  the `metrics_server_storage_points` gauge. This gauge counts stored points by
  `type` (`node` or `container`).
- `nodemetrics.server.register_metrics(registry, resolution)` registers
  `metrics_server_manager_tick_duration_seconds` and that gauge.

## Server and health probes

`nodemetrics.server.Server(nodes, pods, storage, scraper, resolution, serve=None)`
takes these arguments:

- `nodes` and `pods` are controllers that provide `run(stop_event)` and
  `has_synced()`.
- `scraper` provides `scrape(timeout)`, which returns a `MetricsBatch`.
- `resolution` must be positive.

`run_until(stop_event)` carries out these steps:

1. It starts both controllers in threads.
2. It waits for their caches to sync.
3. It starts the scrape loop, which calls `tick()` once per resolution.
4. It calls `serve(stop_event)`, or it just waits for the event if no `serve`
   was given.

`tick(start_time)` runs one cycle: it scrapes, stores the batch and records the
duration in the histogram.

The probes are `NamedCheck` objects. Calling `check()` on one raises
`HealthCheckError` when it fails.

| Probe | Fails when |
| --- | --- |
| `probe_metric_collection_timely` | the last tick started more than 1.5 × the resolution ago |
| `probe_metric_storage_ready` | storage is not ready yet |
| `probe_metric_cache_has_synced` | the node or pod caches have not synced |

`register_probes(waiter)` adds these probes to the server's check lists:

- `readyz_checks`;
- `livez_checks`;
- `healthz_checks`.

It also adds the check from `nodemetrics.health.metadata_informer_sync_healthz`.
That check fails until every informer reported by
`waiter.wait_for_cache_sync(stop_event)` has synced.

## Node addresses

`nodemetrics.address_resolver.PriorityNodeAddressResolver` picks a node's
connection address. It chooses by address-type priority first, and then by
order within a type. The default priority is hostname, internal DNS, internal
IP, external DNS, external IP. `node_address(node)` raises
`AddressNotFoundError` when no address matches.

## What this package does not do

This package is a library, and several parts are left to the caller:

- It does not scrape nodes itself. You supply the scraper.
- It does not watch a cluster. You supply the controllers and the cache-sync
  waiter.
- It does not run an HTTP or API server. The `serve` callable and the probe
  lists are left for the caller to wire up.
- It installs no command-line program.