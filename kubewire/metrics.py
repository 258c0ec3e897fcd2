"""Operator metrics: counters, gauges and histograms in a small registry."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Iterable, Iterator, Union


def exponential_buckets(start: float, factor: float, count: int) -> list[float]:
    """Return ``count`` bucket bounds starting at ``start``, each ``factor`` times the last."""
    if count < 1:
        raise ValueError("exponential_buckets needs a positive count")
    if start <= 0:
        raise ValueError("exponential_buckets needs a positive start value")
    if factor <= 1:
        raise ValueError("exponential_buckets needs a factor greater than 1")
    buckets = []
    for _ in range(count):
        buckets.append(start)
        start *= factor
    return buckets


def linear_buckets(start: float, width: float, count: int) -> list[float]:
    """Return ``count`` bucket bounds starting at ``start``, ``width`` apart."""
    if count < 1:
        raise ValueError("linear_buckets needs a positive count")
    buckets = []
    for _ in range(count):
        buckets.append(start)
        start += width
    return buckets


@dataclass
class Sample:
    name: str
    labels: dict[str, str]
    value: float


@dataclass
class MetricFamily:
    name: str
    help: str
    type: str
    samples: list[Sample] = field(default_factory=list)


class _ScalarMetric:
    """Common part of counters and gauges, optionally split by labels."""

    type_name = ""

    def __init__(self, name: str, help: str = "", label_names: Iterable[str] = ()):
        self.name = name
        self.help = help
        self.label_names = tuple(label_names)
        self.label_values: tuple[str, ...] = ()
        self._value = 0.0
        self._children: dict[tuple[str, ...], "_ScalarMetric"] = {}
        self._lock = threading.Lock()

    def labels(self, *args: object):
        """Return the child metric for the given label values, creating it once."""
        if not self.label_names:
            raise ValueError(f"metric {self.name} has no labels")
        if len(args) != len(self.label_names):
            raise ValueError(
                f"metric {self.name} expects {len(self.label_names)} label values, "
                f"got {len(args)}"
            )
        key = tuple(str(arg) for arg in args)
        with self._lock:
            child = self._children.get(key)
            if child is None:
                child = type(self)(self.name, self.help)
                child.label_values = key
                self._children[key] = child
        return child

    @property
    def value(self) -> float:
        self._require_unlabelled()
        return self._value

    def _require_unlabelled(self) -> None:
        if self.label_names:
            raise ValueError(f"metric {self.name} needs label values; use labels()")

    def _add(self, amount: float) -> None:
        self._require_unlabelled()
        with self._lock:
            self._value += amount

    def _samples(self) -> Iterator[Sample]:
        if not self.label_names:
            yield Sample(self.name, {}, self._value)
            return
        with self._lock:
            children = list(self._children.items())
        for key, child in children:
            yield Sample(self.name, dict(zip(self.label_names, key)), child._value)


class Counter(_ScalarMetric):
    """A monotonically increasing value."""

    type_name = "counter"

    def labels(self, *args: object) -> "Counter":
        return super().labels(*args)

    def inc(self, amount: float = 1.0) -> None:
        if amount < 0:
            raise ValueError("counter cannot decrease")
        self._add(amount)


class Gauge(_ScalarMetric):
    """A value that can go up and down."""

    type_name = "gauge"

    def labels(self, *args: object) -> "Gauge":
        return super().labels(*args)

    def set(self, value: float) -> None:
        self._require_unlabelled()
        with self._lock:
            self._value = float(value)

    def inc(self, amount: float = 1.0) -> None:
        self._add(amount)

    def dec(self, amount: float = 1.0) -> None:
        self._add(-amount)


class Histogram:
    """Counts observations into cumulative buckets."""

    type_name = "histogram"

    def __init__(self, name: str, help: str = "", buckets: Iterable[float] = ()):
        bounds = sorted(float(b) for b in buckets)
        if not bounds:
            raise ValueError(f"histogram {name} needs at least one bucket")
        self.name = name
        self.help = help
        self.buckets = bounds
        self._counts = [0] * len(bounds)
        self._sum = 0.0
        self._count = 0
        self._lock = threading.Lock()

    def observe(self, value: float) -> None:
        with self._lock:
            self._sum += value
            self._count += 1
            for position, bound in enumerate(self.buckets):
                if value <= bound:
                    self._counts[position] += 1
                    break

    @property
    def sum(self) -> float:
        return self._sum

    @property
    def count(self) -> int:
        return self._count

    @property
    def bucket_counts(self) -> list[int]:
        """Cumulative counts, one per bucket bound."""
        with self._lock:
            counts = list(self._counts)
        total = 0
        cumulative = []
        for count in counts:
            total += count
            cumulative.append(total)
        return cumulative

    def _samples(self) -> Iterator[Sample]:
        for bound, count in zip(self.buckets, self.bucket_counts):
            yield Sample(f"{self.name}_bucket", {"le": repr(bound)}, float(count))
        yield Sample(f"{self.name}_bucket", {"le": "+Inf"}, float(self._count))
        yield Sample(f"{self.name}_sum", {}, self._sum)
        yield Sample(f"{self.name}_count", {}, float(self._count))


Collector = Union[Counter, Gauge, Histogram]


class Registry:
    """A set of uniquely named metrics."""

    def __init__(self) -> None:
        self._collectors: dict[str, Collector] = {}
        self._lock = threading.Lock()

    def register(self, *args: Collector) -> None:
        with self._lock:
            for collector in args:
                if collector.name in self._collectors:
                    raise ValueError(f"metric {collector.name} is already registered")
                self._collectors[collector.name] = collector

    def gather(self) -> list[MetricFamily]:
        """Return metric families sorted by name; labelled metrics without children are left out."""
        with self._lock:
            collectors = sorted(self._collectors.values(), key=lambda c: c.name)
        families = []
        for collector in collectors:
            samples = list(collector._samples())
            if samples:
                families.append(
                    MetricFamily(collector.name, collector.help, collector.type_name, samples)
                )
        return families

    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._collectors)


REGISTRY = Registry()

EVENTS_SENT_TOTAL = Counter(
    "incidentary_operator_events_sent_total",
    "Total v2 events accepted by the ingest endpoint.",
    ["kind"],
)
EVENTS_DROPPED_TOTAL = Counter(
    "incidentary_operator_events_dropped_total",
    "Events dropped by the ingest endpoint.",
    ["drop_reason"],
)
EVENTS_FILTERED_TOTAL = Counter(
    "incidentary_operator_events_filtered_total",
    "Events filtered by the severity policy before sending.",
    ["tier"],
)
FLUSH_LATENCY_SECONDS = Histogram(
    "incidentary_operator_flush_latency_seconds",
    "Ingest flush round-trip latency in seconds.",
    exponential_buckets(0.01, 2, 10),
)
FLUSH_BATCH_SIZE = Histogram(
    "incidentary_operator_flush_batch_size",
    "Number of events per flush batch.",
    linear_buckets(10, 50, 20),
)

TOPOLOGY_REPORTS_TOTAL = Counter(
    "incidentary_operator_topology_reports_total",
    "Total topology reports sent to the Incidentary API.",
)
WATCHED_WORKLOADS = Gauge(
    "incidentary_operator_watched_workloads",
    "Current count of discovered workloads (Deployments + StatefulSets + DaemonSets).",
)

MATCHED_SERVICES = Gauge(
    "incidentary_operator_matched_services",
    "Workloads matched to SDK-registered services.",
)
GHOST_SERVICES = Gauge(
    "incidentary_operator_ghost_services",
    "Discovered workloads with no SDK event history (ghost services).",
)
UNMATCHED_WORKLOADS = Gauge(
    "incidentary_operator_unmatched_workloads",
    "Workloads whose derived service_id does not match any registered service.",
)
RECONCILIATION_DURATION_SECONDS = Histogram(
    "incidentary_operator_reconciliation_duration_seconds",
    "Duration of a single reconciliation cycle in seconds.",
    exponential_buckets(0.1, 2, 10),
)

INFORMER_CACHE_SIZE = Gauge(
    "incidentary_operator_informer_cache_size",
    "Number of objects in the informer cache, by resource type.",
    ["resource"],
)
LEADER_IS_LEADER = Gauge(
    "incidentary_operator_leader_is_leader",
    "1 if this instance is the active leader, 0 otherwise.",
)

REGISTRY.register(
    EVENTS_SENT_TOTAL,
    EVENTS_DROPPED_TOTAL,
    EVENTS_FILTERED_TOTAL,
    FLUSH_LATENCY_SECONDS,
    FLUSH_BATCH_SIZE,
    TOPOLOGY_REPORTS_TOTAL,
    WATCHED_WORKLOADS,
    MATCHED_SERVICES,
    GHOST_SERVICES,
    UNMATCHED_WORKLOADS,
    RECONCILIATION_DURATION_SECONDS,
    INFORMER_CACHE_SIZE,
    LEADER_IS_LEADER,
)