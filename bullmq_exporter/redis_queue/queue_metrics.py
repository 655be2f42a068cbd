import os
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional, Tuple

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram


class CommandKind(str, Enum):
    LLEN = "llen"
    ZCARD = "zcard"
    # Members of a sorted set scored within the trailing window
    ZCOUNT = "zcount"


@dataclass(frozen=True)
class QueueMetric:
    name: str
    description: str
    kind: CommandKind
    # Key suffix of the queue structure: "<prefix>:<queue>:<state>"
    state: str
    window_s: Optional[int] = None


# (metric suffix, key state, command, description), in render order
QUEUE_STATES: Tuple[Tuple[str, str, CommandKind, str], ...] = (
    ("active_total", "active", CommandKind.LLEN, "Number of jobs in processing"),
    ("wait_total", "wait", CommandKind.LLEN, "Number of pending jobs"),
    ("waiting_children_total", "waiting-children", CommandKind.ZCARD, "Number of pending children jobs"),
    ("prioritized_total", "prioritized", CommandKind.ZCARD, "Number of prioritized jobs"),
    ("delayed_total", "delayed", CommandKind.ZCARD, "Number of delayed jobs"),
    ("failed_total", "failed", CommandKind.ZCARD, "Number of failed jobs"),
    ("completed_total", "completed", CommandKind.ZCARD, "Number of completed jobs"),
)


def build_queue_metrics(prefix: str, completed_windows: Iterable[int] = ()) -> Tuple[QueueMetric, ...]:
    """
    Static metric set of one exporter process.

    The tuple order is the batch command order per queue and the render order.
    Windowed metrics count completed jobs by their finish timestamp (the sorted set score, ms).
    """
    metrics = [
        QueueMetric(name=f"{prefix}_{suffix}", description=description, kind=kind, state=state)
        for suffix, state, kind, description in QUEUE_STATES
    ]
    for window_s in completed_windows:
        metrics.append(
            QueueMetric(
                name=f"{prefix}_completed_{window_s}s_total",
                description=f"Number of jobs completed in the last {window_s} seconds",
                kind=CommandKind.ZCOUNT,
                state="completed",
                window_s=window_s,
            )
        )
    return tuple(metrics)


# Exporter's own metrics. One registry per process.
METRICS_REGISTRY = CollectorRegistry(auto_describe=True)
APP_NAME = os.getenv("METRICS_APP_NAME", "bullmq_exporter")

HTTP_REQUESTS_TOTAL = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["app", "method", "route", "status"],
    registry=METRICS_REGISTRY,
)

HTTP_REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency (seconds)",
    ["app", "method", "route"],
    registry=METRICS_REGISTRY,
)

COLLECT_DURATION = Histogram(
    "bullmq_exporter_collect_duration_seconds",
    "Duration of one collection cycle over all databases (seconds)",
    ["app"],
    registry=METRICS_REGISTRY,
)

COLLECT_ERRORS_TOTAL = Counter(
    "bullmq_exporter_collect_errors_total",
    "Databases skipped in a collection cycle because of store errors",
    ["app", "db", "stage"],
    registry=METRICS_REGISTRY,
)

QUEUES_DISCOVERED = Gauge(
    "bullmq_exporter_queues_discovered",
    "Queues found in the last collection cycle",
    ["app", "db"],
    registry=METRICS_REGISTRY,
)
