import logging
import time
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

from redis.asyncio import Redis
from redis.asyncio.client import Pipeline
from redis.exceptions import ResponseError

from .queue_metrics import CommandKind, QueueMetric
from .redis_keys import QueueKeys

logger = logging.getLogger("bullmq_exporter")


@dataclass(frozen=True)
class QueueCounts:
    """Raw counts of one queue. None means the command for that metric failed."""

    queue: str
    counts: Dict[str, Optional[int]]

    def items(self) -> Iterator[Tuple[str, Optional[int]]]:
        return iter(self.counts.items())


def _queue_command(pipe: Pipeline, keys: QueueKeys, queue: str, metric: QueueMetric, now_ms: int) -> None:
    key = keys.state_key(queue, metric.state)
    if metric.kind is CommandKind.LLEN:
        pipe.llen(key)
    elif metric.kind is CommandKind.ZCARD:
        pipe.zcard(key)
    elif metric.kind is CommandKind.ZCOUNT:
        pipe.zcount(key, now_ms - metric.window_s * 1000, "+inf")
    else:
        raise ValueError(f"Unsupported command kind: {metric.kind}")


def _as_count(queue: str, metric: QueueMetric, raw) -> Optional[int]:
    if isinstance(raw, Exception):
        logger.warning("Command failed, sample skipped | queue=%s | metric=%s | error=%s", queue, metric.name, raw)
        return None
    return int(raw)


async def collect_queue_counts(
    redis: Redis,
    keys: QueueKeys,
    queue_names: Sequence[str],
    metrics: Sequence[QueueMetric],
    *,
    now_ms: Optional[int] = None,
) -> List[QueueCounts]:
    """
    Read every metric of every queue in one MULTI/EXEC round trip.

    Per queue the batch holds one command per metric, in metric order, so the flat reply is
    cut with stride len(metrics). A failed command only drops its own value; a failed round
    trip raises.
    """
    if not queue_names:
        return []

    if now_ms is None:
        now_ms = int(time.time() * 1000)

    pipe = redis.pipeline(transaction=True)
    for queue in queue_names:
        for metric in metrics:
            _queue_command(pipe, keys, queue, metric, now_ms)

    results = await pipe.execute(raise_on_error=False)

    stride = len(metrics)
    if len(results) != stride * len(queue_names):
        raise ResponseError(f"Batch reply has {len(results)} results, expected {stride * len(queue_names)}")

    records = []
    for i, queue in enumerate(queue_names):
        chunk = results[i * stride:(i + 1) * stride]
        records.append(
            QueueCounts(
                queue=queue,
                counts={metric.name: _as_count(queue, metric, raw) for metric, raw in zip(metrics, chunk)},
            )
        )
    return records
