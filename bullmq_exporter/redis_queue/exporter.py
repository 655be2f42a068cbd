import asyncio
import logging
import time
from asyncio import Task
from typing import List, Optional, Sequence

from prometheus_client import generate_latest
from redis.exceptions import RedisError

from bullmq_exporter.config import Database, ExporterConfig
from bullmq_exporter.errors import ExporterLoadError
from bullmq_exporter.exposition import render_exposition

from .aggregator import Aggregate, merge_queue_counts
from .collector import collect_queue_counts
from .discovery import discover_queues
from .queue_metrics import (
    APP_NAME,
    COLLECT_DURATION,
    COLLECT_ERRORS_TOTAL,
    METRICS_REGISTRY,
    QUEUES_DISCOVERED,
    QueueMetric,
    build_queue_metrics,
)
from .redis_client import RedisConnector
from .redis_keys import QueueKeys

logger = logging.getLogger("bullmq_exporter")

# Failures that drop one database from the cycle. Replies are decoded as UTF-8,
# a key name with other bytes raises UnicodeDecodeError.
STORE_ERRORS = (RedisError, UnicodeDecodeError)


class QueueExporter:
    """
    Read-only view of BullMQ queues in one or more logical databases.

    Every scrape builds its own aggregate:
      for each database (sequentially): discovery -> one batched read -> merge
      then one render pass.

    Store errors never fail a scrape. The affected database just contributes nothing this
    cycle; the next scrape is the retry.
    """

    connector: RedisConnector
    keys: QueueKeys
    metrics: Sequence[QueueMetric]
    databases: List[Database]

    ready_process: Optional[Task] = None

    _running: bool = False

    def __init__(
        self,
        *,
        connector: RedisConnector,
        keys: QueueKeys,
        metrics: Sequence[QueueMetric],
        databases: Sequence[Database],
        queues: Optional[Sequence[str]] = None,
        emit_zero_samples: bool = False,
        self_metrics: bool = False,
        scan_count: Optional[int] = None,
    ):
        self.connector = connector
        self.keys = keys
        self.metrics = tuple(metrics)
        self.databases = list(databases)
        self.queues = list(queues) if queues is not None else None
        self.emit_zero_samples = emit_zero_samples
        self.self_metrics = self_metrics
        self.scan_count = scan_count

    @classmethod
    def from_config(cls, conf: ExporterConfig, connector: Optional[RedisConnector] = None) -> "QueueExporter":
        return cls(
            connector=connector or RedisConnector(conf.redis, conf.databases),
            keys=QueueKeys(prefix=conf.queue_prefix),
            metrics=build_queue_metrics(conf.metric_prefix, conf.completed_windows),
            databases=conf.databases,
            queues=conf.queues,
            emit_zero_samples=conf.emit_zero_samples,
            self_metrics=conf.self_metrics,
            scan_count=conf.scan_count,
        )

    def _is_running(self) -> bool:
        return self._running

    @property
    def is_running(self) -> bool:
        return self._running

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------
    async def run(self) -> None:
        if self.is_running:
            raise ExporterLoadError("Exporter is already running")

        await self.connector.connect()
        self._running = True

        # Serve /health (503) while the store is still unreachable
        self.ready_process = asyncio.create_task(
            self.connector.wait_ready(is_running_fn=self._is_running, who="[exporter]")
        )

    async def stop(self) -> None:
        if not self.is_running:
            raise ExporterLoadError("Exporter not started")

        self._running = False

        if self.ready_process and not self.ready_process.done():
            self.ready_process.cancel()
            try:
                await self.ready_process
            except asyncio.CancelledError:
                pass
        self.ready_process = None

        await self.connector.close()
        logger.info("Exporter stopped.")

    async def is_healthy(self) -> bool:
        return await self.connector.is_ready()

    # -------------------------------------------------------------------------
    # Collection
    # -------------------------------------------------------------------------
    async def _collect_database(self, aggregate: Aggregate, database: Database, now_ms: int) -> None:
        redis = self.connector.client_for(database.index)

        try:
            queue_names = await discover_queues(
                redis, self.keys, queues=self.queues, scan_count=self.scan_count
            )
        except STORE_ERRORS as e:
            logger.warning("Queue discovery failed, database skipped | db=%s | error=%s", database.label, e)
            COLLECT_ERRORS_TOTAL.labels(APP_NAME, database.label, "discovery").inc()
            return

        QUEUES_DISCOVERED.labels(APP_NAME, database.label).set(len(queue_names))

        try:
            records = await collect_queue_counts(redis, self.keys, queue_names, self.metrics, now_ms=now_ms)
        except STORE_ERRORS as e:
            logger.warning("Queue batch read failed, database skipped | db=%s | error=%s", database.label, e)
            COLLECT_ERRORS_TOTAL.labels(APP_NAME, database.label, "batch").inc()
            return

        merge_queue_counts(aggregate, database.label, records)

    async def collect(self) -> Aggregate:
        aggregate: Aggregate = {}
        now_ms = int(time.time() * 1000)

        with COLLECT_DURATION.labels(APP_NAME).time():
            for database in self.databases:
                await self._collect_database(aggregate, database, now_ms)

        return aggregate

    async def scrape(self) -> str:
        aggregate = await self.collect()
        body = render_exposition(aggregate, self.metrics, emit_zero_samples=self.emit_zero_samples)
        if self.self_metrics:
            body += generate_latest(METRICS_REGISTRY).decode("utf-8")
        return body
