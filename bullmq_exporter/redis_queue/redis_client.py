import asyncio
import logging
from typing import Callable, Dict, Optional, Sequence

from redis.asyncio import Redis
from redis.asyncio.sentinel import Sentinel
from redis.exceptions import RedisError

from bullmq_exporter.config import Database, RedisSettings
from bullmq_exporter.errors import ExporterLoadError

logger = logging.getLogger("bullmq_exporter")


class RedisConnector:
    """
    Helper to manage Redis connection lifecycle:
      - connect()     one client (own pool) per logical database, no SELECT switching
      - wait_ready()  ping with backoff until the store answers
      - is_ready()    health probe
      - close()       best-effort disconnect
    """

    def __init__(self, settings: RedisSettings, databases: Sequence[Database]):
        if not databases:
            raise ExporterLoadError("At least one database is required")
        self.settings = settings
        self.databases = list(databases)
        self.clients: Dict[int, Redis] = {}
        self.sentinel: Optional[Sentinel] = None
        self._ready = False

    @property
    def target(self) -> str:
        if self.settings.sentinel_enabled:
            nodes = ",".join(f"{host}:{port}" for host, port in self.settings.sentinel_nodes)
            return f"sentinel://{nodes}/{self.settings.sentinel_master}"
        return f"redis://{self.settings.host}:{self.settings.port}"

    def _create_client(self, index: int) -> Redis:
        kwargs = self.settings.connection_kwargs()
        if self.settings.sentinel_enabled:
            if self.sentinel is None:
                self.sentinel = Sentinel(
                    self.settings.sentinel_nodes,
                    sentinel_kwargs=self.settings.sentinel_kwargs(),
                )
            return self.sentinel.master_for(self.settings.sentinel_master, db=index, **kwargs)
        return Redis(host=self.settings.host, port=self.settings.port, db=index, **kwargs)

    async def connect(self) -> Dict[int, Redis]:
        for database in self.databases:
            self.clients[database.index] = self._create_client(database.index)
        logger.info("Redis clients created | target=%s | databases=%s", self.target, [d.index for d in self.databases])
        return self.clients

    @property
    def primary(self) -> Redis:
        return self.client_for(self.databases[0].index)

    def client_for(self, index: int) -> Redis:
        if not self.clients:
            raise ExporterLoadError("Redis is not connected. Please call connect().")
        try:
            return self.clients[index]
        except KeyError:
            raise ExporterLoadError(f"Database {index} is not configured")

    async def wait_ready(self, *, is_running_fn: Callable[[], bool], who: str = "") -> bool:
        backoff = 1.0
        while is_running_fn():
            try:
                await self.primary.ping()
                self._ready = True
                logger.info("%s Redis is ready (PING OK) | target=%s", who, self.target)
                return True
            except RedisError as e:
                logger.warning("%s Redis not ready: %s (retry in %.1fs)", who, e, backoff)
                await asyncio.sleep(backoff)
                backoff = min(backoff * 1.5, 10.0)
        return False

    async def is_ready(self) -> bool:
        if not self._ready or not self.clients:
            return False
        try:
            await self.primary.ping()
            return True
        except RedisError as e:
            logger.warning("Redis health check failed: %s", e)
            return False

    async def close(self) -> None:
        self._ready = False
        clients = list(self.clients.values())
        if self.sentinel is not None:
            clients.extend(self.sentinel.sentinels)

        for client in clients:
            try:
                await client.aclose(close_connection_pool=True)
            except (RedisError, OSError) as e:
                logger.warning("Redis close failed: %s", e)

        self.clients = {}
        self.sentinel = None
