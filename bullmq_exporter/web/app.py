import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Dict

import uvicorn
from fastapi import FastAPI, Response
from prometheus_client import CONTENT_TYPE_LATEST
from starlette.middleware.base import BaseHTTPMiddleware

from bullmq_exporter import __version__
from bullmq_exporter.config import LOGGING_CONFIG, ExporterConfig
from bullmq_exporter.errors import ExporterLoadError
from bullmq_exporter.redis_queue import (
    APP_NAME,
    HTTP_REQUEST_DURATION,
    HTTP_REQUESTS_TOTAL,
    QueueExporter,
)

logger = logging.getLogger("bullmq_exporter")


class PrometheusMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - start

        route = request.scope.get("route")
        route_path = getattr(route, "path", request.url.path)

        HTTP_REQUESTS_TOTAL.labels(APP_NAME, request.method, route_path, str(response.status_code)).inc()
        HTTP_REQUEST_DURATION.labels(APP_NAME, request.method, route_path).observe(elapsed)

        return response


@dataclass(repr=True)
class ExporterWebApp:
    """HTTP surface of the exporter: /health and /metrics."""

    exporter: QueueExporter = field(repr=False)
    conf: ExporterConfig = field(default_factory=ExporterConfig, repr=False)

    # Uvicorn settings
    uvicorn_kwargs: Dict = field(default_factory=dict, repr=False)

    _fast_api: FastAPI = field(init=False, default=None, repr=False)
    _uvicorn_server: uvicorn.Server = field(init=False, default=None, repr=False)

    @property
    def loaded(self) -> bool:
        return self._fast_api is not None

    @property
    def app(self) -> FastAPI:
        if not self.loaded:
            raise ExporterLoadError("web not created. Please call web.load().")
        return self._fast_api

    @asynccontextmanager
    async def _lifespan(self, app: FastAPI):
        # Startup web app code
        await self.exporter.run()
        yield
        # Shutdown web app code. Uvicorn has already closed the listener here.
        await self.exporter.stop()

    def _create_app(self):
        self._fast_api = FastAPI(
            title="BullMQ exporter",
            description="Prometheus metrics of BullMQ queues stored in Redis.",
            version=__version__,
            lifespan=self._lifespan,
            docs_url=None,
            redoc_url=None,
            openapi_url=None,
        )
        self._fast_api.add_middleware(PrometheusMiddleware)

        self.app.add_api_route("/health", self.http_health, methods=["GET"])
        self.app.add_api_route("/metrics", self.http_metrics, methods=["GET"])

    def load(self):
        """Create web app"""
        logger.debug("Run load Web application")
        self.uvicorn_kwargs.setdefault("host", self.conf.host)
        self.uvicorn_kwargs.setdefault("port", self.conf.port)
        self.uvicorn_kwargs.setdefault("timeout_graceful_shutdown", int(self.conf.timeout_for_shutdown))
        self.uvicorn_kwargs.setdefault("log_config", LOGGING_CONFIG)
        self._create_app()

    def run(self):
        """
        Serve until SIGINT/SIGTERM. Uvicorn stops accepting connections first, then the
        lifespan shutdown closes the Redis clients.
        """
        if not self.loaded:
            raise ExporterLoadError("For run web app, please call web.load().")

        logger.info(
            "BullMQ exporter will be launched at: http://%s:%s",
            self.uvicorn_kwargs["host"],
            self.uvicorn_kwargs["port"],
        )
        self._uvicorn_server = uvicorn.Server(uvicorn.Config(self.app, **self.uvicorn_kwargs))
        self._uvicorn_server.run()

    async def http_health(self):
        healthy = await self.exporter.is_healthy()
        return Response(status_code=200 if healthy else 503)

    async def http_metrics(self):
        payload = await self.exporter.scrape()
        return Response(content=payload, media_type=CONTENT_TYPE_LATEST)
