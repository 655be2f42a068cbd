from .exporter import QueueExporter
from .redis_client import RedisConnector

# Re-export metrics registry for the HTTP middleware (used by web/app.py)
from .queue_metrics import (
    METRICS_REGISTRY,
    APP_NAME,
    HTTP_REQUESTS_TOTAL,
    HTTP_REQUEST_DURATION,
)
