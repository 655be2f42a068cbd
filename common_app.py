from typing import Mapping, Optional

from bullmq_exporter.config import ExporterConfig
from bullmq_exporter.redis_queue import QueueExporter, RedisConnector
from bullmq_exporter.web.app import ExporterWebApp


def build_web(
    conf: Optional[ExporterConfig] = None,
    *,
    environ: Optional[Mapping[str, str]] = None,
    connector: Optional[RedisConnector] = None,
) -> ExporterWebApp:
    """
    Single source of truth for wiring config -> Redis connector -> exporter -> web app.
    app.py and the tests build the application through here.
    Raises ConfigError for malformed configuration.
    """
    if conf is None:
        conf = ExporterConfig.from_env(environ)

    exporter = QueueExporter.from_config(conf, connector=connector)
    web = ExporterWebApp(exporter=exporter, conf=conf)
    web.load()
    return web
