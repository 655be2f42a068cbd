import logging
import sys

from bullmq_exporter.config import LOGGING_CONFIG, ExporterConfig, set_logging_settings
from bullmq_exporter.errors import ConfigError

# Import app from composition root
from common_app import build_web

logger = logging.getLogger("bullmq_exporter")


def main() -> int:
    set_logging_settings(LOGGING_CONFIG, level=logging.INFO)

    try:
        conf = ExporterConfig.from_env()
    except ConfigError as e:
        logger.error("Invalid configuration: %s", e)
        return 1

    log_config = set_logging_settings(LOGGING_CONFIG, level=conf.log_level)

    web = build_web(conf)
    web.uvicorn_kwargs["log_config"] = log_config

    logger.info(
        "Starting exporter | databases=%s | queue_prefix=%s | metric_prefix=%s | explicit_queues=%s",
        ",".join(f"{d.index}:{d.label}" for d in conf.databases),
        conf.queue_prefix,
        conf.metric_prefix,
        conf.queues,
    )
    web.run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
