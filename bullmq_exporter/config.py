import base64
import binascii
import copy
import logging
import logging.config
import os
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from bullmq_exporter.errors import ConfigError


LOGGING_CONFIG: Dict[str, Any] = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "default": {
            "()": "uvicorn.logging.DefaultFormatter",
            "fmt": "%(levelprefix)s[%(asctime)s] %(name)s - %(message)s",
            "use_colors": None,
        },
        "access": {
            "()": "uvicorn.logging.AccessFormatter",
            "fmt": '%(levelprefix)s[%(asctime)s] %(client_addr)s - "%(request_line)s" %(status_code)s',
        },
    },
    "handlers": {
        "default": {
            "formatter": "default",
            "class": "logging.StreamHandler",
            "stream": "ext://sys.stderr",
        },
        "access": {
            "formatter": "access",
            "class": "logging.StreamHandler",
            "stream": "ext://sys.stdout",
        },
    },
    "loggers": {
        "bullmq_exporter": {"handlers": ["default"], "level": "INFO", "propagate": False},
        "uvicorn": {"handlers": ["default"], "level": "INFO", "propagate": False},
        "uvicorn.error": {"level": "INFO"},
        "uvicorn.access": {"handlers": ["access"], "level": "INFO", "propagate": False},
    },
}


def set_logging_settings(logging_config: Dict[str, Any], level: Union[int, str] = logging.INFO) -> Dict[str, Any]:
    """
    Apply logging config with the given level for the exporter and uvicorn loggers.
    Returns the applied copy, so it can be handed to uvicorn as log_config.
    """
    conf = copy.deepcopy(logging_config)
    level_name = logging.getLevelName(level) if isinstance(level, int) else str(level).upper()
    for name in ("bullmq_exporter", "uvicorn", "uvicorn.error"):
        conf["loggers"].setdefault(name, {})["level"] = level_name
    logging.config.dictConfig(conf)
    return conf


# Prometheus metric names: [a-zA-Z_:][a-zA-Z0-9_:]*
METRIC_PREFIX_RE = re.compile(r"^[a-zA-Z_:][a-zA-Z0-9_:]*$")

DEFAULT_SENTINEL_PORT = 26379

LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")


@dataclass(frozen=True)
class Database:
    index: int
    label: str


@dataclass
class RedisSettings:
    host: str = "127.0.0.1"
    port: int = 6379
    username: Optional[str] = None
    password: Optional[str] = None

    # TLS: tls=True trusts the system store, ca pins the given PEM bundle (and implies TLS)
    tls: bool = False
    ca: Optional[str] = None

    sentinel_enabled: bool = False
    sentinel_nodes: List[Tuple[str, int]] = field(default_factory=list)
    # Sentinel master (service) name
    sentinel_master: Optional[str] = None
    sentinel_password: Optional[str] = None
    sentinel_tls: bool = False
    sentinel_ca: Optional[str] = None

    # Connect and read timeout, seconds
    socket_timeout: float = 5.0

    def connection_kwargs(self) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {
            "username": self.username,
            "password": self.password,
            "decode_responses": True,
            "socket_timeout": self.socket_timeout,
            "socket_connect_timeout": self.socket_timeout,
        }
        kwargs.update(_tls_kwargs(self.tls, self.ca))
        return kwargs

    def sentinel_kwargs(self) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {
            "password": self.sentinel_password,
            "decode_responses": True,
            "socket_timeout": self.socket_timeout,
            "socket_connect_timeout": self.socket_timeout,
        }
        kwargs.update(_tls_kwargs(self.sentinel_tls, self.sentinel_ca))
        return kwargs


def _tls_kwargs(enabled: bool, ca: Optional[str]) -> Dict[str, Any]:
    if ca:
        return {"ssl": True, "ssl_ca_data": ca, "ssl_cert_reqs": "required"}
    if enabled:
        return {"ssl": True}
    return {}


@dataclass
class ExporterConfig:
    """
    Exporter settings. Read once at process start, see ExporterConfig.from_env().
    """

    # HTTP listener
    host: str = "0.0.0.0"
    port: int = 3000

    # Prefix of emitted metric names
    metric_prefix: str = "bull"

    # Keyspace prefix, queues are discovered by "<queue_prefix>:*:meta"
    queue_prefix: str = "bull"

    # Explicit queue names. When set, keyspace scan is skipped.
    queues: Optional[List[str]] = None

    databases: List[Database] = field(default_factory=lambda: [Database(0, "default")])
    redis: RedisSettings = field(default_factory=RedisSettings)

    # Extra "completed within the last N seconds" gauges
    completed_windows: List[int] = field(default_factory=list)

    # Render samples whose value is 0
    emit_zero_samples: bool = False

    # Append exporter's own metrics (http, collection errors) to /metrics
    self_metrics: bool = False

    # COUNT hint for every SCAN page
    scan_count: Optional[int] = None

    log_level: str = "INFO"

    # Wait time for graceful shutdown of the web app
    timeout_for_shutdown: float = 3.0

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ExporterConfig":
        env = os.environ if environ is None else environ

        metric_prefix = env.get("PROM_PREFIX", "bull")
        if not METRIC_PREFIX_RE.match(metric_prefix):
            raise ConfigError(f"PROM_PREFIX is not a valid metric name prefix: {metric_prefix!r}")

        queue_prefix = env.get("BULL_PREFIX", "bull")
        if not queue_prefix:
            raise ConfigError("BULL_PREFIX must not be empty")

        queues = None
        if env.get("BULL_QUEUES"):
            queues = [q.strip() for q in env["BULL_QUEUES"].split(",") if q.strip()]
            if not queues:
                raise ConfigError(f"BULL_QUEUES has no queue names: {env['BULL_QUEUES']!r}")

        sentinel_enabled = _env_bool(env, "REDIS_SENTINEL_ENABLED")
        sentinel_nodes: List[Tuple[str, int]] = []
        sentinel_master = env.get("REDIS_NAMESPACE") or None
        if sentinel_enabled:
            if not env.get("REDIS_SENTINEL_HOSTS"):
                raise ConfigError("REDIS_SENTINEL_ENABLED=true requires REDIS_SENTINEL_HOSTS")
            if not sentinel_master:
                raise ConfigError("REDIS_SENTINEL_ENABLED=true requires REDIS_NAMESPACE")
            sentinel_nodes = parse_sentinel_hosts(env["REDIS_SENTINEL_HOSTS"])

        redis = RedisSettings(
            host=env.get("REDIS_HOST", "127.0.0.1"),
            port=_env_int(env, "REDIS_PORT", 6379),
            username=env.get("REDIS_USERNAME") or None,
            password=env.get("REDIS_PASSWORD") or None,
            tls=_env_bool(env, "REDIS_TLS"),
            ca=_decode_ca(env, "REDIS_CA"),
            sentinel_enabled=sentinel_enabled,
            sentinel_nodes=sentinel_nodes,
            sentinel_master=sentinel_master,
            sentinel_password=env.get("REDIS_SENTINEL_PASSWORD") or None,
            sentinel_tls=_env_bool(env, "REDIS_SENTINEL_TLS"),
            sentinel_ca=_decode_ca(env, "REDIS_SENTINEL_CA"),
            socket_timeout=_env_float(env, "REDIS_SOCKET_TIMEOUT", 5.0),
        )

        log_level = env.get("LOG_LEVEL", "INFO").upper()
        if log_level not in LOG_LEVELS:
            raise ConfigError(f"LOG_LEVEL must be one of {', '.join(LOG_LEVELS)}, got {log_level!r}")

        scan_count = None
        if env.get("SCAN_COUNT"):
            scan_count = _env_int(env, "SCAN_COUNT", 0)
            if scan_count < 1:
                raise ConfigError(f"SCAN_COUNT must be > 0, got {scan_count}")

        return cls(
            host=env.get("HOST", "0.0.0.0"),
            port=_env_int(env, "PORT", 3000),
            metric_prefix=metric_prefix,
            queue_prefix=queue_prefix,
            queues=queues,
            databases=parse_databases(env.get("REDIS_DB", "0:default")),
            redis=redis,
            completed_windows=parse_windows(env.get("COMPLETED_WINDOWS", "")),
            emit_zero_samples=_env_bool(env, "EMIT_ZERO_SAMPLES"),
            self_metrics=_env_bool(env, "SELF_METRICS"),
            scan_count=scan_count,
            log_level=log_level,
        )


def parse_databases(spec: str) -> List[Database]:
    """
    Parse "0:default,1:alt" into ordered Database list.

    An entry without a label ("3") is labelled by its index.
    Duplicate indices and duplicate labels are rejected.
    """
    databases: List[Database] = []
    seen = set()
    seen_labels = set()

    for entry in spec.split(","):
        entry = entry.strip()
        if not entry:
            raise ConfigError(f"Empty database entry in REDIS_DB={spec!r}")

        raw_index, sep, label = entry.partition(":")
        try:
            index = int(raw_index)
        except ValueError:
            raise ConfigError(f"Database index is not an integer: {entry!r}")
        if index < 0:
            raise ConfigError(f"Database index must be >= 0: {entry!r}")

        label = label.strip() if sep else str(index)
        if not label:
            raise ConfigError(f"Database label is empty: {entry!r}")
        if index in seen:
            raise ConfigError(f"Duplicate database index {index} in REDIS_DB={spec!r}")
        if label in seen_labels:
            raise ConfigError(f"Duplicate database label {label!r} in REDIS_DB={spec!r}")

        seen.add(index)
        seen_labels.add(label)
        databases.append(Database(index=index, label=label))

    return databases


def parse_sentinel_hosts(spec: str) -> List[Tuple[str, int]]:
    nodes: List[Tuple[str, int]] = []
    for entry in spec.split(","):
        entry = entry.strip()
        if not entry:
            continue
        host, sep, raw_port = entry.rpartition(":")
        if not sep:
            host, raw_port = entry, str(DEFAULT_SENTINEL_PORT)
        try:
            port = int(raw_port)
        except ValueError:
            raise ConfigError(f"Sentinel port is not an integer: {entry!r}")
        if not host:
            raise ConfigError(f"Sentinel host is empty: {entry!r}")
        nodes.append((host, port))

    if not nodes:
        raise ConfigError(f"No sentinel nodes in REDIS_SENTINEL_HOSTS={spec!r}")
    return nodes


def parse_windows(spec: str) -> List[int]:
    windows = set()
    for entry in spec.split(","):
        entry = entry.strip()
        if not entry:
            continue
        try:
            width = int(entry)
        except ValueError:
            raise ConfigError(f"Window width is not an integer number of seconds: {entry!r}")
        if width < 1:
            raise ConfigError(f"Window width must be > 0: {entry!r}")
        windows.add(width)
    return sorted(windows)


def _env_bool(env: Mapping[str, str], name: str, default: bool = False) -> bool:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}")


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}")


def _decode_ca(env: Mapping[str, str], name: str) -> Optional[str]:
    raw = env.get(name)
    if not raw:
        return None
    try:
        return base64.b64decode(raw, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as e:
        raise ConfigError(f"{name} is not base64-encoded PEM: {e}")
