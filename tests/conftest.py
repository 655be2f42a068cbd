"""Pytest configuration for exporter tests."""
import sys
from pathlib import Path

import pytest


def _ensure_root_on_path() -> None:
    root_dir = Path(__file__).resolve().parents[1]
    root_path = str(root_dir)
    if root_path not in sys.path:
        sys.path.insert(0, root_path)


_ensure_root_on_path()

from bullmq_exporter.redis_queue.queue_metrics import build_queue_metrics  # noqa: E402
from bullmq_exporter.redis_queue.redis_keys import QueueKeys  # noqa: E402
from fake_redis import FakeRedis  # noqa: E402


@pytest.fixture
def keys() -> QueueKeys:
    return QueueKeys(prefix="bull")


@pytest.fixture
def metrics():
    return build_queue_metrics("bull")


@pytest.fixture
def store() -> FakeRedis:
    return FakeRedis()
