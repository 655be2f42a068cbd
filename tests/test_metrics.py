from fastapi.testclient import TestClient

from bullmq_exporter.config import ExporterConfig
from common_app import build_web
from fake_redis import FakeConnector, FakeRedis


def test_metrics_endpoint_exposes_exporter_metrics():
    store = FakeRedis()
    store.add_queue("orders", active=2)
    conf = ExporterConfig.from_env({"SELF_METRICS": "true"})
    web = build_web(conf, connector=FakeConnector({0: store}, conf.databases))

    with TestClient(web.app) as client:
        client.get("/health")
        r = client.get("/metrics")

    assert r.status_code == 200
    text = r.text

    # Queue metrics first
    assert text.startswith("# HELP bull_active_total")

    # Core metrics we expect
    assert "http_requests_total" in text
    assert "http_request_duration_seconds" in text
    assert 'route="/health"' in text

    # Collection metrics
    assert "bullmq_exporter_collect_duration_seconds" in text
    assert 'bullmq_exporter_queues_discovered{app="bullmq_exporter",db="default"} 1.0' in text


def test_self_metrics_off_by_default():
    store = FakeRedis()
    store.add_queue("orders", active=2)
    conf = ExporterConfig.from_env({})
    web = build_web(conf, connector=FakeConnector({0: store}, conf.databases))

    with TestClient(web.app) as client:
        r = client.get("/metrics")

    assert "http_requests_total" not in r.text
