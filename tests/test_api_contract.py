import time

from fastapi.testclient import TestClient

from bullmq_exporter.config import ExporterConfig
from common_app import build_web
from fake_redis import FakeConnector, FakeRedis


def make_client(stores, environ=None) -> TestClient:
    conf = ExporterConfig.from_env(environ or {})
    web = build_web(conf, connector=FakeConnector(stores, conf.databases))
    return TestClient(web.app)


def wait_for_health(client: TestClient, status_code: int, timeout: float = 5.0) -> int:
    deadline = time.time() + timeout
    r = client.get("/health")
    while r.status_code != status_code and time.time() < deadline:
        time.sleep(0.05)
        r = client.get("/health")
    return r.status_code


def test_health_503_until_store_is_ready_then_200():
    store = FakeRedis()
    store.down = True

    with make_client({0: store}) as client:
        r = client.get("/health")
        assert r.status_code == 503
        assert r.content == b""

        store.down = False
        assert wait_for_health(client, 200) == 200

        r = client.get("/health")
        assert r.content == b""


def test_health_503_when_store_goes_away():
    store = FakeRedis()

    with make_client({0: store}) as client:
        assert wait_for_health(client, 200) == 200

        store.down = True
        assert client.get("/health").status_code == 503


def test_metrics_endpoint_renders_queues():
    store = FakeRedis()
    store.add_queue("orders", active=2, delayed=1, completed=4)

    with make_client({0: store}) as client:
        r = client.get("/metrics")

    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/plain")
    assert r.text == (
        "# HELP bull_active_total Number of jobs in processing\n"
        "# TYPE bull_active_total gauge\n"
        'bull_active_total{queue="orders",db="default"} 2\n'
        "\n"
        "# HELP bull_delayed_total Number of delayed jobs\n"
        "# TYPE bull_delayed_total gauge\n"
        'bull_delayed_total{queue="orders",db="default"} 1\n'
        "\n"
        "# HELP bull_completed_total Number of completed jobs\n"
        "# TYPE bull_completed_total gauge\n"
        'bull_completed_total{queue="orders",db="default"} 4\n'
        "\n"
    )


def test_metrics_is_200_when_store_is_down():
    store = FakeRedis()
    store.add_queue("orders", active=2)
    store.down = True

    with make_client({0: store}) as client:
        r = client.get("/metrics")

    assert r.status_code == 200
    assert r.text == ""


def test_metrics_multi_database_and_prefixes():
    default_store, alt_store = FakeRedis(), FakeRedis()
    default_store.add_queue("emails", prefix="app", active=1)
    alt_store.add_queue("emails", prefix="app", active=3)
    environ = {"REDIS_DB": "0:default,1:alt", "BULL_PREFIX": "app", "PROM_PREFIX": "jobs"}

    with make_client({0: default_store, 1: alt_store}, environ) as client:
        r = client.get("/metrics")

    assert 'jobs_active_total{queue="emails",db="default"} 1\n' in r.text
    assert 'jobs_active_total{queue="emails",db="alt"} 3\n' in r.text


def test_shutdown_closes_store():
    store = FakeRedis()

    with make_client({0: store}) as client:
        client.get("/health")
        assert store.closed is False

    assert store.closed is True


def test_metrics_with_glob_characters_in_queue_prefix():
    store = FakeRedis()
    store.add_queue("orders", prefix="bull1", active=5)
    store.add_queue("emails", prefix="bull[1]", active=2)

    with make_client({0: store}, {"BULL_PREFIX": "bull[1]"}) as client:
        r = client.get("/metrics")

    assert r.status_code == 200
    assert 'bull_active_total{queue="emails",db="default"} 2\n' in r.text
    assert "orders" not in r.text
