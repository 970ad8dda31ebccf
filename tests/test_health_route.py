from fastapi import FastAPI
from fastapi.testclient import TestClient

from recall.services.memory_service import MemoryService
from recall.services.record_store import RecordStore
from app.routes.health import router as health_router


def _client(service):
    app = FastAPI()
    app.include_router(health_router)
    app.state.memory_service = service
    return TestClient(app)


def test_health_reports_healthy_store(service):
    response = _client(service).get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["service"] == "Recall"
    assert body["store"]["durable_backend"] == "sql"
    assert body["embedding"]["fallback_count"] == 0


def test_health_is_unavailable_while_durable_store_is_down(flaky_store, engine_config):
    service = MemoryService(RecordStore(flaky_store), engine_config)

    response = _client(service).get("/health")

    assert response.status_code == 503
    assert response.json()["detail"]["status"] == "degraded"


def test_health_recovers_after_recheck(flaky_store, engine_config):
    service = MemoryService(RecordStore(flaky_store), engine_config)
    client = _client(service)
    assert client.get("/health").status_code == 503

    flaky_store.failing = False

    assert client.get("/health").status_code == 200
