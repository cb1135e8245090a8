import pytest
from fastapi.testclient import TestClient

from dbrotation.main import app, get_controller


@pytest.fixture
def client(controller):
    app.dependency_overrides[get_controller] = lambda: controller
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health_check(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_run_create_step(client, memory_store):
    response = client.post(
        "/rotation/steps",
        json={"secret_id": "db-cred", "request_token": "t2", "step": "createSecret"}
    )

    assert response.status_code == 200
    body = response.json()
    assert body["outcome"] == "completed"
    assert body["request_token"] == "t2"
    assert "t2" in memory_store.snapshot("db-cred")["payloads"]


def test_invalid_request_body(client):
    response = client.post("/rotation/steps", json={"secret_id": "db-cred", "step": "createSecret"})

    assert response.status_code == 400


def test_unexpected_field_rejected(client):
    response = client.post(
        "/rotation/steps",
        json={"request_token": "t2", "step": "createSecret", "password": "x"}
    )

    assert response.status_code == 400


def test_precondition_failure_maps_to_conflict(client):
    response = client.post(
        "/rotation/steps",
        json={"secret_id": "db-cred", "request_token": "t2", "step": "finishSecret"}
    )

    assert response.status_code == 409
    assert response.json()["detail"]["error"] == "StateError"


def test_validation_failure_maps_to_422(client):
    client.post("/rotation/steps", json={"secret_id": "db-cred", "request_token": "t2", "step": "createSecret"})

    response = client.post(
        "/rotation/steps",
        json={"secret_id": "db-cred", "request_token": "t2", "step": "testSecret"}
    )

    assert response.status_code == 422
    assert response.json()["detail"]["error"] == "ValidationError"


def test_unreachable_target_maps_to_503(client, fake_target):
    client.post("/rotation/steps", json={"secret_id": "db-cred", "request_token": "t2", "step": "createSecret"})
    fake_target.unreachable = True

    response = client.post(
        "/rotation/steps",
        json={"secret_id": "db-cred", "request_token": "t2", "step": "setSecret"}
    )

    assert response.status_code == 503
