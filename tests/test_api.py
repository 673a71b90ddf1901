import base64

import pytest
from fastapi.testclient import TestClient

from main import create_app
from tests.helpers import make_engine, make_png


@pytest.fixture
def client():
    app = create_app(lambda: make_engine())
    with TestClient(app) as test_client:
        yield test_client


def experiment_payload(test_id="api-test"):
    return {
        "test_id": test_id,
        "test_name": "API test",
        "variants": [
            {"id": "control", "name": "Control", "is_control": True},
            {"id": "treatment", "name": "Treatment"},
        ],
        "metrics": [{"id": "quality", "name": "Quality"}],
        "traffic_split": {"control": 0.5, "treatment": 0.5},
    }


def test_health_endpoints(client):
    assert client.get("/health").json()["scoring_version"] == "heuristic-v1"
    assert client.get("/health/live").json()["alive"] is True
    ready = client.get("/health/ready").json()
    assert ready["ready"] is True
    assert ready["checks"]["storage"]["backend"] == "InMemoryStore"


def test_correlation_id_is_echoed(client):
    response = client.get("/", headers={"X-Correlation-ID": "abc-123"})
    assert response.headers["X-Correlation-ID"] == "abc-123"
    assert "X-Request-Duration-Ms" in response.headers
    assert client.get("/").headers["X-Correlation-ID"]


def test_recommendations(client):
    response = client.post("/api/v1/recommendations", json={
        "user_id": "user-1",
        "user_prompt": "a cat in space",
        "device_type": "mobile",
    })
    assert response.status_code == 200
    body = response.json()
    assert len(body["primary_recommendations"]) == 3
    assert all(not r["requires_image"] for r in body["primary_recommendations"])


def test_generation_lifecycle(client):
    response = client.post("/api/v1/generations", json={
        "user_id": "user-1",
        "tool_id": "text_to_image",
        "prompt": "a landscape painting at dawn",
    })
    assert response.status_code == 200
    generation_id = response.json()["generation_id"]

    image = base64.b64encode(make_png()).decode()
    outcome = client.post(
        f"/api/v1/generations/{generation_id}/outcome",
        json={"success": True, "generation_time": 20.0, "image_data": image},
    )
    assert outcome.status_code == 202

    assert client.post(f"/api/v1/generations/{generation_id}/rating", json={"rating": 5}).status_code == 202
    assert client.post(f"/api/v1/generations/{generation_id}/rating", json={"rating": 9}).status_code == 422

    features = client.get("/api/v1/users/user-1/features").json()
    assert features["total_generations"] == 1
    assert features["average_satisfaction_rating"] == 5.0
    assert client.get("/api/v1/users/user-1/skill").status_code == 200
    assert client.get("/api/v1/users/nobody/skill").status_code == 404


def test_empty_prompt_is_a_bad_request(client):
    response = client.post("/api/v1/generations", json={"user_id": "u", "tool_id": "text_to_image", "prompt": " "})
    assert response.status_code == 400


def test_ingestion_is_accepted_even_for_unknown_records(client):
    assert client.post("/api/v1/behavior", json={"user_id": "u", "tool_id": "film_noir"}).status_code == 202
    assert client.post(
        "/api/v1/generations/gen_missing/outcome", json={"success": False}
    ).status_code == 202
    assert client.post("/api/v1/recommendations/usage", json={
        "tool_id": "no_such_tool",
        "context": {"user_id": "u"},
        "outcome": {"success": True},
    }).status_code == 202


def test_experiment_endpoints(client):
    assert client.post("/api/v1/experiments", json=experiment_payload()).status_code == 201
    assert client.post("/api/v1/experiments", json=experiment_payload()).status_code == 400
    assert client.post("/api/v1/experiments/missing/start").status_code == 404

    started = client.post("/api/v1/experiments/api-test/start").json()
    assert started["status"] == "active"
    assert [t["test_id"] for t in client.get("/api/v1/experiments").json()] == ["api-test"]

    assignment = client.post("/api/v1/experiments/api-test/variant", json={"user_id": "user-1"}).json()
    assert assignment["variant_id"] in {"control", "treatment"}

    response = client.post("/api/v1/experiments/api-test/results", json={
        "variant_id": assignment["variant_id"],
        "user_id": "user-1",
        "metrics": {"quality": 75.0},
    })
    assert response.status_code == 202

    stats = client.get("/api/v1/experiments/api-test/stats").json()
    assert stats["total_samples"] == 1
    assert client.get("/api/v1/experiments/api-test/analysis").json()["status"] == "running"

    stopped = client.post("/api/v1/experiments/api-test/stop", json={"reason": "done"}).json()
    assert stopped["status"] == "completed"
    assert stopped["stop_reason"] == "done"
    assert client.post("/api/v1/experiments/api-test/start").status_code == 400
    assert client.get("/api/v1/experiments/api-test").json()["status"] == "completed"
    assert client.get("/api/v1/experiments/missing").status_code == 404


def test_invalid_split_is_rejected(client):
    payload = experiment_payload("bad-split")
    payload["traffic_split"] = {"control": 0.7, "treatment": 0.1}
    assert client.post("/api/v1/experiments", json=payload).status_code == 400


def test_monitoring_endpoints(client):
    for _ in range(3):
        health = client.post("/api/v1/monitoring/performance", json={"model_id": "scorer", "accuracy": 0.4})
    assert health.json()["status"] == "critical"

    alerts = client.get("/api/v1/monitoring/alerts", params={"model_id": "scorer"}).json()
    assert len(alerts) == 1

    resolved = client.post(f"/api/v1/monitoring/alerts/{alerts[0]['alert_id']}/resolve").json()
    assert resolved["resolved"] is True
    assert client.post("/api/v1/monitoring/alerts/alert_missing/resolve").status_code == 404

    assert client.get("/api/v1/monitoring/health/scorer").json()["status"] == "critical"
    assert client.get("/api/v1/monitoring/health/missing").status_code == 404
    assert len(client.get("/api/v1/monitoring/health").json()) == 1

    drift = client.post("/api/v1/monitoring/drift", json={
        "feature_name": "prompt_length",
        "current": [1.0, 2.0, 3.0],
        "reference": [1.0, 2.0, 3.0],
    }).json()
    assert drift["is_drifting"] is False

    batch = client.post("/api/v1/monitoring/drift/batch", json={
        "current": {"a": [1.0, 2.0], "b": [9.0, 10.0]},
        "reference": {"a": [1.0, 2.0], "b": [1.0, 2.0]},
    }).json()
    assert batch["b"]["is_drifting"] is True

    report = client.get("/api/v1/monitoring/reports/scorer", params={"hours": 2}).json()
    assert report["sample_count"] == 3
    assert client.post("/api/v1/monitoring/sweep").json()["models_marked_offline"] == []


def test_metrics_endpoint(client):
    client.post("/api/v1/monitoring/performance", json={"model_id": "scorer", "accuracy": 0.9})
    response = client.get("/metrics")
    assert response.status_code == 200
    assert "personalization_model_performance" in response.text
