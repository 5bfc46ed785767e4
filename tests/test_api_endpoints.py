"""
Tests for API Endpoints

This test suite verifies:
- Health check and root endpoints
- Verification of two fingerprints (match, strategy mismatch, bad vectors)
- Verification against an enrolled identity
- Enrollment management (put, list, delete)

Run with: pytest tests/test_api_endpoints.py -v

Note: The face models are never loaded here; the model strategy is only
simulated by patching the health helpers.
"""

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from api.schemas import FingerprintPayload
from faceverify.store import InMemoryFingerprintStore
from faceverify.strategy import Strategy


def payload(vector, strategy="model"):
    return {"strategy": strategy, "vector": list(vector)}


@pytest.fixture
def store():
    """Fresh fingerprint store for every test."""
    fresh = InMemoryFingerprintStore()
    with patch("faceverify.store._store_instance", fresh):
        yield fresh


@pytest.fixture
def client(store):
    from api.app import app
    return TestClient(app)


class TestHealthEndpoint:
    """Tests for the health check endpoint."""

    def test_health_check_returns_status(self, client):
        with patch("api.app.default_strategy", return_value=Strategy.HEURISTIC):
            response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["default_strategy"] == "heuristic"
        assert data["model_loaded"] is False
        assert data["enrolled_identities"] == 0

    def test_model_strategy_without_models_is_degraded(self, client):
        with patch("api.app.default_strategy", return_value=Strategy.MODEL), \
                patch("api.app.model_loaded", return_value=False):
            data = client.get("/health").json()

        assert data["status"] == "degraded"
        assert data["model_loaded"] is False

    def test_model_strategy_with_models_is_healthy(self, client):
        with patch("api.app.default_strategy", return_value=Strategy.MODEL), \
                patch("api.app.model_loaded", return_value=True):
            data = client.get("/health").json()

        assert data["status"] == "healthy"
        assert data["model_loaded"] is True

    def test_root_endpoint(self, client):
        response = client.get("/")
        assert response.status_code == 200

        data = response.json()
        assert "name" in data
        assert "version" in data
        assert data["docs"] == "/docs"


class TestVerifyEndpoint:
    """Tests for POST /verify."""

    def test_matching_fingerprints(self, client):
        response = client.post("/verify", json={
            "enrolled": payload([0.0] * 128),
            "candidate": payload([0.3] + [0.0] * 127),
            "threshold": 0.6,
        })
        assert response.status_code == 200

        data = response.json()
        assert data["matched"] is True
        assert data["distance"] == pytest.approx(0.3, abs=1e-6)
        assert data["threshold"] == 0.6
        assert data["strategy"] == "model"
        assert data["method"] == "euclidean"
        assert data["identity"] is None

    def test_configured_threshold_used_by_default(self, client):
        response = client.post("/verify", json={
            "enrolled": payload([0.0, 0.0], "heuristic"),
            "candidate": payload([1.0, 1.0], "heuristic"),
        })
        assert response.status_code == 200
        data = response.json()
        assert data["threshold"] == 0.5
        assert data["matched"] is False

    def test_strategy_mismatch_conflict(self, client):
        response = client.post("/verify", json={
            "enrolled": payload([0.0] * 32, "heuristic"),
            "candidate": payload([0.0] * 32, "model"),
        })
        assert response.status_code == 409

    def test_dimension_mismatch_rejected(self, client):
        response = client.post("/verify", json={
            "enrolled": payload([0.0, 1.0]),
            "candidate": payload([0.0, 1.0, 2.0]),
        })
        assert response.status_code == 422

    def test_empty_vector_rejected(self, client):
        response = client.post("/verify", json={
            "enrolled": payload([]),
            "candidate": payload([0.0]),
        })
        assert response.status_code == 422

    def test_unknown_strategy_rejected(self, client):
        response = client.post("/verify", json={
            "enrolled": payload([0.0], "pixels"),
            "candidate": payload([0.0], "pixels"),
        })
        assert response.status_code == 422

    def test_non_positive_threshold_rejected(self, client):
        response = client.post("/verify", json={
            "enrolled": payload([0.0]),
            "candidate": payload([0.0]),
            "threshold": 0,
        })
        assert response.status_code == 422

    def test_non_finite_vector_rejected_by_schema(self):
        with pytest.raises(ValueError):
            FingerprintPayload(strategy="model", vector=[1.0, float("nan")])


class TestIdentityVerification:
    """Tests for POST /verify/{identity}."""

    def test_unknown_identity(self, client):
        response = client.post("/verify/nobody", json={"candidate": payload([0.0])})
        assert response.status_code == 404

    def test_verify_enrolled_identity(self, client):
        client.put("/enrollments/s1234", json={"fingerprint": payload([0.0] * 128)})

        response = client.post("/verify/s1234", json={
            "candidate": payload([0.3] + [0.0] * 127),
        })
        assert response.status_code == 200
        data = response.json()
        assert data["matched"] is True
        assert data["identity"] == "s1234"

    def test_strategy_mismatch_against_enrolled(self, client):
        client.put("/enrollments/s1234", json={"fingerprint": payload([0.0] * 32, "heuristic")})

        response = client.post("/verify/s1234", json={"candidate": payload([0.0] * 32, "model")})
        assert response.status_code == 409


class TestEnrollmentEndpoints:
    """Tests for enrollment management endpoints."""

    def test_enroll_and_list(self, client, store):
        response = client.put("/enrollments/s1", json={"fingerprint": payload([0.1] * 32, "heuristic")})
        assert response.status_code == 200
        assert response.json() == {"identity": "s1", "strategy": "heuristic", "dimension": 32}

        client.put("/enrollments/s2", json={"fingerprint": payload([0.1] * 512)})

        data = client.get("/enrollments").json()
        assert data["total"] == 2
        assert [e["identity"] for e in data["enrollments"]] == ["s1", "s2"]
        assert len(store) == 2

    def test_enroll_replaces_existing(self, client, store):
        client.put("/enrollments/s1", json={"fingerprint": payload([0.1] * 32, "heuristic")})
        client.put("/enrollments/s1", json={"fingerprint": payload([0.1] * 512)})

        assert len(store) == 1
        assert store.get("s1").dimension == 512

    def test_delete_enrollment(self, client, store):
        client.put("/enrollments/s1", json={"fingerprint": payload([0.1] * 32, "heuristic")})

        response = client.delete("/enrollments/s1")
        assert response.status_code == 200
        assert response.json()["success"] is True
        assert store.get("s1") is None

    def test_delete_unknown_identity(self, client):
        response = client.delete("/enrollments/nobody")
        assert response.status_code == 404

    def test_list_empty(self, client):
        data = client.get("/enrollments").json()
        assert data == {"enrollments": [], "total": 0}
