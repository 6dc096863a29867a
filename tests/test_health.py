# tests/test_health.py
from fastapi.testclient import TestClient


def test_health_endpoint(client: TestClient) -> None:
    """The health endpoint should report the service as up."""
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
