from fastapi.testclient import TestClient


def test_health(anonymous_client: TestClient) -> None:
    response = anonymous_client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_api_requires_caller_identity(anonymous_client: TestClient) -> None:
    response = anonymous_client.get("/api/v1/documents")
    assert response.status_code == 401
