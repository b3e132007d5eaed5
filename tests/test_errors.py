from fastapi.testclient import TestClient
from app.main import app

client = TestClient(app)


def test_404_not_found():
    response = client.get("/non-existent-route")
    assert response.status_code == 404
    data = response.json()
    assert "error" in data
    assert "code" in data
    assert data["code"] == "HTTP_ERROR"


def test_malformed_webhook_body_is_a_validation_error():
    response = client.post("/api/v1/telegram-webhook", json={"message": {"text": "hi"}})
    assert response.status_code == 422
    data = response.json()
    assert data["code"] == "VALIDATION_ERROR"
    assert len(data["details"]) > 0


def test_validation_error_structure():
    from pydantic import BaseModel

    class Item(BaseModel):
        name: str
        price: int

    @app.post("/test-validation")
    def create_item(item: Item):
        return item

    response = client.post("/test-validation", json={"name": "foo", "price": "invalid"})
    assert response.status_code == 422
    data = response.json()
    assert data["code"] == "VALIDATION_ERROR"
    assert "details" in data
    assert len(data["details"]) > 0


def test_custom_exception():
    from app.core.exceptions import StaleReferenceError

    @app.get("/test-custom-error")
    def trigger_custom_error():
        raise StaleReferenceError(flow="manual_add", message="Token already used")

    response = client.get("/test-custom-error")
    assert response.status_code == 409
    data = response.json()
    assert data["code"] == "STALE_REFERENCE"
    assert data["error"] == "Token already used"
    assert data["details"] == {"flow": "manual_add"}


def test_liveness():
    response = client.get("/live")
    assert response.status_code == 200
    assert response.json() == {"status": "alive"}


def test_health_is_degraded_without_database():
    response = client.get("/health")
    assert response.status_code == 503
    data = response.json()
    assert data["status"] == "degraded"
    assert data["checks"]["database"] == "unhealthy"
