import pytest
from unittest.mock import AsyncMock, patch
from google.api_core.exceptions import ServiceUnavailable

from app.api.dependencies import get_migration_service
from app.main import app
from app.services.user_data import MigrationResult


def test_setup_migrates_guest(client, document_store):
    document_store.put("users", "guest123", {"id": "guest123", "streak": 5})
    document_store.put("daily_tasks", "t1", {"userId": "guest123"})

    response = client.post("/api/v1/users/setup", json={"oldUserId": "guest123", "newUserId": "auth456"})

    assert response.status_code == 200
    data = response.json()
    assert data["ok"] is True
    assert data["message"] == "User data migrated successfully."
    assert data["result"]["status"] == "migrated"
    assert data["result"]["userDocMigrated"] is True
    assert data["result"]["updateResults"]["daily_tasks"] == 1
    assert document_store.data("users", "auth456")["streak"] == 5


def test_setup_accepts_snake_case(client, document_store):
    document_store.put("users", "guest123", {"id": "guest123"})

    response = client.post("/api/v1/users/setup", json={"old_user_id": " guest123 ", "new_user_id": "auth456"})

    assert response.status_code == 200
    assert document_store.ids("users") == {"auth456"}


def test_setup_with_only_new_id_repairs_key(client, document_store):
    document_store.put("users", "randomKey", {"id": "auth456"})

    response = client.post("/api/v1/users/setup", json={"newUserId": "auth456"})

    assert response.status_code == 200
    assert response.json()["result"]["resolvedUserId"] == "randomKey"
    assert document_store.ids("users") == {"auth456"}


@pytest.mark.parametrize("body,error", [
    ({}, "Missing newUserId. Send JSON: { newUserId } or { oldUserId, newUserId }."),
    ({"oldUserId": "guest123", "newUserId": "  "}, "Missing newUserId. Send JSON: { newUserId } or { oldUserId, newUserId }."),
    ({"oldUserId": "same", "newUserId": "same"}, "oldUserId and newUserId must be different when both provided."),
])
def test_setup_input_errors(client, document_store, body, error):
    response = client.post("/api/v1/users/setup", json=body)

    assert response.status_code == 400
    assert response.json() == {"ok": False, "error": error}
    assert document_store.collections == {}


def test_setup_malformed_json_is_400(client):
    response = client.post(
        "/api/v1/users/setup",
        content="{not json",
        headers={"Content-Type": "application/json"},
    )

    assert response.status_code == 400
    body = response.json()
    assert body["ok"] is False
    assert body["error"].startswith("Invalid request body")


def test_setup_store_outage_is_500(client, document_store):
    document_store.put("users", "guest123", {"id": "guest123"})
    document_store.put("daily_tasks", "t1", {"userId": "guest123"})
    document_store.transaction_error = ServiceUnavailable("firestore down")

    response = client.post("/api/v1/users/setup", json={"oldUserId": "guest123", "newUserId": "auth456"})

    assert response.status_code == 500
    body = response.json()
    assert body["ok"] is False
    assert "firestore down" in body["error"]
    assert document_store.data("daily_tasks", "t1")["userId"] == "guest123"


def test_setup_invalid_result_is_400(client):
    service = AsyncMock()
    service.migrate.return_value = MigrationResult(ok=False, new_user_id="auth456", status="invalid", error="newUserId is required")
    app.dependency_overrides[get_migration_service] = lambda: service

    response = client.post("/api/v1/users/setup", json={"oldUserId": "guest123", "newUserId": "auth456"})

    assert response.status_code == 400
    assert response.json() == {"ok": False, "error": "newUserId is required"}


def test_setup_unexpected_error_is_500(client):
    service = AsyncMock()
    service.migrate.side_effect = RuntimeError("boom")
    app.dependency_overrides[get_migration_service] = lambda: service

    response = client.post("/api/v1/users/setup", json={"oldUserId": "guest123", "newUserId": "auth456"})

    assert response.status_code == 500
    assert response.json() == {"ok": False, "error": "boom"}


@pytest.mark.parametrize("path", ["/api/v1/users/setup", "/api/v1/users/delete"])
def test_non_post_is_405(client, path):
    response = client.get(path)

    assert response.status_code == 405
    assert response.json() == {"ok": False, "error": "Method Not Allowed"}


def test_delete_requires_bearer_token(client):
    response = client.post("/api/v1/users/delete", json={"userId": "u1"})

    assert response.status_code == 401
    body = response.json()
    assert body["ok"] is False
    assert "Authorization header" in body["error"]
    assert "requiresReauth" not in body


@pytest.mark.parametrize("token,error", [
    ("expired", "Token expired. Please reauthenticate and try again."),
    ("garbage", "Invalid authentication token. Please reauthenticate and try again."),
])
def test_delete_bad_token_asks_for_reauth(client, token, error):
    response = client.post(
        "/api/v1/users/delete",
        json={"userId": "u1"},
        headers={"Authorization": f"Bearer {token}"},
    )

    assert response.status_code == 401
    assert response.json() == {"ok": False, "error": error, "requiresReauth": True}


def test_delete_other_users_data_is_forbidden(client, document_store):
    document_store.put("users", "u2", {"id": "u2"})

    response = client.post(
        "/api/v1/users/delete",
        json={"userId": "u2"},
        headers={"Authorization": "Bearer token-u1"},
    )

    assert response.status_code == 403
    assert response.json()["ok"] is False
    assert document_store.data("users", "u2") is not None


def test_delete_missing_user_id_is_400(client):
    response = client.post("/api/v1/users/delete", json={}, headers={"Authorization": "Bearer token-u1"})

    assert response.status_code == 400
    assert response.json() == {"ok": False, "error": "Missing userId. Send JSON: { userId }."}


def test_delete_own_account(client, document_store, blob_store, identity_provider):
    identity_provider.accounts.add("u1")
    document_store.put("users", "u1", {"id": "u1"})
    document_store.put("videos", "v1", {"userId": "u1"})
    blob_store.put("meals/u1/a.jpg")

    response = client.post(
        "/api/v1/users/delete",
        json={"user_id": "u1"},
        headers={"Authorization": "Bearer token-u1"},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["ok"] is True
    assert data["message"] == "User and all related data deleted successfully."
    assert data["deleted"]["users"] == 1
    assert data["deleted"]["collections"]["videos"] == 1
    assert data["deleted"]["storage"] == 1
    assert data["authDeleted"] is True
    assert identity_provider.accounts == set()


def test_delete_store_failure_is_500_with_partial_counts(client, document_store):
    document_store.put("users", "u1", {"id": "u1"})
    document_store.put("videos", "v1", {"userId": "u1"})
    delete_document = document_store.delete

    async def delete_except_users(collection, doc_id):
        if collection == "users":
            raise RuntimeError("permission denied")
        await delete_document(collection, doc_id)

    document_store.delete = delete_except_users

    response = client.post("/api/v1/users/delete", json={"userId": "u1"}, headers={"Authorization": "Bearer token-u1"})

    assert response.status_code == 500
    body = response.json()
    assert body["error"] == "permission denied"
    assert body["deleted"]["collections"]["videos"] == 1


def test_delete_without_auth_when_disabled(client, document_store):
    document_store.put("users", "u1", {"id": "u1"})

    with patch("app.api.dependencies.settings.DELETE_REQUIRES_AUTH", False):
        response = client.post("/api/v1/users/delete", json={"userId": "u1"})

    assert response.status_code == 200
    assert document_store.data("users", "u1") is None


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
