"""Task Service talking to a real Auth Service app in-process."""
import hashlib

import httpx
import pytest

from auth_service.app.main import app as auth_app
from task_service.app.clients.auth_service import AuthServiceClient, get_auth_client
from task_service.app.main import app as task_app


@pytest.fixture
def services(auth_client, task_client):
    client = AuthServiceClient(
        service_url="http://auth-service",
        api_key="test-service-key",
        transport=httpx.ASGITransport(app=auth_app),
    )
    task_app.dependency_overrides[get_auth_client] = lambda: client
    return auth_client, task_client


def test_token_from_login_is_accepted_by_task_service(services, register_user, login_user):
    _, tasks = services
    user = register_user()
    token = login_user()["tokens"]["access_token"]

    response = tasks.post("/api/v1/tasks/", json={"title": "Ship it"}, headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 201
    assert response.json()["user_id"] == user["id"]


def test_logged_out_token_is_rejected_once_cache_expires(services, register_user, login_user, task_cache):
    auth, tasks = services
    register_user()
    token = login_user()["tokens"]["access_token"]
    headers = {"Authorization": f"Bearer {token}"}

    assert tasks.get("/api/v1/tasks/stats", headers=headers).status_code == 200
    assert auth.post("/api/v1/auth/logout", headers=headers).status_code == 200

    # verified users are cached, so the logout is seen once the entry is gone
    assert tasks.get("/api/v1/tasks/stats", headers=headers).status_code == 200
    task_cache.delete(f"user_session:{hashlib.sha256(token.encode('utf-8')).hexdigest()}")

    response = tasks.get("/api/v1/tasks/stats", headers=headers)
    assert response.status_code == 401
    assert response.json()["error"]["code"] == "INVALID_TOKEN"
    assert response.json()["message"] == "Session is invalid or has expired"


def test_wrong_service_key_rejects_every_token(services, register_user, login_user):
    _, tasks = services
    register_user()
    token = login_user()["tokens"]["access_token"]
    task_app.dependency_overrides[get_auth_client] = lambda: AuthServiceClient(
        service_url="http://auth-service",
        api_key="wrong-key",
        transport=httpx.ASGITransport(app=auth_app),
    )

    response = tasks.get("/api/v1/tasks/stats", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401
    assert response.json()["message"] == "Auth service unauthorized: Invalid or missing service API key"
