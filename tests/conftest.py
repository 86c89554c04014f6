import os

# Configure both services before their settings modules are imported
os.environ.update(
    {
        "DATABASE_URL": "sqlite://",
        "BCRYPT_ROUNDS": "4",
        "RATE_LIMIT_AUTH_REQUESTS": "1000",
        "RATE_LIMIT_LOGIN_REQUESTS": "1000",
        "RATE_LIMIT_REQUESTS": "1000",
        "RATE_LIMIT_CATEGORY_CREATE": "1000",
        "SERVICE_API_KEYS": "test-service-key",
        "AUTH_SERVICE_URL": "http://auth-service",
        "AUTH_SERVICE_API_KEY": "test-service-key",
        "EVENTS_ENABLED": "false",
        "JWE_ENABLED": "false",
        "LOG_LEVEL": "WARNING",
    }
)

import json  # noqa: E402

import fakeredis  # noqa: E402
import httpx  # noqa: E402
import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from auth_service.app.core.cache import RedisCache as AuthCache  # noqa: E402
from auth_service.app.core.cache import get_cache as get_auth_cache  # noqa: E402
from auth_service.app.core.database import Base as AuthBase  # noqa: E402
from auth_service.app.core.database import SessionLocal as AuthSessionLocal  # noqa: E402
from auth_service.app.core.database import engine as auth_engine  # noqa: E402
from auth_service.app.main import app as auth_app  # noqa: E402
from task_service.app.clients.auth_service import AuthServiceClient, get_auth_client  # noqa: E402
from task_service.app.core.cache import RedisCache as TaskCache  # noqa: E402
from task_service.app.core.cache import get_cache as get_task_cache  # noqa: E402
from task_service.app.core.database import Base as TaskBase  # noqa: E402
from task_service.app.core.database import SessionLocal as TaskSessionLocal  # noqa: E402
from task_service.app.core.database import engine as task_engine  # noqa: E402
from task_service.app.main import app as task_app  # noqa: E402

SERVICE_KEY = "test-service-key"
PASSWORD = "Secur3!Pass"

USERS = {
    "token-alice": {
        "id": "user-alice",
        "email": "alice@example.com",
        "username": "alice",
        "first_name": "Alice",
        "last_name": None,
        "is_active": True,
        "role": "user",
    },
    "token-bob": {
        "id": "user-bob",
        "email": "bob@example.com",
        "username": "bob",
        "first_name": None,
        "last_name": None,
        "is_active": True,
        "role": "user",
    },
    "token-inactive": {
        "id": "user-inactive",
        "email": "gone@example.com",
        "username": "gone",
        "is_active": False,
        "role": "user",
    },
}


@pytest.fixture
def fake_server():
    return fakeredis.FakeServer()


@pytest.fixture
def fake_redis(fake_server):
    return fakeredis.FakeRedis(server=fake_server, decode_responses=True)


# Auth Service fixtures

@pytest.fixture
def auth_cache(fake_redis):
    return AuthCache(fake_redis, "auth:")


@pytest.fixture
def auth_db():
    AuthBase.metadata.create_all(bind=auth_engine)
    db = AuthSessionLocal()
    try:
        yield db
    finally:
        db.close()
        AuthBase.metadata.drop_all(bind=auth_engine)


@pytest.fixture
def auth_client(auth_db, auth_cache):
    auth_app.dependency_overrides[get_auth_cache] = lambda: auth_cache
    yield TestClient(auth_app)
    auth_app.dependency_overrides.clear()


@pytest.fixture
def register_user(auth_client):
    def _register(email="jane@example.com", username="jane_doe", password=PASSWORD, **extra):
        response = auth_client.post(
            "/api/v1/auth/register",
            json={"email": email, "username": username, "password": password, **extra},
        )
        assert response.status_code == 201, response.text
        return response.json()["data"]["user"]

    return _register


@pytest.fixture
def login_user(auth_client):
    def _login(email="jane@example.com", password=PASSWORD, user_agent="pytest"):
        response = auth_client.post(
            "/api/v1/auth/login",
            json={"email": email, "password": password},
            headers={"User-Agent": user_agent},
        )
        assert response.status_code == 200, response.text
        return response.json()["data"]

    return _login


# Task Service fixtures

class FakeAuthService:
    """Stands in for Auth Service's verify-token and health endpoints."""

    def __init__(self):
        self.calls = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == "/health":
            return httpx.Response(200, json={"status": "healthy"})
        self.calls += 1
        if request.headers.get("X-Service-API-Key") != SERVICE_KEY:
            return httpx.Response(401, json={"success": False, "message": "Invalid or missing service API key"})
        token = json.loads(request.content)["token"]
        user = USERS.get(token)
        if user is None:
            return httpx.Response(200, json={"valid": False, "user": None, "error": "Invalid token"})
        return httpx.Response(200, json={"valid": True, "user": user, "error": None})


@pytest.fixture
def fake_auth():
    return FakeAuthService()


@pytest.fixture
def task_cache(fake_redis):
    return TaskCache(fake_redis, "task:")


@pytest.fixture
def task_db():
    TaskBase.metadata.create_all(bind=task_engine)
    db = TaskSessionLocal()
    try:
        yield db
    finally:
        db.close()
        TaskBase.metadata.drop_all(bind=task_engine)


@pytest.fixture
def task_client(task_db, task_cache, fake_auth):
    client = AuthServiceClient(
        service_url="http://auth-service",
        api_key=SERVICE_KEY,
        transport=httpx.MockTransport(fake_auth),
    )
    task_app.dependency_overrides[get_task_cache] = lambda: task_cache
    task_app.dependency_overrides[get_auth_client] = lambda: client
    yield TestClient(task_app)
    task_app.dependency_overrides.clear()

