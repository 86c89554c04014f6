import pytest

from auth_service.app.core.errors import ErrorCodes, ServiceError
from auth_service.app.core.jwt_handler import TokenService
from auth_service.app.models.user import LoginAttempt, RefreshToken, UserSession
from auth_service.app.repositories.user_repository import UserRepository
from auth_service.app.services.auth_service import AuthService, detect_device


@pytest.fixture
def repo(auth_db):
    return UserRepository(auth_db)


@pytest.fixture
def user(repo):
    return repo.create({"email": "repo@example.com", "username": "repo_user", "password": "hash"})


def test_lookups(repo, user):
    assert repo.find_by_id(user.id).email == "repo@example.com"
    assert repo.find_by_email("REPO@example.com").id == user.id
    assert repo.find_by_username("repo_user").id == user.id
    assert repo.find_by_username("REPO_USER") is None
    assert repo.exists("other@example.com", "repo_user") is True
    assert repo.exists("Repo@Example.com", "someone") is True
    assert repo.exists("other@example.com", "someone") is False


def test_new_users_get_uuid_ids(repo, user):
    assert len(user.id) == 36
    assert user.is_active is True
    assert user.is_verified is False


def test_delete_removes_dependents(repo, user, auth_db, auth_cache):
    session_id = AuthService(auth_db, auth_cache).create_session(user.id, {"ip_address": "1.2.3.4"})
    TokenService(auth_db, auth_cache).generate_refresh_token(user.id, session_id)
    repo.record_login_attempt("repo@example.com", success=True, user_id=user.id)

    repo.delete(user)

    assert auth_db.query(UserSession).count() == 0
    assert auth_db.query(RefreshToken).count() == 0
    attempt = auth_db.query(LoginAttempt).one()
    assert attempt.user_id is None
    assert attempt.email == "repo@example.com"


def test_session_is_validated_from_database_when_cache_is_cold(user, auth_db, auth_cache):
    service = AuthService(auth_db, auth_cache)
    session_id = service.create_session(user.id, {"user_agent": "Mozilla/5.0 (Android 14; Mobile)"})

    auth_cache.delete(f"session:{session_id}")
    assert service.validate_session(session_id, user.id) is True
    assert auth_cache.get_json(f"session:{session_id}")["user_id"] == user.id
    assert service.validate_session(session_id, "someone-else") is False

    record = auth_db.query(UserSession).filter(UserSession.session_id == session_id).one()
    assert record.device == "mobile"


def test_terminated_session_is_invalid(user, auth_db, auth_cache):
    service = AuthService(auth_db, auth_cache)
    session_id = service.create_session(user.id, {})

    assert service.terminate_session(session_id) is True
    assert service.validate_session(session_id) is False
    assert service.terminate_session(session_id) is False


def test_refresh_token_can_only_be_rotated_once(user, auth_db, auth_cache, monkeypatch):
    service = AuthService(auth_db, auth_cache)
    session_id = service.create_session(user.id, {})
    issued = service.tokens.generate_refresh_token(user.id, session_id)
    payload = service.tokens.validate_refresh_token(issued.token)

    assert service.refresh_token(issued.token, {}).refresh_token != issued.token

    # a second request that passed validation before the first one revoked the token
    monkeypatch.setattr(service.tokens, "validate_refresh_token", lambda token: payload)
    with pytest.raises(ServiceError) as exc:
        service.refresh_token(issued.token, {})
    assert exc.value.code == ErrorCodes.REFRESH_TOKEN_INVALID


@pytest.mark.parametrize(
    "user_agent, device",
    [
        (None, "unknown"),
        ("Mozilla/5.0 (iPad; CPU OS 17_0)", "tablet"),
        ("Mozilla/5.0 (iPhone; CPU iPhone OS 17_0)", "mobile"),
        ("Mozilla/5.0 (Windows NT 10.0; Win64; x64)", "desktop"),
    ],
)
def test_detect_device(user_agent, device):
    assert detect_device(user_agent) == device
