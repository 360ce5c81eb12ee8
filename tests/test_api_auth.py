"""Integration tests for the HTTP auth routes.

Exercises the full flow through FastAPI: registration, login, cookie-based
refresh, logout, current user and password reset.
"""

import pytest
from fastapi.testclient import TestClient

from conftest import RecordingNotifier
from sessionguard.app import create_app
from sessionguard.config import Settings
from sessionguard.service.clock import FrozenClock
from sessionguard.service.passwords import PasswordHasher
from sessionguard.service.runtime import Runtime
from sessionguard.storage.memory import MemoryCache, MemoryUserDirectory

PASSWORD = "TestPassword123!"


@pytest.fixture
def api_notifier():
    return RecordingNotifier()


@pytest.fixture
def runtime(api_notifier):
    clock = FrozenClock()
    settings = Settings(
        jwt_secret="api-test-secret-key-0123456789abcdefghij",
        use_memory_store=True,
        test_mode=True,
    )
    return Runtime(
        settings,
        clock=clock,
        cache=MemoryCache(clock=clock),
        directory=MemoryUserDirectory(clock=clock),
        notifier=api_notifier,
        hasher=PasswordHasher(time_cost=1, memory_cost=1024, parallelism=1),
    )


@pytest.fixture
def client(runtime):
    with TestClient(create_app(runtime)) as test_client:
        yield test_client


def _register(client, email="user@example.com", password=PASSWORD, name="Test User"):
    return client.post(
        "/v1/auth/register", json={"email": email, "password": password, "name": name}
    )


def _login(client, email="user@example.com", password=PASSWORD):
    return client.post("/v1/auth/login", json={"email": email, "password": password})


class TestRegisterAndLogin:
    def test_register_creates_user(self, client):
        response = _register(client)

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "ok"
        assert body["data"]["email"] == "user@example.com"
        assert "password" not in str(body["data"])

    def test_register_duplicate_is_conflict(self, client):
        _register(client)
        response = _register(client)

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "conflict"

    def test_register_rejects_bad_email(self, client):
        response = _register(client, email="not-an-email")

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "validation_error"

    def test_login_sets_cookies(self, client):
        _register(client)
        response = _login(client)

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["token_type"] == "Bearer"
        assert data["access_token"] and data["refresh_token"]
        set_cookie = response.headers.get_list("set-cookie")
        refresh_cookie = next(c for c in set_cookie if c.startswith("refresh_token="))
        access_cookie = next(c for c in set_cookie if c.startswith("access_token="))
        assert "HttpOnly" in refresh_cookie
        assert "Max-Age=604800" in refresh_cookie
        assert "HttpOnly" not in access_cookie
        assert "Max-Age=900" in access_cookie
        assert "samesite=lax" in refresh_cookie.lower()

    def test_login_failures_are_indistinguishable(self, client):
        _register(client)
        unknown = _login(client, email="ghost@example.com")
        wrong = _login(client, password="WrongPassword1!")

        assert unknown.status_code == wrong.status_code == 401
        assert unknown.json()["error"] == wrong.json()["error"]


class TestSessionLifecycle:
    def test_me_with_bearer_token(self, client):
        _register(client)
        token = _login(client).json()["data"]["access_token"]
        client.cookies.clear()

        response = client.get("/v1/auth/me", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 200
        assert response.json()["data"]["email"] == "user@example.com"

    def test_me_without_token(self, client):
        response = client.get("/v1/auth/me")

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "unauthorized"

    def test_refresh_from_cookie_rotates(self, client):
        _register(client)
        first = _login(client).json()["data"]

        response = client.post("/v1/auth/refresh")

        assert response.status_code == 200
        second = response.json()["data"]
        assert second["refresh_token"] != first["refresh_token"]
        assert client.cookies.get("refresh_token") == second["refresh_token"]

    def test_refresh_replay_rejected_and_cookies_cleared(self, client):
        _register(client)
        first = _login(client).json()["data"]
        client.post("/v1/auth/refresh", json={"refresh_token": first["refresh_token"]})

        response = client.post(
            "/v1/auth/refresh", json={"refresh_token": first["refresh_token"]}
        )

        assert response.status_code == 401
        cleared = response.headers.get_list("set-cookie")
        assert any(c.startswith("refresh_token=") for c in cleared)

    def test_logout_revokes_tokens(self, client):
        _register(client)
        data = _login(client).json()["data"]
        headers = {"Authorization": f"Bearer {data['access_token']}"}

        response = client.post(
            "/v1/auth/logout", json={"refresh_token": data["refresh_token"]}, headers=headers
        )

        assert response.status_code == 200
        assert client.get("/v1/auth/me", headers=headers).status_code == 401
        replay = client.post("/v1/auth/refresh", json={"refresh_token": data["refresh_token"]})
        assert replay.status_code == 401


class TestPasswordResetFlow:
    def test_forgot_password_response_is_uniform(self, client, api_notifier):
        _register(client)
        known = client.post("/v1/auth/forgot-password", json={"email": "user@example.com"})
        unknown = client.post("/v1/auth/forgot-password", json={"email": "ghost@example.com"})

        assert known.status_code == unknown.status_code == 200
        assert known.json()["data"] == unknown.json()["data"]
        assert len(api_notifier.sent) == 1

    def test_reset_password_end_to_end(self, client, api_notifier):
        _register(client)
        old_refresh = _login(client).json()["data"]["refresh_token"]
        client.post("/v1/auth/forgot-password", json={"email": "user@example.com"})
        _, token = api_notifier.sent[0]

        response = client.post(
            "/v1/auth/reset-password",
            json={"token": token, "new_password": "NewPassword456!"},
        )

        assert response.status_code == 200
        assert _login(client).status_code == 401
        assert _login(client, password="NewPassword456!").status_code == 200
        replay = client.post("/v1/auth/refresh", json={"refresh_token": old_refresh})
        assert replay.status_code == 401

        again = client.post(
            "/v1/auth/reset-password",
            json={"token": token, "new_password": "ThirdPassword789!"},
        )
        assert again.status_code == 400
        assert again.json()["error"]["code"] == "invalid_token"


def test_healthz_reports_cache_backend(client):
    response = client.get("/healthz")

    assert response.status_code == 200
    assert response.json()["data"]["cache"] == "MemoryCache"


def test_request_id_echoed(client):
    response = client.get("/healthz", headers={"X-Request-ID": "req-123"})

    assert response.headers["X-Request-ID"] == "req-123"
