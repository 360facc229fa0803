"""
Tests for the HTTP surface.

Tests cover:
- Signup, login and logout with the credential cookie
- Current user lookup
- Room history ordering and sender display data
- Profile updates reaching live realtime sessions
- Health checks and metrics exposition
"""

import asyncio
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from conftest import run
from groupchat.auth import issue_token
from groupchat.main import app
from groupchat.realtime import chat
from groupchat.storage import Base, SessionLocal, create_message, engine


@pytest.fixture(scope="function")
def client():
    """Create test client with fresh database for each test."""
    Base.metadata.create_all(bind=engine)

    with TestClient(app) as test_client:
        yield test_client

    Base.metadata.drop_all(bind=engine)


def signup(client, username="alice", password="s3cret-pass", **extra):
    body = {"username": username, "email": f"{username}@example.com", "password": password}
    body.update(extra)
    return client.post("/signup", json=body)


def login_as(client, user_id: int) -> None:
    client.cookies.clear()
    client.cookies.set("token", issue_token(user_id))


class TestSignup:
    """Account creation."""

    def test_signup_sets_cookie_and_returns_profile(self, client):
        response = signup(client, profilePicture="https://cdn.example.com/a.png")

        assert response.status_code == 201
        data = response.json()
        assert data["username"] == "alice"
        assert data["avatarRef"] == "https://cdn.example.com/a.png"
        assert isinstance(data["userId"], int)
        assert "token" in response.cookies

    def test_duplicate_username_is_conflict(self, client):
        signup(client)
        response = client.post(
            "/signup",
            json={"username": "alice", "email": "other@example.com", "password": "s3cret-pass"},
        )

        assert response.status_code == 409

    def test_short_password_is_rejected(self, client):
        response = signup(client, password="short")
        assert response.status_code == 422

    def test_bad_email_is_rejected(self, client):
        response = client.post(
            "/signup",
            json={"username": "bob", "email": "not-an-email", "password": "s3cret-pass"},
        )
        assert response.status_code == 422


class TestLogin:
    """Credential check and cookie issue."""

    def test_login_with_email(self, client):
        signup(client)
        client.cookies.clear()

        response = client.post("/login", json={"email": "alice@example.com", "password": "s3cret-pass"})

        assert response.status_code == 200
        assert response.json() == {"status": "ok"}
        assert "token" in response.cookies

    def test_login_with_username(self, client):
        signup(client)
        client.cookies.clear()

        response = client.post("/login", json={"username": "alice", "password": "s3cret-pass"})

        assert response.status_code == 200

    def test_unknown_user(self, client):
        response = client.post("/login", json={"email": "ghost@example.com", "password": "whatever"})

        assert response.status_code == 401
        assert response.json()["detail"] == "User not found"

    def test_wrong_password(self, client):
        signup(client)
        client.cookies.clear()

        response = client.post("/login", json={"email": "alice@example.com", "password": "wrong-pass"})

        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid password"

    def test_login_requires_an_identifier(self, client):
        response = client.post("/login", json={"password": "s3cret-pass"})
        assert response.status_code == 400

    def test_logout_clears_cookie(self, client):
        signup(client)

        response = client.get("/logout")

        assert response.status_code == 200
        assert client.get("/api/get-current-user").status_code == 401


class TestCurrentUser:
    """Lets the page tell its own messages from others'."""

    def test_returns_id_from_cookie(self, client):
        user_id = signup(client).json()["userId"]

        response = client.get("/api/get-current-user")

        assert response.status_code == 200
        assert response.json() == {"currentUserId": user_id}

    def test_missing_cookie(self, client):
        response = client.get("/api/get-current-user")

        assert response.status_code == 401
        assert response.json()["detail"] == "Access denied. No token provided."

    def test_expired_cookie(self, client):
        client.cookies.set("token", issue_token(1, expires_in=timedelta(seconds=-1)))

        response = client.get("/api/get-current-user")

        assert response.status_code == 401
        assert response.json()["detail"] == "Token expired."

    def test_tampered_cookie(self, client):
        client.cookies.set("token", issue_token(1) + "x")

        response = client.get("/api/get-current-user")

        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid token."


class TestHistory:
    """GET /messages/{room_id}."""

    def test_requires_authentication(self, client):
        response = client.get("/messages/42")
        assert response.status_code == 401

    def test_empty_room(self, client):
        signup(client)

        response = client.get("/messages/42")

        assert response.status_code == 200
        assert response.json() == []

    def test_history_is_ordered_and_room_scoped(self, client):
        alice = signup(client, profilePicture="https://cdn.example.com/a.png").json()["userId"]
        bob = signup(client, username="bob").json()["userId"]

        with SessionLocal() as db:
            create_message(db, "first", alice, "42")
            create_message(db, "elsewhere", bob, "7")
            create_message(db, "second", bob, "42")
            create_message(db, "third", alice, "42")

        login_as(client, alice)
        response = client.get("/messages/42")

        assert response.status_code == 200
        data = response.json()
        assert [m["content"] for m in data] == ["first", "second", "third"]
        assert [m["username"] for m in data] == ["alice", "bob", "alice"]
        assert data[0]["senderId"] == alice
        assert data[0]["avatarRef"] == "https://cdn.example.com/a.png"
        assert data[1]["avatarRef"] is None
        created = [m["createdAt"] for m in data]
        assert created == sorted(created)

    def test_history_reflects_current_username(self, client):
        alice = signup(client).json()["userId"]
        with SessionLocal() as db:
            create_message(db, "hi", alice, "42")

        client.put("/api/profile", json={"username": "alice-renamed"})
        response = client.get("/messages/42")

        assert response.json()[0]["username"] == "alice-renamed"

    def test_response_includes_request_id_header(self, client):
        signup(client)

        response = client.get("/messages/42")

        assert "x-request-id" in response.headers


class TestProfile:
    """PUT /api/profile."""

    def test_update_username_and_avatar(self, client):
        signup(client)

        response = client.put(
            "/api/profile",
            json={"username": "alicia", "profilePicture": "https://cdn.example.com/new.png"},
        )

        assert response.status_code == 200
        assert response.json()["username"] == "alicia"
        assert response.json()["avatarRef"] == "https://cdn.example.com/new.png"

    def test_username_taken(self, client):
        signup(client, username="bob")
        signup(client)

        response = client.put("/api/profile", json={"username": "bob"})

        assert response.status_code == 409

    def test_deleted_user(self, client):
        login_as(client, 9999)

        response = client.put("/api/profile", json={"username": "ghost"})

        assert response.status_code == 404

    def test_live_sessions_pick_up_new_display(self, client):
        user_id = signup(client).json()["userId"]
        token = issue_token(user_id)
        session = run(chat.sessions.authenticate("http-test-sid", f"token={token}"))
        try:
            assert session.username == "alice"

            client.put("/api/profile", json={"username": "alice-live"})

            assert chat.sessions.get("http-test-sid").username == "alice-live"
        finally:
            chat.sessions.close("http-test-sid")

    def test_live_sessions_are_updated_on_the_event_loop(self, client, monkeypatch):
        """Session state is shared with socket handlers, so no worker thread may touch it."""
        signup(client)
        original = chat.sessions.refresh_user
        on_loop = []

        def spy(user_id, display):
            try:
                asyncio.get_running_loop()
                on_loop.append(True)
            except RuntimeError:
                on_loop.append(False)
            return original(user_id, display)

        monkeypatch.setattr(chat.sessions, "refresh_user", spy)

        response = client.put("/api/profile", json={"username": "alice-loop"})

        assert response.status_code == 200
        assert on_loop == [True]


class TestHealthAndMetrics:
    """Health checks and Prometheus exposition."""

    def test_liveness(self, client):
        response = client.get("/health/live")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_readiness(self, client):
        response = client.get("/health/ready")

        assert response.status_code == 200
        assert response.json()["status"] == "ready"

    def test_readiness_without_schema(self, client):
        Base.metadata.drop_all(bind=engine)

        response = client.get("/health/ready")

        assert response.status_code == 503
        assert response.json()["status"] == "not_ready"

    def test_metrics_exposition(self, client):
        client.get("/health/live")

        response = client.get("/metrics")

        assert response.status_code == 200
        assert "http_requests_total" in response.text
        assert "realtime_connections" in response.text
