"""
tests/integration/conftest.py — Fixtures and helpers for all integration tests.

Design:
  - Tests run against an in-memory SQLite database by default
    (set TEST_DATABASE_URL to run against PostgreSQL instead).
  - The app is created once per session using create_app("testing").
  - All tables are created once via db.create_all() at session start.
  - Between tests, all rows are deleted in FK-safe order so tests are isolated.
  - The push notifier is replaced by a RecordingNotifier for every test, so
    tests can assert who was notified without any network traffic.

Identity tokens are minted here with the testing IDENTITY_SECRET_KEY, the
same way the external identity provider would sign them.

Helper functions (not fixtures) are provided for common operations:
  - issue_token(user_id, email)   → signed bearer token
  - register(client, ...)         → {"user": {...}, "token": "..."}
  - auth_headers(token)           → {"Authorization": "Bearer <token>"}
  - make_group(client, ...)       → group snapshot dict
  - join_group(...)               → HTTP response
  - send_request(...)             → HTTP response
  - make_expense(...)             → HTTP response
  - settle(...)                   → HTTP response
  - get_balances(...)             → balances dict
"""

from __future__ import annotations

import time

import jwt
import pytest
from sqlalchemy import text

from groupledger.app import create_app
from groupledger.app.extensions import db as _db
from groupledger.config import TestingConfig


# ═══════════════════════════════════════════════════════════════════════════
# Test doubles
# ═══════════════════════════════════════════════════════════════════════════

class RecordingNotifier:
    """Stands in for PushNotifier. Set `fail = True` to make every send raise."""

    def __init__(self) -> None:
        self.sent: list[dict] = []
        self.fail = False

    def send(self, user_id, title, body, data=None) -> None:
        if self.fail:
            raise RuntimeError("push provider unavailable")
        self.sent.append({"user_id": user_id, "title": title, "body": body, "data": data or {}})

    def for_user(self, user_id: str) -> list[dict]:
        return [n for n in self.sent if n["user_id"] == user_id]


# ═══════════════════════════════════════════════════════════════════════════
# Session-scoped app fixture
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(scope="session")
def app():
    """Creates the Flask app in 'testing' mode once and builds the schema."""
    flask_app = create_app("testing")

    with flask_app.app_context():
        _db.create_all()

    yield flask_app

    with flask_app.app_context():
        _db.drop_all()


# ═══════════════════════════════════════════════════════════════════════════
# Function-scoped test isolation
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(autouse=True)
def notifier(app):
    """Swaps the app's notifier for a fresh RecordingNotifier."""
    recording = RecordingNotifier()
    previous = app.extensions["push_notifier"]
    app.extensions["push_notifier"] = recording
    yield recording
    app.extensions["push_notifier"] = previous


@pytest.fixture(autouse=True)
def clean_tables(app):
    """
    Deletes all rows after every test in FK-safe order:
    children (participants, requests, memberships) before parents.
    """
    yield  # run the test

    with app.app_context():
        _db.session.rollback()  # discard any uncommitted state from a failed test

        with _db.engine.connect() as conn:
            conn.execute(text("DELETE FROM expense_participants"))
            conn.execute(text("DELETE FROM expenses"))
            conn.execute(text("DELETE FROM join_requests"))
            conn.execute(text("DELETE FROM memberships"))
            conn.execute(text("DELETE FROM groups"))
            conn.execute(text("DELETE FROM device_tokens"))
            conn.execute(text("DELETE FROM users"))
            conn.commit()


# ═══════════════════════════════════════════════════════════════════════════
# Client fixture
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def client(app):
    """Flask test client. Each test gets a fresh client (function-scoped)."""
    return app.test_client()


# ═══════════════════════════════════════════════════════════════════════════
# Shared helper functions (not fixtures)
# ═══════════════════════════════════════════════════════════════════════════

def issue_token(
    user_id: str,
    email: str,
    expires_in: int = 3600,
    secret: str | None = None,
    **extra_claims,
) -> str:
    """Signs an identity token the way the identity provider does."""
    now = int(time.time())
    payload = {
        "uid": user_id,
        "email": email,
        "iat": now,
        "exp": now + expires_in,
        **extra_claims,
    }
    return jwt.encode(
        payload,
        secret or TestingConfig.IDENTITY_SECRET_KEY,
        algorithm=TestingConfig.IDENTITY_ALGORITHM,
    )


def auth_headers(token: str) -> dict:
    """Returns the Authorization header dict for use in test requests."""
    return {"Authorization": f"Bearer {token}"}


def register(
    client,
    name: str = "alice",
    email: str | None = None,
    full_name: str | None = None,
    iban: str | None = None,
) -> dict:
    """
    Registers a user through POST /auth/session.
    Returns: {"user": {...profile...}, "token": "..."}
    """
    if email is None:
        email = f"{name}@test.com"
    token = issue_token(f"uid-{name}", email)

    payload = {"full_name": full_name or name.capitalize()}
    if iban is not None:
        payload["iban"] = iban

    resp = client.post("/api/v1/auth/session", json=payload, headers=auth_headers(token))
    assert resp.status_code == 200, f"register failed: {resp.get_json()}"
    return {"user": resp.get_json()["data"], "token": token}


def make_group(client, token: str, name: str = "Test Group") -> dict:
    """Creates a group and returns its snapshot. The caller is creator and first member."""
    resp = client.post(
        "/api/v1/groups/",
        json={"name": name},
        headers=auth_headers(token),
    )
    assert resp.status_code == 201, f"make_group failed: {resp.get_json()}"
    return resp.get_json()["data"]


def join_group(client, token: str, invite_token: str):
    return client.post(
        "/api/v1/groups/join",
        json={"token": invite_token},
        headers=auth_headers(token),
    )


def send_request(client, token: str, group_id: int, email: str):
    return client.post(
        f"/api/v1/groups/{group_id}/requests",
        json={"email": email},
        headers=auth_headers(token),
    )


def get_group(client, token: str, group_id: int) -> dict:
    resp = client.get(f"/api/v1/groups/{group_id}", headers=auth_headers(token))
    assert resp.status_code == 200, f"get_group failed: {resp.get_json()}"
    return resp.get_json()["data"]


def make_expense(
    client,
    token: str,
    group_id: int,
    total_amount: str,
    participants: list[dict],
    title: str = "Dinner",
    **extra,
):
    """
    Creates an expense paid by the token owner and returns the HTTP response.
    participants: [{"user_id": ..., "share_amount": "..."}] or [{"user_id": ...}]
    for an even split.
    """
    payload = {
        "title": title,
        "total_amount": total_amount,
        "participants": participants,
        **extra,
    }
    return client.post(
        f"/api/v1/groups/{group_id}/expenses",
        json=payload,
        headers=auth_headers(token),
    )


def settle(client, token: str, group_id: int, counterparty_id: str):
    return client.post(
        f"/api/v1/groups/{group_id}/settlements",
        json={"counterparty_id": counterparty_id},
        headers=auth_headers(token),
    )


def get_balances(client, token: str, group_id: int) -> dict:
    resp = client.get(f"/api/v1/groups/{group_id}/balances", headers=auth_headers(token))
    assert resp.status_code == 200, f"get_balances failed: {resp.get_json()}"
    return resp.get_json()["data"]


def group_of(client, *names: str, group_name: str = "Trip") -> tuple[dict, dict]:
    """
    Registers `names`, lets the first one create a group and the rest join it
    by invite token. Returns ({name: registered}, group_snapshot).
    """
    users = {name: register(client, name) for name in names}
    creator = users[names[0]]
    group = make_group(client, creator["token"], group_name)
    for name in names[1:]:
        resp = join_group(client, users[name]["token"], group["invite_token"])
        assert resp.status_code == 200, f"join failed: {resp.get_json()}"
    return users, group
