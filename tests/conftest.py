"""
Pytest configuration and shared fixtures.

Environment variables must be in place before anything under groupchat is
imported: the settings object and the SQLAlchemy engine are module-level.
"""

import asyncio
import os
from typing import Any

import pytest

os.environ.setdefault("DATABASE_URL", "sqlite:///./.pytest_groupchat.db")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("JWT_SECRET", "test-secret-key-with-at-least-32-bytes")
os.environ.setdefault("COOKIE_SECURE", "false")

# Clear settings cache before any app imports to ensure test env vars are used
from groupchat.config import get_settings  # noqa: E402
get_settings.cache_clear()

from groupchat import models  # noqa: E402,F401
from groupchat.storage import Base, SessionLocal, create_user, engine  # noqa: E402
from groupchat.utils import hash_password  # noqa: E402


def run(coro):
    """Drive a coroutine to completion from a sync test."""
    return asyncio.run(coro)


class RecordingEmitter:
    """Stands in for the Socket.IO server: records every event per sid."""

    def __init__(self):
        self.sent: list[tuple[str, str, dict[str, Any]]] = []
        self.broken: set[str] = set()

    async def emit(self, event: str, data: dict[str, Any], to: str) -> None:
        if to in self.broken:
            raise ConnectionResetError(f"socket {to} is gone")
        self.sent.append((to, event, data))

    def events_for(self, sid: str, event: str | None = None) -> list[dict[str, Any]]:
        return [data for to, name, data in self.sent if to == sid and (event is None or name == event)]

    def names_for(self, sid: str) -> list[str]:
        return [name for to, name, _ in self.sent if to == sid]


@pytest.fixture(scope="function")
def db_tables():
    """Fresh tables for each test."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def make_user(db_tables):
    """Factory creating accounts directly in the store."""

    def _make_user(username: str, password: str = "correct horse", avatar: str | None = None):
        with SessionLocal() as db:
            user = create_user(
                db,
                username=username,
                email=f"{username}@example.com",
                password_hash=hash_password(password, iterations=1000),
                profile_picture=avatar,
            )
            return user.id

    return _make_user


@pytest.fixture
def emitter():
    return RecordingEmitter()
