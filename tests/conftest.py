# tests/conftest.py
from __future__ import annotations

import os
from collections.abc import Callable, Generator, Iterator
from datetime import UTC, datetime
from typing import Any

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

os.environ.setdefault("SECRET_KEY", "living-map-test-secret")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("PYTEST_RUNNING", "true")

from living_map.api.v1.dependencies import create_access_token  # noqa: E402
from living_map.db.session import Base, configure_sqlite  # noqa: E402
from living_map.db.session import get_db as app_get_session  # noqa: E402
from living_map.main import app as fastapi_app  # noqa: E402
from living_map.models import (  # noqa: E402
    AdminRole,
    Notification,
    NotificationPreference,
    Prayer,
    PushToken,
    UserLocation,
    UserProfile,
)

TEST_DB_URL = "sqlite://"

NYC = (40.71, -74.00)
LA = (34.05, -118.24)

# Fixed reference instant so time-dependent assertions do not drift.
NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


@pytest.fixture(scope="session")
def engine() -> Generator[Engine, None, None]:
    engine = configure_sqlite(
        create_engine(
            TEST_DB_URL,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture()
def db_session(engine: Engine) -> Iterator[Session]:
    """Session whose commits land in savepoints of an outer transaction.

    Memorial rows refuse DELETE, so tables are never cleaned by deleting;
    the outer transaction is rolled back instead.
    """
    connection = engine.connect()
    transaction = connection.begin()
    session = Session(
        bind=connection,
        join_transaction_mode="create_savepoint",
        autoflush=False,
        expire_on_commit=False,
    )
    try:
        yield session
    finally:
        session.close()
        if transaction.is_active:
            transaction.rollback()
        connection.close()


@pytest.fixture(scope="session")
def app() -> FastAPI:
    return fastapi_app


@pytest.fixture(autouse=True)
def override_session_dependency(app: FastAPI, db_session: Session) -> Iterator[None]:
    def _get_session_override() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[app_get_session] = _get_session_override
    try:
        yield
    finally:
        app.dependency_overrides.pop(app_get_session, None)


@pytest.fixture()
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app, base_url="http://test") as test_client:
        yield test_client


def auth_headers(user_id: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user_id)}"}


@pytest.fixture()
def auth_token() -> dict[str, str]:
    """Authorization headers for the primary test user."""
    return auth_headers("user-alice")


@pytest.fixture()
def other_auth_token() -> dict[str, str]:
    return auth_headers("user-bob")


@pytest.fixture()
def admin_user(db_session: Session) -> str:
    db_session.add(AdminRole(user_id="user-admin", role="admin"))
    db_session.commit()
    return "user-admin"


@pytest.fixture()
def admin_token(admin_user: str) -> dict[str, str]:
    return auth_headers(admin_user)


@pytest.fixture()
def make_prayer(db_session: Session) -> Callable[..., Prayer]:
    """Insert a prayer directly, bypassing fanout."""

    def _make(
        lat: float = NYC[0],
        lng: float = NYC[1],
        *,
        author_id: str | None = "user-alice",
        body: str = "Please pray for my family",
        title: str | None = None,
        status: str = "active",
        created_at: datetime = NOW,
        **extra: Any,
    ) -> Prayer:
        prayer = Prayer(
            author_id=author_id,
            title=title,
            body=body,
            origin_lat=lat,
            origin_lng=lng,
            status=status,
            created_at=created_at,
            **extra,
        )
        db_session.add(prayer)
        db_session.commit()
        return prayer

    return _make


@pytest.fixture()
def make_user(db_session: Session) -> Callable[..., str]:
    """Create a user who can receive push: a location and an active token."""

    def _make(
        user_id: str,
        lat: float,
        lng: float,
        *,
        radius_km: float | None = None,
        token: bool = True,
        recorded_at: datetime = NOW,
        **preferences: bool,
    ) -> str:
        db_session.add(UserProfile(user_id=user_id, notification_radius_km=radius_km))
        db_session.add(UserLocation(user_id=user_id, lat=lat, lng=lng, recorded_at=recorded_at))
        if token:
            db_session.add(
                PushToken(user_id=user_id, token=f"token-{user_id}", platform="ios")
            )
        if preferences:
            defaults = {
                "nearby_prayers_enabled": True,
                "prayer_support_enabled": True,
                "prayer_response_enabled": True,
                "prayer_answered_enabled": True,
                "push_notifications_enabled": True,
            }
            defaults.update(preferences)
            db_session.add(NotificationPreference(user_id=user_id, **defaults))
        db_session.commit()
        return user_id

    return _make


@pytest.fixture()
def make_notification(db_session: Session) -> Callable[..., Notification]:
    def _make(
        recipient_id: str,
        event_key: str,
        *,
        is_read: bool = False,
        created_at: datetime = NOW,
        notification_type: str = "nearby_prayer",
    ) -> Notification:
        notification = Notification(
            recipient_id=recipient_id,
            type=notification_type,
            event_key=event_key,
            payload={"title": "hello"},
            is_read=is_read,
            read_at=created_at if is_read else None,
            created_at=created_at,
        )
        db_session.add(notification)
        db_session.commit()
        return notification

    return _make
