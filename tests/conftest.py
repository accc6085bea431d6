from __future__ import annotations

from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from api.ratelimit import subscribe_limiter, track_limiter
from db import session as db_session
from db.base import Base
from db import models  # noqa: F401

ENV_VARS = (
    "ADMIN_TOKEN",
    "ANALYTICS_SALT",
    "APP_ENV",
    "GITHUB_TOKEN",
    "GITHUB_USER",
    "MAIL_FROM",
    "MAILGUN_API_KEY",
    "MAILGUN_BASE_URL",
    "MAILGUN_DOMAIN",
    "MAILGUN_WEBHOOK_SIGNING_KEY",
    "OPENAI_API_KEY",
    "OPENAI_MODEL",
    "SUBSTACK_FEED_URL",
    "TRUSTED_PROXIES",
    "UNSUBSCRIBE_SECRET",
    "YOUTUBE_CHANNEL_ID",
)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch) -> None:
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    track_limiter.reset()
    subscribe_limiter.reset()


@pytest.fixture
def session_factory(monkeypatch, tmp_path: Path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'hub.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    monkeypatch.setattr(db_session, "SessionLocal", factory)
    yield factory
    engine.dispose()


@pytest.fixture
def session(session_factory):
    with session_factory() as session:
        yield session


@pytest.fixture
def client(session_factory):
    from api.main import app

    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def admin_client(client, monkeypatch):
    monkeypatch.setenv("ADMIN_TOKEN", "test-admin-token")
    client.headers.update({"Authorization": "Bearer test-admin-token"})
    return client
