from datetime import datetime, timedelta
from functools import lru_cache

import pytest
from flask import g

from app import create_app
from models import utcnow
from storage import store
from utils.security import create_access_token, hash_password

HEALTH = "Health – Ministry of Health and Family Welfare"
PASSWORD = "secret123"


@lru_cache(maxsize=1)
def password_hash() -> str:
    return hash_password(PASSWORD)


@pytest.fixture
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.setenv("STORAGE_BACKEND", "memory")
    application = create_app("testing")
    with application.app_context():
        yield application


@pytest.fixture
def client(app):
    # Requests reuse the fixture's app context, so g would carry the previous caller.
    @app.before_request
    def forget_previous_user():
        g.pop("_login_user", None)

    return app.test_client()


@pytest.fixture
def make_user(app):
    def _make(username, role="citizen", **fields):
        return store.create_user(username=username, password=password_hash(), role=role, **fields)

    return _make


@pytest.fixture
def citizen(make_user):
    return make_user("citizen1", full_name="Asha Citizen", email="asha@example.com")


@pytest.fixture
def admin(app):
    return store.get_user_by_username("admin")


@pytest.fixture
def auth_headers(app):
    def _headers(user):
        return {"Authorization": f"Bearer {create_access_token(user)}"}

    return _headers


@pytest.fixture
def submit(app):
    def _submit(citizen_id, application_type=HEALTH, now: datetime | None = None, **fields):
        return store.create_application(citizen_id, application_type, now=now, **fields)

    return _submit


def days_ago(days: int) -> datetime:
    return utcnow() - timedelta(days=days)
