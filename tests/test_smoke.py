"""Smoke tests for the application scaffolding."""

from contextlib import contextmanager
from importlib import reload
from pathlib import Path
import sys

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:  # pragma: no cover - import-time guard
    sys.path.insert(0, str(ROOT))

import app as app_module  # noqa: E402  (import after path adjustment)
from kudos_ledger import config  # noqa: E402
from kudos_ledger.db import get_engine, get_session_factory  # noqa: E402


@pytest.fixture
def settings_env(monkeypatch, tmp_path):
    monkeypatch.setenv("SLACK_SIGNING_SECRET", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'smoke.db'}")
    monkeypatch.delenv("SLACK_CLIENT_ID", raising=False)
    monkeypatch.delenv("GOOGLE_CLIENT_ID", raising=False)
    config.get_settings.cache_clear()
    get_engine.cache_clear()
    get_session_factory.cache_clear()
    yield
    get_engine().dispose()
    config.get_settings.cache_clear()
    get_engine.cache_clear()
    get_session_factory.cache_clear()


def test_health_endpoint_returns_ok(settings_env):
    reload(app_module)
    flask_app = app_module.create_app()

    with flask_app.test_client() as client:
        response = client.get("/healthz")
        assert response.status_code == 200
        data = response.get_json()
        assert data["ok"] is True
        assert data["config"] == "valid"
        assert data["db"] == "up"
        assert data["platforms"] == {"slack_oauth": False, "google_oauth": False}
        assert "version" in data


def test_health_endpoint_reports_db_down(monkeypatch, settings_env):
    reload(app_module)
    flask_app = app_module.create_app()

    @contextmanager
    def failing_session_scope():
        raise RuntimeError("db down")
        yield

    monkeypatch.setattr(app_module, "session_scope", failing_session_scope)

    with flask_app.test_client() as client:
        response = client.get("/healthz")
        data = response.get_json()
        assert response.status_code == 503
        assert data["ok"] is False
        assert data["db"] == "down"
        assert "db_error" in data
