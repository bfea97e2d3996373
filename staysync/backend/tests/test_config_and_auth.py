from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from app.config import Settings, settings
from app.main import app

client = TestClient(app)


def test_prod_refuses_dev_auth():
    with pytest.raises(ValueError):
        Settings(app_env="prod", auth_mode="dev", cors_allow_origins=["https://ops.example.com"])


def test_prod_refuses_wildcard_cors():
    with pytest.raises(ValueError):
        Settings(app_env="prod", auth_mode="api_key", cors_allow_origins=["*"])


def test_prod_settings_ok():
    s = Settings(app_env="prod", auth_mode="api_key", sync_api_key="k", cors_allow_origins=["https://ops.example.com"])
    assert s.backfill_max_concurrency == 25


def test_api_key_mode(monkeypatch):
    monkeypatch.setattr(settings, "auth_mode", "api_key")
    monkeypatch.setattr(settings, "sync_api_key", "s3cret")

    url = "/api/cleaning-sync/tasks?date_from=2026-02-01&date_to=2026-02-02"
    assert client.get(url).status_code == 401
    assert client.get(url, headers={"X-API-Key": "wrong"}).status_code == 401
    assert client.get(url, headers={"X-API-Key": "s3cret"}).status_code == 200


def test_unknown_dev_role_is_rejected():
    r = client.get(
        "/api/cleaning-sync/tasks?date_from=2026-02-01&date_to=2026-02-02",
        headers={"X-User-Email": "a@b.c", "X-User-Role": "superuser"},
    )
    assert r.status_code == 401
