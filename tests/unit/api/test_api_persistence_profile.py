import pytest
from fastapi.testclient import TestClient

from src.api.main import app
from src.api.persistence_profile import (
    app_persistence_profile_name,
    validate_persistence_profile_guardrails,
)


def test_local_profile_accepts_in_memory_store(monkeypatch):
    monkeypatch.setenv("APP_PERSISTENCE_PROFILE", "local")
    assert app_persistence_profile_name() == "LOCAL"
    validate_persistence_profile_guardrails()


def test_production_profile_requires_postgres_backend(monkeypatch):
    monkeypatch.setenv("APP_PERSISTENCE_PROFILE", "PRODUCTION")
    monkeypatch.setenv("REQUEST_STORE_BACKEND", "IN_MEMORY")

    with pytest.raises(RuntimeError) as exc:
        validate_persistence_profile_guardrails()
    assert str(exc.value) == "PERSISTENCE_PROFILE_REQUIRES_REQUEST_POSTGRES"


def test_production_profile_requires_postgres_dsn(monkeypatch):
    monkeypatch.setenv("APP_PERSISTENCE_PROFILE", "PRODUCTION")
    monkeypatch.setenv("REQUEST_STORE_BACKEND", "POSTGRES")
    monkeypatch.delenv("REQUEST_POSTGRES_DSN", raising=False)

    with pytest.raises(RuntimeError) as exc:
        validate_persistence_profile_guardrails()
    assert str(exc.value) == "PERSISTENCE_PROFILE_REQUIRES_REQUEST_POSTGRES_DSN"


def test_production_profile_blocks_application_startup(monkeypatch):
    monkeypatch.setenv("APP_PERSISTENCE_PROFILE", "PRODUCTION")
    monkeypatch.setenv("REQUEST_STORE_BACKEND", "IN_MEMORY")

    with pytest.raises(RuntimeError) as exc:
        with TestClient(app):
            pass
    assert str(exc.value) == "PERSISTENCE_PROFILE_REQUIRES_REQUEST_POSTGRES"
