from __future__ import annotations

import os

from src.api.routers.requests_config import request_postgres_dsn, request_store_backend_name

_PRODUCTION_PROFILE = "PRODUCTION"
_LOCAL_PROFILE = "LOCAL"


def app_persistence_profile_name() -> str:
    profile = os.getenv("APP_PERSISTENCE_PROFILE", _LOCAL_PROFILE).strip().upper()
    return _PRODUCTION_PROFILE if profile == _PRODUCTION_PROFILE else _LOCAL_PROFILE


def validate_persistence_profile_guardrails() -> None:
    if app_persistence_profile_name() != _PRODUCTION_PROFILE:
        return
    if request_store_backend_name() != "POSTGRES":
        raise RuntimeError("PERSISTENCE_PROFILE_REQUIRES_REQUEST_POSTGRES")
    if not request_postgres_dsn():
        raise RuntimeError("PERSISTENCE_PROFILE_REQUIRES_REQUEST_POSTGRES_DSN")
