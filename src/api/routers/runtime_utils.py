import os

from fastapi import HTTPException, status


def env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def assert_feature_enabled(*, name: str, default: bool, detail: str) -> None:
    if not env_flag(name, default):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


def normalize_backend_init_error(
    *, detail: str, known_details: frozenset[str], fallback_detail: str
) -> str:
    return detail if detail in known_details else fallback_detail
