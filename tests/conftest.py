"""
FILE: tests/conftest.py
Shared fixtures for workflow tests.
"""

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from src.api.routers.requests import reset_request_workflow_service_for_tests
from src.core.workflow.service import RequestWorkflowService
from src.infrastructure.events import InMemoryEventPublisher
from src.infrastructure.requests import InMemoryRequestRepository


def _has_marker(item: pytest.Item, name: str) -> bool:
    return item.get_closest_marker(name) is not None


def pytest_collection_modifyitems(items: list[pytest.Item]) -> None:
    for item in items:
        if (
            _has_marker(item, "unit")
            or _has_marker(item, "integration")
            or _has_marker(item, "e2e")
        ):
            continue

        path = Path(str(item.fspath)).as_posix().lower()
        if "/tests/integration/" in path or "_integration.py" in path:
            item.add_marker(pytest.mark.integration)
            continue
        if "/tests/e2e/" in path:
            item.add_marker(pytest.mark.e2e)
            continue
        item.add_marker(pytest.mark.unit)


class FrozenClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc))


@pytest.fixture
def publisher() -> InMemoryEventPublisher:
    return InMemoryEventPublisher()


@pytest.fixture
def repository() -> InMemoryRequestRepository:
    return InMemoryRequestRepository()


@pytest.fixture
def service(repository, publisher, clock) -> RequestWorkflowService:
    return RequestWorkflowService(repository=repository, event_publisher=publisher, clock=clock)


@pytest.fixture(autouse=True)
def request_runtime_test_harness(monkeypatch: pytest.MonkeyPatch):
    """Run the HTTP surface against a fresh in-memory store per test."""

    monkeypatch.setenv("REQUEST_STORE_BACKEND", "IN_MEMORY")
    monkeypatch.setenv("REQUEST_EVENT_PUBLISHER", "IN_MEMORY")
    monkeypatch.delenv("REQUEST_POSTGRES_DSN", raising=False)
    monkeypatch.delenv("REQUEST_REQUIRE_EXPECTED_VERSION", raising=False)
    monkeypatch.delenv("REQUEST_WORKFLOW_ENABLED", raising=False)
    monkeypatch.delenv("APP_PERSISTENCE_PROFILE", raising=False)
    reset_request_workflow_service_for_tests()
    yield
    reset_request_workflow_service_for_tests()
