import os
from typing import cast

from src.core.workflow.events import EventPublisher
from src.core.workflow.repository import RequestRepository
from src.infrastructure.events import InMemoryEventPublisher, LoggingEventPublisher
from src.infrastructure.requests import InMemoryRequestRepository, PostgresRequestRepository

POSTGRES_INIT_ERRORS = frozenset(
    {
        "REQUEST_POSTGRES_DSN_REQUIRED",
        "REQUEST_POSTGRES_DRIVER_MISSING",
    }
)


def request_store_backend_name() -> str:
    backend = os.getenv("REQUEST_STORE_BACKEND", "IN_MEMORY").strip().upper()
    return "POSTGRES" if backend == "POSTGRES" else "IN_MEMORY"


def request_postgres_dsn() -> str:
    return os.getenv("REQUEST_POSTGRES_DSN", "").strip()


def event_publisher_name() -> str:
    publisher = os.getenv("REQUEST_EVENT_PUBLISHER", "LOGGING").strip().upper()
    return "IN_MEMORY" if publisher == "IN_MEMORY" else "LOGGING"


def _postgres_connection_exception_types() -> tuple[type[BaseException], ...]:
    types: list[type[BaseException]] = [
        ConnectionError,
        OSError,
        TimeoutError,
        TypeError,
        ValueError,
    ]
    try:
        import psycopg
    except ImportError:
        pass
    else:
        types.append(psycopg.Error)
    return tuple(types)


def build_repository() -> RequestRepository:
    if request_store_backend_name() == "POSTGRES":
        dsn = request_postgres_dsn()
        if not dsn:
            raise RuntimeError("REQUEST_POSTGRES_DSN_REQUIRED")
        try:
            return cast(RequestRepository, PostgresRequestRepository(dsn=dsn))
        except RuntimeError:
            raise
        except _postgres_connection_exception_types() as exc:
            raise RuntimeError("REQUEST_POSTGRES_CONNECTION_FAILED") from exc
    return cast(RequestRepository, InMemoryRequestRepository())


def build_event_publisher() -> EventPublisher:
    if event_publisher_name() == "IN_MEMORY":
        return InMemoryEventPublisher()
    return LoggingEventPublisher()
