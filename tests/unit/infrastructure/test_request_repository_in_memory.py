from datetime import datetime, timedelta, timezone
from decimal import Decimal

from src.core.workflow.models import LineItem, RequestRecord
from src.infrastructure.requests.in_memory import InMemoryRequestRepository

_NOW = datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)


def _record(request_id: str, *, status: str = "novaya", created_by: str = "prorab_1", offset=0):
    return RequestRecord(
        request_id=request_id,
        request_type="materials",
        chain="full",
        current_status=status,
        created_by=created_by,
        created_at=_NOW + timedelta(minutes=offset),
        stage_entered_at=_NOW,
        specification=[LineItem(item_id="li_1", name="Cement", unit="bag", quantity=Decimal("5"))],
    )


def test_in_memory_repository_returns_isolated_copies():
    repository = InMemoryRequestRepository()
    record = _record("sr_1")
    repository.create_request(record)

    record.title = "mutated after create"
    loaded = repository.get_request(request_id="sr_1")
    loaded.specification[0].name = "mutated after load"

    again = repository.get_request(request_id="sr_1")
    assert again.title == ""
    assert again.specification[0].name == "Cement"
    assert repository.get_request(request_id="sr_missing") is None


def test_in_memory_repository_save_is_version_guarded():
    repository = InMemoryRequestRepository()
    repository.create_request(_record("sr_1"))

    first = repository.get_request(request_id="sr_1")
    second = repository.get_request(request_id="sr_1")
    first.current_status = "sklad_review"
    first.version = 2
    second.current_status = "otkloneno"
    second.version = 2

    assert repository.save_request(request=first, expected_version=1) is True
    assert repository.save_request(request=second, expected_version=1) is False
    assert repository.get_request(request_id="sr_1").current_status == "sklad_review"


def test_in_memory_repository_inserts_derived_request_with_parent_save():
    repository = InMemoryRequestRepository()
    repository.create_request(_record("sr_parent"))
    parent = repository.get_request(request_id="sr_parent")
    parent.version = 2
    child = _record("sr_child", status="nachalnik_review")

    assert repository.save_request(request=parent, expected_version=1, derived_request=child)
    assert repository.get_request(request_id="sr_child").current_status == "nachalnik_review"


def test_in_memory_repository_rejected_save_drops_derived_request():
    repository = InMemoryRequestRepository()
    repository.create_request(_record("sr_parent"))
    parent = repository.get_request(request_id="sr_parent")

    saved = repository.save_request(
        request=parent, expected_version=7, derived_request=_record("sr_child")
    )

    assert saved is False
    assert repository.get_request(request_id="sr_child") is None


def test_in_memory_repository_list_filters_and_orders_newest_first():
    repository = InMemoryRequestRepository()
    repository.create_request(_record("sr_old", offset=0))
    repository.create_request(_record("sr_new", offset=5))
    repository.create_request(_record("sr_other", created_by="prorab_2", offset=3))
    repository.create_request(_record("sr_closed", status="polucheno", offset=9))

    everything = repository.list_requests(created_by=None, status=None, include_terminal=True)
    assert [row.request_id for row in everything] == ["sr_closed", "sr_new", "sr_other", "sr_old"]

    open_own = repository.list_requests(
        created_by="prorab_1", status=None, include_terminal=False
    )
    assert [row.request_id for row in open_own] == ["sr_new", "sr_old"]

    closed = repository.list_requests(created_by=None, status="polucheno", include_terminal=True)
    assert [row.request_id for row in closed] == ["sr_closed"]


def test_in_memory_repository_delete():
    repository = InMemoryRequestRepository()
    repository.create_request(_record("sr_1"))
    assert repository.delete_request(request_id="sr_1") is True
    assert repository.delete_request(request_id="sr_1") is False
