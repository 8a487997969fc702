import json
import logging
from datetime import datetime, timezone
from decimal import Decimal

from src.api.observability import JsonFormatter
from src.core.workflow.events import new_event
from src.infrastructure.events import InMemoryEventPublisher, LoggingEventPublisher

_NOW = datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)


def _stock_event(request_id: str = "sr_1"):
    return new_event(
        event_type="STOCK_DECREMENT_REQUESTED",
        request_id=request_id,
        occurred_at=_NOW,
        actor_id="sklad_1",
        actor_role="sklad",
        to_status="vydano",
        item_name="Cement",
        unit="bag",
        quantity=Decimal("30"),
    )


def test_new_event_assigns_prefixed_identifier():
    event = _stock_event()
    assert event.event_id.startswith("wev_")
    assert event.quantity == Decimal("30")
    assert event.from_status is None


def test_in_memory_publisher_filters_by_request_and_type():
    publisher = InMemoryEventPublisher()
    publisher.publish(_stock_event("sr_1"))
    publisher.publish(_stock_event("sr_2"))
    publisher.publish(
        new_event(event_type="STATUS_CHANGED", request_id="sr_1", occurred_at=_NOW)
    )

    assert len(publisher.list_events()) == 3
    assert len(publisher.list_events(request_id="sr_1")) == 2
    stock_events = publisher.list_events(event_type="STOCK_DECREMENT_REQUESTED")
    assert [event.request_id for event in stock_events] == ["sr_1", "sr_2"]
    publisher.clear()
    assert publisher.list_events() == []


def test_logging_publisher_emits_structured_event(caplog):
    publisher = LoggingEventPublisher()

    with caplog.at_level(logging.INFO, logger="workflow.events"):
        publisher.publish(_stock_event())

    record = next(r for r in caplog.records if r.name == "workflow.events")
    assert record.getMessage() == "workflow.event"
    payload = json.loads(JsonFormatter().format(record))
    assert payload["workflow_event"]["event_type"] == "STOCK_DECREMENT_REQUESTED"
    assert payload["workflow_event"]["quantity"] == "30"
    assert "deadline" not in payload["workflow_event"]
