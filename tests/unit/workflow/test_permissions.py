from datetime import datetime, timezone
from decimal import Decimal

import pytest

from src.core.workflow.models import LineItem, RequestRecord
from src.core.workflow.permissions import allowed_transitions, authorize, can_view

_NOW = datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)


def _request(status: str = "novaya", chain: str = "full", created_by: str = "prorab_1"):
    return RequestRecord(
        request_id="sr_perm",
        request_type="materials",
        chain=chain,
        current_status=status,
        created_by=created_by,
        created_at=_NOW,
        stage_entered_at=_NOW,
        specification=[
            LineItem(item_id="li_1", name="Cement", unit="bag", quantity=Decimal("10"))
        ],
    )


@pytest.mark.parametrize(
    "role,action,expected",
    [
        ("prorab", "create", True),
        ("prorab", "view_all", False),
        ("prorab", "view_financials", False),
        ("sklad", "manage_warehouse_stock", True),
        ("sklad", "split_request", True),
        ("sklad", "create", False),
        ("nachalnik", "edit_specification", True),
        ("nachalnik", "view_financials", True),
        ("nachalnik", "edit_financials", False),
        ("finansist", "edit_financials", True),
        ("finansist", "download_invoice", True),
        ("snab", "create_purchase_order", True),
        ("snab", "edit_specification", False),
        ("snab", "force_delete", False),
        ("admin", "force_delete", True),
        ("admin", "manage_users", True),
        ("admin", "create", True),
    ],
)
def test_capability_matrix(role, action, expected):
    assert authorize(role, action, _request()) is expected


def test_unknown_role_is_denied_without_raising():
    assert authorize("ghost", "create") is False
    assert authorize("ghost", "transition", _request(), to_status="sklad_review") is False


def test_view_own_requires_creator():
    request = _request(created_by="prorab_1")
    assert authorize("prorab", "view_own", request, actor_id="prorab_1") is True
    assert authorize("prorab", "view_own", request, actor_id="prorab_2") is False
    assert authorize("prorab", "view_own", None, actor_id="prorab_1") is False
    assert can_view("prorab", request, actor_id="prorab_2") is False
    assert can_view("snab", request, actor_id="snab_1") is True


def test_transition_requires_request_and_target():
    assert authorize("sklad", "transition") is False
    assert authorize("sklad", "transition", _request()) is False


@pytest.mark.parametrize(
    "role,status,chain,to_status,expected",
    [
        ("sklad", "novaya", "full", "sklad_review", True),
        ("sklad", "sklad_review", "full", "sklad_partial", True),
        ("sklad", "v_puti", "full", "vydano", True),
        ("sklad", "nachalnik_review", "full", "nachalnik_approved", False),
        ("nachalnik", "novaya", "purchase_only", "nachalnik_review", True),
        ("nachalnik", "novaya", "full", "sklad_review", False),
        ("nachalnik", "nachalnik_review", "full", "otkloneno", True),
        ("finansist", "finansist_review", "full_finance", "finansist_approved", True),
        ("finansist", "nachalnik_review", "full_finance", "finansist_review", False),
        ("snab", "nachalnik_approved", "full", "snab_process", True),
        ("snab", "zakupleno", "full", "v_puti", True),
        ("snab", "v_puti", "full", "vydano", False),
        ("prorab", "vydano", "full", "polucheno", True),
        ("prorab", "sklad_review", "full", "vydano", False),
        ("admin", "snab_process", "full", "novaya", True),
    ],
)
def test_transition_matrix(role, status, chain, to_status, expected):
    request = _request(status=status, chain=chain)
    assert (
        authorize(role, "transition", request, to_status=to_status, actor_id="someone")
        is expected
    )


def test_prorab_may_withdraw_only_own_new_request():
    request = _request(status="novaya", created_by="prorab_1")
    assert authorize("prorab", "transition", request, to_status="otkloneno", actor_id="prorab_1")
    assert not authorize(
        "prorab", "transition", request, to_status="otkloneno", actor_id="prorab_2"
    )
    assert not authorize(
        "prorab",
        "transition",
        _request(status="sklad_review"),
        to_status="otkloneno",
        actor_id="prorab_1",
    )


def test_allowed_transitions_for_stage_owner_lists_every_successor():
    request = _request(status="sklad_review", chain="full")
    assert allowed_transitions("sklad", request) == [
        "nachalnik_review",
        "vydano",
        "sklad_partial",
        "otkloneno",
    ]
    assert allowed_transitions("nachalnik", request) == []


def test_allowed_transitions_for_prorab_at_issue_stage():
    request = _request(status="vydano")
    assert allowed_transitions("prorab", request, actor_id="prorab_1") == ["polucheno"]


def test_allowed_transitions_empty_for_terminal_request():
    assert allowed_transitions("admin", _request(status="polucheno")) == []
