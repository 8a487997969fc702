from fastapi.testclient import TestClient

from src.api.main import app


def _headers(role: str, actor_id: str = None) -> dict[str, str]:
    return {"X-Actor-Id": actor_id or f"{role}_1", "X-Actor-Role": role}


def _transition(client: TestClient, request_id: str, role: str, to_status: str, **payload):
    response = client.post(
        f"/requests/{request_id}/actions",
        json={"to_status": to_status, **payload},
        headers=_headers(role),
    )
    assert response.status_code == 200, response.text
    return response.json()


def test_partial_fulfillment_parent_and_remainder_both_reach_receipt():
    with TestClient(app) as client:
        created = client.post(
            "/requests",
            json={
                "request_type": "materials",
                "title": "Slab pour",
                "object_name": "Tower 2",
                "items": [
                    {"item_id": "li_cement", "name": "Cement", "unit": "bag", "quantity": "50"},
                    {"item_id": "li_sand", "name": "Sand", "unit": "t", "quantity": "12"},
                ],
            },
            headers=_headers("prorab"),
        ).json()
        parent_id = created["request"]["request_id"]

        _transition(client, parent_id, "sklad", "sklad_review")
        split = _transition(
            client,
            parent_id,
            "sklad",
            "sklad_partial",
            fulfilled_quantities={"li_cement": "30", "li_sand": "12"},
        )
        child_id = split["derived_request"]["request_id"]
        decrements = [
            (event["item_name"], event["quantity"])
            for event in split["events"]
            if event["event_type"] == "STOCK_DECREMENT_REQUESTED"
        ]

        _transition(client, parent_id, "sklad", "vydano")
        _transition(client, parent_id, "prorab", "polucheno")

        for role, status in [
            ("nachalnik", "nachalnik_approved"),
            ("snab", "snab_process"),
            ("snab", "zakupleno"),
            ("snab", "v_puti"),
            ("sklad", "vydano"),
            ("prorab", "polucheno"),
        ]:
            _transition(client, child_id, role, status)

        parent = client.get(f"/requests/{parent_id}", headers=_headers("prorab")).json()
        child = client.get(f"/requests/{child_id}", headers=_headers("prorab")).json()
        own_requests = client.get("/requests", headers=_headers("prorab")).json()

    assert decrements == [("Cement", "30"), ("Sand", "12")]
    assert split["derived_request"]["current_status"] == "nachalnik_review"
    assert split["derived_request"]["chain"] == "full"

    assert parent["request"]["current_status"] == "polucheno"
    assert parent["child_request_ids"] == [child_id]
    assert [entry["to_status"] for entry in parent["history"]] == [
        "sklad_review",
        "sklad_partial",
        "vydano",
        "polucheno",
    ]

    assert child["request"]["current_status"] == "polucheno"
    assert child["request"]["parent_request_id"] == parent_id
    assert child["request"]["title"] == "[Purchase] Slab pour"
    assert [(item["item_id"], item["quantity"]) for item in child["specification"]] == [
        ("li_cement", "20")
    ]
    assert child["history"][0]["action"] == "SPLIT_CREATED"
    assert len(child["history"]) == 7

    assert {item["request_id"] for item in own_requests["items"]} == {parent_id, child_id}


def test_admin_override_is_audited_and_restarts_stage_clock():
    with TestClient(app) as client:
        request_id = client.post(
            "/requests",
            json={
                "request_type": "heavy_equipment",
                "items": [{"name": "Crane 25t", "unit": "day", "quantity": "3"}],
            },
            headers=_headers("prorab"),
        ).json()["request"]["request_id"]
        _transition(client, request_id, "sklad", "sklad_review")
        _transition(client, request_id, "sklad", "nachalnik_review")

        override = _transition(
            client, request_id, "admin", "snab_process", comment="urgent rental approved by CEO"
        )
        sla = client.get(f"/requests/{request_id}/sla", headers=_headers("admin")).json()

    assert override["history_entry"]["actor_role"] == "admin"
    assert override["history_entry"]["comment"] == "urgent rental approved by CEO"
    assert override["request"]["current_status"] == "snab_process"
    assert override["request"]["responsible_role"] == "snab"
    assert "PURCHASE_ORDER_ELIGIBLE" in [event["event_type"] for event in override["events"]]
    assert sla["stage_entered_at"] == override["request"]["stage_entered_at"]
    assert sla["is_breached"] is False
