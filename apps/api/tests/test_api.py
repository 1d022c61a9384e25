from beacon_desk.services.assignment_service import ALREADY_ASSIGNED


def create(client, headers, **overrides):
    body = {"type": "IT", "title": "Laptop will not boot", "description": "Black screen", "priority": "HIGH"}
    body.update(overrides)
    return client.post("/tickets", json=body, headers=headers)


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"ok": True}


def test_requires_token(client):
    assert client.get("/tickets").status_code == 401
    r = client.get("/tickets", headers={"Authorization": "Bearer not-a-jwt"})
    assert r.status_code == 401


def test_create_and_read_ticket(client, people, auth_headers, transport):
    headers = auth_headers(people.requester)
    r = create(client, headers)
    assert r.status_code == 201
    ticket = r.json()
    assert ticket["ticket_number"] == "IT-000001"
    assert ticket["status"] == "OPEN"
    assert ticket["priority"] == "HIGH"
    assert len(transport.sent) == 1

    r = client.get(f"/tickets/{ticket['id']}", headers=headers)
    assert r.status_code == 200
    detail = r.json()
    assert detail["ticket"]["id"] == ticket["id"]
    assert detail["assignments"] == []
    assert [e["type"] for e in detail["events"]] == ["CREATED"]

    r = client.get(f"/tickets/{ticket['id']}", headers=auth_headers(people.outsider))
    assert r.status_code == 403
    assert client.get("/tickets/9999", headers=headers).status_code == 404


def test_create_validates_body(client, people, auth_headers):
    r = create(client, auth_headers(people.requester), title="")
    assert r.status_code == 422
    r = create(client, auth_headers(people.requester), priority="CRITICAL")
    assert r.status_code == 422


def test_second_claim_conflicts(client, people, auth_headers):
    ticket = create(client, auth_headers(people.requester)).json()

    r = client.post(f"/tickets/{ticket['id']}/claim", headers=auth_headers(people.engineer))
    assert r.status_code == 200
    assert r.json()["engineer_id"] == people.engineer.id

    r = client.post(f"/tickets/{ticket['id']}/claim", headers=auth_headers(people.engineer2))
    assert r.status_code == 409
    assert r.json()["detail"] == ALREADY_ASSIGNED

    r = client.post(f"/tickets/{ticket['id']}/claim", headers=auth_headers(people.requester))
    assert r.status_code == 403


def test_full_lifecycle_over_http(client, people, auth_headers):
    requester = auth_headers(people.requester)
    engineer = auth_headers(people.engineer)
    ticket_id = create(client, requester).json()["id"]
    client.post(f"/tickets/{ticket_id}/claim", headers=engineer)

    r = client.post(f"/tickets/{ticket_id}/notes", json={"note": "Tried safe mode"}, headers=requester)
    assert r.status_code == 201
    assert r.json()["payload"] == {"note": "Tried safe mode", "fromRequester": True}

    r = client.patch(f"/tickets/{ticket_id}", json={"status": "RESOLVED"}, headers=engineer)
    assert r.status_code == 200
    assert r.json()["resolved_at"] is not None

    r = client.patch(f"/tickets/{ticket_id}", json={"status": "IN_PROGRESS"}, headers=engineer)
    assert r.status_code == 409

    r = client.post(f"/tickets/{ticket_id}/acknowledge", headers=requester)
    assert r.status_code == 200
    assert r.json()["status"] == "CLOSED"

    r = client.post(f"/tickets/{ticket_id}/reopen", json={"reason": "Back again"}, headers=requester)
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "OPEN"
    assert body["resolved_at"] is None
    assert body["closed_at"] is None

    r = client.get(f"/tickets/{ticket_id}/events", headers=requester)
    types = [e["type"] for e in r.json()]
    assert types[0] == "CREATED"
    assert types.count("STATUS_CHANGED") == 4


def test_list_scopes(client, people, auth_headers):
    requester = auth_headers(people.requester)
    first = create(client, requester, title="Printer jam").json()
    create(client, requester, title="VPN drops")

    r = client.get("/tickets", headers=requester)
    assert r.json()["total"] == 2

    r = client.get("/tickets", params={"scope": "unassigned"}, headers=auth_headers(people.engineer))
    assert r.json()["total"] == 2

    client.post(f"/tickets/{first['id']}/claim", headers=auth_headers(people.engineer))
    r = client.get("/tickets", params={"scope": "assigned"}, headers=auth_headers(people.engineer))
    assert [t["id"] for t in r.json()["items"]] == [first["id"]]

    r = client.get("/tickets", params={"scope": "all", "search": "vpn"}, headers=auth_headers(people.it_admin))
    assert [t["title"] for t in r.json()["items"]] == ["VPN drops"]

    assert client.get("/tickets", params={"scope": "all"}, headers=requester).status_code == 403
    assert client.get("/tickets", params={"scope": "bogus"}, headers=requester).status_code == 422


def test_travel_approval_over_http(client, people, auth_headers):
    ticket = create(client, auth_headers(people.requester), type="TRAVEL", title="Trip to Oslo").json()
    assert ticket["ticket_number"].startswith("TR-")
    assert ticket["status"] == "PENDING_APPROVAL"

    supervisor = auth_headers(people.supervisor)
    (pending,) = client.get("/approvals", headers=supervisor).json()
    assert pending["ticket_number"] == ticket["ticket_number"]
    assert pending["level"] == "supervisor"

    r = client.post(f"/approvals/{pending['id']}/decision", json={"action": "approve"}, headers=supervisor)
    assert r.status_code == 200
    assert r.json()["state"] == "APPROVED"

    r = client.post(f"/approvals/{pending['id']}/decision", json={"action": "approve"}, headers=supervisor)
    assert r.status_code == 404

    for admin in (people.travel_admin, people.travel_admin2):
        headers = auth_headers(admin)
        (row,) = client.get("/approvals", headers=headers).json()
        r = client.post(f"/approvals/{row['id']}/decision", json={"action": "approve"}, headers=headers)
        assert r.status_code == 200

    detail = client.get(f"/tickets/{ticket['id']}", headers=auth_headers(people.requester)).json()
    assert detail["ticket"]["status"] == "OPEN"
    assert [a["state"] for a in detail["approvals"]] == ["APPROVED", "APPROVED", "APPROVED"]


def test_bad_decision_action(client, people, auth_headers):
    r = client.post("/approvals/1/decision", json={"action": "maybe"}, headers=auth_headers(people.supervisor))
    assert r.status_code == 422


def test_sla_config_endpoints(client, people, auth_headers):
    admin = auth_headers(people.it_admin)
    r = client.get("/admin/sla-config", headers=admin)
    assert r.status_code == 200
    assert r.json()["config"] == {"URGENT": 240, "HIGH": 480, "MEDIUM": 1440, "LOW": 4320}

    r = client.put("/admin/sla-config", json={"URGENT": 120, "LOW": -5, "BOGUS": 10}, headers=admin)
    assert r.status_code == 200
    assert r.json()["config"]["URGENT"] == 120
    assert r.json()["config"]["LOW"] == 4320

    r = client.put("/admin/sla-config", json={"HIGH": "soon"}, headers=admin)
    assert r.status_code == 422

    assert client.get("/admin/sla-config", headers=auth_headers(people.engineer)).status_code == 403
    assert client.get("/admin/sla-config", headers=auth_headers(people.travel_admin)).status_code == 403


def test_manual_sla_run(client, people, auth_headers):
    create(client, auth_headers(people.requester))
    r = client.post("/admin/sla/run", headers=auth_headers(people.it_admin))
    assert r.status_code == 200
    assert r.json() == {
        "warnings_sent": 0,
        "breaches_sent": 0,
        "reminders_sent": 0,
        "auto_closed": 0,
        "total_tickets": 1,
        "errors": 0,
    }
    assert client.post("/admin/sla/run", headers=auth_headers(people.engineer)).status_code == 403


def test_failure_journal_and_retry(client, people, auth_headers, transport):
    admin = auth_headers(people.it_admin)
    transport.fail_with = "relay denied"
    r = create(client, auth_headers(people.requester))
    assert r.status_code == 201

    r = client.get("/admin/notifications/failures", headers=admin)
    body = r.json()
    assert body["total"] == 1
    assert body["total_pages"] == 1
    (failure,) = body["failures"]
    assert failure["event"] == "ticket_created"
    assert failure["status"] == "FAILED"
    assert failure["metadata"]["requesterEmail"] == people.requester.email

    r = client.post(f"/admin/notifications/failures/{failure['id']}/retry", headers=admin)
    assert r.status_code == 502
    assert r.json()["failure_id"] == failure["id"]

    transport.fail_with = None
    r = client.post(f"/admin/notifications/failures/{failure['id']}/retry", headers=admin)
    assert r.status_code == 200
    assert r.json()["status"] == "SENT"
    assert r.json()["attempts"] == 3

    r = client.post(f"/admin/notifications/failures/{failure['id']}/retry", headers=admin)
    assert r.status_code == 409

    r = client.get("/admin/notifications/failures", params={"status": "FAILED"}, headers=admin)
    assert r.json()["total"] == 0
