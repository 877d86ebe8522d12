from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from iplists.core.engine import AccessDecisionEngine
from iplists.core.rules import AddressKind, DenyMethod, ListPolicy, RuleListSnapshot
from iplists.middleware.ip_lists import IPListMiddleware
from iplists.services.rule_store import InMemoryRuleStore

from conftest import RecordingSink, ip_rule, rule_list


def create_app(lists, **kwargs):
    app = FastAPI()

    @app.get("/admin/{rest:path}")
    def admin(rest: str, request: Request):
        return {"ok": True, "client_ip": request.state.client_ip}

    @app.get("/public")
    def public():
        return {"ok": True}

    @app.get("/ping")
    def ping():
        return {"message": "pong"}

    kwargs.setdefault("ip_header", "X-Forwarded-For")
    app.add_middleware(IPListMiddleware, rule_store=InMemoryRuleStore(lists), **kwargs)
    return app


ADMIN_ONLY = [
    rule_list(1, ListPolicy.ALLOW, "/admin", [ip_rule(1, "203.0.113.0/28", AddressKind.CIDR)]),
]


def test_allowed_ip_reaches_protected_route():
    client = TestClient(create_app(ADMIN_ONLY))
    response = client.get("/admin/lists", headers={"X-Forwarded-For": "203.0.113.10, 10.0.0.1"})

    assert response.status_code == 200
    assert response.json() == {"ok": True, "client_ip": "203.0.113.10"}


def test_unlisted_ip_gets_not_found():
    client = TestClient(create_app(ADMIN_ONLY))
    response = client.get("/admin/lists", headers={"X-Forwarded-For": "198.51.100.5"})

    assert response.status_code == 404
    assert response.json() == {"detail": "not_found"}


def test_deny_method_bad_request():
    lists = [rule_list(1, ListPolicy.DENY, "/admin", [ip_rule(1, "198.51.100.5")], deny_method=DenyMethod.BAD_REQUEST)]
    client = TestClient(create_app(lists))

    denied = client.get("/admin/x", headers={"X-Forwarded-For": "198.51.100.5"})
    other = client.get("/admin/x", headers={"X-Forwarded-For": "198.51.100.6"})

    assert denied.status_code == 400
    assert denied.json() == {"detail": "bad_request"}
    assert other.status_code == 200


def test_unprotected_route_passes_through():
    client = TestClient(create_app(ADMIN_ONLY))
    response = client.get("/public?x=1", headers={"X-Forwarded-For": "198.51.100.5"})

    assert response.status_code == 200


def test_client_host_used_without_forwarding_header():
    lists = [rule_list(1, ListPolicy.ALLOW, "/admin", [ip_rule(1, "127.0.0.1")])]
    client = TestClient(create_app(lists, ip_header=None))

    response = client.get("/admin/x", headers={"X-Forwarded-For": "198.51.100.5"})

    assert response.status_code == 200
    assert response.json()["client_ip"] == "127.0.0.1"


def test_exempt_paths_and_disabled_gate_skip_evaluation():
    lists = [rule_list(1, ListPolicy.ALLOW, "/", [])]

    exempt = TestClient(create_app(lists, exempt_paths=["/ping/"]))
    assert exempt.get("/ping").status_code == 200
    assert exempt.get("/public").status_code == 404

    disabled = TestClient(create_app(lists, enabled=False))
    assert disabled.get("/public").status_code == 200


def test_audit_events_are_emitted_per_request():
    sink = RecordingSink()
    client = TestClient(create_app(ADMIN_ONLY, engine=AccessDecisionEngine(sink)))

    client.get("/admin/x", headers={"X-Forwarded-For": "198.51.100.5"})
    client.get("/public", headers={"X-Forwarded-For": "198.51.100.5"})

    assert [event.outcome.value for event in sink.events] == ["denied", "allowed"]
    assert sink.events[0].route == "/admin/x"


def test_inconsistent_policy_returns_server_error():
    broken = RuleListSnapshot(id=1, title="broken", policy="Sometimes", protected_routes=("/admin",))
    client = TestClient(create_app([broken]))

    response = client.get("/admin/x", headers={"X-Forwarded-For": "203.0.113.1"})

    assert response.status_code == 500
    assert response.json() == {"detail": "ip_lists_misconfigured"}


def test_inconsistent_deny_method_can_fail_safe():
    broken = rule_list(1, ListPolicy.ALLOW, "/admin", [], deny_method=302)
    client = TestClient(create_app([broken], on_error="deny"))

    response = client.get("/admin/x", headers={"X-Forwarded-For": "203.0.113.1"})

    assert response.status_code == 403
    assert response.json() == {"detail": "access_denied"}


def test_forwarded_address_is_cleaned_like_client_host():
    lists = [rule_list(1, ListPolicy.ALLOW, "/admin", [ip_rule(1, "127.0.0.1")])]
    client = TestClient(create_app(lists))

    aliased = client.get("/admin/x", headers={"X-Forwarded-For": " localhost , 10.0.0.1"})
    blank_first = client.get("/admin/x", headers={"X-Forwarded-For": " , 198.51.100.5"})
    garbage = client.get("/admin/x", headers={"X-Forwarded-For": "not-an-ip"})

    assert aliased.status_code == 200
    assert aliased.json()["client_ip"] == "127.0.0.1"
    assert blank_first.status_code == 200
    assert blank_first.json()["client_ip"] == "127.0.0.1"
    assert garbage.status_code == 404
