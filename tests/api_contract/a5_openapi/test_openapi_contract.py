from __future__ import annotations

from typing import Any, Dict, List


def _get(d: Dict[str, Any], path: List[str], default=None):
    cur: Any = d
    for p in path:
        if not isinstance(cur, dict) or p not in cur:
            return default
        cur = cur[p]
    return cur


def _schema(client) -> Dict[str, Any]:
    r = client.get("/openapi.json", headers={})
    assert r.status_code == 200, r.text
    return r.json()


def test_openapi_json_is_public(client):
    j = _schema(client)
    assert "openapi" in j
    assert "paths" in j


def test_openapi_lists_the_dispatch_endpoints(client):
    paths = _schema(client)["paths"]
    expected = {
        ("/assignments/{assignment_id}/confirm", "post"),
        ("/assignments/{assignment_id}/cancel", "post"),
        ("/assignments/{assignment_id}/override", "post"),
        ("/assignments/{assignment_id}/lifecycle", "get"),
        ("/bids", "post"),
        ("/bids/available", "get"),
        ("/bid-windows", "get"),
        ("/bid-windows/{bid_window_id}/resolve", "post"),
        ("/shifts/{assignment_id}/arrive", "post"),
        ("/shifts/{assignment_id}/start", "post"),
        ("/shifts/{assignment_id}/complete", "post"),
        ("/cron/auto-drop", "post"),
        ("/cron/no-show-detection", "post"),
        ("/cron/close-bid-windows", "post"),
        ("/cron/performance-check", "post"),
        ("/drivers/{user_id}/standing", "get"),
        ("/drivers/{user_id}/reinstate", "post"),
    }
    missing = {(p, m) for p, m in expected if m not in paths.get(p, {})}
    assert not missing, missing


def test_override_request_is_a_discriminated_union(client):
    j = _schema(client)
    post = j["paths"]["/assignments/{assignment_id}/override"]["post"]
    schema = _get(post, ["requestBody", "content", "application/json", "schema"])
    assert schema, "requestBody application/json schema missing"

    variants = schema.get("anyOf") or schema.get("oneOf")
    assert variants, f"Expected anyOf/oneOf, got: {schema}"
    assert _get(schema, ["discriminator", "propertyName"]) == "action"

    components = j["components"]["schemas"]
    actions = set()
    for v in variants:
        ref = v["$ref"].split("/")[-1]
        actions.add(components[ref]["properties"]["action"]["const"])
    assert actions == {"reassign", "open_bidding", "open_urgent_bidding"}


def test_security_schemes_are_declared(client):
    j = _schema(client)
    schemes = _get(j, ["components", "securitySchemes"], {})
    assert {"XRole", "XOrgId", "XActorUserId", "CronBearer"} <= set(schemes)
    assert schemes["CronBearer"]["scheme"] == "bearer"
    assert j["security"] == [{"XRole": [], "XOrgId": [], "XActorUserId": []}]


def test_health_and_cron_override_global_security(client):
    paths = _schema(client)["paths"]
    assert paths["/health"]["get"]["security"] == []
    assert paths["/cron/auto-drop"]["post"]["security"] == [{"CronBearer": []}]
