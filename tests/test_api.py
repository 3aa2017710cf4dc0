"""Tests for the HTTP API."""

import pytest
from httpx import AsyncClient


@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    resp = await client.get("/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "ok"


@pytest.mark.asyncio
async def test_api_docs(client: AsyncClient):
    resp = await client.get("/docs")
    assert resp.status_code == 200


@pytest.mark.asyncio
async def test_list_event_types(client: AsyncClient):
    resp = await client.get("/api/v1/webhooks/events")
    assert resp.status_code == 200
    events = resp.json()
    assert "booking.created" in events
    assert "conversation.handoff" in events


# ── Businesses ───────────────────────────────────────────

@pytest.mark.asyncio
async def test_create_and_get_business(client: AsyncClient):
    resp = await client.post("/api/v1/businesses/", json={"name": "Acme"})
    assert resp.status_code == 201
    biz_id = resp.json()["id"]
    resp = await client.get(f"/api/v1/businesses/{biz_id}")
    assert resp.status_code == 200
    assert resp.json()["name"] == "Acme"


@pytest.mark.asyncio
async def test_get_business_404(client: AsyncClient):
    resp = await client.get("/api/v1/businesses/nonexistent")
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_emit_event_dispatches(client: AsyncClient, business, registry, dispatcher, receiver):
    await registry.create_endpoint(business.id, "CRM", "https://example.com/hook", ["order.created"])
    resp = await client.post(
        f"/api/v1/businesses/{business.id}/events",
        json={"event": "order.created", "data": {"id": "o1"}},
    )
    assert resp.status_code == 202
    assert resp.json()["timestamp"]
    await dispatcher.drain()
    assert len(receiver.requests) == 1


@pytest.mark.asyncio
async def test_emit_unknown_event(client: AsyncClient, business):
    resp = await client.post(f"/api/v1/businesses/{business.id}/events", json={"event": "nope"})
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_emit_without_endpoints_accepted(client: AsyncClient, business):
    resp = await client.post(f"/api/v1/businesses/{business.id}/events", json={"event": "order.created"})
    assert resp.status_code == 202
    assert resp.json()["timestamp"] is None


# ── Webhook endpoints ────────────────────────────────────

async def _create(client, business_id, **overrides):
    payload = {"name": "CRM", "url": "https://example.com/hook", "events": ["booking.created"]}
    payload.update(overrides)
    return await client.post(f"/api/v1/businesses/{business_id}/webhooks/", json=payload)


@pytest.mark.asyncio
async def test_create_webhook_shows_secret_once(client: AsyncClient, business):
    resp = await _create(client, business.id)
    assert resp.status_code == 201
    created = resp.json()
    assert created["secret"].startswith("whsec_")
    assert "not be shown again" in created["message"]

    listing = await client.get(f"/api/v1/businesses/{business.id}/webhooks/")
    assert listing.status_code == 200
    body = listing.json()
    assert len(body["endpoints"]) == 1
    assert "secret" not in body["endpoints"][0]
    assert created["secret"] not in listing.text
    assert "order.created" in body["available_events"]

    single = await client.get(f"/api/v1/businesses/{business.id}/webhooks/{created['id']}")
    assert single.status_code == 200
    assert created["secret"] not in single.text


@pytest.mark.asyncio
async def test_create_webhook_invalid_event(client: AsyncClient, business):
    resp = await _create(client, business.id, events=["invalid.event.type"])
    assert resp.status_code == 400
    assert "available_events" in resp.json()["detail"]


@pytest.mark.asyncio
async def test_create_webhook_invalid_url(client: AsyncClient, business):
    resp = await _create(client, business.id, url="not-a-url")
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_create_webhook_unknown_business(client: AsyncClient):
    resp = await _create(client, "nonexistent")
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_update_webhook(client: AsyncClient, business):
    created = (await _create(client, business.id)).json()
    resp = await client.patch(
        f"/api/v1/businesses/{business.id}/webhooks/{created['id']}",
        json={"active": False, "events": ["order.created"]},
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["active"] is False
    assert data["events"] == ["order.created"]
    assert "secret" not in data


@pytest.mark.asyncio
async def test_update_webhook_404(client: AsyncClient, business):
    resp = await client.patch(f"/api/v1/businesses/{business.id}/webhooks/nonexistent", json={"name": "x"})
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_regenerate_secret(client: AsyncClient, business):
    created = (await _create(client, business.id)).json()
    resp = await client.post(f"/api/v1/businesses/{business.id}/webhooks/{created['id']}/regenerate-secret")
    assert resp.status_code == 200
    data = resp.json()
    assert data["id"] == created["id"]
    assert data["secret"].startswith("whsec_")
    assert data["secret"] != created["secret"]


@pytest.mark.asyncio
async def test_delete_webhook(client: AsyncClient, business):
    created = (await _create(client, business.id)).json()
    resp = await client.delete(f"/api/v1/businesses/{business.id}/webhooks/{created['id']}")
    assert resp.status_code == 204
    resp = await client.get(f"/api/v1/businesses/{business.id}/webhooks/{created['id']}")
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_delete_webhook_404(client: AsyncClient, business):
    resp = await client.delete(f"/api/v1/businesses/{business.id}/webhooks/nonexistent")
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_test_delivery_route(client: AsyncClient, business, receiver):
    created = (await _create(client, business.id)).json()
    receiver.respond("https://example.com/hook", 503)
    resp = await client.post(f"/api/v1/businesses/{business.id}/webhooks/{created['id']}/test")
    assert resp.status_code == 200
    assert resp.json() == {
        "success": False,
        "status_code": 503,
        "message": "Webhook delivery failed with HTTP 503",
    }


# ── Delivery log ─────────────────────────────────────────

@pytest.mark.asyncio
async def test_delivery_log_list_and_detail(client: AsyncClient, business, dispatcher, receiver):
    created = (await _create(client, business.id)).json()
    receiver.respond("https://example.com/hook", 500, 500, 200)
    await dispatcher.trigger(business.id, "booking.created", {"id": "bk_1"})
    await dispatcher.drain()

    base = f"/api/v1/businesses/{business.id}/webhooks/{created['id']}/deliveries"
    resp = await client.get(base)
    assert resp.status_code == 200
    page = resp.json()
    assert page["total"] == 3
    assert [d["attempt"] for d in page["deliveries"]] == [3, 2, 1]
    assert "response" not in page["deliveries"][0]
    assert "payload" not in page["deliveries"][0]

    resp = await client.get(base, params={"success": "false"})
    assert resp.json()["total"] == 2

    resp = await client.get(base, params={"event": "order.created"})
    assert resp.json()["total"] == 0

    resp = await client.get(base, params={"limit": 500})
    assert resp.json()["limit"] == 100

    failed_id = page["deliveries"][-1]["id"]
    detail = await client.get(f"{base}/{failed_id}")
    assert detail.status_code == 200
    data = detail.json()
    assert data["response"] == "error 500"
    assert '"bk_1"' in data["payload"]


@pytest.mark.asyncio
async def test_delivery_detail_404(client: AsyncClient, business):
    created = (await _create(client, business.id)).json()
    resp = await client.get(f"/api/v1/businesses/{business.id}/webhooks/{created['id']}/deliveries/missing")
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_test_delivery_route_reports_unexpected_error(client: AsyncClient, business, receiver):
    created = (await _create(client, business.id)).json()
    receiver.respond("https://example.com/hook", ValueError("Codepoint U+0000 not allowed"))

    resp = await client.post(f"/api/v1/businesses/{business.id}/webhooks/{created['id']}/test")
    assert resp.status_code == 200
    data = resp.json()
    assert data["success"] is False
    assert data["status_code"] == 0


def test_shared_client_uses_pool_settings(monkeypatch):
    from app import main

    captured = {}

    class FakeClient:
        def __init__(self, **kwargs):
            captured.update(kwargs)

    monkeypatch.setattr(main.httpx, "AsyncClient", FakeClient)
    main.build_http_client()
    limits = captured["limits"]
    assert limits.max_connections == main.settings.webhook_max_connections == 500
    assert limits.max_keepalive_connections == main.settings.webhook_max_keepalive_connections == 50
    assert captured["follow_redirects"] is False
