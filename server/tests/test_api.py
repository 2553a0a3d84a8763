"""Tests for the HTTP and WebSocket endpoints."""

from __future__ import annotations

import asyncio

import pytest
from starlette.websockets import WebSocketDisconnect

from conftest import auth_headers
from netvision.core.scoring import score_cellular
from netvision.main import get_registry, get_stats, get_store


def _sample(lat: float = 45.7640, lon: float = 4.8350, **overrides) -> dict:
    payload = {
        "latitude": lat,
        "longitude": lon,
        "networkType": "cellular",
        "rsrq": -10,
        "sinr": 10,
        "cqi": 8,
    }
    payload.update(overrides)
    return payload


async def _save(client, lat, lon, token="token-alice", **overrides):
    resp = await client.post(
        "/api/v1/measurements",
        json={**_sample(lat, lon, **overrides), "saveImmediately": True},
        headers=auth_headers(token),
    )
    assert resp.status_code == 200
    return resp.json()


# -- monitoring -----------------------------------------------------------


@pytest.mark.asyncio
async def test_health(client):
    resp = await client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "ok"
    assert data["storage_writable"] is True
    assert data["live_sessions"] == 0
    assert "uptime_seconds" in data
    assert "disk_free_gb" in data


@pytest.mark.asyncio
async def test_stats_empty(client):
    resp = await client.get("/api/v1/stats")
    assert resp.status_code == 200
    data = resp.json()
    assert data["measurements_scored"] == 0
    assert data["active_users"]["total"] == 0
    assert data["active_users"]["stream"] == 0
    assert data["active_users"]["single"] == 0


@pytest.mark.asyncio
async def test_config_endpoint(client):
    resp = await client.get("/api/v1/config")
    assert resp.status_code == 200
    data = resp.json()
    assert data["default_radius_m"] == 5000
    assert data["max_radius_m"] == 50000
    assert data["radio_ranges"]["cqi"] == [0, 15]


# -- single measurement ---------------------------------------------------


@pytest.mark.asyncio
async def test_record_measurement(client):
    resp = await client.post("/api/v1/measurements", json=_sample(), headers=auth_headers())
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    data = body["data"]
    assert data["qualityScore"] == score_cellular(-10, 10, 8)
    assert data["bestZone"] == {"hasData": False}
    assert data["saved"] is False
    assert data["humanMessage"]

    snap = get_stats().snapshot()
    assert snap["measurements_scored"] == 1
    assert snap["measurements_stored"] == 0
    assert snap["active_users"]["single"] == 1


@pytest.mark.asyncio
async def test_record_requires_token(client):
    resp = await client.post("/api/v1/measurements", json=_sample())
    assert resp.status_code == 401
    assert resp.json() == {"success": False, "message": "Access token required"}


@pytest.mark.asyncio
async def test_record_rejects_unknown_token(client):
    resp = await client.post("/api/v1/measurements", json=_sample(), headers=auth_headers("nope"))
    assert resp.status_code == 401
    assert resp.json()["message"] == "Invalid token"
    assert get_stats().snapshot()["auth_failures"] == 1


@pytest.mark.asyncio
async def test_record_invalid_coordinates(client):
    resp = await client.post("/api/v1/measurements", json=_sample(lat=123), headers=auth_headers())
    assert resp.status_code == 400
    assert resp.json() == {"success": False, "message": "Invalid coordinates"}
    assert get_stats().snapshot()["measurements_rejected"] == 1


@pytest.mark.asyncio
async def test_record_invalid_radio_metrics(client):
    resp = await client.post("/api/v1/measurements", json=_sample(cqi=20), headers=auth_headers())
    assert resp.status_code == 400
    assert "CQI" in resp.json()["message"]


@pytest.mark.asyncio
async def test_record_invalid_json(client):
    resp = await client.post(
        "/api/v1/measurements",
        content=b"{not json",
        headers={**auth_headers(), "content-type": "application/json"},
    )
    assert resp.status_code == 400
    assert resp.json()["success"] is False


@pytest.mark.asyncio
async def test_saved_measurement_becomes_best_zone(client):
    await _save(client, 45.7680, 4.8407, sinr=25, cqi=14)   # ~630 m NE

    resp = await client.post("/api/v1/measurements", json=_sample(), headers=auth_headers())
    zone = resp.json()["data"]["bestZone"]
    assert zone["hasData"] is True
    assert zone["location"] == {"latitude": 45.768, "longitude": 4.8407}
    assert zone["direction"] == "NE"
    assert zone["recommendation"].startswith("Move NE")
    assert get_stats().snapshot()["measurements_stored"] == 1


@pytest.mark.asyncio
async def test_save_on_stop_alias(client):
    resp = await client.post(
        "/api/v1/measurements",
        json={**_sample(), "saveOnStop": True},
        headers=auth_headers(),
    )
    assert resp.json()["data"]["saved"] is True
    _, total = await get_store().history("alice", 10, 0)
    assert total == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("flag", ["false", "true", 0, 1])
async def test_save_flag_must_be_boolean(client, flag):
    resp = await client.post(
        "/api/v1/measurements",
        json={**_sample(), "saveImmediately": flag},
        headers=auth_headers(),
    )
    assert resp.status_code == 400
    assert resp.json()["message"] == "saveImmediately must be true or false"
    _, total = await get_store().history("alice", 10, 0)
    assert total == 0


# -- best zone ------------------------------------------------------------


@pytest.mark.asyncio
async def test_best_zone_endpoint(client):
    await _save(client, 45.7640, 4.8350, cqi=6)
    await _save(client, 45.7900, 4.8350, cqi=15)   # ~2.9 km north

    resp = await client.post(
        "/api/v1/best-zone",
        json={"latitude": 45.7640, "longitude": 4.8350},
        headers=auth_headers(),
    )
    assert resp.status_code == 200
    zone = resp.json()["data"]
    assert zone["hasData"] is True
    assert zone["direction"] == "N"
    assert zone["distanceFormatted"].endswith("km")

    # A tight radius only sees the first spot.
    resp = await client.post(
        "/api/v1/best-zone",
        json={"latitude": 45.7640, "longitude": 4.8350, "radius": 500},
        headers=auth_headers(),
    )
    assert resp.json()["data"]["qualityScore"] == score_cellular(-10, 10, 6)


@pytest.mark.asyncio
async def test_best_zone_is_per_user(client):
    await _save(client, 45.7640, 4.8350, token="token-bob")
    resp = await client.post(
        "/api/v1/best-zone",
        json={"latitude": 45.7640, "longitude": 4.8350},
        headers=auth_headers("token-alice"),
    )
    assert resp.json()["data"] == {"hasData": False}


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [
    {"latitude": 45.0},
    {"latitude": 45.0, "longitude": 4.0, "radius": -1},
    {"latitude": 45.0, "longitude": 4.0, "radius": "far"},
])
async def test_best_zone_bad_input(client, body):
    resp = await client.post("/api/v1/best-zone", json=body, headers=auth_headers())
    assert resp.status_code == 400


# -- stored data ----------------------------------------------------------


@pytest.mark.asyncio
async def test_last_spot(client):
    resp = await client.get("/api/v1/measurements/last", headers=auth_headers())
    assert resp.status_code == 404
    assert resp.json() == {"success": False, "message": "No data found"}

    await _save(client, 45.0, 4.0, timestamp="2026-03-01T08:00:00Z")
    await _save(client, 45.1, 4.1, timestamp="2026-03-02T08:00:00Z")

    resp = await client.get("/api/v1/measurements/last", headers=auth_headers())
    assert resp.status_code == 200
    assert resp.json()["data"]["location"] == {"latitude": 45.1, "longitude": 4.1}


@pytest.mark.asyncio
async def test_history_pagination(client):
    for day in range(1, 6):
        await _save(client, 45.0 + day / 100, 4.0, timestamp=f"2026-03-0{day}T08:00:00Z")

    resp = await client.get("/api/v1/measurements?limit=2&offset=0", headers=auth_headers())
    assert resp.status_code == 200
    body = resp.json()
    assert body["pagination"] == {"total": 5, "limit": 2, "offset": 0, "pages": 3}
    assert [r["timestamp"][:10] for r in body["data"]] == ["2026-03-05", "2026-03-04"]

    resp = await client.get("/api/v1/measurements?limit=2&offset=4", headers=auth_headers())
    assert len(resp.json()["data"]) == 1


@pytest.mark.asyncio
async def test_offline_fallback(client):
    resp = await client.get("/api/v1/offline-fallback", headers=auth_headers())
    assert resp.status_code == 200
    assert resp.json()["data"] == {"hasData": False, "message": "No offline zones available"}

    await _save(client, 45.7680, 4.8407)

    resp = await client.get(
        "/api/v1/offline-fallback",
        params={"latitude": 45.7640, "longitude": 4.8350},
        headers=auth_headers(),
    )
    data = resp.json()["data"]
    assert data["hasData"] is True
    assert "(NE)" in data["message"]
    assert data["message"].endswith(f"Expected quality: {score_cellular(-10, 10, 8)}/100.")

    # Without a position, search around the last stored spot.
    resp = await client.get("/api/v1/offline-fallback", headers=auth_headers())
    assert resp.json()["data"]["hasData"] is True


# -- saved spots ----------------------------------------------------------


async def _save_spot(client, name, lat=45.7640, lon=4.8350, token="token-alice", **extra):
    return await client.post(
        "/api/v1/saved-spots",
        json={"latitude": lat, "longitude": lon, "locationName": name, **extra},
        headers=auth_headers(token),
    )


@pytest.mark.asyncio
async def test_save_spot_without_nearby_measurements(client):
    resp = await _save_spot(client, "  Office  ", notes="by the window")
    assert resp.status_code == 201
    body = resp.json()
    assert body["success"] is True
    assert body["message"] == "Spot saved successfully"
    spot = body["data"]
    assert spot["locationName"] == "Office"
    assert spot["notes"] == "by the window"
    assert spot["location"] == {"latitude": 45.764, "longitude": 4.835}
    assert spot["qualityScore"] is None
    assert spot["id"]


@pytest.mark.asyncio
async def test_save_spot_takes_quality_from_nearby_measurement(client):
    await _save(client, 45.7640, 4.8350)
    await _save(client, 45.7800, 4.8350, cqi=15)   # ~1.8 km away, ignored

    resp = await _save_spot(client, "Cafe", lat=45.7641, lon=4.8350)
    assert resp.json()["data"]["qualityScore"] == score_cellular(-10, 10, 8)


@pytest.mark.asyncio
async def test_list_spots_newest_first_and_per_user(client):
    await _save_spot(client, "Home")
    await asyncio.sleep(0.01)
    await _save_spot(client, "Work")
    await _save_spot(client, "Bob's place", token="token-bob")

    resp = await client.get("/api/v1/saved-spots", headers=auth_headers())
    assert resp.status_code == 200
    assert [s["locationName"] for s in resp.json()["data"]] == ["Work", "Home"]

    resp = await client.get("/api/v1/saved-spots", headers=auth_headers("token-bob"))
    assert [s["locationName"] for s in resp.json()["data"]] == ["Bob's place"]


@pytest.mark.asyncio
async def test_delete_spot(client):
    spot_id = (await _save_spot(client, "Home")).json()["data"]["id"]

    # Another user cannot delete it.
    resp = await client.delete(f"/api/v1/saved-spots/{spot_id}", headers=auth_headers("token-bob"))
    assert resp.status_code == 404

    resp = await client.delete(f"/api/v1/saved-spots/{spot_id}", headers=auth_headers())
    assert resp.status_code == 200
    assert resp.json() == {"success": True, "message": "Spot deleted successfully"}

    resp = await client.delete(f"/api/v1/saved-spots/{spot_id}", headers=auth_headers())
    assert resp.status_code == 404
    assert resp.json()["message"] == "Spot not found"

    resp = await client.get("/api/v1/saved-spots", headers=auth_headers())
    assert resp.json()["data"] == []


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [
    {"latitude": 95, "longitude": 4.0, "locationName": "Nowhere"},
    {"latitude": 45.0, "longitude": 4.0},
    {"latitude": 45.0, "longitude": 4.0, "locationName": "   "},
    {"latitude": 45.0, "longitude": 4.0, "locationName": 12},
    {"latitude": 45.0, "longitude": 4.0, "locationName": "x" * 101},
    {"latitude": 45.0, "longitude": 4.0, "locationName": "Home", "notes": "n" * 501},
])
async def test_save_spot_bad_input(client, body):
    resp = await client.post("/api/v1/saved-spots", json=body, headers=auth_headers())
    assert resp.status_code == 400
    assert resp.json()["success"] is False

    resp = await client.get("/api/v1/saved-spots", headers=auth_headers())
    assert resp.json()["data"] == []


@pytest.mark.asyncio
async def test_saved_spots_require_token(client):
    resp = await client.get("/api/v1/saved-spots")
    assert resp.status_code == 401


# -- WebSocket sessions ---------------------------------------------------


def _ws_sample(**overrides) -> dict:
    return {"type": "measurement", **_sample(**overrides)}


def test_ws_connection_and_auth(ws_client):
    with ws_client.websocket_connect("/ws/measure") as ws:
        hello = ws.receive_json()
        assert hello["type"] == "connection"

        ws.send_json(_ws_sample())
        refused = ws.receive_json()
        assert refused["type"] == "error"
        assert "authenticate" in refused["message"]

        ws.send_json({"type": "authenticate", "token": "token-alice"})
        ok = ws.receive_json()
        assert ok == {
            "type": "authenticated",
            "message": "Authentication successful",
            "userId": "alice",
            "sessionId": hello["sessionId"],
        }
        assert len(get_registry()) == 1

        ws.send_json({"type": "ping"})
        assert ws.receive_json()["type"] == "pong"

    assert len(get_registry()) == 0


def test_ws_invalid_token_closes_4001(ws_client):
    with ws_client.websocket_connect("/ws/measure") as ws:
        ws.receive_json()
        ws.send_json({"type": "authenticate", "token": "forged"})
        assert ws.receive_json() == {"type": "error", "message": "Invalid token"}

        with pytest.raises(WebSocketDisconnect) as exc_info:
            ws.receive_json()
        assert exc_info.value.code == 4001


def test_ws_measure_and_stop(ws_client):
    with ws_client.websocket_connect("/ws/measure") as ws:
        ws.receive_json()
        ws.send_json({"type": "authenticate", "token": "token-alice"})
        ws.receive_json()

        for i, cqi in enumerate((6, 9, 12)):
            ws.send_json(_ws_sample(lat=45.7640 + i / 1000, cqi=cqi))
            response = ws.receive_json()
            assert response["type"] == "measurement_response"
            assert response["data"]["qualityScore"] == score_cellular(-10, 10, cqi)

        ws.send_text("garbage")
        assert ws.receive_json()["type"] == "error"

        ws.send_json({"type": "stop"})
        summary = ws.receive_json()
        assert summary["type"] == "session_summary"
        assert summary["data"]["measurementCount"] == 3
        assert summary["data"]["statistics"]["averageCqi"] == pytest.approx(9)

        ws.send_json({"type": "stop"})
        assert ws.receive_json() == {"type": "error", "message": "No measurements recorded"}

    records, total = asyncio.run(get_store().history("alice", 10, 0))
    assert total == 3
    assert sorted(r.radio.cqi for r in records) == [6, 9, 12]


def test_ws_disconnect_discards_pending(ws_client):
    with ws_client.websocket_connect("/ws/measure") as ws:
        ws.receive_json()
        ws.send_json({"type": "authenticate", "token": "token-alice"})
        ws.receive_json()
        ws.send_json(_ws_sample())
        ws.receive_json()

    _, total = asyncio.run(get_store().history("alice", 10, 0))
    assert total == 0
    snap = get_stats().snapshot()
    assert snap["sessions_opened"] == 1
    assert snap["sessions_closed"] == 1
    assert snap["active_users"]["stream"] == 1
