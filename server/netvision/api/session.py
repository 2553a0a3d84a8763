"""WebSocket endpoint for continuous measurement sessions.

Thin adapter: frames in, MeasurementSession.handle, frames out. All
protocol decisions live in netvision.core.session.
"""

from __future__ import annotations

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from netvision.core.session import MeasurementSession

router = APIRouter()


@router.websocket("/ws/measure")
async def measure(websocket: WebSocket) -> None:
    from netvision.main import get_config, get_registry, get_resolver, get_stats, get_store, get_verifier

    config = get_config()
    await websocket.accept()

    session = MeasurementSession(
        store=get_store(),
        verifier=get_verifier(),
        resolver=get_resolver(),
        registry=get_registry(),
        stats=get_stats(),
        send=websocket.send_json,
        heartbeat_interval=config.session.heartbeat_interval_seconds,
        auth_timeout=config.auth.timeout_seconds,
        persist_timeout=config.session.persist_timeout_seconds,
        max_message_bytes=config.session.max_message_bytes,
    )

    try:
        await websocket.send_json(session.open())
        session.start_heartbeat()

        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                break
            raw = frame.get("text")
            if raw is None:
                raw = frame.get("bytes") or b""

            reply = await session.handle(raw)
            for message in reply.messages:
                await websocket.send_json(message)
            if reply.close_code is not None:
                await websocket.close(code=reply.close_code, reason=reply.close_reason)
                break
    except WebSocketDisconnect:
        pass
    finally:
        session.close()
