"""Measurement session: per-connection state machine.

One MeasurementSession lives for exactly one WebSocket connection:

    AWAITING_AUTH --authenticate--> AUTHENTICATED --(close)--> CLOSED
          |                             |  measurement / stop / ping
          +--rejected token--> CLOSED   +-- loops in place

Incoming messages are dispatched through ``_TRANSITIONS``, keyed on
(state, message type). The session never touches the socket directly:
``handle`` returns a Reply with the messages to send and, when the
connection must end, a close code. Only the heartbeat task pushes messages
on its own, through the ``send`` callable given at construction.

Samples are accumulated in memory and persisted only on ``stop``. Closing
the connection discards whatever was not stopped.
"""

from __future__ import annotations

import asyncio
import json
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Awaitable, Callable

import structlog

from netvision.auth.base import verify_token
from netvision.core import scoring
from netvision.core.errors import (
    AuthenticationError,
    AuthUnavailableError,
    InvalidInputError,
    ProtocolError,
    StoreUnavailableError,
)
from netvision.core.intake import evaluate_sample

if TYPE_CHECKING:
    from netvision.auth.base import TokenVerifier
    from netvision.core.best_zone import BestZoneResolver
    from netvision.core.models import Measurement
    from netvision.core.registry import ConnectionRegistry
    from netvision.core.stats import ServerStats
    from netvision.storage.base import MeasurementStore

log = structlog.get_logger()

# WebSocket close code sent when the token is rejected.
AUTH_FAILED_CLOSE_CODE = 4001

HEARTBEAT_INTERVAL_SECONDS = 30.0


class SessionState(str, Enum):
    AWAITING_AUTH = "awaiting_auth"
    AUTHENTICATED = "authenticated"
    CLOSED = "closed"


@dataclass
class Reply:
    """What the transport must do after a message was handled."""
    messages: list[dict] = field(default_factory=list)
    close_code: int | None = None
    close_reason: str = ""


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def error_message(message: str, **extra) -> dict:
    return {"type": "error", "message": message, **extra}


def _mean(values: list[float]) -> float | None:
    return sum(values) / len(values) if values else None


def summarize_measurements(measurements: list[Measurement]) -> dict:
    """Aggregate statistics over a flushed batch.

    Radio averages only cover samples that carry radio metrics (Wi-Fi
    samples have none) and are None when no sample does.
    """
    scores = [m.quality_score for m in measurements]
    radio = [m.radio for m in measurements if m.radio is not None]
    trend = scoring.score_trend(scores)
    return {
        "averageQuality": _mean(scores),
        "minQuality": trend.get("min"),
        "maxQuality": trend.get("max"),
        "trend": trend["trend"],
        "averageRsrq": _mean([r.rsrq for r in radio]),
        "averageSinr": _mean([r.sinr for r in radio]),
        "averageCqi": _mean([r.cqi for r in radio]),
        "averageDownloadSpeed": _mean([m.speed.download_mbps for m in measurements]),
        "averageUploadSpeed": _mean([m.speed.upload_mbps for m in measurements]),
        "averageLatency": _mean([m.speed.latency_ms for m in measurements]),
    }


class MeasurementSession:
    """State machine for one measurement connection."""

    def __init__(
        self,
        *,
        store: MeasurementStore,
        verifier: TokenVerifier,
        resolver: BestZoneResolver,
        registry: ConnectionRegistry,
        stats: ServerStats,
        send: Callable[[dict], Awaitable[None]] | None = None,
        heartbeat_interval: float = HEARTBEAT_INTERVAL_SECONDS,
        auth_timeout: float | None = 5.0,
        persist_timeout: float | None = 10.0,
        max_message_bytes: int = 1_048_576,
    ) -> None:
        self.session_id = uuid.uuid4().hex
        self.state = SessionState.AWAITING_AUTH
        self.user_id: str | None = None
        self.started_at = datetime.now(timezone.utc)

        self._store = store
        self._verifier = verifier
        self._resolver = resolver
        self._registry = registry
        self._stats = stats
        self._send = send
        self._heartbeat_interval = heartbeat_interval
        self._auth_timeout = auth_timeout
        self._persist_timeout = persist_timeout
        self._max_message_bytes = max_message_bytes

        self._started_mono = time.monotonic()
        self._measurements: list[Measurement] = []
        self._heartbeat_task: asyncio.Task | None = None
        # Batch write still running after ``stop`` gave up waiting, with the
        # number of leading samples it covers.
        self._flush: tuple[asyncio.Task, int] | None = None
        self._closed = False
        self._log = log.bind(session=self.session_id)

    @property
    def measurements(self) -> tuple[Measurement, ...]:
        """Samples accumulated since the last successful stop."""
        return tuple(self._measurements)

    # -- lifecycle --------------------------------------------------------

    def open(self) -> dict:
        """Connection acknowledgement, the first message the client gets."""
        self._stats.record_session_opened()
        self._log.info("session_opened")
        return {
            "type": "connection",
            "message": "Connected to NetVision measurement server",
            "sessionId": self.session_id,
            "timestamp": _now_iso(),
        }

    async def send(self, message: dict) -> None:
        if self._send is None:
            raise RuntimeError("session has no transport")
        await self._send(message)

    def start_heartbeat(self) -> None:
        if self._heartbeat_task is None and not self._closed:
            self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self._heartbeat_interval)
            try:
                await self.send({"type": "heartbeat", "timestamp": _now_iso()})
            except Exception:
                self._log.debug("heartbeat_send_failed", exc_info=True)
                return

    def close(self) -> None:
        """Release everything the session holds. Safe to call twice."""
        if self._closed:
            return
        self._closed = True
        self.state = SessionState.CLOSED

        if self._heartbeat_task is not None:
            self._heartbeat_task.cancel()
            self._heartbeat_task = None
        self._registry.deregister(self)

        pending = len(self._measurements)
        if self._flush is not None and not self._flush[0].done():
            # That write still lands; only the samples after it are lost.
            self._log.warning("flush_in_flight_at_close", count=self._flush[1])
            pending -= self._flush[1]
        if pending:
            self._log.warning("unsaved_measurements_discarded", count=pending)
        self._flush = None
        self._measurements.clear()
        self._stats.record_session_closed()
        self._log.info("session_closed", user=self.user_id)

    # -- dispatch ---------------------------------------------------------

    def _decode(self, raw: str | bytes | dict) -> dict:
        if isinstance(raw, dict):
            return raw
        size = len(raw.encode()) if isinstance(raw, str) else len(raw)
        if size > self._max_message_bytes:
            raise ProtocolError("Message too large")
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError):
            raise ProtocolError("Invalid JSON") from None
        if not isinstance(data, dict):
            raise ProtocolError("Message must be a JSON object")
        return data

    async def handle(self, raw: str | bytes | dict) -> Reply:
        """Process one incoming message. Never raises."""
        if self.state is SessionState.CLOSED:
            return Reply()

        try:
            data = self._decode(raw)
        except ProtocolError as exc:
            self._log.info("malformed_message", reason=str(exc))
            return Reply([error_message(f"Failed to process message: {exc}")])

        msg_type = data.get("type")
        handler_name = None
        if isinstance(msg_type, str):
            handler_name = _TRANSITIONS.get((self.state, msg_type))
        if handler_name is None:
            return self._unhandled(msg_type)

        try:
            return await getattr(self, handler_name)(data)
        except Exception:
            self._log.error("message_handler_failed", type=msg_type, exc_info=True)
            return Reply([error_message("Failed to process message: internal error")])

    def _unhandled(self, msg_type: object) -> Reply:
        if self.state is SessionState.AWAITING_AUTH:
            return Reply([error_message(
                'Please authenticate first by sending {"type": "authenticate", "token": "<token>"}'
            )])
        return Reply([error_message(f"Unknown message type: {msg_type}")])

    # -- handlers ---------------------------------------------------------

    async def _on_authenticate(self, data: dict) -> Reply:
        token = data.get("token")
        try:
            user_id = await verify_token(self._verifier, token, self._auth_timeout)
        except AuthenticationError as exc:
            self._stats.record_auth_failure()
            self._log.info("authentication_failed", reason=exc.reason)
            self.state = SessionState.CLOSED
            return Reply(
                [error_message(exc.reason)],
                close_code=AUTH_FAILED_CLOSE_CODE,
                close_reason="Authentication failed",
            )
        except AuthUnavailableError:
            return Reply([error_message("Authentication service unavailable, please retry")])

        self.user_id = user_id
        self.state = SessionState.AUTHENTICATED
        self._log = self._log.bind(user=user_id)
        self._registry.register(self)
        self._log.info("session_authenticated")
        return Reply([{
            "type": "authenticated",
            "message": "Authentication successful",
            "userId": user_id,
            "sessionId": self.session_id,
        }])

    async def _on_reauthenticate(self, data: dict) -> Reply:
        return Reply([error_message("Session is already authenticated")])

    async def _on_measurement(self, data: dict) -> Reply:
        try:
            measurement, human_message = evaluate_sample(self.user_id, data)
        except InvalidInputError as exc:
            self._stats.record_rejected()
            self._log.info("measurement_rejected", reason=str(exc))
            return Reply([error_message(str(exc))])

        self._measurements.append(measurement)
        self._stats.record_measurement(self.user_id, streaming=True)
        self._log.debug("measurement_scored", score=measurement.quality_score,
                        pending=len(self._measurements))

        try:
            zone = await self._resolver.find_best_zone(self.user_id, measurement.coordinate)
        except StoreUnavailableError as exc:
            return Reply([error_message(
                f"Measurement recorded but best zone lookup failed: {exc}", recorded=True,
            )])

        return Reply([{
            "type": "measurement_response",
            "data": {
                "qualityScore": measurement.quality_score,
                "qualityTier": scoring.classify(measurement.quality_score).value,
                "humanMessage": human_message,
                "networkType": measurement.network_type.value,
                "bestZone": zone.to_dict(),
                "metrics": measurement.metrics_dict(),
                "timestamp": _now_iso(),
            },
        }])

    async def _on_stop(self, data: dict) -> Reply:
        # A write still running from an earlier stop is awaited, not repeated.
        if self._flush is None:
            if not self._measurements:
                return Reply([error_message("No measurements recorded")])
            task = asyncio.ensure_future(
                self._store.append_batch(self.user_id, list(self._measurements)),
            )
            self._flush = (task, len(self._measurements))
        task, count = self._flush
        batch = self._measurements[:count]

        try:
            saved = await asyncio.wait_for(asyncio.shield(task), timeout=self._persist_timeout)
        except asyncio.TimeoutError:
            self._log.error("session_flush_timeout", count=count, timeout=self._persist_timeout)
            return Reply([error_message(
                "Failed to save measurements: record store timed out, send stop again to check"
            )])
        except Exception as exc:
            self._flush = None
            self._stats.record_storage_error()
            self._log.error("session_flush_failed", count=count, exc_info=True)
            return Reply([error_message(f"Failed to save measurements: {exc}")])

        self._flush = None
        # Only what was flushed; the rest stays pending.
        del self._measurements[:count]
        self._stats.record_stored(len(batch), batch=True)

        duration = time.monotonic() - self._started_mono
        self._log.info("session_flushed", count=len(batch), duration_s=round(duration, 1))
        return Reply([{
            "type": "session_summary",
            "sessionId": self.session_id,
            "data": {
                "measurementCount": len(batch),
                "sessionDuration": f"{int(round(duration))}s",
                "durationSeconds": duration,
                "statistics": summarize_measurements(batch),
                "savedCount": saved,
                "timestamp": _now_iso(),
            },
        }])

    async def _on_ping(self, data: dict) -> Reply:
        return Reply([{"type": "pong", "timestamp": _now_iso()}])


_TRANSITIONS: dict[tuple[SessionState, str], str] = {
    (SessionState.AWAITING_AUTH, "authenticate"): "_on_authenticate",
    (SessionState.AUTHENTICATED, "authenticate"): "_on_reauthenticate",
    (SessionState.AUTHENTICATED, "measurement"): "_on_measurement",
    (SessionState.AUTHENTICATED, "stop"): "_on_stop",
    (SessionState.AUTHENTICATED, "ping"): "_on_ping",
}
