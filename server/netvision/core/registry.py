"""Process-wide registry of live, authenticated measurement sessions."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from netvision.core.session import MeasurementSession

log = structlog.get_logger()


class ConnectionRegistry:
    """Live sessions keyed by session id.

    Sessions are registered once authenticated and deregistered on close.
    Only touched from the event loop, so no locking.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, MeasurementSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session: object) -> bool:
        return getattr(session, "session_id", None) in self._sessions

    def register(self, session: MeasurementSession) -> None:
        self._sessions[session.session_id] = session
        log.debug("session_registered", session=session.session_id, user=session.user_id,
                  live=len(self._sessions))

    def deregister(self, session: MeasurementSession) -> None:
        if self._sessions.pop(session.session_id, None) is not None:
            log.debug("session_deregistered", session=session.session_id, live=len(self._sessions))

    async def broadcast(self, message: dict) -> int:
        """Send a message to every live session. Returns how many got it."""
        delivered = 0
        for session in list(self._sessions.values()):
            try:
                await session.send(message)
                delivered += 1
            except Exception:
                log.warning("broadcast_send_failed", session=session.session_id, exc_info=True)
        return delivered
