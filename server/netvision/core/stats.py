"""Server statistics and active-user tracking.

Tracks in-memory counters and a sliding window of active users.
No framework dependencies.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass


@dataclass
class UserActivity:
    """Tracks a single user's recent activity."""
    last_seen: float          # time.monotonic() timestamp
    mode: str                 # "stream" or "single"
    measurements_sent: int = 0


class ServerStats:
    """Thread-safe server statistics with active-user tracking.

    A user is "stream" active while measuring over a WebSocket session and
    "single" active when using the HTTP record path. Users drop out once
    their last activity is older than ``active_window_seconds``.
    """

    def __init__(self, active_window_seconds: float = 120.0) -> None:
        self._lock = threading.Lock()
        self._started_at = time.time()
        self._active_window = active_window_seconds

        # Counters
        self.sessions_opened: int = 0
        self.sessions_closed: int = 0
        self.auth_failures: int = 0
        self.measurements_scored: int = 0
        self.measurements_rejected: int = 0
        self.measurements_stored: int = 0
        self.batches_stored: int = 0
        self.storage_errors: int = 0

        # User tracking: user_id → UserActivity
        self._users: dict[str, UserActivity] = {}

    def record_session_opened(self) -> None:
        with self._lock:
            self.sessions_opened += 1

    def record_session_closed(self) -> None:
        with self._lock:
            self.sessions_closed += 1

    def record_auth_failure(self) -> None:
        with self._lock:
            self.auth_failures += 1

    def record_measurement(self, user_id: str, *, streaming: bool) -> None:
        """Record that a measurement was scored for a user."""
        now = time.monotonic()
        mode = "stream" if streaming else "single"
        with self._lock:
            self.measurements_scored += 1
            if user_id in self._users:
                user = self._users[user_id]
                user.last_seen = now
                user.mode = mode
                user.measurements_sent += 1
            else:
                self._users[user_id] = UserActivity(last_seen=now, mode=mode, measurements_sent=1)

    def record_rejected(self, count: int = 1) -> None:
        with self._lock:
            self.measurements_rejected += count

    def record_stored(self, count: int, *, batch: bool = False) -> None:
        with self._lock:
            self.measurements_stored += count
            if batch:
                self.batches_stored += 1

    def record_storage_error(self) -> None:
        with self._lock:
            self.storage_errors += 1

    def _prune_stale_users(self, now: float) -> None:
        """Remove users not seen within the active window. Caller holds lock."""
        cutoff = now - self._active_window
        stale = [uid for uid, user in self._users.items() if user.last_seen < cutoff]
        for uid in stale:
            del self._users[uid]

    def snapshot(self) -> dict:
        """Return a JSON-serializable snapshot of all stats."""
        now_mono = time.monotonic()
        with self._lock:
            self._prune_stale_users(now_mono)

            active_stream = sum(1 for u in self._users.values() if u.mode == "stream")
            active_single = sum(1 for u in self._users.values() if u.mode == "single")

            return {
                "uptime_seconds": round(time.time() - self._started_at, 1),
                "sessions_opened": self.sessions_opened,
                "sessions_closed": self.sessions_closed,
                "auth_failures": self.auth_failures,
                "measurements_scored": self.measurements_scored,
                "measurements_rejected": self.measurements_rejected,
                "measurements_stored": self.measurements_stored,
                "batches_stored": self.batches_stored,
                "storage_errors": self.storage_errors,
                "active_users": {
                    "total": len(self._users),
                    "stream": active_stream,
                    "single": active_single,
                    "window_seconds": self._active_window,
                },
            }
