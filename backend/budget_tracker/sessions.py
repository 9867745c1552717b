import secrets
import threading
from datetime import datetime, timedelta, timezone


class SessionStore:
    """Opaque bearer tokens mapped to user ids, with an optional idle timeout."""

    def __init__(self, timeout_minutes: int | None = None) -> None:
        self.timeout_minutes = timeout_minutes
        self._sessions: dict[str, dict] = {}
        self._lock = threading.Lock()

    def create(self, user_id: str) -> str:
        token = secrets.token_urlsafe(32)
        with self._lock:
            self._sessions[token] = {"user_id": user_id, "last_seen": datetime.now(timezone.utc)}
        return token

    def resolve(self, token: str | None) -> str | None:
        if not token:
            return None
        now = datetime.now(timezone.utc)
        with self._lock:
            session = self._sessions.get(token)
            if session is None:
                return None
            if self.timeout_minutes and (now - session["last_seen"]) > timedelta(minutes=self.timeout_minutes):
                del self._sessions[token]
                return None
            session["last_seen"] = now
            return session["user_id"]

    def revoke(self, token: str | None) -> None:
        if not token:
            return
        with self._lock:
            self._sessions.pop(token, None)
