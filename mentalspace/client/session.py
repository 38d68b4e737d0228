"""Bearer token and inactivity tracking for a signed-in clinician."""

from __future__ import annotations

from datetime import timedelta
from typing import Optional

import structlog

from mentalspace.storage import KeyValueStorage
from mentalspace.time_utils import Clock, isoformat, parse_iso, utc_now

logger = structlog.get_logger(__name__)

TOKEN_KEY = "token"
LAST_ACTIVITY_KEY = "lastActivityTimestamp"
DEFAULT_SESSION_TIMEOUT = timedelta(minutes=30)


class SessionContext:
    """Holds the session state that would otherwise live in ambient globals.

    Storage and clock are injected so tests can control both.
    """

    def __init__(
        self,
        storage: KeyValueStorage,
        clock: Clock = utc_now,
        timeout: timedelta = DEFAULT_SESSION_TIMEOUT,
    ) -> None:
        self.storage = storage
        self.clock = clock
        self.timeout = timeout

    @property
    def token(self) -> Optional[str]:
        return self.storage.get_item(TOKEN_KEY)

    def set_token(self, token: str) -> None:
        self.storage.set_item(TOKEN_KEY, token)

    def clear_token(self) -> None:
        self.storage.remove_item(TOKEN_KEY)

    @property
    def is_authenticated(self) -> bool:
        return bool(self.token)

    def record_activity(self) -> str:
        stamp = isoformat(self.clock()) or ""
        self.storage.set_item(LAST_ACTIVITY_KEY, stamp)
        return stamp

    def idle_for(self) -> Optional[timedelta]:
        last = parse_iso(self.storage.get_item(LAST_ACTIVITY_KEY))
        if last is None:
            return None
        return self.clock() - last

    def check_activity(self) -> bool:
        """Return ``True`` and refresh the timestamp if the session is live.

        A missing or unparsable timestamp counts as expired.
        """

        idle = self.idle_for()
        if idle is None or idle > self.timeout:
            logger.info("session_inactive", idle_seconds=idle.total_seconds() if idle else None)
            return False
        self.record_activity()
        return True


__all__ = ["DEFAULT_SESSION_TIMEOUT", "LAST_ACTIVITY_KEY", "SessionContext", "TOKEN_KEY"]
