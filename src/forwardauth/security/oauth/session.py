"""Session storage for forward-auth logins.

Sessions are persisted in SQLite keyed by the hash of the session token.
Expired rows are removed when they are read; there is no background sweep.
"""

from __future__ import annotations

import sqlite3
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

import structlog

from forwardauth.security.tokens import (
    RENEWAL_WINDOW,
    SESSION_DURATION,
    encode_session_token,
)

logger = structlog.get_logger()


@dataclass
class Session:
    """A stored forward-auth session.

    The id is the SHA-256 of the raw token handed to the browser.
    """

    id: str
    expires_at: datetime
    upstream_cookies: str

    @property
    def expires_at_epoch(self) -> int:
        return int(self.expires_at.timestamp())

    def remaining_seconds(self, now: float | None = None) -> float:
        """Get remaining session lifetime in seconds."""
        now = time.time() if now is None else now
        return max(0.0, self.expires_at.timestamp() - now)


def _to_datetime(epoch: int) -> datetime:
    return datetime.fromtimestamp(epoch, tz=UTC)


class SessionStore:
    """SQLite-backed session store with lazy expiry and rolling renewal.

    A single connection is shared by all callers and every statement runs
    under a lock, so ``:memory:`` databases behave the same from any thread.
    """

    def __init__(
        self,
        db_path: str | Path | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the session store.

        Args:
            db_path: Path to the SQLite database file. ``None`` or ``":memory:"``
                keeps sessions in memory for the life of the process.
            clock: Returns the current time as epoch seconds.
        """
        self.db_path = str(db_path) if db_path else ":memory:"
        self._clock = clock
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self.initialize()

    @contextmanager
    def cursor(self) -> Iterator[sqlite3.Cursor]:
        """Get a cursor with automatic commit/rollback."""
        with self._lock:
            cur = self._conn.cursor()
            try:
                yield cur
                self._conn.commit()
            except Exception:
                self._conn.rollback()
                raise
            finally:
                cur.close()

    def initialize(self) -> None:
        """Create the session table if it does not exist."""
        with self.cursor() as cur:
            cur.execute("""
                CREATE TABLE IF NOT EXISTS session (
                    id TEXT PRIMARY KEY,
                    expires_at INTEGER NOT NULL,
                    upstream_cookies TEXT NOT NULL
                )
            """)

    def _now(self) -> int:
        return int(self._clock())

    def create_session(
        self,
        token: str,
        upstream_cookies: str,
        max_age: int = SESSION_DURATION,
    ) -> Session:
        """Persist a new session for a raw token.

        Args:
            token: Raw session token that will be sent to the browser.
            upstream_cookies: Serialized upstream cookie payload.
            max_age: Lifetime in seconds. Defaults to the 30 day cap.

        Returns:
            The created Session.
        """
        session = Session(
            id=encode_session_token(token),
            expires_at=_to_datetime(self._now() + max_age),
            upstream_cookies=upstream_cookies,
        )
        with self.cursor() as cur:
            cur.execute(
                "INSERT INTO session (id, expires_at, upstream_cookies) VALUES (?, ?, ?)",
                (session.id, session.expires_at_epoch, session.upstream_cookies),
            )
        return session

    def validate_session_token(self, token: str) -> Session | None:
        """Look up the session for a raw token.

        Expired sessions are deleted and reported as missing. Sessions with
        15 days or less left are extended to a full 30 days. This includes
        sessions created with a short ``max_age`` from their upstream cookies:
        the row then outlives those cookies, and the browser cookie's
        max-age together with upstream validation bounds the session.

        Args:
            token: Raw session token from the cookie.

        Returns:
            The Session if it exists and has not expired, None otherwise.
        """
        session_id = encode_session_token(token)
        session = self.get_session(session_id)
        if session is None:
            return None

        now = self._now()
        expires_at = session.expires_at_epoch
        if now >= expires_at:
            self.invalidate_session(session_id)
            logger.debug("Expired session removed", session_id=session_id[:8])
            return None

        if expires_at - now <= RENEWAL_WINDOW:
            renewed = now + SESSION_DURATION
            with self.cursor() as cur:
                cur.execute(
                    "UPDATE session SET expires_at = ? WHERE id = ?",
                    (renewed, session_id),
                )
            session.expires_at = _to_datetime(renewed)
            logger.debug("Session renewed", session_id=session_id[:8])

        return session

    def get_session(self, session_id: str) -> Session | None:
        """Fetch a session row by id without expiry handling."""
        with self.cursor() as cur:
            cur.execute(
                "SELECT id, expires_at, upstream_cookies FROM session WHERE id = ?",
                (session_id,),
            )
            row = cur.fetchone()
        if row is None:
            return None
        return Session(
            id=row["id"],
            expires_at=_to_datetime(row["expires_at"]),
            upstream_cookies=row["upstream_cookies"],
        )

    def invalidate_session(self, session_id: str) -> None:
        """Delete a session. Missing sessions are ignored."""
        with self.cursor() as cur:
            cur.execute("DELETE FROM session WHERE id = ?", (session_id,))

    def close(self) -> None:
        with self._lock:
            self._conn.close()
