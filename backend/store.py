"""
In-memory pairing session store.

Sessions live in a plain dict keyed by pairing code, with two reverse
indices so producer and consumer lookups never scan the table:
  - producer connection -> its codes, oldest first (a producer may create
    more than once; the newest session is the one it is editing)
  - consumer connection -> code
One lock guards all three; every public method takes it once, so each
operation is atomic with respect to the others.

Callers get copies of the stored rows. Mutations only happen through the
methods below.
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from threading import Lock
from typing import Optional

from models.session import Session
from relay.codes import CodeGenerator, normalize
from relay.errors import SessionNotFound, SessionOccupied

logger = logging.getLogger(__name__)


class Role(str, Enum):
    PRODUCER = "producer"
    CONSUMER = "consumer"


@dataclass(frozen=True)
class DisconnectOutcome:
    """What a disconnect did, so the caller can notify the remaining peers."""

    role: Role
    sessions: tuple[Session, ...]   # snapshots taken before the transition

    @property
    def session(self) -> Session:
        """The most recent affected session."""
        return self.sessions[-1]


class SessionStore:
    def __init__(self, codes: Optional[CodeGenerator] = None):
        self._codes = codes or CodeGenerator()
        self._sessions: dict[str, Session] = {}
        self._by_producer: dict[str, list[str]] = {}
        self._by_consumer: dict[str, str] = {}
        self._lock = Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def codes(self) -> set[str]:
        with self._lock:
            return set(self._sessions)

    # ---------- Lifecycle ----------

    def create_session(self, producer_connection: str) -> Session:
        """
        Allocate a fresh code and register `producer_connection` as its producer.
        Sessions the connection created earlier are left untouched.
        """
        with self._lock:
            code = self._codes.generate(self._sessions)
            session = Session(code=code, producer_connection=producer_connection)
            self._sessions[code] = session
            self._by_producer.setdefault(producer_connection, []).append(code)
            logger.info("Created session %s for producer %s", code, producer_connection)
            return session.model_copy()

    def join_session(self, code: str, consumer_connection: str) -> Session:
        """
        Bind `consumer_connection` to the session with `code` (case-insensitive).

        Raises SessionNotFound when no live session has that code and
        SessionOccupied when a consumer is already bound; in both cases
        nothing is changed. The returned copy carries `last_payload` so the
        caller can push a catch-up update.
        """
        key = normalize(code)
        with self._lock:
            session = self._sessions.get(key)
            if session is None:
                raise SessionNotFound()
            if session.consumer_connection is not None:
                raise SessionOccupied()

            session.consumer_connection = consumer_connection
            session.last_activity = time.monotonic()
            self._by_consumer[consumer_connection] = key
            logger.info("Consumer %s joined session %s", consumer_connection, key)
            return session.model_copy()

    def remove_session(self, code: str) -> bool:
        key = normalize(code)
        with self._lock:
            return self._remove(key) is not None

    def _remove(self, key: str) -> Optional[Session]:
        # Caller holds the lock.
        session = self._sessions.pop(key, None)
        if session is None:
            return None
        owned = self._by_producer.get(session.producer_connection)
        if owned is not None and key in owned:
            owned.remove(key)
            if not owned:
                del self._by_producer[session.producer_connection]
        if session.consumer_connection is not None:
            self._by_consumer.pop(session.consumer_connection, None)
        logger.info("Removed session %s", key)
        return session

    def handle_disconnect(self, connection: str) -> Optional[DisconnectOutcome]:
        """
        Apply the lifecycle transition for a departing connection.

        Producer: every session it owns is removed along with its code.
        Consumer: the binding is cleared, the session (and its payload) stays
        open for the next consumer.
        Returns None when the connection was not bound to any session.
        """
        with self._lock:
            codes = self._by_producer.get(connection)
            if codes:
                ended = tuple(self._remove(code).model_copy() for code in list(codes))
                logger.info(
                    "Producer %s disconnected, ended %s",
                    connection, ", ".join(s.code for s in ended),
                )
                return DisconnectOutcome(role=Role.PRODUCER, sessions=ended)

            code = self._by_consumer.pop(connection, None)
            if code is not None:
                session = self._sessions[code]
                snapshot = session.model_copy()
                session.consumer_connection = None
                logger.info("Consumer %s left session %s", connection, code)
                return DisconnectOutcome(role=Role.CONSUMER, sessions=(snapshot,))

        return None

    def touch(self, connection: str) -> None:
        """Mark every session `connection` takes part in as active now."""
        now = time.monotonic()
        with self._lock:
            codes = list(self._by_producer.get(connection, ()))
            if connection in self._by_consumer:
                codes.append(self._by_consumer[connection])
            for code in codes:
                self._sessions[code].last_activity = now

    def expire_idle(self, max_idle_seconds: float, now: Optional[float] = None) -> list[Session]:
        """Remove and return every session idle for longer than `max_idle_seconds`."""
        now = time.monotonic() if now is None else now
        with self._lock:
            stale = [
                code for code, session in self._sessions.items()
                if now - session.last_activity > max_idle_seconds
            ]
            expired = [self._remove(code) for code in stale]
        for session in expired:
            logger.info("Session %s expired after %.0fs idle", session.code, now - session.last_activity)
        return expired

    # ---------- Lookups ----------

    def get_session(self, code: str) -> Optional[Session]:
        with self._lock:
            session = self._sessions.get(normalize(code))
            return session.model_copy() if session else None

    def find_by_producer(self, connection: str) -> Optional[Session]:
        """The newest session `connection` produces, if any."""
        with self._lock:
            codes = self._by_producer.get(connection)
            return self._sessions[codes[-1]].model_copy() if codes else None

    def sessions_of_producer(self, connection: str) -> list[Session]:
        with self._lock:
            return [self._sessions[code].model_copy() for code in self._by_producer.get(connection, ())]

    def find_by_consumer(self, connection: str) -> Optional[Session]:
        with self._lock:
            code = self._by_consumer.get(connection)
            return self._sessions[code].model_copy() if code is not None else None

    # ---------- Payload ----------

    def update_payload(self, code: str, payload: str) -> None:
        """Overwrite the latest payload; no-op when the session is gone."""
        with self._lock:
            session = self._sessions.get(normalize(code))
            if session is None:
                return
            session.last_payload = payload
            session.last_activity = time.monotonic()
