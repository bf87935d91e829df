"""
Relay gateway: per-connection protocol state machine and message fan-out.

Connections start UNBOUND and become PRODUCER (after request-create) or
CONSUMER (after a successful request-join). The role is fixed until the
connection goes away. The gateway keeps no session state of its own; every
read and write of a session goes through the SessionStore.

Each inbound event is handled entirely under one lock, and connections only
expose a non-blocking `send` that enqueues onto a per-connection FIFO. That
makes the enqueue order the delivery order: a catch-up payload queued on
join always reaches the consumer before any live update queued after it.
"""

import logging
import time
from enum import Enum
from threading import RLock
from typing import Optional, Protocol, Union

from pydantic import BaseModel, ValidationError

from config import MAX_PAYLOAD_CHARS
from models.messages import (
    CreateRequest,
    Envelope,
    JoinRequest,
    PayloadDelivery,
    PayloadUpdateRequest,
    PeerConnected,
    PeerDisconnected,
    Pong,
    Reply,
    SessionEnded,
)
from models.session import Session
from relay.errors import AlreadyBound, InvalidRequest, RelayError
from store import Role, SessionStore

logger = logging.getLogger(__name__)

PRODUCER_LEFT = "Producer disconnected"
SESSION_EXPIRED = "Session expired"


class ConnectionState(str, Enum):
    UNBOUND = "unbound"
    PRODUCER = "producer"
    CONSUMER = "consumer"


class Connection(Protocol):
    """Transport handle. `send` must not block and must preserve call order."""

    id: str

    def send(self, message: dict) -> None: ...


def _now_ms() -> int:
    return int(time.time() * 1000)


class RelayGateway:
    def __init__(self, store: SessionStore, max_payload_chars: int = MAX_PAYLOAD_CHARS):
        self._store = store
        self._max_payload_chars = max_payload_chars
        self._connections: dict[str, Connection] = {}
        self._states: dict[str, ConnectionState] = {}
        self._lock = RLock()

    @property
    def store(self) -> SessionStore:
        return self._store

    @property
    def connection_count(self) -> int:
        with self._lock:
            return len(self._connections)

    def role_of(self, connection_id: str) -> Optional[ConnectionState]:
        with self._lock:
            return self._states.get(connection_id)

    # ---------- Outbound ----------

    def _send(self, connection_id: Optional[str], message: BaseModel) -> None:
        if connection_id is None:
            return
        connection = self._connections.get(connection_id)
        if connection is None:
            # Peer already gone; its own disconnect will clean up.
            logger.debug("Dropping %s for unknown connection %s", message, connection_id)
            return
        connection.send(message.model_dump(exclude_none=True))

    def _reply_error(self, connection_id: str, event: str, exc: RelayError) -> None:
        self._send(
            connection_id,
            Reply(event=event, success=False, error=exc.kind, message=exc.message),
        )

    def _end_session(self, session: Session, reason: str) -> None:
        # Caller holds the lock and has already removed the session.
        if session.consumer_connection is not None:
            self._send(session.consumer_connection, SessionEnded(code=session.code, reason=reason))
            if session.consumer_connection in self._states:
                self._states[session.consumer_connection] = ConnectionState.UNBOUND

    # ---------- Connection lifecycle ----------

    def connect(self, connection: Connection) -> None:
        with self._lock:
            self._connections[connection.id] = connection
            self._states[connection.id] = ConnectionState.UNBOUND
        logger.info("Client connected: %s", connection.id)

    def disconnect(self, connection_id: str) -> None:
        """
        Transport-level close. Nothing is sent to the departing connection;
        the remaining peer, if any, is told what happened.
        """
        with self._lock:
            self._connections.pop(connection_id, None)
            self._states.pop(connection_id, None)
            outcome = self._store.handle_disconnect(connection_id)
            if outcome is None:
                logger.info("Client disconnected: %s (unbound)", connection_id)
                return

            if outcome.role is Role.PRODUCER:
                for session in outcome.sessions:
                    self._end_session(session, PRODUCER_LEFT)
            else:
                self._send(outcome.session.producer_connection, PeerDisconnected())
        logger.info(
            "Client disconnected: %s (%s of %s)",
            connection_id, outcome.role.value, ", ".join(s.code for s in outcome.sessions),
        )

    # ---------- Inbound ----------

    def handle_message(self, connection_id: str, raw: Union[str, bytes]) -> None:
        """
        Parse one JSON frame and dispatch it. Any parseable frame counts as
        activity for the sender's sessions; bad frames change nothing else.
        """
        try:
            envelope = Envelope.model_validate_json(raw)
        except ValidationError:
            logger.warning("Unparseable frame from %s", connection_id)
            with self._lock:
                self._reply_error(connection_id, "error", InvalidRequest("Frame must be a JSON object with an 'event'"))
            return

        with self._lock:
            self._store.touch(connection_id)

        data = envelope.model_dump()
        try:
            if envelope.event == "ping":
                self.ping(connection_id)
            elif envelope.event == "request-create":
                CreateRequest.model_validate(data)
                self.request_create(connection_id)
            elif envelope.event == "request-join":
                self.request_join(connection_id, JoinRequest.model_validate(data).code)
            elif envelope.event == "payload-update":
                self.payload_update(connection_id, PayloadUpdateRequest.model_validate(data).payload)
            else:
                raise InvalidRequest(f"Unknown event {envelope.event!r}")
        except ValidationError as exc:
            logger.warning("Invalid %s from %s: %s", envelope.event, connection_id, exc.errors()[0]["msg"])
            with self._lock:
                self._reply_error(connection_id, envelope.event, InvalidRequest(_describe(exc)))
        except InvalidRequest as exc:
            logger.warning("Rejected frame from %s: %s", connection_id, exc.message)
            with self._lock:
                self._reply_error(connection_id, envelope.event, exc)

    def ping(self, connection_id: str) -> None:
        """Keepalive for quiet peers; the frame itself already refreshed activity."""
        with self._lock:
            self._send(connection_id, Pong())

    def request_create(self, connection_id: str) -> Optional[Session]:
        """
        Allocate a session with this connection as producer. A producer may
        create again: it gets an unrelated new code, its earlier sessions stay
        live, and payload updates go to the newest one.
        """
        with self._lock:
            state = self._states.get(connection_id)
            if state is None:
                return None
            if state is ConnectionState.CONSUMER:
                self._reply_error(connection_id, "request-create", AlreadyBound())
                return None

            session = self._store.create_session(connection_id)
            self._states[connection_id] = ConnectionState.PRODUCER
            self._send(connection_id, Reply(event="request-create", success=True, code=session.code))
            return session

    def request_join(self, connection_id: str, code: str) -> Optional[Session]:
        with self._lock:
            state = self._states.get(connection_id)
            if state is None:
                return None
            try:
                if state is not ConnectionState.UNBOUND:
                    raise AlreadyBound()
                if not code or not code.strip():
                    raise InvalidRequest("A pairing code is required")
                session = self._store.join_session(code, connection_id)
            except RelayError as exc:
                logger.info("Join by %s with %r failed: %s", connection_id, code, exc.kind)
                self._reply_error(connection_id, "request-join", exc)
                return None

            self._states[connection_id] = ConnectionState.CONSUMER
            self._send(connection_id, Reply(event="request-join", success=True, code=session.code))
            self._send(session.producer_connection, PeerConnected(code=session.code))
            if session.has_payload:
                self._send(connection_id, PayloadDelivery(payload=session.last_payload, delivered_at=_now_ms()))
            return session

    def payload_update(self, connection_id: str, payload: str) -> None:
        """Store and forward a producer update. Fire-and-forget: no reply on success."""
        with self._lock:
            if self._states.get(connection_id) is not ConnectionState.PRODUCER:
                logger.debug("Ignoring payload-update from non-producer %s", connection_id)
                return
            session = self._store.find_by_producer(connection_id)
            if session is None:
                logger.debug("Ignoring payload-update from %s: no session", connection_id)
                return
            if len(payload) > self._max_payload_chars:
                raise InvalidRequest(
                    f"Payload of {len(payload)} chars exceeds the {self._max_payload_chars} char limit"
                )

            self._store.update_payload(session.code, payload)
            if session.consumer_connection is not None:
                self._send(session.consumer_connection, PayloadDelivery(payload=payload, delivered_at=_now_ms()))
                logger.debug("Relayed %d chars to consumer of %s", len(payload), session.code)

    # ---------- Maintenance ----------

    def sweep_idle(self, max_idle_seconds: float, now: Optional[float] = None) -> int:
        """End every session idle for longer than `max_idle_seconds`. Returns how many."""
        with self._lock:
            expired = self._store.expire_idle(max_idle_seconds, now=now)
            for session in expired:
                self._end_session(session, SESSION_EXPIRED)
                self._send(session.producer_connection, SessionEnded(code=session.code, reason=SESSION_EXPIRED))
                still_producing = self._store.find_by_producer(session.producer_connection) is not None
                if session.producer_connection in self._states and not still_producing:
                    self._states[session.producer_connection] = ConnectionState.UNBOUND
        return len(expired)


def _describe(exc: ValidationError) -> str:
    error = exc.errors()[0]
    field = ".".join(str(part) for part in error["loc"]) or "frame"
    return f"{field}: {error['msg']}"
