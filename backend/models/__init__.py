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

__all__ = [
    "Session",
    "Envelope",
    "CreateRequest",
    "JoinRequest",
    "PayloadUpdateRequest",
    "Reply",
    "PayloadDelivery",
    "PeerConnected",
    "PeerDisconnected",
    "Pong",
    "SessionEnded",
]
