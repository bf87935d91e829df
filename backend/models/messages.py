"""
Wire messages exchanged over the relay socket.

Every frame is a JSON object with an `event` field. Inbound frames are
validated in two steps: the Envelope picks the event name, then the
event's own model checks its fields, so a malformed `request-join` can
still be answered on the `request-join` event.
"""

from typing import Annotated, Literal, Optional

from pydantic import BaseModel, ConfigDict, StringConstraints


# ---------- Inbound (peer -> broker) ----------

class Envelope(BaseModel):
    model_config = ConfigDict(extra="allow")

    event: str


class CreateRequest(BaseModel):
    event: Literal["request-create"] = "request-create"


class JoinRequest(BaseModel):
    event: Literal["request-join"] = "request-join"
    code: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


class PayloadUpdateRequest(BaseModel):
    event: Literal["payload-update"] = "payload-update"
    payload: str


# ---------- Outbound (broker -> peer) ----------

class Reply(BaseModel):
    event: str
    success: bool
    code: Optional[str] = None
    error: Optional[str] = None      # RelayError.kind
    message: Optional[str] = None


class PayloadDelivery(BaseModel):
    event: Literal["payload-update"] = "payload-update"
    payload: str
    delivered_at: int               # Unix timestamp in milliseconds


class PeerConnected(BaseModel):
    event: Literal["peer-connected"] = "peer-connected"
    code: str


class PeerDisconnected(BaseModel):
    event: Literal["peer-disconnected"] = "peer-disconnected"


class SessionEnded(BaseModel):
    event: Literal["session-ended"] = "session-ended"
    code: str
    reason: str


class Pong(BaseModel):
    event: Literal["pong"] = "pong"
