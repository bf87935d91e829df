from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from store import SessionStore

router = APIRouter(tags=["session"])


# ---------- Response schema ----------

class SessionStatusResponse(BaseModel):
    code: str
    occupied: bool
    has_payload: bool


def get_store(request: Request) -> SessionStore:
    return request.app.state.store


# ---------- Endpoint ----------

@router.get("/session/{code}", response_model=SessionStatusResponse)
async def get_session_status(code: str, request: Request):
    """
    Lets a viewer check a typed code before opening the relay socket.
    Only reports whether the session exists and can be joined; the payload
    and connection ids stay private to the relay.
    """
    session = get_store(request).get_session(code)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")

    return SessionStatusResponse(
        code=session.code,
        occupied=session.occupied,
        has_payload=session.has_payload,
    )
