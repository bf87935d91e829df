from relay.codes import CodeGenerator, normalize
from relay.errors import (
    AlreadyBound,
    CodeSpaceExhausted,
    InvalidRequest,
    RelayError,
    SessionNotFound,
    SessionOccupied,
)

__all__ = [
    "CodeGenerator",
    "normalize",
    "RelayError",
    "SessionNotFound",
    "SessionOccupied",
    "InvalidRequest",
    "AlreadyBound",
    "CodeSpaceExhausted",
]
