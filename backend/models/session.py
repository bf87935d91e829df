import time
from typing import Optional
from pydantic import BaseModel, Field


class Session(BaseModel):
    code: str
    producer_connection: str
    consumer_connection: Optional[str] = None
    created_at: float = Field(default_factory=time.monotonic)       # monotonic, informational
    last_activity: float = Field(default_factory=time.monotonic)    # monotonic, drives the idle sweep
    last_payload: str = ""

    @property
    def occupied(self) -> bool:
        return self.consumer_connection is not None

    @property
    def has_payload(self) -> bool:
        return self.last_payload != ""
