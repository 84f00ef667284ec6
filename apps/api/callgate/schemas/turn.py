"""Data contracts for TURN credential endpoints."""
from __future__ import annotations

from pydantic import BaseModel, Field


class TurnCredentialsResponse(BaseModel):
    username: str | None = Field(default=None, description="<expiry-unix-seconds>:<subject>")
    password: str | None = Field(default=None, description="Base64 HMAC-SHA1 of the username")
    uris: list[str] = Field(..., description="ICE server URIs, STUN before TURN")
    ttl: int | None = Field(default=None, ge=1, description="Seconds until the credential expires")
