"""Data contracts for push subscription and notification endpoints."""
from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


class PushSubscribeRequest(BaseModel):
    transport: Literal["fcm"] = Field(default="fcm", description="Delivery transport")
    endpoint: str = Field(..., min_length=1, description="FCM registration token")
    locale: str | None = Field(default=None, max_length=35)


class PushNotifyRequest(BaseModel):
    data: dict[str, str] = Field(default_factory=dict, description="FCM data payload")
    exclude_endpoint: str | None = Field(default=None, description="Skip this subscriber, usually the sender")


class PushNotifyResponse(BaseModel):
    sent: int = Field(..., ge=0)
    failed: int = Field(..., ge=0)
    pruned: int = Field(..., ge=0)


class PushRecipientResponse(BaseModel):
    transport: str = Field(..., description="Delivery transport")
    endpoint: str = Field(..., description="FCM registration token")
    locale: str | None = None
