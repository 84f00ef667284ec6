"""Push subscription collaborator and room-wide dispatch."""
from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Dict, Mapping, Protocol

from ..core.errors import InvalidInputError, ProviderError
from .push import PushGateway

logger = logging.getLogger(__name__)

TRANSPORT_FCM = "fcm"

_ROOM_ID_RE = re.compile(r"^[A-Za-z0-9_-]{27}$")


@dataclass(slots=True)
class PushSubscriptionRequest:
    endpoint: str
    transport: str = TRANSPORT_FCM
    locale: str | None = None


@dataclass(slots=True)
class PushRecipient:
    endpoint: str
    transport: str = TRANSPORT_FCM
    locale: str | None = None


@dataclass(slots=True)
class PushDispatchSummary:
    sent: int = 0
    failed: int = 0
    pruned: int = 0


class PushSubscriptionStore(Protocol):
    """Storage for room push subscriptions; implemented outside this package."""

    async def subscribe(self, room_id: str, request: PushSubscriptionRequest) -> None: ...

    async def unsubscribe(self, room_id: str, endpoint: str) -> None: ...

    async def list_recipients(self, room_id: str) -> list[PushRecipient]: ...


def validate_room_id(room_id: str) -> str:
    """Return ``room_id`` stripped, or raise before any storage access."""

    candidate = (room_id or "").strip()
    if not _ROOM_ID_RE.match(candidate):
        raise InvalidInputError("Invalid room ID")
    return candidate


class InMemoryPushSubscriptionStore:
    """Process-local subscription store keyed by room then endpoint."""

    def __init__(self) -> None:
        self._rooms: Dict[str, Dict[str, PushRecipient]] = {}
        self._lock = asyncio.Lock()

    async def subscribe(self, room_id: str, request: PushSubscriptionRequest) -> None:
        room_id = validate_room_id(room_id)
        endpoint = (request.endpoint or "").strip()
        if not endpoint:
            raise InvalidInputError("Subscription endpoint is required")

        async with self._lock:
            recipients = self._rooms.setdefault(room_id, {})
            recipients[endpoint] = PushRecipient(
                endpoint=endpoint, transport=request.transport, locale=request.locale
            )

    async def unsubscribe(self, room_id: str, endpoint: str) -> None:
        room_id = validate_room_id(room_id)

        async with self._lock:
            recipients = self._rooms.get(room_id)
            if not recipients:
                return
            recipients.pop(endpoint.strip(), None)
            if not recipients:
                self._rooms.pop(room_id, None)

    async def list_recipients(self, room_id: str) -> list[PushRecipient]:
        room_id = validate_room_id(room_id)

        async with self._lock:
            return list(self._rooms.get(room_id, {}).values())


async def notify_room(
    store: PushSubscriptionStore,
    gateway: PushGateway,
    room_id: str,
    data: Mapping[str, str],
    *,
    exclude_endpoint: str | None = None,
) -> PushDispatchSummary:
    """Send ``data`` to every FCM subscriber of a room.

    Recipients the provider reports as permanently invalid are unsubscribed.
    A failure for one recipient is logged and counted; the rest still get sent.
    """

    room_id = validate_room_id(room_id)
    summary = PushDispatchSummary()

    for recipient in await store.list_recipients(room_id):
        if recipient.transport != TRANSPORT_FCM:
            continue
        if exclude_endpoint and recipient.endpoint == exclude_endpoint:
            continue

        try:
            outcome = await gateway.send(recipient.endpoint, data)
        except (ProviderError, InvalidInputError) as exc:
            logger.warning("Push to room %s failed: %s", room_id, exc)
            summary.failed += 1
            continue

        if outcome.delivered:
            summary.sent += 1
            continue

        summary.failed += 1
        if outcome.invalid_recipient:
            await store.unsubscribe(room_id, recipient.endpoint)
            summary.pruned += 1
            logger.info("Pruned invalid push recipient from room %s", room_id)

    return summary
