"""Tests for the subscription store and room dispatch."""
from __future__ import annotations

import httpx
import pytest

from callgate.core.errors import InvalidInputError, ProviderError
from callgate.services.push import PushDeliveryOutcome, PushGateway
from callgate.services.push_subscriptions import (
    InMemoryPushSubscriptionStore,
    PushSubscriptionRequest,
    notify_room,
    validate_room_id,
)

ROOM_ID = "k2Xq9LmP4vRt7WbN3sYd8HcJ5fG"


class StubGateway:
    def __init__(self, outcomes: dict[str, PushDeliveryOutcome | Exception]) -> None:
        self.outcomes = outcomes
        self.sent: list[tuple[str, dict[str, str]]] = []

    async def send(self, recipient_token: str, data: dict[str, str]) -> PushDeliveryOutcome:
        self.sent.append((recipient_token, dict(data)))
        outcome = self.outcomes.get(recipient_token, PushDeliveryOutcome(status_code=200, body=b"{}"))
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.mark.asyncio
async def test_store_subscribe_list_unsubscribe() -> None:
    store = InMemoryPushSubscriptionStore()

    await store.subscribe(ROOM_ID, PushSubscriptionRequest(endpoint="tok-a"))
    await store.subscribe(ROOM_ID, PushSubscriptionRequest(endpoint="tok-a", locale="de"))
    await store.subscribe(ROOM_ID, PushSubscriptionRequest(endpoint="tok-b"))

    recipients = await store.list_recipients(ROOM_ID)
    assert [recipient.endpoint for recipient in recipients] == ["tok-a", "tok-b"]
    assert recipients[0].locale == "de"

    await store.unsubscribe(ROOM_ID, "tok-a")
    await store.unsubscribe(ROOM_ID, "tok-b")
    assert await store.list_recipients(ROOM_ID) == []


@pytest.mark.asyncio
async def test_store_rejects_invalid_room_ids_before_access() -> None:
    store = InMemoryPushSubscriptionStore()

    with pytest.raises(InvalidInputError):
        await store.subscribe("bad", PushSubscriptionRequest(endpoint="tok"))
    with pytest.raises(InvalidInputError):
        await store.list_recipients("bad")
    with pytest.raises(InvalidInputError):
        await store.subscribe("bad room!", PushSubscriptionRequest(endpoint="tok"))
    with pytest.raises(InvalidInputError):
        await store.unsubscribe("", "tok")
    with pytest.raises(InvalidInputError):
        await store.subscribe(ROOM_ID, PushSubscriptionRequest(endpoint="  "))


def test_validate_room_id() -> None:
    assert validate_room_id(f" {ROOM_ID} ") == ROOM_ID
    assert validate_room_id("A" * 27) == "A" * 27


@pytest.mark.parametrize("room_id", ["bad", "", "A" * 26, "A" * 28, "A" * 26 + "!", "room 1" + "A" * 21])
def test_validate_room_id_rejects_wrong_shape(room_id: str) -> None:
    with pytest.raises(InvalidInputError):
        validate_room_id(room_id)


@pytest.mark.asyncio
async def test_notify_room_prunes_only_invalid_recipients() -> None:
    store = InMemoryPushSubscriptionStore()
    for endpoint in ("ok", "dead", "flaky", "gone-404", "caller"):
        await store.subscribe(ROOM_ID, PushSubscriptionRequest(endpoint=endpoint))

    gateway = StubGateway(
        {
            "dead": PushDeliveryOutcome(status_code=404, body=b"", invalid_recipient=True),
            "flaky": ProviderError("timed out"),
            "gone-404": PushDeliveryOutcome(status_code=404, body=b"", invalid_recipient=False),
        }
    )

    summary = await notify_room(store, gateway, ROOM_ID, {"type": "call"}, exclude_endpoint="caller")

    assert summary.sent == 1
    assert summary.failed == 3
    assert summary.pruned == 1
    assert [token for token, _ in gateway.sent] == ["ok", "dead", "flaky", "gone-404"]

    remaining = [recipient.endpoint for recipient in await store.list_recipients(ROOM_ID)]
    assert remaining == ["ok", "flaky", "gone-404", "caller"]


@pytest.mark.asyncio
async def test_notify_room_skips_other_transports() -> None:
    store = InMemoryPushSubscriptionStore()
    await store.subscribe(ROOM_ID, PushSubscriptionRequest(endpoint="https://push.example/abc", transport="web"))
    gateway = StubGateway({})

    summary = await notify_room(store, gateway, ROOM_ID, {"type": "call"})

    assert gateway.sent == []
    assert summary.sent == 0


@pytest.mark.asyncio
async def test_notify_room_survives_deeply_nested_error_bodies(service_account) -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/token":
            return httpx.Response(200, json={"access_token": "ya29.token-1", "expires_in": 3600})
        return httpx.Response(500, content=b"[" * 5000)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    gateway = PushGateway(
        service_account, client=client, token_endpoint="https://oauth.test/token", api_base_url="https://fcm.test"
    )
    store = InMemoryPushSubscriptionStore()
    for endpoint in ("first", "second"):
        await store.subscribe(ROOM_ID, PushSubscriptionRequest(endpoint=endpoint))

    summary = await notify_room(store, gateway, ROOM_ID, {"type": "call"})

    assert summary.sent == 0
    assert summary.failed == 2
    assert summary.pruned == 0
    assert len(await store.list_recipients(ROOM_ID)) == 2
