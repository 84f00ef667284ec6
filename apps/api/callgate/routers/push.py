"""Push subscription and room notification endpoints."""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response

from ..core.errors import InvalidInputError
from ..schemas.push import (
    PushNotifyRequest,
    PushNotifyResponse,
    PushRecipientResponse,
    PushSubscribeRequest,
)
from ..services.push import PushGateway
from ..services.push_subscriptions import PushSubscriptionRequest, PushSubscriptionStore, notify_room
from ..services.rate_limit import RateLimit

router = APIRouter(dependencies=[Depends(RateLimit("push"))])


def _store(request: Request) -> PushSubscriptionStore:
    return request.app.state.push_store


def _gateway(request: Request) -> PushGateway:
    gateway = request.app.state.push_gateway
    if gateway is None:
        raise HTTPException(status_code=503, detail="Push notifications are not configured")
    return gateway


@router.post("/subscribe", status_code=204)
async def subscribe(
    payload: PushSubscribeRequest,
    room_id: str = Query(..., alias="roomId"),
    store: PushSubscriptionStore = Depends(_store),
) -> Response:
    """Register a device token for wake-up pushes in a room."""

    try:
        await store.subscribe(
            room_id,
            PushSubscriptionRequest(endpoint=payload.endpoint, transport=payload.transport, locale=payload.locale),
        )
    except InvalidInputError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return Response(status_code=204)


@router.delete("/subscribe", status_code=204)
async def unsubscribe(
    room_id: str = Query(..., alias="roomId"),
    endpoint: str = Query(..., min_length=1),
    store: PushSubscriptionStore = Depends(_store),
) -> Response:
    """Remove a device token from a room."""

    try:
        await store.unsubscribe(room_id, endpoint)
    except InvalidInputError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return Response(status_code=204)


@router.post("/notify", response_model=PushNotifyResponse)
async def notify(
    payload: PushNotifyRequest,
    room_id: str = Query(..., alias="roomId"),
    store: PushSubscriptionStore = Depends(_store),
    gateway: PushGateway = Depends(_gateway),
) -> PushNotifyResponse:
    """Wake every subscriber of a room."""

    try:
        summary = await notify_room(
            store, gateway, room_id, payload.data, exclude_endpoint=payload.exclude_endpoint
        )
    except InvalidInputError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return PushNotifyResponse(sent=summary.sent, failed=summary.failed, pruned=summary.pruned)


@router.get("/recipients", response_model=list[PushRecipientResponse])
async def recipients(
    room_id: str = Query(..., alias="roomId"),
    store: PushSubscriptionStore = Depends(_store),
) -> list[PushRecipientResponse]:
    """List the devices subscribed to a room."""

    try:
        subscribed = await store.list_recipients(room_id)
    except InvalidInputError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return [
        PushRecipientResponse(transport=item.transport, endpoint=item.endpoint, locale=item.locale)
        for item in subscribed
    ]
