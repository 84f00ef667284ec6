"""TURN/STUN credential endpoint."""
from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from ..schemas.turn import TurnCredentialsResponse
from ..services import turn as turn_service
from ..services.rate_limit import RateLimit

router = APIRouter()


@router.api_route(
    "/turn-credentials",
    methods=["GET", "POST"],
    response_model=TurnCredentialsResponse,
    response_model_exclude_none=True,
    dependencies=[Depends(RateLimit("api"))],
)
async def turn_credentials(request: Request) -> TurnCredentialsResponse:
    """Return short-lived relay credentials, or a STUN-only fallback."""

    settings = request.app.state.settings
    credential = turn_service.issue_turn_credentials(
        settings.turn_secret,
        settings.turn_host,
        settings.turn_ttl_seconds,
        subject=settings.turn_subject,
        fallback_uri=settings.stun_fallback_uri,
    )
    return TurnCredentialsResponse(
        username=credential.username,
        password=credential.password,
        uris=credential.uris,
        ttl=credential.ttl_seconds,
    )
