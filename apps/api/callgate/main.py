"""FastAPI application for the call edge service."""
from __future__ import annotations

import base64
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse, Response

from .core.config import Settings, get_settings
from .core.errors import RateLimitExceeded
from .routers import push as push_router
from .routers import turn as turn_router
from .services.push import PushGateway
from .services.push_subscriptions import InMemoryPushSubscriptionStore
from .services.rate_limit import RateLimiterRegistry
from .services.service_account import load_service_account

logger = logging.getLogger(__name__)

FAVICON_BYTES = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAQAAAC1HAwCAAAAC0lEQVR4nGMAAQAABQABDQottAAAAABJRU5ErkJggg=="
)


def _build_rate_limiters(settings: Settings) -> dict[str, RateLimiterRegistry]:
    budgets = {
        "api": (settings.api_rate_per_minute, settings.api_rate_burst),
        "push": (settings.push_rate_per_minute, settings.push_rate_burst),
    }
    return {
        name: RateLimiterRegistry.from_per_minute(
            per_minute,
            burst,
            max_clients=settings.rate_limit_max_clients,
            idle_seconds=settings.rate_limit_idle_seconds,
        )
        for name, (per_minute, burst) in budgets.items()
    }


def _build_push_gateway(settings: Settings) -> PushGateway | None:
    account = load_service_account(settings)
    if account is None:
        return None
    return PushGateway(
        account,
        timeout=settings.push_http_timeout_seconds,
        token_endpoint=settings.fcm_token_endpoint,
        api_base_url=settings.fcm_api_base_url,
    )


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the application around one immutable settings object."""

    settings = settings or get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        gateway = app.state.push_gateway
        if gateway is not None:
            await gateway.aclose()

    app = FastAPI(title="Callgate API", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.rate_limiters = _build_rate_limiters(settings)
    app.state.push_gateway = _build_push_gateway(settings)
    app.state.push_store = InMemoryPushSubscriptionStore()

    if settings.cors_allow_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_allow_origins,
            allow_credentials=True,
            allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
            allow_headers=["Content-Type"],
        )

    @app.exception_handler(RateLimitExceeded)
    async def rate_limited(_request: Request, _exc: RateLimitExceeded) -> PlainTextResponse:
        return PlainTextResponse("429 Too Many Requests", status_code=429)

    app.include_router(turn_router.router, prefix="/api", tags=["turn"])
    app.include_router(push_router.router, prefix="/api/push", tags=["push"])

    @app.get("/api/health", tags=["meta"])
    async def health() -> dict[str, str]:
        """Simple liveness check."""

        return {"status": "ok"}

    @app.head("/api/health", tags=["meta"])
    async def health_head() -> Response:
        """Allow HEAD for uptime monitors that only need the status code."""

        return Response(status_code=200)

    @app.get("/robots.txt", response_class=PlainTextResponse, include_in_schema=False)
    async def robots() -> PlainTextResponse:
        """Serve a minimal robots.txt to avoid 404 noise."""

        return PlainTextResponse("User-agent: *\nDisallow:")

    @app.get("/favicon.ico", include_in_schema=False)
    async def favicon() -> Response:
        """Return a tiny placeholder favicon."""

        return Response(content=FAVICON_BYTES, media_type="image/png")

    logger.info(
        "Callgate started (env=%s, turn=%s, push=%s)",
        settings.app_env,
        "configured" if settings.turn_secret and settings.turn_host else "stun-only",
        "enabled" if app.state.push_gateway is not None else "disabled",
    )
    return app


app = create_app()
