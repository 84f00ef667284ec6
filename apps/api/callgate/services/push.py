"""FCM HTTP v1 push delivery.

Covers the OAuth2 JWT-bearer exchange for a service-account access token,
the data-message send, and interpretation of provider errors that mean a
registration token is permanently dead.
"""
from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Mapping

import httpx
import jwt

from ..core.errors import InvalidInputError, ProviderError
from .service_account import ServiceAccountKey

logger = logging.getLogger(__name__)

MESSAGING_SCOPE = "https://www.googleapis.com/auth/firebase.messaging"
DEFAULT_TOKEN_ENDPOINT = "https://oauth2.googleapis.com/token"
DEFAULT_API_BASE_URL = "https://fcm.googleapis.com"
JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"

ASSERTION_LIFETIME_SECONDS = 3600
DEFAULT_TOKEN_TTL_SECONDS = 3600
TOKEN_EXPIRY_MARGIN_SECONDS = 60
MAX_RESPONSE_BYTES = 64 * 1024

Clock = Callable[[], float]


async def _read_capped(response: httpx.Response) -> bytes:
    """Read at most ``MAX_RESPONSE_BYTES`` of a streamed response body."""

    body = bytearray()
    async for chunk in response.aiter_bytes():
        body.extend(chunk[: MAX_RESPONSE_BYTES - len(body)])
        if len(body) >= MAX_RESPONSE_BYTES:
            break
    return bytes(body)


def _parse_json(body: bytes) -> Any:
    """Decode a provider body; raises ``ValueError`` for anything undecodable."""

    try:
        return json.loads(body)
    except RecursionError as exc:
        raise ValueError("JSON nested too deeply") from exc


def build_jwt_assertion(
    account: ServiceAccountKey,
    now: float,
    *,
    audience: str = DEFAULT_TOKEN_ENDPOINT,
    scope: str = MESSAGING_SCOPE,
) -> str:
    """Return a signed RS256 JWT asserting ``account`` for the token endpoint."""

    issued_at = int(now)
    claims = {
        "iss": account.client_email,
        "scope": scope,
        "aud": audience,
        "iat": issued_at,
        "exp": issued_at + ASSERTION_LIFETIME_SECONDS,
    }
    return jwt.encode(claims, account.private_key, algorithm="RS256", headers={"typ": "JWT"})


@dataclass(slots=True)
class CachedAccessToken:
    token: str
    expires_at: float

    def is_fresh(self, now: float) -> bool:
        return now < self.expires_at - TOKEN_EXPIRY_MARGIN_SECONDS


class AccessTokenCache:
    """Single-slot cache for the provider bearer token.

    Concurrent callers that find the cache stale share one in-flight refresh
    and all receive its result, so a cold cache costs exactly one round trip
    to the token endpoint however many senders are waiting on it.
    """

    def __init__(
        self,
        account: ServiceAccountKey,
        client: httpx.AsyncClient,
        *,
        token_endpoint: str = DEFAULT_TOKEN_ENDPOINT,
        clock: Clock = time.time,
    ) -> None:
        self._account = account
        self._client = client
        self._token_endpoint = token_endpoint
        self._clock = clock
        self._cached: CachedAccessToken | None = None
        self._refresh_task: asyncio.Task[CachedAccessToken] | None = None
        self._lock = asyncio.Lock()

    @property
    def cached(self) -> CachedAccessToken | None:
        return self._cached

    def invalidate(self) -> None:
        """Drop the cached token so the next caller refreshes."""

        self._cached = None

    async def get_token(self) -> str:
        cached = self._cached
        if cached is not None and cached.is_fresh(self._clock()):
            return cached.token

        async with self._lock:
            cached = self._cached
            if cached is not None and cached.is_fresh(self._clock()):
                return cached.token
            if self._refresh_task is None:
                self._refresh_task = asyncio.create_task(self._refresh())
                self._refresh_task.add_done_callback(self._clear_refresh_task)
            task = self._refresh_task

        # Shield so one cancelled waiter does not abort the refresh for the rest.
        refreshed = await asyncio.shield(task)
        return refreshed.token

    def _clear_refresh_task(self, task: asyncio.Task[CachedAccessToken]) -> None:
        if self._refresh_task is task:
            self._refresh_task = None
        if not task.cancelled():
            # Mark the exception retrieved even if every waiter was cancelled.
            task.exception()

    async def _refresh(self) -> CachedAccessToken:
        now = self._clock()
        assertion = build_jwt_assertion(self._account, now, audience=self._token_endpoint)

        try:
            async with self._client.stream(
                "POST",
                self._token_endpoint,
                data={"grant_type": JWT_BEARER_GRANT, "assertion": assertion},
            ) as response:
                body = await _read_capped(response)
        except httpx.HTTPError as exc:
            raise ProviderError(f"OAuth token request failed: {exc}") from exc

        if not response.is_success:
            text = body.decode("utf-8", errors="replace").strip()
            raise ProviderError(
                f"OAuth token request failed ({response.status_code}): {text}",
                status_code=response.status_code,
                body=body,
            )

        try:
            payload = _parse_json(body)
        except ValueError as exc:
            raise ProviderError(
                "Failed to parse OAuth token response", status_code=response.status_code, body=body
            ) from exc

        access_token = payload.get("access_token") if isinstance(payload, dict) else None
        if not access_token or not isinstance(access_token, str):
            raise ProviderError(
                "OAuth token response missing access_token", status_code=response.status_code, body=body
            )

        expires_in = payload.get("expires_in")
        try:
            ttl = float(expires_in)
        except (TypeError, ValueError):
            ttl = 0.0
        if ttl <= 0:
            ttl = DEFAULT_TOKEN_TTL_SECONDS

        cached = CachedAccessToken(token=access_token, expires_at=now + ttl)
        self._cached = cached
        logger.info("Refreshed push access token for %s (expires in %ds)", self._account.client_email, int(ttl))
        return cached


@dataclass(slots=True)
class PushDeliveryOutcome:
    status_code: int
    body: bytes
    invalid_recipient: bool = False

    @property
    def delivered(self) -> bool:
        return 200 <= self.status_code < 300


def _is_registration_token_message(message: str) -> bool:
    return "registration token" in message.lower()


def classify_invalid_recipient(status_code: int, body: bytes | str) -> bool:
    """Return ``True`` when the provider says the recipient token is dead for good.

    Only explicit signals count. A bare 404 or 410 is not treated as invalid,
    since pruning a subscription on an ambiguous error cannot be undone.
    """

    if status_code < 400:
        return False

    raw = body.encode("utf-8") if isinstance(body, str) else body or b""

    try:
        payload = _parse_json(raw)
    except ValueError:
        payload = None

    error = payload.get("error") if isinstance(payload, dict) else None
    if isinstance(error, dict):
        status = str(error.get("status") or "").strip().upper()
        message = str(error.get("message") or "")
        if status == "UNREGISTERED":
            return True
        if status == "INVALID_ARGUMENT" and _is_registration_token_message(message):
            return True

        details = error.get("details")
        for detail in details if isinstance(details, list) else ():
            if not isinstance(detail, dict):
                continue
            code = str(detail.get("errorCode") or "").strip().upper()
            if code == "UNREGISTERED":
                return True
            if code == "INVALID_ARGUMENT" and _is_registration_token_message(message):
                return True

    # Older or non-standard responses only carry a text marker.
    return b"UNREGISTERED" in raw.upper()


class PushGateway:
    """Sends FCM data messages on behalf of one service account."""

    def __init__(
        self,
        account: ServiceAccountKey,
        *,
        timeout: float = 12.0,
        client: httpx.AsyncClient | None = None,
        token_endpoint: str = DEFAULT_TOKEN_ENDPOINT,
        api_base_url: str = DEFAULT_API_BASE_URL,
        clock: Clock = time.time,
    ) -> None:
        self.account = account
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))
        self._send_url = f"{api_base_url.rstrip('/')}/v1/projects/{account.project_id}/messages:send"
        self.tokens = AccessTokenCache(account, self._client, token_endpoint=token_endpoint, clock=clock)

    @property
    def send_url(self) -> str:
        return self._send_url

    @property
    def timeout(self) -> httpx.Timeout:
        return self._client.timeout

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def send(self, recipient_token: str, data: Mapping[str, str]) -> PushDeliveryOutcome:
        """Deliver a high-priority data message to one registration token.

        Non-2xx push responses are returned, not raised, with
        ``invalid_recipient`` already classified; the caller decides whether to
        drop the subscription.
        """

        token = (recipient_token or "").strip()
        if not token:
            raise InvalidInputError("Missing FCM registration token")
        for key, value in data.items():
            if not isinstance(key, str) or not isinstance(value, str):
                raise InvalidInputError("FCM data fields must map strings to strings")

        access_token = await self.tokens.get_token()
        envelope = {
            "message": {
                "token": token,
                "data": dict(data),
                "android": {"priority": "HIGH", "ttl": "60s"},
            }
        }

        try:
            async with self._client.stream(
                "POST",
                self._send_url,
                json=envelope,
                headers={"Authorization": f"Bearer {access_token}"},
            ) as response:
                body = await _read_capped(response)
        except httpx.HTTPError as exc:
            raise ProviderError(f"FCM send failed: {exc}") from exc

        invalid = classify_invalid_recipient(response.status_code, body)
        if response.status_code >= 400:
            logger.warning(
                "FCM send returned %s (invalid_recipient=%s)", response.status_code, invalid
            )
        return PushDeliveryOutcome(status_code=response.status_code, body=body, invalid_recipient=invalid)
