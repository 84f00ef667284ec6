"""Ephemeral TURN/STUN credentials.

Follows the "TURN REST API" convention: the username carries its own expiry
and the password is an HMAC of the username under a secret shared with the
relay, so the relay can validate credentials without calling back here.
"""
from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import time
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

DEFAULT_SUBJECT = "connected-user"
PUBLIC_STUN_URI = "stun:stun.l.google.com:19302"


@dataclass(slots=True)
class TurnCredential:
    uris: list[str] = field(default_factory=list)
    username: str | None = None
    password: str | None = None
    ttl_seconds: int | None = None

    @property
    def is_fallback(self) -> bool:
        return self.username is None


def _sign(secret: str, username: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), username.encode("utf-8"), hashlib.sha1).digest()
    return base64.b64encode(digest).decode("ascii")


def issue_turn_credentials(
    secret: str,
    relay_host: str,
    ttl_seconds: int,
    *,
    subject: str = DEFAULT_SUBJECT,
    fallback_uri: str = PUBLIC_STUN_URI,
    now: float | None = None,
) -> TurnCredential:
    """Produce a time-boxed credential for ``relay_host``.

    When the relay is not configured a STUN-only credential pointing at a public
    server is returned instead of an error; direct peer connections still work
    in many networks without a relay.
    """

    secret = secret or ""
    relay_host = (relay_host or "").strip()
    if not secret.strip() or not relay_host:
        logger.info("TURN relay not configured; returning STUN-only fallback %s", fallback_uri)
        return TurnCredential(uris=[fallback_uri])

    issued_at = int(time.time() if now is None else now)
    expiry = issued_at + int(ttl_seconds)
    username = f"{expiry}:{subject}"

    return TurnCredential(
        uris=[f"stun:{relay_host}", f"turn:{relay_host}"],
        username=username,
        password=_sign(secret, username),
        ttl_seconds=int(ttl_seconds),
    )


def verify_turn_credentials(secret: str, username: str, password: str, *, now: float | None = None) -> bool:
    """Check a presented credential the way a relay sharing ``secret`` would."""

    if not secret or not username or not password:
        return False

    expiry_text, _, _ = username.partition(":")
    try:
        expiry = int(expiry_text)
    except ValueError:
        return False

    current = int(time.time() if now is None else now)
    if current > expiry:
        return False
    return hmac.compare_digest(_sign(secret, username), password)
