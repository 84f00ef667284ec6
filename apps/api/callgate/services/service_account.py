"""Service-account key loading for the push provider."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey

from ..core.config import Settings
from ..core.errors import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ServiceAccountKey:
    project_id: str
    client_email: str
    private_key: RSAPrivateKey

    def __repr__(self) -> str:
        return f"ServiceAccountKey(project_id={self.project_id!r}, client_email={self.client_email!r})"


def parse_private_key(raw: str) -> RSAPrivateKey:
    """Load a PEM RSA key (PKCS#8 or PKCS#1), accepting ``\\n``-escaped input."""

    normalized = raw.strip().replace("\\n", "\n")
    try:
        key = serialization.load_pem_private_key(normalized.encode("utf-8"), password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
        raise ConfigurationError("Failed to decode service account private key PEM") from exc

    if not isinstance(key, RSAPrivateKey):
        raise ConfigurationError("Service account private key is not RSA")
    return key


def _from_json(raw_json: str) -> ServiceAccountKey:
    try:
        data = json.loads(raw_json)
    except json.JSONDecodeError as exc:
        raise ConfigurationError("Failed to parse service account JSON") from exc
    if not isinstance(data, dict):
        raise ConfigurationError("Service account JSON must be an object")

    return _build(
        str(data.get("project_id") or ""),
        str(data.get("client_email") or ""),
        str(data.get("private_key") or ""),
    )


def _build(project_id: str, client_email: str, private_key: str) -> ServiceAccountKey:
    project_id = project_id.strip()
    client_email = client_email.strip()
    if not project_id or not client_email or not private_key.strip():
        raise ConfigurationError("Service account is missing required fields")

    return ServiceAccountKey(
        project_id=project_id,
        client_email=client_email,
        private_key=parse_private_key(private_key),
    )


def load_service_account(settings: Settings) -> ServiceAccountKey | None:
    """Return the configured service account, or ``None`` when push is disabled.

    Sources are tried in order: inline JSON, JSON file, discrete fields.
    Malformed material raises :class:`ConfigurationError` so it surfaces at
    startup instead of on the first notification.
    """

    raw_json = settings.fcm_service_account_json.strip()
    if not raw_json and settings.fcm_service_account_file.strip():
        path = Path(settings.fcm_service_account_file.strip())
        try:
            raw_json = path.read_text(encoding="utf-8").strip()
        except OSError as exc:
            raise ConfigurationError(f"Failed to read service account file {path}") from exc

    if raw_json:
        account = _from_json(raw_json)
    elif any(
        value.strip()
        for value in (settings.fcm_project_id, settings.fcm_client_email, settings.fcm_private_key)
    ):
        account = _build(settings.fcm_project_id, settings.fcm_client_email, settings.fcm_private_key)
    else:
        logger.info("Push service account not configured; push notifications are disabled")
        return None

    logger.info("Push initialized for project %s", account.project_id)
    return account
