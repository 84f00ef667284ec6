"""Shared fixtures for the callgate tests."""
from __future__ import annotations

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from callgate.core.config import Settings
from callgate.services.service_account import ServiceAccountKey


class FakeClock:
    """Manually advanced clock for time-dependent code."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture(scope="session")
def rsa_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def rsa_pem(rsa_key) -> str:
    return rsa_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")


@pytest.fixture
def service_account(rsa_key) -> ServiceAccountKey:
    return ServiceAccountKey(
        project_id="demo-project",
        client_email="push@demo-project.iam.gserviceaccount.com",
        private_key=rsa_key,
    )


@pytest.fixture
def make_settings():
    def _make(**overrides) -> Settings:
        values = {
            "_env_file": None,
            "turn_secret": "",
            "turn_host": "",
            "fcm_service_account_json": "",
            "fcm_service_account_file": "",
            "fcm_project_id": "",
            "fcm_client_email": "",
            "fcm_private_key": "",
            "trust_proxy": False,
        }
        values.update(overrides)
        return Settings(**values)

    return _make
