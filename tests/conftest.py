"""Pytest configuration and fixtures."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from builders import ACS_URL, ARS_URL, IDP_ENTITY, SP_ENTITY

from corppass.core.config import CorpPassConfig
from corppass.core.logging import Notifier


@pytest.fixture
def config() -> CorpPassConfig:
    """Configuration matching the built test messages."""
    return CorpPassConfig(
        sp_entity=SP_ENTITY,
        idp_entity=IDP_ENTITY,
        acs_url=ACS_URL,
        artifact_resolution_url=ARS_URL,
        sso_idp_initiated_base_url="https://idp.example.com/FIM/sps/CorpIDPFed/saml20/logininitial",
        sso_target="https://sp.example.com/",
        slo_url_redirect="https://idp.example.com/saml2/idp/SingleLogoutService",
        eservice_id="EXAMPLE-ESERVICE",
    )


@pytest.fixture
def events() -> list[tuple[str, Any]]:
    """Events received by the ``notifier`` fixture, in order."""
    return []


@pytest.fixture
def notifier(events: list[tuple[str, Any]]) -> Notifier:
    """Notifier recording every event into ``events``."""
    return Notifier([lambda event, payload: events.append((event, payload))])


@pytest.fixture
def event_names(events: list[tuple[str, Any]]) -> Callable[[], list[str]]:
    """Names of the recorded events."""
    return lambda: [event for event, _ in events]


@pytest.fixture(scope="session")
def private_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture
def key_file(tmp_path, private_key) -> Path:
    """The private key as a PEM file, as loaded by ``load_decryption_key``."""
    path = tmp_path / "sp.key"
    path.write_bytes(
        private_key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.TraditionalOpenSSL,
            serialization.NoEncryption(),
        )
    )
    return path


@pytest.fixture(scope="session")
def certificate_pem(private_key) -> str:
    """Self-signed certificate for ``private_key``.

    Valid both at the frozen test clock and at the real current time.
    """
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "idp.example.com")])
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(private_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(datetime(2010, 1, 1, tzinfo=UTC))
        .not_valid_after(datetime(2099, 12, 31, tzinfo=UTC))
        .sign(private_key, hashes.SHA256())
    )
    return cert.public_bytes(serialization.Encoding.PEM).decode("ascii")
