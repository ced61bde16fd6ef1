"""Tests for configuration loading."""

import logging
import os
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
import yaml
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from corppass.core.config import (
    CorpPassConfig,
    ProxySettings,
    get_default_config_yaml,
    load_config,
    save_config,
)
from corppass.core.exceptions import ConfigurationError


def self_signed_pem(days_valid: int) -> str:
    """PEM of a self-signed certificate ending ``days_valid`` days from now."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "idp.example.com")])
    now = datetime.now(UTC)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=30))
        .not_valid_after(now + timedelta(days=days_valid))
        .sign(key, hashes.SHA256())
    )
    return cert.public_bytes(serialization.Encoding.PEM).decode("ascii")


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Remove CORPPASS_* variables from the environment."""
    for key in list(os.environ):
        if key.startswith("CORPPASS_"):
            monkeypatch.delenv(key)


class TestProxySettings:
    """Tests for the back-channel proxy."""

    def test_no_proxy(self):
        assert ProxySettings().url is None

    def test_address_and_port(self):
        assert ProxySettings(address="proxy.example.com", port=8080).url == "http://proxy.example.com:8080"

    def test_address_with_scheme(self):
        assert ProxySettings(address="https://proxy.example.com").url == "https://proxy.example.com"


class TestLoadConfig:
    """Tests for load_config."""

    def test_missing_file_gives_defaults(self, tmp_path):
        config = load_config(tmp_path / "missing.yaml")
        assert config.sp_entity == ""
        assert config.timeout == 30.0
        assert config.verify_tls is True
        assert config.proxy.url is None
        assert config.config_path is None

    def test_load_from_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            yaml.safe_dump(
                {
                    "sp_entity": "https://sp.example.com/saml/metadata",
                    "acs_url": "https://sp.example.com/saml/acs",
                    "decryption_key_path": "/etc/corppass/sp.key",
                    "proxy": {"address": "proxy.example.com", "port": "3128"},
                    "timeout": 5,
                }
            )
        )
        config = load_config(path)

        assert config.sp_entity == "https://sp.example.com/saml/metadata"
        assert config.acs_url == "https://sp.example.com/saml/acs"
        assert config.decryption_key_path == Path("/etc/corppass/sp.key")
        assert config.proxy.url == "http://proxy.example.com:3128"
        assert config.timeout == 5.0
        assert config.config_path == path

    def test_environment_overrides_file(self, tmp_path, monkeypatch):
        path = tmp_path / "config.yaml"
        path.write_text("sp_entity: from-file\nidp_entity: idp-from-file\n")
        monkeypatch.setenv("CORPPASS_SP_ENTITY", "from-env")
        monkeypatch.setenv("CORPPASS_PROXY_ADDRESS", "proxy.internal")
        monkeypatch.setenv("CORPPASS_PROXY_PORT", "8080")
        monkeypatch.setenv("CORPPASS_VERIFY_TLS", "false")
        monkeypatch.setenv("CORPPASS_DECRYPTION_KEY", "/run/secrets/sp.key")

        config = load_config(path)

        assert config.sp_entity == "from-env"
        assert config.idp_entity == "idp-from-file"
        assert config.proxy.url == "http://proxy.internal:8080"
        assert config.verify_tls is False
        assert config.decryption_key_path == Path("/run/secrets/sp.key")

    def test_invalid_proxy_port(self, tmp_path, monkeypatch):
        monkeypatch.setenv("CORPPASS_PROXY_PORT", "not-a-port")
        with pytest.raises(ConfigurationError):
            load_config(tmp_path / "missing.yaml")

    def test_malformed_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("sp_entity: [unclosed\n")
        with pytest.raises(ConfigurationError, match="Invalid configuration file"):
            load_config(path)

    def test_not_a_mapping(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ConfigurationError, match="expected a mapping"):
            load_config(path)

    def test_default_yaml_loads(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(get_default_config_yaml())
        config = load_config(path)
        assert config.sp_entity == "https://sp.example.com/saml/metadata"
        assert config.acs_url == "https://sp.example.com/saml/acs"
        assert config.proxy.url is None


class TestSaveConfig:
    """Tests for save_config."""

    def test_round_trip(self, tmp_path, config):
        path = save_config(config, tmp_path / "nested" / "config.yaml")
        loaded = load_config(path)
        assert loaded.to_dict() == config.to_dict()

    def test_read_idp_certificate(self, tmp_path):
        path = tmp_path / "idp.crt"
        pem = self_signed_pem(days_valid=365)
        path.write_text(pem)
        config = CorpPassConfig(idp_certificate_path=path)
        assert config.read_idp_certificate() == pem

    def test_expired_idp_certificate_warns(self, tmp_path, caplog):
        path = tmp_path / "idp.crt"
        path.write_text(self_signed_pem(days_valid=-1))
        config = CorpPassConfig(idp_certificate_path=path)
        with caplog.at_level(logging.WARNING, logger="corppass.core.config"):
            assert config.read_idp_certificate() is not None
        assert "expired" in caplog.text

    def test_invalid_idp_certificate(self, tmp_path):
        path = tmp_path / "idp.crt"
        path.write_text("-----BEGIN CERTIFICATE-----\nnot a certificate\n-----END CERTIFICATE-----\n")
        config = CorpPassConfig(idp_certificate_path=path)
        with pytest.raises(ConfigurationError, match="Failed to load IdP certificate"):
            config.read_idp_certificate()

    def test_missing_idp_certificate(self, tmp_path):
        config = CorpPassConfig(idp_certificate_path=tmp_path / "missing.crt")
        with pytest.raises(ConfigurationError):
            config.read_idp_certificate()

    def test_no_idp_certificate(self):
        assert CorpPassConfig().read_idp_certificate() is None
