"""CorpPass configuration management.

Loads configuration from a config.yaml file and environment variables.
Environment variables take precedence over config file settings.
The configuration is loaded once per process and treated as read-only.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import yaml
from cryptography import x509

from corppass.core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

# Default config locations
DEFAULT_CONFIG_DIR = Path.home() / ".corppass"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"

# Environment variable prefix
ENV_PREFIX = "CORPPASS_"


@dataclass
class ProxySettings:
    """Outbound proxy for the artifact resolution back-channel."""

    address: str | None = None
    port: int | None = None

    @property
    def url(self) -> str | None:
        """Proxy URL for httpx, or None when no proxy is configured."""
        if not self.address:
            return None
        address = self.address if "://" in self.address else f"http://{self.address}"
        return f"{address}:{self.port}" if self.port else address

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProxySettings:
        port = data.get("port")
        return cls(
            address=data.get("address") or None,
            port=int(port) if port else None,
        )

    def to_dict(self) -> dict[str, Any]:
        return {"address": self.address, "port": self.port}


@dataclass
class CorpPassConfig:
    """Service provider and identity provider settings."""

    sp_entity: str = ""
    idp_entity: str = ""
    acs_url: str = ""
    artifact_resolution_url: str = ""
    sso_idp_initiated_base_url: str = ""
    sso_target: str = ""
    slo_url_redirect: str = ""
    eservice_id: str = ""
    decryption_key_path: Path | None = None
    idp_certificate_path: Path | None = None
    proxy: ProxySettings = field(default_factory=ProxySettings)
    timeout: float = 30.0
    verify_tls: bool = True
    config_path: Path | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any], config_path: Path | None = None) -> CorpPassConfig:
        """Create CorpPassConfig from a dictionary."""
        return cls(
            sp_entity=data.get("sp_entity", ""),
            idp_entity=data.get("idp_entity", ""),
            acs_url=data.get("acs_url", ""),
            artifact_resolution_url=data.get("artifact_resolution_url", ""),
            sso_idp_initiated_base_url=data.get("sso_idp_initiated_base_url", ""),
            sso_target=data.get("sso_target", ""),
            slo_url_redirect=data.get("slo_url_redirect", ""),
            eservice_id=data.get("eservice_id", ""),
            decryption_key_path=(
                Path(data["decryption_key_path"]) if data.get("decryption_key_path") else None
            ),
            idp_certificate_path=(
                Path(data["idp_certificate_path"]) if data.get("idp_certificate_path") else None
            ),
            proxy=ProxySettings.from_dict(data.get("proxy") or {}),
            timeout=float(data.get("timeout", 30.0)),
            verify_tls=data.get("verify_tls", True),
            config_path=config_path,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "sp_entity": self.sp_entity,
            "idp_entity": self.idp_entity,
            "acs_url": self.acs_url,
            "artifact_resolution_url": self.artifact_resolution_url,
            "sso_idp_initiated_base_url": self.sso_idp_initiated_base_url,
            "sso_target": self.sso_target,
            "slo_url_redirect": self.slo_url_redirect,
            "eservice_id": self.eservice_id,
            "decryption_key_path": str(self.decryption_key_path) if self.decryption_key_path else None,
            "idp_certificate_path": str(self.idp_certificate_path) if self.idp_certificate_path else None,
            "proxy": self.proxy.to_dict(),
            "timeout": self.timeout,
            "verify_tls": self.verify_tls,
        }

    def read_idp_certificate(self) -> str | None:
        """Read the IdP signing certificate (PEM), if one is configured.

        Raises:
            ConfigurationError: If the file cannot be read or is not a PEM
                X.509 certificate.
        """
        if not self.idp_certificate_path:
            return None
        try:
            pem_data = self.idp_certificate_path.read_bytes()
            cert = x509.load_pem_x509_certificate(pem_data)
        except (OSError, ValueError) as e:
            raise ConfigurationError(
                f"Failed to load IdP certificate from {self.idp_certificate_path}: {e}"
            ) from e

        if cert.not_valid_after_utc < datetime.now(UTC):
            logger.warning(
                "IdP certificate %s expired on %s", self.idp_certificate_path, cert.not_valid_after_utc
            )
        return pem_data.decode("ascii")


def _get_env_bool(key: str, default: bool) -> bool:
    """Get a boolean from environment variable."""
    value = os.environ.get(key)
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


# Plain string settings that can be overridden from the environment
_ENV_STRING_FIELDS = (
    "sp_entity",
    "idp_entity",
    "acs_url",
    "artifact_resolution_url",
    "sso_idp_initiated_base_url",
    "sso_target",
    "slo_url_redirect",
    "eservice_id",
)


def load_config(config_path: Path | None = None) -> CorpPassConfig:
    """Load CorpPass configuration.

    Configuration is loaded in this order (later values override earlier):
    1. Default values
    2. config.yaml file (if exists)
    3. Environment variables

    Args:
        config_path: Path to config file. Uses default if not specified.

    Returns:
        CorpPassConfig with merged settings.

    Raises:
        ConfigurationError: If the config file exists but cannot be read.
    """
    config = CorpPassConfig()

    file_path = config_path or DEFAULT_CONFIG_FILE
    if file_path.exists():
        try:
            with open(file_path) as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Invalid configuration file {file_path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"Invalid configuration file {file_path}: expected a mapping")
        config = CorpPassConfig.from_dict(data, config_path=file_path)

    for name in _ENV_STRING_FIELDS:
        value = os.environ.get(f"{ENV_PREFIX}{name.upper()}")
        if value:
            setattr(config, name, value)

    if os.environ.get(f"{ENV_PREFIX}DECRYPTION_KEY"):
        config.decryption_key_path = Path(os.environ[f"{ENV_PREFIX}DECRYPTION_KEY"])

    if os.environ.get(f"{ENV_PREFIX}IDP_CERTIFICATE"):
        config.idp_certificate_path = Path(os.environ[f"{ENV_PREFIX}IDP_CERTIFICATE"])

    if os.environ.get(f"{ENV_PREFIX}PROXY_ADDRESS"):
        config.proxy.address = os.environ[f"{ENV_PREFIX}PROXY_ADDRESS"]

    if os.environ.get(f"{ENV_PREFIX}PROXY_PORT"):
        try:
            config.proxy.port = int(os.environ[f"{ENV_PREFIX}PROXY_PORT"])
        except ValueError as e:
            raise ConfigurationError(f"Invalid {ENV_PREFIX}PROXY_PORT: {e}") from e

    config.verify_tls = _get_env_bool(f"{ENV_PREFIX}VERIFY_TLS", config.verify_tls)

    return config


def save_config(config: CorpPassConfig, path: Path | None = None) -> Path:
    """Save configuration to a YAML file.

    Args:
        config: Configuration to save.
        path: Path to save to. Uses config_path or default if not specified.

    Returns:
        The path written to.
    """
    save_path = path or config.config_path or DEFAULT_CONFIG_FILE
    save_path.parent.mkdir(parents=True, exist_ok=True)

    with open(save_path, "w") as f:
        yaml.safe_dump(config.to_dict(), f, default_flow_style=False)
    return save_path


def get_default_config_yaml() -> str:
    """Get the default config.yaml content as a string.

    Useful for generating example configuration files.
    """
    return """\
# CorpPass Configuration File
# Environment variables override these settings (prefix: CORPPASS_)

# Service provider entity ID registered with CorpPass
sp_entity: "https://sp.example.com/saml/metadata"

# CorpPass (IdP) entity ID
idp_entity: "https://idp.example.com/saml2/idp/metadata"

# Assertion Consumer Service URL (must match the SAML Destination/Recipient)
acs_url: "https://sp.example.com/saml/acs"

# IdP Artifact Resolution Service (SOAP endpoint)
artifact_resolution_url: "https://idp.example.com/saml2/idp/ArtifactResolutionService"

# IdP-initiated SSO
sso_idp_initiated_base_url: "https://idp.example.com/FIM/sps/CorpIDPFed/saml20/logininitial"
sso_target: "https://sp.example.com/"
eservice_id: "EXAMPLE-ESERVICE"

# Single logout (HTTP-Redirect binding)
slo_url_redirect: "https://idp.example.com/saml2/idp/SingleLogoutService"

# SP private key used to decrypt assertions (PEM)
# decryption_key_path: ~/.corppass/sp.key

# IdP signing certificate (PEM); signatures are not verified when unset
# idp_certificate_path: ~/.corppass/idp.crt

# Outbound proxy for the back-channel
proxy:
  address: null
  port: null

# HTTP timeout for artifact resolution, in seconds
timeout: 30

verify_tls: true
"""
