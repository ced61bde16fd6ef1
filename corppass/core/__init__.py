"""Core CorpPass authentication components."""

from corppass.core.auth_access import AuthAccess, AuthParameter, AuthRow, EServiceResult
from corppass.core.config import CorpPassConfig, ProxySettings, load_config
from corppass.core.exceptions import (
    ArtifactResolutionFailure,
    AuthenticationFailure,
    ConfigurationError,
    CorpPassError,
    InvalidPayload,
    NetworkFault,
    ProtocolFault,
    ResponseValidationFailure,
    ThirdPartyEntitlementNotSupported,
)
from corppass.core.logging import (
    Event,
    HTTPExchange,
    LoggingTransport,
    LogLevel,
    Notifier,
    ProtocolLogger,
    configure_logging,
    get_protocol_logger,
    redact_sensitive,
    set_protocol_logger,
)

__all__ = [
    # Payload
    "AuthAccess",
    "AuthParameter",
    "AuthRow",
    "EServiceResult",
    # Config
    "CorpPassConfig",
    "ProxySettings",
    "load_config",
    # Errors
    "ArtifactResolutionFailure",
    "AuthenticationFailure",
    "ConfigurationError",
    "CorpPassError",
    "InvalidPayload",
    "NetworkFault",
    "ProtocolFault",
    "ResponseValidationFailure",
    "ThirdPartyEntitlementNotSupported",
    # Logging
    "Event",
    "HTTPExchange",
    "LoggingTransport",
    "LogLevel",
    "Notifier",
    "ProtocolLogger",
    "configure_logging",
    "get_protocol_logger",
    "redact_sensitive",
    "set_protocol_logger",
]
