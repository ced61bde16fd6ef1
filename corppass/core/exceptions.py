"""Exception hierarchy for CorpPass authentication.

Validation problems are accumulated into error lists and only raised at an
explicit assert boundary. Resolution problems are raised immediately.
Everything handed back to the caller of the authenticator derives from
AuthenticationFailure.
"""

from __future__ import annotations


class CorpPassError(Exception):
    """Base class for all CorpPass errors."""


class ConfigurationError(CorpPassError):
    """Raised when the configuration file cannot be loaded."""


class AuthenticationFailure(CorpPassError):
    """An authentication attempt failed and must be rejected."""

    xml: str | None = None


class InvalidPayload(AuthenticationFailure):
    """The AuthAccess entitlement payload failed validation."""

    def __init__(self, message: str, xml: str | bytes | None) -> None:
        super().__init__(message)
        self.xml = xml.decode("utf-8") if isinstance(xml, bytes) else xml


class ArtifactResolutionFailure(AuthenticationFailure):
    """The IdP returned no response, or an unsuccessful one."""

    def __init__(self, message: str, xml: str | None) -> None:
        super().__init__(message)
        self.xml = xml


class ResponseValidationFailure(AuthenticationFailure):
    """The resolved SAML response failed trust or freshness checks."""

    def __init__(self, messages: list[str], xml: str | None) -> None:
        super().__init__("; ".join(messages))
        self.messages = list(messages)
        self.xml = xml


class NetworkFault(AuthenticationFailure):
    """A transient network error persisted after the single retry."""


class ProtocolFault(AuthenticationFailure):
    """The SAML protocol layer rejected the exchange."""


class ThirdPartyEntitlementNotSupported(CorpPassError, NotImplementedError):
    """Third-party (TPAuthAccess) entitlements are not supported."""
