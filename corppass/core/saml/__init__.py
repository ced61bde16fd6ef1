"""SAML artifact binding, response validation and logout for CorpPass."""

from corppass.core.saml.artifact import (
    ArtifactResolver,
    ArtifactResolveRequest,
    ArtifactResponse,
)
from corppass.core.saml.authenticator import NETWORK_EXCEPTIONS, ArtifactAuthenticator
from corppass.core.saml.logout import LogoutStatus, SAMLLogoutRequest, SAMLLogoutResponse
from corppass.core.saml.protocol import (
    DecryptionError,
    SamlError,
    SamlResponse,
    SignatureInvalid,
    UnexpectedMessage,
)
from corppass.core.saml.provider import CorpPassProvider
from corppass.core.saml.response import CorpPassResponse, EntitlementKind

__all__ = [
    # Artifact binding
    "ArtifactResolveRequest",
    "ArtifactResolver",
    "ArtifactResponse",
    # Authentication
    "NETWORK_EXCEPTIONS",
    "ArtifactAuthenticator",
    "CorpPassResponse",
    "EntitlementKind",
    # Logout (SLO)
    "LogoutStatus",
    "SAMLLogoutRequest",
    "SAMLLogoutResponse",
    "CorpPassProvider",
    # Protocol
    "DecryptionError",
    "SamlError",
    "SamlResponse",
    "SignatureInvalid",
    "UnexpectedMessage",
]
