"""Artifact resolution orchestration for CorpPass logins.

``ArtifactAuthenticator`` turns the ``SAMLart`` parameter received at the
ACS into a validated AuthAccess payload:

1. Resolve the artifact over the back-channel (one retry on network faults)
2. Reject absent or unsuccessful responses
3. Validate the response (``CorpPassResponse``)
4. Validate the AuthAccess payload

Every failure is reported to the notifier before it is raised, and every
exception handed to the caller derives from ``AuthenticationFailure``.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

import httpx

from corppass.core.auth_access import AuthAccess
from corppass.core.exceptions import (
    ArtifactResolutionFailure,
    AuthenticationFailure,
    InvalidPayload,
    NetworkFault,
    ProtocolFault,
    ResponseValidationFailure,
)
from corppass.core.logging import Event, Notifier
from corppass.core.saml.artifact import ArtifactResolver
from corppass.core.saml.protocol import SamlError, load_decryption_key
from corppass.core.saml.response import CorpPassResponse

if TYPE_CHECKING:
    import xmlsec

    from corppass.core.config import CorpPassConfig

logger = logging.getLogger(__name__)

ARTIFACT_PARAM = "SAMLart"
TEST_ARTIFACT = "foobar"

# Transient faults retried exactly once
NETWORK_EXCEPTIONS: tuple[type[Exception], ...] = (
    httpx.TimeoutException,
    httpx.ReadError,
    httpx.WriteError,
    httpx.ProtocolError,
)


class ArtifactAuthenticator:
    """Authenticates a user from an HTTP-Artifact binding callback."""

    def __init__(
        self,
        config: CorpPassConfig,
        notifier: Notifier | None = None,
        resolver: ArtifactResolver | None = None,
        decryption_key: xmlsec.Key | None = None,
    ) -> None:
        """Initialize the authenticator.

        Args:
            config: CorpPass configuration.
            notifier: Event sink. A logging-only notifier is used if omitted.
            resolver: Artifact resolver. Built from ``config`` if omitted.
            decryption_key: SP private key. Loaded from
                ``config.decryption_key_path`` on first use if omitted.
        """
        self.config = config
        self.notifier = notifier or Notifier()
        self.resolver = resolver or ArtifactResolver(
            config, idp_certificate=config.read_idp_certificate()
        )
        self._decryption_key = decryption_key

    @property
    def decryption_key(self) -> xmlsec.Key | None:
        if self._decryption_key is None and self.config.decryption_key_path:
            self._decryption_key = load_decryption_key(self.config.decryption_key_path)
        return self._decryption_key

    def is_applicable(self, params: Mapping[str, Any], authenticated: bool = False) -> bool:
        """Whether this request is an artifact callback we should handle."""
        artifact = params.get(ARTIFACT_PARAM)
        applicable = not authenticated and bool(artifact and str(artifact).strip())
        return self.notifier.notify(Event.STRATEGY_VALID, applicable)

    def authenticate(self, params: Mapping[str, Any]) -> AuthAccess:
        """Resolve the artifact and return the validated AuthAccess payload.

        Raises:
            AuthenticationFailure: If resolution, response validation or
                payload validation fails.
        """
        response = self.resolve_artifact(params)
        user = response.cp_user
        if user is None:
            raise self._fail(
                Event.INVALID_USER,
                InvalidPayload("No AuthAccess attribute in assertion", None),
                "No AuthAccess attribute in assertion",
            )

        self.notifier.notify(Event.AUTH_ACCESS, user.xml_document)
        try:
            user.assert_valid()
        except InvalidPayload as e:
            self.notifier.notify(
                Event.INVALID_USER,
                f"User XML validation failed: {e}\nXML Received was:\n{e.xml}",
            )
            raise
        self.notifier.notify(Event.LOGIN_SUCCESS, f"Logged in successfully {user.user_id}")
        return user

    def resolve_artifact(self, params: Mapping[str, Any]) -> CorpPassResponse:
        """Resolve ``params["SAMLart"]`` into a validated response.

        A transient network fault is retried once, without backoff. Any
        other transport error fails immediately.

        Raises:
            NetworkFault: If the network fault persists on the retry, or is
                not transient.
            ProtocolFault: If the SAML layer rejects the exchange.
            ArtifactResolutionFailure: If no successful response was returned.
            ResponseValidationFailure: If the response fails validation.
        """
        artifact = params.get(ARTIFACT_PARAM, "")
        try:
            return self._resolve(artifact)
        except NETWORK_EXCEPTIONS as e:
            self.notifier.notify(Event.RETRY_AUTHENTICATION, f"Retrying authentication due to {e}")
        except httpx.TransportError as e:
            raise self._network_fault(e) from e

        try:
            return self._resolve(artifact)
        except httpx.TransportError as e:
            raise self._network_fault(e) from e

    def test_authentication(self) -> str:
        """Resolve a dummy artifact to check connectivity with the IdP.

        A reachable, correctly configured IdP answers with an artifact
        resolution failure carrying no XML.
        """
        try:
            self.resolve_artifact({ARTIFACT_PARAM: TEST_ARTIFACT})
        except AuthenticationFailure as e:
            message = f"{type(e).__name__}: {e}"
            if e.__cause__ is not None:
                message += f"\nException: {type(e.__cause__).__name__}: {e.__cause__}"
            if e.xml:
                message += f"\nXML: {e.xml}"
            return message
        return "Successfully resolved artifact."

    def _resolve(self, artifact: str) -> CorpPassResponse:
        try:
            saml_response = self.resolver.resolve(artifact)
            if saml_response is None or not saml_response.is_success:
                xml = saml_response.to_xml() if saml_response is not None else None
                raise self._fail(
                    Event.ARTIFACT_RESOLUTION_FAILURE,
                    ArtifactResolutionFailure("Artifact resolution failed", xml),
                    f"Artifact resolution failure: {xml}",
                )

            response_xml = self.notifier.notify(Event.SAML_RESPONSE, saml_response.to_xml())
            response = CorpPassResponse(
                saml_response,
                self.config,
                notifier=self.notifier,
                decryption_key=self.decryption_key,
            )
        except SamlError as e:
            raise self._fail(
                Event.SAML_ERROR,
                ProtocolFault(f"{type(e).__name__}: {e}"),
                f"Saml Error: {type(e).__name__} - {e}",
            ) from e

        if not response.is_valid:
            raise self._fail(
                Event.SAML_RESPONSE_VALIDATION_FAILURE,
                ResponseValidationFailure(response.errors, response_xml),
                f"SamlResponse Validation failed: {'; '.join(response.errors)}\n{response_xml}",
            )
        return response

    def _network_fault(self, error: httpx.TransportError) -> AuthenticationFailure:
        message = f"Network error resolving artifact: {type(error).__name__}: {error}"
        return self._fail(Event.NETWORK_ERROR, NetworkFault(message), message)

    def _fail(self, event: Event, error: AuthenticationFailure, message: str) -> AuthenticationFailure:
        self.notifier.notify(event, message)
        return error
