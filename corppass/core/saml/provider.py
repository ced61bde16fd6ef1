"""CorpPass service provider endpoints.

Builds the IdP-initiated SSO entry URL and handles Single Logout over the
HTTP-Redirect binding. Artifact resolution lives in
``corppass.core.saml.authenticator``.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from corppass.core.exceptions import ConfigurationError
from corppass.core.logging import Event, Notifier
from corppass.core.saml.logout import SAMLLogoutRequest, SAMLLogoutResponse
from corppass.core.saml.protocol import UnexpectedMessage

if TYPE_CHECKING:
    from corppass.core.config import CorpPassConfig


def _query_param(query: Mapping[str, str] | str, name: str) -> str:
    params = dict(parse_qsl(query)) if isinstance(query, str) else query
    value = params.get(name)
    if not value:
        raise UnexpectedMessage(f"Missing {name} parameter")
    return value


def _with_params(url: str, params: list[tuple[str, str]]) -> str:
    """Append ``params`` to ``url``, keeping its existing query."""
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True) + params
    return urlunsplit(parts._replace(query=urlencode(query)))


class CorpPassProvider:
    """SSO and SLO entry points for a CorpPass service provider."""

    def __init__(self, config: CorpPassConfig, notifier: Notifier | None = None) -> None:
        self.config = config
        self.notifier = notifier or Notifier()

    def sso_idp_initiated_url(self) -> str:
        """URL that starts an IdP-initiated login with the artifact binding."""
        if not self.config.sso_idp_initiated_base_url:
            raise ConfigurationError("No IdP-initiated SSO URL configured")
        url = _with_params(
            self.config.sso_idp_initiated_base_url,
            [
                ("RequestBinding", "HTTPArtifact"),
                ("ResponseBinding", "HTTPArtifact"),
                ("PartnerId", self.config.sp_entity),
                ("Target", self.config.sso_target),
                ("NameIdFormat", "Email"),
                ("esrvcId", self.config.eservice_id),
            ],
        )
        return self.notifier.notify(Event.SSO_IDP_INITIATED_URL, url)

    def slo_request_redirect(self, name_id: str) -> tuple[str, SAMLLogoutRequest]:
        """Start an SP-initiated logout for ``name_id``.

        Returns:
            The redirect URL and the LogoutRequest it carries.
        """
        request = SAMLLogoutRequest.create(
            issuer=self.config.sp_entity,
            destination=self._slo_url(),
            name_id=name_id,
        )
        self.notifier.notify(Event.SLO_REQUEST, request.to_xml())
        url = _with_params(request.destination, [("SAMLRequest", request.encode_redirect())])
        return url, request

    def slo_response_redirect(
        self, logout_request: SAMLLogoutRequest
    ) -> tuple[str, SAMLLogoutResponse]:
        """Answer an IdP-initiated logout with a Success LogoutResponse.

        Returns:
            The redirect URL and the LogoutResponse it carries.
        """
        response = SAMLLogoutResponse.create(
            request_id=logout_request.id,
            issuer=self.config.sp_entity,
            destination=self._slo_url(),
        )
        self.notifier.notify(Event.SLO_RESPONSE, response.to_xml())
        url = _with_params(self._slo_url(), [("SAMLResponse", response.encode_redirect())])
        return url, response

    def parse_logout_request(self, query: Mapping[str, str] | str) -> SAMLLogoutRequest:
        """Decode an IdP-initiated LogoutRequest from the redirect query."""
        message = SAMLLogoutRequest.parse(_query_param(query, "SAMLRequest"))
        self.notifier.notify(Event.SLO_REQUEST, message.to_xml())
        return message

    def parse_logout_response(self, query: Mapping[str, str] | str) -> SAMLLogoutResponse:
        """Decode the LogoutResponse answering our own LogoutRequest."""
        message = SAMLLogoutResponse.parse(_query_param(query, "SAMLResponse"))
        self.notifier.notify(Event.SLO_RESPONSE, message.to_xml())
        return message

    def _slo_url(self) -> str:
        if not self.config.slo_url_redirect:
            raise ConfigurationError("No Single Logout URL configured")
        return self.config.slo_url_redirect
