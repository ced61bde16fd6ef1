"""SAML Artifact binding implementation.

CorpPass delivers the authentication result with the HTTP-Artifact binding:
1. The IdP redirects the browser to the ACS with a small ``SAMLart`` reference
2. The SP resolves the artifact via a back-channel SOAP request to get the
   ``<samlp:Response>``

Only the transport and the SOAP envelope are handled here; validating the
resolved response is the job of ``corppass.core.saml.response``.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import httpx
from lxml import etree

from corppass.core.exceptions import ConfigurationError
from corppass.core.logging import ProtocolLogger, get_protocol_logger
from corppass.core.saml.protocol import (
    NAMESPACES,
    SAML_NS,
    SAMLP_NS,
    SamlResponse,
    Status,
    UnexpectedMessage,
    parse_xml,
)

if TYPE_CHECKING:
    from corppass.core.config import CorpPassConfig

SOAP_ENV_NS = "http://schemas.xmlsoap.org/soap/envelope/"


@dataclass
class ArtifactResolveRequest:
    """SAML ArtifactResolve request message.

    Sent via SOAP to the IdP's Artifact Resolution Service (ARS).
    """

    id: str
    issue_instant: str
    issuer: str
    destination: str
    artifact: str

    def to_soap_xml(self) -> bytes:
        """Serialize the request inside a SOAP 1.1 envelope.

        Raises:
            UnexpectedMessage: If a value cannot be represented in XML.
        """
        envelope = etree.Element(f"{{{SOAP_ENV_NS}}}Envelope", nsmap={"soap": SOAP_ENV_NS})
        body = etree.SubElement(envelope, f"{{{SOAP_ENV_NS}}}Body")
        try:
            resolve = etree.SubElement(
                body,
                f"{{{SAMLP_NS}}}ArtifactResolve",
                attrib={
                    "ID": self.id,
                    "Version": "2.0",
                    "IssueInstant": self.issue_instant,
                    "Destination": self.destination,
                },
                nsmap={"samlp": SAMLP_NS, "saml": SAML_NS},
            )
            etree.SubElement(resolve, f"{{{SAML_NS}}}Issuer").text = self.issuer
            etree.SubElement(resolve, f"{{{SAMLP_NS}}}Artifact").text = self.artifact
        except ValueError as e:
            raise UnexpectedMessage(f"Cannot encode ArtifactResolve: {e}") from e
        return etree.tostring(envelope, xml_declaration=True, encoding="UTF-8", pretty_print=True)


@dataclass
class ArtifactResponse:
    """Parsed ``<samlp:ArtifactResponse>`` from the IdP."""

    raw_xml: str
    in_response_to: str | None
    status: Status
    response: SamlResponse | None = None

    @classmethod
    def parse(cls, soap_response: str | bytes) -> ArtifactResponse:
        """Parse a SOAP envelope containing ArtifactResponse.

        Raises:
            UnexpectedMessage: If the envelope holds no ArtifactResponse.
        """
        root = parse_xml(soap_response)
        artifact_response = root.find(".//samlp:ArtifactResponse", NAMESPACES)
        if artifact_response is None:
            raise UnexpectedMessage("No ArtifactResponse found in SOAP envelope")

        response_elem = artifact_response.find("samlp:Response", NAMESPACES)
        raw = soap_response.decode("utf-8") if isinstance(soap_response, bytes) else soap_response
        return cls(
            raw_xml=raw,
            in_response_to=artifact_response.get("InResponseTo"),
            status=Status.from_element(artifact_response.find("samlp:Status", NAMESPACES)),
            response=SamlResponse(response_elem) if response_elem is not None else None,
        )


class ArtifactResolver:
    """Resolves SAML artifacts via back-channel SOAP request.

    Transport errors (``httpx.TransportError``) propagate to the caller, which
    decides whether to retry. SOAP and SAML level problems raise ``SamlError``.
    """

    def __init__(
        self,
        config: CorpPassConfig,
        idp_certificate: str | None = None,
        protocol_logger: ProtocolLogger | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the artifact resolver.

        Args:
            config: CorpPass configuration (SP entity, ARS URL, proxy, timeout).
            idp_certificate: PEM certificate used to verify the resolved
                response. Signatures are not checked when omitted.
            protocol_logger: Logger for the HTTP exchange. Uses the global one
                if not provided.
            transport: Override the HTTP transport (used by tests).
        """
        self.config = config
        self.idp_certificate = idp_certificate
        self.protocol_logger = protocol_logger or get_protocol_logger()
        self._transport = transport

    def create_resolve_request(self, artifact: str) -> ArtifactResolveRequest:
        """Create an ArtifactResolve request."""
        return ArtifactResolveRequest(
            id=f"_{secrets.token_hex(16)}",
            issue_instant=datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%SZ"),
            issuer=self.config.sp_entity,
            destination=self.config.artifact_resolution_url,
            artifact=artifact,
        )

    def _client(self) -> httpx.Client:
        transport = self._transport or self.protocol_logger.create_transport(
            proxy=self.config.proxy.url,
            verify=self.config.verify_tls,
        )
        return httpx.Client(transport=transport, timeout=self.config.timeout)

    def resolve(self, artifact: str) -> SamlResponse | None:
        """Resolve an artifact into the SAML Response it references.

        Args:
            artifact: The base64-encoded SAML artifact (``SAMLart``).

        Returns:
            The embedded SamlResponse, or None if the IdP returned none. When
            an IdP certificate is configured, only the signed content is kept.

        Raises:
            httpx.TransportError: On network failure.
            SamlError: On an unexpected or untrusted reply.
        """
        if not self.config.artifact_resolution_url:
            raise ConfigurationError("No Artifact Resolution Service URL configured")

        request = self.create_resolve_request(artifact)
        with self._client() as client:
            http_response = client.post(
                self.config.artifact_resolution_url,
                content=request.to_soap_xml(),
                headers={
                    "Content-Type": "text/xml; charset=utf-8",
                    "SOAPAction": "http://www.oasis-open.org/committees/security",
                },
            )

        if http_response.status_code != 200:
            raise UnexpectedMessage(
                f"Artifact Resolution Service returned HTTP {http_response.status_code}"
            )

        artifact_response = ArtifactResponse.parse(http_response.content)
        if artifact_response.in_response_to != request.id:
            raise UnexpectedMessage(
                f"InResponseTo mismatch: expected {request.id}, "
                f"got {artifact_response.in_response_to}"
            )

        response = artifact_response.response
        if response is not None and self.idp_certificate:
            response = response.verify_signature(self.idp_certificate)
        return response
