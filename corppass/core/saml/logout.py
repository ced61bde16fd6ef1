"""SAML Single Logout (SLO) messages for the HTTP-Redirect binding.

CorpPass supports both directions:
- SP-initiated: we send a LogoutRequest and receive a LogoutResponse
- IdP-initiated: we receive a LogoutRequest and answer with a LogoutResponse

Messages are unsigned. On the redirect binding they travel deflated and
base64-encoded in the ``SAMLRequest`` / ``SAMLResponse`` query parameter.
"""

from __future__ import annotations

import base64
import binascii
import secrets
import zlib
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
from xml.sax.saxutils import escape, quoteattr

from lxml import etree

from corppass.core.saml.protocol import NAMESPACES, UnexpectedMessage, parse_xml

NAMEID_UNSPECIFIED = "urn:oasis:names:tc:SAML:1.1:nameid-format:unspecified"


class LogoutStatus(StrEnum):
    """SAML Logout status codes."""

    SUCCESS = "urn:oasis:names:tc:SAML:2.0:status:Success"
    REQUESTER = "urn:oasis:names:tc:SAML:2.0:status:Requester"
    RESPONDER = "urn:oasis:names:tc:SAML:2.0:status:Responder"
    PARTIAL_LOGOUT = "urn:oasis:names:tc:SAML:2.0:status:PartialLogout"


def _new_id() -> str:
    return f"_{secrets.token_hex(16)}"


def _now() -> str:
    return datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


def deflate_encode(xml: str) -> str:
    """Encode a message for the HTTP-Redirect binding (raw deflate + base64)."""
    compressed = zlib.compress(xml.encode("utf-8"))[2:-4]
    return base64.b64encode(compressed).decode("utf-8")


def inflate_decode(encoded: str) -> etree._Element:
    """Decode an HTTP-Redirect message into its root element.

    Raises:
        UnexpectedMessage: If the value is not a deflated, base64-encoded XML message.
    """
    try:
        decoded = zlib.decompress(base64.b64decode(encoded), -15)
    except (binascii.Error, zlib.error, ValueError) as e:
        raise UnexpectedMessage(f"Failed to decode redirect message: {e}") from e
    return parse_xml(decoded)


def _child_text(root: etree._Element, path: str) -> str | None:
    elem = root.find(path, NAMESPACES)
    if elem is None or elem.text is None:
        return None
    return elem.text.strip()


@dataclass
class SAMLLogoutRequest:
    """A SAML LogoutRequest, either generated by us or received from the IdP."""

    id: str
    issue_instant: str
    issuer: str
    destination: str
    name_id: str
    name_id_format: str = NAMEID_UNSPECIFIED
    session_index: str | None = None

    @classmethod
    def create(cls, issuer: str, destination: str, name_id: str) -> SAMLLogoutRequest:
        return cls(
            id=_new_id(),
            issue_instant=_now(),
            issuer=issuer,
            destination=destination,
            name_id=name_id,
        )

    def to_xml(self) -> str:
        """Generate the LogoutRequest XML."""
        session_index_elem = ""
        if self.session_index:
            session_index_elem = (
                f"\n    <samlp:SessionIndex>{escape(self.session_index)}</samlp:SessionIndex>"
            )

        return f"""<samlp:LogoutRequest
    xmlns:samlp="urn:oasis:names:tc:SAML:2.0:protocol"
    xmlns:saml="urn:oasis:names:tc:SAML:2.0:assertion"
    ID={quoteattr(self.id)}
    Version="2.0"
    IssueInstant={quoteattr(self.issue_instant)}
    Destination={quoteattr(self.destination)}>
    <saml:Issuer>{escape(self.issuer)}</saml:Issuer>
    <saml:NameID Format={quoteattr(self.name_id_format)}>{escape(self.name_id)}</saml:NameID>{session_index_elem}
</samlp:LogoutRequest>"""

    def encode_redirect(self) -> str:
        return deflate_encode(self.to_xml())

    @classmethod
    def from_element(cls, root: etree._Element) -> SAMLLogoutRequest:
        if root.tag != f"{{{NAMESPACES['samlp']}}}LogoutRequest":
            raise UnexpectedMessage(f"Expected <samlp:LogoutRequest>, got {root.tag}")
        name_id_elem = root.find("saml:NameID", NAMESPACES)
        return cls(
            id=root.get("ID", ""),
            issue_instant=root.get("IssueInstant", ""),
            issuer=_child_text(root, "saml:Issuer") or "",
            destination=root.get("Destination", ""),
            name_id=_child_text(root, "saml:NameID") or "",
            name_id_format=(
                name_id_elem.get("Format", NAMEID_UNSPECIFIED)
                if name_id_elem is not None
                else NAMEID_UNSPECIFIED
            ),
            session_index=_child_text(root, "samlp:SessionIndex"),
        )

    @classmethod
    def parse(cls, encoded_request: str) -> SAMLLogoutRequest:
        """Parse a LogoutRequest received on the HTTP-Redirect binding.

        Raises:
            UnexpectedMessage: If the request cannot be decoded or parsed.
        """
        return cls.from_element(inflate_decode(encoded_request))


@dataclass
class SAMLLogoutResponse:
    """A SAML LogoutResponse, either generated by us or received from the IdP."""

    id: str
    issue_instant: str
    issuer: str | None
    destination: str | None
    in_response_to: str | None
    status_code: str | None
    status_message: str | None = None

    @property
    def is_success(self) -> bool:
        return self.status_code == LogoutStatus.SUCCESS

    @classmethod
    def create(
        cls,
        request_id: str,
        issuer: str,
        destination: str,
        status_code: str = LogoutStatus.SUCCESS,
    ) -> SAMLLogoutResponse:
        """Create a LogoutResponse answering the LogoutRequest ``request_id``."""
        return cls(
            id=_new_id(),
            issue_instant=_now(),
            issuer=issuer,
            destination=destination,
            in_response_to=request_id,
            status_code=str(status_code),
        )

    def to_xml(self) -> str:
        """Generate the LogoutResponse XML."""
        status_msg_elem = ""
        if self.status_message:
            status_msg_elem = (
                f"\n        <samlp:StatusMessage>{escape(self.status_message)}</samlp:StatusMessage>"
            )

        return f"""<samlp:LogoutResponse
    xmlns:samlp="urn:oasis:names:tc:SAML:2.0:protocol"
    xmlns:saml="urn:oasis:names:tc:SAML:2.0:assertion"
    ID={quoteattr(self.id)}
    Version="2.0"
    IssueInstant={quoteattr(self.issue_instant)}
    Destination={quoteattr(self.destination or "")}
    InResponseTo={quoteattr(self.in_response_to or "")}>
    <saml:Issuer>{escape(self.issuer or "")}</saml:Issuer>
    <samlp:Status>
        <samlp:StatusCode Value={quoteattr(self.status_code or "")}/>{status_msg_elem}
    </samlp:Status>
</samlp:LogoutResponse>"""

    def encode_redirect(self) -> str:
        return deflate_encode(self.to_xml())

    @classmethod
    def from_element(cls, root: etree._Element) -> SAMLLogoutResponse:
        if root.tag != f"{{{NAMESPACES['samlp']}}}LogoutResponse":
            raise UnexpectedMessage(f"Expected <samlp:LogoutResponse>, got {root.tag}")
        status_elem = root.find("samlp:Status/samlp:StatusCode", NAMESPACES)
        return cls(
            id=root.get("ID", ""),
            issue_instant=root.get("IssueInstant", ""),
            issuer=_child_text(root, "saml:Issuer"),
            destination=root.get("Destination"),
            in_response_to=root.get("InResponseTo"),
            status_code=status_elem.get("Value") if status_elem is not None else None,
            status_message=_child_text(root, "samlp:Status/samlp:StatusMessage"),
        )

    @classmethod
    def parse(cls, encoded_response: str) -> SAMLLogoutResponse:
        """Parse a LogoutResponse received on the HTTP-Redirect binding.

        Raises:
            UnexpectedMessage: If the response cannot be decoded or parsed.
        """
        return cls.from_element(inflate_decode(encoded_response))
