"""SAML 2.0 protocol objects.

Parses a ``<samlp:Response>`` into typed objects (status, assertions,
subject, conditions, attributes) and performs the cryptographic operations
the authentication flow relies on:
- XML-Enc decryption of ``<saml:EncryptedAssertion>`` and ``<saml:EncryptedID>``
  (xmlsec)
- XML-DSig verification of the response against the IdP certificate (signxml)

Structural problems found while parsing are collected in
``SamlResponse.errors``; problems that make the message unusable raise
``SamlError``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

import xmlsec
from lxml import etree

# SAML namespaces
SAML_NS = "urn:oasis:names:tc:SAML:2.0:assertion"
SAMLP_NS = "urn:oasis:names:tc:SAML:2.0:protocol"
DSIG_NS = "http://www.w3.org/2000/09/xmldsig#"
XENC_NS = "http://www.w3.org/2001/04/xmlenc#"

NAMESPACES = {
    "saml": SAML_NS,
    "samlp": SAMLP_NS,
    "ds": DSIG_NS,
    "xenc": XENC_NS,
}

STATUS_SUCCESS = "urn:oasis:names:tc:SAML:2.0:status:Success"
CM_BEARER = "urn:oasis:names:tc:SAML:2.0:cm:bearer"

_PARSER = etree.XMLParser(resolve_entities=False, no_network=True, remove_blank_text=False)


class SamlError(Exception):
    """Base class for SAML protocol errors."""


class UnexpectedMessage(SamlError):
    """The message is not well-formed or is not the expected SAML message."""


class DecryptionError(SamlError):
    """An encrypted element could not be decrypted."""


class SignatureInvalid(SamlError):
    """The message signature could not be verified against the IdP certificate."""


def parse_xml(xml: str | bytes) -> etree._Element:
    """Parse an XML message, raising UnexpectedMessage on malformed input."""
    if isinstance(xml, str):
        xml = xml.encode("utf-8")
    try:
        return etree.fromstring(xml, parser=_PARSER)
    except etree.XMLSyntaxError as e:
        raise UnexpectedMessage(f"Failed to parse XML: {e}") from e


def parse_saml_datetime(value: str | None) -> datetime | None:
    """Parse an xs:dateTime value as used in SAML timestamps."""
    if value is None:
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError as e:
        raise UnexpectedMessage(f"Invalid SAML timestamp: {value}") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def _text(elem: etree._Element | None) -> str | None:
    if elem is None or elem.text is None:
        return None
    return elem.text.strip()


def load_decryption_key(path: Path | str, password: str | None = None) -> xmlsec.Key:
    """Load the SP private key used to decrypt assertions."""
    try:
        return xmlsec.Key.from_file(str(path), xmlsec.KeyFormat.PEM, password)
    except xmlsec.Error as e:
        raise DecryptionError(f"Failed to load decryption key from {path}: {e}") from e


def _decrypt(encrypted_elem: etree._Element, key: xmlsec.Key) -> etree._Element:
    """Decrypt the EncryptedData child of ``encrypted_elem`` in place.

    The session key may sit inside the EncryptedData's KeyInfo or in a
    sibling ``<xenc:EncryptedKey>`` referenced by a RetrievalMethod.
    """
    enc_data = xmlsec.tree.find_child(encrypted_elem, "EncryptedData", xmlsec.constants.EncNs)
    if enc_data is None:
        raise DecryptionError(f"No EncryptedData found in {etree.QName(encrypted_elem).localname}")
    # RetrievalMethod URIs point at the sibling EncryptedKey's Id
    xmlsec.tree.add_ids(encrypted_elem, ["Id"])

    manager = xmlsec.KeysManager()
    manager.add_key(key)
    enc_ctx = xmlsec.EncryptionContext(manager)
    try:
        return enc_ctx.decrypt(enc_data)
    except xmlsec.Error as e:
        raise DecryptionError(f"Failed to decrypt {etree.QName(encrypted_elem).localname}: {e}") from e


@dataclass
class Status:
    """The ``<samlp:Status>`` block of a response."""

    code: str | None
    message: str | None = None
    element: etree._Element | None = None

    @property
    def is_success(self) -> bool:
        return self.code == STATUS_SUCCESS

    def to_xml(self) -> str:
        if self.element is None:
            return ""
        return etree.tostring(self.element, pretty_print=True, encoding="unicode")

    @classmethod
    def from_element(cls, elem: etree._Element | None) -> Status:
        if elem is None:
            return cls(code=None)
        code_elem = elem.find("samlp:StatusCode", NAMESPACES)
        return cls(
            code=code_elem.get("Value") if code_elem is not None else None,
            message=_text(elem.find("samlp:StatusMessage", NAMESPACES)),
            element=elem,
        )


@dataclass
class SubjectConfirmation:
    """A ``<saml:SubjectConfirmation>`` and its confirmation data."""

    method: str | None
    recipient: str | None = None
    not_before: datetime | None = None
    not_on_or_after: datetime | None = None

    @classmethod
    def from_element(cls, elem: etree._Element) -> SubjectConfirmation:
        data = elem.find("saml:SubjectConfirmationData", NAMESPACES)
        if data is None:
            return cls(method=elem.get("Method"))
        return cls(
            method=elem.get("Method"),
            recipient=data.get("Recipient"),
            not_before=parse_saml_datetime(data.get("NotBefore")),
            not_on_or_after=parse_saml_datetime(data.get("NotOnOrAfter")),
        )


@dataclass
class Subject:
    """A ``<saml:Subject>``."""

    name_id: str | None = None
    encrypted_id: etree._Element | None = None
    subject_confirmations: list[SubjectConfirmation] = field(default_factory=list)

    @classmethod
    def from_element(cls, elem: etree._Element | None) -> Subject:
        if elem is None:
            return cls()
        return cls(
            name_id=_text(elem.find("saml:NameID", NAMESPACES)),
            encrypted_id=elem.find("saml:EncryptedID", NAMESPACES),
            subject_confirmations=[
                SubjectConfirmation.from_element(sc)
                for sc in elem.findall("saml:SubjectConfirmation", NAMESPACES)
            ],
        )


@dataclass
class Conditions:
    """A ``<saml:Conditions>`` block.

    ``audiences`` is None when no AudienceRestriction is declared.
    """

    not_before: datetime | None = None
    not_on_or_after: datetime | None = None
    audiences: list[str] | None = None

    @classmethod
    def from_element(cls, elem: etree._Element | None) -> Conditions:
        if elem is None:
            return cls()
        restrictions = elem.findall("saml:AudienceRestriction", NAMESPACES)
        audiences = None
        if restrictions:
            audiences = [
                _text(audience) or ""
                for restriction in restrictions
                for audience in restriction.findall("saml:Audience", NAMESPACES)
            ]
        return cls(
            not_before=parse_saml_datetime(elem.get("NotBefore")),
            not_on_or_after=parse_saml_datetime(elem.get("NotOnOrAfter")),
            audiences=audiences,
        )


@dataclass
class Attribute:
    """A ``<saml:Attribute>`` with its text values."""

    name: str
    values: list[str] = field(default_factory=list)


@dataclass
class Assertion:
    """A cleartext ``<saml:Assertion>``."""

    element: etree._Element
    assertion_id: str
    issuer: str | None
    subject: Subject
    conditions: Conditions
    attributes: list[Attribute] = field(default_factory=list)

    def to_xml(self) -> str:
        return etree.tostring(self.element, encoding="unicode")

    @classmethod
    def from_element(cls, elem: etree._Element) -> Assertion:
        attributes = [
            Attribute(
                name=attr.get("Name", ""),
                values=[
                    "".join(value.itertext())
                    for value in attr.findall("saml:AttributeValue", NAMESPACES)
                ],
            )
            for attr in elem.findall("saml:AttributeStatement/saml:Attribute", NAMESPACES)
        ]
        return cls(
            element=elem,
            assertion_id=elem.get("ID", ""),
            issuer=_text(elem.find("saml:Issuer", NAMESPACES)),
            subject=Subject.from_element(elem.find("saml:Subject", NAMESPACES)),
            conditions=Conditions.from_element(elem.find("saml:Conditions", NAMESPACES)),
            attributes=attributes,
        )


class SamlResponse:
    """A parsed ``<samlp:Response>``.

    Decryption mutates the underlying document: once decrypted, the
    EncryptedAssertion elements are replaced by their cleartext assertions.
    """

    def __init__(self, element: etree._Element) -> None:
        if element.tag != f"{{{SAMLP_NS}}}Response":
            raise UnexpectedMessage(f"Expected <samlp:Response>, got {element.tag}")
        self.element = element
        self.errors: list[str] = []
        self.status = Status.from_element(element.find("samlp:Status", NAMESPACES))
        self.assertions: list[Assertion] = []
        self._load_assertions()
        self._check_structure()

    @classmethod
    def parse(cls, xml: str | bytes) -> SamlResponse:
        return cls(parse_xml(xml))

    @property
    def response_id(self) -> str | None:
        return self.element.get("ID")

    @property
    def destination(self) -> str | None:
        return self.element.get("Destination")

    @property
    def issuer(self) -> str | None:
        return _text(self.element.find("saml:Issuer", NAMESPACES))

    @property
    def encrypted_assertions(self) -> list[etree._Element]:
        return self.element.findall("saml:EncryptedAssertion", NAMESPACES)

    @property
    def is_success(self) -> bool:
        return self.status.is_success

    def to_xml(self) -> str:
        return etree.tostring(self.element, encoding="unicode")

    def __str__(self) -> str:
        return self.to_xml()

    def _load_assertions(self) -> None:
        self.assertions = [
            Assertion.from_element(elem)
            for elem in self.element.findall("saml:Assertion", NAMESPACES)
        ]

    def _check_structure(self) -> None:
        if not self.response_id:
            self.errors.append("ID can't be blank")
        if self.element.get("Version") != "2.0":
            self.errors.append("Version must be 2.0")
        if not self.element.get("IssueInstant"):
            self.errors.append("IssueInstant can't be blank")
        if self.status.code is None:
            self.errors.append("Status can't be blank")
        if not self.assertions and not self.encrypted_assertions and self.is_success:
            self.errors.append("No <saml:Assertion> found")

    def decrypt_assertions(self, key: xmlsec.Key) -> list[Assertion]:
        """Decrypt every EncryptedAssertion in place.

        Returns:
            The newly decrypted assertions.
        """
        decrypted = []
        for encrypted in self.encrypted_assertions:
            assertion_elem = _decrypt(encrypted, key)
            encrypted.getparent().replace(encrypted, assertion_elem)
            decrypted.append(assertion_elem)
        self._load_assertions()
        return [Assertion.from_element(elem) for elem in decrypted]

    def verify_signature(self, idp_certificate: str) -> SamlResponse:
        """Verify the response (or assertion) signature against the IdP certificate.

        The signature must cover either this response or its single
        assertion. Only the signed bytes are trusted: the returned response
        is rebuilt from them, so unsigned content placed around a signed
        element never reaches the caller.

        Returns:
            The response as covered by the signature.

        Raises:
            SignatureInvalid: If no valid signature covers the response or
                its assertion.
        """
        from signxml import SignatureConfiguration, XMLVerifier
        from signxml.exceptions import InvalidInput, InvalidSignature

        try:
            result = XMLVerifier().verify(
                self.element,
                x509_cert=idp_certificate,
                expect_config=SignatureConfiguration(expect_references=1),
            )
        except (InvalidSignature, InvalidInput) as e:
            raise SignatureInvalid(f"Signature validation failed: {e}") from e

        signed = result.signed_xml
        if signed is None:
            raise SignatureInvalid("Signed data is not an XML element")
        signed_id = signed.get("ID")

        if signed.tag == f"{{{SAMLP_NS}}}Response" and signed_id == self.response_id:
            return SamlResponse(signed)

        assertions = self.element.findall("saml:Assertion", NAMESPACES)
        if (
            signed.tag == f"{{{SAML_NS}}}Assertion"
            and signed_id
            and len(assertions) == 1
            and assertions[0].get("ID") == signed_id
        ):
            verified = parse_xml(etree.tostring(self.element))
            verified.replace(verified.find("saml:Assertion", NAMESPACES), signed)
            return SamlResponse(verified)

        raise SignatureInvalid(
            f"Signature covers <{etree.QName(signed).localname} ID={signed_id}>, "
            "which is neither the response nor its assertion"
        )


def decrypt_encrypted_id(encrypted_id: etree._Element, key: xmlsec.Key) -> etree._Element:
    """Decrypt a ``<saml:EncryptedID>`` and return the cleartext NameID element."""
    # Work on a copy so a failed attempt leaves the subject untouched.
    holder = etree.fromstring(etree.tostring(encrypted_id), parser=_PARSER)
    return _decrypt(holder, key)
