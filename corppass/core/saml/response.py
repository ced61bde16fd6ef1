"""CorpPass SAML response validation.

``CorpPassResponse`` wraps a resolved ``SamlResponse`` and performs the
checks the protocol layer leaves to the service provider:

- destination and issuer trust
- status success
- exactly one assertion
- conditions validity window and audience restriction
- bearer subject confirmation addressed to our ACS
- NameID consistency with the CPUID of the AuthAccess payload

All checks run exactly once, at construction. The messages are collected in
order and the result is frozen, so ``is_valid`` and ``is_success`` are plain
reads.
"""

from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
from functools import cached_property
from typing import TYPE_CHECKING

from lxml import etree

from corppass.core.auth_access import AuthAccess
from corppass.core.exceptions import ThirdPartyEntitlementNotSupported
from corppass.core.logging import Event, Notifier
from corppass.core.saml.protocol import (
    CM_BEARER,
    NAMESPACES,
    Assertion,
    DecryptionError,
    SamlResponse,
    Subject,
    decrypt_encrypted_id,
)

if TYPE_CHECKING:
    import xmlsec

    from corppass.core.config import CorpPassConfig

logger = logging.getLogger(__name__)

CONDITIONS_CONTEXT = "saml:Assertion/saml:Conditions"
SUBJECT_CONFIRMATION_CONTEXT = "SubjectConfirmation"


class EntitlementKind(StrEnum):
    """Shape of the entitlement carried by the assertion attributes."""

    SINGLE = "single"
    THIRD_PARTY = "third_party"


@dataclass(frozen=True)
class ResponseValidation:
    """Outcome of the validation pass over a response."""

    errors: tuple[str, ...]
    success: bool
    subject_confirmation_diagnostics: tuple[str, ...] = ()

    @property
    def valid(self) -> bool:
        return not self.errors


def format_time(value: datetime) -> str:
    """Render a timestamp the way validation messages show it."""
    return value.astimezone(UTC).strftime("%Y-%m-%d %H:%M:%S UTC")


def check_timestamps(
    now: datetime,
    not_before: datetime | None,
    not_on_or_after: datetime | None,
    context: str,
) -> list[str]:
    """Check ``now`` against an optional validity window.

    Both bounds are checked independently, so both can fail at once.
    """
    errors = []
    if not_before is not None and now < not_before:
        errors.append(
            f"For {context}, time now is {format_time(now)}, "
            f"and is before {format_time(not_before)}"
        )
    if not_on_or_after is not None and now >= not_on_or_after:
        errors.append(
            f"For {context}, time now is {format_time(now)}, "
            f"and is on or after {format_time(not_on_or_after)}"
        )
    return errors


class CorpPassResponse:
    """A resolved SAML response, decrypted and validated against our configuration."""

    def __init__(
        self,
        saml_response: SamlResponse,
        config: CorpPassConfig,
        notifier: Notifier | None = None,
        decryption_key: xmlsec.Key | None = None,
    ) -> None:
        """Decrypt the assertions and run every check.

        Raises:
            DecryptionError: If the response carries encrypted assertions and
                they cannot be decrypted with ``decryption_key``.
        """
        self.saml_response = saml_response
        self.config = config
        self._notifier = notifier or Notifier()
        self._decryption_key = decryption_key
        self._decrypt_assertions()
        self._validation = self._validate()

    # -- result ---------------------------------------------------------

    @property
    def errors(self) -> list[str]:
        return list(self._validation.errors)

    def validate(self) -> bool:
        return self._validation.valid

    @property
    def is_valid(self) -> bool:
        return self._validation.valid

    @property
    def is_success(self) -> bool:
        return self._validation.success

    @property
    def subject_confirmation_diagnostics(self) -> list[str]:
        """Why each subject confirmation was rejected, in document order."""
        return list(self._validation.subject_confirmation_diagnostics)

    # -- assertion data -------------------------------------------------

    @property
    def assertions(self) -> list[Assertion]:
        return self.saml_response.assertions

    @property
    def assertion(self) -> Assertion | None:
        return self.assertions[0] if self.assertions else None

    @property
    def subject(self) -> Subject | None:
        return self.assertion.subject if self.assertion else None

    @cached_property
    def name_id(self) -> str | None:
        """Subject NameID, falling back to the decrypted EncryptedID."""
        if self.subject is None:
            return None
        if self.subject.name_id:
            return self.subject.name_id
        return self._decrypt_encrypted_id()

    @cached_property
    def auth_access(self) -> str | None:
        """The AuthAccess document carried in the first attribute value."""
        if self.assertion is None or not self.assertion.attributes:
            return None
        values = self.assertion.attributes[0].values
        if not values:
            return None
        try:
            return base64.b64decode(values[0]).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as e:
            logger.debug("Cannot decode AuthAccess attribute value: %s", e)
            return None

    @cached_property
    def cp_user(self) -> AuthAccess | None:
        if self.auth_access is None:
            return None
        return AuthAccess(self.auth_access, notifier=self._notifier)

    @property
    def entitlement_kind(self) -> EntitlementKind:
        attributes = self.assertion.attributes if self.assertion else []
        if len(attributes) > 1:
            return EntitlementKind.THIRD_PARTY
        return EntitlementKind.SINGLE

    @property
    def is_third_party(self) -> bool:
        return self.entitlement_kind is EntitlementKind.THIRD_PARTY

    @property
    def tp_auth_access(self) -> str | None:
        if not self.is_third_party:
            return None
        raise ThirdPartyEntitlementNotSupported("TPAuthAccess entitlements are not supported")

    @property
    def cp_tp_user(self) -> AuthAccess:
        raise ThirdPartyEntitlementNotSupported("TPAuthAccess entitlements are not supported")

    def to_xml(self) -> str:
        return self.saml_response.to_xml()

    def __str__(self) -> str:
        return self.to_xml()

    # -- decryption -----------------------------------------------------

    def _decrypt_assertions(self) -> None:
        if not self.saml_response.encrypted_assertions:
            return
        if self._decryption_key is None:
            raise DecryptionError("Response has encrypted assertions but no decryption key is configured")
        self.saml_response.decrypt_assertions(self._decryption_key)
        if self.assertion is not None:
            self._notifier.notify(Event.DECRYPTED_ASSERTION, self.assertion.to_xml())

    def _decrypt_encrypted_id(self) -> str | None:
        encrypted_id = self.subject.encrypted_id if self.subject else None
        if encrypted_id is None:
            return None
        if self._decryption_key is None:
            logger.warning("Cannot decrypt <EncryptedID>: no decryption key configured")
            return None
        try:
            name_id = decrypt_encrypted_id(encrypted_id, self._decryption_key)
        except DecryptionError as e:
            logger.warning("Cannot decrypt <EncryptedID>: %s", e)
            return None
        self._notifier.notify(Event.DECRYPTED_ID, etree.tostring(name_id, encoding="unicode"))
        if etree.QName(name_id).localname != "NameID":
            name_id = name_id.find(".//saml:NameID", NAMESPACES)
        if name_id is None or name_id.text is None:
            return None
        return name_id.text.strip()

    # -- checks ---------------------------------------------------------

    def _validate(self) -> ResponseValidation:
        now = datetime.now(UTC)
        errors: list[str] = list(self.saml_response.errors)
        errors.extend(self._check_destination())
        errors.extend(self._check_issuer(self.saml_response.issuer, "<samlp:Response>"))
        errors.extend(self._check_status())

        diagnostics: list[str] = []
        if self.assertion is not None:
            errors.extend(self._check_single_assertion())
            errors.extend(self._check_issuer(self.assertion.issuer, "<saml:Assertion>"))
            errors.extend(self._check_conditions(now))
            confirmation_errors, diagnostics = self._check_subject_confirmation(now)
            errors.extend(confirmation_errors)
            errors.extend(self._check_name_id())

        for error in errors:
            self._notifier.notify(Event.RESPONSE_VALIDATION_FAILURE, error)
        return ResponseValidation(
            errors=tuple(errors),
            success=self.saml_response.is_success,
            subject_confirmation_diagnostics=tuple(diagnostics),
        )

    def _check_destination(self) -> list[str]:
        destination = self.saml_response.destination
        if destination is not None and destination != self.config.acs_url:
            return [f"The destination was {destination}, but the ACS is at {self.config.acs_url}"]
        return []

    def _check_issuer(self, issuer: str | None, context: str) -> list[str]:
        expected = self.config.idp_entity
        if issuer is not None and issuer != expected:
            return [
                f"The issuer for {context} was {issuer} but the issuer entity "
                f"expected should be {expected}"
            ]
        return []

    def _check_status(self) -> list[str]:
        if self.saml_response.is_success:
            return []
        return [f"SamlResponse status was not success: {self.saml_response.status.to_xml()}"]

    def _check_single_assertion(self) -> list[str]:
        count = len(self.assertions)
        if count != 1:
            return [f"More than one assertions found: {count}"]
        return []

    def _check_conditions(self, now: datetime) -> list[str]:
        conditions = self.assertion.conditions
        errors = check_timestamps(
            now, conditions.not_before, conditions.not_on_or_after, CONDITIONS_CONTEXT
        )
        if conditions.audiences is not None and self.config.sp_entity not in conditions.audiences:
            errors.append("Missing SP entity from audiences")
        return errors

    def _check_subject_confirmation(self, now: datetime) -> tuple[list[str], list[str]]:
        diagnostics = []
        for index, confirmation in enumerate(self.subject.subject_confirmations):
            if confirmation.method != CM_BEARER:
                reason = f"method {confirmation.method} is not bearer"
            elif confirmation.recipient != self.config.acs_url:
                reason = f"recipient {confirmation.recipient} is not {self.config.acs_url}"
            else:
                # No InResponseTo: CorpPass only does IdP-initiated SSO.
                timestamp_errors = check_timestamps(
                    now, None, confirmation.not_on_or_after, SUBJECT_CONFIRMATION_CONTEXT
                )
                if not timestamp_errors:
                    return [], diagnostics
                reason = timestamp_errors[0]
            diagnostic = f"SubjectConfirmation[{index}]: {reason}"
            logger.debug("Rejected %s", diagnostic)
            diagnostics.append(diagnostic)
        return ["No valid subject confirmation found"], diagnostics

    def _check_name_id(self) -> list[str]:
        if self.name_id is None:
            return [
                "Missing <NameID> or <EncryptedNameID>, or decryption of "
                "<EncryptedNameID> has failed"
            ]
        user_id = self.cp_user.user_id if self.cp_user is not None else None
        if self.name_id != user_id:
            return [
                f"<NameID>/<EncryptedNameID> in <saml:Subject> was {self.name_id}, "
                f"but <CPUID> in <AuthAccess> is {user_id}"
            ]
        return []
