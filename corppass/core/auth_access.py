"""CorpPass AuthAccess entitlement payload.

The AuthAccess document is carried base64-encoded in the first attribute of
the SAML assertion. It describes the user, the entity the user acts for and
the roles the user holds for each e-service::

    <AuthAccess>
      <CPEntID>...</CPEntID>
      <CPEnt_Status>Active</CPEnt_Status>
      <CPUID>S1234567A</CPUID>
      ...
      <Result_Set>
        <ESrvc_Row_Count>1</ESrvc_Row_Count>
        <ESrvc_Result>
          <CPESrvcID>...</CPESrvcID>
          <Auth_Result_Set>
            <Row_Count>1</Row_Count>
            <Row>
              <CPEntID_SUB/><CPRole/><StartDate/><EndDate/>
              <Parameter name="...">...</Parameter>
            </Row>
          </Auth_Result_Set>
        </ESrvc_Result>
      </Result_Set>
    </AuthAccess>

Accessors are pure reads over the parsed document and do not validate.
Call ``validate()`` or ``assert_valid()`` first when correctness matters.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from functools import cached_property
from pathlib import Path

from lxml import etree

from corppass.core.exceptions import InvalidPayload
from corppass.core.logging import Event, Notifier

AUTH_ACCESS_NAME = "AuthAccess"

ENTITY_STATUSES = ("Active", "Suspend", "Terminate")

SCHEMA_PATH = Path(__file__).parent / "schemas" / "AuthAccess.xsd"

_PARSER = etree.XMLParser(resolve_entities=False, no_network=True)
_SCHEMA = etree.XMLSchema(etree.parse(str(SCHEMA_PATH)))


@dataclass(frozen=True)
class AuthParameter:
    """Free-form name/value pair attached to an authorization row."""

    name: str | None
    value: str


@dataclass(frozen=True)
class AuthRow:
    """One role a user holds for an e-service."""

    entity_id_sub: str | None
    role: str | None
    start_date: date | None
    end_date: date | None
    parameters: tuple[AuthParameter, ...] = ()


@dataclass(frozen=True)
class EServiceResult:
    """Authorization rows granted for one e-service."""

    eservice_id: str | None
    auth_result_set: tuple[AuthRow, ...] = ()


@dataclass(frozen=True)
class PayloadValidation:
    """Outcome of a single validation pass."""

    errors: tuple[str, ...] = ()

    @property
    def valid(self) -> bool:
        return not self.errors


def _parse_date(value: str | None) -> date | None:
    if value is None:
        return None
    try:
        return date.fromisoformat(value.strip())
    except ValueError:
        return None


def _to_int(value: str | None) -> int:
    if value is None:
        return 0
    try:
        return int(value.strip())
    except ValueError:
        return 0


def _text_of(name: str, base: etree._Element) -> str | None:
    """Return the first text node of the ``name`` child of ``base``."""
    nodes = base.xpath(f"./{name}/child::text()")
    if not nodes:
        return None
    return str(nodes[0])


class AuthAccess:
    """Validated, typed view of a CorpPass AuthAccess document."""

    def __init__(self, xml_document: str | bytes, notifier: Notifier | None = None) -> None:
        self.xml_document = xml_document
        self._notifier = notifier or Notifier()
        self._validation: PayloadValidation | None = None

    # -- document -------------------------------------------------------

    @cached_property
    def _parsed(self) -> tuple[etree._Element | None, str | None]:
        raw = self.xml_document
        if isinstance(raw, str):
            raw = raw.encode("utf-8")
        try:
            return etree.fromstring(raw, parser=_PARSER), None
        except etree.XMLSyntaxError as e:
            return None, str(e)

    @property
    def root(self) -> etree._Element | None:
        return self._parsed[0]

    def _root_text(self, name: str) -> str | None:
        if self.root is None:
            return None
        return _text_of(name, self.root)

    # -- validation -----------------------------------------------------

    @property
    def errors(self) -> list[str]:
        """Errors found by ``validate()``; empty until it has run."""
        if self._validation is None:
            return []
        return list(self._validation.errors)

    def validate(self) -> bool:
        """Run every check once and report whether the payload is valid.

        Well-formedness and XSD failures short-circuit the remaining checks.
        All other checks always run, and every failure is recorded and
        passed to the notifier. Later calls return the cached verdict.
        """
        if self._validation is None:
            errors = self._run_checks()
            for error in errors:
                self._notifier.notify(Event.USER_VALIDATION_FAILURE, error)
            self._validation = PayloadValidation(tuple(errors))
        return self._validation.valid

    def assert_valid(self) -> bool:
        """Validate, raising InvalidPayload with every message if invalid."""
        if not self.validate():
            raise InvalidPayload("; ".join(self.errors), self.xml_document)
        return True

    def _run_checks(self) -> list[str]:
        root, parse_error = self._parsed
        if root is None:
            return [f"Invalid XML Document: {parse_error}"]

        xsd_errors = self._check_xsd(root)
        if xsd_errors:
            return xsd_errors

        errors: list[str] = []
        errors.extend(self._check_root(root))
        errors.extend(self._check_entity_status())
        errors.extend(self._check_single_eservice_result())
        errors.extend(self._check_user_id_date())
        errors.extend(self._eservice_extraction[1])
        return errors

    @staticmethod
    def _check_xsd(root: etree._Element) -> list[str]:
        try:
            _SCHEMA.assertValid(root)
        except etree.DocumentInvalid as e:
            messages = "; ".join(entry.message for entry in e.error_log)
            return [f"XSD Validation failed: {messages}"]
        return []

    @staticmethod
    def _check_root(root: etree._Element) -> list[str]:
        # The schema also declares TPAuthAccess, which shares the layout
        name = etree.QName(root).localname
        if name != AUTH_ACCESS_NAME:
            return [f"Provided XML Document has an invalid root: {name}"]
        return []

    def _check_entity_status(self) -> list[str]:
        if self.entity_status not in ENTITY_STATUSES:
            return [f"Invalid Entity Status {self.entity_status}"]
        return []

    def _check_single_eservice_result(self) -> list[str]:
        if len(self._eservice_result_elements) != 1 or self.eservice_count != 1:
            return ["More than 1 eService Results were found"]
        return []

    def _check_user_id_date(self) -> list[str]:
        raw = self._root_text("CPUID_DATE")
        if raw is not None and self.user_id_date is None:
            return [f"Invalid date {raw} in <CPUID_DATE>"]
        return []

    # -- scalar accessors -----------------------------------------------

    @cached_property
    def id(self) -> str | None:
        """User defined login ID."""
        return self._root_text("CPID")

    @cached_property
    def account_type(self) -> str | None:
        return self._root_text("CPAccType")

    @cached_property
    def user_id(self) -> str | None:
        """User NRIC/FIN."""
        return self._root_text("CPUID")

    @cached_property
    def user_id_country(self) -> str | None:
        return self._root_text("CPUID_Country")

    @cached_property
    def user_id_date(self) -> date | None:
        return _parse_date(self._root_text("CPUID_DATE"))

    @cached_property
    def entity_id(self) -> str | None:
        return self._root_text("CPEntID")

    @cached_property
    def entity_status(self) -> str | None:
        return self._root_text("CPEnt_Status")

    @cached_property
    def entity_type(self) -> str | None:
        return self._root_text("CPEnt_TYPE")

    @cached_property
    def is_sp_holder(self) -> bool | None:
        value = self._root_text("ISSPHOLDER")
        if value is None:
            return None
        return {"yes": True, "no": False}.get(value.strip().lower())

    # -- e-service results ----------------------------------------------

    @cached_property
    def _result_set(self) -> etree._Element | None:
        if self.root is None:
            return None
        nodes = self.root.xpath("./Result_Set[1]")
        return nodes[0] if nodes else None

    @cached_property
    def _eservice_result_elements(self) -> list[etree._Element]:
        if self._result_set is None:
            return []
        return self._result_set.xpath("./ESrvc_Result")

    @cached_property
    def eservice_count(self) -> int:
        """Declared number of e-service results (ESrvc_Row_Count)."""
        if self._result_set is None:
            return 0
        return _to_int(_text_of("ESrvc_Row_Count", self._result_set))

    @property
    def eservice_results(self) -> tuple[EServiceResult, ...]:
        return self._eservice_extraction[0]

    @property
    def eservice_result(self) -> EServiceResult | None:
        results = self.eservice_results
        return results[0] if results else None

    @cached_property
    def _eservice_extraction(self) -> tuple[tuple[EServiceResult, ...], list[str]]:
        errors: list[str] = []
        results = []
        for element in self._eservice_result_elements:
            auth_result_set = element.xpath("./Auth_Result_Set")
            row_count = 0
            rows: list[etree._Element] = []
            if auth_result_set:
                row_count = _to_int(_text_of("Row_Count", auth_result_set[0]))
                rows = auth_result_set[0].xpath("./Row")
            if row_count != len(rows):
                errors.append(
                    f"{row_count} <Auth_Result_Set> rows was declared, but {len(rows)} found"
                )
            results.append(
                EServiceResult(
                    eservice_id=_text_of("CPESrvcID", element),
                    auth_result_set=tuple(self._auth_row(row, errors) for row in rows),
                )
            )
        return tuple(results), errors

    @staticmethod
    def _auth_row(row: etree._Element, errors: list[str]) -> AuthRow:
        dates = {}
        for name in ("StartDate", "EndDate"):
            raw = _text_of(name, row)
            dates[name] = _parse_date(raw)
            if raw is not None and dates[name] is None:
                errors.append(f"Invalid date {raw} in <{name}>")

        parameters = tuple(
            AuthParameter(
                name=parameter.get("name"),
                value="".join(parameter.xpath("./child::text()")),
            )
            for parameter in row.xpath("./Parameter")
        )
        return AuthRow(
            entity_id_sub=_text_of("CPEntID_SUB", row),
            role=_text_of("CPRole", row),
            start_date=dates["StartDate"],
            end_date=dates["EndDate"],
            parameters=parameters,
        )

    # -- identity -------------------------------------------------------

    def serialize(self) -> list[str | bytes]:
        """Dump the payload state for storage in a session."""
        return [self.xml_document]

    @classmethod
    def deserialize(cls, state: list[str | bytes], notifier: Notifier | None = None) -> AuthAccess:
        return cls(state[0], notifier=notifier)

    def __eq__(self, other: object) -> bool:
        if type(other) is not type(self):
            return NotImplemented
        return self.xml_document == other.xml_document

    def __hash__(self) -> int:
        return hash((type(self), self.xml_document))

    def __str__(self) -> str:
        return self.user_id or ""

    def __repr__(self) -> str:
        return f"AuthAccess(user_id={self.user_id!r}, entity_id={self.entity_id!r})"
