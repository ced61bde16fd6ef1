"""Tests for the artifact resolution orchestrator."""

from __future__ import annotations

import httpx
import pytest
from freezegun import freeze_time

from builders import NOW, build_auth_access, build_saml_response

from corppass.core.exceptions import (
    ArtifactResolutionFailure,
    InvalidPayload,
    NetworkFault,
    ProtocolFault,
    ResponseValidationFailure,
)
from corppass.core.saml.authenticator import ArtifactAuthenticator
from corppass.core.saml.protocol import SamlResponse, SignatureInvalid
from corppass.core.saml.response import CorpPassResponse

PARAMS = {"SAMLart": "AAQAAMFbLinlXaCM+FIxiDA2ViJkeQOmHnQRxO9ZGjkj8Gg8RzpP3tTlSPQ="}


class FakeResolver:
    """Returns or raises the queued outcomes, one per ``resolve`` call."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.artifacts: list[str] = []

    def resolve(self, artifact):
        self.artifacts.append(artifact)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        if isinstance(outcome, str):
            return SamlResponse.parse(outcome)
        return outcome


@pytest.fixture(autouse=True)
def frozen_clock():
    with freeze_time(NOW):
        yield


@pytest.fixture
def make_authenticator(config, notifier):
    def _make(*outcomes) -> tuple[ArtifactAuthenticator, FakeResolver]:
        resolver = FakeResolver(*outcomes)
        return ArtifactAuthenticator(config, notifier=notifier, resolver=resolver), resolver

    return _make


def connection_reset() -> httpx.ReadError:
    return httpx.ReadError("Connection reset by peer")


class TestResolveArtifact:
    """Outcomes of ``resolve_artifact``."""

    def test_success(self, make_authenticator, event_names):
        authenticator, resolver = make_authenticator(build_saml_response())
        response = authenticator.resolve_artifact(PARAMS)

        assert isinstance(response, CorpPassResponse)
        assert response.is_valid
        assert resolver.artifacts == [PARAMS["SAMLart"]]
        assert event_names() == ["saml_response"]

    def test_saml_response_event_carries_xml(self, make_authenticator, events):
        authenticator, _ = make_authenticator(build_saml_response())
        response = authenticator.resolve_artifact(PARAMS)
        assert events[0] == ("saml_response", response.to_xml())

    def test_retries_once_on_network_fault(self, make_authenticator, event_names):
        authenticator, resolver = make_authenticator(connection_reset(), build_saml_response())
        response = authenticator.resolve_artifact(PARAMS)

        assert response.is_valid
        assert len(resolver.artifacts) == 2
        assert event_names() == ["retry_authentication", "saml_response"]

    def test_second_network_fault_is_fatal(self, make_authenticator, events):
        authenticator, resolver = make_authenticator(connection_reset(), connection_reset())
        with pytest.raises(NetworkFault) as exc_info:
            authenticator.resolve_artifact(PARAMS)

        assert len(resolver.artifacts) == 2
        assert isinstance(exc_info.value.__cause__, httpx.ReadError)
        assert [event for event, _ in events] == ["retry_authentication", "network_error"]
        assert "Connection reset by peer" in events[1][1]

    @pytest.mark.parametrize(
        "fault",
        [
            httpx.ConnectTimeout("timed out"),
            httpx.ReadTimeout("timed out"),
            httpx.WriteError("broken pipe"),
            httpx.RemoteProtocolError("malformed response"),
        ],
    )
    def test_transient_faults_are_retried(self, make_authenticator, fault):
        authenticator, resolver = make_authenticator(fault, build_saml_response())
        assert authenticator.resolve_artifact(PARAMS).is_valid
        assert len(resolver.artifacts) == 2

    @pytest.mark.parametrize(
        "fault",
        [
            httpx.ConnectError("Connection refused"),
            httpx.ProxyError("Proxy refused the tunnel"),
            httpx.CloseError("Close failed"),
            httpx.UnsupportedProtocol("Request URL has an unsupported protocol"),
        ],
    )
    def test_other_transport_errors_fail_without_retry(self, make_authenticator, events, fault):
        authenticator, resolver = make_authenticator(fault, build_saml_response())
        with pytest.raises(NetworkFault) as exc_info:
            authenticator.resolve_artifact(PARAMS)

        assert len(resolver.artifacts) == 1
        assert exc_info.value.__cause__ is fault
        assert [event for event, _ in events] == ["network_error"]
        assert type(fault).__name__ in events[0][1]

    def test_non_transient_error_on_retry(self, make_authenticator, event_names):
        authenticator, resolver = make_authenticator(connection_reset(), httpx.ConnectError("Connection refused"))
        with pytest.raises(NetworkFault):
            authenticator.resolve_artifact(PARAMS)

        assert len(resolver.artifacts) == 2
        assert event_names() == ["retry_authentication", "network_error"]

    def test_protocol_error(self, make_authenticator, events):
        authenticator, _ = make_authenticator(SignatureInvalid("Signature validation failed"))
        with pytest.raises(ProtocolFault) as exc_info:
            authenticator.resolve_artifact(PARAMS)

        assert isinstance(exc_info.value.__cause__, SignatureInvalid)
        assert events == [("saml_error", "Saml Error: SignatureInvalid - Signature validation failed")]

    def test_no_response(self, make_authenticator, event_names):
        authenticator, _ = make_authenticator(None)
        with pytest.raises(ArtifactResolutionFailure) as exc_info:
            authenticator.resolve_artifact(PARAMS)

        assert str(exc_info.value) == "Artifact resolution failed"
        assert exc_info.value.xml is None
        assert event_names() == ["artifact_resolution_failure"]

    def test_unsuccessful_response(self, make_authenticator, event_names):
        xml = build_saml_response(status_code="urn:oasis:names:tc:SAML:2.0:status:Requester")
        authenticator, _ = make_authenticator(xml)
        with pytest.raises(ArtifactResolutionFailure) as exc_info:
            authenticator.resolve_artifact(PARAMS)

        assert "urn:oasis:names:tc:SAML:2.0:status:Requester" in exc_info.value.xml
        assert event_names() == ["artifact_resolution_failure"]

    def test_invalid_response(self, make_authenticator, event_names):
        authenticator, _ = make_authenticator(build_saml_response(audiences=["https://other.example.com"]))
        with pytest.raises(ResponseValidationFailure) as exc_info:
            authenticator.resolve_artifact(PARAMS)

        assert exc_info.value.messages == ["Missing SP entity from audiences"]
        assert str(exc_info.value) == "Missing SP entity from audiences"
        assert "samlp:Response" in exc_info.value.xml
        assert event_names() == [
            "saml_response",
            "response_validation_failure",
            "saml_response_validation_failure",
        ]

    def test_validation_failure_is_not_retried(self, make_authenticator):
        authenticator, resolver = make_authenticator(build_saml_response(name_id="S7654321B"))
        with pytest.raises(ResponseValidationFailure):
            authenticator.resolve_artifact(PARAMS)
        assert len(resolver.artifacts) == 1


class TestAuthenticate:
    """Full login: resolution plus payload validation."""

    def test_login_success(self, make_authenticator, events):
        authenticator, _ = make_authenticator(build_saml_response())
        user = authenticator.authenticate(PARAMS)

        assert user.user_id == "S1234567A"
        assert user.validate() is True
        assert [event for event, _ in events] == ["saml_response", "auth_access", "login_success"]
        assert events[-1][1] == "Logged in successfully S1234567A"

    def test_invalid_payload(self, make_authenticator, event_names):
        auth_access = build_auth_access(entity_status="Dormant")
        authenticator, _ = make_authenticator(build_saml_response(auth_access=auth_access))
        with pytest.raises(InvalidPayload) as exc_info:
            authenticator.authenticate(PARAMS)

        assert str(exc_info.value) == "Invalid Entity Status Dormant"
        assert exc_info.value.xml == auth_access
        assert event_names() == [
            "saml_response",
            "auth_access",
            "user_validation_failure",
            "invalid_user",
        ]

    def test_resolution_failure_propagates(self, make_authenticator, event_names):
        authenticator, _ = make_authenticator(None)
        with pytest.raises(ArtifactResolutionFailure):
            authenticator.authenticate(PARAMS)
        assert "login_success" not in event_names()


class TestIsApplicable:
    """Whether a request is an artifact callback."""

    def test_with_artifact(self, make_authenticator, events):
        authenticator, _ = make_authenticator()
        assert authenticator.is_applicable(PARAMS) is True
        assert events == [("strategy_valid", True)]

    def test_already_authenticated(self, make_authenticator):
        authenticator, _ = make_authenticator()
        assert authenticator.is_applicable(PARAMS, authenticated=True) is False

    @pytest.mark.parametrize("params", [{}, {"SAMLart": ""}, {"SAMLart": "   "}])
    def test_without_artifact(self, make_authenticator, params):
        authenticator, _ = make_authenticator()
        assert authenticator.is_applicable(params) is False


class TestTestAuthentication:
    """Connectivity check with a dummy artifact."""

    def test_uses_dummy_artifact(self, make_authenticator):
        authenticator, resolver = make_authenticator(None)
        message = authenticator.test_authentication()

        assert resolver.artifacts == ["foobar"]
        assert message == "ArtifactResolutionFailure: Artifact resolution failed"

    def test_reports_network_fault(self, make_authenticator):
        authenticator, _ = make_authenticator(connection_reset(), connection_reset())
        message = authenticator.test_authentication()

        assert message.startswith("NetworkFault: ")
        assert "Exception: ReadError: Connection reset by peer" in message

    def test_reports_refused_connection(self, make_authenticator):
        authenticator, resolver = make_authenticator(httpx.ConnectError("Connection refused"))
        message = authenticator.test_authentication()

        assert len(resolver.artifacts) == 1
        assert message.startswith("NetworkFault: ")
        assert "Exception: ConnectError: Connection refused" in message

    def test_reports_xml(self, make_authenticator):
        xml = build_saml_response(status_code="urn:oasis:names:tc:SAML:2.0:status:Requester")
        authenticator, _ = make_authenticator(xml)
        message = authenticator.test_authentication()
        assert "\nXML: " in message

    def test_success(self, make_authenticator):
        authenticator, _ = make_authenticator(build_saml_response())
        assert authenticator.test_authentication() == "Successfully resolved artifact."
