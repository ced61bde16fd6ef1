"""Event notification and protocol logging for CorpPass authentication.

Two loggers are used:
- ``corppass.events``: audit events emitted by the authentication flow
  (decrypted assertions, retries, validation failures, logins, ...).
- ``corppass.protocol``: HTTP-level logging of the artifact resolution
  back-channel.

Log levels:
- ERROR: Only log errors
- INFO: Log flow milestones (logins, exchanges)
- DEBUG: Log HTTP details and protocol messages
- TRACE: Log full SOAP bodies including sensitive data (requires explicit enable)
"""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import IntEnum, StrEnum
from typing import Any, TypeVar

import httpx

# Custom log level for TRACE (below DEBUG)
TRACE = 5
logging.addLevelName(TRACE, "TRACE")

logger = logging.getLogger("corppass.protocol")
events_logger = logging.getLogger("corppass.events")

T = TypeVar("T")


class LogLevel(IntEnum):
    """Protocol logging levels."""

    ERROR = logging.ERROR  # 40
    INFO = logging.INFO  # 20
    DEBUG = logging.DEBUG  # 10
    TRACE = TRACE  # 5


class Event(StrEnum):
    """Audit events emitted during authentication."""

    # Authentication
    INVALID_USER = "invalid_user"
    LOGIN_SUCCESS = "login_success"
    LOGIN_FAILURE = "login_failure"
    NETWORK_ERROR = "network_error"
    RETRY_AUTHENTICATION = "retry_authentication"
    SAML_ERROR = "saml_error"
    ARTIFACT_RESOLUTION_FAILURE = "artifact_resolution_failure"
    SAML_RESPONSE_VALIDATION_FAILURE = "saml_response_validation_failure"

    # Provider
    SSO_IDP_INITIATED_URL = "sso_idp_initiated_url"
    SLO_REQUEST = "slo_request"
    SLO_RESPONSE = "slo_response"
    SAML_RESPONSE = "saml_response"
    STRATEGY_VALID = "strategy_valid"
    AUTH_ACCESS = "auth_access"

    # Response
    DECRYPTED_ASSERTION = "decrypted_assertion"
    DECRYPTED_ID = "decrypted_id"
    RESPONSE_VALIDATION_FAILURE = "response_validation_failure"

    # User
    USER_VALIDATION_FAILURE = "user_validation_failure"


EVENT_LOG_LEVELS: dict[int, tuple[Event, ...]] = {
    logging.DEBUG: (
        Event.SSO_IDP_INITIATED_URL,
        Event.SLO_REQUEST,
        Event.SLO_RESPONSE,
        Event.SAML_RESPONSE,
        Event.STRATEGY_VALID,
        Event.AUTH_ACCESS,
        Event.DECRYPTED_ASSERTION,
        Event.DECRYPTED_ID,
    ),
    logging.INFO: (Event.LOGIN_SUCCESS,),
    logging.WARNING: (Event.RETRY_AUTHENTICATION,),
    logging.ERROR: (
        Event.INVALID_USER,
        Event.LOGIN_FAILURE,
        Event.NETWORK_ERROR,
        Event.SAML_ERROR,
        Event.ARTIFACT_RESOLUTION_FAILURE,
        Event.RESPONSE_VALIDATION_FAILURE,
        Event.SAML_RESPONSE_VALIDATION_FAILURE,
        Event.USER_VALIDATION_FAILURE,
    ),
}

_LEVEL_BY_EVENT: dict[str, int] = {
    event.value: level for level, events in EVENT_LOG_LEVELS.items() for event in events
}


def find_log_level(event: str) -> int:
    """Get the log level an event is emitted at (DEBUG if unknown)."""
    return _LEVEL_BY_EVENT.get(str(event), logging.DEBUG)


Subscriber = Callable[[str, Any], None]


class Notifier:
    """Notification sink for authentication events.

    ``notify`` logs the event at its mapped level, forwards it to any
    subscribers and returns the payload unchanged so it can be used inline::

        xml = notifier.notify(Event.SAML_RESPONSE, response.to_xml())
    """

    def __init__(self, subscribers: list[Subscriber] | None = None) -> None:
        self._subscribers: list[Subscriber] = list(subscribers or [])

    def subscribe(self, subscriber: Subscriber) -> None:
        """Register a callback invoked as ``subscriber(event, payload)``."""
        self._subscribers.append(subscriber)

    def notify(self, event: str, payload: T) -> T:
        events_logger.log(find_log_level(event), "%s: %s", event, payload)
        for subscriber in self._subscribers:
            subscriber(str(event), payload)
        return payload


# Patterns for sensitive data redaction
SENSITIVE_PATTERNS = [
    # Artifacts
    (re.compile(r"(SAMLart=)[^&\s]+", re.IGNORECASE), r"\1[REDACTED]"),
    (re.compile(r"(<(?:\w+:)?Artifact>)[^<]+(</(?:\w+:)?Artifact>)"), r"\1[REDACTED]\2"),
    # Subject identifiers
    (re.compile(r"(<(?:\w+:)?NameID\b[^>]*>)[^<]+(</(?:\w+:)?NameID>)"), r"\1[REDACTED]\2"),
    (re.compile(r"(<CPUID>)[^<]+(</CPUID>)"), r"\1[REDACTED]\2"),
    # HTTP headers
    (re.compile(r"(Authorization:\s*Basic\s+)[^\s]+", re.IGNORECASE), r"\1[REDACTED]"),
    (re.compile(r"(Proxy-Authorization:\s*)[^\r\n]+", re.IGNORECASE), r"\1[REDACTED]"),
    (re.compile(r"(Cookie:\s*)[^\r\n]+", re.IGNORECASE), r"\1[REDACTED]"),
]


def redact_sensitive(text: str) -> str:
    """Redact sensitive information from text.

    Args:
        text: Text that may contain sensitive data.

    Returns:
        Text with sensitive data redacted.
    """
    result = text
    for pattern, replacement in SENSITIVE_PATTERNS:
        result = pattern.sub(replacement, result)
    return result


@dataclass
class HTTPExchange:
    """Represents a single HTTP request/response exchange."""

    id: str
    timestamp: datetime
    method: str
    url: str
    request_headers: dict[str, str]
    request_body: str | None = None
    response_status: int | None = None
    response_headers: dict[str, str] = field(default_factory=dict)
    response_body: str | None = None
    duration_ms: float | None = None
    error: str | None = None

    def format_log(self, level: LogLevel, include_sensitive: bool = False) -> str:
        """Format the exchange for logging.

        Args:
            level: Log level determines how much detail to include.
            include_sensitive: If True, include raw sensitive data.

        Returns:
            Formatted log string.
        """
        lines = []
        url = self.url if include_sensitive else redact_sensitive(self.url)

        status = self.response_status or "ERROR"
        lines.append(f"HTTP {self.method} {url} -> {status}")

        if self.duration_ms is not None:
            lines.append(f"  Duration: {self.duration_ms:.1f}ms")

        if self.error:
            lines.append(f"  Error: {self.error}")

        if level <= LogLevel.DEBUG:
            lines.append("  Request Headers:")
            for name, value in self.request_headers.items():
                header = f"{name}: {value}"
                lines.append(f"    {header if include_sensitive else redact_sensitive(header)}")

            if self.response_headers:
                lines.append("  Response Headers:")
                for name, value in self.response_headers.items():
                    lines.append(f"    {name}: {value}")

        if level <= LogLevel.TRACE:
            if self.request_body:
                body = self.request_body if include_sensitive else redact_sensitive(self.request_body)
                lines.append("  Request Body:")
                lines.append(f"    {body[:2000]}{'...' if len(body) > 2000 else ''}")

            if self.response_body:
                body = self.response_body if include_sensitive else redact_sensitive(self.response_body)
                lines.append("  Response Body:")
                lines.append(f"    {body[:2000]}{'...' if len(body) > 2000 else ''}")

        return "\n".join(lines)


class ProtocolLogger:
    """Configurable logger for the artifact resolution back-channel."""

    def __init__(
        self,
        level: LogLevel = LogLevel.INFO,
        trace_enabled: bool = False,
    ) -> None:
        """Initialize the protocol logger.

        Args:
            level: Minimum log level.
            trace_enabled: Whether TRACE level is enabled (for sensitive data).
        """
        self.level = level
        self.trace_enabled = trace_enabled

    @property
    def effective_level(self) -> LogLevel:
        """Get effective log level (TRACE only if explicitly enabled)."""
        if self.level == LogLevel.TRACE and not self.trace_enabled:
            return LogLevel.DEBUG
        return self.level

    def log_exchange(self, exchange: HTTPExchange) -> None:
        """Log an HTTP exchange.

        Args:
            exchange: The HTTP exchange to log.
        """
        effective = self.effective_level
        include_sensitive = self.trace_enabled and self.level <= LogLevel.TRACE

        if effective <= LogLevel.DEBUG:
            logger.debug(exchange.format_log(effective, include_sensitive))
        elif effective <= LogLevel.INFO:
            logger.info(exchange.format_log(effective, include_sensitive))

        if exchange.error:
            logger.error(
                "HTTP error: %s %s: %s",
                exchange.method,
                redact_sensitive(exchange.url),
                exchange.error,
            )

    def create_transport(self, **kwargs: Any) -> LoggingTransport:
        """Create an httpx transport that logs requests/responses.

        Args:
            **kwargs: Passed to the wrapped httpx.HTTPTransport (proxy, verify, ...).
        """
        return LoggingTransport(self, httpx.HTTPTransport(**kwargs))


class LoggingTransport(httpx.BaseTransport):
    """HTTPX transport that logs all HTTP exchanges."""

    def __init__(
        self,
        protocol_logger: ProtocolLogger,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._logger = protocol_logger
        self._transport = transport or httpx.HTTPTransport()
        self._exchange_counter = 0

    def handle_request(self, request: httpx.Request) -> httpx.Response:
        self._exchange_counter += 1
        start_time = time.perf_counter()

        request_body = None
        if request.content:
            try:
                request_body = request.content.decode("utf-8")
            except UnicodeDecodeError:
                request_body = "<binary content>"

        exchange = HTTPExchange(
            id=f"http_{self._exchange_counter:04d}",
            timestamp=datetime.now(UTC),
            method=request.method,
            url=str(request.url),
            request_headers=dict(request.headers),
            request_body=request_body,
        )

        try:
            response = self._transport.handle_request(request)
        except Exception as e:
            exchange.duration_ms = (time.perf_counter() - start_time) * 1000
            exchange.error = f"{type(e).__name__}: {e}"
            self._logger.log_exchange(exchange)
            raise

        exchange.duration_ms = (time.perf_counter() - start_time) * 1000
        exchange.response_status = response.status_code
        exchange.response_headers = dict(response.headers)
        response.read()
        exchange.response_body = response.text

        self._logger.log_exchange(exchange)
        return response

    def close(self) -> None:
        """Close the underlying transport."""
        self._transport.close()


# Global protocol logger instance
_global_logger: ProtocolLogger | None = None


def get_protocol_logger() -> ProtocolLogger:
    """Get the global protocol logger instance."""
    global _global_logger
    if _global_logger is None:
        _global_logger = ProtocolLogger()
    return _global_logger


def set_protocol_logger(logger_instance: ProtocolLogger) -> None:
    """Set the global protocol logger instance."""
    global _global_logger
    _global_logger = logger_instance


def configure_logging(
    level: LogLevel | str = LogLevel.INFO,
    trace_enabled: bool = False,
    log_file: str | None = None,
) -> ProtocolLogger:
    """Configure event and protocol logging.

    Args:
        level: Log level (ERROR, INFO, DEBUG, TRACE) or string name.
        trace_enabled: Whether to enable TRACE level (includes sensitive data).
        log_file: Optional file path to write logs to.

    Returns:
        Configured ProtocolLogger.
    """
    if isinstance(level, str):
        level_map = {
            "ERROR": LogLevel.ERROR,
            "INFO": LogLevel.INFO,
            "DEBUG": LogLevel.DEBUG,
            "TRACE": LogLevel.TRACE,
        }
        level = level_map.get(level.upper(), LogLevel.INFO)

    root = logging.getLogger("corppass")
    root.setLevel(level)
    root.handlers.clear()

    formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    root.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    protocol_logger = ProtocolLogger(level=level, trace_enabled=trace_enabled)
    set_protocol_logger(protocol_logger)

    if trace_enabled:
        logger.warning("TRACE logging enabled - artifacts and NameIDs will be logged!")

    return protocol_logger
