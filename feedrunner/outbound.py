"""Outbound JSON POST client shared by the decision and generation calls.

Every failure is classified into an :class:`RequestErrorKind` and logged with
its full cause chain before being raised, so callers only have to decide on a
policy (fail open, give up on the item, ...).
"""

from __future__ import annotations

import json
import socket
import ssl
import time
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import urlparse

import httpx

from feedrunner.logger import get_logger

logger = get_logger(__name__)

BODY_PREVIEW_LIMIT = 500


class RequestErrorKind(str, Enum):
    TIMEOUT = "request-timeout"
    DNS_FAILURE = "dns-failure"
    CONNECTION_REFUSED = "connection-refused"
    CONNECTION_RESET = "connection-reset"
    TLS_FAILURE = "tls-failure"
    MALFORMED_RESPONSE = "malformed-response"
    EMPTY_RESPONSE = "empty-response"
    HTTP_ERROR = "http-error"
    NETWORK_FAILURE = "network-failure"


_DIAGNOSES: Dict[RequestErrorKind, tuple[str, str]] = {
    RequestErrorKind.TIMEOUT: (
        "Request exceeded its timeout; the endpoint may be slow or unresponsive.",
        "Check the endpoint's workflow performance or raise the timeout.",
    ),
    RequestErrorKind.DNS_FAILURE: (
        "Hostname could not be resolved.",
        "Check DNS settings or verify the endpoint domain is reachable.",
    ),
    RequestErrorKind.CONNECTION_REFUSED: (
        "Connection refused by server.",
        "Verify the service is running and the endpoint URL is correct.",
    ),
    RequestErrorKind.CONNECTION_RESET: (
        "Connection was reset by the server.",
        "Check the service logs for errors or restarts.",
    ),
    RequestErrorKind.TLS_FAILURE: (
        "TLS handshake or certificate validation failed.",
        "Check the certificate of the endpoint domain.",
    ),
    RequestErrorKind.MALFORMED_RESPONSE: (
        "Response body is not a JSON object.",
        "Make sure the workflow responds with a JSON object.",
    ),
    RequestErrorKind.EMPTY_RESPONSE: (
        "Response body was empty.",
        "Make sure the workflow ends with a respond-to-webhook step.",
    ),
    RequestErrorKind.HTTP_ERROR: (
        "Endpoint answered with a non-2xx status.",
        "Inspect the captured response body.",
    ),
    RequestErrorKind.NETWORK_FAILURE: (
        "Unclassified transport failure.",
        "Inspect the cause chain for the system-level error.",
    ),
}

_DNS_MARKERS = ("name or service not known", "nodename nor servname", "getaddrinfo", "temporary failure in name resolution", "no address associated")
_REFUSED_MARKERS = ("connection refused", "econnrefused", "actively refused")
_RESET_MARKERS = ("connection reset", "econnreset", "broken pipe", "epipe", "server disconnected", "socket hang up")
_TLS_MARKERS = ("certificate", "ssl", "tls")


class OutboundRequestError(Exception):
    def __init__(
        self,
        kind: RequestErrorKind,
        message: str,
        *,
        url: str = "",
        status_code: Optional[int] = None,
        body: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.url = url
        self.status_code = status_code
        self.body = body

    def __str__(self) -> str:
        return f"[{self.kind.value}] {super().__str__()}"


def _cause_chain(exc: BaseException) -> List[BaseException]:
    chain: List[BaseException] = []
    current: Optional[BaseException] = exc
    while current is not None and current not in chain:
        chain.append(current)
        current = current.__cause__ or current.__context__
    return chain


def _describe_cause(exc: BaseException) -> List[Dict[str, Any]]:
    described = []
    for item in _cause_chain(exc):
        entry: Dict[str, Any] = {"type": type(item).__name__, "message": str(item)}
        errno = getattr(item, "errno", None)
        if errno is not None:
            entry["errno"] = errno
        described.append(entry)
    return described


def classify_transport_error(exc: BaseException) -> RequestErrorKind:
    """Map an httpx transport exception (and its causes) to an error kind."""
    if isinstance(exc, httpx.TimeoutException):
        return RequestErrorKind.TIMEOUT

    chain = _cause_chain(exc)
    for item in chain:
        if isinstance(item, socket.gaierror):
            return RequestErrorKind.DNS_FAILURE
        if isinstance(item, ConnectionRefusedError):
            return RequestErrorKind.CONNECTION_REFUSED
        if isinstance(item, (ConnectionResetError, BrokenPipeError)):
            return RequestErrorKind.CONNECTION_RESET
        if isinstance(item, ssl.SSLError):
            return RequestErrorKind.TLS_FAILURE
        if isinstance(item, (TimeoutError, socket.timeout)):
            return RequestErrorKind.TIMEOUT

    text = " ".join(str(item) for item in chain).lower()
    if any(marker in text for marker in _DNS_MARKERS):
        return RequestErrorKind.DNS_FAILURE
    if any(marker in text for marker in _REFUSED_MARKERS):
        return RequestErrorKind.CONNECTION_REFUSED
    if any(marker in text for marker in _RESET_MARKERS):
        return RequestErrorKind.CONNECTION_RESET
    if isinstance(exc, httpx.RemoteProtocolError):
        return RequestErrorKind.CONNECTION_RESET
    if any(marker in text for marker in _TLS_MARKERS):
        return RequestErrorKind.TLS_FAILURE
    return RequestErrorKind.NETWORK_FAILURE


def _host_of(url: str) -> Optional[str]:
    try:
        return urlparse(url).hostname
    except ValueError:
        return None


def _preview(text: str, limit: int = BODY_PREVIEW_LIMIT) -> str:
    return text if len(text) <= limit else f"{text[:limit]}..."


class OutboundClient:
    """POST a JSON payload and return the parsed JSON object body."""

    def __init__(
        self,
        *,
        transport: Optional[httpx.BaseTransport] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> None:
        self._transport = transport
        self._headers = dict(headers or {})

    def send(
        self,
        url: str,
        payload: Mapping[str, Any],
        timeout_ms: int,
        headers: Optional[Mapping[str, str]] = None,
    ) -> Dict[str, Any]:
        try:
            body = json.dumps(payload)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Payload serialization failed: {exc}") from exc

        logger.info(
            "➡️  POST %s (timeout=%sms, payload=%s bytes, keys=%s)",
            url,
            timeout_ms,
            len(body),
            sorted(payload.keys()),
        )

        request_headers = {"Content-Type": "application/json", **self._headers, **(headers or {})}
        started = time.monotonic()
        try:
            with httpx.Client(transport=self._transport, timeout=timeout_ms / 1000.0) as client:
                response = client.post(url, content=body, headers=request_headers)
        except httpx.HTTPError as exc:
            kind = classify_transport_error(exc)
            elapsed_ms = int((time.monotonic() - started) * 1000)
            self._log_failure(kind, url, timeout_ms, elapsed_ms, exc=exc)
            raise OutboundRequestError(kind, f"POST {url} failed after {elapsed_ms}ms: {exc}", url=url) from exc
        except Exception as exc:
            # httpx.InvalidURL and friends are not HTTPError subclasses.
            kind = RequestErrorKind.NETWORK_FAILURE
            elapsed_ms = int((time.monotonic() - started) * 1000)
            self._log_failure(kind, url, timeout_ms, elapsed_ms, exc=exc)
            raise OutboundRequestError(kind, f"POST {url} could not be sent: {exc}", url=url) from exc

        elapsed_ms = int((time.monotonic() - started) * 1000)
        text = response.text
        logger.info(
            "⬅️  %s %s from %s in %sms (%s chars)",
            response.status_code,
            response.reason_phrase,
            url,
            elapsed_ms,
            len(text),
        )

        if not response.is_success:
            self._log_failure(
                RequestErrorKind.HTTP_ERROR,
                url,
                timeout_ms,
                elapsed_ms,
                status_code=response.status_code,
                body=text,
            )
            raise OutboundRequestError(
                RequestErrorKind.HTTP_ERROR,
                f"HTTP {response.status_code}: {_preview(text, 100)}",
                url=url,
                status_code=response.status_code,
                body=text,
            )

        if not text.strip():
            self._log_failure(RequestErrorKind.EMPTY_RESPONSE, url, timeout_ms, elapsed_ms, status_code=response.status_code)
            raise OutboundRequestError(
                RequestErrorKind.EMPTY_RESPONSE,
                "Endpoint returned an empty response body",
                url=url,
                status_code=response.status_code,
                body=text,
            )

        try:
            parsed = json.loads(text)
        except (ValueError, RecursionError) as exc:
            self._log_failure(
                RequestErrorKind.MALFORMED_RESPONSE,
                url,
                timeout_ms,
                elapsed_ms,
                exc=exc,
                status_code=response.status_code,
                body=text,
            )
            raise OutboundRequestError(
                RequestErrorKind.MALFORMED_RESPONSE,
                f"Invalid JSON response: {exc}. Response: {_preview(text, 100)}",
                url=url,
                status_code=response.status_code,
                body=text,
            ) from exc

        # Some workflow engines wrap a single object in a list.
        if isinstance(parsed, list) and len(parsed) == 1 and isinstance(parsed[0], dict):
            parsed = parsed[0]
        if not isinstance(parsed, dict):
            self._log_failure(
                RequestErrorKind.MALFORMED_RESPONSE,
                url,
                timeout_ms,
                elapsed_ms,
                status_code=response.status_code,
                body=text,
            )
            raise OutboundRequestError(
                RequestErrorKind.MALFORMED_RESPONSE,
                f"Expected a JSON object, got {type(parsed).__name__}",
                url=url,
                status_code=response.status_code,
                body=text,
            )
        return parsed

    @staticmethod
    def _log_failure(
        kind: RequestErrorKind,
        url: str,
        timeout_ms: int,
        elapsed_ms: int,
        *,
        exc: Optional[BaseException] = None,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
    ) -> None:
        diagnosis, suggestion = _DIAGNOSES[kind]
        details: Dict[str, Any] = {
            "errorType": kind.value,
            "url": url,
            "host": _host_of(url),
            "timeoutMs": timeout_ms,
            "elapsedMs": elapsed_ms,
            "diagnosis": diagnosis,
            "suggestion": suggestion,
        }
        if status_code is not None:
            details["status"] = status_code
        if body is not None:
            details["responseBody"] = _preview(body)
        if exc is not None:
            details["cause"] = _describe_cause(exc)
        logger.error("❌ Outbound request failed | %s", json.dumps(details, default=str))
