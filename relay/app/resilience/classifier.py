"""Error classification for the resilience layer.

Raw failures arrive in many shapes: httpx exceptions, builtin socket errors,
relay exceptions, plain dicts decoded from a response, bare strings or None.
Each is first reduced to one of a closed set of shapes and then mapped onto
the error taxonomy. Classification never raises.
"""

import errno
import socket
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Union

import httpx

from relay.app.core.logging import get_logger
from relay.app.resilience.errors import (
    DEFAULT_RETRYABLE_TYPES,
    ClassifiedError,
    ErrorType,
)

logger = get_logger(__name__)

NETWORK_ERROR_CODES = frozenset(
    {
        "ECONNRESET",
        "ETIMEDOUT",
        "EHOSTUNREACH",
        "ENETUNREACH",
        "ENOTFOUND",
        "EAI_AGAIN",
        "ECONNREFUSED",
        "ECONNABORTED",
    }
)

_NETWORK_MESSAGES = {
    "ECONNREFUSED": "Connection refused - Unable to connect to the API server",
    "ENOTFOUND": "DNS resolution failed - Cannot resolve the API hostname",
    "EAI_AGAIN": "DNS resolution failed - Temporary failure in name resolution",
    "ETIMEDOUT": "Connection timeout - The API did not respond in time",
    "ECONNRESET": "Connection reset - Server closed the connection unexpectedly",
    "ECONNABORTED": "Connection aborted - Socket connection was terminated",
    "EHOSTUNREACH": "Host unreachable - Cannot reach the API server",
    "ENETUNREACH": "Network unreachable - Cannot reach the API server",
}

_SERVER_MESSAGES = {
    500: "Internal server error - The API is experiencing issues",
    502: "Bad gateway - API gateway error",
    503: "Service unavailable - remote API is temporarily unavailable",
    504: "Gateway timeout - API response timeout",
}

_DNS_FAILURE_HINTS = (
    "name or service not known",
    "nodename nor servname",
    "getaddrinfo",
    "temporary failure in name resolution",
)


@dataclass
class TypedShape:
    """Failure that already names its taxonomy type."""

    error_type: ErrorType
    code: int
    message: str
    retryable: Optional[bool] = None
    retry_after: Optional[float] = None


@dataclass
class StatusShape:
    """Failure carrying an HTTP status."""

    status: int
    message: str
    headers: Any = None
    body: Any = None
    retry_after: Optional[float] = None


@dataclass
class CodeShape:
    """Failure carrying a symbolic network error code."""

    code: str
    message: str
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass
class MessageShape:
    """Anything else: only a message can be recovered."""

    message: str


ErrorShape = Union[TypedShape, StatusShape, CodeShape, MessageShape]


def _attr(obj: Any, name: str) -> Any:
    """getattr that tolerates misbehaving properties."""
    try:
        return getattr(obj, name, None)
    except Exception:
        return None


def _lookup(obj: Any, name: str) -> Any:
    if isinstance(obj, Mapping):
        try:
            return obj.get(name)
        except Exception:
            return None
    return _attr(obj, name)


def _text(obj: Any) -> str:
    """str() that tolerates a raising __str__."""
    try:
        return str(obj)
    except Exception:
        return ""


def _as_error_type(value: Any) -> Optional[ErrorType]:
    if isinstance(value, ErrorType):
        return value
    if isinstance(value, str):
        try:
            return ErrorType(value.lower())
        except ValueError:
            return None
    return None


def _as_status(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if 100 <= value <= 599 else None
    if isinstance(value, str) and value.strip().isdecimal():
        try:
            return _as_status(int(value.strip()))
        except ValueError:
            return None
    return None


def _as_seconds(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if value >= 0 else None
    try:
        seconds = int(_text(value).strip())
    except ValueError:
        return None
    return float(seconds) if seconds >= 0 else None


def _retry_after_from_headers(headers: Any) -> Optional[float]:
    if headers is None:
        return None
    try:
        items = list(headers.items())
    except Exception:
        return None
    for key, value in items:
        if _text(key).lower() == "retry-after":
            return _as_seconds(value)
    return None


def _message_of(raw: Any, default: str = "No error message available") -> str:
    if isinstance(raw, str):
        return raw or default
    message = _lookup(raw, "message")
    if isinstance(message, str) and message:
        return message
    if isinstance(raw, BaseException):
        return _text(raw) or type(raw).__name__
    return default


def _response_body(response: Any) -> Any:
    try:
        return response.json()
    except Exception:
        return _attr(response, "text")


def _status_from_response(raw: Any, response: Any) -> Optional[StatusShape]:
    status = _as_status(_attr(response, "status_code")) or _as_status(
        _lookup(response, "status")
    )
    if status is None:
        return None
    headers = _lookup(response, "headers")
    if isinstance(response, Mapping):
        body = response.get("data", response.get("body"))
    else:
        body = _response_body(response)
    return StatusShape(
        status=status,
        message=_message_of(raw),
        headers=headers,
        body=body,
        retry_after=_retry_after_from_headers(headers),
    )


def _network_code_of_exception(raw: BaseException) -> Optional[str]:
    # Order matters: socket.gaierror and the Connection* errors are OSErrors
    if isinstance(raw, httpx.TimeoutException):
        return "ETIMEDOUT"
    if isinstance(raw, httpx.ConnectError):
        text = _text(raw).lower()
        if any(hint in text for hint in _DNS_FAILURE_HINTS):
            return "ENOTFOUND"
        return "ECONNREFUSED"
    if isinstance(raw, httpx.NetworkError):
        return "ECONNRESET"
    if isinstance(raw, socket.gaierror):
        return "ENOTFOUND"
    if isinstance(raw, ConnectionResetError):
        return "ECONNRESET"
    if isinstance(raw, ConnectionRefusedError):
        return "ECONNREFUSED"
    if isinstance(raw, ConnectionAbortedError):
        return "ECONNABORTED"
    if isinstance(raw, TimeoutError):
        return "ETIMEDOUT"
    if isinstance(raw, OSError) and raw.errno in errno.errorcode:
        return errno.errorcode[raw.errno]
    return None


def normalize(raw: Any) -> ErrorShape:
    """Reduce an arbitrary failure to one of the known shapes."""
    if raw is None:
        return MessageShape("No error message available")
    if isinstance(raw, str):
        if raw.strip().upper() in NETWORK_ERROR_CODES:
            return CodeShape(code=raw.strip().upper(), message=raw)
        return MessageShape(raw or "No error message available")

    # 1. Explicit taxonomy type
    error_type = _as_error_type(_lookup(raw, "type")) or _as_error_type(
        _lookup(raw, "error_type")
    )
    if error_type is not None:
        code = _lookup(raw, "code")
        retryable = _lookup(raw, "retryable")
        return TypedShape(
            error_type=error_type,
            code=code if isinstance(code, int) and not isinstance(code, bool) else 0,
            message=_message_of(raw),
            retryable=retryable if isinstance(retryable, bool) else None,
            retry_after=_as_seconds(
                _lookup(raw, "retry_after_seconds") or _lookup(raw, "retry_after")
            ),
        )

    # 2. HTTP status, on a wrapped response or on the failure itself
    if isinstance(raw, httpx.HTTPStatusError):
        shape = _status_from_response(raw, raw.response)
        if shape is not None:
            return shape
    response = _lookup(raw, "response")
    if response is not None:
        shape = _status_from_response(raw, response)
        if shape is not None:
            return shape
    status = _as_status(_lookup(raw, "status_code")) or _as_status(
        _lookup(raw, "status")
    )
    if status is not None:
        headers = _lookup(raw, "headers")
        retry_after = _as_seconds(_lookup(raw, "retry_after"))
        if retry_after is None:
            retry_after = _retry_after_from_headers(headers)
        return StatusShape(
            status=status,
            message=_message_of(raw),
            headers=headers,
            body=_lookup(raw, "body") or _lookup(raw, "data"),
            retry_after=retry_after,
        )

    # 3. Network-level error code
    if isinstance(raw, BaseException):
        code = _network_code_of_exception(raw)
        if code is not None:
            return CodeShape(
                code=code,
                message=_message_of(raw),
                details={"exception": type(raw).__name__},
            )
    code = _lookup(raw, "code")
    if isinstance(code, str) and code:
        return CodeShape(code=code.upper(), message=_message_of(raw))

    return MessageShape(_message_of(raw))


def _body_message(body: Any) -> Optional[str]:
    if not isinstance(body, Mapping):
        return None
    meta = body.get("meta")
    if isinstance(meta, Mapping) and isinstance(meta.get("msg"), str):
        return meta["msg"]
    message = body.get("message")
    return message if isinstance(message, str) else None


class ErrorClassifier:
    """Maps raw failures onto ClassifiedError.

    Precedence (first match wins): explicit taxonomy type, HTTP status,
    recognized network error code, fallback to UNKNOWN.
    """

    def classify(self, raw_error: Any) -> ClassifiedError:
        """Classify a failure. Total: never raises for any input."""
        if isinstance(raw_error, ClassifiedError):
            return raw_error

        shape = normalize(raw_error)
        if isinstance(shape, TypedShape):
            classified = self._from_type(shape)
        elif isinstance(shape, StatusShape):
            classified = self._from_status(shape)
        elif isinstance(shape, CodeShape):
            classified = self._from_code(shape)
        else:
            classified = ClassifiedError(
                type=ErrorType.UNKNOWN,
                code=0,
                message=f"Unknown error occurred: {shape.message}",
                retryable=False,
                details={"original_message": shape.message},
            )
        classified.original_error = raw_error
        return classified

    def _from_type(self, shape: TypedShape) -> ClassifiedError:
        retryable = shape.retryable
        if retryable is None:
            retryable = shape.error_type in DEFAULT_RETRYABLE_TYPES
        return ClassifiedError(
            type=shape.error_type,
            code=shape.code,
            message=shape.message,
            retryable=retryable,
            retry_after_seconds=shape.retry_after,
        )

    def _from_status(self, shape: StatusShape) -> ClassifiedError:
        status = shape.status
        details: Dict[str, Any] = {"status": status}
        if shape.body is not None:
            details["body"] = shape.body

        if status in (401, 403):
            message = (
                "Unauthorized - Invalid API credentials or expired token"
                if status == 401
                else "Forbidden - Insufficient permissions for this operation"
            )
            return ClassifiedError(
                type=ErrorType.AUTHENTICATION,
                code=status,
                message=message,
                retryable=False,
                details=details,
            )

        if status == 429:
            message = "Rate limit exceeded - Too many requests to the API"
            if shape.retry_after is not None:
                message += f". Retry after {shape.retry_after:g} seconds"
            else:
                message += ". Please wait before making more requests"
            return ClassifiedError(
                type=ErrorType.RATE_LIMIT,
                code=status,
                message=message,
                retryable=True,
                retry_after_seconds=shape.retry_after,
                details=details,
            )

        if status == 404:
            hint = (_body_message(shape.body) or "").lower()
            if "blog" in hint:
                message = "Blog not found - The specified blog does not exist or is not accessible"
            elif "post" in hint:
                message = "Post not found - The specified post does not exist or has been deleted"
            else:
                message = "Resource not found - The requested resource does not exist"
            return ClassifiedError(
                type=ErrorType.NOT_FOUND,
                code=status,
                message=message,
                retryable=False,
                details=details,
            )

        if status == 400:
            errors = shape.body.get("errors") if isinstance(shape.body, Mapping) else None
            message = (
                f"Bad request: {errors}"
                if errors
                else "Bad request - Invalid parameters or request format"
            )
            return ClassifiedError(
                type=ErrorType.VALIDATION,
                code=status,
                message=message,
                retryable=False,
                details=details,
            )

        if 500 <= status <= 599:
            return ClassifiedError(
                type=ErrorType.API_ERROR,
                code=status,
                message=_SERVER_MESSAGES.get(
                    status, f"Server error ({status}) - API error"
                ),
                retryable=True,
                details=details,
            )

        return ClassifiedError(
            type=ErrorType.API_ERROR,
            code=status,
            message=f"HTTP {status}: {_body_message(shape.body) or 'Unknown API error'}",
            retryable=False,
            details=details,
        )

    def _from_code(self, shape: CodeShape) -> ClassifiedError:
        details = {"error_code": shape.code, **shape.details}
        if shape.code in NETWORK_ERROR_CODES:
            return ClassifiedError(
                type=ErrorType.NETWORK,
                code=0,
                message=_NETWORK_MESSAGES[shape.code],
                retryable=True,
                details=details,
            )
        return ClassifiedError(
            type=ErrorType.UNKNOWN,
            code=0,
            message=f"Unknown error occurred: {shape.message}",
            retryable=False,
            details=details,
        )


@dataclass
class FailurePattern:
    """Summary of recent failures with a suggested remedy."""

    pattern: str
    severity: str  # low | medium | high
    recommendation: str


def detect_failure_pattern(errors: List[ClassifiedError]) -> FailurePattern:
    """Inspect the last ten classified errors for a recognizable pattern.

    Args:
        errors: Classified errors, oldest first

    Returns:
        The detected FailurePattern
    """
    if not errors:
        return FailurePattern(
            pattern="no_errors",
            severity="low",
            recommendation="Network is operating normally",
        )

    recent = errors[-10:]
    codes = [e.details.get("error_code") for e in recent]
    timeouts = sum(
        1
        for e, code in zip(recent, codes)
        if code == "ETIMEDOUT" or "timeout" in e.message.lower()
    )
    connection = sum(1 for code in codes if code in ("ECONNREFUSED", "ECONNRESET"))
    dns = sum(1 for code in codes if code in ("ENOTFOUND", "EAI_AGAIN"))

    if timeouts >= 5:
        result = FailurePattern(
            pattern="high_timeout_rate",
            severity="high",
            recommendation="Increase timeout values or check network latency. Consider reducing request frequency.",
        )
    elif connection >= 5:
        result = FailurePattern(
            pattern="connection_instability",
            severity="high",
            recommendation="Check network connectivity and firewall settings. The API may be experiencing issues.",
        )
    elif dns >= 3:
        result = FailurePattern(
            pattern="dns_resolution_failure",
            severity="medium",
            recommendation="Check DNS settings and network configuration. Try using alternative DNS servers.",
        )
    elif len(recent) >= 5:
        result = FailurePattern(
            pattern="general_network_instability",
            severity="medium",
            recommendation="Network appears unstable. Consider reducing the request rate.",
        )
    else:
        return FailurePattern(
            pattern="sporadic_errors",
            severity="low",
            recommendation="Occasional network errors are normal. Monitor for patterns.",
        )

    logger.warning(
        f"Detected failure pattern '{result.pattern}' ({result.severity}) "
        f"across {len(recent)} recent errors"
    )
    return result
