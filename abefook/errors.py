"""
AbeFook Error Classes

Error taxonomy for the request engine and the error classifier that turns a
parsed Facebook error payload into a structured APIError.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional


class ErrorKind(str, Enum):
    """Coarse classification of a Facebook error code."""
    RATE_LIMITED = "rate_limited"
    UNAVAILABLE = "unavailable"
    UNKNOWN = "unknown"
    PARAMETER_INVALID = "parameter_invalid"
    AUTH_EXPIRED = "auth_expired"
    OTHER = "other"


DEFAULT_ERROR_CODES: Dict[int, ErrorKind] = {
    1: ErrorKind.UNKNOWN,
    2: ErrorKind.UNAVAILABLE,
    4: ErrorKind.RATE_LIMITED,
    17: ErrorKind.RATE_LIMITED,
    100: ErrorKind.PARAMETER_INVALID,
    102: ErrorKind.AUTH_EXPIRED,
    190: ErrorKind.AUTH_EXPIRED,
}

DEFAULT_RETRYABLE_KINDS: FrozenSet[ErrorKind] = frozenset(
    {ErrorKind.RATE_LIMITED, ErrorKind.UNAVAILABLE, ErrorKind.UNKNOWN}
)


class ErrorCodeTable:
    """
    Explicit mapping of numeric error codes to error kinds.

    Codes missing from the table (permission errors 10 and 200-299 included)
    classify as ErrorKind.OTHER. Retryability is decided per kind.
    """

    def __init__(
        self,
        codes: Optional[Mapping[int, ErrorKind]] = None,
        retryable_kinds: Optional[Iterable[ErrorKind]] = None,
    ) -> None:
        self.codes: Dict[int, ErrorKind] = dict(DEFAULT_ERROR_CODES if codes is None else codes)
        self.retryable_kinds: FrozenSet[ErrorKind] = frozenset(
            DEFAULT_RETRYABLE_KINDS if retryable_kinds is None else retryable_kinds
        )

    def kind_for(self, code: int) -> ErrorKind:
        return self.codes.get(code, ErrorKind.OTHER)

    def is_retryable(self, kind: ErrorKind) -> bool:
        return kind in self.retryable_kinds

    def __repr__(self) -> str:
        return f"ErrorCodeTable(codes={self.codes!r}, retryable_kinds={sorted(k.value for k in self.retryable_kinds)!r})"


class FacebookError(Exception):
    """Base error class for AbeFook."""

    def __init__(
        self,
        message: str,
        code: Any = "FACEBOOK_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "name": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
            "timestamp": self.timestamp,
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"


class ConfigurationError(FacebookError):
    """Programming-usage fault: missing method, missing handler, bad config."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "CONFIGURATION_ERROR", details)


class TransportError(FacebookError):
    """Connection-level failure (DNS, timeout, TLS, reset). No payload exists."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        retryable: bool = True,
    ):
        super().__init__(message, "TRANSPORT_ERROR", details)
        self.retryable = retryable


class ParseError(FacebookError):
    """Empty or malformed response body."""

    def __init__(self, message: str, raw_body: Optional[str] = None):
        super().__init__(message, "PARSE_ERROR", {"raw_body": raw_body} if raw_body else None)
        self.raw_body = raw_body


class APIError(FacebookError):
    """Error reported by Facebook in a well formed response."""

    def __init__(
        self,
        kind: ErrorKind,
        code: int,
        message: str,
        request_args: Optional[List[Dict[str, str]]] = None,
        retryable: bool = False,
    ):
        super().__init__(
            message,
            code,
            {"kind": kind.value, "request_args": request_args} if request_args else {"kind": kind.value},
        )
        self.kind = kind
        self.request_args = request_args or []
        self.retryable = retryable

    def __repr__(self) -> str:
        return f"APIError(kind={self.kind.value!r}, code={self.code!r}, message={self.message!r})"


def is_facebook_error(error: Any) -> bool:
    """Check if error is a FacebookError."""
    return isinstance(error, FacebookError)


def is_retryable_error(error: Any, table: Optional[ErrorCodeTable] = None) -> bool:
    """
    Check if error is retryable.

    With a table, API errors are judged by their kind against that table
    instead of the flag set when they were classified.
    """
    if isinstance(error, APIError) and table is not None:
        return table.is_retryable(error.kind)
    if isinstance(error, (TransportError, APIError)):
        return error.retryable
    return False


def _error_fields(parsed: Any) -> Optional[Dict[str, Any]]:
    """Pull error_code / error_msg / request_args out of a parsed payload."""
    # Imported here, the parser module imports this one for ParseError.
    from .parser import XMLNode

    if isinstance(parsed, XMLNode):
        code_node = parsed.child("error_code")
        msg_node = parsed.child("error_msg")
        if code_node is None or msg_node is None:
            return None
        args: List[Dict[str, str]] = []
        request_args = parsed.child("request_args")
        if request_args is not None:
            for arg in request_args.children("arg"):
                key = arg.child("key")
                value = arg.child("value")
                args.append({
                    "key": key.text if key is not None else "",
                    "value": value.text if value is not None else "",
                })
        return {"code": code_node.text, "message": msg_node.text, "request_args": args}

    if isinstance(parsed, Mapping):
        # Graph style payloads nest the error one level down
        if "error_code" not in parsed and isinstance(parsed.get("error"), Mapping):
            parsed = parsed["error"]
            if "code" in parsed and "message" in parsed:
                return {"code": parsed["code"], "message": parsed["message"], "request_args": []}
        if "error_code" in parsed and "error_msg" in parsed:
            request_args = parsed.get("request_args")
            return {
                "code": parsed["error_code"],
                "message": parsed["error_msg"],
                "request_args": list(request_args) if isinstance(request_args, list) else [],
            }
    return None


def classify(parsed: Any, table: Optional[ErrorCodeTable] = None) -> Optional[APIError]:
    """
    Inspect a parsed response and return an APIError if it describes one.

    A payload is an error iff it carries both an error code and an error
    message. Returns None for well formed non-error payloads.

    Args:
        parsed: Value produced by ``parser.parse`` (XMLNode, dict, list, scalar)
        table: Code to kind mapping; defaults to ErrorCodeTable()
    """
    fields = _error_fields(parsed)
    if fields is None:
        return None

    table = table or ErrorCodeTable()
    try:
        code = int(str(fields["code"]).strip())
    except (TypeError, ValueError):
        code = 0
    kind = table.kind_for(code)
    return APIError(
        kind=kind,
        code=code,
        message=str(fields["message"] or ""),
        request_args=fields["request_args"],
        retryable=table.is_retryable(kind),
    )
