"""
AbeFook Type Definitions

Configuration, enums and value types shared by the login controller and the
request engine.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional, Protocol, runtime_checkable

from .errors import APIError, ErrorCodeTable, FacebookError

if TYPE_CHECKING:
    from .request import FacebookRequest


DEFAULT_API_URL = "https://api.facebook.com/restserver.php"
DEFAULT_API_VERSION = "1.0"


class RequestType(str, Enum):
    """HTTP verb used to deliver the signed parameters."""
    GET = "GET"
    POST = "POST"


class ResponseFormat(str, Enum):
    """Response format requested through the ``format`` parameter."""
    XML = "XML"
    JSON = "JSON"


class RequestState(str, Enum):
    """Lifecycle of a single request instance."""
    IDLE = "idle"
    BUILDING = "building"
    AWAITING_NETWORK = "awaiting_network"
    PARSING_RESPONSE = "parsing_response"
    TRANSPORT_FAILED = "transport_failed"
    RETRY_SCHEDULED = "retry_scheduled"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset({RequestState.SUCCEEDED, RequestState.FAILED, RequestState.CANCELLED})


class LoginState(str, Enum):
    """Session establishment states of the login controller."""
    NO_SESSION = "no_session"
    VALIDATING = "validating"
    PRESENTING_LOGIN = "presenting_login"
    AUTHENTICATED = "authenticated"
    LOGGED_OUT = "logged_out"


class PresentationMode(str, Enum):
    """How the login presenter should show its surface."""
    WINDOW = "window"
    MODAL = "modal"
    SHEET = "sheet"


@runtime_checkable
class CredentialStore(Protocol):
    """Persisted credential interface for custom implementations."""

    def get_access_token(self) -> Optional[str]:
        """Get the stored access token."""
        ...

    def get_uid(self) -> Optional[str]:
        """Get the stored user id."""
        ...

    def set_credentials(self, access_token: str, uid: Optional[str]) -> None:
        """Persist an access token and user id."""
        ...

    def clear_credentials(self) -> None:
        """Remove all persisted credentials."""
        ...


@dataclass
class FacebookConfig:
    """Client configuration shared by login and requests."""

    # Application id as assigned by Facebook, sent as api_key
    app_id: str
    # Shared secret used to sign requests
    secret: str = ""
    # REST endpoint every call is sent to
    base_url: str = DEFAULT_API_URL
    # Value of the "v" parameter
    api_version: str = DEFAULT_API_VERSION
    # Default response format for new requests
    response_format: ResponseFormat = ResponseFormat.XML
    # Default HTTP verb for new requests
    request_type: RequestType = RequestType.POST
    # Attempts per request before giving up (default: 5)
    max_attempts: int = 5
    # Connection timeout in seconds (default: 30)
    timeout: float = 30.0
    # Delay before resubmitting a retryable request, in seconds
    retry_delay: float = 0.0
    # Upper bound of random jitter added to retry_delay, in seconds
    retry_jitter: float = 0.0
    # Numeric error code to kind mapping
    error_codes: ErrorCodeTable = field(default_factory=ErrorCodeTable)
    # Key prefix for persisted credentials
    namespace: str = "abefook"
    # Enable debug logging (default: False)
    debug: bool = False
    # Custom headers to include in requests
    headers: Optional[Dict[str, str]] = None


@dataclass(frozen=True)
class Response:
    """A successfully parsed response body."""

    raw_body: str
    parsed: Any
    format: ResponseFormat = ResponseFormat.XML


ResponseHandler = Callable[["FacebookRequest", Response], None]
APIErrorHandler = Callable[["FacebookRequest", APIError], None]
FailureHandler = Callable[["FacebookRequest", FacebookError], None]
ProgressHandler = Callable[["FacebookRequest", int, int, int], None]


@dataclass
class RequestCallbacks:
    """
    Outcome handlers registered by the caller.

    Every handler is optional. An outcome without a registered handler is
    dropped after being logged.

    - on_response(request, Response): well formed response without an error
    - on_api_error(request, APIError): Facebook reported an error
    - on_failure(request, error): TransportError or ParseError
    - on_progress(request, bytes_written, total_written, total_expected)
    """

    on_response: Optional[ResponseHandler] = None
    on_api_error: Optional[APIErrorHandler] = None
    on_failure: Optional[FailureHandler] = None
    on_progress: Optional[ProgressHandler] = None
