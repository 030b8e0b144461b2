"""
AbeFook

A Python client for the Facebook REST API: OAuth desktop login with stored
token validation, plus signed asynchronous API calls with automatic retry
of transient failures.
"""

from .errors import (
    APIError,
    ConfigurationError,
    ErrorCodeTable,
    ErrorKind,
    FacebookError,
    ParseError,
    TransportError,
    classify,
    is_facebook_error,
    is_retryable_error,
)
from .login import (
    FacebookLogin,
    LoginPresenter,
    LoginPrompt,
    LoginRedirect,
    build_extend_permissions_url,
    build_login_url,
    parse_login_redirect,
)
from .parser import XMLNode, parse
from .request import FacebookRequest
from .retry import RetryDecision, retry_decision
from .session import FacebookSession
from .signals import REQUEST_ACTIVITY_ENDED, REQUEST_ACTIVITY_STARTED, ActivitySignals, signals
from .signer import Signer, sign
from .storage import EnvironmentStorage, FileStorage, MemoryStorage
from .types import (
    CredentialStore,
    FacebookConfig,
    LoginState,
    PresentationMode,
    RequestCallbacks,
    RequestState,
    RequestType,
    Response,
    ResponseFormat,
)

__version__ = "1.0.0"
__all__ = [
    # Controllers
    "FacebookLogin",
    "FacebookRequest",
    "FacebookSession",
    # Login
    "LoginPresenter",
    "LoginPrompt",
    "LoginRedirect",
    "build_login_url",
    "build_extend_permissions_url",
    "parse_login_redirect",
    # Types
    "FacebookConfig",
    "CredentialStore",
    "LoginState",
    "PresentationMode",
    "RequestCallbacks",
    "RequestState",
    "RequestType",
    "Response",
    "ResponseFormat",
    # Protocol pieces
    "Signer",
    "sign",
    "XMLNode",
    "parse",
    "classify",
    "RetryDecision",
    "retry_decision",
    # Signals
    "ActivitySignals",
    "signals",
    "REQUEST_ACTIVITY_STARTED",
    "REQUEST_ACTIVITY_ENDED",
    # Errors
    "FacebookError",
    "ConfigurationError",
    "TransportError",
    "ParseError",
    "APIError",
    "ErrorKind",
    "ErrorCodeTable",
    "is_facebook_error",
    "is_retryable_error",
    # Storage
    "MemoryStorage",
    "FileStorage",
    "EnvironmentStorage",
]
