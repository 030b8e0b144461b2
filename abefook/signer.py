"""
AbeFook Request Signing

Builds the final parameter set for a REST call and signs it the way the
legacy Facebook REST API expects: md5 over the key-sorted ``key=value``
concatenation followed by the shared secret.
"""

import hashlib
import threading
import time
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, Tuple

from .types import FacebookConfig, ResponseFormat

# Keys the signer owns. Values supplied by callers under these names are replaced.
RESERVED_PARAMETERS = ("method", "api_key", "format", "call_id", "access_token", "v")


class CallIdGenerator:
    """Strictly increasing call ids derived from the wall clock."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._last = 0
        self._lock = threading.Lock()

    def __call__(self) -> str:
        with self._lock:
            value = int(self._clock() * 1000)
            if value <= self._last:
                value = self._last + 1
            self._last = value
            return str(value)


_default_call_ids = CallIdGenerator()


def normalize_value(value: Any) -> str:
    """
    Convert a parameter value to the string that gets signed.

    Sequences of strings and the equivalent comma separated string produce
    the same result: ``["a", "b"]`` and ``"a,b"`` both become ``"a,b"``.
    """
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return ",".join(normalize_value(v) for v in value)
    return str(value)


def signature_for(parameters: Mapping[str, str], secret: str) -> str:
    """md5 hex digest of the sorted key=value pairs followed by the secret."""
    payload = "".join(f"{key}={parameters[key]}" for key in sorted(parameters))
    return hashlib.md5((payload + secret).encode("utf-8")).hexdigest()


def sign(
    method: str,
    parameters: Optional[Mapping[str, Any]],
    secret: str,
    session_token: Optional[str],
    *,
    api_key: str,
    response_format: ResponseFormat = ResponseFormat.XML,
    version: str = "1.0",
    call_id: Optional[str] = None,
) -> Tuple[Dict[str, str], str]:
    """
    Sign a call.

    Args:
        method: REST method name, e.g. ``users.getInfo``
        parameters: Caller parameters; never mutated. Entries set to None are left out
        secret: Shared signing secret
        session_token: Access token attached to the call, omitted when empty
        api_key: Application id
        response_format: Value of the ``format`` parameter
        version: Value of the ``v`` parameter
        call_id: Nonce; generated from the clock when not given

    Returns:
        (final parameters including ``sig``, signature)
    """
    final: Dict[str, str] = {
        key: normalize_value(value)
        for key, value in (parameters or {}).items()
        if key not in RESERVED_PARAMETERS and key != "sig" and value is not None
    }
    final["method"] = method
    final["api_key"] = api_key
    final["format"] = response_format.value.lower()
    final["call_id"] = call_id if call_id is not None else _default_call_ids()
    final["v"] = version
    if session_token:
        final["access_token"] = session_token

    signature = signature_for(final, secret)
    final["sig"] = signature
    return final, signature


class Signer:
    """Signs calls with the settings of one FacebookConfig."""

    def __init__(
        self,
        config: FacebookConfig,
        call_id_factory: Optional[Callable[[], str]] = None,
    ) -> None:
        self._config = config
        self._call_id_factory = call_id_factory or _default_call_ids

    def sign(
        self,
        method: str,
        parameters: Optional[Mapping[str, Any]],
        session_token: Optional[str],
        response_format: Optional[ResponseFormat] = None,
    ) -> Tuple[Dict[str, str], str]:
        return sign(
            method,
            parameters,
            self._config.secret,
            session_token,
            api_key=self._config.app_id,
            response_format=response_format or self._config.response_format,
            version=self._config.api_version,
            call_id=self._call_id_factory(),
        )


def sorted_items(parameters: Mapping[str, str]) -> Sequence[Tuple[str, str]]:
    """Parameters in the order they are put on the wire."""
    return [(key, parameters[key]) for key in sorted(parameters)]
