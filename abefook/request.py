"""
AbeFook Request Engine

FacebookRequest owns one call to the REST API: it signs the parameters,
sends them asynchronously, retries transient failures and delivers exactly
one terminal outcome to the registered callbacks.

Usage:
    request = FacebookRequest(config, session, RequestCallbacks(
        on_response=lambda req, response: print(response.parsed),
        on_api_error=lambda req, error: print(error.kind),
        on_failure=lambda req, error: print(error),
    ))
    await request.send("users.getInfo", {"uids": uid, "fields": ["first_name", "last_name"]})
"""

import asyncio
import logging
from typing import Any, AsyncIterator, Dict, Mapping, Optional
from urllib.parse import urlencode

import httpx

from .errors import APIError, ConfigurationError, FacebookError, ParseError, TransportError, classify
from .parser import GenericValue, parse
from .retry import RetryDecision, retry_decision, retry_delay
from .session import FacebookSession
from .signals import REQUEST_ACTIVITY_ENDED, REQUEST_ACTIVITY_STARTED, ActivitySignals, signals
from .signer import Signer, sorted_items
from .types import (
    TERMINAL_STATES,
    FacebookConfig,
    RequestCallbacks,
    RequestState,
    RequestType,
    Response,
    ResponseFormat,
    ResponseHandler,
)

logger = logging.getLogger("abefook.request")

# Upload chunk size used when progress is reported
PROGRESS_CHUNK_SIZE = 16 * 1024


def validate_config(config: FacebookConfig) -> None:
    """Validate configuration."""
    if not config.app_id:
        raise ConfigurationError("app_id is required")
    if config.max_attempts < 1:
        raise ConfigurationError("max_attempts must be at least 1", {"max_attempts": config.max_attempts})
    if config.timeout <= 0:
        raise ConfigurationError("timeout must be positive", {"timeout": config.timeout})


class FacebookRequest:
    """
    A single REST API call and its retry state.

    The parameters passed in must not contain ``access_token``; the token of
    the session is attached when the request is built. Lists of strings and
    comma separated strings are accepted interchangeably for list parameters.

    A request may be sent again once it reached a terminal state.
    """

    def __init__(
        self,
        config: FacebookConfig,
        session: Optional[FacebookSession] = None,
        callbacks: Optional[RequestCallbacks] = None,
        *,
        response_handler: Optional[ResponseHandler] = None,
        method: Optional[str] = None,
        parameters: Optional[Mapping[str, Any]] = None,
        request_type: Optional[RequestType] = None,
        response_format: Optional[ResponseFormat] = None,
        max_attempts: Optional[int] = None,
        timeout: Optional[float] = None,
        signer: Optional[Signer] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        sync_http_client: Optional[httpx.Client] = None,
        activity: Optional[ActivitySignals] = None,
    ) -> None:
        validate_config(config)

        self._config = config
        self._session = session
        self.callbacks = callbacks or RequestCallbacks()
        # Overrides callbacks.on_response for successful responses
        self.response_handler = response_handler
        self._signer = signer or Signer(config)
        self._http_client = http_client
        self._sync_http_client = sync_http_client
        self._activity = activity or signals

        self.method = method
        self._parameters: Dict[str, Any] = {}
        if parameters is not None:
            self.parameters = parameters
        self.request_type = request_type or config.request_type
        self.response_format = response_format or config.response_format
        self.max_attempts = max_attempts if max_attempts is not None else config.max_attempts
        self.timeout = timeout if timeout is not None else config.timeout
        if self.max_attempts < 1:
            raise ConfigurationError("max_attempts must be at least 1", {"max_attempts": self.max_attempts})

        # State
        self._state = RequestState.IDLE
        self._attempts_made = 0
        self._raw_response: Optional[str] = None
        self._task: Optional["asyncio.Task[None]"] = None
        self._cancel_requested = False

    def _log(self, message: str, *args: Any) -> None:
        """Log debug message."""
        if self._config.debug:
            logger.debug(f"[AbeFook] {message}", *args)

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def parameters(self) -> Dict[str, Any]:
        return dict(self._parameters)

    @parameters.setter
    def parameters(self, params: Mapping[str, Any]) -> None:
        self._parameters = dict(params)

    @property
    def state(self) -> RequestState:
        return self._state

    @property
    def attempts_made(self) -> int:
        return self._attempts_made

    @property
    def raw_response(self) -> Optional[str]:
        """Unparsed body of the most recent attempt."""
        return self._raw_response

    @property
    def task(self) -> Optional["asyncio.Task[None]"]:
        return self._task

    # =========================================================================
    # Sending
    # =========================================================================

    def _resolve_method(self) -> str:
        """Take the method from the field or, for older callers, from parameters."""
        legacy = self._parameters.pop("method", None)
        if not self.method and legacy:
            self.method = str(legacy)
        if not self.method:
            raise ConfigurationError(
                "No method set. Set the method property or pass a 'method' key in parameters."
            )
        return self.method

    def send(
        self,
        method: Optional[str] = None,
        parameters: Optional[Mapping[str, Any]] = None,
    ) -> "asyncio.Task[None]":
        """
        Start the request on the running event loop.

        Args:
            method: Facebook method to call, e.g. ``users.getInfo``
            parameters: Parameters for the method; may carry a ``method`` key

        Returns:
            The task driving the request; awaiting it waits for the terminal
            callback. Outcomes are delivered to the callbacks, never raised.

        Raises:
            ConfigurationError: no method, no running loop, or already in flight
        """
        in_flight = self._task is not None and not self._task.done()
        if in_flight or (self._state not in TERMINAL_STATES and self._state != RequestState.IDLE):
            raise ConfigurationError("Request is already in progress", {"state": self._state.value})
        if method is not None:
            self.method = method
        if parameters is not None:
            self.parameters = parameters
        self._resolve_method()

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            raise ConfigurationError("send() must be called from a running event loop")

        self._state = RequestState.IDLE
        self._attempts_made = 0
        self._cancel_requested = False
        self._task = loop.create_task(self._run())
        return self._task

    # Older name
    send_request = send

    def cancel(self) -> bool:
        """
        Cancel the request if it is waiting on the network.

        No callback fires for a cancelled request. In any other state this is a
        no-op and returns False.
        """
        if self._state != RequestState.AWAITING_NETWORK or self._task is None or self._task.done():
            return False
        self._cancel_requested = True
        self._state = RequestState.CANCELLED
        self._task.cancel()
        self._log("Cancelled %s", self.method)
        return True

    cancel_request = cancel

    async def _run(self) -> None:
        owns_client = self._http_client is None
        client = self._http_client or httpx.AsyncClient(timeout=self.timeout)
        try:
            while True:
                error = await self._attempt(client)
                if error is None or self._cancel_requested:
                    return

                if retry_decision(error, self._attempts_made, self.max_attempts) == RetryDecision.RETRY:
                    self._state = RequestState.RETRY_SCHEDULED
                    self._log(
                        "Retrying %s after %s (attempt %d/%d)",
                        self.method, error.code, self._attempts_made, self.max_attempts,
                    )
                    delay = retry_delay(self._config.retry_delay, self._config.retry_jitter)
                    if delay > 0:
                        await asyncio.sleep(delay)
                    continue

                self._fail(error)
                return
        except asyncio.CancelledError:
            if not self._cancel_requested:
                raise
            self._state = RequestState.CANCELLED
        finally:
            if owns_client:
                await client.aclose()

    async def _attempt(self, client: httpx.AsyncClient) -> Optional[FacebookError]:
        """One build/send/parse cycle. Returns the error to act on, or None on success."""
        self._state = RequestState.BUILDING
        token = self._session.access_token if self._session is not None else None
        final, _ = self._signer.sign(self.method or "", self._parameters, token, self.response_format)
        self._attempts_made += 1
        self._log("Sending %s (attempt %d/%d)", self.method, self._attempts_made, self.max_attempts)

        self._state = RequestState.AWAITING_NETWORK
        self._activity.emit(REQUEST_ACTIVITY_STARTED)
        try:
            http_response = await self._exchange(client, final)
        except httpx.TimeoutException:
            self._state = RequestState.TRANSPORT_FAILED
            return TransportError("Request timeout", {"timeout": self.timeout})
        except httpx.RequestError as e:
            self._state = RequestState.TRANSPORT_FAILED
            return TransportError(str(e) or e.__class__.__name__, {"type": e.__class__.__name__})
        finally:
            self._activity.emit(REQUEST_ACTIVITY_ENDED)

        if self._cancel_requested:
            return None

        self._state = RequestState.PARSING_RESPONSE
        body = http_response.text
        self._raw_response = body
        try:
            parsed = parse(body, self.response_format)
        except ParseError as e:
            if http_response.status_code >= 500:
                return TransportError(
                    f"HTTP {http_response.status_code}", {"status_code": http_response.status_code}
                )
            return e

        api_error = classify(parsed, self._config.error_codes)
        if api_error is not None:
            return api_error

        self._state = RequestState.SUCCEEDED
        self._deliver_response(Response(body, parsed, self.response_format))
        return None

    async def _exchange(self, client: httpx.AsyncClient, final: Dict[str, str]) -> httpx.Response:
        items = sorted_items(final)
        headers: Dict[str, str] = {**(self._config.headers or {})}

        if self.request_type == RequestType.GET:
            return await client.get(
                self._config.base_url, params=items, headers=headers, timeout=self.timeout
            )

        body = urlencode(items).encode("utf-8")
        headers["Content-Type"] = "application/x-www-form-urlencoded"
        if self.callbacks.on_progress is not None:
            headers["Content-Length"] = str(len(body))
            return await client.post(
                self._config.base_url,
                content=self._progress_stream(body),
                headers=headers,
                timeout=self.timeout,
            )
        return await client.post(
            self._config.base_url, content=body, headers=headers, timeout=self.timeout
        )

    async def _progress_stream(self, body: bytes) -> AsyncIterator[bytes]:
        total = len(body)
        written = 0
        for offset in range(0, total, PROGRESS_CHUNK_SIZE):
            chunk = body[offset:offset + PROGRESS_CHUNK_SIZE]
            written += len(chunk)
            yield chunk
            if self.callbacks.on_progress is not None:
                self.callbacks.on_progress(self, len(chunk), written, total)

    # =========================================================================
    # Dispatch
    # =========================================================================

    def _deliver_response(self, response: Response) -> None:
        handler = self.response_handler or self.callbacks.on_response
        if handler is None:
            self._log("No response handler registered for %s, response dropped", self.method)
            return
        handler(self, response)

    def _fail(self, error: FacebookError) -> None:
        self._state = RequestState.FAILED
        logger.info(
            "Request %s failed after %d attempt(s): %r", self.method, self._attempts_made, error
        )
        if isinstance(error, APIError):
            if self.callbacks.on_api_error is not None:
                self.callbacks.on_api_error(self, error)
            else:
                self._log("No API error handler registered for %s, error dropped", self.method)
            return
        if self.callbacks.on_failure is not None:
            self.callbacks.on_failure(self, error)
        else:
            self._log("No failure handler registered for %s, error dropped", self.method)

    # =========================================================================
    # Synchronous Requests
    # =========================================================================

    def generate_url(
        self,
        method: Optional[str] = None,
        parameters: Optional[Mapping[str, Any]] = None,
    ) -> str:
        """
        Build a fully signed GET URL.

        Args:
            method: Method name; defaults to the request's method
            parameters: Parameters; default to the request's parameters
        """
        params = dict(parameters) if parameters is not None else dict(self._parameters)
        legacy = params.pop("method", None)
        method = method or self.method or legacy
        if not method:
            raise ConfigurationError("No method given for URL generation")
        token = self._session.access_token if self._session is not None else None
        final, _ = self._signer.sign(method, params, token, self.response_format)
        return f"{self._config.base_url}?{urlencode(sorted_items(final))}"

    def fetch(self, url: str) -> Optional[GenericValue]:
        """
        Perform a blocking GET of a URL built by ``generate_url``.

        Bypasses callbacks and retries. Blocks the calling thread for the
        whole exchange, so never call it from a thread that must stay
        responsive. Meant for login validation only.

        Returns:
            The parsed document, or None on transport failure

        Raises:
            ParseError: the body is empty or malformed
        """
        fmt_value = httpx.URL(url).params.get("format", self.response_format.value)
        try:
            fmt = ResponseFormat(fmt_value.upper())
        except ValueError:
            fmt = self.response_format

        owns_client = self._sync_http_client is None
        client = self._sync_http_client or httpx.Client(timeout=self.timeout)
        self._activity.emit(REQUEST_ACTIVITY_STARTED)
        try:
            http_response = client.get(url, headers=self._config.headers or {})
        except httpx.RequestError as e:
            logger.warning("Synchronous fetch failed: %s", e.__class__.__name__)
            return None
        finally:
            self._activity.emit(REQUEST_ACTIVITY_ENDED)
            if owns_client:
                client.close()

        return parse(http_response.text, fmt)

    def __repr__(self) -> str:
        return (
            f"FacebookRequest(method={self.method!r}, state={self._state.value!r}, "
            f"attempts={self._attempts_made}/{self.max_attempts})"
        )
