"""
AbeFook Login Controller

Establishes a session: reuses a stored access token when Facebook still
accepts it, otherwise hands a LoginPrompt to the application's login
presenter and waits for it to report a new token.

Usage:
    class BrowserPresenter:
        def present(self, prompt):
            webbrowser.open(prompt.url)
            # later, when the redirect is captured:
            # prompt.succeed(parse_login_redirect(redirect_url).access_token)

    facebook = FacebookLogin(config, on_login=start_app, presenter=BrowserPresenter(),
                             permissions=["offline_access", "photo_upload"])
    facebook.login()
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, List, Mapping, Optional, Protocol, Sequence, Tuple, runtime_checkable
from urllib.parse import parse_qs, urlencode, urlparse

import httpx

from .errors import ConfigurationError, ParseError, classify
from .parser import XMLNode
from .request import FacebookRequest, validate_config
from .session import FacebookSession
from .signals import ActivitySignals
from .signer import Signer
from .storage import MemoryStorage
from .types import FacebookConfig, LoginState, PresentationMode, RequestCallbacks

logger = logging.getLogger("abefook.login")

LOGIN_URL = "https://graph.facebook.com/oauth/authorize"
EXTEND_PERMISSIONS_URL = "https://www.facebook.com/connect/prompt_permissions.php"
LOGIN_SUCCESS_URL = "https://www.facebook.com/connect/login_success.html"
LOGIN_FAILED_URL = "https://www.facebook.com/connect/login_failure.html"

# Lightweight call used to check a stored token
VALIDATION_METHOD = "users.getLoggedInUser"


# =============================================================================
# Authorize URLs
# =============================================================================

def build_login_url(app_id: str, permissions: Optional[Sequence[str]] = None) -> str:
    """OAuth authorize URL for the desktop user-agent flow."""
    params = [
        ("client_id", app_id),
        ("redirect_uri", LOGIN_SUCCESS_URL),
        ("type", "user_agent"),
        ("display", "popup"),
    ]
    if permissions:
        params.append(("scope", ",".join(permissions)))
    return f"{LOGIN_URL}?{urlencode(params)}"


def build_extend_permissions_url(app_id: str, permissions: Sequence[str]) -> str:
    """URL asking an already logged in user for additional permissions."""
    params = [
        ("api_key", app_id),
        ("ext_perm", ",".join(permissions)),
        ("next", LOGIN_SUCCESS_URL),
        ("cancel", LOGIN_FAILED_URL),
        ("display", "popup"),
    ]
    return f"{EXTEND_PERMISSIONS_URL}?{urlencode(params)}"


@dataclass(frozen=True)
class LoginRedirect:
    access_token: str
    expires_in: Optional[int] = None


def parse_login_redirect(url: str) -> Optional[LoginRedirect]:
    """
    Extract the token from the URL the browser lands on after login.

    The token travels in the fragment (``#access_token=...&expires_in=0``).
    Returns None for the failure page, for ``error_reason`` redirects and for
    URLs without a token.
    """
    parsed = urlparse(url)
    fields = parse_qs(parsed.fragment)
    if not fields.get("access_token"):
        # some redirects put it in the query instead
        fields = parse_qs(parsed.query)
    if "error_reason" in fields or "error" in fields:
        return None
    token = (fields.get("access_token") or [""])[0]
    if not token:
        return None
    expires_in: Optional[int] = None
    raw_expires = (fields.get("expires_in") or [None])[0]
    if raw_expires is not None:
        try:
            expires_in = int(raw_expires)
        except ValueError:
            expires_in = None
    return LoginRedirect(token, expires_in)


# =============================================================================
# Presenter
# =============================================================================

@dataclass
class LoginPrompt:
    """
    A pending login handed to the presenter.

    The presenter reports exactly one outcome by calling ``succeed`` or
    ``abandon``. Later calls, and calls on a prompt superseded by a newer
    login, are ignored and return False.
    """

    url: str
    permissions: Tuple[str, ...]
    mode: PresentationMode
    for_relogin: bool = False
    _on_success: Optional[Callable[["LoginPrompt", str, Optional[str]], None]] = field(default=None, repr=False)
    _on_abandon: Optional[Callable[["LoginPrompt"], None]] = field(default=None, repr=False)
    _done: bool = field(default=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @property
    def done(self) -> bool:
        return self._done

    def _finish(self) -> bool:
        with self._lock:
            if self._done:
                return False
            self._done = True
            return True

    def succeed(self, access_token: str, uid: Optional[str] = None) -> bool:
        """Report a new access token (and the user id when the presenter knows it)."""
        if not access_token:
            raise ConfigurationError("succeed() requires a non-empty access token")
        if not self._finish():
            return False
        if self._on_success is not None:
            self._on_success(self, access_token, uid)
        return True

    def succeed_with_redirect(self, url: str) -> bool:
        """Complete from the browser redirect URL; a failure redirect abandons."""
        redirect = parse_login_redirect(url)
        if redirect is None:
            return self.abandon()
        return self.succeed(redirect.access_token)

    def abandon(self) -> bool:
        """Report that the user closed the login surface without logging in."""
        if not self._finish():
            return False
        if self._on_abandon is not None:
            self._on_abandon(self)
        return True


@runtime_checkable
class LoginPresenter(Protocol):
    """Login UI supplied by the application."""

    def present(self, prompt: LoginPrompt) -> Any:
        """
        Show (or, for PresentationMode.SHEET, build) the login surface.

        For SHEET the return value is handed back to the caller of
        ``login_with_permissions`` to attach wherever it wants; the presenter
        must not display it itself. Other modes return None.
        """
        ...


# =============================================================================
# Controller
# =============================================================================

class FacebookLogin:
    """
    Login controller - session establishment entry point.

    ``on_login`` is required and fires once per successful login. Abandoned
    logins leave the controller without a session; ``on_login_abandoned`` is
    called for them only when registered.

    ``login`` validates stored tokens with a blocking request. Call it from a
    worker thread (``asyncio.to_thread``) in applications whose calling
    thread must stay responsive.
    """

    def __init__(
        self,
        config: FacebookConfig,
        on_login: Callable[[], None],
        presenter: Optional[LoginPresenter] = None,
        *,
        session: Optional[FacebookSession] = None,
        permissions: Optional[Sequence[str]] = None,
        on_login_abandoned: Optional[Callable[[], None]] = None,
        use_modal_login: bool = False,
        signer: Optional[Signer] = None,
        sync_http_client: Optional[httpx.Client] = None,
        activity: Optional[ActivitySignals] = None,
    ) -> None:
        """Initialize the login controller."""
        validate_config(config)
        if not callable(on_login):
            raise ConfigurationError("on_login callback is required")

        self._config = config
        self._on_login = on_login
        self._on_login_abandoned = on_login_abandoned
        self._presenter = presenter
        self._session = session if session is not None else FacebookSession(MemoryStorage(config.namespace))
        self.permissions: List[str] = list(permissions or [])
        self.use_modal_login = use_modal_login
        self._signer = signer or Signer(config)
        self._sync_http_client = sync_http_client
        self._activity = activity

        self._state = LoginState.NO_SESSION
        self._prompt: Optional[LoginPrompt] = None
        self._lock = threading.RLock()

        self._log("FacebookLogin initialized (app_id=%s)", config.app_id)

    def _log(self, message: str, *args: Any) -> None:
        """Log debug message."""
        if self._config.debug:
            logger.debug(f"[AbeFook] {message}", *args)

    def _set_state(self, state: LoginState) -> None:
        if state != self._state:
            self._log("Login state %s -> %s", self._state.value, state.value)
        self._state = state

    @property
    def state(self) -> LoginState:
        return self._state

    @property
    def session(self) -> FacebookSession:
        return self._session

    @property
    def pending_prompt(self) -> Optional[LoginPrompt]:
        return self._prompt

    # =========================================================================
    # Login and Logout
    # =========================================================================

    def login(self) -> None:
        """Reuse a stored token if it still validates, otherwise present a login window."""
        self.login_with_permissions(self.permissions, for_relogin=False, for_sheet=False)

    def login_using_modal_window(self) -> None:
        """Same as ``login`` but asks the presenter for a modal window."""
        self._present_or_validate(self.permissions, False, PresentationMode.MODAL)

    def login_with_permissions(
        self,
        permissions: Optional[Sequence[str]] = None,
        for_relogin: bool = False,
        for_sheet: bool = False,
    ) -> Optional[Any]:
        """
        Log in requesting a set of permissions.

        Args:
            permissions: Permissions to request; defaults to ``self.permissions``
            for_relogin: Present the login even when the stored session validates
            for_sheet: Have the presenter build a surface and return it instead
                of displaying it

        Returns:
            The presenter's surface when ``for_sheet`` is set and a login is
            needed, otherwise None
        """
        perms = list(self.permissions if permissions is None else permissions)
        if for_sheet:
            mode = PresentationMode.SHEET
        elif self.use_modal_login:
            mode = PresentationMode.MODAL
        else:
            mode = PresentationMode.WINDOW
        return self._present_or_validate(perms, for_relogin, mode)

    def _present_or_validate(
        self,
        permissions: Sequence[str],
        for_relogin: bool,
        mode: PresentationMode,
    ) -> Optional[Any]:
        if not for_relogin and self._validate_stored_session():
            self._notify_login()
            return None
        return self._present(permissions, for_relogin, mode)

    def logout(self) -> None:
        """Destroy the session. Fires no callback."""
        with self._lock:
            self._session.clear()
            if self._prompt is not None:
                # a late succeed() from the old prompt must not log back in
                self._prompt._finish()
                self._prompt = None
            self._set_state(LoginState.LOGGED_OUT)
        self._log("Logged out")

    def user_logged_in(self) -> bool:
        """True while a validated session exists."""
        return self._session.is_valid

    def uid(self) -> Optional[str]:
        """User id of the logged in user, None when nobody is logged in."""
        if not self._session.is_valid:
            return None
        return self._session.uid

    # =========================================================================
    # Requests
    # =========================================================================

    def new_request(self, callbacks: Optional[RequestCallbacks] = None, **kwargs: Any) -> FacebookRequest:
        """Create a request bound to this controller's config and session."""
        kwargs.setdefault("signer", self._signer)
        if self._activity is not None:
            kwargs.setdefault("activity", self._activity)
        return FacebookRequest(self._config, self._session, callbacks, **kwargs)

    # =========================================================================
    # Internal Methods
    # =========================================================================

    def _fetch_logged_in_user(self) -> Optional[str]:
        """Blocking users.getLoggedInUser; the uid, or None when the token is rejected."""
        request = self.new_request(sync_http_client=self._sync_http_client)
        try:
            parsed = request.fetch(request.generate_url(VALIDATION_METHOD, {}))
        except ParseError as e:
            self._log("Validation response unreadable: %s", e.message)
            return None
        if parsed is None:
            return None
        error = classify(parsed, self._config.error_codes)
        if error is not None:
            self._log("Stored token rejected: %r", error)
            return None
        return _uid_from(parsed)

    def _validate_stored_session(self) -> bool:
        with self._lock:
            if not self._session.load():
                self._set_state(LoginState.NO_SESSION)
                return False
            self._set_state(LoginState.VALIDATING)

        uid = self._fetch_logged_in_user()

        with self._lock:
            if not uid:
                self._session.invalidate()
                self._set_state(LoginState.NO_SESSION)
                return False
            self._session.mark_validated(uid)
            self._set_state(LoginState.AUTHENTICATED)
            return True

    def _present(
        self,
        permissions: Sequence[str],
        for_relogin: bool,
        mode: PresentationMode,
    ) -> Optional[Any]:
        if self._presenter is None:
            raise ConfigurationError("A login presenter is required to show the login window")

        with self._lock:
            if self._prompt is not None:
                self._log("Superseding pending login prompt")
                self._prompt._finish()
            prompt = LoginPrompt(
                url=build_login_url(self._config.app_id, permissions),
                permissions=tuple(permissions),
                mode=mode,
                for_relogin=for_relogin,
                _on_success=self._prompt_succeeded,
                _on_abandon=self._prompt_abandoned,
            )
            self._prompt = prompt
            self._set_state(LoginState.PRESENTING_LOGIN)

        surface = self._presenter.present(prompt)
        if mode == PresentationMode.SHEET:
            return surface
        return None

    def _prompt_succeeded(self, prompt: LoginPrompt, access_token: str, uid: Optional[str]) -> None:
        with self._lock:
            if prompt is not self._prompt:
                self._log("Ignoring result of a superseded login prompt")
                return
            self._prompt = None
            self._session.save(access_token, uid)

        if not uid:
            uid = self._fetch_logged_in_user()
            if uid:
                self._session.mark_validated(uid)

        with self._lock:
            self._set_state(LoginState.AUTHENTICATED)
        self._notify_login()

    def _prompt_abandoned(self, prompt: LoginPrompt) -> None:
        with self._lock:
            if prompt is not self._prompt:
                return
            self._prompt = None
            # a relogin abandoned over a validated session keeps it
            if self._session.is_valid:
                self._set_state(LoginState.AUTHENTICATED)
            else:
                self._set_state(LoginState.NO_SESSION)
        self._log("Login abandoned")
        if self._on_login_abandoned is not None:
            self._on_login_abandoned()

    def _notify_login(self) -> None:
        self._log("Login successful")
        self._on_login()


def _uid_from(parsed: Any) -> Optional[str]:
    """uid out of a users.getLoggedInUser response in either format."""
    if isinstance(parsed, XMLNode):
        value = parsed.text
    elif isinstance(parsed, Mapping):
        value = parsed.get("uid", parsed.get("id"))
    elif isinstance(parsed, bool):
        value = None
    else:
        value = parsed
    if value is None:
        return None
    value = str(value).strip()
    return value or None
