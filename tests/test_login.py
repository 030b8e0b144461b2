"""
Tests for the login controller.

The stored-token check goes through a blocking users.getLoggedInUser call,
stubbed with respx. The login presenter is a recording stub.
"""

from typing import Any, List, Optional
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
import respx

from abefook import (
    ConfigurationError,
    FacebookConfig,
    FacebookLogin,
    FacebookSession,
    LoginPresenter,
    LoginPrompt,
    LoginState,
    MemoryStorage,
    PresentationMode,
    ResponseFormat,
    build_extend_permissions_url,
    build_login_url,
    parse_login_redirect,
)


# =============================================================================
# Test Fixtures
# =============================================================================

class StubPresenter:
    """Records prompts; optionally completes them straight away."""

    def __init__(self, token: Optional[str] = None, uid: Optional[str] = None, surface: Any = None) -> None:
        self.prompts: List[LoginPrompt] = []
        self._token = token
        self._uid = uid
        self._surface = surface

    def present(self, prompt: LoginPrompt) -> Any:
        self.prompts.append(prompt)
        if self._token:
            prompt.succeed(self._token, self._uid)
        if prompt.mode == PresentationMode.SHEET:
            return self._surface
        return None


class Counter:
    def __init__(self) -> None:
        self.calls = 0

    def __call__(self) -> None:
        self.calls += 1


@pytest.fixture
def config() -> FacebookConfig:
    return FacebookConfig(app_id="123456789", secret="s3cr3t", response_format=ResponseFormat.JSON)


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def on_login() -> Counter:
    return Counter()


def validation_route() -> respx.Route:
    return respx.route(method="GET", host="api.facebook.com", path="/restserver.php")


def make_login(config: FacebookConfig, storage: MemoryStorage, on_login: Counter, presenter: Any, **kwargs: Any) -> FacebookLogin:
    return FacebookLogin(
        config,
        on_login,
        presenter,
        session=FacebookSession(storage),
        permissions=["offline_access", "photo_upload"],
        **kwargs,
    )


# =============================================================================
# Construction
# =============================================================================

class TestConstruction:
    """Tests for controller construction."""

    def test_on_login_required(self, config: FacebookConfig):
        with pytest.raises(ConfigurationError) as exc_info:
            FacebookLogin(config, None)  # type: ignore[arg-type]
        assert "on_login" in str(exc_info.value)

    def test_default_session_uses_config_namespace(self):
        facebook = FacebookLogin(FacebookConfig(app_id="1", namespace="myapp"), lambda: None)
        assert facebook.session.storage.namespace == "myapp"

    def test_app_id_required(self, on_login: Counter):
        with pytest.raises(ConfigurationError):
            FacebookLogin(FacebookConfig(app_id=""), on_login)

    def test_initial_state(self, config: FacebookConfig, on_login: Counter):
        facebook = FacebookLogin(config, on_login)
        assert facebook.state == LoginState.NO_SESSION
        assert not facebook.user_logged_in()
        assert facebook.uid() is None

    def test_stub_presenter_satisfies_protocol(self):
        assert isinstance(StubPresenter(), LoginPresenter)


# =============================================================================
# Login
# =============================================================================

class TestLogin:
    """Tests for login and login_with_permissions."""

    @respx.mock
    def test_no_stored_token_presents_login(self, config: FacebookConfig, storage: MemoryStorage, on_login: Counter):
        """Presenter is invoked once; success stores the token and notifies once."""
        route = validation_route()
        presenter = StubPresenter()
        facebook = make_login(config, storage, on_login, presenter)

        facebook.login()

        assert route.call_count == 0
        assert len(presenter.prompts) == 1
        prompt = presenter.prompts[0]
        assert prompt.permissions == ("offline_access", "photo_upload")
        assert prompt.mode == PresentationMode.WINDOW
        assert facebook.state == LoginState.PRESENTING_LOGIN
        assert on_login.calls == 0

        assert prompt.succeed("T", "42") is True

        assert storage.get_access_token() == "T"
        assert storage.get_uid() == "42"
        assert on_login.calls == 1
        assert facebook.state == LoginState.AUTHENTICATED
        assert facebook.user_logged_in()
        assert facebook.uid() == "42"

    @respx.mock
    def test_valid_stored_token(self, config: FacebookConfig, storage: MemoryStorage, on_login: Counter):
        storage.set_credentials("STORED", None)
        route = validation_route().mock(return_value=httpx.Response(200, json=12345))
        presenter = StubPresenter()
        facebook = make_login(config, storage, on_login, presenter)

        facebook.login()

        assert route.call_count == 1
        params = route.calls.last.request.url.params
        assert params["method"] == "users.getLoggedInUser"
        assert params["access_token"] == "STORED"
        assert presenter.prompts == []
        assert on_login.calls == 1
        assert facebook.state == LoginState.AUTHENTICATED
        assert facebook.uid() == "12345"
        assert storage.get_uid() == "12345"

    @respx.mock
    def test_valid_stored_token_xml(self, storage: MemoryStorage, on_login: Counter):
        storage.set_credentials("STORED", "99")
        validation_route().mock(return_value=httpx.Response(
            200,
            text='<users_getLoggedInUser_response xmlns="http://api.facebook.com/1.0/">99</users_getLoggedInUser_response>',
        ))
        facebook = make_login(FacebookConfig(app_id="1"), storage, on_login, StubPresenter())

        facebook.login()

        assert facebook.state == LoginState.AUTHENTICATED
        assert facebook.uid() == "99"

    @respx.mock
    def test_rejected_stored_token_presents_login(self, config: FacebookConfig, storage: MemoryStorage, on_login: Counter):
        storage.set_credentials("EXPIRED", "42")
        validation_route().mock(return_value=httpx.Response(
            200, json={"error_code": 190, "error_msg": "Invalid OAuth 2.0 Access Token"}
        ))
        presenter = StubPresenter(token="FRESH", uid="42")
        facebook = make_login(config, storage, on_login, presenter)

        facebook.login()

        assert len(presenter.prompts) == 1
        assert storage.get_access_token() == "FRESH"
        assert on_login.calls == 1
        assert facebook.state == LoginState.AUTHENTICATED

    @respx.mock
    def test_validation_transport_failure_presents_login(self, config: FacebookConfig, storage: MemoryStorage, on_login: Counter):
        storage.set_credentials("STORED", "42")
        validation_route().mock(side_effect=httpx.ConnectError("offline"))
        presenter = StubPresenter()
        facebook = make_login(config, storage, on_login, presenter)

        facebook.login()

        assert len(presenter.prompts) == 1
        assert on_login.calls == 0
        assert not facebook.user_logged_in()

    @respx.mock
    def test_validation_garbage_presents_login(self, config: FacebookConfig, storage: MemoryStorage, on_login: Counter):
        storage.set_credentials("STORED", "42")
        validation_route().mock(return_value=httpx.Response(200, text=""))
        presenter = StubPresenter()
        facebook = make_login(config, storage, on_login, presenter)

        facebook.login()

        assert len(presenter.prompts) == 1

    @respx.mock
    def test_relogin_skips_validation(self, config: FacebookConfig, storage: MemoryStorage, on_login: Counter):
        storage.set_credentials("STORED", "42")
        route = validation_route().mock(return_value=httpx.Response(200, json=42))
        presenter = StubPresenter()
        facebook = make_login(config, storage, on_login, presenter)

        facebook.login_with_permissions(["read_stream"], for_relogin=True)

        assert route.call_count == 0
        assert presenter.prompts[0].permissions == ("read_stream",)
        assert presenter.prompts[0].for_relogin
        assert "scope=read_stream" in presenter.prompts[0].url

    @respx.mock
    def test_sheet_returns_surface(self, config: FacebookConfig, storage: MemoryStorage, on_login: Counter):
        surface = object()
        presenter = StubPresenter(surface=surface)
        facebook = make_login(config, storage, on_login, presenter)

        result = facebook.login_with_permissions(["offline_access"], for_sheet=True)

        assert result is surface
        assert presenter.prompts[0].mode == PresentationMode.SHEET
        assert facebook.state == LoginState.PRESENTING_LOGIN
        assert on_login.calls == 0

        facebook.pending_prompt.succeed("SHEET_TOKEN", "7")
        assert facebook.state == LoginState.AUTHENTICATED
        assert on_login.calls == 1

    @respx.mock
    def test_sheet_not_needed_returns_none(self, config: FacebookConfig, storage: MemoryStorage, on_login: Counter):
        storage.set_credentials("STORED", "42")
        validation_route().mock(return_value=httpx.Response(200, json=42))
        presenter = StubPresenter(surface=object())
        facebook = make_login(config, storage, on_login, presenter)

        assert facebook.login_with_permissions(for_sheet=True) is None
        assert presenter.prompts == []
        assert on_login.calls == 1

    def test_modal_login(self, config: FacebookConfig, storage: MemoryStorage, on_login: Counter):
        presenter = StubPresenter()
        facebook = make_login(config, storage, on_login, presenter)

        facebook.login_using_modal_window()
        facebook.use_modal_login = True
        facebook.login()

        assert [p.mode for p in presenter.prompts] == [PresentationMode.MODAL, PresentationMode.MODAL]

    def test_missing_presenter(self, config: FacebookConfig, storage: MemoryStorage, on_login: Counter):
        facebook = FacebookLogin(config, on_login, session=FacebookSession(storage))
        with pytest.raises(ConfigurationError):
            facebook.login()

    @respx.mock
    def test_success_without_uid_fetches_it(self, config: FacebookConfig, storage: MemoryStorage, on_login: Counter):
        route = validation_route().mock(return_value=httpx.Response(200, json="777"))
        presenter = StubPresenter()
        facebook = make_login(config, storage, on_login, presenter)

        facebook.login()
        presenter.prompts[0].succeed("T")

        assert route.call_count == 1
        assert route.calls.last.request.url.params["access_token"] == "T"
        assert facebook.uid() == "777"
        assert storage.get_uid() == "777"
        assert on_login.calls == 1


# =============================================================================
# Prompt Outcomes
# =============================================================================

class TestPromptOutcomes:
    """Exactly one outcome per prompt."""

    def test_abandon_stays_without_session(self, config: FacebookConfig, storage: MemoryStorage, on_login: Counter):
        presenter = StubPresenter()
        facebook = make_login(config, storage, on_login, presenter)

        facebook.login()
        assert presenter.prompts[0].abandon() is True

        assert facebook.state == LoginState.NO_SESSION
        assert on_login.calls == 0
        assert storage.get_access_token() is None

    @respx.mock
    def test_abandoned_relogin_keeps_session(self, config: FacebookConfig, storage: MemoryStorage, on_login: Counter):
        storage.set_credentials("STORED", "42")
        validation_route().mock(return_value=httpx.Response(200, json=42))
        presenter = StubPresenter()
        facebook = make_login(config, storage, on_login, presenter)

        facebook.login()
        assert facebook.state == LoginState.AUTHENTICATED

        facebook.login_with_permissions(["read_stream"], for_relogin=True)
        assert presenter.prompts[0].abandon() is True

        assert facebook.state == LoginState.AUTHENTICATED
        assert facebook.user_logged_in()
        assert facebook.uid() == "42"
        assert on_login.calls == 1

    def test_abandon_hook(self, config: FacebookConfig, storage: MemoryStorage, on_login: Counter):
        abandoned = Counter()
        presenter = StubPresenter()
        facebook = make_login(config, storage, on_login, presenter, on_login_abandoned=abandoned)

        facebook.login_with_permissions(for_sheet=True)
        presenter.prompts[0].abandon()

        assert abandoned.calls == 1
        assert on_login.calls == 0

    def test_second_outcome_ignored(self, config: FacebookConfig, storage: MemoryStorage, on_login: Counter):
        presenter = StubPresenter()
        facebook = make_login(config, storage, on_login, presenter)

        facebook.login()
        prompt = presenter.prompts[0]
        assert prompt.succeed("T", "1") is True
        assert prompt.succeed("T2", "2") is False
        assert prompt.abandon() is False

        assert on_login.calls == 1
        assert storage.get_access_token() == "T"

    def test_superseded_prompt_ignored(self, config: FacebookConfig, storage: MemoryStorage, on_login: Counter):
        presenter = StubPresenter()
        facebook = make_login(config, storage, on_login, presenter)

        facebook.login()
        facebook.login()
        first, second = presenter.prompts

        assert first.succeed("OLD", "1") is False
        assert second.succeed("NEW", "2") is True
        assert storage.get_access_token() == "NEW"
        assert on_login.calls == 1

    def test_empty_token_rejected(self, config: FacebookConfig, storage: MemoryStorage, on_login: Counter):
        presenter = StubPresenter()
        facebook = make_login(config, storage, on_login, presenter)
        facebook.login()

        with pytest.raises(ConfigurationError):
            presenter.prompts[0].succeed("")
        assert not presenter.prompts[0].done

    @respx.mock
    def test_succeed_with_redirect(self, config: FacebookConfig, storage: MemoryStorage, on_login: Counter):
        # the redirect carries no uid and the uid lookup fails
        validation_route().mock(side_effect=httpx.ConnectError("offline"))
        presenter = StubPresenter()
        facebook = make_login(config, storage, on_login, presenter)
        facebook.login()

        presenter.prompts[0].succeed_with_redirect(
            "https://www.facebook.com/connect/login_success.html#access_token=FROM_URL&expires_in=0"
        )

        assert storage.get_access_token() == "FROM_URL"
        assert facebook.state == LoginState.AUTHENTICATED
        assert on_login.calls == 1

    def test_failed_redirect_abandons(self, config: FacebookConfig, storage: MemoryStorage, on_login: Counter):
        presenter = StubPresenter()
        facebook = make_login(config, storage, on_login, presenter)
        facebook.login()

        presenter.prompts[0].succeed_with_redirect(
            "https://www.facebook.com/connect/login_success.html?error_reason=user_denied"
        )

        assert facebook.state == LoginState.NO_SESSION
        assert on_login.calls == 0


# =============================================================================
# Logout
# =============================================================================

class TestLogout:
    """Tests for logout."""

    def test_logout_clears_session(self, config: FacebookConfig, storage: MemoryStorage, on_login: Counter):
        presenter = StubPresenter(token="T", uid="42")
        facebook = make_login(config, storage, on_login, presenter)
        facebook.login()
        assert facebook.user_logged_in()

        facebook.logout()

        assert facebook.state == LoginState.LOGGED_OUT
        assert not facebook.user_logged_in()
        assert facebook.uid() is None
        assert storage.get_access_token() is None
        assert on_login.calls == 1

    def test_logout_discards_pending_prompt(self, config: FacebookConfig, storage: MemoryStorage, on_login: Counter):
        presenter = StubPresenter()
        facebook = make_login(config, storage, on_login, presenter)
        facebook.login()

        facebook.logout()

        assert presenter.prompts[0].succeed("LATE", "1") is False
        assert storage.get_access_token() is None
        assert on_login.calls == 0

    def test_new_request_shares_session(self, config: FacebookConfig, storage: MemoryStorage, on_login: Counter):
        facebook = make_login(config, storage, on_login, StubPresenter(token="T", uid="42"))
        facebook.login()

        request = facebook.new_request(method="users.getInfo")
        url = httpx.URL(request.generate_url())
        assert url.params["access_token"] == "T"


# =============================================================================
# Authorize URLs
# =============================================================================

class TestAuthorizeURLs:
    """Tests for the URL helpers."""

    def test_login_url(self):
        url = urlparse(build_login_url("123", ["offline_access", "photo_upload"]))
        query = parse_qs(url.query)
        assert query["client_id"] == ["123"]
        assert query["type"] == ["user_agent"]
        assert query["scope"] == ["offline_access,photo_upload"]
        assert query["redirect_uri"] == ["https://www.facebook.com/connect/login_success.html"]

    def test_login_url_without_permissions(self):
        assert "scope" not in parse_qs(urlparse(build_login_url("123")).query)

    def test_extend_permissions_url(self):
        query = parse_qs(urlparse(build_extend_permissions_url("123", ["read_stream"])).query)
        assert query["api_key"] == ["123"]
        assert query["ext_perm"] == ["read_stream"]

    def test_parse_redirect(self):
        redirect = parse_login_redirect(
            "https://www.facebook.com/connect/login_success.html#access_token=ABC%7C123&expires_in=3600"
        )
        assert redirect is not None
        assert redirect.access_token == "ABC|123"
        assert redirect.expires_in == 3600

    @pytest.mark.parametrize("url", [
        "https://www.facebook.com/connect/login_success.html?error_reason=user_denied&error=access_denied",
        "https://www.facebook.com/connect/login_failure.html",
        "https://www.facebook.com/connect/login_success.html#expires_in=0",
    ])
    def test_parse_redirect_failures(self, url: str):
        assert parse_login_redirect(url) is None
