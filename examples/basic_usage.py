"""
AbeFook - Basic Usage Example

Logs in through the system browser, then fetches the user's name.
"""

import asyncio
import webbrowser

from abefook import (
    FacebookConfig,
    FacebookLogin,
    FileStorage,
    FacebookSession,
    LoginPrompt,
    RequestCallbacks,
    ResponseFormat,
)


class BrowserPresenter:
    """Opens the authorize URL and asks the user to paste the redirect."""

    def present(self, prompt: LoginPrompt) -> None:
        webbrowser.open(prompt.url)
        redirect = input("Paste the URL you were redirected to: ")
        prompt.succeed_with_redirect(redirect)


async def fetch_name(facebook: FacebookLogin) -> None:
    request = facebook.new_request(RequestCallbacks(
        on_response=lambda req, response: print(f"Hello {response.parsed}"),
        on_api_error=lambda req, error: print(f"Facebook error {error.code}: {error.message}"),
        on_failure=lambda req, error: print(f"Request failed: {error}"),
    ))
    await request.send("users.getInfo", {
        "uids": facebook.uid(),
        "fields": ["first_name", "last_name"],
    })


def main() -> None:
    config = FacebookConfig(app_id="YOUR_APP_ID", response_format=ResponseFormat.JSON, debug=True)
    facebook = FacebookLogin(
        config,
        on_login=lambda: print("Logged in"),
        presenter=BrowserPresenter(),
        session=FacebookSession(FileStorage(namespace="basic-usage")),
        permissions=["offline_access"],
    )

    facebook.login()
    if facebook.user_logged_in():
        asyncio.run(fetch_name(facebook))


if __name__ == "__main__":
    main()
