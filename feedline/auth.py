"""
Sign-in against the external identity provider.
Runs the OAuth authorization code flow through a local callback server and
keeps the resulting tokens in the system keyring.
"""
import http.server
import logging
import socketserver
import threading
import webbrowser
from typing import Dict, Optional
from urllib.parse import parse_qs, urlencode, urlparse

import requests

from . import config
from .auth_storage import clear_tokens, load_tokens, save_tokens_full

logger = logging.getLogger("feedline.auth")


class AuthError(Exception):
    """Authentication related errors"""
    pass


def _make_handler(auth_event, auth_response):
    """Return a handler class bound to the given event and response dict.

    HTTPServer needs a class; the one produced here writes into the shared
    auth_response dict and sets auth_event once the callback arrives.
    """
    class AuthCallbackHandler(http.server.BaseHTTPRequestHandler):
        def do_GET(self):
            try:
                parsed = urlparse(self.path)
                if parsed.path != "/callback":
                    raise AuthError("Invalid callback path")
                params = parse_qs(parsed.query)
                code = params.get("code", [None])[0]
                if not code:
                    raise AuthError("No authorization code received")
                auth_response["code"] = code
                self._respond(200, "Authentication Successful!",
                              "You can close this window and return to the terminal.")
            except AuthError as e:
                auth_response["error"] = str(e)
                self._respond(400, "Authentication Failed", str(e))
            finally:
                auth_event.set()

        def _respond(self, status: int, title: str, body: str) -> None:
            self.send_response(status)
            self.send_header("Content-type", "text/html; charset=utf-8")
            self.end_headers()
            html = (
                "<html><body style='font-family: system-ui; padding: 2em; text-align: center'>"
                f"<h1>{title}</h1><p>{body}</p></body></html>"
            )
            self.wfile.write(html.encode("utf-8"))

        def log_message(self, format, *args):
            # suppress console logging from BaseHTTPRequestHandler
            return

    return AuthCallbackHandler


def authorization_url() -> str:
    params = {
        "client_id": config.CLIENT_ID,
        "response_type": "code",
        "scope": " ".join(config.SCOPES),
        "redirect_uri": config.REDIRECT_URI,
    }
    return f"{config.AUTH_URL}?{urlencode(params)}"


def exchange_code(code: str) -> Dict[str, str]:
    try:
        resp = requests.post(
            config.TOKEN_URL,
            data={
                "grant_type": "authorization_code",
                "client_id": config.CLIENT_ID,
                "client_secret": config.CLIENT_SECRET,
                "code": code,
                "redirect_uri": config.REDIRECT_URI,
            },
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            timeout=15,
        )
    except requests.RequestException as e:
        logger.exception("Token exchange request failed")
        raise AuthError(f"Token exchange request failed: {e}")
    if not resp.ok:
        raise AuthError(f"Token exchange failed: {resp.text}")
    return resp.json()


def fetch_user_info(access_token: str) -> Dict[str, str]:
    try:
        resp = requests.get(
            config.USERINFO_URL,
            headers={"Authorization": f"Bearer {access_token}"},
            timeout=10,
        )
    except requests.RequestException as e:
        logger.exception("User info request failed")
        raise AuthError(f"User info request failed: {e}")
    if not resp.ok:
        raise AuthError(f"Failed to get user info: {resp.text}")
    return resp.json()


def authenticate(timeout: float = 300) -> Dict[str, str]:
    """Complete the OAuth flow and store tokens in the system keyring.

    Returns a dict with username and tokens on success; raises AuthError
    on failure.
    """
    if not (config.AUTH_DOMAIN and config.CLIENT_ID):
        raise AuthError("Identity provider is not configured (FEEDLINE_AUTH_DOMAIN / FEEDLINE_CLIENT_ID)")

    auth_event = threading.Event()
    auth_response: Dict[str, str] = {}
    handler_class = _make_handler(auth_event, auth_response)
    try:
        # Restarting sign-in right after sign-out must not trip over TIME_WAIT
        socketserver.TCPServer.allow_reuse_address = True
        server = http.server.HTTPServer(("localhost", config.REDIRECT_PORT), handler_class)
    except OSError as e:
        raise AuthError(f"Auth callback port {config.REDIRECT_PORT} unavailable: {e}")

    threading.Thread(target=server.serve_forever, daemon=True).start()
    logger.debug("Auth server listening on http://localhost:%s", config.REDIRECT_PORT)

    try:
        url = authorization_url()
        logger.debug("Opening browser to: %s", url)
        if not webbrowser.open(url):
            logger.warning("Failed to open browser automatically; open %s manually", url)

        if not auth_event.wait(timeout=timeout):
            raise AuthError("Authentication timed out")
        if "error" in auth_response:
            raise AuthError(auth_response["error"])

        tokens = exchange_code(auth_response["code"])
        user_info = fetch_user_info(tokens["access_token"])
        username = user_info.get("username") or user_info.get("preferred_username") or user_info.get("sub") or ""
        logger.debug("Signed in as %s", username)

        save_tokens_full(tokens, username)
        return {"username": username, "tokens": tokens}
    finally:
        server.shutdown()
        server.server_close()


def refresh_tokens(refresh_token: str) -> Dict[str, str]:
    """Use the OAuth2 refresh_token grant to obtain new tokens."""
    try:
        resp = requests.post(
            config.TOKEN_URL,
            data={
                "grant_type": "refresh_token",
                "client_id": config.CLIENT_ID,
                "client_secret": config.CLIENT_SECRET,
                "refresh_token": refresh_token,
            },
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            timeout=10,
        )
    except requests.RequestException as e:
        logger.exception("Refresh token request failed")
        raise AuthError(f"Refresh token request failed: {e}")

    if not resp.ok:
        logger.debug("Refresh token HTTP %s: %s", resp.status_code, resp.text)
        raise AuthError(f"Failed to refresh tokens: {resp.text}")

    tokens = resp.json()
    # refresh grants usually omit the refresh token itself
    tokens.setdefault("refresh_token", refresh_token)
    return tokens


def get_stored_credentials() -> Optional[Dict[str, str]]:
    """Return {'username', 'tokens'} from storage, refreshing when only a refresh token is left."""
    found = load_tokens()
    if not found:
        return None

    tokens = found["tokens"]
    if tokens.get("access_token"):
        return {"username": found["username"], "tokens": tokens}

    if tokens.get("refresh_token"):
        try:
            tokens = refresh_tokens(tokens["refresh_token"])
        except AuthError:
            logger.debug("get_stored_credentials: refresh_tokens failed")
            return None
        save_tokens_full(tokens, found["username"])
        return {"username": found["username"], "tokens": tokens}

    return None


def clear_credentials() -> None:
    """Sign out: forget all stored tokens."""
    clear_tokens()
