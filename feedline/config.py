"""Runtime configuration and logging setup for feedline.

Values come from the environment, optionally seeded from a `.env` file.
"""
import logging
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

load_dotenv(override=True)

# Backend selection
BACKEND_URL = os.environ.get("BACKEND_URL")
DATABASE_URL = os.environ.get(
    "FEEDLINE_DATABASE_URL", f"sqlite:///{Path.home() / '.feedline.db'}"
)
HANDLE = os.environ.get("FEEDLINE_HANDLE")
REQUEST_TIMEOUT = float(os.environ.get("FEEDLINE_REQUEST_TIMEOUT", "5.0"))

# Identity provider (OAuth2 authorization code flow)
AUTH_DOMAIN = os.environ.get("FEEDLINE_AUTH_DOMAIN", "").rstrip("/")
AUTH_URL = f"{AUTH_DOMAIN}/login"
TOKEN_URL = f"{AUTH_DOMAIN}/oauth2/token"
USERINFO_URL = f"{AUTH_DOMAIN}/oauth2/userInfo"
CLIENT_ID = os.environ.get("FEEDLINE_CLIENT_ID", "")
CLIENT_SECRET = os.environ.get("FEEDLINE_CLIENT_SECRET", "")
REDIRECT_PORT = int(os.environ.get("FEEDLINE_REDIRECT_PORT", "5173"))
REDIRECT_URI = f"http://localhost:{REDIRECT_PORT}/callback"
SCOPES = ["email", "openid", "profile"]

# Storage settings
KEYRING_SERVICE = "feedline"
TOKEN_KEY = "oauth_tokens.json"
FALLBACK_TOKEN_FILE = Path.home() / ".feedline_tokens.json"

DEBUG_LOG_FILE = Path.home() / ".feedline_debug.log"
_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def debug_enabled() -> bool:
    return bool(os.getenv("FEEDLINE_DEBUG"))


def configure_logging() -> logging.Logger:
    """Configure the `feedline` logger tree once.

    With FEEDLINE_DEBUG set, everything goes to ~/.feedline_debug.log as well,
    since Textual captures stdout/stderr while the app runs.
    """
    logger = logging.getLogger("feedline")
    if logger.handlers:
        return logger

    level = logging.DEBUG if debug_enabled() else logging.WARNING
    logger.setLevel(level)
    stream = logging.StreamHandler(sys.stderr)
    stream.setLevel(level)
    stream.setFormatter(logging.Formatter("[%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(stream)

    if debug_enabled():
        try:
            fh = logging.FileHandler(DEBUG_LOG_FILE, encoding="utf-8")
            fh.setLevel(level)
            fh.setFormatter(logging.Formatter(_LOG_FORMAT))
            logger.addHandler(fh)
        except OSError:
            # never fail core logic for logging issues
            pass
    return logger
