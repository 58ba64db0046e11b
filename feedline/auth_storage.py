"""Token persistence helpers for feedline.

The full token blob and the signed-in username are stored together as one
JSON document under `oauth_tokens.json` in the system keyring. When no
usable keyring backend exists the same document goes to a fallback file in
the user's home directory.

Functions:
  - save_tokens_full(tokens: dict, username: Optional[str]) -> None
  - load_tokens() -> Optional[dict]  # returns {'tokens': {...}, 'username': '...'}
  - clear_tokens() -> None
"""

from __future__ import annotations

import json
import logging
import os
from typing import Optional

import keyring
from keyring.errors import KeyringError, PasswordDeleteError

from . import config

logger = logging.getLogger("feedline.auth_storage")


def _write_fallback(blob: str) -> None:
    path = config.FALLBACK_TOKEN_FILE
    path.write_text(blob, encoding="utf-8")
    try:
        os.chmod(path, 0o600)
    except OSError:
        pass


def save_tokens_full(tokens: dict, username: Optional[str] = None) -> None:
    """Persist the token dict (and username) to keyring, or the fallback file."""
    blob = json.dumps({"tokens": tokens, "username": username or ""})
    try:
        keyring.set_password(config.KEYRING_SERVICE, config.TOKEN_KEY, blob)
        logger.debug("auth_storage: saved tokens to keyring for %s", username)
        return
    except KeyringError:
        logger.warning("auth_storage: keyring unavailable, using fallback file")
    _write_fallback(blob)


def _parse(blob: Optional[str]) -> Optional[dict]:
    if not blob:
        return None
    try:
        data = json.loads(blob)
    except ValueError:
        logger.warning("auth_storage: stored token blob is not valid JSON")
        return None
    if not isinstance(data, dict) or not isinstance(data.get("tokens"), dict):
        return None
    return {"tokens": data["tokens"], "username": data.get("username") or ""}


def load_tokens() -> Optional[dict]:
    """Return {'tokens': {...}, 'username': '...'} or None when nothing is stored."""
    try:
        found = _parse(keyring.get_password(config.KEYRING_SERVICE, config.TOKEN_KEY))
        if found:
            return found
    except KeyringError:
        logger.debug("auth_storage: keyring read failed, trying fallback file")

    path = config.FALLBACK_TOKEN_FILE
    if path.exists():
        return _parse(path.read_text(encoding="utf-8"))
    return None


def clear_tokens() -> None:
    try:
        keyring.delete_password(config.KEYRING_SERVICE, config.TOKEN_KEY)
    except PasswordDeleteError:
        pass
    except KeyringError:
        logger.debug("auth_storage: keyring delete failed")
    if config.FALLBACK_TOKEN_FILE.exists():
        config.FALLBACK_TOKEN_FILE.unlink()
