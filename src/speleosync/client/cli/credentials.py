"""Token storage in the OS keyring.

Tokens are stored under the "speleosync" service, keyed by server URL,
so switching instances does not overwrite another instance's token.
"""

from __future__ import annotations

import logging

import keyring
from keyring.errors import KeyringError, PasswordDeleteError

KEYRING_SERVICE = "speleosync"

logger = logging.getLogger(__name__)


def load_token(server_url: str) -> str | None:
    """Get the stored token for a server, None if absent or unavailable."""
    try:
        return keyring.get_password(KEYRING_SERVICE, server_url)
    except KeyringError as e:
        logger.warning(f"Keyring unavailable: {e}")
        return None


def store_token(server_url: str, token: str) -> bool:
    """Store the token for a server.

    Returns:
        True if stored, False if the keyring is unavailable.
    """
    try:
        keyring.set_password(KEYRING_SERVICE, server_url, token)
    except KeyringError as e:
        logger.warning(f"Could not store token in keyring: {e}")
        return False
    return True


def delete_token(server_url: str) -> None:
    """Forget the token for a server. Missing tokens are ignored."""
    try:
        keyring.delete_password(KEYRING_SERVICE, server_url)
    except PasswordDeleteError:
        pass
    except KeyringError as e:
        logger.warning(f"Could not remove token from keyring: {e}")
