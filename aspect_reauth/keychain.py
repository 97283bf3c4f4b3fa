"""
Local OS keychain access, by (service, account).

Backed by the keyring library, which picks the platform store (macOS
Keychain, Windows Credential Locker, Secret Service on Linux).
"""

import logging

import keyring
from keyring.errors import KeyringError

from aspect_reauth.errors import KeychainError

logger = logging.getLogger(__name__)


def fetch_credential(service: str, account: str) -> str:
    """Read a secret from the keychain.

    Raises:
        KeychainError: If the read fails or no secret is stored
    """
    try:
        secret = keyring.get_password(service, account)
    except KeyringError as e:
        raise KeychainError(service, account, f"read failed: {e}") from e
    if secret is None:
        raise KeychainError(service, account, "no credential stored")
    logger.debug("Read keychain entry %s/%s", service, account)
    return secret


def store_credential(service: str, account: str, secret: str) -> None:
    """Write a secret to the keychain.

    Raises:
        KeychainError: If the write fails
    """
    try:
        keyring.set_password(service, account, secret)
    except KeyringError as e:
        raise KeychainError(service, account, f"write failed: {e}") from e
    logger.debug("Wrote keychain entry %s/%s", service, account)


__all__ = ["fetch_credential", "store_credential"]
