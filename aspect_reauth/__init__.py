"""
aspect_reauth - Keep the Aspect Workflows credential on a remote dev host fresh.

Checks the local and remote credential with the credential helper, logs in
again when needed, and pushes the keychain secret into the host's kernel
keyring over a single multiplexed SSH connection.

Quick start:
    from aspect_reauth import Settings, SSHSession, RefreshOrchestrator

    settings = Settings.from_env(host="devbox")
    with SSHSession(settings.host, settings.ssh_args, settings.socket_policy) as ssh:
        outcome = RefreshOrchestrator(settings, ssh).run()
"""

from aspect_reauth.config import Settings
from aspect_reauth.errors import (
    CleanupWarning,
    HelperProtocolError,
    KeychainError,
    LoginError,
    ReauthError,
    RemoteSyncError,
    SSHConnectionError,
    StaleCredentialError,
)
from aspect_reauth.refresh import RefreshOrchestrator, RefreshOutcome, needs_refresh, push_credential, run_login
from aspect_reauth.ssh import ControlSocket, SocketPolicy, SSHSession, resolve_socket_policy

__version__ = "0.1.0"

__all__ = [
    "Settings",
    "SocketPolicy",
    "ControlSocket",
    "SSHSession",
    "resolve_socket_policy",
    "RefreshOrchestrator",
    "RefreshOutcome",
    "needs_refresh",
    "run_login",
    "push_credential",
    "ReauthError",
    "SSHConnectionError",
    "HelperProtocolError",
    "LoginError",
    "KeychainError",
    "RemoteSyncError",
    "StaleCredentialError",
    "CleanupWarning",
]
