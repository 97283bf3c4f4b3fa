"""
Exceptions raised while syncing a credential to a remote host.

Every step of a run is fatal on failure except teardown of the SSH control
master, which is reported as a CleanupWarning instead.
"""

from typing import Optional


class ReauthError(Exception):
    """Base class for all fatal errors of a reauth run."""


class _ProcessFailure(ReauthError):
    """A subprocess exited non-zero.

    Attributes:
        step: What was being run (e.g. "ssh devbox keyctl padd")
        exit_code: Exit status of the subprocess
        stderr: Captured standard error, stripped
    """

    def __init__(self, step: str, exit_code: Optional[int] = None, stderr: str = ""):
        self.step = step
        self.exit_code = exit_code
        self.stderr = stderr.strip()
        message = step if exit_code is None else f"{step}: exit status {exit_code}"
        if self.stderr:
            message = f"{message}\n\n{self.stderr}"
        super().__init__(message)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(step={self.step!r}, exit_code={self.exit_code}, stderr={self.stderr!r})"


class SSHConnectionError(_ProcessFailure):
    """The control master or initial SSH session could not be established."""


class HelperProtocolError(_ProcessFailure):
    """The credential helper "get" failed for a reason other than an expired login."""


class LoginError(_ProcessFailure):
    """The credential helper "login" failed."""


class RemoteSyncError(_ProcessFailure):
    """`keyctl padd` on the remote host failed."""


class KeychainError(ReauthError):
    """Reading or writing the local keychain failed.

    Attributes:
        service: Keychain service name
        account: Keychain account name
    """

    def __init__(self, service: str, account: str, message: str):
        self.service = service
        self.account = account
        super().__init__(f"keychain entry {service}/{account}: {message}")


class StaleCredentialError(ReauthError):
    """The remote host still reports a stale credential right after a push."""

    def __init__(self, host: str):
        self.host = host
        super().__init__(
            f"credential on {host} still needs a refresh after syncing; retry with --force to log in again"
        )


class CleanupWarning(UserWarning):
    """Tearing down the control master or its socket directory failed."""


__all__ = [
    "ReauthError",
    "SSHConnectionError",
    "HelperProtocolError",
    "LoginError",
    "RemoteSyncError",
    "KeychainError",
    "StaleCredentialError",
    "CleanupWarning",
]
