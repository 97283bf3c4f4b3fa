"""
Run-wide settings.

Settings are resolved once at startup (defaults, then environment, then
explicit overrides such as CLI flags) and passed explicitly to every
component. Nothing here is mutated after construction.
"""

import os
from dataclasses import dataclass, field, fields
from typing import Mapping, Optional

from aspect_reauth.ssh import SocketPolicy

DEFAULT_HOST = "devbox"
DEFAULT_REMOTE = "aw-remote-ext.buildremote.stairwell.io"
DEFAULT_CREDENTIAL_HELPER = "aspect-credential-helper"
DEFAULT_SSH = "ssh"

KEYCHAIN_SERVICE = "AspectWorkflows"
KEY_PREFIX = "keyring-rs"
KEY_REALM = "AspectWorkflows"

# Environment variables consulted by Settings.from_env()
ENV_REMOTE = "ASPECT_REMOTE"
ENV_CREDENTIAL_HELPER = "ASPECT_CREDENTIAL_HELPER"
ENV_SSH = "ASPECT_REAUTH_SSH"


def _get_env_str(environ: Mapping[str, str], name: str, default: str) -> str:
    """Get environment variable, treating an empty value as unset."""
    val = environ.get(name)
    if not val:
        return default
    return val


@dataclass(frozen=True)
class Settings:
    """Read-only configuration for one reauth run.

    Args:
        host: SSH host to which the credential is synced
        remote: DNS name of the remote build service the credential is for
        credential_helper: Name or path of the credential helper executable
        ssh_executable: OpenSSH-compatible client to shell out to
        ssh_args: Extra arguments passed to every ssh invocation
        socket_policy: Whether to create a private control socket
        force_local: Log in again even if the local credential is valid
        force_remote: Push even if the remote credential is valid
        session_keyring: Use the session keyring (@s) instead of the user keyring (@u)
        verify: Re-check the remote credential once after pushing
    """

    host: str = DEFAULT_HOST
    remote: str = DEFAULT_REMOTE
    credential_helper: str = DEFAULT_CREDENTIAL_HELPER
    ssh_executable: str = DEFAULT_SSH
    ssh_args: tuple[str, ...] = ()
    socket_policy: SocketPolicy = SocketPolicy.INFER
    force_local: bool = False
    force_remote: bool = False
    session_keyring: bool = False
    verify: bool = True
    keychain_service: str = KEYCHAIN_SERVICE
    key_prefix: str = KEY_PREFIX
    key_realm: str = field(default=KEY_REALM, repr=False)

    def __post_init__(self):
        for name in ("host", "remote", "credential_helper", "ssh_executable"):
            value = getattr(self, name)
            if not value or not value.strip():
                raise ValueError(f"{name} must be a non-empty string")
        # Accept any iterable of args but store an immutable tuple
        object.__setattr__(self, "ssh_args", tuple(self.ssh_args))

    @property
    def key_name(self) -> str:
        """Name of the user key written to the remote kernel keyring."""
        return f"{self.key_prefix}:{self.remote}@{self.key_realm}"

    @property
    def keyring_selector(self) -> str:
        return "@s" if self.session_keyring else "@u"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides) -> "Settings":
        """Build Settings from the environment plus explicit overrides.

        Overrides whose value is None are ignored, so parsed CLI arguments can
        be passed straight through.

        Args:
            environ: Mapping to read instead of os.environ
            **overrides: Field values taking precedence over the environment

        Raises:
            TypeError: If an override names an unknown field
            ValueError: If a resulting value is invalid
        """
        if environ is None:
            environ = os.environ
        known = {f.name for f in fields(cls)}
        unknown = set(overrides) - known
        if unknown:
            raise TypeError(f"Unknown settings: {', '.join(sorted(unknown))}")

        values = {
            "remote": _get_env_str(environ, ENV_REMOTE, DEFAULT_REMOTE),
            "credential_helper": _get_env_str(environ, ENV_CREDENTIAL_HELPER, DEFAULT_CREDENTIAL_HELPER),
            "ssh_executable": _get_env_str(environ, ENV_SSH, DEFAULT_SSH),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


__all__ = ["Settings", "DEFAULT_HOST", "DEFAULT_REMOTE", "DEFAULT_CREDENTIAL_HELPER"]
