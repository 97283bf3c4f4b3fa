"""
Credential freshness checks, re-login and push to the remote kernel keyring.

The credential helper speaks a small protocol:

- ``<helper> get`` reads one JSON line ``{"uri":"https://<remote>"}`` on stdin
  and exits 0 if the credential for that remote is valid. Otherwise it exits
  non-zero and asks, on stderr, to "please run `<helper> login`".
- ``<helper> login <remote>`` re-authenticates (usually in a browser) and
  stores the new credential in the local keychain.

RefreshOrchestrator checks the local and remote credential concurrently,
logs in if needed, then copies the keychain secret to the host with
``keyctl padd`` over the already-open SSH session.
"""

from __future__ import annotations

import enum
import json
import logging
import re
from concurrent.futures import ThreadPoolExecutor, wait
from pathlib import PurePath
from typing import TYPE_CHECKING, Callable, Sequence

from aspect_reauth import _process
from aspect_reauth.errors import HelperProtocolError, LoginError, RemoteSyncError, StaleCredentialError
from aspect_reauth.keychain import fetch_credential

if TYPE_CHECKING:
    from aspect_reauth.config import Settings
    from aspect_reauth.ssh import SSHSession

logger = logging.getLogger(__name__)

CommandBuilder = Callable[..., Sequence[str]]


def local_command(command: str, *args: str) -> list[str]:
    """CommandBuilder that runs the command on this machine."""
    return [command, *args]


def login_required(stderr: str, credential_helper: str) -> bool:
    """True if helper output asks the user to run ``<helper> login``.

    Matched on the helper's base name, case-insensitively and across lines.
    """
    name = re.escape(PurePath(credential_helper).name)
    pattern = re.compile(rf"please\s+run.*{name}\s+login", re.IGNORECASE | re.MULTILINE | re.DOTALL)
    return pattern.search(stderr) is not None


def needs_refresh(build_command: CommandBuilder, remote: str, credential_helper: str, *, where: str = "") -> bool:
    """Probe the credential with ``<helper> get``.

    Args:
        build_command: Builds argv for the helper (local_command or SSHSession.command)
        remote: Remote the credential is for
        credential_helper: Helper executable
        where: Suffix for error messages, e.g. " on devbox"

    Returns:
        False if the credential is valid, True if a login is required

    Raises:
        HelperProtocolError: If the helper fails for any other reason
    """
    argv = build_command(credential_helper, "get")
    request = json.dumps({"uri": f"https://{remote}"}, separators=(",", ":")) + "\n"
    try:
        result = _process.run(argv, input=request.encode())
    except OSError as e:
        raise HelperProtocolError(f"failed to run {credential_helper}{where}: {e}") from e

    if result.ok:
        return False
    if login_required(result.stderr, credential_helper):
        logger.debug("%s get%s reports login required", credential_helper, where)
        return True
    raise HelperProtocolError(f"{credential_helper} get{where}", result.exit_code, result.stderr)


def run_login(credential_helper: str, remote: str) -> None:
    """Run the interactive ``<helper> login <remote>``.

    Raises:
        LoginError: If the helper cannot be started or exits non-zero
    """
    logger.info("Logging in to %s with %s", remote, credential_helper)
    try:
        result = _process.run([credential_helper, "login", remote], inherit_output=True)
    except OSError as e:
        raise LoginError(f"failed to spawn {credential_helper}: {e}") from e
    if not result.ok:
        raise LoginError(f"{credential_helper} login", result.exit_code)


def push_credential(session: SSHSession, credential: str, key_name: str, keyring_selector: str) -> None:
    """Add the credential as a user key to the host's kernel keyring.

    Args:
        session: Established session to the host
        credential: Secret payload, written to keyctl's stdin
        key_name: Description of the key
        keyring_selector: "@u" (user keyring) or "@s" (session keyring)

    Raises:
        RemoteSyncError: If keyctl fails
    """
    argv = session.command("keyctl", "padd", "user", key_name, keyring_selector)
    try:
        result = _process.run(argv, input=credential.encode())
    except OSError as e:
        raise RemoteSyncError(f"failed to run keyctl on {session.host}: {e}") from e
    if not result.ok:
        raise RemoteSyncError(f"ssh {session.host} keyctl padd", result.exit_code, result.stderr)
    logger.info("Added %s to %s on %s", key_name, keyring_selector, session.host)


class RefreshOutcome(enum.Enum):
    NOT_NEEDED = "not_needed"
    SYNCED = "synced"


class RefreshOrchestrator:
    """Runs one refresh: check both sides, log in, push, verify.

    The local path (check, then login if needed) and the remote check run
    concurrently; they share only the read-only settings. Both finish before
    anything is fetched or pushed. A local failure is reported in preference
    to a remote one, as it is usually the root cause.

    Args:
        settings: Run configuration
        session: Established session to settings.host
    """

    def __init__(self, settings: Settings, session: SSHSession):
        self._settings = settings
        self._session = session

    def run(self) -> RefreshOutcome:
        """Perform the refresh.

        Raises:
            ReauthError: On any failed step
        """
        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="reauth") as pool:
            local = pool.submit(self._refresh_local)
            remote = pool.submit(self._remote_stale)
            wait([local, remote])

        local_exc = local.exception()
        remote_exc = remote.exception()
        if local_exc is not None:
            if remote_exc is not None:
                logger.debug("Remote check also failed: %s", remote_exc)
            raise local_exc
        if remote_exc is not None:
            raise remote_exc

        logged_in = local.result()
        remote_stale = remote.result()
        if not (logged_in or remote_stale or self._settings.force_remote):
            return RefreshOutcome.NOT_NEEDED

        self._sync()

        # One re-check only, never a retry loop
        if self._settings.verify and not self._settings.force_remote and self._remote_stale():
            raise StaleCredentialError(self._settings.host)
        return RefreshOutcome.SYNCED

    def _refresh_local(self) -> bool:
        """Log in locally if needed. Returns True if a login happened."""
        s = self._settings
        if not s.force_local and not needs_refresh(local_command, s.remote, s.credential_helper):
            return False
        run_login(s.credential_helper, s.remote)
        return True

    def _remote_stale(self) -> bool:
        s = self._settings
        if s.force_remote:
            return True
        return needs_refresh(self._session.command, s.remote, s.credential_helper, where=f" on {s.host}")

    def _sync(self) -> None:
        s = self._settings
        credential = fetch_credential(s.keychain_service, s.remote)
        push_credential(self._session, credential, s.key_name, s.keyring_selector)


__all__ = [
    "local_command",
    "login_required",
    "needs_refresh",
    "run_login",
    "push_credential",
    "RefreshOutcome",
    "RefreshOrchestrator",
]
