"""
SSH connection multiplexing on top of the system OpenSSH client.

SSHSession shells out to ``ssh`` rather than speaking the protocol itself. It
either stands up a private control master on a temporary control socket, or
relies on the host's own ControlMaster configuration, and then builds every
remote command against that single connection so that later commands do not
pay for connection setup again.

Example:
    from aspect_reauth import _process
    from aspect_reauth.ssh import SSHSession

    with SSHSession("devbox") as ssh:
        result = _process.run(ssh.command("hostname"), capture_stdout=True)
        print(result.stdout)
"""

from __future__ import annotations

import enum
import logging
import shutil
import tempfile
import warnings
from pathlib import Path
from typing import Callable, Optional, Sequence

import paramiko

from aspect_reauth import _process
from aspect_reauth.errors import CleanupWarning, SSHConnectionError

logger = logging.getLogger(__name__)

SOCKET_PREFIX = "aspect-reauth-"

# Restrictive options for batch use, cf. scp.c in openssh-portable
_BATCH_OPTIONS = (
    "-oPermitLocalCommand=no",
    "-oClearAllForwardings=yes",
    "-oRemoteCommand=none",
    "-oForwardAgent=no",
    "-oBatchMode=yes",
)


# ---------------------------------------------------------------------------
# Socket policy
# ---------------------------------------------------------------------------

_TRUE_WORDS = frozenset({"y", "yes", "t", "true", "on", "1"})
_FALSE_WORDS = frozenset({"n", "no", "f", "false", "off", "0"})


class SocketPolicy(enum.Enum):
    """Whether to stand up a private control master for the session."""

    CREATE = "true"
    REUSE = "false"
    INFER = "infer"

    @classmethod
    def parse(cls, text: str) -> SocketPolicy:
        """Parse "infer" or a boolean word (yes/no, on/off, 1/0, ...)."""
        word = text.strip().lower()
        if word == "infer":
            return cls.INFER
        if word in _TRUE_WORDS:
            return cls.CREATE
        if word in _FALSE_WORDS:
            return cls.REUSE
        raise ValueError(f"unknown value {text!r} (expected true, false or infer)")


def declares_multiplexing(config_dump: str, host: str) -> bool:
    """True if an ``ssh -G`` dump shows the host multiplexes on its own.

    The dump is plain ssh_config text (``<key> <value>`` per line, keys
    lowercased), so paramiko's parser reads it directly. It opens with
    ``host <name>``, the destination with any user, scheme and port
    stripped, and the options are looked up under that name rather than
    under the destination as typed (``me@devbox`` matches no block).
    """
    config = paramiko.SSHConfig.from_text(config_dump)
    names = sorted(config.get_hostnames() - {"*"})
    options = config.lookup(names[0] if names else host)
    return options.get("controlmaster", "").lower() == "auto" and "controlpersist" in options


def has_user_socket(host: str, *, ssh: str = "ssh", ssh_args: Sequence[str] = ()) -> bool:
    """Ask the ssh client whether the host's effective config sets up its own master.

    Raises:
        SSHConnectionError: If ``ssh -G`` fails
        OSError: If ssh cannot be started
    """
    result = _process.run([ssh, *ssh_args, "-G", "--", host], capture_stdout=True)
    if not result.ok:
        raise SSHConnectionError("failed to check for existing control socket", result.exit_code, result.stderr)
    return declares_multiplexing(result.stdout, host)


def resolve_socket_policy(
    policy: SocketPolicy,
    host: str,
    query: Optional[Callable[[str], bool]] = None,
) -> bool:
    """Resolve a policy to "create a private socket?".

    For INFER, a failing query means "create": an unneeded socket is cheap,
    and a broken config will fail again on the real connection anyway.
    """
    if policy is SocketPolicy.CREATE:
        return True
    if policy is SocketPolicy.REUSE:
        return False
    if query is None:
        query = has_user_socket
    try:
        return not query(host)
    except Exception as e:
        logger.debug("Could not inspect ssh config for %s, creating a socket: %s", host, e)
        return True


# ---------------------------------------------------------------------------
# ControlSocket
# ---------------------------------------------------------------------------


class ControlSocket:
    """A control socket path inside a private temporary directory.

    The directory is created mode 0700 and removed, with everything in it, by
    destroy(). ControlSocket is os.PathLike, so it can go straight into argv.
    """

    NAME = "sock"

    def __init__(self, directory: Path):
        self._directory = Path(directory)
        self._path = self._directory / self.NAME
        self._destroyed = False

    @classmethod
    def create(cls, prefix: str = SOCKET_PREFIX) -> ControlSocket:
        """Allocate a fresh private directory.

        Raises:
            OSError: If the directory cannot be created
        """
        return cls(Path(tempfile.mkdtemp(prefix=prefix)))

    @property
    def path(self) -> Path:
        return self._path

    @property
    def directory(self) -> Path:
        return self._directory

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    def destroy(self) -> None:
        """Remove the directory and its contents (idempotent).

        Raises:
            OSError: If removal fails for a reason other than the directory being gone
        """
        if self._destroyed:
            return
        self._destroyed = True
        try:
            shutil.rmtree(self._directory)
        except FileNotFoundError:
            pass

    def __fspath__(self) -> str:
        return str(self._path)

    def __repr__(self) -> str:
        state = "destroyed" if self._destroyed else "live"
        return f"ControlSocket({str(self._path)!r}, {state})"


# ---------------------------------------------------------------------------
# SSHSession
# ---------------------------------------------------------------------------


class SSHSession:
    """One multiplexed SSH connection to a host, for the lifetime of a run.

    Construction blocks until the connection is up: with a private socket a
    control master is started on it; otherwise a plain ``ssh host true`` is
    run, which also brings up the host's own master if it auto-multiplexes
    but has none running yet (so that master is not created with our
    restrictive batch options).

    Use as a context manager; cleanup() runs on every exit path and is
    idempotent.

    Args:
        host: SSH destination
        ssh_args: Extra arguments passed to every ssh invocation
        socket_policy: Create, reuse, or infer from the host's ssh config
        ssh: ssh executable
        socket_prefix: Name prefix of the private socket directory

    Raises:
        SSHConnectionError: If the session cannot be established
        OSError: If the socket directory cannot be created
    """

    def __init__(
        self,
        host: str,
        ssh_args: Sequence[str] = (),
        socket_policy: SocketPolicy = SocketPolicy.INFER,
        *,
        ssh: str = "ssh",
        socket_prefix: str = SOCKET_PREFIX,
    ):
        if not host or not host.strip():
            raise ValueError("host must be a non-empty string")
        self._host = host
        self._ssh_args = tuple(ssh_args)
        self._ssh = ssh
        self._socket: Optional[ControlSocket] = None
        self._closed = False

        own_socket = resolve_socket_policy(
            socket_policy,
            host,
            lambda h: has_user_socket(h, ssh=self._ssh, ssh_args=self._ssh_args),
        )
        logger.debug("Socket policy %s for %s resolved to own_socket=%s", socket_policy.name, host, own_socket)
        if own_socket:
            self._socket = ControlSocket.create(socket_prefix)

        try:
            self._connect()
        except BaseException:
            self._abandon()
            raise

    @property
    def host(self) -> str:
        return self._host

    @property
    def ssh_args(self) -> tuple[str, ...]:
        return self._ssh_args

    @property
    def owns_socket(self) -> bool:
        return self._socket is not None

    @property
    def socket(self) -> Optional[ControlSocket]:
        return self._socket

    @property
    def closed(self) -> bool:
        return self._closed

    def _connect(self) -> None:
        argv = [self._ssh, *self._ssh_args]
        if self._socket is not None:
            argv += ["-xMTS", str(self._socket.path), "-oControlPersist=yes", *_BATCH_OPTIONS]
        argv += ["--", self._host, "true"]

        try:
            result = _process.run(argv)
        except OSError as e:
            raise SSHConnectionError(f"failed to start SSH control master: {e}") from e
        if not result.ok:
            raise SSHConnectionError(f"ssh {self._host}", result.exit_code, result.stderr)

        if self._socket is not None:
            logger.info("Control master for %s listening on %s", self._host, self._socket.path)
        else:
            logger.info("Connected to %s using its own ssh multiplexing", self._host)

    def _abandon(self) -> None:
        """Drop the socket directory after a failed or interrupted connect."""
        self._closed = True
        socket, self._socket = self._socket, None
        if socket is None:
            return
        # Interrupted after the master was already listening
        if socket.path.exists():
            self._stop_master(socket)
        try:
            socket.destroy()
        except OSError as e:
            warnings.warn(f"failed to remove {socket.directory}: {e}", CleanupWarning, stacklevel=3)

    def command(self, command: str, *args: str) -> list[str]:
        """Build argv running command (and args) on the host through this session.

        The caller attaches stdio and spawns it.
        """
        if self._closed:
            raise RuntimeError(f"SSH session to {self._host} is closed")
        argv = [self._ssh, *self._ssh_args]
        if self._socket is not None:
            argv += ["-S", str(self._socket.path)]
        argv += ["-xT", *_BATCH_OPTIONS, "--", self._host, command, *args]
        return argv

    def cleanup(self) -> None:
        """Stop the private control master and remove its socket (idempotent).

        Never raises; failures are reported as CleanupWarning.
        """
        if self._closed:
            return
        self._closed = True
        socket, self._socket = self._socket, None
        if socket is None:
            return

        self._stop_master(socket)
        try:
            socket.destroy()
        except OSError as e:
            warnings.warn(f"failed to remove {socket.directory}: {e}", CleanupWarning, stacklevel=2)
        logger.info("Control master for %s stopped", self._host)

    def _stop_master(self, socket: ControlSocket) -> None:
        argv = [self._ssh, *self._ssh_args, "-S", str(socket.path), "-Oexit", "--", self._host]
        try:
            result = _process.run(argv)
            if not result.ok:
                warnings.warn(
                    f"ssh -O exit {self._host}: exit status {result.exit_code}: {result.stderr.strip()}",
                    CleanupWarning,
                    stacklevel=3,
                )
        except OSError as e:
            warnings.warn(f"failed to clean up SSH control master: {e}", CleanupWarning, stacklevel=3)

    def __enter__(self) -> SSHSession:
        return self

    def __exit__(self, *exc) -> None:
        self.cleanup()

    def __repr__(self) -> str:
        state = "closed" if self._closed else "active"
        mode = "own socket" if self._socket is not None else "host multiplexing"
        return f"SSHSession({self._host}, {mode}, {state})"


__all__ = [
    "SocketPolicy",
    "declares_multiplexing",
    "has_user_socket",
    "resolve_socket_policy",
    "ControlSocket",
    "SSHSession",
]
