"""aspect-reauth -- Sync the remote build credential to a dev host's kernel keyring."""

import argparse
import signal
import sys

import aspect_reauth
from aspect_reauth.cli._common import (
    EXIT_FAILURE,
    EXIT_INTERRUPTED,
    EXIT_OK,
    EXIT_USAGE_ERROR,
    configure_logging,
    install_signal_handlers,
    socket_policy_arg,
)
from aspect_reauth.config import DEFAULT_HOST, Settings
from aspect_reauth.errors import ReauthError, SSHConnectionError
from aspect_reauth.refresh import RefreshOrchestrator, RefreshOutcome
from aspect_reauth.ssh import SocketPolicy, SSHSession


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="aspect-reauth",
        description="Refresh the Aspect Workflows credential and sync it to a remote host's kernel keyring",
    )
    parser.add_argument("host", nargs="?", default=DEFAULT_HOST, help=f"SSH host to sync to (default: {DEFAULT_HOST})")
    parser.add_argument("--remote", default=None, help="Aspect remote DNS name (env: ASPECT_REMOTE)")
    parser.add_argument(
        "--credential-helper", default=None, help="credential helper executable (env: ASPECT_CREDENTIAL_HELPER)"
    )
    parser.add_argument("--ssh", dest="ssh_executable", default=None, help="ssh executable (env: ASPECT_REAUTH_SSH)")
    parser.add_argument("-f", "--force", action="store_true", help="log in and push even if credentials are valid")
    parser.add_argument("--force-local", action="store_true", help="log in even if the local credential is valid")
    parser.add_argument("--force-remote", action="store_true", help="push even if the remote credential is valid")
    parser.add_argument(
        "-s", "--session-keyring", action="store_true", help="use the session (rather than user) keyring on the host"
    )
    sockets = parser.add_mutually_exclusive_group()
    sockets.add_argument(
        "-c",
        "--create-socket",
        type=socket_policy_arg,
        nargs="?",
        const=SocketPolicy.CREATE,
        default=SocketPolicy.INFER,
        metavar="{true,false,infer}",
        help="create a temporary SSH control socket (default: infer; use --create-socket=VALUE)",
    )
    sockets.add_argument(
        "-C",
        "--no-create-socket",
        dest="create_socket",
        action="store_const",
        const=SocketPolicy.REUSE,
        help="do not create a temporary SSH control socket",
    )
    parser.add_argument(
        "-A",
        "--ssh-arg",
        "--ssh_arg",
        dest="ssh_args",
        action="append",
        default=[],
        help="additional ssh argument, repeatable (--ssh-arg=-p23 --ssh-arg=-4)",
    )
    parser.add_argument("--no-verify", action="store_true", help="do not re-check the remote credential after pushing")
    noise = parser.add_mutually_exclusive_group()
    noise.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    noise.add_argument("-q", "--quiet", action="store_true", help="only log errors")
    parser.add_argument("--version", action="version", version=f"%(prog)s {aspect_reauth.__version__}")
    return parser


def _run(settings: Settings) -> RefreshOutcome:
    # SIGTERM during setup unwinds through SSHSession, which drops its socket
    previous = install_signal_handlers()
    try:
        try:
            session = SSHSession(
                settings.host,
                settings.ssh_args,
                settings.socket_policy,
                ssh=settings.ssh_executable,
            )
        except OSError as e:
            raise SSHConnectionError(f"failed setting up ssh session: {e}") from e

        with session:
            install_signal_handlers(session.cleanup)
            return RefreshOrchestrator(settings, session).run()
    finally:
        signal.signal(signal.SIGTERM, previous)


def main() -> int:
    args = build_parser().parse_args()
    configure_logging(verbose=args.verbose, quiet=args.quiet)

    try:
        settings = Settings.from_env(
            host=args.host,
            remote=args.remote,
            credential_helper=args.credential_helper,
            ssh_executable=args.ssh_executable,
            ssh_args=tuple(args.ssh_args),
            socket_policy=args.create_socket,
            force_local=args.force or args.force_local,
            force_remote=args.force or args.force_remote,
            session_keyring=args.session_keyring,
            verify=not args.no_verify,
        )
    except ValueError as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_USAGE_ERROR

    try:
        outcome = _run(settings)
    except KeyboardInterrupt:
        return EXIT_INTERRUPTED
    except ReauthError as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_FAILURE

    if outcome is RefreshOutcome.NOT_NEEDED:
        print("Credential refresh not needed. Have a nice day.")
    else:
        print(f"Aspect credentials synced to {settings.host}. Have a nice day.")
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
