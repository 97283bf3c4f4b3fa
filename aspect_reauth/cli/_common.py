"""Shared CLI infrastructure: exit codes, logging setup, argument types."""

import argparse
import logging
import signal
import sys
from typing import Callable, Optional

from aspect_reauth.ssh import SocketPolicy

# Exit codes
EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE_ERROR = 2
EXIT_INTERRUPTED = 130

_LOG_FORMAT = "%(levelname)s %(name)s: %(message)s"


def configure_logging(verbose: bool = False, quiet: bool = False) -> None:
    """Log to stderr at WARNING (DEBUG with -v, ERROR with -q), warnings included."""
    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.ERROR
    else:
        level = logging.WARNING
    logging.basicConfig(level=level, format=_LOG_FORMAT, stream=sys.stderr, force=True)
    logging.captureWarnings(True)


def socket_policy_arg(value: str) -> SocketPolicy:
    """argparse type for --create-socket."""
    try:
        return SocketPolicy.parse(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e))


def install_signal_handlers(cleanup_fn: Optional[Callable[[], None]] = None):
    """Install a SIGTERM handler that calls cleanup_fn (if any) then exits.

    The exit is a SystemExit raised in the main thread, so it unwinds
    through the caller's own cleanup like KeyboardInterrupt does for
    SIGINT. Returns the previous SIGTERM handler.
    """

    def _handler(signum, frame):
        if cleanup_fn is not None:
            cleanup_fn()
        sys.exit(128 + signum)

    return signal.signal(signal.SIGTERM, _handler)
