"""Thin subprocess driver shared by the ssh and refresh modules."""

import logging
import subprocess
from dataclasses import dataclass
from typing import Optional, Sequence

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProcessResult:
    """Result of a finished local subprocess."""

    argv: tuple[str, ...]
    exit_code: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


def run(
    argv: Sequence[str],
    *,
    input: Optional[bytes] = None,
    capture_stdout: bool = False,
    inherit_output: bool = False,
) -> ProcessResult:
    """Run argv to completion.

    When input is given, it is fed to the child's stdin while stdout/stderr
    are drained (Popen.communicate multiplexes both directions), then stdin
    is closed. A child that exits without reading its input is not an error.
    Without input, stdin is /dev/null. If the wait is interrupted, the child
    is killed before the exception propagates.

    Args:
        argv: Program and arguments
        input: Bytes to write to stdin
        capture_stdout: Collect stdout instead of discarding it
        inherit_output: Leave stdout/stderr attached to our own (interactive use)

    Raises:
        OSError: If the program cannot be started
    """
    argv = tuple(argv)
    logger.debug("Running %s", argv)

    if inherit_output:
        stdout = stderr = None
    else:
        stdout = subprocess.PIPE if capture_stdout else subprocess.DEVNULL
        stderr = subprocess.PIPE
    stdin = subprocess.PIPE if input is not None else subprocess.DEVNULL

    with subprocess.Popen(argv, stdin=stdin, stdout=stdout, stderr=stderr) as proc:
        try:
            out, err = proc.communicate(input)
        except BaseException:
            # Interrupted (signal, Ctrl-C); Popen.__exit__ waits for the child
            proc.kill()
            raise

    result = ProcessResult(
        argv=argv,
        exit_code=proc.returncode,
        stdout=(out or b"").decode(errors="replace"),
        stderr=(err or b"").decode(errors="replace"),
    )
    logger.debug("%s exited with status %d", argv[0], result.exit_code)
    return result
