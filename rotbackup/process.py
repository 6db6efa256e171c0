"""External process execution for rotbackup.

Runs a command while two reader threads drain its stdout and stderr, so a
chatty child (rsync, ssh) can never block on a full pipe buffer while we
wait for it to exit.
"""

from dataclasses import dataclass, field
from typing import IO, Callable, List, Optional, Sequence
import logging
import subprocess
import threading

from rotbackup.errors import ErrorKind, error_for_kind


logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Outcome of an external command."""
    returncode: int
    stdout_lines: List[str] = field(default_factory=list)
    stderr_lines: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.returncode == 0


# Signature shared by run_command and the fakes used in tests
CommandRunner = Callable[..., CommandResult]


def _drain_stream(
    stream: IO[bytes],
    stream_name: str,
    label: str,
    stash: List[str],
    log: logging.Logger,
    line_level: int,
) -> None:
    """Read a stream line by line until EOF, stashing and logging each line."""
    for line_bytes in stream:
        line = line_bytes.decode("utf-8", errors="replace").rstrip("\r\n")
        stash.append(line)
        log.log(line_level, f"[ {label} {stream_name} ] {line}")
    stream.close()


def run_command(
    argv: Sequence[str],
    label: str = "exec",
    log: Optional[logging.Logger] = None,
    line_level: int = logging.DEBUG,
    error_kind: ErrorKind = ErrorKind.INTERNAL,
) -> CommandResult:
    """
    Run an external command and collect its output.

    A non-zero exit status is reported through the result, not raised;
    callers decide which statuses are fatal.

    Args:
        argv: Program and arguments
        label: Short tag prefixed to every logged output line
        log: Logger receiving the output lines (defaults to module logger)
        line_level: Level at which output lines are logged
        error_kind: Kind of the RotationError raised if the program cannot
            be started

    Returns:
        CommandResult with exit status and captured lines

    Raises:
        RotationError: If the process cannot be started
    """
    log = log or logger
    log.debug(f"Running: {' '.join(argv)}")

    try:
        process = subprocess.Popen(
            list(argv),
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )
    except OSError as e:
        raise error_for_kind(error_kind, f"Could not start {argv[0]}: {e}")

    stdout_lines: List[str] = []
    stderr_lines: List[str] = []
    readers = [
        threading.Thread(
            target=_drain_stream,
            args=(process.stdout, "stdout", label, stdout_lines, log, line_level),
            daemon=True,
        ),
        threading.Thread(
            target=_drain_stream,
            args=(process.stderr, "stderr", label, stderr_lines, log, line_level),
            daemon=True,
        ),
    ]
    for reader in readers:
        reader.start()

    returncode = process.wait()
    for reader in readers:
        reader.join()

    log.debug(f"{label} finished with exit code {returncode}")

    return CommandResult(
        returncode=returncode,
        stdout_lines=stdout_lines,
        stderr_lines=stderr_lines,
    )
