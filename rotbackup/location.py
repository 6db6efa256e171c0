"""Directory operations against a backup target.

The rotation engine, materializer and snapshot engine never branch on
whether the target is local or reached over ssh. They receive one
DirectoryOperations instance and call its methods; the local
implementation uses native filesystem calls, the remote one issues a
single shell command per operation.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional, Sequence
import logging
import os
import posixpath
import shlex
import shutil
import uuid

from rotbackup.errors import (
    ErrorKind,
    ListingError,
    MaterializationError,
    RotationError,
    error_for_kind,
)
from rotbackup.process import CommandResult, CommandRunner, run_command


logger = logging.getLogger(__name__)

DEFAULT_SSH_PORT = 22


class DirectoryOperations(ABC):
    """Directory commands the core needs against a target location."""

    is_remote = False

    @abstractmethod
    def list_directories(self, path: Path) -> List[str]:
        """
        Names of the immediate child directories of path.

        Symbolic links are not followed and not reported.

        Raises:
            ListingError: If the directory cannot be enumerated
        """

    @abstractmethod
    def move(self, source: Path, destination: Path) -> None:
        """Rename source to destination."""

    @abstractmethod
    def delete(self, path: Path) -> None:
        """Recursively remove a folder."""

    @abstractmethod
    def symlink(self, target: str, link: Path) -> None:
        """Create a symbolic link at link pointing to target."""

    @abstractmethod
    def make_directory(self, path: Path, mode: int = 0o700) -> None:
        """Create a directory and any missing parents."""

    @abstractmethod
    def exists(self, path: Path) -> bool:
        """Whether anything (including a dangling symlink) exists at path."""

    @abstractmethod
    def is_directory(self, path: Path) -> bool:
        """Whether path is a directory."""

    @abstractmethod
    def remove_pointer(self, path: Path) -> None:
        """Remove a symlink or directory at path if one exists."""

    def describe(self, path: Path) -> str:
        """Human-readable location of path, for log messages."""
        return str(path)


class LocalDirectoryOperations(DirectoryOperations):
    """Directory operations on the local filesystem."""

    def __init__(self, log: Optional[logging.Logger] = None):
        self.log = log or logger

    def list_directories(self, path: Path) -> List[str]:
        try:
            with os.scandir(path) as entries:
                return [
                    entry.name
                    for entry in entries
                    if entry.is_dir(follow_symlinks=False)
                ]
        except OSError as e:
            raise ListingError(f"Could not list local folder {path}: {e}")

    def move(self, source: Path, destination: Path) -> None:
        self.log.debug(f"Renaming {source} to {destination}")
        try:
            os.rename(source, destination)
        except OSError as e:
            raise MaterializationError(
                f"Could not rename {source} to {destination}: {e}"
            )

    def delete(self, path: Path) -> None:
        self.log.debug(f"Removing {path}")
        try:
            shutil.rmtree(path)
        except OSError as e:
            raise MaterializationError(f"Could not remove {path}: {e}")

    def symlink(self, target: str, link: Path) -> None:
        self.log.debug(f"Linking {link} -> {target}")
        try:
            os.symlink(target, link)
        except OSError as e:
            raise MaterializationError(f"Could not create symlink at {link}: {e}")

    def make_directory(self, path: Path, mode: int = 0o700) -> None:
        self.log.debug(f"Creating folder {path}")
        try:
            os.makedirs(path, mode=mode, exist_ok=True)
        except OSError as e:
            raise MaterializationError(f"Could not create folder {path}: {e}")

    def exists(self, path: Path) -> bool:
        return os.path.lexists(path)

    def is_directory(self, path: Path) -> bool:
        return os.path.isdir(path)

    def remove_pointer(self, path: Path) -> None:
        try:
            if os.path.islink(path) or os.path.isfile(path):
                os.unlink(path)
            elif os.path.isdir(path):
                shutil.rmtree(path)
        except OSError as e:
            raise MaterializationError(
                f"Failed to remove symlink or directory at {path}: {e}"
            )


class RemoteDirectoryOperations(DirectoryOperations):
    """
    Directory operations on a remote host, one ssh call per operation.

    Every path is quoted with shlex.quote before it is placed in a remote
    command line.
    """

    is_remote = True

    def __init__(
        self,
        host: str,
        user: Optional[str] = None,
        port: int = DEFAULT_SSH_PORT,
        ssh_options: Sequence[str] = (),
        runner: Optional[CommandRunner] = None,
        log: Optional[logging.Logger] = None,
    ):
        """
        Initialize remote operations.

        Args:
            host: Remote host name passed to ssh
            user: Optional login user (ssh -l)
            port: ssh port, only passed on when it differs from 22
            ssh_options: Extra arguments placed before the host
            runner: Command runner, run_command unless overridden
            log: Logger for commands and their output
        """
        self.host = host
        self.user = (user or "").strip() or None
        self.port = port
        self.ssh_options = list(ssh_options)
        self.runner = runner or run_command
        self.log = log or logger

    def ssh_arguments(self) -> List[str]:
        """ssh arguments shared by remote calls and rsync's -e option."""
        args = list(self.ssh_options)
        if self.user:
            args.extend(["-l", self.user])
        if self.port != DEFAULT_SSH_PORT:
            args.extend(["-p", str(self.port)])
        return args

    def describe(self, path: Path) -> str:
        return f"{self.host}:{path}"

    def _call(self, command: str, error_kind: ErrorKind) -> CommandResult:
        argv = ["ssh", *self.ssh_arguments(), self.host, command]
        result = self.runner(argv, label="ssh", log=self.log, error_kind=error_kind)
        if not result.success:
            detail = "; ".join(result.stderr_lines).strip()
            raise error_for_kind(
                error_kind,
                f"Remote command failed on {self.host} with exit code "
                f"{result.returncode}: {command}" + (f" ({detail})" if detail else ""),
            )
        return result

    def _test(self, condition: str) -> bool:
        """Evaluate a shell test remotely, using random markers as answers."""
        yes_marker = uuid.uuid4().hex
        no_marker = uuid.uuid4().hex
        result = self._call(
            f"if {condition}; then echo {yes_marker}; else echo {no_marker}; fi",
            ErrorKind.LISTING,
        )
        answer = result.stdout_lines[0].strip() if result.stdout_lines else ""
        if answer == yes_marker:
            return True
        if answer == no_marker:
            return False
        raise ListingError(
            f"Unexpected output from remote check '{condition}' on {self.host}: {answer!r}"
        )

    def list_directories(self, path: Path) -> List[str]:
        quoted = shlex.quote(str(path))
        try:
            result = self._call(
                f"find {quoted} -mindepth 1 -maxdepth 1 -type d",
                ErrorKind.LISTING,
            )
        except RotationError as e:
            raise ListingError(
                f"Could not list remote folder {self.describe(path)}: {e.message}"
            )
        return [
            posixpath.basename(line.rstrip("/"))
            for line in result.stdout_lines
            if line.strip()
        ]

    def move(self, source: Path, destination: Path) -> None:
        self._call(
            f"mv {shlex.quote(str(source))} {shlex.quote(str(destination))}",
            ErrorKind.MATERIALIZATION,
        )

    def delete(self, path: Path) -> None:
        self._call(f"rm -rf {shlex.quote(str(path))}", ErrorKind.MATERIALIZATION)

    def symlink(self, target: str, link: Path) -> None:
        self._call(
            f"ln -s {shlex.quote(target)} {shlex.quote(str(link))}",
            ErrorKind.MATERIALIZATION,
        )

    def make_directory(self, path: Path, mode: int = 0o700) -> None:
        self._call(
            f"mkdir -p -m {mode:04o} {shlex.quote(str(path))}",
            ErrorKind.MATERIALIZATION,
        )

    def exists(self, path: Path) -> bool:
        quoted = shlex.quote(str(path))
        return self._test(f"[ -e {quoted} ] || [ -L {quoted} ]")

    def is_directory(self, path: Path) -> bool:
        return self._test(f"[ -d {shlex.quote(str(path))} ]")

    def remove_pointer(self, path: Path) -> None:
        quoted = shlex.quote(str(path))
        self._call(
            f"if [ -L {quoted} ] || [ -e {quoted} ]; then rm -rf {quoted}; fi",
            ErrorKind.MATERIALIZATION,
        )
