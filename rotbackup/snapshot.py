"""Snapshot engine for rotbackup.

Creates one new backup folder per run using rsync. Unchanged files are
hard-linked against the newest existing backup (--link-dest), so every
backup is a complete tree while only changed files take up space.

The transfer is written into a staging folder (<name>_progress). On
success the staging folder is renamed to the final backup name; on failure
it is renamed to <name>_error, which keeps it for inspection but out of
every future listing and rotation.
"""

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Sequence
import logging
import posixpath
import shlex
import time

from rotbackup.errors import ErrorKind, RotationError, TransferError
from rotbackup.listing import BackupEntry
from rotbackup.location import DirectoryOperations
from rotbackup.naming import error_name, format_name, progress_name
from rotbackup.process import CommandRunner, run_command


logger = logging.getLogger(__name__)

# rsync exit codes for partial transfers: some files could not be
# transferred or deleted, or vanished during the run. The backup is still
# usable, so these are warnings rather than failures.
RSYNC_PARTIAL_TRANSFER_CODES = frozenset({23, 24, 25})


@dataclass
class SnapshotResult:
    """Result of a snapshot operation."""
    success: bool
    name: str
    snapshot_path: Optional[Path]
    exit_code: int
    duration_seconds: float
    warning: Optional[str] = None
    link_dest: Optional[str] = None
    stdout_lines: List[str] = field(default_factory=list)
    stderr_lines: List[str] = field(default_factory=list)


class SnapshotEngine:
    """
    Creates hard-linked incremental backups with rsync.

    Backups are created in the main tier directory (the target root).
    """

    def __init__(
        self,
        target: Path,
        sources: Sequence[str],
        ops: DirectoryOperations,
        target_host: Optional[str] = None,
        rsync_options: Sequence[str] = (),
        ssh_arguments: Sequence[str] = (),
        runner: Optional[CommandRunner] = None,
        log: Optional[logging.Logger] = None,
    ):
        """
        Initialize the snapshot engine.

        Args:
            target: Target root on the local or remote host
            sources: Paths handed to rsync as sources
            ops: Directory operations for the target
            target_host: Remote host, None for a local target
            rsync_options: Extra rsync arguments appended after the defaults
            ssh_arguments: Arguments for the ssh transport (rsync -e)
            runner: Command runner, run_command unless overridden
            log: Logger for progress and rsync output
        """
        self.target = Path(target)
        self.sources = [str(s) for s in sources]
        self.ops = ops
        self.target_host = target_host or None
        self.rsync_options = list(rsync_options)
        self.ssh_arguments = list(ssh_arguments)
        self.runner = runner or run_command
        self.log = log or logger

    def _generate_name(self) -> str:
        return format_name(datetime.now())

    def _destination_argument(self, path: Path) -> str:
        if self.target_host:
            return f"{self.target_host}:{path}"
        return str(path)

    def build_rsync_command(
        self,
        staging_path: Path,
        link_dest: Optional[str] = None,
    ) -> List[str]:
        """
        Build the rsync command line.

        Flags used:
        - -a (archive): preserves permissions, timestamps, symlinks, etc.
        - --delete: remove files from dest that don't exist in source
        - --link-dest: hard link unchanged files against the last backup.
          rsync resolves a relative link-dest against the folder being
          written, hence the "../" in front of the target-relative path
        - -e: ssh transport with the configured ssh options (remote only)

        Args:
            staging_path: Folder rsync writes into
            link_dest: Last backup, relative to the target root

        Returns:
            List of command arguments
        """
        cmd = ["rsync", "-a", "--delete"]

        if link_dest:
            cmd.extend(["--link-dest", posixpath.join("..", link_dest)])

        cmd.extend(self.rsync_options)

        if self.target_host:
            cmd.extend(["-e", shlex.join(["ssh", *self.ssh_arguments])])

        cmd.extend(self.sources)
        cmd.append(self._destination_argument(staging_path))
        return cmd

    def _mark_failed(self, staging_path: Path, error_path: Path) -> None:
        """Rename a failed staging folder so it never counts as a backup."""
        try:
            if not self.ops.exists(staging_path):
                self.log.debug(f"No staging folder {staging_path} to mark as failed")
                return
            self.log.debug(f"Renaming progress folder {staging_path} to {error_path}")
            self.ops.move(staging_path, error_path)
        except RotationError as e:
            self.log.critical(
                f"Could not rename progress folder {staging_path} to error folder "
                f"{error_path}: {e.message}"
            )

    def create_snapshot(
        self,
        name: Optional[str] = None,
        link_dest: Optional[BackupEntry] = None,
    ) -> SnapshotResult:
        """
        Create a new backup folder.

        Process:
        1. Run rsync into <name>_progress, hard-linking against link_dest
        2. Exit codes 23/24/25: log a warning and continue
        3. Any other failure: rename to <name>_error and raise
        4. Rename <name>_progress to <name>

        Args:
            name: Backup name, generated from the current time if omitted
            link_dest: Newest existing backup, None for a first full backup

        Returns:
            SnapshotResult for the committed backup

        Raises:
            TransferError: If rsync fails or cannot be started
            MaterializationError: If the staging folder cannot be committed
        """
        start_time = time.time()
        name = name or self._generate_name()
        staging_path = self.target / progress_name(name)
        final_path = self.target / name
        error_path = self.target / error_name(name)
        link_dest_relative = link_dest.relative_path if link_dest else None

        self.log.info(f"Backing up sources: {', '.join(self.sources)}")
        if link_dest_relative:
            self.log.info(f"Hard-linking unchanged files against {link_dest_relative}")
        else:
            self.log.info("No existing backup, creating a full copy")

        cmd = self.build_rsync_command(staging_path, link_dest_relative)
        self.log.debug(f"rsync command line: {' '.join(cmd)}")

        try:
            result = self.runner(
                cmd, label="rsync", log=self.log, error_kind=ErrorKind.TRANSFER
            )
        except RotationError as e:
            self._mark_failed(staging_path, error_path)
            raise TransferError(f"Error executing rsync: {e.message}")

        warning = None
        if result.returncode in RSYNC_PARTIAL_TRANSFER_CODES:
            warning = (
                f"rsync exited with code {result.returncode}, indicating that "
                f"some files could not be transferred or deleted"
            )
            self.log.warning(warning)
        elif result.returncode != 0:
            detail = "; ".join(result.stderr_lines[-5:]).strip()
            self.log.critical(f"rsync failed with exit code {result.returncode}")
            self._mark_failed(staging_path, error_path)
            raise TransferError(
                f"rsync failed with exit code {result.returncode}"
                + (f": {detail}" if detail else ""),
                exit_code=result.returncode,
            )

        self.log.debug(f"Renaming progress folder {staging_path} to {final_path}")
        self.ops.move(staging_path, final_path)
        self.log.info(f"Backup created: {self.ops.describe(final_path)}")

        return SnapshotResult(
            success=True,
            name=name,
            snapshot_path=final_path,
            exit_code=result.returncode,
            duration_seconds=time.time() - start_time,
            warning=warning,
            link_dest=link_dest_relative,
            stdout_lines=result.stdout_lines,
            stderr_lines=result.stderr_lines,
        )
