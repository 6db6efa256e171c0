"""Tier materializer for rotbackup.

Carries out RetentionDecisions as folder moves and deletes, and keeps the
per-tier latest pointer up to date. All operations go through the
DirectoryOperations the materializer was built with, so local and remote
targets are handled identically.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence
import logging

from rotbackup.errors import MaterializationError
from rotbackup.listing import BackupEntry, list_backups, sort_entries, tier_path
from rotbackup.location import DirectoryOperations
from rotbackup.naming import LATEST_POINTER_NAME, Tier
from rotbackup.retention import RetentionDecision


logger = logging.getLogger(__name__)


@dataclass
class MaterializeResult:
    """Names of the backups a decision moved or deleted."""
    moved: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)


class TierMaterializer:
    """
    Applies retention decisions to a target.

    Any failing operation raises MaterializationError and nothing further
    is attempted; already applied operations stay applied.
    """

    def __init__(
        self,
        ops: DirectoryOperations,
        target: Path,
        log: Optional[logging.Logger] = None,
    ):
        self.ops = ops
        self.target = Path(target)
        self.log = log or logger

    def _relative(self, path: Path) -> str:
        """Path relative to the target root, for log messages."""
        try:
            return str(Path(path).relative_to(self.target)) or "."
        except ValueError:
            return str(path)

    def apply(self, decision: RetentionDecision) -> MaterializeResult:
        """
        Move and delete the folders named in a decision.

        Moved folders keep their backup name in the destination tier.

        Raises:
            MaterializationError: If a move or delete fails
        """
        result = MaterializeResult()

        if decision.move:
            if decision.destination is None:
                raise MaterializationError(
                    f"Decision for tier {decision.tier.value} moves backups "
                    f"but names no destination tier"
                )
            destination_folder = tier_path(self.target, decision.destination)
            for entry in sort_entries(decision.move):
                self.log.info(
                    f"Moving {entry.name} to {self._relative(destination_folder)}"
                )
                self.ops.move(entry.path, destination_folder / entry.name)
                result.moved.append(entry.name)

        for entry in sort_entries(decision.delete):
            self.log.info(f"Removing {self._relative(entry.path)}")
            self.ops.delete(entry.path)
            result.deleted.append(entry.name)

        return result

    def refresh_latest(
        self,
        tier: Tier,
        entries: Optional[Sequence[BackupEntry]] = None,
    ) -> Optional[BackupEntry]:
        """
        Point the tier's latest pointer at its newest backup.

        Any existing pointer (symlink or placeholder directory) is removed
        first. With no backups in the tier an empty placeholder directory is
        created instead, so the pointer path always resolves.

        Args:
            tier: Tier to refresh
            entries: Current backups of the tier; listed afresh if omitted

        Returns:
            The entry the pointer now refers to, or None for a placeholder

        Raises:
            MaterializationError: If the pointer cannot be replaced
        """
        folder = tier_path(self.target, tier)
        if entries is None:
            entries = list_backups(self.ops, self.target, tier, log=self.log)

        pointer = folder / LATEST_POINTER_NAME
        self.log.info(f"Updating latest pointer in {self._relative(folder)}")
        self.ops.remove_pointer(pointer)

        if not entries:
            self.log.info("No backups found, creating placeholder folder instead of symlink")
            self.ops.make_directory(pointer, mode=0o755)
            return None

        newest = sort_entries(list(entries))[-1]
        self.ops.symlink(newest.name, pointer)
        self.log.debug(f"{self._relative(pointer)} -> {newest.name}")
        return newest
