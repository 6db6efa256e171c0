"""Backup listing for rotbackup.

Enumerates the backup folders of a tier, the same way for local and remote
targets, and answers the two questions a run asks of the target before
rotation: does the folder layout exist, and which backup is the newest.
"""

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import List, Optional
import logging
import os

from rotbackup.errors import ListingError
from rotbackup.location import DirectoryOperations
from rotbackup.naming import Tier, is_backup_name, parse_name


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BackupEntry:
    """A backup folder found in a tier directory."""
    tier: Tier
    name: str
    path: Path
    relative_path: str
    timestamp: datetime


def tier_path(target: Path, tier: Tier) -> Path:
    """Directory holding the backups of a tier."""
    if tier.folder_name:
        return Path(target) / tier.folder_name
    return Path(target)


def sort_entries(entries: List[BackupEntry], descending: bool = False) -> List[BackupEntry]:
    """Order entries by the time encoded in their names."""
    return sorted(entries, key=lambda e: e.timestamp, reverse=descending)


def list_backups(
    ops: DirectoryOperations,
    target: Path,
    tier: Tier,
    base_path: Optional[Path] = None,
    log: Optional[logging.Logger] = None,
) -> List[BackupEntry]:
    """
    List the backup folders of a tier, oldest first.

    Only immediate child directories whose names match the backup name
    pattern are returned. Everything else (the latest pointer, staging and
    error folders) is skipped.

    Args:
        ops: Directory operations for the target location
        target: Target root
        tier: Tier to list
        base_path: Path that relative_path is computed against
            (defaults to the tier directory)
        log: Logger for candidate/match messages

    Returns:
        BackupEntry list sorted ascending by time

    Raises:
        ListingError: If the tier directory cannot be enumerated
    """
    log = log or logger
    folder = tier_path(target, tier)
    base = Path(base_path) if base_path is not None else folder
    log.debug(f"Listing backups in {ops.describe(folder)}")

    entries = []
    for name in ops.list_directories(folder):
        if not is_backup_name(name):
            log.debug(f"Skipping non-backup folder: {name}")
            continue

        # parse_name raising here means the filter and the parser disagree
        timestamp = parse_name(name)
        path = folder / name
        entries.append(BackupEntry(
            tier=tier,
            name=name,
            path=path,
            relative_path=os.path.relpath(path, base),
            timestamp=timestamp,
        ))
        log.debug(f"Matched backup folder: {name}")

    return sort_entries(entries)


def prepare_target(
    ops: DirectoryOperations,
    target: Path,
    log: Optional[logging.Logger] = None,
) -> None:
    """
    Ensure the target root and all tier folders exist.

    Raises:
        ListingError: If one of the paths exists but is not a folder
        MaterializationError: If a missing folder cannot be created
    """
    log = log or logger
    for tier in Tier:
        folder = tier_path(target, tier)
        if ops.exists(folder):
            if not ops.is_directory(folder):
                raise ListingError(f"{ops.describe(folder)} exists but is not a folder")
            log.debug(f"{ops.describe(folder)} exists")
            continue

        log.debug(f"{ops.describe(folder)} does not exist, creating")
        ops.make_directory(folder, mode=0o700)


def determine_last_backup(
    ops: DirectoryOperations,
    target: Path,
    log: Optional[logging.Logger] = None,
) -> Optional[BackupEntry]:
    """
    Find the newest backup across all tiers.

    The returned entry's relative_path is relative to the target root, as
    needed for rsync's --link-dest.

    Returns:
        Newest BackupEntry, or None if no backup exists yet
    """
    backups: List[BackupEntry] = []
    for tier in Tier:
        backups.extend(list_backups(ops, target, tier, base_path=target, log=log))

    if not backups:
        return None
    return sort_entries(backups)[-1]
