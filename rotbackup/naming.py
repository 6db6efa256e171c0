"""Backup naming for rotbackup.

Backup folders are named after the moment the backup was started, using a
fixed-width format that sorts lexicographically in time order:
YYYY-MM-DD_HH-MM-SS.
"""

from datetime import datetime
from enum import Enum
from typing import Optional
import re

from rotbackup.errors import ParseError


# Timestamp format for backup folder names
BACKUP_NAME_FORMAT = "%Y-%m-%d_%H-%M-%S"

# Matches a backup folder name with no suffixes
BACKUP_NAME_PATTERN = re.compile(r"^(\d{4})-(\d{2})-(\d{2})_(\d{2})-(\d{2})-(\d{2})$")

# Group folders below the target root
DAILY_FOLDER_NAME = "_daily"
WEEKLY_FOLDER_NAME = "_weekly"
MONTHLY_FOLDER_NAME = "_monthly"

# Reserved name of the per-tier pointer to the newest backup
LATEST_POINTER_NAME = "__latest"

# Suffixes for staging and failed backup folders
PROGRESS_SUFFIX = "_progress"
ERROR_SUFFIX = "_error"


class Granularity(Enum):
    """Calendar period used to group backups within a tier."""
    DAY = "Day"
    WEEK = "Week"
    MONTH = "Month"


class Tier(Enum):
    """The four ordered retention stages."""
    MAIN = "main"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"

    @property
    def folder_name(self) -> str:
        """Folder name below the target root ("" for the main tier)."""
        return _FOLDER_NAMES[self]

    @property
    def granularity(self) -> Optional[Granularity]:
        return _GRANULARITIES[self]

    @property
    def next_tier(self) -> Optional["Tier"]:
        """Tier that receives this tier's overflow, None if it is discarded."""
        return _NEXT_TIERS[self]


_FOLDER_NAMES = {
    Tier.MAIN: "",
    Tier.DAILY: DAILY_FOLDER_NAME,
    Tier.WEEKLY: WEEKLY_FOLDER_NAME,
    Tier.MONTHLY: MONTHLY_FOLDER_NAME,
}

_GRANULARITIES = {
    Tier.MAIN: None,
    Tier.DAILY: Granularity.DAY,
    Tier.WEEKLY: Granularity.WEEK,
    Tier.MONTHLY: Granularity.MONTH,
}

_NEXT_TIERS = {
    Tier.MAIN: Tier.DAILY,
    Tier.DAILY: Tier.WEEKLY,
    Tier.WEEKLY: Tier.MONTHLY,
    Tier.MONTHLY: None,
}


def format_name(instant: datetime) -> str:
    """
    Format a point in time as a backup folder name.

    Sub-second precision is dropped.

    Args:
        instant: The time the backup was started

    Returns:
        Folder name in YYYY-MM-DD_HH-MM-SS format
    """
    return (
        f"{instant.year:04d}-{instant.month:02d}-{instant.day:02d}_"
        f"{instant.hour:02d}-{instant.minute:02d}-{instant.second:02d}"
    )


def is_backup_name(name: str) -> bool:
    """Check whether a folder name matches the exact backup name pattern."""
    return BACKUP_NAME_PATTERN.match(name) is not None


def parse_name(name: str) -> datetime:
    """
    Parse a backup folder name back into a datetime.

    Args:
        name: Folder name in YYYY-MM-DD_HH-MM-SS format

    Returns:
        The encoded (naive) datetime

    Raises:
        ParseError: If the name does not match the pattern or does not
            denote a valid calendar date and time
    """
    match = BACKUP_NAME_PATTERN.match(name)
    if match is None:
        raise ParseError(f"'{name}' is not a backup folder name")

    year, month, day, hour, minute, second = (int(g) for g in match.groups())
    try:
        return datetime(year, month, day, hour, minute, second)
    except ValueError as e:
        raise ParseError(f"'{name}' does not denote a valid date and time: {e}")


def progress_name(name: str) -> str:
    """Name of the staging folder used while a backup is written."""
    return f"{name}{PROGRESS_SUFFIX}"


def error_name(name: str) -> str:
    """Name a staging folder is renamed to when its transfer failed."""
    return f"{name}{ERROR_SUFFIX}"
