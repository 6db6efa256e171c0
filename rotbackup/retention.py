"""Retention policy engine for rotbackup.

Pure decision making over a tier listing. Nothing in this module touches
the filesystem or a remote session; the decisions it returns are carried
out by rotbackup.materializer.

Two operations make up the policy:
- capacity enforcement keeps the N newest backups of a tier and hands the
  rest to the next tier (or discards them from the last tier)
- period deduplication keeps only the newest backup of each calendar day,
  ISO week or month within a tier
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from rotbackup.errors import InvariantViolation
from rotbackup.listing import BackupEntry, sort_entries
from rotbackup.naming import Granularity, Tier


# Capacities used when nothing else is configured
DEFAULT_MAX_MAIN = 1
DEFAULT_MAX_DAILY = 7
DEFAULT_MAX_WEEKLY = 52
DEFAULT_MAX_MONTHLY = 12


@dataclass
class RetentionPolicy:
    """Maximum number of backups retained per tier."""
    main: int = DEFAULT_MAX_MAIN
    daily: int = DEFAULT_MAX_DAILY
    weekly: int = DEFAULT_MAX_WEEKLY
    monthly: int = DEFAULT_MAX_MONTHLY

    def capacity_for(self, tier: Tier) -> int:
        return getattr(self, tier.value)


@dataclass
class RetentionDecision:
    """
    Partition of one tier's backups for a single decision step.

    Attributes:
        tier: Tier the decision was computed for
        keep: Entries that stay where they are
        move: Entries that go to destination
        delete: Entries that are removed
        destination: Tier receiving moved entries, None if nothing moves
    """
    tier: Tier
    keep: List[BackupEntry] = field(default_factory=list)
    move: List[BackupEntry] = field(default_factory=list)
    delete: List[BackupEntry] = field(default_factory=list)
    destination: Optional[Tier] = None

    @property
    def is_noop(self) -> bool:
        return not self.move and not self.delete


def period_key(timestamp: datetime, granularity: Granularity) -> int:
    """
    Integer identifying the calendar period a timestamp falls in.

    Keys of later periods are larger than keys of earlier ones:
    - DAY:   year*10000 + month*100 + day
    - WEEK:  iso_year*10000 + iso_week*100
    - MONTH: year*10000 + month*100
    """
    if granularity is Granularity.DAY:
        return timestamp.year * 10000 + timestamp.month * 100 + timestamp.day
    if granularity is Granularity.WEEK:
        iso_year, iso_week, _ = timestamp.isocalendar()
        return iso_year * 10000 + iso_week * 100
    if granularity is Granularity.MONTH:
        return timestamp.year * 10000 + timestamp.month * 100
    raise ValueError(f"Invalid granularity: {granularity!r}")


def excess(
    entries: Sequence[BackupEntry],
    capacity: int,
) -> Tuple[List[BackupEntry], List[BackupEntry]]:
    """
    Split entries into the capacity newest and the overflow.

    Args:
        entries: Backups of one tier, in any order
        capacity: Maximum number of backups the tier retains

    Returns:
        (keep, overflow), both oldest first. overflow holds the
        len(entries) - capacity oldest entries, or nothing if the tier is
        within capacity.
    """
    if capacity < 0:
        raise ValueError(f"Capacity must not be negative, got {capacity}")

    ordered = sort_entries(list(entries))
    overflow_count = max(len(ordered) - capacity, 0)
    return ordered[overflow_count:], ordered[:overflow_count]


def dedupe(
    entries: Sequence[BackupEntry],
    granularity: Granularity,
) -> Tuple[List[BackupEntry], List[BackupEntry]]:
    """
    Keep only the newest backup of every calendar period.

    Walks the entries newest first. The first entry is always kept and
    sets the current period. An entry in the current period is discarded,
    since a newer backup already represents it. An entry in an older
    period is kept and becomes the current period.

    Args:
        entries: Backups of one tier, in any order
        granularity: Period size used for grouping

    Returns:
        (keep, discard), both oldest first

    Raises:
        InvariantViolation: If a period newer than the current one shows
            up during the newest-first walk
    """
    ordered = sort_entries(list(entries), descending=True)

    keep: List[BackupEntry] = []
    discard: List[BackupEntry] = []
    current_key: Optional[int] = None

    for entry in ordered:
        key = period_key(entry.timestamp, granularity)

        if current_key is None or key < current_key:
            keep.append(entry)
            current_key = key
        elif key == current_key:
            discard.append(entry)
        else:
            raise InvariantViolation(
                f"Backup {entry.name} belongs to period {key}, newer than the "
                f"current period {current_key} while scanning newest first; "
                f"listing: {[e.name for e in ordered]}"
            )

    keep.reverse()
    discard.reverse()
    return keep, discard


def decide_capacity(
    tier: Tier,
    entries: Sequence[BackupEntry],
    capacity: int,
) -> RetentionDecision:
    """
    Capacity enforcement step for a tier.

    Overflow moves to the next tier; the last tier has none, so its
    overflow is deleted.
    """
    keep, overflow = excess(entries, capacity)
    destination = tier.next_tier

    if destination is None:
        return RetentionDecision(tier=tier, keep=keep, delete=overflow)
    return RetentionDecision(
        tier=tier,
        keep=keep,
        move=overflow,
        destination=destination if overflow else None,
    )


def decide_dedupe(tier: Tier, entries: Sequence[BackupEntry]) -> RetentionDecision:
    """
    Period deduplication step for a tier. Only ever deletes.

    Raises:
        ValueError: For the main tier, which has no grouping period
    """
    if tier.granularity is None:
        raise ValueError(f"Tier {tier.value} has no grouping granularity")

    keep, discard = dedupe(entries, tier.granularity)
    return RetentionDecision(tier=tier, keep=keep, delete=discard)
