"""Rotation pipeline for rotbackup.

Runs the retention policy tier by tier, main to monthly, materializing each
decision before the next tier is listed. Every step works on a fresh
listing, so there is no rotation state between runs and an interrupted
rotation is finished by the next one.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional
import logging

from rotbackup.listing import list_backups
from rotbackup.location import DirectoryOperations
from rotbackup.materializer import TierMaterializer
from rotbackup.naming import Tier
from rotbackup.retention import (
    RetentionPolicy,
    decide_capacity,
    decide_dedupe,
)


logger = logging.getLogger(__name__)


@dataclass
class RotationResult:
    """What a rotation moved and deleted, keyed by the source tier."""
    moved: Dict[Tier, List[str]] = field(default_factory=dict)
    deleted: Dict[Tier, List[str]] = field(default_factory=dict)

    @property
    def total_moved(self) -> int:
        return sum(len(names) for names in self.moved.values())

    @property
    def total_deleted(self) -> int:
        return sum(len(names) for names in self.deleted.values())

    @property
    def changed(self) -> bool:
        return bool(self.total_moved or self.total_deleted)


class RotationEngine:
    """
    Rotates the backups of one target through the four tiers.

    Order of operations for each run:
    1. move main overflow to daily, refresh the main latest pointer
    2. for daily, weekly and monthly in turn:
       a. refresh the tier latest pointer
       b. keep the newest backup per day, ISO week or month
       c. move the overflow one tier down (monthly overflow is deleted)
       d. refresh the tier latest pointer again
    """

    def __init__(
        self,
        ops: DirectoryOperations,
        target: Path,
        policy: Optional[RetentionPolicy] = None,
        log: Optional[logging.Logger] = None,
    ):
        self.ops = ops
        self.target = Path(target)
        self.policy = policy or RetentionPolicy()
        self.log = log or logger
        self.materializer = TierMaterializer(ops, self.target, log=self.log)

    def _list(self, tier: Tier):
        return list_backups(self.ops, self.target, tier, log=self.log)

    def enforce_capacity(self, tier: Tier, result: RotationResult) -> None:
        """Move (or, for the last tier, delete) a tier's overflow."""
        capacity = self.policy.capacity_for(tier)
        self.log.info(f"> Handling excess backups (> {capacity}) in tier {tier.value}")

        decision = decide_capacity(tier, self._list(tier), capacity)
        if decision.is_noop:
            self.log.info(f"No excess backups (<= {capacity}) in tier {tier.value}, nothing to do")
            return

        applied = self.materializer.apply(decision)
        result.moved.setdefault(tier, []).extend(applied.moved)
        result.deleted.setdefault(tier, []).extend(applied.deleted)

    def dedupe_tier(self, tier: Tier, result: RotationResult) -> None:
        """Delete all but the newest backup of each period in a tier."""
        self.log.info(
            f"> Grouping excess backups in tier {tier.value} by {tier.granularity.value}"
        )

        decision = decide_dedupe(tier, self._list(tier))
        applied = self.materializer.apply(decision)
        if applied.deleted:
            result.deleted.setdefault(tier, []).extend(applied.deleted)

    def refresh_latest(self, tier: Tier) -> None:
        self.materializer.refresh_latest(tier, self._list(tier))

    def rotate(self) -> RotationResult:
        """
        Run the full rotation pipeline.

        Returns:
            RotationResult describing all moves and deletions

        Raises:
            RotationError: On the first listing, parse or materialization
                failure; remaining steps are skipped
        """
        self.log.info(f"Rotating backups in {self.ops.describe(self.target)}")
        result = RotationResult()

        self.enforce_capacity(Tier.MAIN, result)
        self.refresh_latest(Tier.MAIN)

        for tier in (Tier.DAILY, Tier.WEEKLY, Tier.MONTHLY):
            self.refresh_latest(tier)
            self.dedupe_tier(tier, result)
            self.enforce_capacity(tier, result)
            self.refresh_latest(tier)

        self.log.info(
            f"Rotation finished: moved {result.total_moved}, "
            f"deleted {result.total_deleted} backup(s)"
        )
        return result
