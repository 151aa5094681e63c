"""Retention evaluator for tmbackup.

This module provides the RetentionEvaluator class that decides which
snapshots expire under a three-tier aging policy:

- Keep every snapshot younger than ``keep_all_days`` (1 day by default)
- Keep the most recent snapshot of each calendar day up to
  ``keep_daily_days`` old (31 days by default)
- Keep the most recent snapshot of each calendar month beyond that
"""

from dataclasses import dataclass, field
from typing import List, Optional
import logging
import time

from tmbackup.catalog import Snapshot, SnapshotCatalog
from tmbackup.timestamps import SENTINEL_NAME


logger = logging.getLogger(__name__)


SECONDS_PER_DAY = 86400


@dataclass
class RetentionResult:
    """Result of applying the retention policy."""
    kept_snapshots: List[Snapshot] = field(default_factory=list)
    expired_snapshots: List[Snapshot] = field(default_factory=list)


class RetentionEvaluator:
    """
    Selects snapshots to expire in a single newest-to-oldest pass.

    Each snapshot is compared against the one evaluated just before it (the
    next more recent one). Within the daily tier a snapshot on the same day
    as its predecessor is redundant; within the monthly tier, one in the
    same month is. The predecessor is updated after every parsable
    snapshot, expired or not, so runs of same-day or same-month snapshots
    collapse to their most recent member. The sentinel predecessor never
    matches, which keeps the newest snapshot regardless of its age.
    """

    def __init__(self, keep_all_days: int = 1, keep_daily_days: int = 31):
        """
        Initialize the evaluator.

        Args:
            keep_all_days: Age in days below which every snapshot is kept
            keep_daily_days: Age in days below which one snapshot per day
                is kept; older snapshots are thinned to one per month
        """
        self.keep_all_days = keep_all_days
        self.keep_daily_days = keep_daily_days

    def select_expired(
        self,
        snapshots: List[Snapshot],
        now: Optional[float] = None,
    ) -> List[Snapshot]:
        """
        Determine which snapshots to expire.

        Args:
            snapshots: Snapshots ordered newest first
            now: Reference instant in seconds since epoch. Defaults to now.

        Returns:
            Snapshots to remove, newest first
        """
        if now is None:
            now = time.time()

        keep_all_cutoff = now - self.keep_all_days * SECONDS_PER_DAY
        keep_daily_cutoff = now - self.keep_daily_days * SECONDS_PER_DAY

        previous = SENTINEL_NAME
        expired: List[Snapshot] = []

        for snapshot in snapshots:
            timestamp = snapshot.timestamp
            if timestamp is None:
                logger.warning(f"Could not parse date: {snapshot.path}")
                continue

            if timestamp >= keep_all_cutoff:
                pass
            elif timestamp >= keep_daily_cutoff:
                # All but the most recent of each day
                if snapshot.day == previous[:10]:
                    expired.append(snapshot)
            else:
                # All but the most recent of each month
                if snapshot.month == previous[:7]:
                    expired.append(snapshot)

            previous = snapshot.name

        return expired

    def apply(
        self,
        catalog: SnapshotCatalog,
        expirer,
        now: Optional[float] = None,
    ) -> RetentionResult:
        """
        Expire every snapshot the policy selects.

        Args:
            catalog: Catalog of the destination to prune
            expirer: Object with an ``expire(snapshot)`` method
            now: Reference instant in seconds since epoch

        Returns:
            RetentionResult with kept and expired snapshots, newest first
        """
        snapshots = catalog.list_snapshots()
        to_expire = self.select_expired(snapshots, now)
        expired_names = {s.name for s in to_expire}

        for snapshot in to_expire:
            expirer.expire(snapshot)

        if to_expire:
            logger.debug(f"Retention policy expired {len(to_expire)} snapshot(s)")

        return RetentionResult(
            kept_snapshots=[s for s in snapshots if s.name not in expired_names],
            expired_snapshots=to_expire,
        )
