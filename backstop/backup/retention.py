"""
Retention policy enforcement for backups.

Primary store: flat age cutoff. Every dated database dump, key-value dump
and file backup directory older than today - retention_days is removed.

Secondary destination: tiered buckets. The keep-set is the union of
- the 4 most recent backup dates,
- the most recent date in each of the trailing 4 calendar months,
- one yearly date: the most recent date between 31 and 365 days old.
Every other date loses all its files.

Both policies only ever run after their write phase succeeded.
"""

import re
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, List, Optional, Set

from .storage import ObjectStore, StorageError
from .drive import DriveClient, DriveFile, DriveError


logger = logging.getLogger(__name__)

DATE_PATTERN = r'(\d{4}-\d{2}-\d{2})'

PRIMARY_OBJECT_PATTERNS = {
    'backups/db/': re.compile(rf'^backups/db/{DATE_PATTERN}\.sql\.gz$'),
    'backups/kv/': re.compile(rf'^backups/kv/whitelist-{DATE_PATTERN}\.json$'),
}
PRIMARY_FILES_PREFIX = 'backups/files/'
PRIMARY_FILES_PATTERN = re.compile(rf'^backups/files/{DATE_PATTERN}/$')

SECONDARY_NAME_PATTERNS = [
    re.compile(rf'^{DATE_PATTERN}-database\.sql\.gz$'),
    re.compile(rf'^{DATE_PATTERN}-whitelist\.json$'),
    re.compile(rf'^{DATE_PATTERN}-r2-manifest\.json$'),
    # names written by earlier releases
    re.compile(rf'^{DATE_PATTERN}\.sql\.gz$'),
    re.compile(rf'^whitelist-{DATE_PATTERN}\.json$'),
]

RECENT_COUNT = 4
MONTHLY_COUNT = 4
YEARLY_MIN_AGE_DAYS = 31
YEARLY_MAX_AGE_DAYS = 365


class RetentionError(Exception):
    """Raised when a retention pass cannot list its destination."""
    pass


def _to_date(text: str) -> Optional[date]:
    try:
        return datetime.strptime(text, '%Y-%m-%d').date()
    except ValueError:
        return None


def _match_date(pattern, value: str) -> Optional[date]:
    match = pattern.match(value)
    return _to_date(match.group(1)) if match else None


def parse_secondary_date(name: str) -> Optional[date]:
    """Backup date embedded in a secondary artifact name, or None."""
    for pattern in SECONDARY_NAME_PATTERNS:
        parsed = _match_date(pattern, name)
        if parsed:
            return parsed
    return None


def primary_cutoff(today: date, retention_days: int) -> date:
    """Dates strictly before the cutoff are expired. retention_days is clamped to >= 1."""
    return today - timedelta(days=max(1, retention_days))


def _month_offset(today: date, months_back: int):
    index = today.year * 12 + (today.month - 1) - months_back
    return index // 12, index % 12 + 1


@dataclass
class RetentionDecision:
    keep: Set[date] = field(default_factory=set)
    delete: Set[date] = field(default_factory=set)


def select_keep_set(dates: Iterable[date], today: date) -> RetentionDecision:
    """
    Tiered bucket selection for the secondary destination.

    Deterministic and idempotent: applying the decision and selecting again
    for the same today yields an empty delete set.
    """
    ordered = sorted(set(dates), reverse=True)
    keep = set(ordered[:RECENT_COUNT])

    for months_back in range(MONTHLY_COUNT):
        year, month = _month_offset(today, months_back)
        in_month = [d for d in ordered if d.year == year and d.month == month]
        if in_month:
            keep.add(in_month[0])

    newest_yearly = today - timedelta(days=YEARLY_MIN_AGE_DAYS)
    oldest_yearly = today - timedelta(days=YEARLY_MAX_AGE_DAYS)
    for d in ordered:
        if oldest_yearly <= d <= newest_yearly:
            keep.add(d)
            break

    return RetentionDecision(keep=keep, delete=set(ordered) - keep)


@dataclass
class RetentionResult:
    deleted: int = 0
    errors: List[str] = field(default_factory=list)


class RetentionManager:
    """
    Applies the retention policies to each destination.

    Individual delete failures are logged and skipped; a destination that
    cannot be listed raises RetentionError.
    """

    def __init__(self):
        """Initialize retention manager."""
        self.logs = []

    def enforce_primary(self, store: ObjectStore, today: date, retention_days: int) -> RetentionResult:
        """
        Delete primary backups dated before today - retention_days.

        Raises:
            RetentionError: If the store cannot be listed
        """
        cutoff = primary_cutoff(today, retention_days)
        self._log(f"Primary retention: {max(1, retention_days)} days (deleting dates before {cutoff})")
        result = RetentionResult()

        try:
            for prefix, pattern in PRIMARY_OBJECT_PATTERNS.items():
                for obj in store.list_objects(prefix):
                    key_date = _match_date(pattern, obj.key)
                    if key_date is None or key_date >= cutoff:
                        continue
                    try:
                        store.delete(obj.key)
                        result.deleted += 1
                        self._log(f"Deleted {obj.key}")
                    except StorageError as e:
                        self._error(result, f"Failed to delete {obj.key}: {e}")

            for directory in store.list_prefixes(PRIMARY_FILES_PREFIX):
                dir_date = _match_date(PRIMARY_FILES_PATTERN, directory)
                if dir_date is None or dir_date >= cutoff:
                    continue
                try:
                    keys = [obj.key for obj in store.list_objects(directory)]
                    result.deleted += store.delete_many(keys)
                    self._log(f"Deleted {len(keys)} objects under {directory}")
                except StorageError as e:
                    self._error(result, f"Failed to delete {directory}: {e}")

        except StorageError as e:
            raise RetentionError(f"Primary retention could not list backups: {e}")

        return result

    def enforce_secondary(self, drive: DriveClient, today: date) -> RetentionResult:
        """
        Apply the tiered keep-set to the Drive folder.

        Raises:
            RetentionError: If the folder cannot be listed
        """
        try:
            files = drive.list_files()
        except DriveError as e:
            raise RetentionError(f"Secondary retention could not list backups: {e}")

        by_date: Dict[date, List[DriveFile]] = {}
        for drive_file in files:
            file_date = parse_secondary_date(drive_file.name)
            if file_date is not None:
                by_date.setdefault(file_date, []).append(drive_file)

        decision = select_keep_set(by_date.keys(), today)
        self._log(
            f"Secondary retention: keeping {len(decision.keep)} dates, "
            f"deleting {len(decision.delete)} dates"
        )

        result = RetentionResult()
        for expired in sorted(decision.delete):
            for drive_file in by_date[expired]:
                try:
                    drive.delete(drive_file.id)
                    result.deleted += 1
                    self._log(f"Deleted {drive_file.name}")
                except DriveError as e:
                    self._error(result, f"Failed to delete {drive_file.name}: {e}")

        return result

    def _error(self, result: RetentionResult, message: str):
        result.errors.append(message)
        logger.warning(message)
        self.logs.append(message)

    def _log(self, message: str):
        """
        Record a retention log message.

        Args:
            message: Log message
        """
        logger.info(message)
        self.logs.append(message)
