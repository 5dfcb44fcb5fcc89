"""
Unit tests for retention policy (backstop/backup/retention.py).

Tests the primary age cutoff and the secondary tiered keep-set.
"""

from datetime import date
from unittest.mock import MagicMock

import pytest

from backstop.backup.retention import (
    RetentionManager,
    RetentionError,
    select_keep_set,
    primary_cutoff,
    parse_secondary_date,
)
from backstop.backup.drive import DriveError
from backstop.backup.storage import StorageError


TODAY = date(2026, 2, 10)


class TestSelectKeepSet:
    """Test the tiered bucket selection."""

    def test_recent_monthly_and_yearly_buckets(self):
        dates = [
            date(2026, 2, 9), date(2026, 2, 2), date(2026, 1, 26), date(2026, 1, 19),
            date(2026, 1, 12), date(2026, 1, 5), date(2025, 12, 1), date(2025, 1, 10),
        ]

        decision = select_keep_set(dates, TODAY)

        assert decision.keep == {
            # four most recent
            date(2026, 2, 9), date(2026, 2, 2), date(2026, 1, 26), date(2026, 1, 19),
            # latest in December (November is empty)
            date(2025, 12, 1),
            # latest date between 31 and 365 days old
            date(2026, 1, 5),
        }
        assert decision.delete == {date(2026, 1, 12), date(2025, 1, 10)}

    def test_idempotent(self):
        """Selecting again after deleting yields nothing new to delete."""
        dates = [date(2026, 2, d) for d in range(1, 10)] + [date(2025, m, 15) for m in range(1, 13)]

        first = select_keep_set(dates, TODAY)
        second = select_keep_set(first.keep, TODAY)

        assert second.delete == set()
        assert second.keep == first.keep

    def test_few_dates_all_kept(self):
        dates = [date(2026, 2, 8), date(2026, 2, 9)]

        decision = select_keep_set(dates, TODAY)

        assert decision.delete == set()

    def test_month_buckets_cross_year_boundary(self):
        dates = [date(2026, 2, d) for d in range(1, 8)] + [date(2025, 11, 3), date(2025, 11, 20)]

        decision = select_keep_set(dates, TODAY)

        assert date(2025, 11, 20) in decision.keep
        assert date(2025, 11, 3) not in decision.keep

    def test_yearly_window_boundaries(self):
        """Dates exactly 31 and 365 days old are inside the yearly window."""
        recent = [date(2026, 2, d) for d in range(6, 10)]
        exactly_365 = date(2025, 2, 10)

        decision = select_keep_set(recent + [exactly_365], TODAY)

        assert exactly_365 in decision.keep

    def test_older_than_a_year_deleted(self):
        recent = [date(2026, 2, d) for d in range(6, 10)]

        decision = select_keep_set(recent + [date(2025, 2, 9)], TODAY)

        assert date(2025, 2, 9) in decision.delete


class TestHelpers:

    def test_primary_cutoff(self):
        assert primary_cutoff(TODAY, 30) == date(2026, 1, 11)

    def test_primary_cutoff_clamped_to_one_day(self):
        assert primary_cutoff(TODAY, 0) == date(2026, 2, 9)
        assert primary_cutoff(TODAY, -5) == date(2026, 2, 9)

    @pytest.mark.parametrize('name,expected', [
        ('2026-02-10-database.sql.gz', date(2026, 2, 10)),
        ('2026-02-10-whitelist.json', date(2026, 2, 10)),
        ('2026-02-10-r2-manifest.json', date(2026, 2, 10)),
        ('2025-06-01.sql.gz', date(2025, 6, 1)),
        ('whitelist-2025-06-01.json', date(2025, 6, 1)),
        ('r2-files-state.json', None),
        ('r2-files/2026-02-10-database.sql.gz', None),
        ('notes.txt', None),
        ('2026-13-40-database.sql.gz', None),
    ])
    def test_parse_secondary_date(self, name, expected):
        assert parse_secondary_date(name) == expected


class TestPrimaryRetention:
    """Test the age cutoff against the moto bucket."""

    def test_deletes_only_expired_dates(self, object_store):
        for day in ('2026-01-01', '2026-01-10', '2026-01-11', '2026-02-10'):
            object_store.put_bytes(f'backups/db/{day}.sql.gz', b'dump')
            object_store.put_bytes(f'backups/kv/whitelist-{day}.json', b'{}')
            object_store.put_bytes(f'backups/files/{day}/avatars/a.png', b'png')
            object_store.put_bytes(f'backups/files/{day}/manifest.json', b'{}')
        object_store.put_bytes('avatars/a.png', b'live')
        object_store.put_bytes('backups/db/notes.txt', b'unrelated')

        result = RetentionManager().enforce_primary(object_store, TODAY, 30)

        remaining = {obj.key for obj in object_store.list_objects()}
        # two expired dates, four objects each
        assert result.deleted == 8
        assert result.errors == []
        assert 'backups/db/2026-01-01.sql.gz' not in remaining
        assert 'backups/files/2026-01-10/manifest.json' not in remaining
        assert 'backups/db/2026-01-11.sql.gz' in remaining
        assert 'backups/kv/whitelist-2026-02-10.json' in remaining
        assert 'backups/files/2026-01-11/avatars/a.png' in remaining
        assert 'avatars/a.png' in remaining
        assert 'backups/db/notes.txt' in remaining

    def test_listing_failure_raises(self):
        store = MagicMock()
        store.list_objects.side_effect = StorageError('denied')

        with pytest.raises(RetentionError):
            RetentionManager().enforce_primary(store, TODAY, 30)

    def test_delete_failure_recorded_and_skipped(self):
        store = MagicMock()
        store.list_objects.side_effect = lambda prefix='': [
            MagicMock(key='backups/db/2025-01-01.sql.gz'),
            MagicMock(key='backups/db/2025-01-02.sql.gz'),
        ] if prefix == 'backups/db/' else []
        store.list_prefixes.return_value = []
        store.delete.side_effect = [StorageError('busy'), None]

        result = RetentionManager().enforce_primary(store, TODAY, 30)

        assert result.deleted == 1
        assert len(result.errors) == 1
        assert 'busy' in result.errors[0]


class TestSecondaryRetention:
    """Test the tiered keep-set applied to a Drive folder."""

    def test_deletes_every_file_of_expired_dates(self, make_drive):
        drive = make_drive({
            '2026-02-09-database.sql.gz': b'',
            '2026-02-09-whitelist.json': b'',
            '2026-02-02-database.sql.gz': b'',
            '2026-01-26-database.sql.gz': b'',
            '2026-01-19-database.sql.gz': b'',
            '2026-01-12-database.sql.gz': b'',
            '2026-01-12-whitelist.json': b'',
            '2026-01-12-r2-manifest.json': b'',
            '2026-01-05-database.sql.gz': b'',
            '2025-12-01-database.sql.gz': b'',
            'whitelist-2025-01-10.json': b'',
            'r2-files-state.json': b'{}',
            'r2-files/docs/b.pdf': b'',
        })

        result = RetentionManager().enforce_secondary(drive, TODAY)

        assert result.deleted == 4
        assert sorted(drive.deleted) == [
            '2026-01-12-database.sql.gz',
            '2026-01-12-r2-manifest.json',
            '2026-01-12-whitelist.json',
            'whitelist-2025-01-10.json',
        ]
        # undated files are never touched
        assert 'r2-files-state.json' in drive.files
        assert 'r2-files/docs/b.pdf' in drive.files

    def test_second_pass_deletes_nothing(self, make_drive):
        drive = make_drive({f'2026-01-{d:02d}-database.sql.gz': b'' for d in range(1, 29)})
        manager = RetentionManager()

        manager.enforce_secondary(drive, TODAY)
        result = manager.enforce_secondary(drive, TODAY)

        assert result.deleted == 0

    def test_listing_failure_raises(self):
        drive = MagicMock()
        drive.list_files.side_effect = DriveError('unauthorized')

        with pytest.raises(RetentionError):
            RetentionManager().enforce_secondary(drive, TODAY)

    def test_delete_failure_recorded(self, make_drive):
        drive = make_drive({f'2026-01-{d:02d}-database.sql.gz': b'' for d in range(1, 8)})
        drive.delete = MagicMock(side_effect=DriveError('rate limited'))

        result = RetentionManager().enforce_secondary(drive, TODAY)

        assert result.deleted == 0
        assert result.errors
