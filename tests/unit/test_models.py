"""
Unit tests for database models (backstop/models.py) and migrations (backstop/migrations.py).
"""

from datetime import datetime

from sqlalchemy import text, inspect

from backstop.models import BackupConfig, BackupRun, RunLease
from backstop.migrations import run_migrations, seed_singletons, BACKUP_CONFIG_COLUMNS


class TestBackupConfigModel:
    """Test BackupConfig model."""

    def test_seeded_defaults(self, backup_config):
        """The seeded row has the secondary destination off and a 02:00 UTC daily schedule."""
        assert backup_config.id == 1
        assert backup_config.destination_enabled is False
        assert backup_config.schedule_type == 'daily'
        assert backup_config.schedule_hour_utc == 2
        assert backup_config.include_manifest is True
        assert backup_config.include_files is False
        assert backup_config.last_primary_backup_at is None
        assert backup_config.last_secondary_backup_at is None

    def test_secondary_configured(self, db, backup_config):
        assert backup_config.secondary_configured is False

        backup_config.destination_enabled = True
        backup_config.encrypted_refresh_token = 'v2:abc'
        assert backup_config.secondary_configured is False

        backup_config.destination_folder_id = 'folder-1'
        assert backup_config.secondary_configured is True

    def test_repr(self, backup_config):
        assert repr(backup_config) == '<BackupConfig destination_enabled=False schedule=daily>'


class TestBackupRunModel:
    """Test BackupRun model."""

    def test_create_run(self, db):
        run = BackupRun(date='2026-02-10', trigger='manual', status='running',
                        started_at=datetime(2026, 2, 10, 2, 0))
        db.session.add(run)
        db.session.commit()

        assert run.id is not None
        assert run.primary_deleted == 0
        assert run.secondary_deleted == 0

    def test_to_dict(self, db):
        run = BackupRun(
            date='2026-02-10',
            status='partial',
            started_at=datetime(2026, 2, 10, 2, 0),
            completed_at=datetime(2026, 2, 10, 2, 5),
            secondary_status='failed',
            error_message='Token refresh rejected: invalid_grant',
        )
        db.session.add(run)
        db.session.commit()

        data = run.to_dict()

        assert data['date'] == '2026-02-10'
        assert data['trigger'] == 'scheduled'
        assert data['status'] == 'partial'
        assert data['started_at'] == '2026-02-10T02:00:00'
        assert data['completed_at'] == '2026-02-10T02:05:00'
        assert data['secondary_status'] == 'failed'
        assert 'logs' not in data

    def test_repr(self):
        assert repr(BackupRun(date='2026-02-10', status='success')) == '<BackupRun date=2026-02-10 status=success>'


class TestRunLeaseModel:

    def test_seeded_free(self, db):
        lease = db.session.get(RunLease, 1)

        assert lease.holder is None
        assert lease.expires_at is None


class TestMigrations:
    """Test the lightweight column migrations."""

    def test_adds_missing_columns(self, app, db):
        db.session.execute(text('DROP TABLE backup_config'))
        db.session.execute(text(
            "CREATE TABLE backup_config ("
            "id INTEGER PRIMARY KEY, "
            "destination_enabled BOOLEAN NOT NULL DEFAULT 0, "
            "encrypted_refresh_token TEXT, "
            "destination_folder_id VARCHAR(255), "
            "schedule_type VARCHAR(10) NOT NULL DEFAULT 'daily', "
            "schedule_hour_utc INTEGER, "
            "schedule_day_of_week INTEGER)"
        ))
        db.session.execute(text("INSERT INTO backup_config (id) VALUES (1)"))
        db.session.commit()

        run_migrations(app)

        columns = {col['name'] for col in inspect(db.engine).get_columns('backup_config')}
        for name, _ in BACKUP_CONFIG_COLUMNS:
            assert name in columns

        db.session.expire_all()
        config = db.session.get(BackupConfig, 1)
        assert config.include_manifest is True
        assert config.include_files is False

    def test_migrations_idempotent(self, app, db):
        run_migrations(app)
        run_migrations(app)

        columns = [col['name'] for col in inspect(db.engine).get_columns('backup_config')]
        assert len(columns) == len(set(columns))

    def test_seed_singletons_does_not_duplicate(self, db):
        seed_singletons()
        seed_singletons()

        assert BackupConfig.query.count() == 1
        assert RunLease.query.count() == 1
