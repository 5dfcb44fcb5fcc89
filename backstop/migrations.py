"""
Database migrations for Backstop.

Simple migration system to handle schema changes without requiring Alembic.
"""

import logging
from sqlalchemy import text, inspect
from backstop import db

logger = logging.getLogger(__name__)


# Columns added to backup_config after the table first shipped
BACKUP_CONFIG_COLUMNS = [
    ('include_manifest', 'BOOLEAN NOT NULL DEFAULT 1'),
    ('include_files', 'BOOLEAN NOT NULL DEFAULT 0'),
    ('last_primary_backup_at', 'TIMESTAMP'),
    ('last_secondary_backup_at', 'TIMESTAMP'),
    ('updated_at', 'TIMESTAMP'),
]


def init_database_schema(app):
    """
    Initialize database schema and run migrations.

    Creates any missing tables, adds missing columns and seeds the singleton
    rows. Safe to call from multiple Gunicorn workers.
    """
    with app.app_context():
        inspector = inspect(db.engine)
        existing_tables = inspector.get_table_names()

        if existing_tables:
            run_migrations(app, inspector)

        try:
            db.create_all()
        except Exception as e:
            # Another worker may have created the tables first
            logger.error(f"Failed to create database schema: {e}")
            db.session.rollback()

        seed_singletons()


def run_migrations(app, inspector=None):
    """
    Run all necessary database migrations.

    This function checks the database schema and applies any missing changes.
    """
    if inspector is None:
        inspector = inspect(db.engine)

    if 'backup_config' not in inspector.get_table_names():
        return

    columns = [col['name'] for col in inspector.get_columns('backup_config')]

    for name, ddl in BACKUP_CONFIG_COLUMNS:
        if name in columns:
            continue
        logger.info(f"Running migration: Adding {name} column to backup_config table")
        try:
            db.session.execute(text(f"ALTER TABLE backup_config ADD COLUMN {name} {ddl}"))
            db.session.commit()
            logger.info(f"Successfully added {name} column")
        except Exception as e:
            logger.error(f"Failed to add {name} column: {e}")
            db.session.rollback()


def seed_singletons():
    """Insert the id=1 rows of backup_config and run_lease if absent."""
    from backstop.models import BackupConfig, RunLease

    try:
        if db.session.get(BackupConfig, 1) is None:
            db.session.add(BackupConfig(id=1))
            logger.info("Seeded default backup configuration")
        if db.session.get(RunLease, 1) is None:
            db.session.add(RunLease(id=1))
        db.session.commit()
    except Exception as e:
        logger.error(f"Failed to seed singleton rows: {e}")
        db.session.rollback()
