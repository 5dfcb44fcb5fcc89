"""
Backup orchestrator - runs one complete backup.

Workflow:
1. Export the database, gzip it, write backups/db/{date}.sql.gz
2. Dump the key-value namespace, write backups/kv/whitelist-{date}.json
3. Mirror live objects into backups/files/{date}/ and write the manifest
4. Primary retention (only after 1-3 all succeeded)
5. Record last_primary_backup_at
6. If the secondary destination is configured and due: replicate, apply
   secondary retention, record last_secondary_backup_at

A failure in 1-3 aborts the run before any retention; a failure in 6 leaves
the primary result in place and marks the run partial.
"""

import gzip
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Callable

from backstop import db
from backstop.models import BackupConfig, BackupRun
from backstop.utils.crypto import TokenCipher, CredentialError
from .settings import EngineSettings
from .errors import RunError
from .deadline import RunDeadline
from .database_export import DatabaseExportClient
from .kv_dump import KVNamespaceDumper, serialize_namespace
from .storage import ObjectStore
from .mirror import ObjectStoreMirror, IncrementalReplicator, manifest_key
from .drive import DriveClient
from .retention import RetentionManager, RetentionError
from .schedule import is_due, ran_in_current_slot
from .lease import run_lease, LeaseUnavailable


logger = logging.getLogger(__name__)


def db_dump_key(date: str) -> str:
    return f"backups/db/{date}.sql.gz"


def kv_dump_key(date: str) -> str:
    return f"backups/kv/whitelist-{date}.json"


@dataclass
class RunSummary:
    date: str
    trigger: str = 'scheduled'
    status: str = 'running'  # success, partial, failed
    failed_step: Optional[str] = None
    error: Optional[str] = None
    manifest_files: int = 0
    primary_deleted: int = 0
    secondary_status: Optional[str] = None  # disabled, not_configured, not_due, already_ran, success, failed
    secondary_error: Optional[str] = None
    secondary_deleted: int = 0
    files_uploaded: int = 0
    retention_errors: list = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status in ('success', 'partial')

    def to_dict(self) -> dict:
        data = {
            'ok': self.ok,
            'date': self.date,
            'status': self.status,
            'secondary': self.secondary_status,
            'primary_deleted': self.primary_deleted,
            'secondary_deleted': self.secondary_deleted,
            'manifest_files': self.manifest_files,
        }
        if self.error:
            data['error'] = self.error
            data['step'] = self.failed_step
        if self.secondary_error:
            data['secondary_error'] = self.secondary_error
        return data


def _utc(now: Optional[datetime]) -> datetime:
    if now is None:
        return datetime.now(timezone.utc)
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc)


class BackupOrchestrator:
    """
    Orchestrates the complete backup workflow.

    Collaborators are built from EngineSettings unless injected.
    """

    def __init__(self, settings: EngineSettings,
                 store: Optional[ObjectStore] = None,
                 exporter: Optional[DatabaseExportClient] = None,
                 kv_dumper: Optional[KVNamespaceDumper] = None,
                 drive_factory: Optional[Callable[..., DriveClient]] = None):
        self.settings = settings
        self.store = store or ObjectStore(
            bucket_name=settings.r2_bucket,
            access_key=settings.r2_access_key_id,
            secret_key=settings.r2_secret_access_key,
            endpoint_url=settings.r2_endpoint_url,
            region=settings.r2_region,
        )
        self.exporter = exporter or DatabaseExportClient(
            account_id=settings.cloudflare_account_id,
            database_id=settings.d1_database_id,
            api_token=settings.cloudflare_api_token,
            api_base=settings.cloudflare_api_base,
            poll_interval=settings.export_poll_interval,
            max_polls=settings.export_max_polls,
            http_timeout=settings.http_timeout,
        )
        self.kv_dumper = kv_dumper or KVNamespaceDumper(
            account_id=settings.cloudflare_account_id,
            namespace_id=settings.kv_namespace_id,
            api_token=settings.cloudflare_api_token,
            api_base=settings.cloudflare_api_base,
            http_timeout=settings.http_timeout,
        )
        self.drive_factory = drive_factory or DriveClient
        self.retention = RetentionManager()

        self.run_record = None
        self.logs = []
        self._log_flush_counter = 0

    def run(self, now: Optional[datetime] = None, trigger: str = 'scheduled') -> RunSummary:
        """
        Execute one backup run under the run lease.

        Args:
            now: Run time (defaults to the current UTC time)
            trigger: 'scheduled' or 'manual'

        Returns:
            RunSummary with the outcome of every phase

        Raises:
            LeaseUnavailable: If another run is in progress
        """
        now = _utc(now)
        try:
            with run_lease(now.replace(tzinfo=None), self.settings.lease_ttl_seconds):
                return self._run(now, trigger)
        except LeaseUnavailable as e:
            self._record_skipped(now, trigger, e)
            raise

    def _run(self, now: datetime, trigger: str) -> RunSummary:
        date = now.strftime('%Y-%m-%d')
        summary = RunSummary(date=date, trigger=trigger)
        deadline = RunDeadline(self.settings.run_deadline_seconds)

        self.run_record = BackupRun(
            date=date,
            trigger=trigger,
            status='running',
            started_at=now.replace(tzinfo=None)
        )
        db.session.add(self.run_record)
        db.session.commit()

        self._log(f"Starting {trigger} backup for {date}")

        try:
            try:
                self._run_primary(date, deadline, summary)
            except RunError as e:
                summary.status = 'failed'
                summary.failed_step = e.step
                summary.error = str(e)
                self._log(f"Backup failed: {e}")
                return summary

            self._run_primary_retention(now, summary)
            self._record_primary(now)

            self._run_secondary(date, now, deadline, summary)

            summary.status = 'partial' if summary.secondary_status == 'failed' else 'success'
            self._log(f"Backup finished with status {summary.status}")
            return summary
        except Exception as e:
            db.session.rollback()
            summary.status = 'failed'
            summary.error = summary.error or str(e)
            self._log(f"Backup crashed: {e}")
            raise
        finally:
            self._finish(summary)

    # -- primary -------------------------------------------------------------

    def _run_primary(self, date: str, deadline: RunDeadline, summary: RunSummary):
        self._step('database', self._backup_database, date, deadline)
        self._step('kv', self._backup_kv, date, deadline)
        manifest = self._step('files', self._backup_files, date, deadline)
        summary.manifest_files = len(manifest.files)

    def _step(self, name: str, func, *args):
        self._log(f"Step {name}: starting")
        try:
            result = func(*args)
        except Exception as e:
            raise RunError(name, e)
        self._log(f"Step {name}: done")
        self._flush_logs_to_db()
        return result

    def _backup_database(self, date: str, deadline: RunDeadline):
        sql = self.exporter.export_database(deadline)
        compressed = gzip.compress(sql.encode('utf-8'))
        deadline.check('database dump write')
        self.store.put_bytes(
            db_dump_key(date),
            compressed,
            content_type='application/gzip',
            metadata={'source': 'd1', 'date': date}
        )
        self._log(f"Wrote {db_dump_key(date)} ({len(compressed)} bytes)")

    def _backup_kv(self, date: str, deadline: RunDeadline):
        values = self.kv_dumper.dump_namespace(deadline)
        deadline.check('kv dump write')
        self.store.put_bytes(
            kv_dump_key(date),
            serialize_namespace(values).encode('utf-8'),
            content_type='application/json',
            metadata={'source': 'kv', 'date': date}
        )
        self._log(f"Wrote {kv_dump_key(date)} ({len(values)} keys)")

    def _backup_files(self, date: str, deadline: RunDeadline):
        deadline.check('file mirror')
        return ObjectStoreMirror(self.store).mirror(date)

    def _run_primary_retention(self, now: datetime, summary: RunSummary):
        try:
            result = self.retention.enforce_primary(self.store, now.date(), self.settings.retention_days)
        except RetentionError as e:
            summary.retention_errors.append(str(e))
            self._log(f"Primary retention skipped: {e}")
            return
        summary.primary_deleted = result.deleted
        summary.retention_errors.extend(result.errors)
        self._log(f"Primary retention deleted {result.deleted} objects")

    def _record_primary(self, now: datetime):
        config = self._config()
        if config is None:
            return
        config.last_primary_backup_at = now.replace(tzinfo=None)
        db.session.commit()

    # -- secondary -----------------------------------------------------------

    def _run_secondary(self, date: str, now: datetime, deadline: RunDeadline, summary: RunSummary):
        config = self._config()

        if config is None or not config.destination_enabled:
            summary.secondary_status = 'disabled'
            return
        if not config.secondary_configured:
            summary.secondary_status = 'not_configured'
            self._log("Secondary destination enabled but token or folder missing, skipping")
            return
        if not is_due(config, now):
            summary.secondary_status = 'not_due'
            self._log("Secondary destination not due at this hour")
            return
        if ran_in_current_slot(config.last_secondary_backup_at, now):
            summary.secondary_status = 'already_ran'
            self._log("Secondary destination already replicated in this slot")
            return

        drive = self._build_drive(config, deadline)
        if drive is None:
            summary.secondary_status = 'not_configured'
            return

        try:
            drive.authenticate()
            self._replicate(drive, config, date, now, summary)
        except Exception as e:
            summary.secondary_status = 'failed'
            summary.secondary_error = str(e)
            self._log(f"Secondary replication failed: {e}")
            return

        try:
            result = self.retention.enforce_secondary(drive, now.date())
            summary.secondary_deleted = result.deleted
            summary.retention_errors.extend(result.errors)
            self._log(f"Secondary retention deleted {result.deleted} files")
        except Exception as e:
            # retention failures never fail a replicated run
            summary.retention_errors.append(str(e))
            self._log(f"Secondary retention skipped: {e}")

        config.last_secondary_backup_at = now.replace(tzinfo=None)
        db.session.commit()
        summary.secondary_status = 'success'

    def _build_drive(self, config: BackupConfig, deadline: RunDeadline) -> Optional[DriveClient]:
        """Drive client for this run, or None when credentials are not configured."""
        if not self.settings.drive_credentials_configured:
            self._log("Drive client credentials or encryption key not configured, skipping")
            return None

        try:
            refresh_token = TokenCipher(self.settings.encryption_key).decrypt(config.encrypted_refresh_token)
        except CredentialError as e:
            logger.warning(f"Stored refresh token unusable: {e}")
            self._log(f"Stored refresh token unusable, skipping secondary destination: {e}")
            return None

        return self.drive_factory(
            client_id=self.settings.google_client_id,
            client_secret=self.settings.google_client_secret,
            refresh_token=refresh_token,
            folder_id=config.destination_folder_id,
            http_timeout=self.settings.http_timeout,
            chunk_size=self.settings.drive_chunk_size,
            resumable_threshold=self.settings.drive_resumable_threshold,
            deadline=deadline,
        )

    def _replicate(self, drive: DriveClient, config: BackupConfig, date: str, now: datetime,
                   summary: RunSummary):
        artifacts = [
            (db_dump_key(date), f"{date}-database.sql.gz", 'application/gzip'),
            (kv_dump_key(date), f"{date}-whitelist.json", 'application/json'),
        ]
        if config.include_manifest:
            artifacts.append((manifest_key(date), f"{date}-r2-manifest.json", 'application/json'))

        for key, name, mime_type in artifacts:
            body, size = self.store.open_stream(key)
            try:
                drive.upload_stream(name, body, size, mime_type)
            finally:
                body.close()
            self._log(f"Uploaded {name} ({size} bytes)")

        if config.include_files:
            result = IncrementalReplicator(self.store, drive).replicate(now)
            summary.files_uploaded = result.new + result.changed
            self._log(
                f"Incremental files: {result.new} new, {result.changed} changed, "
                f"{result.unchanged} unchanged ({result.uploaded_bytes} bytes)"
            )

    # -- bookkeeping ---------------------------------------------------------

    def _config(self) -> Optional[BackupConfig]:
        return db.session.get(BackupConfig, 1)

    def _record_skipped(self, now: datetime, trigger: str, reason: Exception):
        """History entry for a run that never started because the lease was held."""
        db.session.add(BackupRun(
            date=now.strftime('%Y-%m-%d'),
            trigger=trigger,
            status='skipped',
            started_at=now.replace(tzinfo=None),
            completed_at=now.replace(tzinfo=None),
            error_message=str(reason)
        ))
        db.session.commit()

    def _finish(self, summary: RunSummary):
        record = self.run_record
        record.status = summary.status
        record.completed_at = datetime.utcnow()
        record.failed_step = summary.failed_step
        record.error_message = summary.error or summary.secondary_error
        record.secondary_status = summary.secondary_status
        record.primary_deleted = summary.primary_deleted
        record.secondary_deleted = summary.secondary_deleted
        record.logs = '\n'.join(self.logs)
        db.session.commit()

    def _log(self, message: str):
        """
        Add a log message with timestamp.

        Args:
            message: Log message
        """
        timestamp = datetime.utcnow().strftime('%Y-%m-%d %H:%M:%S UTC')
        self.logs.append(f"[{timestamp}] {message}")
        logger.info(message)

        # Flush logs every 5 entries
        self._log_flush_counter += 1
        if self._log_flush_counter >= 5:
            self._flush_logs_to_db()

    def _flush_logs_to_db(self):
        """Flush accumulated logs to database for real-time visibility."""
        if self.run_record:
            self.run_record.logs = '\n'.join(self.logs)
            db.session.commit()
            self._log_flush_counter = 0


def run_backup(app_config, now: Optional[datetime] = None, trigger: str = 'scheduled') -> RunSummary:
    """
    Run a backup with settings taken from the Flask config.

    Must be called inside an application context.

    Raises:
        LeaseUnavailable: If another run is in progress
    """
    orchestrator = BackupOrchestrator(EngineSettings.from_config(app_config))
    return orchestrator.run(now=now, trigger=trigger)
