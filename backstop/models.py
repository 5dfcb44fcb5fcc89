from datetime import datetime
from backstop import db


class BackupConfig(db.Model):
    """Operator-managed backup settings (single row, id=1)"""
    __tablename__ = 'backup_config'

    id = db.Column(db.Integer, primary_key=True)
    destination_enabled = db.Column(db.Boolean, default=False, nullable=False)
    encrypted_refresh_token = db.Column(db.Text, nullable=True)  # TokenCipher output
    destination_folder_id = db.Column(db.String(255), nullable=True)
    schedule_type = db.Column(db.String(10), default='daily', nullable=False)  # daily or weekly
    schedule_hour_utc = db.Column(db.Integer, default=2, nullable=True)  # 0-23
    schedule_day_of_week = db.Column(db.Integer, nullable=True)  # 0-6, 0 = Sunday (weekly only)
    include_manifest = db.Column(db.Boolean, default=True, nullable=False)
    include_files = db.Column(db.Boolean, default=False, nullable=False)
    last_primary_backup_at = db.Column(db.DateTime, nullable=True)
    last_secondary_backup_at = db.Column(db.DateTime, nullable=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=True)

    @property
    def secondary_configured(self) -> bool:
        """Destination enabled with both a credential and a folder present."""
        return bool(self.destination_enabled and self.encrypted_refresh_token and self.destination_folder_id)

    def __repr__(self):
        return f'<BackupConfig destination_enabled={self.destination_enabled} schedule={self.schedule_type}>'


class BackupRun(db.Model):
    """Backup run history and logs"""
    __tablename__ = 'backup_runs'

    id = db.Column(db.Integer, primary_key=True)
    date = db.Column(db.String(10), nullable=False)  # YYYY-MM-DD snapshot date
    trigger = db.Column(db.String(20), default='scheduled', nullable=False)  # scheduled or manual
    status = db.Column(db.String(20), nullable=False)  # running, success, partial, failed, skipped
    started_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    completed_at = db.Column(db.DateTime)
    failed_step = db.Column(db.String(50))
    error_message = db.Column(db.Text)
    secondary_status = db.Column(db.String(20))  # not_configured, not_due, success, failed
    primary_deleted = db.Column(db.Integer, default=0, nullable=False)
    secondary_deleted = db.Column(db.Integer, default=0, nullable=False)
    logs = db.Column(db.Text)

    def to_dict(self):
        return {
            'id': self.id,
            'date': self.date,
            'trigger': self.trigger,
            'status': self.status,
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'failed_step': self.failed_step,
            'error_message': self.error_message,
            'secondary_status': self.secondary_status,
            'primary_deleted': self.primary_deleted,
            'secondary_deleted': self.secondary_deleted,
        }

    def __repr__(self):
        return f'<BackupRun date={self.date} status={self.status}>'


class RunLease(db.Model):
    """Cross-process lease preventing overlapping backup runs (single row, id=1)"""
    __tablename__ = 'run_lease'

    id = db.Column(db.Integer, primary_key=True)
    holder = db.Column(db.String(100), nullable=True)
    expires_at = db.Column(db.DateTime, nullable=True)

    def __repr__(self):
        return f'<RunLease holder={self.holder} expires_at={self.expires_at}>'
