"""
Status routes - last backup timestamps and recent runs.
"""

from flask import Blueprint, jsonify, request

from backstop import db
from backstop.auth import secret_required
from backstop.models import BackupConfig, BackupRun
from backstop.scheduler import get_scheduled_jobs, is_scheduler_running


bp = Blueprint('status', __name__, url_prefix='/api')


@bp.route('/status', methods=['GET'])
@secret_required
def get_status():
    """
    Get backup status.

    Query parameters:
        - limit: Number of recent runs to include (default 10, max 100)

    Returns:
        JSON with last backup times, secondary destination settings
        (no credentials), scheduler state and recent runs
    """
    limit = min(request.args.get('limit', 10, type=int), 100)

    config = db.session.get(BackupConfig, 1)
    runs = BackupRun.query.order_by(BackupRun.started_at.desc()).limit(limit).all()

    config_info = None
    if config:
        config_info = {
            'destination_enabled': config.destination_enabled,
            'destination_configured': config.secondary_configured,
            'schedule_type': config.schedule_type,
            'schedule_hour_utc': config.schedule_hour_utc,
            'schedule_day_of_week': config.schedule_day_of_week,
            'include_manifest': config.include_manifest,
            'include_files': config.include_files,
            'last_primary_backup_at': config.last_primary_backup_at.isoformat() if config.last_primary_backup_at else None,
            'last_secondary_backup_at': config.last_secondary_backup_at.isoformat() if config.last_secondary_backup_at else None,
        }

    return jsonify({
        'config': config_info,
        'scheduler_status': 'running' if is_scheduler_running() else 'stopped',
        'scheduled_jobs': get_scheduled_jobs(),
        'recent_runs': [run.to_dict() for run in runs],
    })
