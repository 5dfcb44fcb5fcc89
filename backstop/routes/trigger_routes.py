"""
Manual backup trigger.
"""

import logging
from flask import Blueprint, current_app, jsonify, request

from backstop.auth import secret_required
from backstop.backup.executor import run_backup
from backstop.backup.lease import LeaseUnavailable
from backstop import scheduler as scheduler_module


logger = logging.getLogger(__name__)

bp = Blueprint('trigger', __name__)


@bp.route('/trigger', methods=['POST'])
@secret_required
def trigger():
    """
    Run a backup now.

    Query parameters:
        - wait: 'false' to queue the run on the scheduler and return at once

    Returns:
        200 {ok: true, date, status, secondary} on success or partial success
        202 {ok: true, queued: true} when queued
        409 {ok: false, error} if another run holds the lease
        500 {ok: false, error, step} if the primary backup failed
    """
    if request.args.get('wait', 'true').lower() == 'false' and scheduler_module.scheduler is not None:
        try:
            scheduler_module.trigger_backup_now()
        except Exception as e:
            logger.exception("Queueing manual backup failed")
            return jsonify({'ok': False, 'error': str(e)}), 500
        return jsonify({'ok': True, 'queued': True}), 202

    try:
        summary = run_backup(current_app.config, trigger='manual')
    except LeaseUnavailable as e:
        return jsonify({'ok': False, 'error': str(e)}), 409
    except Exception as e:
        logger.exception("Manual backup crashed")
        return jsonify({'ok': False, 'error': str(e)}), 500

    if not summary.ok:
        return jsonify(summary.to_dict()), 500

    return jsonify(summary.to_dict()), 200
