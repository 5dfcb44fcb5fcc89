"""
APScheduler configuration for Backstop.

Manages:
- The timer that fires the backup orchestrator (cron expression, UTC)
- Manual one-off triggers queued from the API
"""

import uuid
import logging
from datetime import datetime, timedelta, timezone
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.jobstores.sqlalchemy import SQLAlchemyJobStore
from apscheduler.executors.pool import ThreadPoolExecutor

from backstop import db
from backstop.backup.executor import run_backup
from backstop.backup.lease import LeaseUnavailable


logger = logging.getLogger(__name__)

BACKUP_JOB_ID = 'scheduled_backup'

# Set per worker by the Gunicorn master before it forks (docker/gunicorn_conf.py)
SCHEDULER_WORKER_ENV = 'SCHEDULER_WORKER'

# Global scheduler instance and Flask app reference
scheduler = None
flask_app = None


def _count_jobs_in_database() -> int:
    """
    Count jobs in APScheduler's persistent job store.

    Used to detect scheduler health from processes that do not own the
    scheduler (HTTP-only Gunicorn workers, Flask reloader parent).

    Returns:
        Number of jobs in database, or 0 if error
    """
    try:
        from sqlalchemy import text
        result = db.session.execute(
            text("SELECT COUNT(*) FROM apscheduler_jobs")
        ).scalar()
        return result or 0
    except Exception:
        # Job store table not created yet
        db.session.rollback()
        return 0


def should_run_scheduler(app_config, environ) -> bool:
    """
    Decide whether this process owns the scheduler.

    - Testing: never
    - Development: only the Flask reloader child, not its parent
    - Production: only when SCHEDULER_WORKER is 'true'. Gunicorn sets it for
      every worker; a single-process deployment leaves it unset and owns it.
    """
    if app_config.get('TESTING', False):
        return False
    if app_config.get('DEBUG', False):
        return environ.get('WERKZEUG_RUN_MAIN') == 'true'
    return environ.get(SCHEDULER_WORKER_ENV, 'true').lower() == 'true'


def init_scheduler(app):
    """
    Initialize and configure APScheduler.

    Args:
        app: Flask app instance
    """
    global scheduler, flask_app

    if scheduler is not None:
        return scheduler

    # Store Flask app reference for use in background threads
    flask_app = app

    jobstores = {
        'default': SQLAlchemyJobStore(url=app.config['SQLALCHEMY_DATABASE_URI'])
    }

    # Runs are sequential; one worker thread is enough
    executors = {
        'default': ThreadPoolExecutor(max_workers=1)
    }

    job_defaults = {
        'coalesce': True,  # Combine multiple pending instances into one
        'max_instances': 1,  # Only one instance of a job at a time
        'misfire_grace_time': 300  # 5 minutes grace period for misfires
    }

    scheduler = BackgroundScheduler(
        jobstores=jobstores,
        executors=executors,
        job_defaults=job_defaults,
        timezone='UTC'
    )

    scheduler.add_job(
        func=_run_backup_wrapper,
        args=['scheduled'],
        trigger=CronTrigger.from_crontab(app.config['BACKUP_SCHEDULE_CRON'], timezone='UTC'),
        id=BACKUP_JOB_ID,
        name='Scheduled Backup',
        replace_existing=True
    )

    return scheduler


def start_scheduler():
    """
    Start the APScheduler.

    Should be called after Flask app is initialized.
    """
    if scheduler is None:
        raise RuntimeError("Scheduler not initialized. Call init_scheduler() first.")

    if not scheduler.running:
        scheduler.start()
        logger.info(f"APScheduler started (state={scheduler.state})")

        for job in scheduler.get_jobs():
            next_run = job.next_run_time.isoformat() if job.next_run_time else 'N/A'
            logger.info(f"  - {job.id}: {job.name} (next run: {next_run})")
    else:
        logger.info(f"Scheduler already running (state={scheduler.state})")


def stop_scheduler():
    """Stop the APScheduler."""
    if scheduler and scheduler.running:
        scheduler.shutdown()
        logger.info("APScheduler stopped")


def _run_backup_wrapper(trigger: str = 'scheduled'):
    """
    Execute a backup run in scheduler context.

    Runs within an app context using the stored Flask app reference so the
    database session is managed correctly.
    """
    with flask_app.app_context():
        try:
            summary = run_backup(flask_app.config, trigger=trigger)
            logger.info(f"Backup run for {summary.date} finished with status: {summary.status}")
        except LeaseUnavailable as e:
            logger.warning(f"Backup run skipped: {e}")
        except Exception:
            logger.exception("Scheduled backup run crashed")


def trigger_backup_now():
    """
    Queue a manual backup run to start immediately on the scheduler thread.

    Raises:
        RuntimeError: If the scheduler is not initialized in this process
    """
    if scheduler is None:
        raise RuntimeError("Scheduler not initialized")

    now = datetime.now(timezone.utc)
    scheduler.add_job(
        func=_run_backup_wrapper,
        args=['manual'],
        trigger=DateTrigger(run_date=now + timedelta(seconds=1)),
        id=f"manual_{uuid.uuid4().hex}",
        name='Manual Backup',
        replace_existing=False
    )
    logger.info("Manual backup queued")


def get_scheduled_jobs() -> list:
    """
    Get list of all scheduled jobs.

    Returns:
        List of dicts with job information
    """
    if scheduler is None:
        return []

    jobs = []
    for job in scheduler.get_jobs():
        jobs.append({
            'id': job.id,
            'name': job.name,
            'next_run': job.next_run_time.isoformat() if job.next_run_time else None,
            'trigger': str(job.trigger)
        })

    return jobs


def is_scheduler_running() -> bool:
    """
    Check if scheduler is running.

    Falls back to the persistent job store when this process does not own
    the scheduler.
    """
    if scheduler is not None and scheduler.running:
        return True

    return _count_jobs_in_database() > 0
