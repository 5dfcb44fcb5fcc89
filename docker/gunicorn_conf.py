# Gunicorn configuration for Backstop
# Exactly one worker owns the backup timer. The master picks it in pre_fork,
# before the worker imports the app, because create_app reads SCHEDULER_WORKER.

import os
import logging

logger = logging.getLogger('gunicorn.error')

bind = f"0.0.0.0:{os.environ.get('PORT', '8080')}"
workers = int(os.environ.get('GUNICORN_WORKERS', '2'))
# A manual /trigger runs the whole backup inside the request
timeout = int(os.environ.get('GUNICORN_TIMEOUT', '1900'))
# The app (and its scheduler) must be created in the workers, not the master
preload_app = False

SCHEDULER_WORKER_ENV = 'SCHEDULER_WORKER'


def choose_scheduler_owner(current_owner, live_workers, candidate):
    """
    Worker age that owns the scheduler once candidate is forked.

    The current owner keeps the role while it is alive; otherwise the worker
    being forked takes over.
    """
    if current_owner is not None and current_owner in live_workers:
        return current_owner
    return candidate


def pre_fork(server, worker):
    """Runs in the master; the forked worker inherits os.environ."""
    live_workers = {w.age for w in server.WORKERS.values()}
    owner = choose_scheduler_owner(getattr(server, 'scheduler_owner', None), live_workers, worker.age)
    server.scheduler_owner = owner

    if owner == worker.age:
        os.environ[SCHEDULER_WORKER_ENV] = 'true'
        logger.info(f"Worker age={worker.age}: owns the backup scheduler")
    else:
        os.environ[SCHEDULER_WORKER_ENV] = 'false'
        logger.info(f"Worker age={worker.age}: HTTP only")
