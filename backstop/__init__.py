import os
import atexit
import logging
from logging.handlers import RotatingFileHandler
from flask import Flask
from flask_sqlalchemy import SQLAlchemy


db = SQLAlchemy()

LOG_FILE = 'backstop.log'
LOG_FORMAT = '[%(asctime)s] %(levelname)s [%(name)s:%(lineno)d] %(message)s'
# Third-party loggers that drown backup progress at DEBUG
QUIET_LOGGERS = ('botocore', 'boto3', 's3transfer', 'urllib3', 'apscheduler.executors')


def configure_logging(app):
    """
    Send backstop, Flask and library logs to the console and to a rotating
    file under LOG_DIR. DEBUG in development, INFO otherwise.
    """
    os.makedirs(app.config['LOG_DIR'], exist_ok=True)
    level = logging.DEBUG if app.config.get('DEBUG', False) else logging.INFO
    formatter = logging.Formatter(LOG_FORMAT)

    handlers = [
        logging.StreamHandler(),
        RotatingFileHandler(
            os.path.join(app.config['LOG_DIR'], LOG_FILE),
            maxBytes=10 * 1024 * 1024,
            backupCount=5
        ),
    ]
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)

    logging.basicConfig(level=level, handlers=handlers)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    app.logger.setLevel(level)
    for handler in handlers:
        app.logger.addHandler(handler)


def create_app(config_name=None, overrides=None):
    """Flask application factory"""

    app = Flask(__name__)

    # Load configuration
    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'production')

    from backstop.config import config
    app.config.from_object(config[config_name])
    if overrides:
        app.config.update(overrides)

    # Configure logging
    configure_logging(app)

    database_uri = app.config['SQLALCHEMY_DATABASE_URI']
    if database_uri.startswith('sqlite:///') and ':memory:' not in database_uri:
        os.makedirs(os.path.dirname(database_uri.replace('sqlite:///', '')) or '.', exist_ok=True)

    # Initialize extensions
    db.init_app(app)

    # Register blueprints
    from backstop.routes import trigger_routes, status_routes
    app.register_blueprint(trigger_routes.bp)
    app.register_blueprint(status_routes.bp)

    # Health check endpoint
    @app.route('/health')
    def health():
        return {'status': 'healthy'}, 200

    # Initialize database schema and run migrations
    from backstop import models
    from backstop.migrations import init_database_schema

    init_database_schema(app)

    # Only one process per deployment owns the backup timer
    from backstop.scheduler import should_run_scheduler, init_scheduler, start_scheduler, stop_scheduler

    if should_run_scheduler(app.config, os.environ):
        init_scheduler(app)
        start_scheduler()
        atexit.register(stop_scheduler)
        app.logger.info(f"Backup scheduler started in PID {os.getpid()}")
    else:
        app.logger.info(f"Backup scheduler not owned by PID {os.getpid()}")

    return app
