import os


def _int_env(name, default):
    value = os.environ.get(name)
    if value is None or value.strip() == '':
        return default
    return int(value)


class Config:
    """Base configuration"""

    # Database
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or 'sqlite:////data/backstop.db'
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Logging
    LOG_DIR = os.environ.get('LOG_DIR') or '/data/logs'

    # Cloudflare account (database export API and key-value API)
    CLOUDFLARE_ACCOUNT_ID = os.environ.get('CLOUDFLARE_ACCOUNT_ID', '')
    CLOUDFLARE_API_TOKEN = os.environ.get('CLOUDFLARE_API_TOKEN', '')
    CLOUDFLARE_API_BASE = os.environ.get('CLOUDFLARE_API_BASE') or 'https://api.cloudflare.com/client/v4'
    D1_DATABASE_ID = os.environ.get('D1_DATABASE_ID', '')
    KV_NAMESPACE_ID = os.environ.get('KV_NAMESPACE_ID', '')

    # Object store (S3-compatible R2 bucket)
    R2_BUCKET = os.environ.get('R2_BUCKET', '')
    R2_ACCESS_KEY_ID = os.environ.get('R2_ACCESS_KEY_ID', '')
    R2_SECRET_ACCESS_KEY = os.environ.get('R2_SECRET_ACCESS_KEY', '')
    R2_ENDPOINT_URL = os.environ.get('R2_ENDPOINT_URL', '')
    R2_REGION = os.environ.get('R2_REGION') or 'auto'

    # Retention
    BACKUP_RETENTION_DAYS = _int_env('BACKUP_RETENTION_DAYS', 30)

    # Manual trigger
    BACKUP_TRIGGER_SECRET = os.environ.get('BACKUP_TRIGGER_SECRET', '')

    # Secondary destination (Google Drive)
    BACKUP_ENCRYPTION_KEY = os.environ.get('BACKUP_ENCRYPTION_KEY', '')
    GOOGLE_CLIENT_ID = os.environ.get('GOOGLE_CLIENT_ID', '')
    GOOGLE_CLIENT_SECRET = os.environ.get('GOOGLE_CLIENT_SECRET', '')
    DRIVE_CHUNK_SIZE = _int_env('DRIVE_CHUNK_SIZE', 8 * 1024 * 1024)
    DRIVE_RESUMABLE_THRESHOLD = _int_env('DRIVE_RESUMABLE_THRESHOLD', 8 * 1024 * 1024)

    # Run limits
    BACKUP_RUN_DEADLINE_SECONDS = _int_env('BACKUP_RUN_DEADLINE_SECONDS', 1800)
    BACKUP_LEASE_TTL_SECONDS = _int_env('BACKUP_LEASE_TTL_SECONDS', 3600)
    EXPORT_POLL_INTERVAL_SECONDS = _int_env('EXPORT_POLL_INTERVAL_SECONDS', 5)
    EXPORT_MAX_POLLS = _int_env('EXPORT_MAX_POLLS', 60)
    HTTP_TIMEOUT_SECONDS = _int_env('HTTP_TIMEOUT_SECONDS', 60)

    # Scheduler
    SCHEDULER_TIMEZONE = 'UTC'
    BACKUP_SCHEDULE_CRON = os.environ.get('BACKUP_SCHEDULE_CRON') or '0 2 * * *'


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    SQLALCHEMY_ECHO = False

    # Use local data directory for development
    BASE_DIR = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    DATA_DIR = os.path.join(BASE_DIR, 'data')
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or f'sqlite:///{os.path.join(DATA_DIR, "backstop.db")}'
    LOG_DIR = os.path.join(DATA_DIR, 'logs')


class TestingConfig(DevelopmentConfig):
    """Test configuration (in-memory database, scheduler never started)"""
    TESTING = True
    DEBUG = False
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    BACKUP_TRIGGER_SECRET = 'test-trigger-secret'
    EXPORT_POLL_INTERVAL_SECONDS = 0


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False
    SQLALCHEMY_ECHO = False


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
    'default': ProductionConfig
}
