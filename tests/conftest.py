"""
Shared pytest fixtures for Backstop tests.

This module provides fixtures for:
- Flask app and test client
- Database setup with in-memory SQLite
- Engine settings and the seeded backup configuration
- Mock fixtures for external services (S3 via moto, scheduler)
- An in-memory stand-in for the Drive folder
"""

from unittest.mock import MagicMock, patch

import pytest
import boto3
from moto import mock_aws

from backstop import create_app, db as _db
from backstop.models import BackupConfig
from backstop.backup.storage import ObjectStore
from backstop.backup.settings import EngineSettings
from backstop.backup.drive import DriveFile


TRIGGER_SECRET = 'test-trigger-secret'
ENCRYPTION_KEY = 'test-encryption-key'


@pytest.fixture(scope='function')
def app(tmp_path):
    """
    Create Flask app with test configuration.

    Uses in-memory SQLite database for fast, isolated tests.
    """
    app = create_app('testing', overrides={
        'LOG_DIR': str(tmp_path / 'logs'),
        'BACKUP_ENCRYPTION_KEY': ENCRYPTION_KEY,
    })
    yield app


@pytest.fixture(scope='function')
def db(app):
    """
    Database with all tables and the seeded singleton rows.

    Each test gets a fresh database.
    """
    with app.app_context():
        _db.create_all()
        yield _db
        _db.session.remove()
        _db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Flask test client for making HTTP requests."""
    return app.test_client()


@pytest.fixture
def auth_headers():
    """Authorization header carrying the trigger secret."""
    return {'Authorization': f'Bearer {TRIGGER_SECRET}'}


@pytest.fixture(scope='function')
def backup_config(db):
    """The seeded BackupConfig row (id=1)."""
    return db.session.get(BackupConfig, 1)


@pytest.fixture
def engine_settings():
    """Engine settings pointing at the moto bucket with Drive credentials present."""
    return EngineSettings(
        r2_bucket='test-bucket',
        r2_access_key_id='testing',
        r2_secret_access_key='testing',
        r2_region='us-east-1',
        retention_days=30,
        encryption_key=ENCRYPTION_KEY,
        google_client_id='client-id',
        google_client_secret='client-secret',
        run_deadline_seconds=None,
        export_poll_interval=0,
    )


@pytest.fixture
def mock_s3():
    """
    Mock S3 service using moto.

    Creates a test bucket 'test-bucket' in us-east-1 region.
    """
    with mock_aws():
        s3 = boto3.resource('s3', region_name='us-east-1')
        s3.create_bucket(Bucket='test-bucket')
        yield s3


@pytest.fixture
def object_store(mock_s3):
    """ObjectStore bound to the moto bucket."""
    return ObjectStore(
        bucket_name='test-bucket',
        access_key='testing',
        secret_key='testing',
        region='us-east-1'
    )


class FakeDrive:
    """
    In-memory Drive folder with the DriveClient surface used by the engine.

    Files are keyed by name; uploading an existing name replaces its content.
    """

    def __init__(self, files=None):
        self.files = {}
        self.ids = {}
        self.uploads = []
        self.deleted = []
        self._next_id = 1
        for name, content in (files or {}).items():
            self._store(name, content)

    def _store(self, name, content):
        if name not in self.ids:
            self.ids[name] = f"id-{self._next_id}"
            self._next_id += 1
        self.files[name] = content
        return DriveFile(self.ids[name], name)

    def authenticate(self):
        return None

    def list_files(self):
        return [DriveFile(self.ids[name], name) for name in self.files]

    def find_file(self, name):
        if name not in self.files:
            return None
        return DriveFile(self.ids[name], name)

    def download(self, file_id):
        for name, fid in self.ids.items():
            if fid == file_id:
                return self.files[name]
        raise KeyError(file_id)

    def upload(self, name, data, mime_type):
        self.uploads.append(name)
        return self._store(name, data)

    def upload_stream(self, name, stream, size, mime_type):
        return self.upload(name, stream.read(size), mime_type)

    def delete(self, file_id):
        for name, fid in list(self.ids.items()):
            if fid == file_id:
                del self.ids[name]
                del self.files[name]
                self.deleted.append(name)
        return True


@pytest.fixture
def fake_drive():
    """Empty in-memory Drive folder."""
    return FakeDrive()


@pytest.fixture
def make_drive():
    """Factory for a Drive folder pre-filled with {name: content}."""
    return FakeDrive


@pytest.fixture(scope='function')
def mock_scheduler():
    """
    Mock APScheduler for testing scheduler functionality.
    """
    with patch('backstop.scheduler.BackgroundScheduler') as mock_sched:
        scheduler_instance = MagicMock()
        mock_sched.return_value = scheduler_instance

        scheduler_instance.running = False
        scheduler_instance.state = 0
        scheduler_instance.get_jobs.return_value = []

        yield scheduler_instance
