"""
Backup module for Backstop.

This module handles the scheduled backup engine:
- Database export (asynchronous export API)
- Key-value namespace dump
- Object store mirroring and incremental replication
- Google Drive secondary destination
- Retention policy enforcement (age cutoff and tiered buckets)
- Orchestration of a complete run
"""

from .executor import BackupOrchestrator, RunSummary, RunError, run_backup
from .database_export import DatabaseExportClient, ExportError, ExportTimeout
from .kv_dump import KVNamespaceDumper, KVDumpError
from .storage import ObjectStore, StorageError
from .mirror import ObjectStoreMirror, IncrementalReplicator, MirrorError
from .drive import DriveClient, DriveError, DriveAuthError, DriveUploadError
from .retention import RetentionManager, RetentionError, select_keep_set
from .schedule import is_due
from .settings import EngineSettings

__all__ = [
    'BackupOrchestrator',
    'RunSummary',
    'RunError',
    'run_backup',
    'DatabaseExportClient',
    'ExportError',
    'ExportTimeout',
    'KVNamespaceDumper',
    'KVDumpError',
    'ObjectStore',
    'StorageError',
    'ObjectStoreMirror',
    'IncrementalReplicator',
    'MirrorError',
    'DriveClient',
    'DriveError',
    'DriveAuthError',
    'DriveUploadError',
    'RetentionManager',
    'RetentionError',
    'select_keep_set',
    'is_due',
    'EngineSettings',
]
