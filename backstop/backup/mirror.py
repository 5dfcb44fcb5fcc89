"""
Object-store mirroring.

Manifest mode copies every live object (anything outside backups/) to
backups/files/{date}/{key} with server-side copies and records the manifest.

Incremental mode replicates live objects to the secondary destination,
uploading only objects that are new or whose fingerprint changed since the
last run. The per-key state document is kept next to the replicated files.
"""

import json
import logging
import mimetypes
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Dict, List, Optional

from .storage import ObjectStore, StoredObject, StorageError
from .drive import DriveClient


logger = logging.getLogger(__name__)

BACKUP_PREFIX = 'backups/'
FILES_PREFIX = 'backups/files/'
REPLICA_PREFIX = 'r2-files/'
STATE_DOCUMENT_NAME = 'r2-files-state.json'


class MirrorError(Exception):
    """Raised when the object store cannot be listed or copied."""
    pass


def files_backup_key(date: str, key: str) -> str:
    return f"{FILES_PREFIX}{date}/{key}"


def manifest_key(date: str) -> str:
    return f"{FILES_PREFIX}{date}/manifest.json"


@dataclass
class ManifestEntry:
    key: str
    size: int
    uploaded: str
    fingerprint: str
    backup_key: str


@dataclass
class FileManifest:
    date: str
    files: List[ManifestEntry] = field(default_factory=list)

    @property
    def total_bytes(self) -> int:
        return sum(entry.size for entry in self.files)

    def to_json(self) -> str:
        return json.dumps({
            'date': self.date,
            'total_files': len(self.files),
            'total_bytes': self.total_bytes,
            'files': [asdict(entry) for entry in self.files],
        }, indent=2)


def list_live_objects(store: ObjectStore) -> List[StoredObject]:
    """
    List every object not under the backups/ prefix.

    Raises:
        MirrorError: If listing fails
    """
    try:
        objects = store.list_objects()
    except StorageError as e:
        raise MirrorError(f"Failed to list objects: {e}")
    return [obj for obj in objects if not obj.key.startswith(BACKUP_PREFIX)]


class ObjectStoreMirror:
    """
    Builds the dated file backup inside the primary store.
    """

    def __init__(self, store: ObjectStore):
        self.store = store

    def mirror(self, date: str) -> FileManifest:
        """
        Copy all live objects into backups/files/{date}/ and write the manifest.

        Args:
            date: Snapshot date (YYYY-MM-DD)

        Returns:
            The manifest that was written

        Raises:
            MirrorError: If listing, copying or writing the manifest fails
        """
        manifest = FileManifest(date=date)

        for obj in list_live_objects(self.store):
            backup_key = files_backup_key(date, obj.key)
            try:
                self.store.copy(obj.key, backup_key)
            except StorageError as e:
                raise MirrorError(f"Failed to copy {obj.key}: {e}")

            manifest.files.append(ManifestEntry(
                key=obj.key,
                size=obj.size,
                uploaded=obj.last_modified.isoformat(),
                fingerprint=obj.etag,
                backup_key=backup_key,
            ))

        try:
            self.store.put_bytes(
                manifest_key(date),
                manifest.to_json().encode(),
                content_type='application/json',
                metadata={'source': 'files', 'date': date}
            )
        except StorageError as e:
            raise MirrorError(f"Failed to write manifest: {e}")

        logger.info(f"Mirrored {len(manifest.files)} objects ({manifest.total_bytes} bytes) for {date}")
        return manifest


@dataclass
class FileStateEntry:
    fingerprint: str
    size: int
    uploaded_at: str


class FileBackupState:
    """
    Per-key record of what has been replicated to the secondary destination.

    Entries for keys that disappeared from the source are kept; they are
    simply never matched again.
    """

    def __init__(self, entries: Optional[Dict[str, FileStateEntry]] = None):
        self.entries = entries or {}

    @classmethod
    def from_json(cls, text) -> 'FileBackupState':
        data = json.loads(text)
        return cls({key: FileStateEntry(**value) for key, value in data.items()})

    def to_json(self) -> str:
        return json.dumps({key: asdict(entry) for key, entry in sorted(self.entries.items())}, indent=2)

    def __eq__(self, other):
        return isinstance(other, FileBackupState) and self.entries == other.entries

    def __len__(self):
        return len(self.entries)


@dataclass
class DiffPlan:
    new: List[StoredObject] = field(default_factory=list)
    changed: List[StoredObject] = field(default_factory=list)
    unchanged: List[StoredObject] = field(default_factory=list)

    @property
    def to_upload(self) -> List[StoredObject]:
        return self.new + self.changed


def classify(state: FileBackupState, objects: List[StoredObject]) -> DiffPlan:
    """Sort current objects into new, changed and unchanged against state."""
    plan = DiffPlan()
    for obj in objects:
        previous = state.entries.get(obj.key)
        if previous is None:
            plan.new.append(obj)
        elif previous.fingerprint != obj.etag:
            plan.changed.append(obj)
        else:
            plan.unchanged.append(obj)
    return plan


@dataclass
class ReplicationResult:
    new: int = 0
    changed: int = 0
    unchanged: int = 0
    uploaded_bytes: int = 0


class IncrementalReplicator:
    """
    Replicates live objects to the Drive folder as r2-files/{key}.
    """

    def __init__(self, store: ObjectStore, drive: DriveClient):
        self.store = store
        self.drive = drive

    def load_state(self) -> FileBackupState:
        """Read the state document; a missing document means a first run."""
        existing = self.drive.find_file(STATE_DOCUMENT_NAME)
        if existing is None:
            logger.info("No file backup state found, treating as first run")
            return FileBackupState()
        return FileBackupState.from_json(self.drive.download(existing.id))

    def save_state(self, state: FileBackupState):
        self.drive.upload(STATE_DOCUMENT_NAME, state.to_json().encode(), 'application/json')

    def replicate(self, now: datetime) -> ReplicationResult:
        """
        Upload new and changed objects, then rewrite the state document.

        Raises:
            MirrorError: If the source cannot be listed or read
            DriveError: If the destination rejects a request
        """
        state = self.load_state()
        objects = list_live_objects(self.store)
        plan = classify(state, objects)

        logger.info(
            f"Incremental files: {len(plan.new)} new, {len(plan.changed)} changed, "
            f"{len(plan.unchanged)} unchanged"
        )

        result = ReplicationResult(len(plan.new), len(plan.changed), len(plan.unchanged))
        uploaded_at = now.isoformat()

        for obj in plan.to_upload:
            try:
                body, size = self.store.open_stream(obj.key)
            except StorageError as e:
                raise MirrorError(f"Failed to read {obj.key}: {e}")

            mime_type = mimetypes.guess_type(obj.key)[0] or 'application/octet-stream'
            try:
                self.drive.upload_stream(f"{REPLICA_PREFIX}{obj.key}", body, size, mime_type)
            finally:
                body.close()

            state.entries[obj.key] = FileStateEntry(obj.etag, obj.size, uploaded_at)
            result.uploaded_bytes += size

        self.save_state(state)
        return result
