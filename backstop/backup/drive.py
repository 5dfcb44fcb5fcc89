"""
Google Drive client for the secondary backup destination.

Authenticates by exchanging the stored refresh token for a short-lived access
token, then writes into one configured folder. Small payloads go up in a
single multipart request (JSON metadata part + binary part); larger ones use
the resumable protocol in fixed-size chunks read from a stream, so whole
files are never held in memory.
"""

import re
import json
import uuid
import logging
from dataclasses import dataclass
from typing import Optional, List, Dict, BinaryIO

import requests

from .deadline import RunDeadline, unbounded


logger = logging.getLogger(__name__)

TOKEN_URL = 'https://oauth2.googleapis.com/token'
FILES_URL = 'https://www.googleapis.com/drive/v3/files'
UPLOAD_URL = 'https://www.googleapis.com/upload/drive/v3/files'

# Resumable chunks must be multiples of 256 KiB
CHUNK_ALIGNMENT = 256 * 1024

PERSISTED_RANGE = re.compile(r'^bytes=0-(\d+)$')


class DriveError(Exception):
    """Raised when a Drive request fails."""
    pass


class DriveAuthError(DriveError):
    """Raised when the refresh token cannot be exchanged (expired or revoked)."""
    pass


class DriveUploadError(DriveError):
    """Raised when an upload fails."""
    pass


@dataclass(frozen=True)
class TokenGrant:
    access_token: str
    expires_in: Optional[int] = None


@dataclass(frozen=True)
class DriveFile:
    id: str
    name: str


def parse_token_response(payload) -> TokenGrant:
    """
    Convert a token endpoint response into a TokenGrant.

    Raises:
        DriveAuthError: If the payload carries an error or no access token
    """
    if not isinstance(payload, dict):
        raise DriveAuthError("Token endpoint returned a non-object response")
    if payload.get('error'):
        detail = payload.get('error_description') or ''
        raise DriveAuthError(f"Token refresh rejected: {payload['error']} {detail}".strip())
    if not payload.get('access_token'):
        raise DriveAuthError("No access_token in token response")
    return TokenGrant(payload['access_token'], payload.get('expires_in'))


def _read_exact(stream: BinaryIO, size: int) -> bytes:
    buf = bytearray()
    while len(buf) < size:
        data = stream.read(size - len(buf))
        if not data:
            break
        buf.extend(data)
    return bytes(buf)


def persisted_offset(response) -> int:
    """
    Offset of the first byte the upload session has not stored yet.

    A 308 reply names the stored range as `Range: bytes=0-N`; a reply
    without one means nothing has been stored.
    """
    match = PERSISTED_RANGE.match(response.headers.get('Range', ''))
    return int(match.group(1)) + 1 if match else 0


class DriveClient:
    """
    Folder-scoped Drive client.

    Files are addressed by name within the folder: uploading a name that
    already exists updates that file instead of creating a duplicate.
    """

    def __init__(self, client_id: str, client_secret: str, refresh_token: str, folder_id: str,
                 http_timeout: float = 60, chunk_size: int = 8 * 1024 * 1024,
                 resumable_threshold: int = 8 * 1024 * 1024,
                 session: Optional[requests.Session] = None,
                 deadline: Optional[RunDeadline] = None):
        """
        Initialize Drive client.

        Args:
            client_id: OAuth client ID
            client_secret: OAuth client secret
            refresh_token: Decrypted refresh token
            folder_id: Destination folder ID
            http_timeout: Upper bound for each HTTP call, in seconds
            chunk_size: Resumable upload chunk size (rounded down to 256 KiB)
            resumable_threshold: Payloads larger than this use resumable upload
            session: Optional requests session
            deadline: Run deadline bounding every request
        """
        self.client_id = client_id
        self.client_secret = client_secret
        self.refresh_token = refresh_token
        self.folder_id = folder_id
        self.http_timeout = http_timeout
        self.chunk_size = max(CHUNK_ALIGNMENT, chunk_size - chunk_size % CHUNK_ALIGNMENT)
        self.resumable_threshold = resumable_threshold
        self.session = session or requests.Session()
        self.deadline = deadline or unbounded()

        self._access_token = None
        self._index: Optional[Dict[str, str]] = None

    # -- auth ---------------------------------------------------------------

    def authenticate(self) -> TokenGrant:
        """
        Exchange the refresh token for an access token.

        Raises:
            DriveAuthError: If the exchange fails
        """
        try:
            response = self.session.post(
                TOKEN_URL,
                data={
                    'client_id': self.client_id,
                    'client_secret': self.client_secret,
                    'refresh_token': self.refresh_token,
                    'grant_type': 'refresh_token',
                },
                timeout=self.deadline.timeout(self.http_timeout, 'token refresh'),
            )
        except requests.RequestException as e:
            raise DriveAuthError(f"Token refresh request failed: {e}")

        try:
            payload = response.json()
        except ValueError:
            raise DriveAuthError(f"Token refresh failed: {response.status_code} {response.text}")

        if not response.ok and not payload.get('error'):
            raise DriveAuthError(f"Token refresh failed: {response.status_code} {response.text}")

        grant = parse_token_response(payload)
        self._access_token = grant.access_token
        return grant

    def _headers(self, extra: Optional[dict] = None) -> dict:
        if self._access_token is None:
            self.authenticate()
        headers = {'Authorization': f'Bearer {self._access_token}'}
        if extra:
            headers.update(extra)
        return headers

    def _timeout(self, what: str) -> float:
        return self.deadline.timeout(self.http_timeout, what)

    # -- listing ------------------------------------------------------------

    def list_files(self) -> List[DriveFile]:
        """
        List every file in the folder (all pages).

        Raises:
            DriveError: If listing fails
        """
        files = []
        page_token = None

        while True:
            params = {
                'q': f"'{self.folder_id}' in parents and trashed = false",
                'fields': 'nextPageToken, files(id, name)',
                'pageSize': 1000,
            }
            if page_token:
                params['pageToken'] = page_token

            try:
                response = self.session.get(FILES_URL, params=params, headers=self._headers(),
                                            timeout=self._timeout('drive listing'))
            except requests.RequestException as e:
                raise DriveError(f"Drive list failed: {e}")

            if not response.ok:
                raise DriveError(f"Drive list failed: {response.status_code} {response.text}")

            try:
                payload = response.json()
            except ValueError:
                raise DriveError(f"Drive list returned invalid JSON: {response.text[:200]}")
            files.extend(DriveFile(f['id'], f['name']) for f in payload.get('files') or [])

            page_token = payload.get('nextPageToken')
            if not page_token:
                break

        self._index = {f.name: f.id for f in files}
        return files

    def find_file(self, name: str) -> Optional[DriveFile]:
        """Look up a file in the folder by exact name."""
        if self._index is None:
            self.list_files()
        file_id = self._index.get(name)
        return DriveFile(file_id, name) if file_id else None

    def download(self, file_id: str) -> bytes:
        """
        Download a file's content.

        Raises:
            DriveError: If the download fails
        """
        try:
            response = self.session.get(f"{FILES_URL}/{file_id}", params={'alt': 'media'},
                                        headers=self._headers(), timeout=self._timeout('drive download'))
        except requests.RequestException as e:
            raise DriveError(f"Drive download failed: {e}")

        if not response.ok:
            raise DriveError(f"Drive download of {file_id} failed: {response.status_code}")

        return response.content

    def delete(self, file_id: str) -> bool:
        """
        Delete a file by ID. A file that is already gone counts as deleted.

        Returns:
            True if the file no longer exists

        Raises:
            DriveError: If deletion fails
        """
        try:
            response = self.session.delete(f"{FILES_URL}/{file_id}", headers=self._headers(),
                                           timeout=self._timeout('drive delete'))
        except requests.RequestException as e:
            raise DriveError(f"Drive delete failed: {e}")

        if not response.ok and response.status_code != 404:
            raise DriveError(f"Drive delete of {file_id} failed: {response.status_code}")

        if self._index is not None:
            self._index = {name: fid for name, fid in self._index.items() if fid != file_id}
        return True

    # -- uploads ------------------------------------------------------------

    def upload(self, name: str, data: bytes, mime_type: str) -> DriveFile:
        """
        Upload in-memory content with a single multipart request.

        Raises:
            DriveUploadError: If the upload fails
        """
        existing = self.find_file(name)

        boundary = f"backstop_{uuid.uuid4().hex}"
        metadata = {'name': name}
        if existing is None:
            metadata['parents'] = [self.folder_id]

        body = b''.join([
            f"--{boundary}\r\nContent-Type: application/json; charset=UTF-8\r\n\r\n".encode(),
            json.dumps(metadata).encode(),
            f"\r\n--{boundary}\r\nContent-Type: {mime_type}\r\n\r\n".encode(),
            data,
            f"\r\n--{boundary}--".encode(),
        ])

        headers = self._headers({'Content-Type': f'multipart/related; boundary={boundary}'})
        params = {'uploadType': 'multipart', 'fields': 'id, name'}

        try:
            if existing is None:
                response = self.session.post(UPLOAD_URL, params=params, data=body, headers=headers,
                                             timeout=self._timeout('drive upload'))
            else:
                response = self.session.patch(f"{UPLOAD_URL}/{existing.id}", params=params, data=body,
                                              headers=headers, timeout=self._timeout('drive upload'))
        except requests.RequestException as e:
            raise DriveUploadError(f"Drive upload of {name} failed: {e}")

        if not response.ok:
            raise DriveUploadError(f"Drive upload of {name} failed: {response.status_code} {response.text}")

        return self._remember(name, response)

    def upload_stream(self, name: str, stream: BinaryIO, size: int, mime_type: str) -> DriveFile:
        """
        Upload from a stream. Uses a resumable session in chunks when the
        payload is larger than the resumable threshold.

        Raises:
            DriveUploadError: If the upload fails
        """
        if size <= self.resumable_threshold:
            return self.upload(name, _read_exact(stream, size), mime_type)

        existing = self.find_file(name)
        metadata = {'name': name}
        if existing is None:
            metadata['parents'] = [self.folder_id]

        headers = self._headers({
            'Content-Type': 'application/json; charset=UTF-8',
            'X-Upload-Content-Type': mime_type,
            'X-Upload-Content-Length': str(size),
        })
        params = {'uploadType': 'resumable', 'fields': 'id, name'}

        try:
            if existing is None:
                response = self.session.post(UPLOAD_URL, params=params, json=metadata, headers=headers,
                                             timeout=self._timeout('drive upload session'))
            else:
                response = self.session.patch(f"{UPLOAD_URL}/{existing.id}", params=params, json=metadata,
                                              headers=headers, timeout=self._timeout('drive upload session'))
        except requests.RequestException as e:
            raise DriveUploadError(f"Drive upload session for {name} failed: {e}")

        session_url = response.headers.get('Location')
        if not response.ok or not session_url:
            raise DriveUploadError(f"Drive upload session for {name} failed: {response.status_code} {response.text}")

        # pending holds bytes read from the stream but not yet stored by Drive
        offset = 0
        pending = b''
        while offset < size:
            want = min(self.chunk_size, size - offset)
            pending += _read_exact(stream, want - len(pending))
            if len(pending) < want:
                raise DriveUploadError(
                    f"Source stream for {name} ended at {offset + len(pending)} of {size} bytes"
                )

            end = offset + want - 1
            try:
                response = self.session.put(
                    session_url,
                    data=pending,
                    headers={'Content-Range': f'bytes {offset}-{end}/{size}'},
                    timeout=self._timeout('drive upload chunk'),
                )
            except requests.RequestException as e:
                raise DriveUploadError(f"Drive upload of {name} failed at byte {offset}: {e}")

            if response.status_code == 308:
                stored = persisted_offset(response)
                if stored <= offset or stored > end + 1:
                    raise DriveUploadError(
                        f"Drive upload of {name} stalled: session stored {stored} bytes after "
                        f"sending bytes {offset}-{end}"
                    )
                pending = pending[stored - offset:]
                offset = stored
                continue
            if response.ok:
                return self._remember(name, response)
            raise DriveUploadError(f"Drive upload of {name} failed: {response.status_code} {response.text}")

        raise DriveUploadError(f"Drive upload of {name} ended without a completed response")

    def _remember(self, name: str, response) -> DriveFile:
        payload = response.json() if response.content else {}
        drive_file = DriveFile(payload.get('id', ''), payload.get('name', name))
        if self._index is not None and drive_file.id:
            self._index[name] = drive_file.id
        return drive_file
