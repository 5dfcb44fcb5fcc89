"""
Client for the relational database's asynchronous bulk-export API.

Protocol:
1. POST a start request; the response is either already complete (small
   databases) or carries a bookmark for the running export job.
2. Poll with the last-seen bookmark every few seconds until the export
   reports complete with a signed download URL, reports an error, or the
   poll cap is reached.
3. Download the SQL text from the signed URL.

Transport errors are never retried here; they surface as ExportError.
"""

import time
import logging
from dataclasses import dataclass
from typing import Optional, Union, Callable

import requests

from .deadline import RunDeadline, unbounded


logger = logging.getLogger(__name__)


class ExportError(Exception):
    """Raised when the export API cannot be reached or reports a failure."""
    pass


class ExportTimeout(ExportError):
    """Raised when the export is still running after the poll cap."""
    pass


@dataclass(frozen=True)
class ExportPending:
    bookmark: str


@dataclass(frozen=True)
class ExportComplete:
    download_url: str


@dataclass(frozen=True)
class ExportFailed:
    message: str


ExportStatus = Union[ExportPending, ExportComplete, ExportFailed]


def parse_export_response(payload: dict, last_bookmark: Optional[str] = None) -> ExportStatus:
    """
    Convert an export API envelope into a tagged status.

    Args:
        payload: Decoded JSON body ({success, result, errors})
        last_bookmark: Bookmark to keep if the response carries no new one

    Returns:
        ExportPending, ExportComplete or ExportFailed
    """
    if not isinstance(payload, dict) or not payload.get('success'):
        errors = payload.get('errors') if isinstance(payload, dict) else None
        return ExportFailed(f"export API reported failure: {errors or payload!r}")

    result = payload.get('result')
    if not isinstance(result, dict):
        return ExportFailed(f"export API response has no result: {payload!r}")

    if result.get('error'):
        return ExportFailed(str(result['error']))

    signed_url = (result.get('result') or {}).get('signed_url') or result.get('signed_url')
    if result.get('status') == 'complete' and signed_url:
        return ExportComplete(signed_url)

    bookmark = result.get('current_bookmark') or result.get('at_bookmark') or last_bookmark
    if not bookmark:
        return ExportFailed(f"export API returned neither a download URL nor a bookmark: {payload!r}")

    return ExportPending(bookmark)


class DatabaseExportClient:
    """
    Drives a database export job to completion and returns the SQL dump.
    """

    def __init__(
        self,
        account_id: str,
        database_id: str,
        api_token: str,
        api_base: str = 'https://api.cloudflare.com/client/v4',
        poll_interval: float = 5,
        max_polls: int = 60,
        http_timeout: float = 60,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize export client.

        Args:
            account_id: Provider account ID
            database_id: ID of the database to export
            api_token: API token with export permission
            api_base: Provider API base URL
            poll_interval: Seconds between poll requests
            max_polls: Poll attempts before giving up with ExportTimeout
            http_timeout: Upper bound for each HTTP call, in seconds
            session: Optional requests session (tests inject one)
            sleep: Sleep function used between polls
        """
        self.export_url = f"{api_base}/accounts/{account_id}/d1/database/{database_id}/export"
        self.api_token = api_token
        self.poll_interval = poll_interval
        self.max_polls = max_polls
        self.http_timeout = http_timeout
        self.session = session or requests.Session()
        self._sleep = sleep

    def export_database(self, deadline: Optional[RunDeadline] = None) -> str:
        """
        Run an export to completion.

        Args:
            deadline: Run deadline bounding every request

        Returns:
            The exported SQL as text

        Raises:
            ExportError: On transport or API failure
            ExportTimeout: If the poll cap is exceeded
        """
        deadline = deadline or unbounded()

        status = self._post({'output_format': 'polling'}, deadline, 'start')
        if isinstance(status, ExportComplete):
            logger.info("Database export completed immediately")
            return self._download(status.download_url, deadline)

        for attempt in range(1, self.max_polls + 1):
            if isinstance(status, ExportFailed):
                raise ExportError(f"Database export failed: {status.message}")

            self._sleep(self.poll_interval)
            bookmark = status.bookmark
            status = self._post({'current_bookmark': bookmark}, deadline, 'poll', bookmark)
            logger.debug(f"Export poll {attempt}/{self.max_polls}: {status}")

            if isinstance(status, ExportComplete):
                logger.info(f"Database export completed after {attempt} polls")
                return self._download(status.download_url, deadline)

        if isinstance(status, ExportFailed):
            raise ExportError(f"Database export failed: {status.message}")

        raise ExportTimeout(
            f"Database export still running after {self.max_polls} polls "
            f"({self.max_polls * self.poll_interval:.0f}s)"
        )

    def _post(self, body: dict, deadline: RunDeadline, phase: str,
              last_bookmark: Optional[str] = None) -> ExportStatus:
        try:
            response = self.session.post(
                self.export_url,
                json=body,
                headers={'Authorization': f'Bearer {self.api_token}'},
                timeout=deadline.timeout(self.http_timeout, f'database export {phase}'),
            )
        except requests.RequestException as e:
            raise ExportError(f"Database export {phase} request failed: {e}")

        if not response.ok:
            raise ExportError(f"Database export {phase} failed: {response.status_code} {response.text}")

        try:
            payload = response.json()
        except ValueError:
            raise ExportError(f"Database export {phase} returned invalid JSON")

        return parse_export_response(payload, last_bookmark)

    def _download(self, url: str, deadline: RunDeadline) -> str:
        try:
            response = self.session.get(url, timeout=deadline.timeout(self.http_timeout, 'export download'))
        except requests.RequestException as e:
            raise ExportError(f"Failed to download database export: {e}")

        if not response.ok:
            raise ExportError(f"Failed to download database export: {response.status_code}")

        return response.text
