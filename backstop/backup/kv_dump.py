"""
Full dump of a key-value namespace through the provider's REST API.
"""

import json
import logging
from typing import Dict, List, Optional
from urllib.parse import quote

import requests

from .deadline import RunDeadline, unbounded


logger = logging.getLogger(__name__)

PAGE_SIZE = 1000


class KVDumpError(Exception):
    """Raised when the key-value namespace cannot be listed or read."""
    pass


class KVNamespaceDumper:
    """
    Reads every key of a namespace (cursor pagination, 1000 per page), then
    every value. Always a full dump; run time grows linearly with the
    namespace size.
    """

    def __init__(self, account_id: str, namespace_id: str, api_token: str,
                 api_base: str = 'https://api.cloudflare.com/client/v4',
                 http_timeout: float = 60, session: Optional[requests.Session] = None):
        self.namespace_url = f"{api_base}/accounts/{account_id}/storage/kv/namespaces/{namespace_id}"
        self.api_token = api_token
        self.http_timeout = http_timeout
        self.session = session or requests.Session()

    @property
    def _headers(self):
        return {'Authorization': f'Bearer {self.api_token}'}

    def list_keys(self, deadline: Optional[RunDeadline] = None) -> List[str]:
        """
        List every key name in the namespace.

        Raises:
            KVDumpError: If a listing request fails
        """
        deadline = deadline or unbounded()
        keys = []
        cursor = None

        while True:
            params = {'limit': PAGE_SIZE}
            if cursor:
                params['cursor'] = cursor

            try:
                response = self.session.get(
                    f"{self.namespace_url}/keys",
                    params=params,
                    headers=self._headers,
                    timeout=deadline.timeout(self.http_timeout, 'kv key listing'),
                )
            except requests.RequestException as e:
                raise KVDumpError(f"KV key listing failed: {e}")

            if not response.ok:
                raise KVDumpError(f"KV key listing failed: {response.status_code} {response.text}")

            try:
                payload = response.json()
            except ValueError:
                raise KVDumpError("KV key listing returned invalid JSON")

            if not payload.get('success'):
                raise KVDumpError(f"KV key listing reported failure: {payload.get('errors')}")

            keys.extend(item['name'] for item in payload.get('result') or [])

            cursor = (payload.get('result_info') or {}).get('cursor')
            if not cursor:
                break

        return keys

    def get_value(self, key: str, deadline: Optional[RunDeadline] = None) -> Optional[str]:
        """
        Read one value. Returns None when the key vanished since listing.

        Raises:
            KVDumpError: If the read fails
        """
        deadline = deadline or unbounded()
        try:
            response = self.session.get(
                f"{self.namespace_url}/values/{quote(key, safe='')}",
                headers=self._headers,
                timeout=deadline.timeout(self.http_timeout, 'kv value read'),
            )
        except requests.RequestException as e:
            raise KVDumpError(f"KV read of {key!r} failed: {e}")

        if response.status_code == 404:
            return None
        if not response.ok:
            raise KVDumpError(f"KV read of {key!r} failed: {response.status_code} {response.text}")

        return response.text

    def dump_namespace(self, deadline: Optional[RunDeadline] = None) -> Dict[str, str]:
        """
        Dump the whole namespace.

        Returns:
            Mapping of key to value

        Raises:
            KVDumpError: If any request fails
        """
        keys = self.list_keys(deadline)
        logger.info(f"Listed {len(keys)} KV keys")

        values = {}
        for key in keys:
            value = self.get_value(key, deadline)
            if value is not None:
                values[key] = value

        return values


def serialize_namespace(values: Dict[str, str]) -> str:
    """JSON document written to the primary store."""
    return json.dumps(values, indent=2)
