"""
Unit tests for the key-value namespace dump (backstop/backup/kv_dump.py).
"""

import json

import pytest
import responses

from backstop.backup.kv_dump import KVNamespaceDumper, KVDumpError, serialize_namespace


API_BASE = 'https://api.test/client/v4'
NAMESPACE_URL = f'{API_BASE}/accounts/acct/storage/kv/namespaces/ns-1'


def make_dumper():
    return KVNamespaceDumper(account_id='acct', namespace_id='ns-1', api_token='cf-token', api_base=API_BASE)


def keys_page(names, cursor=''):
    return {
        'success': True,
        'result': [{'name': name} for name in names],
        'result_info': {'count': len(names), 'cursor': cursor},
    }


class TestKVNamespaceDumper:
    """Test listing and reading a namespace."""

    @responses.activate
    def test_list_keys_follows_cursor(self):
        responses.add(responses.GET, f'{NAMESPACE_URL}/keys', json=keys_page(['a', 'b'], cursor='next-page'))
        responses.add(responses.GET, f'{NAMESPACE_URL}/keys', json=keys_page(['c']))

        keys = make_dumper().list_keys()

        assert keys == ['a', 'b', 'c']
        assert 'cursor=next-page' in responses.calls[1].request.url
        assert 'limit=1000' in responses.calls[0].request.url

    @responses.activate
    def test_dump_namespace(self):
        responses.add(responses.GET, f'{NAMESPACE_URL}/keys', json=keys_page(['user@example.com', 'gone']))
        responses.add(responses.GET, f'{NAMESPACE_URL}/values/user%40example.com', body='{"role": "admin"}')
        responses.add(responses.GET, f'{NAMESPACE_URL}/values/gone', status=404)

        values = make_dumper().dump_namespace()

        # keys deleted between listing and reading are skipped
        assert values == {'user@example.com': '{"role": "admin"}'}

    @responses.activate
    def test_listing_failure(self):
        responses.add(responses.GET, f'{NAMESPACE_URL}/keys', json={'success': False}, status=500)

        with pytest.raises(KVDumpError, match='500'):
            make_dumper().dump_namespace()

    @responses.activate
    def test_listing_reports_failure(self):
        responses.add(responses.GET, f'{NAMESPACE_URL}/keys', json={'success': False, 'errors': ['nope']})

        with pytest.raises(KVDumpError, match='nope'):
            make_dumper().list_keys()

    @responses.activate
    def test_value_read_failure(self):
        responses.add(responses.GET, f'{NAMESPACE_URL}/keys', json=keys_page(['a']))
        responses.add(responses.GET, f'{NAMESPACE_URL}/values/a', status=502)

        with pytest.raises(KVDumpError, match="'a'"):
            make_dumper().dump_namespace()


def test_serialize_namespace():
    text = serialize_namespace({'a': '1'})

    assert json.loads(text) == {'a': '1'}
    assert '\n' in text
