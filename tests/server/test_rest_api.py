"""
REST API Tests for the HelloWorld overlay

Tests the FastAPI endpoints against an in-memory record store.
"""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from helloworld.lib.errors import StorageError
from helloworld.server.lookup_service import SERVICE, LookupService
from helloworld.server.metrics import MetricNames, MetricsCollector
from helloworld.server.record_store import RecordStore
from helloworld.server.rest_api import build_services, create_app
from helloworld.server.storage import Memory
from helloworld.server.topic_manager import TOPIC, TopicManager


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def metrics():
    return MetricsCollector()


@pytest.fixture
def lookup_service(metrics):
    return LookupService(RecordStore(Memory('rest')), metrics)


@pytest.fixture
def client(lookup_service, metrics):
    app = create_app(lookup_service, TopicManager(metrics), metrics)
    return TestClient(app)


def _index(lookup_service, signer, *messages):
    async def go():
        for i, message in enumerate(messages):
            await lookup_service.output_added(f'tx{i}', 0, signer.token_script(message), TOPIC)
    asyncio.run(go())


# ===========================================================================
# Health & Metrics
# ===========================================================================

class TestHealthEndpoints:

    def test_health(self, client, lookup_service, signer, metrics):
        _index(lookup_service, signer, 'Hello')
        resp = client.get('/health')
        assert resp.status_code == 200
        data = resp.json()
        assert data['status'] == 'healthy'
        assert data['database'] == 'connected'
        assert data['records'] == 1
        assert 'uptime_seconds' in data
        assert metrics.get_gauge(MetricNames.RECORDS) == 1

    def test_health_degraded(self, client, lookup_service):
        with patch.object(lookup_service.storage, 'count',
                          AsyncMock(side_effect=StorageError('gone'))):
            resp = client.get('/health')
        assert resp.status_code == 200
        assert resp.json()['status'] == 'degraded'
        assert resp.json()['database'] == 'error'

    def test_metrics(self, client):
        client.post('/lookup', json={'service': SERVICE, 'query': {}})
        resp = client.get('/metrics')
        assert resp.status_code == 200
        assert 'helloworld_uptime_seconds' in resp.text
        assert 'helloworld_lookups_total 1' in resp.text


# ===========================================================================
# Lookup
# ===========================================================================

class TestLookupEndpoint:

    def test_lookup_by_message(self, client, lookup_service, signer):
        _index(lookup_service, signer, 'Hello world', 'Goodbye')
        resp = client.post('/lookup', json={'service': SERVICE, 'query': {'message': 'hello'}})
        assert resp.status_code == 200
        data = resp.json()
        assert data['type'] == 'output-list'
        assert [o['message'] for o in data['outputs']] == ['Hello world']
        assert data['outputs'][0]['transactionId'] == 'tx0'
        assert data['outputs'][0]['outputIndex'] == 0

    def test_lookup_all(self, client, lookup_service, signer):
        _index(lookup_service, signer, 'one', 'two', 'three')
        resp = client.post('/lookup', json={'service': SERVICE,
                                            'query': {'limit': 2, 'sortOrder': 'asc'}})
        assert [o['message'] for o in resp.json()['outputs']] == ['one', 'two']

    def test_wrong_service(self, client):
        resp = client.post('/lookup', json={'service': 'ls_other', 'query': {}})
        assert resp.status_code == 400
        assert resp.json()['detail'] == 'Lookup service not supported!'

    def test_invalid_query(self, client):
        resp = client.post('/lookup', json={'service': SERVICE, 'query': {'limit': -1}})
        assert resp.status_code == 400

    def test_storage_unavailable(self, client, lookup_service):
        with patch.object(lookup_service.storage, 'find_all',
                          AsyncMock(side_effect=StorageError('gone'))):
            resp = client.post('/lookup', json={'service': SERVICE, 'query': {}})
        assert resp.status_code == 503


# ===========================================================================
# Admission
# ===========================================================================

class TestAdmitEndpoint:

    def test_admit(self, client, signer, make_tx, make_beef):
        tx = make_tx(signer.token_script('Hello'), b'\x51')
        resp = client.post('/admit', json={'beef': make_beef(tx).hex(), 'previousCoins': [0]})
        assert resp.status_code == 200
        assert resp.json() == {'outputsToAdmit': [0], 'coinsToRetain': []}

    def test_unparseable_transaction(self, client):
        resp = client.post('/admit', json={'beef': '010203'})
        assert resp.status_code == 200
        assert resp.json() == {'outputsToAdmit': [], 'coinsToRetain': []}

    def test_not_hex(self, client):
        resp = client.post('/admit', json={'beef': 'zz'})
        assert resp.status_code == 400


# ===========================================================================
# Discovery
# ===========================================================================

class TestDiscoveryEndpoints:

    def test_list_topics(self, client):
        resp = client.get('/listTopics')
        assert resp.status_code == 200
        assert resp.json()[TOPIC]['name'] == 'HelloWorld Topic Manager'

    def test_list_lookup_services(self, client):
        resp = client.get('/listLookupServiceProviders')
        assert resp.json()[SERVICE]['shortDescription'] == 'Find messages on-chain.'

    def test_topic_manager_docs(self, client):
        resp = client.get('/getDocumentationForTopicManager', params={'manager': TOPIC})
        assert resp.status_code == 200
        assert resp.text.startswith('# HelloWorld Topic Manager Documentation')

    def test_lookup_service_docs(self, client):
        resp = client.get('/getDocumentationForLookupServiceProvider',
                          params={'lookupService': SERVICE})
        assert resp.status_code == 200
        assert resp.text.startswith('# HelloWorld Lookup Service Documentation')

    def test_unknown_docs(self, client):
        resp = client.get('/getDocumentationForTopicManager', params={'manager': 'tm_other'})
        assert resp.status_code == 404
        assert resp.json()['detail'] == 'No documentation found!'


# ===========================================================================
# Startup wiring
# ===========================================================================

class TestBuildServices:

    def test_memory_engine(self, monkeypatch):
        monkeypatch.setenv('DB_ENGINE', 'memory')
        monkeypatch.setenv('DEFAULT_LOOKUP_LIMIT', '5')
        monkeypatch.setenv('MAX_LOOKUP_LIMIT', '7')
        monkeypatch.setenv('PROMETHEUS_ENABLED', 'no')
        from helloworld.server.env import Env

        lookup_service, topic_manager, metrics = build_services(Env())
        assert isinstance(lookup_service.storage.db, Memory)
        assert lookup_service.default_limit == 5
        assert lookup_service.max_limit == 7
        assert topic_manager.metrics is metrics
        assert metrics.enabled is False
