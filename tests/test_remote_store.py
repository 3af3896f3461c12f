import pytest
import requests

from rollcall.modules.errors import (
    PermissionDenied, ServiceUnavailable, Unauthenticated, UnknownSyncError
)
from rollcall.modules.remote_store import (
    FirestoreRestStore, decode_fields, encode_fields, error_for_status
)


class StubResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self.payload = payload
        self.ok = status_code < 400
        self.reason = 'Error'
        self.text = ''
        self.content = b'{}' if payload is not None else b''

    def json(self):
        if self.payload is None:
            raise ValueError('no body')
        return self.payload


class StubSession:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def make_store(*responses):
    session = StubSession(*responses)
    return FirestoreRestStore('demo-project', api_key='k123', session=session), session


@pytest.mark.parametrize('status, error', [
    (401, Unauthenticated),
    (403, PermissionDenied),
    (429, ServiceUnavailable),
    (503, ServiceUnavailable),
    (400, UnknownSyncError),
])
def test_status_mapping(status, error):
    assert isinstance(error_for_status(status, 'nope'), error)


def test_fields_encode_and_decode():
    data = {'studentId': 'S1', 'synced': True, 'count': 3, 'ratio': 0.5, 'note': None}
    encoded = encode_fields(data)
    assert encoded['count'] == {'integerValue': '3'}
    assert encoded['synced'] == {'booleanValue': True}
    assert decode_fields(encoded) == data


def test_probe_sends_api_key():
    store, session = make_store(StubResponse(payload={}))
    store.probe()
    method, url, kwargs = session.calls[0]
    assert method == 'GET'
    assert url.endswith('/projects/demo-project/databases/(default)/documents/test')
    assert kwargs['params'] == {'pageSize': 1, 'key': 'k123'}


def test_probe_permission_denied():
    store, _ = make_store(StubResponse(403, {'error': {'message': 'Missing permissions'}}))
    with pytest.raises(PermissionDenied) as excinfo:
        store.probe()
    assert 'Missing permissions' in str(excinfo.value)


def test_connection_error_is_retryable():
    store, _ = make_store(requests.ConnectionError('offline'))
    with pytest.raises(ServiceUnavailable) as excinfo:
        store.probe()
    assert excinfo.value.retryable is True


def test_create_document_commits_with_server_timestamp():
    store, session = make_store(StubResponse(payload={'writeResults': [{}]}))

    document_id = store.create_document('schools/GreenValley/attendance', {'studentId': 'S1'})

    _, url, kwargs = session.calls[0]
    assert url.endswith('/documents:commit')
    write = kwargs['json']['writes'][0]
    assert write['update']['name'].endswith(f"schools/GreenValley/attendance/{document_id}")
    assert write['currentDocument'] == {'exists': False}
    assert write['updateTransforms'][0]['fieldPath'] == 'syncedAt'


def test_query_by_teacher():
    rows = [
        {'document': {'fields': encode_fields({'studentId': 'S2', 'teacherName': 'Ms. Kaur'})}},
        {'readTime': '2025-09-01T00:00:00Z'},
    ]
    store, session = make_store(StubResponse(payload=rows))

    documents = store.query_by_teacher('schools/GreenValley/attendance', 'Ms. Kaur', limit=50)

    assert documents == [{'studentId': 'S2', 'teacherName': 'Ms. Kaur'}]
    _, url, kwargs = session.calls[0]
    assert url.endswith('/documents/schools/GreenValley:runQuery')
    query = kwargs['json']['structuredQuery']
    assert query['from'] == [{'collectionId': 'attendance'}]
    assert query['limit'] == 50
    assert query['orderBy'][0]['direction'] == 'DESCENDING'
