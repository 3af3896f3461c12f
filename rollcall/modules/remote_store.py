"""
Remote Store Module - Classroom QR Attendance

Client for the cloud document store that receives synced attendance.
Documents live under ``schools/{school}/attendance``. The store supports
creating a document, a bounded query of a teacher's records ordered by
timestamp, and a cheap read used as a permission probe.

The concrete client talks to the Firestore REST API with ``requests``.
HTTP failures are translated into the sync error taxonomy so the
reconciler never sees transport details.
"""

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

import requests

from rollcall.modules.errors import (
    PermissionDenied, ServiceUnavailable, SyncError, Unauthenticated, UnknownSyncError
)

FIRESTORE_BASE_URL = 'https://firestore.googleapis.com/v1'
RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}


class RemoteDocumentStore:
    """Interface implemented by remote document store clients."""

    def probe(self) -> None:
        """Cheap read proving the client may talk to the store. Raises SyncError."""
        raise NotImplementedError

    def create_document(self, collection_path: str, data: Dict[str, Any]) -> str:
        """
        Create a document with a generated id. The store sets ``syncedAt``
        to its own clock.

        Returns:
            str: The new document id
        """
        raise NotImplementedError

    def query_by_teacher(self, collection_path: str, teacher_name: str,
                         limit: int = 1000) -> List[Dict[str, Any]]:
        """Newest-first documents whose ``teacherName`` matches."""
        raise NotImplementedError


def encode_value(value: Any) -> Dict[str, Any]:
    """Encode a Python value as a Firestore REST ``Value``."""
    if value is None:
        return {'nullValue': None}
    if isinstance(value, bool):
        return {'booleanValue': value}
    if isinstance(value, int):
        return {'integerValue': str(value)}
    if isinstance(value, float):
        return {'doubleValue': value}
    if isinstance(value, datetime):
        return {'timestampValue': value.isoformat()}
    if isinstance(value, dict):
        return {'mapValue': {'fields': encode_fields(value)}}
    if isinstance(value, (list, tuple)):
        return {'arrayValue': {'values': [encode_value(v) for v in value]}}
    return {'stringValue': str(value)}


def encode_fields(data: Dict[str, Any]) -> Dict[str, Any]:
    return {key: encode_value(value) for key, value in data.items()}


def decode_value(value: Dict[str, Any]) -> Any:
    """Decode a Firestore REST ``Value`` into a Python value."""
    if 'stringValue' in value:
        return value['stringValue']
    if 'booleanValue' in value:
        return value['booleanValue']
    if 'integerValue' in value:
        return int(value['integerValue'])
    if 'doubleValue' in value:
        return float(value['doubleValue'])
    if 'timestampValue' in value:
        return value['timestampValue']
    if 'mapValue' in value:
        return decode_fields(value['mapValue'].get('fields', {}))
    if 'arrayValue' in value:
        return [decode_value(v) for v in value['arrayValue'].get('values', [])]
    return None


def decode_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    return {key: decode_value(value) for key, value in fields.items()}


def error_for_status(status_code: int, message: str) -> SyncError:
    """Map an HTTP status to the sync error taxonomy."""
    if status_code == 401:
        return Unauthenticated(message, code='unauthenticated')
    if status_code == 403:
        return PermissionDenied(message, code='permission-denied')
    if status_code in RETRYABLE_STATUS_CODES:
        return ServiceUnavailable(message, code='unavailable')
    return UnknownSyncError(message, code=str(status_code))


class FirestoreRestStore(RemoteDocumentStore):
    """
    Firestore REST API client.
    Authenticates with an API key and, when given, a bearer token.
    """

    def __init__(self, project_id: str, api_key: str = None, auth_token: str = None,
                 timeout: float = 10.0, session: Optional[requests.Session] = None,
                 base_url: str = FIRESTORE_BASE_URL):
        """
        Initialize the client.

        Args:
            project_id (str): Firebase project id
            api_key (str): Web API key sent as the ``key`` query parameter
            auth_token (str): Optional bearer token for authenticated rules
            timeout (float): Per-request timeout in seconds
            session (requests.Session): Session to reuse, mainly for tests
            base_url (str): API root
        """
        self.project_id = project_id
        self.api_key = api_key
        self.auth_token = auth_token
        self.timeout = timeout
        self.session = session or requests.Session()
        self.base_url = base_url.rstrip('/')
        self.logger = logging.getLogger(__name__)

    @property
    def database_path(self) -> str:
        return f"projects/{self.project_id}/databases/(default)/documents"

    def _url(self, suffix: str) -> str:
        return f"{self.base_url}/{self.database_path}{suffix}"

    def _request(self, method: str, url: str, **kwargs) -> Any:
        params = kwargs.pop('params', {}) or {}
        if self.api_key:
            params['key'] = self.api_key
        headers = {'Content-Type': 'application/json'}
        if self.auth_token:
            headers['Authorization'] = f"Bearer {self.auth_token}"

        try:
            response = self.session.request(
                method, url, params=params, headers=headers, timeout=self.timeout, **kwargs
            )
        except (requests.ConnectionError, requests.Timeout) as e:
            raise ServiceUnavailable(f"Remote store unreachable: {str(e)}", code='unavailable') from e
        except requests.RequestException as e:
            raise UnknownSyncError(f"Remote request failed: {str(e)}") from e

        if not response.ok:
            try:
                detail = response.json().get('error', {}).get('message', response.text)
            except ValueError:
                detail = response.text
            raise error_for_status(response.status_code, detail or response.reason or '')

        if not response.content:
            return {}
        return response.json()

    def probe(self) -> None:
        self._request('GET', self._url('/test'), params={'pageSize': 1})

    def create_document(self, collection_path: str, data: Dict[str, Any]) -> str:
        document_id = uuid.uuid4().hex
        name = f"{self.database_path}/{collection_path}/{document_id}"
        body = {
            'writes': [{
                'update': {'name': name, 'fields': encode_fields(data)},
                'currentDocument': {'exists': False},
                'updateTransforms': [
                    {'fieldPath': 'syncedAt', 'setToServerValue': 'REQUEST_TIME'}
                ]
            }]
        }
        self._request('POST', self._url(':commit'), json=body)
        self.logger.debug(f"Created document {document_id} in {collection_path}")
        return document_id

    def query_by_teacher(self, collection_path: str, teacher_name: str,
                         limit: int = 1000) -> List[Dict[str, Any]]:
        parent, collection_id = collection_path.rsplit('/', 1)
        body = {
            'structuredQuery': {
                'from': [{'collectionId': collection_id}],
                'where': {
                    'fieldFilter': {
                        'field': {'fieldPath': 'teacherName'},
                        'op': 'EQUAL',
                        'value': {'stringValue': teacher_name}
                    }
                },
                'orderBy': [{'field': {'fieldPath': 'timestamp'}, 'direction': 'DESCENDING'}],
                'limit': limit
            }
        }
        results = self._request('POST', self._url(f"/{parent}:runQuery"), json=body)
        documents = []
        for row in results or []:
            document = row.get('document')
            if document:
                documents.append(decode_fields(document.get('fields', {})))
        return documents
