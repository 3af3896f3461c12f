from datetime import datetime, timedelta, timezone

import pytest

from rollcall.modules.attendance_ledger import AttendanceLedger
from rollcall.modules.errors import PermissionDenied, PersistenceFailure, ServiceUnavailable
from rollcall.modules.remote_store import RemoteDocumentStore
from rollcall.modules.settings_manager import SettingsManager
from rollcall.modules.storage_manager import StorageManager
from rollcall.modules.sync_reconciler import SyncReconciler

UTC = timezone.utc


class FakeClock:
    """Settable clock returning aware datetimes."""

    def __init__(self, start):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


class FakeMonotonic:
    def __init__(self):
        self.value = 1000.0

    def __call__(self):
        return self.value


class FakeTimer:
    def __init__(self, interval, function, args=None):
        self.interval = interval
        self.function = function
        self.args = args or ()
        self.daemon = False
        self.started = False
        self.cancelled = False
        self.finished = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        self.finished = True
        if not self.cancelled:
            self.function(*self.args)


class FakeTimerFactory:
    def __init__(self):
        self.timers = []

    def __call__(self, interval, function, args=None):
        timer = FakeTimer(interval, function, args)
        self.timers.append(timer)
        return timer

    @property
    def active(self):
        return [t for t in self.timers if t.started and not t.cancelled and not t.finished]


class FlakyStorage(StorageManager):
    """In-memory store whose writes can be switched to fail."""

    def __init__(self):
        super().__init__(':memory:')
        self.fail_writes = False
        self.fail_keys = set()
        self.writes = 0

    def set(self, key, value):
        if self.fail_writes or key in self.fail_keys:
            raise PersistenceFailure(f"disk full while writing {key}")
        self.writes += 1
        super().set(key, value)


class InMemoryDocumentStore(RemoteDocumentStore):
    """Remote store double recording every call."""

    def __init__(self):
        self.collections = {}
        self.probe_error = None
        self.failing_students = set()
        self.create_calls = 0
        self.probe_calls = 0
        self.queries = []

    def probe(self):
        self.probe_calls += 1
        if self.probe_error is not None:
            raise self.probe_error

    def create_document(self, collection_path, data):
        self.create_calls += 1
        if data['studentId'] in self.failing_students:
            raise ServiceUnavailable('write timed out')
        document = dict(data)
        document['syncedAt'] = datetime.now(UTC).isoformat()
        documents = self.collections.setdefault(collection_path, [])
        documents.append(document)
        return f"doc{len(documents)}"

    def query_by_teacher(self, collection_path, teacher_name, limit=1000):
        self.queries.append((collection_path, teacher_name, limit))
        documents = [d for d in self.collections.get(collection_path, [])
                     if d.get('teacherName') == teacher_name]
        documents.sort(key=lambda d: d['timestamp'], reverse=True)
        return documents[:limit]


@pytest.fixture()
def clock():
    return FakeClock(datetime(2025, 9, 1, 9, 0, tzinfo=UTC))


@pytest.fixture()
def storage():
    store = FlakyStorage()
    yield store
    store.close_all_connections()


@pytest.fixture()
def ledger(storage, clock):
    return AttendanceLedger(storage, clock=clock)


@pytest.fixture()
def settings_manager(storage):
    manager = SettingsManager(storage)
    manager.load()
    manager.update(teacher_name='Ms. Kaur', class_subject='Grade 5 Maths',
                   school_name="St. Mary's School")
    return manager


@pytest.fixture()
def remote():
    return InMemoryDocumentStore()


@pytest.fixture()
def timers():
    return FakeTimerFactory()


@pytest.fixture()
def monotonic():
    return FakeMonotonic()


@pytest.fixture()
def reconciler(ledger, settings_manager, storage, remote, timers, monotonic):
    return SyncReconciler(ledger, settings_manager, storage, remote,
                          monotonic=monotonic, timer_factory=timers)


@pytest.fixture()
def permission_denied():
    return PermissionDenied('Missing or insufficient permissions.', code='permission-denied')


@pytest.fixture()
def app(storage, clock, remote, timers):
    from app import create_app

    application = create_app('testing', storage=storage, remote_store=remote, clock=clock,
                             timer_factory=timers)
    yield application
    application.extensions['rollcall']['reconciler'].stop()


@pytest.fixture()
def client(app):
    return app.test_client()


class FakeScanSource:
    """Scan source replaying a fixed list of decoded texts."""

    def __init__(self, texts):
        self.texts = list(texts)
        self.release_calls = 0

    def read(self):
        if self.texts:
            return self.texts.pop(0)
        return None

    def release(self):
        self.release_calls += 1


@pytest.fixture()
def scan_source_factory():
    return FakeScanSource
