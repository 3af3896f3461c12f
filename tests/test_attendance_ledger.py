import threading
from datetime import datetime, timezone

import pytest

from rollcall.modules.attendance_ledger import (
    AttendanceLedger, AttendanceRecord, DUPLICATE_FOR_DAY, PERSISTENCE_FAILURE, iso_timestamp
)
from rollcall.modules.scan_decoder import decode_scan

UTC = timezone.utc


def scan_on(ledger, student, day, hour=9):
    return ledger.record_scan(decode_scan(student), now=datetime(2025, 9, day, hour, tzinfo=UTC))


def test_first_scan_of_the_day_is_accepted(ledger):
    result = ledger.record_scan(decode_scan('{"id": "S1", "name": "Asha"}'))

    assert result['accepted'] is True
    record = result['record']
    assert record.student_id == 'S1'
    assert record.student_name == 'Asha'
    assert record.date_key == '2025-09-01'
    assert record.time == '09:00:00'
    assert record.timestamp == '2025-09-01T09:00:00.000Z'
    assert record.synced is False


def test_second_scan_same_day_is_rejected(ledger, clock):
    ledger.record_scan(decode_scan('S1'))
    clock.advance(hours=3)

    result = ledger.record_scan(decode_scan('S1'))

    assert result['accepted'] is False
    assert result['reason'] == DUPLICATE_FOR_DAY
    assert len(ledger) == 1


def test_same_student_next_day_is_accepted(ledger, clock):
    ledger.record_scan(decode_scan('S1'))
    clock.advance(days=1)
    assert ledger.record_scan(decode_scan('S1'))['accepted'] is True
    assert len(ledger) == 2


def test_records_survive_reload(ledger, storage, clock):
    ledger.record_scan(decode_scan('S1'))
    reloaded = AttendanceLedger(storage, clock=clock)
    assert reloaded.snapshot() == ledger.snapshot()


def test_failed_write_leaves_ledger_unchanged(ledger, storage):
    storage.fail_writes = True

    result = ledger.record_scan(decode_scan('S1'))

    assert result['accepted'] is False
    assert result['reason'] == PERSISTENCE_FAILURE
    assert len(ledger) == 0


def test_records_for_date_newest_first(ledger):
    scan_on(ledger, 'S1', 1, hour=8)
    scan_on(ledger, 'S2', 1, hour=10)
    scan_on(ledger, 'S3', 2)

    ids = [r.student_id for r in ledger.records_for_date('2025-09-01')]
    assert ids == ['S2', 'S1']


def test_single_day_range_matches_date_query(ledger):
    scan_on(ledger, 'S1', 1)
    scan_on(ledger, 'S2', 1)
    scan_on(ledger, 'S1', 2)

    assert set(ledger.records_in_range('2025-09-01', '2025-09-01')) == \
        set(ledger.records_for_date('2025-09-01'))
    assert len(ledger.records_in_range('2025-09-01', '2025-09-02')) == 3


def test_clear_date_removes_only_that_day(ledger):
    scan_on(ledger, 'S1', 1)
    scan_on(ledger, 'S2', 1)
    scan_on(ledger, 'S1', 2)

    result = ledger.clear_date('2025-09-01')

    assert result['success'] is True
    assert result['removed'] == 2
    assert [r.date_key for r in ledger.snapshot()] == ['2025-09-02']


def test_clear_all_failure_keeps_records(ledger, storage):
    scan_on(ledger, 'S1', 1)
    storage.fail_writes = True

    result = ledger.clear_all()

    assert result['success'] is False
    assert result['error_type'] == 'persistence_failure'
    assert len(ledger) == 1


def test_today_views(ledger):
    assert ledger.last_scan_time() is None
    ledger.record_scan(decode_scan('S1'))
    assert ledger.today_count() == 1
    assert ledger.last_scan_time() == '09:00:00'


def test_mark_synced_only_flips_matching_records(ledger):
    first = scan_on(ledger, 'S1', 1)['record']
    scan_on(ledger, 'S2', 1)

    assert ledger.mark_synced([first.key]) == 1
    assert [r.student_id for r in ledger.unsynced()] == ['S2']
    assert ledger.mark_synced([first.key]) == 0


def test_merge_remote_skips_known_keys(ledger):
    local = scan_on(ledger, 'S1', 1)['record']
    remote = [
        AttendanceRecord.from_dict(local.to_dict()),
        AttendanceRecord.from_dict({
            'studentId': 'S7', 'studentName': 'Remote Kid',
            'timestamp': '2025-08-29T10:00:00.000Z', 'dateKey': '2025-08-29', 'time': '10:00:00'
        })
    ]

    assert ledger.merge_remote(remote) == 1
    merged = ledger.find('S7', '2025-08-29')
    assert merged.synced is True
    assert len(ledger) == 2


def test_listener_errors_do_not_reject_scan(ledger):
    seen = []

    def broken(record):
        raise RuntimeError('boom')

    ledger.add_listener(broken)
    ledger.add_listener(seen.append)

    result = ledger.record_scan(decode_scan('S1'))
    assert result['accepted'] is True
    assert seen == [result['record']]


def test_record_from_dict_defaults_missing_name():
    record = AttendanceRecord.from_dict({
        'studentId': 'S3', 'timestamp': '2025-09-01T09:00:00.000Z',
        'dateKey': '2025-09-01', 'time': '09:00:00'
    })
    assert record.student_name == 'Student S3'


@pytest.mark.parametrize('moment, expected', [
    (datetime(2025, 9, 1, 9, 0, 0, 123000, tzinfo=UTC), '2025-09-01T09:00:00.123Z'),
    (datetime(2025, 12, 31, 23, 59, 59, tzinfo=UTC), '2025-12-31T23:59:59.000Z'),
])
def test_iso_timestamp_format(moment, expected):
    assert iso_timestamp(moment) == expected


def test_concurrent_scans_accept_one_record(ledger):
    workers = 8
    barrier = threading.Barrier(workers)
    results = []
    results_lock = threading.Lock()

    def scan():
        barrier.wait()
        outcome = ledger.record_scan(decode_scan('S1'))
        with results_lock:
            results.append(outcome['accepted'])

    threads = [threading.Thread(target=scan) for _ in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    assert sorted(results) == [False] * (workers - 1) + [True]
    assert len(ledger) == 1
