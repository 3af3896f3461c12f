"""
Attendance Ledger Module - Classroom QR Attendance

This module owns the canonical set of attendance records. It accepts scans,
prevents duplicate scans for the same student on the same day, answers
date and range queries, and persists the whole set to the local key-value
store on every change.

Features:
- One record per student per calendar day
- Date and inclusive date-range filtering on the stored date key
- Clear by date and clear all
- Merge of remote records by (student id, timestamp)
- All-or-nothing persistence: a failed write leaves memory untouched
"""

import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from rollcall.modules.errors import PersistenceFailure

DUPLICATE_FOR_DAY = 'duplicate-for-day'
PERSISTENCE_FAILURE = 'persistence-failure'


def local_now() -> datetime:
    """Current instant as an aware datetime in the device's local zone."""
    return datetime.now().astimezone()


def to_local(moment: datetime) -> datetime:
    """Aware instants keep their zone; naive ones are read as device-local."""
    if moment.tzinfo is None:
        return moment.astimezone()
    return moment


def date_key_for(moment: datetime) -> str:
    """Local calendar date of ``moment`` as ``YYYY-MM-DD``."""
    return to_local(moment).strftime('%Y-%m-%d')


def iso_timestamp(moment: datetime) -> str:
    utc = to_local(moment).astimezone(timezone.utc)
    return utc.isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 instant, accepting a trailing ``Z``."""
    text = value.strip()
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class AttendanceRecord:
    """Data class for a single accepted scan."""
    student_id: str
    student_name: str
    timestamp: str
    date_key: str
    time: str
    synced: bool = False

    @property
    def key(self) -> Tuple[str, str]:
        """Composite identity shared with the remote store."""
        return (self.student_id, self.timestamp)

    @property
    def instant(self) -> datetime:
        return parse_timestamp(self.timestamp)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'studentId': self.student_id,
            'studentName': self.student_name,
            'timestamp': self.timestamp,
            'dateKey': self.date_key,
            'time': self.time,
            'synced': self.synced
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AttendanceRecord':
        """
        Build a record from its stored or remote dict form.

        Args:
            data (Dict[str, Any]): camelCase record fields

        Returns:
            AttendanceRecord: Record with date key and time derived from the
            timestamp when they are missing
        """
        student_id = str(data['studentId'])
        timestamp = str(data['timestamp'])
        moment = parse_timestamp(timestamp).astimezone()
        return cls(
            student_id=student_id,
            student_name=data.get('studentName') or f"Student {student_id}",
            timestamp=timestamp,
            date_key=data.get('dateKey') or moment.strftime('%Y-%m-%d'),
            time=data.get('time') or moment.strftime('%H:%M:%S'),
            synced=bool(data.get('synced', False))
        )


class AttendanceLedger:
    """
    The persisted set of attendance records.
    Mutations are serialized behind a lock and persisted before the in-memory
    list is replaced, so readers never observe a change that was not stored.
    """

    STORAGE_KEY = 'attendanceData'

    def __init__(self, storage, clock: Callable[[], datetime] = local_now,
                 storage_key: str = None):
        """
        Initialize the ledger and load any stored records.

        Args:
            storage: Key-value store exposing get/set
            clock: Provider of the current instant
            storage_key (str): Override for the ledger blob key
        """
        self.storage = storage
        self.clock = clock
        self.storage_key = storage_key or self.STORAGE_KEY
        self.logger = logging.getLogger(__name__)
        self._lock = threading.RLock()
        self._records: List[AttendanceRecord] = []
        self._listeners: List[Callable[[AttendanceRecord], None]] = []
        self.load()

    def load(self) -> None:
        """Load records from storage, skipping entries that cannot be parsed."""
        raw = self.storage.get_json(self.storage_key, default=[])
        records = []
        for entry in raw or []:
            try:
                records.append(AttendanceRecord.from_dict(entry))
            except (KeyError, TypeError, ValueError) as e:
                self.logger.warning(f"Skipping unreadable stored record: {str(e)}")
        with self._lock:
            self._records = records
        self.logger.info(f"Loaded {len(records)} attendance records")

    def _commit(self, records: List[AttendanceRecord]) -> None:
        """Persist ``records`` then make them current. Raises PersistenceFailure."""
        self.storage.set_json(self.storage_key, [r.to_dict() for r in records])
        self._records = records

    def add_listener(self, callback: Callable[[AttendanceRecord], None]) -> None:
        """Register a callback invoked after each accepted scan."""
        self._listeners.append(callback)

    def record_scan(self, payload, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Record attendance for a decoded scan.

        Args:
            payload: ScanPayload with ``id`` and ``name``
            now (datetime): Instant of the scan, defaults to the clock

        Returns:
            Dict[str, Any]: ``accepted``, ``record``, ``reason`` and ``message``
        """
        moment = to_local(now or self.clock())
        today = moment.strftime('%Y-%m-%d')

        with self._lock:
            existing = self.find(payload.id, today)
            if existing is not None:
                self.logger.info(f"Duplicate scan ignored: student {payload.id} on {today}")
                return {
                    'accepted': False,
                    'record': existing,
                    'reason': DUPLICATE_FOR_DAY,
                    'message': f"{payload.name or payload.id} already scanned today"
                }

            record = AttendanceRecord(
                student_id=payload.id,
                student_name=payload.name or f"Student {payload.id}",
                timestamp=iso_timestamp(moment),
                date_key=today,
                time=moment.strftime('%H:%M:%S'),
                synced=False
            )

            try:
                self._commit(self._records + [record])
            except PersistenceFailure as e:
                self.logger.error(f"Failed to save scan for student {payload.id}: {str(e)}")
                return {
                    'accepted': False,
                    'record': None,
                    'reason': PERSISTENCE_FAILURE,
                    'message': 'Could not save attendance, please try again'
                }

        self.logger.info(f"Attendance recorded: student {record.student_id} on {today} at {record.time}")
        for listener in list(self._listeners):
            try:
                listener(record)
            except Exception as e:
                self.logger.error(f"Scan listener failed: {str(e)}")

        return {
            'accepted': True,
            'record': record,
            'reason': None,
            'message': f"{record.student_name} marked present"
        }

    def find(self, student_id: str, date_key: str) -> Optional[AttendanceRecord]:
        with self._lock:
            for record in self._records:
                if record.student_id == student_id and record.date_key == date_key:
                    return record
        return None

    def snapshot(self) -> List[AttendanceRecord]:
        """Copy of all records in stored order."""
        with self._lock:
            return list(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def records_for_date(self, date_key: str) -> List[AttendanceRecord]:
        """
        Get records for one calendar day, most recent first.

        Args:
            date_key (str): Date as ``YYYY-MM-DD``

        Returns:
            List[AttendanceRecord]: Matching records
        """
        matching = [r for r in self.snapshot() if r.date_key == date_key]
        return sorted(matching, key=lambda r: r.instant, reverse=True)

    def records_in_range(self, from_date_key: str, to_date_key: str) -> List[AttendanceRecord]:
        """
        Get records whose date key lies in ``[from_date_key, to_date_key]``.
        Comparison is on the date key itself, not the instant.
        """
        return [r for r in self.snapshot()
                if from_date_key <= r.date_key <= to_date_key]

    def today_records(self, now: Optional[datetime] = None) -> List[AttendanceRecord]:
        return self.records_for_date(date_key_for(now or self.clock()))

    def today_count(self, now: Optional[datetime] = None) -> int:
        return len(self.today_records(now))

    def last_scan_time(self, now: Optional[datetime] = None) -> Optional[str]:
        """Local time of today's most recent scan, if any."""
        records = self.today_records(now)
        return records[0].time if records else None

    def unsynced(self) -> List[AttendanceRecord]:
        return [r for r in self.snapshot() if not r.synced]

    def clear_date(self, date_key: str) -> Dict[str, Any]:
        """
        Remove every record for ``date_key``. Irreversible; the caller is
        responsible for confirming with the user first.
        """
        with self._lock:
            remaining = [r for r in self._records if r.date_key != date_key]
            removed = len(self._records) - len(remaining)
            try:
                self._commit(remaining)
            except PersistenceFailure as e:
                self.logger.error(f"Failed to clear attendance for {date_key}: {str(e)}")
                return {
                    'success': False,
                    'removed': 0,
                    'error_type': PersistenceFailure.error_type,
                    'message': 'Could not clear attendance, please try again'
                }

        self.logger.info(f"Cleared {removed} attendance records for {date_key}")
        return {
            'success': True,
            'removed': removed,
            'error_type': None,
            'message': f"Attendance for {date_key} cleared"
        }

    def clear_all(self) -> Dict[str, Any]:
        """Remove every record. Irreversible; confirmation is the caller's job."""
        with self._lock:
            removed = len(self._records)
            try:
                self._commit([])
            except PersistenceFailure as e:
                self.logger.error(f"Failed to clear all attendance: {str(e)}")
                return {
                    'success': False,
                    'removed': 0,
                    'error_type': PersistenceFailure.error_type,
                    'message': 'Could not clear attendance, please try again'
                }

        self.logger.info(f"Cleared all {removed} attendance records")
        return {
            'success': True,
            'removed': removed,
            'error_type': None,
            'message': 'All data cleared'
        }

    def mark_synced(self, keys: Iterable[Tuple[str, str]]) -> int:
        """
        Flip ``synced`` to True for the records with the given composite keys.
        Never flips a record back to unsynced.

        Returns:
            int: Number of records changed

        Raises:
            PersistenceFailure: if the updated set could not be stored
        """
        wanted = set(keys)
        if not wanted:
            return 0
        with self._lock:
            changed = 0
            updated = []
            for record in self._records:
                if not record.synced and record.key in wanted:
                    updated.append(replace(record, synced=True))
                    changed += 1
                else:
                    updated.append(record)
            if changed:
                self._commit(updated)
        return changed

    def merge_remote(self, remote_records: Iterable[AttendanceRecord]) -> int:
        """
        Append remote records that share no (student id, timestamp) with a
        local record. Merged records are marked synced.

        Returns:
            int: Number of records added

        Raises:
            PersistenceFailure: if the merged set could not be stored
        """
        with self._lock:
            known = {r.key for r in self._records}
            additions = []
            for record in remote_records:
                if record.key in known:
                    continue
                known.add(record.key)
                additions.append(replace(record, synced=True))
            if additions:
                self._commit(self._records + additions)

        self.logger.info(f"Merged {len(additions)} remote attendance records")
        return len(additions)

    def as_dicts(self, records: Optional[List[AttendanceRecord]] = None) -> List[Dict[str, Any]]:
        return [r.to_dict() for r in (self.snapshot() if records is None else records)]
