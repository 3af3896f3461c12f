"""
Sync Reconciler Module - Classroom QR Attendance

This module pushes unsynced attendance records to the remote document store
and pulls a teacher's remote records back into the local ledger.

Features:
- At most one sync pass at a time
- Minimum interval between passes with a single deferred retry slot
- Settings check and permission probe before any bulk write
- Per-record failures kept in a persisted pending queue
- Periodic auto sync and sync on reconnect
- Remote download merged by (student id, timestamp)
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional

from rollcall.modules.attendance_ledger import AttendanceRecord
from rollcall.modules.errors import (
    ConfigIncomplete, PermissionDenied, PersistenceFailure, SyncError, UnknownSyncError
)

STATE_IDLE = 'idle'
STATE_SYNCING = 'syncing'
STATE_DEBOUNCED = 'debounced'
STATE_ERROR = 'error'

TRIGGER_AUTO = 'auto'
TRIGGER_MANUAL = 'manual'


@dataclass
class SyncResult:
    """Outcome of one ``request_sync`` call."""
    status: str
    trigger: str
    synced_count: int = 0
    failed_count: int = 0
    error_type: Optional[str] = None
    retryable: bool = False
    notice: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status == 'success'

    def to_dict(self) -> Dict[str, Any]:
        return {
            'status': self.status,
            'trigger': self.trigger,
            'synced_count': self.synced_count,
            'failed_count': self.failed_count,
            'error_type': self.error_type,
            'retryable': self.retryable,
            'notice': self.notice
        }


class PendingSyncQueue:
    """Records whose remote write failed, persisted across restarts."""

    STORAGE_KEY = 'pendingSyncData'

    def __init__(self, storage, storage_key: str = None):
        self.storage = storage
        self.storage_key = storage_key or self.STORAGE_KEY
        self.logger = logging.getLogger(__name__)
        self._records: List[AttendanceRecord] = []
        self.load()

    def load(self) -> None:
        records = []
        for entry in self.storage.get_json(self.storage_key, default=[]) or []:
            try:
                records.append(AttendanceRecord.from_dict(entry))
            except (KeyError, TypeError, ValueError) as e:
                self.logger.warning(f"Skipping unreadable pending record: {str(e)}")
        self._records = records

    @property
    def records(self) -> List[AttendanceRecord]:
        return list(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def _save(self, records: List[AttendanceRecord]) -> None:
        self.storage.set_json(self.storage_key, [r.to_dict() for r in records])
        self._records = records

    def add(self, records: Iterable[AttendanceRecord]) -> int:
        """Queue records not already queued. Raises PersistenceFailure."""
        known = {r.key for r in self._records}
        additions = []
        for record in records:
            if record.key not in known:
                known.add(record.key)
                additions.append(record)
        if additions:
            self._save(self._records + additions)
        return len(additions)

    def clear(self) -> None:
        self._save([])


class SyncReconciler:
    """
    Coordinates pushes to and pulls from the remote document store.
    The ``syncing`` flag is the only gate against overlapping passes; it is
    raised before the first remote call and always lowered afterwards.
    """

    def __init__(self, ledger, settings_manager, storage, remote_store=None,
                 pending_queue: PendingSyncQueue = None,
                 min_interval: float = 5.0, auto_interval: float = 300.0,
                 page_size: int = 1000, online: bool = True,
                 monotonic: Callable[[], float] = time.monotonic,
                 timer_factory: Callable[..., Any] = threading.Timer):
        """
        Initialize the reconciler.

        Args:
            ledger: AttendanceLedger to read from and flag as synced
            settings_manager: SettingsManager providing teacher and school
            storage: Key-value store (device id and pending queue)
            remote_store: RemoteDocumentStore, or None when sync is disabled
            pending_queue: Queue of failed records, created from storage if omitted
            min_interval (float): Seconds required between sync attempts
            auto_interval (float): Seconds between periodic auto syncs
            page_size (int): Maximum documents fetched by ``download_remote``
            online (bool): Initial connectivity
            monotonic: Clock used for the minimum interval
            timer_factory: ``threading.Timer`` compatible factory
        """
        self.ledger = ledger
        self.settings_manager = settings_manager
        self.storage = storage
        self.remote_store = remote_store
        self.pending_queue = pending_queue or PendingSyncQueue(storage)
        self.min_interval = min_interval
        self.auto_interval = auto_interval
        self.page_size = page_size
        self.online = online
        self.monotonic = monotonic
        self.timer_factory = timer_factory
        self.logger = logging.getLogger(__name__)

        self.state = STATE_IDLE
        self.last_result: Optional[SyncResult] = None
        self.passes_run = 0
        self._syncing = False
        self._last_attempt: Optional[float] = None
        self._retry_timer = None
        self._auto_timer = None
        self._auto_running = False
        # keys already written remotely whose local synced flag is not stored yet
        self._pushed_keys = set()
        self._lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        return self.remote_store is not None

    @property
    def is_syncing(self) -> bool:
        return self._syncing

    def _start_timer(self, delay: float, callback: Callable, *args):
        timer = self.timer_factory(delay, callback, args=args)
        timer.daemon = True
        timer.start()
        return timer

    def schedule_sync(self, delay: float, trigger: str = TRIGGER_AUTO) -> None:
        """
        Schedule a deferred ``request_sync``. Only the latest scheduled call
        survives; any earlier one is cancelled.
        """
        with self._lock:
            if self._retry_timer is not None:
                self._retry_timer.cancel()
            self._retry_timer = self._start_timer(max(delay, 0.0), self._fire_retry, trigger)

    def _fire_retry(self, trigger: str) -> None:
        with self._lock:
            self._retry_timer = None
        self.request_sync(trigger)

    def request_sync(self, trigger: str = TRIGGER_AUTO) -> SyncResult:
        """
        Run a sync pass now, or defer it when the last attempt was too recent.

        Args:
            trigger (str): ``auto`` or ``manual``

        Returns:
            SyncResult: Outcome of the pass, or a skipped/debounced/offline marker
        """
        with self._lock:
            if self._syncing:
                self.logger.debug("Sync already in progress, skipping")
                return SyncResult(status='skipped', trigger=trigger)

            now = self.monotonic()
            if self._last_attempt is not None and now - self._last_attempt < self.min_interval:
                remaining = self.min_interval - (now - self._last_attempt)
                if self._retry_timer is not None:
                    self._retry_timer.cancel()
                self._retry_timer = self._start_timer(remaining, self._fire_retry, trigger)
                self.state = STATE_DEBOUNCED
                self.logger.debug(f"Sync called too frequently, retrying in {remaining:.1f}s")
                return SyncResult(status='debounced', trigger=trigger)

            if not self.enabled or not self.online:
                self.logger.debug("Sync unavailable while offline")
                return SyncResult(
                    status='offline', trigger=trigger,
                    notice='Offline - Cannot sync to cloud' if trigger == TRIGGER_MANUAL else None
                )

            self._syncing = True
            self._last_attempt = now
            self.state = STATE_SYNCING

        try:
            result = self._run_pass(trigger)
        finally:
            with self._lock:
                self._syncing = False
                self.passes_run += 1

        self.state = STATE_IDLE if result.success else STATE_ERROR
        self.last_result = result
        return result

    def _run_pass(self, trigger: str) -> SyncResult:
        try:
            return self._push_unsynced(trigger)
        except (ConfigIncomplete, PermissionDenied) as e:
            self.logger.warning(f"Sync aborted: {str(e)}")
            return self._error_result(trigger, e)
        except SyncError as e:
            self.logger.error(f"Failed to sync attendance: {str(e)}")
            self._queue_unsynced()
            return self._error_result(trigger, e)
        except PersistenceFailure as e:
            self.logger.error(f"Sync could not save local state: {str(e)}")
            return SyncResult(
                status='error', trigger=trigger, error_type=e.error_type, retryable=True,
                notice='Sync failed - Will retry automatically'
            )
        except Exception as e:
            self.logger.error(f"Unexpected sync failure: {str(e)}")
            self._queue_unsynced()
            return self._error_result(trigger, UnknownSyncError(str(e)))

    def _push_unsynced(self, trigger: str) -> SyncResult:
        settings = self.settings_manager.current
        records = self.ledger.snapshot()

        if records and not settings.is_sync_ready:
            raise ConfigIncomplete('Please configure school and teacher name in Settings')

        if not records:
            self.logger.info("No attendance data to sync")
            return SyncResult(
                status='success', trigger=trigger,
                notice='No attendance data to sync' if trigger == TRIGGER_MANUAL else None
            )

        collection_path = settings.collection_path

        try:
            self.remote_store.probe()
        except PermissionDenied:
            self.logger.warning("Remote permission probe denied, check store rules")
            raise

        device_id = self.storage.get_device_id()
        synced_keys = []
        failed = []

        for record in records:
            if record.synced:
                continue
            if record.key in self._pushed_keys:
                synced_keys.append(record.key)
                continue
            document = record.to_dict()
            document.update({
                'deviceId': device_id,
                'teacherName': settings.teacher_name,
                'classSubject': settings.class_subject or 'Unknown',
                'schoolName': settings.school_name,
                'synced': True
            })
            try:
                self.remote_store.create_document(collection_path, document)
                synced_keys.append(record.key)
            except SyncError as e:
                self.logger.error(f"Failed to sync entry for student {record.student_id}: {str(e)}")
                failed.append(record)

        self._pushed_keys.update(synced_keys)
        if failed:
            self.pending_queue.add(failed)
        self.ledger.mark_synced(synced_keys)
        self._pushed_keys.difference_update(synced_keys)
        if not failed:
            self.pending_queue.clear()

        synced_count = len(synced_keys)
        self.logger.info(f"Sync pass complete: {synced_count} synced, {len(failed)} failed")

        notice = None
        if synced_count:
            notice = f"Synced {synced_count} records to cloud"
        elif not failed and trigger == TRIGGER_MANUAL:
            notice = 'All data already synced'
        if failed:
            failed_text = f"{len(failed)} records will retry"
            notice = f"{notice} - {failed_text}" if notice else f"Sync incomplete - {failed_text}"

        return SyncResult(
            status='success', trigger=trigger,
            synced_count=synced_count, failed_count=len(failed), notice=notice
        )

    def _queue_unsynced(self) -> None:
        try:
            self.pending_queue.add(self.ledger.unsynced())
        except PersistenceFailure as e:
            self.logger.error(f"Error saving pending sync data: {str(e)}")

    def _error_result(self, trigger: str, error: SyncError) -> SyncResult:
        notices = {
            'config_incomplete': 'Please set school and teacher name in Settings before syncing',
            'permission_denied': 'Permission denied - Check remote store rules',
            'service_unavailable': 'Cloud service temporarily unavailable - Will retry automatically',
            'unauthenticated': 'Authentication required for cloud sync'
        }
        return SyncResult(
            status='error', trigger=trigger,
            error_type=error.error_type, retryable=error.retryable,
            notice=notices.get(error.error_type, 'Sync failed - Will retry when connection improves')
        )

    def download_remote(self) -> Dict[str, Any]:
        """
        Pull up to ``page_size`` of this teacher's remote records, newest
        first, and merge the ones not already present locally.

        Returns:
            Dict[str, Any]: ``success``, ``downloaded``, ``merged``, ``error_type``, ``message``
        """
        if not self.enabled or not self.online:
            return {'success': False, 'downloaded': 0, 'merged': 0,
                    'error_type': 'offline', 'message': 'Cloud sync not available'}

        settings = self.settings_manager.current
        if not settings.is_sync_ready:
            return {'success': False, 'downloaded': 0, 'merged': 0,
                    'error_type': ConfigIncomplete.error_type,
                    'message': 'Please set school and teacher name in Settings'}

        try:
            documents = self.remote_store.query_by_teacher(
                settings.collection_path, settings.teacher_name, limit=self.page_size
            )
        except SyncError as e:
            self.logger.error(f"Failed to download cloud data: {str(e)}")
            return {'success': False, 'downloaded': 0, 'merged': 0,
                    'error_type': e.error_type, 'message': 'Failed to download cloud data'}

        remote_records = []
        for document in documents[:self.page_size]:
            try:
                remote_records.append(AttendanceRecord.from_dict(document))
            except (KeyError, TypeError, ValueError) as e:
                self.logger.warning(f"Skipping malformed remote record: {str(e)}")

        try:
            merged = self.ledger.merge_remote(remote_records)
        except PersistenceFailure as e:
            self.logger.error(f"Failed to save downloaded records: {str(e)}")
            return {'success': False, 'downloaded': len(remote_records), 'merged': 0,
                    'error_type': e.error_type, 'message': 'Could not save cloud data'}

        return {'success': True, 'downloaded': len(remote_records), 'merged': merged,
                'error_type': None,
                'message': f"Downloaded {len(remote_records)} cloud records"}

    def set_online(self, online: bool) -> Optional[SyncResult]:
        """Update connectivity; coming back online triggers an auto sync."""
        was_online = self.online
        self.online = online
        if online and not was_online:
            self.logger.info("Connected - Auto sync enabled")
            return self.request_sync(TRIGGER_AUTO)
        if not online and was_online:
            self.logger.info("Offline - Data will sync when connected")
        return None

    def on_record_scanned(self, record: AttendanceRecord, delay: float = 1.0) -> None:
        """Ledger listener: collapse bursts of scans into one deferred sync."""
        if self.enabled and self.online:
            self.schedule_sync(delay, TRIGGER_AUTO)

    def start_auto_sync(self) -> None:
        """Run ``request_sync('auto')`` every ``auto_interval`` seconds."""
        with self._lock:
            self._auto_running = True
            self._auto_timer = self._start_timer(self.auto_interval, self._auto_tick)

    def _auto_tick(self) -> None:
        if not self._auto_running:
            return
        if not self._syncing:
            self.request_sync(TRIGGER_AUTO)
        with self._lock:
            if self._auto_running:
                self._auto_timer = self._start_timer(self.auto_interval, self._auto_tick)

    def stop(self) -> None:
        """Cancel periodic and deferred syncs."""
        with self._lock:
            self._auto_running = False
            for timer in (self._auto_timer, self._retry_timer):
                if timer is not None:
                    timer.cancel()
            self._auto_timer = None
            self._retry_timer = None

    def status(self) -> Dict[str, Any]:
        return {
            'state': self.state,
            'enabled': self.enabled,
            'online': self.online,
            'pending': len(self.pending_queue),
            'unsynced': len(self.ledger.unsynced()),
            'last_result': self.last_result.to_dict() if self.last_result else None
        }
