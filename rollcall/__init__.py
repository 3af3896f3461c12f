# Classroom QR Attendance - Core Package
"""
Core package for the classroom QR attendance utility.
Scans are recorded in a local ledger, synced to a cloud document store when
online, and summarized into per-student attendance reports.
"""

__version__ = "1.0.0"
__description__ = "Attendance ledger, cloud sync and reporting for QR-code roll call"

from .modules.storage_manager import StorageManager
from .modules.scan_decoder import ScanDecoder, decode_scan
from .modules.attendance_ledger import AttendanceLedger, AttendanceRecord
from .modules.settings_manager import Settings, SettingsManager
from .modules.sync_reconciler import SyncReconciler, PendingSyncQueue, SyncResult
from .modules.report_generator import ReportGenerator, StudentReport, build_reports
from .modules.scan_session import ScanSession
from .modules.qr_generator import QRGenerator

__all__ = [
    'StorageManager',
    'ScanDecoder',
    'decode_scan',
    'AttendanceLedger',
    'AttendanceRecord',
    'Settings',
    'SettingsManager',
    'SyncReconciler',
    'PendingSyncQueue',
    'SyncResult',
    'ReportGenerator',
    'StudentReport',
    'build_reports',
    'ScanSession',
    'QRGenerator'
]
