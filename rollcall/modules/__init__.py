# Classroom QR Attendance - Modules Package
"""
Business logic modules for the attendance core.
"""

MODULES = {
    'errors': 'Error taxonomy for scans, persistence and sync',
    'storage_manager': 'SQLite-backed local key-value store',
    'scan_decoder': 'Raw QR text to scan payload',
    'attendance_ledger': 'Persisted attendance records and queries',
    'settings_manager': 'Teacher, class and school settings',
    'remote_store': 'Cloud document store client',
    'sync_reconciler': 'Push, pull and retry of cloud sync',
    'report_generator': 'Per-student attendance statistics',
    'export_formatter': 'CSV, JSON, HTML and Excel exports',
    'scan_session': 'Camera scan loop',
    'qr_generator': 'Student QR code generation'
}


def get_module_info():
    """Get information about available modules"""
    return MODULES
