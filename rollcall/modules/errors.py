"""
Error Types Module - Classroom QR Attendance

Exception hierarchy shared by the attendance core. Scan and persistence
problems are resolved locally and reported to the user; sync problems
never touch the ledger and only keep records in the pending queue.
"""


class AttendanceError(Exception):
    """Base class for all attendance core errors."""

    error_type = 'attendance_error'


class InvalidPayload(AttendanceError):
    """Raised when a scanned payload is empty or cannot identify a student."""

    error_type = 'invalid_payload'


class PersistenceFailure(AttendanceError):
    """Raised when the local key-value store cannot complete a durable write."""

    error_type = 'persistence_failure'


class SyncError(AttendanceError):
    """Base class for sync-path failures."""

    error_type = 'unknown'
    retryable = True

    def __init__(self, message: str = '', code: str = None):
        super().__init__(message or self.__class__.__name__)
        self.code = code


class ConfigIncomplete(SyncError):
    error_type = 'config_incomplete'
    retryable = False


class PermissionDenied(SyncError):
    error_type = 'permission_denied'
    retryable = False


class Unauthenticated(SyncError):
    error_type = 'unauthenticated'
    retryable = False


class ServiceUnavailable(SyncError):
    error_type = 'service_unavailable'
    retryable = True


class UnknownSyncError(SyncError):
    error_type = 'unknown'
    retryable = True
