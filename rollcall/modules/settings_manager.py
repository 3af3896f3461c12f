"""
Settings Manager Module - Classroom QR Attendance

Holds the teacher-editable settings (teacher name, class/subject, school
name). They are loaded once at startup and written back to the key-value
store immediately on every change.
"""

import logging
import re
import threading
from dataclasses import dataclass, replace
from typing import Any, Dict

from rollcall.modules.errors import PersistenceFailure


def sanitize_school_name(school_name: str) -> str:
    """Keep only ASCII letters and digits of a school name."""
    return re.sub(r'[^a-zA-Z0-9]', '', school_name or '')


@dataclass(frozen=True)
class Settings:
    """Data class for the user settings singleton."""
    teacher_name: str = ''
    class_subject: str = ''
    school_name: str = ''

    @property
    def is_sync_ready(self) -> bool:
        return bool(self.school_name.strip()) and bool(self.teacher_name.strip())

    @property
    def collection_path(self) -> str:
        """Remote collection scoping all of this school's attendance documents."""
        return f"schools/{sanitize_school_name(self.school_name)}/attendance"

    def to_dict(self) -> Dict[str, str]:
        return {
            'teacherName': self.teacher_name,
            'classSubject': self.class_subject,
            'schoolName': self.school_name
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Settings':
        data = data or {}
        return cls(
            teacher_name=str(data.get('teacherName') or '').strip(),
            class_subject=str(data.get('classSubject') or '').strip(),
            school_name=str(data.get('schoolName') or '').strip()
        )


class SettingsManager:
    """Loads and persists the Settings singleton."""

    STORAGE_KEY = 'appSettings'

    FIELD_NAMES = {
        'teacher_name': 'teacher_name',
        'teacherName': 'teacher_name',
        'class_subject': 'class_subject',
        'classSubject': 'class_subject',
        'school_name': 'school_name',
        'schoolName': 'school_name'
    }

    def __init__(self, storage, storage_key: str = None):
        self.storage = storage
        self.storage_key = storage_key or self.STORAGE_KEY
        self.logger = logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._settings = Settings()

    @property
    def current(self) -> Settings:
        return self._settings

    def load(self) -> Settings:
        """Load settings from storage, falling back to empty values."""
        self._settings = Settings.from_dict(self.storage.get_json(self.storage_key, default={}))
        self.logger.info("Settings loaded")
        return self._settings

    def update(self, **changes) -> Settings:
        """
        Apply user edits and persist them immediately.

        Args:
            **changes: Field values keyed by snake_case or camelCase name

        Returns:
            Settings: The new settings

        Raises:
            ValueError: for an unknown field name
            PersistenceFailure: if the write failed; settings stay unchanged
        """
        fields = {}
        for name, value in changes.items():
            if name not in self.FIELD_NAMES:
                raise ValueError(f"Unknown setting: {name}")
            fields[self.FIELD_NAMES[name]] = str(value or '').strip()

        with self._lock:
            updated = replace(self._settings, **fields)
            try:
                self.storage.set_json(self.storage_key, updated.to_dict())
            except PersistenceFailure as e:
                self.logger.error(f"Failed to save settings: {str(e)}")
                raise
            self._settings = updated

        self.logger.info(f"Settings updated: {', '.join(sorted(fields)) or 'no changes'}")
        return updated
