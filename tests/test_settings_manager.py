import pytest

from rollcall.modules.errors import PersistenceFailure
from rollcall.modules.settings_manager import Settings, SettingsManager, sanitize_school_name


def test_sanitize_keeps_only_letters_and_digits():
    assert sanitize_school_name("St. Mary's School #2") == 'StMarysSchool2'


def test_collection_path_uses_sanitized_school():
    settings = Settings(teacher_name='T', school_name='Green Valley High')
    assert settings.collection_path == 'schools/GreenValleyHigh/attendance'


@pytest.mark.parametrize('teacher, school, ready', [
    ('Ms. Kaur', 'Green Valley', True),
    ('', 'Green Valley', False),
    ('Ms. Kaur', '   ', False),
])
def test_sync_ready_needs_teacher_and_school(teacher, school, ready):
    assert Settings(teacher_name=teacher, school_name=school).is_sync_ready is ready


def test_update_persists_immediately(storage):
    manager = SettingsManager(storage)
    manager.load()
    manager.update(teacherName='  Mr. Ode ', class_subject='Physics')

    reloaded = SettingsManager(storage)
    assert reloaded.load() == Settings(teacher_name='Mr. Ode', class_subject='Physics')


def test_unknown_field_is_rejected(storage):
    manager = SettingsManager(storage)
    with pytest.raises(ValueError):
        manager.update(favourite_colour='blue')


def test_failed_write_keeps_previous_settings(storage):
    manager = SettingsManager(storage)
    manager.update(teacher_name='Before')
    storage.fail_writes = True

    with pytest.raises(PersistenceFailure):
        manager.update(teacher_name='After')
    assert manager.current.teacher_name == 'Before'
