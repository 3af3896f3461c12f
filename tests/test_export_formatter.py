import csv
import io
import json
from datetime import date, datetime, timezone

import pandas as pd
import pytest

from rollcall.modules.attendance_ledger import AttendanceRecord
from rollcall.modules.export_formatter import (
    export_filename, render_reports_markup, to_csv, to_excel, to_full_json, to_html_report,
    to_json
)
from rollcall.modules.report_generator import MODE_ALERTS, build_reports
from rollcall.modules.settings_manager import Settings

NOW = datetime(2025, 9, 1, 15, 30, tzinfo=timezone.utc)

SETTINGS = Settings(teacher_name='Ms. Kaur', class_subject='Grade 5 Maths',
                    school_name='Green Valley')

RECORDS = [
    AttendanceRecord('S1', 'Asha, "Ash" Rao', '2025-09-01T09:00:00.000Z', '2025-09-01', '09:00:00'),
    AttendanceRecord('S2', 'Student S2', '2025-09-01T09:05:00.000Z', '2025-09-01', '09:05:00'),
]


def parse_json_export(text):
    envelope = json.loads(text)
    return envelope['metadata'], [AttendanceRecord.from_dict(e) for e in envelope['attendance']]


def test_csv_header_block_and_quoting():
    text = to_csv(RECORDS, SETTINGS, NOW)
    lines = text.split('\n')

    assert lines[:7] == [
        '"Attendance Report"',
        '"Teacher:","Ms. Kaur"',
        '"Class/Subject:","Grade 5 Maths"',
        '"Date:","2025-09-01"',
        '"Total Students:","2"',
        '""',
        '"Student ID","Student Name","Date","Time","Timestamp"',
    ]
    assert lines[7] == '"S1","Asha, ""Ash"" Rao","2025-09-01","09:00:00","2025-09-01T09:00:00.000Z"'
    assert not text.endswith('\n')


def test_csv_rows_parse_back():
    rows = list(csv.reader(io.StringIO(to_csv(RECORDS, SETTINGS, NOW))))
    assert rows[7][1] == 'Asha, "Ash" Rao'


def test_csv_missing_settings_say_not_specified():
    text = to_csv([], Settings(), NOW)
    assert '"Teacher:","Not specified"' in text


def test_json_export_round_trips():
    metadata, records = parse_json_export(to_json(RECORDS, SETTINGS, NOW))

    assert records == RECORDS
    assert metadata['teacher'] == 'Ms. Kaur'
    assert metadata['classSubject'] == 'Grade 5 Maths'
    assert metadata['totalStudents'] == 2
    assert metadata['generatedAt'] == '2025-09-01T15:30:00.000Z'


def test_full_json_includes_settings():
    envelope = json.loads(to_full_json(RECORDS, SETTINGS, NOW))
    assert envelope['settings'] == SETTINGS.to_dict()
    assert envelope['metadata']['totalRecords'] == 2
    assert envelope['metadata']['school'] == 'Green Valley'


def test_excel_has_attendance_and_summary_sheets():
    sheets = pd.read_excel(io.BytesIO(to_excel(RECORDS, SETTINGS, NOW)), sheet_name=None)
    assert set(sheets) == {'Attendance', 'Summary'}
    assert list(sheets['Attendance']['Student ID']) == ['S1', 'S2']


def test_reports_markup_alerts_mode_filters():
    snapshot = [AttendanceRecord('S1', 'Full Marks', f"2025-09-0{d}T09:00:00.000Z",
                                 f"2025-09-0{d}", '09:00:00') for d in range(1, 6)]
    snapshot.append(AttendanceRecord('S2', '<b>Low</b>', '2025-09-01T09:00:00.000Z',
                                     '2025-09-01', '09:00:00'))
    reports = build_reports(snapshot, '2025-09-01', '2025-09-05')

    markup = render_reports_markup(reports, MODE_ALERTS, SETTINGS, '2025-09-01', '2025-09-05',
                                   'This Week', NOW)

    assert 'Full Marks' not in markup
    assert '&lt;b&gt;Low&lt;/b&gt;' in markup
    assert '1/5 days (20.0%)' in markup
    assert 'status-poor' in markup


def test_reports_markup_empty_alerts():
    markup = render_reports_markup({}, MODE_ALERTS, SETTINGS, '2025-09-01', '2025-09-05', now=NOW)
    assert 'No attendance alerts for this period' in markup


def test_html_report_wraps_markup():
    html = to_html_report('<div class="feedback-report">x</div>', SETTINGS, NOW)
    assert html.startswith('<!DOCTYPE html>')
    assert '<div class="feedback-report">x</div>' in html
    assert '<h1>Green Valley</h1>' in html


@pytest.mark.parametrize('kind, expected', [
    ('csv', 'attendance_2025-09-01.csv'),
    ('json', 'attendance_2025-09-01.json'),
    ('full_json', 'attendance_export_2025-09-01.json'),
    ('html', 'parent_feedback_reports_2025-09-01.html'),
])
def test_export_filenames(kind, expected):
    assert export_filename(kind, date(2025, 9, 1)) == expected


def test_unknown_export_kind():
    with pytest.raises(ValueError):
        export_filename('pdf', date(2025, 9, 1))
