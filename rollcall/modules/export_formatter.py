"""
Export Formatter Module - Classroom QR Attendance

Renders attendance records and student reports into CSV, JSON, HTML and
Excel blobs. Every function here is pure: callers decide where the text
goes (download, share sheet, HTTP response).
"""

import csv
import io
import json
from datetime import date, datetime
from typing import List, Optional

import pandas as pd
from jinja2 import Template

from rollcall.modules.attendance_ledger import AttendanceRecord, iso_timestamp, local_now, to_local
from rollcall.modules.report_generator import MODE_ALL, filter_for_mode

CSV_HEADERS = ['Student ID', 'Student Name', 'Date', 'Time', 'Timestamp']
NOT_SPECIFIED = 'Not specified'

FILENAME_PATTERNS = {
    'csv': 'attendance_{date}.csv',
    'json': 'attendance_{date}.json',
    'full_json': 'attendance_export_{date}.json',
    'excel': 'attendance_{date}.xlsx',
    'html': 'parent_feedback_reports_{date}.html'
}

MIME_TYPES = {
    'csv': 'text/csv',
    'json': 'application/json',
    'full_json': 'application/json',
    'excel': 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet',
    'html': 'text/html'
}


def _now(now: Optional[datetime]) -> datetime:
    return to_local(now or local_now())


def export_filename(kind: str, today: date) -> str:
    """Deterministic download name for an export of ``kind`` made on ``today``."""
    if kind not in FILENAME_PATTERNS:
        raise ValueError(f"Unknown export kind: {kind}")
    return FILENAME_PATTERNS[kind].format(date=today.strftime('%Y-%m-%d'))


def to_csv(records: List[AttendanceRecord], settings, now: Optional[datetime] = None) -> str:
    """
    Render records as CSV with a metadata header block.
    Every field is double-quoted.
    """
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator='\n')
    writer.writerow(['Attendance Report'])
    writer.writerow(['Teacher:', settings.teacher_name or NOT_SPECIFIED])
    writer.writerow(['Class/Subject:', settings.class_subject or NOT_SPECIFIED])
    writer.writerow(['Date:', _now(now).strftime('%Y-%m-%d')])
    writer.writerow(['Total Students:', str(len(records))])
    writer.writerow([''])
    writer.writerow(CSV_HEADERS)
    for record in records:
        writer.writerow([
            record.student_id,
            record.student_name,
            record.date_key,
            record.time,
            record.timestamp
        ])
    return buffer.getvalue().rstrip('\n')


def to_json(records: List[AttendanceRecord], settings, now: Optional[datetime] = None) -> str:
    """Render records in a ``{metadata, attendance}`` envelope."""
    generated_at = iso_timestamp(_now(now))
    envelope = {
        'metadata': {
            'date': generated_at,
            'teacher': settings.teacher_name or 'Unknown',
            'classSubject': settings.class_subject or 'Unknown',
            'totalStudents': len(records),
            'generatedAt': generated_at
        },
        'attendance': [r.to_dict() for r in records]
    }
    return json.dumps(envelope, indent=2)


def to_full_json(records: List[AttendanceRecord], settings, now: Optional[datetime] = None) -> str:
    """Render the whole ledger plus settings, used for backups."""
    envelope = {
        'metadata': {
            'exportDate': iso_timestamp(_now(now)),
            'teacher': settings.teacher_name or 'Unknown',
            'school': settings.school_name or 'Unknown',
            'classSubject': settings.class_subject or 'Unknown',
            'totalRecords': len(records)
        },
        'attendance': [r.to_dict() for r in records],
        'settings': settings.to_dict()
    }
    return json.dumps(envelope, indent=2)


def to_excel(records: List[AttendanceRecord], settings, now: Optional[datetime] = None) -> bytes:
    """Render records as an Excel workbook with Attendance and Summary sheets."""
    frame = pd.DataFrame(
        [[r.student_id, r.student_name, r.date_key, r.time, r.timestamp] for r in records],
        columns=CSV_HEADERS
    )
    summary = pd.DataFrame([
        {'Field': 'Teacher', 'Value': settings.teacher_name or NOT_SPECIFIED},
        {'Field': 'Class/Subject', 'Value': settings.class_subject or NOT_SPECIFIED},
        {'Field': 'School', 'Value': settings.school_name or NOT_SPECIFIED},
        {'Field': 'Date', 'Value': _now(now).strftime('%Y-%m-%d')},
        {'Field': 'Total Records', 'Value': str(len(records))},
        {'Field': 'Unique Students', 'Value': str(frame['Student ID'].nunique())}
    ])

    buffer = io.BytesIO()
    with pd.ExcelWriter(buffer, engine='openpyxl') as writer:
        frame.to_excel(writer, sheet_name='Attendance', index=False)
        summary.to_excel(writer, sheet_name='Summary', index=False)
    return buffer.getvalue()


REPORTS_MARKUP_TEMPLATE = Template("""
<div class="feedback-reports-header">
    <h3>{{ title }}{% if mode == 'alerts' %} - Attendance Alerts{% endif %}</h3>
    <p>{{ date_from }} to {{ date_to }}</p>
</div>
{% for report in reports %}
<div class="feedback-report">
    <div class="report-header">{{ report.name }} (ID: {{ report.student_id }})</div>
    <div class="report-content">
        <p><strong>Attendance:</strong> {{ report.attendance_days }}/{{ report.total_working_days }} days ({{ '%.1f'|format(report.percentage) }}%)</p>
        <p><strong>Status:</strong> <span class="status-{{ report.status }}">{{ report.status_text }}</span></p>
        {% if report.recent_records %}
        <p><strong>Recent attendance:</strong>
        {% for record in report.recent_records %}{{ record.date_key }} {{ record.time }}{% if not loop.last %}, {% endif %}{% endfor %}
        </p>
        {% endif %}
    </div>
</div>
{% else %}
<div class="empty-state">
    <p>{% if mode == 'alerts' %}No attendance alerts for this period{% else %}No attendance data for this period{% endif %}</p>
</div>
{% endfor %}
<div class="report-footer">
    <p><strong>Teacher:</strong> {{ teacher }}</p>
    <p><strong>Class:</strong> {{ class_subject }}</p>
    <p><strong>Generated:</strong> {{ generated }}</p>
</div>
""", autoescape=True)


HTML_REPORT_TEMPLATE = Template("""<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <title>Parent Feedback Reports - {{ class_subject }}</title>
    <style>
        body { font-family: Arial, sans-serif; margin: 20px; }
        .header { text-align: center; margin-bottom: 30px; }
        .feedback-report { margin-bottom: 20px; padding: 15px; border: 1px solid #ddd; border-radius: 8px; }
        .report-header { font-weight: bold; margin-bottom: 10px; }
        .status-excellent { color: #4CAF50; }
        .status-good { color: #2196F3; }
        .status-satisfactory { color: #FF9800; }
        .status-needs-improvement { color: #FF5722; }
        .status-poor { color: #f44336; }
    </style>
</head>
<body>
    <div class="header">
        <h1>{{ school }}</h1>
        <h2>Parent Feedback Reports</h2>
        <p><strong>Teacher:</strong> {{ teacher }} | <strong>Class:</strong> {{ class_subject }}</p>
        <p><strong>Generated:</strong> {{ generated }}</p>
    </div>
    {{ reports_markup|safe }}
</body>
</html>
""", autoescape=True)


def render_reports_markup(reports, mode: str, settings, date_from: str, date_to: str,
                          title: str = 'Attendance Feedback',
                          now: Optional[datetime] = None) -> str:
    """
    Render student reports as HTML fragments. In ``alerts`` mode students
    at or above the alert threshold are left out.
    """
    visible = filter_for_mode(reports, mode or MODE_ALL)
    return REPORTS_MARKUP_TEMPLATE.render(
        reports=list(visible.values()),
        mode=mode,
        title=title,
        date_from=date_from,
        date_to=date_to,
        teacher=settings.teacher_name or NOT_SPECIFIED,
        class_subject=settings.class_subject or NOT_SPECIFIED,
        generated=_now(now).strftime('%Y-%m-%d')
    )


def to_html_report(reports_markup: str, settings, now: Optional[datetime] = None) -> str:
    """Wrap rendered report markup in a standalone HTML document."""
    return HTML_REPORT_TEMPLATE.render(
        reports_markup=reports_markup,
        school=settings.school_name or 'School Name',
        teacher=settings.teacher_name or 'Teacher Name',
        class_subject=settings.class_subject or 'Class/Subject',
        generated=_now(now).strftime('%Y-%m-%d')
    )
