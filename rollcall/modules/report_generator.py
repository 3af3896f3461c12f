"""
Report Generator Module - Classroom QR Attendance

This module computes per-student attendance statistics over a date range.
For every student ever seen in the ledger it counts the distinct days
attended in range, divides by the weekday count of the range and assigns
an attendance-health tier.

Features:
- Distinct-day attendance counts per student
- Working days as Monday to Friday in the range
- Five status tiers from excellent to poor
- Alerts view for students below the good threshold
- Period helpers (today, week, month, custom)
- Class-level summary statistics
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

import pandas as pd

from rollcall.modules.attendance_ledger import AttendanceRecord, local_now, to_local

MODE_ALL = 'all'
MODE_ALERTS = 'alerts'

ALERT_THRESHOLD = 80.0
RECENT_RECORDS_LIMIT = 5

# (inclusive lower bound, status, display text), highest first
STATUS_TIERS = [
    (90.0, 'excellent', 'Excellent'),
    (80.0, 'good', 'Good'),
    (70.0, 'satisfactory', 'Satisfactory'),
    (60.0, 'needs-improvement', 'Needs Improvement'),
]
POOR = ('poor', 'Poor')

PERIOD_TITLES = {
    'today': 'Today',
    'week': 'This Week',
    'month': 'This Month',
    'custom': 'Custom Period'
}


@dataclass
class StudentReport:
    """Data class for one student's attendance over a date range."""
    student_id: str
    name: str
    attendance_days: int
    total_working_days: int
    percentage: float
    status: str
    recent_records: List[AttendanceRecord] = field(default_factory=list)

    @property
    def status_text(self) -> str:
        return status_text(self.status)

    @property
    def is_alert(self) -> bool:
        return self.percentage < ALERT_THRESHOLD

    def to_dict(self) -> Dict[str, Any]:
        return {
            'studentId': self.student_id,
            'name': self.name,
            'attendanceDays': self.attendance_days,
            'totalWorkingDays': self.total_working_days,
            'percentage': self.percentage,
            'status': self.status,
            'statusText': self.status_text,
            'recentRecords': [r.to_dict() for r in self.recent_records]
        }


def classify(percentage: float) -> str:
    """Map an attendance percentage to its status tier."""
    for lower_bound, status, _ in STATUS_TIERS:
        if percentage >= lower_bound:
            return status
    return POOR[0]


def status_text(status: str) -> str:
    for _, name, text in STATUS_TIERS:
        if name == status:
            return text
    return POOR[1]


def _parse_date_key(value: str) -> date:
    try:
        return datetime.strptime(value, '%Y-%m-%d').date()
    except (TypeError, ValueError):
        raise ValueError(f"Invalid date '{value}', expected YYYY-MM-DD")


def working_days(from_date_key: str, to_date_key: str) -> int:
    """Number of Monday-Friday days in the inclusive range."""
    start = _parse_date_key(from_date_key)
    end = _parse_date_key(to_date_key)
    if start > end:
        return 0
    return len(pd.bdate_range(start, end))


def build_reports(snapshot: List[AttendanceRecord], from_date_key: str, to_date_key: str,
                  mode: str = MODE_ALL,
                  recent_limit: int = RECENT_RECORDS_LIMIT) -> Dict[str, StudentReport]:
    """
    Compute a report for every student in the ledger snapshot.

    Args:
        snapshot (List[AttendanceRecord]): All ledger records, stored order
        from_date_key (str): First day of the range (YYYY-MM-DD)
        to_date_key (str): Last day of the range, inclusive
        mode (str): ``all`` or ``alerts``; the full set is always computed
            and ``alerts`` only applies when rendering
        recent_limit (int): Number of trailing in-range records to keep

    Returns:
        Dict[str, StudentReport]: Reports keyed by student id, in first-seen order
    """
    if mode not in (MODE_ALL, MODE_ALERTS):
        raise ValueError(f"Unknown report mode: {mode}")

    total_days = working_days(from_date_key, to_date_key)
    in_range = [r for r in snapshot if from_date_key <= r.date_key <= to_date_key]

    if in_range:
        frame = pd.DataFrame(
            [{'student_id': r.student_id, 'date_key': r.date_key} for r in in_range]
        )
        day_counts = frame.groupby('student_id')['date_key'].nunique().to_dict()
    else:
        day_counts = {}

    by_student: Dict[str, List[AttendanceRecord]] = {}
    for record in in_range:
        by_student.setdefault(record.student_id, []).append(record)

    known_names: Dict[str, str] = {}
    for record in snapshot:
        known_names.setdefault(record.student_id, record.student_name)

    reports = {}
    for student_id in known_names:
        student_records = by_student.get(student_id, [])
        attended = int(day_counts.get(student_id, 0))
        percentage = (attended / total_days) * 100 if total_days > 0 else 0.0
        name = student_records[0].student_name if student_records else known_names[student_id]
        reports[student_id] = StudentReport(
            student_id=student_id,
            name=name or f"Student {student_id}",
            attendance_days=attended,
            total_working_days=total_days,
            percentage=float(percentage),
            status=classify(percentage),
            recent_records=student_records[-recent_limit:] if recent_limit > 0 else []
        )
    return reports


def filter_for_mode(reports: Dict[str, StudentReport], mode: str) -> Dict[str, StudentReport]:
    """Reports to show for ``mode``; alerts drops anyone at or above the threshold."""
    if mode == MODE_ALERTS:
        return {sid: r for sid, r in reports.items() if r.percentage < ALERT_THRESHOLD}
    return dict(reports)


def period_range(period: str, today: date, from_date_key: str = None,
                 to_date_key: str = None) -> Tuple[str, str]:
    """
    Resolve a named reporting period to inclusive date keys.

    Args:
        period (str): ``today``, ``week``, ``month`` or ``custom``
        today (date): Reference day
        from_date_key (str): Start for ``custom``
        to_date_key (str): End for ``custom``

    Returns:
        Tuple[str, str]: (from, to) as YYYY-MM-DD
    """
    end = pd.Timestamp(today)
    if period == 'today':
        start = end
    elif period == 'week':
        start = end - pd.Timedelta(days=7)
    elif period == 'month':
        start = end - pd.DateOffset(months=1)
    elif period == 'custom':
        if not from_date_key or not to_date_key:
            raise ValueError('Please select both from and to dates for custom range')
        _parse_date_key(from_date_key)
        _parse_date_key(to_date_key)
        return from_date_key, to_date_key
    else:
        raise ValueError(f"Unknown period: {period}")
    return start.strftime('%Y-%m-%d'), end.strftime('%Y-%m-%d')


def summarize(reports: Dict[str, StudentReport]) -> Dict[str, Any]:
    """Class-level statistics over a set of reports."""
    counts = {status: 0 for _, status, _ in STATUS_TIERS}
    counts[POOR[0]] = 0
    if not reports:
        return {'total_students': 0, 'average_percentage': 0.0,
                'alerts': 0, 'status_counts': counts}

    frame = pd.DataFrame([{'percentage': r.percentage, 'status': r.status}
                          for r in reports.values()])
    counts.update(frame['status'].value_counts().to_dict())
    return {
        'total_students': len(frame),
        'average_percentage': round(float(frame['percentage'].mean()), 1),
        'alerts': int((frame['percentage'] < ALERT_THRESHOLD).sum()),
        'status_counts': {k: int(v) for k, v in counts.items()}
    }


class ReportGenerator:
    """
    Report entry point bound to a ledger and a clock.
    Reports are recomputed wholesale for every query.
    """

    def __init__(self, ledger, clock: Callable[[], datetime] = local_now,
                 recent_limit: int = RECENT_RECORDS_LIMIT):
        self.ledger = ledger
        self.clock = clock
        self.recent_limit = recent_limit
        self.logger = logging.getLogger(__name__)

    def generate(self, from_date_key: str, to_date_key: str,
                 mode: str = MODE_ALL) -> Dict[str, StudentReport]:
        reports = build_reports(self.ledger.snapshot(), from_date_key, to_date_key,
                                mode, self.recent_limit)
        self.logger.info(f"Built {len(reports)} student reports for {from_date_key}..{to_date_key}")
        return reports

    def generate_for_period(self, period: str, from_date_key: str = None,
                            to_date_key: str = None,
                            mode: str = MODE_ALL) -> Dict[str, Any]:
        """
        Build reports for a named period.

        Returns:
            Dict[str, Any]: ``period``, ``title``, ``from``, ``to``, ``mode``,
            ``reports`` (all), ``visible`` (filtered for mode) and ``summary``
        """
        today = to_local(self.clock()).date()
        start, end = period_range(period, today, from_date_key, to_date_key)
        reports = self.generate(start, end, mode)
        visible = filter_for_mode(reports, mode)
        return {
            'period': period,
            'title': PERIOD_TITLES.get(period, 'Selected Period'),
            'from': start,
            'to': end,
            'mode': mode,
            'reports': reports,
            'visible': visible,
            'summary': summarize(reports)
        }

    def student_report(self, student_id: str, from_date_key: str,
                       to_date_key: str) -> Optional[StudentReport]:
        return self.generate(from_date_key, to_date_key).get(student_id)
