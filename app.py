"""
Classroom QR Attendance - Main Application

This module wires the attendance core together and exposes it to the scanner
front end as a small JSON API. Every request maps to one user action: a scan,
a clear, a sync, a report or an export.

Features:
- QR scan recording with one scan per student per day
- Daily and date-range attendance lists
- Cloud sync (manual, after scans, periodic) and cloud download
- Attendance reports with alert filtering
- CSV/JSON/HTML/Excel exports
- Student QR code batch generation
"""

from datetime import datetime
import logging

from flask import Flask, Response, jsonify, request
from werkzeug.exceptions import HTTPException

from config import init_config
from rollcall.modules.attendance_ledger import AttendanceLedger, DUPLICATE_FOR_DAY, local_now, to_local
from rollcall.modules.errors import InvalidPayload, PersistenceFailure
from rollcall.modules.export_formatter import (
    MIME_TYPES, export_filename, render_reports_markup,
    to_csv, to_excel, to_full_json, to_html_report, to_json
)
from rollcall.modules.qr_generator import QRGenerator
from rollcall.modules.remote_store import FirestoreRestStore
from rollcall.modules.report_generator import MODE_ALL, ReportGenerator, period_range
from rollcall.modules.scan_decoder import ScanDecoder
from rollcall.modules.scan_session import ScanSession
from rollcall.modules.settings_manager import SettingsManager
from rollcall.modules.storage_manager import StorageManager
from rollcall.modules.sync_reconciler import PendingSyncQueue, SyncReconciler, TRIGGER_MANUAL

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]'
)
logger = logging.getLogger(__name__)


def build_remote_store(app):
    """Remote client when cloud sync is enabled, otherwise None (offline-only)."""
    if not app.config['SYNC_ENABLED']:
        logger.info("Cloud sync disabled - offline only")
        return None
    return FirestoreRestStore(
        project_id=app.config['FIRESTORE_PROJECT_ID'],
        api_key=app.config['FIRESTORE_API_KEY'] or None,
        auth_token=app.config['FIRESTORE_AUTH_TOKEN'] or None,
        timeout=app.config['REMOTE_TIMEOUT']
    )


def create_app(config_name=None, storage=None, remote_store=None, clock=local_now,
               timer_factory=None):
    """
    Create the Flask application and its attendance components.

    Args:
        config_name (str): Key into ``config.config``
        storage: Key-value store, built from DATABASE_PATH when omitted
        remote_store: Remote document store, built from config when omitted
        clock: Provider of the current instant
        timer_factory: ``threading.Timer`` compatible factory for sync timers

    Returns:
        Flask: Configured application
    """
    app = Flask(__name__)
    init_config(app, config_name)
    logging.getLogger().setLevel(app.config['LOG_LEVEL'])

    storage = storage or StorageManager(app.config['DATABASE_PATH'])
    settings_manager = SettingsManager(storage, storage_key=app.config['SETTINGS_KEY'])
    settings_manager.load()

    ledger = AttendanceLedger(storage, clock=clock, storage_key=app.config['LEDGER_KEY'])
    decoder = ScanDecoder()
    reports = ReportGenerator(ledger, clock=clock,
                              recent_limit=app.config['RECENT_RECORDS_LIMIT'])
    qr_generator = QRGenerator(box_size=app.config['QR_CODE_BOX_SIZE'],
                               border=app.config['QR_CODE_BORDER'])

    if remote_store is None:
        remote_store = build_remote_store(app)

    sync_options = {}
    if timer_factory is not None:
        sync_options['timer_factory'] = timer_factory
    reconciler = SyncReconciler(
        ledger, settings_manager, storage, remote_store,
        pending_queue=PendingSyncQueue(storage, storage_key=app.config['PENDING_SYNC_KEY']),
        min_interval=app.config['SYNC_MIN_INTERVAL_SECONDS'],
        auto_interval=app.config['SYNC_AUTO_INTERVAL_SECONDS'],
        page_size=app.config['REMOTE_PAGE_SIZE'],
        **sync_options
    )
    if reconciler.enabled:
        delay = app.config['SYNC_AFTER_SCAN_DELAY_SECONDS']
        ledger.add_listener(lambda record: reconciler.on_record_scanned(record, delay))

    app.extensions['rollcall'] = {
        'storage': storage,
        'settings': settings_manager,
        'ledger': ledger,
        'decoder': decoder,
        'reports': reports,
        'reconciler': reconciler,
        'qr_generator': qr_generator
    }

    def today_key():
        return to_local(clock()).strftime('%Y-%m-%d')

    @app.route('/health')
    def health():
        return jsonify({'status': 'ok'})

    @app.route('/api/scan', methods=['POST'])
    def process_scan():
        """Process a decoded QR code and record attendance"""
        data = request.get_json(silent=True) or {}
        try:
            payload = decoder.decode(data.get('qr_code', ''))
        except InvalidPayload as e:
            return jsonify({
                'success': False,
                'error_type': e.error_type,
                'message': 'Invalid QR code format'
            }), 400

        result = ledger.record_scan(payload)
        if result['accepted']:
            return jsonify({
                'success': True,
                'message': result['message'],
                'record': result['record'].to_dict(),
                'today_count': ledger.today_count()
            })

        status_code = 409 if result['reason'] == DUPLICATE_FOR_DAY else 500
        return jsonify({
            'success': False,
            'error_type': result['reason'],
            'message': result['message']
        }), status_code

    @app.route('/api/attendance', methods=['GET'])
    def attendance_for_date():
        date_key = request.args.get('date') or today_key()
        records = ledger.records_for_date(date_key)
        return jsonify({
            'date': date_key,
            'count': len(records),
            'last_scan': records[0].time if records else None,
            'records': ledger.as_dicts(records)
        })

    @app.route('/api/attendance/range', methods=['GET'])
    def attendance_in_range():
        date_from = request.args.get('from')
        date_to = request.args.get('to')
        if not date_from or not date_to:
            return jsonify({'success': False, 'message': 'Both from and to dates are required'}), 400
        records = ledger.records_in_range(date_from, date_to)
        return jsonify({'from': date_from, 'to': date_to, 'count': len(records),
                        'records': ledger.as_dicts(records)})

    @app.route('/api/attendance', methods=['DELETE'])
    def clear_date():
        """Clear one day's attendance. The front end confirms before calling."""
        result = ledger.clear_date(request.args.get('date') or today_key())
        return jsonify(result), 200 if result['success'] else 500

    @app.route('/api/attendance/all', methods=['DELETE'])
    def clear_all():
        result = ledger.clear_all()
        return jsonify(result), 200 if result['success'] else 500

    @app.route('/api/settings', methods=['GET'])
    def get_settings():
        return jsonify(settings_manager.current.to_dict())

    @app.route('/api/settings', methods=['PUT'])
    def update_settings():
        data = request.get_json(silent=True) or {}
        try:
            updated = settings_manager.update(**data)
        except ValueError as e:
            return jsonify({'success': False, 'message': str(e)}), 400
        except PersistenceFailure:
            return jsonify({'success': False, 'error_type': PersistenceFailure.error_type,
                            'message': 'Could not save settings'}), 500
        return jsonify(updated.to_dict())

    @app.route('/api/sync', methods=['POST'])
    def manual_sync():
        result = reconciler.request_sync(TRIGGER_MANUAL)
        status_code = 503 if result.status == 'error' else 200
        return jsonify(result.to_dict()), status_code

    @app.route('/api/sync/status', methods=['GET'])
    def sync_status():
        return jsonify(reconciler.status())

    @app.route('/api/sync/download', methods=['POST'])
    def download_cloud_data():
        result = reconciler.download_remote()
        return jsonify(result), 200 if result['success'] else 503

    @app.route('/api/reports', methods=['GET'])
    def attendance_reports():
        period = request.args.get('period', 'custom')
        mode = request.args.get('mode', MODE_ALL)
        try:
            built = reports.generate_for_period(
                period, request.args.get('from'), request.args.get('to'), mode
            )
        except ValueError as e:
            return jsonify({'success': False, 'message': str(e)}), 400

        return jsonify({
            'period': built['period'],
            'title': built['title'],
            'from': built['from'],
            'to': built['to'],
            'mode': built['mode'],
            'summary': built['summary'],
            'reports': [r.to_dict() for r in built['visible'].values()]
        })

    @app.route('/api/reports/<student_id>', methods=['GET'])
    def student_attendance_report(student_id):
        """Single student's report, e.g. for a parent download"""
        try:
            date_from, date_to = period_range(
                request.args.get('period', 'month'), to_local(clock()).date(),
                request.args.get('from'), request.args.get('to')
            )
        except ValueError as e:
            return jsonify({'success': False, 'message': str(e)}), 400

        report = reports.student_report(student_id, date_from, date_to)
        if report is None:
            return jsonify({'success': False, 'message': f"No attendance for student {student_id}"}), 404
        return jsonify({'from': date_from, 'to': date_to, 'report': report.to_dict()})

    @app.route('/api/export/<kind>', methods=['GET'])
    def export(kind):
        """Download an export; ``date`` selects the day, ``full_json`` takes everything"""
        now = to_local(clock())
        settings = settings_manager.current

        if kind == 'html':
            try:
                built = reports.generate_for_period(
                    request.args.get('period', 'month'), request.args.get('from'),
                    request.args.get('to'), request.args.get('mode', MODE_ALL)
                )
            except ValueError as e:
                return jsonify({'success': False, 'message': str(e)}), 400
            markup = render_reports_markup(built['reports'], built['mode'], settings,
                                           built['from'], built['to'], built['title'], now)
            body = to_html_report(markup, settings, now)
        else:
            if kind == 'full_json':
                records = ledger.snapshot()
            elif kind in ('csv', 'json', 'excel'):
                records = ledger.records_for_date(request.args.get('date') or today_key())
            else:
                return jsonify({'success': False, 'message': f"Unknown export: {kind}"}), 404

            if not records:
                return jsonify({'success': False, 'message': 'No attendance data to download'}), 404

            if kind == 'csv':
                body = to_csv(records, settings, now)
            elif kind == 'json':
                body = to_json(records, settings, now)
            elif kind == 'full_json':
                body = to_full_json(records, settings, now)
            else:
                body = to_excel(records, settings, now)

        filename = export_filename(kind, now.date())
        return Response(
            body,
            mimetype=MIME_TYPES[kind],
            headers={'Content-Disposition': f'attachment; filename="{filename}"'}
        )

    @app.route('/api/qr/batch', methods=['POST'])
    def batch_qr_codes():
        data = request.get_json(silent=True) or {}
        batch_text = data.get('students', '')
        if not batch_text.strip():
            return jsonify({'success': False, 'message': 'Please enter student data'}), 400
        result = qr_generator.batch_generate_qr_codes(batch_text, bool(data.get('with_caption')))
        return jsonify(result)

    @app.errorhandler(Exception)
    def handle_unexpected(error):
        if isinstance(error, HTTPException):
            return error
        logger.error(f"Request failed: {str(error)}")
        return jsonify({'success': False, 'message': 'An unexpected error occurred'}), 500

    logger.info(f"Attendance app ready at {datetime.now().isoformat(timespec='seconds')}")
    return app


def create_scan_session(app, source, on_result=None):
    """
    Build a scan session feeding this app's ledger from a camera source.

    Args:
        app (Flask): Application returned by ``create_app``
        source: ScanSource providing decoded text
        on_result: Callback for each scan outcome

    Returns:
        ScanSession: Session ready to ``start()``
    """
    components = app.extensions['rollcall']
    return ScanSession(
        source, components['ledger'], on_result=on_result,
        decoder=components['decoder'],
        cooldown=app.config['SCAN_COOLDOWN_SECONDS']
    )


if __name__ == '__main__':
    application = create_app()
    reconciler = application.extensions['rollcall']['reconciler']
    if reconciler.enabled:
        reconciler.start_auto_sync()
    try:
        application.run(host='0.0.0.0', port=5000, debug=application.config['DEBUG'])
    finally:
        reconciler.stop()
