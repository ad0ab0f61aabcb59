"""
Prescription Scan Flask Routes - upload, reconcile, submit
"""

from flask import request, jsonify
from werkzeug.exceptions import RequestEntityTooLarge
import logging
import threading
from collections import OrderedDict

from prescription_scan.config import MAX_IMAGE_BYTES, MAX_OPEN_SESSIONS, OCR_TIMEOUT
from prescription_scan.exceptions import (
    AcquisitionError,
    ImageRejectedError,
    PrescriptionScanError,
)
from prescription_scan.reconciliation import LINE_FIELDS, HEADER_FIELDS
from prescription_scan.text_acquisition import validate_image

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Open scan sessions by id; the oldest is closed once the cap is reached"""

    def __init__(self, capacity=MAX_OPEN_SESSIONS):
        self.capacity = capacity
        self._sessions = OrderedDict()
        self._lock = threading.Lock()

    def add(self, session):
        with self._lock:
            while len(self._sessions) >= self.capacity:
                _, oldest = self._sessions.popitem(last=False)
                logger.info(f"Closing idle session {oldest.id} (registry full)")
                oldest.close()
            self._sessions[session.id] = session

    def get(self, session_id):
        with self._lock:
            return self._sessions.get(session_id)

    def pop(self, session_id):
        with self._lock:
            return self._sessions.pop(session_id, None)

    def __len__(self):
        return len(self._sessions)


def _ok(data=None, status=200, **extra):
    body = {'success': True, 'data': data}
    body.update(extra)
    return jsonify(body), status


def _fail(message, status, errors=None):
    body = {'success': False, 'message': message}
    if errors is not None:
        body['errors'] = errors
    return jsonify(body), status


def _hit_to_dict(hit):
    data = hit.item.to_dict()
    data['score'] = hit.score
    return data


def register_prescription_routes(app, session_factory, manual_search, catalog):
    """
    Register prescription scan routes

    Args:
        session_factory: callable returning a new ScanSession
        manual_search: ManualCatalogSearch used by the lookup endpoint
        catalog: search service; its ``get(id)`` resolves medicine ids
    """
    registry = SessionRegistry()
    app.extensions['prescription_sessions'] = registry

    @app.errorhandler(PrescriptionScanError)
    def handle_scan_error(e):
        if e.http_status >= 500:
            logger.error(f"❌ {e.code}: {e.message}")
        return jsonify(e.to_dict()), e.http_status

    @app.errorhandler(RequestEntityTooLarge)
    def handle_too_large(e):
        return _fail(f'Image size should be less than {MAX_IMAGE_BYTES // (1024 * 1024)}MB', 413)

    def _session_or_404(session_id):
        session = registry.get(session_id)
        if session is None:
            return None, _fail('Scan session not found', 404)
        return session, None

    @app.route('/api/prescription/scan', methods=['POST'])
    def scan_prescription():
        """
        Open a scan session

        JSON ``text`` (already recognized) is processed at once and answered
        with 201. An uploaded ``prescription_image`` is recognized in the
        background: the answer is 202 with the session id, and GET on the
        session reports progress until the form is ready. DELETE cancels it.
        """
        payload = request.get_json(silent=True) or {}
        text = payload.get('text')

        if text is not None:
            session = session_factory()
            try:
                report = session.process_text(str(text))
            except AcquisitionError:
                session.close()
                raise
            registry.add(session)
            logger.info(f"[PRESCRIPTION] Session {session.id} opened with "
                        f"{len(session.form)} medicines")
            return _ok(session.to_dict(), status=201, warnings=report.warnings)

        if 'prescription_image' not in request.files:
            raise ImageRejectedError('Please select a valid image file')
        file = request.files['prescription_image']
        upload = validate_image(file.filename, file.read(), file.mimetype)

        session = session_factory()
        registry.add(session)
        session.scan_in_background(upload, timeout=OCR_TIMEOUT)
        logger.info(f"[PRESCRIPTION] Session {session.id} recognizing {upload.filename}")
        return _ok(session.to_dict(), status=202)

    @app.route('/api/prescription/sessions/<session_id>', methods=['GET'])
    def get_session(session_id):
        session, error = _session_or_404(session_id)
        if error:
            return error
        return _ok(session.to_dict())

    @app.route('/api/prescription/sessions/<session_id>', methods=['PATCH'])
    def update_session_header(session_id):
        session, error = _session_or_404(session_id)
        if error:
            return error

        data = request.get_json(silent=True) or {}
        unknown = [key for key in data if key not in HEADER_FIELDS]
        if unknown:
            return _fail(f"Unknown fields: {', '.join(unknown)}", 400)

        session.update_header(**data)
        return _ok(session.to_dict())

    @app.route('/api/prescription/sessions/<session_id>', methods=['DELETE'])
    def close_session(session_id):
        session = registry.pop(session_id)
        if session is None:
            return _fail('Scan session not found', 404)
        session.close()
        return _ok(None, message='Scan discarded')

    @app.route('/api/prescription/sessions/<session_id>/medicines', methods=['POST'])
    def add_medicine(session_id):
        """
        Add a catalog medicine by ``medicine_id`` (or a ``medicine`` object's id).
        Price and stock always come from the catalog, never from the request.
        """
        session, error = _session_or_404(session_id)
        if error:
            return error

        data = request.get_json(silent=True) or {}
        medicine_id = data.get('medicine_id')
        if medicine_id is None and isinstance(data.get('medicine'), dict):
            medicine_id = data['medicine'].get('id')
        if medicine_id is None or str(medicine_id).strip() == '':
            return _fail('Medicine id is required', 400)

        item = catalog.get(str(medicine_id))
        if item is None:
            return _fail('Medicine not found in catalog', 404)

        if not session.add_medicine(item):
            return _fail(session.form.last_message, 409)
        return _ok(session.to_dict(), status=201, message=session.form.last_message)

    @app.route('/api/prescription/sessions/<session_id>/medicines/detected', methods=['POST'])
    def add_detected_medicines(session_id):
        """Add every in-stock medicine the scan detected"""
        session, error = _session_or_404(session_id)
        if error:
            return error

        added = session.add_detected_medicines()
        if not added:
            return _fail('No available medicines found to add', 404)
        return _ok(session.to_dict(), message=f'Added {added} medicines')

    @app.route('/api/prescription/sessions/<session_id>/medicines/<int:index>', methods=['PATCH'])
    def update_medicine(session_id, index):
        session, error = _session_or_404(session_id)
        if error:
            return error
        if index >= len(session.form):
            return _fail('Medicine not found on prescription', 404)

        data = request.get_json(silent=True) or {}
        unknown = [key for key in data if key != 'quantity' and key not in LINE_FIELDS]
        if unknown:
            return _fail(f"Unknown fields: {', '.join(unknown)}", 400)

        if 'quantity' in data and not session.update_quantity(index, data['quantity']):
            return _fail(session.form.last_message, 400,
                         errors={f'medicine_{index}_quantity': session.form.last_message})
        for field_name in LINE_FIELDS:
            if field_name in data:
                session.update_field(index, field_name, data[field_name])
        return _ok(session.to_dict())

    @app.route('/api/prescription/sessions/<session_id>/medicines/<int:index>', methods=['DELETE'])
    def remove_medicine(session_id, index):
        session, error = _session_or_404(session_id)
        if error:
            return error
        if index >= len(session.form):
            return _fail('Medicine not found on prescription', 404)

        removed = session.remove_medicine(index)
        return _ok(session.to_dict(), message=f"Removed {removed.name}")

    @app.route('/api/prescription/sessions/<session_id>/validate', methods=['POST'])
    def validate_session(session_id):
        session, error = _session_or_404(session_id)
        if error:
            return error

        errors = session.validate()
        return _ok({'valid': not errors, 'errors': errors})

    @app.route('/api/prescription/sessions/<session_id>/submit', methods=['POST'])
    def submit_session(session_id):
        session, error = _session_or_404(session_id)
        if error:
            return error

        order = session.submit()
        registry.pop(session_id)
        return _ok(order, status=201, message='Prescription saved successfully')

    @app.route('/api/prescription/sessions/<session_id>/medicines/search', methods=['GET'])
    def lookup_medicine(session_id):
        """Search-as-you-type for one session; a newer keystroke supersedes this one"""
        session, error = _session_or_404(session_id)
        if error:
            return error

        query = request.args.get('q', '')
        hits = session.lookup(query)
        if hits is None:
            return _ok([], query=query, superseded=True)
        return _ok([_hit_to_dict(hit) for hit in hits], query=query, superseded=False)

    @app.route('/api/medicine-names/search', methods=['GET'])
    def search_medicine_names():
        """Manual catalog lookup for the add-medicine box"""
        query = request.args.get('q', '')
        hits = manual_search.search(query)
        return _ok([_hit_to_dict(hit) for hit in hits], query=query)

    logger.info("✅ Prescription Scan Routes Registered")
