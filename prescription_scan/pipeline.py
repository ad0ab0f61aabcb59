"""
Prescription scan session
Orchestrates the workflow: intake → OCR → field extraction → catalog matching → editable form → order
"""

import logging
import threading
import uuid
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from prescription_scan.candidate_names import CandidateNameExtractor
from prescription_scan.catalog_matcher import CatalogMatcher
from prescription_scan.exceptions import (
    AcquisitionCancelled,
    AcquisitionError,
    CatalogSearchError,
    ExtractionYieldsNothing,
    InvalidStateError,
)
from prescription_scan.field_extractor import FieldExtractor
from prescription_scan.models import CatalogItem, MatchResult, ScanReport, SearchHit
from prescription_scan.order_assembler import OrderAssembler
from prescription_scan.reconciliation import ReconciliationState
from prescription_scan.search_cache import ManualCatalogSearch
from prescription_scan.text_acquisition import ImageUpload, RecognitionTask, TextAcquisition

logger = logging.getLogger(__name__)

NO_MEDICINES_MESSAGE = 'No medicines detected. Please try a clearer image or add medicines manually.'


class ScanState(Enum):
    IDLE = 'idle'
    EXTRACTING = 'extracting'
    RECONCILING = 'reconciling'
    SUBMITTING = 'submitting'
    COMPLETED = 'completed'
    FAILED = 'failed'


EDITABLE_STATES = (ScanState.RECONCILING, ScanState.FAILED)
SCANNABLE_STATES = (ScanState.IDLE, ScanState.RECONCILING, ScanState.FAILED, ScanState.COMPLETED)


def _unclaimed_candidates(candidates: List[str], document) -> List[str]:
    """Candidates not already covered by a medicine entry or naming the patient or doctor"""
    entry_names = {entry.name.lower() for entry in document.medicine_entries}
    people = [name.lower() for name in (document.patient_name, document.doctor_name) if name]
    unclaimed = []
    for name in candidates:
        key = name.lower()
        if key in entry_names:
            continue
        if any(person in key or key in person for person in people):
            continue
        unclaimed.append(name)
    return unclaimed


class ScanSession:
    """
    One prescription scan from photo to submitted order.

    Acquisition failures end the attempt (back to IDLE, re-capture needed).
    Extraction and matching problems never raise: they leave an editable
    form with warnings. Submission failures move to FAILED and the form
    stays editable.
    """

    def __init__(self, acquisition: TextAcquisition, matcher: CatalogMatcher,
                 assembler: OrderAssembler, manual_search: Optional[ManualCatalogSearch] = None,
                 extractor: Optional[FieldExtractor] = None,
                 candidate_extractor: Optional[CandidateNameExtractor] = None,
                 session_id: Optional[str] = None):
        self.id = session_id or uuid.uuid4().hex
        self.acquisition = acquisition
        self.matcher = matcher
        self.assembler = assembler
        self.manual_search = manual_search
        self.extractor = extractor or FieldExtractor()
        self.candidate_extractor = candidate_extractor or CandidateNameExtractor()

        self.state = ScanState.IDLE
        self.form = ReconciliationState()
        self.report: Optional[ScanReport] = None
        self.task: Optional[RecognitionTask] = None
        self.progress = 0
        self.last_error: Optional[str] = None
        self.order: Optional[Dict] = None
        self.created_at = datetime.now()
        self._generation = 0
        self._lock = threading.RLock()

    # ---------- state helpers ----------

    def _require(self, *states: ScanState):
        if self.state not in states:
            allowed = ', '.join(s.value for s in states)
            raise InvalidStateError(f"Cannot do that while the scan is {self.state.value} "
                                    f"(allowed: {allowed})")

    def _transition(self, new_state: ScanState):
        logger.debug(f"Session {self.id}: {self.state.value} -> {new_state.value}")
        self.state = new_state

    def _editable(self):
        """Editing after a failed submission resumes reconciliation"""
        self._require(*EDITABLE_STATES)
        if self.state is ScanState.FAILED:
            self._transition(ScanState.RECONCILING)

    def _on_progress(self, percent: int):
        self.progress = percent

    # ---------- scanning ----------

    def _begin_scan(self, upload: ImageUpload):
        with self._lock:
            self._require(*SCANNABLE_STATES)
            self._reset()
            self._transition(ScanState.EXTRACTING)
            self.task = self.acquisition.start(upload, progress=self._on_progress)
            logger.info(f"📄 Processing prescription: {upload.filename or '<upload>'} ({upload.size} bytes)")
            return self.task, self._generation

    def _finish_scan(self, task: RecognitionTask, generation: int,
                     timeout: Optional[float]) -> ScanReport:
        try:
            raw_text = task.result(timeout=timeout)
        except AcquisitionCancelled:
            logger.info(f"Session {self.id}: recognition cancelled, result discarded")
            raise
        except AcquisitionError as e:
            with self._lock:
                if self.task is task:
                    self.last_error = e.message
                    self.task = None
                    self._transition(ScanState.IDLE)
            logger.error(f"❌ Recognition failed: {e.message}")
            raise

        with self._lock:
            if task.cancelled or self.task is not task:
                raise AcquisitionCancelled('Scan was closed before recognition finished')
            self.task = None
        return self._process(raw_text, generation)

    def scan(self, upload: ImageUpload, timeout: Optional[float] = None) -> ScanReport:
        """
        Recognize the uploaded image and open the form

        Raises:
            AcquisitionError: OCR failed; session returns to IDLE
            AcquisitionCancelled: session was closed while recognizing
        """
        task, generation = self._begin_scan(upload)
        return self._finish_scan(task, generation, timeout)

    def scan_in_background(self, upload: ImageUpload, timeout: Optional[float] = None) -> threading.Thread:
        """
        Start a scan and return at once; progress, state and last_error
        report how it went.

        Raises:
            InvalidStateError: a scan is already running or being submitted
        """
        task, generation = self._begin_scan(upload)

        def run():
            try:
                self._finish_scan(task, generation, timeout)
            except AcquisitionError:
                pass  # state and last_error already set by _finish_scan
            except Exception as e:
                logger.error(f"❌ Scan {self.id} failed: {e}", exc_info=True)
                with self._lock:
                    if self._generation == generation:
                        self.last_error = str(e)
                        self.task = None
                        self._transition(ScanState.IDLE)

        worker = threading.Thread(target=run, name=f'scan-{self.id[:8]}', daemon=True)
        worker.start()
        return worker

    def process_text(self, raw_text: str) -> ScanReport:
        """Run extraction + matching on already recognized text"""
        with self._lock:
            self._require(*SCANNABLE_STATES)
            self._reset()
            self._transition(ScanState.EXTRACTING)
            generation = self._generation
        return self._process(raw_text, generation)

    def _process(self, raw_text: str, generation: int) -> ScanReport:
        """Extraction and matching run unlocked; the result lands only if no close or rescan happened"""
        start_time = datetime.now()

        logger.info("🔍 Stage 1: Extracting prescription fields...")
        document = self.extractor.extract(raw_text)

        logger.info("🧾 Stage 2: Harvesting candidate medicine names...")
        candidates = self.candidate_extractor.extract(raw_text)

        logger.info("💊 Stage 3: Matching against the catalog...")
        match_results = self.matcher.match_entries(document.medicine_entries)
        extra_candidates = _unclaimed_candidates(candidates, document)
        candidate_matches = self.matcher.match_all(extra_candidates)

        report = ScanReport(
            raw_text=raw_text or '',
            document=document,
            candidate_names=candidates,
            match_results=match_results,
            candidate_matches=candidate_matches,
        )

        if not document.medicine_entries:
            report.add_warning(ExtractionYieldsNothing(NO_MEDICINES_MESSAGE))
            logger.warning(f"⚠️  {NO_MEDICINES_MESSAGE}")
        failed = sum(1 for result in match_results + candidate_matches if result.error)
        if failed:
            report.add_warning(CatalogSearchError(f'Catalog search failed for {failed} medicine(s); '
                                                  f'please match them manually'))

        with self._lock:
            if self._generation != generation or self.state is not ScanState.EXTRACTING:
                raise AcquisitionCancelled('Scan was closed before processing finished')

            logger.info("📝 Stage 4: Building the prescription form...")
            self.form.initialize_from_document(document, match_results)
            self.report = report
            self._transition(ScanState.RECONCILING)

        processing_time = (datetime.now() - start_time).total_seconds()
        matched = sum(1 for result in match_results if result.matched)
        logger.info(f"✅ Extraction completed in {processing_time:.2f}s: "
                    f"{len(document.medicine_entries)} medicines ({matched} matched), "
                    f"{len(extra_candidates)} of {len(candidates)} candidate names searched")
        return report

    def detected_medicines(self) -> List[MatchResult]:
        """Candidate-name matches that are in the catalog and in stock"""
        if self.report is None:
            return []
        seen = set()
        available = []
        for result in self.report.match_results + self.report.candidate_matches:
            if result.matched and result.is_available and result.catalog_item.id not in seen:
                seen.add(result.catalog_item.id)
                available.append(result)
        return available

    def add_detected_medicines(self) -> int:
        """Add every available detected medicine not yet on the form"""
        with self._lock:
            self._editable()
            added = 0
            for result in self.detected_medicines():
                if self.form.add_from_catalog_search(result.catalog_item):
                    added += 1
            return added

    # ---------- reconciliation ----------

    def add_medicine(self, item: CatalogItem) -> bool:
        with self._lock:
            self._editable()
            return self.form.add_from_catalog_search(item)

    def update_quantity(self, index: int, value) -> bool:
        with self._lock:
            self._editable()
            return self.form.update_quantity(index, value)

    def update_field(self, index: int, field_name: str, value):
        with self._lock:
            self._editable()
            self.form.update_field(index, field_name, value)

    def update_header(self, **fields):
        with self._lock:
            self._editable()
            self.form.update_header(**fields)

    def remove_medicine(self, index: int):
        with self._lock:
            self._editable()
            return self.form.remove(index)

    def validate(self) -> Dict[str, str]:
        with self._lock:
            self._require(*EDITABLE_STATES)
            return self.form.validate_form()

    def search_catalog(self, query: str) -> List[SearchHit]:
        if self.manual_search is None:
            return []
        return self.manual_search.search(query)

    def lookup(self, query: str, timeout: float = 10.0) -> Optional[List[SearchHit]]:
        """
        Debounced catalog lookup for the add-medicine box

        Returns:
            The hits, or None when a newer query (or a close) superseded this one

        Raises:
            CatalogSearchError: the search service failed
        """
        if self.manual_search is None:
            return []

        done = threading.Event()
        outcome = {}

        def finish(**result):
            outcome.update(result)
            done.set()

        self.manual_search.schedule(
            query,
            on_results=lambda hits: finish(hits=hits),
            on_error=lambda error: finish(error=error),
            on_superseded=lambda: finish(superseded=True),
        )
        if not done.wait(timeout):
            self.manual_search.cancel()
            return None
        if 'error' in outcome:
            raise outcome['error']
        return outcome.get('hits')

    # ---------- submission ----------

    def submit(self) -> Dict:
        """
        Assemble and create the order

        Raises:
            FormValidationError / OrderSubmissionError: state becomes FAILED,
                the form is kept for editing
        """
        with self._lock:
            self._require(*EDITABLE_STATES)
            self._transition(ScanState.SUBMITTING)
            try:
                order = self.assembler.submit(self.form)
            except Exception as e:
                self.last_error = getattr(e, 'message', str(e))
                self._transition(ScanState.FAILED)
                raise
            self.order = order
            self.last_error = None
            self._transition(ScanState.COMPLETED)
            logger.info(f"✅ Session {self.id} completed")
            return order

    # ---------- teardown ----------

    def _reset(self):
        self._generation += 1
        self.form.clear()
        self.report = None
        self.order = None
        self.progress = 0
        self.last_error = None

    def close(self):
        """Cancel any in-flight work and discard all session data"""
        with self._lock:
            if self.task is not None:
                self.task.cancel()
                self.task = None
            if self.manual_search is not None:
                self.manual_search.cancel()
            self._reset()
            self._transition(ScanState.IDLE)
        logger.info(f"Session {self.id} closed")

    def to_dict(self) -> Dict:
        with self._lock:
            return {
                'id': self.id,
                'state': self.state.value,
                'progress': self.progress,
                'last_error': self.last_error,
                'form': self.form.to_dict(),
                'report': self.report.to_dict() if self.report else None,
                'detected_medicines': [m.to_dict() for m in self.detected_medicines()],
                'order': self.order,
            }
