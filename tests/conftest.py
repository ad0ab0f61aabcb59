"""
Shared fixtures for all tests.

Fakes for the catalog search service, the order service, the OCR engine
and the image preprocessor live here so no test touches the network or
needs Tesseract / EasyOCR installed.
"""
import io
import threading

import pytest
from PIL import Image

from catalog_service import LocalCatalogSearch
from prescription_scan.catalog_matcher import CatalogMatcher
from prescription_scan.models import CatalogItem, SearchHit
from prescription_scan.order_assembler import OrderAssembler
from prescription_scan.pipeline import ScanSession
from prescription_scan.text_acquisition import RecognitionEngine, TextAcquisition


SCENARIO_A_TEXT = "Patient: John Doe\nParacetamol 500mg 1 tablet twice daily for 5 days"

CATALOG_ROWS = [
    {'id': 1, 'name': 'Paracetamol', 'generic_name': 'Acetaminophen', 'brand_name': 'Crocin',
     'strength': '500mg', 'unit': 'tablet', 'price': 2.5, 'quantity_in_stock': 240},
    {'id': 2, 'name': 'Amoxicillin', 'generic_name': 'Amoxicillin', 'brand_name': 'Mox',
     'strength': '250mg', 'unit': 'capsule', 'price': 6.0, 'quantity_in_stock': 120},
    {'id': 3, 'name': 'Amoxicillin', 'generic_name': 'Amoxicillin', 'brand_name': 'Mox',
     'strength': '500mg', 'unit': 'capsule', 'price': 9.5, 'quantity_in_stock': 80},
    {'id': 4, 'name': 'Ibuprofen', 'generic_name': 'Ibuprofen', 'brand_name': 'Brufen',
     'strength': '400mg', 'unit': 'tablet', 'price': 3.2, 'quantity_in_stock': 0},
    {'id': 5, 'name': 'Cetirizine', 'generic_name': 'Cetirizine', 'brand_name': 'Zyrtec',
     'strength': '10mg', 'unit': 'tablet', 'price': 1.8, 'quantity_in_stock': 300},
]


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FakeSearchService:
    """Scripted search: term -> hits, term -> exception; records every call."""

    def __init__(self, results=None, errors=None):
        self.results = results or {}
        self.errors = errors or {}
        self.calls = []
        self._lock = threading.Lock()

    def search(self, term, min_score=0.2, limit=10):
        with self._lock:
            self.calls.append(term)
        if term in self.errors:
            raise self.errors[term]
        return list(self.results.get(term, []))[:limit]


class FakeOrderService:
    def __init__(self, response=None, error=None):
        self.response = response if response is not None else {'success': True, 'data': {'id': 'ord_1'}}
        self.error = error
        self.payloads = []

    def create(self, payload):
        self.payloads.append(payload)
        if self.error is not None:
            raise self.error
        return self.response


class FakeEngine(RecognitionEngine):
    """Returns canned text; can fail or block until released."""

    name = 'fake'

    def __init__(self, text='', error=None, gate=None):
        self.text = text
        self.error = error
        self.gate = gate
        self.started = threading.Event()

    def recognize(self, image, progress, token):
        self.started.set()
        progress(50)
        if self.gate is not None:
            self.gate.wait(timeout=5)
        if self.error is not None:
            raise self.error
        progress(100)
        return self.text


class FakePreprocessor:
    def preprocess(self, data):
        return data


class FakeTimer:
    """Stands in for threading.Timer; fire() runs the callback on demand."""

    def __init__(self, delay, function):
        self.delay = delay
        self.function = function
        self.daemon = False
        self.started = False
        self.cancelled = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        if not self.cancelled:
            self.function()


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def catalog_items():
    return [CatalogItem.from_api(row) for row in CATALOG_ROWS]


@pytest.fixture
def paracetamol(catalog_items):
    return catalog_items[0]


@pytest.fixture
def cetirizine(catalog_items):
    return catalog_items[4]


@pytest.fixture
def local_catalog():
    return LocalCatalogSearch.from_records(CATALOG_ROWS)


@pytest.fixture
def order_service():
    return FakeOrderService()


@pytest.fixture
def timers():
    """List of FakeTimers created through the returned factory."""
    created = []

    def factory(delay, function):
        timer = FakeTimer(delay, function)
        created.append(timer)
        return timer

    factory.created = created
    return factory


@pytest.fixture
def png_bytes():
    buf = io.BytesIO()
    Image.new('RGB', (200, 100), 'white').save(buf, format='PNG')
    return buf.getvalue()


@pytest.fixture
def make_acquisition():
    def make(text=SCENARIO_A_TEXT, error=None, gate=None):
        return TextAcquisition(engine=FakeEngine(text, error=error, gate=gate),
                               preprocessor=FakePreprocessor())
    return make


@pytest.fixture
def make_session(local_catalog, order_service, make_acquisition):
    def make(text=SCENARIO_A_TEXT, error=None):
        return ScanSession(
            make_acquisition(text, error=error),
            CatalogMatcher(local_catalog, max_workers=2),
            OrderAssembler(order_service),
        )
    return make


@pytest.fixture
def app(local_catalog, order_service, make_acquisition):
    from app import create_app
    flask_app = create_app(catalog=local_catalog, order_service=order_service,
                           acquisition=make_acquisition())
    flask_app.config['TESTING'] = True
    return flask_app


@pytest.fixture
def client(app):
    return app.test_client()


def hit(item, score):
    return SearchHit(item=item, score=score)
