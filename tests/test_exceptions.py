"""
Unit tests for the exception hierarchy.
"""
import pytest

from prescription_scan.exceptions import (
    AcquisitionCancelled,
    AcquisitionError,
    CatalogSearchError,
    ExtractionYieldsNothing,
    FormValidationError,
    ImageRejectedError,
    InvalidStateError,
    OrderSubmissionError,
    PrescriptionScanError,
)


class TestPrescriptionScanError:

    def test_defaults(self):
        exc = PrescriptionScanError('something broke')
        assert exc.message == 'something broke'
        assert exc.code == 'SCAN_ERROR'
        assert exc.http_status == 500
        assert exc.detail is None

    def test_override_code_and_status(self):
        exc = PrescriptionScanError('bad', code='CUSTOM', http_status=418)
        assert exc.code == 'CUSTOM'
        assert exc.http_status == 418

    def test_to_dict(self):
        assert PrescriptionScanError('bad').to_dict() == {
            'success': False, 'code': 'SCAN_ERROR', 'message': 'bad'}
        assert FormValidationError('fix', detail={'medicines': 'required'}).to_dict()['errors'] == {
            'medicines': 'required'}


@pytest.mark.parametrize('cls,code,status', [
    (ImageRejectedError, 'IMAGE_REJECTED', 400),
    (AcquisitionError, 'ACQUISITION_FAILED', 502),
    (AcquisitionCancelled, 'ACQUISITION_CANCELLED', 409),
    (ExtractionYieldsNothing, 'NO_MEDICINES_DETECTED', 422),
    (CatalogSearchError, 'CATALOG_SEARCH_FAILED', 502),
    (FormValidationError, 'VALIDATION_ERROR', 400),
    (OrderSubmissionError, 'ORDER_SUBMISSION_FAILED', 502),
    (InvalidStateError, 'INVALID_STATE', 409),
])
def test_subclass_defaults(cls, code, status):
    exc = cls('x')
    assert isinstance(exc, PrescriptionScanError)
    assert exc.code == code
    assert exc.http_status == status


def test_cancelled_is_an_acquisition_error():
    assert issubclass(AcquisitionCancelled, AcquisitionError)
