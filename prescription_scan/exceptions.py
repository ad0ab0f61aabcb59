"""
Exception hierarchy for the prescription scan pipeline.

Every error carries:
- code:        machine-readable error code
- message:     human-readable description shown to the user
- detail:      optional extra payload (error map, engine name, ...)
- http_status: status used when the error reaches the HTTP layer

Only acquisition and order submission are hard stops; extraction and
matching problems degrade into an editable form instead of raising.
"""


class PrescriptionScanError(Exception):
    """Base class for all pipeline errors."""

    code = 'SCAN_ERROR'
    http_status = 500

    def __init__(self, message, code=None, detail=None, http_status=None):
        self.message = message
        if code is not None:
            self.code = code
        if http_status is not None:
            self.http_status = http_status
        self.detail = detail
        super().__init__(message)

    def to_dict(self):
        payload = {'success': False, 'code': self.code, 'message': self.message}
        if self.detail is not None:
            payload['errors'] = self.detail
        return payload


class ImageRejectedError(PrescriptionScanError):
    """Upload is not an accepted raster image or is too large."""

    code = 'IMAGE_REJECTED'
    http_status = 400


class AcquisitionError(PrescriptionScanError):
    """Recognition engine failed; the user must re-capture."""

    code = 'ACQUISITION_FAILED'
    http_status = 502


class AcquisitionCancelled(AcquisitionError):
    code = 'ACQUISITION_CANCELLED'
    http_status = 409


class ExtractionYieldsNothing(PrescriptionScanError):
    """No medicine candidates in the recognized text. Not fatal."""

    code = 'NO_MEDICINES_DETECTED'
    http_status = 422


class CatalogSearchError(PrescriptionScanError):
    """A single catalog search call failed."""

    code = 'CATALOG_SEARCH_FAILED'
    http_status = 502


class FormValidationError(PrescriptionScanError):
    """Reconciliation form has errors; detail holds the field-keyed map."""

    code = 'VALIDATION_ERROR'
    http_status = 400


class OrderSubmissionError(PrescriptionScanError):
    """Order service rejected the request or could not be reached."""

    code = 'ORDER_SUBMISSION_FAILED'
    http_status = 502


class InvalidStateError(PrescriptionScanError):
    code = 'INVALID_STATE'
    http_status = 409
