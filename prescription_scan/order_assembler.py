"""
Turns a validated reconciliation snapshot into an order and submits it
"""

import logging
from typing import Dict

from prescription_scan.config import ORDER_STATUS_PENDING
from prescription_scan.exceptions import FormValidationError, OrderSubmissionError
from prescription_scan.models import OrderItem, OrderRequest
from prescription_scan.reconciliation import ReconciliationSnapshot, ReconciliationState

logger = logging.getLogger(__name__)


class OrderAssembler:
    """
    Builds OrderRequests and submits them to the order service.

    The order service must expose ``create(payload) -> dict`` returning
    ``{'success': True, 'data': ...}`` or ``{'success': False, 'message': ...}``.
    Failed submissions are never retried here.
    """

    def __init__(self, order_service):
        self.order_service = order_service

    @staticmethod
    def assemble(snapshot: ReconciliationSnapshot) -> OrderRequest:
        if snapshot.errors:
            raise FormValidationError('Please fix the errors before saving', detail=dict(snapshot.errors))

        items = tuple(
            OrderItem(
                medicine_id=line.id,
                quantity=line.quantity,
                unit=line.unit,
                dosage=line.dosage,
                frequency=line.frequency,
                duration=line.duration,
            )
            for line in snapshot.items
        )
        return OrderRequest(
            patient_name=snapshot.patient_name,
            doctor_name=snapshot.doctor_name,
            prescription_date=snapshot.prescription_date,
            notes=snapshot.notes,
            items=items,
            total_amount=round(snapshot.total, 2),
            status=ORDER_STATUS_PENDING,
        )

    def submit(self, state: ReconciliationState) -> Dict:
        """
        Validate, assemble and create the order

        Returns:
            The order service's data on success; the state is cleared.

        Raises:
            FormValidationError: the form has errors (state untouched)
            OrderSubmissionError: the service refused or was unreachable
                (message surfaced verbatim, state untouched)
        """
        request = self.assemble(state.snapshot())
        logger.info(f"📦 Submitting order for '{request.patient_name}' "
                    f"({len(request.items)} medicines, total {request.total_amount:.2f})")

        try:
            result = self.order_service.create(request.to_payload())
        except OrderSubmissionError:
            raise
        except Exception as e:
            logger.error(f"❌ Order submission failed: {e}", exc_info=True)
            raise OrderSubmissionError(str(e)) from e

        if not result or not result.get('success'):
            message = (result or {}).get('message') or 'Failed to save prescription'
            logger.warning(f"⚠️  Order service rejected order: {message}")
            raise OrderSubmissionError(message, detail=(result or {}).get('errors'))

        state.clear()
        logger.info("✅ Order created")
        return result.get('data')
