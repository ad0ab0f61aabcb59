"""
Unit tests for OrderAssembler.
"""
import pytest
import requests

from prescription_scan.exceptions import FormValidationError, OrderSubmissionError
from prescription_scan.order_assembler import OrderAssembler
from prescription_scan.reconciliation import ReconciliationState

from tests.conftest import FakeOrderService


@pytest.fixture
def state(paracetamol, cetirizine):
    state = ReconciliationState(patient_name='John Doe', doctor_name='Jane Roe',
                                prescription_date='2024-05-01', notes='after food')
    state.add_from_catalog_search(paracetamol)
    state.add_from_catalog_search(cetirizine)
    state.update_quantity(0, 2)
    state.update_field(0, 'frequency', 'twice')
    return state


class TestAssemble:

    def test_payload(self, state):
        payload = OrderAssembler.assemble(state.snapshot()).to_payload()

        assert payload['patient_name'] == 'John Doe'
        assert payload['doctor_name'] == 'Jane Roe'
        assert payload['prescription_date'] == '2024-05-01'
        assert payload['notes'] == 'after food'
        assert payload['status'] == 'pending'
        assert payload['total_amount'] == pytest.approx(2.5 * 2 + 1.8)
        assert payload['medicines'][0] == {
            'medicine_id': '1', 'quantity': 2, 'unit': 'tablet',
            'dosage': '', 'frequency': 'twice', 'duration': '',
        }
        assert [m['medicine_id'] for m in payload['medicines']] == ['1', '5']

    def test_invalid_snapshot_refused(self):
        with pytest.raises(FormValidationError) as exc:
            OrderAssembler.assemble(ReconciliationState(patient_name='Jane').snapshot())
        assert 'medicines' in exc.value.detail


class TestSubmit:

    def test_success_clears_state(self, state):
        service = FakeOrderService(response={'success': True, 'data': {'id': 42}})
        order = OrderAssembler(service).submit(state)

        assert order == {'id': 42}
        assert len(service.payloads) == 1
        assert len(state) == 0

    def test_validation_error_never_calls_service(self):
        service = FakeOrderService()
        with pytest.raises(FormValidationError):
            OrderAssembler(service).submit(ReconciliationState(patient_name='Jane'))
        assert service.payloads == []

    def test_rejection_message_is_verbatim(self, state):
        service = FakeOrderService(response={'success': False, 'message': 'Insufficient stock for Paracetamol'})
        with pytest.raises(OrderSubmissionError) as exc:
            OrderAssembler(service).submit(state)

        assert exc.value.message == 'Insufficient stock for Paracetamol'
        assert len(state) == 2

    def test_rejection_without_message(self, state):
        service = FakeOrderService(response={'success': False})
        with pytest.raises(OrderSubmissionError) as exc:
            OrderAssembler(service).submit(state)
        assert exc.value.message == 'Failed to save prescription'

    def test_transport_error_wrapped(self, state):
        service = FakeOrderService(error=requests.ConnectionError('connection refused'))
        with pytest.raises(OrderSubmissionError):
            OrderAssembler(service).submit(state)
        assert len(state) == 2

    def test_no_retry(self, state):
        service = FakeOrderService(response={'success': False, 'message': 'down'})
        with pytest.raises(OrderSubmissionError):
            OrderAssembler(service).submit(state)
        assert len(service.payloads) == 1
