"""
Editable prescription form for one scan session

Merges extraction output with catalog matches, owns validation and totals.
All mutations go through this class; after each call:
quantity >= 1, one row per bound catalog id, total == sum(price * quantity).
"""

import copy
import logging
import uuid
from dataclasses import dataclass, field
from datetime import date
from itertools import zip_longest
from typing import Dict, List, Optional, Sequence, Tuple

from prescription_scan.config import DEFAULT_UNIT, TEMP_ID_PREFIX
from prescription_scan.models import (
    CatalogItem,
    MatchResult,
    MedicineEntry,
    MedicineLineItem,
    PrescriptionDocument,
)

logger = logging.getLogger(__name__)

LINE_FIELDS = ('dosage', 'frequency', 'duration', 'name', 'strength', 'unit')
HEADER_FIELDS = ('patient_name', 'doctor_name', 'prescription_date', 'notes')

DUPLICATE_MESSAGE = 'Medicine already added to prescription'
QUANTITY_MESSAGE = 'Quantity must be at least 1'


def temp_id() -> str:
    return f"{TEMP_ID_PREFIX}{uuid.uuid4().hex}"


@dataclass(frozen=True)
class ReconciliationSnapshot:
    """Point-in-time copy of the form handed to the order assembler"""
    patient_name: str
    doctor_name: str
    prescription_date: str
    notes: str
    items: Tuple[MedicineLineItem, ...]
    total: float
    errors: Dict[str, str] = field(default_factory=dict)

    @property
    def is_valid(self) -> bool:
        return not self.errors


class ReconciliationState:
    """Single source of truth for the form during a scan session"""

    def __init__(self, patient_name: str = '', doctor_name: str = '',
                 prescription_date: Optional[str] = None, notes: str = ''):
        self.patient_name = patient_name
        self.doctor_name = doctor_name
        self.prescription_date = prescription_date or date.today().isoformat()
        self.notes = notes
        self.items: List[MedicineLineItem] = []
        self.last_message = ''

    # ---------- derived ----------

    @property
    def total(self) -> float:
        return sum(item.price * item.quantity for item in self.items)

    def bound_ids(self) -> List[str]:
        return [item.id for item in self.items if item.is_bound]

    def __len__(self):
        return len(self.items)

    # ---------- building ----------

    def initialize_from_document(self, document: PrescriptionDocument,
                                 match_results: Sequence[Optional[MatchResult]] = ()):
        """
        One row per medicine entry; match_results is aligned with the entries.

        Unmatched entries stay as editable placeholders with a temporary id,
        zero price and zero stock.
        """
        self.patient_name = document.patient_name
        self.doctor_name = document.doctor_name
        self.items = []

        entries = document.medicine_entries
        for entry, result in zip_longest(entries, list(match_results)[:len(entries)]):
            self.items.append(self._line_from_entry(entry, result))

        matched = sum(1 for item in self.items if item.is_bound)
        logger.info(f"Form initialized with {len(self.items)} medicines ({matched} matched)")

    def _line_from_entry(self, entry: MedicineEntry, result: Optional[MatchResult]) -> MedicineLineItem:
        instructions = dict(
            quantity=max(1, entry.quantity),
            dosage=entry.dosage,
            frequency=entry.frequency,
            duration=entry.duration,
            is_extracted=True,
        )

        item = result.catalog_item if result is not None else None
        if item is not None and item.id in self.bound_ids():
            logger.warning(f"⚠️  '{entry.name}' matched '{item.name}' which is already on the form; "
                           f"keeping it unmatched")
            item = None

        if item is None:
            return MedicineLineItem(
                id=temp_id(),
                name=entry.name,
                strength=entry.strength,
                unit=entry.unit or DEFAULT_UNIT,
                price=0.0,
                stock=0,
                **instructions,
            )

        return MedicineLineItem.from_catalog_item(
            item,
            strength=item.strength or entry.strength,
            unit=item.unit or entry.unit or DEFAULT_UNIT,
            **instructions,
        )

    # ---------- mutations ----------

    def _reject(self, message: str) -> bool:
        self.last_message = message
        logger.info(f"Rejected edit: {message}")
        return False

    def _item(self, index: int) -> MedicineLineItem:
        if not isinstance(index, int) or index < 0 or index >= len(self.items):
            raise IndexError(f"No medicine at position {index}")
        return self.items[index]

    def add_from_catalog_search(self, item: CatalogItem) -> bool:
        """Append a catalog medicine with quantity 1; no-op if already present"""
        if item.id in self.bound_ids():
            return self._reject(DUPLICATE_MESSAGE)

        self.items.append(MedicineLineItem.from_catalog_item(item, quantity=1))
        self.last_message = 'Medicine added to prescription'
        return True

    def update_quantity(self, index: int, value) -> bool:
        line = self._item(index)
        if isinstance(value, bool):
            return self._reject(QUANTITY_MESSAGE)
        if isinstance(value, float) and not value.is_integer():
            return self._reject('Quantity must be a whole number')
        try:
            quantity = int(value)
        except (TypeError, ValueError):
            return self._reject('Quantity must be a whole number')
        if quantity < 1:
            return self._reject(QUANTITY_MESSAGE)

        line.quantity = quantity
        return True

    def update_field(self, index: int, field_name: str, value):
        """Free-text edit of an instruction field (no validation)"""
        if field_name not in LINE_FIELDS:
            raise ValueError(f"Field '{field_name}' cannot be edited")
        line = self._item(index)
        setattr(line, field_name, '' if value is None else str(value))

    def update_header(self, **fields):
        for name, value in fields.items():
            if name not in HEADER_FIELDS:
                raise ValueError(f"Field '{name}' cannot be edited")
            setattr(self, name, '' if value is None else str(value))

    def remove(self, index: int) -> MedicineLineItem:
        line = self._item(index)
        del self.items[index]
        return line

    def clear(self):
        self.items = []
        self.patient_name = ''
        self.doctor_name = ''
        self.notes = ''
        self.prescription_date = date.today().isoformat()
        self.last_message = ''

    # ---------- validation ----------

    def validate_form(self) -> Dict[str, str]:
        """Field-keyed error map; empty means the form can be submitted"""
        errors = {}

        if not (self.patient_name or '').strip():
            errors['patientName'] = 'Patient name is required'

        if not self.items:
            errors['medicines'] = 'At least one medicine is required'

        for index, line in enumerate(self.items):
            if not line.quantity or line.quantity < 1:
                errors[f'medicine_{index}_quantity'] = QUANTITY_MESSAGE
            # Stock is only checked for real catalog rows with known stock
            if line.is_bound and line.stock > 0 and line.quantity > line.stock:
                errors[f'medicine_{index}_stock'] = 'Quantity exceeds available stock'

        return errors

    def is_valid(self) -> bool:
        return not self.validate_form()

    def snapshot(self) -> ReconciliationSnapshot:
        return ReconciliationSnapshot(
            patient_name=self.patient_name.strip(),
            doctor_name=(self.doctor_name or '').strip(),
            prescription_date=self.prescription_date,
            notes=self.notes or '',
            items=tuple(copy.deepcopy(self.items)),
            total=self.total,
            errors=self.validate_form(),
        )

    def to_dict(self) -> Dict:
        return {
            'patient_name': self.patient_name,
            'doctor_name': self.doctor_name,
            'prescription_date': self.prescription_date,
            'notes': self.notes,
            'medicines': [item.to_dict() for item in self.items],
            'total': self.total,
            'errors': self.validate_form(),
            'message': self.last_message,
        }
