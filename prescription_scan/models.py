"""
Data model for prescription digitization
"""

from dataclasses import dataclass, field, asdict
from typing import Dict, List, Optional, Tuple

from prescription_scan.config import DEFAULT_UNIT, TEMP_ID_PREFIX


@dataclass(frozen=True)
class MedicineEntry:
    """One medicine line parsed out of the recognized text"""
    name: str
    strength: str
    quantity: int = 1
    dosage: str = ''
    frequency: str = ''
    duration: str = ''
    source_line: str = ''
    unit: str = DEFAULT_UNIT


@dataclass(frozen=True)
class PrescriptionDocument:
    """Immutable snapshot of the fields recovered from one scan"""
    patient_name: str = ''
    doctor_name: str = ''
    medicine_entries: Tuple[MedicineEntry, ...] = ()

    def to_dict(self) -> Dict:
        return asdict(self)


def _to_float(value, default=0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _to_int(value, default=0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


@dataclass(frozen=True)
class CatalogItem:
    """A medicine as the catalog service knows it (read-only here)"""
    id: str
    name: str
    generic_name: str = ''
    brand_name: str = ''
    strength: str = ''
    unit: str = ''
    price: float = 0.0
    stock_quantity: int = 0

    @classmethod
    def from_api(cls, data: Dict) -> 'CatalogItem':
        """Build from a catalog JSON row (quantity_in_stock or stock_quantity)"""
        stock = data.get('quantity_in_stock', data.get('stock_quantity'))
        return cls(
            id=str(data['id']),
            name=data.get('name') or '',
            generic_name=data.get('generic_name') or '',
            brand_name=data.get('brand_name') or '',
            strength=data.get('strength') or '',
            unit=data.get('unit') or '',
            price=_to_float(data.get('price')),
            stock_quantity=_to_int(stock),
        )

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass(frozen=True)
class SearchHit:
    """A catalog item plus the search service's relevance score"""
    item: CatalogItem
    score: float


@dataclass(frozen=True)
class MatchResult:
    query_name: str
    catalog_item: Optional[CatalogItem] = None
    confidence_score: float = 0.0
    is_available: bool = False
    search_term: Optional[str] = None
    error: bool = False

    @property
    def matched(self) -> bool:
        return self.catalog_item is not None

    @classmethod
    def unmatched(cls, query_name: str, error: bool = False) -> 'MatchResult':
        return cls(query_name=query_name, error=error)

    def to_dict(self) -> Dict:
        return {
            'query_name': self.query_name,
            'catalog_item': self.catalog_item.to_dict() if self.catalog_item else None,
            'confidence_score': self.confidence_score,
            'is_available': self.is_available,
            'search_term': self.search_term,
            'error': self.error,
        }


@dataclass
class MedicineLineItem:
    """One editable row of the reconciliation form"""
    id: str
    name: str
    strength: str = ''
    quantity: int = 1
    unit: str = DEFAULT_UNIT
    price: float = 0.0
    stock: int = 0
    dosage: str = ''
    frequency: str = ''
    duration: str = ''
    is_extracted: bool = False

    @property
    def is_bound(self) -> bool:
        """True when the row points at a real catalog id"""
        return bool(self.id) and not self.id.startswith(TEMP_ID_PREFIX)

    @property
    def line_total(self) -> float:
        return self.price * self.quantity

    @classmethod
    def from_catalog_item(cls, item: CatalogItem, **overrides) -> 'MedicineLineItem':
        values = dict(
            id=item.id,
            name=item.name,
            strength=item.strength,
            unit=item.unit or DEFAULT_UNIT,
            price=item.price,
            stock=item.stock_quantity,
        )
        values.update(overrides)
        return cls(**values)

    def to_dict(self) -> Dict:
        data = asdict(self)
        data['is_bound'] = self.is_bound
        return data


@dataclass(frozen=True)
class OrderItem:
    medicine_id: str
    quantity: int
    unit: str
    dosage: str = ''
    frequency: str = ''
    duration: str = ''


@dataclass(frozen=True)
class OrderRequest:
    patient_name: str
    doctor_name: str
    prescription_date: str
    notes: str
    items: Tuple[OrderItem, ...]
    total_amount: float
    status: str = 'pending'

    def to_payload(self) -> Dict:
        """Wire format expected by the order service"""
        return {
            'patient_name': self.patient_name,
            'doctor_name': self.doctor_name,
            'prescription_date': self.prescription_date,
            'notes': self.notes,
            'medicines': [asdict(item) for item in self.items],
            'status': self.status,
            'total_amount': self.total_amount,
        }


@dataclass
class ScanReport:
    """What the extraction stage produced for one scan"""
    raw_text: str
    document: PrescriptionDocument
    candidate_names: List[str] = field(default_factory=list)
    match_results: List[MatchResult] = field(default_factory=list)
    candidate_matches: List[MatchResult] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    warning_codes: List[str] = field(default_factory=list)

    def add_warning(self, error):
        """Record a non-fatal PrescriptionScanError for the user"""
        self.warnings.append(error.message)
        self.warning_codes.append(error.code)

    def to_dict(self) -> Dict:
        return {
            'raw_text': self.raw_text,
            'document': self.document.to_dict(),
            'candidate_names': list(self.candidate_names),
            'match_results': [m.to_dict() for m in self.match_results],
            'candidate_matches': [m.to_dict() for m in self.candidate_matches],
            'warnings': list(self.warnings),
            'warning_codes': list(self.warning_codes),
        }
