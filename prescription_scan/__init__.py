"""
Prescription scanning for pharmacy inventory
Turns a prescription photo into a validated, catalog-bound order
"""

from .catalog_matcher import CatalogMatcher
from .field_extractor import FieldExtractor, extract_prescription_fields
from .candidate_names import CandidateNameExtractor, extract_candidate_names
from .order_assembler import OrderAssembler
from .pipeline import ScanSession, ScanState
from .reconciliation import ReconciliationState
from .search_cache import ManualCatalogSearch, SearchCache
from .text_acquisition import TextAcquisition, validate_image

__version__ = "1.0.0"
__all__ = [
    'CandidateNameExtractor',
    'CatalogMatcher',
    'FieldExtractor',
    'ManualCatalogSearch',
    'OrderAssembler',
    'ReconciliationState',
    'ScanSession',
    'ScanState',
    'SearchCache',
    'TextAcquisition',
    'extract_candidate_names',
    'extract_prescription_fields',
    'validate_image',
]
