"""
Catalog matching for extracted medicine names
Cascading fuzzy search: full name -> no spaces -> first word -> no digits
"""

import re
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional, Sequence, Tuple

from prescription_scan.config import (
    MATCH_LIMIT,
    MATCH_MAX_WORKERS,
    MATCH_MIN_CONFIDENCE,
    MATCH_MIN_SCORE,
)
from prescription_scan.models import MatchResult, MedicineEntry, SearchHit

logger = logging.getLogger(__name__)


def search_variants(name: str) -> List[str]:
    """
    Ordered search terms for a candidate name

    Variants shorter than 2 characters and repeats are skipped.
    """
    clean = (name or '').lower().strip()
    tokens = clean.split()
    variants = [
        clean,
        re.sub(r'\s+', '', clean),
        tokens[0] if tokens else '',
        re.sub(r'\s+', ' ', re.sub(r'\d+', '', clean)).strip(),
    ]

    ordered = []
    for term in variants:
        if len(term) >= 2 and term not in ordered:
            ordered.append(term)
    return ordered


def _compact(value: str) -> str:
    return re.sub(r'\s+', '', (value or '').lower())


def strengths_overlap(a: str, b: str) -> bool:
    a, b = _compact(a), _compact(b)
    return bool(a) and bool(b) and (a in b or b in a)


def name_matches(query: str, item_name: str) -> bool:
    """Containment either way, or the item name holds the query's first word"""
    query = (query or '').lower().strip()
    item_name = (item_name or '').lower().strip()
    if not query or not item_name:
        return False
    leading = query.split()[0]
    return query in item_name or item_name in query or leading in item_name


class CatalogMatcher:
    """
    Resolve candidate names against the catalog search service.

    The search service must expose ``search(term, min_score=, limit=)``
    returning SearchHit objects best-first. Errors from the service are
    isolated per variant and never abort a batch.
    """

    def __init__(self, search_service, min_score=MATCH_MIN_SCORE, limit=MATCH_LIMIT,
                 min_confidence=MATCH_MIN_CONFIDENCE, max_workers=MATCH_MAX_WORKERS):
        self.search_service = search_service
        self.min_score = min_score
        self.limit = limit
        self.min_confidence = min_confidence
        self.max_workers = max(1, int(max_workers))

    def match(self, name: str, strength: Optional[str] = None) -> MatchResult:
        """
        Resolve one candidate

        Args:
            name: candidate medicine name
            strength: known strength ("500mg") used to break ties

        Returns:
            MatchResult, unmatched when every variant fails or is empty
        """
        try:
            return self._match(name, strength)
        except Exception as e:
            logger.error(f"❌ Matching '{name}' failed: {e}", exc_info=True)
            return MatchResult.unmatched(name, error=True)

    def _match(self, name: str, strength: Optional[str]) -> MatchResult:
        variants = search_variants(name)
        hits: List[SearchHit] = []
        used_term = None
        failures = 0

        for term in variants:
            try:
                hits = self.search_service.search(term, min_score=self.min_score, limit=self.limit)
            except Exception as e:
                failures += 1
                logger.warning(f"⚠️  Search for variant '{term}' failed: {e}")
                continue
            if hits:
                used_term = term
                break

        if not hits:
            logger.info(f"No catalog match for '{name}' ({len(variants)} variants tried)")
            return MatchResult.unmatched(name, error=bool(variants) and failures == len(variants))

        chosen = self.select_best(name, hits, strength)
        if chosen is None or chosen.score < self.min_confidence:
            logger.info(f"Best match for '{name}' below confidence threshold "
                        f"{self.min_confidence}; leaving unmatched")
            return MatchResult.unmatched(name)

        item = chosen.item
        logger.info(f"Matched '{name}' with '{item.name}' "
                    f"(stock: {item.stock_quantity}, price: {item.price}, score: {chosen.score:.2f})")
        return MatchResult(
            query_name=name,
            catalog_item=item,
            confidence_score=chosen.score,
            is_available=item.stock_quantity > 0,
            search_term=used_term,
        )

    @staticmethod
    def select_best(name: str, hits: Sequence[SearchHit],
                    strength: Optional[str] = None) -> Optional[SearchHit]:
        """
        Pick among best-first hits: name+strength match, then name match,
        then strength match, then the service's top result.
        """
        if not hits:
            return None

        query = (name or '').lower().strip()
        by_name = [hit for hit in hits if name_matches(query, hit.item.name)]

        if strength:
            for hit in by_name:
                if strengths_overlap(hit.item.strength, strength):
                    return hit
        if by_name:
            return by_name[0]
        if strength:
            for hit in hits:
                if strengths_overlap(hit.item.strength, strength):
                    return hit
        return hits[0]

    def match_all(self, names: Sequence[str]) -> List[MatchResult]:
        """Resolve candidate names, results in input order"""
        return self._fan_out([(name, None) for name in names])

    def match_entries(self, entries: Sequence[MedicineEntry]) -> List[MatchResult]:
        """Resolve structured entries using their strength for tie-breaks"""
        return self._fan_out([(entry.name, entry.strength) for entry in entries])

    def _fan_out(self, pairs: List[Tuple[str, Optional[str]]]) -> List[MatchResult]:
        if not pairs:
            return []
        if self.max_workers == 1 or len(pairs) == 1:
            return [self.match(name, strength) for name, strength in pairs]

        workers = min(self.max_workers, len(pairs))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix='catalog-match') as pool:
            return list(pool.map(lambda pair: self.match(*pair), pairs))
