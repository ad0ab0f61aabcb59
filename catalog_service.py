"""
Catalog and order service clients
Remote dashboard API (requests) plus a local rapidfuzz catalog for offline use
"""

import logging
from typing import Dict, Iterable, List, Optional

import pandas as pd
import requests
from rapidfuzz import fuzz, process, utils

from prescription_scan.config import API_BASE_URL, API_TIMEOUT, API_TOKEN
from prescription_scan.exceptions import CatalogSearchError, OrderSubmissionError
from prescription_scan.models import CatalogItem, SearchHit

logger = logging.getLogger(__name__)


def _auth_headers(token: Optional[str]) -> Dict[str, str]:
    headers = {'Content-Type': 'application/json'}
    if token:
        headers['Authorization'] = f'Bearer {token}'
    return headers


# ============== Remote catalog fuzzy search ==============

class RemoteCatalogSearch:
    """
    Fuzzy search against the dashboard's /medicine-names/search endpoint.

    The endpoint ranks with a distance (0 = perfect); with score_is_distance
    the score is flipped so higher always means more relevant here.
    """

    def __init__(self, base_url=API_BASE_URL, token=API_TOKEN, timeout=API_TIMEOUT,
                 session: Optional[requests.Session] = None, score_is_distance=True):
        self.base_url = base_url.rstrip('/')
        self.token = token
        self.timeout = timeout
        self.session = session or requests.Session()
        self.score_is_distance = score_is_distance

    def search(self, term: str, min_score: float = 0.2, limit: int = 10) -> List[SearchHit]:
        url = f"{self.base_url}/medicine-names/search"
        params = {'q': term, 'type': 'all', 'min_score': min_score, 'limit': limit}
        try:
            resp = self.session.get(url, params=params, headers=_auth_headers(self.token),
                                    timeout=self.timeout)
            resp.raise_for_status()
            data = resp.json()
        except (requests.RequestException, ValueError) as e:
            logger.warning(f"[CatalogSearch] Request failed for '{term}': {e}")
            raise CatalogSearchError(f"Catalog search failed: {e}") from e

        if not data.get('success'):
            raise CatalogSearchError(data.get('message') or 'Catalog search failed')

        hits = []
        for row in data.get('data') or []:
            try:
                item = CatalogItem.from_api(row)
            except KeyError:
                logger.debug(f"[CatalogSearch] Skipping row without id: {row}")
                continue
            raw_score = float(row.get('score') or 0.0)
            score = 1.0 - raw_score if self.score_is_distance else raw_score
            hits.append(SearchHit(item=item, score=max(0.0, min(1.0, score))))

        logger.info(f"[CatalogSearch] '{term}' -> {len(hits)} results")
        return hits

    def get(self, item_id: str) -> Optional[CatalogItem]:
        """Fetch one medicine by id; None when the catalog has no such id"""
        url = f"{self.base_url}/medicines/{item_id}"
        try:
            resp = self.session.get(url, headers=_auth_headers(self.token), timeout=self.timeout)
            if resp.status_code == 404:
                return None
            resp.raise_for_status()
            data = resp.json()
        except (requests.RequestException, ValueError) as e:
            logger.warning(f"[CatalogSearch] Lookup failed for id {item_id}: {e}")
            raise CatalogSearchError(f"Catalog lookup failed: {e}") from e

        row = data.get('data') if isinstance(data.get('data'), dict) else data
        try:
            return CatalogItem.from_api(row)
        except KeyError:
            return None


# ============== Local catalog (rapidfuzz) ==============

class LocalCatalogSearch:
    """
    In-memory catalog ranked with rapidfuzz over name, generic and brand names
    """

    SEARCH_FIELDS = ('name', 'generic_name', 'brand_name')

    def __init__(self, items: Iterable[CatalogItem]):
        self.items: List[CatalogItem] = list(items)
        self._choices = {
            field_name: {i: getattr(item, field_name) for i, item in enumerate(self.items)
                         if getattr(item, field_name)}
            for field_name in self.SEARCH_FIELDS
        }
        logger.info(f"✅ Local catalog ready with {len(self.items)} medicines")

    @classmethod
    def from_records(cls, records: Iterable[Dict]) -> 'LocalCatalogSearch':
        return cls(CatalogItem.from_api(row) for row in records)

    @classmethod
    def from_csv(cls, path: str) -> 'LocalCatalogSearch':
        """Load a catalog CSV (id, name, generic_name, ..., quantity_in_stock)"""
        df = pd.read_csv(path)
        df = df.dropna(subset=['id', 'name']).drop_duplicates(subset=['id'], keep='first')
        df = df.astype(object).where(pd.notna(df), None)
        return cls.from_records(df.to_dict(orient='records'))

    def get(self, item_id: str) -> Optional[CatalogItem]:
        for item in self.items:
            if item.id == str(item_id):
                return item
        return None

    def search(self, term: str, min_score: float = 0.2, limit: int = 10) -> List[SearchHit]:
        if not term or not term.strip():
            return []

        best: Dict[int, float] = {}
        for choices in self._choices.values():
            if not choices:
                continue
            matches = process.extract(
                term,
                choices,
                scorer=fuzz.WRatio,
                processor=utils.default_process,
                score_cutoff=min_score * 100,
                limit=None,
            )
            for _, score, index in matches:
                if score > best.get(index, -1):
                    best[index] = score

        ranked = sorted(best.items(), key=lambda pair: (-pair[1], pair[0]))[:limit]
        return [SearchHit(item=self.items[i], score=round(score / 100.0, 4)) for i, score in ranked]


# ============== Order service ==============

class RemoteOrderService:
    """Creates orders through the dashboard's /orders endpoint"""

    def __init__(self, base_url=API_BASE_URL, token=API_TOKEN, timeout=API_TIMEOUT,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip('/')
        self.token = token
        self.timeout = timeout
        self.session = session or requests.Session()

    def create(self, payload: Dict) -> Dict:
        """
        Submit an order

        Returns:
            {'success': True, 'data': ...} or {'success': False, 'message': ...}
        """
        url = f"{self.base_url}/orders"
        try:
            resp = self.session.post(url, json=payload, headers=_auth_headers(self.token),
                                     timeout=self.timeout)
        except requests.RequestException as e:
            logger.error(f"[Orders] ❌ Could not reach order service: {e}")
            raise OrderSubmissionError(f"Could not reach order service: {e}") from e

        try:
            body = resp.json()
        except ValueError:
            body = {}

        if resp.ok and body.get('success', True):
            return {'success': True, 'data': body.get('data', body)}

        message = body.get('message') or f"Order service returned HTTP {resp.status_code}"
        logger.warning(f"[Orders] Order rejected: {message}")
        return {'success': False, 'message': message, 'errors': body.get('errors')}
