"""
Manual catalog lookup while typing: bounded result cache + debounce
"""

import logging
import threading
from collections import OrderedDict
from typing import Callable, List, Optional

from prescription_scan.config import (
    MANUAL_SEARCH_LIMIT,
    MANUAL_SEARCH_MIN_QUERY,
    MANUAL_SEARCH_MIN_SCORE,
    SEARCH_CACHE_CAPACITY,
    SEARCH_DEBOUNCE_SECONDS,
)
from prescription_scan.models import SearchHit

logger = logging.getLogger(__name__)


class SearchCache:
    """Fixed-capacity cache; once full the oldest inserted entry is evicted"""

    def __init__(self, capacity: int = SEARCH_CACHE_CAPACITY):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._entries: 'OrderedDict[str, List[SearchHit]]' = OrderedDict()
        self._lock = threading.Lock()

    @staticmethod
    def key(query: str) -> str:
        return ' '.join(query.lower().split())

    def get(self, query: str) -> Optional[List[SearchHit]]:
        with self._lock:
            hits = self._entries.get(self.key(query))
            return list(hits) if hits is not None else None

    def put(self, query: str, hits: List[SearchHit]):
        key = self.key(query)
        with self._lock:
            if key in self._entries:
                self._entries[key] = list(hits)
                return
            while len(self._entries) >= self.capacity:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug(f"Evicted cached search '{evicted}'")
            self._entries[key] = list(hits)

    def clear(self):
        with self._lock:
            self._entries.clear()

    def __contains__(self, query: str) -> bool:
        return self.key(query) in self._entries

    def __len__(self):
        return len(self._entries)


class ManualCatalogSearch:
    """
    Catalog lookup for the "add medicine" box.

    ``search`` answers immediately (from cache when possible); ``schedule``
    debounces keystrokes so only the last query in a burst hits the service.
    """

    def __init__(self, search_service, cache: Optional[SearchCache] = None,
                 delay: float = SEARCH_DEBOUNCE_SECONDS, min_query_length: int = MANUAL_SEARCH_MIN_QUERY,
                 min_score: float = MANUAL_SEARCH_MIN_SCORE, limit: int = MANUAL_SEARCH_LIMIT,
                 timer_factory: Callable = threading.Timer):
        self.search_service = search_service
        self.cache = cache if cache is not None else SearchCache()
        self.delay = delay
        self.min_query_length = min_query_length
        self.min_score = min_score
        self.limit = limit
        self.timer_factory = timer_factory
        self._pending = None
        self._lock = threading.Lock()

    def search(self, query: str) -> List[SearchHit]:
        """Search now; raises whatever the search service raises"""
        query = (query or '').strip()
        if len(query) < self.min_query_length:
            return []

        cached = self.cache.get(query)
        if cached is not None:
            logger.debug(f"Cache hit for '{query}'")
            return cached

        hits = self.search_service.search(query, min_score=self.min_score, limit=self.limit)
        self.cache.put(query, hits)
        return hits

    def schedule(self, query: str, on_results: Callable[[List[SearchHit]], None],
                 on_error: Optional[Callable[[Exception], None]] = None,
                 on_superseded: Optional[Callable[[], None]] = None):
        """Debounced search: supersedes any pending query"""
        self.cancel()

        def run():
            with self._lock:
                if self._pending is not None and self._pending[0] is timer:
                    self._pending = None
            try:
                hits = self.search(query)
            except Exception as e:
                logger.warning(f"⚠️  Manual search for '{query}' failed: {e}")
                if on_error is not None:
                    on_error(e)
                return
            on_results(hits)

        timer = self.timer_factory(self.delay, run)
        if hasattr(timer, 'daemon'):
            timer.daemon = True
        with self._lock:
            self._pending = (timer, on_superseded)
        timer.start()
        return timer

    def cancel(self):
        """Drop the pending query, if any, and tell its caller it was superseded"""
        with self._lock:
            pending, self._pending = self._pending, None
        if pending is not None:
            timer, on_superseded = pending
            timer.cancel()
            if on_superseded is not None:
                on_superseded()
