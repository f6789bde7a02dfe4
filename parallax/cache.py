import logging
import threading
from typing import Dict, NamedTuple, Optional

from .models import TranslationMode

logger = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES = 500


class CacheKey(NamedTuple):
    text: str
    target_language: str
    mode: TranslationMode


def make_key(text: str, target_language: str, mode: TranslationMode) -> CacheKey:
    return CacheKey(text.strip(), target_language, mode)


class TranslationCache:
    """Bounded translation cache shared by the online and offline backends.

    A single lock guards the whole mapping. When the bound is reached the
    map is emptied before the new entry goes in, so memory stays bounded
    without tracking recency.
    """

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES):
        self.max_entries = max_entries
        self.evictions = 0
        self._entries: Dict[CacheKey, str] = {}
        self._lock = threading.Lock()

    def get(self, key: CacheKey) -> Optional[str]:
        with self._lock:
            return self._entries.get(key)

    def put(self, key: CacheKey, value: str):
        with self._lock:
            if key not in self._entries and len(self._entries) >= self.max_entries:
                self._entries.clear()
                self.evictions += 1
                logger.debug("Translation cache full (%d); cleared", self.max_entries)
            self._entries[key] = value

    def clear(self):
        with self._lock:
            self._entries.clear()

    def __len__(self):
        with self._lock:
            return len(self._entries)
