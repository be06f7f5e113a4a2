"""
Persistent translation cache keyed by content hash.
"""

import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from ..normalizers.schema import parse_timestamp
from ..utils.io import atomic_write_json, read_json

logger = logging.getLogger(__name__)

CACHE_FILE = 'translation-cache.json'


@dataclass
class CacheEntry:
    """One cached translation, content-addressed by the hash of its input."""
    key_hash: str
    input_text: str
    output_text: str
    created_at: str
    ttl: float
    producer_id: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'keyHash': self.key_hash,
            'inputText': self.input_text,
            'outputText': self.output_text,
            'createdAt': self.created_at,
            'ttl': self.ttl,
            'producerId': self.producer_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CacheEntry':
        return cls(
            key_hash=data['keyHash'],
            input_text=data['inputText'],
            output_text=data['outputText'],
            created_at=data['createdAt'],
            ttl=float(data['ttl']),
            producer_id=data.get('producerId', ''),
        )


def content_hash(text: str) -> str:
    return hashlib.md5(text.encode('utf-8')).hexdigest()


class TranslationCache:
    """
    get/put/flush cache with a TTL and an injectable clock.

    The file is read once on load and written once on flush; expired entries
    are pruned on load and never returned by get.
    """

    def __init__(self, cache_dir: Path, ttl_seconds: float = 7 * 24 * 3600,
                 model: str = '', clock: Callable[[], datetime] = None):
        self.path = Path(cache_dir) / CACHE_FILE
        self.ttl = timedelta(seconds=ttl_seconds)
        self.model = model
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.entries: Dict[str, CacheEntry] = {}
        self._dirty = False

    def _expired(self, entry: CacheEntry) -> bool:
        written = parse_timestamp(entry.created_at)
        return written is None or self.clock() - written > timedelta(seconds=entry.ttl)

    def load(self) -> int:
        """Load unexpired entries; a missing or corrupt file is a cold start."""
        data = read_json(self.path)
        self.entries = {}
        if isinstance(data, dict):
            for key, raw in data.items():
                try:
                    entry = CacheEntry.from_dict(raw)
                except (KeyError, TypeError, ValueError):
                    continue
                if entry.key_hash == key and not self._expired(entry):
                    self.entries[key] = entry
        logger.info(f"Loaded {len(self.entries)} cached translations")
        return len(self.entries)

    def get(self, text: str) -> Optional[str]:
        entry = self.entries.get(content_hash(text))
        if entry is None or entry.input_text != text or self._expired(entry):
            return None
        return entry.output_text

    def put(self, text: str, translated: str):
        key = content_hash(text)
        self.entries[key] = CacheEntry(
            key_hash=key,
            input_text=text,
            output_text=translated,
            created_at=self.clock().isoformat(),
            ttl=self.ttl.total_seconds(),
            producer_id=self.model,
        )
        self._dirty = True

    def flush(self):
        if not self._dirty:
            return
        atomic_write_json(self.path, {key: entry.to_dict() for key, entry in self.entries.items()})
        self._dirty = False
        logger.debug(f"Flushed {len(self.entries)} translations to {self.path}")
