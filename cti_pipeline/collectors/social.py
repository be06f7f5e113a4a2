"""
Social post collector.

Posts are scraped by an external browser automation and exported as JSON;
this collector only reads, filters and ranks that export.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..errors import CollectorError
from ..normalizers.schema import DataSource, RawRecord
from .base import RateLimiter, RawObservationSource

logger = logging.getLogger(__name__)

MIN_POST_LENGTH = 50
_SUFFIXES = {'k': 1_000, 'm': 1_000_000}


def engagement_count(value: Any) -> int:
    """Counts as exported: 12, "12", "1,204", "1.2K" or "3M". Anything else is 0."""
    text = str(value if value is not None else '').strip().lower().replace(',', '')
    multiplier = _SUFFIXES.get(text[-1:], 1)
    if multiplier > 1:
        text = text[:-1]
    try:
        return max(0, int(float(text) * multiplier))
    except (ValueError, OverflowError):
        return 0


def ranking(post: Dict[str, Any]) -> int:
    metrics = post.get('metrics') or {}
    if not isinstance(metrics, dict):
        return 0
    return engagement_count(metrics.get('likes')) + 2 * engagement_count(metrics.get('reposts'))


class SocialPostCollector(RawObservationSource):
    """Reads exported posts, dropping replies and short posts."""

    source = DataSource.X_COM

    def __init__(self, posts_file: Optional[Path], config: Optional[Dict[str, Any]] = None,
                 rate_limiter: Optional[RateLimiter] = None):
        super().__init__(config, rate_limiter)
        self.posts_file = Path(posts_file) if posts_file else None
        self.min_length = int(self.config.get('min_length', MIN_POST_LENGTH))

    def is_available(self) -> bool:
        return self.posts_file is not None and self.posts_file.exists()

    def collect(self) -> List[RawRecord]:
        if not self.is_available():
            raise CollectorError(self.name, f"posts file not found: {self.posts_file}")

        self.rate_limiter.wait()
        try:
            with open(self.posts_file, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise CollectorError(self.name, f"cannot read {self.posts_file}: {e}")

        posts = data.get('posts', []) if isinstance(data, dict) else data
        kept = [p for p in posts if isinstance(p, dict) and self.keep(p)]
        kept.sort(key=ranking, reverse=True)
        logger.info(f"Loaded {len(kept)} of {len(posts)} posts from {self.posts_file}")
        return [RawRecord.build(self.source, p.get('timestamp'), p) for p in kept]

    def keep(self, post: Dict[str, Any]) -> bool:
        text = (post.get('text') or '').strip()
        if text.startswith('@'):
            return False
        return len(text) > self.min_length
