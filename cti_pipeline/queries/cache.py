"""
Per-day cache of generated query suggestions.
"""

import logging
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Callable, List, Optional

from pydantic import ValidationError

from ..normalizers.schema import Priority, QuerySuggestion
from ..utils.io import atomic_write_json, read_json

logger = logging.getLogger(__name__)


class DailyQueryCache:
    """One JSON file per calendar day (UTC) holding that day's suggestions."""

    def __init__(self, cache_dir: Path, clock: Callable[[], datetime] = None):
        self.cache_dir = Path(cache_dir)
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def today(self) -> date:
        now = self.clock()
        if now.tzinfo is not None:
            now = now.astimezone(timezone.utc)
        return now.date()

    def path_for(self, day: date) -> Path:
        return self.cache_dir / f"query-suggestions-{day.isoformat()}.json"

    def get(self) -> Optional[List[QuerySuggestion]]:
        """Today's suggestions, or None on a cold or corrupt cache."""
        data = read_json(self.path_for(self.today()))
        if not isinstance(data, dict) or not isinstance(data.get('suggestions'), list):
            return None
        try:
            return [
                QuerySuggestion(
                    query_string=item['query'],
                    rationale=item.get('rationale', ''),
                    priority=Priority(item.get('priority', 'medium')),
                    tags=item.get('tags', []),
                    origin=item.get('origin', 'heuristic'),
                )
                for item in data['suggestions']
            ]
        except (KeyError, TypeError, ValueError, ValidationError) as e:
            logger.warning(f"Ignoring malformed query cache: {e}")
            return None

    def put(self, suggestions: List[QuerySuggestion], fingerprint: str = ''):
        day = self.today()
        atomic_write_json(self.path_for(day), {
            'date': day.isoformat(),
            'fingerprint': fingerprint,
            'suggestions': [s.to_dict() for s in suggestions],
        })
        logger.debug(f"Cached {len(suggestions)} query suggestions for {day}")
