"""
Base class for raw observation sources.

Every collector produces timestamped, source-tagged RawRecords. The payload
shape is private to the collector and the extractor; everything downstream
only sees typed indicators.
"""

import json
import logging
import threading
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

from ..normalizers.schema import DataSource, RawRecord

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Requests-per-minute limiter with an extra cooldown between calls.

    Each collector owns its own limiter; the clock and sleep functions are
    injectable so tests never wait.
    """

    def __init__(self, rate_limit_per_minute: int = 60, cooldown_seconds: float = 0.0,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], None] = time.sleep):
        self.interval = 60.0 / rate_limit_per_minute if rate_limit_per_minute > 0 else 0.0
        self.cooldown_seconds = max(0.0, cooldown_seconds)
        self.clock = clock
        self.sleep = sleep
        self._last: Optional[float] = None
        self._lock = threading.Lock()

    def wait(self) -> float:
        """Block until the next request is allowed; returns the time slept."""
        with self._lock:
            waited = 0.0
            if self._last is not None:
                required = max(self.interval, self.cooldown_seconds)
                elapsed = self.clock() - self._last
                if elapsed < required:
                    waited = required - elapsed
                    self.sleep(waited)
            self._last = self.clock()
            return waited


class RawObservationSource(ABC):
    """Abstract base class for collectors."""

    source: DataSource

    def __init__(self, config: Optional[Dict[str, Any]] = None,
                 rate_limiter: Optional[RateLimiter] = None):
        """
        Initialize the collector.

        Args:
            config: Source section of the pipeline configuration
            rate_limiter: Limiter owned by this collector
        """
        self.config = config or {}
        self.rate_limiter = rate_limiter or RateLimiter(
            rate_limit_per_minute=int(self.config.get('rate_limit_per_minute', 60)),
            cooldown_seconds=float(self.config.get('cooldown_seconds', 0.0)),
        )

    @property
    def name(self) -> str:
        return self.source.value

    @abstractmethod
    def is_available(self) -> bool:
        """
        Check if the source is configured well enough to run.

        Returns:
            True if the source can be collected
        """

    @abstractmethod
    def collect(self) -> List[RawRecord]:
        """
        Collect raw observations.

        Returns:
            Records from this source

        Raises:
            CollectorError: Authentication, rate-limit or network failure
        """

    def with_queries(self, queries: Iterable[str]) -> 'RawObservationSource':
        """Collectors that accept search queries override this; others ignore them."""
        return self


def write_records(records: Iterable[RawRecord], output_file: Path) -> int:
    """
    Write records to a JSONL file.

    Args:
        records: Records to persist
        output_file: Target file, replaced if it exists

    Returns:
        Number of records written
    """
    output_file = Path(output_file)
    output_file.parent.mkdir(parents=True, exist_ok=True)
    count = 0
    with open(output_file, 'w', encoding='utf-8') as f:
        for record in records:
            f.write(json.dumps(record.to_dict(), default=str) + '\n')
            count += 1
    logger.info(f"Wrote {count} records to {output_file}")
    return count


def read_records(input_file: Path) -> List[RawRecord]:
    """Read a JSONL file written by write_records, skipping malformed lines."""
    records = []
    with open(input_file, 'r', encoding='utf-8') as f:
        for line_no, line in enumerate(f, 1):
            line = line.strip()
            if not line:
                continue
            try:
                records.append(RawRecord.from_dict(json.loads(line)))
            except (ValueError, KeyError, TypeError) as e:
                logger.warning(f"Skipping malformed record at {input_file}:{line_no}: {e}")
    return records
