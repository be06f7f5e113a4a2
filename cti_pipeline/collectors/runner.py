"""
Runs every configured source concurrently, one worker per source.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

from ..errors import CollectorError
from ..normalizers.schema import RawRecord
from .base import RawObservationSource, write_records

logger = logging.getLogger(__name__)


@dataclass
class CollectionResult:
    """Records per source plus the sources that failed."""
    records: Dict[str, List[RawRecord]] = field(default_factory=dict)
    errors: Dict[str, str] = field(default_factory=dict)
    paths: Dict[str, Path] = field(default_factory=dict)

    def all_records(self) -> List[RawRecord]:
        merged: List[RawRecord] = []
        for name in sorted(self.records):
            merged.extend(self.records[name])
        return merged

    def counts(self) -> Dict[str, int]:
        return {name: len(records) for name, records in self.records.items()}


class CollectionRunner:
    """
    Concurrent collection across sources.

    A failing source is logged and contributes no records; the other sources
    still complete.
    """

    def __init__(self, sources: Iterable[RawObservationSource], raw_dir: Optional[Path] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        self.sources = list(sources)
        self.raw_dir = Path(raw_dir) if raw_dir else None
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def run(self, queries: Optional[List[str]] = None) -> CollectionResult:
        """
        Collect from every available source.

        Args:
            queries: Suggested search queries passed to sources that accept them

        Returns:
            CollectionResult with per-source records and errors
        """
        result = CollectionResult()
        active = []
        for source in self.sources:
            if source.is_available():
                active.append(source.with_queries(queries) if queries else source)
            else:
                logger.warning(f"Source {source.name} is not available, skipping")
                result.errors[source.name] = 'not available'

        if not active:
            logger.warning("No sources available for collection")
            return result

        logger.info(f"Starting collection from {len(active)} sources")
        with ThreadPoolExecutor(max_workers=len(active)) as executor:
            future_to_source = {executor.submit(source.collect): source for source in active}
            for future in as_completed(future_to_source):
                source = future_to_source[future]
                try:
                    records = future.result()
                except CollectorError as e:
                    logger.error(f"Collection failed for {source.name}: {e}")
                    result.errors[source.name] = str(e)
                    result.records[source.name] = []
                    continue
                except Exception as e:
                    logger.exception(f"Unexpected error collecting from {source.name}: {e}")
                    result.errors[source.name] = f"{type(e).__name__}: {e}"
                    result.records[source.name] = []
                    continue
                result.records[source.name] = records
                logger.info(f"Completed collection for {source.name}: {len(records)} records")

        if self.raw_dir is not None:
            self._save(result)

        successful = len(active) - len([n for n in result.errors if n in {s.name for s in active}])
        logger.info(f"Collection complete: {successful}/{len(active)} sources successful")
        return result

    def _save(self, result: CollectionResult) -> None:
        date = self.clock().strftime('%Y-%m-%d')
        for name, records in result.records.items():
            if not records:
                continue
            path = self.raw_dir / f"{name}-{date}.jsonl"
            write_records(records, path)
            result.paths[name] = path
