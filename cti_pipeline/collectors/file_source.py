"""
Offline source replaying raw records saved by previous runs.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..errors import CollectorError
from ..normalizers.schema import DataSource, RawRecord
from .base import RawObservationSource, read_records

logger = logging.getLogger(__name__)


class FileRecordSource(RawObservationSource):
    """
    Replays the newest saved JSONL file of one source.

    Files are named <source>-<YYYY-MM-DD>.jsonl; the lexically greatest name
    is the newest.
    """

    def __init__(self, source: DataSource, raw_dir: Path,
                 config: Optional[Dict[str, Any]] = None):
        super().__init__(config)
        self.source = source
        self.raw_dir = Path(raw_dir)

    def files(self) -> List[Path]:
        if not self.raw_dir.exists():
            return []
        return sorted(self.raw_dir.glob(f"{self.source.value}-*.jsonl"))

    def is_available(self) -> bool:
        return bool(self.files())

    def collect(self) -> List[RawRecord]:
        files = self.files()
        if not files:
            raise CollectorError(self.name, f"no saved records under {self.raw_dir}")
        latest = files[-1]
        records = [r for r in read_records(latest) if r.source == self.source]
        logger.info(f"Replayed {len(records)} {self.name} records from {latest}")
        return records
