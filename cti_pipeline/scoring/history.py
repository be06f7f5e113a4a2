"""
Historical run cache used for trend and baseline comparison.
"""

import logging
from collections import Counter
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from ..utils.io import atomic_write_json, read_json

logger = logging.getLogger(__name__)

HISTORY_FILE = 'historical-analysis-cache.json'
MAX_HISTORY_ENTRIES = 30
RECENT_WINDOW = 5
TREND_MARGIN = 10


@dataclass
class HistoryEntry:
    timestamp: str
    risk_score: int
    risk_level: str
    correlation_score: float = 0.0
    threat_type: str = 'opportunistic'
    cves: List[str] = field(default_factory=list)
    total_indicators: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'HistoryEntry':
        known = {k: data[k] for k in cls.__dataclass_fields__ if k in data}
        return cls(**known)


@dataclass
class BaselineComparison:
    previous_risk_score: int
    current_risk_score: int
    delta: int
    anomaly_level: str
    trend_direction: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'previousRiskScore': self.previous_risk_score,
            'currentRiskScore': self.current_risk_score,
            'delta': self.delta,
            'anomalyLevel': self.anomaly_level,
            'trendDirection': self.trend_direction,
        }


@dataclass
class HistoricalContext:
    previous: List[HistoryEntry]
    average_risk_score: float
    trend_direction: str
    common_cves: List[str]


class HistoricalCache:
    """Keeps the last runs' scores on disk, newest last."""

    def __init__(self, cache_dir: Path, clock: Callable[[], datetime] = None,
                 max_entries: int = MAX_HISTORY_ENTRIES):
        self.path = Path(cache_dir) / HISTORY_FILE
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.max_entries = max_entries

    def load(self) -> List[HistoryEntry]:
        data = read_json(self.path)
        if not isinstance(data, list):
            return []
        entries = []
        for item in data:
            try:
                entries.append(HistoryEntry.from_dict(item))
            except (TypeError, ValueError) as e:
                logger.warning(f"Dropping malformed history entry: {e}")
        return entries

    def context(self) -> HistoricalContext:
        """
        Summarize previous runs.

        The trend compares the average of the last five runs against the
        older ones: more than ten points higher is worsening, more than ten
        lower is improving.
        """
        entries = self.load()
        if not entries:
            return HistoricalContext([], 50.0, 'stable', [])

        scores = [e.risk_score for e in entries]
        recent = scores[-RECENT_WINDOW:]
        older = scores[:-RECENT_WINDOW]
        recent_avg = sum(recent) / len(recent)
        older_avg = sum(older) / len(older) if older else recent_avg

        if recent_avg > older_avg + TREND_MARGIN:
            trend = 'worsening'
        elif recent_avg < older_avg - TREND_MARGIN:
            trend = 'improving'
        else:
            trend = 'stable'

        counts = Counter(cve for e in entries for cve in set(e.cves))
        common = [cve for cve, n in sorted(counts.items(), key=lambda kv: (-kv[1], kv[0])) if n > 1][:10]
        return HistoricalContext(entries, sum(scores) / len(scores), trend, common)

    def compare(self, current_score: int) -> BaselineComparison:
        """Compare the current score against the previous run."""
        entries = self.load()
        previous = entries[-1].risk_score if entries else current_score
        delta = current_score - previous
        magnitude = abs(delta)
        if magnitude >= 30:
            anomaly = 'severe'
        elif magnitude >= 20:
            anomaly = 'moderate'
        elif magnitude >= 10:
            anomaly = 'mild'
        else:
            anomaly = 'stable'

        if delta >= 5:
            direction = 'increasing'
        elif delta <= -5:
            direction = 'decreasing'
        else:
            direction = 'stable'
        return BaselineComparison(previous, current_score, delta, anomaly, direction)

    def record(self, risk_score: int, risk_level: str, cves: List[str],
               correlation_score: float = 0.0, threat_type: str = 'opportunistic',
               total_indicators: int = 0) -> HistoryEntry:
        entry = HistoryEntry(
            timestamp=self.clock().isoformat(),
            risk_score=risk_score,
            risk_level=risk_level,
            correlation_score=correlation_score,
            threat_type=threat_type,
            cves=sorted(set(cves))[:50],
            total_indicators=total_indicators,
        )
        entries = (self.load() + [entry])[-self.max_entries:]
        atomic_write_json(self.path, [asdict(e) for e in entries])
        logger.info(f"Recorded run in history ({len(entries)} entries)")
        return entry
