"""
Risk scoring functions.

Deliberately simple and monotonic: the score grows with every severity count
and is bounded to [0, 100]; confidence grows with source diversity and sample
size and is capped at 95.
"""

from enum import Enum
from typing import Optional

SEVERITY_WEIGHTS = {
    'critical': 40,
    'high': 20,
    'medium': 5,
    'low': 1,
}

LEVEL_THRESHOLDS = [
    (75, 'critical'),
    (45, 'elevated'),
    (15, 'moderate'),
]

CONFIDENCE_BASE = 50
CONFIDENCE_PER_SOURCE = 10
CONFIDENCE_CAP = 95


class RiskLevel(str, Enum):
    """Artifact-level risk classification."""

    CRITICAL = "critical"
    ELEVATED = "elevated"
    MODERATE = "moderate"
    LOW = "low"


def risk_score(critical: int, high: int, medium: int, low: int) -> int:
    """min(100, critical*40 + high*20 + medium*5 + low*1), never negative."""
    counts = [max(0, int(c)) for c in (critical, high, medium, low)]
    raw = sum(count * weight for count, weight in zip(counts, SEVERITY_WEIGHTS.values()))
    return min(100, raw)


def risk_level(score: int) -> RiskLevel:
    for threshold, level in LEVEL_THRESHOLDS:
        if score >= threshold:
            return RiskLevel(level)
    return RiskLevel.LOW


def confidence_level(distinct_sources: int, observations: int,
                     has_analysis: bool = False) -> int:
    """
    Confidence in the assessment.

    Args:
        distinct_sources: Sources that contributed at least one record
        observations: Number of assessed observations
        has_analysis: A reasoning-service narrative was produced

    Returns:
        Confidence between 0 and 95
    """
    confidence = CONFIDENCE_BASE + CONFIDENCE_PER_SOURCE * max(0, distinct_sources)
    if observations >= 10:
        confidence += 15
    elif observations >= 5:
        confidence += 10
    if has_analysis:
        confidence += 10
    return min(CONFIDENCE_CAP, confidence)


_STAGE_LEVEL_MAP = {
    'critical': RiskLevel.CRITICAL,
    'high': RiskLevel.ELEVATED,
    'medium': RiskLevel.MODERATE,
    'low': RiskLevel.LOW,
}


def map_stage_level(level: Optional[str]) -> Optional[RiskLevel]:
    """Translate an assessment level (critical/high/medium/low) to a RiskLevel."""
    if not level:
        return None
    return _STAGE_LEVEL_MAP.get(level.strip().lower())
