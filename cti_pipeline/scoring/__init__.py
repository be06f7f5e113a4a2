"""Risk scoring and historical baseline tracking."""

from .risk import RiskLevel, confidence_level, map_stage_level, risk_level, risk_score
from .history import BaselineComparison, HistoricalCache, HistoricalContext

__all__ = [
    'RiskLevel', 'confidence_level', 'map_stage_level', 'risk_level', 'risk_score',
    'BaselineComparison', 'HistoricalCache', 'HistoricalContext'
]
