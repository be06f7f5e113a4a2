"""
Correlation package for the CTI pipeline.

Groups extracted indicators into cross-source signals, classifies their time
relationship and exposes a co-occurrence graph of related signals.
"""

from .engine import (
    CorrelationEngine,
    build_cooccurrence_graph,
    campaign_clusters,
    interpret_correlation,
    interpret_pattern,
    SIMULTANEITY_THRESHOLD_HOURS,
    SAMPLE_EVIDENCE_CAP,
    PRECEDENCE_TIE_BREAK,
)

__all__ = [
    'CorrelationEngine',
    'build_cooccurrence_graph',
    'campaign_clusters',
    'interpret_correlation',
    'interpret_pattern',
    'SIMULTANEITY_THRESHOLD_HOURS',
    'SAMPLE_EVIDENCE_CAP',
    'PRECEDENCE_TIE_BREAK',
]
