"""Data model, text cleanup, indicator extraction and threat assessment."""

from .schema import (
    CorrelatedData, CorrelationSignal, CorrelationSummary, DataSource, DominantPattern,
    Indicator, IndicatorKind, Precedence, Priority, QuerySuggestion, RawRecord,
    ShodanHost, SocialPost, SourceChannel, SourceObservation, TemporalAnalysis,
    ThreatCategory, ThreatSeverity, parse_timestamp
)
from .extractor import IndicatorExtractor, merge_indicators
from .threats import ProcessedThreat, ThreatAssessor, ThreatSummary
from .text import normalize_text

__all__ = [
    'CorrelatedData', 'CorrelationSignal', 'CorrelationSummary', 'DataSource',
    'DominantPattern', 'Indicator', 'IndicatorKind', 'Precedence', 'Priority',
    'QuerySuggestion', 'RawRecord', 'ShodanHost', 'SocialPost', 'SourceChannel',
    'SourceObservation', 'TemporalAnalysis', 'ThreatCategory', 'ThreatSeverity',
    'parse_timestamp', 'IndicatorExtractor', 'merge_indicators',
    'ProcessedThreat', 'ThreatAssessor', 'ThreatSummary', 'normalize_text'
]
