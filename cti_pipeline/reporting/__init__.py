"""Artifact assembly, assessment layer and publishing."""

from .assessment import (
    AssessmentLayer, DataFreshness, IndicatorStatistics, QuantifiedCorrelation, RiskComputation,
    ThreatClassification, build_assessment_layer, classify_threat, indicator_statistics,
    measure_freshness, quantify_correlation
)
from .builder import ARTIFACT_VERSION, ArtifactBuilder, clean_llm_text, format_category, mask_ip
from .publisher import DEFAULT_FILENAME, ArtifactPublisher

__all__ = [
    'AssessmentLayer',
    'DataFreshness',
    'IndicatorStatistics',
    'QuantifiedCorrelation',
    'RiskComputation',
    'ThreatClassification',
    'build_assessment_layer',
    'classify_threat',
    'indicator_statistics',
    'measure_freshness',
    'quantify_correlation',
    'ARTIFACT_VERSION',
    'ArtifactBuilder',
    'clean_llm_text',
    'format_category',
    'mask_ip',
    'DEFAULT_FILENAME',
    'ArtifactPublisher',
]
