"""
Quantified assessment layer.

Turns the correlated data, the analysis context and the historical baseline
into bounded numeric components (all in [0, 1] unless noted), a threat
classification and a one-paragraph narrative. Everything here is a pure
function of its inputs; the reference time is always passed in.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..analysis.context import AnalysisContext
from ..normalizers.schema import (
    CorrelatedData, Indicator, IndicatorKind, Precedence, RawRecord, SourceChannel
)
from ..normalizers.signals import signal_label
from ..scoring.history import BaselineComparison
from ..scoring.risk import confidence_level

logger = logging.getLogger(__name__)

# Correlation factor weights, summing to 1
CORRELATION_WEIGHTS = {
    'cveOverlap': 0.30,
    'serviceMatch': 0.25,
    'temporalProximity': 0.20,
    'infraSocialAlignment': 0.25,
}
STRONG_CORRELATION = 0.6
MODERATE_CORRELATION = 0.3
PROXIMITY_HORIZON_HOURS = 48.0

FRESHNESS_HORIZON_HOURS = 72.0
HIGH_FRESHNESS = 0.7
MODERATE_FRESHNESS = 0.3

# Risk component weights, summing to 1
RISK_WEIGHTS = {
    'vulnerabilityRatio': 0.30,
    'socialIntensity': 0.20,
    'correlationScore': 0.25,
    'freshnessScore': 0.10,
    'baselineDelta': 0.15,
}
SOCIAL_SATURATION = 10


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


@dataclass
class QuantifiedCorrelation:
    score: float
    strength: str
    factors: Dict[str, float]
    explanation: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'score': self.score,
            'strength': self.strength,
            'factors': dict(self.factors),
            'explanation': self.explanation,
        }


@dataclass
class DataFreshness:
    social_age_hours: Optional[float]
    infra_age_hours: Optional[float]
    freshness_score: float
    status: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'socialAgeHours': self.social_age_hours,
            'infraAgeHours': self.infra_age_hours,
            'freshnessScore': self.freshness_score,
            'status': self.status,
        }


@dataclass
class IndicatorStatistics:
    unique_cve_count: int = 0
    unique_domain_count: int = 0
    unique_ip_count: int = 0
    unique_port_count: int = 0
    unique_service_count: int = 0
    total_indicators: int = 0
    duplicates: int = 0
    duplication_ratio: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'uniqueCVECount': self.unique_cve_count,
            'uniqueDomainCount': self.unique_domain_count,
            'uniqueIPCount': self.unique_ip_count,
            'uniquePortCount': self.unique_port_count,
            'uniqueServiceCount': self.unique_service_count,
            'totalIndicators': self.total_indicators,
            'duplicates': self.duplicates,
            'duplicationRatio': self.duplication_ratio,
        }


@dataclass
class ThreatClassification:
    type: str
    confidence: int
    rationale: str
    indicators: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': self.type,
            'confidence': self.confidence,
            'rationale': self.rationale,
            'indicators': list(self.indicators),
        }


@dataclass
class RiskComputation:
    weights: Dict[str, float]
    components: Dict[str, float]
    computed_score: int
    confidence_level: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            'weights': dict(self.weights),
            'components': dict(self.components),
            'computedScore': self.computed_score,
            'confidenceLevel': self.confidence_level,
        }


@dataclass
class AssessmentLayer:
    correlation: QuantifiedCorrelation
    scoring: RiskComputation
    baseline_comparison: BaselineComparison
    freshness: DataFreshness
    classification: ThreatClassification
    ioc_stats: IndicatorStatistics
    narrative: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'correlation': self.correlation.to_dict(),
            'scoring': self.scoring.to_dict(),
            'baselineComparison': self.baseline_comparison.to_dict(),
            'freshness': self.freshness.to_dict(),
            'classification': self.classification.to_dict(),
            'iocStats': self.ioc_stats.to_dict(),
            'narrative': self.narrative,
        }


# ----------------------------------------------------------------------
# Components
# ----------------------------------------------------------------------

def _cross_share(correlated: CorrelatedData, kind: IndicatorKind) -> float:
    signals = [s for s in correlated.signals if s.kind == kind]
    if not signals:
        return 0.0
    return sum(1 for s in signals if s.is_cross_source) / len(signals)


def quantify_correlation(correlated: CorrelatedData) -> QuantifiedCorrelation:
    """
    Weighted cross-source correlation score.

    cveOverlap and serviceMatch are the shares of CVE and port signals seen
    by both channels; temporalProximity decays linearly to zero at 48h of
    average lag; infraSocialAlignment is the share of all signals that are
    cross-source.
    """
    timed = [s.temporal.delta_hours for s in correlated.cross_source_signals
             if s.temporal and s.temporal.precedence != Precedence.UNKNOWN]
    proximity = (sum(_clamp(1 - d / PROXIMITY_HORIZON_HOURS) for d in timed) / len(timed)
                 if timed else 0.0)
    total = correlated.summary.total_signals
    factors = {
        'cveOverlap': round(_cross_share(correlated, IndicatorKind.CVE), 3),
        'serviceMatch': round(_cross_share(correlated, IndicatorKind.PORT), 3),
        'temporalProximity': round(proximity, 3),
        'infraSocialAlignment': round(correlated.summary.correlated / total, 3) if total else 0.0,
    }
    score = round(sum(factors[name] * weight for name, weight in CORRELATION_WEIGHTS.items()), 3)

    if score >= STRONG_CORRELATION:
        strength = 'strong'
    elif score >= MODERATE_CORRELATION:
        strength = 'moderate'
    else:
        strength = 'weak'

    if correlated.summary.correlated:
        labels = ', '.join(s.label for s in correlated.cross_source_signals[:3])
        explanation = (f"{correlated.summary.correlated} of {total} signals seen in both infrastructure "
                       f"and social sources ({labels}); dominant pattern "
                       f"{correlated.summary.dominant_pattern.value}")
    else:
        explanation = 'No signal was observed by both infrastructure and social sources'
    return QuantifiedCorrelation(score=score, strength=strength, factors=factors, explanation=explanation)


def measure_freshness(records: List[RawRecord], reference_time: datetime) -> DataFreshness:
    """Age of the newest record per channel, scored linearly over 72 hours."""
    newest: Dict[SourceChannel, datetime] = {}
    for record in records:
        if record.observed_at is None:
            continue
        channel = record.source.channel
        if channel not in newest or record.observed_at > newest[channel]:
            newest[channel] = record.observed_at

    ages: Dict[SourceChannel, float] = {
        channel: round(max(0.0, (reference_time - seen).total_seconds() / 3600.0), 2)
        for channel, seen in newest.items()
    }
    scores = [_clamp(1 - age / FRESHNESS_HORIZON_HOURS) for age in ages.values()]
    score = round(sum(scores) / len(scores), 3) if scores else 0.0

    if score >= HIGH_FRESHNESS:
        status = 'high'
    elif score >= MODERATE_FRESHNESS:
        status = 'moderate'
    else:
        status = 'stale'
    return DataFreshness(
        social_age_hours=ages.get(SourceChannel.SOCIAL),
        infra_age_hours=ages.get(SourceChannel.INFRASTRUCTURE),
        freshness_score=score,
        status=status,
    )


def indicator_statistics(indicators: List[Indicator], services: List[str]) -> IndicatorStatistics:
    unique = {i.key for i in indicators}

    def count(kind: IndicatorKind) -> int:
        return sum(1 for k, _ in unique if k == kind)

    total = len(indicators)
    duplicates = total - len(unique)
    return IndicatorStatistics(
        unique_cve_count=count(IndicatorKind.CVE),
        unique_domain_count=count(IndicatorKind.DOMAIN),
        unique_ip_count=count(IndicatorKind.IP),
        unique_port_count=count(IndicatorKind.PORT),
        unique_service_count=len({s.lower() for s in services if s}),
        total_indicators=total,
        duplicates=duplicates,
        duplication_ratio=round(duplicates / total, 3) if total else 0.0,
    )


def classify_threat(context: AnalysisContext, correlation: QuantifiedCorrelation) -> ThreatClassification:
    """
    Opportunistic, targeted or campaign activity.

    Campaign needs co-occurring signal clusters backed by at least moderate
    correlation; targeted needs a named actor, or a named malware family with
    at least moderate correlation. Everything else is opportunistic.
    """
    actors = context.values(IndicatorKind.THREAT_ACTOR)
    families = context.values(IndicatorKind.MALWARE_FAMILY)

    if context.clusters and correlation.strength != 'weak':
        largest = context.clusters[0]
        return ThreatClassification(
            type='campaign',
            confidence=min(90, 55 + 10 * len(context.clusters) + int(20 * correlation.score)),
            rationale=(f"{len(context.clusters)} clusters of co-occurring signals with "
                       f"{correlation.strength} cross-source correlation"),
            indicators=largest[:5],
        )

    if actors or (families and correlation.score >= MODERATE_CORRELATION):
        named = ([signal_label(IndicatorKind.THREAT_ACTOR, a) for a in actors] +
                 [signal_label(IndicatorKind.MALWARE_FAMILY, f) for f in families])
        return ThreatClassification(
            type='targeted',
            confidence=min(85, 50 + 10 * len(actors) + 5 * len(families)),
            rationale=f"Named threat actors or malware families: {', '.join(named[:5])}",
            indicators=named[:5],
        )

    ports = [str(p) for p in context.ports()[:5]]
    return ThreatClassification(
        type='opportunistic',
        confidence=60 if context.hosts else 40,
        rationale=('Broad exposure of common services without actor attribution'
                   if context.hosts else 'No attribution or clustering evidence'),
        indicators=[f"port:{p}" for p in ports],
    )


def compute_risk(context: AnalysisContext, correlation: QuantifiedCorrelation,
                 freshness: DataFreshness, baseline: BaselineComparison,
                 has_analysis: bool = False) -> RiskComputation:
    hosts = context.hosts
    vulnerable = sum(1 for h in hosts if h.vulns)
    social_threats = sum(1 for t in context.threats.threats if t.source.channel == SourceChannel.SOCIAL)
    components = {
        'vulnerabilityRatio': round(vulnerable / len(hosts), 3) if hosts else 0.0,
        'socialIntensity': round(_clamp(social_threats / SOCIAL_SATURATION), 3),
        'correlationScore': correlation.score,
        'freshnessScore': freshness.freshness_score,
        'baselineDelta': round(_clamp(0.5 + baseline.delta / 100.0), 3),
    }
    computed = round(100 * sum(components[name] * weight for name, weight in RISK_WEIGHTS.items()))
    return RiskComputation(
        weights=dict(RISK_WEIGHTS),
        components=components,
        computed_score=int(_clamp(computed, 0, 100)),
        confidence_level=confidence_level(len(context.sources), context.threats.total, has_analysis),
    )


def build_assessment_layer(context: AnalysisContext, baseline: BaselineComparison,
                           has_analysis: bool = False) -> AssessmentLayer:
    """
    Assemble the full assessment layer.

    Args:
        context: Analysis context of the current run
        baseline: Comparison of the current risk score with the previous run
        has_analysis: The reasoning service produced at least one stage

    Returns:
        AssessmentLayer ready to be serialized
    """
    correlation = quantify_correlation(context.correlated)
    freshness = measure_freshness(context.records, context.reference_time)
    stats = indicator_statistics(context.indicators, context.top_services(limit=50))
    classification = classify_threat(context, correlation)
    scoring = compute_risk(context, correlation, freshness, baseline, has_analysis)

    narrative = (
        f"{correlation.strength.capitalize()} cross-source correlation (score {correlation.score:.2f}). "
        f"Activity classified as {classification.type} ({classification.confidence}% confidence). "
        f"Data freshness is {freshness.status}. "
        f"Risk is {baseline.trend_direction} against the previous run ({baseline.delta:+d} points)."
    )
    logger.info(f"Assessment layer: correlation {correlation.strength}, "
                f"{classification.type}, freshness {freshness.status}")
    return AssessmentLayer(
        correlation=correlation,
        scoring=scoring,
        baseline_comparison=baseline,
        freshness=freshness,
        classification=classification,
        ioc_stats=stats,
        narrative=narrative,
    )
