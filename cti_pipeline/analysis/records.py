"""
Typed outputs of the analysis stages.

Stage records are plain dataclasses so a test can build any upstream result
by hand and feed it to a later stage.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Generic, List, Optional, TypeVar

from ..normalizers.schema import isoformat


class AnalysisStage(Enum):
    """Analysis workflow stages, in execution order."""
    EXTRACTION = "extraction"
    CORRELATION_NARRATIVE = "correlation_narrative"
    STRATEGIC_ASSESSMENT = "strategic_assessment"
    EXECUTIVE_REPORT = "executive_report"


class StageStatus(Enum):
    """How a stage record was produced."""
    COMPLETED = "completed"
    FALLBACK = "fallback"


@dataclass
class ExtractionResult:
    ips: List[Dict[str, Any]] = field(default_factory=list)
    domains: List[Dict[str, Any]] = field(default_factory=list)
    hashes: List[Dict[str, Any]] = field(default_factory=list)
    cves: List[Dict[str, Any]] = field(default_factory=list)
    ttps: List[Dict[str, Any]] = field(default_factory=list)
    threat_actors: List[Dict[str, Any]] = field(default_factory=list)
    malware_families: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def ioc_count(self) -> int:
        return len(self.ips) + len(self.domains) + len(self.hashes) + len(self.cves)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'iocs': {
                'ips': self.ips,
                'domains': self.domains,
                'hashes': self.hashes,
                'cves': self.cves,
            },
            'ttps': self.ttps,
            'threatActors': self.threat_actors,
            'malwareFamilies': self.malware_families,
        }


@dataclass
class CorrelationNarrative:
    narrative: str
    pattern: str
    key_correlations: List[Dict[str, str]] = field(default_factory=list)
    emerging_threats: List[str] = field(default_factory=list)
    time_window: str = '24-48 hours'
    campaign: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'narrative': self.narrative,
            'pattern': self.pattern,
            'keyCorrelations': self.key_correlations,
            'emergingThreats': self.emerging_threats,
            'timeWindow': self.time_window,
            'campaignIndicators': self.campaign,
        }


@dataclass
class StrategicAssessment:
    kill_chain_phase: str
    risk_level: str
    risk_score: int
    risk_factors: List[str] = field(default_factory=list)
    attack_surface: List[str] = field(default_factory=list)
    mitre_mapping: List[Dict[str, Any]] = field(default_factory=list)
    threat_landscape: str = ''

    def to_dict(self) -> Dict[str, Any]:
        return {
            'killChainPhase': self.kill_chain_phase,
            'attackSurface': self.attack_surface,
            'riskAssessment': {
                'level': self.risk_level,
                'score': self.risk_score,
                'factors': self.risk_factors,
            },
            'mitreMapping': self.mitre_mapping,
            'threatLandscape': self.threat_landscape,
        }


@dataclass
class ExecutiveReport:
    headline: str
    situation_summary: str
    key_findings: List[Dict[str, str]] = field(default_factory=list)
    immediate_actions: List[str] = field(default_factory=list)
    strategic_recommendations: List[str] = field(default_factory=list)
    sources_and_references: List[Dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'headline': self.headline,
            'situationSummary': self.situation_summary,
            'keyFindings': self.key_findings,
            'immediateActions': self.immediate_actions,
            'strategicRecommendations': self.strategic_recommendations,
            'sourcesAndReferences': self.sources_and_references,
        }


T = TypeVar('T')


@dataclass
class StageResult(Generic[T]):
    """Result of one analysis stage, always carrying a usable record."""
    stage: AnalysisStage
    status: StageStatus
    record: T
    model: Optional[str]
    attempts: int
    start_time: datetime
    end_time: datetime
    error_message: Optional[str] = None

    @property
    def duration_seconds(self) -> float:
        return (self.end_time - self.start_time).total_seconds()

    @property
    def used_fallback(self) -> bool:
        return self.status == StageStatus.FALLBACK

    def to_dict(self) -> Dict[str, Any]:
        return {
            'stage': self.stage.value,
            'status': self.status.value,
            'model': self.model,
            'attempts': self.attempts,
            'start_time': isoformat(self.start_time),
            'end_time': isoformat(self.end_time),
            'duration_seconds': round(self.duration_seconds, 3),
            'error_message': self.error_message,
            'record': self.record.to_dict(),
        }
