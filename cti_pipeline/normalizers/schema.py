"""
Typed data model for the CTI correlation pipeline.

Raw collector records, extracted indicators, correlation signals and query
suggestions are all pydantic models so they can be validated on creation and
serialized straight into the published artifact.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse an RFC3339 string, epoch seconds or datetime into an aware UTC datetime.

    Returns None for anything that cannot be interpreted.
    """
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return datetime.fromtimestamp(float(value), tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        text = value.strip()
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


def isoformat(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat().replace('+00:00', 'Z')


class SourceChannel(str, Enum):
    """Which side of the correlation a source sits on."""

    INFRASTRUCTURE = "infrastructure"
    SOCIAL = "social"


class DataSource(str, Enum):
    """Collectors known to the pipeline."""

    SHODAN = "shodan"
    X_COM = "x.com"

    @property
    def channel(self) -> SourceChannel:
        if self is DataSource.SHODAN:
            return SourceChannel.INFRASTRUCTURE
        return SourceChannel.SOCIAL

    @property
    def display_name(self) -> str:
        return {
            DataSource.SHODAN: 'Technical Reconnaissance',
            DataSource.X_COM: 'Social Intelligence (X)',
        }[self]


class IndicatorKind(str, Enum):
    """Indicator types extracted from raw records."""

    IP = "ip"
    DOMAIN = "domain"
    CVE = "cve"
    PORT = "port"
    KEYWORD = "keyword"
    MALWARE_FAMILY = "malware_family"
    THREAT_ACTOR = "threat_actor"


class ThreatSeverity(str, Enum):
    """Severity assigned to a raw record."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"


class ThreatCategory(str, Enum):
    """Threat classification used for metrics."""

    MALWARE = "malware"
    RANSOMWARE = "ransomware"
    PHISHING = "phishing"
    DDOS = "ddos"
    APT = "apt"
    VULNERABILITY = "vulnerability"
    DATA_BREACH = "data_breach"
    SUPPLY_CHAIN = "supply_chain"
    SOCIAL_ENGINEERING = "social_engineering"
    INFRASTRUCTURE = "infrastructure"
    OTHER = "other"


class Precedence(str, Enum):
    """Which source saw a signal first."""

    INFRA_FIRST = "infra-first"
    SOCIAL_FIRST = "social-first"
    SIMULTANEOUS = "simultaneous"
    UNKNOWN = "unknown"


class DominantPattern(str, Enum):
    """Majority precedence across cross-source signals."""

    INFRA_FIRST = "infra-first"
    SOCIAL_FIRST = "social-first"
    SIMULTANEOUS = "simultaneous"
    INSUFFICIENT_DATA = "insufficient-data"


class Priority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


# ---------------------------------------------------------------------------
# Collector records
# ---------------------------------------------------------------------------

class RawRecord(BaseModel):
    """
    A timestamped, source-tagged observation produced by a collector.

    The payload is opaque to everything except the extractor. When the
    collector timestamp cannot be parsed, observed_at is None and the original
    text is kept in raw_timestamp.
    """

    record_id: str = Field(default_factory=lambda: f"record--{uuid.uuid4()}")
    source: DataSource
    observed_at: Optional[datetime] = None
    raw_timestamp: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)

    @field_validator('observed_at', mode='before')
    @classmethod
    def coerce_observed_at(cls, v):
        return parse_timestamp(v)

    @classmethod
    def build(cls, source: DataSource, timestamp: Any, payload: Dict[str, Any]) -> 'RawRecord':
        """Create a record, keeping the original timestamp text if it is malformed."""
        observed_at = parse_timestamp(timestamp)
        raw = None if observed_at is not None or timestamp is None else str(timestamp)
        return cls(source=source, observed_at=observed_at, raw_timestamp=raw, payload=payload)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'record_id': self.record_id,
            'source': self.source.value,
            'observedAt': isoformat(self.observed_at),
            'raw_timestamp': self.raw_timestamp,
            'payload': self.payload,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RawRecord':
        record = cls.build(DataSource(data['source']),
                           data.get('observedAt') or data.get('raw_timestamp'),
                           data.get('payload') or {})
        if data.get('record_id'):
            record.record_id = data['record_id']
        return record


class ShodanHost(BaseModel):
    """Payload of a network-exposure record."""

    ip: str
    port: int
    hostnames: List[str] = Field(default_factory=list)
    org: Optional[str] = None
    asn: Optional[str] = None
    isp: Optional[str] = None
    country: Optional[str] = None
    city: Optional[str] = None
    os: Optional[str] = None
    product: Optional[str] = None
    version: Optional[str] = None
    vulns: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    last_update: Optional[str] = None

    @field_validator('vulns', mode='before')
    @classmethod
    def normalize_vulns(cls, v):
        # Shodan returns vulns as a dict keyed by CVE id
        if isinstance(v, dict):
            v = list(v.keys())
        return [str(item).upper() for item in (v or [])]

    @property
    def url(self) -> str:
        return f"https://www.shodan.io/host/{self.ip}"


class PostAuthor(BaseModel):
    username: str = 'unknown'
    display_name: Optional[str] = None
    verified: bool = False


class PostMetrics(BaseModel):
    likes: int = 0
    reposts: int = 0
    replies: int = 0
    views: int = 0


class SocialPost(BaseModel):
    """Payload of a social-media record."""

    id: Optional[str] = None
    text: str
    author: PostAuthor = Field(default_factory=PostAuthor)
    metrics: PostMetrics = Field(default_factory=PostMetrics)
    timestamp: Optional[str] = None
    hashtags: List[str] = Field(default_factory=list)
    mentions: List[str] = Field(default_factory=list)
    urls: List[str] = Field(default_factory=list)
    permalink: Optional[str] = None

    @field_validator('author', mode='before')
    @classmethod
    def coerce_author(cls, v):
        if isinstance(v, str):
            return {'username': v.lstrip('@')}
        return v

    @property
    def engagement(self) -> int:
        return self.metrics.likes + self.metrics.reposts

    @property
    def url(self) -> str:
        if self.permalink:
            return self.permalink
        if self.id:
            return f"https://x.com/{self.author.username}/status/{self.id}"
        return ''


# ---------------------------------------------------------------------------
# Indicators
# ---------------------------------------------------------------------------

class Indicator(BaseModel):
    """Typed indicator extracted from a raw record. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    kind: IndicatorKind
    value: str
    source: DataSource
    observed_at: Optional[datetime] = None
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    evidence_url: Optional[str] = None
    excerpt: Optional[str] = None
    record_id: Optional[str] = None

    @property
    def normalized_value(self) -> str:
        value = self.value.strip()
        if self.kind == IndicatorKind.CVE:
            return value.upper()
        if self.kind == IndicatorKind.PORT:
            return value.lstrip('0') or '0'
        return value.lower().rstrip('.')

    @property
    def key(self) -> Tuple[IndicatorKind, str]:
        return (self.kind, self.normalized_value)

    @property
    def tag(self) -> str:
        """String form of the key, used for traceability tags."""
        return f"{self.kind.value}:{self.normalized_value}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': self.kind.value,
            'value': self.value,
            'source': self.source.value,
            'observedAt': isoformat(self.observed_at),
            'confidence': round(self.confidence, 2),
            'evidenceUrl': self.evidence_url,
        }


# ---------------------------------------------------------------------------
# Correlation
# ---------------------------------------------------------------------------

class SourceObservation(BaseModel):
    """Per-source aggregate of one correlation signal."""

    source: DataSource
    count: int = Field(ge=0)
    first_seen: Optional[datetime] = None
    last_seen: Optional[datetime] = None
    sample_evidence: List[str] = Field(default_factory=list)

    @model_validator(mode='after')
    def check_window(self):
        if self.first_seen and self.last_seen and self.first_seen > self.last_seen:
            raise ValueError("first_seen must not be after last_seen")
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            'source': self.source.value,
            'count': self.count,
            'firstSeen': isoformat(self.first_seen),
            'lastSeen': isoformat(self.last_seen),
            'sampleEvidence': list(self.sample_evidence),
        }


class TemporalAnalysis(BaseModel):
    """Time relationship between the two earliest sources of a signal."""

    delta_hours: float = Field(ge=0)
    precedence: Precedence
    confidence: float = Field(ge=0.0, le=1.0)
    infra_lead_hours: Optional[float] = None
    pattern: str = 'unknown'
    interpretation: str = ''

    def to_dict(self) -> Dict[str, Any]:
        return {
            'deltaHours': round(self.delta_hours, 2),
            'precedence': self.precedence.value,
            'confidence': round(self.confidence, 2),
            'pattern': self.pattern,
            'interpretation': self.interpretation,
        }


class CorrelationSignal(BaseModel):
    """Indicators from one or more sources sharing a signal key."""

    id: str
    kind: IndicatorKind
    value: str
    label: str
    per_source: List[SourceObservation] = Field(default_factory=list)
    temporal: Optional[TemporalAnalysis] = None

    @model_validator(mode='after')
    def unique_sources(self):
        sources = [obs.source for obs in self.per_source]
        if len(sources) != len(set(sources)):
            raise ValueError(f"Duplicate source entries in signal {self.id}")
        return self

    @property
    def is_cross_source(self) -> bool:
        return sum(1 for obs in self.per_source if obs.count > 0) >= 2

    @property
    def total_count(self) -> int:
        return sum(obs.count for obs in self.per_source)

    def observation(self, source: DataSource) -> Optional[SourceObservation]:
        for obs in self.per_source:
            if obs.source == source:
                return obs
        return None

    def count_for_channel(self, channel: SourceChannel) -> int:
        return sum(obs.count for obs in self.per_source if obs.source.channel == channel)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'type': self.kind.value,
            'value': self.value,
            'label': self.label,
            'sources': [obs.to_dict() for obs in self.per_source],
            'temporal': self.temporal.to_dict() if self.temporal else None,
        }


class CorrelationSummary(BaseModel):
    total_signals: int = 0
    infra_only: int = 0
    social_only: int = 0
    correlated: int = 0
    average_delta_hours: Optional[float] = None
    dominant_pattern: DominantPattern = DominantPattern.INSUFFICIENT_DATA

    def to_dict(self) -> Dict[str, Any]:
        return {
            'totalSignals': self.total_signals,
            'infraOnly': self.infra_only,
            'socialOnly': self.social_only,
            'correlated': self.correlated,
            'averageDeltaHours': (round(self.average_delta_hours, 2)
                                  if self.average_delta_hours is not None else None),
            'dominantPattern': self.dominant_pattern.value,
        }


class CorrelatedData(BaseModel):
    signals: List[CorrelationSignal] = Field(default_factory=list)
    summary: CorrelationSummary = Field(default_factory=CorrelationSummary)

    @property
    def cross_source_signals(self) -> List[CorrelationSignal]:
        return [s for s in self.signals if s.is_cross_source]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'signals': [s.to_dict() for s in self.signals],
            'summary': self.summary.to_dict(),
        }


# ---------------------------------------------------------------------------
# Query suggestions
# ---------------------------------------------------------------------------

class QuerySuggestion(BaseModel):
    """Follow-up collection query traceable to extracted indicators."""

    query_string: str
    rationale: str
    priority: Priority = Priority.MEDIUM
    tags: List[str] = Field(default_factory=list)
    origin: str = 'heuristic'

    @field_validator('query_string')
    @classmethod
    def strip_query(cls, v):
        v = ' '.join(v.split())
        if not v:
            raise ValueError("query_string must not be empty")
        return v

    @property
    def normalized_query(self) -> str:
        return ' '.join(sorted(self.query_string.lower().split()))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'query': self.query_string,
            'rationale': self.rationale,
            'priority': self.priority.value,
            'tags': list(self.tags),
            'origin': self.origin,
        }
