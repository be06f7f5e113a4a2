"""
Record-level threat assessment.

Every relevant social post becomes one threat entry; vulnerable hosts are
summarized into a single infrastructure threat. The severity and category
counts drive the risk score and the artifact metrics.
"""

import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from pydantic import ValidationError

from .schema import (
    DataSource, RawRecord, ShodanHost, SocialPost, ThreatCategory, ThreatSeverity, isoformat
)
from .text import analyze_sentiment, categorize, determine_severity, normalize_text
from .extractor import CVE_PATTERN

logger = logging.getLogger(__name__)

SEVERITY_ORDER = [
    ThreatSeverity.CRITICAL, ThreatSeverity.HIGH, ThreatSeverity.MEDIUM,
    ThreatSeverity.LOW, ThreatSeverity.INFO
]

TITLE_IP_PATTERN = re.compile(r'\b\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3}\b')
TITLE_LENGTH = 80


@dataclass
class ProcessedThreat:
    """One assessed threat derived from one or more raw records."""

    id: str
    title: str
    description: str
    category: ThreatCategory
    severity: ThreatSeverity
    source: DataSource
    timestamp: Optional[datetime]
    url: Optional[str] = None
    sentiment: str = 'neutral'
    engagement: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'title': self.title,
            'severity': self.severity.value,
            'category': self.category.value,
            'source': self.source.value,
            'timestamp': isoformat(self.timestamp),
            'sourceUrl': self.url,
        }


@dataclass
class ThreatSummary:
    """Severity/category/source counts over all assessed threats."""

    threats: List[ProcessedThreat] = field(default_factory=list)
    by_severity: Dict[str, int] = field(default_factory=dict)
    by_category: Dict[str, int] = field(default_factory=dict)
    by_source: Dict[str, int] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return len(self.threats)

    def count(self, severity: ThreatSeverity) -> int:
        return self.by_severity.get(severity.value, 0)


class ThreatAssessor:
    """Assign severity and category to raw records."""

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = config or {}
        self.recent_cve_years = self.config.get('recent_cve_years', 2)

    def assess(self, records: Iterable[RawRecord],
               reference_time: Optional[datetime] = None) -> ThreatSummary:
        """
        Build the threat summary for a batch of records.

        Args:
            records: Raw records from all collectors
            reference_time: Time used to decide which CVE years count as recent

        Returns:
            ThreatSummary with threats sorted by severity
        """
        reference_time = reference_time or datetime.now(timezone.utc)
        threats: List[ProcessedThreat] = []
        vulnerable_hosts: List[ShodanHost] = []
        latest_host_time: Optional[datetime] = None

        for record in records:
            try:
                if record.source == DataSource.SHODAN:
                    host = ShodanHost.model_validate(record.payload)
                    if host.vulns:
                        vulnerable_hosts.append(host)
                        if record.observed_at and (latest_host_time is None or record.observed_at > latest_host_time):
                            latest_host_time = record.observed_at
                else:
                    threat = self._assess_post(record)
                    if threat:
                        threats.append(threat)
            except ValidationError as e:
                logger.debug(f"Skipping malformed record {record.record_id}: {e}")

        if vulnerable_hosts:
            threats.append(self._infrastructure_threat(vulnerable_hosts, latest_host_time, reference_time))

        threats.sort(key=lambda t: SEVERITY_ORDER.index(t.severity))
        summary = ThreatSummary(
            threats=threats,
            by_severity=dict(Counter(t.severity.value for t in threats)),
            by_category=dict(Counter(t.category.value for t in threats)),
            by_source=dict(Counter(t.source.value for t in threats)),
        )
        logger.info(f"Assessed {summary.total} threats: {summary.by_severity}")
        return summary

    def _assess_post(self, record: RawRecord) -> Optional[ProcessedThreat]:
        post = SocialPost.model_validate(record.payload)
        text = normalize_text(post.text)
        category = categorize(text)
        has_cve = bool(CVE_PATTERN.search(text))
        if category == ThreatCategory.OTHER and not has_cve:
            return None

        engagement = post.engagement + post.metrics.replies
        return ProcessedThreat(
            id=f"threat-{record.record_id.split('--')[-1][:12]}",
            title=generate_title(text),
            description=text,
            category=category,
            severity=determine_severity(text, engagement),
            source=record.source,
            timestamp=record.observed_at,
            url=post.url or None,
            sentiment=analyze_sentiment(text),
            engagement=engagement,
        )

    def _infrastructure_threat(self, hosts: List[ShodanHost],
                               timestamp: Optional[datetime],
                               reference_time: datetime) -> ProcessedThreat:
        recent_years = {str(reference_time.year - offset) for offset in range(self.recent_cve_years)}
        recent = sum(
            1 for h in hosts
            if any(v.split('-')[1] in recent_years for v in h.vulns if v.count('-') >= 2)
        )
        if recent > 10:
            severity = ThreatSeverity.CRITICAL
        elif recent > 5:
            severity = ThreatSeverity.HIGH
        elif recent > 0:
            severity = ThreatSeverity.MEDIUM
        else:
            severity = ThreatSeverity.LOW

        products = ', '.join(h.product or 'unknown' for h in hosts[:5])
        return ProcessedThreat(
            id='threat-infrastructure',
            title=f"Vulnerable Infrastructure Detected ({len(hosts)} hosts)",
            description=(f"Network scan detected {len(hosts)} hosts with known vulnerabilities. "
                         f"Top affected: {products}"),
            category=ThreatCategory.VULNERABILITY,
            severity=severity,
            source=DataSource.SHODAN,
            timestamp=timestamp,
        )


def generate_title(text: str) -> str:
    """Short, IP-redacted title for a threat."""
    cve = CVE_PATTERN.search(text)
    if cve:
        return f"Threat: {cve.group(0).upper()}"
    words = text.split()
    title = ' '.join(words[:10]) + ('...' if len(words) > 10 else '')
    return TITLE_IP_PATTERN.sub('[IP]', title)[:TITLE_LENGTH]
