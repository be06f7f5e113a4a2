"""
Structured input shared by every analysis stage.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

from pydantic import ValidationError

from ..normalizers.schema import (
    CorrelatedData, DataSource, Indicator, IndicatorKind, RawRecord, ShodanHost, SocialPost
)
from ..normalizers.signals import port_to_service
from ..normalizers.text import normalize_text
from ..normalizers.threats import ThreatSummary

logger = logging.getLogger(__name__)

MAX_CONTEXT_HOSTS = 15
MAX_CONTEXT_POSTS = 10
MAX_CONTEXT_SIGNALS = 10


@dataclass
class AnalysisContext:
    """Everything upstream of the analyzer, already validated and correlated."""

    records: List[RawRecord]
    indicators: List[Indicator]
    correlated: CorrelatedData
    threats: ThreatSummary
    clusters: List[List[str]] = field(default_factory=list)
    reference_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self):
        self._hosts: Optional[List[ShodanHost]] = None
        self._posts: Optional[List[SocialPost]] = None

    @property
    def hosts(self) -> List[ShodanHost]:
        if self._hosts is None:
            self._hosts = self._validated(DataSource.SHODAN, ShodanHost)
        return self._hosts

    @property
    def posts(self) -> List[SocialPost]:
        if self._posts is None:
            self._posts = self._validated(DataSource.X_COM, SocialPost)
        return self._posts

    def _validated(self, source: DataSource, model) -> list:
        items = []
        for record in self.records:
            if record.source != source:
                continue
            try:
                items.append(model.model_validate(record.payload))
            except ValidationError as e:
                logger.debug(f"Skipping malformed {source.value} record {record.record_id}: {e}")
        return items

    @property
    def sources(self) -> List[DataSource]:
        return sorted({r.source for r in self.records}, key=lambda s: s.value)

    def values(self, kind: IndicatorKind) -> List[str]:
        """Distinct normalized indicator values of one kind, sorted."""
        return sorted({i.normalized_value for i in self.indicators if i.kind == kind})

    def ports(self) -> List[int]:
        return sorted({h.port for h in self.hosts} |
                      {int(v) for v in self.values(IndicatorKind.PORT) if v.isdigit()})

    def severity_counts(self) -> Dict[str, int]:
        return {level: self.threats.by_severity.get(level, 0)
                for level in ('critical', 'high', 'medium', 'low')}

    def top_services(self, limit: int = 5) -> List[str]:
        counts = Counter(h.product or port_to_service(h.port) for h in self.hosts)
        return [name for name, _ in sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))[:limit]]

    def corpus_text(self) -> str:
        """All post text plus host products, used by keyword heuristics."""
        parts = [normalize_text(p.text) for p in self.posts]
        parts += [f"{h.product or ''} {port_to_service(h.port)} {' '.join(h.vulns)}" for h in self.hosts]
        return '\n'.join(parts)

    def summary_text(self) -> str:
        """Context block embedded in every stage prompt."""
        lines = [
            f"Reference time: {self.reference_time.isoformat()}",
            f"Records: {len(self.records)} from {', '.join(s.value for s in self.sources) or 'no sources'}",
            f"Threat severities: {self.severity_counts()}",
            '',
            'INFRASTRUCTURE (network exposure):',
        ]
        for host in self.hosts[:MAX_CONTEXT_HOSTS]:
            vulns = ', '.join(host.vulns[:5]) or 'none'
            lines.append(
                f"- {host.ip}:{host.port} {host.product or port_to_service(host.port)} "
                f"{host.version or ''} [{host.country or '??'}] CVEs: {vulns}"
            )
        if not self.hosts:
            lines.append('- no infrastructure data')

        lines += ['', 'SOCIAL (posts):']
        ranked = sorted(self.posts, key=lambda p: -p.engagement)
        for post in ranked[:MAX_CONTEXT_POSTS]:
            text = normalize_text(post.text)[:280]
            lines.append(f"- @{post.author.username} ({post.timestamp or 'unknown time'}): {text}")
        if not self.posts:
            lines.append('- no social data')

        summary = self.correlated.summary
        lines += [
            '',
            f"CORRELATION: {summary.correlated} cross-source signals of {summary.total_signals}, "
            f"dominant pattern {summary.dominant_pattern.value}",
        ]
        for signal in self.correlated.cross_source_signals[:MAX_CONTEXT_SIGNALS]:
            interpretation = signal.temporal.interpretation if signal.temporal else ''
            lines.append(f"- {signal.label}: {interpretation}")
        if self.clusters:
            lines.append(f"Co-occurring signal clusters: {self.clusters[:3]}")
        return '\n'.join(lines)
