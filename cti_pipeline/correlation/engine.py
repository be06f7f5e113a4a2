"""
Cross-source correlation engine.

Groups indicators sharing a signal key (kind + normalized value) into
correlation signals, aggregates them per source, and classifies the time
relationship between the two earliest sources of every cross-source signal.
The engine is deterministic for a given indicator set: input order does not
matter and wall-clock time is never consulted.
"""

import logging
from collections import defaultdict
from datetime import datetime
from itertools import combinations
from typing import Any, Dict, Iterable, List, Optional, Tuple

import networkx as nx

from ..normalizers.schema import (
    CorrelatedData, CorrelationSignal, CorrelationSummary, DataSource, DominantPattern,
    Indicator, IndicatorKind, Precedence, SourceChannel, SourceObservation, TemporalAnalysis
)
from ..normalizers.signals import signal_label

logger = logging.getLogger(__name__)

# Heuristic constants, overridable through the engine config
SIMULTANEITY_THRESHOLD_HOURS = 1.0
SAMPLE_EVIDENCE_CAP = 3
MIN_CROSS_SOURCE_SIGNALS = 1
PRECEDENCE_TIE_BREAK = (Precedence.INFRA_FIRST, Precedence.SOCIAL_FIRST, Precedence.SIMULTANEOUS)
CAMPAIGN_CLUSTER_MIN_SIZE = 3

_PATTERN_BY_PRECEDENCE = {
    Precedence.INFRA_FIRST: DominantPattern.INFRA_FIRST,
    Precedence.SOCIAL_FIRST: DominantPattern.SOCIAL_FIRST,
    Precedence.SIMULTANEOUS: DominantPattern.SIMULTANEOUS,
}


def _sort_key(indicator: Indicator) -> Tuple:
    observed = indicator.observed_at.isoformat() if indicator.observed_at else '~'
    return (indicator.kind.value, indicator.normalized_value, indicator.source.value,
            observed, indicator.excerpt or '', indicator.evidence_url or '',
            indicator.record_id or '')


def interpret_pattern(infra_lead_hours: float) -> str:
    """Name the activity suggested by how long infrastructure led social."""
    if infra_lead_hours > 12:
        return 'scanning'
    if 0 < infra_lead_hours <= 12:
        return 'exploitation'
    if infra_lead_hours < -6:
        return 'discussion'
    return 'unknown'


def interpret_correlation(label: str, precedence: Precedence,
                          delta_hours: float) -> str:
    """Analyst-facing sentence describing a signal's time relationship."""
    hours = f"{delta_hours:.1f}"
    if precedence == Precedence.INFRA_FIRST and delta_hours > 6:
        return (f"Infrastructure exposure of {label} preceded social discussion by ~{hours}h, "
                f"suggesting early scanning activity")
    if precedence == Precedence.INFRA_FIRST:
        return (f"{label} activity detected in infrastructure shortly before social mentions "
                f"(~{hours}h), possible active exploitation")
    if precedence == Precedence.SOCIAL_FIRST and delta_hours > 6:
        return (f"Social discussion of {label} preceded infrastructure detection by ~{hours}h, "
                f"threat awareness preceded exposure")
    if precedence == Precedence.SOCIAL_FIRST:
        return f"Social discussion of {label} shortly preceded infrastructure detection (~{hours}h)"
    if precedence == Precedence.SIMULTANEOUS:
        return f"{label} signals appeared nearly simultaneously across sources"
    return f"{label} observed across sources without usable timestamps"


class CorrelationEngine:
    """Build correlation signals and the cross-source summary."""

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = config or {}
        self.simultaneity_threshold_hours = float(
            self.config.get('simultaneity_threshold_hours', SIMULTANEITY_THRESHOLD_HOURS))
        self.sample_cap = int(self.config.get('sample_evidence_cap', SAMPLE_EVIDENCE_CAP))
        self.min_cross_source = int(self.config.get('min_cross_source_signals', MIN_CROSS_SOURCE_SIGNALS))
        self.tie_break = tuple(
            Precedence(p) for p in self.config.get('precedence_tie_break', PRECEDENCE_TIE_BREAK))

    def correlate(self, indicators: Iterable[Indicator]) -> CorrelatedData:
        """
        Correlate indicators across sources.

        Args:
            indicators: Indicators from the extractor, any order

        Returns:
            CorrelatedData with signals sorted by id and the summary
        """
        grouped: Dict[Tuple[IndicatorKind, str], Dict[DataSource, List[Indicator]]] = defaultdict(
            lambda: defaultdict(list))
        for indicator in sorted(indicators, key=_sort_key):
            grouped[indicator.key][indicator.source].append(indicator)

        signals = [self._build_signal(key, by_source) for key, by_source in grouped.items()]
        signals.sort(key=lambda s: s.id)

        summary = self._summarize(signals)
        logger.info(
            f"Correlated {summary.total_signals} signals: {summary.correlated} cross-source, "
            f"dominant pattern {summary.dominant_pattern.value}"
        )
        return CorrelatedData(signals=signals, summary=summary)

    # ------------------------------------------------------------------
    # Signal construction
    # ------------------------------------------------------------------

    def _build_signal(self, key: Tuple[IndicatorKind, str],
                      by_source: Dict[DataSource, List[Indicator]]) -> CorrelationSignal:
        kind, value = key
        per_source = [
            self._observe(source, items)
            for source, items in sorted(by_source.items(), key=lambda kv: kv[0].value)
        ]
        label = signal_label(kind, value)
        signal = CorrelationSignal(
            id=f"{kind.value}:{value}", kind=kind, value=value, label=label, per_source=per_source
        )
        if signal.is_cross_source:
            signal.temporal = self._temporal(label, per_source)
        return signal

    def _observe(self, source: DataSource, items: List[Indicator]) -> SourceObservation:
        timestamps = [i.observed_at for i in items if i.observed_at is not None]
        samples: List[str] = []
        for item in sorted(items, key=lambda i: (i.observed_at is None, i.observed_at or datetime.min, _sort_key(i))):
            evidence = item.excerpt or item.evidence_url or item.value
            if evidence and evidence not in samples:
                samples.append(evidence)
            if len(samples) >= self.sample_cap:
                break
        return SourceObservation(
            source=source,
            count=len(items),
            first_seen=min(timestamps) if timestamps else None,
            last_seen=max(timestamps) if timestamps else None,
            sample_evidence=samples,
        )

    def _temporal(self, label: str, per_source: List[SourceObservation]) -> TemporalAnalysis:
        timed = sorted(
            (obs for obs in per_source if obs.first_seen is not None and obs.count > 0),
            key=lambda obs: (obs.first_seen, obs.source.value)
        )
        if len(timed) < 2:
            return TemporalAnalysis(
                delta_hours=0.0, precedence=Precedence.UNKNOWN, confidence=0.0,
                interpretation=interpret_correlation(label, Precedence.UNKNOWN, 0.0)
            )

        first, second = timed[0], timed[1]
        delta_hours = (second.first_seen - first.first_seen).total_seconds() / 3600.0

        if delta_hours < self.simultaneity_threshold_hours:
            precedence = Precedence.SIMULTANEOUS
        elif first.source.channel == second.source.channel:
            precedence = Precedence.UNKNOWN
        elif first.source.channel == SourceChannel.INFRASTRUCTURE:
            precedence = Precedence.INFRA_FIRST
        else:
            precedence = Precedence.SOCIAL_FIRST

        infra_lead = None
        if first.source.channel != second.source.channel:
            infra_lead = delta_hours if first.source.channel == SourceChannel.INFRASTRUCTURE else -delta_hours

        corroboration = min(first.count, second.count)
        return TemporalAnalysis(
            delta_hours=delta_hours,
            precedence=precedence,
            confidence=round(min(0.95, 0.5 + 0.1 * corroboration), 2),
            infra_lead_hours=infra_lead,
            pattern=interpret_pattern(infra_lead) if infra_lead is not None else 'unknown',
            interpretation=interpret_correlation(label, precedence, delta_hours),
        )

    # ------------------------------------------------------------------
    # Summary
    # ------------------------------------------------------------------

    def _summarize(self, signals: List[CorrelationSignal]) -> CorrelationSummary:
        infra_only = social_only = 0
        cross_source: List[CorrelationSignal] = []
        for signal in signals:
            if signal.is_cross_source:
                cross_source.append(signal)
                continue
            channels = {obs.source.channel for obs in signal.per_source if obs.count > 0}
            if channels == {SourceChannel.INFRASTRUCTURE}:
                infra_only += 1
            elif channels == {SourceChannel.SOCIAL}:
                social_only += 1

        deltas = [s.temporal.delta_hours for s in cross_source
                  if s.temporal and s.temporal.precedence != Precedence.UNKNOWN]
        return CorrelationSummary(
            total_signals=len(signals),
            infra_only=infra_only,
            social_only=social_only,
            correlated=len(cross_source),
            average_delta_hours=sum(deltas) / len(deltas) if deltas else None,
            dominant_pattern=self.dominant_pattern(cross_source),
        )

    def dominant_pattern(self, cross_source: List[CorrelationSignal]) -> DominantPattern:
        """
        Weighted mode of precedence over cross-source signals.

        Each signal votes with weight min(count of its two earliest sources).
        Ties resolve in tie-break order. Signals without usable timestamps do
        not vote; if none vote the sources are treated as simultaneous.
        """
        if len(cross_source) < max(1, self.min_cross_source):
            return DominantPattern.INSUFFICIENT_DATA

        weights: Dict[Precedence, int] = defaultdict(int)
        for signal in cross_source:
            temporal = signal.temporal
            if temporal is None or temporal.precedence == Precedence.UNKNOWN:
                continue
            counts = sorted(
                (obs for obs in signal.per_source if obs.first_seen is not None),
                key=lambda obs: (obs.first_seen, obs.source.value)
            )[:2]
            weights[temporal.precedence] += min(obs.count for obs in counts)

        if not weights:
            return DominantPattern.SIMULTANEOUS

        best = max(weights.values())
        for precedence in self.tie_break:
            if weights.get(precedence) == best:
                return _PATTERN_BY_PRECEDENCE[precedence]
        return DominantPattern.SIMULTANEOUS


# ----------------------------------------------------------------------
# Co-occurrence graph
# ----------------------------------------------------------------------

def build_cooccurrence_graph(indicators: Iterable[Indicator]) -> nx.Graph:
    """
    Graph of signals observed together in the same raw record.

    Nodes are signal ids; edge weight is the number of shared records.
    """
    by_record: Dict[str, set] = defaultdict(set)
    graph = nx.Graph()
    for indicator in indicators:
        signal_id = f"{indicator.kind.value}:{indicator.normalized_value}"
        graph.add_node(signal_id, kind=indicator.kind.value)
        if indicator.record_id:
            by_record[indicator.record_id].add(signal_id)

    for record_id in sorted(by_record):
        for a, b in combinations(sorted(by_record[record_id]), 2):
            if graph.has_edge(a, b):
                graph[a][b]['weight'] += 1
            else:
                graph.add_edge(a, b, weight=1)
    return graph


def campaign_clusters(graph: nx.Graph, min_size: int = CAMPAIGN_CLUSTER_MIN_SIZE) -> List[List[str]]:
    """Connected groups of co-occurring signals large enough to suggest a campaign."""
    clusters = [sorted(component) for component in nx.connected_components(graph)
                if len(component) >= min_size]
    clusters.sort(key=lambda c: (-len(c), c[0]))
    return clusters
