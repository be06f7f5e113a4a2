"""
Tests for the cross-source correlation engine.
"""

from datetime import timedelta

from cti_pipeline.correlation import (
    CorrelationEngine, build_cooccurrence_graph, campaign_clusters
)
from cti_pipeline.normalizers import IndicatorExtractor
from cti_pipeline.normalizers.schema import (
    DataSource, DominantPattern, Indicator, IndicatorKind, Precedence
)

from .fakes import FIXED_NOW, hours_ago, shodan_record


def indicator(kind, value, source, hours=None, excerpt=None):
    observed = FIXED_NOW - timedelta(hours=hours) if hours is not None else None
    return Indicator(kind=kind, value=value, source=source, observed_at=observed, excerpt=excerpt)


def signal(data, signal_id):
    return next(s for s in data.signals if s.id == signal_id)


class TestCorrelationEngine:

    def test_half_hour_gap_is_simultaneous(self, correlated_records):
        data = CorrelationEngine().correlate(IndicatorExtractor().extract(correlated_records))

        cve = signal(data, 'cve:CVE-2024-6387')
        assert cve.is_cross_source
        assert cve.temporal.precedence == Precedence.SIMULTANEOUS
        assert abs(cve.temporal.delta_hours - 0.5) < 1e-9
        assert signal(data, 'port:22').temporal.precedence == Precedence.SIMULTANEOUS

        summary = data.summary
        assert summary.correlated == 2
        assert summary.infra_only == 3
        assert summary.social_only == 1
        assert summary.total_signals == 6
        assert summary.dominant_pattern == DominantPattern.SIMULTANEOUS

    def test_signals_sorted_by_id(self, correlated_records):
        data = CorrelationEngine().correlate(IndicatorExtractor().extract(correlated_records))
        ids = [s.id for s in data.signals]
        assert ids == sorted(ids)

    def test_input_order_does_not_matter(self, correlated_records):
        indicators = IndicatorExtractor().extract(correlated_records)
        forward = CorrelationEngine().correlate(indicators).to_dict()
        backward = CorrelationEngine().correlate(list(reversed(indicators))).to_dict()
        assert forward == backward

    def test_infrastructure_leading_social(self):
        data = CorrelationEngine().correlate([
            indicator(IndicatorKind.PORT, '22', DataSource.SHODAN, hours=10),
            indicator(IndicatorKind.PORT, '22', DataSource.X_COM, hours=1),
        ])
        temporal = signal(data, 'port:22').temporal
        assert temporal.precedence == Precedence.INFRA_FIRST
        assert abs(temporal.delta_hours - 9.0) < 1e-9
        assert temporal.pattern == 'exploitation'
        assert 'preceded social discussion by ~9.0h' in temporal.interpretation
        assert data.summary.dominant_pattern == DominantPattern.INFRA_FIRST

    def test_social_leading_infrastructure(self):
        data = CorrelationEngine().correlate([
            indicator(IndicatorKind.CVE, 'CVE-2024-3400', DataSource.X_COM, hours=20),
            indicator(IndicatorKind.CVE, 'CVE-2024-3400', DataSource.SHODAN, hours=2),
        ])
        temporal = signal(data, 'cve:CVE-2024-3400').temporal
        assert temporal.precedence == Precedence.SOCIAL_FIRST
        assert temporal.pattern == 'discussion'
        assert data.summary.dominant_pattern == DominantPattern.SOCIAL_FIRST
        assert abs(data.summary.average_delta_hours - 18.0) < 1e-9

    def test_single_source_is_insufficient_data(self):
        records = [shodan_record('45.33.32.156', 22, hours_ago(1)),
                   shodan_record('185.220.101.5', 3389, hours_ago(2))]
        data = CorrelationEngine().correlate(IndicatorExtractor().extract(records))
        assert data.summary.correlated == 0
        assert data.summary.dominant_pattern == DominantPattern.INSUFFICIENT_DATA
        assert all(s.temporal is None for s in data.signals)

    def test_empty_input(self):
        data = CorrelationEngine().correlate([])
        assert data.signals == []
        assert data.summary.total_signals == 0
        assert data.summary.average_delta_hours is None
        assert data.summary.dominant_pattern == DominantPattern.INSUFFICIENT_DATA

    def test_missing_timestamps_give_unknown_precedence(self):
        data = CorrelationEngine().correlate([
            indicator(IndicatorKind.PORT, '3389', DataSource.SHODAN),
            indicator(IndicatorKind.PORT, '3389', DataSource.X_COM),
        ])
        temporal = signal(data, 'port:3389').temporal
        assert temporal.precedence == Precedence.UNKNOWN
        assert temporal.confidence == 0.0
        assert data.summary.average_delta_hours is None
        # cross-source but no usable timestamps to vote with
        assert data.summary.dominant_pattern == DominantPattern.SIMULTANEOUS

    def test_tie_prefers_infrastructure_first(self):
        data = CorrelationEngine().correlate([
            indicator(IndicatorKind.PORT, '22', DataSource.SHODAN, hours=10),
            indicator(IndicatorKind.PORT, '22', DataSource.X_COM, hours=2),
            indicator(IndicatorKind.PORT, '445', DataSource.X_COM, hours=10),
            indicator(IndicatorKind.PORT, '445', DataSource.SHODAN, hours=2),
        ])
        assert data.summary.dominant_pattern == DominantPattern.INFRA_FIRST

    def test_tie_break_is_configurable(self):
        engine = CorrelationEngine({'precedence_tie_break': ['social-first', 'infra-first', 'simultaneous']})
        data = engine.correlate([
            indicator(IndicatorKind.PORT, '22', DataSource.SHODAN, hours=10),
            indicator(IndicatorKind.PORT, '22', DataSource.X_COM, hours=2),
            indicator(IndicatorKind.PORT, '445', DataSource.X_COM, hours=10),
            indicator(IndicatorKind.PORT, '445', DataSource.SHODAN, hours=2),
        ])
        assert data.summary.dominant_pattern == DominantPattern.SOCIAL_FIRST

    def test_sample_evidence_is_capped(self):
        indicators = [
            indicator(IndicatorKind.KEYWORD, 'botnet', DataSource.X_COM, hours=h, excerpt=f"post {h}")
            for h in range(1, 6)
        ]
        data = CorrelationEngine().correlate(indicators)
        observation = signal(data, 'keyword:botnet').per_source[0]
        assert observation.count == 5
        assert observation.sample_evidence == ['post 5', 'post 4', 'post 3']
        assert observation.first_seen <= observation.last_seen


class TestCooccurrenceGraph:

    def test_host_indicators_form_a_cluster(self):
        records = [shodan_record('45.33.32.156', 22, hours_ago(1), vulns=['CVE-2024-6387'])]
        graph = build_cooccurrence_graph(IndicatorExtractor().extract(records))
        clusters = campaign_clusters(graph)
        assert clusters == [['cve:CVE-2024-6387', 'ip:45.33.32.156', 'port:22']]

    def test_small_components_are_not_clusters(self):
        records = [shodan_record('45.33.32.156', 22, hours_ago(1))]
        graph = build_cooccurrence_graph(IndicatorExtractor().extract(records))
        assert graph.has_edge('ip:45.33.32.156', 'port:22')
        assert campaign_clusters(graph) == []
