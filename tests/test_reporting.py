"""
Tests for artifact assembly and publishing.
"""

import json

from cti_pipeline.analysis import MultiStageAnalyzer
from cti_pipeline.normalizers.schema import Priority, QuerySuggestion
from cti_pipeline.reporting import ArtifactBuilder, ArtifactPublisher
from cti_pipeline.scoring import HistoricalCache

from .fakes import (
    ASSESSMENT_RESPONSE, EXECUTIVE_RESPONSE, EXTRACTION_RESPONSE, MODELS, NARRATIVE_RESPONSE,
    FakeReasoningClient, build_context, fixed_clock
)

REQUIRED = ['meta', 'status', 'executive', 'metrics', 'timeline', 'sources', 'indicators']


def builder():
    return ArtifactBuilder({'models': MODELS}, clock=fixed_clock)


class TestArtifactBuilder:

    def test_empty_run_has_only_required_sections(self):
        artifact = builder().build(build_context([]))

        assert list(artifact) == REQUIRED
        assert artifact['status'] == {'riskLevel': 'low', 'riskScore': 0, 'trend': 'stable',
                                      'confidenceLevel': 0}
        assert artifact['executive']['headline'] == 'No Active Threats Detected'
        metrics = artifact['metrics']
        assert [metrics[k] for k in ('totalSignals', 'criticalCount', 'highCount',
                                     'mediumCount', 'lowCount')] == [0, 0, 0, 0, 0]
        assert artifact['indicators'] == {'cves': [], 'domains': [], 'ips': [], 'keywords': []}

    def test_meta_timestamps(self):
        meta = builder().build(build_context([]))['meta']
        assert meta['generatedAt'] == '2025-03-10T12:00:00Z'
        assert meta['validUntil'] == '2025-03-10T18:00:00Z'

    def test_sections_without_analysis(self, correlated_records):
        artifact = builder().build(build_context(correlated_records))

        assert list(artifact)[:len(REQUIRED)] == REQUIRED
        for section in ('correlation', 'infrastructure', 'socialIntel', 'assessmentLayer', 'signalLayer'):
            assert section in artifact
        for section in ('ctiAnalysis', 'modelMetadata', 'nextQueries'):
            assert section not in artifact

        assert artifact['indicators']['cves'] == ['CVE-2024-6387']
        assert isinstance(artifact['status']['riskScore'], int)
        assert 0 <= artifact['status']['riskScore'] <= 100
        assert artifact['metrics']['totalSignals'] > 0

    def test_correlation_section(self, correlated_records):
        correlation = builder().build(build_context(correlated_records))['correlation']
        assert correlation['pattern'] == 'simultaneous'
        ids = [s['id'] for s in correlation['signals']]
        assert set(ids) == {'cve:CVE-2024-6387', 'port:22'}
        assert all(isinstance(s['timeDeltaHours'], float) for s in correlation['signals'])

    def test_infrastructure_ips_are_masked(self, correlated_records):
        hosts = builder().build(build_context(correlated_records))['infrastructure']['sampleHosts']
        assert [h['ip'] for h in hosts] == ['45.33.xxx.xxx']

    def test_assessment_layer_shape(self, correlated_records):
        layer = builder().build(build_context(correlated_records))['assessmentLayer']
        assert set(layer) >= {'correlation', 'scoring', 'baselineComparison', 'freshness',
                              'classification', 'iocStats', 'narrative'}
        assert 0.0 <= layer['correlation']['score'] <= 1.0
        assert layer['classification']['type']

    def test_fallback_analysis_is_labelled(self, correlated_records):
        context = build_context(correlated_records)
        report = MultiStageAnalyzer(None, MODELS, clock=fixed_clock).run(context)
        artifact = builder().build(context, report)

        assert artifact['ctiAnalysis']['model'] == 'deterministic-fallback'
        assert set(artifact['ctiAnalysis']['stageStatus'].values()) == {'fallback'}
        assert artifact['modelMetadata']['technical'] == 'qwen2:3b'
        assert artifact['modelMetadata']['fallbackStages']

    def test_completed_assessment_sets_status(self, correlated_records):
        context = build_context(correlated_records)
        client = FakeReasoningClient([EXTRACTION_RESPONSE, NARRATIVE_RESPONSE,
                                      ASSESSMENT_RESPONSE, EXECUTIVE_RESPONSE])
        report = MultiStageAnalyzer(client, MODELS, clock=fixed_clock).run(context)
        artifact = builder().build(context, report)

        assert artifact['status']['riskScore'] == 72
        assert artifact['status']['riskLevel'] == 'elevated'
        assert artifact['ctiAnalysis']['model'] == 'mistral'
        assert artifact['executive']['headline'] == 'SSH exploitation wave'
        assert artifact['executive']['recommendedActions'] == ['Patch OpenSSH']

    def test_next_queries(self, correlated_records):
        suggestion = QuerySuggestion(query_string='product:OpenSSH port:22', rationale='SSH exposure',
                                     priority=Priority.HIGH, tags=['cve:CVE-2024-6387'])
        artifact = builder().build(build_context(correlated_records), suggestions=[suggestion])
        assert artifact['nextQueries'] == [suggestion.to_dict()]

    def test_history_drives_trend(self, tmp_path, correlated_records):
        history = HistoricalCache(tmp_path, clock=fixed_clock)
        history.record(0, 'low', [])
        artifact = builder().build(build_context(correlated_records), history=history)
        baseline = artifact['assessmentLayer']['baselineComparison']
        assert baseline['previousRiskScore'] == 0
        assert artifact['status']['trend'] == baseline['trendDirection']


class TestArtifactPublisher:

    def test_publishes_to_both_directories(self, tmp_path):
        publisher = ArtifactPublisher(tmp_path / 'output', tmp_path / 'public')
        paths = publisher.publish({'meta': {'version': '2.0.0'}})

        assert paths == [tmp_path / 'output' / 'cti-dashboard.json',
                         tmp_path / 'public' / 'cti-dashboard.json']
        for path in paths:
            assert json.loads(path.read_text(encoding='utf-8')) == {'meta': {'version': '2.0.0'}}
            assert [p.name for p in path.parent.iterdir()] == ['cti-dashboard.json']

    def test_same_directory_written_once(self, tmp_path):
        paths = ArtifactPublisher(tmp_path, tmp_path).publish({'a': 1}, 'cti-dashboard-es.json')
        assert paths == [tmp_path / 'cti-dashboard-es.json']

    def test_save_intermediate(self, tmp_path):
        path = ArtifactPublisher(tmp_path).save_intermediate('analysis-stages.json', {'stages': []})
        assert json.loads(path.read_text(encoding='utf-8')) == {'stages': []}
