"""
Tests for the multi-stage analyzer and its deterministic fallbacks.
"""

import pytest

from cti_pipeline.analysis import AnalysisStage, MultiStageAnalyzer, StageStatus
from cti_pipeline.errors import ReasoningServiceError

from .fakes import (
    ASSESSMENT_RESPONSE, EXECUTIVE_RESPONSE, EXTRACTION_RESPONSE, MODELS, NARRATIVE_RESPONSE,
    FakeReasoningClient, build_context, fixed_clock
)


class TestFallbackAnalysis:

    def test_no_client_falls_back_everywhere(self, correlated_records):
        report = MultiStageAnalyzer(None, MODELS, clock=fixed_clock).run(build_context(correlated_records))

        assert [s.stage for s in report.stages] == list(AnalysisStage)
        assert all(s.status == StageStatus.FALLBACK for s in report.stages)
        assert all(s.record is not None for s in report.stages)
        assert not report.used_reasoning_service
        assert report.fallback_stages == [s.value for s in AnalysisStage]

    def test_model_is_recorded_even_on_fallback(self, correlated_records):
        report = MultiStageAnalyzer(None, MODELS, clock=fixed_clock).run(build_context(correlated_records))
        stages = report.model_metadata()['stages']
        assert stages['extraction']['model'] == 'qwen2:3b'
        assert stages['correlation_narrative']['model'] == 'qwen2:3b'
        assert stages['strategic_assessment']['model'] == 'mistral'
        assert stages['executive_report']['status'] == 'fallback'

    def test_disabled_client_is_never_called(self, correlated_records):
        client = FakeReasoningClient([EXTRACTION_RESPONSE], available=False)
        MultiStageAnalyzer(client, MODELS, clock=fixed_clock).run(build_context(correlated_records))
        assert client.calls == []

    def test_fallback_records_come_from_structured_data(self, correlated_records):
        report = MultiStageAnalyzer(None, MODELS, clock=fixed_clock).run(build_context(correlated_records))

        extraction = report.extraction.record
        assert {ip['value'] for ip in extraction.ips} == {'45.33.32.156', '185.220.101.5'}
        cve = extraction.cves[0]
        assert cve['id'] == 'CVE-2024-6387'
        assert cve['exploitability'] == 'high'

        narrative = report.narrative.record
        assert narrative.pattern == 'simultaneous'
        assert len(narrative.key_correlations) == 2

        assessment = report.assessment.record
        assert assessment.risk_level in ('critical', 'high', 'medium', 'low')
        assert 0 <= assessment.risk_score <= 100
        assert any('port 22' in surface for surface in assessment.attack_surface)

        executive = report.executive.record
        assert executive.headline
        assert executive.situation_summary
        assert executive.immediate_actions[0] == 'Patch or mitigate CVE-2024-6387'

    def test_empty_context(self):
        report = MultiStageAnalyzer(None, MODELS, clock=fixed_clock).run(build_context([]))
        assert report.extraction.record.ioc_count == 0
        assert report.narrative.record.pattern == 'isolated'
        assert report.assessment.record.risk_score == 0
        assert report.assessment.record.threat_landscape.startswith('Insufficient data')
        assert report.executive.record.headline == 'Threat Intelligence Analysis Complete'


class TestServiceAnalysis:

    def test_all_stages_complete(self, correlated_records):
        client = FakeReasoningClient([EXTRACTION_RESPONSE, NARRATIVE_RESPONSE,
                                      ASSESSMENT_RESPONSE, EXECUTIVE_RESPONSE])
        report = MultiStageAnalyzer(client, MODELS, clock=fixed_clock).run(build_context(correlated_records))

        assert all(s.status == StageStatus.COMPLETED for s in report.stages)
        assert [c['model'] for c in client.calls] == ['qwen2:3b', 'qwen2:3b', 'mistral', 'mistral']

        extraction = report.extraction.record
        assert extraction.cves[0]['id'] == 'CVE-2024-6387'
        assert extraction.cves[0]['severity'] == 'critical'
        assert extraction.ips[0]['confidence'] == 0.8

        assert report.narrative.record.pattern == 'simultaneous'
        assert report.narrative.record.emerging_threats == ['regreSSHion exploitation']

        assessment = report.assessment.record
        assert assessment.kill_chain_phase == 'Exploitation'
        assert (assessment.risk_level, assessment.risk_score) == ('high', 72)

        executive = report.executive.record
        assert executive.headline == 'SSH exploitation wave'
        assert executive.key_findings[0]['severity'] == 'medium'

    def test_upstream_records_reach_later_prompts(self, correlated_records):
        client = FakeReasoningClient([EXTRACTION_RESPONSE, NARRATIVE_RESPONSE,
                                      ASSESSMENT_RESPONSE, EXECUTIVE_RESPONSE])
        MultiStageAnalyzer(client, MODELS, clock=fixed_clock).run(build_context(correlated_records))
        assert 'T1110' in client.calls[1]['prompt']
        assert 'Opportunistic SSH exploitation.' in client.calls[3]['prompt']

    def test_unparseable_response_is_retried(self, correlated_records):
        client = FakeReasoningClient(['Sorry, I cannot help with that.', EXTRACTION_RESPONSE])
        report = MultiStageAnalyzer(client, MODELS, clock=fixed_clock).run(build_context(correlated_records))

        assert report.extraction.status == StageStatus.COMPLETED
        assert report.extraction.attempts == 2
        # responses ran out, so the remaining stages degrade
        assert report.narrative.status == StageStatus.FALLBACK
        assert report.narrative.attempts == 1

    def test_repeated_bad_responses_fall_back(self, correlated_records):
        client = FakeReasoningClient(['{"ttps": []}', '{"ttps": []}'])
        report = MultiStageAnalyzer(client, MODELS, clock=fixed_clock).run(build_context(correlated_records))

        extraction = report.extraction
        assert extraction.status == StageStatus.FALLBACK
        assert extraction.attempts == 2
        assert extraction.error_message.startswith('unparseable response')
        assert extraction.record.cves[0]['id'] == 'CVE-2024-6387'

    def test_service_error_is_not_retried(self, correlated_records):
        client = FakeReasoningClient(error=ReasoningServiceError('connection refused'))
        report = MultiStageAnalyzer(client, MODELS, clock=fixed_clock).run(build_context(correlated_records))

        assert len(client.calls) == 4
        assert all(s.attempts == 1 for s in report.stages)
        assert report.executive.error_message == 'connection refused'

    def test_unknown_correlation_pattern_is_a_parse_failure(self, correlated_records):
        bad_narrative = 'NARRATIVE:\nSomething happened.\nCORRELATION PATTERN: it depends'
        client = FakeReasoningClient([EXTRACTION_RESPONSE, bad_narrative, bad_narrative])
        report = MultiStageAnalyzer(client, MODELS, clock=fixed_clock).run(build_context(correlated_records))
        assert report.extraction.status == StageStatus.COMPLETED
        assert report.narrative.status == StageStatus.FALLBACK
        assert report.narrative.attempts == 2

    def test_timeout_grows_with_prompt_size(self, correlated_records):
        client = FakeReasoningClient([EXTRACTION_RESPONSE, NARRATIVE_RESPONSE,
                                      ASSESSMENT_RESPONSE, EXECUTIVE_RESPONSE])
        MultiStageAnalyzer(client, MODELS, clock=fixed_clock).run(build_context(correlated_records))

        for call in client.calls:
            assert call['timeout'] == pytest.approx(60.0 + 15.0 * len(call['prompt']) / 1000.0)
        longest = max(client.calls, key=lambda c: len(c['prompt']))
        shortest = min(client.calls, key=lambda c: len(c['prompt']))
        assert longest['timeout'] > shortest['timeout']

    def test_timeout_is_capped_by_the_client(self, correlated_records):
        client = FakeReasoningClient([EXTRACTION_RESPONSE])
        client.timeout_seconds = 61.0
        MultiStageAnalyzer(client, MODELS, clock=fixed_clock).run(build_context(correlated_records))
        assert client.calls[0]['timeout'] == 61.0
