"""
End-to-end tests for the pipeline and its command line interface.
"""

import json

import pytest
import yaml

from cti_pipeline import cli
from cti_pipeline.collectors import RawObservationSource, write_records
from cti_pipeline.normalizers.schema import DataSource
from cti_pipeline.pipeline import CTIPipeline
from cti_pipeline.utils.env import load_config

from .fakes import fixed_clock


def settings(tmp_path, translate=False):
    return {
        'reasoning': {'enabled': False},
        'translation': {'enabled': translate, 'fallback_urls': []},
        'paths': {'raw_dir': str(tmp_path / 'raw'), 'output_dir': str(tmp_path / 'out'),
                  'cache_dir': str(tmp_path / 'cache')},
        'sources': {'x.com': {'posts_file': str(tmp_path / 'none.json')}},
    }


@pytest.fixture
def config_file(tmp_path):
    def write(translate=False):
        path = tmp_path / 'config.yaml'
        path.write_text(yaml.safe_dump(settings(tmp_path, translate)), encoding='utf-8')
        return path
    return write


def offline_pipeline(config_file, translate=False, sources=None):
    return CTIPipeline(load_config(config_file(translate)), clock=fixed_clock, sources=sources)


class QueryRecordingSource(RawObservationSource):
    source = DataSource.SHODAN

    def __init__(self, records):
        super().__init__()
        self.records = records
        self.queries = None

    def is_available(self):
        return True

    def with_queries(self, queries):
        self.queries = list(queries)
        return self

    def collect(self):
        return list(self.records)


class TestPipeline:

    def test_process_publishes_artifact_and_intermediates(self, clean_env, config_file, tmp_path,
                                                         correlated_records):
        result = offline_pipeline(config_file).process(correlated_records)

        out = tmp_path / 'out'
        assert result.paths == [out / 'cti-dashboard.json']
        published = json.loads((out / 'cti-dashboard.json').read_text(encoding='utf-8'))
        assert published['status'] == result.artifact['status']
        assert published['ctiAnalysis']['model'] == 'deterministic-fallback'
        assert (out / 'processed-indicators.json').exists()
        assert (out / 'analysis-stages.json').exists()
        assert result.translated_paths == []
        assert 0 < len(result.suggestions) <= 5

    def test_history_carries_between_runs(self, clean_env, config_file, correlated_records):
        first = offline_pipeline(config_file).process(correlated_records)
        second = offline_pipeline(config_file).process(correlated_records)
        baseline = second.artifact['assessmentLayer']['baselineComparison']
        assert baseline['previousRiskScore'] == first.artifact['status']['riskScore']
        assert baseline['delta'] == 0

    def test_empty_run_still_publishes(self, clean_env, config_file):
        result = offline_pipeline(config_file).process([])
        assert result.artifact['status']['riskLevel'] == 'low'
        assert 'ctiAnalysis' not in result.artifact
        assert result.suggestions == []

    def test_translation_keeps_text_when_no_provider_answers(self, clean_env, config_file, tmp_path,
                                                             correlated_records):
        result = offline_pipeline(config_file, translate=True).process(correlated_records)
        assert result.translated_paths == [tmp_path / 'out' / 'cti-dashboard-es.json']
        translated = json.loads(result.translated_paths[0].read_text(encoding='utf-8'))
        assert translated['executive'] == result.artifact['executive']

    def test_run_replays_saved_records(self, clean_env, config_file, tmp_path, correlated_records):
        write_records(correlated_records[:2], tmp_path / 'raw' / 'shodan-2025-03-09.jsonl')
        write_records(correlated_records[2:], tmp_path / 'raw' / 'x.com-2025-03-09.jsonl')

        result = offline_pipeline(config_file).run()
        assert result.counts == {'shodan': 2, 'x.com': 1}
        assert result.errors == {}
        assert result.artifact['indicators']['cves'] == ['CVE-2024-6387']


class TestCli:

    def test_analyze_saved_records(self, clean_env, config_file, tmp_path, correlated_records, capsys):
        write_records(correlated_records, tmp_path / 'raw' / 'shodan-2025-03-09.jsonl')
        code = cli.main(['--config', str(config_file()), '--no-llm', '--no-translate', 'analyze'])
        assert code == 0
        assert (tmp_path / 'out' / 'cti-dashboard.json').exists()
        assert 'Risk:' in capsys.readouterr().out

    def test_no_source_is_a_configuration_error(self, clean_env, config_file):
        assert cli.main(['--config', str(config_file()), 'analyze']) == 2

    def test_missing_command_prints_help(self):
        assert cli.main([]) == 1


class TestQueryFeedback:

    def test_run_collects_with_previous_suggestions(self, clean_env, config_file, correlated_records):
        first = offline_pipeline(config_file).process(correlated_records)

        source = QueryRecordingSource(correlated_records[:2])
        offline_pipeline(config_file, sources=[source]).run()
        assert source.queries == [s.query_string for s in first.suggestions]
        assert 'product:OpenSSH port:22' in source.queries

    def test_published_artifact_is_used_without_query_cache(self, clean_env, config_file, tmp_path):
        out = tmp_path / 'out'
        out.mkdir()
        (out / 'cti-dashboard.json').write_text(json.dumps({'nextQueries': [
            {'query': 'product:redis', 'rationale': 'Exposed Redis', 'priority': 'medium', 'tags': ['port:6379']},
        ]}), encoding='utf-8')
        assert offline_pipeline(config_file).previous_queries() == ['product:redis']

    def test_explicit_queries_win(self, clean_env, config_file, correlated_records):
        offline_pipeline(config_file).process(correlated_records)
        source = QueryRecordingSource(correlated_records[:2])
        offline_pipeline(config_file, sources=[source]).run(queries=['port:23'])
        assert source.queries == ['port:23']

    def test_first_cycle_has_nothing_to_feed_back(self, clean_env, config_file, correlated_records):
        source = QueryRecordingSource(correlated_records[:2])
        offline_pipeline(config_file, sources=[source]).run()
        assert source.queries is None
