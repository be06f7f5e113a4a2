"""
Tests for configuration loading and source validation.
"""

import pytest

from cti_pipeline.errors import ConfigurationError
from cti_pipeline.utils.env import deep_merge, load_config


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / 'config.yaml'
    path.write_text('', encoding='utf-8')
    return path


def isolated(tmp_path):
    return {
        'paths': {'raw_dir': str(tmp_path / 'raw'), 'output_dir': str(tmp_path / 'out'),
                  'cache_dir': str(tmp_path / 'cache')},
        'sources': {'x.com': {'posts_file': str(tmp_path / 'none.json')}},
    }


class TestLoadConfig:

    def test_defaults(self, clean_env, config_file):
        config = load_config(config_file)
        assert config.reasoning.technical_model == 'qwen2:3b'
        assert config.reasoning.enabled is True
        assert config.queries['max_suggestions'] == 5
        assert config.public_dir is None

    def test_yaml_merges_over_defaults(self, clean_env, config_file):
        config_file.write_text('reasoning:\n  strategic_model: llama3\n', encoding='utf-8')
        config = load_config(config_file)
        assert config.reasoning.strategic_model == 'llama3'
        assert config.reasoning.technical_model == 'qwen2:3b'

    def test_missing_explicit_file(self, clean_env, tmp_path):
        with pytest.raises(ConfigurationError, match='not found'):
            load_config(tmp_path / 'missing.yaml')

    def test_environment_overrides(self, clean_env, config_file):
        clean_env.setenv('CTI_ENABLE_LLM', 'false')
        clean_env.setenv('X_POSTS_FILE', '/tmp/posts.json')
        clean_env.setenv('SHODAN_RATE_LIMIT', 'often')
        config = load_config(config_file)
        assert config.reasoning.enabled is False
        assert config.source_config('x.com')['posts_file'] == '/tmp/posts.json'
        assert config.source_config('shodan')['rate_limit_per_minute'] == 5

    def test_fallback_urls(self, clean_env, config_file):
        clean_env.setenv('TRANSLATION_FALLBACK_URLS', 'http://a.local/t, http://b.local/t')
        clean_env.setenv('LIBRETRANSLATE_URL', 'http://c.local/t')
        config = load_config(config_file)
        assert config.translation['fallback_urls'] == ['http://c.local/t', 'http://a.local/t',
                                                       'http://b.local/t']

    def test_retry_ceiling(self, clean_env, config_file):
        with pytest.raises(ConfigurationError, match='Invalid configuration'):
            load_config(config_file, overrides={'reasoning': {'max_retries': 5}})

    def test_deep_merge_keeps_base(self):
        base = {'a': {'b': 1, 'c': 2}, 'd': [1]}
        merged = deep_merge(base, {'a': {'b': 3}, 'd': [2]})
        assert merged == {'a': {'b': 3, 'c': 2}, 'd': [2]}
        assert base == {'a': {'b': 1, 'c': 2}, 'd': [1]}


class TestValidateSources:

    def test_nothing_available(self, clean_env, config_file, tmp_path):
        config = load_config(config_file, overrides=isolated(tmp_path))
        with pytest.raises(ConfigurationError, match='No data source'):
            config.validate_sources()

    def test_shodan_key_is_enough(self, clean_env, config_file, tmp_path):
        clean_env.setenv('SHODAN_API_KEY', 'k')
        load_config(config_file, overrides=isolated(tmp_path)).validate_sources()

    def test_posts_file_is_enough(self, clean_env, config_file, tmp_path):
        (tmp_path / 'none.json').write_text('[]', encoding='utf-8')
        load_config(config_file, overrides=isolated(tmp_path)).validate_sources()

    def test_saved_raw_records_are_enough(self, clean_env, config_file, tmp_path):
        raw = tmp_path / 'raw'
        raw.mkdir()
        (raw / 'shodan-2025-03-10.jsonl').write_text('', encoding='utf-8')
        load_config(config_file, overrides=isolated(tmp_path)).validate_sources()
