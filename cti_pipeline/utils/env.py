"""
Environment and configuration loading.

Defaults live in DEFAULT_CONFIG, are merged with config/config.yaml when it
exists, and are finally overridden by environment variables (.env included).
The pipeline must run with none of these set, using fallbacks only.
"""

import copy
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError

from ..errors import ConfigurationError

logger = logging.getLogger(__name__)

ROOT = Path(__file__).resolve().parents[2]
ENV_PATH = ROOT / ".env"
CFG_PATH = ROOT / "config" / "config.yaml"

DEFAULT_CONFIG: Dict[str, Any] = {
    'reasoning': {
        'host': 'http://localhost:11434',
        'technical_model': 'qwen2:3b',
        'strategic_model': 'mistral:7b-instruct-q4_0',
        'translator_model': 'zongwei/gemma3-translator:1b',
        'timeout_seconds': 300,
        'max_retries': 2,
        'retry_backoff_seconds': 2.0,
        'enabled': True,
    },
    'sources': {
        'shodan': {
            'auth_env_key': 'SHODAN_API_KEY',
            'base_url': 'https://api.shodan.io',
            'query': 'port:22,23,3389,445,139 country:US,CN,RU',
            'limit': 100,
            'rate_limit_per_minute': 5,
            'cooldown_seconds': 3.0,
            'timeout_seconds': 30,
            'max_retries': 2,
            'retry_backoff_seconds': 2.0,
        },
        'x.com': {
            'posts_file': 'data/raw/x-posts.json',
            'rate_limit_per_minute': 30,
            'cooldown_seconds': 0.0,
            'min_length': 50,
        },
    },
    'paths': {
        'output_dir': 'data/cti-output',
        'public_dir': None,
        'cache_dir': 'data/cti-cache',
        'raw_dir': 'data/raw',
    },
    'translation': {
        'enabled': True,
        'target_language': 'es',
        'source_language': 'en',
        'cache_ttl_seconds': 7 * 24 * 3600,
        'batch_size': 4,
        'short_timeout_seconds': 25,
        'long_timeout_seconds': 60,
        'long_text_threshold': 600,
        'max_retries': 2,
        'min_length_ratio': 0.5,
        'max_length_ratio': 2.5,
        'fallback_urls': ['http://127.0.0.1:5000/translate'],
        'fallback_timeout_seconds': 12,
    },
    'queries': {
        'max_suggestions': 5,
        'plan': 'dev',
        'workers': 4,
    },
}

# env var -> (dotted config path, caster)
ENV_OVERRIDES = {
    'OLLAMA_HOST': ('reasoning.host', str),
    'OLLAMA_MODEL_TECHNICAL': ('reasoning.technical_model', str),
    'OLLAMA_MODEL_STRATEGIC': ('reasoning.strategic_model', str),
    'OLLAMA_MODEL_TRANSLATOR': ('reasoning.translator_model', str),
    'CTI_REQUEST_TIMEOUT': ('reasoning.timeout_seconds', float),
    'CTI_MAX_RETRIES': ('reasoning.max_retries', int),
    'CTI_RETRY_BACKOFF': ('reasoning.retry_backoff_seconds', float),
    'CTI_ENABLE_LLM': ('reasoning.enabled', 'bool'),
    'SHODAN_QUERY': ('sources.shodan.query', str),
    'SHODAN_RATE_LIMIT': ('sources.shodan.rate_limit_per_minute', int),
    'X_POSTS_FILE': ('sources.x.com.posts_file', str),
    'CTI_OUTPUT_DIR': ('paths.output_dir', str),
    'CTI_PUBLIC_DIR': ('paths.public_dir', str),
    'CTI_CACHE_DIR': ('paths.cache_dir', str),
    'CTI_RAW_DIR': ('paths.raw_dir', str),
    'CTI_ENABLE_TRANSLATION': ('translation.enabled', 'bool'),
    'TARGET_LANGUAGE': ('translation.target_language', str),
    'SOURCE_LANGUAGE': ('translation.source_language', str),
    'TRANSLATION_CACHE_TTL': ('translation.cache_ttl_seconds', int),
    'TRANSLATION_BATCH_SIZE': ('translation.batch_size', int),
    'TRANSLATION_MIN_RATIO': ('translation.min_length_ratio', float),
    'TRANSLATION_MAX_RATIO': ('translation.max_length_ratio', float),
    'TRANSLATION_FALLBACK_URLS': ('translation.fallback_urls', list),
}


def getenv(key: str, default: Optional[str] = None) -> Optional[str]:
    """Get environment variable with optional default."""
    return os.getenv(key, default)


def _cast(value: str, caster) -> Any:
    if caster == 'bool':
        return value.strip().lower() not in ('0', 'false', 'no', 'off', '')
    if caster is list:
        return [item.strip() for item in value.split(',') if item.strip()]
    return caster(value)


def _set_path(config: Dict[str, Any], dotted: str, value: Any):
    # "sources.x.com.posts_file" -> sources / "x.com" / posts_file
    head, _, rest = dotted.partition('.')
    if head == 'sources':
        source, _, key = rest.rpartition('.')
        config.setdefault('sources', {}).setdefault(source, {})[key] = value
        return
    section, _, key = dotted.rpartition('.')
    config.setdefault(section, {})[key] = value


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge override into a copy of base."""
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def load(config_path: Optional[Path] = None) -> Dict[str, Any]:
    """
    Load environment variables and configuration.

    Args:
        config_path: Optional YAML file, defaults to config/config.yaml

    Returns:
        Merged configuration dictionary
    """
    load_dotenv(dotenv_path=ENV_PATH, override=False)

    config = copy.deepcopy(DEFAULT_CONFIG)
    path = Path(config_path) if config_path else CFG_PATH
    if path.exists():
        with open(path, "r", encoding="utf-8") as f:
            file_config = yaml.safe_load(f) or {}
        config = deep_merge(config, file_config)
        logger.debug(f"Loaded configuration from {path}")
    elif config_path:
        raise ConfigurationError(f"Configuration file not found: {path}")

    for env_key, (dotted, caster) in ENV_OVERRIDES.items():
        raw = os.getenv(env_key)
        if raw is None or raw.strip() == '':
            continue
        try:
            _set_path(config, dotted, _cast(raw, caster))
        except ValueError:
            logger.warning(f"Ignoring invalid value for {env_key}: {raw!r}")

    # Single fallback URL and LibreTranslate-style names take precedence
    single = os.getenv('ANYLANG_API_URL') or os.getenv('LIBRETRANSLATE_URL')
    if single:
        urls = config['translation'].get('fallback_urls') or []
        config['translation']['fallback_urls'] = [single] + [u for u in urls if u != single]

    return config


class ReasoningSettings(BaseModel):
    host: str
    technical_model: str
    strategic_model: str
    translator_model: str
    timeout_seconds: float = Field(gt=0)
    max_retries: int = Field(ge=0, le=3)
    retry_backoff_seconds: float = Field(ge=0)
    enabled: bool = True


class PipelineConfig(BaseModel):
    """Typed view of the merged configuration dictionary."""

    reasoning: ReasoningSettings
    sources: Dict[str, Dict[str, Any]]
    paths: Dict[str, Optional[str]]
    translation: Dict[str, Any]
    queries: Dict[str, Any]

    @property
    def output_dir(self) -> Path:
        return Path(self.paths.get('output_dir') or 'data/cti-output')

    @property
    def cache_dir(self) -> Path:
        return Path(self.paths.get('cache_dir') or 'data/cti-cache')

    @property
    def raw_dir(self) -> Path:
        return Path(self.paths.get('raw_dir') or 'data/raw')

    @property
    def public_dir(self) -> Optional[Path]:
        public = self.paths.get('public_dir')
        return Path(public) if public else None

    def source_config(self, name: str) -> Dict[str, Any]:
        return dict(self.sources.get(name, {}))

    def shodan_api_key(self) -> Optional[str]:
        key_name = self.source_config('shodan').get('auth_env_key', 'SHODAN_API_KEY')
        return getenv(key_name)

    def validate_sources(self):
        """
        Fail fast when no source of truth exists at all.

        Raises:
            ConfigurationError: No Shodan credential, no posts file and no
                saved raw records are available
        """
        posts_file = self.source_config('x.com').get('posts_file')
        has_posts = bool(posts_file) and Path(posts_file).exists()
        has_raw = self.raw_dir.exists() and any(self.raw_dir.glob('*.jsonl'))
        if not (self.shodan_api_key() or has_posts or has_raw):
            raise ConfigurationError(
                "No data source configured: set SHODAN_API_KEY, provide X_POSTS_FILE "
                f"or place saved raw records under {self.raw_dir}"
            )


def load_config(config_path: Optional[Path] = None,
                overrides: Optional[Dict[str, Any]] = None) -> PipelineConfig:
    """Load the merged configuration as a PipelineConfig."""
    config = load(config_path)
    if overrides:
        config = deep_merge(config, overrides)
    try:
        return PipelineConfig(**config)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e
