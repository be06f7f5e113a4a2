"""Shared helpers: configuration loading, HTTP retries, file I/O."""

from .env import PipelineConfig, load, load_config, getenv
from .http import request_with_retries
from .io import atomic_write_json, read_json

__all__ = [
    'PipelineConfig', 'load', 'load_config', 'getenv',
    'request_with_retries', 'atomic_write_json', 'read_json'
]
