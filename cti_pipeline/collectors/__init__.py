"""Raw observation sources and the concurrent collection runner."""

from .base import RateLimiter, RawObservationSource, read_records, write_records
from .file_source import FileRecordSource
from .runner import CollectionResult, CollectionRunner
from .shodan import ShodanCollector
from .social import SocialPostCollector

__all__ = [
    'RateLimiter',
    'RawObservationSource',
    'read_records',
    'write_records',
    'FileRecordSource',
    'CollectionResult',
    'CollectionRunner',
    'ShodanCollector',
    'SocialPostCollector',
]
