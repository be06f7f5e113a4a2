"""Follow-up collection query suggestions."""

from .cache import DailyQueryCache
from .generator import MAX_SUGGESTIONS, QueryGenerator
from .preprocessor import ProcessedQuery, ShodanQueryPreprocessor

__all__ = [
    'DailyQueryCache',
    'MAX_SUGGESTIONS',
    'QueryGenerator',
    'ProcessedQuery',
    'ShodanQueryPreprocessor',
]
