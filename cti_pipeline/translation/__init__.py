"""Artifact translation with technical-token protection."""

from .cache import CacheEntry, TranslationCache
from .fallback import HttpTranslationProvider
from .rules import classify_technical, protect, restore, should_translate
from .translator import JsonTranslator, walk

__all__ = [
    'CacheEntry',
    'TranslationCache',
    'HttpTranslationProvider',
    'JsonTranslator',
    'classify_technical',
    'protect',
    'restore',
    'should_translate',
    'walk',
]
