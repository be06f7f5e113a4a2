"""
Structure-preserving translation of JSON artifacts.

The tree is walked by an explicit visitor that carries the enclosing field
name and the dotted path of every leaf. Eligible strings are translated once
each, in bounded batches, and written back at every eligible position they
occur. Everything else, including key order and array lengths, is untouched.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..analysis.reasoning import ReasoningClient
from ..errors import ReasoningServiceError, TranslationError
from .cache import TranslationCache
from .fallback import HttpTranslationProvider
from .rules import PLACEHOLDER_PATTERN, only_placeholders, placeholders_intact, protect, restore, should_translate

logger = logging.getLogger(__name__)

LANGUAGE_NAMES = {
    'en': 'English',
    'es': 'Spanish',
    'pt': 'Portuguese',
    'fr': 'French',
    'de': 'German',
}

JsonValue = Any
LeafVisitor = Callable[[str, str, str], str]


def walk(node: JsonValue, visit: LeafVisitor, field: str = '', path: Tuple[str, ...] = ()) -> JsonValue:
    """
    Rebuild a JSON tree, passing every string leaf through `visit`.

    Args:
        node: dict, list, str, number, bool or None
        visit: Called as visit(value, field, dotted_path) for each string
        field: Enclosing object key; list items inherit their list's key
        path: Path segments from the root, list indices included
    """
    if isinstance(node, dict):
        return {key: walk(value, visit, key, path + (key,)) for key, value in node.items()}
    if isinstance(node, list):
        return [walk(item, visit, field, path + (str(i),)) for i, item in enumerate(node)]
    if isinstance(node, str):
        return visit(node, field, '.'.join(path))
    return node


class JsonTranslator:
    """
    Translate the prose of an artifact into the target language.

    The reasoning service is the primary provider; the HTTP provider is used
    when it fails or its output fails the length-ratio check. A string that
    neither provider translates keeps its original text.
    """

    def __init__(self, client: Optional[ReasoningClient] = None,
                 model: Optional[str] = None,
                 cache: Optional[TranslationCache] = None,
                 fallback: Optional[HttpTranslationProvider] = None,
                 config: Optional[Dict[str, Any]] = None):
        self.client = client
        self.model = model
        self.cache = cache
        self.fallback = fallback
        self.config = config or {}
        self.source_language = self.config.get('source_language', 'en')
        self.target_language = self.config.get('target_language', 'es')
        self.batch_size = max(1, int(self.config.get('batch_size', 4)))
        self.short_timeout = float(self.config.get('short_timeout_seconds', 25))
        self.long_timeout = float(self.config.get('long_timeout_seconds', 60))
        self.long_text_threshold = int(self.config.get('long_text_threshold', 600))
        self.min_ratio = float(self.config.get('min_length_ratio', 0.5))
        self.max_ratio = float(self.config.get('max_length_ratio', 2.5))

    def collect(self, tree: JsonValue) -> List[str]:
        """Unique eligible strings in first-seen order."""
        found: Dict[str, None] = {}

        def visit(value: str, field: str, path: str) -> str:
            if should_translate(field, value, path):
                found.setdefault(value, None)
            return value

        walk(tree, visit)
        return list(found)

    def translate(self, tree: JsonValue) -> JsonValue:
        """
        Translate a JSON tree.

        Returns:
            A new tree with the same shape; the input is not modified
        """
        strings = self.collect(tree)
        translations: Dict[str, str] = {}
        pending = []
        for text in strings:
            cached = self.cache.get(text) if self.cache else None
            if cached is not None:
                translations[text] = cached
            else:
                pending.append(text)
        logger.info(f"Translating {len(pending)} strings ({len(translations)} cached) "
                    f"to {self.target_language}")

        if pending:
            with ThreadPoolExecutor(max_workers=self.batch_size) as executor:
                results = list(executor.map(self.translate_text, pending))
            for text, translated in zip(pending, results):
                if translated is None:
                    continue
                translations[text] = translated
                if self.cache:
                    self.cache.put(text, translated)
        if self.cache:
            self.cache.flush()

        missing = len(strings) - len(translations)
        if missing:
            logger.warning(f"{missing} strings kept untranslated")
        return self.apply(tree, translations)

    @staticmethod
    def apply(tree: JsonValue, translations: Dict[str, str]) -> JsonValue:
        """Replace every eligible occurrence of each translated original."""
        def visit(value: str, field: str, path: str) -> str:
            if value in translations and should_translate(field, value, path):
                return translations[value]
            return value

        return walk(tree, visit)

    def timeout_for(self, text: str) -> float:
        return self.long_timeout if len(text) > self.long_text_threshold else self.short_timeout

    def build_prompt(self, text: str) -> str:
        source = LANGUAGE_NAMES.get(self.source_language, self.source_language)
        target = LANGUAGE_NAMES.get(self.target_language, self.target_language)
        return '\n'.join([
            f"Translate from {source} to professional {target}.",
            f"Return only translated {target} text.",
            'Keep CVEs, URLs, IPs, ports and product names unchanged.',
            '',
            text,
        ])

    def acceptable(self, original: str, translated: Optional[str]) -> bool:
        """Length-ratio plausibility check on a restored translation."""
        if not translated or PLACEHOLDER_PATTERN.search(translated):
            return False
        ratio = len(translated) / max(1, len(original))
        return self.min_ratio <= ratio <= self.max_ratio

    def accept(self, original: str, output: str, placeholders: Dict[str, str]) -> Optional[str]:
        """Restore a provider output, or None when it lost a protected segment or fails the gate."""
        if not placeholders_intact(output, placeholders):
            return None
        restored = restore(output.strip(), placeholders)
        return restored if self.acceptable(original, restored) else None

    def translate_text(self, text: str) -> Optional[str]:
        """
        Translate one string, or None when no provider produced a usable result.
        """
        prepared, placeholders = protect(text)
        if only_placeholders(prepared):
            return text

        if self.client is not None and self.client.available and self.model:
            try:
                output = self.client.generate(
                    self.build_prompt(prepared), self.model,
                    timeout=self.timeout_for(text),
                    options={'temperature': 0.1, 'top_p': 0.9,
                             'num_predict': 2200 if len(text) > 900 else 1200},
                )
                restored = self.accept(text, output, placeholders)
                if restored is not None:
                    return restored
                logger.debug(f"Model translation rejected by quality gate: {text[:60]!r}")
            except ReasoningServiceError as e:
                logger.debug(f"Model translation failed: {e}")

        if self.fallback is not None:
            try:
                restored = self.accept(text, self.fallback.translate(prepared), placeholders)
                if restored is not None:
                    return restored
                logger.debug(f"Fallback translation rejected by quality gate: {text[:60]!r}")
            except TranslationError as e:
                logger.debug(f"Fallback translation failed: {e}")
        return None
