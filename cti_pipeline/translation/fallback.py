"""
Secondary HTTP translation provider (LibreTranslate-compatible API).
"""

import logging
from typing import List, Optional

import requests

from ..errors import TranslationError
from ..utils.http import request_with_retries

logger = logging.getLogger(__name__)

RESPONSE_FIELDS = ('translatedText', 'translation', 'text', 'result')


class HttpTranslationProvider:
    """POSTs {q, source, target, format} to each configured endpoint in turn."""

    def __init__(self, urls: List[str], source: str = 'en', target: str = 'es',
                 timeout_seconds: float = 12, session: Optional[requests.Session] = None):
        self.urls = list(dict.fromkeys(u for u in urls if u))
        self.source = source
        self.target = target
        self.timeout_seconds = timeout_seconds
        self.session = session or requests.Session()

    @staticmethod
    def extract_text(payload) -> Optional[str]:
        if not isinstance(payload, dict):
            return None
        for field in RESPONSE_FIELDS:
            value = payload.get(field)
            if isinstance(value, str) and value.strip():
                return value.strip()
        return None

    def translate(self, text: str) -> str:
        """
        Translate through the first endpoint that answers.

        Raises:
            TranslationError: No endpoint returned a usable translation
        """
        body = {'q': text, 'source': self.source, 'target': self.target, 'format': 'text'}
        last_error = 'no translation endpoints configured'
        for url in self.urls:
            try:
                response = request_with_retries(
                    self.session, 'POST', url, timeout=self.timeout_seconds,
                    max_retries=0, error_class=TranslationError, json=body)
                translated = self.extract_text(response.json())
            except TranslationError as e:
                last_error = str(e)
                continue
            except ValueError as e:
                last_error = f"{url} returned invalid JSON: {e}"
                continue
            if translated:
                return translated
            last_error = f"{url} returned no translated text"
        logger.debug(f"HTTP translation failed: {last_error}")
        raise TranslationError(last_error)
