"""
Client for the local reasoning service (Ollama-compatible /api/generate).
"""

import json
import logging
import time
from typing import Any, Callable, Dict, Optional

import requests

from ..errors import ReasoningServiceError
from ..utils.http import request_with_retries

logger = logging.getLogger(__name__)

DEFAULT_OPTIONS = {
    'temperature': 0.3,
    'num_predict': 2048,
    'top_p': 0.9,
}


class ReasoningClient:
    """
    Thin wrapper around the reasoning-service HTTP endpoint.

    The client never decides what to do on failure: it raises
    ReasoningServiceError and the calling stage falls back.
    """

    def __init__(self, host: str = 'http://localhost:11434',
                 timeout_seconds: float = 300,
                 max_retries: int = 2,
                 retry_backoff_seconds: float = 2.0,
                 enabled: bool = True,
                 session: Optional[requests.Session] = None,
                 sleep: Callable[[float], None] = time.sleep):
        self.host = host.rstrip('/')
        self.timeout_seconds = timeout_seconds
        self.max_retries = max_retries
        self.retry_backoff_seconds = retry_backoff_seconds
        self.enabled = enabled
        self.session = session or requests.Session()
        self.sleep = sleep

    @classmethod
    def from_settings(cls, settings, **kwargs) -> 'ReasoningClient':
        """Build from a ReasoningSettings model."""
        return cls(host=settings.host,
                   timeout_seconds=settings.timeout_seconds,
                   max_retries=settings.max_retries,
                   retry_backoff_seconds=settings.retry_backoff_seconds,
                   enabled=settings.enabled,
                   **kwargs)

    @property
    def available(self) -> bool:
        return self.enabled

    def generate(self, prompt: str, model: str,
                 timeout: Optional[float] = None,
                 options: Optional[Dict[str, Any]] = None,
                 stream: bool = False) -> str:
        """
        Run one completion.

        Args:
            prompt: Full prompt text
            model: Model name
            timeout: Hard timeout in seconds, defaults to the client timeout
            options: Sampling options merged over DEFAULT_OPTIONS
            stream: Read the NDJSON token stream instead of a single body

        Returns:
            Generated text, never empty

        Raises:
            ReasoningServiceError: Disabled client, transport failure,
                undecodable body or empty output
        """
        if not self.enabled:
            raise ReasoningServiceError("reasoning service disabled")

        timeout = timeout or self.timeout_seconds
        body = {
            'model': model,
            'prompt': prompt,
            'stream': stream,
            'options': {**DEFAULT_OPTIONS, **(options or {})},
        }
        logger.debug(f"Generating with {model} ({len(prompt)} chars, stream={stream})")

        response = request_with_retries(
            self.session, 'POST', f"{self.host}/api/generate",
            timeout=timeout,
            max_retries=self.max_retries,
            backoff_seconds=self.retry_backoff_seconds,
            error_class=ReasoningServiceError,
            sleep=self.sleep,
            json=body,
            stream=stream,
        )

        text = self._read_stream(response, timeout) if stream else self._read_body(response)
        if not text.strip():
            raise ReasoningServiceError(f"empty response from {model}")
        return text

    @staticmethod
    def _read_body(response) -> str:
        try:
            data = response.json()
        except ValueError as e:
            raise ReasoningServiceError(f"undecodable response body: {e}") from e
        return str(data.get('response', ''))

    @staticmethod
    def _read_stream(response, timeout: float) -> str:
        deadline = time.monotonic() + timeout
        chunks = []
        try:
            for line in response.iter_lines(decode_unicode=True):
                if time.monotonic() > deadline:
                    response.close()
                    raise ReasoningServiceError(f"stream exceeded {timeout}s")
                if not line:
                    continue
                try:
                    event = json.loads(line)
                except json.JSONDecodeError:
                    logger.debug(f"Skipping undecodable stream line: {line[:80]}")
                    continue
                chunks.append(event.get('response', ''))
                if event.get('done'):
                    break
        except requests.RequestException as e:
            raise ReasoningServiceError(f"stream interrupted: {e}") from e
        return ''.join(chunks)
