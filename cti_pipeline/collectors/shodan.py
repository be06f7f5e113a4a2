"""
Shodan host-search collector.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

import requests

from ..errors import CollectorError, PipelineError
from ..normalizers.schema import DataSource, RawRecord
from ..utils.http import request_with_retries
from .base import RateLimiter, RawObservationSource

logger = logging.getLogger(__name__)

DEFAULT_QUERY = 'port:22,23,3389,445,139 country:US,CN,RU'

# 429 is reported, not retried: the per-minute limiter already spaces calls
TRANSIENT_STATUSES = (500, 502, 503, 504)


class ShodanCollector(RawObservationSource):
    """Collector for exposed hosts from the Shodan search API."""

    source = DataSource.SHODAN

    def __init__(self, api_key: Optional[str], config: Optional[Dict[str, Any]] = None,
                 session: Optional[requests.Session] = None,
                 rate_limiter: Optional[RateLimiter] = None):
        super().__init__(config, rate_limiter)
        self.api_key = api_key
        self.base_url = self.config.get('base_url', 'https://api.shodan.io').rstrip('/')
        self.queries = [self.config.get('query') or DEFAULT_QUERY]
        self.limit = int(self.config.get('limit', 100))
        self.timeout = float(self.config.get('timeout_seconds', 30))
        self.max_retries = min(3, int(self.config.get('max_retries', 2)))
        self.backoff_seconds = float(self.config.get('retry_backoff_seconds', 2.0))
        self.session = session or requests.Session()

    def is_available(self) -> bool:
        return bool(self.api_key)

    def with_queries(self, queries: Iterable[str]) -> 'ShodanCollector':
        """Search the suggested queries before the configured one."""
        extra = [q for q in queries if q and q not in self.queries]
        self.queries = extra + self.queries
        if extra:
            logger.info(f"Shodan collector will also run {len(extra)} suggested queries")
        return self

    def collect(self) -> List[RawRecord]:
        if not self.is_available():
            raise CollectorError(self.name, 'no API key configured')

        records: List[RawRecord] = []
        seen = set()
        failures: List[CollectorError] = []
        for query in self.queries:
            try:
                matches = self._search(query)
            except CollectorError as e:
                if e.status_code == 401:
                    raise
                logger.warning(f"Shodan query {query!r} failed, keeping other results: {e}")
                failures.append(e)
                continue
            for match in matches:
                key = (match.get('ip_str'), match.get('port'))
                if not key[0] or key in seen:
                    continue
                seen.add(key)
                records.append(self._to_record(match, query))
        if failures and len(failures) == len(self.queries):
            raise failures[-1]
        logger.info(f"Shodan collection complete: {len(records)} hosts from "
                    f"{len(self.queries) - len(failures)}/{len(self.queries)} queries")
        return records

    def _search(self, query: str) -> List[Dict[str, Any]]:
        """
        Run one host search, retrying transient failures with backoff.

        Raises:
            CollectorError: Invalid key, rate limit, HTTP or network failure
        """
        self.rate_limiter.wait()
        params = {'key': self.api_key, 'query': query, 'limit': self.limit}
        try:
            response = request_with_retries(
                self.session, 'GET', f"{self.base_url}/shodan/host/search",
                timeout=self.timeout, max_retries=self.max_retries,
                backoff_seconds=self.backoff_seconds, sleep=self.rate_limiter.sleep,
                retry_on_status=TRANSIENT_STATUSES, raise_for_status=False, params=params)
        except PipelineError as e:
            raise CollectorError(self.name, f"request failed: {e}") from e

        if response.status_code == 401:
            raise CollectorError(self.name, 'invalid API key', 401)
        if response.status_code == 429:
            raise CollectorError(self.name, 'rate limit exceeded', 429)
        if response.status_code >= 400:
            raise CollectorError(self.name, f"API error {response.status_code}", response.status_code)

        try:
            data = response.json()
        except ValueError as e:
            raise CollectorError(self.name, f"invalid JSON response: {e}")
        matches = data.get('matches') or []
        logger.debug(f"Shodan query {query!r} returned {len(matches)} matches")
        return matches

    def _to_record(self, match: Dict[str, Any], query: str) -> RawRecord:
        location = match.get('location') or {}
        payload = {
            'ip': match.get('ip_str'),
            'port': match.get('port'),
            'hostnames': match.get('hostnames') or [],
            'org': match.get('org'),
            'asn': match.get('asn'),
            'isp': match.get('isp'),
            'country': location.get('country_code') or 'Unknown',
            'city': location.get('city'),
            'os': match.get('os'),
            'product': match.get('product'),
            'version': match.get('version'),
            'vulns': match.get('vulns') or [],
            'tags': match.get('tags') or [],
            'last_update': match.get('timestamp'),
            'query': query,
        }
        return RawRecord.build(self.source, match.get('timestamp'), payload)
