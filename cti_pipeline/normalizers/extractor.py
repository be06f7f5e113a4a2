"""
Indicator extraction from raw collector records.

A deterministic regex and dictionary pass. Network-exposure hosts map directly
to IP, port, CVE and domain indicators; social posts are normalized and then
scanned for CVE ids, addresses, port mentions and curated keyword tables.
No I/O, no errors: a record without matches simply yields nothing.
"""

import ipaddress
import logging
import re
from typing import Any, Dict, Iterable, List, Optional, Tuple

from pydantic import ValidationError

from .schema import (
    DataSource, Indicator, IndicatorKind, RawRecord, ShodanHost, SocialPost
)
from .signals import MALWARE_FAMILIES, PORT_SIGNALS, THREAT_ACTORS, THREAT_SIGNALS
from .text import normalize_text

logger = logging.getLogger(__name__)

CVE_PATTERN = re.compile(r'CVE-\d{4}-\d{4,}', re.IGNORECASE)
IPV4_PATTERN = re.compile(
    r'\b(?:(?:25[0-5]|2[0-4][0-9]|[01]?[0-9][0-9]?)\.){3}'
    r'(?:25[0-5]|2[0-4][0-9]|[01]?[0-9][0-9]?)\b'
)
DOMAIN_PATTERN = re.compile(
    r'\b(?:[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?\.)+[a-z]{2,}\b', re.IGNORECASE
)
PORT_MENTION_PATTERN = re.compile(r'\bport[:\s]?(\d{1,5})\b', re.IGNORECASE)

MIN_INDICATOR_LENGTH = 3
EXCERPT_LENGTH = 100

NON_SEMANTIC_TOKENS = {
    'the', 'and', 'for', 'new', 'via', 'now', 'this', 'that', 'with', 'from',
    'http', 'https', 'www', 'com', 'html', 'info',
}

# Domains that only identify the platform a post was published on
PLATFORM_DOMAINS = {
    'x.com', 'twitter.com', 't.co', 'pic.twitter.com', 'shodan.io', 'www.shodan.io',
}

# Extensions that DOMAIN_PATTERN also matches in file names
FILE_SUFFIXES = ('.exe', '.dll', '.zip', '.txt', '.pdf', '.doc', '.docx', '.js', '.py', '.sh', '.png', '.jpg')


def is_private_ip(value: str) -> bool:
    """True for RFC1918 ranges and loopback."""
    try:
        address = ipaddress.IPv4Address(value)
    except ipaddress.AddressValueError:
        return False
    return address.is_private or address.is_loopback


def _compile_keywords(keywords: Iterable[str]) -> re.Pattern:
    alternatives = '|'.join(re.escape(kw) for kw in sorted(keywords, key=len, reverse=True))
    return re.compile(rf'(?<![\w])(?:{alternatives})(?![\w])', re.IGNORECASE)


class IndicatorExtractor:
    """Turn raw records into typed, per-record deduplicated indicators."""

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = config or {}
        self.min_length = self.config.get('min_indicator_length', MIN_INDICATOR_LENGTH)

        self._port_patterns = [
            (port, _compile_keywords(definition['keywords']))
            for port, definition in PORT_SIGNALS.items()
        ]
        self._threat_patterns = [
            (definition['id'], _compile_keywords(definition['keywords']))
            for definition in THREAT_SIGNALS
        ]
        self._malware_pattern = _compile_keywords(MALWARE_FAMILIES.keys())
        self._actor_pattern = _compile_keywords(THREAT_ACTORS.keys())

    def extract(self, records: Iterable[RawRecord]) -> List[Indicator]:
        """
        Extract indicators from every record.

        One indicator is kept per (record, kind, normalized value); repeated
        mentions inside the same record collapse into one. Observations of
        the same value in different records are kept so the correlation
        engine can count them per source.

        Args:
            records: Raw records from any collector

        Returns:
            Indicators ordered by record, then by first appearance
        """
        indicators: List[Indicator] = []
        for record in records:
            try:
                if record.source == DataSource.SHODAN:
                    extracted = self._extract_host(record)
                else:
                    extracted = self._extract_post(record)
            except ValidationError as e:
                logger.warning(f"Skipping malformed {record.source.value} record {record.record_id}: {e}")
                continue
            indicators.extend(self._dedupe(extracted))

        logger.info(f"Extracted {len(indicators)} indicators from raw records")
        return indicators

    def _dedupe(self, indicators: List[Indicator]) -> List[Indicator]:
        best: Dict[Tuple[IndicatorKind, str], Indicator] = {}
        for indicator in indicators:
            if not self._is_semantic(indicator):
                continue
            existing = best.get(indicator.key)
            if existing is None or indicator.confidence > existing.confidence:
                best[indicator.key] = indicator
        return list(best.values())

    def _is_semantic(self, indicator: Indicator) -> bool:
        value = indicator.normalized_value
        if indicator.kind == IndicatorKind.PORT:
            return value.isdigit() and 0 < int(value) < 65536
        if value.isdigit() or len(value) < self.min_length:
            return False
        return value not in NON_SEMANTIC_TOKENS

    # ------------------------------------------------------------------
    # Source-specific extraction
    # ------------------------------------------------------------------

    def _extract_host(self, record: RawRecord) -> List[Indicator]:
        host = ShodanHost.model_validate(record.payload)
        common = {
            'source': record.source,
            'observed_at': record.observed_at,
            'evidence_url': host.url,
            'record_id': record.record_id,
            'excerpt': f"{host.ip}:{host.port} ({host.product or 'unknown'})",
        }

        indicators = [Indicator(kind=IndicatorKind.PORT, value=str(host.port), confidence=0.9, **common)]
        if not is_private_ip(host.ip):
            indicators.append(Indicator(kind=IndicatorKind.IP, value=host.ip, confidence=0.7, **common))
        for vuln in host.vulns:
            if CVE_PATTERN.fullmatch(vuln):
                indicators.append(Indicator(kind=IndicatorKind.CVE, value=vuln, confidence=0.85, **common))
        for hostname in host.hostnames:
            if self._is_candidate_domain(hostname):
                indicators.append(Indicator(kind=IndicatorKind.DOMAIN, value=hostname, confidence=0.6, **common))
        return indicators

    def _extract_post(self, record: RawRecord) -> List[Indicator]:
        post = SocialPost.model_validate(record.payload)
        raw_text = post.text
        cleaned = normalize_text(raw_text)
        common = {
            'source': record.source,
            'observed_at': record.observed_at,
            'evidence_url': post.url or None,
            'record_id': record.record_id,
            'excerpt': cleaned[:EXCERPT_LENGTH],
        }

        found: List[Tuple[IndicatorKind, str]] = []
        found.extend((IndicatorKind.CVE, m.group(0).upper()) for m in CVE_PATTERN.finditer(raw_text))
        found.extend(
            (IndicatorKind.IP, m.group(0)) for m in IPV4_PATTERN.finditer(raw_text)
            if not is_private_ip(m.group(0))
        )
        for url in post.urls:
            match = DOMAIN_PATTERN.search(url)
            if match and self._is_candidate_domain(match.group(0)):
                found.append((IndicatorKind.DOMAIN, match.group(0)))
        # normalize_text already reduced links to [domain]
        for match in DOMAIN_PATTERN.finditer(cleaned):
            if self._is_candidate_domain(match.group(0)):
                found.append((IndicatorKind.DOMAIN, match.group(0)))

        found.extend((IndicatorKind.PORT, m.group(1)) for m in PORT_MENTION_PATTERN.finditer(raw_text))
        found.extend(
            (IndicatorKind.PORT, str(port)) for port, pattern in self._port_patterns
            if pattern.search(raw_text)
        )
        found.extend(
            (IndicatorKind.KEYWORD, signal_id) for signal_id, pattern in self._threat_patterns
            if pattern.search(raw_text)
        )
        found.extend(
            (IndicatorKind.MALWARE_FAMILY, MALWARE_FAMILIES[m.group(0).lower()])
            for m in self._malware_pattern.finditer(raw_text)
        )
        found.extend(
            (IndicatorKind.THREAT_ACTOR, THREAT_ACTORS[m.group(0).lower()])
            for m in self._actor_pattern.finditer(raw_text)
        )

        confidence = self.record_confidence(
            [kind for kind, _ in found], post.engagement
        )
        return [Indicator(kind=kind, value=value, confidence=confidence, **common) for kind, value in found]

    def _is_candidate_domain(self, value: str) -> bool:
        lower = value.lower().rstrip('.')
        if lower in PLATFORM_DOMAINS or IPV4_PATTERN.fullmatch(lower):
            return False
        if lower.endswith(FILE_SUFFIXES):
            return False
        return '.' in lower

    @staticmethod
    def record_confidence(kinds: List[IndicatorKind], engagement: int = 0) -> float:
        """
        Confidence of the indicators found in one record.

        Base 0.30, +0.10 per indicator up to +0.30, +0.20 when a CVE is
        present, +0.10 above 100 engagement and another +0.10 above 1000.
        """
        confidence = 0.30 + min(len(kinds) * 0.10, 0.30)
        if IndicatorKind.CVE in kinds:
            confidence += 0.20
        if engagement > 100:
            confidence += 0.10
        if engagement > 1000:
            confidence += 0.10
        return round(min(confidence, 1.0), 2)


def merge_indicators(indicators: Iterable[Indicator]) -> List[Dict[str, Any]]:
    """
    Collapse indicators across sources by (kind, normalized value).

    Keeps the highest confidence, the union of sources and the first/last
    observation time. Used for the published indicator lists.
    """
    merged: Dict[Tuple[IndicatorKind, str], Dict[str, Any]] = {}
    for indicator in indicators:
        entry = merged.get(indicator.key)
        if entry is None:
            entry = {
                'kind': indicator.kind,
                'tag': indicator.tag,
                'value': indicator.normalized_value if indicator.kind == IndicatorKind.CVE else indicator.value,
                'confidence': indicator.confidence,
                'sources': set(),
                'count': 0,
                'first_seen': indicator.observed_at,
                'last_seen': indicator.observed_at,
            }
            merged[indicator.key] = entry
        entry['confidence'] = max(entry['confidence'], indicator.confidence)
        entry['sources'].add(indicator.source.value)
        entry['count'] += 1
        if indicator.observed_at is not None:
            if entry['first_seen'] is None or indicator.observed_at < entry['first_seen']:
                entry['first_seen'] = indicator.observed_at
            if entry['last_seen'] is None or indicator.observed_at > entry['last_seen']:
                entry['last_seen'] = indicator.observed_at

    result = []
    for entry in merged.values():
        entry['sources'] = sorted(entry['sources'])
        result.append(entry)
    result.sort(key=lambda e: (-e['confidence'], -e['count'], e['kind'].value, e['value']))
    return result
