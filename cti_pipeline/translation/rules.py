"""
Translation eligibility and technical-token protection rules.

All decisions are table driven: field allow/deny lists, denied path prefixes
and an ordered table of technical patterns.
"""

import re
from typing import Dict, List, Optional, Sequence, Tuple

NON_TRANSLATABLE_FIELDS = frozenset({
    'id', 'version', 'generatedAt', 'validUntil', 'timestamp', 'lastUpdate', 'lastSeen', 'firstSeen',
    'cves', 'domains', 'ips', 'url', 'ip', 'tweetId',
    'hashtags', 'mentions', 'source', 'permalink', 'sourceUrl', 'query', 'tags',
    # dashboard enums and keys
    'riskLevel', 'trend', 'trendDirection', 'severity', 'status', 'type', 'confidenceLevel',
    'killChainPhase', 'correlationStrength', 'model', 'quantization', 'priority', 'origin',
    'pattern', 'precedence', 'strength', 'anomalyLevel', 'classification', 'techniqueId',
})

TRANSLATABLE_FIELDS = frozenset({
    'headline', 'summary', 'situationSummary', 'narrative', 'interpretation', 'explanation',
    'rationale', 'recommendation', 'finding', 'description', 'title', 'threatLandscape',
    'significance', 'recommendedActions', 'immediateActions', 'strategicRecommendations',
    'keyFindings', 'emergingThreats',
})

DENIED_PATH_PREFIXES: Tuple[str, ...] = (
    'modelMetadata',
    'signalLayer.raw',
    'meta',
)

# (pattern, token kind), first match wins
TECHNICAL_PATTERNS: List[Tuple[re.Pattern, str]] = [
    (re.compile(r'^CVE-\d{4}-\d+', re.IGNORECASE), 'cve'),
    (re.compile(r'^\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3}'), 'ip'),
    (re.compile(r'^(http|https)://'), 'url'),
    (re.compile(r'^\d{4}-\d{2}-\d{2}T'), 'timestamp'),
    (re.compile(r'^[A-Z]{2}$'), 'country'),
    (re.compile(r'^\d+:\d+$'), 'ratio'),
    (re.compile(r'^[a-f0-9]{32,64}$', re.IGNORECASE), 'hash'),
    (re.compile(r'^v?\d+\.\d+'), 'version'),
    (re.compile(r'^@\w+'), 'handle'),
    (re.compile(r'^#\w+'), 'hashtag'),
]

PROTECTED_TERMS = ['Shodan', 'X.com', 'LATAM', 'Apache httpd', 'SIEM', 'CERT.br', 'CSIRT-MX']

PLACEHOLDER = '__HFSEG_{}__'
PLACEHOLDER_PATTERN = re.compile(r'__HFSEG_\d+__')
LETTER_PATTERN = re.compile(r'[^\W\d_]')


def _segment_pattern(terms: Sequence[str]) -> re.Pattern:
    alternatives = [
        r'CVE-\d{4}-\d+',
        r'https?://\S+',
        r'\b(?:[a-z0-9._-]+):\d+\b',
        r'\b\d{1,3}(?:\.\d{1,3}){3}\b',
    ] + [re.escape(term) for term in sorted(terms, key=len, reverse=True)]
    return re.compile('(' + '|'.join(alternatives) + ')', re.IGNORECASE)


SEGMENT_PATTERN = _segment_pattern(PROTECTED_TERMS)


def classify_technical(value: str) -> Optional[str]:
    """Kind of technical token the whole value is, or None for prose."""
    stripped = value.strip()
    for pattern, kind in TECHNICAL_PATTERNS:
        if pattern.match(stripped):
            return kind
    return None


def is_denied_path(path: str) -> bool:
    return any(path == prefix or path.startswith(prefix + '.') for prefix in DENIED_PATH_PREFIXES)


def should_translate(field: str, value: str, path: str) -> bool:
    """
    Decide whether a string leaf is translated.

    Args:
        field: Name of the enclosing object key (list items inherit it)
        value: The string value
        path: Dotted path from the tree root, list indices included
    """
    if not value or not value.strip():
        return False
    if field in NON_TRANSLATABLE_FIELDS or is_denied_path(path):
        return False
    if field in TRANSLATABLE_FIELDS:
        return True
    if classify_technical(value) is not None:
        return False
    return bool(LETTER_PATTERN.search(value))


def protect(text: str) -> Tuple[str, Dict[str, str]]:
    """Replace technical segments with indexed placeholders."""
    placeholders: Dict[str, str] = {}

    def substitute(match: re.Match) -> str:
        key = PLACEHOLDER.format(len(placeholders))
        placeholders[key] = match.group(0)
        return key

    return SEGMENT_PATTERN.sub(substitute, text), placeholders


def restore(text: str, placeholders: Dict[str, str]) -> str:
    """Put every protected segment back, wherever its placeholder ended up."""
    for key, original in placeholders.items():
        text = text.replace(key, original)
    return text


def only_placeholders(prepared: str) -> bool:
    """True when nothing translatable is left after protection."""
    return not LETTER_PATTERN.search(PLACEHOLDER_PATTERN.sub('', prepared))


def placeholders_intact(text: str, placeholders: Dict[str, str]) -> bool:
    """True when a provider kept every placeholder it was given."""
    return all(key in text for key in placeholders)
