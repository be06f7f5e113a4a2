"""
Text cleanup and keyword classification for scraped social posts.
"""

import re
from typing import Dict, List, Optional

from .schema import ThreatCategory, ThreatSeverity

EMOJI_PATTERN = re.compile(
    '[\U0001F300-\U0001F9FF☀-⛿✀-➿\U0001F000-\U0001F02F\U0001F0A0-\U0001F0FF]'
)
URL_PATTERN = re.compile(r'https?://([^\s/]+)[^\s]*')
MENTION_PATTERN = re.compile(r'@\w+')
HASHTAG_PATTERN = re.compile(r'#\w+')
CONTROL_CHARS_PATTERN = re.compile(r'[\x00-\x1F\x7F]')
RT_PREFIX_PATTERN = re.compile(r'^RT\s+', re.IGNORECASE)
THREAD_MARKER_PATTERN = re.compile(r'\(\d+/\d+\)|\b\d+/\d+\b|\U0001F9F5')
WHITESPACE_PATTERN = re.compile(r'\s{2,}')

MAX_HASHTAGS = 3
MAX_MENTIONS = 2

THREAT_KEYWORDS: Dict[ThreatCategory, List[str]] = {
    ThreatCategory.MALWARE: ['malware', 'virus', 'trojan', 'worm', 'backdoor', 'rat', 'infostealer'],
    ThreatCategory.RANSOMWARE: ['ransomware', 'ransom', 'lockbit', 'blackcat', 'alphv', 'conti', 'encryption'],
    ThreatCategory.PHISHING: ['phishing', 'spearphishing', 'social engineering', 'credential', 'bec'],
    ThreatCategory.DDOS: ['ddos', 'denial of service', 'botnet', 'amplification', 'flood'],
    ThreatCategory.APT: ['apt', 'nation-state', 'threat actor', 'campaign', 'lazarus', 'cozy bear'],
    ThreatCategory.VULNERABILITY: ['cve', 'vulnerability', 'exploit', 'zero-day', '0day', 'rce', 'sqli'],
    ThreatCategory.DATA_BREACH: ['breach', 'leak', 'exposed', 'database', 'dump', 'stolen'],
    ThreatCategory.SUPPLY_CHAIN: ['supply chain', 'solarwinds', 'npm', 'pypi', 'dependency'],
    ThreatCategory.SOCIAL_ENGINEERING: ['social engineering', 'impersonation', 'vishing', 'smishing'],
    ThreatCategory.INFRASTRUCTURE: ['infrastructure', 'c2', 'command and control', 'server', 'hosting'],
}

# Checked in order, first hit wins
SEVERITY_KEYWORDS: List[tuple] = [
    (ThreatSeverity.CRITICAL, ['critical', 'emergency', 'active exploitation', 'zero-day', '0day', 'urgent']),
    (ThreatSeverity.HIGH, ['high', 'severe', 'dangerous', 'widespread', 'active']),
    (ThreatSeverity.MEDIUM, ['medium', 'moderate', 'potential', 'risk']),
    (ThreatSeverity.LOW, ['low', 'minor', 'limited']),
    (ThreatSeverity.INFO, ['info', 'informational', 'fyi', 'awareness']),
]

NEGATIVE_WORDS = ['attack', 'breach', 'hack', 'malware', 'threat', 'vulnerable', 'danger', 'critical', 'urgent']
POSITIVE_WORDS = ['patched', 'fixed', 'secured', 'protected', 'mitigated', 'resolved']


def _keep_first(text: str, pattern: re.Pattern, limit: int) -> str:
    seen = 0

    def replace(match):
        nonlocal seen
        seen += 1
        return match.group(0) if seen <= limit else ''

    return pattern.sub(replace, text)


def normalize_text(text: str) -> str:
    """
    Clean scraped post text before extraction and prompting.

    Removes retweet prefixes, emojis and thread markers, shortens URLs to
    [domain], keeps only the first three hashtags and first two mentions.
    """
    normalized = RT_PREFIX_PATTERN.sub('', text or '')
    normalized = EMOJI_PATTERN.sub('', normalized)
    normalized = URL_PATTERN.sub(lambda m: f"[{m.group(1)}]", normalized)
    normalized = THREAD_MARKER_PATTERN.sub('', normalized)
    normalized = _keep_first(normalized, HASHTAG_PATTERN, MAX_HASHTAGS)
    normalized = _keep_first(normalized, MENTION_PATTERN, MAX_MENTIONS)
    normalized = CONTROL_CHARS_PATTERN.sub(' ', normalized)
    normalized = WHITESPACE_PATTERN.sub(' ', normalized)
    return normalized.strip()


def categorize(text: str) -> ThreatCategory:
    """Pick the category whose keywords match most often."""
    lower = (text or '').lower()
    best, best_score = ThreatCategory.OTHER, 0
    for category, keywords in THREAT_KEYWORDS.items():
        score = sum(1 for kw in keywords if kw in lower)
        if score > best_score:
            best, best_score = category, score
    return best


def determine_severity(text: str, engagement: Optional[int] = None) -> ThreatSeverity:
    lower = (text or '').lower()
    for severity, keywords in SEVERITY_KEYWORDS:
        if any(kw in lower for kw in keywords):
            return severity
    if engagement is not None:
        if engagement > 1000:
            return ThreatSeverity.HIGH
        if engagement > 100:
            return ThreatSeverity.MEDIUM
    return ThreatSeverity.LOW


def analyze_sentiment(text: str) -> str:
    """Return 'negative', 'positive' or 'neutral'."""
    lower = (text or '').lower()
    negative = sum(1 for w in NEGATIVE_WORDS if w in lower)
    positive = sum(1 for w in POSITIVE_WORDS if w in lower)
    if negative > positive + 1:
        return 'negative'
    if positive > negative + 1:
        return 'positive'
    return 'neutral'
