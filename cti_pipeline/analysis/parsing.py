"""
Parsers for best-effort structured reasoning-service output.

Every rule set is an ordered table so it can be tested on its own. Parsers
raise ResponseParseError; the calling stage turns that into a fallback.
"""

import json
import re
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from ..errors import ResponseParseError

JSON_OBJECT_PATTERN = re.compile(r'\{[\s\S]*\}')
CODE_FENCE_PATTERN = re.compile(r'```(?:json)?\s*', re.IGNORECASE)
BULLET_PATTERN = re.compile(r'^\s*[-•*]\s*(.+?)\s*$', re.MULTILINE)
NUMBER_PATTERN = re.compile(r'(?<![\w.-])(\d{1,3})(?:\s*(?:/\s*100|%))?(?![\w.])')
TIME_WINDOW_PATTERN = re.compile(r'(\d+)\s*(hour|day|week)s?\s*(window|period|timeframe)', re.IGNORECASE)

# (word, level, score), first match wins
RISK_WORD_RULES: List[Tuple[str, str, int]] = [
    ('critical', 'critical', 90),
    ('high', 'high', 70),
    ('elevated', 'high', 70),
    ('medium', 'medium', 50),
    ('moderate', 'medium', 50),
    ('low', 'low', 25),
]

# (minimum score, level) when only a number is given
SCORE_LEVEL_RULES: List[Tuple[int, str]] = [
    (80, 'critical'),
    (60, 'high'),
    (40, 'medium'),
    (0, 'low'),
]

# (keywords, phase), first match wins, Reconnaissance otherwise
KILL_CHAIN_RULES: List[Tuple[Tuple[str, ...], str]] = [
    (('exploit', 'vulnerab'), 'Exploitation'),
    (('malware', 'payload'), 'Delivery'),
    (('c2', 'command'), 'Command & Control'),
]

# (phrases, pattern)
CORRELATION_PATTERN_RULES: List[Tuple[Tuple[str, ...], str]] = [
    (('infra-first', 'infrastructure first', 'infra first'), 'infra-first'),
    (('social-first', 'social first'), 'social-first'),
    (('simultaneous',), 'simultaneous'),
    (('isolated', 'no clear correlation', 'insufficient'), 'isolated'),
]


def extract_json_object(text: str) -> Dict[str, Any]:
    """
    Pull the outermost JSON object out of a response.

    Raises:
        ResponseParseError: No object found or it does not decode to a dict
    """
    if not text:
        raise ResponseParseError("empty response")
    cleaned = CODE_FENCE_PATTERN.sub('', text)
    match = JSON_OBJECT_PATTERN.search(cleaned)
    if not match:
        raise ResponseParseError("no JSON object in response")
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise ResponseParseError(f"invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ResponseParseError("JSON response is not an object")
    return data


def require_fields(data: Dict[str, Any], fields: Iterable[str]):
    """Raise ResponseParseError if any field is missing or empty."""
    missing = [f for f in fields if data.get(f) in (None, '', [], {})]
    if missing:
        raise ResponseParseError(f"missing required fields: {', '.join(missing)}")


def parse_bullets(text: str) -> List[str]:
    """Items of a bullet list using '-', '•' or '*' markers."""
    return [m.group(1).strip() for m in BULLET_PATTERN.finditer(text or '') if m.group(1).strip()]


def _header_pattern(header: str) -> re.Pattern:
    words = r'\s+'.join(re.escape(w) for w in header.split())
    return re.compile(rf'^[ \t#*>_-]*{words}\b[^\n:]*?[ \t*_]*:?[ \t*_]*', re.IGNORECASE | re.MULTILINE)


def split_sections(text: str, headers: Sequence[str]) -> Dict[str, str]:
    """
    Split header-delimited text into sections.

    Each known header is matched case-insensitively at the start of a line;
    its section runs until the next known header or the end of the text.
    Headers that do not occur are absent from the result.
    """
    text = text or ''
    positions: List[Tuple[int, int, str]] = []
    for header in headers:
        match = _header_pattern(header).search(text)
        if match:
            positions.append((match.start(), match.end(), header))
    positions.sort()

    sections: Dict[str, str] = {}
    for index, (_, content_start, header) in enumerate(positions):
        end = positions[index + 1][0] if index + 1 < len(positions) else len(text)
        # an overlapping later header (e.g. a header repeated inside another) wins
        if content_start > end:
            continue
        sections[header] = text[content_start:end].strip()
    return sections


def parse_risk_score(text: str) -> Tuple[str, int]:
    """
    Risk level and score from free text.

    An explicit number (0-100) wins for the score; qualitative words map to
    critical 90, high 70, medium 50, low 25.

    Raises:
        ResponseParseError: Neither a level word nor a number is present
    """
    lower = (text or '').lower()
    level: Optional[str] = None
    score: Optional[int] = None
    for word, word_level, word_score in RISK_WORD_RULES:
        if re.search(rf'\b{word}\b', lower):
            level, score = word_level, word_score
            break

    number = NUMBER_PATTERN.search(lower)
    if number:
        score = max(0, min(100, int(number.group(1))))
        if level is None:
            level = next(lvl for minimum, lvl in SCORE_LEVEL_RULES if score >= minimum)

    if level is None or score is None:
        raise ResponseParseError(f"no risk level in {text!r}")
    return level, score


def infer_kill_chain_phase(text: str) -> str:
    lower = (text or '').lower()
    for keywords, phase in KILL_CHAIN_RULES:
        if any(kw in lower for kw in keywords):
            return phase
    return 'Reconnaissance'


def parse_correlation_pattern(text: str) -> Optional[str]:
    lower = (text or '').lower()
    for phrases, pattern in CORRELATION_PATTERN_RULES:
        if any(p in lower for p in phrases):
            return pattern
    return None


def extract_time_window(text: str, default: str = '24-48 hours') -> str:
    match = TIME_WINDOW_PATTERN.search(text or '')
    if match:
        return f"{match.group(1)} {match.group(2).lower()}(s)"
    return default


def coerce_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def coerce_confidence(value: Any, default: float = 0.5) -> float:
    """Accept 0-1 floats, 0-100 numbers and numeric strings."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if number > 1:
        number = number / 100.0
    return max(0.0, min(1.0, number))
