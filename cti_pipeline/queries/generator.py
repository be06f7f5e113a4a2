"""
Follow-up collection query generation.

Known indicator values map to curated templates; the reasoning service may
add candidates. Every suggestion must reference at least one extracted
indicator through its tags, anything else is dropped.
"""

import hashlib
import logging
import re
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ..analysis.parsing import coerce_list, extract_json_object
from ..analysis.reasoning import ReasoningClient
from ..errors import ReasoningServiceError, ResponseParseError
from ..normalizers.extractor import merge_indicators
from ..normalizers.schema import Indicator, IndicatorKind, Priority, QuerySuggestion
from ..normalizers.signals import port_to_service, signal_label
from .cache import DailyQueryCache
from .preprocessor import ShodanQueryPreprocessor, tokenize

logger = logging.getLogger(__name__)

MAX_SUGGESTIONS = 5

# CVE id -> (query, what it finds)
KNOWN_CVE_QUERIES: Dict[str, Tuple[str, str]] = {
    'CVE-2024-3400': ('http.html:GlobalProtect', 'Palo Alto GlobalProtect portals'),
    'CVE-2023-4966': ('http.title:NetScaler', 'Citrix NetScaler gateways'),
    'CVE-2024-21887': ('http.html:"Ivanti Connect Secure"', 'Ivanti Connect Secure appliances'),
    'CVE-2023-46604': ('product:"ActiveMQ OpenWire transport" port:61616', 'Apache ActiveMQ brokers'),
    'CVE-2024-6387': ('product:OpenSSH port:22', 'OpenSSH servers affected by regreSSHion'),
    'CVE-2023-22515': ('http.component:"Atlassian Confluence"', 'Atlassian Confluence servers'),
    'CVE-2024-23897': ('http.title:"Dashboard [Jenkins]"', 'Jenkins controllers'),
    'CVE-2023-34362': ('http.html:MOVEit', 'MOVEit Transfer instances'),
    'CVE-2024-1709': ('http.favicon.hash:-82958153', 'ConnectWise ScreenConnect servers'),
    'CVE-2019-0708': ('port:3389 os:Windows', 'RDP hosts exposed to BlueKeep'),
    'CVE-2017-0144': ('port:445 os:Windows', 'SMB hosts exposed to EternalBlue'),
}

# canonical malware family -> (query, what it finds)
MALWARE_QUERIES: Dict[str, Tuple[str, str]] = {
    'Cobalt Strike': ('product:"Cobalt Strike Beacon"', 'Cobalt Strike team servers'),
    'AsyncRAT': ('ssl.cert.subject.cn:AsyncRAT', 'AsyncRAT command servers'),
    'Mirai': ('port:23 product:telnet', 'telnet devices targeted by Mirai'),
    'XMRig': ('product:xmrig', 'exposed XMRig miners'),
}

# canonical actor -> (query, what it finds)
THREAT_ACTOR_QUERIES: Dict[str, Tuple[str, str]] = {
    'APT28': ('product:"Ubiquiti EdgeRouter"', 'EdgeRouter devices abused by APT28'),
    'Volt Typhoon': ('product:"DrayTek Vigor"', 'SOHO routers used by Volt Typhoon'),
    'Sandworm': ('port:502', 'Modbus ICS devices targeted by Sandworm'),
    'Salt Typhoon': ('product:"Cisco IOS XE"', 'edge devices targeted by Salt Typhoon'),
}

# threat keyword signal id -> (query, what it finds)
KEYWORD_QUERIES: Dict[str, Tuple[str, str]] = {
    'bruteforce': ('port:22 product:OpenSSH', 'SSH services exposed to brute force'),
    'ransomware': ('port:3389', 'RDP services commonly used for ransomware access'),
    'botnet': ('port:23 product:telnet', 'telnet devices recruited by botnets'),
}

_PRIORITY_RANK = {Priority.HIGH: 0, Priority.MEDIUM: 1, Priority.LOW: 2}
_PORT_TOKEN = re.compile(r'^port:(\d+)$', re.IGNORECASE)


class QueryGenerator:
    """
    Suggest up to five follow-up Shodan queries for the current indicators.

    Example:
        generator = QueryGenerator(client, model='mistral', cache=DailyQueryCache(cache_dir))
        suggestions = generator.generate(indicators)
    """

    def __init__(self, client: Optional[ReasoningClient] = None,
                 model: Optional[str] = None,
                 cache: Optional[DailyQueryCache] = None,
                 config: Optional[Dict[str, Any]] = None):
        self.client = client
        self.model = model
        self.cache = cache
        self.config = config or {}
        self.max_suggestions = min(MAX_SUGGESTIONS, int(self.config.get('max_suggestions', MAX_SUGGESTIONS)))
        self.workers = max(1, int(self.config.get('workers', 4)))
        self.preprocessor = ShodanQueryPreprocessor(self.config.get('plan', 'dev'))

    def generate(self, indicators: Iterable[Indicator]) -> List[QuerySuggestion]:
        """
        Generate traceable query suggestions.

        Args:
            indicators: Indicators extracted from the current records

        Returns:
            At most five suggestions, each tagged with an extracted indicator;
            an empty list when there is nothing to trace to
        """
        indicators = list(indicators)
        if not indicators:
            logger.info("No indicators extracted, no query suggestions generated")
            return []

        if self.cache is not None:
            cached = self.cache.get()
            if cached is not None:
                traced = self.traceable(cached, indicators)
                if traced:
                    logger.info(f"Using {len(traced)} of {len(cached)} cached query suggestions")
                    return traced[:self.max_suggestions]
                logger.info("Cached query suggestions do not match current indicators, regenerating")

        heuristic = self._heuristic_suggestions(indicators)
        llm = self._llm_suggestions(indicators)
        suggestions = self.finalize(llm + heuristic, indicators)

        if self.cache is not None:
            self.cache.put(suggestions, self._fingerprint(indicators))
        logger.info(f"Generated {len(suggestions)} query suggestions "
                    f"({len(llm)} model, {len(heuristic)} heuristic candidates)")
        return suggestions

    def finalize(self, candidates: List[QuerySuggestion],
                 indicators: List[Indicator]) -> List[QuerySuggestion]:
        """Deduplicate (first wins), drop untraceable entries, rank and truncate."""
        unique: Dict[str, QuerySuggestion] = {}
        for candidate in self.traceable(candidates, indicators):
            unique.setdefault(candidate.normalized_query, candidate)

        ranked = sorted(unique.values(), key=lambda s: _PRIORITY_RANK[s.priority])
        return ranked[:self.max_suggestions]

    @staticmethod
    def traceable(suggestions: List[QuerySuggestion],
                  indicators: List[Indicator]) -> List[QuerySuggestion]:
        """Keep suggestions tagged with at least one current indicator."""
        known_tags = {i.tag for i in indicators}
        kept = []
        for suggestion in suggestions:
            if any(tag in known_tags for tag in suggestion.tags):
                kept.append(suggestion)
            else:
                logger.warning(f"Dropping untraceable query suggestion: {suggestion.query_string}")
        return kept

    # ------------------------------------------------------------------
    # Heuristic templates
    # ------------------------------------------------------------------

    def _heuristic_suggestions(self, indicators: List[Indicator]) -> List[QuerySuggestion]:
        merged = merge_indicators(indicators)
        merged.sort(key=lambda m: (-len(m['sources']), -m['count'], m['tag']))
        with ThreadPoolExecutor(max_workers=self.workers) as executor:
            results = list(executor.map(self._suggest_for, merged))
        return [s for s in results if s is not None]

    def _suggest_for(self, merged: Dict[str, Any]) -> Optional[QuerySuggestion]:
        kind = IndicatorKind(merged['kind'])
        tag = merged['tag']
        value = tag.split(':', 1)[1]
        cross_source = len(merged['sources']) > 1

        template = None
        priority = Priority.HIGH if cross_source else Priority.MEDIUM
        if kind == IndicatorKind.CVE:
            template = KNOWN_CVE_QUERIES.get(value.upper())
            if template is None:
                query = f"vuln:{value.upper()}" if self.preprocessor.allows_vuln_filters else f'"{value.upper()}"'
                template = (query, f"hosts referencing {value.upper()}")
            else:
                priority = Priority.HIGH
        elif kind == IndicatorKind.MALWARE_FAMILY:
            template = MALWARE_QUERIES.get(signal_label(kind, value))
        elif kind == IndicatorKind.THREAT_ACTOR:
            template = THREAT_ACTOR_QUERIES.get(signal_label(kind, value))
        elif kind == IndicatorKind.KEYWORD:
            template = KEYWORD_QUERIES.get(value)
            priority = Priority.LOW if not cross_source else priority
        elif kind == IndicatorKind.PORT and value.isdigit():
            template = (f"port:{value}", f"{port_to_service(int(value))} services on port {value}")
            priority = Priority.MEDIUM if cross_source else Priority.LOW

        if template is None:
            return None
        processed = self.preprocessor.process(template[0])
        if processed is None:
            return None
        seen = f"seen in {', '.join(merged['sources'])}" + (f" ({merged['count']} observations)"
                                                            if merged['count'] > 1 else '')
        return QuerySuggestion(
            query_string=processed.query,
            rationale=f"{signal_label(kind, value)} {seen}: find {template[1]}",
            priority=priority,
            tags=[tag],
            origin='heuristic',
        )

    # ------------------------------------------------------------------
    # Reasoning service candidates
    # ------------------------------------------------------------------

    def _llm_suggestions(self, indicators: List[Indicator]) -> List[QuerySuggestion]:
        if self.client is None or not self.client.available or not self.model:
            return []
        try:
            response = self.client.generate(self.build_prompt(indicators), self.model,
                                            options={'temperature': 0.1, 'num_predict': 500})
        except ReasoningServiceError as e:
            logger.warning(f"Query generation model unavailable: {e}")
            return []

        hints = self.parse_hints(response)
        queries = self.preprocessor.queries_from_extracted(
            hints['products'], hints['ports'], hints['cves'], hints['countries'])
        suggestions = []
        for processed in self.preprocessor.process_many(queries):
            tags = self.trace_tags(processed.query, indicators)
            if not tags:
                continue
            suggestions.append(QuerySuggestion(
                query_string=processed.query,
                rationale=hints['reasoning'] or 'Suggested from extracted infrastructure indicators',
                priority=Priority.HIGH if len(tags) > 1 else Priority.MEDIUM,
                tags=tags,
                origin='model',
            ))
        return suggestions

    @staticmethod
    def build_prompt(indicators: List[Indicator]) -> str:
        lines = sorted({f"- {i.kind.value}: {i.normalized_value}" for i in indicators})[:60]
        indicator_list = '\n'.join(lines)
        return f"""You are a threat intelligence analyst planning infrastructure reconnaissance.

EXTRACTED INDICATORS:
{indicator_list}

Identify Shodan-searchable products, ports, CVE ids and countries that are directly
supported by the indicators above. Do not suggest generic searches and do not
add anything that is not traceable to a listed indicator.

Return ONLY a JSON object:
{{"products": ["openssh"], "ports": [22], "cves": ["CVE-YYYY-NNNN"], "countries": ["US"], "reasoning": ""}}"""

    @staticmethod
    def parse_hints(response: str) -> Dict[str, Any]:
        """Structured hints from the model, with a regex pass for broken JSON."""
        try:
            data = extract_json_object(response)
        except ResponseParseError:
            logger.warning("Query hints are not valid JSON, using regex extraction")
            data = {'reasoning': ''}
            for key, item_pattern in (('products', r'"([^"]+)"'), ('ports', r'\d+'), ('countries', r'"([A-Za-z]{2})"')):
                match = re.search(rf'"{key}"\s*:\s*\[([^\]]*)\]', response or '')
                data[key] = re.findall(item_pattern, match.group(1)) if match else []
            data['cves'] = re.findall(r'CVE-\d{4}-\d+', response or '', re.IGNORECASE)

        products = [str(p).lower().strip() for p in coerce_list(data.get('products'))
                    if len(str(p).strip()) > 1]
        ports = []
        for port in coerce_list(data.get('ports')):
            try:
                port = int(port)
            except (TypeError, ValueError):
                continue
            if 0 < port < 65536:
                ports.append(port)
        cves = [str(c).upper() for c in coerce_list(data.get('cves'))
                if re.match(r'CVE-\d{4}-\d+', str(c), re.IGNORECASE)]
        countries = [str(c).upper() for c in coerce_list(data.get('countries'))
                     if re.match(r'^[A-Za-z]{2}$', str(c))]
        return {
            'products': products,
            'ports': ports,
            'cves': list(dict.fromkeys(cves)),
            'countries': countries,
            'reasoning': str(data.get('reasoning') or ''),
        }

    @staticmethod
    def trace_tags(query: str, indicators: List[Indicator]) -> List[str]:
        """Tags of the indicators a query references."""
        tokens = [t.lower().strip('"') for t in tokenize(query)]
        lower = query.lower()
        tags = []
        for indicator in indicators:
            value = indicator.normalized_value.lower()
            if indicator.kind == IndicatorKind.PORT:
                matched = any(_PORT_TOKEN.match(t) and _PORT_TOKEN.match(t).group(1) == value for t in tokens)
            elif indicator.kind in (IndicatorKind.CVE, IndicatorKind.IP, IndicatorKind.DOMAIN):
                matched = value in lower
            else:
                label = signal_label(indicator.kind, indicator.normalized_value).lower()
                matched = any(t.split(':', 1)[-1] in (value, label) for t in tokens)
            if matched and indicator.tag not in tags:
                tags.append(indicator.tag)
        return sorted(tags)

    @staticmethod
    def _fingerprint(indicators: List[Indicator]) -> str:
        tags = sorted({i.tag for i in indicators})
        return hashlib.md5('\n'.join(tags).encode('utf-8')).hexdigest()

