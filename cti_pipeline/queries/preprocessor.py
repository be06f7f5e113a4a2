"""
Shodan query preprocessing: syntax repair, validation and plan-aware
optimization of candidate search queries.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

logger = logging.getLogger(__name__)

VALID_FILTERS = {
    'product', 'apache', 'nginx', 'mysql', 'postgres', 'redis', 'mongodb',
    'elasticsearch', 'vpn', 'ssh', 'telnet', 'ftp', 'rdp', 'vnc',
    'port', 'hostname', 'os', 'country', 'city', 'org', 'asn', 'isp',
    'http', 'html', 'title', 'ssl', 'vuln', 'cve', 'has_vuln',
    'after', 'before', 'net', 'ip', 'ip_str',
    'has_screenshot', 'has_ssl', 'has_ipv6', 'is_vpn', 'is_cloud',
    'is_proxy', 'is_tor', 'is_iot', 'is_honeypot',
}

# dotted filters such as http.title or ssl.cert.subject.cn
VALID_FILTER_NAMESPACES = ('http.', 'ssl.')

PAID_ONLY_FILTERS = ('vuln', 'cve', 'has_vuln')
PAID_PLANS = {'plus', 'corp', 'enterprise'}

HIGH_VALUE_PRODUCTS = [
    'apache', 'nginx', 'iis', 'mysql', 'postgresql', 'redis', 'mongodb',
    'elasticsearch', 'jenkins', 'grafana', 'prometheus', 'docker', 'kubernetes',
    'gitlab', 'confluence', 'jira', 'wordpress', 'drupal', 'openssh',
]

PRODUCT_DEFAULT_PORTS: Dict[str, int] = {
    'apache': 80,
    'nginx': 80,
    'iis': 80,
    'mysql': 3306,
    'postgresql': 5432,
    'redis': 6379,
    'mongodb': 27017,
    'elasticsearch': 9200,
    'ssh': 22,
    'openssh': 22,
    'ftp': 21,
    'telnet': 23,
}

PORT_DEFAULT_PRODUCTS: Dict[int, str] = {
    21: 'ftp',
    22: 'openssh',
    80: 'apache',
    3306: 'mysql',
    5432: 'postgresql',
    6379: 'redis',
    9200: 'elasticsearch',
    27017: 'mongodb',
}

PRIORITY_FILTERS = ('product:', 'port:', 'vuln:', 'apache:', 'nginx:', 'country:', 'org:',
                    'http.', 'ssl.')
MAX_QUERY_PARTS = 4

# (pattern, replacement), applied in order
SYNTAX_RULES: List[Tuple[re.Pattern, str]] = [
    (re.compile(r'([a-z]+)(port:)', re.IGNORECASE), r'\1 \2'),
    (re.compile(r'(\w+):\s+'), r'\1:'),
    (re.compile(r'\bOR\b'), 'or'),
    (re.compile(r'\bAND\b'), 'and'),
    (re.compile(r'"+'), '"'),
    (re.compile(r"'+"), "'"),
    (re.compile(r'\bport(\d+)', re.IGNORECASE), r'port:\1'),
]

TOKEN_PATTERN = re.compile(r'[^\s"]+:"[^"]*"|"[^"]*"|\S+')
CVE_TOKEN_PATTERN = re.compile(r'^"?CVE-\d{4}-\d{4,}"?$', re.IGNORECASE)
IP_PATTERN = re.compile(r'\d{1,3}\.\d{1,3}\.\d{1,3}')


@dataclass
class ProcessedQuery:
    query: str
    original: str
    optimizations: List[str] = field(default_factory=list)
    estimated_results: str = 'unknown'


def tokenize(query: str) -> List[str]:
    """Split a query into parts, keeping quoted filter values together."""
    return TOKEN_PATTERN.findall(query or '')


class ShodanQueryPreprocessor:
    """Repair and optimize candidate queries for the configured API plan."""

    def __init__(self, plan: str = 'dev'):
        self.plan = (plan or 'dev').lower()

    @property
    def allows_vuln_filters(self) -> bool:
        return self.plan in PAID_PLANS

    def process(self, original: str) -> Optional[ProcessedQuery]:
        """
        Process one query.

        Returns:
            ProcessedQuery, or None when the query is not a usable search
        """
        query = self.fix_basic_syntax(original.strip())
        if not self.is_valid(query):
            logger.debug(f"Rejected invalid query: {original!r}")
            return None

        query, optimizations = self.optimize(query)
        if not self.is_valid(query):
            logger.debug(f"Query {original!r} became unusable after optimization")
            return None
        return ProcessedQuery(query, original, optimizations, self.estimate_results(query))

    def process_many(self, queries: Iterable[str]) -> List[ProcessedQuery]:
        return [p for p in (self.process(q) for q in queries) if p is not None]

    @staticmethod
    def fix_basic_syntax(query: str) -> str:
        fixed = query
        for pattern, replacement in SYNTAX_RULES:
            fixed = pattern.sub(replacement, fixed)
        return ' '.join(fixed.split())

    @staticmethod
    def _filter_name(token: str) -> Optional[str]:
        if ':' not in token or token.startswith('"'):
            return None
        return token.split(':', 1)[0].lower()

    def is_valid(self, query: str) -> bool:
        """A query needs a known filter, a known product, an address or a CVE id."""
        if not query or len(query) < 2:
            return False
        lower = query.lower()
        for token in tokenize(query):
            name = self._filter_name(token)
            if name and (name in VALID_FILTERS or name.startswith(VALID_FILTER_NAMESPACES)):
                return True
            if CVE_TOKEN_PATTERN.match(token):
                return True
        if any(product in lower for product in HIGH_VALUE_PRODUCTS):
            return True
        return bool(IP_PATTERN.search(query))

    def optimize(self, query: str) -> Tuple[str, List[str]]:
        optimizations: List[str] = []
        parts = tokenize(query)

        if not self.allows_vuln_filters:
            kept = [p for p in parts if self._filter_name(p) not in PAID_ONLY_FILTERS]
            if len(kept) != len(parts):
                parts = kept
                optimizations.append(f"Removed vuln/cve filter (not available on {self.plan} plan)")

        if len(parts) == 1 and (self._filter_name(parts[0]) == 'port'):
            port_value = parts[0].split(':', 1)[1]
            product = PORT_DEFAULT_PRODUCTS.get(int(port_value)) if port_value.isdigit() else None
            if product:
                parts.append(f"product:{product}")
                optimizations.append(f"Added {product} product filter for better results")

        if len(parts) > MAX_QUERY_PARTS:
            filtered = [p for p in parts if p.lower().startswith(PRIORITY_FILTERS)]
            if len(filtered) >= 2:
                parts = filtered[:3]
                optimizations.append('Simplified complex query to improve results')

        unique: List[str] = []
        for part in parts:
            if part.lower() not in (u.lower() for u in unique):
                unique.append(part)
        if len(unique) != len(parts):
            optimizations.append('Removed duplicate filters')

        return ' '.join(unique), optimizations

    @staticmethod
    def estimate_results(query: str) -> str:
        q = query.lower()
        if re.search(r'port:(80|443|22)\b', q) or 'apache' in q or 'nginx' in q:
            return 'high'
        if re.search(r'port:(8080|8443|3306)\b', q) or 'product:' in q:
            return 'medium'
        if re.search(r'country:|org:|hostname:', q) or len(q.split()) > 2:
            return 'low'
        return 'unknown'

    def queries_from_extracted(self, products: List[str], ports: List[int],
                               cves: List[str], countries: List[str]) -> List[str]:
        """
        Candidate queries from reasoning-service extracted infrastructure hints.

        Never returns a generic placeholder: no hints means no queries.
        """
        queries: List[str] = []

        def add(query: str):
            if query not in queries:
                queries.append(query)

        products = [p.lower() for p in products if p]
        if countries:
            country = countries[0]
            if products:
                add(f"product:{products[0]} country:{country}")
            if ports:
                add(f"port:{ports[0]} country:{country}")

        if products:
            product = products[0]
            port = ports[0] if ports else PRODUCT_DEFAULT_PORTS.get(product)
            add(f"product:{product} port:{port}" if port else f"product:{product}")
        if ports and not any(f"port:{ports[0]}" in q for q in queries):
            add(f"port:{ports[0]}")
        if len(products) > 1 and not any(products[1] in q for q in queries):
            add(f"product:{products[1]}")
        for cve in cves[:2]:
            add(f"vuln:{cve.upper()}" if self.allows_vuln_filters else f'"{cve.upper()}"')
        return queries
