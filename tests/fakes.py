"""
Fixed clock, record builders and network fakes shared by the tests.
"""

import json
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from cti_pipeline.analysis import AnalysisContext
from cti_pipeline.correlation import CorrelationEngine, build_cooccurrence_graph, campaign_clusters
from cti_pipeline.errors import ReasoningServiceError
from cti_pipeline.normalizers import IndicatorExtractor, ThreatAssessor
from cti_pipeline.normalizers.schema import DataSource, RawRecord

FIXED_NOW = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)


def fixed_clock() -> datetime:
    return FIXED_NOW


def hours_ago(hours: float) -> str:
    return (FIXED_NOW - timedelta(hours=hours)).isoformat()


def shodan_record(ip: str, port: int, timestamp: Any, vulns=(), product: Optional[str] = None,
                  hostnames=(), country: str = 'US') -> RawRecord:
    return RawRecord.build(DataSource.SHODAN, timestamp, {
        'ip': ip,
        'port': port,
        'hostnames': list(hostnames),
        'org': 'Example Hosting',
        'country': country,
        'product': product,
        'vulns': list(vulns),
        'last_update': timestamp,
    })


def post_record(text: str, timestamp: Any, username: str = 'analyst', likes: int = 0,
                reposts: int = 0, post_id: str = '100') -> RawRecord:
    return RawRecord.build(DataSource.X_COM, timestamp, {
        'id': post_id,
        'text': text,
        'author': {'username': username},
        'metrics': {'likes': likes, 'reposts': reposts},
        'timestamp': timestamp,
    })


def build_context(records: List[RawRecord]) -> AnalysisContext:
    indicators = IndicatorExtractor().extract(records)
    return AnalysisContext(
        records=records,
        indicators=indicators,
        correlated=CorrelationEngine().correlate(indicators),
        threats=ThreatAssessor().assess(records, reference_time=FIXED_NOW),
        clusters=campaign_clusters(build_cooccurrence_graph(indicators)),
        reference_time=FIXED_NOW,
    )


class FakeReasoningClient:
    """Returns scripted responses in order; raises once they run out."""

    def __init__(self, responses: Optional[List[str]] = None, available: bool = True,
                 error: Optional[Exception] = None):
        self.responses = list(responses or [])
        self.available = available
        self.enabled = available
        self.error = error
        self.calls: List[Dict[str, Any]] = []

    def generate(self, prompt, model, timeout=None, options=None, stream=False) -> str:
        self.calls.append({'prompt': prompt, 'model': model, 'timeout': timeout})
        if self.error is not None:
            raise self.error
        if not self.responses:
            raise ReasoningServiceError('no scripted response left')
        return self.responses.pop(0)


class FakeResponse:
    def __init__(self, status_code: int = 200, payload: Any = None):
        self.status_code = status_code
        self.payload = payload

    def json(self):
        if isinstance(self.payload, Exception):
            raise self.payload
        return self.payload


class FakeSession:
    """Stands in for requests.Session; answers from a queue of responses or exceptions."""

    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.calls: List[Dict[str, Any]] = []

    def request(self, method, url, **kwargs):
        self.calls.append({'method': method, 'url': url, **kwargs})
        if not self.responses:
            raise AssertionError(f"unexpected request to {url}")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def get(self, url, **kwargs):
        return self.request('GET', url, **kwargs)

    def post(self, url, **kwargs):
        return self.request('POST', url, **kwargs)


# Scripted reasoning-service answers for the four analysis stages
MODELS = {'technical': 'qwen2:3b', 'strategic': 'mistral'}

EXTRACTION_RESPONSE = '```json\n' + json.dumps({
    'iocs': {
        'ips': [{'value': '45.33.32.156', 'context': 'OpenSSH exposure', 'confidence': 80}],
        'domains': [],
        'hashes': [],
        'cves': [{'id': 'cve-2024-6387', 'description': 'regreSSHion', 'severity': 'Critical'}],
    },
    'ttps': [{'technique': 'Brute Force', 'techniqueId': 'T1110', 'tactic': 'Credential Access'}],
    'threatActors': [],
    'malwareFamilies': [],
}) + '\n```'

NARRATIVE_RESPONSE = """NARRATIVE:
OpenSSH exposure and brute force chatter appeared within the same hour.
CORRELATION PATTERN: simultaneous
EMERGING THREATS:
- regreSSHion exploitation
TIME WINDOW:
24 hour window"""

ASSESSMENT_RESPONSE = json.dumps({
    'killChainPhase': 'exploitation',
    'attackSurface': ['SSH on port 22'],
    'riskAssessment': {'level': 'high', 'score': 72, 'factors': ['unpatched OpenSSH']},
    'mitreMapping': [{'tactic': 'Credential Access', 'techniques': ['T1110'], 'mitigations': ['MFA']}],
    'threatLandscape': 'Opportunistic SSH exploitation.',
})

EXECUTIVE_RESPONSE = json.dumps({
    'headline': 'SSH exploitation wave',
    'situationSummary': 'Exposed OpenSSH servers are being targeted.',
    'keyFindings': [{'finding': 'CVE-2024-6387 exposed', 'severity': 'urgent'}],
    'immediateActions': ['Patch OpenSSH'],
    'strategicRecommendations': ['Reduce SSH exposure'],
    'sourcesAndReferences': [],
})
