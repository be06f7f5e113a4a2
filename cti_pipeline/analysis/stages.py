"""
The four analysis stages.

Each stage knows how to build its prompt from the context and the upstream
records, how to parse a reasoning-service response into its record, and how
to derive the same record deterministically when the service is unavailable
or answers with something unusable.
"""

import json
import logging
import math
import re
from abc import ABC, abstractmethod
from collections import Counter, defaultdict
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from ..errors import ReasoningServiceError, ResponseParseError
from ..normalizers.extractor import CVE_PATTERN, is_private_ip
from ..normalizers.schema import (
    DataSource, DominantPattern, IndicatorKind, Precedence, SourceChannel
)
from ..normalizers.signals import port_to_service, signal_label
from ..scoring.risk import RiskLevel, risk_level, risk_score
from .context import AnalysisContext
from .mitre import (
    KILL_CHAIN, TACTIC_MITIGATIONS, guess_cve_severity, techniques_for_ports, techniques_for_text
)
from .parsing import (
    coerce_confidence, coerce_list, extract_json_object, extract_time_window,
    infer_kill_chain_phase, parse_bullets, parse_correlation_pattern, parse_risk_score,
    require_fields, split_sections
)
from .reasoning import ReasoningClient
from .records import (
    AnalysisStage, CorrelationNarrative, ExecutiveReport, ExtractionResult, StageResult,
    StageStatus, StrategicAssessment
)

logger = logging.getLogger(__name__)

HASH_PATTERN = re.compile(r'\b(?:[a-f0-9]{64}|[a-f0-9]{40}|[a-f0-9]{32})\b', re.IGNORECASE)
HASH_TYPES = {32: 'md5', 40: 'sha1', 64: 'sha256'}

SEVERITIES = ('critical', 'high', 'medium', 'low')

_LEVEL_WORDS = {
    RiskLevel.CRITICAL: 'critical',
    RiskLevel.ELEVATED: 'high',
    RiskLevel.MODERATE: 'medium',
    RiskLevel.LOW: 'low',
}

_PATTERN_WORDS = {
    DominantPattern.INFRA_FIRST: 'infra-first',
    DominantPattern.SOCIAL_FIRST: 'social-first',
    DominantPattern.SIMULTANEOUS: 'simultaneous',
    DominantPattern.INSUFFICIENT_DATA: 'isolated',
}

DEFAULT_IMMEDIATE_ACTIONS = [
    'Review and restrict exposed remote access services',
    'Patch systems with known vulnerabilities',
    'Monitor for indicators of compromise',
]

DEFAULT_STRATEGIC_RECOMMENDATIONS = [
    'Implement network segmentation',
    'Enable multi-factor authentication',
    'Integrate correlated indicators into detection rules',
]

# Request timeout grows with prompt size, capped by the client timeout
BASE_TIMEOUT_SECONDS = 60.0
TIMEOUT_SECONDS_PER_KCHAR = 15.0


class AnalysisStageRunner(ABC):
    """Prompt, parse and fallback for one stage."""

    stage: AnalysisStage
    model_role = 'technical'

    def __init__(self, config: Optional[Dict[str, Any]] = None,
                 clock: Callable[[], datetime] = None):
        self.config = config or {}
        self.parse_attempts = max(1, int(self.config.get('parse_attempts', 2)))
        self.base_timeout = float(self.config.get('base_timeout_seconds', BASE_TIMEOUT_SECONDS))
        self.timeout_per_kchar = float(self.config.get('timeout_per_kchar', TIMEOUT_SECONDS_PER_KCHAR))
        self.options = self.config.get('options', {})
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def timeout_for(self, prompt: str, ceiling: Optional[float] = None) -> float:
        timeout = self.base_timeout + self.timeout_per_kchar * len(prompt) / 1000.0
        return min(timeout, ceiling) if ceiling else timeout

    @abstractmethod
    def build_prompt(self, context: AnalysisContext, *upstream) -> str:
        ...

    @abstractmethod
    def parse(self, text: str, context: AnalysisContext, *upstream):
        ...

    @abstractmethod
    def fallback(self, context: AnalysisContext, *upstream):
        ...

    def execute(self, client: ReasoningClient, model: Optional[str],
                context: AnalysisContext, *upstream) -> StageResult:
        """
        Run the stage, falling back deterministically on any service or parse failure.

        Args:
            client: Reasoning-service client
            model: Model used for this stage
            context: Shared analysis input
            *upstream: Records of the previous stages, in order

        Returns:
            StageResult whose record is always populated
        """
        start_time = self.clock()
        attempts = 0
        error: Optional[str] = None

        if client is None or not client.available or not model:
            error = 'reasoning service unavailable'
        else:
            prompt = self.build_prompt(context, *upstream)
            timeout = self.timeout_for(prompt, getattr(client, 'timeout_seconds', None))
            while attempts < self.parse_attempts:
                attempts += 1
                try:
                    text = client.generate(prompt, model, timeout=timeout, options=self.options)
                    record = self.parse(text, context, *upstream)
                    logger.info(f"Stage {self.stage.value} completed with {model} (attempt {attempts})")
                    return StageResult(self.stage, StageStatus.COMPLETED, record, model, attempts,
                                       start_time, self.clock())
                except ResponseParseError as e:
                    error = f"unparseable response: {e}"
                    logger.warning(f"Stage {self.stage.value} attempt {attempts}: {error}")
                except ReasoningServiceError as e:
                    # transport retries already happened inside the client
                    error = str(e)
                    logger.warning(f"Stage {self.stage.value} reasoning service failed: {error}")
                    break

        logger.info(f"Stage {self.stage.value} using deterministic fallback ({error})")
        record = self.fallback(context, *upstream)
        return StageResult(self.stage, StageStatus.FALLBACK, record, model, attempts,
                           start_time, self.clock(), error_message=error)


def _as_dicts(items: Any, key: str, defaults: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Normalize a list of strings or dicts into dicts that all carry `key`."""
    result = []
    for item in coerce_list(items):
        if isinstance(item, str):
            item = {key: item}
        if not isinstance(item, dict) or not str(item.get(key) or '').strip():
            continue
        result.append({**defaults, **item, key: str(item[key]).strip()})
    return result


def _strings(items: Any) -> List[str]:
    values = []
    for item in coerce_list(items):
        if isinstance(item, dict):
            item = next((v for v in item.values() if isinstance(v, str)), '')
        text = str(item).strip()
        if text:
            values.append(text)
    return values


def _json_block(record) -> str:
    return json.dumps(record.to_dict(), indent=2, ensure_ascii=False)


# ----------------------------------------------------------------------
# Stage 1: extraction
# ----------------------------------------------------------------------

class ExtractionStage(AnalysisStageRunner):
    """IOCs, TTPs, actors and malware families."""

    stage = AnalysisStage.EXTRACTION

    def build_prompt(self, context: AnalysisContext, *upstream) -> str:
        return f"""You are a threat intelligence analyst. Extract indicators from the data below.

{context.summary_text()}

Respond with ONLY a JSON object of this shape:
{{
  "iocs": {{
    "ips": [{{"value": "", "context": "", "confidence": 0.0}}],
    "domains": [{{"value": "", "context": ""}}],
    "hashes": [{{"value": "", "type": "md5|sha1|sha256", "context": ""}}],
    "cves": [{{"id": "CVE-YYYY-NNNN", "description": "", "severity": "critical|high|medium|low", "exploitability": ""}}]
  }},
  "ttps": [{{"technique": "", "techniqueId": "T0000", "tactic": "", "evidence": "", "confidence": 0.0}}],
  "threatActors": [{{"name": "", "aliases": [], "motivation": "", "evidence": ""}}],
  "malwareFamilies": [{{"name": "", "type": "", "capabilities": [], "evidence": ""}}]
}}
Only include indicators present in the data."""

    def parse(self, text: str, context: AnalysisContext, *upstream) -> ExtractionResult:
        data = extract_json_object(text)
        iocs = data.get('iocs')
        if not isinstance(iocs, dict):
            raise ResponseParseError("missing required field: iocs")
        if 'ttps' in data and not isinstance(data['ttps'], list):
            raise ResponseParseError("ttps must be a list")

        cves = []
        for item in _as_dicts(iocs.get('cves'), 'id', {'description': '', 'exploitability': 'unknown'}):
            match = CVE_PATTERN.search(item['id'])
            if not match:
                continue
            cve_id = match.group(0).upper()
            severity = str(item.get('severity') or '').lower()
            item.update(id=cve_id, severity=severity if severity in SEVERITIES else guess_cve_severity(cve_id))
            cves.append(item)

        ips = _as_dicts(iocs.get('ips'), 'value', {'context': ''})
        for item in ips:
            item['confidence'] = coerce_confidence(item.get('confidence'))
        ttps = _as_dicts(data.get('ttps'), 'technique', {'techniqueId': '', 'tactic': '', 'evidence': ''})
        for item in ttps:
            item['confidence'] = coerce_confidence(item.get('confidence'))

        return ExtractionResult(
            ips=ips,
            domains=_as_dicts(iocs.get('domains'), 'value', {'context': ''}),
            hashes=_as_dicts(iocs.get('hashes'), 'value', {'type': 'unknown', 'context': ''}),
            cves=cves,
            ttps=ttps,
            threat_actors=_as_dicts(data.get('threatActors'), 'name',
                                    {'aliases': [], 'motivation': 'unknown', 'evidence': ''}),
            malware_families=_as_dicts(data.get('malwareFamilies'), 'name',
                                       {'type': 'unknown', 'capabilities': [], 'evidence': ''}),
        )

    def fallback(self, context: AnalysisContext, *upstream) -> ExtractionResult:
        ips = []
        seen = set()
        for host in context.hosts:
            if host.ip in seen or is_private_ip(host.ip):
                continue
            seen.add(host.ip)
            ips.append({
                'value': host.ip,
                'context': f"{host.product or port_to_service(host.port)} exposed on port {host.port}"
                           f" ({host.country or 'unknown country'})",
                'confidence': 0.7,
            })
        for value in context.values(IndicatorKind.IP):
            if value not in seen:
                seen.add(value)
                ips.append({'value': value, 'context': 'Mentioned in social posts', 'confidence': 0.5})

        host_cves = Counter(v for h in context.hosts for v in set(h.vulns))
        cves = []
        for cve_id in context.values(IndicatorKind.CVE)[:15]:
            on_hosts = host_cves.get(cve_id, 0)
            cves.append({
                'id': cve_id,
                'description': (f"Observed on {on_hosts} exposed hosts" if on_hosts
                                else 'Mentioned in social posts'),
                'severity': guess_cve_severity(cve_id),
                'exploitability': 'high' if on_hosts else 'unknown',
            })

        hashes = []
        for value in sorted({m.group(0).lower() for p in context.posts for m in HASH_PATTERN.finditer(p.text)}):
            hashes.append({'value': value, 'type': HASH_TYPES[len(value)], 'context': 'Shared in social posts'})

        ttps = []
        seen_techniques = set()
        for technique in techniques_for_ports(context.ports()):
            seen_techniques.add(technique['id'])
            ttps.append({
                'technique': technique['name'],
                'techniqueId': technique['id'],
                'tactic': technique['tactic'],
                'evidence': f"{port_to_service(int(technique['port']))} exposed on port {technique['port']}",
                'confidence': 0.6,
            })
        for technique in techniques_for_text(context.corpus_text()):
            if technique['id'] in seen_techniques:
                continue
            seen_techniques.add(technique['id'])
            ttps.append({
                'technique': technique['name'],
                'techniqueId': technique['id'],
                'tactic': technique['tactic'],
                'evidence': 'Keyword match in collected data',
                'confidence': 0.5,
            })

        return ExtractionResult(
            ips=ips[:10],
            domains=[{'value': d, 'context': 'Mentioned in collected data'}
                     for d in context.values(IndicatorKind.DOMAIN)[:10]],
            hashes=hashes[:10],
            cves=cves,
            ttps=ttps,
            threat_actors=[
                {'name': signal_label(IndicatorKind.THREAT_ACTOR, v), 'aliases': [],
                 'motivation': 'unknown', 'evidence': 'Named in social posts'}
                for v in context.values(IndicatorKind.THREAT_ACTOR)
            ],
            malware_families=[
                {'name': signal_label(IndicatorKind.MALWARE_FAMILY, v), 'type': 'unknown',
                 'capabilities': [], 'evidence': 'Named in social posts'}
                for v in context.values(IndicatorKind.MALWARE_FAMILY)
            ],
        )


# ----------------------------------------------------------------------
# Stage 2: correlation narrative
# ----------------------------------------------------------------------

NARRATIVE_HEADERS = ['NARRATIVE', 'CORRELATION PATTERN', 'KEY CORRELATIONS', 'EMERGING THREATS', 'TIME WINDOW']

# (field label pattern, output key)
KEY_CORRELATION_FIELDS = [
    (re.compile(r'social\s+event', re.IGNORECASE), 'socialEvent'),
    (re.compile(r'infra(?:structure)?\s+event', re.IGNORECASE), 'infraEvent'),
    (re.compile(r'time\s+delta', re.IGNORECASE), 'timeDelta'),
    (re.compile(r'significance', re.IGNORECASE), 'significance'),
]
_FIELD_LINE = re.compile(r'^\s*(?:[-•*]|\d+[.)])?\s*([A-Za-z ]+?)\s*:\s*(.+?)\s*$')


def parse_key_correlations(text: str) -> List[Dict[str, str]]:
    """Blocks of 'Social event: / Infra event: / Time delta: / Significance:' lines."""
    entries: List[Dict[str, str]] = []
    current: Dict[str, str] = {}
    for line in (text or '').splitlines():
        match = _FIELD_LINE.match(line)
        if not match:
            continue
        label, value = match.group(1), match.group(2)
        key = next((k for pattern, k in KEY_CORRELATION_FIELDS if pattern.fullmatch(label.strip())), None)
        if key is None:
            continue
        if key in current:
            entries.append(current)
            current = {}
        current[key] = value
    if current:
        entries.append(current)
    return [
        {key: entry.get(key, '') for _, key in KEY_CORRELATION_FIELDS}
        for entry in entries
        if entry.get('socialEvent') or entry.get('infraEvent')
    ]


class CorrelationNarrativeStage(AnalysisStageRunner):
    """Temporal story linking social discussion and infrastructure exposure."""

    stage = AnalysisStage.CORRELATION_NARRATIVE

    def build_prompt(self, context: AnalysisContext, extraction: ExtractionResult = None) -> str:
        extraction_json = _json_block(extraction) if extraction else '{}'
        return f"""You are a threat intelligence analyst correlating social media discussion with
network exposure data.

{context.summary_text()}

EXTRACTED INDICATORS:
{extraction_json}

Answer using exactly these section headers:
NARRATIVE:
<2-4 sentences describing how social and infrastructure signals relate over time>
CORRELATION PATTERN:
<one of: infra-first, social-first, simultaneous, isolated>
KEY CORRELATIONS:
- Social event: <...>
  Infra event: <...>
  Time delta: <...>
  Significance: <...>
EMERGING THREATS:
- <threat>
TIME WINDOW:
<e.g. 24 hour window>"""

    def parse(self, text: str, context: AnalysisContext,
              extraction: ExtractionResult = None) -> CorrelationNarrative:
        sections = split_sections(text, NARRATIVE_HEADERS)
        require_fields(sections, ['NARRATIVE', 'CORRELATION PATTERN'])
        pattern = parse_correlation_pattern(sections['CORRELATION PATTERN'])
        if pattern is None:
            raise ResponseParseError(f"unknown correlation pattern {sections['CORRELATION PATTERN']!r}")

        time_window_text = sections.get('TIME WINDOW', '').strip()
        time_window = (time_window_text.splitlines()[0].strip('-•* ') if time_window_text
                       else extract_time_window(text))
        return CorrelationNarrative(
            narrative=' '.join(sections['NARRATIVE'].split()),
            pattern=pattern,
            key_correlations=parse_key_correlations(sections.get('KEY CORRELATIONS', '')),
            emerging_threats=parse_bullets(sections.get('EMERGING THREATS', '')),
            time_window=time_window,
            campaign=self._campaign(context),
        )

    def fallback(self, context: AnalysisContext,
                 extraction: ExtractionResult = None) -> CorrelationNarrative:
        correlated = context.correlated
        cross = sorted(correlated.cross_source_signals, key=lambda s: (-s.total_count, s.id))
        pattern = _PATTERN_WORDS[correlated.summary.dominant_pattern]

        if not cross:
            narrative = 'Insufficient data for detailed temporal correlation analysis.'
        else:
            interpretations = ' '.join(
                f"{s.temporal.interpretation}." for s in cross[:3] if s.temporal and s.temporal.interpretation
            )
            narrative = (f"{len(cross)} signals were observed in both infrastructure and social sources. "
                         f"{interpretations} Dominant pattern: {pattern}.").replace('  ', ' ')

        key_correlations = []
        for signal in cross[:5]:
            social = signal.count_for_channel(SourceChannel.SOCIAL)
            infra = signal.count_for_channel(SourceChannel.INFRASTRUCTURE)
            social_obs = next((o for o in signal.per_source if o.source.channel == SourceChannel.SOCIAL), None)
            social_event = (social_obs.sample_evidence[0][:160] if social_obs and social_obs.sample_evidence
                            else f"{signal.label} mentioned {social} times")
            temporal = signal.temporal
            key_correlations.append({
                'socialEvent': social_event,
                'infraEvent': f"{signal.label} observed on {infra} exposed services",
                'timeDelta': (f"{temporal.delta_hours:.1f} hours"
                              if temporal and temporal.precedence != Precedence.UNKNOWN else 'unknown'),
                'significance': temporal.interpretation if temporal else '',
            })

        emerging = []
        for signal in correlated.signals:
            if signal.is_cross_source or signal.kind in (IndicatorKind.IP, IndicatorKind.DOMAIN, IndicatorKind.PORT):
                continue
            if signal.count_for_channel(SourceChannel.SOCIAL) and not signal.count_for_channel(SourceChannel.INFRASTRUCTURE):
                emerging.append(f"{signal.label} discussed on social media without matching infrastructure exposure")
        average = correlated.summary.average_delta_hours
        time_window = f"{max(1, math.ceil(average))} hours" if average else '24-48 hours'

        return CorrelationNarrative(
            narrative=narrative,
            pattern=pattern,
            key_correlations=key_correlations,
            emerging_threats=emerging[:5],
            time_window=time_window,
            campaign=self._campaign(context),
        )

    @staticmethod
    def _campaign(context: AnalysisContext) -> Dict[str, Any]:
        if not context.clusters:
            return {'detected': False, 'confidence': 0.0, 'description': '', 'relatedSignals': []}
        largest = context.clusters[0]
        return {
            'detected': True,
            'confidence': round(min(0.9, 0.4 + 0.1 * len(largest)), 2),
            'description': f"{len(largest)} signals repeatedly observed together in the same records",
            'relatedSignals': largest[:10],
        }


# ----------------------------------------------------------------------
# Stage 3: strategic assessment
# ----------------------------------------------------------------------

class StrategicAssessmentStage(AnalysisStageRunner):
    """Kill-chain phase, risk, MITRE mapping and threat landscape."""

    stage = AnalysisStage.STRATEGIC_ASSESSMENT
    model_role = 'strategic'

    def build_prompt(self, context: AnalysisContext, extraction: ExtractionResult = None,
                     narrative: CorrelationNarrative = None) -> str:
        return f"""You are a strategic threat intelligence analyst.

{context.summary_text()}

EXTRACTION:
{_json_block(extraction) if extraction else '{}'}

CORRELATION NARRATIVE:
{_json_block(narrative) if narrative else '{}'}

Respond with ONLY a JSON object:
{{
  "killChainPhase": "one of {', '.join(KILL_CHAIN)}",
  "attackSurface": [""],
  "riskAssessment": {{"level": "critical|high|medium|low", "score": 0, "factors": [""]}},
  "mitreMapping": [{{"tactic": "", "techniques": [""], "mitigations": [""]}}],
  "threatLandscape": ""
}}"""

    def parse(self, text: str, context: AnalysisContext, extraction: ExtractionResult = None,
              narrative: CorrelationNarrative = None) -> StrategicAssessment:
        data = extract_json_object(text)
        require_fields(data, ['killChainPhase', 'riskAssessment'])

        phase_text = str(data['killChainPhase'])
        phase = next((p for p in KILL_CHAIN if p.lower() == phase_text.strip().lower()), None)
        phase = phase or infer_kill_chain_phase(phase_text)

        risk = data['riskAssessment']
        factors: List[str] = []
        if isinstance(risk, dict):
            factors = _strings(risk.get('factors'))
            risk = f"{risk.get('level') or ''} {risk.get('score') if risk.get('score') is not None else ''}"
        level, score = parse_risk_score(str(risk))

        mapping = []
        for item in _as_dicts(data.get('mitreMapping'), 'tactic', {}):
            mapping.append({
                'tactic': item['tactic'],
                'techniques': _strings(item.get('techniques')),
                'mitigations': _strings(item.get('mitigations')),
            })

        return StrategicAssessment(
            kill_chain_phase=phase,
            risk_level=level,
            risk_score=score,
            risk_factors=factors,
            attack_surface=_strings(data.get('attackSurface')),
            mitre_mapping=mapping,
            threat_landscape=str(data.get('threatLandscape') or '').strip()
                             or 'Insufficient data for threat landscape assessment.',
        )

    def fallback(self, context: AnalysisContext, extraction: ExtractionResult = None,
                 narrative: CorrelationNarrative = None) -> StrategicAssessment:
        counts = context.severity_counts()
        score = risk_score(counts['critical'], counts['high'], counts['medium'], counts['low'])
        level = _LEVEL_WORDS[risk_level(score)]

        factors = [f"{n} {severity} severity threats" for severity, n in counts.items() if n]
        vulnerable = sum(1 for h in context.hosts if h.vulns)
        if vulnerable:
            factors.append(f"{vulnerable} exposed hosts with known vulnerabilities")
        if context.correlated.summary.correlated:
            factors.append(f"{context.correlated.summary.correlated} signals corroborated across sources")

        ttps = extraction.ttps if extraction else []
        phase_text = ' '.join([
            context.corpus_text(),
            narrative.narrative if narrative else '',
            ' '.join(t.get('technique', '') for t in ttps),
        ])

        port_counts = Counter(h.port for h in context.hosts)
        attack_surface = [
            f"{port_to_service(port)} (port {port}): {n} exposed hosts"
            for port, n in sorted(port_counts.items(), key=lambda kv: (-kv[1], kv[0]))[:8]
        ]

        by_tactic: Dict[str, List[str]] = defaultdict(list)
        for ttp in ttps:
            label = f"{ttp.get('techniqueId', '')} {ttp.get('technique', '')}".strip()
            if label not in by_tactic[ttp.get('tactic') or 'Unknown']:
                by_tactic[ttp.get('tactic') or 'Unknown'].append(label)
        mitre_mapping = [
            {'tactic': tactic, 'techniques': techniques, 'mitigations': TACTIC_MITIGATIONS.get(tactic, [])}
            for tactic, techniques in sorted(by_tactic.items())
        ]

        if context.records:
            landscape = (f"{len(context.hosts)} exposed services and {len(context.posts)} social posts analysed; "
                         f"{context.threats.total} threats assessed with overall {level} risk.")
            if narrative and narrative.pattern != 'isolated':
                landscape += f" Cross-source activity follows a {narrative.pattern} pattern."
        else:
            landscape = 'Insufficient data for threat landscape assessment.'

        return StrategicAssessment(
            kill_chain_phase=infer_kill_chain_phase(phase_text),
            risk_level=level,
            risk_score=score,
            risk_factors=factors,
            attack_surface=attack_surface,
            mitre_mapping=mitre_mapping,
            threat_landscape=landscape,
        )


# ----------------------------------------------------------------------
# Stage 4: executive report
# ----------------------------------------------------------------------

class ExecutiveReportStage(AnalysisStageRunner):
    """Headline, findings and recommendations for decision makers."""

    stage = AnalysisStage.EXECUTIVE_REPORT
    model_role = 'strategic'

    def build_prompt(self, context: AnalysisContext, extraction: ExtractionResult = None,
                     narrative: CorrelationNarrative = None,
                     assessment: StrategicAssessment = None) -> str:
        return f"""You are writing an executive threat intelligence briefing.

CORRELATION NARRATIVE:
{_json_block(narrative) if narrative else '{}'}

STRATEGIC ASSESSMENT:
{_json_block(assessment) if assessment else '{}'}

KEY INDICATORS:
{_json_block(extraction) if extraction else '{}'}

Respond with ONLY a JSON object:
{{
  "headline": "",
  "situationSummary": "",
  "keyFindings": [{{"finding": "", "severity": "critical|high|medium|low", "evidence": "", "recommendation": ""}}],
  "immediateActions": [""],
  "strategicRecommendations": [""],
  "sourcesAndReferences": [{{"source": "", "url": "", "relevance": ""}}]
}}"""

    def parse(self, text: str, context: AnalysisContext, extraction: ExtractionResult = None,
              narrative: CorrelationNarrative = None,
              assessment: StrategicAssessment = None) -> ExecutiveReport:
        data = extract_json_object(text)
        require_fields(data, ['headline', 'situationSummary'])

        findings = _as_dicts(data.get('keyFindings'), 'finding',
                             {'severity': 'medium', 'evidence': '', 'recommendation': ''})
        for finding in findings:
            severity = str(finding.get('severity') or '').lower()
            finding['severity'] = severity if severity in SEVERITIES else 'medium'

        return ExecutiveReport(
            headline=str(data['headline']).strip(),
            situation_summary=str(data['situationSummary']).strip(),
            key_findings=findings,
            immediate_actions=_strings(data.get('immediateActions')),
            strategic_recommendations=_strings(data.get('strategicRecommendations')),
            sources_and_references=_as_dicts(data.get('sourcesAndReferences'), 'source',
                                             {'url': '', 'relevance': ''}),
        )

    def fallback(self, context: AnalysisContext, extraction: ExtractionResult = None,
                 narrative: CorrelationNarrative = None,
                 assessment: StrategicAssessment = None) -> ExecutiveReport:
        level = assessment.risk_level if assessment else 'low'
        cross = sorted(context.correlated.cross_source_signals, key=lambda s: (-s.total_count, s.id))
        cves = extraction.cves if extraction else []

        if not context.records:
            headline = 'Threat Intelligence Analysis Complete'
        elif cross:
            headline = (f"{level.capitalize()} risk: {cross[0].label} activity corroborated by "
                        f"infrastructure and social sources")
        else:
            headline = (f"{level.capitalize()} risk: {len(context.hosts)} exposed services and "
                        f"{len(cves)} vulnerabilities observed")

        summary_parts = []
        if narrative:
            summary_parts.append(narrative.narrative)
        if assessment:
            summary_parts.append(assessment.threat_landscape)
        situation = ' '.join(p for p in summary_parts if p) or 'No significant activity was observed.'

        findings = []
        for signal in cross[:3]:
            temporal = signal.temporal
            precedence = temporal.precedence if temporal else Precedence.UNKNOWN
            evidence = next((o.sample_evidence[0] for o in signal.per_source if o.sample_evidence), signal.value)
            findings.append({
                'finding': temporal.interpretation if temporal else f"{signal.label} seen across sources",
                'severity': 'high' if precedence == Precedence.INFRA_FIRST else 'medium',
                'evidence': evidence[:200],
                'recommendation': self._recommendation(signal.kind, signal.label),
            })
        for cve in [c for c in cves if c.get('severity') in ('critical', 'high')][:3]:
            findings.append({
                'finding': f"{cve['id']} observed ({cve.get('description', '')})",
                'severity': cve['severity'],
                'evidence': f"https://nvd.nist.gov/vuln/detail/{cve['id']}",
                'recommendation': f"Patch or mitigate {cve['id']} on exposed systems",
            })
        if not findings and assessment:
            findings.append({
                'finding': assessment.threat_landscape,
                'severity': level,
                'evidence': '; '.join(assessment.risk_factors) or 'No corroborating evidence',
                'recommendation': DEFAULT_IMMEDIATE_ACTIONS[-1],
            })

        immediate = [f"Patch or mitigate {c['id']}" for c in cves[:2]] + DEFAULT_IMMEDIATE_ACTIONS
        strategic = list(DEFAULT_STRATEGIC_RECOMMENDATIONS)
        if narrative and narrative.pattern == 'infra-first':
            strategic.insert(0, 'Prioritize exposure reduction: infrastructure activity precedes public discussion')

        references = []
        for host in context.hosts[:3]:
            references.append({'source': DataSource.SHODAN.display_name, 'url': host.url,
                               'relevance': f"{host.product or port_to_service(host.port)} exposure"})
        for post in sorted(context.posts, key=lambda p: -p.engagement)[:3]:
            if post.url:
                references.append({'source': DataSource.X_COM.display_name, 'url': post.url,
                                   'relevance': 'Social discussion'})
        for cve in cves[:3]:
            references.append({'source': 'NVD', 'url': f"https://nvd.nist.gov/vuln/detail/{cve['id']}",
                               'relevance': cve['id']})

        return ExecutiveReport(
            headline=headline,
            situation_summary=situation,
            key_findings=findings,
            immediate_actions=immediate[:5],
            strategic_recommendations=strategic[:5],
            sources_and_references=references,
        )

    @staticmethod
    def _recommendation(kind: IndicatorKind, label: str) -> str:
        if kind == IndicatorKind.CVE:
            return f"Patch or mitigate {label} on exposed systems"
        if kind == IndicatorKind.PORT:
            return f"Restrict public exposure of {label}"
        if kind in (IndicatorKind.IP, IndicatorKind.DOMAIN):
            return f"Block and monitor {label}"
        return f"Hunt for {label} activity in internal telemetry"
