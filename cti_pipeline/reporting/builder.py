"""
Artifact assembly.

Builds the single JSON document consumed by the dashboard. Required sections
(meta, status, executive, metrics, timeline, sources, indicators) are always
present with every numeric field filled in; optional sections are added only
when upstream data exists for them and are otherwise left out entirely.
"""

import logging
import re
from collections import Counter, defaultdict
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from ..analysis.context import AnalysisContext
from ..analysis.mitre import TACTIC_MITIGATIONS
from ..analysis.orchestrator import AnalysisReport
from ..normalizers.extractor import merge_indicators
from ..normalizers.schema import (
    DataSource, DominantPattern, IndicatorKind, Precedence, QuerySuggestion, SourceChannel,
    ThreatSeverity, isoformat
)
from ..normalizers.signals import port_to_service
from ..scoring.history import BaselineComparison, HistoricalCache
from ..scoring.risk import (
    RiskLevel, confidence_level, map_stage_level, risk_level, risk_score
)
from .assessment import build_assessment_layer

logger = logging.getLogger(__name__)

ARTIFACT_VERSION = '2.0.0'
VALIDITY = timedelta(hours=6)

INDICATOR_CAPS = {
    IndicatorKind.CVE: ('cves', 10),
    IndicatorKind.DOMAIN: ('domains', 5),
    IndicatorKind.IP: ('ips', 5),
    IndicatorKind.KEYWORD: ('keywords', 8),
}
MAX_CATEGORIES = 6
MAX_TIMELINE = 8
MAX_CORRELATION_SIGNALS = 5
MAX_SECTION_ITEMS = 5

CATEGORY_NAMES = {
    'malware': 'Malware',
    'ransomware': 'Ransomware',
    'phishing': 'Phishing',
    'ddos': 'DDoS',
    'apt': 'APT',
    'vulnerability': 'Vulnerability',
    'data_breach': 'Data Breach',
    'supply_chain': 'Supply Chain',
    'social_engineering': 'Social Engineering',
    'infrastructure': 'Infrastructure',
    'other': 'Other',
}

SPAM_PATTERNS = [
    re.compile(r'quiz\s*time', re.IGNORECASE),
    re.compile(r'what\s+is\s+.*\?\s*[A-D]\)', re.IGNORECASE),
    re.compile(r'^\d+[A-Za-z]+\s+\w+\d+', re.IGNORECASE),
    re.compile(r'fusion\s*mix', re.IGNORECASE),
    re.compile(r'one-day\s*fusion', re.IGNORECASE),
]

# (pattern, replacement) applied in order to model output
MARKDOWN_CLEANUP = [
    (re.compile(r'\*\*([^*]+)\*\*'), r'\1'),
    (re.compile(r'\*([^*\n]+)\*'), r'\1'),
    (re.compile(r'^\*+\s*', re.MULTILINE), ''),
    (re.compile(r'\*+$', re.MULTILINE), ''),
    (re.compile(r'^#{1,6}\s*', re.MULTILINE), ''),
    (re.compile(r'\s+#{1,6}\s*$', re.MULTILINE), ''),
    (re.compile(r'\n{3,}'), '\n\n'),
]

TOPIC_KEYWORDS = ['ransomware', 'cve', 'vulnerability', 'breach', 'malware', 'apt', 'exploit', 'attack']
ALARMING_KEYWORDS = ['critical', 'urgent', 'zero-day', 'active exploitation', 'emergency']
EXPLOITATION_CLAIM_PATTERN = re.compile(
    r'actively exploited|in the wild|exploitation|\bpoc\b|proof of concept|exploit', re.IGNORECASE)

METHODOLOGIES = [
    'MITRE ATT&CK for tactic/technique mapping',
    'Cyber Kill Chain for phase prioritization',
    'Temporal correlation analysis (social and infrastructure)',
    'Source reliability weighting (social engagement and technical evidence)',
]

ACTIONS_BY_LEVEL = {
    RiskLevel.CRITICAL: [
        'Initiate incident response procedures',
        'Review and patch critical vulnerabilities immediately',
        'Increase monitoring on affected systems',
        'Brief security leadership on current threat status',
    ],
    RiskLevel.ELEVATED: [
        'Prioritize vulnerability remediation for high-severity items',
        'Review access controls and network segmentation',
        'Increase threat hunting activities',
    ],
    RiskLevel.MODERATE: [
        'Continue routine vulnerability management',
        'Monitor for escalation indicators',
        'Update threat intelligence feeds',
    ],
    RiskLevel.LOW: [
        'Maintain standard security operations',
        'Continue periodic threat assessments',
    ],
}

HEADLINES = {
    RiskLevel.CRITICAL: 'Critical Threat Activity Detected',
    RiskLevel.ELEVATED: 'Elevated Threat Landscape',
    RiskLevel.MODERATE: 'Moderate Security Signals Observed',
    RiskLevel.LOW: 'Baseline Threat Activity',
}


def format_category(category: str) -> str:
    return CATEGORY_NAMES.get(category.lower(), category)


def format_source(source: str) -> str:
    try:
        return DataSource(source).display_name
    except ValueError:
        return source


def is_spam(text: str) -> bool:
    return any(p.search(text or '') for p in SPAM_PATTERNS)


def clean_llm_text(text: str) -> str:
    """Strip markdown noise from model output."""
    cleaned = text or ''
    for pattern, replacement in MARKDOWN_CLEANUP:
        cleaned = pattern.sub(replacement, cleaned)
    return cleaned.strip()


def mask_ip(ip: str) -> str:
    parts = ip.split('.')
    if len(parts) == 4:
        return f"{parts[0]}.{parts[1]}.xxx.xxx"
    return ip


def quantization_of(model: Optional[str]) -> Optional[str]:
    match = re.search(r'\b(q\d(?:_[0-9a-z]+)*)\b', model or '', re.IGNORECASE)
    return match.group(1).lower() if match else None


class ArtifactBuilder:
    """Assemble the dashboard artifact from one run's results."""

    def __init__(self, config: Optional[Dict[str, Any]] = None,
                 clock: Callable[[], datetime] = None):
        self.config = config or {}
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.models = self.config.get('models', {})

    def build(self, context: AnalysisContext,
              report: Optional[AnalysisReport] = None,
              history: Optional[HistoricalCache] = None,
              suggestions: Optional[List[QuerySuggestion]] = None) -> Dict[str, Any]:
        """
        Build the artifact.

        Args:
            context: Records, indicators, correlation and threat summary
            report: Multi-stage analysis results, when the analyzer ran
            history: Historical run cache used for trend and baseline
            suggestions: Query suggestions for the next collection cycle

        Returns:
            JSON-serializable artifact dictionary
        """
        now = self.clock()
        threats = context.threats
        counts = {severity: threats.count(severity) for severity in
                  (ThreatSeverity.CRITICAL, ThreatSeverity.HIGH, ThreatSeverity.MEDIUM, ThreatSeverity.LOW)}

        if threats.total == 0:
            score, level, confidence = 0, RiskLevel.LOW, 0
        else:
            score = risk_score(*counts.values())
            level = risk_level(score)
            if report is not None:
                assessed = report.assessment.record
                mapped = map_stage_level(assessed.risk_level)
                if mapped is not None:
                    score, level = max(0, min(100, int(assessed.risk_score))), mapped
            active_sources = sum(1 for n in threats.by_source.values() if n > 0)
            confidence = confidence_level(active_sources, threats.total,
                                          bool(report and report.used_reasoning_service))

        baseline = history.compare(score) if history is not None else BaselineComparison(
            score, score, 0, 'stable', 'stable')

        artifact: Dict[str, Any] = {
            'meta': {
                'version': ARTIFACT_VERSION,
                'generatedAt': isoformat(now),
                'validUntil': isoformat(now + VALIDITY),
            },
            'status': {
                'riskLevel': level.value,
                'riskScore': score,
                'trend': baseline.trend_direction,
                'confidenceLevel': confidence,
            },
            'executive': self._executive(context, report, level),
            'metrics': {
                'totalSignals': threats.total,
                'criticalCount': counts[ThreatSeverity.CRITICAL],
                'highCount': counts[ThreatSeverity.HIGH],
                'mediumCount': counts[ThreatSeverity.MEDIUM],
                'lowCount': counts[ThreatSeverity.LOW],
                'categories': self._categories(context),
            },
            'timeline': self._timeline(context),
            'sources': [
                {'name': format_source(name), 'signalCount': n, 'lastUpdate': isoformat(now)}
                for name, n in sorted(threats.by_source.items()) if n > 0
            ],
            'indicators': self._indicators(context),
        }

        optional = {
            'correlation': self._correlation(context),
            'infrastructure': self._infrastructure(context),
            'socialIntel': self._social_intel(context),
            'ctiAnalysis': self._cti_analysis(context, report),
            'assessmentLayer': (build_assessment_layer(
                context, baseline, bool(report and report.used_reasoning_service)).to_dict()
                if context.records else None),
            'signalLayer': self._signal_layer(context),
            'modelMetadata': self._model_metadata(report),
            'nextQueries': [s.to_dict() for s in suggestions] if suggestions else None,
        }
        for name, section in optional.items():
            if section:
                artifact[name] = section

        logger.info(f"Built artifact: risk {level.value} ({score}), {threats.total} signals, "
                    f"sections {', '.join(artifact)}")
        return artifact

    # ------------------------------------------------------------------
    # Required sections
    # ------------------------------------------------------------------

    def _executive(self, context: AnalysisContext, report: Optional[AnalysisReport],
                   level: RiskLevel) -> Dict[str, Any]:
        if context.threats.total == 0:
            return {
                'headline': 'No Active Threats Detected',
                'summary': ('No significant threat activity was identified during this analysis period. '
                            'Continue monitoring for emerging threats.'),
                'keyFindings': ['No critical vulnerabilities detected', 'No active campaigns identified'],
                'recommendedActions': ['Maintain current security posture', 'Continue routine monitoring'],
            }

        findings = self._findings(context)
        actions = self._actions(context, level)
        if report is None:
            return {
                'headline': self._headline(context, level),
                'summary': self._summary(context, level),
                'keyFindings': findings,
                'recommendedActions': actions,
            }

        executive = report.executive.record
        stage_findings = [clean_llm_text(f.get('finding', '')) for f in executive.key_findings]
        stage_actions = [clean_llm_text(a) for a in executive.immediate_actions]
        return {
            'headline': clean_llm_text(executive.headline) or self._headline(context, level),
            'summary': clean_llm_text(executive.situation_summary) or self._summary(context, level),
            'keyFindings': [f for f in stage_findings if f][:5] or findings,
            'recommendedActions': [a for a in stage_actions if a][:5] or actions,
        }

    @staticmethod
    def _headline(context: AnalysisContext, level: RiskLevel) -> str:
        cross = context.correlated.cross_source_signals
        if cross and level == RiskLevel.CRITICAL:
            return f"{cross[0].label} Activity Correlated Across Sources"
        return HEADLINES[level]

    @staticmethod
    def _summary(context: AnalysisContext, level: RiskLevel) -> str:
        threats = context.threats
        social = sum(n for s, n in threats.by_source.items() if DataSource(s).channel == SourceChannel.SOCIAL)
        technical = sum(n for s, n in threats.by_source.items()
                        if DataSource(s).channel == SourceChannel.INFRASTRUCTURE)
        if social and technical:
            text = f"Analysis identified {threats.total} threat signals across social and technical intelligence sources. "
            if threats.by_category:
                name, count = max(threats.by_category.items(), key=lambda kv: (kv[1], kv[0]))
                text += f"{format_category(name)} activity represents the dominant threat category ({count} signals). "
            correlated = context.correlated.summary.correlated
            if correlated:
                text += (f"Cross-source correlation detected {correlated} signals appearing in both "
                         f"infrastructure and social channels. ")
            activity = 'elevated' if level in (RiskLevel.CRITICAL, RiskLevel.ELEVATED) else 'baseline'
            return text + f"Activity level: {activity}. Assessment based on correlated multi-source intelligence."
        if social:
            return (f"Social intelligence analysis detected {social} threat-related discussions. "
                    f"Claims and reports require verification against technical indicators.")
        if technical:
            return (f"Technical reconnaissance identified {technical} infrastructure-related signals. "
                    f"Exposed services and vulnerabilities detected may indicate potential attack surface.")
        return 'Insufficient data for comprehensive threat assessment.'

    @staticmethod
    def _findings(context: AnalysisContext) -> List[str]:
        findings = []
        cross = context.correlated.cross_source_signals
        if cross:
            labels = ' and '.join(s.label for s in cross[:2])
            pattern = context.correlated.summary.dominant_pattern
            if pattern == DominantPattern.INFRA_FIRST:
                findings.append(f"{labels} infrastructure activity detected before social discussion")
            elif pattern == DominantPattern.SOCIAL_FIRST:
                findings.append(f"{labels} social discussion preceded observable infrastructure exposure")
            else:
                findings.append(f"Cross-source correlation detected for {labels}")

        cve_count = len(context.values(IndicatorKind.CVE))
        if cve_count:
            findings.append(f"{cve_count} CVE reference{'s' if cve_count > 1 else ''} identified "
                            f"in collected intelligence")
        critical = context.threats.count(ThreatSeverity.CRITICAL)
        if critical:
            findings.append(f"{critical} critical severity signal{'s' if critical > 1 else ''} "
                            f"require immediate attention")
        if context.threats.by_category and len(findings) < 4:
            name, _ = max(context.threats.by_category.items(), key=lambda kv: (kv[1], kv[0]))
            findings.append(f"{format_category(name)} represents primary threat vector")
        return findings[:4] or ['No high-priority findings at this time']

    @staticmethod
    def _actions(context: AnalysisContext, level: RiskLevel) -> List[str]:
        actions = []
        cross = context.correlated.cross_source_signals
        pattern = context.correlated.summary.dominant_pattern
        if cross and pattern == DominantPattern.INFRA_FIRST:
            actions.append(f"Verify {cross[0].label} exposure and assess potential reconnaissance activity")
        elif cross and pattern == DominantPattern.SOCIAL_FIRST:
            actions.append(f"Monitor {cross[0].label} services for emerging exploitation attempts")
        return (actions + ACTIONS_BY_LEVEL[level])[:4]

    @staticmethod
    def _categories(context: AnalysisContext) -> List[Dict[str, Any]]:
        threats = context.threats
        ranked = sorted(((n, c) for c, n in threats.by_category.items() if n > 0),
                        key=lambda item: (-item[0], item[1]))[:MAX_CATEGORIES]
        return [
            {'name': format_category(category), 'count': n,
             'percentage': round(n / threats.total * 100) if threats.total else 0}
            for n, category in ranked
        ]

    @staticmethod
    def _timeline(context: AnalysisContext) -> List[Dict[str, Any]]:
        entries = []
        for threat in context.threats.threats:
            if is_spam(threat.title):
                continue
            entry = threat.to_dict()
            entry['category'] = format_category(threat.category.value)
            entries.append(entry)
            if len(entries) >= MAX_TIMELINE:
                break
        return entries

    @staticmethod
    def _indicators(context: AnalysisContext) -> Dict[str, List[str]]:
        display: Dict[str, List[str]] = {name: [] for name, _ in INDICATOR_CAPS.values()}
        for entry in merge_indicators(context.indicators):
            name, cap = INDICATOR_CAPS.get(entry['kind'], (None, 0))
            if name and len(display[name]) < cap:
                display[name].append(entry['value'])
        return display

    # ------------------------------------------------------------------
    # Optional sections
    # ------------------------------------------------------------------

    def _correlation(self, context: AnalysisContext) -> Optional[Dict[str, Any]]:
        cross = sorted(context.correlated.cross_source_signals, key=lambda s: (-s.total_count, s.id))
        if not cross:
            return None

        signals = []
        for signal in cross[:MAX_CORRELATION_SIGNALS]:
            temporal = signal.temporal
            evidence: Dict[str, List[Dict[str, Any]]] = {'infrastructure': [], 'social': []}
            for obs in signal.per_source:
                key = 'infrastructure' if obs.source.channel == SourceChannel.INFRASTRUCTURE else 'social'
                for sample in obs.sample_evidence:
                    evidence[key].append({
                        'source': obs.source.value,
                        'title': f"{signal.label} {'host' if key == 'infrastructure' else 'discussion'}",
                        'excerpt': sample[:100] + ('...' if len(sample) > 100 else ''),
                        'timestamp': isoformat(obs.last_seen),
                    })
            signals.append({
                'id': signal.id,
                'label': signal.label,
                'infraCount': signal.count_for_channel(SourceChannel.INFRASTRUCTURE),
                'socialCount': signal.count_for_channel(SourceChannel.SOCIAL),
                'timeDeltaHours': round(temporal.delta_hours, 2) if temporal else 0.0,
                'precedence': temporal.precedence.value if temporal else Precedence.UNKNOWN.value,
                'interpretation': temporal.interpretation if temporal else '',
                'evidence': evidence,
            })

        pattern = context.correlated.summary.dominant_pattern
        return {
            'insight': self._insight([s.label for s in cross[:3]], pattern),
            'pattern': pattern.value,
            'summary': context.correlated.summary.to_dict(),
            'signals': signals,
        }

    @staticmethod
    def _insight(labels: List[str], pattern: DominantPattern) -> str:
        joined = ', '.join(labels)
        if pattern == DominantPattern.INFRA_FIRST:
            return (f"Infrastructure activity detected across {joined} before corresponding social discussion. "
                    f"This pattern typically indicates active reconnaissance or early exploitation attempts.")
        if pattern == DominantPattern.SOCIAL_FIRST:
            return (f"Security discussions around {joined} appeared in social channels before observable "
                    f"infrastructure activity. This could indicate emerging threats or awareness campaigns.")
        if pattern == DominantPattern.SIMULTANEOUS:
            return (f"Concurrent activity detected across {joined} in both infrastructure and social "
                    f"intelligence. This synchronized pattern may indicate an active campaign.")
        return f"Cross-source correlation detected for {joined}."

    @staticmethod
    def _infrastructure(context: AnalysisContext) -> Optional[Dict[str, Any]]:
        hosts = context.hosts
        if not hosts:
            return None
        total = len(hosts)
        ports: Dict[int, Dict[str, Any]] = {}
        for host in hosts:
            entry = ports.setdefault(host.port, {'service': host.product or port_to_service(host.port), 'count': 0})
            entry['count'] += 1
        exposed = sorted(
            ({'port': port, 'service': e['service'], 'count': e['count'],
              'percentage': round(e['count'] / total * 100)} for port, e in ports.items()),
            key=lambda p: (-p['count'], p['port'])
        )[:MAX_SECTION_ITEMS]
        countries = Counter(h.country for h in hosts if h.country)
        vulnerable = [h for h in hosts if h.vulns]
        return {
            'totalHosts': total,
            'exposedPorts': exposed,
            'topCountries': [{'country': c, 'count': n}
                             for c, n in sorted(countries.items(), key=lambda kv: (-kv[1], kv[0]))[:MAX_SECTION_ITEMS]],
            'vulnerableHosts': len(vulnerable),
            'sampleHosts': [
                {'ip': mask_ip(h.ip), 'port': h.port,
                 'service': h.product or port_to_service(h.port), 'vulns': h.vulns[:3]}
                for h in vulnerable[:MAX_SECTION_ITEMS]
            ],
        }

    @staticmethod
    def _social_intel(context: AnalysisContext) -> Optional[Dict[str, Any]]:
        posts = [p for p in context.posts if not is_spam(p.text)]
        if not posts:
            return None

        topics: Dict[str, Dict[str, int]] = defaultdict(lambda: {'count': 0, 'engagement': 0})
        for post in posts:
            lower = post.text.lower()
            names = [h.lower().lstrip('#') for h in post.hashtags]
            names += [k for k in TOPIC_KEYWORDS if k in lower]
            for name in names:
                topics[name]['count'] += 1
                topics[name]['engagement'] += post.engagement
        top_topics = sorted(
            ({'topic': t, 'count': v['count'], 'engagement': v['engagement']} for t, v in topics.items()),
            key=lambda t: (-t['engagement'], -t['count'], t['topic'])
        )[:MAX_SECTION_ITEMS]

        recent = sorted(posts, key=lambda p: p.timestamp or '', reverse=True)[:MAX_SECTION_ITEMS]
        alarming = sum(1 for p in posts if any(k in p.text.lower() for k in ALARMING_KEYWORDS))
        if alarming > len(posts) * 0.3:
            sentiment = 'alarming'
        elif alarming:
            sentiment = 'neutral'
        else:
            sentiment = 'informational'
        return {
            'totalPosts': len(posts),
            'topTopics': top_topics,
            'recentPosts': [
                {'excerpt': p.text[:120] + ('...' if len(p.text) > 120 else ''),
                 'author': f"@{p.author.username}", 'timestamp': p.timestamp or '',
                 'engagement': p.engagement, 'url': p.url}
                for p in recent
            ],
            'sentiment': sentiment,
        }

    def _cti_analysis(self, context: AnalysisContext,
                      report: Optional[AnalysisReport]) -> Optional[Dict[str, Any]]:
        if report is None:
            return None
        extraction = report.extraction.record
        narrative = report.narrative.record
        assessment = report.assessment.record
        executive = report.executive.record

        by_tactic: Dict[str, List[str]] = defaultdict(list)
        for ttp in extraction.ttps:
            label = f"{ttp.get('techniqueId', '')}: {ttp.get('technique', '')}".strip(': ')
            if label and label not in by_tactic[ttp.get('tactic', 'Unknown')]:
                by_tactic[ttp.get('tactic', 'Unknown')].append(label)

        temporal_patterns = []
        if narrative.narrative:
            temporal_patterns.append({
                'pattern': f"{narrative.pattern.upper()} correlation detected",
                'description': clean_llm_text(narrative.narrative),
                'timeframe': narrative.time_window,
                'confidence': round(max((s.temporal.confidence for s in context.correlated.cross_source_signals
                                         if s.temporal), default=0.0), 2),
            })
        for threat in narrative.emerging_threats:
            temporal_patterns.append({'pattern': 'Emerging Threat', 'description': clean_llm_text(threat),
                                      'timeframe': 'Active', 'confidence': 0.7})

        cross_links = [
            {'infraSignal': clean_llm_text(c.get('infraEvent', '')),
             'socialSignal': clean_llm_text(c.get('socialEvent', '')),
             'relationship': narrative.pattern,
             'timeDelta': clean_llm_text(c.get('timeDelta', '')),
             'significance': clean_llm_text(c.get('significance', ''))}
            for c in narrative.key_correlations
        ]

        observables = []
        cves = [c.get('id') for c in extraction.cves[:4] if c.get('id')]
        if cves:
            observables.append(f"CVEs in current cycle: {', '.join(cves)}")
        infra = [f"{h.product or port_to_service(h.port)} ({h.ip}:{h.port})" for h in context.hosts[:4]]
        if infra:
            observables.append(f"Infrastructure observables: {' | '.join(infra)}")

        top = cross_links[0] if cross_links else None
        relation = (f"Primary correlation: social signal \"{top['socialSignal'][:80]}\" linked to "
                    f"infrastructure \"{top['infraSignal'][:80]}\" ({top['timeDelta']})."
                    if top else 'No strong one-to-one correlation pair was extracted in this run.')
        brief = ' '.join([
            f"Current context shows {narrative.pattern.upper()} behavior across sources within "
            f"{narrative.time_window}.",
            relation,
            f"Observable focus: {observables[0] if observables else 'no high-confidence observables extracted'}.",
        ])

        return {
            'model': ('deterministic-fallback' if report.assessment.used_fallback
                      else report.assessment.model),
            'killChainPhase': assessment.kill_chain_phase,
            'threatLandscape': clean_llm_text(assessment.threat_landscape),
            'riskAssessment': {'level': assessment.risk_level, 'score': assessment.risk_score,
                               'factors': assessment.risk_factors},
            'analystBrief': brief,
            'methodologies': list(METHODOLOGIES),
            'observableSummary': observables,
            'mitreAttack': [
                {'tactic': tactic, 'techniques': techniques,
                 'mitigations': TACTIC_MITIGATIONS.get(tactic, ['Implement network segmentation',
                                                                'Enable logging and monitoring'])}
                for tactic, techniques in sorted(by_tactic.items())
            ],
            'keyFindings': [
                {'finding': clean_llm_text(f.get('finding', '')), 'severity': f.get('severity', 'medium'),
                 'evidence': clean_llm_text(f.get('evidence', '')),
                 'recommendation': clean_llm_text(f.get('recommendation', ''))}
                for f in executive.key_findings
            ],
            'ttps': extraction.ttps,
            'temporalPatterns': temporal_patterns,
            'crossSourceLinks': cross_links,
            'campaign': narrative.campaign,
            'immediateActions': [clean_llm_text(a) for a in executive.immediate_actions],
            'strategicRecommendations': [clean_llm_text(a) for a in executive.strategic_recommendations],
            'sourcesAndReferences': executive.sources_and_references,
            'stageStatus': {s.stage.value: s.status.value for s in report.stages},
        }

    @staticmethod
    def _signal_layer(context: AnalysisContext) -> Optional[Dict[str, Any]]:
        if not context.records:
            return None
        claims = sum(1 for p in context.posts if EXPLOITATION_CLAIM_PATTERN.search(p.text))
        confirmed = any(s.kind == IndicatorKind.CVE for s in context.correlated.cross_source_signals)
        if confirmed:
            tone = 'confirmed'
        elif claims and not any(h.vulns for h in context.hosts):
            tone = 'speculative'
        else:
            tone = 'mixed'
        top_posts = sorted(context.posts, key=lambda p: -p.engagement)[:MAX_SECTION_ITEMS]
        return {
            'raw': {
                'xPosts': len(context.posts),
                'shodanResults': len(context.hosts),
            },
            'structured': {
                'extractedCVEs': context.values(IndicatorKind.CVE),
                'domains': context.values(IndicatorKind.DOMAIN),
                'ips': context.values(IndicatorKind.IP),
                'ports': context.ports(),
                'services': context.top_services(limit=10),
                'keywords': context.values(IndicatorKind.KEYWORD),
                'exploitationClaims': claims,
                'tone': tone,
                'topPosts': [
                    {'author': f"@{p.author.username}", 'excerpt': p.text[:160],
                     'engagement': p.engagement, 'url': p.url, 'timestamp': p.timestamp or ''}
                    for p in top_posts
                ],
            },
        }

    def _model_metadata(self, report: Optional[AnalysisReport]) -> Optional[Dict[str, Any]]:
        if report is None:
            return None
        metadata = report.model_metadata()
        strategic = report.assessment.model or self.models.get('strategic')
        technical = report.extraction.model or self.models.get('technical')
        metadata.update({'strategic': strategic or 'deterministic-fallback',
                         'technical': technical or 'deterministic-fallback'})
        quantization = quantization_of(strategic)
        if quantization:
            metadata['quantization'] = quantization
        return metadata
