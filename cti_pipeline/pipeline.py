"""
End-to-end pipeline: collect, extract, correlate, analyze, publish, translate.

Each run is independent; the only state carried between runs is the
historical score cache, the daily query cache and the translation cache.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import requests

from .analysis import AnalysisContext, AnalysisReport, MultiStageAnalyzer, ReasoningClient
from .collectors import (
    CollectionResult, CollectionRunner, FileRecordSource, RawObservationSource,
    ShodanCollector, SocialPostCollector
)
from .correlation import CorrelationEngine, build_cooccurrence_graph, campaign_clusters
from .errors import TranslationError
from .normalizers import IndicatorExtractor, IndicatorKind, QuerySuggestion, RawRecord, ThreatAssessor
from .normalizers.extractor import merge_indicators
from .queries import DailyQueryCache, QueryGenerator
from .reporting import DEFAULT_FILENAME, ArtifactBuilder, ArtifactPublisher
from .scoring import HistoricalCache
from .translation import HttpTranslationProvider, JsonTranslator, TranslationCache
from .utils.env import PipelineConfig
from .utils.io import read_json

logger = logging.getLogger(__name__)


@dataclass
class PipelineRunResult:
    """What one run produced."""
    artifact: Dict[str, Any]
    paths: List[Path] = field(default_factory=list)
    translated_paths: List[Path] = field(default_factory=list)
    counts: Dict[str, int] = field(default_factory=dict)
    errors: Dict[str, str] = field(default_factory=dict)
    suggestions: List[QuerySuggestion] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'paths': [str(p) for p in self.paths],
            'translatedPaths': [str(p) for p in self.translated_paths],
            'counts': dict(self.counts),
            'errors': dict(self.errors),
            'suggestions': [s.to_dict() for s in self.suggestions],
            'riskLevel': self.artifact['status']['riskLevel'],
            'riskScore': self.artifact['status']['riskScore'],
        }


class CTIPipeline:
    """
    Orchestrates one collection and analysis cycle.

    Example:
        config = load_config()
        config.validate_sources()
        result = CTIPipeline(config).run()
    """

    def __init__(self, config: PipelineConfig,
                 clock: Callable[[], datetime] = None,
                 sources: Optional[List[RawObservationSource]] = None,
                 client: Optional[ReasoningClient] = None,
                 session: Optional[requests.Session] = None):
        """
        Initialize the pipeline.

        Args:
            config: Validated pipeline configuration
            clock: Time source shared by every stage
            sources: Collectors to use instead of the configured ones
            client: Reasoning client to use instead of one built from config
            session: HTTP session shared by collectors and clients
        """
        self.config = config
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.session = session
        self.client = client or ReasoningClient.from_settings(config.reasoning, session=session)
        self._sources = sources

        self.extractor = IndicatorExtractor()
        self.assessor = ThreatAssessor()
        self.engine = CorrelationEngine()
        self.history = HistoricalCache(config.cache_dir, clock=self.clock)
        self.publisher = ArtifactPublisher(config.output_dir, config.public_dir)

    # ------------------------------------------------------------------
    # Collection
    # ------------------------------------------------------------------

    def build_sources(self) -> List[RawObservationSource]:
        """
        Live collectors where configured, saved raw records otherwise.
        """
        if self._sources is not None:
            return list(self._sources)

        sources: List[RawObservationSource] = []
        shodan = ShodanCollector(self.config.shodan_api_key(), self.config.source_config('shodan'),
                                 session=self.session)
        social_config = self.config.source_config('x.com')
        social = SocialPostCollector(social_config.get('posts_file'), social_config)

        for live in (shodan, social):
            if live.is_available():
                sources.append(live)
                continue
            replay = FileRecordSource(live.source, self.config.raw_dir)
            if replay.is_available():
                logger.info(f"No live {live.name} source, replaying saved records")
                sources.append(replay)
        return sources

    def previous_queries(self) -> List[str]:
        """
        Query strings suggested by the last cycle.

        Today's query cache wins; otherwise the published artifact's
        nextQueries section is used.
        """
        cached = DailyQueryCache(self.config.cache_dir, clock=self.clock).get()
        if cached:
            return [s.query_string for s in cached]
        previous = read_json(self.config.output_dir / DEFAULT_FILENAME)
        if not isinstance(previous, dict):
            return []
        return [item['query'] for item in previous.get('nextQueries') or []
                if isinstance(item, dict) and item.get('query')]

    def collect(self, queries: Optional[List[str]] = None, save: bool = True) -> CollectionResult:
        raw_dir = self.config.raw_dir if save else None
        runner = CollectionRunner(self.build_sources(), raw_dir=raw_dir, clock=self.clock)
        return runner.run(queries)

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    def build_context(self, records: List[RawRecord]) -> AnalysisContext:
        """Extract, assess and correlate a batch of records."""
        now = self.clock()
        indicators = self.extractor.extract(records)
        threats = self.assessor.assess(records, reference_time=now)
        correlated = self.engine.correlate(indicators)
        clusters = campaign_clusters(build_cooccurrence_graph(indicators))
        logger.info(f"Context: {len(records)} records, {len(indicators)} indicators, "
                    f"{correlated.summary.correlated} correlated signals, "
                    f"{len(clusters)} clusters")
        return AnalysisContext(records=records, indicators=indicators, correlated=correlated,
                               threats=threats, clusters=clusters, reference_time=now)

    def suggest_queries(self, context: AnalysisContext) -> List[QuerySuggestion]:
        generator = QueryGenerator(
            client=self.client,
            model=self.config.reasoning.strategic_model,
            cache=DailyQueryCache(self.config.cache_dir, clock=self.clock),
            config=self.config.queries,
        )
        return generator.generate(context.indicators)

    def analyze(self, context: AnalysisContext) -> AnalysisReport:
        settings = self.config.reasoning
        analyzer = MultiStageAnalyzer(
            client=self.client,
            models={'technical': settings.technical_model, 'strategic': settings.strategic_model},
            clock=self.clock,
        )
        return analyzer.run(context)

    def build_artifact(self, context: AnalysisContext, report: Optional[AnalysisReport],
                       suggestions: List[QuerySuggestion]) -> Dict[str, Any]:
        builder = ArtifactBuilder(
            config={'models': {'technical': self.config.reasoning.technical_model,
                               'strategic': self.config.reasoning.strategic_model}},
            clock=self.clock,
        )
        return builder.build(context, report=report, history=self.history, suggestions=suggestions)

    def record_history(self, context: AnalysisContext, artifact: Dict[str, Any]):
        layer = artifact.get('assessmentLayer', {})
        self.history.record(
            risk_score=artifact['status']['riskScore'],
            risk_level=artifact['status']['riskLevel'],
            cves=[i.normalized_value for i in context.indicators if i.kind == IndicatorKind.CVE],
            correlation_score=layer.get('correlation', {}).get('score', 0.0),
            threat_type=layer.get('classification', {}).get('type', 'opportunistic'),
            total_indicators=len(context.indicators),
        )

    # ------------------------------------------------------------------
    # Translation
    # ------------------------------------------------------------------

    def translated_filename(self, filename: str = DEFAULT_FILENAME) -> str:
        target = self.config.translation.get('target_language', 'es')
        stem, _, suffix = filename.rpartition('.')
        return f"{stem}-{target}.{suffix}"

    def build_translator(self) -> JsonTranslator:
        settings = self.config.reasoning
        tconfig = self.config.translation
        client = ReasoningClient(
            host=settings.host,
            timeout_seconds=float(tconfig.get('long_timeout_seconds', 60)),
            max_retries=int(tconfig.get('max_retries', settings.max_retries)),
            retry_backoff_seconds=settings.retry_backoff_seconds,
            enabled=self.client.enabled,
            session=self.session,
        )
        cache = TranslationCache(self.config.cache_dir,
                                 ttl_seconds=float(tconfig.get('cache_ttl_seconds', 7 * 24 * 3600)),
                                 model=settings.translator_model, clock=self.clock)
        cache.load()
        fallback = HttpTranslationProvider(
            tconfig.get('fallback_urls') or [],
            source=tconfig.get('source_language', 'en'),
            target=tconfig.get('target_language', 'es'),
            timeout_seconds=float(tconfig.get('fallback_timeout_seconds', 12)),
            session=self.session,
        )
        return JsonTranslator(client=client, model=settings.translator_model, cache=cache,
                              fallback=fallback, config=tconfig)

    def translate(self, artifact: Dict[str, Any], filename: str = DEFAULT_FILENAME) -> List[Path]:
        """Translate an artifact and publish it beside the original."""
        translated = self.build_translator().translate(artifact)
        return self.publisher.publish(translated, self.translated_filename(filename))

    def translate_file(self, path: Path) -> List[Path]:
        artifact = read_json(Path(path))
        if not isinstance(artifact, dict):
            raise TranslationError(f"Not a dashboard artifact: {path}")
        return self.translate(artifact, Path(path).name)

    # ------------------------------------------------------------------
    # Full run
    # ------------------------------------------------------------------

    def process(self, records: List[RawRecord], analyze: bool = True) -> PipelineRunResult:
        """Everything after collection, for records already in hand."""
        context = self.build_context(records)
        suggestions = self.suggest_queries(context)
        report = self.analyze(context) if analyze and records else None

        artifact = self.build_artifact(context, report, suggestions)
        paths = self.publisher.publish(artifact)
        self.publisher.save_intermediate('processed-indicators.json', {
            'generatedAt': artifact['meta']['generatedAt'],
            'indicators': merge_indicators(context.indicators),
            'correlation': context.correlated.to_dict(),
        })
        if report is not None:
            self.publisher.save_intermediate('analysis-stages.json', report.to_dict())
        self.record_history(context, artifact)

        result = PipelineRunResult(artifact=artifact, paths=paths, suggestions=suggestions)
        if self.config.translation.get('enabled', True):
            result.translated_paths = self.translate(artifact)
        else:
            logger.info("Translation disabled, skipping")
        return result

    def run(self, queries: Optional[List[str]] = None) -> PipelineRunResult:
        """
        Run one full cycle.

        Args:
            queries: Extra search queries for collectors that accept them;
                defaults to the previous cycle's suggestions

        Returns:
            PipelineRunResult with published paths and per-source counts
        """
        started = self.clock()
        if queries is None:
            queries = self.previous_queries()
            if queries:
                logger.info(f"Feeding {len(queries)} suggested queries back into collection")
        collection = self.collect(queries)
        result = self.process(collection.all_records())
        result.counts = collection.counts()
        result.errors = dict(collection.errors)
        elapsed = (self.clock() - started).total_seconds()
        logger.info(f"Pipeline run complete in {elapsed:.1f}s: risk "
                    f"{result.artifact['status']['riskLevel']} ({result.artifact['status']['riskScore']})")
        return result
