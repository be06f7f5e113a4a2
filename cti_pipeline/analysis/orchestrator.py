"""
Multi-stage analysis orchestrator.

Runs Extraction -> Correlation-Narrative -> Strategic-Assessment ->
Executive-Report strictly in sequence. Every stage receives the records of
the stages before it and always returns a populated record, so a reasoning
service outage degrades the report instead of aborting the run.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from .context import AnalysisContext
from .reasoning import ReasoningClient
from .records import (
    CorrelationNarrative, ExecutiveReport, ExtractionResult, StageResult, StageStatus,
    StrategicAssessment
)
from .stages import (
    CorrelationNarrativeStage, ExecutiveReportStage, ExtractionStage, StrategicAssessmentStage
)

logger = logging.getLogger(__name__)


@dataclass
class AnalysisReport:
    """Results of all four stages."""
    extraction: StageResult[ExtractionResult]
    narrative: StageResult[CorrelationNarrative]
    assessment: StageResult[StrategicAssessment]
    executive: StageResult[ExecutiveReport]

    @property
    def stages(self) -> List[StageResult]:
        return [self.extraction, self.narrative, self.assessment, self.executive]

    @property
    def used_reasoning_service(self) -> bool:
        return any(s.status == StageStatus.COMPLETED for s in self.stages)

    @property
    def fallback_stages(self) -> List[str]:
        return [s.stage.value for s in self.stages if s.used_fallback]

    def model_metadata(self) -> Dict[str, Any]:
        return {
            'stages': {s.stage.value: {'model': s.model, 'status': s.status.value,
                                       'attempts': s.attempts,
                                       'durationSeconds': round(s.duration_seconds, 3)}
                       for s in self.stages},
            'fallbackStages': self.fallback_stages,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {s.stage.value: s.to_dict() for s in self.stages}


class MultiStageAnalyzer:
    """
    Sequential four-stage analyzer.

    Example:
        analyzer = MultiStageAnalyzer(ReasoningClient.from_settings(config.reasoning),
                                      models={'technical': 'qwen2:3b', 'strategic': 'mistral'})
        report = analyzer.run(context)
    """

    def __init__(self, client: Optional[ReasoningClient] = None,
                 models: Optional[Dict[str, str]] = None,
                 config: Optional[Dict[str, Any]] = None,
                 clock: Callable[[], datetime] = None):
        self.client = client
        self.models = models or {}
        self.config = config or {}
        self.clock = clock or (lambda: datetime.now(timezone.utc))

        stage_config = self.config.get('stages', {})
        self.extraction = ExtractionStage(stage_config.get('extraction'), clock=self.clock)
        self.narrative = CorrelationNarrativeStage(stage_config.get('correlation_narrative'), clock=self.clock)
        self.assessment = StrategicAssessmentStage(stage_config.get('strategic_assessment'), clock=self.clock)
        self.executive = ExecutiveReportStage(stage_config.get('executive_report'), clock=self.clock)

    def _model(self, runner) -> Optional[str]:
        return self.models.get(runner.model_role)

    def run(self, context: AnalysisContext) -> AnalysisReport:
        """
        Execute all stages in order.

        Args:
            context: Correlated and assessed collection data

        Returns:
            AnalysisReport with a populated record for every stage
        """
        logger.info(f"Starting multi-stage analysis over {len(context.records)} records")

        extraction = self.extraction.execute(self.client, self._model(self.extraction), context)
        narrative = self.narrative.execute(self.client, self._model(self.narrative), context,
                                           extraction.record)
        assessment = self.assessment.execute(self.client, self._model(self.assessment), context,
                                             extraction.record, narrative.record)
        executive = self.executive.execute(self.client, self._model(self.executive), context,
                                           extraction.record, narrative.record, assessment.record)

        report = AnalysisReport(extraction, narrative, assessment, executive)
        if report.fallback_stages:
            logger.warning(f"Analysis used fallback for: {', '.join(report.fallback_stages)}")
        logger.info(f"Analysis complete: risk {assessment.record.risk_level} ({assessment.record.risk_score})")
        return report
