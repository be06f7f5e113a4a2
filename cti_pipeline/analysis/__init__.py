"""
Multi-stage analysis for the CTI pipeline.

Four sequential stages backed by a local reasoning service, each with a
deterministic fallback derived from the structured data.
"""

from .context import AnalysisContext
from .orchestrator import AnalysisReport, MultiStageAnalyzer
from .reasoning import ReasoningClient
from .records import (
    AnalysisStage, CorrelationNarrative, ExecutiveReport, ExtractionResult, StageResult,
    StageStatus, StrategicAssessment
)
from .stages import (
    CorrelationNarrativeStage, ExecutiveReportStage, ExtractionStage, StrategicAssessmentStage
)

__all__ = [
    'AnalysisContext',
    'AnalysisReport',
    'MultiStageAnalyzer',
    'ReasoningClient',
    'AnalysisStage',
    'StageStatus',
    'StageResult',
    'ExtractionResult',
    'CorrelationNarrative',
    'StrategicAssessment',
    'ExecutiveReport',
    'ExtractionStage',
    'CorrelationNarrativeStage',
    'StrategicAssessmentStage',
    'ExecutiveReportStage',
]
