"""Compliance analysis: classifier collaborator, prompts and response parsing."""

from guardian.analysis.classifier import (
    ComplianceClassifier,
    OpenAIComplianceClassifier,
    build_classifier,
)
from guardian.analysis.config import AnalysisConfig
from guardian.analysis.parser import AnalysisParseError, parse_analysis_response
from guardian.analysis.schemas import AnalysisOutput, ComplianceStatus, Violation

__all__ = [
    "AnalysisConfig",
    "AnalysisOutput",
    "AnalysisParseError",
    "ComplianceClassifier",
    "ComplianceStatus",
    "OpenAIComplianceClassifier",
    "Violation",
    "build_classifier",
    "parse_analysis_response",
]
