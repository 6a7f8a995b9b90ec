"""
Parsing of raw classifier output into AnalysisOutput.

Models tend to wrap JSON in a markdown fence and to invent statuses; both
are tolerated. Output that is not a JSON object at all raises
``AnalysisParseError`` and the caller records the revision as UNCERTAIN.
"""

import json
import logging
import re

from pydantic import ValidationError

from guardian.analysis.schemas import AnalysisOutput, ComplianceStatus, Violation

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```")


class AnalysisParseError(ValueError):
    """Classifier output could not be turned into an AnalysisOutput."""


def _field(data: dict, snake: str, camel: str):
    return data[snake] if snake in data else data.get(camel)


def parse_analysis_response(raw: str) -> AnalysisOutput:
    """
    Parse raw model output.

    - JSON inside a ```json fence is extracted first.
    - An unknown or missing status becomes UNCERTAIN.
    - A missing or non-list ``violations`` becomes an empty list.

    Raises:
        AnalysisParseError: Not JSON, not an object, or malformed violations
    """
    text = raw.strip()
    match = _FENCE_RE.search(text)
    if match:
        text = match.group(1).strip()

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise AnalysisParseError(f"Response is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise AnalysisParseError(
            f"Expected a JSON object, got {type(data).__name__}"
        )

    raw_status = _field(data, "compliance_status", "complianceStatus")
    try:
        status = ComplianceStatus(raw_status)
        uncertain_reason = None
    except ValueError:
        logger.warning(f"Unknown compliance status {raw_status!r}, using UNCERTAIN")
        status = ComplianceStatus.UNCERTAIN
        uncertain_reason = f"Unrecognised compliance status: {raw_status!r}"

    raw_violations = data.get("violations")
    if not isinstance(raw_violations, list):
        raw_violations = []

    try:
        violations = [Violation.model_validate(v) for v in raw_violations]
        return AnalysisOutput(
            compliance_status=status,
            violations=violations,
            language_detected=_field(data, "language_detected", "languageDetected"),
            language_confidence=_field(
                data, "language_confidence", "languageConfidence"
            ),
            uncertain_reason=uncertain_reason,
        )
    except ValidationError as e:
        raise AnalysisParseError(
            f"Malformed analysis response: {e.error_count()} validation errors"
        ) from e
