"""
Compliance analysis output schema.

The classifier is asked to answer with JSON of this shape. Parsing is
lenient (see ``guardian.analysis.parser``): anything unusable becomes an
UNCERTAIN output rather than an exception.
"""

from enum import Enum

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class ComplianceStatus(str, Enum):
    COMPLIANT = "COMPLIANT"
    NON_COMPLIANT = "NON_COMPLIANT"
    UNCERTAIN = "UNCERTAIN"

    @property
    def needs_review(self) -> bool:
        return self is not ComplianceStatus.COMPLIANT


class Severity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class Evidence(BaseModel):
    """Where in the content a violation was found."""

    model_config = ConfigDict(populate_by_name=True)

    field: str
    snippet: str
    start: int | None = Field(
        default=None, ge=0, validation_alias=AliasChoices("start", "startOffset")
    )
    end: int | None = Field(
        default=None, ge=0, validation_alias=AliasChoices("end", "endOffset")
    )


class Violation(BaseModel):
    # Model output uses camelCase keys; both spellings are accepted
    model_config = ConfigDict(populate_by_name=True)

    rule_version_id: str | None = Field(
        default=None, validation_alias=AliasChoices("rule_version_id", "ruleVersionId")
    )
    rule_id: str | None = Field(
        default=None, validation_alias=AliasChoices("rule_id", "ruleId")
    )
    severity: Severity = Field(
        default=Severity.MEDIUM,
        validation_alias=AliasChoices("severity", "severitySnapshot"),
    )
    evidence: list[Evidence] = Field(default_factory=list)
    explanation: str = ""
    fix_suggestion: str | None = Field(
        default=None, validation_alias=AliasChoices("fix_suggestion", "fixSuggestion")
    )


class AnalysisOutput(BaseModel):
    """Classifier verdict for one content revision."""

    compliance_status: ComplianceStatus
    violations: list[Violation] = Field(default_factory=list)
    language_detected: str | None = None
    language_confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    uncertain_reason: str | None = None

    @classmethod
    def uncertain(cls, reason: str) -> "AnalysisOutput":
        return cls(compliance_status=ComplianceStatus.UNCERTAIN, uncertain_reason=reason)
