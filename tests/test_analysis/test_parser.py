"""Tests for classifier response parsing."""

import pytest

from guardian.analysis.parser import AnalysisParseError, parse_analysis_response
from guardian.analysis.schemas import ComplianceStatus, Severity


class TestParseAnalysisResponse:
    def test_plain_json(self):
        output = parse_analysis_response(
            '{"complianceStatus": "COMPLIANT", "violations": [], "languageDetected": "it",'
            ' "languageConfidence": 0.93}'
        )

        assert output.compliance_status == ComplianceStatus.COMPLIANT
        assert output.violations == []
        assert output.language_detected == "it"
        assert output.language_confidence == 0.93
        assert output.uncertain_reason is None

    def test_fenced_json(self):
        raw = 'Here you go:\n```json\n{"complianceStatus": "NON_COMPLIANT"}\n```\n'

        assert parse_analysis_response(raw).compliance_status == ComplianceStatus.NON_COMPLIANT

    def test_snake_case_keys(self):
        output = parse_analysis_response(
            '{"compliance_status": "NON_COMPLIANT", "language_detected": "es",'
            ' "violations": [{"rule_id": "r9", "severity": "LOW", "fix_suggestion": "Remove"}]}'
        )

        assert output.language_detected == "es"
        assert output.violations[0].rule_id == "r9"
        assert output.violations[0].fix_suggestion == "Remove"

    def test_camel_case_violation(self):
        output = parse_analysis_response(
            '{"complianceStatus": "NON_COMPLIANT", "violations": [{'
            '"ruleVersionId": "rv1", "ruleId": "r1", "severity": "HIGH",'
            ' "evidence": [{"field": "Title", "snippet": "Free money", "startOffset": 0,'
            ' "endOffset": 10}], "explanation": "Misleading", "fixSuggestion": "Rephrase"}]}'
        )

        violation = output.violations[0]
        assert violation.rule_version_id == "rv1"
        assert violation.severity == Severity.HIGH
        assert violation.evidence[0].snippet == "Free money"
        assert violation.evidence[0].end == 10
        assert violation.fix_suggestion == "Rephrase"

    @pytest.mark.parametrize("status", ['"MAYBE"', "null"])
    def test_unknown_status_is_uncertain(self, status):
        output = parse_analysis_response(f'{{"complianceStatus": {status}}}')

        assert output.compliance_status == ComplianceStatus.UNCERTAIN
        assert output.uncertain_reason.startswith("Unrecognised compliance status")

    def test_missing_status_is_uncertain(self):
        assert parse_analysis_response("{}").compliance_status == ComplianceStatus.UNCERTAIN

    def test_non_list_violations_are_dropped(self):
        output = parse_analysis_response(
            '{"complianceStatus": "NON_COMPLIANT", "violations": "several"}'
        )

        assert output.violations == []

    @pytest.mark.parametrize("raw", ["not json at all", "", '["COMPLIANT"]', '"COMPLIANT"'])
    def test_unusable_output_raises(self, raw):
        with pytest.raises(AnalysisParseError):
            parse_analysis_response(raw)

    def test_malformed_violation_raises(self):
        with pytest.raises(AnalysisParseError):
            parse_analysis_response(
                '{"complianceStatus": "NON_COMPLIANT", "violations": [{"severity": "EXTREME"}]}'
            )

    def test_parse_error_is_value_error(self):
        assert issubclass(AnalysisParseError, ValueError)
