"""Prompt construction for compliance analysis."""

import re

# Order matters: names before the numeric patterns, phone before id numbers
PII_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"\b[A-Z][a-z]+ [A-Z][a-z]+\b"), "[PERSON_NAME]"),
    (re.compile(r"\b[\w.+-]+@[\w-]+\.[\w.]+\b"), "[EMAIL]"),
    (re.compile(r"\b\d{3}[-.]?\d{3}[-.]?\d{4}\b"), "[PHONE]"),
    (re.compile(r"\b\d{2,3}[-.]?\d{6,8}[-.]?\d{0,4}\b"), "[ID_NUMBER]"),
]

SYSTEM_PROMPT = """You are a compliance analysis engine for published marketing content.
Analyze the provided content for regulatory and brand compliance problems.

Respond ONLY with a JSON object in this exact format:
{
  "complianceStatus": "COMPLIANT" | "NON_COMPLIANT" | "UNCERTAIN",
  "languageDetected": "en" | "it" | "es" | etc,
  "languageConfidence": 0.0 to 1.0,
  "violations": [
    {
      "ruleVersionId": "<id or null>",
      "ruleId": "<id or null>",
      "severity": "LOW" | "MEDIUM" | "HIGH",
      "evidence": [
        {
          "field": "<field label>",
          "snippet": "<exact text that violates>",
          "startOffset": <number or null>,
          "endOffset": <number or null>
        }
      ],
      "explanation": "<why this is a violation>",
      "fixSuggestion": "<suggested fix>"
    }
  ]
}

- If NO violations are found, return "COMPLIANT" with an empty violations array.
- If the content cannot be evaluated with confidence, return "UNCERTAIN".
- Every violation must quote the exact offending text as evidence."""

USER_PROMPT = """Analyze this content for compliance:

{content}"""


def redact_pii(text: str) -> str:
    """Mask personal data before text leaves the process."""
    for pattern, replacement in PII_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


def build_messages(
    text: str,
    guidelines: str = "",
    redact: bool = True,
    max_chars: int | None = None,
) -> list[dict[str, str]]:
    """Chat messages for one classification request."""
    if max_chars is not None and len(text) > max_chars:
        text = text[:max_chars]
    if redact:
        text = redact_pii(text)

    system = SYSTEM_PROMPT
    if guidelines.strip():
        system = f"{system}\n\nAdditional guidelines:\n{guidelines.strip()}"

    return [
        {"role": "system", "content": system},
        {"role": "user", "content": USER_PROMPT.format(content=text)},
    ]
