"""Compliance classifier collaborators.

The analyze stage depends only on ``ComplianceClassifier``: given revision
text, return the model's raw answer. Parsing happens in the stage so that a
malformed answer is recorded rather than raised.

The OpenAI implementation is built once at process start and closed at
shutdown by whoever built it:

    classifier = OpenAIComplianceClassifier.from_config(AnalysisConfig())
    try:
        ...
    finally:
        await classifier.close()
"""

import logging
from abc import ABC, abstractmethod

import openai

from guardian.analysis.circuit_breaker import CircuitBreaker
from guardian.analysis.config import AnalysisConfig
from guardian.analysis.prompts import build_messages

logger = logging.getLogger(__name__)

# Errors that mean the API is unreachable or overloaded, not that the request was bad
OUTAGE_ERRORS = (
    openai.APIConnectionError,
    openai.APITimeoutError,
    openai.RateLimitError,
    openai.InternalServerError,
    OSError,
)


class ComplianceClassifier(ABC):
    """Turns content text into a raw compliance verdict."""

    @property
    @abstractmethod
    def model(self) -> str:
        """Identifier stored with every analysis result."""
        ...

    @abstractmethod
    async def classify(self, text: str) -> str:
        """Return the model's raw response for ``text``."""
        ...

    async def close(self) -> None:
        """Release network resources."""


class OpenAIComplianceClassifier(ComplianceClassifier):
    """Classifier backed by the OpenAI chat completions API.

    API errors propagate (after tripping the circuit breaker), which fails
    the run so the job is retried as a whole.
    """

    def __init__(
        self,
        client: openai.AsyncOpenAI,
        config: AnalysisConfig,
        breaker: CircuitBreaker | None = None,
    ) -> None:
        self._client = client
        self._config = config
        self._breaker = breaker or CircuitBreaker(
            failure_threshold=config.circuit_failure_threshold,
            recovery_timeout=config.circuit_recovery_timeout,
            name="openai",
            trip_on=OUTAGE_ERRORS,
        )

    @classmethod
    def from_config(cls, config: AnalysisConfig) -> "OpenAIComplianceClassifier":
        if config.openai_api_key is None:
            raise ValueError("ANALYSIS_OPENAI_API_KEY is not set")
        client = openai.AsyncOpenAI(
            api_key=config.openai_api_key.get_secret_value(),
            base_url=config.openai_base_url,
            timeout=config.request_timeout,
        )
        return cls(client, config)

    @property
    def model(self) -> str:
        return self._config.model

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    async def classify(self, text: str) -> str:
        messages = build_messages(
            text,
            guidelines=self._config.guidelines,
            redact=self._config.pii_redaction_enabled,
            max_chars=self._config.max_text_chars,
        )
        response = await self._breaker.call(
            self._client.chat.completions.create,
            model=self._config.model,
            messages=messages,
            max_tokens=self._config.max_tokens,
            temperature=self._config.temperature,
            response_format={"type": "json_object"},
        )
        if not response.choices:
            logger.warning("Classifier returned no choices")
            return ""
        return response.choices[0].message.content or ""

    async def close(self) -> None:
        await self._client.close()
        logger.info("OpenAI classifier closed")


def build_classifier(config: AnalysisConfig | None = None) -> ComplianceClassifier | None:
    """Classifier for this process, or None when analysis is not configured."""
    config = config or AnalysisConfig()
    if not config.is_configured:
        logger.warning("No classifier API key configured, analysis results will be UNCERTAIN")
        return None
    return OpenAIComplianceClassifier.from_config(config)
