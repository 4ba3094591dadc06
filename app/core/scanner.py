"""Guardrail-Scanner des Moderated Chat Gateways: prüft Nutzereingaben und
Modellantworten über Amazon Bedrock Guardrails und normalisiert das Ergebnis
auf die vier kanonischen Kategorien (harmful, hateful, sexual, toxic).

Fällt der Classifier aus, arbeitet der Scanner fail-open: der Inhalt gilt
als ungefiltert, der Fehler wird nur geloggt und im Ergebnis vermerkt.
"""
import asyncio
import logging
import math
from typing import Any, Dict

from botocore.exceptions import ClientError

from app.core.models import ContentFilterResult, ContentFilterResults, GuardrailsOutcome, GuardrailSource
from app.core.telemetry import TelemetryContext

logger = logging.getLogger(__name__)

# Classifier-Kategorie -> kanonische Kategorie
CATEGORY_MAP = {
    "HATE": "hateful",
    "SEXUAL": "sexual",
    "VIOLENCE": "harmful",
    "INSULTS": "toxic",
}

# Bewusst verlustbehaftete Quantisierung der qualitativen Confidence.
CONFIDENCE_SCORES = {
    "HIGH": 1.0,
    "MEDIUM": 0.7,
    "LOW": 0.3,
    "NONE": 0.0,
}

BLOCKED_ACTION = "BLOCKED"

DEFAULT_ERROR_MESSAGE = "An error occurred while applying guardrails"
NOT_CONFIGURED_MESSAGE = "Guardrail not configured"

ERROR_MESSAGES = {
    "AccessDeniedException": "Access denied: Insufficient permissions to apply guardrails",
    "ResourceNotFoundException": "Guardrail not found: The specified guardrail ID or version does not exist",
    "ServiceQuotaExceededException": "Service quota exceeded: Request exceeds the service quota for your account",
    "ThrottlingException": "Request throttled: Too many requests in a short period",
    "InternalServerException": "Internal server error: An issue occurred on the AWS side",
}


def confidence_to_score(confidence: Any) -> float:
    """HIGH->1.0, MEDIUM->0.7, LOW->0.3, alles andere -> 0.0."""
    if not isinstance(confidence, str):
        return 0.0
    return CONFIDENCE_SCORES.get(confidence.upper(), 0.0)


def _filter_score(entry: Dict[str, Any]) -> float:
    score = entry.get("score")
    if isinstance(score, (int, float)) and not isinstance(score, bool) and not math.isnan(score):
        return float(min(max(score, 0.0), 1.0))
    return confidence_to_score(entry.get("confidence"))


def normalize_assessments(raw: Any) -> ContentFilterResults:
    """Bildet eine beliebige ApplyGuardrail-Antwort auf die vier kanonischen
    Kategorien ab. Unbekannte Strukturen ergeben Null-Werte, nie einen Fehler.

    Taucht eine Kategorie mehrfach auf (mehrere Assessments), gilt
    filtered = ODER und score = Maximum.
    """
    merged: Dict[str, ContentFilterResult] = {}

    assessments = raw.get("assessments") if isinstance(raw, dict) else None
    if not isinstance(assessments, list):
        assessments = []

    for assessment in assessments:
        if not isinstance(assessment, dict):
            continue
        policy = assessment.get("contentPolicy")
        filters = policy.get("filters") if isinstance(policy, dict) else None
        if not isinstance(filters, list):
            continue

        for entry in filters:
            if not isinstance(entry, dict):
                continue
            kind = entry.get("type")
            category = CATEGORY_MAP.get(kind) if isinstance(kind, str) else None
            if category is None:
                continue

            result = ContentFilterResult(
                filtered=entry.get("action") == BLOCKED_ACTION,
                score=_filter_score(entry),
            )
            previous = merged.get(category)
            if previous is not None:
                result = ContentFilterResult(
                    filtered=previous.filtered or result.filtered,
                    score=max(previous.score, result.score),
                )
            merged[category] = result

    return ContentFilterResults(**merged)


def error_message_for(exc: Exception) -> str:
    if isinstance(exc, ClientError):
        code = exc.response.get("Error", {}).get("Code", "")
        return ERROR_MESSAGES.get(code, DEFAULT_ERROR_MESSAGE)
    return DEFAULT_ERROR_MESSAGE


class BedrockGuardrailClassifier:
    """Dünner Wrapper um bedrock-runtime ApplyGuardrail (blockierender boto3-Call)."""

    def __init__(self, runtime_client, guardrail_id: str, guardrail_version: str):
        self.client = runtime_client
        self.guardrail_id = guardrail_id
        self.guardrail_version = guardrail_version

    def apply(self, content: str, source: GuardrailSource) -> Dict[str, Any]:
        return self.client.apply_guardrail(
            guardrailIdentifier=self.guardrail_id,
            guardrailVersion=self.guardrail_version,
            source=source.value,
            content=[{"text": {"text": content}}],
            outputScope="FULL",
        )


class GuardrailScanner:
    """Safety Gate: wendet den Classifier an und liefert immer ein
    vollständig befülltes GuardrailsOutcome."""

    def __init__(self, classifier: BedrockGuardrailClassifier):
        self.classifier = classifier

    @property
    def guardrail_id(self) -> str:
        return self.classifier.guardrail_id

    @property
    def guardrail_version(self) -> str:
        return self.classifier.guardrail_version

    async def classify(
        self,
        content: str,
        source: GuardrailSource,
        telemetry: TelemetryContext,
    ) -> GuardrailsOutcome:
        """Prüft `content` in Richtung `source` innerhalb eines eigenen Spans
        (`Guardrails-INPUT` bzw. `Guardrails-OUTPUT`)."""
        attributes = {
            "guardrails.id": self.guardrail_id,
            "guardrails.version": self.guardrail_version,
        }
        with telemetry.stage(f"Guardrails-{source.value}", attributes) as span:
            outcome = await self._classify(content, source)

            if outcome.error:
                span.set_attribute("guardrails.error", outcome.error)
            elif outcome.content_filter_results.total_score() > 0:
                span.mark_error("User message filtered" if source is GuardrailSource.INPUT else "Model response filtered")
                span.set_attribute(f"guardrails.{source.value.lower()}", content)

            for name, result in outcome.content_filter_results.categories().items():
                span.set_attribute(f"guardrails.{name}.score", result.score)
                span.set_attribute(f"guardrails.{name}.filtered", result.filtered)
            return outcome

    async def _classify(self, content: str, source: GuardrailSource) -> GuardrailsOutcome:
        if not self.guardrail_id:
            logger.warning(f"No guardrail configured, {source.value} screening skipped")
            return GuardrailsOutcome(error=NOT_CONFIGURED_MESSAGE)

        try:
            loop = asyncio.get_running_loop()
            raw = await loop.run_in_executor(None, self.classifier.apply, content, source)
        except Exception as exc:
            # Fail-open: Ausfall des Classifiers blockiert den Nutzer nicht.
            message = error_message_for(exc)
            logger.error(f"Error applying guardrails ({source.value}): {message}: {exc}")
            return GuardrailsOutcome(error=message)

        return GuardrailsOutcome(content_filter_results=normalize_assessments(raw))
