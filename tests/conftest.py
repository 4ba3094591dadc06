import pytest
from unittest.mock import MagicMock

from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from app.core.scanner import BedrockGuardrailClassifier, GuardrailScanner
from app.core.telemetry import TelemetryContext


def guardrail_response(*filters):
    """Baut eine ApplyGuardrail-Antwort aus (type, action, confidence)-Tupeln."""
    return {
        "action": "GUARDRAIL_INTERVENED" if any(a == "BLOCKED" for _, a, _ in filters) else "NONE",
        "assessments": [
            {
                "contentPolicy": {
                    "filters": [
                        {"type": kind, "action": action, "confidence": confidence}
                        for kind, action, confidence in filters
                    ]
                }
            }
        ],
    }


@pytest.fixture
def make_guardrail_response():
    return guardrail_response


@pytest.fixture
def span_exporter():
    return InMemorySpanExporter()


@pytest.fixture
def telemetry(span_exporter):
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(span_exporter))
    return TelemetryContext(provider.get_tracer("test"))


@pytest.fixture
def bedrock_client():
    client = MagicMock()
    client.apply_guardrail.return_value = guardrail_response()
    return client


@pytest.fixture
def scanner(bedrock_client):
    return GuardrailScanner(BedrockGuardrailClassifier(bedrock_client, "gr-test", "DRAFT"))
