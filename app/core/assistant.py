"""Steuert die Kommunikation mit den Sprachmodellen (Amazon Bedrock,
OpenAI) für das Moderated Chat Gateway.

Der Aufrufer kennt nur die Modell-ID; Adapter und Transport werden daraus
abgeleitet. Fehler des Modells werden am Span vermerkt und unverändert an
den Aufrufer weitergereicht (kein fail-open wie beim Guardrail-Scanner).
"""
import asyncio
import json
import logging
from typing import Any, Dict, Mapping, Optional, Sequence

from openai import AsyncOpenAI

from app.core.adapters import (
    CONVERSE_API,
    INVOKE_MODEL_API,
    OPENAI_API,
    AdapterRegistry,
    default_registry,
)
from app.core.models import ChatMessage
from app.core.telemetry import TelemetryContext

logger = logging.getLogger(__name__)


class ModelConfigurationError(RuntimeError):
    """Für die Modell-ID ist kein Transport konfiguriert."""


class BedrockInvokeTransport:
    """bedrock-runtime InvokeModel mit JSON-Body."""

    def __init__(self, runtime_client):
        self.client = runtime_client

    def _send(self, model_id: str, body: Dict[str, Any]) -> Dict[str, Any]:
        response = self.client.invoke_model(
            modelId=model_id,
            contentType="application/json",
            accept="application/json",
            body=json.dumps(body),
        )
        return json.loads(response["body"].read())

    async def send(self, model_id: str, body: Dict[str, Any]) -> Dict[str, Any]:
        # boto3 blockiert -> ThreadPool, damit der Event-Loop frei bleibt
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._send, model_id, body)


class BedrockConverseTransport:
    """bedrock-runtime Converse; der Body enthält modelId bereits."""

    def __init__(self, runtime_client):
        self.client = runtime_client

    async def send(self, model_id: str, body: Dict[str, Any]) -> Dict[str, Any]:
        loop = asyncio.get_running_loop()
        response = await loop.run_in_executor(None, lambda: self.client.converse(**body))
        response.pop("ResponseMetadata", None)
        return response


class OpenAITransport:
    def __init__(self, client: AsyncOpenAI):
        self.client = client

    async def send(self, model_id: str, body: Dict[str, Any]) -> Dict[str, Any]:
        completion = await self.client.chat.completions.create(**body)
        return completion.model_dump()


def build_transports(runtime_client=None, openai_api_key: str = "", timeout: Optional[float] = None) -> Dict[str, Any]:
    transports: Dict[str, Any] = {}
    if runtime_client is not None:
        transports[INVOKE_MODEL_API] = BedrockInvokeTransport(runtime_client)
        transports[CONVERSE_API] = BedrockConverseTransport(runtime_client)
    if openai_api_key:
        transports[OPENAI_API] = OpenAITransport(AsyncOpenAI(api_key=openai_api_key, timeout=timeout, max_retries=0))
    return transports


class ModelInvoker:
    """Model Invoker: Verlauf -> Adapter-Request -> Transport -> Text."""

    def __init__(self, transports: Mapping[str, Any], registry: Optional[AdapterRegistry] = None):
        self.transports = dict(transports)
        self.registry = registry or default_registry()

    async def invoke(
        self,
        model_id: str,
        history: Sequence[ChatMessage],
        telemetry: TelemetryContext,
    ) -> str:
        """Ruft das Modell auf und liefert den generierten Text.

        - Span `model.invoke.<modelId>` mit Modell-ID, Adapter und Anzahl der Nachrichten.
        - Token-Zähler werden als Attribute gesetzt; fehlende Zähler sind 0.
        - Exceptions werden am Span vermerkt und weitergereicht.
        """
        adapter = self.registry.resolve(model_id)
        attributes = {
            "llm.model_id": model_id,
            "llm.adapter": adapter.name,
            "llm.messages_count": len(history),
        }
        with telemetry.stage(f"model.invoke.{model_id}", attributes) as span:
            try:
                transport = self.transports.get(adapter.api)
                if transport is None:
                    raise ModelConfigurationError(
                        f"No transport configured for model '{model_id}' (api: {adapter.api})"
                    )
                body = adapter.build_request(model_id, history)
                logger.info(f"Model Request [{model_id}] via {adapter.name}: {len(history)} messages")
                response = await transport.send(model_id, body)
            except Exception as e:
                logger.error(f"Error invoking model {model_id}: {e}")
                raise

            content = adapter.parse_response(response)
            span.set_attributes(adapter.extract_usage(response).as_attributes())
            span.set_attribute("llm.response_length", len(content))
            return content
