import io
import json

import pytest
from unittest.mock import AsyncMock, MagicMock
from botocore.exceptions import ReadTimeoutError
from opentelemetry.trace import StatusCode

from app.core.adapters import CONVERSE_API, INVOKE_MODEL_API, OPENAI_API
from app.core.assistant import (
    BedrockConverseTransport,
    BedrockInvokeTransport,
    ModelConfigurationError,
    ModelInvoker,
    OpenAITransport,
    build_transports,
)
from app.core.models import ChatMessage
from app.core.telemetry import TelemetryContext

HISTORY = [ChatMessage(role="user", content="Hello")]


def invoke_response(payload):
    return {"body": io.BytesIO(json.dumps(payload).encode("utf-8"))}


@pytest.mark.asyncio
async def test_invoke_model_transport_round_trip():
    client = MagicMock()
    client.invoke_model.return_value = invoke_response({"content": [{"type": "text", "text": "Hi there"}]})
    invoker = ModelInvoker({INVOKE_MODEL_API: BedrockInvokeTransport(client)})

    text = await invoker.invoke("anthropic.claude-v2", HISTORY, TelemetryContext.noop())

    assert text == "Hi there"
    kwargs = client.invoke_model.call_args.kwargs
    assert kwargs["modelId"] == "anthropic.claude-v2"
    assert kwargs["contentType"] == "application/json"
    assert json.loads(kwargs["body"])["messages"] == [{"role": "user", "content": "Hello"}]


@pytest.mark.asyncio
async def test_converse_transport_strips_metadata():
    client = MagicMock()
    client.converse.return_value = {
        "ResponseMetadata": {"HTTPStatusCode": 200},
        "output": {"message": {"content": [{"text": "Hi there"}]}},
        "usage": {"inputTokens": 3, "outputTokens": 2, "totalTokens": 5},
    }

    response = await BedrockConverseTransport(client).send("amazon.nova-lite-v1:0", {"modelId": "amazon.nova-lite-v1:0", "messages": []})

    assert "ResponseMetadata" not in response
    client.converse.assert_called_once_with(modelId="amazon.nova-lite-v1:0", messages=[])


@pytest.mark.asyncio
async def test_openai_transport_uses_chat_completions():
    completion = MagicMock()
    completion.model_dump.return_value = {"choices": [{"message": {"content": "Hi there"}}]}
    client = MagicMock()
    client.chat.completions.create = AsyncMock(return_value=completion)
    invoker = ModelInvoker({OPENAI_API: OpenAITransport(client)})

    text = await invoker.invoke("openai:gpt-4o-mini", HISTORY, TelemetryContext.noop())

    assert text == "Hi there"
    assert client.chat.completions.create.call_args.kwargs["model"] == "gpt-4o-mini"


@pytest.mark.asyncio
async def test_usage_recorded_on_span(telemetry, span_exporter):
    transport = MagicMock()
    transport.send = AsyncMock(return_value={
        "output": {"message": {"content": [{"text": "Hi there"}]}},
        "usage": {"inputTokens": 12, "outputTokens": 8, "totalTokens": 20, "cacheReadInputTokens": 4},
    })
    invoker = ModelInvoker({CONVERSE_API: transport})

    await invoker.invoke("amazon.nova-lite-v1:0", HISTORY, telemetry)

    (span,) = span_exporter.get_finished_spans()
    assert span.name == "model.invoke.amazon.nova-lite-v1:0"
    assert span.attributes["llm.model_id"] == "amazon.nova-lite-v1:0"
    assert span.attributes["llm.messages_count"] == 1
    assert span.attributes["llm.input_tokens"] == 12
    assert span.attributes["llm.output_tokens"] == 8
    assert span.attributes["llm.total_tokens"] == 20
    assert span.attributes["llm.cache_read"] == 4
    assert span.attributes["llm.cache_write"] == 0
    assert span.status.status_code == StatusCode.UNSET


@pytest.mark.asyncio
async def test_missing_usage_records_zeros(telemetry, span_exporter):
    transport = MagicMock()
    transport.send = AsyncMock(return_value={"completion": "Hi there"})
    invoker = ModelInvoker({INVOKE_MODEL_API: transport})

    assert await invoker.invoke("model-A", HISTORY, telemetry) == "Hi there"

    (span,) = span_exporter.get_finished_spans()
    for key in ("llm.input_tokens", "llm.output_tokens", "llm.total_tokens", "llm.cache_read", "llm.cache_write"):
        assert span.attributes[key] == 0


@pytest.mark.asyncio
async def test_model_errors_are_reraised_unmodified(telemetry, span_exporter):
    error = ReadTimeoutError(endpoint_url="https://bedrock-runtime")
    transport = MagicMock()
    transport.send = AsyncMock(side_effect=error)
    invoker = ModelInvoker({INVOKE_MODEL_API: transport})

    with pytest.raises(ReadTimeoutError) as excinfo:
        await invoker.invoke("anthropic.claude-v2", HISTORY, telemetry)

    assert excinfo.value is error
    (span,) = span_exporter.get_finished_spans()
    assert span.status.status_code == StatusCode.ERROR
    assert any(event.name == "exception" for event in span.events)


@pytest.mark.asyncio
async def test_unconfigured_transport_raises():
    invoker = ModelInvoker({INVOKE_MODEL_API: MagicMock()})

    with pytest.raises(ModelConfigurationError):
        await invoker.invoke("openai:gpt-4o-mini", HISTORY, TelemetryContext.noop())


def test_build_transports_without_openai_key():
    transports = build_transports(MagicMock(), openai_api_key="")
    assert set(transports) == {INVOKE_MODEL_API, CONVERSE_API}
