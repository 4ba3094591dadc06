import pytest
from unittest.mock import AsyncMock, MagicMock
from fastapi import FastAPI
from fastapi.testclient import TestClient
from botocore.exceptions import ReadTimeoutError

from app.core.adapters import INVOKE_MODEL_API
from app.core.assistant import ModelInvoker
from app.core.db_sqla import init_db, make_session_factory
from app.core.orchestrator import TurnOrchestrator
from app.core.store import SqlSessionStore
from app.core.telemetry import TelemetryContext
from app.routers import chat


@pytest.fixture
def model_transport():
    transport = MagicMock()
    transport.send = AsyncMock(return_value={"completion": "Hi there"})
    return transport


@pytest.fixture
def store():
    factory = make_session_factory("sqlite://")
    init_db(factory)
    return SqlSessionStore(factory)


@pytest.fixture
def client(scanner, model_transport, store):
    app = FastAPI()
    app.include_router(chat.router)
    app.state.scanner = scanner
    app.state.invoker = ModelInvoker({INVOKE_MODEL_API: model_transport})
    app.state.store = store
    app.state.orchestrator = TurnOrchestrator(app.state.scanner, app.state.invoker, store)
    app.state.telemetry = TelemetryContext.noop()
    app.state.trace_name = "llm-observability-backend"
    return TestClient(app)


def test_scenario_all_clear(client):
    response = client.post("/chat", json={"message": "Hello", "modelId": "model-A"})

    assert response.status_code == 200
    data = response.json()
    assert data["message"]["role"] == "assistant"
    assert data["message"]["content"] == "Hi there"
    assert data["sessionId"]
    assert data["guardrailsScores"] == {"harmful": 0.0, "hateful": 0.0, "sexual": 0.0, "toxic": 0.0}


def test_scenario_hateful_input_rejected(client, bedrock_client, model_transport, make_guardrail_response):
    bedrock_client.apply_guardrail.return_value = make_guardrail_response(("HATE", "BLOCKED", "HIGH"))

    response = client.post("/chat", json={"message": "hateful words", "modelId": "model-A", "sessionId": "s1"})

    assert response.status_code == 400
    data = response.json()
    assert data["sessionId"] == "s1"
    assert data["guardrailsScores"]["hateful"] == 1.0
    assert data["error"]
    model_transport.send.assert_not_called()
    assert client.get("/chat/sessions/s1/messages").json() == []


def test_scenario_model_timeout(client, model_transport):
    model_transport.send.side_effect = ReadTimeoutError(endpoint_url="https://bedrock-runtime")

    response = client.post("/chat", json={"message": "Hello", "modelId": "model-A", "sessionId": "s2"})

    assert response.status_code == 500
    data = response.json()
    assert data["error"] == "An error occurred while processing your request"
    assert "Read timeout" in data["message"]
    history = client.get("/chat/sessions/s2/messages").json()
    assert [m["role"] for m in history] == ["user"]


def test_filtered_output_returns_refusal_with_scores(client, bedrock_client, make_guardrail_response):
    bedrock_client.apply_guardrail.side_effect = [
        make_guardrail_response(),
        make_guardrail_response(("VIOLENCE", "BLOCKED", "MEDIUM")),
    ]

    response = client.post("/chat", json={"message": "Hello", "modelId": "model-A"})

    assert response.status_code == 200
    data = response.json()
    assert data["message"]["content"].startswith("I'm sorry")
    assert data["guardrailsScores"]["harmful"] == 0.7


def test_classifier_outage_fails_open(client, bedrock_client):
    bedrock_client.apply_guardrail.side_effect = ReadTimeoutError(endpoint_url="https://bedrock-runtime")

    response = client.post("/chat", json={"message": "Hello", "modelId": "model-A"})

    assert response.status_code == 200
    assert response.json()["message"]["content"] == "Hi there"


def test_session_continuity_and_history_endpoint(client, model_transport):
    first = client.post("/chat", json={"message": "Hello", "modelId": "model-A"}).json()
    session_id = first["sessionId"]

    second = client.post("/chat", json={"message": "Again", "modelId": "model-A", "sessionId": session_id})

    assert second.json()["sessionId"] == session_id
    prompt = model_transport.send.call_args.args[1]["prompt"]
    assert prompt == "user: Hello\nassistant: Hi there\nuser: Again"
    history = client.get(f"/chat/sessions/{session_id}/messages").json()
    assert [m["content"] for m in history] == ["Hello", "Hi there", "Again", "Hi there"]


def test_missing_message_is_a_validation_error(client):
    assert client.post("/chat", json={"modelId": "model-A"}).status_code == 422


def test_models_endpoint_lists_adapters(client):
    names = [entry["name"] for entry in client.get("/chat/models").json()]
    assert names[-1] == "generic"
    assert "anthropic-messages" in names
