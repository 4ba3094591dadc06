"""FastAPI-Einstiegspunkt für das Moderated Chat Gateway."""
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.core.adapters import GenerationConfig, default_registry
from app.core.assistant import ModelInvoker, build_transports
from app.core.aws import get_bedrock_runtime_client, get_dynamodb_table
from app.core.config import Settings, settings
from app.core.database import get_redis_client
from app.core.db_sqla import init_db, make_session_factory
from app.core.logging_setup import setup_logging
from app.core.orchestrator import TurnOrchestrator
from app.core.scanner import BedrockGuardrailClassifier, GuardrailScanner
from app.core.store import DynamoSessionStore, RedisSessionStore, SessionStore, SqlSessionStore
from app.core.telemetry import TelemetryContext

from app.routers import chat as chat_router

logger = logging.getLogger(__name__)

# Initialisierung der App
app = FastAPI(
    title="Moderated Chat Gateway",
    version="1.0.0",
    description="Guardrail screening, model routing and session persistence for LLM chat turns.",
)

# CORS (Browser-Frontend auf anderer Origin)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allow_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Setup Logging (File + Console)
setup_logging()


def build_store(config: Settings) -> SessionStore:
    """Wählt das Storage-Backend anhand von STORE_BACKEND."""
    if config.store_backend == "redis":
        return RedisSessionStore(get_redis_client(config), ttl_seconds=config.redis_session_ttl_seconds)
    if config.store_backend == "dynamodb":
        return DynamoSessionStore(get_dynamodb_table(config))

    session_factory = make_session_factory(config.database_url)
    init_db(session_factory)
    return SqlSessionStore(session_factory)


@app.on_event("startup")
def startup_event() -> None:
    """Initialisiert alle Services beim Start der Anwendung.

    - Bedrock-Runtime-Client (Guardrails + Modelle).
    - Session Store gemäß STORE_BACKEND.
    - Model Invoker mit Adapter-Registry.
    """
    runtime_client = get_bedrock_runtime_client(settings)
    classifier = BedrockGuardrailClassifier(runtime_client, settings.guardrail_id, settings.guardrail_version)

    generation = GenerationConfig(
        max_tokens=settings.model_max_tokens,
        temperature=settings.model_temperature,
        top_p=settings.model_top_p,
    )
    transports = build_transports(runtime_client, settings.openai_api_key, timeout=settings.read_timeout_seconds)

    # Core Services initialisieren und im App State speichern
    app.state.scanner = GuardrailScanner(classifier)
    app.state.invoker = ModelInvoker(transports, default_registry(generation))
    app.state.store = build_store(settings)
    app.state.orchestrator = TurnOrchestrator(app.state.scanner, app.state.invoker, app.state.store)
    app.state.telemetry = TelemetryContext.for_service(settings.trace_name)
    app.state.trace_name = settings.trace_name

    logger.info(f"Moderated Chat Gateway initialised (store={settings.store_backend}, guardrail={settings.guardrail_id or '-'})")


@app.get("/health", tags=["Health"])
async def health():
    return {"status": "ok"}


# Router registrieren
app.include_router(chat_router.router)
