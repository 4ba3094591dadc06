"""Konfigurationsmodul für das Moderated Chat Gateway: lädt zentrale
Umgebungsvariablen (AWS, Guardrails, Storage, Modelle) via Pydantic-Settings."""
from typing import List, Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Hält alle konfigurierbaren Werte, die das Gateway zur Laufzeit
    benötigt (z.B. Guardrail-ID, Storage-Backend, Timeouts)."""

    model_config = SettingsConfigDict(
        env_file=".env", extra="ignore", populate_by_name=True, protected_namespaces=()
    )

    aws_region: str = Field("us-east-1", alias="AWS_REGION")
    guardrail_id: str = Field("", alias="GUARDRAIL_ID")  # Leer -> Guardrails fail-open.
    guardrail_version: str = Field("DRAFT", alias="GUARDRAIL_VERSION")

    # Storage: "sql" (SQLAlchemy), "redis" oder "dynamodb"
    store_backend: Literal["sql", "redis", "dynamodb"] = Field("sql", alias="STORE_BACKEND")
    database_url: str = Field("sqlite:///./chat_history.db", alias="DATABASE_URL")
    table_name: str = Field("", alias="TABLE_NAME")
    redis_host: str = "redis"
    redis_port: int = 6379
    redis_session_ttl_seconds: int = Field(0, alias="REDIS_SESSION_TTL_SECONDS")  # 0 = kein Ablauf

    openai_api_key: str = Field("", alias="OPENAI_API_KEY")  # Optional, nur für openai:-Modelle.

    # Alle externen Calls laufen mit festen Timeouts.
    connect_timeout_seconds: float = Field(5.0, alias="CONNECT_TIMEOUT_SECONDS")
    read_timeout_seconds: float = Field(60.0, alias="READ_TIMEOUT_SECONDS")

    model_max_tokens: int = Field(1000, alias="MODEL_MAX_TOKENS")
    model_temperature: float = Field(0.7, alias="MODEL_TEMPERATURE")
    model_top_p: float = Field(0.9, alias="MODEL_TOP_P")

    # CORS für das Browser-Frontend
    cors_allow_origins: List[str] = Field(["*"], alias="CORS_ALLOW_ORIGINS")

    trace_name: str = Field("llm-observability-backend", alias="TRACE_NAME")
    log_file: str = Field("chat_gateway.log", alias="LOG_FILE")
    service_port: int = 1985


settings = Settings()
