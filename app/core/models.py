"""API-Modelle für das Moderated Chat Gateway: Chat-Nachrichten, Anfragen,
Antworten und die kanonischen Guardrail-Ergebnisse."""
import time
from enum import Enum
from typing import List, Literal, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

Role = Literal["user", "assistant", "system"]


def now_ms() -> int:
    return int(time.time() * 1000)


def new_message_id() -> str:
    return uuid4().hex


def new_session_id() -> str:
    """Erzeugt eine neue, nicht vorhersagbare Session-ID.

    uuid4 bezieht seine Bits aus os.urandom; es gibt keinen vom Client
    beeinflussbaren Seed und keinen Zähler.
    """
    return str(uuid4())


class ChatMessage(BaseModel):
    """Einzelne Nachricht einer Session; nach dem Speichern unveränderlich."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(default_factory=new_message_id)
    role: Role
    content: str
    timestamp: int = Field(default_factory=now_ms)
    session_id: Optional[str] = Field(None, alias="sessionId")


class GuardrailSource(str, Enum):
    """Richtung der Prüfung: Nutzereingabe oder Modellantwort."""

    INPUT = "INPUT"
    OUTPUT = "OUTPUT"


class ContentFilterResult(BaseModel):
    filtered: bool = False
    score: float = Field(0.0, ge=0.0, le=1.0)


class ContentFilterResults(BaseModel):
    """Die vier kanonischen Kategorien; immer vollständig befüllt."""

    harmful: ContentFilterResult = Field(default_factory=ContentFilterResult)
    hateful: ContentFilterResult = Field(default_factory=ContentFilterResult)
    sexual: ContentFilterResult = Field(default_factory=ContentFilterResult)
    toxic: ContentFilterResult = Field(default_factory=ContentFilterResult)

    @property
    def any_filtered(self) -> bool:
        return any(result.filtered for result in self.categories().values())

    def categories(self) -> dict:
        return {
            "harmful": self.harmful,
            "hateful": self.hateful,
            "sexual": self.sexual,
            "toxic": self.toxic,
        }

    def total_score(self) -> float:
        return sum(result.score for result in self.categories().values())

    def scores(self) -> "GuardrailsScores":
        return GuardrailsScores(
            harmful=self.harmful.score,
            hateful=self.hateful.score,
            sexual=self.sexual.score,
            toxic=self.toxic.score,
        )


class GuardrailsOutcome(BaseModel):
    """Ergebnis einer Guardrail-Prüfung. Ist `error` gesetzt, sind alle
    Scores 0 und nichts ist gefiltert (fail-open)."""

    model_config = ConfigDict(populate_by_name=True)

    content_filter_results: ContentFilterResults = Field(
        default_factory=ContentFilterResults, alias="contentFilterResults"
    )
    error: Optional[str] = None

    @property
    def filtered(self) -> bool:
        return self.content_filter_results.any_filtered


class GuardrailsScores(BaseModel):
    harmful: float = 0.0
    hateful: float = 0.0
    sexual: float = 0.0
    toxic: float = 0.0


class ChatRequest(BaseModel):
    """Eingehende Chat-Anfrage. Eine fehlende sessionId wird serverseitig erzeugt."""

    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    session_id: Optional[str] = Field(None, alias="sessionId")
    message: str
    model_id: str = Field(alias="modelId")
    history: List[ChatMessage] = Field(default_factory=list)


class ChatResponse(BaseModel):
    """Ausgehende Antwort mit (ggf. neu erzeugter) Session-ID und Output-Scores."""

    model_config = ConfigDict(populate_by_name=True)

    message: ChatMessage
    session_id: str = Field(alias="sessionId")
    guardrails_scores: Optional[GuardrailsScores] = Field(None, alias="guardrailsScores")


class RejectedResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    error: str
    session_id: str = Field(alias="sessionId")
    guardrails_scores: GuardrailsScores = Field(alias="guardrailsScores")


class ErrorResponse(BaseModel):
    error: str
    message: str
