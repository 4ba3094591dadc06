"""Turn-Orchestrator des Moderated Chat Gateways: verbindet Guardrail-Scanner,
Session Store und Model Invoker zu einem Request/Response-Zyklus.

Zustände:
    START -> INPUT_SCREENING -> (REJECTED | PERSIST_USER) -> HISTORY_ASSEMBLY
    -> MODEL_INVOCATION -> OUTPUT_SCREENING -> PERSIST_ASSISTANT -> RESPOND

Nur das Input-Screening kann den Turn abbrechen (vor dem Modellaufruf).
Das Output-Screening ersetzt höchstens den Inhalt der Antwort. Fehler beim
Modellaufruf und beim Schreiben sind fatal und werden weitergereicht.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from app.core.assistant import ModelInvoker
from app.core.models import (
    ChatMessage,
    ChatRequest,
    GuardrailsOutcome,
    GuardrailSource,
    new_session_id,
)
from app.core.scanner import GuardrailScanner
from app.core.store import SessionStore
from app.core.telemetry import TelemetryContext

logger = logging.getLogger(__name__)

INPUT_REFUSAL = "Your message was filtered by content safety guardrails."
OUTPUT_REFUSAL = (
    "I'm sorry, but I cannot provide a response to that query as it may contain inappropriate content."
)


class TurnState(str, Enum):
    START = "START"
    INPUT_SCREENING = "INPUT_SCREENING"
    REJECTED = "REJECTED"
    PERSIST_USER = "PERSIST_USER"
    HISTORY_ASSEMBLY = "HISTORY_ASSEMBLY"
    MODEL_INVOCATION = "MODEL_INVOCATION"
    OUTPUT_SCREENING = "OUTPUT_SCREENING"
    PERSIST_ASSISTANT = "PERSIST_ASSISTANT"
    RESPOND = "RESPOND"


@dataclass
class TurnOutcome:
    """Ergebnis eines Turns. Bei `rejected` ist `message` None und `guardrails`
    enthält die Input-Scores, sonst die Output-Scores."""

    session_id: str
    guardrails: GuardrailsOutcome
    state: TurnState
    message: Optional[ChatMessage] = None

    @property
    def rejected(self) -> bool:
        return self.state is TurnState.REJECTED


@dataclass
class _Turn:
    """Zustand eines einzelnen Turns; lebt nur während `run_turn`."""

    request: ChatRequest
    telemetry: TelemetryContext
    session_id: str = ""
    state: TurnState = TurnState.START
    user_message: Optional[ChatMessage] = None
    history: List[ChatMessage] = field(default_factory=list)

    def advance(self, state: TurnState) -> None:
        logger.debug(f"Turn [{self.session_id}] {self.state.value} -> {state.value}")
        self.state = state
        self.telemetry.set_attribute("turn.state", state.value)


def assemble_history(supplied: List[ChatMessage], stored: List[ChatMessage], user_message: ChatMessage) -> List[ChatMessage]:
    """Verwendet den mitgeschickten Verlauf unverändert, sonst den gespeicherten,
    und hängt die aktuelle Nachricht an, falls sie nicht schon per exaktem
    (role, content)-Vergleich enthalten ist."""
    messages = list(supplied) if supplied else list(stored)
    if not any(msg.role == "user" and msg.content == user_message.content for msg in messages):
        messages.append(user_message)
    return messages


class TurnOrchestrator:
    """Hält nur Referenzen auf die Komponenten; kein veränderlicher Zustand,
    daher beliebig viele parallele Turns über verschiedene Sessions."""

    def __init__(self, scanner: GuardrailScanner, invoker: ModelInvoker, store: SessionStore):
        self.scanner = scanner
        self.invoker = invoker
        self.store = store

    async def run_turn(self, request: ChatRequest, telemetry: TelemetryContext) -> TurnOutcome:
        turn = _Turn(request=request, telemetry=telemetry)

        # START: Session-ID auflösen, User-Nachricht mit Server-Zeitstempel
        turn.session_id = request.session_id or new_session_id()
        telemetry.set_attribute("llm.session_id", turn.session_id)
        turn.user_message = ChatMessage(role="user", content=request.message, session_id=turn.session_id)

        turn.advance(TurnState.INPUT_SCREENING)
        input_result = await self.scanner.classify(request.message, GuardrailSource.INPUT, telemetry)
        if input_result.filtered:
            turn.advance(TurnState.REJECTED)
            logger.info(f"Turn [{turn.session_id}] rejected by input guardrails")
            return TurnOutcome(session_id=turn.session_id, guardrails=input_result, state=turn.state)

        turn.advance(TurnState.PERSIST_USER)
        await self.store.append(turn.user_message, turn.session_id, telemetry)

        turn.advance(TurnState.HISTORY_ASSEMBLY)
        stored = [] if request.history else await self.store.fetch_history(turn.session_id, telemetry)
        turn.history = assemble_history(request.history, stored, turn.user_message)

        turn.advance(TurnState.MODEL_INVOCATION)
        model_text = await self.invoker.invoke(request.model_id, turn.history, telemetry)

        turn.advance(TurnState.OUTPUT_SCREENING)
        output_result = await self.scanner.classify(model_text, GuardrailSource.OUTPUT, telemetry)
        if output_result.filtered:
            logger.info(f"Turn [{turn.session_id}] model response replaced by refusal")
        assistant_message = ChatMessage(
            role="assistant",
            content=OUTPUT_REFUSAL if output_result.filtered else model_text,
            session_id=turn.session_id,
        )

        turn.advance(TurnState.PERSIST_ASSISTANT)
        await self.store.append(assistant_message, turn.session_id, telemetry)

        turn.advance(TurnState.RESPOND)
        return TurnOutcome(
            session_id=turn.session_id,
            guardrails=output_result,
            state=turn.state,
            message=assistant_message,
        )
