"""Chat-Router stellt den Hauptendpunkt des Moderated Chat Gateways bereit."""
import logging
from typing import List

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from app.core.models import ChatMessage, ChatRequest, ChatResponse, ErrorResponse, RejectedResponse
from app.core.orchestrator import INPUT_REFUSAL
from app.core.telemetry import TelemetryContext

router = APIRouter(prefix="/chat", tags=["Chat"])
logger = logging.getLogger(__name__)

GENERIC_ERROR = "An error occurred while processing your request"


@router.post(
    "",
    response_model=ChatResponse,
    responses={400: {"model": RejectedResponse}, 500: {"model": ErrorResponse}},
)
async def handle_message(chat_request: ChatRequest, request: Request):
    """Haupt-Endpunkt zur Verarbeitung eines Chat-Turns.

    Pipeline:
    1) Input-Guardrails; bei Treffer 400 mit den Input-Scores.
    2) User-Nachricht speichern, Verlauf zusammenstellen.
    3) Modellaufruf über den passenden Adapter.
    4) Output-Guardrails; bei Treffer wird die Antwort durch einen festen Text ersetzt.
    5) Antwort speichern und mit Output-Scores zurückgeben.
    """
    orchestrator = request.app.state.orchestrator
    telemetry: TelemetryContext = request.app.state.telemetry

    with telemetry.stage(request.app.state.trace_name) as turn_span:
        try:
            outcome = await orchestrator.run_turn(chat_request, turn_span)
        except Exception as exc:
            logger.exception(f"Error processing request: {exc}")
            turn_span.record_exception(exc)
            body = ErrorResponse(error=GENERIC_ERROR, message=str(exc))
            return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=body.model_dump())

    scores = outcome.guardrails.content_filter_results.scores()
    if outcome.rejected:
        body = RejectedResponse(error=INPUT_REFUSAL, session_id=outcome.session_id, guardrails_scores=scores)
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=body.model_dump(by_alias=True))

    body = ChatResponse(message=outcome.message, session_id=outcome.session_id, guardrails_scores=scores)
    return JSONResponse(status_code=status.HTTP_200_OK, content=body.model_dump(by_alias=True))


@router.get("/sessions/{session_id}/messages", response_model=List[ChatMessage])
async def get_session_messages(session_id: str, request: Request):
    """Liefert den gespeicherten Verlauf einer Session (aufsteigend nach Zeit)."""
    store = request.app.state.store
    telemetry: TelemetryContext = request.app.state.telemetry
    messages = await store.fetch_history(session_id, telemetry)
    return JSONResponse(content=[msg.model_dump(by_alias=True) for msg in messages])


@router.get("/models")
async def list_models(request: Request):
    """Listet die registrierten Modell-Adapter und ihre ID-Pattern."""
    return request.app.state.invoker.registry.describe()
