"""
HTTP API for the Field Command Dialogue Engine.

Endpoints:
- POST /classify-intent   Stage 1 only
- POST /extract-params    Stage 2 only
- POST /parse-command     both stages plus normalization
- POST /command           one full dialogue turn for a session
- GET|DELETE /sessions/{session_id}/pending
- GET /health
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from main import build_pipeline
from orchestrator.dialogue_manager import model_error_message
from shared.delivery_layer import build_delivery_payload
from shared.errors import ModelNotConfiguredError, ModelUnavailableError
from shared.models import ParsedCommand, TurnOutcome

logger = logging.getLogger(__name__)

API_INCLUDE_DEBUG = os.getenv("API_INCLUDE_DEBUG", "false").strip().lower() in (
    "1",
    "true",
    "yes",
    "on",
)


# ─── Request Models ─────────────────────────────────────────────

class ClassifyIntentRequest(BaseModel):
    command: str
    context: str | dict[str, Any] | None = None


class ExtractParamsRequest(BaseModel):
    command: str
    action: str
    context: str | None = None


class ParseCommandRequest(BaseModel):
    command: str
    context: str | dict[str, Any] | None = None


class CommandTurnRequest(BaseModel):
    model_config = {"populate_by_name": True}

    session_id: str = Field(..., alias="sessionId")
    command: str


# ─── Helpers ────────────────────────────────────────────────────

def _require_text(value: str, name: str) -> str:
    text = value.strip()
    if not text:
        raise HTTPException(status_code=400, detail=f"{name} is required and must be a non-empty string")
    return text


def _require_model(app_: FastAPI) -> None:
    if not app_.state.model_selector.is_configured:
        raise HTTPException(status_code=503, detail="AI service not configured: no model API key is set")


def _model_failure(e: Exception) -> HTTPException:
    if isinstance(e, ModelNotConfiguredError):
        return HTTPException(status_code=503, detail=model_error_message(e))
    return HTTPException(status_code=502, detail=model_error_message(e))


def _parsed_response(parsed: ParsedCommand) -> dict[str, Any]:
    body: dict[str, Any] = {
        "action": parsed.action,
        "parameters": parsed.parameters,
        "confidence": parsed.confidence,
        "interpretation": parsed.reasoning,
        "missingRequired": parsed.missing_required,
        "model": parsed.model,
        "latency": parsed.latency_ms,
    }
    if parsed.clarification_needed:
        body["clarificationNeeded"] = parsed.clarification_needed
    if API_INCLUDE_DEBUG:
        body["debug"] = parsed.debug
    return body


def _pending_response(outcome_pending: Any) -> dict[str, Any] | None:
    if outcome_pending is None:
        return None
    return {
        "id": outcome_pending.id,
        "action": outcome_pending.action,
        "state": outcome_pending.state,
        "prompt": outcome_pending.prompt,
        "options": list(outcome_pending.options),
        "pendingAction": outcome_pending.pending_action,
        "missingFields": list(outcome_pending.missing_fields),
        "currentStep": outcome_pending.current_step,
        "totalSteps": outcome_pending.total_steps,
        "expiresAt": outcome_pending.expires_at,
    }


def _turn_response(outcome: TurnOutcome) -> dict[str, Any]:
    delivery = build_delivery_payload(outcome, channel="frontend")
    return {
        "sessionId": outcome.session_id,
        "status": outcome.status,
        "message": outcome.message,
        "prompt": outcome.prompt,
        "options": outcome.options,
        "notices": outcome.notices,
        "results": [
            {
                "action": r.action,
                "label": r.label,
                "success": r.success,
                "message": r.message,
                "data": r.data,
            }
            for r in outcome.results
        ],
        "pending": _pending_response(outcome.pending),
        "delivery": {
            "kind": delivery.kind,
            "content": delivery.content,
            "data": delivery.data,
        },
    }


# ─── App ────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(_app: FastAPI):
    pipeline = build_pipeline()
    _app.state.pipeline = pipeline
    _app.state.model_selector = pipeline.model_selector
    _app.state.classifier = pipeline.classifier
    _app.state.extractor = pipeline.extractor
    _app.state.parser = pipeline.parser
    _app.state.dialogue = pipeline.dialogue
    yield
    await pipeline.close()


app = FastAPI(
    title="Field Command Dialogue API",
    version="0.1.0",
    lifespan=lifespan,
)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
    fields = sorted({str(err.get("loc", ("body",))[-1]) for err in exc.errors()})
    return JSONResponse(
        status_code=400,
        content={"detail": f"Invalid request: {', '.join(fields) or 'body'} missing or malformed"},
    )


@app.get("/health")
def health() -> dict[str, Any]:
    return {"status": "ok", "modelConfigured": app.state.model_selector.is_configured}


@app.post("/classify-intent")
async def classify_intent(request: ClassifyIntentRequest) -> dict[str, Any]:
    command = _require_text(request.command, "command")
    _require_model(app)
    try:
        result = await app.state.classifier.classify(command, request.context)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except (ModelUnavailableError, ModelNotConfiguredError) as e:
        logger.error("classify-intent failed: %s", e)
        raise _model_failure(e) from e

    body: dict[str, Any] = {"action": result.action, "confidence": result.confidence}
    if result.reasoning:
        body["reasoning"] = result.reasoning
    if result.model:
        body["model"] = result.model
    return body


@app.post("/extract-params")
async def extract_params(request: ExtractParamsRequest) -> dict[str, Any]:
    command = _require_text(request.command, "command")
    action = _require_text(request.action, "action")
    _require_model(app)
    try:
        result = await app.state.extractor.extract(command, action, request.context)
    except (ModelUnavailableError, ModelNotConfiguredError) as e:
        logger.error("extract-params failed: %s", e)
        raise _model_failure(e) from e

    return {
        "parameters": result.parameters,
        "missingRequired": result.missing_required,
        "confidence": result.confidence,
    }


@app.post("/parse-command")
async def parse_command(request: ParseCommandRequest) -> dict[str, Any]:
    command = _require_text(request.command, "command")
    _require_model(app)
    try:
        parsed = await app.state.parser.parse(command, request.context)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except (ModelUnavailableError, ModelNotConfiguredError) as e:
        logger.error("parse-command failed: %s", e)
        raise _model_failure(e) from e
    return _parsed_response(parsed)


@app.post("/command")
async def command_turn(request: CommandTurnRequest) -> dict[str, Any]:
    session_id = _require_text(request.session_id, "sessionId")
    command = _require_text(request.command, "command")
    outcome = await app.state.dialogue.handle_turn(session_id, command)
    return _turn_response(outcome)


@app.get("/sessions/{session_id}/pending")
def get_pending(session_id: str) -> dict[str, Any]:
    pending = app.state.dialogue.pending(session_id)
    return {"sessionId": session_id, "pending": _pending_response(pending)}


@app.delete("/sessions/{session_id}/pending")
async def cancel_pending(session_id: str) -> dict[str, Any]:
    cancelled = await app.state.dialogue.cancel(session_id)
    return {"sessionId": session_id, "cancelled": cancelled}
