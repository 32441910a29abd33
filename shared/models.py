"""
Shared Pydantic models for all layers.
All contexts are immutable (frozen) after creation.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel

from shared.dialogue_contracts import PendingCommand


# ─── Entry Layer ───────────────────────────────────────────────

class EntryRequest(BaseModel):
    """Normalized input from any entry adapter."""
    model_config = {"frozen": True}

    session_id: str
    input_text: str
    metadata: dict[str, Any] = Field(default_factory=dict)


# ─── Action Schema Layer ───────────────────────────────────────

class ActionExample(BaseModel):
    """Example phrasing used only as model prompt context."""
    model_config = {"frozen": True}

    command: str
    parameters: dict[str, Any] = Field(default_factory=dict)


class ActionDescriptor(BaseModel):
    """Static schema entry for one supported action."""
    model_config = {"frozen": True}

    name: str = Field(..., description="Unique action name, e.g. 'ADD_STOCK'")
    required: tuple[str, ...] = Field(default=(), description="Ordered required parameter names")
    optional: tuple[str, ...] = Field(default=(), description="Optional parameter names")
    description: str = Field(default="")
    examples: tuple[ActionExample, ...] = Field(default=())

    @property
    def fields(self) -> tuple[str, ...]:
        return self.required + self.optional

    def missing_from(self, parameters: dict[str, Any]) -> list[str]:
        """Required names absent (or null/blank) in ``parameters``, in declaration order."""
        missing: list[str] = []
        for name in self.required:
            value = parameters.get(name)
            if value is None or (isinstance(value, str) and not value.strip()):
                missing.append(name)
        return missing


# ─── Model Layer (Policy) ──────────────────────────────────────

class ModelPolicy(BaseModel):
    """Configuration for Model Layer execution."""
    model_config = {"frozen": True, "protected_namespaces": ()}
    model_name: str
    temperature: float = 0.0
    timeout_seconds: float = 30.0
    max_retries: int = 3
    json_mode: bool = True
    max_tokens: int = 1024


# ─── NLU Layer ─────────────────────────────────────────────────

class ClassificationContext(BaseModel):
    """Structured classifier context: the pending action and what it still lacks."""
    model_config = {"frozen": True, "alias_generator": to_camel, "populate_by_name": True}

    pending_action: str | None = None
    missing_fields: list[str] = Field(default_factory=list)


class ClassificationResult(BaseModel):
    """Stage 1 output: which action the user wants."""
    model_config = {"frozen": True}
    action: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    reasoning: str | None = None
    model: str | None = Field(default=None, description="Model tier that produced the result")


class ExtractionResult(BaseModel):
    """Stage 2 output: parameters for a confirmed action."""
    model_config = {"frozen": True}
    parameters: dict[str, Any] = Field(default_factory=dict)
    missing_required: list[str] = Field(default_factory=list)
    confidence: float = Field(..., ge=0.0, le=1.0)
    model: str | None = None


class ParsedCommand(BaseModel):
    """Combined two-stage interpretation of one command."""
    model_config = {"frozen": True}
    action: str
    parameters: dict[str, Any] = Field(default_factory=dict)
    confidence: float = Field(..., ge=0.0, le=1.0)
    reasoning: str = ""
    missing_required: list[str] = Field(default_factory=list)
    clarification_needed: str | None = None
    model: str | None = None
    latency_ms: float | None = None
    debug: dict[str, Any] = Field(default_factory=dict)


# ─── Execution Layer ───────────────────────────────────────────

class ActionRequest(BaseModel):
    """A fully resolved action ready for the Dispatcher."""
    model_config = {"frozen": True}
    action: str
    parameters: dict[str, Any] = Field(default_factory=dict)
    resume_action: str | None = None
    resume_params: dict[str, Any] = Field(default_factory=dict)


class ExecutorResult(BaseModel):
    """Executor contract. camelCase on the wire, snake_case in Python."""
    model_config = {"frozen": True, "alias_generator": to_camel, "populate_by_name": True}

    success: bool
    message: str = ""
    data: Any = None
    needs_input: bool = False
    missing_fields: list[str] = Field(default_factory=list)
    prompt: str | None = None
    options: list[str] = Field(default_factory=list)
    pending_action: str | None = None
    context: dict[str, Any] = Field(default_factory=dict)


OutcomeLabel = Literal["primary", "resumed", "side_effect"]


class ActionOutcome(BaseModel):
    """Result of one executor call, labelled by its role in the turn."""
    model_config = {"frozen": True}
    action: str
    label: OutcomeLabel = "primary"
    success: bool
    message: str = ""
    data: Any = None


# ─── Turn Output ───────────────────────────────────────────────

TurnStatus = Literal["prompt", "invalid", "completed", "failed", "cancelled"]


class TurnOutcome(BaseModel):
    """Everything the caller needs to render one dialogue turn."""
    model_config = {"frozen": True}
    session_id: str
    status: TurnStatus
    message: str = ""
    prompt: str | None = None
    options: list[str] = Field(default_factory=list)
    notices: list[str] = Field(default_factory=list)
    results: list[ActionOutcome] = Field(default_factory=list)
    pending: PendingCommand | None = None
    parsed: ParsedCommand | None = None
