"""Dialogue contracts carried across user turns.

``PendingCommand`` is the single source of truth for what a session is in
the middle of. It is frozen: every transition produces a new instance via
``evolve(...)``, which re-runs validation and keeps the flow engine replayable.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field, model_validator


DialogueState = Literal[
    "NEW",
    "AWAITING_FIELDS",
    "AWAITING_CONFIRMATION",
    "IN_FLOW",
    "IN_SUBFLOW",
    "READY",
    "CANCELLED",
]


class CommandContext(BaseModel):
    """Closed set of values carried alongside a pending action.

    Field aliases match the action parameter names used on the wire, so
    ``CommandContext.model_validate({"partNumber": "CAB-001"})`` works and
    ``to_parameters()`` returns wire names again. Unknown keys are rejected.
    """

    model_config = {"frozen": True, "extra": "forbid", "populate_by_name": True}

    item: str | None = None
    part_number: str | None = Field(default=None, alias="partNumber")
    name: str | None = None
    description: str | None = None
    quantity: int | float | None = None
    location: str | None = None
    unit_cost: float | None = Field(default=None, alias="unitCost")
    markup: float | None = None
    sell_price: float | None = Field(default=None, alias="sellPrice")
    min_quantity: int | None = Field(default=None, alias="minQuantity")
    preferred_supplier_name: str | None = Field(default=None, alias="preferredSupplierName")
    manufacturer: str | None = None
    category: str | None = None
    supplier_name: str | None = Field(default=None, alias="supplierName")
    customer_name: str | None = Field(default=None, alias="customerName")
    contact_name: str | None = Field(default=None, alias="contactName")
    email: str | None = None
    phone: str | None = None
    address: str | None = None
    website: str | None = None
    resume_action: str | None = Field(default=None, alias="resumeAction")
    resume_params: dict[str, Any] = Field(default_factory=dict, alias="resumeParams")

    def to_parameters(self) -> dict[str, Any]:
        """Known values as action parameters (wire names, no resume chaining keys)."""
        return self.model_dump(
            by_alias=True,
            exclude_none=True,
            exclude={"resume_action", "resume_params"},
        )

    def hint(self) -> str:
        """Human label for prompts: the thing this dialogue is about."""
        for value in (self.item, self.name, self.part_number, self.customer_name, self.supplier_name):
            if value:
                return str(value)
        return ""


class PendingCommand(BaseModel):
    """In-progress multi-turn interaction for one session."""

    model_config = {"frozen": True}

    id: str
    action: str
    parameters: dict[str, Any] = Field(default_factory=dict)
    missing_fields: list[str] = Field(default_factory=list)
    prompt: str
    pending_action: str | None = Field(
        default=None,
        description="None while filling missing fields; otherwise a confirmation kind or a flow id",
    )
    flow_id: str | None = Field(default=None, description="Outer flow while a confirmation or sub-flow interrupts it")
    context: CommandContext = Field(default_factory=CommandContext)
    options: list[str] = Field(default_factory=list)

    current_step: int | None = None
    total_steps: int | None = None
    collected_data: dict[str, Any] = Field(default_factory=dict)

    in_sub_flow: bool = False
    sub_flow_type: str | None = None
    sub_flow_data: dict[str, Any] = Field(default_factory=dict)
    parent_step: int | None = None

    resume_action: str | None = None
    resume_params: dict[str, Any] = Field(default_factory=dict)

    created_at: float = 0.0
    expires_at: float | None = None

    @model_validator(mode="after")
    def _check_cursor(self) -> "PendingCommand":
        if (self.current_step is None) != (self.total_steps is None):
            raise ValueError("current_step and total_steps must be set together")
        if self.current_step is not None and not 1 <= self.current_step <= self.total_steps:
            raise ValueError(
                f"current_step {self.current_step} outside 1..{self.total_steps}"
            )
        if self.in_sub_flow:
            if not self.sub_flow_type or self.parent_step is None or not self.flow_id:
                raise ValueError("sub-flow requires sub_flow_type, parent_step and flow_id")
        elif self.sub_flow_data or self.parent_step is not None:
            raise ValueError("sub_flow_data/parent_step are only valid inside a sub-flow")
        return self

    @property
    def state(self) -> DialogueState:
        if self.in_sub_flow:
            return "IN_SUBFLOW"
        if self.pending_action is None:
            return "AWAITING_FIELDS"
        if self.current_step is not None and self.pending_action == self.flow_id:
            return "IN_FLOW"
        return "AWAITING_CONFIRMATION"

    def evolve(self, **changes: Any) -> "PendingCommand":
        """Validated copy with ``changes`` applied."""
        return type(self).model_validate({**self.model_dump(), **changes})

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at


def state_of(pending: PendingCommand | None) -> DialogueState:
    """Conceptual dialogue state for an optional Pending Command."""
    if pending is None:
        return "NEW"
    return pending.state
