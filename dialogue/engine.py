"""
Flow Engine — advances a Pending Command by one user reply.

Responsibility:
- Resolve the handler for the Pending Command by table lookup on ``pending_action``
- Parse the reply for the current step, store it, run dependency checks
- Move to the next unfilled step, or finish with an ActionRequest

The engine is pure: same (pending, reply) and same reference data give the
same outcome. Reference data is loaded up front (``refresh_reference_data``)
so ``advance`` never waits on I/O. It never executes anything; completed actions and sub-flow
side effects are returned to the caller for dispatch.
"""

import logging
from dataclasses import dataclass
from typing import Literal, Protocol

from dialogue.flows import (
    DEPENDENCIES,
    FLOWS,
    SKIP_KEYWORD,
    DependencyRule,
    Flow,
    ReferenceData,
    StepValidationError,
)
from dialogue.subflow import SubFlowOrchestrator, sub_flow_subject
from shared.dialogue_contracts import PendingCommand
from shared.errors import ReferenceDataUnavailableError
from shared.models import ActionRequest

logger = logging.getLogger(__name__)

CANCEL_KEYWORD = "cancel"
YES_REPLIES = frozenset({"yes", "y", "yeah", "yep", "ok", "okay", "sure", "confirm"})
NO_REPLIES = frozenset({"no", "n", "nope", "no/skip", "skip"})

CANCELLED_MESSAGE = "Command cancelled."
AMBIGUOUS_MESSAGE = 'Please reply "Yes" or "No" (or type "cancel").'
REQUIRED_MESSAGE = "This field is required and cannot be skipped."

OutcomeKind = Literal["prompt", "invalid", "cancelled", "complete"]


@dataclass(frozen=True)
class FlowOutcome:
    kind: OutcomeKind
    pending: PendingCommand | None = None
    message: str = ""
    notices: tuple[str, ...] = ()
    request: ActionRequest | None = None
    side_effect: ActionRequest | None = None


def normalize_reply(reply: str) -> str:
    return " ".join((reply or "").strip().lower().split())


def is_cancel(reply: str) -> bool:
    return normalize_reply(reply) == CANCEL_KEYWORD


def is_yes(reply: str) -> bool:
    return normalize_reply(reply).rstrip(".!") in YES_REPLIES


def is_no(reply: str) -> bool:
    return normalize_reply(reply).rstrip(".!") in NO_REPLIES


def subject_hint(pending: PendingCommand) -> str:
    hint = pending.context.hint()
    if hint:
        return hint
    for key in ("item", "name", "partNumber", "customerName", "supplierName"):
        value = pending.parameters.get(key)
        if value:
            return str(value)
    return ""


class StepHandler(Protocol):
    def advance(self, engine: "FlowEngine", pending: PendingCommand, reply: str) -> FlowOutcome: ...


# ─── Handlers ─────────────────────────────────────────────────

@dataclass(frozen=True)
class StartFlowConfirmation:
    """Yes enters ``flow``; No cancels, or dispatches ``decline_action`` with the known fields."""

    flow: str
    decline_action: str | None = None

    def advance(self, engine: "FlowEngine", pending: PendingCommand, reply: str) -> FlowOutcome:
        if is_yes(reply):
            flow = engine.flows[self.flow]
            known = pending.context.to_parameters()
            seeded = {name: known[name] for name in flow.field_names if name in known}
            entered = pending.evolve(
                pending_action=flow.id,
                flow_id=flow.id,
                collected_data=seeded,
                current_step=None,
                total_steps=None,
            )
            return engine.continue_from(entered, flow, 0)
        if is_no(reply):
            if self.decline_action is None:
                return FlowOutcome(kind="cancelled", message=CANCELLED_MESSAGE)
            return FlowOutcome(
                kind="complete",
                request=engine.build_request(pending, self.decline_action, {}),
            )
        return engine.ambiguous(pending)


@dataclass(frozen=True)
class DependencyConfirmation:
    """Yes pushes the dependency's sub-flow; No/Skip continues the outer flow."""

    rule: DependencyRule

    def advance(self, engine: "FlowEngine", pending: PendingCommand, reply: str) -> FlowOutcome:
        outer = engine.flows[pending.flow_id]
        if is_yes(reply):
            sub_flow = engine.flows[self.rule.sub_flow]
            return FlowOutcome(kind="prompt", pending=engine.subflows.push(pending, sub_flow))
        if is_no(reply):
            resumed = pending.evolve(pending_action=outer.id)
            return engine.continue_from(resumed, outer, pending.current_step)
        return engine.ambiguous(pending)


class FlowStepHandler:
    """Collect one field for the active flow (outer or sub-flow)."""

    def advance(self, engine: "FlowEngine", pending: PendingCommand, reply: str) -> FlowOutcome:
        flow = engine.active_flow(pending)
        step = flow.step(pending.current_step)
        text = (reply or "").strip()

        notices: list[str] = []
        value = None
        if normalize_reply(text) in (SKIP_KEYWORD, ""):
            if not step.optional:
                return FlowOutcome(kind="invalid", pending=pending, message=REQUIRED_MESSAGE)
            if step.skip_text:
                notices.append(step.skip_text)
        else:
            try:
                value = step.parser(text)
            except StepValidationError as e:
                return FlowOutcome(kind="invalid", pending=pending, message=str(e))

        data = dict(pending.sub_flow_data if pending.in_sub_flow else pending.collected_data)
        if value is not None:
            data[step.field] = value
        updated = pending.evolve(**{"sub_flow_data" if pending.in_sub_flow else "collected_data": data})

        if value is not None and step.dependency:
            rule = engine.dependencies[step.dependency]
            if not engine.dependency_exists(rule, value):
                logger.info("Dependency '%s' missing for %r; asking to create it", step.dependency, value)
                return FlowOutcome(
                    kind="prompt",
                    pending=updated.evolve(
                        pending_action=rule.confirmation,
                        prompt=rule.prompt(str(value)),
                        options=["Yes", "No/Skip"],
                    ),
                    notices=tuple(notices),
                )

        if updated.in_sub_flow:
            return engine.continue_sub_flow(updated, flow, notices)
        return engine.continue_from(updated, flow, updated.current_step, notices)


# ─── Engine ───────────────────────────────────────────────────

class FlowEngine:
    """Deterministic interpreter over the flow definition table."""

    def __init__(
        self,
        reference_data: ReferenceData,
        flows: dict[str, Flow] | None = None,
        dependencies: dict[str, DependencyRule] | None = None,
    ):
        self.reference_data = reference_data
        self.flows = dict(FLOWS if flows is None else flows)
        self.dependencies = dict(DEPENDENCIES if dependencies is None else dependencies)
        self.subflows = SubFlowOrchestrator(self.flows)

        step_handler = FlowStepHandler()
        self.handlers: dict[str, StepHandler] = {
            "CONFIRM_CREATE_CATALOGUE_ITEM": StartFlowConfirmation("CREATE_CATALOGUE_ITEM_AND_ADD_STOCK"),
            "CONFIRM_CATALOGUE_DETAILS": StartFlowConfirmation(
                "CREATE_CATALOGUE_ITEM_WITH_DETAILS",
                decline_action="CREATE_CATALOGUE_ITEM_WITH_DETAILS",
            ),
            "CONFIRM_CREATE_CUSTOMER": StartFlowConfirmation("CUSTOMER_DETAILS"),
        }
        for rule in self.dependencies.values():
            self.handlers[rule.confirmation] = DependencyConfirmation(rule)
        for flow in self.flows.values():
            if not flow.sub_flow:
                self.handlers[flow.id] = step_handler

    def handles(self, pending: PendingCommand | None) -> bool:
        return pending is not None and pending.pending_action in self.handlers

    def needs_reference_data(self, pending: PendingCommand) -> bool:
        """True when the reply will be checked against a dependency (e.g. a supplier name)."""
        if not isinstance(self.handlers.get(pending.pending_action or ""), FlowStepHandler):
            return False
        if pending.current_step is None:
            return False
        return self.active_flow(pending).step(pending.current_step).dependency is not None

    async def refresh_reference_data(self, pending: PendingCommand) -> None:
        if self.needs_reference_data(pending):
            await self.reference_data.refresh()

    def advance(self, pending: PendingCommand, reply: str) -> FlowOutcome:
        if is_cancel(reply):
            return FlowOutcome(kind="cancelled", message=CANCELLED_MESSAGE)
        handler = self.handlers.get(pending.pending_action or "")
        if handler is None:
            raise ValueError(f"No flow handler for pending action {pending.pending_action!r}")
        return handler.advance(self, pending, reply)

    # ─── Shared transitions ──────────────────────────────────

    def active_flow(self, pending: PendingCommand) -> Flow:
        flow_id = pending.sub_flow_type if pending.in_sub_flow else pending.pending_action
        flow = self.flows.get(flow_id or "")
        if flow is None:
            raise ValueError(f"Unknown flow {flow_id!r}")
        return flow

    def continue_from(
        self,
        pending: PendingCommand,
        flow: Flow,
        position: int,
        notices: list[str] | tuple[str, ...] = (),
    ) -> FlowOutcome:
        """Prompt for the first unfilled step after ``position``, or complete the flow."""
        next_position = flow.next_unfilled(position, pending.collected_data)
        if next_position is None:
            logger.info("Flow %s complete", flow.id)
            return FlowOutcome(
                kind="complete",
                notices=tuple(notices),
                request=self.build_request(pending, flow.action, pending.collected_data),
            )
        step = flow.step(next_position)
        return FlowOutcome(
            kind="prompt",
            pending=pending.evolve(
                pending_action=flow.id,
                flow_id=flow.id,
                current_step=next_position,
                total_steps=flow.total_steps,
                prompt=step.prompt(subject_hint(pending)),
                options=["Skip"] if step.optional else [],
            ),
            notices=tuple(notices),
        )

    def continue_sub_flow(self, pending: PendingCommand, sub_flow: Flow, notices: list[str]) -> FlowOutcome:
        next_position = sub_flow.next_unfilled(pending.current_step, pending.sub_flow_data)
        if next_position is not None:
            outer = self.flows[pending.flow_id]
            step = sub_flow.step(next_position)
            return FlowOutcome(
                kind="prompt",
                pending=pending.evolve(
                    current_step=next_position,
                    prompt=step.prompt(sub_flow_subject(pending, outer)),
                    options=["Skip"] if step.optional else [],
                ),
                notices=tuple(notices),
            )

        restored, side_effect = self.subflows.pop(pending)
        outer = self.flows[restored.flow_id]
        outcome = self.continue_from(restored, outer, restored.current_step, notices)
        return FlowOutcome(
            kind=outcome.kind,
            pending=outcome.pending,
            notices=outcome.notices,
            request=outcome.request,
            side_effect=side_effect,
        )

    def build_request(self, pending: PendingCommand, action: str, collected: dict) -> ActionRequest:
        """Parameters of the interrupted command only carry over when the flow completes that same action."""
        seed = pending.parameters if action == pending.action else {}
        parameters = {**seed, **pending.context.to_parameters(), **collected}
        resume_action = pending.resume_action or pending.context.resume_action
        resume_params = pending.resume_params or pending.context.resume_params
        return ActionRequest(
            action=action,
            parameters=parameters,
            resume_action=resume_action,
            resume_params=dict(resume_params or {}),
        )

    def dependency_exists(self, rule: DependencyRule, value) -> bool:
        try:
            return rule.exists(value, self.reference_data)
        except ReferenceDataUnavailableError:
            raise
        except Exception as e:
            logger.error("Reference lookup for %s failed: %r", rule.sub_flow, e)
            raise ReferenceDataUnavailableError(f"Could not check {value!r}: {e}") from e

    def ambiguous(self, pending: PendingCommand) -> FlowOutcome:
        return FlowOutcome(kind="invalid", pending=pending, message=AMBIGUOUS_MESSAGE)
