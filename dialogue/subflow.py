"""
Sub-Flow Orchestrator — one level of nesting on top of an outer flow.

While a sub-flow runs, ``current_step``/``total_steps`` address the
sub-flow's steps and ``parent_step`` remembers the outer position. The
outer ``collected_data`` is carried untouched; sub-flow answers live in
``sub_flow_data`` and only leave it through the side effect on pop.
"""

import logging

from dialogue.flows import FLOWS, Flow
from shared.dialogue_contracts import PendingCommand
from shared.models import ActionRequest

logger = logging.getLogger(__name__)


def sub_flow_subject(pending: PendingCommand, outer: Flow) -> str:
    """The outer answer that triggered the sub-flow (e.g. the supplier name)."""
    position = pending.parent_step if pending.in_sub_flow else pending.current_step
    if position is None:
        return ""
    return str(pending.collected_data.get(outer.step(position).field) or "")


class SubFlowOrchestrator:
    def __init__(self, flows: dict[str, Flow] | None = None):
        self.flows = FLOWS if flows is None else flows

    def _flow(self, flow_id: str | None) -> Flow | None:
        return self.flows.get(flow_id or "")

    def push(self, pending: PendingCommand, sub_flow: Flow) -> PendingCommand:
        if pending.in_sub_flow:
            raise ValueError("Sub-flows do not nest more than one level")
        outer = self._flow(pending.flow_id)
        if outer is None or pending.current_step is None:
            raise ValueError("A sub-flow can only interrupt an active outer flow")

        subject = sub_flow_subject(pending, outer)
        first = sub_flow.step(1)
        logger.info("Pushing sub-flow %s at %s step %d", sub_flow.id, outer.id, pending.current_step)
        return pending.evolve(
            pending_action=outer.id,
            in_sub_flow=True,
            sub_flow_type=sub_flow.id,
            sub_flow_data={},
            parent_step=pending.current_step,
            current_step=1,
            total_steps=sub_flow.total_steps,
            prompt=first.prompt(subject),
            options=["Skip"] if first.optional else [],
        )

    def pop(self, pending: PendingCommand) -> tuple[PendingCommand, ActionRequest]:
        """Restore the outer flow at ``parent_step`` and build the sub-flow's side effect."""
        if not pending.in_sub_flow:
            raise ValueError("No active sub-flow to pop")
        outer = self._flow(pending.flow_id)
        sub_flow = self._flow(pending.sub_flow_type)
        if outer is None or sub_flow is None:
            raise ValueError(f"Unknown flow ids {pending.flow_id}/{pending.sub_flow_type}")

        subject = sub_flow_subject(pending, outer)
        side_effect = ActionRequest(
            action=sub_flow.action,
            parameters={"name": subject, **pending.sub_flow_data},
        )
        restored = pending.evolve(
            pending_action=outer.id,
            in_sub_flow=False,
            sub_flow_type=None,
            sub_flow_data={},
            parent_step=None,
            current_step=pending.parent_step,
            total_steps=outer.total_steps,
            options=[],
        )
        logger.info("Popped sub-flow %s back to %s step %d", sub_flow.id, outer.id, restored.current_step)
        return restored, side_effect
