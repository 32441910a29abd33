"""
Dispatcher — the single seam between dialogue and execution.

Responsibility:
- Call the executor with a fully resolved ActionRequest
- Turn executor exceptions into failure outcomes (never raise)
- Turn "needs input" results into a new Pending Command
- Chain a resume action after success, reported as a second outcome
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from execution.executor import CommandExecutor
from observability.logger import Observability
from shared.dialogue_contracts import CommandContext, PendingCommand
from shared.models import ActionOutcome, ActionRequest, ExecutorResult, OutcomeLabel

logger = logging.getLogger(__name__)

RESUME_KEYS = ("resumeAction", "resumeParams")
DEFAULT_CONFIRMATION_OPTIONS = ["Yes", "No"]


@dataclass
class DispatchResult:
    outcomes: list[ActionOutcome] = field(default_factory=list)
    pending: PendingCommand | None = None

    @property
    def failed(self) -> bool:
        return any(not o.success for o in self.outcomes) and self.pending is None

    @property
    def committed(self) -> bool:
        """True once a primary action or side effect has taken effect in the executor."""
        return any(o.success and o.label in ("primary", "side_effect") for o in self.outcomes)

    @property
    def message(self) -> str:
        return "\n".join(o.message for o in self.outcomes if o.message)


def split_resume(request: ActionRequest) -> tuple[dict[str, Any], str | None, dict[str, Any]]:
    """Strip resume keys out of the parameters; the request's own fields win."""
    parameters = {k: v for k, v in request.parameters.items() if k not in RESUME_KEYS}
    resume_action = request.resume_action or request.parameters.get("resumeAction")
    resume_params = request.resume_params or request.parameters.get("resumeParams") or {}
    if not isinstance(resume_params, dict):
        resume_params = {}
    return parameters, resume_action, dict(resume_params)


class Dispatcher:
    """Execute ActionRequests and normalize executor results."""

    def __init__(self, executor: CommandExecutor):
        self.executor = executor

    async def dispatch(
        self,
        request: ActionRequest,
        session_id: str | None = None,
        label: OutcomeLabel = "primary",
        trace_id: str | None = None,
    ) -> DispatchResult:
        obs = Observability(session_id, trace_id=trace_id).bind(action=request.action, label=label)
        parameters, resume_action, resume_params = split_resume(request)

        result = await self._execute(request.action, parameters, obs)
        outcome = ActionOutcome(
            action=request.action,
            label=label,
            success=result.success,
            message=result.message,
            data=result.data,
        )

        if result.needs_input:
            try:
                pending = self._pending_from(request.action, parameters, result, resume_action, resume_params)
            except ValidationError as e:
                logger.error("Executor returned an invalid dialogue context for %s: %s", request.action, e)
                return DispatchResult(
                    outcomes=[outcome.model_copy(update={"success": False, "message": f"Invalid executor context: {e}"})]
                )
            obs.log_event("dispatch_needs_input", {"pending_action": pending.pending_action})
            return DispatchResult(outcomes=[outcome], pending=pending)

        outcomes = [outcome]
        if result.success and resume_action:
            logger.info("Resuming %s after %s", resume_action, request.action)
            resumed = await self.dispatch(
                ActionRequest(action=resume_action, parameters=resume_params),
                session_id=session_id,
                label="resumed",
                trace_id=obs.trace_id,
            )
            outcomes.extend(resumed.outcomes)
            return DispatchResult(outcomes=outcomes, pending=resumed.pending)
        return DispatchResult(outcomes=outcomes)

    async def _execute(self, action: str, parameters: dict[str, Any], obs: Observability) -> ExecutorResult:
        try:
            with obs.measure("dispatch"):
                return await self.executor.execute(action, parameters)
        except Exception as e:
            logger.exception("Executor raised for %s", action)
            return ExecutorResult(success=False, message=f"Failed to execute {action}: {e}")

    def _pending_from(
        self,
        action: str,
        parameters: dict[str, Any],
        result: ExecutorResult,
        resume_action: str | None,
        resume_params: dict[str, Any],
    ) -> PendingCommand:
        context = CommandContext.model_validate(result.context or {})
        options = list(result.options)
        if result.pending_action and not options:
            options = list(DEFAULT_CONFIRMATION_OPTIONS)
        return PendingCommand(
            id=str(uuid.uuid4()),
            action=action,
            parameters=parameters,
            missing_fields=list(result.missing_fields),
            prompt=result.prompt or result.message or f"More information is needed for {action}.",
            pending_action=result.pending_action,
            context=context,
            options=options,
            resume_action=context.resume_action or resume_action,
            resume_params=dict(context.resume_params or resume_params),
        )
