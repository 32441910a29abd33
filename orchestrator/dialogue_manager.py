"""
Dialogue Manager — one user turn, start to finish.

Responsibility:
- Serialize turns per session (session lock) and drop expired Pending Commands
- Route text: new command → parser; AWAITING_FIELDS → slot filler;
  confirmation / flow / sub-flow → flow engine
- Dispatch completed actions (sub-flow side effects first)
- Store the resulting Pending Command and record the turn

Failure policy:
- Model failures and executor rejections become TurnOutcome(status="failed")
- When a dispatch fails while completing a dialogue, the pre-turn Pending
  Command is kept and its prompt re-emitted, unless the primary action or a
  side effect already took effect (replaying it would repeat the write)
- Reference data that cannot be loaded fails the turn and keeps the state
"""

import logging
import uuid
from typing import Any

from conversation.manager import ConversationManager
from dialogue.engine import FlowEngine, FlowOutcome, is_cancel
from dialogue.session import SessionStore
from dialogue.slot_filling import MissingFieldsResolver
from intent.parser import CommandParser, clarification_for
from observability.logger import Observability
from orchestrator.dispatcher import Dispatcher, DispatchResult
from registry.action_registry import ACTION_REGISTRY, ActionRegistry
from shared.dialogue_contracts import PendingCommand, state_of
from shared.errors import ModelNotConfiguredError, ModelUnavailableError, ReferenceDataUnavailableError
from shared.models import ActionOutcome, ActionRequest, ParsedCommand, TurnOutcome

logger = logging.getLogger(__name__)

EMPTY_INPUT_MESSAGE = "Please enter a command."
NOTHING_PENDING_MESSAGE = "Nothing to cancel."


def model_error_message(error: Exception) -> str:
    if isinstance(error, ModelNotConfiguredError):
        return f"The language model is not configured: {error}"
    return f"The language model is unavailable right now. Please try again. ({error})"


class DialogueManager:
    """Session-scoped turn routine over parser, slot filler, flow engine and dispatcher."""

    def __init__(
        self,
        parser: CommandParser,
        slot_filler: MissingFieldsResolver,
        engine: FlowEngine,
        dispatcher: Dispatcher,
        conversation: ConversationManager,
        sessions: SessionStore | None = None,
        registry: ActionRegistry = ACTION_REGISTRY,
    ):
        self.parser = parser
        self.slot_filler = slot_filler
        self.engine = engine
        self.dispatcher = dispatcher
        self.conversation = conversation
        self.sessions = sessions or SessionStore()
        self.registry = registry

    # ─── Public API ──────────────────────────────────────────

    async def handle_turn(self, session_id: str, text: str) -> TurnOutcome:
        session = self.sessions.get(session_id)
        async with session.lock:
            obs = Observability(session_id)
            pending = self.sessions.active_pending(session_id)
            obs.log_event(
                "turn_started",
                {"input": text, "state": state_of(pending)},
            )
            with obs.measure("turn"):
                outcome, action, parameters = await self._route(session_id, (text or "").strip(), pending, obs)

            if (text or "").strip():
                self.conversation.save_turn(
                    session_id,
                    command=text.strip(),
                    response=outcome.message or outcome.prompt or "",
                    action=action,
                    parameters=parameters,
                    success=outcome.status == "completed",
                )
            obs.log_event(
                "turn_completed",
                {
                    "status": outcome.status,
                    "action": action,
                    "state": state_of(outcome.pending),
                },
            )
            return outcome

    def pending(self, session_id: str) -> PendingCommand | None:
        return self.sessions.active_pending(session_id)

    async def cancel(self, session_id: str) -> bool:
        session = self.sessions.get(session_id)
        async with session.lock:
            return self.sessions.clear_pending(session_id)

    # ─── Routing ─────────────────────────────────────────────

    async def _route(
        self,
        session_id: str,
        text: str,
        pending: PendingCommand | None,
        obs: Observability,
    ) -> tuple[TurnOutcome, str | None, dict[str, Any]]:
        if not text:
            return self._reprompt(session_id, pending, "invalid", EMPTY_INPUT_MESSAGE), None, {}

        if pending is None:
            if is_cancel(text):
                return TurnOutcome(session_id=session_id, status="cancelled", message=NOTHING_PENDING_MESSAGE), None, {}
            return await self._new_command(session_id, text, obs)

        if is_cancel(text):
            self.sessions.clear_pending(session_id)
            logger.info("Session %s cancelled pending %s", session_id, pending.action)
            return TurnOutcome(session_id=session_id, status="cancelled", message="Command cancelled."), pending.action, {}

        if pending.pending_action is None:
            return await self._fill_fields(session_id, text, pending, obs)
        return await self._advance_flow(session_id, text, pending, obs)

    async def _new_command(
        self,
        session_id: str,
        text: str,
        obs: Observability,
    ) -> tuple[TurnOutcome, str | None, dict[str, Any]]:
        try:
            parsed = await self.parser.parse(
                text,
                self.conversation.get_context_summary(session_id),
                session_id=session_id,
            )
        except (ModelUnavailableError, ModelNotConfiguredError) as e:
            logger.error("Parse failed for session %s: %s", session_id, e)
            return TurnOutcome(session_id=session_id, status="failed", message=model_error_message(e)), None, {}

        parameters = self.conversation.resolve_contextual_references(
            session_id, text, parsed.action, parsed.parameters
        )
        missing = self.registry.missing_required(parsed.action, parameters)
        if missing:
            pending = self.sessions.save_pending(
                session_id,
                PendingCommand(
                    id=str(uuid.uuid4()),
                    action=parsed.action,
                    parameters=parameters,
                    missing_fields=missing,
                    prompt=clarification_for(missing),
                ),
            )
            return self._prompt(session_id, pending, parsed=parsed), parsed.action, parameters

        request = ActionRequest(action=parsed.action, parameters=parameters)
        result = await self.dispatcher.dispatch(request, session_id=session_id, trace_id=obs.trace_id)
        outcome = self._finish(session_id, result, fallback=None, parsed=parsed)
        return outcome, parsed.action, parameters

    async def _fill_fields(
        self,
        session_id: str,
        text: str,
        pending: PendingCommand,
        obs: Observability,
    ) -> tuple[TurnOutcome, str | None, dict[str, Any]]:
        try:
            slot = await self.slot_filler.resolve(pending, text, session_id=session_id)
        except (ModelUnavailableError, ModelNotConfiguredError) as e:
            logger.error("Slot filling failed for session %s: %s", session_id, e)
            return self._reprompt(session_id, pending, "failed", model_error_message(e)), pending.action, pending.parameters

        if slot.kind == "prompt":
            updated = self.sessions.save_pending(session_id, slot.pending)
            return self._prompt(session_id, updated, message=slot.message), pending.action, updated.parameters

        result = await self.dispatcher.dispatch(slot.request, session_id=session_id, trace_id=obs.trace_id)
        return self._finish(session_id, result, fallback=pending), slot.request.action, slot.request.parameters

    async def _advance_flow(
        self,
        session_id: str,
        text: str,
        pending: PendingCommand,
        obs: Observability,
    ) -> tuple[TurnOutcome, str | None, dict[str, Any]]:
        if not self.engine.handles(pending):
            self.sessions.clear_pending(session_id)
            message = f"Unsupported follow-up '{pending.pending_action}'. Please start again."
            return TurnOutcome(session_id=session_id, status="failed", message=message), pending.action, {}

        try:
            await self.engine.refresh_reference_data(pending)
            flow_outcome = self.engine.advance(pending, text)
        except ReferenceDataUnavailableError as e:
            logger.error("Reference data unavailable for session %s: %s", session_id, e)
            message = f"Could not check that right now. Please try again. ({e})"
            return self._reprompt(session_id, pending, "failed", message), pending.action, {}
        notices = list(flow_outcome.notices)

        if flow_outcome.kind == "cancelled":
            self.sessions.clear_pending(session_id)
            return (
                TurnOutcome(session_id=session_id, status="cancelled", message=flow_outcome.message),
                pending.action,
                {},
            )

        if flow_outcome.kind == "invalid":
            return self._reprompt(session_id, pending, "invalid", flow_outcome.message), pending.action, {}

        results: list[ActionOutcome] = []
        if flow_outcome.side_effect is not None:
            side = await self.dispatcher.dispatch(
                flow_outcome.side_effect,
                session_id=session_id,
                label="side_effect",
                trace_id=obs.trace_id,
            )
            results.extend(side.outcomes)
            if side.failed or side.pending is not None:
                logger.warning("Side effect %s failed; keeping pre-turn state", flow_outcome.side_effect.action)
                return (
                    self._reprompt(session_id, pending, "failed", side.message, results=results),
                    flow_outcome.side_effect.action,
                    flow_outcome.side_effect.parameters,
                )

        if flow_outcome.kind == "prompt":
            updated = self.sessions.save_pending(session_id, flow_outcome.pending)
            outcome = self._prompt(session_id, updated, notices=notices, results=results)
            return outcome, pending.action, {}

        return await self._complete_flow(session_id, pending, flow_outcome, notices, results, obs)

    async def _complete_flow(
        self,
        session_id: str,
        pending: PendingCommand,
        flow_outcome: FlowOutcome,
        notices: list[str],
        results: list[ActionOutcome],
        obs: Observability,
    ) -> tuple[TurnOutcome, str | None, dict[str, Any]]:
        request = flow_outcome.request
        result = await self.dispatcher.dispatch(request, session_id=session_id, trace_id=obs.trace_id)
        combined = DispatchResult(outcomes=results + result.outcomes, pending=result.pending)
        outcome = self._finish(session_id, combined, fallback=pending, notices=notices)
        return outcome, request.action, request.parameters

    # ─── Outcome builders ────────────────────────────────────

    def _finish(
        self,
        session_id: str,
        result: DispatchResult,
        fallback: PendingCommand | None,
        parsed: ParsedCommand | None = None,
        notices: list[str] | None = None,
    ) -> TurnOutcome:
        """Store the dispatch's follow-up dialogue, keep ``fallback`` on failure, or clear."""
        if result.pending is not None:
            if result.pending.pending_action and not self.engine.handles(result.pending):
                logger.error("Executor asked for unsupported follow-up %s", result.pending.pending_action)
                result = DispatchResult(
                    outcomes=result.outcomes
                    + [
                        ActionOutcome(
                            action=result.pending.action,
                            success=False,
                            message=f"Unsupported follow-up '{result.pending.pending_action}'",
                        )
                    ]
                )
            else:
                stored = self.sessions.save_pending(session_id, result.pending)
                return self._prompt(
                    session_id,
                    stored,
                    message=result.message,
                    notices=notices,
                    results=result.outcomes,
                    parsed=parsed,
                )

        if result.failed:
            if result.committed:
                logger.warning(
                    "Follow-on action failed after %s took effect; closing the dialogue",
                    ", ".join(o.action for o in result.outcomes if o.success),
                )
            elif fallback is not None:
                return self._reprompt(
                    session_id, fallback, "failed", result.message, results=result.outcomes, notices=notices
                )
            self.sessions.clear_pending(session_id)
            return TurnOutcome(
                session_id=session_id,
                status="failed",
                message=result.message,
                notices=notices or [],
                results=result.outcomes,
                parsed=parsed,
            )

        self.sessions.clear_pending(session_id)
        return TurnOutcome(
            session_id=session_id,
            status="completed",
            message=result.message,
            notices=notices or [],
            results=result.outcomes,
            parsed=parsed,
        )

    def _prompt(
        self,
        session_id: str,
        pending: PendingCommand,
        message: str = "",
        notices: list[str] | None = None,
        results: list[ActionOutcome] | None = None,
        parsed: ParsedCommand | None = None,
    ) -> TurnOutcome:
        return TurnOutcome(
            session_id=session_id,
            status="prompt",
            message=message,
            prompt=pending.prompt,
            options=list(pending.options),
            notices=notices or [],
            results=results or [],
            pending=pending,
            parsed=parsed,
        )

    def _reprompt(
        self,
        session_id: str,
        pending: PendingCommand | None,
        status: str,
        message: str,
        results: list[ActionOutcome] | None = None,
        notices: list[str] | None = None,
    ) -> TurnOutcome:
        """Same state, same prompt, plus a message. Refreshes the pending expiry."""
        stored = self.sessions.save_pending(session_id, pending) if pending is not None else None
        return TurnOutcome(
            session_id=session_id,
            status=status,
            message=message,
            prompt=stored.prompt if stored else None,
            options=list(stored.options) if stored else [],
            notices=notices or [],
            results=results or [],
            pending=stored,
        )
