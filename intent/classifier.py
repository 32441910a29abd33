"""
Intent Classifier — Stage 1 of command understanding.

Responsibility:
- Map one command (plus optional context) to exactly one supported action
- Never extract parameters here; that is the extractor's job
- Keep replies to a pending prompt on the pending action (location guard)
- Recover locally from unknown actions (fallback action, low confidence)
"""

import logging
import re
from typing import Any

from intent.normalization import normalize_confidence, normalize_reasoning
from models.selector import ModelSelector, build_tier_policies, escalation_threshold
from registry.action_registry import ACTION_REGISTRY, FALLBACK_ACTION, ActionRegistry
from shared.models import ClassificationContext, ClassificationResult, ModelPolicy

logger = logging.getLogger(__name__)

UNKNOWN_ACTION_CONFIDENCE = 0.3
SECONDARY_INPUT_CONFIDENCE = 0.9
LOCATION_FIELDS = frozenset({"location", "fromLocation", "toLocation"})

# One location token, optionally followed by more: "rack 1", "bin6", "rack 1 bin 6", "van".
_LOCATION_TOKEN = r"(?:rack\s*\d+|bin\s*\d+|shelf\s*[a-z]\d*|warehouse|van\s*\d*|storage)"
LOCATION_PATTERN = re.compile(rf"^{_LOCATION_TOKEN}(?:[\s,/-]+{_LOCATION_TOKEN})*$", re.IGNORECASE)


def looks_like_location(text: str) -> bool:
    return bool(LOCATION_PATTERN.match(text.strip().lower()))


def coerce_context(context: Any) -> str | ClassificationContext | None:
    """Accept free text, a ClassificationContext, or its dict form (camel or snake)."""
    if context is None or isinstance(context, (str, ClassificationContext)):
        return context or None
    if isinstance(context, dict):
        return ClassificationContext.model_validate(context)
    raise ValueError("context must be a string or an object with pendingAction/missingFields")


class IntentClassifier:
    """Classify user commands into supported actions via the model layer."""

    def __init__(
        self,
        model_selector: ModelSelector,
        registry: ActionRegistry = ACTION_REGISTRY,
        policies: list[ModelPolicy] | None = None,
        threshold: float | None = None,
    ):
        self.model_selector = model_selector
        self.registry = registry
        self.policies = policies or build_tier_policies(max_tokens=200)
        self.threshold = escalation_threshold() if threshold is None else threshold

    async def classify(
        self,
        command: str,
        context: str | ClassificationContext | dict | None = None,
        session_id: str | None = None,
    ) -> ClassificationResult:
        structured = coerce_context(context)
        messages = self._build_messages(command, structured)

        tier = await self.model_selector.generate_with_escalation(
            messages=messages,
            policies=self.policies,
            parse=self._classification_from_payload,
            confidence_of=lambda result: result.confidence,
            threshold=self.threshold,
            session_id=session_id,
        )
        result = tier.value.model_copy(update={"model": tier.model})
        logger.info("Classified '%s' as %s (confidence %.2f, model=%s)", command, result.action, result.confidence, tier.model)

        if isinstance(structured, ClassificationContext):
            result = self._apply_location_guard(command, structured, result)
        return self._apply_allow_list(result)

    # ─── Post-processing ──────────────────────────────────────

    def _apply_location_guard(
        self,
        command: str,
        context: ClassificationContext,
        result: ClassificationResult,
    ) -> ClassificationResult:
        pending_action = context.pending_action
        if not pending_action or not LOCATION_FIELDS.intersection(context.missing_fields):
            return result
        if not looks_like_location(command):
            return result
        logger.info("Secondary input detected: providing location for %s", pending_action)
        return result.model_copy(
            update={
                "action": pending_action,
                "confidence": SECONDARY_INPUT_CONFIDENCE,
                "reasoning": f"Secondary input providing missing location for {pending_action}",
            }
        )

    def _apply_allow_list(self, result: ClassificationResult) -> ClassificationResult:
        if self.registry.is_known(result.action):
            return result.model_copy(update={"action": self.registry.normalize(result.action)})
        logger.warning("Unknown action: %s, defaulting to %s", result.action, FALLBACK_ACTION)
        return result.model_copy(update={"action": FALLBACK_ACTION, "confidence": UNKNOWN_ACTION_CONFIDENCE})

    # ─── Payload parsing ──────────────────────────────────────

    def _classification_from_payload(self, payload: Any) -> ClassificationResult:
        if not isinstance(payload, dict):
            raise ValueError("Model returned non-dict JSON")
        action = payload.get("action")
        if not isinstance(action, str) or not action.strip():
            raise ValueError("Classification payload is missing 'action'")
        return ClassificationResult(
            action=action.strip(),
            confidence=normalize_confidence(payload.get("confidence")),
            reasoning=normalize_reasoning(payload.get("reasoning")),
        )

    # ─── Prompt ───────────────────────────────────────────────

    def _build_system_prompt(self) -> str:
        actions = "\n".join(f"- {name}" for name in self.registry.actions)
        return f"""You are an expert at classifying user commands for a Field Service & Inventory Management system.

Your ONLY job is to identify the action type from the user's command. Return ONLY a JSON object with:
- action: one of the supported actions (see list below)
- confidence: a number between 0 and 1
- reasoning: brief explanation

SUPPORTED ACTIONS:
{actions}

ACTION GUIDELINES:
{self.registry.render_action_guidelines()}

HANDLING SECONDARY INPUT (replies to a pending question):
When a pending action context lists missing fields, the user's input usually supplies those fields and is NOT a new command.
- If the pending action is missing a location, inputs like "rack 1", "bin 5", "shelf A1", "van" continue the pending action
- Only classify as a new action if the input clearly indicates a different intent

EXAMPLES:
{self.registry.render_classification_examples()}

Be confident when the intent is clear. Return lower confidence (<0.7) only when truly ambiguous."""

    def _build_messages(self, command: str, context: str | ClassificationContext | None) -> list[dict]:
        context_info = ""
        if isinstance(context, str):
            context_info = f"\n\nRecent context:\n{context}"
        elif isinstance(context, ClassificationContext) and (context.pending_action or context.missing_fields):
            missing = ", ".join(context.missing_fields) or "none"
            context_info = (
                "\n\nPending Action Context:\n"
                f"- Action: {context.pending_action or 'N/A'}\n"
                f"- Missing Fields: {missing}"
            )
        return [
            {"role": "system", "content": self._build_system_prompt()},
            {"role": "user", "content": f'Classify this command: "{command}"{context_info}'},
        ]
