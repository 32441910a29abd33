"""
Parameter Extractor — Stage 2 of command understanding.

Once the action is known, extract ONLY that action's parameters. The list
of missing required fields is recomputed from the action descriptor rather
than trusted from the model.
"""

import logging
from typing import Any

from intent.normalization import normalize_confidence
from models.selector import ModelSelector, build_tier_policies, escalation_threshold
from registry.action_registry import ACTION_REGISTRY, ActionRegistry
from shared.models import ActionDescriptor, ExtractionResult, ModelPolicy

logger = logging.getLogger(__name__)

UNKNOWN_ACTION_CONFIDENCE = 0.5


class ParameterExtractor:
    """Extract action parameters from free text via the model layer."""

    def __init__(
        self,
        model_selector: ModelSelector,
        registry: ActionRegistry = ACTION_REGISTRY,
        policies: list[ModelPolicy] | None = None,
        threshold: float | None = None,
    ):
        self.model_selector = model_selector
        self.registry = registry
        self.policies = policies or build_tier_policies(max_tokens=300)
        self.threshold = escalation_threshold() if threshold is None else threshold

    async def extract(
        self,
        command: str,
        action: str,
        context: str | None = None,
        session_id: str | None = None,
    ) -> ExtractionResult:
        descriptor = self.registry.get(action)
        if descriptor is None:
            logger.warning("Unknown action for extraction: %s", action)
            return ExtractionResult(parameters={}, missing_required=[], confidence=UNKNOWN_ACTION_CONFIDENCE)

        def parse(payload: Any) -> ExtractionResult:
            return self._extraction_from_payload(payload, descriptor)

        tier = await self.model_selector.generate_with_escalation(
            messages=self._build_messages(command, descriptor, context),
            policies=self.policies,
            parse=parse,
            confidence_of=lambda result: result.confidence,
            threshold=self.threshold,
            session_id=session_id,
        )
        result = tier.value.model_copy(update={"model": tier.model})
        logger.info(
            "Extracted %s for %s (missing: %s)",
            result.parameters,
            descriptor.name,
            ", ".join(result.missing_required) or "none",
        )
        return result

    def _extraction_from_payload(self, payload: Any, descriptor: ActionDescriptor) -> ExtractionResult:
        if not isinstance(payload, dict):
            raise ValueError("Model returned non-dict JSON")
        parameters = payload.get("parameters", {})
        if parameters is None:
            parameters = {}
        if not isinstance(parameters, dict):
            raise ValueError("Extraction payload 'parameters' must be an object")
        # Nulls carry no information and would otherwise mask "missing".
        parameters = {str(k): v for k, v in parameters.items() if v is not None}
        return ExtractionResult(
            parameters=parameters,
            missing_required=descriptor.missing_from(parameters),
            confidence=normalize_confidence(payload.get("confidence")),
        )

    def _build_system_prompt(self, descriptor: ActionDescriptor) -> str:
        required = ", ".join(descriptor.required) or "none"
        optional = ", ".join(descriptor.optional) or "none"
        return f"""You are an expert at extracting parameters from user commands for a {descriptor.name} action.

ACTION: {descriptor.name}
DESCRIPTION: {descriptor.description}

REQUIRED PARAMETERS: {required}
OPTIONAL PARAMETERS: {optional}

EXAMPLES:
{self.registry.render_extraction_examples(descriptor.name)}

Return ONLY a JSON object with:
- parameters: object with extracted parameter values (numbers for quantities and prices, strings for names)
- missingRequired: array of required parameter names that are missing
- confidence: number between 0 and 1 indicating extraction confidence

IMPORTANT:
- Extract exact values from the command; preserve item names and location identifiers as written
- If a required parameter is not mentioned, leave it out and list it in missingRequired
- Be confident (>0.8) when parameters are clearly stated"""

    def _build_messages(self, command: str, descriptor: ActionDescriptor, context: str | None) -> list[dict]:
        context_info = f"\n\nRecent context:\n{context}" if context else ""
        return [
            {"role": "system", "content": self._build_system_prompt(descriptor)},
            {
                "role": "user",
                "content": f'Extract parameters for {descriptor.name} from: "{command}"{context_info}',
            },
        ]
