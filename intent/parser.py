"""
Command Parser — two-stage pipeline behind ``parse-command``.

classify → (regex fallback on low confidence) → extract → search override
→ combined confidence and clarification text.

Model failures are not masked: when both tiers fail the
``ModelUnavailableError`` propagates to the caller.
"""

import logging
import time
from typing import Any

from intent.classifier import IntentClassifier
from intent.extractor import ParameterExtractor
from intent.fallback_parser import try_fallback_parse
from registry.action_registry import ACTION_REGISTRY, ActionRegistry
from shared.models import ClassificationContext, ParsedCommand

logger = logging.getLogger(__name__)

LOW_CONFIDENCE_THRESHOLD = 0.6
LOW_INTENT_THRESHOLD = 0.65
PARAM_OVERRIDE_THRESHOLD = 0.8

STOCK_KEYWORDS = ("stock", "inventory", "available")
FALLBACK_MODEL_LABEL = "regex-fallback"


def extract_search_term(parameters: dict[str, Any]) -> str | None:
    for key in ("search", "query", "searchTerm", "q"):
        value = parameters.get(key)
        if value:
            return str(value)
    return None


def clarification_for(missing: list[str]) -> str | None:
    if not missing:
        return None
    return f"Missing required information: {', '.join(missing)}. Please provide these details."


class CommandParser:
    """Combine classifier and extractor into one interpretation."""

    def __init__(
        self,
        classifier: IntentClassifier,
        extractor: ParameterExtractor,
        registry: ActionRegistry = ACTION_REGISTRY,
    ):
        self.classifier = classifier
        self.extractor = extractor
        self.registry = registry

    async def parse(
        self,
        command: str,
        context: str | ClassificationContext | dict | None = None,
        session_id: str | None = None,
    ) -> ParsedCommand:
        started = time.perf_counter()

        classification = await self.classifier.classify(command, context, session_id=session_id)

        if classification.confidence < LOW_CONFIDENCE_THRESHOLD:
            fallback = try_fallback_parse(command)
            if fallback and fallback.confidence > classification.confidence:
                logger.info("Low confidence (%.2f); regex fallback matched %s", classification.confidence, fallback.action)
                missing = self.registry.missing_required(fallback.action, fallback.parameters)
                return ParsedCommand(
                    action=fallback.action,
                    parameters=fallback.parameters,
                    confidence=fallback.confidence,
                    reasoning="Local regex fallback",
                    missing_required=missing,
                    clarification_needed=clarification_for(missing),
                    model=FALLBACK_MODEL_LABEL,
                    latency_ms=self._elapsed_ms(started),
                    debug={
                        "stage1": classification.model_dump(),
                        "usedFallback": True,
                    },
                )

        action = self.registry.normalize(classification.action)
        extraction_context = context if isinstance(context, str) else None
        extraction = await self.extractor.extract(command, action, extraction_context, session_id=session_id)
        parameters = dict(extraction.parameters)

        final_action = action
        override_reasoning = ""
        search_term = extract_search_term(parameters)
        if (
            classification.confidence < LOW_INTENT_THRESHOLD
            and extraction.confidence >= PARAM_OVERRIDE_THRESHOLD
            and search_term
        ):
            lowered = command.lower()
            if parameters.get("queryType") == "stock" or any(k in lowered for k in STOCK_KEYWORDS):
                final_action = "SEARCH_STOCK"
                override_reasoning = (
                    f"Overridden to SEARCH_STOCK due to high-confidence search parameter "
                    f"({extraction.confidence}) and stock context"
                )
            else:
                final_action = "SEARCH_CATALOGUE"
                override_reasoning = (
                    f"Overridden to SEARCH_CATALOGUE due to high-confidence search parameter ({extraction.confidence})"
                )
            logger.info("Search override: %s -> %s (search=%r)", action, final_action, search_term)

        missing = (
            self.registry.missing_required(final_action, parameters)
            if final_action != action
            else list(extraction.missing_required)
        )
        reasoning = (
            override_reasoning
            or classification.reasoning
            or f"Classified as {final_action} with {len(parameters)} parameters"
        )

        return ParsedCommand(
            action=final_action,
            parameters=parameters,
            confidence=min(classification.confidence, extraction.confidence),
            reasoning=reasoning,
            missing_required=missing,
            clarification_needed=clarification_for(missing),
            model=extraction.model or classification.model,
            latency_ms=self._elapsed_ms(started),
            debug={
                "stage1": classification.model_dump(),
                "stage2": extraction.model_dump(),
                "usedOverride": bool(override_reasoning),
            },
        )

    @staticmethod
    def _elapsed_ms(started: float) -> float:
        return round((time.perf_counter() - started) * 1000, 2)
