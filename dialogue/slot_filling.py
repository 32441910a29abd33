"""
Missing-fields resolver for the AWAITING_FIELDS state.

The reply is re-extracted against the pending action and merged over the
parameters collected so far. When exactly one field is missing and the
model did not fill it, the bare reply is taken as that field's value.
"""

import json
import logging
import math
from dataclasses import dataclass
from typing import Any, Literal

from intent.extractor import ParameterExtractor
from intent.parser import clarification_for
from registry.action_registry import ACTION_REGISTRY, NUMERIC_PARAMETERS, ActionRegistry
from shared.dialogue_contracts import PendingCommand
from shared.errors import ModelUnavailableError
from shared.models import ActionRequest

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SlotOutcome:
    kind: Literal["prompt", "complete"]
    pending: PendingCommand | None = None
    request: ActionRequest | None = None
    message: str = ""


def coerce_number(text: str) -> int | float | None:
    cleaned = text.strip().replace(",", "")
    try:
        value = float(cleaned)
    except ValueError:
        return None
    if not math.isfinite(value) or value < 0:
        return None
    return int(value) if value.is_integer() else value


def missing_fields_context(pending: PendingCommand) -> str:
    return (
        f"Pending action: {pending.action}\n"
        f"Known parameters: {json.dumps(pending.parameters, default=str)}\n"
        f"Missing fields: {', '.join(pending.missing_fields)}\n"
        "The user's reply supplies the missing fields."
    )


class MissingFieldsResolver:
    def __init__(self, extractor: ParameterExtractor, registry: ActionRegistry = ACTION_REGISTRY):
        self.extractor = extractor
        self.registry = registry

    async def resolve(self, pending: PendingCommand, reply: str, session_id: str | None = None) -> SlotOutcome:
        extracted: dict[str, Any] = {}
        try:
            extraction = await self.extractor.extract(
                reply,
                pending.action,
                missing_fields_context(pending),
                session_id=session_id,
            )
            extracted = extraction.parameters
        except ModelUnavailableError:
            # A single gap can still be filled from the bare reply.
            if len(pending.missing_fields) != 1:
                raise
            logger.warning("Extraction unavailable; filling %s from the bare reply", pending.missing_fields[0])

        parameters = {**pending.parameters, **extracted}
        message = ""
        if len(pending.missing_fields) == 1:
            field_name = pending.missing_fields[0]
            if self._is_blank(parameters.get(field_name)) and reply.strip():
                if field_name in NUMERIC_PARAMETERS:
                    number = coerce_number(reply)
                    if number is None:
                        message = f"Please enter a number for {field_name}."
                    else:
                        parameters[field_name] = number
                else:
                    parameters[field_name] = reply.strip()

        missing = self.registry.missing_required(pending.action, parameters)
        if not missing:
            logger.info("All required fields collected for %s", pending.action)
            return SlotOutcome(
                kind="complete",
                request=ActionRequest(
                    action=pending.action,
                    parameters=parameters,
                    resume_action=pending.resume_action,
                    resume_params=dict(pending.resume_params),
                ),
            )

        return SlotOutcome(
            kind="prompt",
            pending=pending.evolve(
                parameters=parameters,
                missing_fields=missing,
                prompt=clarification_for(missing),
            ),
            message=message,
        )

    @staticmethod
    def _is_blank(value: Any) -> bool:
        return value is None or (isinstance(value, str) and not value.strip())
