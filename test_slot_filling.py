from __future__ import annotations

import asyncio

import pytest

from dialogue.slot_filling import MissingFieldsResolver, coerce_number
from shared.dialogue_contracts import PendingCommand
from shared.models import ExtractionResult


class EmptyExtractor:
    async def extract(self, command, action, context=None, session_id=None):
        return ExtractionResult(parameters={}, confidence=0.9)


@pytest.mark.parametrize(
    "text, expected",
    [("5", 5), ("2.5", 2.5), ("1,200", 1200), (" 0 ", 0)],
)
def test_coerce_number_accepts_plain_non_negative_numbers(text, expected):
    assert coerce_number(text) == expected


@pytest.mark.parametrize("text", ["inf", "-inf", "Infinity", "1e400", "nan", "-1", "five", ""])
def test_coerce_number_rejects_non_finite_negative_and_text(text):
    assert coerce_number(text) is None


def test_bare_reply_fills_the_single_missing_quantity():
    pending = PendingCommand(
        id="p1",
        action="REMOVE_STOCK",
        parameters={"item": "filters", "location": "van"},
        missing_fields=["quantity"],
        prompt="How many?",
    )
    resolver = MissingFieldsResolver(EmptyExtractor())

    rejected = asyncio.run(resolver.resolve(pending, "inf"))
    assert rejected.kind == "prompt"
    assert rejected.message == "Please enter a number for quantity."
    assert rejected.pending.missing_fields == ["quantity"]

    filled = asyncio.run(resolver.resolve(pending, "2"))
    assert filled.kind == "complete"
    assert filled.request.parameters == {"item": "filters", "location": "van", "quantity": 2}
