from __future__ import annotations

import asyncio

import pytest

from intent.extractor import ParameterExtractor
from models.selector import TierResult
from shared.models import ModelPolicy


class DummySelector:
    def __init__(self, payload, model: str = "grok-3-mini"):
        self.payload = payload
        self.model = model
        self.messages: list[dict] = []
        self.calls = 0

    async def generate_with_escalation(self, messages, policies, parse, confidence_of, threshold, session_id=None):
        self.calls += 1
        self.messages = messages
        value = parse(self.payload)
        return TierResult(value=value, model=self.model, confidence=confidence_of(value), escalated=False)


def _extractor(selector: DummySelector) -> ParameterExtractor:
    return ParameterExtractor(selector, policies=[ModelPolicy(model_name="grok-3-mini")], threshold=0.75)


def test_extract_returns_parameters_and_recomputes_missing_required():
    selector = DummySelector(
        {
            "parameters": {"item": "M10 nuts", "quantity": 5},
            # The model's own list is not trusted.
            "missingRequired": [],
            "confidence": 0.9,
        }
    )
    result = asyncio.run(_extractor(selector).extract("add 5 M10 nuts", "ADD_STOCK"))
    assert result.parameters == {"item": "M10 nuts", "quantity": 5}
    assert result.missing_required == ["location"]
    assert result.confidence == 0.9
    assert result.model == "grok-3-mini"


def test_null_parameters_are_dropped_and_reported_missing():
    selector = DummySelector({"parameters": {"item": "bearings", "quantity": None, "location": None}, "confidence": 0.85})
    result = asyncio.run(_extractor(selector).extract("add bearings", "ADD_STOCK"))
    assert result.parameters == {"item": "bearings"}
    assert result.missing_required == ["quantity", "location"]


def test_unknown_action_returns_empty_result_without_model_call():
    selector = DummySelector({"parameters": {"x": 1}, "confidence": 0.9})
    result = asyncio.run(_extractor(selector).extract("do something", "FLY_TO_MOON"))
    assert result.parameters == {}
    assert result.missing_required == []
    assert result.confidence == 0.5
    assert selector.calls == 0


def test_prompt_names_required_and_optional_parameters_and_context():
    selector = DummySelector({"parameters": {}, "confidence": 0.5})
    asyncio.run(_extractor(selector).extract("move 10 bolts", "TRANSFER_STOCK", context="Last location: van"))
    system = selector.messages[0]["content"]
    user = selector.messages[-1]["content"]
    assert "REQUIRED PARAMETERS: item, quantity, fromLocation, toLocation" in system
    assert 'Extract parameters for TRANSFER_STOCK from: "move 10 bolts"' in user
    assert "Recent context:\nLast location: van" in user


def test_invalid_confidence_is_normalized():
    selector = DummySelector({"parameters": {"search": "nuts"}, "confidence": "very"})
    result = asyncio.run(_extractor(selector).extract("find nuts", "SEARCH_STOCK"))
    assert result.confidence == 0.5
    assert result.missing_required == []


def test_non_object_parameters_are_malformed():
    selector = DummySelector({"parameters": ["item"], "confidence": 0.9})
    with pytest.raises(ValueError):
        asyncio.run(_extractor(selector).extract("add nuts", "ADD_STOCK"))
