from __future__ import annotations

import asyncio

import pytest

from intent.parser import CommandParser, clarification_for, extract_search_term
from shared.errors import ModelUnavailableError
from shared.models import ClassificationResult, ExtractionResult


class DummyClassifier:
    def __init__(self, result: ClassificationResult | None = None, error: Exception | None = None):
        self.result = result
        self.error = error
        self.calls: list[tuple] = []

    async def classify(self, command, context=None, session_id=None):
        self.calls.append((command, context))
        if self.error is not None:
            raise self.error
        return self.result


class DummyExtractor:
    def __init__(self, result: ExtractionResult):
        self.result = result
        self.calls: list[tuple] = []

    async def extract(self, command, action, context=None, session_id=None):
        self.calls.append((command, action, context))
        return self.result


def _parser(classification: ClassificationResult, extraction: ExtractionResult):
    classifier = DummyClassifier(classification)
    extractor = DummyExtractor(extraction)
    return CommandParser(classifier, extractor), classifier, extractor


def test_confidence_is_minimum_of_both_stages():
    parser, _, extractor = _parser(
        ClassificationResult(action="ADD_STOCK", confidence=0.95, reasoning="adding", model="grok-3-mini"),
        ExtractionResult(
            parameters={"item": "M10 nuts", "quantity": 5, "location": "rack 1 bin 6"},
            confidence=0.8,
            model="grok-3-mini",
        ),
    )
    parsed = asyncio.run(parser.parse("add 5 M10 nuts to rack 1 bin 6"))
    assert parsed.action == "ADD_STOCK"
    assert parsed.confidence == 0.8
    assert parsed.reasoning == "adding"
    assert parsed.missing_required == []
    assert parsed.clarification_needed is None
    assert parsed.model == "grok-3-mini"
    assert parsed.latency_ms is not None
    assert extractor.calls[0][1] == "ADD_STOCK"


def test_missing_fields_produce_clarification_text():
    parser, _, _ = _parser(
        ClassificationResult(action="ADD_STOCK", confidence=0.9),
        ExtractionResult(parameters={"item": "M10 nuts"}, missing_required=["quantity", "location"], confidence=0.9),
    )
    parsed = asyncio.run(parser.parse("add M10 nuts"))
    assert parsed.missing_required == ["quantity", "location"]
    assert parsed.clarification_needed == (
        "Missing required information: quantity, location. Please provide these details."
    )


def test_search_override_to_stock_when_intent_is_weak():
    parser, _, _ = _parser(
        ClassificationResult(action="QUERY_INVENTORY", confidence=0.62),
        ExtractionResult(parameters={"search": "bearings"}, confidence=0.85),
    )
    parsed = asyncio.run(parser.parse("bearings in stock?"))
    assert parsed.action == "SEARCH_STOCK"
    assert parsed.reasoning.startswith("Overridden to SEARCH_STOCK")
    assert parsed.debug["usedOverride"] is True


def test_search_override_to_catalogue_without_stock_keywords():
    parser, _, _ = _parser(
        ClassificationResult(action="QUERY_INVENTORY", confidence=0.62),
        ExtractionResult(parameters={"search": "LMV37"}, confidence=0.9),
    )
    parsed = asyncio.run(parser.parse("LMV37 burner controller"))
    assert parsed.action == "SEARCH_CATALOGUE"
    assert parsed.missing_required == []


def test_no_override_when_extraction_is_not_confident():
    parser, _, _ = _parser(
        ClassificationResult(action="QUERY_INVENTORY", confidence=0.62),
        ExtractionResult(parameters={"search": "bearings"}, confidence=0.7),
    )
    parsed = asyncio.run(parser.parse("bearings in stock?"))
    assert parsed.action == "QUERY_INVENTORY"


def test_low_confidence_uses_regex_fallback():
    parser, _, extractor = _parser(
        ClassificationResult(action="QUERY_INVENTORY", confidence=0.4),
        ExtractionResult(parameters={}, confidence=0.5),
    )
    parsed = asyncio.run(parser.parse("add 5 nuts to van"))
    assert parsed.action == "ADD_STOCK"
    assert parsed.confidence == 0.85
    assert parsed.reasoning == "Local regex fallback"
    assert parsed.model == "regex-fallback"
    assert parsed.parameters["location"] == "van"
    assert extractor.calls == []


def test_low_confidence_without_fallback_match_continues_to_extraction():
    parser, _, extractor = _parser(
        ClassificationResult(action="QUERY_INVENTORY", confidence=0.4),
        ExtractionResult(parameters={}, confidence=0.5),
    )
    parsed = asyncio.run(parser.parse("hmm"))
    assert parsed.action == "QUERY_INVENTORY"
    assert parsed.confidence == 0.4
    assert len(extractor.calls) == 1


def test_only_free_text_context_reaches_the_extractor():
    parser, classifier, extractor = _parser(
        ClassificationResult(action="ADD_STOCK", confidence=0.9),
        ExtractionResult(parameters={}, confidence=0.9),
    )
    structured = {"pendingAction": "ADD_STOCK", "missingFields": ["location"]}
    asyncio.run(parser.parse("van", structured))
    assert classifier.calls[0][1] == structured
    assert extractor.calls[0][2] is None


def test_model_failure_is_not_masked_by_fallback():
    classifier = DummyClassifier(error=ModelUnavailableError("All model tiers failed"))
    parser = CommandParser(classifier, DummyExtractor(ExtractionResult(confidence=0.5)))
    with pytest.raises(ModelUnavailableError):
        asyncio.run(parser.parse("add 5 nuts to van"))


def test_helpers():
    assert extract_search_term({"query": "nuts"}) == "nuts"
    assert extract_search_term({"search": ""}) is None
    assert clarification_for([]) is None
