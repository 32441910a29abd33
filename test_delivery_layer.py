from __future__ import annotations

from shared.delivery_layer import build_delivery_payload
from shared.models import ActionOutcome, TurnOutcome


def test_delivery_layer_renders_table_for_list_rows():
    out = TurnOutcome(
        session_id="s1",
        status="completed",
        results=[
            ActionOutcome(
                action="SEARCH_STOCK",
                success=True,
                message="Found 2 items",
                data=[
                    {"partNumber": "M10-NUT", "location": "rack 1", "quantity": 20},
                    {"partNumber": "M10-NUT", "location": "van", "quantity": 4.12345},
                ],
            )
        ],
    )
    payload = build_delivery_payload(out)
    assert payload.kind == "table"
    assert payload.content.startswith("Found 2 items\n\n| partNumber | location | quantity |")
    assert "| M10-NUT | van | 4.12 |" in payload.content
    assert payload.data == {"rows": 2}


def test_delivery_layer_unwraps_items_envelope():
    out = TurnOutcome(
        session_id="s1",
        status="completed",
        results=[ActionOutcome(action="LOW_STOCK_REPORT", success=True, data={"items": [{"partNumber": "FLT-100"}]})],
    )
    payload = build_delivery_payload(out)
    assert payload.kind == "table"
    assert "| FLT-100 |" in payload.content


def test_delivery_layer_offers_options_for_confirmations():
    out = TurnOutcome(
        session_id="s1",
        status="prompt",
        prompt='"copper pipe" is not in the catalogue yet. Would you like to create it now?',
        options=["Yes", "No"],
    )
    payload = build_delivery_payload(out)
    assert payload.kind == "options"
    assert payload.data == {"options": ["Yes", "No"]}


def test_delivery_layer_invalid_reply_is_a_prompt():
    out = TurnOutcome(
        session_id="s1",
        status="invalid",
        message='Please enter a valid positive number or "skip"',
        prompt="(Step 1/6) What is the supplier/cost price?",
    )
    payload = build_delivery_payload(out)
    assert payload.kind == "prompt"
    assert payload.content == 'Please enter a valid positive number or "skip"\n(Step 1/6) What is the supplier/cost price?'


def test_delivery_layer_failure_carries_the_kept_prompt():
    out = TurnOutcome(
        session_id="s1",
        status="failed",
        message="Insufficient quantity. Only 4 units available at van",
        prompt="Missing required information: location. Please provide these details.",
    )
    payload = build_delivery_payload(out)
    assert payload.kind == "error"
    assert payload.data == {"prompt": "Missing required information: location. Please provide these details."}


def test_delivery_layer_falls_back_to_text():
    out = TurnOutcome(
        session_id="s1",
        status="completed",
        results=[ActionOutcome(action="ADD_STOCK", success=True, message="Added 5 units to M10-NUT at van. New total: 9")],
    )
    payload = build_delivery_payload(out)
    assert payload.kind == "text"
    assert payload.content == "Added 5 units to M10-NUT at van. New total: 9"
