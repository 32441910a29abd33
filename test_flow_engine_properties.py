from __future__ import annotations

import random

import pytest

from dialogue.engine import FlowEngine
from shared.dialogue_contracts import CommandContext, PendingCommand


class StubReferenceData:
    def supplier_names(self) -> list[str]:
        return ["Acme Corp"]


SCRIPT = ("yes", "2.5", "30", "NewCo", "yes", "1 High St", "skip", "skip", "0123", "Bosch", "skip", "4")


def _start() -> PendingCommand:
    return PendingCommand(
        id="p1",
        action="ADD_STOCK",
        parameters={"item": "M10 nuts", "quantity": 5, "location": "van"},
        prompt="Create it?",
        pending_action="CONFIRM_CREATE_CATALOGUE_ITEM",
        context=CommandContext.model_validate({"item": "M10 nuts", "quantity": 5, "location": "van"}),
        options=["Yes", "No"],
    )


def _states(engine: FlowEngine) -> list[PendingCommand]:
    """Every Pending Command visited while replaying SCRIPT."""
    pending = _start()
    visited = [pending]
    for reply in SCRIPT:
        outcome = engine.advance(pending, reply)
        if outcome.pending is None:
            break
        pending = outcome.pending
        visited.append(pending)
    return visited


def _replay(engine: FlowEngine):
    pending = _start()
    outcomes = []
    for reply in SCRIPT:
        outcome = engine.advance(pending, reply)
        outcomes.append(outcome)
        if outcome.pending is not None:
            pending = outcome.pending
    return outcomes


def test_replaying_the_same_replies_gives_the_same_outcomes():
    first = _replay(FlowEngine(StubReferenceData()))
    second = _replay(FlowEngine(StubReferenceData()))
    assert first == second
    assert first[-1].kind == "complete"
    assert first[-1].request.parameters["manufacturer"] == "Bosch"
    assert first[-1].request.parameters["minQuantity"] == 4


@pytest.mark.parametrize("index", range(len(SCRIPT)))
def test_cancel_is_accepted_in_every_state(index):
    engine = FlowEngine(StubReferenceData())
    pending = _states(engine)[index]
    outcome = engine.advance(pending, "Cancel")
    assert outcome.kind == "cancelled"
    assert outcome.pending is None


def test_cursor_stays_within_bounds_in_every_state():
    for pending in _states(FlowEngine(StubReferenceData())):
        if pending.current_step is not None:
            assert 1 <= pending.current_step <= pending.total_steps
        if pending.in_sub_flow:
            assert pending.parent_step is not None
            assert pending.flow_id == "CREATE_CATALOGUE_ITEM_AND_ADD_STOCK"
        else:
            assert pending.sub_flow_data == {}


def test_outer_answers_survive_the_sub_flow():
    for pending in _states(FlowEngine(StubReferenceData())):
        if pending.in_sub_flow:
            assert pending.collected_data["preferredSupplierName"] == "NewCo"
            assert pending.collected_data["unitCost"] == 2.5


def test_invalid_replies_never_change_state():
    engine = FlowEngine(StubReferenceData())
    for pending in _states(engine):
        if pending.pending_action != "CREATE_CATALOGUE_ITEM_AND_ADD_STOCK" or pending.in_sub_flow:
            continue
        step = engine.flows[pending.pending_action].step(pending.current_step)
        if step.field in ("unitCost", "markup", "minQuantity"):
            outcome = engine.advance(pending, "lots")
            assert outcome.kind == "invalid"
            assert outcome.pending == pending


def test_sub_flow_side_effect_is_emitted_exactly_once():
    outcomes = _replay(FlowEngine(StubReferenceData()))
    side_effects = [o.side_effect for o in outcomes if o.side_effect is not None]
    assert len(side_effects) == 1
    assert side_effects[0].parameters == {"name": "NewCo", "address": "1 High St", "phone": "0123"}


REPLY_POOL = (
    "yes", "no", "skip", "Skip", "", "maybe", "lots", "-3",
    "2.5", "30", "4", "Acme Corp", "NewCo", "Bosch", "1 High St", "0123", "x@y.com",
)


def _customer_start() -> PendingCommand:
    return PendingCommand(
        id="p2",
        action="CREATE_JOB",
        parameters={"customerName": "Bob", "type": "repair"},
        prompt='Customer "Bob" does not exist. Create them?',
        pending_action="CONFIRM_CREATE_CUSTOMER",
        context=CommandContext.model_validate(
            {"name": "Bob", "customerName": "Bob", "resumeAction": "CREATE_JOB", "resumeParams": {"customerName": "Bob"}}
        ),
        options=["Yes", "No"],
    )


def _assert_well_formed(engine: FlowEngine, pending: PendingCommand) -> None:
    if pending.flow_id is None:
        assert pending.collected_data == {}
        return
    outer = engine.flows[pending.flow_id]
    assert set(pending.collected_data) <= set(outer.field_names)
    if pending.in_sub_flow:
        sub_flow = engine.flows[pending.sub_flow_type]
        assert set(pending.sub_flow_data) <= set(sub_flow.field_names)
        assert 1 <= pending.parent_step <= outer.total_steps
        assert outer.step(pending.parent_step).dependency is not None
        assert pending.total_steps == sub_flow.total_steps
    else:
        assert pending.sub_flow_data == {}
        assert pending.parent_step is None
    if pending.current_step is not None:
        assert 1 <= pending.current_step <= pending.total_steps


@pytest.mark.parametrize("seed", range(25))
def test_random_reply_sequences_keep_collected_fields_within_the_active_flow(seed):
    rng = random.Random(seed)
    engine = FlowEngine(StubReferenceData())
    starts = (_start, _customer_start)
    pending = rng.choice(starts)()
    sub_flow_fields = {"name", *engine.flows["SUPPLIER_DETAILS"].field_names}

    for _ in range(60):
        outcome = engine.advance(pending, rng.choice(REPLY_POOL))
        if outcome.kind == "invalid":
            assert outcome.pending == pending
        if outcome.side_effect is not None:
            assert set(outcome.side_effect.parameters) <= sub_flow_fields
        if outcome.kind == "complete":
            assert not {"address", "website"} & set(outcome.request.parameters)
        if outcome.pending is None:
            pending = rng.choice(starts)()
            continue
        pending = outcome.pending
        _assert_well_formed(engine, pending)
