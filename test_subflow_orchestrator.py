from __future__ import annotations

import pytest

from dialogue.engine import FlowEngine
from dialogue.flows import SUPPLIER_DETAILS, Flow, FlowStep, get_flow
from dialogue.subflow import SubFlowOrchestrator, sub_flow_subject
from shared.dialogue_contracts import CommandContext, PendingCommand


class StubReferenceData:
    def supplier_names(self) -> list[str]:
        return ["Acme Corp"]


def _awaiting_supplier_confirmation() -> PendingCommand:
    return PendingCommand(
        id="p1",
        action="ADD_STOCK",
        parameters={"item": "M10 nuts", "quantity": 5, "location": "van"},
        prompt='Supplier "NewCo" does not exist yet. Would you like to add their details now?',
        pending_action="CONFIRM_ADD_SUPPLIER",
        flow_id="CREATE_CATALOGUE_ITEM_AND_ADD_STOCK",
        context=CommandContext.model_validate({"item": "M10 nuts", "quantity": 5, "location": "van"}),
        options=["Yes", "No/Skip"],
        current_step=3,
        total_steps=6,
        collected_data={"unitCost": 2.0, "markup": 30.0, "preferredSupplierName": "NewCo"},
    )


def test_push_enters_sub_flow_and_remembers_parent_step():
    pushed = SubFlowOrchestrator().push(_awaiting_supplier_confirmation(), SUPPLIER_DETAILS)
    assert pushed.state == "IN_SUBFLOW"
    assert pushed.sub_flow_type == "SUPPLIER_DETAILS"
    assert pushed.parent_step == 3
    assert (pushed.current_step, pushed.total_steps) == (1, 4)
    assert pushed.sub_flow_data == {}
    assert pushed.prompt.startswith('(Supplier Details 1/4) What is the address for "NewCo"?')
    assert pushed.collected_data["preferredSupplierName"] == "NewCo"


def test_sub_flows_do_not_nest():
    orchestrator = SubFlowOrchestrator()
    pushed = orchestrator.push(_awaiting_supplier_confirmation(), SUPPLIER_DETAILS)
    with pytest.raises(ValueError):
        orchestrator.push(pushed, SUPPLIER_DETAILS)


def test_pop_restores_outer_position_and_builds_side_effect():
    orchestrator = SubFlowOrchestrator()
    pushed = orchestrator.push(_awaiting_supplier_confirmation(), SUPPLIER_DETAILS)
    filled = pushed.evolve(sub_flow_data={"address": "1 High St", "phone": "0123"}, current_step=4)

    restored, side_effect = orchestrator.pop(filled)

    assert restored.in_sub_flow is False
    assert restored.sub_flow_data == {}
    assert restored.parent_step is None
    assert (restored.current_step, restored.total_steps) == (3, 6)
    assert restored.collected_data == {"unitCost": 2.0, "markup": 30.0, "preferredSupplierName": "NewCo"}
    assert side_effect.action == "ADD_SUPPLIER"
    assert side_effect.parameters == {"name": "NewCo", "address": "1 High St", "phone": "0123"}


def test_pop_without_sub_flow_is_an_error():
    with pytest.raises(ValueError):
        SubFlowOrchestrator().pop(_awaiting_supplier_confirmation())


def test_engine_runs_sub_flow_and_resumes_outer_flow_after_supplier_step():
    engine = FlowEngine(StubReferenceData())
    pending = _awaiting_supplier_confirmation()
    outcomes = []
    for reply in ("yes", "1 High St", "skip", "newco.example", "0123"):
        outcome = engine.advance(pending, reply)
        outcomes.append(outcome)
        pending = outcome.pending

    assert [o.kind for o in outcomes] == ["prompt"] * 5
    assert outcomes[2].notices == ("No email provided",)
    assert outcomes[1].pending.prompt.startswith("(Supplier Details 2/4)")

    last = outcomes[-1]
    assert last.side_effect is not None
    assert last.side_effect.action == "ADD_SUPPLIER"
    assert last.side_effect.parameters == {
        "name": "NewCo",
        "address": "1 High St",
        "website": "newco.example",
        "phone": "0123",
    }
    assert last.pending.state == "IN_FLOW"
    assert last.pending.current_step == 4
    assert last.pending.prompt.startswith("(Step 4/6) Who is the manufacturer?")


def test_cancel_inside_sub_flow_cancels_everything():
    engine = FlowEngine(StubReferenceData())
    pushed = engine.advance(_awaiting_supplier_confirmation(), "yes").pending
    outcome = engine.advance(pushed, "cancel")
    assert outcome.kind == "cancelled"
    assert outcome.pending is None


def test_subject_comes_from_outer_answer():
    pending = _awaiting_supplier_confirmation()
    outer = get_flow(pending.flow_id)
    assert sub_flow_subject(pending, outer) == "NewCo"


def _quick_item_flows() -> dict[str, Flow]:
    quick = Flow(
        id="QUICK_ITEM",
        action="CREATE_CATALOGUE_ITEM_WITH_DETAILS",
        steps=(
            FlowStep(
                field="preferredSupplierName",
                prompt=lambda name: f"Who supplies {name}?",
                dependency="supplier",
            ),
        ),
    )
    short_supplier = Flow(
        id="SUPPLIER_DETAILS",
        action="ADD_SUPPLIER",
        steps=(FlowStep(field="phone", prompt=lambda name: f"Phone for {name}?"),),
        sub_flow=True,
    )
    return {quick.id: quick, short_supplier.id: short_supplier}


def test_engine_pushes_and_pops_against_its_own_flow_table():
    engine = FlowEngine(StubReferenceData(), flows=_quick_item_flows())
    assert engine.subflows.flows is engine.flows

    pending = PendingCommand(
        id="p9",
        action="ADD_PRODUCT",
        parameters={"partNumber": "LMV37", "name": "Burner controller"},
        prompt="Who supplies Burner controller?",
        pending_action="QUICK_ITEM",
        flow_id="QUICK_ITEM",
        context=CommandContext.model_validate({"partNumber": "LMV37", "name": "Burner controller"}),
        current_step=1,
        total_steps=1,
    )
    confirm = engine.advance(pending, "NewCo")
    assert confirm.pending.pending_action == "CONFIRM_ADD_SUPPLIER"

    pushed = engine.advance(confirm.pending, "yes")
    assert (pushed.pending.current_step, pushed.pending.total_steps) == (1, 1)
    assert pushed.pending.prompt == "Phone for NewCo?"

    done = engine.advance(pushed.pending, "0123")
    assert done.kind == "complete"
    assert done.side_effect.parameters == {"name": "NewCo", "phone": "0123"}
    assert done.request.action == "CREATE_CATALOGUE_ITEM_WITH_DETAILS"
    assert done.request.parameters == {
        "partNumber": "LMV37",
        "name": "Burner controller",
        "preferredSupplierName": "NewCo",
    }
