"""
Flow Definition Table.

A Flow is an ordered list of steps, each collecting one field from free
text. Steps are addressed by 1-based position. Flows are static data: the
engine interprets them, nothing here holds per-session state.
"""

import math
import re
from dataclasses import dataclass
from typing import Any, Callable, Protocol

SKIP_KEYWORD = "skip"
NUMBER_ERROR = 'Please enter a valid positive number or "skip"'
EMAIL_ERROR = 'Please enter a valid email address or "skip"'

_CURRENCY = re.compile(r"^[£$€]\s*|\s*%$")
_EMAIL = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class StepValidationError(ValueError):
    """Reply could not be parsed for the current step."""


# ─── Step parsers ─────────────────────────────────────────────

def parse_text(reply: str) -> str:
    return reply.strip()


def parse_non_negative_float(reply: str) -> float:
    cleaned = _CURRENCY.sub("", reply.strip()).replace(",", "")
    try:
        value = float(cleaned)
    except ValueError:
        raise StepValidationError(NUMBER_ERROR) from None
    if not math.isfinite(value) or value < 0:
        raise StepValidationError(NUMBER_ERROR)
    return value


def parse_non_negative_int(reply: str) -> int:
    cleaned = reply.strip().replace(",", "")
    try:
        value = int(float(cleaned))
    except (ValueError, OverflowError):
        raise StepValidationError(NUMBER_ERROR) from None
    if value < 0:
        raise StepValidationError(NUMBER_ERROR)
    return value


def parse_email(reply: str) -> str:
    value = reply.strip()
    if not _EMAIL.match(value):
        raise StepValidationError(EMAIL_ERROR)
    return value


# ─── Definitions ──────────────────────────────────────────────

@dataclass(frozen=True)
class FlowStep:
    field: str
    prompt: Callable[[str], str]
    optional: bool = True
    parser: Callable[[str], Any] = parse_text
    skip_text: str | None = None
    dependency: str | None = None


@dataclass(frozen=True)
class Flow:
    id: str
    action: str
    steps: tuple[FlowStep, ...]
    sub_flow: bool = False

    @property
    def total_steps(self) -> int:
        return len(self.steps)

    @property
    def field_names(self) -> tuple[str, ...]:
        return tuple(step.field for step in self.steps)

    def step(self, position: int) -> FlowStep:
        if not 1 <= position <= len(self.steps):
            raise IndexError(f"{self.id} has no step {position}")
        return self.steps[position - 1]

    def next_unfilled(self, after: int, filled: dict[str, Any]) -> int | None:
        """First position after ``after`` whose field is not already in ``filled``."""
        for position in range(after + 1, len(self.steps) + 1):
            if self.steps[position - 1].field not in filled:
                return position
        return None


CATALOGUE_STEPS: tuple[FlowStep, ...] = (
    FlowStep(
        field="unitCost",
        prompt=lambda item: f"(Step 1/6) What is the supplier/cost price for \"{item}\"? (Enter price or type 'skip' to leave blank)",
        parser=parse_non_negative_float,
        skip_text="No cost price set",
    ),
    FlowStep(
        field="markup",
        prompt=lambda item: "(Step 2/6) What markup percentage should be applied? (e.g., 35 for 35%, or type 'skip')",
        parser=parse_non_negative_float,
        skip_text="No markup set",
    ),
    FlowStep(
        field="preferredSupplierName",
        prompt=lambda item: "(Step 3/6) Who is the preferred supplier? (Enter name or type 'skip')",
        skip_text="No preferred supplier set",
        dependency="supplier",
    ),
    FlowStep(
        field="manufacturer",
        prompt=lambda item: "(Step 4/6) Who is the manufacturer? (Enter name or type 'skip')",
        skip_text="No manufacturer set",
    ),
    FlowStep(
        field="category",
        prompt=lambda item: "(Step 5/6) What category does this item belong to? (e.g., 'Electrical', 'Plumbing', or type 'skip')",
        skip_text="No category set",
    ),
    FlowStep(
        field="minQuantity",
        prompt=lambda item: "(Step 6/6) What is the minimum stock level for reorder alerts? (Enter number or type 'skip')",
        parser=parse_non_negative_int,
        skip_text="No minimum stock level set",
    ),
)

CREATE_CATALOGUE_ITEM_AND_ADD_STOCK = Flow(
    id="CREATE_CATALOGUE_ITEM_AND_ADD_STOCK",
    action="CREATE_CATALOGUE_ITEM_AND_ADD_STOCK",
    steps=CATALOGUE_STEPS,
)

CREATE_CATALOGUE_ITEM_WITH_DETAILS = Flow(
    id="CREATE_CATALOGUE_ITEM_WITH_DETAILS",
    action="CREATE_CATALOGUE_ITEM_WITH_DETAILS",
    steps=CATALOGUE_STEPS,
)

SUPPLIER_DETAILS = Flow(
    id="SUPPLIER_DETAILS",
    action="ADD_SUPPLIER",
    sub_flow=True,
    steps=(
        FlowStep(
            field="address",
            prompt=lambda name: f"(Supplier Details 1/4) What is the address for \"{name}\"? (Enter address or type 'skip')",
            skip_text="No address provided",
        ),
        FlowStep(
            field="email",
            prompt=lambda name: f"(Supplier Details 2/4) What is the email for \"{name}\"? (Enter email or type 'skip')",
            skip_text="No email provided",
        ),
        FlowStep(
            field="website",
            prompt=lambda name: f"(Supplier Details 3/4) What is the website for \"{name}\"? (Enter website or type 'skip')",
            skip_text="No website provided",
        ),
        FlowStep(
            field="phone",
            prompt=lambda name: f"(Supplier Details 4/4) What is the phone number for \"{name}\"? (Enter phone or type 'skip')",
            skip_text="No phone provided",
        ),
    ),
)

CUSTOMER_DETAILS = Flow(
    id="CUSTOMER_DETAILS",
    action="ADD_CUSTOMER",
    steps=(
        FlowStep(
            field="contactName",
            prompt=lambda name: f"(Customer Details 1/3) Who is the main contact at \"{name}\"? (Enter name or type 'skip')",
            skip_text="No contact name provided",
        ),
        FlowStep(
            field="email",
            prompt=lambda name: f"(Customer Details 2/3) What is the email for \"{name}\"? (Enter email or type 'skip')",
            parser=parse_email,
            skip_text="No email provided",
        ),
        FlowStep(
            field="phone",
            prompt=lambda name: f"(Customer Details 3/3) What is the phone number for \"{name}\"? (Enter phone or type 'skip')",
            skip_text="No phone provided",
        ),
    ),
)

FLOWS: dict[str, Flow] = {
    flow.id: flow
    for flow in (
        CREATE_CATALOGUE_ITEM_AND_ADD_STOCK,
        CREATE_CATALOGUE_ITEM_WITH_DETAILS,
        SUPPLIER_DETAILS,
        CUSTOMER_DETAILS,
    )
}


def get_flow(flow_id: str | None) -> Flow | None:
    if not flow_id:
        return None
    return FLOWS.get(flow_id)


# ─── Dependencies ─────────────────────────────────────────────

class ReferenceData(Protocol):
    """
    Read-only lookups the engine needs for dependency checks.

    ``refresh`` is awaited before a turn that may check a dependency;
    ``supplier_names`` then answers from what was loaded and never does I/O.
    """

    async def refresh(self) -> None: ...

    def supplier_names(self) -> list[str]: ...


def supplier_exists(name: Any, names: list[str]) -> bool:
    """Blank names count as existing so the flow continues without a detour."""
    if not isinstance(name, str) or not name.strip():
        return True
    wanted = name.strip().lower()
    return any(existing.strip().lower() == wanted for existing in names)


@dataclass(frozen=True)
class DependencyRule:
    confirmation: str
    sub_flow: str
    exists: Callable[[Any, ReferenceData], bool]
    prompt: Callable[[str], str]


DEPENDENCIES: dict[str, DependencyRule] = {
    "supplier": DependencyRule(
        confirmation="CONFIRM_ADD_SUPPLIER",
        sub_flow=SUPPLIER_DETAILS.id,
        exists=lambda value, ref: supplier_exists(value, ref.supplier_names()),
        prompt=lambda name: f'Supplier "{name}" does not exist yet. Would you like to add their details now?',
    ),
}
