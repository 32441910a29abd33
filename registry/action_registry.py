"""
Action Schema Registry — the supported actions and their parameters.

Responsibility:
- Maintain the static table of action name -> required/optional parameters
- Normalize action names (case, separators, legacy aliases)
- Render the action catalog for model prompts

Pure data: no model calls, no execution.
"""

import json
import logging
import re
from typing import Any, Iterable

from shared.models import ActionDescriptor, ActionExample

logger = logging.getLogger(__name__)

FALLBACK_ACTION = "QUERY_INVENTORY"

# Parameters whose values are numbers when supplied as a bare reply.
NUMERIC_PARAMETERS = frozenset(
    {"quantity", "countedQuantity", "unitCost", "markup", "sellPrice", "minQuantity"}
)


def _action(
    name: str,
    required: Iterable[str],
    optional: Iterable[str],
    description: str,
    examples: list[tuple[str, dict[str, Any]]],
) -> ActionDescriptor:
    return ActionDescriptor(
        name=name,
        required=tuple(required),
        optional=tuple(optional),
        description=description,
        examples=tuple(ActionExample(command=cmd, parameters=params) for cmd, params in examples),
    )


ACTION_DESCRIPTORS: tuple[ActionDescriptor, ...] = (
    # ─── Stock ────────────────────────────────────────────────
    _action(
        "ADD_STOCK",
        ["item", "quantity", "location"],
        ["partNumber", "supplier", "notes"],
        "Adding, receiving or putting items into stock at a location. Extract item name, quantity (number), and location.",
        [
            ("Add 5 M10 nuts to rack 1 bin6", {"item": "M10 nuts", "quantity": 5, "location": "rack 1 bin6"}),
            ("Received 20 bearings into warehouse", {"item": "bearings", "quantity": 20, "location": "warehouse"}),
        ],
    ),
    _action(
        "REMOVE_STOCK",
        ["item", "quantity", "location"],
        ["partNumber", "reason", "jobNumber"],
        "Using, taking or consuming items from stock. Extract item, quantity, location, and optional reason.",
        [
            ("Used 2 filters from van", {"item": "filters", "quantity": 2, "location": "van", "reason": "usage"}),
            ("Take 5 bearings from warehouse", {"item": "bearings", "quantity": 5, "location": "warehouse"}),
        ],
    ),
    _action(
        "TRANSFER_STOCK",
        ["item", "quantity", "fromLocation", "toLocation"],
        ["partNumber", "notes"],
        "Moving stock between locations. Extract from and to locations.",
        [
            (
                "Move 10 bolts from warehouse to van",
                {"item": "bolts", "quantity": 10, "fromLocation": "warehouse", "toLocation": "van"},
            ),
        ],
    ),
    _action(
        "COUNT_STOCK",
        ["item", "quantity", "location"],
        ["partNumber", "notes", "countedQuantity"],
        "Physical stock count. Extract item, counted quantity, and location. quantity and countedQuantity are the same value.",
        [
            (
                "I've got 50 bearings on shelf A",
                {"item": "bearings", "quantity": 50, "countedQuantity": 50, "location": "shelf A"},
            ),
        ],
    ),
    _action(
        "SEARCH_STOCK",
        ["search"],
        ["location"],
        "Searching items currently in stock. Extract search term.",
        [
            ("What bearings do we have?", {"search": "bearings"}),
            ("Show bolts in warehouse", {"search": "bolts", "location": "warehouse"}),
        ],
    ),
    _action(
        "LOW_STOCK_REPORT",
        [],
        ["location"],
        "Report of items below minimum levels. Optionally filter by location.",
        [
            ("Show low stock", {}),
            ("Low stock in warehouse", {"location": "warehouse"}),
        ],
    ),
    # ─── Catalogue ────────────────────────────────────────────
    _action(
        "ADD_PRODUCT",
        ["partNumber", "name"],
        [
            "description",
            "manufacturer",
            "category",
            "unitCost",
            "markup",
            "sellPrice",
            "minQuantity",
            "preferredSupplierName",
        ],
        "Adding a new product to the catalogue (with pricing). Extract part number, name, cost, markup percentage.",
        [
            (
                "Add new item cable 0.75mm cost 25 markup 35%",
                {"partNumber": "cable", "name": "cable 0.75mm", "unitCost": 25, "markup": 35},
            ),
            ("Create product LMV37 cost 450 markup 40%", {"partNumber": "LMV37", "name": "LMV37", "unitCost": 450, "markup": 40}),
        ],
    ),
    _action(
        "UPDATE_PRODUCT",
        ["partNumber"],
        ["name", "unitCost", "markup", "sellPrice", "minQuantity"],
        "Updating product details or pricing. Extract part number and fields to update.",
        [("Update LMV37 cost to 500", {"partNumber": "LMV37", "unitCost": 500})],
    ),
    _action(
        "SEARCH_CATALOGUE",
        ["search"],
        ["category", "manufacturer"],
        "Searching all products, stocked or not. Extract search term.",
        [("Find cables", {"search": "cables"})],
    ),
    # ─── Customers & sites ────────────────────────────────────
    _action(
        "ADD_CUSTOMER",
        ["name"],
        ["type", "contactName", "email", "phone"],
        "Creating a new customer. Extract customer name and optional details.",
        [
            ("New customer ABC Heating", {"name": "ABC Heating"}),
            ("Add customer XYZ Ltd type commercial", {"name": "XYZ Ltd", "type": "commercial"}),
        ],
    ),
    _action(
        "UPDATE_CUSTOMER",
        ["customerName"],
        ["contactName", "email", "phone"],
        "Updating a customer. Extract customer name and fields to update.",
        [("Update ABC Heating contact to John", {"customerName": "ABC Heating", "contactName": "John"})],
    ),
    _action(
        "ADD_SITE",
        ["customerName", "siteName", "address"],
        ["postcode"],
        "Adding a site address to a customer. Extract customer, site name, address.",
        [
            (
                "Add site Office for ABC at 123 High St",
                {"customerName": "ABC", "siteName": "Office", "address": "123 High St"},
            ),
        ],
    ),
    _action(
        "SEARCH_CUSTOMERS",
        ["search"],
        [],
        "Searching customers. Extract search term.",
        [("Find customer ABC", {"search": "ABC"})],
    ),
    # ─── Equipment ────────────────────────────────────────────
    _action(
        "ADD_EQUIPMENT",
        ["customerName", "equipmentName", "type"],
        ["manufacturer", "model", "serialNumber"],
        "Adding equipment or an asset at a customer site. Extract customer, equipment name, type.",
        [
            (
                "Add boiler Main Boiler for ABC",
                {"customerName": "ABC", "equipmentName": "Main Boiler", "type": "boiler"},
            ),
        ],
    ),
    _action(
        "UPDATE_EQUIPMENT",
        ["customerName", "equipmentName"],
        ["notes"],
        "Updating equipment. Extract customer and equipment name.",
        [("Update Main Boiler for ABC", {"customerName": "ABC", "equipmentName": "Main Boiler"})],
    ),
    _action(
        "INSTALL_PART",
        ["partNumber", "quantity", "customerName", "equipmentName"],
        ["location"],
        "Installing a part on equipment. Extract part, quantity, customer, equipment. Location is where stock is taken from.",
        [
            (
                "Install 2 filters on Main Boiler for ABC",
                {"partNumber": "filter", "quantity": 2, "customerName": "ABC", "equipmentName": "Main Boiler"},
            ),
            (
                "Install filter on Main Boiler for ABC",
                {"partNumber": "filter", "quantity": 1, "customerName": "ABC", "equipmentName": "Main Boiler"},
            ),
        ],
    ),
    _action(
        "SEARCH_EQUIPMENT",
        [],
        ["customerName", "type"],
        "Searching equipment. Optionally filter by customer or type.",
        [("Show equipment for ABC", {"customerName": "ABC"})],
    ),
    # ─── Jobs ─────────────────────────────────────────────────
    _action(
        "CREATE_JOB",
        ["customerName"],
        ["type", "description", "equipmentName", "priority"],
        "Creating a job or work order. Extract customer name and optional type, description. "
        "Type can be: service, repair, installation, maintenance.",
        [
            (
                "New job for ABC - boiler repair",
                {"customerName": "ABC", "description": "boiler repair", "type": "repair"},
            ),
            ("Create service job for XYZ", {"customerName": "XYZ", "type": "service"}),
        ],
    ),
    _action(
        "UPDATE_JOB",
        ["jobNumber"],
        ["status", "notes"],
        "Updating a job. Extract job number and fields to update.",
        [("Update job 1234 status to completed", {"jobNumber": "1234", "status": "completed"})],
    ),
    _action(
        "COMPLETE_JOB",
        ["jobNumber"],
        ["workCarriedOut", "notes"],
        "Marking a job as complete. Extract job number.",
        [("Complete job 1234", {"jobNumber": "1234"})],
    ),
    _action(
        "ADD_PARTS_TO_JOB",
        ["jobNumber", "partNumber", "quantity"],
        [],
        "Adding parts used on a job. Extract job number, part number, quantity.",
        [("Add 2 filters to job 1234", {"jobNumber": "1234", "partNumber": "filters", "quantity": 2})],
    ),
    _action(
        "SEARCH_JOBS",
        [],
        ["customerName", "status"],
        "Searching jobs. Optionally filter by customer or status.",
        [
            ("Show jobs for ABC", {"customerName": "ABC"}),
            ("List completed jobs", {"status": "completed"}),
        ],
    ),
    # ─── Suppliers & orders ───────────────────────────────────
    _action(
        "ADD_SUPPLIER",
        ["name"],
        ["contactName", "email", "phone", "address", "website"],
        "Creating a supplier. Extract supplier name.",
        [("New supplier Acme Corp", {"name": "Acme Corp"})],
    ),
    _action(
        "CREATE_ORDER",
        ["supplierName"],
        ["items"],
        "Creating a purchase order. Extract supplier name.",
        [("Create order from Acme", {"supplierName": "Acme"})],
    ),
    _action(
        "RECEIVE_ORDER",
        ["poNumber"],
        [],
        "Receiving a purchase order. Extract PO number.",
        [("Receive order PO-1234", {"poNumber": "PO-1234"})],
    ),
    _action(
        FALLBACK_ACTION,
        [],
        ["search", "queryType"],
        "General query or unclear intent. Extract any search terms.",
        [("What do we have?", {"search": ""})],
    ),
)

ACTION_ALIASES: dict[str, str] = {
    "RECEIVE_STOCK": "ADD_STOCK",
    "USE_STOCK": "REMOVE_STOCK",
    "STOCK_COUNT": "COUNT_STOCK",
    "CREATE_CATALOGUE_ITEM": "ADD_PRODUCT",
    "UPDATE_CATALOGUE_ITEM": "UPDATE_PRODUCT",
    "CREATE_PRODUCT": "ADD_PRODUCT",
    "CREATE_CUSTOMER": "ADD_CUSTOMER",
    "ADD_SITE_ADDRESS": "ADD_SITE",
    "CREATE_EQUIPMENT": "ADD_EQUIPMENT",
    "INSTALL_FROM_STOCK": "INSTALL_PART",
    "INSTALL_DIRECT_ORDER": "INSTALL_PART",
    "ADD_PART_TO_JOB": "ADD_PARTS_TO_JOB",
    "LIST_JOBS": "SEARCH_JOBS",
    "LIST_EQUIPMENT": "SEARCH_EQUIPMENT",
    "CREATE_SUPPLIER": "ADD_SUPPLIER",
    "CREATE_PURCHASE_ORDER": "CREATE_ORDER",
    "RECEIVE_PURCHASE_ORDER": "RECEIVE_ORDER",
    # Positive adjustment; decreases go through REMOVE_STOCK.
    "ADJUST_STOCK": "ADD_STOCK",
}

_SEPARATORS = re.compile(r"[\s\-]+")


class ActionRegistry:
    """Immutable lookup over action descriptors."""

    def __init__(
        self,
        descriptors: Iterable[ActionDescriptor] = ACTION_DESCRIPTORS,
        aliases: dict[str, str] | None = None,
    ):
        self._descriptors: dict[str, ActionDescriptor] = {}
        for descriptor in descriptors:
            if descriptor.name in self._descriptors:
                raise ValueError(f"Duplicate action descriptor: {descriptor.name}")
            self._descriptors[descriptor.name] = descriptor
        self._aliases = dict(ACTION_ALIASES if aliases is None else aliases)
        unknown_targets = sorted(t for t in self._aliases.values() if t not in self._descriptors)
        if unknown_targets:
            raise ValueError(f"Aliases point at unknown actions: {unknown_targets}")
        logger.debug("Action registry loaded with %d actions", len(self._descriptors))

    @property
    def actions(self) -> list[str]:
        return list(self._descriptors.keys())

    def normalize(self, action: Any) -> str:
        """Canonical upper-case name with aliases resolved. Unknown names pass through."""
        name = _SEPARATORS.sub("_", str(action or "").strip()).upper()
        return self._aliases.get(name, name)

    def is_known(self, action: Any) -> bool:
        return self.normalize(action) in self._descriptors

    def get(self, action: Any) -> ActionDescriptor | None:
        return self._descriptors.get(self.normalize(action))

    def missing_required(self, action: Any, parameters: dict[str, Any]) -> list[str]:
        descriptor = self.get(action)
        if descriptor is None:
            return []
        return descriptor.missing_from(parameters)

    # ─── Prompt rendering ─────────────────────────────────────

    def render_action_guidelines(self) -> str:
        return "\n".join(f"- {d.name}: {d.description}" for d in self._descriptors.values())

    def render_classification_examples(self, per_action: int = 1) -> str:
        lines: list[str] = []
        for descriptor in self._descriptors.values():
            if descriptor.name == FALLBACK_ACTION:
                continue
            for example in descriptor.examples[:per_action]:
                lines.append(f'"{example.command}" → {descriptor.name}')
        return "\n".join(lines)

    def render_extraction_examples(self, action: Any) -> str:
        descriptor = self.get(action)
        if descriptor is None:
            return ""
        return "\n".join(
            f'"{example.command}" → {json.dumps(example.parameters)}' for example in descriptor.examples
        )


ACTION_REGISTRY = ActionRegistry()
