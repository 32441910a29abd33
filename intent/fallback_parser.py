"""
Regex fallback parser.

Used by the command parser when stage 1 comes back with low confidence.
Patterns are tried in order; the first match wins.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Callable


@dataclass(frozen=True)
class FallbackMatch:
    action: str
    parameters: dict[str, Any] = field(default_factory=dict)
    confidence: float = 0.0


def _item_fields(text: str) -> dict[str, Any]:
    item = text.strip()
    return {"item": item, "partNumber": item}


def _add_stock(m: re.Match) -> FallbackMatch:
    return FallbackMatch(
        "ADD_STOCK",
        {"quantity": int(m.group(1)), **_item_fields(m.group(2)), "location": m.group(3).strip()},
        0.85,
    )


def _remove_stock(m: re.Match) -> FallbackMatch:
    return FallbackMatch(
        "REMOVE_STOCK",
        {"quantity": int(m.group(1)), **_item_fields(m.group(2)), "location": m.group(3).strip(), "reason": "usage"},
        0.85,
    )


def _transfer_stock(m: re.Match) -> FallbackMatch:
    return FallbackMatch(
        "TRANSFER_STOCK",
        {
            "quantity": int(m.group(1)),
            **_item_fields(m.group(2)),
            "fromLocation": m.group(3).strip(),
            "toLocation": m.group(4).strip(),
        },
        0.85,
    )


def _count_stock(m: re.Match) -> FallbackMatch:
    qty = int(m.group(1))
    return FallbackMatch(
        "COUNT_STOCK",
        {"quantity": qty, "countedQuantity": qty, **_item_fields(m.group(2)), "location": m.group(3).strip()},
        0.85,
    )


def _search_stock(m: re.Match) -> FallbackMatch:
    return FallbackMatch("SEARCH_STOCK", {"search": m.group(1).strip()}, 0.8)


def _short_code(m: re.Match) -> FallbackMatch:
    return FallbackMatch("SEARCH_CATALOGUE", {"search": m.group(1).strip()}, 0.8)


def _search(m: re.Match) -> FallbackMatch:
    term = m.group(1).strip()
    if "stock" in term or "inventory" in term:
        cleaned = re.sub(r"\s*(in\s+)?(stock|inventory).*$", "", term).strip()
        return FallbackMatch("SEARCH_STOCK", {"search": cleaned}, 0.75)
    return FallbackMatch("SEARCH_CATALOGUE", {"search": term}, 0.75)


def _new_customer(m: re.Match) -> FallbackMatch:
    return FallbackMatch("ADD_CUSTOMER", {"name": m.group(1).strip()}, 0.85)


def _new_job(m: re.Match) -> FallbackMatch:
    params: dict[str, Any] = {"customerName": m.group(1).strip()}
    if m.group(2):
        params["description"] = m.group(2).strip()
    return FallbackMatch("CREATE_JOB", params, 0.85)


def _add_product(m: re.Match) -> FallbackMatch:
    name = m.group(1).strip()
    params: dict[str, Any] = {
        "name": name,
        "partNumber": name.split()[0] if name.split() else name,
        "unitCost": float(m.group(2)),
    }
    if m.group(3):
        params["markup"] = float(m.group(3))
    return FallbackMatch("ADD_PRODUCT", params, 0.8)


def _new_supplier(m: re.Match) -> FallbackMatch:
    return FallbackMatch("ADD_SUPPLIER", {"name": m.group(1).strip()}, 0.85)


def _low_stock(m: re.Match) -> FallbackMatch:
    return FallbackMatch("LOW_STOCK_REPORT", {}, 0.9)


# (pattern, builder); matched against the lower-cased, trimmed command
PATTERNS: list[tuple[re.Pattern, Callable[[re.Match], FallbackMatch]]] = [
    (re.compile(r"^(?:add|put|receive|received)\s+(\d+)\s+(.+?)\s+(?:to|into|at|in)\s+(.+)$"), _add_stock),
    (re.compile(r"^(?:use|used|take|took|remove|removed)\s+(\d+)\s+(.+?)\s+from\s+(.+)$"), _remove_stock),
    (re.compile(r"^(?:move|transfer)\s+(\d+)\s+(.+?)\s+from\s+(.+?)\s+to\s+(.+)$"), _transfer_stock),
    (re.compile(r"^(?:i(?:'ve|\s+have)\s+got|there(?:'s|\s+are))\s+(\d+)\s+(.+?)\s+(?:at|on|in)\s+(.+)$"), _count_stock),
    (re.compile(r"^(?:what|show|list)\s+(.+?)\s+(?:do we have|in stock|available)"), _search_stock),
    (re.compile(r"^(?:search|find|look)\s+(?:for\s+)?([a-z0-9]{2,5})$"), _short_code),
    (re.compile(r"^(?:search|find|look for)\s+(?:for\s+)?(.+)$"), _search),
    (re.compile(r"^(?:new|add|create)\s+customer\s+(.+)$"), _new_customer),
    (re.compile(r"^(?:new|create)\s+job\s+for\s+(.+?)(?:\s+-\s+(.+))?$"), _new_job),
    (
        re.compile(
            r"^(?:add\s+new\s+item|create\s+product|new\s+part)\s+(.+?)\s+cost\s+(\d+(?:\.\d+)?)"
            r"(?:\s+markup\s+(\d+(?:\.\d+)?)%?)?"
        ),
        _add_product,
    ),
    (re.compile(r"^(?:new|add|create)\s+supplier\s+(.+)$"), _new_supplier),
    (re.compile(r"^(?:show\s+)?low\s+stock(?:\s+report)?"), _low_stock),
]


def try_fallback_parse(command: str) -> FallbackMatch | None:
    """Parse common command shapes with regexes. None when nothing matches."""
    lower = (command or "").strip().lower()
    if not lower:
        return None
    for pattern, build in PATTERNS:
        match = pattern.match(lower)
        if match:
            return build(match)
    return None
