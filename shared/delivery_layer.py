from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from shared.models import TurnOutcome
from shared.response_formatter import format_turn_outcome, round_result_data


@dataclass
class DeliveryPayload:
    kind: str
    content: str
    data: dict[str, Any]


def _primary_rows(outcome: TurnOutcome) -> list[dict[str, Any]] | None:
    for result in outcome.results:
        if result.label != "primary" or not result.success:
            continue
        data = result.data
        if isinstance(data, dict):
            for key in ("items", "rows", "data", "results"):
                if isinstance(data.get(key), list):
                    data = data[key]
                    break
        if isinstance(data, list) and data and all(isinstance(item, dict) for item in data):
            return round_result_data(data)
    return None


def _to_markdown_table(rows: list[dict[str, Any]], max_rows: int = 12) -> str:
    if not rows:
        return ""
    cols: list[str] = []
    for row in rows:
        for key in row.keys():
            if key not in cols:
                cols.append(str(key))
    if not cols:
        return ""
    header = "| " + " | ".join(cols) + " |"
    sep = "| " + " | ".join("---" for _ in cols) + " |"
    body: list[str] = []
    for row in rows[:max_rows]:
        values = [str(row.get(col, "")) for col in cols]
        body.append("| " + " | ".join(values) + " |")
    return "\n".join([header, sep, *body])


def build_delivery_payload(outcome: TurnOutcome, channel: str = "frontend") -> DeliveryPayload:
    text = format_turn_outcome(outcome, channel=channel)

    if outcome.status == "prompt" and outcome.options:
        return DeliveryPayload(kind="options", content=text, data={"options": list(outcome.options)})
    if outcome.status in ("prompt", "invalid") and outcome.prompt:
        return DeliveryPayload(kind="prompt", content=text, data={})
    if outcome.status == "failed":
        return DeliveryPayload(kind="error", content=text, data={"prompt": outcome.prompt} if outcome.prompt else {})

    rows = _primary_rows(outcome)
    if rows:
        table = _to_markdown_table(rows)
        content = f"{text}\n\n{table}" if text else table
        return DeliveryPayload(kind="table", content=content, data={"rows": len(rows)})

    return DeliveryPayload(kind="text", content=text, data={})
