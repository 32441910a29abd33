from __future__ import annotations

import re
from typing import Any

from shared.models import ActionOutcome, TurnOutcome

RESUMED_PREFIX = "Then: "
SIDE_EFFECT_PREFIX = "Also: "


def _round_value(value: Any, decimals: int = 2) -> Any:
    if isinstance(value, float):
        return round(value, decimals)
    if isinstance(value, dict):
        return {k: _round_value(v, decimals=decimals) for k, v in value.items()}
    if isinstance(value, list):
        return [_round_value(item, decimals=decimals) for item in value]
    return value


def _round_numbers_in_text(text: str) -> str:
    if not text:
        return ""

    def repl(match: re.Match[str]) -> str:
        return f"{float(match.group(0)):.2f}"

    return re.sub(r"-?\d+\.\d{3,}", repl, text)


def _outcome_line(outcome: ActionOutcome) -> str:
    message = _round_numbers_in_text(outcome.message.strip())
    if not message:
        return ""
    if outcome.label == "resumed":
        return f"{RESUMED_PREFIX}{message}"
    if outcome.label == "side_effect":
        return f"{SIDE_EFFECT_PREFIX}{message}"
    return message


def _options_line(options: list[str], channel: str) -> str:
    if not options:
        return ""
    if channel == "voice":
        return "You can say " + " or ".join(f'"{o}"' for o in options) + "."
    return "[" + "] [".join(options) + "]"


def format_turn_outcome(outcome: TurnOutcome, channel: str = "frontend") -> str:
    """
    Render one turn for a UX channel (frontend/cli/voice):
    - no raw JSON
    - notices first, then results in dispatch order, then the next prompt
    - rounded numeric values (2 decimals)
    """
    lines: list[str] = [n for n in outcome.notices if n]

    if outcome.results:
        lines.extend(line for line in (_outcome_line(r) for r in outcome.results) if line)
    elif outcome.message:
        lines.append(_round_numbers_in_text(outcome.message.strip()))

    if outcome.prompt:
        lines.append(outcome.prompt)
        options_line = _options_line(outcome.options, channel)
        if options_line:
            lines.append(options_line)

    if not lines:
        if outcome.status == "completed":
            return "Done."
        if outcome.status == "cancelled":
            return "Cancelled."
        return "I need a bit more detail to continue."
    return "\n".join(lines)


def round_result_data(data: Any) -> Any:
    return _round_value(data, decimals=2)
