"""
CLI Entry Adapter.

Responsibility:
- Own the terminal session id (one adapter is one dialogue session)
- Normalize raw input to the EntryRequest contract
- Recognize exit words
- NO intent parsing, NO dialogue state, NO executor access
"""

import uuid

from shared.models import EntryRequest

EXIT_WORDS = frozenset({"exit", "quit", "q"})


class CLIAdapter:
    """Command-line entry adapter."""

    def __init__(self, session_id: str | None = None):
        self.session_id = session_id or f"cli-{uuid.uuid4().hex[:8]}"

    @staticmethod
    def is_exit(raw_input: str) -> bool:
        return raw_input.strip().lower() in EXIT_WORDS

    def read_input(self, raw_input: str) -> EntryRequest:
        """Whitespace runs collapse to one space; an all-blank line becomes ''."""
        return EntryRequest(
            session_id=self.session_id,
            input_text=" ".join(raw_input.split()),
            metadata={"source": "cli"},
        )
