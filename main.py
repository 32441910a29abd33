"""
Field Command Dialogue Engine — Main CLI Entrypoint.

Wires all layers and runs the interactive CLI loop.
"""

import argparse
import asyncio
import json
import logging
import os
import sys
from dataclasses import dataclass
from typing import Any

from dotenv import load_dotenv
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from conversation.manager import ConversationManager
from dialogue.engine import FlowEngine
from dialogue.flows import ReferenceData
from dialogue.session import SessionStore
from dialogue.slot_filling import MissingFieldsResolver
from entry.cli import CLIAdapter
from execution.executor import CommandExecutor, HttpCommandExecutor, HttpReferenceData
from execution.memory_executor import InMemoryCommandExecutor
from intent.classifier import IntentClassifier
from intent.extractor import ParameterExtractor
from intent.parser import CommandParser
from models.selector import ModelSelector
from orchestrator.dialogue_manager import DialogueManager, model_error_message
from orchestrator.dispatcher import Dispatcher
from shared.delivery_layer import build_delivery_payload
from shared.errors import ModelNotConfiguredError, ModelUnavailableError
from shared.models import TurnOutcome

# ─── Configuration ──────────────────────────────────────────────

logger = logging.getLogger(__name__)

# Ensure local .env is loaded before reading runtime configuration.
load_dotenv(override=False)

CONVERSATION_DB_PATH = os.getenv("CONVERSATION_DB_PATH", "conversations.db")
EXECUTOR_URL = os.getenv("EXECUTOR_URL", "").strip()
EXECUTOR_AUTH_TOKEN = os.getenv("EXECUTOR_AUTH_TOKEN", "").strip() or None
EXECUTOR_TIMEOUT_SECONDS = float(os.getenv("EXECUTOR_TIMEOUT_SECONDS", "30"))
API_HOST = os.getenv("API_HOST", "0.0.0.0")
API_PORT = int(os.getenv("API_PORT", "8010"))
LOG_LEVEL = getattr(logging, os.getenv("LOG_LEVEL", "INFO").strip().upper(), logging.INFO)

# ─── Rich Console ───────────────────────────────────────────────

console = Console()


def setup_logging() -> None:
    """Configure logging."""
    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


@dataclass
class Pipeline:
    """Every wired component, shared by the CLI loop and the HTTP server."""

    cli: CLIAdapter
    conversation: ConversationManager
    model_selector: ModelSelector
    classifier: IntentClassifier
    extractor: ParameterExtractor
    parser: CommandParser
    executor: CommandExecutor
    dialogue: DialogueManager

    async def close(self) -> None:
        self.conversation.close()
        await self.model_selector.close()


def build_executor() -> tuple[CommandExecutor, ReferenceData]:
    """Remote executor when EXECUTOR_URL is set, otherwise the in-memory one."""
    if EXECUTOR_URL:
        logger.info("Using remote executor at %s", EXECUTOR_URL)
        executor = HttpCommandExecutor(EXECUTOR_URL, auth_token=EXECUTOR_AUTH_TOKEN, timeout=EXECUTOR_TIMEOUT_SECONDS)
        return executor, HttpReferenceData(EXECUTOR_URL, auth_token=EXECUTOR_AUTH_TOKEN)
    logger.info("EXECUTOR_URL not set; using the in-memory executor")
    memory = InMemoryCommandExecutor()
    return memory, memory


def build_pipeline() -> Pipeline:
    """Wire all layers together."""
    # Shared
    model_selector = ModelSelector()
    conversation = ConversationManager(db_path=CONVERSATION_DB_PATH)

    # NLU
    classifier = IntentClassifier(model_selector=model_selector)
    extractor = ParameterExtractor(model_selector=model_selector)
    parser = CommandParser(classifier=classifier, extractor=extractor)

    # Dialogue + execution
    executor, reference_data = build_executor()
    dialogue = DialogueManager(
        parser=parser,
        slot_filler=MissingFieldsResolver(extractor),
        engine=FlowEngine(reference_data),
        dispatcher=Dispatcher(executor),
        conversation=conversation,
        sessions=SessionStore(),
    )

    return Pipeline(
        cli=CLIAdapter(),
        conversation=conversation,
        model_selector=model_selector,
        classifier=classifier,
        extractor=extractor,
        parser=parser,
        executor=executor,
        dialogue=dialogue,
    )


# ─── Rendering ──────────────────────────────────────────────────

def render_outcome(outcome: TurnOutcome) -> None:
    """Render one turn with Rich."""
    delivery = build_delivery_payload(outcome, channel="cli")

    if delivery.kind == "error":
        console.print(Panel(delivery.content, title="❌ Failed", border_style="red", box=box.ROUNDED))
        return

    if delivery.kind in ("options", "prompt"):
        border = "yellow" if outcome.status == "invalid" else "cyan"
        pending = outcome.pending
        subtitle = None
        if pending is not None and pending.total_steps:
            subtitle = f"step {pending.current_step}/{pending.total_steps}"
        console.print(Panel(delivery.content, title="❓ Input needed", subtitle=subtitle, border_style=border, box=box.ROUNDED))
        return

    if outcome.status == "cancelled":
        console.print(f"[dim]{delivery.content}[/dim]")
        return

    console.print(Panel(delivery.content, title="✅ Done", border_style="green", box=box.ROUNDED))


def render_parse_debug(outcome: TurnOutcome) -> None:
    parsed = outcome.parsed
    if parsed is None:
        return
    table = Table(box=box.SIMPLE, show_header=False)
    table.add_column("Field", style="dim")
    table.add_column("Value")
    table.add_row("Action", parsed.action)
    table.add_row("Confidence", f"{parsed.confidence:.2f}")
    table.add_row("Model", parsed.model or "-")
    if parsed.parameters:
        table.add_row("Parameters", json.dumps(parsed.parameters, ensure_ascii=False))
    console.print(table)


# ─── Commands ───────────────────────────────────────────────────

async def run_dialogue_loop(debug: bool = False) -> None:
    """Interactive dialogue loop."""
    console.print(Panel(
        Text.from_markup(
            "[bold cyan]Field Command Dialogue Engine[/bold cyan]\n"
            "[dim]Type a command (e.g. 'add 10 M10 nuts to rack 1 bin 6'), 'cancel', or 'exit' to quit[/dim]"
        ),
        title="📦",
        border_style="cyan",
        box=box.DOUBLE,
    ))

    try:
        pipeline = build_pipeline()
    except Exception as e:
        console.print(f"[bold red]Failed to initialize pipeline:[/] {e}")
        sys.exit(1)

    if not pipeline.model_selector.is_configured:
        console.print("[yellow]No model API key configured; only replies to pending commands will work.[/yellow]")
    console.print(f"[dim]Session: {pipeline.cli.session_id}[/dim]")
    console.print()

    try:
        while True:
            raw_input = console.input("[bold cyan]You → [/]")
            if pipeline.cli.is_exit(raw_input):
                console.print("[dim]Goodbye! 👋[/dim]")
                break
            if not raw_input.strip():
                continue

            entry_request = pipeline.cli.read_input(raw_input)
            with console.status("[yellow]Thinking...[/yellow]", spinner="dots"):
                outcome = await pipeline.dialogue.handle_turn(entry_request.session_id, entry_request.input_text)
            if debug:
                render_parse_debug(outcome)
            render_outcome(outcome)
    except (EOFError, KeyboardInterrupt):
        console.print("\n[dim]Goodbye! 👋[/dim]")
    finally:
        await pipeline.close()


async def parse_once(command: str, context: str | None = None) -> dict[str, Any]:
    """One-shot parse-command, returned as a JSON-ready dict."""
    pipeline = build_pipeline()
    try:
        parsed = await pipeline.parser.parse(command, context)
        return parsed.model_dump()
    finally:
        await pipeline.close()


def serve() -> None:
    import uvicorn

    uvicorn.run("api.server:app", host=API_HOST, port=API_PORT, log_level=logging.getLevelName(LOG_LEVEL).lower())


def main() -> None:
    """Entrypoint with CLI args."""
    setup_logging()

    parser = argparse.ArgumentParser(description="Field Command Dialogue Engine")
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    run_parser = subparsers.add_parser("run", help="Run the interactive dialogue loop")
    run_parser.add_argument("--debug", action="store_true", help="Show parsed actions and parameters")

    subparsers.add_parser("serve", help="Run the HTTP API (uvicorn)")

    parse_parser = subparsers.add_parser("parse", help="Parse one command and print JSON")
    parse_parser.add_argument("text", help="Command text")
    parse_parser.add_argument("--context", default=None, help="Optional free-text context")

    args = parser.parse_args()

    if args.command == "serve":
        serve()
    elif args.command == "parse":
        try:
            result = asyncio.run(parse_once(args.text, context=args.context))
        except (ModelUnavailableError, ModelNotConfiguredError) as e:
            console.print(f"[bold red]{model_error_message(e)}[/]")
            sys.exit(2)
        console.print_json(json.dumps(result, default=str))
    elif args.command == "run" or args.command is None:
        try:
            asyncio.run(run_dialogue_loop(debug=getattr(args, "debug", False)))
        except KeyboardInterrupt:
            pass
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
