"""
Command-line interface for ChildSim.

Builds the session from config and runs the game loop. The loop only
reads the session's phase and calls its operations; all game logic
lives in the session controller.
"""

import argparse
import asyncio
import logging
from pathlib import Path

from rich.prompt import Confirm, Prompt

from ..config import apply_env_overrides, ensure_anon_id, load_config, set_provider
from ..content.service import LLMContentService
from ..llm import PROVIDERS, LLMError, create_llm_client
from ..services.events import HttpEventSink
from ..services.ledger import HttpCreditLedger
from ..session import GameSession, SessionError
from ..state.event_bus import EventType
from ..state.schema import GamePhase
from ..state.store import FileBlobStorage, SnapshotStore
from .renderer import (
    THEME,
    StreamView,
    console,
    show_banner,
    show_error,
    show_feedback,
    show_question,
    show_status,
    show_summary,
)


logger = logging.getLogger(__name__)

PROVIDER_CHOICES = [*PROVIDERS, "claude", "mock"]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="ChildSim - raise a child, one choice a year")
    parser.add_argument("--provider", "-p", choices=PROVIDER_CHOICES, help="Content provider")
    parser.add_argument("--model", "-m", help="Model name for the provider")
    parser.add_argument("--base-url", help="Override the provider's API base URL")
    parser.add_argument(
        "--local", "-l",
        action="store_true",
        help="Use a local OpenAI-compatible server (LM Studio, Ollama)",
    )
    parser.add_argument("--no-stream", action="store_true", help="Wait for whole responses")
    parser.add_argument("--requirements", "-r", help="Wishes for the opening scenario")
    parser.add_argument("--data-dir", default="saves", help="Where saves and config live")
    parser.add_argument("--debug", action="store_true", help="Verbose logging")
    return parser


def build_session(args: argparse.Namespace) -> GameSession:
    """Wire config, LLM client, storage and collaborators into a session."""
    data_dir = Path(args.data_dir)
    config = apply_env_overrides(load_config(data_dir))

    provider = "local" if args.local else (args.provider or config.get("provider") or "openai")
    if args.provider:
        set_provider(args.provider, data_dir)

    client = create_llm_client(
        provider,
        model=args.model or config.get("model"),
        base_url=args.base_url or config.get("base_url"),
        api_key=config.get("api_key"),
        timeout=config.get("timeout", 120),
    )
    if not client.is_available():
        logger.warning("Provider %s has no API key configured", provider)

    content = LLMContentService(client, temperature=config.get("temperature", 0.8))
    store = SnapshotStore(FileBlobStorage(data_dir))
    ledger = HttpCreditLedger(config["ledger_url"]) if config.get("ledger_url") else None
    events = HttpEventSink(config["events_url"]) if config.get("events_url") else None

    return GameSession(
        content,
        store,
        ledger=ledger,
        events=events,
        anon_id=config.get("anon_id") or ensure_anon_id(data_dir),
        email=config.get("email"),
        streaming=config.get("streaming", True) and not args.no_stream,
        style=config.get("style", "realistic"),
    )


async def ask(prompt: str, **kwargs) -> str:
    return await asyncio.to_thread(Prompt.ask, prompt, **kwargs)


async def confirm(prompt: str, default: bool = True) -> bool:
    return await asyncio.to_thread(Confirm.ask, prompt, default=default)


async def play_turn(session: GameSession) -> bool:
    """Handle input on the question screen. Returns False to quit."""
    question = session.current_question
    show_status(session.snapshot)
    show_question(question)

    answer = (await ask("[dim]Your choice[/dim]")).strip()
    if answer in ("/quit", "/exit"):
        return False
    if answer == "/new":
        session.reset_to_welcome()
        return True
    if answer == "/stream":
        enabled = session.toggle_streaming()
        console.print(f"[{THEME['dim']}]Streaming {'on' if enabled else 'off'}[/{THEME['dim']}]")
        return True

    option_id = answer
    if answer.startswith("/custom"):
        text = answer[len("/custom"):].strip()
        if not text:
            show_error("Write your answer after /custom")
            return True
        option_id = session.stage_custom_option(text)
    elif question.find_option(answer) is None:
        matches = [o.id for o in question.options if o.id.lower() == answer.lower()]
        option_id = matches[0] if matches else answer

    try:
        await session.select_option(option_id)
    except SessionError as e:
        show_error(str(e))
    return True


async def run_game(session: GameSession, requirements: str | None = None) -> None:
    """Main loop: dispatch on the session phase until the player quits."""
    view = StreamView(session.bus)
    session.bus.on(
        EventType.FALLBACK_USED,
        lambda event: console.print(
            f"[{THEME['dim']}]The story service is unavailable; improvising.[/{THEME['dim']}]"
        ),
    )
    show_banner()
    await session.boot()

    if session.has_saved_game and await confirm("Continue your saved game?"):
        await session.continue_saved_game()

    while True:
        phase = session.phase

        if phase == GamePhase.WELCOME:
            if not await confirm("Start a new game?"):
                break
            wishes = requirements
            if wishes is None:
                wishes = (await ask("[dim]Any wishes for your family? (Enter to skip)[/dim]", default="")).strip() or None
            await session.start_game(wishes)
            requirements = None

        elif phase == GamePhase.INITIALIZATION_FAILED:
            show_error(f"Could not create a new family: {session.error}")
            if not await confirm("Try again?"):
                break
            await session.initialize_game()

        elif phase == GamePhase.FEEDBACK:
            snapshot = session.snapshot
            show_feedback(snapshot.feedback_text or "")
            show_status(snapshot)
            answer = (await ask("[dim]Enter to continue, /new or /quit[/dim]", default="")).strip()
            if answer in ("/quit", "/exit"):
                break
            if answer == "/new":
                session.reset_to_welcome()
                continue
            await session.continue_game()

        elif phase == GamePhase.PLAYING:
            if session.error:
                show_error(f"Something went wrong: {session.error}")
            if not await play_turn(session):
                break

        elif phase == GamePhase.SUMMARY:
            show_summary(session.snapshot.ending_summary or "")
            if not await confirm("Play again?", default=False):
                break
            session.reset_to_welcome()

        else:
            # a request is still in flight
            await asyncio.sleep(0.1)

    view.close()
    events = session.events
    if isinstance(events, HttpEventSink):
        await events.flush()
    console.print(f"[{THEME['dim']}]Your game is saved.[/{THEME['dim']}]")


def main(argv: list[str] | None = None) -> None:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    try:
        session = build_session(args)
    except (ValueError, LLMError) as e:
        show_error(str(e))
        raise SystemExit(2) from e

    try:
        asyncio.run(run_game(session, args.requirements))
    except KeyboardInterrupt:
        console.print(f"\n[{THEME['dim']}]Goodbye.[/{THEME['dim']}]")
