"""
Rich rendering for the terminal front end.

Static screens (question, feedback, summary) are printed as panels;
streamed content is shown in a Live panel fed by the reveal scheduler.
"""

from rich.console import Console
from rich.live import Live
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from ..state.event_bus import EventBus, EventType, GameEvent
from ..state.schema import ContentKind, Question, SessionSnapshot
from ..streaming.reveal import RevealScheduler


console = Console()

THEME = {
    "primary": "medium_purple",
    "secondary": "grey70",
    "warning": "dark_goldenrod",
    "danger": "indian_red",
    "accent": "light_sea_green",
    "dim": "dim",
    "text": "grey85",
}

STREAM_TITLES = {
    ContentKind.INITIAL.value: "A new family",
    ContentKind.QUESTION.value: "What happens next",
    ContentKind.OUTCOME.value: "Outcome",
}


def level_bar(value: int, width: int = 10) -> str:
    return "█" * value + "░" * (width - value)


def show_banner() -> None:
    console.print(Panel(
        Text("Raise a child from birth to eighteen.\nEvery choice stays with them.", justify="center"),
        title="[bold]ChildSim[/bold]",
        border_style=THEME["primary"],
    ))


def show_status(snapshot: SessionSnapshot) -> None:
    """One-line family status: age, finances, relationship."""
    if snapshot.child is None:
        return
    table = Table.grid(padding=(0, 2))
    table.add_row(
        f"[{THEME['accent']}]{snapshot.child.name}, {snapshot.child.age}[/{THEME['accent']}]",
        f"Finances {level_bar(snapshot.finance)} {snapshot.finance}/10",
        f"Relationship {level_bar(snapshot.marital)} {snapshot.marital}/10",
    )
    console.print(table)
    if snapshot.is_bankrupt:
        console.print(f"[{THEME['danger']}]The family is bankrupt.[/{THEME['danger']}]")
    if snapshot.is_single_parent:
        console.print(f"[{THEME['dim']}]Raising your child alone.[/{THEME['dim']}]")


def show_question(question: Question) -> None:
    body = Text(question.question + "\n\n")
    for option in question.options:
        body.append(f"  {option.id}", style=f"bold {THEME['accent']}")
        body.append(f"  {option.text}\n")
    title = "Important event" if question.is_extreme_event else "Decision"
    border = THEME["warning"] if question.is_extreme_event else THEME["primary"]
    console.print(Panel(body, title=title, border_style=border))
    console.print(f"[{THEME['dim']}]Pick an option, /custom <your answer>, /stream, /new or /quit[/{THEME['dim']}]")


def show_feedback(text: str) -> None:
    console.print(Panel(Markdown(text), border_style=THEME["secondary"]))


def show_summary(text: str) -> None:
    console.print(Panel(Markdown(text), title="Eighteen years later", border_style=THEME["primary"]))


def show_error(message: str) -> None:
    console.print(f"[{THEME['danger']}]{message}[/{THEME['danger']}]")


class StreamView:
    """
    Shows streamed content live while it arrives.

    Subscribes to the session's bus; each progress event retargets the
    reveal scheduler, and completion shows the final text and closes the
    live panel.
    """

    def __init__(self, bus: EventBus):
        self.bus = bus
        self._live: Live | None = None
        self._title = ""
        self._scheduler: RevealScheduler | None = None
        bus.on(EventType.STREAM_STARTED, self._on_started)
        bus.on(EventType.STREAM_PROGRESS, self._on_progress)
        bus.on(EventType.STREAM_COMPLETED, self._on_completed)
        bus.on(EventType.SESSION_CLEARED, lambda event: self.close())

    def _panel(self, text: str) -> Panel:
        return Panel(Markdown(text or "…"), title=self._title, border_style=THEME["dim"])

    def _render(self, text: str) -> None:
        if self._live is not None:
            self._live.update(self._panel(text))

    def _on_started(self, event: GameEvent) -> None:
        self.close()
        self._title = STREAM_TITLES.get(event.data.get("kind"), "")
        self._live = Live(self._panel(""), console=console, transient=True, refresh_per_second=20)
        self._live.start()
        self._scheduler = RevealScheduler(self._render, on_complete=self.close)

    def _on_progress(self, event: GameEvent) -> None:
        if self._scheduler is not None:
            self._scheduler.update(event.data.get("display", ""))

    def _on_completed(self, event: GameEvent) -> None:
        if self._scheduler is not None:
            self._scheduler.complete(event.data.get("display"))

    def close(self) -> None:
        scheduler, self._scheduler = self._scheduler, None
        if scheduler is not None:
            scheduler.reset()
        if self._live is not None:
            self._live.stop()
            self._live = None
