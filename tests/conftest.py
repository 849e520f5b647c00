"""
Pytest fixtures for ChildSim tests.

Provides in-memory storage, a scripted content service and sessions
wired to them.
"""

import asyncio
import sys
from pathlib import Path

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from childsim.session import GameSession
from childsim.services.events import MemoryEventSink
from childsim.services.ledger import MemoryCreditLedger
from childsim.state import EventBus
from childsim.state.schema import (
    ChildProfile,
    InitialScenario,
    Option,
    OutcomeResult,
    PlayerProfile,
    Question,
    SessionSnapshot,
)
from childsim.state.store import MemoryBlobStorage, SnapshotStore


def make_question(age: int, qid: str | None = None) -> Question:
    return Question(
        id=qid or f"q{age}",
        question=f"Your child is {age}. What now?",
        options=[
            Option(id="A", text="Stay home", finance_delta=-1, marital_delta=1),
            Option(id="B", text="Work overtime", finance_delta=2, marital_delta=-1),
            Option(id="C", text="Start a business", finance_delta=1, is_recovery=True),
        ],
    )


class FakeContentService:
    """
    Scripted ContentService.

    Each queue entry is returned in order; an Exception entry is raised
    instead. Empty queues fall back to generated defaults. ``gate``, when
    set, holds every request until it is released.
    """

    def __init__(self, scenario: InitialScenario | None = None):
        self.scenario = scenario or InitialScenario(
            player=PlayerProfile(gender="female", age=32),
            child=ChildProfile(name="Mia", gender="female"),
            player_description="A nurse working night shifts.",
            child_description="Born in early spring.",
            finance=5,
            marital=6,
        )
        self.initial_results: list = []
        self.questions: list = []
        self.outcomes: list = []
        self.endings: list = []
        self.calls: list[tuple] = []
        self.gate: asyncio.Event | None = None

    async def _wait(self):
        if self.gate is not None:
            await self.gate.wait()

    @staticmethod
    def _next(queue: list, default):
        if queue:
            item = queue.pop(0)
            if isinstance(item, Exception):
                raise item
            return item
        return default

    @staticmethod
    def _stream(on_progress, streaming: bool, raw: str) -> None:
        if streaming and on_progress is not None:
            for end in range(7, len(raw), 7):
                on_progress(raw[:end])
            on_progress(raw)

    async def generate_initial_state(self, special_requirements=None, preloaded=None, *, streaming=False, on_progress=None):
        self.calls.append(("initial", special_requirements))
        await self._wait()
        if preloaded is not None:
            return InitialScenario.model_validate(preloaded)
        scenario = self._next(self.initial_results, self.scenario)
        self._stream(on_progress, streaming, scenario.model_dump_json(by_alias=True))
        return scenario

    async def generate_question(self, snapshot, *, streaming=False, on_progress=None):
        age = snapshot.child.age
        self.calls.append(("question", age))
        await self._wait()
        question = self._next(self.questions, make_question(age))
        self._stream(on_progress, streaming, question.model_dump_json(by_alias=True))
        return question

    async def generate_outcome_and_next_question(self, snapshot, question, choice, *, streaming=False, on_progress=None):
        age = snapshot.child.age
        self.calls.append(("outcome", age, question, choice))
        await self._wait()
        result = self._next(self.outcomes, OutcomeResult(outcome=f"Outcome at {age}: {choice}"))
        self._stream(on_progress, streaming, result.model_dump_json(by_alias=True))
        return result

    async def generate_ending(self, snapshot, *, streaming=False, on_progress=None):
        self.calls.append(("ending", snapshot.child.age))
        await self._wait()
        return self._next(self.endings, "**Your child at 18:**\nGrown up.")

    def kinds(self) -> list[str]:
        return [c[0] for c in self.calls]


@pytest.fixture
def storage():
    """In-memory blob storage."""
    return MemoryBlobStorage()


@pytest.fixture
def store(storage):
    """Snapshot store over in-memory storage."""
    return SnapshotStore(storage)


@pytest.fixture
def content():
    """Scripted content service."""
    return FakeContentService()


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def events():
    return MemoryEventSink()


@pytest.fixture
def ledger():
    """Ledger with three credits for the test player."""
    return MemoryCreditLedger({"player-1": 3})


@pytest.fixture
def session(content, store, bus, events, ledger):
    """Session with all collaborators in memory, streaming off."""
    return GameSession(
        content,
        store,
        bus=bus,
        ledger=ledger,
        events=events,
        anon_id="player-1",
        streaming=False,
    )


@pytest.fixture
def question():
    return make_question(3)


@pytest.fixture
def snapshot():
    """A mid-game snapshot with a child of four."""
    snap = SessionSnapshot(
        player=PlayerProfile(gender="male", age=35),
        child=ChildProfile(name="Leo", gender="male", age=4),
        finance=5,
        marital=5,
    )
    return snap


def run(coro):
    """Run a coroutine to completion on a fresh event loop."""
    return asyncio.run(coro)
