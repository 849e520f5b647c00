"""
Game session controller.

``GameSession`` owns the session snapshot and drives it through the
phase state machine. It is the only component front ends call into.

Guarantees:
- Phases change only along VALID_TRANSITIONS (reset to WELCOME is always allowed).
- One action at a time: an action invoked while another is in flight is
  rejected, logged and reported on the bus as ACTION_REJECTED.
- Every content request carries an epoch; progress callbacks and results
  from a superseded request are dropped.
- Content and ledger failures never escape; they become fallback content,
  a recovery question or a recorded error.
"""

import asyncio
import functools
import logging
from uuid import uuid4

from .content.service import ContentService
from .services.events import EventSink
from .services.ledger import CreditLedger, LedgerError
from .state.event_bus import EventBus, EventType
from .state.schema import (
    ContentKind,
    ENDING_AGE,
    GamePhase,
    InitialScenario,
    Option,
    PendingChoice,
    Question,
    START_CHOICE,
    START_QUESTION,
    SessionSnapshot,
    StreamingBuffer,
    TurnRecord,
)
from .state.store import SnapshotStore
from .streaming.assembler import StreamingAssembler
from .systems.outcome import apply_choice, initial_levels, passive_recovery
from .systems.recovery import (
    RELOAD_OPTION_ID,
    RETRY_OPTION_ID,
    ResumePlan,
    build_fallback_question,
    build_recovery_question,
    plan_resume,
)


logger = logging.getLogger(__name__)

LAST_TURN_AGE = ENDING_AGE - 1
CUSTOM_OPTION_PREFIX = "custom_"
ENDING_FALLBACK = (
    "The story of these eighteen years could not be written down this time. "
    "Your choices still shaped who your child became."
)


# -----------------------------------------------------------------------------
# Phase state machine
# -----------------------------------------------------------------------------

VALID_TRANSITIONS: dict[GamePhase, set[GamePhase]] = {
    GamePhase.UNINITIALIZED: {GamePhase.INITIALIZING},
    GamePhase.INITIALIZING: {
        GamePhase.WELCOME,
        GamePhase.INITIALIZATION_FAILED,
        GamePhase.FEEDBACK,
    },
    GamePhase.WELCOME: {
        GamePhase.INITIALIZING,
        GamePhase.FEEDBACK,
        GamePhase.LOADING_QUESTION,
        GamePhase.PLAYING,
        GamePhase.SUMMARY,
    },
    GamePhase.INITIALIZATION_FAILED: {GamePhase.INITIALIZING},
    GamePhase.FEEDBACK: {
        GamePhase.LOADING_QUESTION,
        GamePhase.ENDING_GAME,
        GamePhase.INITIALIZING,
    },
    GamePhase.LOADING_QUESTION: {GamePhase.PLAYING},
    GamePhase.PLAYING: {GamePhase.GENERATING_OUTCOME, GamePhase.LOADING_QUESTION},
    GamePhase.GENERATING_OUTCOME: {GamePhase.FEEDBACK, GamePhase.PLAYING},
    GamePhase.ENDING_GAME: {GamePhase.SUMMARY},
    GamePhase.SUMMARY: {GamePhase.INITIALIZING},
}


class SessionError(Exception):
    """Error in how the session was driven."""
    pass


class InvalidPhaseError(SessionError):
    """Attempted operation not valid in current phase."""
    def __init__(self, current: GamePhase, attempted: str):
        self.current = current
        self.attempted = attempted
        super().__init__(f"Cannot {attempted} during {current.value} phase.")


class InvalidSelectionError(SessionError):
    """The chosen option is not on offer."""
    def __init__(self, option_id: str):
        self.option_id = option_id
        super().__init__(f"Unknown option '{option_id}'")


def _exclusive(action):
    """Reject the action if another one is already in flight."""
    @functools.wraps(action)
    async def wrapper(self: "GameSession", *args, **kwargs):
        if self._busy is not None:
            logger.warning(
                "Rejected %s while %s is in progress", action.__name__, self._busy[0],
            )
            self.bus.emit(
                EventType.ACTION_REJECTED,
                epoch=self._epoch,
                action=action.__name__,
                busy=self._busy[0],
            )
            return None
        token = (action.__name__, object())
        self._busy = token
        try:
            return await action(self, *args, **kwargs)
        finally:
            if self._busy is token:
                self._busy = None
    return wrapper


def _initial_narrative(scenario: InitialScenario) -> tuple[str, str]:
    """(full narrative, descriptive part) for the opening screen."""
    parent = {"male": "father", "female": "mother"}.get(scenario.player.gender, "parent")
    kid = {"male": "son", "female": "daughter"}.get(scenario.child.gender, "child")
    descriptive = "\n\n".join(p for p in (
        f"As a {scenario.player.age}-year-old {parent}, you are about to start raising "
        f"{scenario.child.name}, your newborn {kid}.",
        scenario.player_description,
        scenario.child_description,
    ) if p)
    closing = (
        "From birth to adulthood you will face the choices every parent faces, "
        "and they will shape your child and your family.\n\nReady to begin?"
    )
    return f"{descriptive}\n\n{closing}", descriptive


class GameSession:
    """
    Turn loop for one locally persisted game.

    Usage:
        session = GameSession(content, SnapshotStore(FileBlobStorage(path)))
        await session.boot()
        await session.initialize_game()
        await session.continue_game()        # first question
        await session.select_option("A")
        await session.continue_game()        # next question
    """

    def __init__(
        self,
        content: ContentService,
        store: SnapshotStore,
        *,
        bus: EventBus | None = None,
        ledger: CreditLedger | None = None,
        events: EventSink | None = None,
        anon_id: str | None = None,
        email: str | None = None,
        streaming: bool = True,
        style: str = "realistic",
    ):
        self.content = content
        self.store = store
        self.bus = bus or EventBus()
        self.ledger = ledger
        self.events = events
        self.anon_id = anon_id or uuid4().hex
        self.email = email
        self.streaming = streaming
        self.style = style

        self._phase = GamePhase.UNINITIALIZED
        self._snapshot = SessionSnapshot()
        self._custom_options: dict[str, Option] = {}
        self._assembler: StreamingAssembler | None = None
        self._epoch = 0
        self._busy: tuple[str, object] | None = None

        self.error: str | None = None
        self.ledger_error: LedgerError | None = None
        self.is_loading = False
        self.is_streaming = False
        self.has_saved_game = False

    # -------------------------------------------------------------------------
    # State access
    # -------------------------------------------------------------------------

    @property
    def phase(self) -> GamePhase:
        """Current phase of the session state machine."""
        return self._phase

    @property
    def snapshot(self) -> SessionSnapshot:
        """A copy of the current session record."""
        return self._snapshot.model_copy(deep=True)

    @property
    def current_question(self) -> Question | None:
        return self._snapshot.current_question

    @property
    def buffer(self) -> StreamingBuffer:
        if self._assembler is None:
            return StreamingBuffer()
        return self._assembler.buffer

    @property
    def epoch(self) -> int:
        return self._epoch

    @property
    def busy(self) -> bool:
        return self._busy is not None

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _transition(self, to: GamePhase) -> None:
        """Transition to a new phase, enforcing valid transitions."""
        before = self._phase
        if to != GamePhase.WELCOME and to not in VALID_TRANSITIONS.get(before, set()):
            raise InvalidPhaseError(before, f"transition to {to.value}")
        self._phase = to
        logger.debug("Phase %s -> %s", before.value, to.value)
        self.bus.emit(
            EventType.PHASE_CHANGED,
            epoch=self._epoch,
            before=before.value,
            after=to.value,
        )

    def _require_phase(self, attempted: str, *phases: GamePhase) -> None:
        if self._phase not in phases:
            raise InvalidPhaseError(self._phase, attempted)

    def _new_epoch(self) -> int:
        self._epoch += 1
        return self._epoch

    def _is_current(self, epoch: int) -> bool:
        return epoch == self._epoch

    def _persist(self) -> None:
        if self.store.save(self._snapshot):
            self.bus.emit(EventType.SESSION_SAVED, epoch=self._epoch)

    def _record_error(self, error: Exception | str) -> None:
        self.error = str(error)
        self._snapshot.last_error = self.error

    def _clear_error(self) -> None:
        self.error = None
        self._snapshot.last_error = None

    def _report(self, event_type: str, payload: dict | None = None) -> None:
        if self.events is None:
            return
        self.events.log_event(self.anon_id, self._snapshot.kid_id, event_type, payload)

    def _start_request(self, kind: ContentKind):
        """Open a content request; returns (epoch, progress callback or None)."""
        epoch = self._new_epoch()
        self.is_loading = True
        if not self.streaming:
            self._assembler = None
            return epoch, None

        assembler = StreamingAssembler(kind)
        self._assembler = assembler
        self.is_streaming = True
        self.bus.emit(EventType.STREAM_STARTED, epoch=epoch, kind=kind.value)

        def on_progress(partial: str) -> None:
            if not self._is_current(epoch):
                logger.debug("Dropping progress from superseded request %d", epoch)
                return
            try:
                display = assembler.replace(partial)
            except Exception as e:
                logger.warning("Could not render streamed %s: %s", kind.value, e, exc_info=True)
                return
            self.bus.emit(
                EventType.STREAM_PROGRESS,
                epoch=epoch,
                kind=kind.value,
                display=display,
            )

        return epoch, on_progress

    def _finish_request(self, epoch: int) -> None:
        if not self._is_current(epoch):
            return
        self.is_loading = False
        if self.is_streaming and self._assembler is not None:
            try:
                display = self._assembler.finish()
            except Exception as e:
                # display only; the phase transition still goes ahead
                logger.warning("Could not render final %s: %s", self._assembler.kind.value, e, exc_info=True)
                display = self._assembler.display
            self.bus.emit(
                EventType.STREAM_COMPLETED,
                epoch=epoch,
                kind=self._assembler.kind.value,
                display=display,
            )
        self.is_streaming = False

    # -------------------------------------------------------------------------
    # Startup
    # -------------------------------------------------------------------------

    @_exclusive
    async def boot(self) -> GamePhase:
        """Bring the session up to the welcome screen."""
        return self._boot()

    def _boot(self) -> GamePhase:
        self._require_phase("boot", GamePhase.UNINITIALIZED)
        self._transition(GamePhase.INITIALIZING)
        self.has_saved_game = self.store.load() is not None
        self._transition(GamePhase.WELCOME)
        return self._phase

    @_exclusive
    async def start_game(
        self,
        special_requirements: str | None = None,
        preloaded: dict | None = None,
    ) -> GamePhase | None:
        """Welcome-screen entry point: boot if needed, then start a new game."""
        if self._phase == GamePhase.UNINITIALIZED:
            self._boot()
        return await self._initialize_game(special_requirements, preloaded)

    @_exclusive
    async def initialize_game(
        self,
        special_requirements: str | None = None,
        preloaded: dict | None = None,
    ) -> GamePhase | None:
        """
        Start a new game, discarding any saved one.

        Args:
            special_requirements: Free-text wishes for the opening scenario
            preloaded: A ready-made scenario to use instead of generating one

        Returns:
            FEEDBACK on success, INITIALIZATION_FAILED on failure,
            None if superseded
        """
        return await self._initialize_game(special_requirements, preloaded)

    async def _initialize_game(
        self,
        special_requirements: str | None,
        preloaded: dict | None,
    ) -> GamePhase | None:
        self._transition(GamePhase.INITIALIZING)
        self.store.clear()
        self._snapshot = SessionSnapshot()
        self._custom_options.clear()
        self.error = None
        self.has_saved_game = False

        epoch, on_progress = self._start_request(ContentKind.INITIAL)
        try:
            scenario = await self.content.generate_initial_state(
                special_requirements,
                preloaded,
                streaming=self.streaming,
                on_progress=on_progress,
            )
        except Exception as e:
            if not self._is_current(epoch):
                return None
            logger.warning("Initial state generation failed: %s", e, exc_info=True)
            self._finish_request(epoch)
            self.error = str(e)
            self._transition(GamePhase.INITIALIZATION_FAILED)
            return self._phase
        if not self._is_current(epoch):
            return None
        self._finish_request(epoch)

        finance, marital, single = initial_levels(scenario)
        narrative, descriptive = _initial_narrative(scenario)
        child = scenario.child.model_copy(update={"age": 0})

        snap = self._snapshot
        snap.player = scenario.player
        snap.child = child
        snap.player_description = scenario.player_description
        snap.child_description = scenario.child_description
        snap.finance = finance
        snap.marital = marital
        snap.is_single_parent = single
        snap.is_bankrupt = finance <= 0
        snap.history = []
        snap.upsert_record(TurnRecord(
            age=0,
            question=START_QUESTION,
            choice=START_CHOICE,
            outcome=descriptive,
        ))
        snap.feedback_text = narrative

        self._transition(GamePhase.FEEDBACK)
        self._persist()

        if self.events is not None:
            self.events.init_session(self.anon_id, snap.kid_id, self.style, special_requirements)
        self._report("game_started", {
            "finance": finance,
            "marital": marital,
            "singleParent": single,
            "preloaded": preloaded is not None,
        })
        return self._phase

    # -------------------------------------------------------------------------
    # Questions
    # -------------------------------------------------------------------------

    @_exclusive
    async def load_question(self) -> GamePhase | None:
        """
        Fetch a question for the child's current age.

        A failed fetch is replaced by a local fallback question, so this
        always lands in PLAYING unless superseded.
        """
        return await self._load_question()

    async def _load_question(self) -> GamePhase | None:
        snap = self._snapshot
        if not snap.is_complete:
            raise SessionError("Cannot load a question without a player and child")

        self._transition(GamePhase.LOADING_QUESTION)
        self._custom_options.clear()
        snap.current_question = None
        snap.feedback_text = None

        epoch, on_progress = self._start_request(ContentKind.QUESTION)
        try:
            question = await self.content.generate_question(
                snap,
                streaming=self.streaming,
                on_progress=on_progress,
            )
        except Exception as e:
            if not self._is_current(epoch):
                return None
            logger.warning("Question generation failed, using fallback: %s", e)
            question = build_fallback_question(snap.child.age)
            self._record_error(e)
            self.bus.emit(EventType.FALLBACK_USED, epoch=epoch, error=str(e))
        else:
            if not self._is_current(epoch):
                return None
            self._clear_error()
        self._finish_request(epoch)

        return self._present_question(question)

    def _present_question(self, question: Question) -> GamePhase:
        snap = self._snapshot
        snap.current_question = question
        snap.next_question = None
        self._transition(GamePhase.PLAYING)
        self._persist()
        self.bus.emit(
            EventType.QUESTION_READY,
            epoch=self._epoch,
            age=snap.child.age if snap.child else None,
            question_id=question.id,
        )
        return self._phase

    def stage_custom_option(
        self,
        text: str,
        finance_delta: int = 0,
        marital_delta: int = 0,
    ) -> str:
        """
        Offer a player-written answer for the current question.

        Returns:
            The option id to pass to select_option()
        """
        self._require_phase("add a custom option", GamePhase.PLAYING)
        if self._snapshot.current_question is None:
            raise SessionError("No question to answer")
        text = text.strip()
        if not text:
            raise InvalidSelectionError(CUSTOM_OPTION_PREFIX)
        option_id = f"{CUSTOM_OPTION_PREFIX}{uuid4().hex[:8]}"
        self._custom_options[option_id] = Option(
            id=option_id,
            text=text,
            finance_delta=finance_delta,
            marital_delta=marital_delta,
        )
        return option_id

    # -------------------------------------------------------------------------
    # Choices
    # -------------------------------------------------------------------------

    @_exclusive
    async def select_option(self, option_id: str) -> GamePhase | None:
        """
        Answer the current question.

        The pending choice is written and saved before the outcome is
        requested and cleared only when it arrives. ``retry`` and
        ``reload`` are recovery actions and never touch the counters.

        Raises:
            InvalidPhaseError: Not in PLAYING
            InvalidSelectionError: The option is not on offer
        """
        self._require_phase("select an option", GamePhase.PLAYING)
        snap = self._snapshot

        if option_id == RETRY_OPTION_ID:
            return await self._retry()
        if option_id == RELOAD_OPTION_ID:
            return self._reload()

        pending = snap.pending_choice
        if pending is not None and pending.option_id == option_id:
            # choice already applied; only the outcome is missing
            return await self._retry()

        question = snap.current_question
        if question is None or not snap.is_complete:
            raise SessionError("No question to answer")

        option = question.find_option(option_id) or self._custom_options.get(option_id)
        if option is None:
            raise InvalidSelectionError(option_id)

        was_bankrupt = snap.is_bankrupt
        delta = apply_choice(
            snap.finance,
            snap.marital,
            snap.child.age,
            option,
            is_bankrupt=was_bankrupt,
            is_single_parent=snap.is_single_parent,
        )
        snap.finance = delta.finance
        snap.marital = delta.marital
        snap.is_bankrupt = delta.is_bankrupt
        snap.is_single_parent = delta.is_single_parent
        self.bus.emit(
            EventType.LEVELS_CHANGED,
            epoch=self._epoch,
            finance=delta.finance,
            marital=delta.marital,
            finance_change=delta.finance_change,
            marital_change=delta.marital_change,
        )
        if delta.is_bankrupt and not was_bankrupt:
            self.bus.emit(EventType.BANKRUPTCY, epoch=self._epoch, age=snap.child.age)

        snap.pending_choice = PendingChoice(
            question_id=question.id,
            option_id=option.id,
            question_text=question.question,
            option_text=option.text,
        )
        self._clear_error()
        self._persist()

        self._report("choice_made", {
            "age": snap.child.age,
            "questionId": question.id,
            "optionId": option.id,
            "custom": option.id.startswith(CUSTOM_OPTION_PREFIX),
            "finance": delta.finance,
            "marital": delta.marital,
        })
        return await self._request_outcome()

    async def _request_outcome(self) -> GamePhase | None:
        snap = self._snapshot
        pending = snap.pending_choice
        self._transition(GamePhase.GENERATING_OUTCOME)

        epoch, on_progress = self._start_request(ContentKind.OUTCOME)
        try:
            result = await self.content.generate_outcome_and_next_question(
                snap,
                pending.question_text,
                pending.option_text,
                streaming=self.streaming,
                on_progress=on_progress,
            )
        except Exception as e:
            if not self._is_current(epoch):
                return None
            logger.warning("Outcome generation failed: %s", e)
            self._finish_request(epoch)
            self._record_error(e)
            snap.current_question = build_recovery_question(snap)
            self._transition(GamePhase.PLAYING)
            self._persist()
            return self._phase
        if not self._is_current(epoch):
            return None
        self._finish_request(epoch)

        age = snap.child.age
        snap.upsert_record(TurnRecord(
            age=age,
            question=pending.question_text,
            choice=pending.option_text,
            outcome=result.outcome,
        ))
        snap.feedback_text = result.outcome
        snap.next_question = result.next_question
        snap.is_ending = result.is_ending or age >= LAST_TURN_AGE
        snap.current_question = None
        snap.pending_choice = None
        self._custom_options.clear()
        self._clear_error()

        self._transition(GamePhase.FEEDBACK)
        self._persist()
        self.bus.emit(EventType.TURN_RECORDED, epoch=epoch, age=age)
        return self._phase

    async def _retry(self) -> GamePhase | None:
        self._clear_error()
        if self._snapshot.pending_choice is not None:
            logger.info("Retrying outcome for pending choice")
            return await self._request_outcome()
        logger.info("Retrying question fetch")
        return await self._load_question()

    def _reload(self) -> GamePhase:
        """Drop in-memory state and return to the welcome screen with the saved game."""
        logger.info("Reloading session from storage")
        self._new_epoch()
        loaded = self.store.load()
        self._snapshot = loaded or SessionSnapshot()
        self._custom_options.clear()
        self._assembler = None
        self.is_loading = False
        self.is_streaming = False
        self.error = None
        self.has_saved_game = loaded is not None
        self._transition(GamePhase.WELCOME)
        return self._phase

    # -------------------------------------------------------------------------
    # Advancing
    # -------------------------------------------------------------------------

    @_exclusive
    async def continue_game(self) -> GamePhase | None:
        """
        Move on from the feedback screen.

        From the opening narrative this loads the first question. After the
        last turn it writes the ending. Otherwise the child ages a year and
        the next question is shown, using the lookahead question when the
        last outcome supplied one.
        """
        self._require_phase("continue", GamePhase.FEEDBACK)
        snap = self._snapshot
        if not snap.is_complete:
            raise SessionError("Cannot continue without a player and child")

        if snap.only_start_record:
            return await self._load_question()

        if snap.is_ending or snap.child.age >= LAST_TURN_AGE:
            return await self._generate_ending()

        new_age = snap.child.age + 1
        snap.child.age = new_age
        before = snap.finance
        snap.finance = passive_recovery(snap.finance, new_age)
        if snap.finance != before:
            snap.is_bankrupt = snap.finance <= 0
            self.bus.emit(
                EventType.LEVELS_CHANGED,
                epoch=self._epoch,
                finance=snap.finance,
                marital=snap.marital,
                finance_change=snap.finance - before,
                marital_change=0,
            )

        prefetched = snap.next_question
        if prefetched is not None:
            logger.debug("Using lookahead question for age %d", new_age)
            self._transition(GamePhase.LOADING_QUESTION)
            self._custom_options.clear()
            snap.feedback_text = None
            return self._present_question(prefetched)
        return await self._load_question()

    async def _generate_ending(self) -> GamePhase | None:
        snap = self._snapshot
        self._transition(GamePhase.ENDING_GAME)
        snap.feedback_text = None
        final = snap.model_copy(deep=True)
        final.child.age = ENDING_AGE

        epoch, on_progress = self._start_request(ContentKind.OUTCOME)
        try:
            summary = await self.content.generate_ending(
                final,
                streaming=self.streaming,
                on_progress=on_progress,
            )
        except Exception as e:
            if not self._is_current(epoch):
                return None
            logger.warning("Ending generation failed: %s", e)
            self._finish_request(epoch)
            self._record_error(e)
            summary = ENDING_FALLBACK
        else:
            if not self._is_current(epoch):
                return None
            self._finish_request(epoch)
            self._clear_error()

        snap.child.age = ENDING_AGE
        snap.is_ending = True
        snap.ending_summary = summary
        self._transition(GamePhase.SUMMARY)
        self._persist()
        self._report("game_completed", {
            "finance": snap.finance,
            "marital": snap.marital,
            "turns": len(snap.history),
        })
        return self._phase

    # -------------------------------------------------------------------------
    # Saved games
    # -------------------------------------------------------------------------

    @_exclusive
    async def continue_saved_game(self) -> GamePhase | None:
        """
        Resume the saved game after a restart.

        An interrupted turn comes back as a recovery question offering the
        original choice plus retry and reload; a failed question fetch is
        re-issued; otherwise the saved screen is shown again.
        """
        if self._phase == GamePhase.UNINITIALIZED:
            self._boot()
        self._require_phase("continue a saved game", GamePhase.WELCOME)

        loaded = self.store.load()
        if loaded is None or not loaded.is_complete:
            logger.info("No saved game to continue")
            self.has_saved_game = False
            return self._phase

        self._snapshot = loaded
        self._custom_options.clear()
        self.error = loaded.last_error
        plan = plan_resume(loaded)
        logger.info("Resuming saved game: %s", plan.value)

        if plan == ResumePlan.RECOVERY_QUESTION:
            loaded.current_question = build_recovery_question(loaded)
            self._transition(GamePhase.PLAYING)
            self._persist()
            return self._phase
        if plan == ResumePlan.RESUME_SUMMARY:
            self._transition(GamePhase.SUMMARY)
            return self._phase
        if plan == ResumePlan.RESUME_QUESTION:
            self._transition(GamePhase.PLAYING)
            return self._phase
        if plan == ResumePlan.RESUME_FEEDBACK:
            self._transition(GamePhase.FEEDBACK)
            return self._phase

        # REFETCH_QUESTION and LOAD_QUESTION
        self._clear_error()
        return await self._load_question()

    def reset_to_welcome(self) -> GamePhase:
        """
        Abandon the current game and return to the welcome screen.

        Allowed at any time; an in-flight request is superseded and its
        result dropped.
        """
        self._new_epoch()
        self._busy = None
        self.store.clear()
        self._snapshot = SessionSnapshot()
        self._custom_options.clear()
        self._assembler = None
        self.is_loading = False
        self.is_streaming = False
        self.error = None
        self.has_saved_game = False
        self._transition(GamePhase.WELCOME)
        self.bus.emit(EventType.SESSION_CLEARED, epoch=self._epoch)
        return self._phase

    def toggle_streaming(self) -> bool:
        """Switch between streamed and whole-response content."""
        self.streaming = not self.streaming
        logger.info("Streaming %s", "enabled" if self.streaming else "disabled")
        return self.streaming

    # -------------------------------------------------------------------------
    # Premium actions
    # -------------------------------------------------------------------------

    async def credit_balance(self) -> int | None:
        """Current credit balance, or None if it could not be read."""
        if self.ledger is None:
            return None
        try:
            return await asyncio.to_thread(self.ledger.fetch_balance, self.anon_id, self.email)
        except LedgerError as e:
            logger.warning("Could not read credit balance: %s", e)
            self.ledger_error = e
            return None

    @_exclusive
    async def attach_image(self, age: int, image_url: str) -> int | None:
        """
        Attach a generated image to the turn for ``age``, spending one credit.

        Returns:
            Remaining credits, or None if the credit could not be spent
            (see ``ledger_error``)
        """
        record = self._snapshot.record_for_age(age)
        if record is None:
            raise SessionError(f"No turn recorded for age {age}")
        if self.ledger is None:
            raise SessionError("No credit ledger configured")

        self.ledger_error = None
        try:
            remaining = await asyncio.to_thread(self.ledger.consume, self.anon_id, self.email, 1)
        except LedgerError as e:
            logger.warning("Credit not consumed for image at age %d: %s", age, e)
            self.ledger_error = e
            return None

        record = self._snapshot.record_for_age(age)
        if record is None:
            # game was reset while the ledger call was in flight
            return remaining
        record.image_url = image_url
        self._persist()
        self.bus.emit(EventType.IMAGE_ATTACHED, epoch=self._epoch, age=age, remaining=remaining)
        if self.events is not None:
            self.events.set_flags(self.anon_id, self._snapshot.kid_id, {"imageGenerated": True})
        return remaining
