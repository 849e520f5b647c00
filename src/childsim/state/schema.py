"""
Pydantic models for the ChildSim session record.

The snapshot is versioned so stale saves can be discarded on load.
Field names are snake_case; the camelCase spellings produced by the
content service are accepted as aliases at ingestion.
"""

from enum import Enum
from typing import Any, Literal

from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator


SCHEMA_VERSION = 1

MIN_LEVEL = 0
MAX_LEVEL = 10
ENDING_AGE = 18

START_QUESTION = "Game start"
START_CHOICE = "Begin the journey"


# -----------------------------------------------------------------------------
# Enums
# -----------------------------------------------------------------------------

class GamePhase(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    WELCOME = "welcome"
    INITIALIZATION_FAILED = "initialization_failed"
    FEEDBACK = "feedback"
    LOADING_QUESTION = "loading_question"
    PLAYING = "playing"
    GENERATING_OUTCOME = "generating_outcome"
    ENDING_GAME = "ending_game"
    SUMMARY = "summary"


class ContentKind(str, Enum):
    QUESTION = "question"
    OUTCOME = "outcome"
    INITIAL = "initial"


class WealthTier(str, Enum):
    POOR = "poor"
    MIDDLE = "middle"
    WEALTHY = "wealthy"


class _Model(BaseModel):
    """Base for models that accept camelCase input."""
    model_config = ConfigDict(populate_by_name=True)


# -----------------------------------------------------------------------------
# Profiles
# -----------------------------------------------------------------------------

class PlayerProfile(_Model):
    """The parent the player is role-playing."""
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    gender: Literal["male", "female", "nonBinary"] = "female"
    age: int = 30


class ChildProfile(_Model):
    """The child being raised. Extra descriptive traits are kept as-is."""
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    name: str
    gender: Literal["male", "female"] = "female"
    age: int = 0
    haircolor: str = ""
    race: str = ""


# -----------------------------------------------------------------------------
# Questions and options
# -----------------------------------------------------------------------------

class Option(_Model):
    """
    A single answer to a question.

    Older content carries a ``cost`` instead of a finance delta; it is
    folded into ``finance_delta`` (as ``-cost``) when no explicit delta
    is present.
    """
    id: str
    text: str
    finance_delta: int = Field(default=0, alias="financeDelta")
    marital_delta: int = Field(default=0, alias="maritalDelta")
    is_recovery: bool = Field(default=False, alias="isRecovery")

    @model_validator(mode="before")
    @classmethod
    def _normalize_legacy(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        has_delta = "finance_delta" in data or "financeDelta" in data
        if not has_delta and data.get("cost") is not None:
            data["finance_delta"] = -int(data["cost"])
        data.pop("cost", None)
        for key in ("finance_delta", "financeDelta", "marital_delta", "maritalDelta"):
            if data.get(key) is None:
                data.pop(key, None)
            else:
                data[key] = int(round(float(data[key])))
        if "id" in data:
            data["id"] = str(data["id"])
        return data


class Question(_Model):
    """A situation presented to the player, with its choices."""
    id: str | None = None
    question: str
    options: list[Option] = Field(default_factory=list)
    is_extreme_event: bool = Field(default=False, alias="isExtremeEvent")

    def find_option(self, option_id: str) -> Option | None:
        for option in self.options:
            if option.id == option_id:
                return option
        return None


# -----------------------------------------------------------------------------
# History
# -----------------------------------------------------------------------------

class TurnRecord(_Model):
    """One age-indexed question, choice and outcome."""
    age: int
    question: str
    choice: str
    outcome: str
    image_url: str | None = Field(default=None, alias="imageUrl")


class PendingChoice(_Model):
    """Written before an outcome request, cleared when it succeeds."""
    question_id: str | None = Field(default=None, alias="questionId")
    option_id: str = Field(alias="optionId")
    question_text: str = Field(alias="questionText")
    option_text: str = Field(alias="optionText")


# -----------------------------------------------------------------------------
# Snapshot
# -----------------------------------------------------------------------------

class SessionSnapshot(_Model):
    """
    The durable session record.

    History holds at most one record per age and is kept sorted by age.
    Use ``upsert_record`` rather than appending to ``history`` directly.
    """
    kid_id: str = Field(default_factory=lambda: uuid4().hex)
    player: PlayerProfile | None = None
    child: ChildProfile | None = None
    player_description: str = ""
    child_description: str = ""
    history: list[TurnRecord] = Field(default_factory=list)
    finance: int = Field(default=MIN_LEVEL, ge=MIN_LEVEL, le=MAX_LEVEL)
    marital: int = Field(default=MIN_LEVEL, ge=MIN_LEVEL, le=MAX_LEVEL)
    is_single_parent: bool = False
    is_bankrupt: bool = False
    current_question: Question | None = None
    next_question: Question | None = None
    pending_choice: PendingChoice | None = None
    feedback_text: str | None = None
    ending_summary: str | None = None
    is_ending: bool = False
    last_error: str | None = None

    @property
    def is_complete(self) -> bool:
        """Whether the snapshot has both a player and a child."""
        return self.player is not None and self.child is not None

    @property
    def only_start_record(self) -> bool:
        """Whether the history holds only the synthetic opening record."""
        return len(self.history) == 1 and self.history[0].question == START_QUESTION

    def upsert_record(self, record: TurnRecord) -> None:
        """Insert a record, replacing any existing record for the same age."""
        kept = [r for r in self.history if r.age != record.age]
        kept.append(record)
        kept.sort(key=lambda r: r.age)
        self.history = kept

    def record_for_age(self, age: int) -> TurnRecord | None:
        for record in self.history:
            if record.age == age:
                return record
        return None


class StreamingBuffer(BaseModel):
    """Raw text received so far and the display text extracted from it."""
    raw: str = ""
    display: str = ""
    kind: ContentKind = ContentKind.QUESTION
    complete: bool = False


# -----------------------------------------------------------------------------
# Content service results
# -----------------------------------------------------------------------------

class InitialScenario(_Model):
    """The opening state produced by the content service (or preloaded)."""
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    player: PlayerProfile
    child: ChildProfile
    player_description: str = Field(default="", alias="playerDescription")
    child_description: str = Field(default="", alias="childDescription")
    finance: int | None = None
    marital: int | None = None
    wealth_tier: WealthTier | None = Field(default=None, alias="wealthTier")
    is_single_parent: bool | None = Field(default=None, alias="isSingleParent")


class OutcomeResult(_Model):
    """Narrative outcome of a choice, with an optional lookahead question."""
    outcome: str
    next_question: Question | None = Field(default=None, alias="nextQuestion")
    is_ending: bool = Field(default=False, alias="isEnding")
