"""
Resume logic after a restart or a failed content request.

The session snapshot records the last error and, for an interrupted
turn, the pending choice. From those two fields this module decides how
a saved session picks up again and builds the synthetic questions used
on the way.
"""

import re
from enum import Enum

from ..state.schema import Option, Question, SessionSnapshot


RETRY_OPTION_ID = "retry"
RELOAD_OPTION_ID = "reload"
RECOVERY_OPTION_IDS = frozenset({RETRY_OPTION_ID, RELOAD_OPTION_ID})

FALLBACK_QUESTION_ID = "fallback"
RECOVERY_QUESTION_ID = "recovery"


class FailureKind(str, Enum):
    NETWORK = "network"
    PARSE = "parse"
    GENERATION = "generation"
    UNKNOWN = "unknown"


# Known transient failure signatures, checked in order.
FAILURE_SIGNATURES: list[tuple[FailureKind, re.Pattern]] = [
    (FailureKind.NETWORK, re.compile(
        r"failed to fetch|network|connection|timed? ?out|unreachable|urlopen", re.IGNORECASE,
    )),
    (FailureKind.PARSE, re.compile(
        r"json|malformed|parse|unexpected (token|end)", re.IGNORECASE,
    )),
    (FailureKind.GENERATION, re.compile(
        r"generat|content service|completion|model", re.IGNORECASE,
    )),
]


class ResumePlan(str, Enum):
    RECOVERY_QUESTION = "recovery_question"
    REFETCH_QUESTION = "refetch_question"
    RESUME_SUMMARY = "resume_summary"
    RESUME_QUESTION = "resume_question"
    RESUME_FEEDBACK = "resume_feedback"
    LOAD_QUESTION = "load_question"


def classify_error(error: str | None) -> FailureKind | None:
    """Match an error string against the known transient signatures."""
    if not error:
        return None
    for kind, pattern in FAILURE_SIGNATURES:
        if pattern.search(error):
            return kind
    return FailureKind.UNKNOWN


def is_transient(error: str | None) -> bool:
    kind = classify_error(error)
    return kind is not None and kind != FailureKind.UNKNOWN


def plan_resume(snapshot: SessionSnapshot) -> ResumePlan:
    """
    Decide how to resume a saved session.

    A transient error with a pending choice means the outcome request for
    that choice never completed; the player is offered to retry it. A
    transient error without one means the question fetch failed and is
    simply re-issued. A pending choice with no error at all means the
    process stopped mid-request and is treated like a failed request.
    Otherwise whatever content the snapshot already
    holds is shown again.
    """
    if is_transient(snapshot.last_error):
        if snapshot.pending_choice is not None:
            return ResumePlan.RECOVERY_QUESTION
        return ResumePlan.REFETCH_QUESTION

    # Process stopped while the outcome request was in flight.
    if snapshot.pending_choice is not None and snapshot.last_error is None:
        return ResumePlan.RECOVERY_QUESTION

    if snapshot.ending_summary:
        return ResumePlan.RESUME_SUMMARY
    if snapshot.current_question is not None:
        return ResumePlan.RESUME_QUESTION
    if snapshot.feedback_text:
        return ResumePlan.RESUME_FEEDBACK
    return ResumePlan.LOAD_QUESTION


def recovery_options() -> list[Option]:
    return [
        Option(id=RETRY_OPTION_ID, text="Try again"),
        Option(id=RELOAD_OPTION_ID, text="Reload the saved game"),
    ]


def build_recovery_question(snapshot: SessionSnapshot) -> Question:
    """
    Re-present the interrupted question with the chosen option and the
    retry/reload pseudo-options.
    """
    pending = snapshot.pending_choice
    if pending is None:
        raise ValueError("No pending choice to recover")

    chosen = None
    if snapshot.current_question is not None:
        chosen = snapshot.current_question.find_option(pending.option_id)
    if chosen is None:
        chosen = Option(id=pending.option_id, text=pending.option_text)

    return Question(
        id=pending.question_id or RECOVERY_QUESTION_ID,
        question=pending.question_text,
        options=[chosen, *recovery_options()],
    )


def build_fallback_question(age: int) -> Question:
    """Locally synthesized question used when a fetch fails."""
    return Question(
        id=FALLBACK_QUESTION_ID,
        question=(
            f"Your child is {age}. The day is quiet and nothing urgent needs "
            "your attention. How do you spend it?"
        ),
        options=[
            Option(id="fallback_a", text="Spend the day together doing something they enjoy"),
            Option(id="fallback_b", text="Give them space and catch up on your own work"),
        ],
    )
