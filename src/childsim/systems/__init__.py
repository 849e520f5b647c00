"""Game rules: turn outcome arithmetic and resume logic."""

from .outcome import (
    OutcomeDelta,
    apply_choice,
    clamp,
    initial_levels,
    passive_recovery,
)
from .recovery import (
    FailureKind,
    ResumePlan,
    RETRY_OPTION_ID,
    RELOAD_OPTION_ID,
    RECOVERY_OPTION_IDS,
    build_fallback_question,
    build_recovery_question,
    classify_error,
    is_transient,
    plan_resume,
)

__all__ = [
    "OutcomeDelta",
    "apply_choice",
    "clamp",
    "initial_levels",
    "passive_recovery",
    "FailureKind",
    "ResumePlan",
    "RETRY_OPTION_ID",
    "RELOAD_OPTION_ID",
    "RECOVERY_OPTION_IDS",
    "build_fallback_question",
    "build_recovery_question",
    "classify_error",
    "is_transient",
    "plan_resume",
]
