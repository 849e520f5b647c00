"""
Turn outcome arithmetic.

Pure functions over the finance and relationship (marital) counters.
Both counters live in [0, 10]; every mutation clamps.

Rules:
- Grace: negative finance deltas are ignored while the child is 5 or younger.
- Bankruptcy: finance reaching 0 marks the family bankrupt.
- Recovery: a recovery-tagged option taken while bankrupt resets finance
  to max(3, computed + 2).
- Passive recovery: each birthday past 5 nudges finance up by 1 while it
  is below 7.
"""

from dataclasses import dataclass

from ..state.schema import MAX_LEVEL, MIN_LEVEL, InitialScenario, Option, WealthTier


GRACE_AGE = 5
PASSIVE_RECOVERY_CEILING = 7
RECOVERY_FLOOR = 3
RECOVERY_BONUS = 2
DEFAULT_LEVEL = 5

WEALTH_TIER_FINANCE: dict[WealthTier, int] = {
    WealthTier.POOR: 2,
    WealthTier.MIDDLE: 5,
    WealthTier.WEALTHY: 8,
}


@dataclass(frozen=True)
class OutcomeDelta:
    """Counter values after a choice is applied."""
    finance: int
    marital: int
    is_bankrupt: bool
    is_single_parent: bool
    finance_change: int
    marital_change: int
    recovered: bool = False
    grace_applied: bool = False


def clamp(value: int, low: int = MIN_LEVEL, high: int = MAX_LEVEL) -> int:
    return max(low, min(high, value))


def apply_choice(
    finance: int,
    marital: int,
    age: int,
    option: Option,
    *,
    is_bankrupt: bool = False,
    is_single_parent: bool = False,
) -> OutcomeDelta:
    """
    Apply an option's deltas to the current counters.

    Args:
        finance: Current finance level
        marital: Current relationship level
        age: The child's age at the time of the choice
        option: The chosen option
        is_bankrupt: Whether the family was already bankrupt
        is_single_parent: Whether the parent is already single

    Returns:
        OutcomeDelta with the new values and flags
    """
    finance_delta = option.finance_delta
    grace = finance_delta < 0 and age <= GRACE_AGE
    if grace:
        finance_delta = 0

    new_finance = clamp(finance + finance_delta)
    new_marital = clamp(marital + option.marital_delta)

    recovered = False
    was_bankrupt = is_bankrupt or finance <= MIN_LEVEL
    if option.is_recovery and was_bankrupt:
        new_finance = clamp(max(RECOVERY_FLOOR, new_finance + RECOVERY_BONUS))
        recovered = True

    return OutcomeDelta(
        finance=new_finance,
        marital=new_marital,
        is_bankrupt=new_finance <= MIN_LEVEL,
        is_single_parent=is_single_parent or new_marital <= MIN_LEVEL,
        finance_change=new_finance - finance,
        marital_change=new_marital - marital,
        recovered=recovered,
        grace_applied=grace,
    )


def passive_recovery(finance: int, new_age: int) -> int:
    """Finance after the child turns ``new_age``."""
    if new_age > GRACE_AGE and finance < PASSIVE_RECOVERY_CEILING:
        return clamp(finance + 1)
    return clamp(finance)


def initial_levels(scenario: InitialScenario) -> tuple[int, int, bool]:
    """
    Derive starting (finance, marital, is_single_parent) from a scenario.

    Explicit levels win; otherwise finance follows the wealth tier and
    both default to the midpoint. A single parent starts with no
    relationship.
    """
    if scenario.finance is not None:
        finance = clamp(scenario.finance)
    elif scenario.wealth_tier is not None:
        finance = WEALTH_TIER_FINANCE[scenario.wealth_tier]
    else:
        finance = DEFAULT_LEVEL

    single = bool(scenario.is_single_parent)
    if single:
        marital = MIN_LEVEL
    elif scenario.marital is not None:
        marital = clamp(scenario.marital)
    else:
        marital = DEFAULT_LEVEL

    return finance, marital, single
