"""
Display formatters for generated documents.

Each formatter renders a (possibly partial) document. ``is_open`` tells
whether the value at a path is still arriving; for a fully parsed
document nothing is open and the output is the final text.
"""

import math
from typing import Any, Callable


IsOpen = Callable[[tuple], bool]

ELLIPSIS = "..."
OPTIONS_RESERVED_LINES = 4
IMPORTANT_EVENT_MARKER = "\n⚠ This is an important event\n"
LOADING_OPTIONS = "Loading options...\n"

WEALTH_LABELS = {
    "poor": "Struggling",
    "middle": "Comfortable",
    "wealthy": "Well-off",
}


def _never_open(path: tuple) -> bool:
    return False


def _text(value: Any) -> str:
    return value if isinstance(value, str) else ""


def format_outcome(doc: dict, is_open: IsOpen = _never_open) -> str:
    """Only the outcome narrative; a lookahead question is not shown."""
    text = _text(doc.get("outcome"))
    if is_open(("outcome",)):
        text += ELLIPSIS
    return text


def complete_options(doc: dict, is_open: IsOpen = _never_open, key: str = "options") -> list[dict]:
    """Options whose id and text have fully arrived."""
    options = doc.get(key)
    if not isinstance(options, list):
        return []
    ready = []
    for index, option in enumerate(options):
        if not isinstance(option, dict):
            continue
        if option.get("id") is None or not isinstance(option.get("text"), str):
            continue
        if is_open((key, index, "id")) or is_open((key, index, "text")):
            continue
        ready.append(option)
    return ready


def _number(value: Any) -> bool:
    """A finite JSON number; booleans and numeric strings do not count."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def format_option(option: dict) -> str:
    line = f"{option['id']}: {option['text']}"
    delta = option.get("financeDelta", option.get("finance_delta"))
    if not _number(delta):
        cost = option.get("cost")
        delta = -cost if _number(cost) else None
    if delta:
        line += f" (finance {int(delta):+d})"
    return line + "\n"


def format_question(doc: dict, is_open: IsOpen = _never_open) -> str:
    """Question text, the options that have arrived and the event marker."""
    text = "\n" + _text(doc.get("question"))
    if is_open(("question",)) or "options" not in doc:
        text += ELLIPSIS
    text += "\n\n"

    if "options" in doc:
        text += "\n"
        ready = complete_options(doc, is_open)
        for option in ready:
            text += format_option(option)
        if not ready and is_open(("options",)):
            text += LOADING_OPTIONS
    else:
        # keep the block the height it will have once options arrive
        text += "\n" * OPTIONS_RESERVED_LINES

    if doc.get("isExtremeEvent") is True:
        text += IMPORTANT_EVENT_MARKER
    return text


def _gender_label(gender: Any, male: str, female: str, other: str) -> str:
    if gender == "male":
        return male
    if gender == "female":
        return female
    return other


def format_initial_state(doc: dict, is_open: IsOpen = _never_open) -> str:
    """Player and child profiles plus their descriptions."""
    text = "**Setting:**\n\n"

    player = doc.get("player")
    if isinstance(player, dict):
        label = _gender_label(player.get("gender"), "Father", "Mother", "Parent")
        age = player.get("age")
        text += f"**Parent:** {label}"
        if _number(age):
            text += f", {int(age)}"
        text += "\n"

    child = doc.get("child")
    if isinstance(child, dict) and isinstance(child.get("name"), str):
        text += f"**Child:** {child['name']}"
        if is_open(("child", "name")):
            text += ELLIPSIS
        label = _gender_label(child.get("gender"), "boy", "girl", "")
        if label:
            text += f" ({label})"
        text += "\n\n"

    for key, heading in (("playerDescription", "Background"), ("childDescription", "About the child")):
        if key in doc:
            text += f"**{heading}:**\n{_text(doc.get(key))}"
            if is_open((key,)):
                text += ELLIPSIS
            text += "\n\n"

    tier = doc.get("wealthTier")
    if isinstance(tier, str) and not is_open(("wealthTier",)):
        text += f"**Family wealth:** {WEALTH_LABELS.get(tier, tier)}\n"

    return text


def pick_formatter(doc: dict) -> Callable[..., str] | None:
    """Outcome wins over question, which wins over initial state, then ending."""
    if "outcome" in doc:
        return format_outcome
    if "question" in doc:
        return format_question
    if "player" in doc or "child" in doc:
        return format_initial_state
    if any(key in doc for key, _ in ENDING_SECTIONS):
        return format_ending
    return None


ENDING_SECTIONS = (
    ("child_status_at_18", "Your child at 18"),
    ("parent_evaluation", "Looking back on you as a parent"),
    ("future_outlook", "The road ahead"),
)


def format_ending(doc: dict, is_open: IsOpen = _never_open) -> str:
    """The ending sections that have arrived, in order."""
    parts = []
    for key, title in ENDING_SECTIONS:
        text = doc.get(key)
        if not isinstance(text, str):
            continue
        if is_open((key,)):
            parts.append(f"**{title}:**\n{text}{ELLIPSIS}")
        elif text.strip():
            parts.append(f"**{title}:**\n{text.strip()}")
    return "\n\n".join(parts)
