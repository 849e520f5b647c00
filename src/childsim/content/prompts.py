"""
Prompt builders for the content service.

Every prompt asks for a single JSON object; the expected shapes are
spelled out in the format sections below and parsed by
``childsim.content.service``.
"""

from ..state.schema import ENDING_AGE, SessionSnapshot


RECENT_HISTORY = 8
LAST_QUESTION_AGE = ENDING_AGE - 1
INITIAL_WORD_LIMIT = 120

SYSTEM_PROMPT = (
    "You are the narrator of a life-simulation game in which the player raises "
    "a child from birth to adulthood. Write grounded, specific, emotionally "
    "honest scenes. Always answer with one JSON object and nothing else."
)

INITIAL_FORMAT = """
Return JSON in exactly this shape:
{
  "player": {"gender": "male" | "female" | "nonBinary", "age": <number>},
  "child": {"name": "<name>", "gender": "male" | "female", "age": 0, "haircolor": "<colour>", "race": "<ethnicity>"},
  "playerDescription": "<who the parent is and their circumstances>",
  "childDescription": "<the newborn and the family they arrive in>",
  "wealthTier": "poor" | "middle" | "wealthy"
}
"""

OPTION_FORMAT = """{"id": "A", "text": "<option>", "financeDelta": <-3..3>, "maritalDelta": <-3..3>}"""

QUESTION_FORMAT = f"""
Return JSON in exactly this shape:
{{
  "question": "<the situation, addressed to the parent>",
  "options": [{OPTION_FORMAT}, ...],
  "isExtremeEvent": <true | false>
}}
Give 3 or 4 options with ids A, B, C, D. financeDelta is the option's impact on
the family's finances and maritalDelta its impact on the parents' relationship.
"""

OUTCOME_WITH_NEXT_FORMAT = """
Return JSON in exactly this shape:
{{
  "outcome": "<what happened as a result of the choice>",
  "nextQuestion": {{
    "question": "<the situation when the child is {next_age}>",
    "options": [{option}, ...],
    "isExtremeEvent": <true | false>
  }},
  "isEnding": false
}}
"""

OUTCOME_FINAL_FORMAT = """
Return JSON in exactly this shape:
{
  "outcome": "<what happened as a result of the choice>",
  "isEnding": true
}
"""

ENDING_FORMAT = """
Return JSON in exactly this shape:
{
  "child_status_at_18": "<who the child has become at 18>",
  "parent_evaluation": "<how the child sees the parent they had>",
  "future_outlook": "<where the child's life is heading>",
  "story_style": "<an illustrative art style for this story, at most 40 characters>"
}
"""


def _gender_word(gender: str | None, male: str, female: str, other: str) -> str:
    return {"male": male, "female": female}.get(gender or "", other)


def numerical_header(snapshot: SessionSnapshot) -> str:
    """Current counters and any crisis instructions."""
    lines = [
        f"Family finances: {snapshot.finance}/10. "
        f"Parents' relationship: {snapshot.marital}/10.",
    ]
    if snapshot.finance <= 0:
        lines.append(
            "The family is bankrupt. The situation must reflect this crisis, and at "
            'least one option must be a way out of it, marked with "isRecovery": true.'
        )
    if snapshot.is_single_parent:
        lines.append("The parent is raising the child alone.")
    return "\n".join(lines)


def profile_section(snapshot: SessionSnapshot) -> str:
    player = snapshot.player
    child = snapshot.child
    parent = _gender_word(player.gender if player else None, "father", "mother", "parent")
    kid = _gender_word(child.gender if child else None, "son", "daughter", "child")
    return (
        f"The player is a {player.age if player else '?'}-year-old {parent}. "
        f"{snapshot.player_description}\n"
        f"Their {kid} {child.name if child else '?'} is {child.age if child else '?'}. "
        f"{snapshot.child_description}"
    )


def history_context(snapshot: SessionSnapshot, full: bool = False) -> str:
    """
    Past turns for context.

    The recent turns are given in full. With ``full``, every earlier turn
    is listed too, with its outcome elided.
    """
    if not snapshot.history:
        return ""
    recent = snapshot.history[-RECENT_HISTORY:]
    recent_ages = {record.age for record in recent}
    records = snapshot.history if full else recent

    items = []
    for record in records:
        outcome = record.outcome if record.age in recent_ages else "..."
        items.append(
            f"Age {record.age}: {record.question}\n"
            f"Choice: {record.choice}\n"
            f"Outcome: {outcome}"
        )
    return "Story so far:\n" + "\n\n".join(items)


def initial_state_prompt(special_requirements: str | None = None) -> str:
    prompt = (
        "Create the opening of a new game: a parent and their newborn child, "
        "with a distinct family situation."
    )
    if special_requirements and special_requirements.strip():
        prompt += f"\nThe player asked for: {special_requirements.strip()}"
    prompt += INITIAL_FORMAT
    prompt += f"\nKeep each description under {INITIAL_WORD_LIMIT} words."
    return prompt


def question_prompt(snapshot: SessionSnapshot) -> str:
    age = snapshot.child.age if snapshot.child else 0
    sections = [
        numerical_header(snapshot),
        profile_section(snapshot),
        history_context(snapshot),
        f"Write the situation the parent faces now that the child is {age}. "
        "It should follow from the story so far.",
        QUESTION_FORMAT,
    ]
    return "\n\n".join(s for s in sections if s)


def wants_next_question(snapshot: SessionSnapshot) -> bool:
    return snapshot.child is not None and snapshot.child.age < LAST_QUESTION_AGE


def outcome_prompt(snapshot: SessionSnapshot, question: str, choice: str) -> str:
    sections = [
        numerical_header(snapshot),
        profile_section(snapshot),
        history_context(snapshot),
        f"Current situation: {question}",
        f"I chose: {choice}",
        "Describe the outcome of this choice.",
    ]
    if wants_next_question(snapshot):
        next_age = snapshot.child.age + 1
        sections.append(OUTCOME_WITH_NEXT_FORMAT.format(next_age=next_age, option=OPTION_FORMAT))
    else:
        sections.append(OUTCOME_FINAL_FORMAT)
    return "\n\n".join(s for s in sections if s)


def ending_prompt(snapshot: SessionSnapshot) -> str:
    sections = [
        numerical_header(snapshot),
        profile_section(snapshot),
        history_context(snapshot, full=True),
        f"The child has turned {ENDING_AGE}. Write the ending of their childhood story.",
        ENDING_FORMAT,
    ]
    return "\n\n".join(s for s in sections if s)
