"""Tests for streaming display-text extraction."""

import json

import pytest

from childsim.state.schema import ContentKind
from childsim.streaming.assembler import (
    StreamingAssembler,
    clean_json_content,
    largest_object_span,
    parse_document,
)
from childsim.streaming.formatters import (
    IMPORTANT_EVENT_MARKER,
    LOADING_OPTIONS,
    format_ending,
    format_initial_state,
    format_option,
    format_outcome,
    format_question,
    pick_formatter,
)


QUESTION_DOC = {
    "question": "Your daughter wants a puppy.",
    "options": [
        {"id": "A", "text": "Adopt one", "financeDelta": -1},
        {"id": "B", "text": "Say no"},
    ],
    "isExtremeEvent": False,
}

OUTCOME_DOC = {
    "outcome": "The puppy chewed every shoe you own.",
    "nextQuestion": {"question": "School starts.", "options": [{"id": "A", "text": "Walk her"}]},
    "isEnding": False,
}

INITIAL_DOC = {
    "player": {"gender": "male", "age": 34},
    "child": {"name": "Sam", "gender": "male"},
    "playerDescription": "A carpenter.",
    "childDescription": "Loud and happy.",
    "wealthTier": "middle",
}


ESCAPED_QUESTION_DOC = {
    "question": 'She asks, "Can I go?"\nThe path is C:\\school\\new.',
    "options": [
        {"id": "A", "text": 'Say "yes"\nand drive her', "financeDelta": -1},
        {"id": "B", "text": "Back\\slash \\\"quoted\\\""},
    ],
}

ESCAPED_OUTCOME_DOC = {
    "outcome": 'He wrote "sorry" on the wall.\nIt read \\o/ in crayon.',
    "isEnding": False,
}

ODD_OPTIONS_DOC = {
    "question": "Rent is due.",
    "options": [
        {"id": "A", "text": "Pay it", "cost": "3"},
        {"id": "B", "text": "Borrow", "financeDelta": True},
        {"id": "C", "text": "Sell the car", "financeDelta": "2", "cost": 2},
        {"id": "D", "text": "Ask family", "cost": None, "financeDelta": None},
    ],
}


def feed_chars(assembler, raw):
    displays = []
    for ch in raw:
        displays.append(assembler.feed(ch))
    return displays


class TestCleaning:
    """Test text cleanup before parsing."""

    def test_clean_json_content(self):
        """Fences, control and zero-width characters are removed."""
        text = "```json\n{\"a\":\u200b 1}\x07\n```"
        assert clean_json_content(text) == '{"a": 1}'

    def test_largest_object_span(self):
        """The span runs from the first brace to the last."""
        assert largest_object_span('noise {"a": {"b": 1}} more') == '{"a": {"b": 1}}'
        assert largest_object_span("no braces") is None

    def test_parse_document(self):
        """Documents are parsed out of surrounding prose."""
        assert parse_document('Here you go: {"a": 1}') == {"a": 1}
        assert parse_document("[1, 2]") is None
        assert parse_document('{"a": }') is None


class TestFormatters:
    """Test display formatters on complete documents."""

    def test_question(self):
        """Questions list their options and no ellipsis."""
        text = format_question(QUESTION_DOC)
        assert text.startswith("\nYour daughter wants a puppy.\n\n\n")
        assert "A: Adopt one (finance -1)\n" in text
        assert "B: Say no\n" in text
        assert "..." not in text

    def test_extreme_event_marker(self):
        """Important events get a marker."""
        assert format_question({**QUESTION_DOC, "isExtremeEvent": True}).endswith(IMPORTANT_EVENT_MARKER)

    def test_outcome_hides_lookahead(self):
        """Only the outcome narrative is shown."""
        assert format_outcome(OUTCOME_DOC) == OUTCOME_DOC["outcome"]

    def test_initial_state(self):
        """The opening shows parent, child and descriptions."""
        text = format_initial_state(INITIAL_DOC)
        assert "**Parent:** Father, 34" in text
        assert "**Child:** Sam (boy)" in text
        assert "**Background:**\nA carpenter." in text
        assert "**Family wealth:** Comfortable" in text

    def test_ending(self):
        """Ending sections appear in order with titles."""
        text = format_ending({"future_outlook": "Bright.", "child_status_at_18": "Grown."})
        assert text == "**Your child at 18:**\nGrown.\n\n**The road ahead:**\nBright."

    def test_odd_option_fields(self):
        """Only finite numbers become finance hints."""
        text = format_question(ODD_OPTIONS_DOC)
        assert "A: Pay it\n" in text
        assert "B: Borrow\n" in text
        assert "C: Sell the car (finance -2)\n" in text
        assert "D: Ask family\n" in text
        assert format_option({"id": "E", "text": "Win big", "financeDelta": float("inf")}) == "E: Win big\n"

    def test_pick_formatter(self):
        """Formatter choice follows the document's keys."""
        assert pick_formatter(OUTCOME_DOC) is format_outcome
        assert pick_formatter(QUESTION_DOC) is format_question
        assert pick_formatter(INITIAL_DOC) is format_initial_state
        assert pick_formatter({"parent_evaluation": "x"}) is format_ending
        assert pick_formatter({"unrelated": 1}) is None


class TestStreamingAssembler:
    """Test progressive extraction."""

    @pytest.mark.parametrize("doc,kind", [
        (QUESTION_DOC, ContentKind.QUESTION),
        (OUTCOME_DOC, ContentKind.OUTCOME),
        (INITIAL_DOC, ContentKind.INITIAL),
        (ESCAPED_QUESTION_DOC, ContentKind.QUESTION),
        (ESCAPED_OUTCOME_DOC, ContentKind.OUTCOME),
        (ODD_OPTIONS_DOC, ContentKind.QUESTION),
    ])
    def test_converges_to_final_text(self, doc, kind):
        """Char-by-char streaming ends on the same text as the parsed document."""
        raw = "```json\n" + json.dumps(doc, ensure_ascii=False) + "\n```"
        assembler = StreamingAssembler(kind)
        feed_chars(assembler, raw)
        final = pick_formatter(doc)(doc)
        assert assembler.display == final
        assert assembler.finish() == final

    def test_escapes_never_shown_raw(self):
        """Partial text decodes escapes even when they split across chunks."""
        raw = json.dumps(ESCAPED_OUTCOME_DOC)
        displays = feed_chars(StreamingAssembler(ContentKind.OUTCOME), raw)
        for display in displays:
            assert '\\"' not in display
            assert "\\n" not in display
        assert any('wrote "sorry"' in d and d.endswith("...") for d in displays)

    def test_open_question_has_ellipsis(self):
        """A question still arriving is marked and reserves option space."""
        assembler = StreamingAssembler()
        display = assembler.feed('{"question": "Should you')
        assert display.startswith("\nShould you...\n\n")
        assert display.endswith("\n" * 4)

    def test_only_complete_options_shown(self):
        """An option whose text is still arriving is held back."""
        assembler = StreamingAssembler()
        display = assembler.feed('{"question": "Q?", "options": [{"id": "A", "text": "Go"}, {"id": "B", "text": "St')
        assert display == "\nQ?\n\n\nA: Go\n"

    def test_loading_options(self):
        """An open options array with nothing ready shows a loading line."""
        assembler = StreamingAssembler()
        display = assembler.feed('{"question": "Q?", "options": [{"id": "A", "te')
        assert display.endswith(LOADING_OPTIONS)

    def test_outcome_in_progress(self):
        """Outcome text streams with an ellipsis."""
        assembler = StreamingAssembler(ContentKind.OUTCOME)
        assert assembler.feed('{"outcome": "It went') == "It went..."
        assert assembler.feed(' well."}') == "It went well."

    def test_fence_only_shows_nothing(self):
        """A bare code fence displays as nothing."""
        assembler = StreamingAssembler()
        assert assembler.feed("```json\n") == ""

    def test_plain_text_passthrough(self):
        """Non-JSON output is shown as cleaned text."""
        assembler = StreamingAssembler(ContentKind.OUTCOME)
        assert assembler.feed("Just a story.") == "Just a story."

    def test_malformed_keeps_partial(self):
        """After a structural error the partial document is still shown."""
        assembler = StreamingAssembler()
        display = assembler.feed('{"question": "Q?" oops}')
        assert "Q?" in display

    def test_replace_extends_or_restarts(self):
        """replace() continues a growing buffer and restarts on a new one."""
        assembler = StreamingAssembler(ContentKind.OUTCOME)
        assembler.replace('{"outcome": "Ab')
        assert assembler.replace('{"outcome": "Abc') == "Abc..."
        assert assembler.replace('{"outcome": "New"}') == "New"
        assert assembler.raw == '{"outcome": "New"}'

    def test_buffer(self):
        """The buffer reflects raw and display text."""
        assembler = StreamingAssembler(ContentKind.OUTCOME)
        assembler.feed('{"outcome": "x"}')
        assembler.finish()
        buffer = assembler.buffer
        assert buffer.raw == '{"outcome": "x"}'
        assert buffer.display == "x"
        assert buffer.complete
