"""Tests for the LLM-backed content service."""

import json
import time

import pytest

from conftest import run

from childsim.content import prompts
from childsim.content.service import (
    ContentGenerationError,
    ContentService,
    LLMContentService,
    MalformedDocumentError,
    parse_outcome,
    parse_question,
)
from childsim.llm import LLMError, MockLLMClient
from childsim.state.schema import TurnRecord


QUESTION = {
    "question": "Your son wants to quit piano.",
    "options": [{"text": "Let him"}, {"text": "Make him stay", "financeDelta": -1}],
}


def service(*responses, **kwargs):
    return LLMContentService(MockLLMClient(list(responses), **kwargs))


class TestParsing:
    """Test document parsing helpers."""

    def test_missing_option_ids_filled(self):
        """Options without ids are lettered in order."""
        question = parse_question(json.loads(json.dumps(QUESTION)))
        assert [o.id for o in question.options] == ["A", "B"]

    def test_question_needs_options(self):
        """A question with no options is malformed."""
        with pytest.raises(MalformedDocumentError):
            parse_question({"question": "Hm?", "options": []})

    def test_bad_lookahead_dropped(self):
        """An unusable next question does not fail the outcome."""
        result = parse_outcome({"outcome": "Ok.", "nextQuestion": {"question": "No options"}})
        assert result.outcome == "Ok."
        assert result.next_question is None

    def test_outcome_requires_text(self):
        """An outcome document without outcome text is malformed."""
        with pytest.raises(MalformedDocumentError):
            parse_outcome({"nextQuestion": QUESTION})


class TestLLMContentService:
    """Test LLMContentService requests."""

    def test_satisfies_protocol(self):
        """The service implements ContentService."""
        assert isinstance(service("{}"), ContentService)

    def test_question(self, snapshot):
        """A question document is parsed into a Question."""
        svc = service("```json\n" + json.dumps(QUESTION) + "\n```")
        question = run(svc.generate_question(snapshot))
        assert question.question == "Your son wants to quit piano."
        assert question.options[1].finance_delta == -1
        assert svc.client.calls[0]["method"] == "chat"
        assert svc.client.calls[0]["system"] == prompts.SYSTEM_PROMPT

    def test_streaming_reports_progress(self, snapshot):
        """Streaming calls on_progress with the growing raw text."""
        raw = json.dumps(QUESTION)
        svc = service(raw, chunk_size=5)
        seen = []
        run(svc.generate_question(snapshot, streaming=True, on_progress=seen.append))
        assert seen[-1] == raw
        assert len(seen) == -(-len(raw) // 5)
        assert all(b.startswith(a) for a, b in zip(seen, seen[1:]))
        assert svc.client.calls[0]["method"] == "stream_chat"

    def test_malformed_document(self, snapshot):
        """Non-JSON output raises MalformedDocumentError."""
        with pytest.raises(MalformedDocumentError):
            run(service("I cannot help with that").generate_question(snapshot))

    def test_backend_error_wrapped(self, snapshot):
        """Backend failures surface as ContentGenerationError."""
        svc = service(fail_with=LLMError("Network failure reaching openai: refused"))
        with pytest.raises(ContentGenerationError, match="Content generation failed"):
            run(svc.generate_question(snapshot))

    def test_streaming_backend_error_wrapped(self, snapshot):
        """Failures inside the stream are wrapped the same way."""
        svc = service(fail_with=LLMError("boom"))
        with pytest.raises(ContentGenerationError):
            run(svc.generate_question(snapshot, streaming=True, on_progress=lambda text: None))

    def test_failed_reader_stops_stream(self, snapshot):
        """When progress handling fails, the backend stream is abandoned early."""
        class SlowStreamClient(MockLLMClient):
            pulled = 0

            def stream_chat(self, messages, system=None, temperature=0.7, max_tokens=2048):
                for _ in range(500):
                    self.pulled += 1
                    time.sleep(0.002)
                    yield "x"

        def on_progress(text):
            raise RuntimeError("display gone")

        client = SlowStreamClient()
        svc = LLMContentService(client)
        with pytest.raises(RuntimeError):
            run(svc.generate_question(snapshot, streaming=True, on_progress=on_progress))
        assert client.pulled < 100

    def test_outcome_with_lookahead(self, snapshot):
        """A young child's outcome keeps its next question."""
        doc = {"outcome": "He kept playing.", "nextQuestion": QUESTION, "isEnding": False}
        result = run(service(json.dumps(doc)).generate_outcome_and_next_question(snapshot, "Q?", "Let him"))
        assert result.next_question.options[0].id == "A"
        assert not result.is_ending

    def test_outcome_at_seventeen_ends(self, snapshot):
        """The last outcome never carries a next question."""
        snapshot.child.age = 17
        doc = {"outcome": "Off to college.", "nextQuestion": QUESTION, "isEnding": False}
        result = run(service(json.dumps(doc)).generate_outcome_and_next_question(snapshot, "Q?", "A"))
        assert result.next_question is None
        assert result.is_ending

    def test_ending_document(self, snapshot):
        """An ending document is formatted into sections."""
        doc = {"child_status_at_18": "Grown.", "parent_evaluation": "Loving.", "future_outlook": "Bright."}
        summary = run(service(json.dumps(doc)).generate_ending(snapshot))
        assert summary.startswith("**Your child at 18:**\nGrown.")
        assert "**The road ahead:**\nBright." in summary

    def test_plain_text_ending(self, snapshot):
        """A plain-text ending is used as-is."""
        assert run(service("They grew up well.").generate_ending(snapshot)) == "They grew up well."

    def test_broken_ending(self, snapshot):
        """A broken ending document is malformed."""
        with pytest.raises(MalformedDocumentError):
            run(service('{"child_status_at_18": "Gro').generate_ending(snapshot))

    def test_preloaded_initial_state(self):
        """A preloaded scenario makes no backend call."""
        svc = service("unused")
        scenario = run(svc.generate_initial_state(preloaded={
            "player": {"gender": "female", "age": 29},
            "child": {"name": "June", "gender": "female"},
        }))
        assert scenario.child.name == "June"
        assert svc.client.calls == []

    def test_initial_state(self):
        """The initial document is validated into a scenario."""
        doc = {
            "player": {"gender": "male", "age": 38},
            "child": {"name": "Omar", "gender": "male"},
            "playerDescription": "A baker.",
            "childDescription": "Born during a storm.",
            "wealthTier": "poor",
        }
        svc = service(json.dumps(doc))
        scenario = run(svc.generate_initial_state("set in Lisbon"))
        assert scenario.player_description == "A baker."
        assert "set in Lisbon" in svc.client.calls[0]["messages"][0].content


class TestPrompts:
    """Test prompt assembly."""

    def test_bankruptcy_instruction(self, snapshot):
        """A bankrupt family gets the crisis instruction."""
        snapshot.finance = 0
        assert "isRecovery" in prompts.question_prompt(snapshot)

    def test_single_parent_note(self, snapshot):
        """Single parents are described as such."""
        snapshot.is_single_parent = True
        assert "alone" in prompts.numerical_header(snapshot)

    def test_recent_history_only(self, snapshot):
        """Only recent turns are given in full."""
        for age in range(12):
            snapshot.upsert_record(TurnRecord(age=age, question=f"Q{age}", choice="c", outcome=f"O{age}"))
        recent = prompts.history_context(snapshot)
        assert "Age 3:" not in recent
        assert "O11" in recent

        full = prompts.history_context(snapshot, full=True)
        assert "Age 0: Q0" in full
        assert "O0" not in full

    def test_outcome_prompt_asks_for_next_question(self, snapshot):
        """Before 17 the outcome prompt asks for the next year's question."""
        assert "nextQuestion" in prompts.outcome_prompt(snapshot, "Q?", "A")
        snapshot.child.age = 17
        assert "nextQuestion" not in prompts.outcome_prompt(snapshot, "Q?", "A")
