"""Tests for analytics event sinks."""

import asyncio
import urllib.error
from unittest.mock import patch

from childsim.services.events import EventSink, HttpEventSink, MemoryEventSink


class TestMemoryEventSink:
    """Test MemoryEventSink."""

    def test_records(self, events):
        """Every call is recorded."""
        events.init_session("a1", "k1", "realistic")
        events.log_event("a1", "k1", "choice_made", {"age": 3})
        events.set_flags("a1", "k1", {"imageGenerated": True})
        assert events.sessions[0]["style"] == "realistic"
        assert events.types() == ["choice_made"]
        assert events.flags[0]["flags"] == {"imageGenerated": True}

    def test_satisfies_protocol(self, events):
        """Both sinks implement EventSink."""
        assert isinstance(events, EventSink)
        assert isinstance(HttpEventSink("http://events"), EventSink)


class TestHttpEventSink:
    """Test HttpEventSink delivery."""

    def test_unknown_flags_dropped(self):
        """Only known, set flags are posted."""
        sink = HttpEventSink("http://events")
        with patch.object(sink, "_dispatch") as dispatch:
            sink.set_flags("a1", "k1", {"imageGenerated": True, "bogus": True, "checkoutInitiated": False})
        endpoint, body = dispatch.call_args[0]
        assert endpoint == "session-flag"
        assert body["flags"] == {"imageGenerated": True}

    def test_nothing_to_flag(self):
        """No post when no known flag is set."""
        sink = HttpEventSink("http://events")
        with patch.object(sink, "_dispatch") as dispatch:
            sink.set_flags("a1", "k1", {"bogus": True})
        dispatch.assert_not_called()

    @patch("urllib.request.urlopen")
    def test_failures_are_logged_not_raised(self, mock_urlopen):
        """Delivery errors never reach the caller."""
        mock_urlopen.side_effect = urllib.error.URLError("down")
        HttpEventSink("http://events")._post_quietly("log-event", {"type": "x"})

    def test_posts_in_background_on_loop(self):
        """Inside a loop posts run as tasks and can be flushed."""
        sink = HttpEventSink("http://events")
        posted = []

        async def scenario():
            with patch.object(sink, "_post", side_effect=lambda endpoint, body: posted.append((endpoint, body))):
                sink.log_event("a1", "kid-0001", "game_started", {"finance": 5})
                await sink.flush()

        asyncio.run(scenario())
        assert posted[0][0] == "log-event"
        assert posted[0][1]["type"] == "game_started"
