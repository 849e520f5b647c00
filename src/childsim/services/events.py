"""
Analytics event sink.

Reports choices and milestones to the event API. Reporting is
fire-and-forget: calls return immediately, delivery happens in the
background, and delivery failures are logged, never raised.
"""

import asyncio
import json
import logging
import threading
import urllib.error
import urllib.request
from typing import Any, Protocol, runtime_checkable


logger = logging.getLogger(__name__)

# Flags understood by the session-flag endpoint
SESSION_FLAGS = frozenset({"checkoutInitiated", "checkoutCompleted", "imageGenerated"})


@runtime_checkable
class EventSink(Protocol):
    """Where turn choices and milestone flags are reported."""

    def init_session(self, anon_id: str, kid_id: str, style: str, custom_instruction: str | None = None) -> None:
        ...

    def log_event(self, anon_id: str, kid_id: str, event_type: str, payload: dict | None = None) -> None:
        ...

    def set_flags(self, anon_id: str, kid_id: str, flags: dict[str, bool]) -> None:
        ...


class MemoryEventSink:
    """Records reported events for inspection in tests."""

    def __init__(self):
        self.sessions: list[dict] = []
        self.events: list[dict] = []
        self.flags: list[dict] = []

    def init_session(self, anon_id: str, kid_id: str, style: str, custom_instruction: str | None = None) -> None:
        self.sessions.append({"anonId": anon_id, "kidId": kid_id, "style": style, "customInstruction": custom_instruction})

    def log_event(self, anon_id: str, kid_id: str, event_type: str, payload: dict | None = None) -> None:
        self.events.append({"anonId": anon_id, "kidId": kid_id, "type": event_type, "payload": payload})

    def set_flags(self, anon_id: str, kid_id: str, flags: dict[str, bool]) -> None:
        self.flags.append({"anonId": anon_id, "kidId": kid_id, "flags": dict(flags)})

    def types(self) -> list[str]:
        return [e["type"] for e in self.events]


class HttpEventSink:
    """
    Event sink posting to ``session-init``, ``log-event`` and ``session-flag``.

    Inside a running event loop each post is a background task running
    the request in a worker thread; outside one it goes to a daemon
    thread.
    """

    def __init__(self, base_url: str, timeout: int = 10):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._pending: set[asyncio.Task] = set()

    def init_session(self, anon_id: str, kid_id: str, style: str, custom_instruction: str | None = None) -> None:
        self._dispatch("session-init", {
            "anonId": anon_id,
            "kidId": kid_id,
            "style": style,
            "customInstruction": custom_instruction,
        })

    def log_event(self, anon_id: str, kid_id: str, event_type: str, payload: dict | None = None) -> None:
        logger.debug("log-event %s for kid %s", event_type, kid_id[-8:])
        self._dispatch("log-event", {
            "anonId": anon_id,
            "kidId": kid_id,
            "type": event_type,
            "payload": payload,
        })

    def set_flags(self, anon_id: str, kid_id: str, flags: dict[str, bool]) -> None:
        unknown = set(flags) - SESSION_FLAGS
        if unknown:
            logger.warning("Ignoring unknown session flags: %s", ", ".join(sorted(unknown)))
        known = {k: v for k, v in flags.items() if k in SESSION_FLAGS and v}
        if not known:
            return
        self._dispatch("session-flag", {"anonId": anon_id, "kidId": kid_id, "flags": known})

    async def flush(self) -> None:
        """Wait for in-flight posts (used at shutdown)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _dispatch(self, endpoint: str, body: dict[str, Any]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            threading.Thread(target=self._post_quietly, args=(endpoint, body), daemon=True).start()
            return
        task = loop.create_task(asyncio.to_thread(self._post_quietly, endpoint, body))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def _post_quietly(self, endpoint: str, body: dict[str, Any]) -> None:
        try:
            self._post(endpoint, body)
        except (urllib.error.URLError, OSError, ValueError) as e:
            logger.warning("Event post to %s failed: %s", endpoint, e)

    def _post(self, endpoint: str, body: dict[str, Any]) -> None:
        req = urllib.request.Request(
            f"{self.base_url}/{endpoint}",
            data=json.dumps(body).encode("utf-8"),
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        with urllib.request.urlopen(req, timeout=self.timeout) as resp:
            if resp.status >= 400:
                logger.warning("Event post to %s returned %s", endpoint, resp.status)
