"""
Turns a growing generated document into display text.

Each chunk is fed to a ``JsonScanner``. Once the root object has closed
(or the scanner gave up on malformed input) the whole document is parsed
and formatted; before that the partial document the scanner has built is
formatted directly, with open fields marked by an ellipsis.
"""

import json
import logging
import re

from ..state.schema import ContentKind, StreamingBuffer
from .formatters import pick_formatter
from .scanner import JsonScanner


logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)
_CONTROL_RE = re.compile(r"[\u0000-\u0008\u000B\u000C\u000E-\u001F\u007F-\u009F]")
_ZERO_WIDTH_RE = re.compile(r"[\u200B-\u200D\uFEFF]")


def clean_json_content(text: str) -> str:
    """Strip code fences, control characters and zero-width characters."""
    text = _FENCE_RE.sub("", text)
    text = _CONTROL_RE.sub("", text)
    text = _ZERO_WIDTH_RE.sub("", text)
    return text.strip()


def largest_object_span(text: str) -> str | None:
    """The text from the first ``{`` to the last ``}``, if any."""
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return None
    return text[start:end + 1]


def parse_document(text: str) -> dict | None:
    """Parse the largest object span of ``text``, or None if it is not valid JSON."""
    span = largest_object_span(clean_json_content(text))
    if span is None:
        return None
    try:
        doc = json.loads(span, strict=False)
    except json.JSONDecodeError:
        return None
    return doc if isinstance(doc, dict) else None


class StreamingAssembler:
    """
    Incremental display-text extraction for one generated document.

    Usage:
        assembler = StreamingAssembler(ContentKind.QUESTION)
        for chunk in stream:
            display = assembler.feed(chunk)
        assembler.finish()
    """

    def __init__(self, kind: ContentKind = ContentKind.QUESTION):
        self.kind = kind
        self.raw = ""
        self.display = ""
        self.complete = False
        self._scanner = JsonScanner()
        self._final: str | None = None

    def feed(self, chunk: str) -> str:
        """Add a chunk and return the current display text."""
        if not chunk:
            return self.display
        self.raw += chunk
        self._scanner.feed(chunk)
        self.display = self._render()
        return self.display

    def replace(self, text: str) -> str:
        """Reset to ``text`` as the whole buffer so far."""
        if text.startswith(self.raw):
            return self.feed(text[len(self.raw):])
        self.raw = ""
        self._scanner = JsonScanner()
        self._final = None
        return self.feed(text)

    def finish(self) -> str:
        """Mark the stream complete and return the final display text."""
        self.complete = True
        self.display = self._render()
        return self.display

    @property
    def buffer(self) -> StreamingBuffer:
        return StreamingBuffer(
            raw=self.raw,
            display=self.display,
            kind=self.kind,
            complete=self.complete,
        )

    # -------------------------------------------------------------------------
    # Rendering
    # -------------------------------------------------------------------------

    def _render(self) -> str:
        if self._final is not None:
            return self._final

        scanner = self._scanner
        if scanner.root_closed or scanner.broken or self.complete:
            doc = parse_document(self.raw)
            formatter = pick_formatter(doc) if doc else None
            if formatter is not None:
                text = formatter(doc)
                if scanner.root_closed:
                    self._final = text
                return text
            if scanner.broken:
                logger.debug("Scanner stopped at offset %d", scanner.offset)

        if not scanner.started:
            # plain text, or nothing structural yet
            return "" if "{" in self.raw else clean_json_content(self.raw)

        doc = self._progressive_document()
        formatter = pick_formatter(doc)
        if formatter is None:
            return ""
        return formatter(doc, scanner.is_open)

    def _progressive_document(self) -> dict:
        """The scanner's partial document, with a closed options array reparsed."""
        scanner = self._scanner
        doc = scanner.document()
        start, end = scanner.spans.get(("options",), (None, None))
        if start is None or end is None:
            return doc
        try:
            options = json.loads(self.raw[start:end + 1], strict=False)
        except json.JSONDecodeError:
            return doc
        if not isinstance(options, list):
            return doc
        return {**doc, "options": options}
