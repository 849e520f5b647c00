"""
Resumable scanner for a JSON document that arrives in pieces.

``JsonScanner`` consumes text chunk by chunk and keeps its cursor,
container stack and string/escape state between calls, so each
``feed()`` costs only the length of the new chunk. At any point it can
report the partially built document: every container and string seen so
far, with the paths that are still open.

Paths are tuples of object keys and array indices, e.g.
``("options", 1, "text")``.
"""

import json
from dataclasses import dataclass, field
from typing import Any


Path = tuple

_WHITESPACE = " \t\r\n"
_SIMPLE_ESCAPES = {
    '"': '"',
    "\\": "\\",
    "/": "/",
    "b": "\b",
    "f": "\f",
    "n": "\n",
    "r": "\r",
    "t": "\t",
}
_SCALAR_CHARS = set("0123456789+-.eE" "truefalsn")


@dataclass
class _Frame:
    kind: str                      # "object" or "array"
    container: dict | list
    path: Path
    start: int
    state: str                     # see JsonScanner._step
    key: str | None = None


@dataclass
class _StringState:
    is_key: bool
    path: Path | None
    chars: list[str] = field(default_factory=list)
    escape: bool = False
    unicode_digits: str | None = None


class JsonScanner:
    """
    Incremental JSON automaton.

    Text before the first ``{`` (code fences, prose) is skipped, as is
    anything after the root object closes. A structural error stops the
    scan and sets ``broken``; what was built up to that point stays
    available.
    """

    def __init__(self):
        self.offset = 0
        self.root: dict | None = None
        self.root_start: int | None = None
        self.root_end: int | None = None
        self.broken = False
        self.open_paths: set[Path] = set()
        self.spans: dict[Path, tuple[int, int | None]] = {}
        self._stack: list[_Frame] = []
        self._string: _StringState | None = None
        self._scalar: list[str] | None = None

    # -------------------------------------------------------------------------
    # Public state
    # -------------------------------------------------------------------------

    @property
    def started(self) -> bool:
        return self.root is not None

    @property
    def root_closed(self) -> bool:
        return self.root_end is not None

    def is_open(self, path: Path) -> bool:
        return path in self.open_paths

    def has(self, path: Path) -> bool:
        return self.get(path) is not None

    def get(self, path: Path) -> Any:
        """Value at ``path`` in the partial document, or None."""
        node: Any = self.root
        for part in path:
            if isinstance(node, dict) and isinstance(part, str):
                node = node.get(part)
            elif isinstance(node, list) and isinstance(part, int) and part < len(node):
                node = node[part]
            else:
                return None
            if node is None:
                return None
        return node

    def document(self) -> dict:
        return self.root if self.root is not None else {}

    # -------------------------------------------------------------------------
    # Feeding
    # -------------------------------------------------------------------------

    def feed(self, chunk: str) -> None:
        """Consume the next piece of the document."""
        if self.broken or self.root_closed:
            self.offset += len(chunk)
            return

        start = self.offset
        for i, ch in enumerate(chunk):
            self.offset = start + i
            if not self._step(ch):
                self.broken = True
                break
            if self.root_closed:
                break
        self.offset = start + len(chunk)

        self._flush_string()

    def _step(self, ch: str) -> bool:
        if self._string is not None:
            self._string_char(ch)
            return True

        if self._scalar is not None:
            if ch in _SCALAR_CHARS:
                self._scalar.append(ch)
                return True
            if not self._end_scalar():
                return False

        if not self._stack:
            if self.root is None and ch == "{":
                self.root = {}
                self.root_start = self.offset
                self._push("object", self.root, ())
            return True

        if ch in _WHITESPACE:
            return True

        frame = self._stack[-1]

        if frame.kind == "object":
            if frame.state == "key":
                if ch == '"':
                    self._string = _StringState(is_key=True, path=None)
                    return True
                if ch == "}" and not frame.container:
                    self._pop()
                    return True
                return False
            if frame.state == "colon":
                if ch == ":":
                    frame.state = "value"
                    return True
                return False
            if frame.state == "value":
                return self._begin_value(ch, frame.path + (frame.key,))
            if frame.state == "next":
                if ch == ",":
                    frame.state = "key"
                    return True
                if ch == "}":
                    self._pop()
                    return True
                return False
            return False

        # array
        if frame.state == "value":
            if ch == "]" and not frame.container:
                self._pop()
                return True
            return self._begin_value(ch, frame.path + (len(frame.container),))
        if frame.state == "next":
            if ch == ",":
                frame.state = "value"
                return True
            if ch == "]":
                self._pop()
                return True
        return False

    # -------------------------------------------------------------------------
    # Values
    # -------------------------------------------------------------------------

    def _begin_value(self, ch: str, path: Path) -> bool:
        if ch == "{":
            self._assign(path, {})
            self._push("object", self.get(path), path)
            return True
        if ch == "[":
            self._assign(path, [])
            self._push("array", self.get(path), path)
            return True
        if ch == '"':
            self._assign(path, "")
            self._string = _StringState(is_key=False, path=path)
            self.open_paths.add(path)
            return True
        if ch in _SCALAR_CHARS:
            self._scalar = [ch]
            return True
        return False

    def _assign(self, path: Path, value: Any) -> None:
        frame = self._stack[-1]
        if frame.kind == "object":
            frame.container[path[-1]] = value
        else:
            frame.container.append(value)

    def _set_current(self, value: Any) -> None:
        frame = self._stack[-1]
        if frame.kind == "object":
            frame.container[frame.key] = value
        else:
            frame.container[-1] = value

    def _value_done(self) -> None:
        frame = self._stack[-1]
        frame.state = "next"
        frame.key = None if frame.kind == "object" else frame.key

    def _end_scalar(self) -> bool:
        token = "".join(self._scalar)
        self._scalar = None
        try:
            value = json.loads(token)
        except ValueError:
            return False
        frame = self._stack[-1]
        path = frame.path + ((frame.key,) if frame.kind == "object" else (len(frame.container),))
        self._assign(path, value)
        self._value_done()
        return True

    # -------------------------------------------------------------------------
    # Strings
    # -------------------------------------------------------------------------

    def _string_char(self, ch: str) -> None:
        s = self._string
        if s.unicode_digits is not None:
            s.unicode_digits += ch
            if len(s.unicode_digits) == 4:
                self._append_code_point(s)
            return
        if s.escape:
            s.escape = False
            if ch == "u":
                s.unicode_digits = ""
            else:
                s.chars.append(_SIMPLE_ESCAPES.get(ch, ch))
            return
        if ch == "\\":
            s.escape = True
            return
        if ch == '"':
            self._close_string()
            return
        s.chars.append(ch)

    @staticmethod
    def _append_code_point(s: _StringState) -> None:
        digits, s.unicode_digits = s.unicode_digits, None
        try:
            code = int(digits, 16)
        except ValueError:
            s.chars.append(digits)
            return
        if 0xDC00 <= code <= 0xDFFF and s.chars and 0xD800 <= ord(s.chars[-1]) <= 0xDBFF:
            high = ord(s.chars.pop())
            code = 0x10000 + ((high - 0xD800) << 10) + (code - 0xDC00)
        s.chars.append(chr(code))

    def _close_string(self) -> None:
        s, self._string = self._string, None
        text = "".join(s.chars)
        frame = self._stack[-1]
        if s.is_key:
            frame.key = text
            frame.state = "colon"
            return
        self._set_current(text)
        self.open_paths.discard(s.path)
        self._value_done()

    def _flush_string(self) -> None:
        """Publish the text of a string that is still open."""
        s = self._string
        if s is not None and not s.is_key:
            self._set_current("".join(s.chars))

    # -------------------------------------------------------------------------
    # Containers
    # -------------------------------------------------------------------------

    def _push(self, kind: str, container: dict | list, path: Path) -> None:
        state = "key" if kind == "object" else "value"
        self._stack.append(_Frame(kind, container, path, self.offset, state))
        self.open_paths.add(path)
        self.spans[path] = (self.offset, None)

    def _pop(self) -> None:
        frame = self._stack.pop()
        self.open_paths.discard(frame.path)
        self.spans[frame.path] = (frame.start, self.offset)
        if not self._stack:
            self.root_end = self.offset
            return
        self._value_done()
