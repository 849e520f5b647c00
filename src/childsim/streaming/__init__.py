"""Incremental rendering of streamed content."""

from .assembler import StreamingAssembler, clean_json_content, parse_document
from .formatters import format_ending, format_initial_state, format_outcome, format_question, pick_formatter
from .reveal import RevealScheduler, RevealTiming, chunk_delay, next_break
from .scanner import JsonScanner

__all__ = [
    "StreamingAssembler",
    "clean_json_content",
    "parse_document",
    "format_ending",
    "format_initial_state",
    "format_outcome",
    "format_question",
    "pick_formatter",
    "RevealScheduler",
    "RevealTiming",
    "chunk_delay",
    "next_break",
    "JsonScanner",
]
