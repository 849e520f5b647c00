"""Content generation: prompts and the service the session talks to."""

from .service import (
    ContentGenerationError,
    ContentService,
    LLMContentService,
    MalformedDocumentError,
    format_ending,
    parse_json_document,
    parse_outcome,
    parse_question,
)

__all__ = [
    "ContentGenerationError",
    "ContentService",
    "LLMContentService",
    "MalformedDocumentError",
    "format_ending",
    "parse_json_document",
    "parse_outcome",
    "parse_question",
]
