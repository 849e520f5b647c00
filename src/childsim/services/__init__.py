"""External collaborators: credit ledger and analytics events."""

from .events import EventSink, HttpEventSink, MemoryEventSink, SESSION_FLAGS
from .ledger import (
    CreditLedger,
    HttpCreditLedger,
    InsufficientCreditsError,
    LedgerConflictError,
    LedgerError,
    MemoryCreditLedger,
)

__all__ = [
    "EventSink",
    "HttpEventSink",
    "MemoryEventSink",
    "SESSION_FLAGS",
    "CreditLedger",
    "HttpCreditLedger",
    "InsufficientCreditsError",
    "LedgerConflictError",
    "LedgerError",
    "MemoryCreditLedger",
]
