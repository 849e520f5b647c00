"""
ChildSim: a turn-based life-simulation game engine.

The session controller (``GameSession``) drives generated content through
a phase state machine, persists a recoverable snapshot after every step
and renders streamed content while it is still arriving.
"""

from .session import GameSession, InvalidPhaseError, InvalidSelectionError, SessionError

__version__ = "0.1.0"

__all__ = [
    "GameSession",
    "InvalidPhaseError",
    "InvalidSelectionError",
    "SessionError",
]
