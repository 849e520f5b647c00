"""Session state: schema, persistence and notifications."""

from .schema import (
    SCHEMA_VERSION,
    ENDING_AGE,
    START_QUESTION,
    START_CHOICE,
    GamePhase,
    ContentKind,
    WealthTier,
    PlayerProfile,
    ChildProfile,
    Option,
    Question,
    TurnRecord,
    PendingChoice,
    SessionSnapshot,
    StreamingBuffer,
    InitialScenario,
    OutcomeResult,
)
from .store import (
    BlobStorage,
    FileBlobStorage,
    MemoryBlobStorage,
    SnapshotStore,
    StorageQuotaError,
    STORAGE_KEY,
)
from .event_bus import EventBus, EventType, GameEvent

__all__ = [
    "SCHEMA_VERSION",
    "ENDING_AGE",
    "START_QUESTION",
    "START_CHOICE",
    "GamePhase",
    "ContentKind",
    "WealthTier",
    "PlayerProfile",
    "ChildProfile",
    "Option",
    "Question",
    "TurnRecord",
    "PendingChoice",
    "SessionSnapshot",
    "StreamingBuffer",
    "InitialScenario",
    "OutcomeResult",
    "BlobStorage",
    "FileBlobStorage",
    "MemoryBlobStorage",
    "SnapshotStore",
    "StorageQuotaError",
    "STORAGE_KEY",
    "EventBus",
    "EventType",
    "GameEvent",
]
