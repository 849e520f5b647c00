"""
Session snapshot storage.

Separates persistence from the session controller. ``SnapshotStore``
never raises to its caller: a failed save or load must not interrupt
play, so failures are logged and the session carries on unsaved.
"""

import json
import logging
from pathlib import Path
from typing import Protocol, runtime_checkable

from pydantic import ValidationError

from .schema import SCHEMA_VERSION, SessionSnapshot


logger = logging.getLogger(__name__)

STORAGE_KEY = "childSimGameState"


class StorageQuotaError(Exception):
    """Raised by blob storage when a write exceeds the available space."""


@runtime_checkable
class BlobStorage(Protocol):
    """
    Single-slot string storage.

    Implementations:
    - FileBlobStorage: JSON file on disk (production)
    - MemoryBlobStorage: In-memory slot (testing)
    """

    def get(self) -> str | None:
        """Return the stored blob, or None if the slot is empty."""
        ...

    def set(self, blob: str) -> None:
        """Replace the stored blob. May raise StorageQuotaError."""
        ...

    def remove(self) -> None:
        """Empty the slot."""
        ...


class FileBlobStorage:
    """
    File-based slot storage.

    Keeps the previous blob as a ``.bak`` alongside the slot and writes
    through a temporary file so a crash mid-write leaves the old save.
    """

    def __init__(self, data_dir: Path | str = "saves", key: str = STORAGE_KEY):
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.path = self.data_dir / f"{key}.json"

    def get(self) -> str | None:
        if not self.path.exists():
            return None
        return self.path.read_text(encoding="utf-8")

    def set(self, blob: str) -> None:
        if self.path.exists():
            backup = self.path.with_suffix(".json.bak")
            backup.write_bytes(self.path.read_bytes())

        tmp = self.path.with_suffix(".json.tmp")
        try:
            tmp.write_text(blob, encoding="utf-8")
        except OSError as e:
            tmp.unlink(missing_ok=True)
            raise StorageQuotaError(str(e)) from e
        tmp.replace(self.path)

    def remove(self) -> None:
        self.path.unlink(missing_ok=True)


class MemoryBlobStorage:
    """In-memory slot for testing, with an optional size quota in characters."""

    def __init__(self, quota: int | None = None):
        self.blob: str | None = None
        self.quota = quota
        self.writes = 0

    def get(self) -> str | None:
        return self.blob

    def set(self, blob: str) -> None:
        if self.quota is not None and len(blob) > self.quota:
            raise StorageQuotaError(f"blob of {len(blob)} chars exceeds quota {self.quota}")
        self.blob = blob
        self.writes += 1

    def remove(self) -> None:
        self.blob = None


class SnapshotStore:
    """
    Versioned save/load/clear of the session snapshot.

    The blob is an envelope ``{"version": N, "data": {...}}``. A blob
    whose version differs from ``SCHEMA_VERSION`` is treated as absent
    and removed on load.
    """

    def __init__(self, storage: BlobStorage, version: int = SCHEMA_VERSION):
        self.storage = storage
        self.version = version

    def save(self, snapshot: SessionSnapshot) -> bool:
        """Persist a snapshot. Returns True if it was written."""
        if not snapshot.is_complete:
            logger.info("Skipping save: snapshot has no player or child")
            return False

        try:
            blob = json.dumps({
                "version": self.version,
                "data": snapshot.model_dump(mode="json"),
            }, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            logger.warning("Could not serialize snapshot: %s", e)
            return False

        try:
            self.storage.set(blob)
        except StorageQuotaError as e:
            logger.warning("Storage quota exceeded, session not saved: %s", e)
            return False
        except OSError as e:
            logger.warning("Storage write failed, session not saved: %s", e)
            return False
        return True

    def load(self) -> SessionSnapshot | None:
        """Load the stored snapshot, or None if absent, unreadable or stale."""
        try:
            blob = self.storage.get()
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("Storage read failed: %s", e)
            return None
        if not blob:
            return None

        try:
            envelope = json.loads(blob)
        except json.JSONDecodeError as e:
            logger.warning("Stored session is not valid JSON: %s", e)
            return None

        if not isinstance(envelope, dict) or envelope.get("version") != self.version:
            found = envelope.get("version") if isinstance(envelope, dict) else None
            logger.info(
                "Discarding saved session with version %s (expected %s)",
                found, self.version,
            )
            self.clear()
            return None

        try:
            return SessionSnapshot.model_validate(envelope.get("data") or {})
        except ValidationError as e:
            logger.warning("Stored session failed validation: %s", e)
            return None

    def clear(self) -> None:
        """Remove the stored snapshot. Never raises."""
        try:
            self.storage.remove()
        except OSError as e:
            logger.warning("Could not clear stored session: %s", e)

    def exists(self) -> bool:
        return self.load() is not None
