"""
Abstract Storage Interface

DESIGN DECISION: The portfolio core only needs a per-user document store:
"read all records of kind K for user U", "write record", "delete record".
Keeping the interface this small allows us to:
1. Swap Google Sheets for a real database later
2. Use in-memory storage for testing
3. Keep ledger logic decoupled from storage implementation

Writes are full-record overwrites (last write wins). There is no
transaction spanning an in-memory mutation and its persisted write.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

import structlog

from cebim.models.audit import AuditEvent


logger = structlog.get_logger(__name__)

Record = dict[str, Any]
ChangeListener = Callable[[str, str], None]


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class PersistenceError(StorageError):
    """A record could not be written to or deleted from the store."""

    def __init__(self, kind: str, record_id: str, message: str):
        self.kind = kind
        self.record_id = record_id
        super().__init__(message)


class StorageConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass


class RecordStorageInterface(ABC):
    """
    Abstract per-user record store.

    Records are JSON-compatible dicts with an "id" key, grouped by user
    and by kind (e.g. "assets").

    Listeners registered with subscribe() are called with (user_id, kind)
    after every successful write or delete, so callers can re-read and
    re-render.
    """

    def __init__(self) -> None:
        self._listeners: dict[tuple[str, str], list[ChangeListener]] = {}

    @abstractmethod
    async def list_records(self, user_id: str, kind: str) -> list[Record]:
        """
        Read every record of a kind for a user.

        Raises:
            StorageError: if the backend cannot be read
        """
        pass

    @abstractmethod
    async def put_record(self, user_id: str, kind: str, record: Record) -> bool:
        """
        Insert or fully overwrite a record (keyed by record["id"]).

        Raises:
            PersistenceError: if the write fails
        """
        pass

    @abstractmethod
    async def delete_record(self, user_id: str, kind: str, record_id: str) -> bool:
        """
        Delete a record.

        Returns:
            True if a record was deleted, False if it did not exist

        Raises:
            PersistenceError: if the delete fails
        """
        pass

    def subscribe(self, user_id: str, kind: str, listener: ChangeListener) -> Callable[[], None]:
        """
        Register a change listener.

        Returns:
            A function that removes the listener again
        """
        listeners = self._listeners.setdefault((user_id, kind), [])
        listeners.append(listener)

        def unsubscribe() -> None:
            if listener in listeners:
                listeners.remove(listener)

        return unsubscribe

    def _notify(self, user_id: str, kind: str) -> None:
        for listener in list(self._listeners.get((user_id, kind), [])):
            try:
                listener(user_id, kind)
            except Exception as e:
                # A broken listener must not turn a successful write into a failure
                logger.error(
                    "change_listener_failed",
                    user_id=user_id,
                    kind=kind,
                    error=str(e),
                )


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        """
        Get all events for a specific entity, in chronological order.
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
        user_id: Optional[str] = None,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events (newest first).
        """
        pass
