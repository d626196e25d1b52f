"""
In-Memory Storage

Used by the test-suite and when no storage backend is configured.
Records are deep-copied on the way in and out so callers can never
mutate stored state by accident.
"""

from copy import deepcopy
from typing import Optional

from cebim.models.audit import AuditEvent
from cebim.services.storage.interface import (
    AuditStorageInterface,
    PersistenceError,
    Record,
    RecordStorageInterface,
)


class InMemoryRecordStorage(RecordStorageInterface):
    """Dict-backed record store: {(user_id, kind): {record_id: record}}."""

    def __init__(self) -> None:
        super().__init__()
        self._data: dict[tuple[str, str], dict[str, Record]] = {}

    async def list_records(self, user_id: str, kind: str) -> list[Record]:
        return [deepcopy(r) for r in self._data.get((user_id, kind), {}).values()]

    async def put_record(self, user_id: str, kind: str, record: Record) -> bool:
        if record.get("id") is None:
            raise PersistenceError(kind, "", "Record has no id")
        record_id = str(record["id"])
        self._data.setdefault((user_id, kind), {})[record_id] = deepcopy(record)
        self._notify(user_id, kind)
        return True

    async def delete_record(self, user_id: str, kind: str, record_id: str) -> bool:
        removed = self._data.get((user_id, kind), {}).pop(str(record_id), None)
        if removed is None:
            return False
        self._notify(user_id, kind)
        return True


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only list of audit events."""

    def __init__(self) -> None:
        self.events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self.events.append(event)
        return True

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        events = [
            e for e in self.events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_recent_events(
        self,
        limit: int = 100,
        user_id: Optional[str] = None,
    ) -> list[AuditEvent]:
        events = [e for e in self.events if user_id is None or e.user_id == user_id]
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
