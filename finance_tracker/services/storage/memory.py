"""
In-Memory Storage Implementation

Dictionary-backed record and audit stores. Used by the test-suite and as
the fallback backend when Google Sheets is not configured.

Records are copied on the way in and on the way out, so callers can never
change stored data without a round trip, the same as with a remote store.
"""

from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel

from finance_tracker.models.audit import AuditEvent
from finance_tracker.models.finance import EntityType
from finance_tracker.services.storage.interface import (
    AuditStorageInterface,
    RecordNotFoundError,
    RecordStoreInterface,
    RecordT,
    is_visible_to,
)


class InMemoryRecordStore(RecordStoreInterface):
    """
    Record store held in process memory.

    When user_id is set, reads only return records owned by that user,
    plus default categories, which every user shares.
    When user_id is None every record is visible (family view).
    """

    def __init__(self, user_id: Optional[str] = None):
        self._user_id = user_id
        self._household = False
        self._records: dict[EntityType, dict[str, BaseModel]] = {
            entity_type: {} for entity_type in EntityType
        }
        # (operation, entity_type, record_id) for every round trip, in order
        self.operations: list[tuple[str, EntityType, Optional[str]]] = []

    def set_user(self, user_id: Optional[str], household: bool = False) -> None:
        """Change which user's records are visible."""
        self._user_id = user_id
        self._household = household

    def _is_visible(self, entity_type: EntityType, record: BaseModel) -> bool:
        return is_visible_to(entity_type, record, self._user_id, self._household)

    async def list_records(self, entity_type: EntityType) -> list[BaseModel]:
        self.operations.append(("list", entity_type, None))
        return [
            record.model_copy(deep=True)
            for record in self._records[entity_type].values()
            if self._is_visible(entity_type, record)
        ]

    async def create(self, entity_type: EntityType, record: RecordT) -> RecordT:
        record_id = str(uuid4())
        self.operations.append(("create", entity_type, record_id))
        saved = record.model_copy(update={"id": record_id}, deep=True)
        self._records[entity_type][record_id] = saved
        return saved.model_copy(deep=True)

    async def update(self, entity_type: EntityType, record_id: str, record: BaseModel) -> None:
        self.operations.append(("update", entity_type, record_id))
        if record_id not in self._records[entity_type]:
            raise RecordNotFoundError(f"{entity_type.value} not found: {record_id}")
        self._records[entity_type][record_id] = record.model_copy(
            update={"id": record_id}, deep=True
        )

    async def delete(self, entity_type: EntityType, record_id: str) -> None:
        self.operations.append(("delete", entity_type, record_id))
        if record_id not in self._records[entity_type]:
            raise RecordNotFoundError(f"{entity_type.value} not found: {record_id}")
        del self._records[entity_type][record_id]

    def get(self, entity_type: EntityType, record_id: str) -> Optional[BaseModel]:
        """Peek at a stored record without recording a round trip."""
        record = self._records[entity_type].get(record_id)
        return record.model_copy(deep=True) if record else None


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only audit log held in process memory."""

    def __init__(self):
        self._events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self._events if e.correlation_id == correlation_id]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        events = sorted(self._events, key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
