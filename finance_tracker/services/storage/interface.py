"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Swap Google Sheets for a real database later
2. Use in-memory storage for testing
3. Keep business logic decoupled from storage implementation

The interface is intentionally simple - we're not building a full ORM.
Four calls on five record types, each one a single round trip.
Scoping records to the signed-in user is the store's job.
"""

from abc import ABC, abstractmethod
from typing import Optional, TypeVar
from uuid import UUID

from pydantic import BaseModel

from finance_tracker.models.audit import AuditEvent
from finance_tracker.models.finance import EntityType


RecordT = TypeVar("RecordT", bound=BaseModel)


class RecordStoreInterface(ABC):
    """
    Abstract interface for the record store.

    Any storage implementation (Google Sheets, PostgreSQL, etc.)
    must implement these methods.
    """

    @abstractmethod
    def set_user(self, user_id: Optional[str], household: bool = False) -> None:
        """
        Scope subsequent reads to one user.

        None lifts the scope (every record is visible). With household set,
        only categories stay scoped to the user.
        """
        pass

    @abstractmethod
    async def list_records(self, entity_type: EntityType) -> list[BaseModel]:
        """
        Read every record of a type visible to the current user.

        Args:
            entity_type: Which collection to read

        Returns:
            All visible records, in storage order

        Raises:
            StorageError: If the read fails
        """
        pass

    @abstractmethod
    async def create(self, entity_type: EntityType, record: RecordT) -> RecordT:
        """
        Persist a new record.

        Args:
            entity_type: Which collection to write to
            record: The record to save (its id is ignored)

        Returns:
            A copy of the record carrying its assigned id

        Raises:
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def update(self, entity_type: EntityType, record_id: str, record: BaseModel) -> None:
        """
        Replace an existing record.

        Raises:
            StorageError: If the write fails
            RecordNotFoundError: If the record doesn't exist
        """
        pass

    @abstractmethod
    async def delete(self, entity_type: EntityType, record_id: str) -> None:
        """
        Delete a record by ID.

        Raises:
            StorageError: If the delete fails
            RecordNotFoundError: If the record doesn't exist
        """
        pass


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
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a correlation ID (e.g., one installment plan).

        Returns:
            List of related events in chronological order
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events.

        Returns:
            List of recent events (newest first)
        """
        pass


def is_visible_to(
    entity_type: EntityType,
    record: BaseModel,
    user_id: Optional[str],
    household: bool = False,
) -> bool:
    """
    Scoping rule shared by the backends.

    Categories are visible when they are defaults or created by the user.
    Other records are visible to their owner, or to every member when
    household is set. A store without a user sees everything.
    """
    if user_id is None:
        return True
    if entity_type == EntityType.CATEGORIES:
        return record.is_default or record.created_by == user_id
    if household:
        return True
    return getattr(record, "user_id", None) == user_id


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class RecordNotFoundError(StorageError):
    """Record not found in storage."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
