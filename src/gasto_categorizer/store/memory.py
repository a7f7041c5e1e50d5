import datetime as dt
from typing import Any

from gasto_categorizer.core.errors import (
    ConcurrentUpdateError,
    ConfirmationNotFoundError,
    PendingConfirmationExistsError,
)
from gasto_categorizer.models import ConfirmationStatus, PendingConfirmation
from gasto_categorizer.store.base import ConfirmationRepository


def _is_owed(row: PendingConfirmation) -> bool:
    return row.status == ConfirmationStatus.CONFIRMED and not row.delivery_sent


class InMemoryConfirmationRepository(ConfirmationRepository):
    def __init__(self) -> None:
        self._rows: dict[str, PendingConfirmation] = {}

    def _after_write(self) -> None:
        pass

    async def get(self, confirmation_id: str) -> PendingConfirmation | None:
        return self._rows.get(confirmation_id)

    async def find_pending(self, conversation_id: str) -> PendingConfirmation | None:
        for row in self._rows.values():
            if row.conversation_id == conversation_id and row.status == ConfirmationStatus.PENDING:
                return row
        return None

    async def list_pending(self, conversation_id: str | None = None) -> list[PendingConfirmation]:
        rows = [
            row
            for row in self._rows.values()
            if row.status == ConfirmationStatus.PENDING
            and (conversation_id is None or row.conversation_id == conversation_id)
        ]
        return sorted(rows, key=lambda row: row.created_at)

    async def insert(self, confirmation: PendingConfirmation) -> PendingConfirmation:
        if confirmation.status == ConfirmationStatus.PENDING:
            existing = await self.find_pending(confirmation.conversation_id)
            if existing is not None:
                raise PendingConfirmationExistsError(confirmation.conversation_id, existing.id)
        self._rows[confirmation.id] = confirmation
        self._after_write()
        return confirmation

    async def update(
        self,
        confirmation_id: str,
        changes: dict[str, Any],
        *,
        expected_version: int | None = None,
    ) -> PendingConfirmation:
        current = self._rows.get(confirmation_id)
        if current is None:
            raise ConfirmationNotFoundError(confirmation_id)
        if expected_version is not None and current.version != expected_version:
            raise ConcurrentUpdateError(confirmation_id, expected_version, current.version)
        updated = current.model_copy(update={**changes, "version": current.version + 1})
        self._rows[confirmation_id] = updated
        self._after_write()
        return updated

    async def list_undelivered(self, max_attempts: int, limit: int) -> list[PendingConfirmation]:
        rows = [
            row
            for row in self._rows.values()
            if _is_owed(row)
            and not row.delivery_failed_permanently
            and row.delivery_attempts < max_attempts
        ]
        rows.sort(key=lambda row: (row.confirmed_at or row.created_at, row.id))
        return rows[:limit]

    async def list_failed(self, max_attempts: int) -> list[PendingConfirmation]:
        rows = [
            row
            for row in self._rows.values()
            if _is_owed(row)
            and (row.delivery_failed_permanently or row.delivery_attempts >= max_attempts)
        ]
        return sorted(rows, key=lambda row: (row.confirmed_at or row.created_at, row.id))

    async def list_expiring(self, now: dt.datetime, window: dt.timedelta) -> list[PendingConfirmation]:
        horizon = now + window
        return [
            row
            for row in self._rows.values()
            if row.status == ConfirmationStatus.PENDING
            and not row.notified_expiring
            and now < row.expires_at <= horizon
        ]

    async def list_overdue(self, now: dt.datetime) -> list[PendingConfirmation]:
        return [
            row
            for row in self._rows.values()
            if row.status == ConfirmationStatus.PENDING and row.expires_at <= now
        ]

    async def delete_delivered_before(self, cutoff: dt.datetime) -> int:
        doomed = [
            row.id
            for row in self._rows.values()
            if row.delivery_sent and row.delivered_at is not None and row.delivered_at < cutoff
        ]
        for confirmation_id in doomed:
            del self._rows[confirmation_id]
        if doomed:
            self._after_write()
        return len(doomed)
