import datetime as dt
from abc import ABC, abstractmethod
from typing import Any

from gasto_categorizer.models import PendingConfirmation


class ConfirmationRepository(ABC):
    """Storage for confirmation rows.

    ``update`` is a read-modify-write guarded by ``version``: passing
    ``expected_version`` makes the write fail with ``ConcurrentUpdateError``
    when another writer got there first. Every successful write bumps
    ``version``.
    """

    @abstractmethod
    async def get(self, confirmation_id: str) -> PendingConfirmation | None:
        pass

    @abstractmethod
    async def find_pending(self, conversation_id: str) -> PendingConfirmation | None:
        """The conversation's PENDING row, expired or not."""
        pass

    @abstractmethod
    async def list_pending(self, conversation_id: str | None = None) -> list[PendingConfirmation]:
        pass

    @abstractmethod
    async def insert(self, confirmation: PendingConfirmation) -> PendingConfirmation:
        """Store a new row. Raises PendingConfirmationExistsError on a second PENDING."""
        pass

    @abstractmethod
    async def update(
        self,
        confirmation_id: str,
        changes: dict[str, Any],
        *,
        expected_version: int | None = None,
    ) -> PendingConfirmation:
        pass

    @abstractmethod
    async def list_undelivered(self, max_attempts: int, limit: int) -> list[PendingConfirmation]:
        """CONFIRMED rows still owed to the ledger, oldest confirmation first."""
        pass

    @abstractmethod
    async def list_failed(self, max_attempts: int) -> list[PendingConfirmation]:
        """CONFIRMED rows the retry job has given up on."""
        pass

    @abstractmethod
    async def list_expiring(self, now: dt.datetime, window: dt.timedelta) -> list[PendingConfirmation]:
        """PENDING rows expiring within ``window`` that were not warned yet."""
        pass

    @abstractmethod
    async def list_overdue(self, now: dt.datetime) -> list[PendingConfirmation]:
        pass

    @abstractmethod
    async def delete_delivered_before(self, cutoff: dt.datetime) -> int:
        pass
