import datetime as dt
from abc import ABC, abstractmethod
from typing import Any

from gasto_categorizer.models import (
    AIExtraction,
    LedgerResponse,
    LedgerTransactionRequest,
    RemoteCategory,
)


class AccountCategoryProvider(ABC):
    @abstractmethod
    async def list_categories(self, user_id: str, account_id: str) -> list[RemoteCategory]:
        """Return the account's categories with their subcategories."""
        pass


class AIExtractionProvider(ABC):
    @abstractmethod
    async def extract_transaction(
        self, text: str, category_context: list[str], *, today: dt.date | None = None
    ) -> AIExtraction:
        """Extract a transaction from free text. May raise AIProviderError.

        ``today`` anchors relative dates such as "ontem"; defaults to the local date.
        """
        pass


class EmbeddingProvider(ABC):
    @abstractmethod
    async def embed(self, text: str) -> list[float]:
        """Return the embedding vector for text. May raise EmbeddingError."""
        pass


class LedgerApiClient(ABC):
    @abstractmethod
    async def create_transaction(self, request: LedgerTransactionRequest) -> LedgerResponse:
        """Create a transaction in the external ledger."""
        pass


class NotificationSink(ABC):
    @abstractmethod
    async def notify(
        self,
        conversation_id: str,
        message: str,
        context: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Fire-and-forget delivery of a message to a conversation or channel."""
        pass
