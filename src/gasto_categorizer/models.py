import datetime as dt
from decimal import Decimal
from enum import StrEnum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field


class TransactionKind(StrEnum):
    EXPENSE = "EXPENSE"
    INCOME = "INCOME"


class MatchSource(StrEnum):
    LEXICAL = "LEXICAL"
    VECTOR = "VECTOR"


class Provenance(StrEnum):
    RAG_DIRECT = "RAG_DIRECT"
    AI_ONLY = "AI_ONLY"
    AI_RAG_VALIDATED = "AI_RAG_VALIDATED"


class ConfirmationStatus(StrEnum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"


class RemoteSubCategory(BaseModel):
    id: str
    name: str


class RemoteCategory(BaseModel):
    """A category as listed by the account-management API."""
    id: str
    name: str
    kind: TransactionKind
    sub_categories: list[RemoteSubCategory] = Field(default_factory=list)


class CategoryEntry(BaseModel):
    category_id: str
    category_name: str
    sub_category_id: str | None = None
    sub_category_name: str | None = None
    account_id: str
    transaction_kind: TransactionKind
    search_text: str
    embedding: list[float] | None = None

    @property
    def label(self) -> str:
        if self.sub_category_name:
            return f"{self.category_name} > {self.sub_category_name}"
        return self.category_name


class ScoredMatch(BaseModel):
    entry: CategoryEntry
    score: float  # 0.0 to 1.0
    source: MatchSource
    matched_terms: list[str] = Field(default_factory=list)


class AIExtraction(BaseModel):
    kind: TransactionKind | None = None
    amount: Decimal | None = None
    category: str | None = None
    sub_category: str | None = None
    description: str | None = None
    date: dt.date | None = None
    merchant: str | None = None
    confidence: float = 0.0


class ResolutionResult(BaseModel):
    transaction_kind: TransactionKind
    amount: Decimal
    category_name: str
    sub_category_name: str | None = None
    category_id: str | None = None
    sub_category_id: str | None = None
    confidence: float
    provenance: Provenance
    date: dt.date
    description: str | None = None
    merchant: str | None = None

    @property
    def fully_resolved(self) -> bool:
        return self.category_id is not None and self.sub_category_id is not None


class PendingConfirmation(BaseModel):
    id: str = Field(default_factory=lambda: uuid4().hex)
    conversation_id: str
    user_id: str | None = None
    account_id: str | None = None
    transaction_kind: TransactionKind
    amount_minor_units: int
    category_name: str
    sub_category_name: str | None = None
    category_id: str | None = None
    sub_category_id: str | None = None
    description: str | None = None
    merchant: str | None = None
    date: dt.date
    confidence: float = 0.0
    provenance: Provenance | None = None
    status: ConfirmationStatus = ConfirmationStatus.PENDING
    created_at: dt.datetime
    expires_at: dt.datetime
    confirmed_at: dt.datetime | None = None
    notified_expiring: bool = False
    delivery_sent: bool = False
    delivery_attempts: int = 0
    last_delivery_error: str | None = None
    delivered_at: dt.datetime | None = None
    remote_transaction_id: str | None = None
    delivery_failed_permanently: bool = False
    version: int = 0


class ListItem(BaseModel):
    id: str
    kind: str
    description: str
    amount: Decimal | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class ListContextEntry(BaseModel):
    conversation_id: str
    list_kind: str
    items: list[ListItem]
    created_at: dt.datetime
    expires_at: dt.datetime


class LedgerTransactionRequest(BaseModel):
    user_id: str | None = None
    account_id: str
    kind: TransactionKind
    amount: int  # minor units
    category_id: str
    sub_category_id: str | None = None
    description: str | None = None
    date: str  # ISO-8601
    merchant: str | None = None
    source: str


class LedgerResponse(BaseModel):
    success: bool
    transaction_id: str | None = None
    error: str | None = None
    status_code: int | None = None
    retryable: bool = True
