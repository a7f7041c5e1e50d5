import datetime as dt
from decimal import Decimal
from typing import Any

import pytest

from gasto_categorizer.core.settings import EngineSettings
from gasto_categorizer.interfaces import (
    AccountCategoryProvider,
    AIExtractionProvider,
    LedgerApiClient,
    NotificationSink,
)
from gasto_categorizer.models import (
    AIExtraction,
    CategoryEntry,
    LedgerResponse,
    LedgerTransactionRequest,
    Provenance,
    RemoteCategory,
    RemoteSubCategory,
    ResolutionResult,
    TransactionKind,
)
from gasto_categorizer.retrieval.index import expand_categories

START = dt.datetime(2026, 3, 15, 12, 0, tzinfo=dt.timezone.utc)


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


class MutableClock:
    def __init__(self, now: dt.datetime = START) -> None:
        self.now = now

    def __call__(self) -> dt.datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += dt.timedelta(seconds=seconds)


class FakeCategoryProvider(AccountCategoryProvider):
    def __init__(self, categories: list[RemoteCategory]) -> None:
        self.categories = categories
        self.calls = 0
        self.error: Exception | None = None

    async def list_categories(self, user_id: str, account_id: str) -> list[RemoteCategory]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return list(self.categories)


class FakeLedger(LedgerApiClient):
    """Answers with queued responses; once the queue is empty every call succeeds."""

    def __init__(self, responses: list[LedgerResponse] | None = None) -> None:
        self.responses = list(responses or [])
        self.requests: list[LedgerTransactionRequest] = []

    async def create_transaction(self, request: LedgerTransactionRequest) -> LedgerResponse:
        self.requests.append(request)
        if self.responses:
            return self.responses.pop(0)
        return LedgerResponse(success=True, transaction_id=f"tx-{len(self.requests)}", status_code=201)


class FakeAI(AIExtractionProvider):
    def __init__(self, extraction: AIExtraction | None = None, error: Exception | None = None):
        self.extraction = extraction
        self.error = error
        self.calls: list[tuple[str, list[str]]] = []
        self.today: dt.date | None = None

    async def extract_transaction(
        self, text: str, category_context: list[str], *, today: dt.date | None = None
    ) -> AIExtraction:
        self.calls.append((text, category_context))
        self.today = today
        if self.error is not None:
            raise self.error
        assert self.extraction is not None
        return self.extraction


class RecordingSink(NotificationSink):
    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []

    async def notify(
        self,
        conversation_id: str,
        message: str,
        context: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        self.sent.append(
            {
                "conversation_id": conversation_id,
                "message": message,
                "context": context,
                "metadata": metadata or {},
            }
        )

    def contexts(self) -> list[str]:
        return [item["context"] for item in self.sent]


@pytest.fixture
def clock() -> MutableClock:
    return MutableClock()


@pytest.fixture
def settings() -> EngineSettings:
    return EngineSettings()


@pytest.fixture
def remote_categories() -> list[RemoteCategory]:
    return [
        RemoteCategory(
            id="c-food",
            name="Alimentação",
            kind=TransactionKind.EXPENSE,
            sub_categories=[
                RemoteSubCategory(id="s-market", name="Supermercado"),
                RemoteSubCategory(id="s-restaurant", name="Restaurante"),
            ],
        ),
        RemoteCategory(
            id="c-transport",
            name="Transporte",
            kind=TransactionKind.EXPENSE,
            sub_categories=[
                RemoteSubCategory(id="s-uber", name="Uber"),
                RemoteSubCategory(id="s-fuel", name="Combustível"),
            ],
        ),
        RemoteCategory(id="c-health", name="Saúde", kind=TransactionKind.EXPENSE),
        RemoteCategory(id="c-salary", name="Salário", kind=TransactionKind.INCOME),
        RemoteCategory(
            id="c-extra",
            name="Receitas Extras",
            kind=TransactionKind.INCOME,
            sub_categories=[RemoteSubCategory(id="s-freela", name="Freelance")],
        ),
    ]


@pytest.fixture
def corpus(remote_categories: list[RemoteCategory]) -> list[CategoryEntry]:
    return expand_categories("acc-1", remote_categories)


@pytest.fixture
def provider(remote_categories: list[RemoteCategory]) -> FakeCategoryProvider:
    return FakeCategoryProvider(remote_categories)


def make_result(**overrides: Any) -> ResolutionResult:
    values: dict[str, Any] = {
        "transaction_kind": TransactionKind.EXPENSE,
        "amount": Decimal("50"),
        "category_name": "Alimentação",
        "sub_category_name": "Supermercado",
        "category_id": "c-food",
        "sub_category_id": "s-market",
        "confidence": 0.8,
        "provenance": Provenance.RAG_DIRECT,
        "date": START.date(),
        "description": "mercado",
    }
    values.update(overrides)
    return ResolutionResult(**values)
