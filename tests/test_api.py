from collections.abc import Generator
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from conftest import FakeCategoryProvider, FakeLedger, RecordingSink
from fastapi.testclient import TestClient

from gasto_categorizer.app import app
from gasto_categorizer.core.errors import ConfirmationNotFoundError
from gasto_categorizer.core.settings import EngineSettings
from gasto_categorizer.manager import TransactionAssistant
from gasto_categorizer.models import RemoteCategory
from gasto_categorizer.services.delivery import DeliveryOutcome, DeliveryResult
from gasto_categorizer.services.scheduler import JobScheduler
from gasto_categorizer.store.memory import InMemoryConfirmationRepository

client = TestClient(app)


def _swap_state(name: str, value: Any) -> Generator[Any, None, None]:
    had_value = hasattr(app.state, name)
    original = getattr(app.state, name, None)
    setattr(app.state, name, value)
    yield value
    if had_value:
        setattr(app.state, name, original)
    else:
        delattr(app.state, name)


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def assistant(
    remote_categories: list[RemoteCategory],
    ledger: FakeLedger,
    monkeypatch: pytest.MonkeyPatch,
) -> Generator[TransactionAssistant, None, None]:
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    real = TransactionAssistant(
        EngineSettings(),
        categories=FakeCategoryProvider(remote_categories),
        ledger=ledger,
        notifier=RecordingSink(),
        alerts=RecordingSink(),
        repository=InMemoryConfirmationRepository(),
    )
    yield from _swap_state("assistant", real)


@pytest.fixture
def mock_assistant() -> Generator[MagicMock, None, None]:
    mock = MagicMock()
    yield from _swap_state("assistant", mock)


@pytest.fixture
def scheduler() -> Generator[JobScheduler, None, None]:
    real = JobScheduler()
    real.register("delivery", AsyncMock(return_value={"processed": 0}), 60)
    yield from _swap_state("scheduler", real)


def _message(text: str) -> dict[str, str]:
    return {"conversation_id": "conv-1", "user_id": "u1", "account_id": "acc-1", "text": text}


def test_message_prompt_and_reply(assistant: TransactionAssistant, ledger: FakeLedger) -> None:
    response = client.post("/messages", json=_message("Gastei 50 no mercado"))
    assert response.status_code == 200
    data = response.json()
    assert data["kind"] == "PROMPT"
    assert data["confirmation"]["category_id"] == "c-food"
    assert data["confirmation"]["status"] == "PENDING"

    pending = client.get("/confirmations/pending", params={"conversation_id": "conv-1"})
    assert pending.status_code == 200
    assert [row["id"] for row in pending.json()] == [data["confirmation"]["id"]]

    reply = client.post("/confirmations/conv-1/reply", json={"text": "sim"})
    assert reply.status_code == 200
    assert reply.json()["action"] == "CONFIRMED"
    assert reply.json()["confirmation"]["delivery_sent"] is True
    assert len(ledger.requests) == 1

    assert client.get("/confirmations/pending").json() == []


def test_message_validation(assistant: TransactionAssistant) -> None:
    response = client.post("/messages", json=_message(""))
    assert response.status_code == 422


def test_deliveries_endpoints(assistant: TransactionAssistant) -> None:
    assert client.get("/deliveries/pending").json() == []
    assert client.get("/deliveries/failed").json() == []

    missing = client.post("/deliveries/unknown/resend")
    assert missing.status_code == 404


def test_resend_busy_is_conflict(mock_assistant: MagicMock) -> None:
    mock_assistant.delivery.resend = AsyncMock(
        return_value=DeliveryResult(outcome=DeliveryOutcome.BUSY)
    )
    response = client.post("/deliveries/abc/resend")
    assert response.status_code == 409


def test_resend_reports_outcome(mock_assistant: MagicMock) -> None:
    mock_assistant.delivery.resend = AsyncMock(
        return_value=DeliveryResult(outcome=DeliveryOutcome.FAILED, error="HTTP 503")
    )
    response = client.post("/deliveries/abc/resend")
    assert response.status_code == 200
    assert response.json() == {"outcome": "FAILED", "error": "HTTP 503", "confirmation": None}
    mock_assistant.delivery.resend.assert_awaited_once_with("abc")


def test_domain_errors_map_to_status_codes(mock_assistant: MagicMock) -> None:
    mock_assistant.reply = AsyncMock(side_effect=ConfirmationNotFoundError("abc"))
    response = client.post("/confirmations/conv-1/reply", json={"text": "sim"})
    assert response.status_code == 404
    assert "abc" in response.json()["detail"]


def test_reindex(assistant: TransactionAssistant) -> None:
    response = client.post("/categories/u1/acc-1/reindex")
    assert response.status_code == 200
    assert response.json() == {"user_id": "u1", "account_id": "acc-1", "entries": 7}


def test_health(assistant: TransactionAssistant) -> None:
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["ai_enabled"] is False


def test_jobs(scheduler: JobScheduler) -> None:
    assert client.get("/jobs").json() == ["delivery"]

    response = client.post("/jobs/delivery/run")
    assert response.status_code == 200
    assert response.json() == {"job": "delivery", "result": {"processed": 0}}

    assert client.post("/jobs/unknown/run").status_code == 404


@pytest.fixture
def no_assistant() -> Generator[None, None, None]:
    yield from _swap_state("assistant", None)


def test_missing_assistant_is_server_error(no_assistant: None) -> None:
    response = client.get("/health")
    assert response.status_code == 500
    assert response.json()["detail"] == "Service not initialized"
