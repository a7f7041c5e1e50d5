import pytest
from conftest import START, MutableClock, RecordingSink, make_result

from gasto_categorizer.models import ConfirmationStatus, PendingConfirmation, TransactionKind
from gasto_categorizer.services.confirmation import ConfirmationStore, ResponseAction
from gasto_categorizer.services.expiration import ExpirationJob
from gasto_categorizer.store.memory import InMemoryConfirmationRepository


@pytest.fixture
def repository() -> InMemoryConfirmationRepository:
    return InMemoryConfirmationRepository()


@pytest.fixture
def notifier() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def store(repository: InMemoryConfirmationRepository, clock: MutableClock) -> ConfirmationStore:
    return ConfirmationStore(repository, clock=clock)


@pytest.fixture
def job(
    store: ConfirmationStore,
    repository: InMemoryConfirmationRepository,
    notifier: RecordingSink,
    clock: MutableClock,
) -> ExpirationJob:
    return ExpirationJob(store, repository, notifier=notifier, clock=clock)


def _delivered(**overrides: object) -> PendingConfirmation:
    values: dict = {
        "conversation_id": "conv-9",
        "transaction_kind": TransactionKind.EXPENSE,
        "amount_minor_units": 1000,
        "category_name": "Saúde",
        "category_id": "c-health",
        "date": START.date(),
        "status": ConfirmationStatus.CONFIRMED,
        "created_at": START,
        "expires_at": START,
        "confirmed_at": START,
        "delivery_sent": True,
        "delivered_at": START,
    }
    values.update(overrides)
    return PendingConfirmation(**values)


@pytest.mark.anyio
async def test_warns_once_then_expires(
    job: ExpirationJob,
    store: ConfirmationStore,
    repository: InMemoryConfirmationRepository,
    notifier: RecordingSink,
    clock: MutableClock,
) -> None:
    created = await store.create("conv-1", make_result())

    assert await job.run_once() == {"warned": 0, "expired": 0, "skipped": 0}

    clock.advance(275)
    assert (await job.run_once())["warned"] == 1
    assert notifier.contexts() == ["CONFIRMATION_EXPIRING"]
    assert "25 segundos" in notifier.sent[0]["message"]
    assert notifier.sent[0]["metadata"] == {"confirmation_id": created.confirmation.id}

    assert (await job.run_once())["warned"] == 0

    clock.advance(26)
    counters = await job.run_once()
    assert counters == {"warned": 0, "expired": 1, "skipped": 0}
    assert notifier.contexts() == ["CONFIRMATION_EXPIRING", "CONFIRMATION_EXPIRED"]
    assert "expirou sem resposta" in notifier.sent[1]["message"]

    row = await repository.get(created.confirmation.id)
    assert row is not None and row.status == ConfirmationStatus.EXPIRED
    assert await job.run_once() == {"warned": 0, "expired": 0, "skipped": 0}


@pytest.mark.anyio
async def test_reply_after_sweep_expired_the_row_is_invalid(
    job: ExpirationJob,
    store: ConfirmationStore,
    repository: InMemoryConfirmationRepository,
    clock: MutableClock,
) -> None:
    created = await store.create("conv-1", make_result())

    clock.advance(301)
    assert (await job.run_once())["expired"] == 1

    outcome = await store.process_response("conv-1", "sim")

    assert outcome.action == ResponseAction.INVALID
    row = await repository.get(created.confirmation.id)
    assert row is not None
    assert row.status == ConfirmationStatus.EXPIRED
    assert not row.delivery_sent


@pytest.mark.anyio
async def test_answered_rows_are_left_alone(
    job: ExpirationJob, store: ConfirmationStore, notifier: RecordingSink, clock: MutableClock
) -> None:
    created = await store.create("conv-1", make_result())
    await store.reject(created.confirmation.id)

    clock.advance(400)
    assert await job.run_once() == {"warned": 0, "expired": 0, "skipped": 0}
    assert notifier.sent == []


@pytest.mark.anyio
async def test_cleanup_removes_only_old_delivered_rows(
    job: ExpirationJob,
    store: ConfirmationStore,
    repository: InMemoryConfirmationRepository,
    clock: MutableClock,
) -> None:
    old = await repository.insert(_delivered())
    owed = await repository.insert(_delivered(conversation_id="conv-8", delivery_sent=False, delivered_at=None))
    pending = await store.create("conv-1", make_result())
    await store.reject(pending.confirmation.id)

    clock.advance(3599)
    assert await job.cleanup() == {"deleted": 0, "skipped": 0}

    clock.advance(2)
    recent = await repository.insert(_delivered(conversation_id="conv-7", delivered_at=clock.now))
    assert await job.cleanup() == {"deleted": 1, "skipped": 0}

    assert await repository.get(old.id) is None
    assert await repository.get(owed.id) is not None
    assert await repository.get(recent.id) is not None
    rejected = await repository.get(pending.confirmation.id)
    assert rejected is not None and rejected.status == ConfirmationStatus.REJECTED
