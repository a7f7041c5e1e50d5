import datetime as dt
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum
from time import perf_counter

from gasto_categorizer.core.errors import ConcurrentUpdateError
from gasto_categorizer.core.settings import EngineSettings
from gasto_categorizer.domain import messages
from gasto_categorizer.domain.money import format_brl
from gasto_categorizer.domain.timefmt import format_duration, utcnow
from gasto_categorizer.interfaces import LedgerApiClient, NotificationSink
from gasto_categorizer.logger import get_logger
from gasto_categorizer.models import (
    ConfirmationStatus,
    LedgerResponse,
    LedgerTransactionRequest,
    PendingConfirmation,
)
from gasto_categorizer.store.base import ConfirmationRepository
from gasto_categorizer.store.locks import KeyedLocks

logger = get_logger(__name__)

OPERATOR_CHANNEL = "operators"
CATEGORY_NOT_FOUND = "Categoria não encontrada"

CategoryResolver = Callable[[PendingConfirmation], Awaitable[tuple[str | None, str | None]]]


class DeliveryOutcome(StrEnum):
    DELIVERED = "DELIVERED"
    ALREADY_SENT = "ALREADY_SENT"
    FAILED = "FAILED"
    GAVE_UP = "GAVE_UP"
    PERMANENT_FAILURE = "PERMANENT_FAILURE"
    NOT_DELIVERABLE = "NOT_DELIVERABLE"
    NOT_FOUND = "NOT_FOUND"
    BUSY = "BUSY"


@dataclass(frozen=True)
class DeliveryResult:
    outcome: DeliveryOutcome
    confirmation: PendingConfirmation | None = None
    error: str | None = None

    @property
    def delivered(self) -> bool:
        return self.outcome in {DeliveryOutcome.DELIVERED, DeliveryOutcome.ALREADY_SENT}


class DeliveryService:
    """Sends confirmed rows to the ledger at most once.

    Used by both the confirmation flow and the retry job. Each row is guarded
    by its own lock and written back with ``expected_version``, so a row that
    was already delivered is never sent again.
    """

    def __init__(
        self,
        repository: ConfirmationRepository,
        ledger: LedgerApiClient,
        *,
        settings: EngineSettings | None = None,
        alerts: NotificationSink | None = None,
        notifier: NotificationSink | None = None,
        category_resolver: CategoryResolver | None = None,
        clock: Callable[[], dt.datetime] = utcnow,
    ) -> None:
        self.repository = repository
        self.ledger = ledger
        self.settings = settings or EngineSettings()
        self.alerts = alerts
        self.notifier = notifier
        self.category_resolver = category_resolver
        self._clock = clock
        self._locks = KeyedLocks()

    def _build_request(
        self,
        row: PendingConfirmation,
        category_id: str,
        sub_category_id: str | None,
    ) -> LedgerTransactionRequest:
        return LedgerTransactionRequest(
            user_id=row.user_id,
            account_id=row.account_id or "",
            kind=row.transaction_kind,
            amount=row.amount_minor_units,
            category_id=category_id,
            sub_category_id=sub_category_id,
            description=row.description,
            date=row.date.isoformat(),
            merchant=row.merchant,
            source=self.settings.ledger_source_tag,
        )

    async def _send(self, row: PendingConfirmation) -> LedgerResponse:
        category_id, sub_category_id = row.category_id, row.sub_category_id
        if category_id is None and self.category_resolver is not None:
            category_id, sub_category_id = await self.category_resolver(row)
        if category_id is None:
            return LedgerResponse(success=False, error=CATEGORY_NOT_FOUND, retryable=False)
        request = self._build_request(row, category_id, sub_category_id)
        try:
            return await self.ledger.create_transaction(request)
        except Exception as exc:
            logger.error("[DELIVERY] Ledger call failed for %s: %s", row.id, exc)
            return LedgerResponse(success=False, error=str(exc) or type(exc).__name__)

    async def deliver_unsaved(self, row: PendingConfirmation) -> PendingConfirmation | None:
        """Single attempt for a row that is not stored yet.

        Returns the row marked as delivered, or None when the ledger call
        failed. Nothing is persisted here.
        """
        response = await self._send(row)
        if not response.success:
            logger.warning(
                "[DELIVERY] Immediate delivery for %s failed: %s",
                row.conversation_id,
                response.error,
            )
            return None
        logger.info(
            "[DELIVERY] %s delivered immediately as %s.", row.id, response.transaction_id
        )
        return row.model_copy(
            update={
                "delivery_sent": True,
                "delivered_at": self._clock(),
                "remote_transaction_id": response.transaction_id,
                "delivery_attempts": 1,
            }
        )

    async def deliver(
        self,
        confirmation_id: str,
        *,
        force: bool = False,
        notify_user: bool = False,
    ) -> DeliveryResult:
        if self._locks.locked(confirmation_id):
            logger.debug("[DELIVERY] %s already in flight, skipping.", confirmation_id)
            return DeliveryResult(outcome=DeliveryOutcome.BUSY)

        async with self._locks.hold(confirmation_id):
            row = await self.repository.get(confirmation_id)
            if row is None:
                return DeliveryResult(outcome=DeliveryOutcome.NOT_FOUND)
            if row.delivery_sent:
                return DeliveryResult(outcome=DeliveryOutcome.ALREADY_SENT, confirmation=row)
            if row.status != ConfirmationStatus.CONFIRMED:
                return DeliveryResult(outcome=DeliveryOutcome.NOT_DELIVERABLE, confirmation=row)
            max_attempts = self.settings.delivery_max_attempts
            if not force and (
                row.delivery_failed_permanently or row.delivery_attempts >= max_attempts
            ):
                return DeliveryResult(outcome=DeliveryOutcome.GAVE_UP, confirmation=row)

            attempt = row.delivery_attempts + 1
            logger.info("[DELIVERY] Attempt %s/%s for %s.", attempt, max_attempts, row.id)
            response = await self._send(row)

            try:
                if response.success:
                    updated = await self.repository.update(
                        row.id,
                        {
                            "delivery_sent": True,
                            "delivered_at": self._clock(),
                            "remote_transaction_id": response.transaction_id,
                            "delivery_attempts": attempt,
                            "last_delivery_error": None,
                        },
                        expected_version=row.version,
                    )
                else:
                    updated = await self.repository.update(
                        row.id,
                        {
                            "delivery_attempts": attempt,
                            "last_delivery_error": response.error or "Erro desconhecido",
                            "delivery_failed_permanently": (
                                row.delivery_failed_permanently or not response.retryable
                            ),
                        },
                        expected_version=row.version,
                    )
            except ConcurrentUpdateError as exc:
                logger.warning("[DELIVERY] Lost update on %s: %s", row.id, exc)
                return DeliveryResult(outcome=DeliveryOutcome.BUSY, error=str(exc))

        return await self._after_attempt(updated, response, notify_user=notify_user)

    async def _after_attempt(
        self,
        row: PendingConfirmation,
        response: LedgerResponse,
        *,
        notify_user: bool,
    ) -> DeliveryResult:
        max_attempts = self.settings.delivery_max_attempts
        if response.success:
            logger.info(
                "[DELIVERY] %s delivered after %s attempt(s) as %s.",
                row.id,
                row.delivery_attempts,
                row.remote_transaction_id,
            )
            if row.delivery_attempts > 1:
                await self._alert(
                    f"✅ Transaction {row.id} delivered after {row.delivery_attempts} attempts "
                    f"({format_brl(row.amount_minor_units)}, remote id {row.remote_transaction_id}).",
                    "DELIVERY_RECOVERED",
                    row,
                )
            if notify_user and self.notifier is not None:
                await self.notifier.notify(
                    row.conversation_id,
                    messages.registered(row),
                    "TRANSACTION_RESULT",
                    {"confirmation_id": row.id},
                )
            return DeliveryResult(outcome=DeliveryOutcome.DELIVERED, confirmation=row)

        if not response.retryable:
            logger.error("[DELIVERY] %s rejected by ledger: %s", row.id, response.error)
            await self._alert(
                f"❌ Ledger rejected transaction {row.id} "
                f"({format_brl(row.amount_minor_units)}): {response.error}",
                "DELIVERY_REJECTED",
                row,
            )
            return DeliveryResult(
                outcome=DeliveryOutcome.PERMANENT_FAILURE, confirmation=row, error=response.error
            )

        if row.delivery_attempts == max_attempts:
            logger.error(
                "[DELIVERY] Max attempts (%s) reached for %s: %s",
                max_attempts,
                row.id,
                response.error,
            )
            await self._alert(
                f"❌ Transaction {row.id} failed {max_attempts} delivery attempts "
                f"({format_brl(row.amount_minor_units)}): {response.error}",
                "DELIVERY_GAVE_UP",
                row,
            )
            return DeliveryResult(outcome=DeliveryOutcome.GAVE_UP, confirmation=row, error=response.error)

        logger.warning(
            "[DELIVERY] Attempt %s/%s failed for %s: %s",
            row.delivery_attempts,
            max_attempts,
            row.id,
            response.error,
        )
        return DeliveryResult(outcome=DeliveryOutcome.FAILED, confirmation=row, error=response.error)

    async def _alert(self, message: str, context: str, row: PendingConfirmation) -> None:
        if self.alerts is None:
            return
        await self.alerts.notify(
            OPERATOR_CHANNEL,
            message,
            context,
            {
                "confirmation_id": row.id,
                "conversation_id": row.conversation_id,
                "attempts": row.delivery_attempts,
                "error": row.last_delivery_error,
            },
        )

    async def resend(self, confirmation_id: str) -> DeliveryResult:
        """Operator-triggered attempt that ignores the attempt cap."""
        return await self.deliver(confirmation_id, force=True, notify_user=True)


class DeliveryRetryJob:
    """Outbox sweep: retries confirmed rows that were not delivered yet."""

    name = "delivery"

    def __init__(
        self,
        repository: ConfirmationRepository,
        delivery: DeliveryService,
        settings: EngineSettings | None = None,
    ) -> None:
        self.repository = repository
        self.delivery = delivery
        self.settings = settings or EngineSettings()
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def run_once(self) -> dict[str, int]:
        counters = {"processed": 0, "delivered": 0, "failed": 0, "skipped": 0}
        if self._running:
            logger.debug("[DELIVERY] Retry job already running, skipping.")
            counters["skipped"] = 1
            return counters

        self._running = True
        started = perf_counter()
        try:
            rows = await self.repository.list_undelivered(
                self.settings.delivery_max_attempts, self.settings.delivery_batch_size
            )
            if not rows:
                logger.debug("[DELIVERY] No confirmed transactions waiting for delivery.")
                return counters

            logger.info("[DELIVERY] Retrying %s undelivered transaction(s).", len(rows))
            for row in rows:
                counters["processed"] += 1
                try:
                    result = await self.delivery.deliver(row.id, notify_user=True)
                except Exception:
                    logger.exception("[DELIVERY] Retry of %s crashed.", row.id)
                    counters["failed"] += 1
                    continue
                if result.delivered:
                    counters["delivered"] += 1
                elif result.outcome == DeliveryOutcome.BUSY:
                    counters["skipped"] += 1
                else:
                    counters["failed"] += 1
            elapsed = perf_counter() - started
            logger.info(
                "[DELIVERY] Retry sweep done in %s: %s delivered, %s failed.",
                format_duration(elapsed),
                counters["delivered"],
                counters["failed"],
            )
            return counters
        finally:
            self._running = False
