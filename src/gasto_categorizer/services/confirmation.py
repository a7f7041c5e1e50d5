import datetime as dt
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from gasto_categorizer.core.errors import (
    ConfirmationNotFoundError,
    InvalidTransitionError,
    PendingConfirmationExistsError,
)
from gasto_categorizer.core.settings import EngineSettings
from gasto_categorizer.domain import messages
from gasto_categorizer.domain.money import from_minor_units, to_minor_units
from gasto_categorizer.domain.timefmt import utcnow
from gasto_categorizer.logger import get_logger
from gasto_categorizer.models import (
    ConfirmationStatus,
    ListItem,
    PendingConfirmation,
    ResolutionResult,
)
from gasto_categorizer.retrieval.text import normalize
from gasto_categorizer.services.delivery import DeliveryService
from gasto_categorizer.services.list_context import ListContextCache
from gasto_categorizer.store.base import ConfirmationRepository
from gasto_categorizer.store.locks import KeyedLocks

logger = get_logger(__name__)

AFFIRMATIVE_WORDS = frozenset({"sim", "s", "yes", "y", "ok", "confirmar", "confirmo", "pode", "certo", "correto"})
AFFIRMATIVE_EMOJI = ("👍", "✅")
NEGATIVE_WORDS = frozenset({"nao", "n", "no", "cancelar", "cancelo", "errado", "incorreto"})
NEGATIVE_EMOJI = ("👎", "❌")
LIST_WORDS = frozenset({"lista", "listar", "pendentes"})
_LIST_FILLER = frozenset({"ver", "minhas", "as", "a"})

LIST_KIND = "confirmations"


class ReplyIntent(StrEnum):
    AFFIRMATIVE = "AFFIRMATIVE"
    NEGATIVE = "NEGATIVE"
    LIST = "LIST"
    UNKNOWN = "UNKNOWN"


def classify_reply(text: str) -> ReplyIntent:
    tokens = set(normalize(text).split())
    if tokens & LIST_WORDS and tokens <= LIST_WORDS | _LIST_FILLER:
        return ReplyIntent.LIST
    affirmative = bool(tokens & AFFIRMATIVE_WORDS) or any(emoji in text for emoji in AFFIRMATIVE_EMOJI)
    negative = bool(tokens & NEGATIVE_WORDS) or any(emoji in text for emoji in NEGATIVE_EMOJI)
    if affirmative and not negative:
        return ReplyIntent.AFFIRMATIVE
    if negative and not affirmative:
        return ReplyIntent.NEGATIVE
    return ReplyIntent.UNKNOWN


class CreateStatus(StrEnum):
    AUTO_REGISTERED = "AUTO_REGISTERED"
    PENDING = "PENDING"


@dataclass(frozen=True)
class CreateOutcome:
    status: CreateStatus
    confirmation: PendingConfirmation
    message: str
    remote_transaction_id: str | None = None


class ResponseAction(StrEnum):
    CONFIRMED = "CONFIRMED"
    REJECTED = "REJECTED"
    GUIDANCE = "GUIDANCE"
    INVALID = "INVALID"
    LIST_SHOWN = "LIST_SHOWN"


@dataclass(frozen=True)
class ResponseOutcome:
    action: ResponseAction
    message: str
    confirmation: PendingConfirmation | None = None


class ConfirmationStore:
    """PENDING -> CONFIRMED | REJECTED | EXPIRED, one PENDING per conversation.

    Writes for a conversation are serialized by a per-conversation lock.
    High-confidence, fully resolved results skip the prompt and are booked
    straight away through the delivery service.
    """

    def __init__(
        self,
        repository: ConfirmationRepository,
        *,
        delivery: DeliveryService | None = None,
        list_context: ListContextCache | None = None,
        settings: EngineSettings | None = None,
        clock: Callable[[], dt.datetime] = utcnow,
    ) -> None:
        self.repository = repository
        self.delivery = delivery
        self.list_context = list_context
        self.settings = settings or EngineSettings()
        self._clock = clock
        self._locks = KeyedLocks()

    def should_auto_register(self, result: ResolutionResult) -> bool:
        return (
            self.delivery is not None
            and result.fully_resolved
            and result.confidence >= self.settings.auto_register_threshold
        )

    def _new_row(
        self,
        conversation_id: str,
        result: ResolutionResult,
        *,
        user_id: str | None,
        account_id: str | None,
        now: dt.datetime,
    ) -> PendingConfirmation:
        return PendingConfirmation(
            conversation_id=conversation_id,
            user_id=user_id,
            account_id=account_id,
            transaction_kind=result.transaction_kind,
            amount_minor_units=to_minor_units(result.amount),
            category_name=result.category_name,
            sub_category_name=result.sub_category_name,
            category_id=result.category_id,
            sub_category_id=result.sub_category_id,
            description=result.description,
            merchant=result.merchant,
            date=result.date,
            confidence=result.confidence,
            provenance=result.provenance,
            created_at=now,
            expires_at=now + dt.timedelta(seconds=self.settings.confirmation_timeout_seconds),
        )

    async def create(
        self,
        conversation_id: str,
        result: ResolutionResult,
        *,
        user_id: str | None = None,
        account_id: str | None = None,
    ) -> CreateOutcome:
        if self.should_auto_register(result):
            booked = await self._auto_register(
                conversation_id, result, user_id=user_id, account_id=account_id
            )
            if booked is not None:
                return CreateOutcome(
                    status=CreateStatus.AUTO_REGISTERED,
                    confirmation=booked,
                    message=messages.registered(booked),
                    remote_transaction_id=booked.remote_transaction_id,
                )

        async with self._locks.hold(conversation_id):
            now = self._clock()
            existing = await self.repository.find_pending(conversation_id)
            if existing is not None:
                if existing.expires_at > now:
                    raise PendingConfirmationExistsError(conversation_id, existing.id)
                await self._transition(existing, ConfirmationStatus.EXPIRED)
            row = await self.repository.insert(
                self._new_row(
                    conversation_id, result, user_id=user_id, account_id=account_id, now=now
                )
            )

        logger.info(
            "[CONFIRM] Pending %s for %s: '%s' (%.2f).",
            row.id,
            conversation_id,
            row.category_name,
            row.confidence,
        )
        return CreateOutcome(
            status=CreateStatus.PENDING,
            confirmation=row,
            message=messages.confirmation_prompt(row),
        )

    async def _auto_register(
        self,
        conversation_id: str,
        result: ResolutionResult,
        *,
        user_id: str | None,
        account_id: str | None,
    ) -> PendingConfirmation | None:
        """Book the result without asking; None when the ledger did not take it.

        The row is only stored once the ledger accepted it, so a failure
        leaves nothing behind and the caller falls back to a prompt.
        """
        now = self._clock()
        row = self._new_row(
            conversation_id, result, user_id=user_id, account_id=account_id, now=now
        ).model_copy(update={"status": ConfirmationStatus.CONFIRMED, "confirmed_at": now})
        logger.info(
            "[CONFIRM] Auto-registering for %s (confidence %.2f).",
            conversation_id,
            row.confidence,
        )
        delivered = await self.delivery.deliver_unsaved(row)
        if delivered is None:
            logger.info(
                "[CONFIRM] Auto-register failed for %s, asking the user to confirm.",
                conversation_id,
            )
            return None
        return await self.repository.insert(delivered)

    async def _transition(
        self,
        row: PendingConfirmation,
        target: ConfirmationStatus,
        changes: dict[str, Any] | None = None,
    ) -> PendingConfirmation:
        if row.status != ConfirmationStatus.PENDING:
            raise InvalidTransitionError(row.id, row.status.value, target.value)
        update = {"status": target, **(changes or {})}
        updated = await self.repository.update(row.id, update, expected_version=row.version)
        logger.info("[CONFIRM] %s -> %s (%s).", row.id, target.value, row.conversation_id)
        return updated

    async def _load(self, confirmation_id: str) -> PendingConfirmation:
        row = await self.repository.get(confirmation_id)
        if row is None:
            raise ConfirmationNotFoundError(confirmation_id)
        return row

    async def confirm(self, confirmation_id: str) -> PendingConfirmation:
        row = await self._load(confirmation_id)
        async with self._locks.hold(row.conversation_id):
            row = await self._load(confirmation_id)
            now = self._clock()
            if row.status == ConfirmationStatus.PENDING and row.expires_at <= now:
                await self._transition(row, ConfirmationStatus.EXPIRED)
                raise InvalidTransitionError(row.id, ConfirmationStatus.EXPIRED.value, "CONFIRMED")
            return await self._transition(row, ConfirmationStatus.CONFIRMED, {"confirmed_at": now})

    async def reject(self, confirmation_id: str) -> PendingConfirmation:
        row = await self._load(confirmation_id)
        async with self._locks.hold(row.conversation_id):
            row = await self._load(confirmation_id)
            return await self._transition(row, ConfirmationStatus.REJECTED)

    async def expire(self, confirmation_id: str) -> PendingConfirmation:
        row = await self._load(confirmation_id)
        async with self._locks.hold(row.conversation_id):
            row = await self._load(confirmation_id)
            return await self._transition(row, ConfirmationStatus.EXPIRED)

    async def mark_warned(self, confirmation_id: str) -> PendingConfirmation:
        row = await self._load(confirmation_id)
        return await self.repository.update(
            row.id, {"notified_expiring": True}, expected_version=row.version
        )

    async def active_pending(self, conversation_id: str) -> PendingConfirmation | None:
        """The conversation's live PENDING row; a stale one is expired on the way."""
        async with self._locks.hold(conversation_id):
            return await self._active_pending(conversation_id)

    async def _active_pending(self, conversation_id: str) -> PendingConfirmation | None:
        row = await self.repository.find_pending(conversation_id)
        if row is None:
            return None
        if row.expires_at <= self._clock():
            await self._transition(row, ConfirmationStatus.EXPIRED)
            return None
        return row

    async def list_pending(self, conversation_id: str | None = None) -> list[PendingConfirmation]:
        now = self._clock()
        rows = await self.repository.list_pending(conversation_id)
        return [row for row in rows if row.expires_at > now]

    async def show_pending_list(self, conversation_id: str) -> ResponseOutcome:
        rows = await self.list_pending(conversation_id)
        if self.list_context is not None and rows:
            self.list_context.set_context(
                conversation_id,
                LIST_KIND,
                [
                    ListItem(
                        id=row.id,
                        kind="confirmation",
                        description=messages.category_label(row),
                        amount=from_minor_units(row.amount_minor_units),
                        metadata={"expires_at": row.expires_at.isoformat()},
                    )
                    for row in rows
                ],
            )
        return ResponseOutcome(
            action=ResponseAction.LIST_SHOWN,
            message=messages.pending_list(rows, self._clock()),
        )

    async def process_response(self, conversation_id: str, text: str) -> ResponseOutcome:
        intent = classify_reply(text)
        if intent == ReplyIntent.LIST:
            return await self.show_pending_list(conversation_id)

        async with self._locks.hold(conversation_id):
            row = await self.repository.find_pending(conversation_id)
            if row is None:
                return ResponseOutcome(action=ResponseAction.INVALID, message=messages.NO_PENDING)

            now = self._clock()
            if row.expires_at <= now:
                expired = await self._transition(row, ConfirmationStatus.EXPIRED)
                return ResponseOutcome(
                    action=ResponseAction.INVALID,
                    message=messages.EXPIRED_REPLY,
                    confirmation=expired,
                )

            if intent == ReplyIntent.NEGATIVE:
                rejected = await self._transition(row, ConfirmationStatus.REJECTED)
                return ResponseOutcome(
                    action=ResponseAction.REJECTED,
                    message=messages.REJECTED,
                    confirmation=rejected,
                )

            if intent != ReplyIntent.AFFIRMATIVE:
                pending_count = len(await self.list_pending(conversation_id))
                return ResponseOutcome(
                    action=ResponseAction.GUIDANCE,
                    message=messages.guidance(row, pending_count),
                    confirmation=row,
                )

            confirmed = await self._transition(
                row, ConfirmationStatus.CONFIRMED, {"confirmed_at": now}
            )

        if not (self.settings.deliver_on_confirm and self.delivery is not None):
            return ResponseOutcome(
                action=ResponseAction.CONFIRMED, message=messages.CONFIRMED, confirmation=confirmed
            )

        delivery = await self.delivery.deliver(confirmed.id)
        booked = delivery.confirmation or confirmed
        message = messages.registered(booked) if delivery.delivered else messages.CONFIRMED
        return ResponseOutcome(action=ResponseAction.CONFIRMED, message=message, confirmation=booked)
