import datetime as dt
from collections.abc import Callable

from gasto_categorizer.core.errors import ConcurrentUpdateError, InvalidTransitionError
from gasto_categorizer.core.settings import EngineSettings
from gasto_categorizer.domain import messages
from gasto_categorizer.domain.timefmt import utcnow
from gasto_categorizer.interfaces import NotificationSink
from gasto_categorizer.logger import get_logger
from gasto_categorizer.services.confirmation import ConfirmationStore
from gasto_categorizer.store.base import ConfirmationRepository

logger = get_logger(__name__)


class ExpirationJob:
    """Warns about PENDING rows close to expiry, expires overdue ones and
    garbage-collects delivered rows past the retention window.

    REJECTED and EXPIRED rows are kept; only delivered rows are collected.
    """

    name = "expiration"

    def __init__(
        self,
        store: ConfirmationStore,
        repository: ConfirmationRepository,
        *,
        notifier: NotificationSink | None = None,
        settings: EngineSettings | None = None,
        clock: Callable[[], dt.datetime] = utcnow,
    ) -> None:
        self.store = store
        self.repository = repository
        self.notifier = notifier
        self.settings = settings or EngineSettings()
        self._clock = clock
        self._running = False
        self._cleaning = False

    async def _notify(self, conversation_id: str, message: str, context: str, confirmation_id: str) -> None:
        if self.notifier is None:
            return
        await self.notifier.notify(conversation_id, message, context, {"confirmation_id": confirmation_id})

    async def run_once(self) -> dict[str, int]:
        counters = {"warned": 0, "expired": 0, "skipped": 0}
        if self._running:
            logger.debug("[EXPIRE] Expiration sweep already running, skipping.")
            counters["skipped"] = 1
            return counters

        self._running = True
        try:
            now = self._clock()
            window = dt.timedelta(seconds=self.settings.expiration_warning_seconds)
            for row in await self.repository.list_expiring(now, window):
                seconds_left = max(0, int((row.expires_at - now).total_seconds()))
                await self._notify(
                    row.conversation_id,
                    messages.expiring_warning(row, seconds_left),
                    "CONFIRMATION_EXPIRING",
                    row.id,
                )
                try:
                    await self.store.mark_warned(row.id)
                except ConcurrentUpdateError as exc:
                    logger.debug("[EXPIRE] %s changed while warning: %s", row.id, exc)
                    continue
                counters["warned"] += 1
                logger.info("[EXPIRE] Warned %s (expires in %ss).", row.id, seconds_left)

            for row in await self.repository.list_overdue(now):
                try:
                    expired = await self.store.expire(row.id)
                except (InvalidTransitionError, ConcurrentUpdateError) as exc:
                    logger.debug("[EXPIRE] %s resolved concurrently: %s", row.id, exc)
                    continue
                counters["expired"] += 1
                await self._notify(
                    expired.conversation_id,
                    messages.expired_notice(expired),
                    "CONFIRMATION_EXPIRED",
                    expired.id,
                )

            if counters["warned"] or counters["expired"]:
                logger.info(
                    "[EXPIRE] Sweep: %s warned, %s expired.", counters["warned"], counters["expired"]
                )
            return counters
        finally:
            self._running = False

    async def cleanup(self) -> dict[str, int]:
        if self._cleaning:
            logger.debug("[EXPIRE] Cleanup already running, skipping.")
            return {"deleted": 0, "skipped": 1}

        self._cleaning = True
        try:
            cutoff = self._clock() - dt.timedelta(seconds=self.settings.delivered_retention_seconds)
            deleted = await self.repository.delete_delivered_before(cutoff)
            if deleted:
                logger.info("[EXPIRE] Cleanup removed %s delivered confirmation(s).", deleted)
            return {"deleted": deleted, "skipped": 0}
        finally:
            self._cleaning = False
