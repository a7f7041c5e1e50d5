import datetime as dt
import os
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from gasto_categorizer.core.errors import PendingConfirmationExistsError
from gasto_categorizer.core.settings import DATA_DIR, EngineSettings
from gasto_categorizer.domain import messages
from gasto_categorizer.domain.timefmt import utcnow
from gasto_categorizer.integration.ledger import LedgerClient
from gasto_categorizer.integration.notifications import (
    DiscordAlertSink,
    LoggingNotificationSink,
    WebhookNotificationSink,
)
from gasto_categorizer.integration.openai_provider import (
    DEFAULT_EMBEDDING_MODEL,
    DEFAULT_MODEL,
    OpenAIEmbeddingProvider,
    OpenAIExtractionProvider,
)
from gasto_categorizer.interfaces import (
    AccountCategoryProvider,
    AIExtractionProvider,
    EmbeddingProvider,
    LedgerApiClient,
    NotificationSink,
)
from gasto_categorizer.logger import get_logger
from gasto_categorizer.models import PendingConfirmation
from gasto_categorizer.retrieval.index import CategoryIndex
from gasto_categorizer.services.confirmation import (
    ConfirmationStore,
    CreateStatus,
    ReplyIntent,
    ResponseAction,
    ResponseOutcome,
    classify_reply,
)
from gasto_categorizer.services.corpus import CorpusLoader
from gasto_categorizer.services.delivery import DeliveryRetryJob, DeliveryService
from gasto_categorizer.services.expiration import ExpirationJob
from gasto_categorizer.services.list_context import ListContextCache
from gasto_categorizer.services.resolution import (
    ResolutionOrchestrator,
    Unresolved,
    match_category_names,
)
from gasto_categorizer.services.scheduler import JobScheduler
from gasto_categorizer.store.base import ConfirmationRepository
from gasto_categorizer.store.json_file import JsonFileConfirmationRepository

logger = get_logger(__name__)


class ReplyKind(StrEnum):
    PROMPT = "PROMPT"
    AUTO_REGISTERED = "AUTO_REGISTERED"
    RESPONSE = "RESPONSE"
    UNRESOLVED = "UNRESOLVED"
    LIST_ITEM = "LIST_ITEM"


@dataclass(frozen=True)
class AssistantReply:
    kind: ReplyKind
    message: str
    confirmation: PendingConfirmation | None = None
    action: str | None = None


def _default_notifier() -> NotificationSink:
    if os.getenv("NOTIFY_WEBHOOK_URL"):
        return WebhookNotificationSink()
    logger.info("NOTIFY_WEBHOOK_URL not set. Replies to users are only logged.")
    return LoggingNotificationSink()


def _default_alerts() -> NotificationSink:
    if os.getenv("DISCORD_WEBHOOK_URL"):
        return DiscordAlertSink()
    return LoggingNotificationSink()


class TransactionAssistant:
    """Wires resolution, confirmation, delivery and the periodic jobs together.

    Every collaborator can be injected; anything left out is built from the
    environment.
    """

    def __init__(
        self,
        settings: EngineSettings | None = None,
        *,
        data_dir: str = DATA_DIR,
        categories: AccountCategoryProvider | None = None,
        ledger: LedgerApiClient | None = None,
        ai: AIExtractionProvider | None = None,
        embedder: EmbeddingProvider | None = None,
        notifier: NotificationSink | None = None,
        alerts: NotificationSink | None = None,
        repository: ConfirmationRepository | None = None,
        clock: Callable[[], dt.datetime] = utcnow,
    ) -> None:
        self.settings = settings or EngineSettings.from_env()
        self.clock = clock

        # 1. Account-management API (category provider and ledger)
        if categories is None or ledger is None:
            client = LedgerClient(categories_cache_ttl=self.settings.category_cache_ttl)
            if not client.configured:
                logger.warning("LEDGER_API_URL or LEDGER_API_TOKEN not set. Ledger integration disabled.")
            categories = categories or client
            ledger = ledger or client
        self.categories = categories
        self.ledger = ledger

        # 2. AI extraction and embeddings (optional)
        api_key = os.getenv("OPENAI_API_KEY")
        if ai is None and api_key:
            model = os.getenv("OPENAI_MODEL") or DEFAULT_MODEL
            ai = OpenAIExtractionProvider(api_key=api_key, model=model)
            logger.info("AI extraction enabled: model=%s", model)
        elif ai is None:
            logger.warning("OPENAI_API_KEY not found. AI fallback disabled.")
        if embedder is None and api_key and self.settings.rag_vector_enabled:
            embedder = OpenAIEmbeddingProvider(
                api_key=api_key,
                model=os.getenv("OPENAI_EMBEDDING_MODEL") or DEFAULT_EMBEDDING_MODEL,
            )
        self.ai = ai
        self.embedder = embedder

        # 3. Outbound messages
        self.notifier = notifier or _default_notifier()
        self.alerts = alerts or _default_alerts()

        # 4. Storage and retrieval
        self.repository = repository or JsonFileConfirmationRepository(
            os.path.join(data_dir, "confirmations.json")
        )
        self.index = CategoryIndex()
        self.corpus = CorpusLoader(
            self.categories,
            self.index,
            cache_ttl=self.settings.category_cache_ttl,
            embedder=self.embedder,
            vector_enabled=self.settings.rag_vector_enabled,
        )
        self.orchestrator = ResolutionOrchestrator(
            self.corpus,
            self.index,
            ai=self.ai,
            embedder=self.embedder,
            settings=self.settings,
            clock=clock,
        )

        # 5. Confirmation flow, delivery and jobs
        self.list_context = ListContextCache(
            ttl_seconds=self.settings.list_context_ttl_seconds, clock=clock
        )
        self.delivery = DeliveryService(
            self.repository,
            self.ledger,
            settings=self.settings,
            alerts=self.alerts,
            notifier=self.notifier,
            category_resolver=self.resolve_category_ids,
            clock=clock,
        )
        self.store = ConfirmationStore(
            self.repository,
            delivery=self.delivery,
            list_context=self.list_context,
            settings=self.settings,
            clock=clock,
        )
        self.retry_job = DeliveryRetryJob(self.repository, self.delivery, self.settings)
        self.expiration_job = ExpirationJob(
            self.store,
            self.repository,
            notifier=self.notifier,
            settings=self.settings,
            clock=clock,
        )

    async def resolve_category_ids(self, row: PendingConfirmation) -> tuple[str | None, str | None]:
        """Look up ids for a row that was confirmed with category names only."""
        if not row.user_id or not row.account_id:
            return None, None
        corpus = await self.corpus.load(row.user_id, row.account_id)
        match = match_category_names(
            corpus, row.transaction_kind, row.category_name, row.sub_category_name
        )
        if match is None:
            logger.warning(
                "[DELIVERY] Category '%s' not found for %s.", row.category_name, row.id
            )
            return None, None
        return match.category_id, match.sub_category_id

    def _record_use(self, confirmation: PendingConfirmation | None) -> None:
        if confirmation and confirmation.user_id and confirmation.category_id:
            self.index.record_use(confirmation.user_id, confirmation.category_id)

    def _from_response(self, outcome: ResponseOutcome) -> AssistantReply:
        if outcome.action == ResponseAction.CONFIRMED:
            self._record_use(outcome.confirmation)
        return AssistantReply(
            kind=ReplyKind.RESPONSE,
            message=outcome.message,
            confirmation=outcome.confirmation,
            action=outcome.action.value,
        )

    async def reply(self, conversation_id: str, text: str) -> AssistantReply:
        """Treat ``text`` as an answer to the conversation's pending confirmation."""
        return self._from_response(await self.store.process_response(conversation_id, text))

    async def _select_item(self, conversation_id: str, number: int) -> AssistantReply:
        lookup = self.list_context.get_item(conversation_id, number)
        if not lookup.found:
            return AssistantReply(kind=ReplyKind.LIST_ITEM, message=lookup.message or "")
        row = await self.repository.get(lookup.item.id)
        if row is None:
            return AssistantReply(kind=ReplyKind.LIST_ITEM, message=messages.NO_PENDING)
        pending_count = len(await self.store.list_pending(conversation_id))
        return AssistantReply(
            kind=ReplyKind.LIST_ITEM,
            message=messages.guidance(row, pending_count),
            confirmation=row,
        )

    async def handle_message(
        self,
        conversation_id: str,
        user_id: str,
        account_id: str,
        text: str,
    ) -> AssistantReply:
        stripped = text.strip()
        if stripped.isdigit():
            return await self._select_item(conversation_id, int(stripped))

        if classify_reply(text) == ReplyIntent.LIST:
            return await self.reply(conversation_id, text)
        if await self.store.active_pending(conversation_id) is not None:
            return await self.reply(conversation_id, text)

        outcome = await self.orchestrator.resolve(text, user_id, account_id)
        if isinstance(outcome, Unresolved):
            logger.info("[RESOLVE] Unresolved (%s): '%s'", outcome.reason.value, text[:50])
            return AssistantReply(
                kind=ReplyKind.UNRESOLVED, message=outcome.message, action=outcome.reason.value
            )

        try:
            created = await self.store.create(
                conversation_id, outcome.result, user_id=user_id, account_id=account_id
            )
        except PendingConfirmationExistsError:
            logger.info("[CONFIRM] %s got a pending row meanwhile, answering it.", conversation_id)
            return await self.reply(conversation_id, text)

        if created.status == CreateStatus.AUTO_REGISTERED:
            self._record_use(created.confirmation)
            return AssistantReply(
                kind=ReplyKind.AUTO_REGISTERED,
                message=created.message,
                confirmation=created.confirmation,
                action=created.status.value,
            )
        return AssistantReply(
            kind=ReplyKind.PROMPT,
            message=created.message,
            confirmation=created.confirmation,
            action=created.status.value,
        )

    async def reindex(self, user_id: str, account_id: str) -> int:
        count = await self.corpus.reindex(user_id, account_id)
        logger.info("[INDEX] Reindexed user %s account %s: %s entries.", user_id, account_id, count)
        return count

    async def pending_deliveries(self, limit: int = 100) -> list[PendingConfirmation]:
        return await self.repository.list_undelivered(self.settings.delivery_max_attempts, limit)

    async def failed_deliveries(self) -> list[PendingConfirmation]:
        return await self.repository.list_failed(self.settings.delivery_max_attempts)

    def build_scheduler(self) -> JobScheduler:
        scheduler = JobScheduler()
        scheduler.register(
            "expiration", self.expiration_job.run_once, self.settings.expiration_interval_seconds
        )
        scheduler.register(
            "cleanup", self.expiration_job.cleanup, self.settings.cleanup_interval_seconds
        )
        scheduler.register(
            "delivery", self.retry_job.run_once, self.settings.delivery_interval_seconds
        )
        return scheduler

    def health(self) -> dict[str, Any]:
        return {
            "status": "ok",
            "ledger_configured": bool(getattr(self.ledger, "configured", True)),
            "ai_enabled": self.ai is not None,
            "vector_enabled": self.corpus.vector_enabled,
            "list_contexts": self.list_context.stats()["total_contexts"],
        }

    async def aclose(self) -> None:
        closed: set[int] = set()
        for component in (self.categories, self.ledger, self.notifier, self.alerts):
            aclose = getattr(component, "aclose", None)
            if aclose is None or id(component) in closed:
                continue
            closed.add(id(component))
            await aclose()
