import hashlib
import json
from dataclasses import dataclass
from time import monotonic

from gasto_categorizer.core.errors import EmbeddingError
from gasto_categorizer.interfaces import AccountCategoryProvider, EmbeddingProvider
from gasto_categorizer.logger import get_logger
from gasto_categorizer.models import CategoryEntry, RemoteCategory
from gasto_categorizer.retrieval.index import CategoryIndex, expand_categories
from gasto_categorizer.store.locks import KeyedLocks

logger = get_logger(__name__)


def fingerprint_categories(categories: list[RemoteCategory]) -> str:
    canonical = json.dumps(
        [category.model_dump(mode="json") for category in categories],
        sort_keys=True,
        ensure_ascii=False,
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def render_category_context(entries: list[CategoryEntry]) -> list[str]:
    """Render entries as "Category > Sub" lines for the AI prompt."""
    return list(dict.fromkeys(entry.label for entry in entries))


@dataclass
class _AccountSlot:
    fingerprint: str
    expires_at: float


class CorpusLoader:
    """Keeps each (user, account) corpus in the index fresh.

    Provider lists are cached for ``cache_ttl`` seconds and fingerprinted;
    the index is only rebuilt when the fingerprint changes. When the provider
    fails, the last indexed corpus keeps being served.
    """

    def __init__(
        self,
        provider: AccountCategoryProvider,
        index: CategoryIndex,
        *,
        cache_ttl: float = 60.0,
        embedder: EmbeddingProvider | None = None,
        vector_enabled: bool = False,
    ) -> None:
        self.provider = provider
        self.index = index
        self.cache_ttl = max(0.0, cache_ttl)
        self.embedder = embedder
        self.vector_enabled = vector_enabled and embedder is not None
        self._slots: dict[tuple[str, str], _AccountSlot] = {}
        self._locks = KeyedLocks()

    async def load(self, user_id: str, account_id: str, *, force: bool = False) -> list[CategoryEntry]:
        key = (user_id, account_id)
        async with self._locks.hold(f"{user_id}:{account_id}"):
            slot = self._slots.get(key)
            if not force and slot is not None and monotonic() < slot.expires_at:
                return self.index.lookup(user_id, account_id)

            try:
                categories = await self.provider.list_categories(user_id, account_id)
            except Exception as exc:
                logger.error(
                    "[INDEX] Error fetching categories for user %s account %s: %s",
                    user_id,
                    account_id,
                    exc,
                )
                return self.index.lookup(user_id, account_id)

            fingerprint = fingerprint_categories(categories)
            expires_at = monotonic() + self.cache_ttl
            if not force and slot is not None and slot.fingerprint == fingerprint:
                slot.expires_at = expires_at
                return self.index.lookup(user_id, account_id)

            entries = expand_categories(account_id, categories)
            if self.vector_enabled:
                entries = await self._embed_entries(entries)
            others = [entry for entry in self.index.entries(user_id) if entry.account_id != account_id]
            self.index.index(user_id, [*others, *entries])
            self._slots[key] = _AccountSlot(fingerprint=fingerprint, expires_at=expires_at)
            logger.info(
                "[INDEX] Rebuilt corpus for user %s account %s (%s entries).",
                user_id,
                account_id,
                len(entries),
            )
            return entries

    async def reindex(self, user_id: str, account_id: str) -> int:
        return len(await self.load(user_id, account_id, force=True))

    def invalidate(self, user_id: str | None = None) -> None:
        if user_id is None:
            self._slots.clear()
            return
        for key in [key for key in self._slots if key[0] == user_id]:
            del self._slots[key]

    async def _embed_entries(self, entries: list[CategoryEntry]) -> list[CategoryEntry]:
        embedded: list[CategoryEntry] = []
        for position, entry in enumerate(entries):
            try:
                vector = await self.embedder.embed(entry.search_text)
            except EmbeddingError as exc:
                logger.warning(
                    "[INDEX] Embedding failed after %s/%s entries, vector scoring limited: %s",
                    position,
                    len(entries),
                    exc,
                )
                return embedded + entries[position:]
            embedded.append(entry.model_copy(update={"embedding": vector}))
        return embedded
