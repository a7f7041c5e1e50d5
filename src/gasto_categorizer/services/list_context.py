import datetime as dt
from collections import Counter
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import StrEnum

from gasto_categorizer.domain.timefmt import utcnow
from gasto_categorizer.logger import get_logger
from gasto_categorizer.models import ListContextEntry, ListItem
from gasto_categorizer.store.ttl import TTLCache

logger = get_logger(__name__)

DEFAULT_TTL_SECONDS = 600

NO_LIST_MESSAGE = (
    "❓ *Nenhuma lista recente encontrada.*\n\n"
    "Primeiro solicite uma lista:\n"
    '• "Pendentes" ou "Lista"\n\n'
    "Depois você pode referenciar por número!"
)
EXPIRED_MESSAGE = (
    "⏰ *Lista expirou (10 minutos).*\n\n"
    "Por favor, solicite a lista novamente:\n"
    '• "Pendentes"'
)


class LookupStatus(StrEnum):
    FOUND = "FOUND"
    NO_LIST = "NO_LIST"
    EXPIRED = "EXPIRED"
    OUT_OF_RANGE = "OUT_OF_RANGE"


@dataclass(frozen=True)
class ListLookup:
    status: LookupStatus
    item: ListItem | None = None
    list_kind: str | None = None
    message: str | None = None

    @property
    def found(self) -> bool:
        return self.status == LookupStatus.FOUND


def _out_of_range_message(number: int, size: int) -> str:
    return (
        f"❌ *Item #{number} não encontrado.*\n\n"
        f"A lista tem apenas {size} itens.\n"
        f"Por favor, escolha entre 1 e {size}."
    )


class ListContextCache:
    """Remembers the last numbered list shown to each conversation."""

    def __init__(
        self,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock: Callable[[], dt.datetime] = utcnow,
    ) -> None:
        self._cache: TTLCache[str, ListContextEntry] = TTLCache(ttl_seconds, clock=clock)

    def set_context(
        self,
        conversation_id: str,
        list_kind: str,
        items: Sequence[ListItem],
    ) -> ListContextEntry:
        now = self._cache.now()
        entry = ListContextEntry(
            conversation_id=conversation_id,
            list_kind=list_kind,
            items=list(items),
            created_at=now,
            expires_at=now + self._cache.ttl,
        )
        self._cache.set(conversation_id, entry)
        logger.debug(
            "[LIST] Stored %s list for %s (%s items).", list_kind, conversation_id, len(entry.items)
        )
        return entry

    def get_item(self, conversation_id: str, number: int) -> ListLookup:
        """Resolve a 1-indexed reference against the conversation's last list."""
        peeked = self._cache.peek(conversation_id)
        if peeked is None:
            return ListLookup(status=LookupStatus.NO_LIST, message=NO_LIST_MESSAGE)
        entry, expired = peeked
        if expired:
            self._cache.delete(conversation_id)
            return ListLookup(status=LookupStatus.EXPIRED, message=EXPIRED_MESSAGE)
        if number < 1 or number > len(entry.items):
            return ListLookup(
                status=LookupStatus.OUT_OF_RANGE,
                list_kind=entry.list_kind,
                message=_out_of_range_message(number, len(entry.items)),
            )
        return ListLookup(
            status=LookupStatus.FOUND,
            item=entry.items[number - 1],
            list_kind=entry.list_kind,
        )

    def get_context(self, conversation_id: str) -> ListContextEntry | None:
        return self._cache.get(conversation_id)

    def clear(self, conversation_id: str) -> bool:
        return self._cache.delete(conversation_id)

    def stats(self) -> dict[str, object]:
        self._cache.sweep()
        by_kind = Counter(entry.list_kind for entry in self._cache.values())
        return {"total_contexts": sum(by_kind.values()), "by_kind": dict(by_kind)}
