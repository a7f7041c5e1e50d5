from collections import deque
from collections.abc import Iterable

from gasto_categorizer.logger import get_logger
from gasto_categorizer.models import CategoryEntry, RemoteCategory, TransactionKind
from gasto_categorizer.retrieval.text import normalize

logger = get_logger(__name__)


def expand_categories(account_id: str, categories: Iterable[RemoteCategory]) -> list[CategoryEntry]:
    """One entry per (category, subcategory); a bare category yields a single entry."""
    entries: list[CategoryEntry] = []
    for category in categories:
        if not category.sub_categories:
            entries.append(
                CategoryEntry(
                    category_id=category.id,
                    category_name=category.name,
                    account_id=account_id,
                    transaction_kind=category.kind,
                    search_text=normalize(category.name),
                )
            )
            continue
        for sub in category.sub_categories:
            entries.append(
                CategoryEntry(
                    category_id=category.id,
                    category_name=category.name,
                    sub_category_id=sub.id,
                    sub_category_name=sub.name,
                    account_id=account_id,
                    transaction_kind=category.kind,
                    search_text=normalize(f"{category.name} {sub.name}"),
                )
            )
    return entries


class CategoryIndex:
    """Per-user corpus of category entries.

    Each user's corpus is an immutable tuple replaced in a single assignment,
    so readers never observe a half-built index.
    """

    def __init__(self, recency_size: int = 20) -> None:
        self._corpus: dict[str, tuple[CategoryEntry, ...]] = {}
        self._recent: dict[str, deque[str]] = {}
        self._recency_size = recency_size

    def index(self, user_id: str, entries: Iterable[CategoryEntry]) -> int:
        snapshot = tuple(entries)
        self._corpus[user_id] = snapshot
        logger.info("[INDEX] Indexed %s entries for user %s.", len(snapshot), user_id)
        return len(snapshot)

    def has(self, user_id: str) -> bool:
        return user_id in self._corpus

    def entries(self, user_id: str) -> tuple[CategoryEntry, ...]:
        return self._corpus.get(user_id, ())

    def lookup(
        self,
        user_id: str,
        account_id: str,
        kind: TransactionKind | None = None,
    ) -> list[CategoryEntry]:
        return [
            entry
            for entry in self._corpus.get(user_id, ())
            if entry.account_id == account_id
            and (kind is None or entry.transaction_kind == kind)
        ]

    def clear(self, user_id: str | None = None) -> None:
        if user_id is None:
            self._corpus.clear()
            self._recent.clear()
        else:
            self._corpus.pop(user_id, None)
            self._recent.pop(user_id, None)

    def record_use(self, user_id: str, category_id: str) -> None:
        """Remember a category the user just booked; used to break score ties."""
        recent = self._recent.setdefault(user_id, deque(maxlen=self._recency_size))
        if category_id in recent:
            recent.remove(category_id)
        recent.appendleft(category_id)

    def recent(self, user_id: str) -> list[str]:
        return list(self._recent.get(user_id, ()))
