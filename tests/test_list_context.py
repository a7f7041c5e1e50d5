from decimal import Decimal

from conftest import MutableClock

from gasto_categorizer.models import ListItem
from gasto_categorizer.services.list_context import (
    EXPIRED_MESSAGE,
    NO_LIST_MESSAGE,
    ListContextCache,
    LookupStatus,
)
from gasto_categorizer.store.ttl import TTLCache


def _items(count: int) -> list[ListItem]:
    return [
        ListItem(id=f"id-{n}", kind="confirmation", description=f"item {n}", amount=Decimal(n))
        for n in range(1, count + 1)
    ]


def test_lookup_is_one_indexed(clock: MutableClock) -> None:
    cache = ListContextCache(clock=clock)
    entry = cache.set_context("conv-1", "confirmations", _items(3))
    assert (entry.expires_at - entry.created_at).total_seconds() == 600

    lookup = cache.get_item("conv-1", 2)
    assert lookup.found
    assert lookup.item is not None and lookup.item.id == "id-2"
    assert lookup.list_kind == "confirmations"


def test_out_of_range(clock: MutableClock) -> None:
    cache = ListContextCache(clock=clock)
    cache.set_context("conv-1", "confirmations", _items(3))

    for number in (0, 4):
        lookup = cache.get_item("conv-1", number)
        assert lookup.status == LookupStatus.OUT_OF_RANGE
        assert lookup.message is not None
        assert "entre 1 e 3" in lookup.message


def test_missing_and_expired_lists(clock: MutableClock) -> None:
    cache = ListContextCache(clock=clock)
    missing = cache.get_item("conv-1", 1)
    assert missing.status == LookupStatus.NO_LIST
    assert missing.message == NO_LIST_MESSAGE

    cache.set_context("conv-1", "confirmations", _items(1))
    clock.advance(600)
    expired = cache.get_item("conv-1", 1)
    assert expired.status == LookupStatus.EXPIRED
    assert expired.message == EXPIRED_MESSAGE
    assert cache.get_item("conv-1", 1).status == LookupStatus.NO_LIST


def test_new_list_replaces_previous(clock: MutableClock) -> None:
    cache = ListContextCache(clock=clock)
    cache.set_context("conv-1", "confirmations", _items(3))
    cache.set_context("conv-1", "transactions", _items(1))

    context = cache.get_context("conv-1")
    assert context is not None
    assert context.list_kind == "transactions"
    assert cache.get_item("conv-1", 2).status == LookupStatus.OUT_OF_RANGE


def test_stats_and_clear(clock: MutableClock) -> None:
    cache = ListContextCache(clock=clock)
    cache.set_context("conv-1", "confirmations", _items(1))
    cache.set_context("conv-2", "confirmations", _items(2))
    cache.set_context("conv-3", "transactions", _items(1))
    assert cache.stats() == {
        "total_contexts": 3,
        "by_kind": {"confirmations": 2, "transactions": 1},
    }

    assert cache.clear("conv-1")
    assert not cache.clear("conv-1")
    clock.advance(601)
    assert cache.stats() == {"total_contexts": 0, "by_kind": {}}


def test_ttl_cache_sweeps_on_write(clock: MutableClock) -> None:
    cache: TTLCache[str, int] = TTLCache(10, clock=clock)
    cache.set("a", 1)
    clock.advance(5)
    cache.set("b", 2)
    assert len(cache) == 2

    clock.advance(6)
    assert cache.peek("a") == (1, True)
    cache.set("c", 3)
    assert len(cache) == 2
    assert cache.get("a") is None
    assert cache.get("b") == 2
    assert sorted(cache.values()) == [2, 3]
