import asyncio

import pytest

from services.batch_fetcher import BatchFetcher


def test_one_multi_get_per_call_aligned_with_ids(store):
    store.add("lists", "L1", {"title": "Tee"})
    store.add("lists", "L3", {"title": "Cap"})
    fetcher = BatchFetcher(store)

    result = asyncio.run(fetcher.fetch("lists", ["L1", "L2", "L3"]))

    assert store.multi_get_calls == [("lists", ["L1", "L2", "L3"])]
    assert result.failed is False
    assert result.docs == [{"title": "Tee"}, None, {"title": "Cap"}]
    assert dict(result.items()) == {"L1": {"title": "Tee"}, "L3": {"title": "Cap"}}
    assert result.found_count() == 2


def test_empty_id_list_skips_the_store(store):
    result = asyncio.run(BatchFetcher(store).fetch("lists", []))

    assert store.multi_get_calls == []
    assert result.ids == [] and result.docs == [] and not result.failed


def test_collection_failure_degrades_to_all_absent(store):
    store.failing.add("lists")

    result = asyncio.run(BatchFetcher(store).fetch("lists", ["L1", "L2"]))

    assert result.failed is True
    assert result.docs == [None, None]
    assert "unavailable" in result.error


def test_slow_collection_times_out_and_degrades(store):
    store.add("lists", "L1", {"title": "Tee"})
    store.delays["lists"] = 1.0
    fetcher = BatchFetcher(store, timeout_seconds=0.01)

    result = asyncio.run(fetcher.fetch("lists", ["L1"]))

    assert result.failed is True
    assert result.error == "timeout"
    assert result.docs == [None]


def test_misaligned_store_result_is_treated_as_failure():
    class ShortStore:
        async def multi_get(self, collection, ids):
            return [{"title": "only one"}]

    result = asyncio.run(BatchFetcher(ShortStore()).fetch("lists", ["L1", "L2"]))

    assert result.failed is True
    assert result.docs == [None, None]


def test_cancellation_propagates(store):
    store.delays["lists"] = 5.0
    fetcher = BatchFetcher(store, timeout_seconds=30)

    async def run():
        task = asyncio.create_task(fetcher.fetch("lists", ["L1"]))
        await asyncio.sleep(0.01)
        task.cancel()
        await task

    with pytest.raises(asyncio.CancelledError):
        asyncio.run(run())


def test_fetch_many_runs_collections_independently(store):
    store.add("inventories", "PB1__TB1", {"productBlueprintId": "PB1"})
    store.failing.add("lists")

    results = asyncio.run(BatchFetcher(store).fetch_many({"lists": ["L1"], "inventories": ["PB1__TB1"]}))

    assert results["lists"].failed is True
    assert results["inventories"].docs == [{"productBlueprintId": "PB1"}]
