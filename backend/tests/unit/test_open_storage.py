"""
Tests for open_storage lifetimes and the per-process streamed store.
"""

import pytest

from csvhub.storage.context import open_storage
from csvhub.storage.streamed_store import StreamedFileStore


@pytest.fixture
async def shared_store(settings):
    store = StreamedFileStore(settings.resolved_streamed_store_dir, settings)
    await store.init()
    yield store
    await store.close()


async def _file_ids(store, user_id=1):
    return [record.id for record in await store.list_files_for_user(user_id)]


async def test_overlapping_contexts_share_index_updates(settings, shared_store):
    async with open_storage(settings, streamed_store=shared_store) as storage:
        await storage.streamed_store.create_file(1, 1, "x_1.csv", "x.csv", username="alice")

    async with open_storage(settings, streamed_store=shared_store) as first:
        async with open_storage(settings, streamed_store=shared_store) as second:
            await first.streamed_store.create_file(2, 1, "y_2.csv", "y.csv", username="alice")
            assert await second.streamed_store.delete_file(1) is True

    async with open_storage(settings, streamed_store=shared_store) as storage:
        assert await _file_ids(storage.streamed_store) == [2]


async def test_shared_index_survives_reopen(settings, shared_store):
    async with open_storage(settings, streamed_store=shared_store) as first:
        async with open_storage(settings, streamed_store=shared_store) as second:
            await first.streamed_store.create_file(1, 1, "x_1.csv", "x.csv", username="alice")
            await second.streamed_store.create_file(2, 1, "y_2.csv", "y.csv", username="alice")
            await first.streamed_store.delete_file(1)
    await shared_store.close()

    reopened = StreamedFileStore(settings.resolved_streamed_store_dir, settings)
    await reopened.init()
    try:
        assert await _file_ids(reopened) == [2]
    finally:
        await reopened.close()


async def test_store_passed_in_stays_open(settings, shared_store):
    async with open_storage(settings, streamed_store=shared_store) as storage:
        assert storage.streamed_store is shared_store

    assert shared_store.is_ready


async def test_store_created_by_context_is_closed(settings):
    async with open_storage(settings) as storage:
        own_store = storage.streamed_store
        assert own_store.is_ready

    assert not own_store.is_ready
