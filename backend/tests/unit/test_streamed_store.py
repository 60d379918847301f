"""
Unit tests for the streamed (append-only log) file store.
"""

import asyncio
import json

import pytest

from csvhub.exceptions import NotFoundError, StorageError
from csvhub.storage.records import BackendKind, CSVRow
from csvhub.storage.streamed_store import StreamedFileStore


def _rows(file_id, start, count):
    return [CSVRow(file_id, n, [f"name{n}", str(n)]) for n in range(start, start + count)]


def _header(file_id):
    return CSVRow(file_id, 0, ["name", "value"], is_header=True)


@pytest.fixture
def store_settings(settings):
    return settings.model_copy(update={"flush_threshold_rows": 1000})


@pytest.fixture
async def store(tmp_path, store_settings):
    streamed = StreamedFileStore(tmp_path / "streamed", store_settings)
    await streamed.init()
    yield streamed
    await streamed.close()


@pytest.fixture
async def file_id(store):
    record = await store.create_file(7, 1, "big_1.csv", "big.csv", username="alice")
    return record.id


def _log_lines(store, file_id):
    path = store.log_path(file_id)
    if not path.exists():
        return []
    return [line for line in path.read_text(encoding="utf-8").splitlines() if line.strip()]


class TestWritePath:
    async def test_read_after_write_before_flush(self, store, file_id):
        await store.append_rows(file_id, [_header(file_id)] + _rows(file_id, 1, 3))

        assert store.pending_count(file_id) == 4
        assert await store.get_header(file_id) == ["name", "value"]
        assert (await store.get_row(file_id, 2)).fields == ["name2", "2"]
        assert [row.row_number for row in await store.list_page(file_id, 10, 0)] == [1, 2, 3]

    async def test_flush_when_threshold_reached(self, tmp_path, store_settings):
        small = StreamedFileStore(tmp_path / "small", store_settings.model_copy(update={"flush_threshold_rows": 3}))
        await small.init()
        try:
            await small.create_file(1, 1, "f.csv", "f.csv")
            await small.append_rows(1, [_header(1)] + _rows(1, 1, 2))

            assert small.pending_count(1) == 0
            assert len(_log_lines(small, 1)) == 3
        finally:
            await small.close()

    async def test_flush_after_debounce_delay(self, store, file_id):
        await store.append_rows(file_id, [_header(file_id)])
        assert store.has_pending_timer(file_id)
        assert _log_lines(store, file_id) == []

        await asyncio.sleep(0.3)

        assert not store.has_pending_timer(file_id)
        assert store.pending_count(file_id) == 0
        assert len(_log_lines(store, file_id)) == 1

    async def test_log_line_format(self, store, file_id):
        await store.append_rows(file_id, [CSVRow(file_id, 1, ['a, "b"', "c"])])
        await store.flush(file_id)

        entry = json.loads(_log_lines(store, file_id)[0])
        assert entry == {"file_id": file_id, "row_number": 1, "row_data": '["a, \\"b\\"", "c"]', "is_header": 0}
        assert json.loads(entry["row_data"]) == ['a, "b"', "c"]

    async def test_append_to_unknown_file_raises(self, store):
        with pytest.raises(NotFoundError):
            await store.append_rows(404, _rows(404, 1, 1))

    async def test_save_flushes_every_file(self, store, file_id):
        await store.create_file(8, 1, "other.csv", "other.csv")
        await store.append_rows(file_id, _rows(file_id, 1, 2))
        await store.append_rows(8, _rows(8, 1, 3))

        await store.save()

        assert len(_log_lines(store, file_id)) == 2
        assert len(_log_lines(store, 8)) == 3


class TestReadPath:
    async def test_header_is_idempotent(self, store, file_id):
        await store.append_rows(file_id, [_header(file_id)] + _rows(file_id, 1, 2))
        await store.flush(file_id)

        first = await store.get_header(file_id)
        second = await store.get_header(file_id)
        assert first == second == ["name", "value"]

    async def test_page_spans_log_and_pending_rows(self, store, file_id):
        await store.append_rows(file_id, [_header(file_id)] + _rows(file_id, 1, 5))
        await store.flush(file_id)
        await store.append_rows(file_id, _rows(file_id, 6, 2))

        page = await store.list_page(file_id, limit=3, offset=3)
        assert [row.row_number for row in page] == [4, 5, 6]
        assert await store.list_page(file_id, limit=0, offset=0) == []

    async def test_flush_after_scan_reaches_end_keeps_pending_rows(self, store, file_id, monkeypatch):
        await store.append_rows(file_id, [_header(file_id)] + _rows(file_id, 1, 3))
        await store.flush(file_id)
        await store.append_rows(file_id, _rows(file_id, 4, 2))
        scan = store._scan

        async def scan_then_flush(fid):
            async for row in scan(fid):
                yield row
            await store.flush(fid)

        monkeypatch.setattr(store, "_scan", scan_then_flush)

        assert [row.row_number async for row in store.iter_rows(file_id)] == [1, 2, 3, 4, 5]
        assert [row.row_number for row in await store.list_page(file_id, limit=10, offset=0)] == [1, 2, 3, 4, 5]
        assert await store.count_data_rows(file_id, exact=True) == 5

    async def test_rows_appended_during_scan_are_read_once(self, store, file_id, monkeypatch):
        await store.append_rows(file_id, [_header(file_id)] + _rows(file_id, 1, 2))
        await store.flush(file_id)
        await store.append_rows(file_id, _rows(file_id, 3, 1))
        scan = store._scan

        async def scan_then_append(fid):
            async for row in scan(fid):
                yield row
            await store.append_rows(fid, _rows(fid, 4, 2))

        monkeypatch.setattr(store, "_scan", scan_then_append)

        assert [row.row_number async for row in store.iter_rows(file_id)] == [1, 2, 3, 4, 5]

    async def test_batch_size_does_not_limit_streamed_reads(self, store, file_id):
        await store.append_rows(file_id, [_header(file_id)] + _rows(file_id, 1, 4))
        await store.flush(file_id)
        await store.append_rows(file_id, _rows(file_id, 5, 1))

        rows = [row.row_number async for row in store.iter_rows(file_id, batch_size=1)]
        assert rows == [1, 2, 3, 4, 5]

    async def test_rows_readable_after_reopen(self, tmp_path, store_settings):
        base = tmp_path / "reopen"
        first = StreamedFileStore(base, store_settings)
        await first.init()
        await first.create_file(3, 1, "f.csv", "f.csv", username="alice")
        await first.append_rows(3, [_header(3)] + _rows(3, 1, 4))
        await first.update_row_count(3, 4)
        await first.close()

        second = StreamedFileStore(base, store_settings)
        await second.init()
        try:
            record = await second.get_file(3)
            assert record.row_count == 4
            assert record.backend == BackendKind.STREAMED_STORE
            assert await second.get_header(3) == ["name", "value"]
            assert (await second.get_row(3, 4)).fields == ["name4", "4"]
            assert await second.count_data_rows(3, exact=True) == 4
        finally:
            await second.close()

    async def test_corrupt_lines_are_skipped(self, tmp_path, store_settings):
        base = tmp_path / "corrupt"
        first = StreamedFileStore(base, store_settings)
        await first.init()
        await first.create_file(5, 1, "f.csv", "f.csv")
        await first.close()

        good = [row.to_log_dict() for row in [_header(5)] + _rows(5, 1, 2)]
        lines = [json.dumps(good[0]), json.dumps(good[1]), '{"file_id": 5, "row_num', json.dumps(good[2])]
        (base / "records_5.log").write_text("\n".join(lines) + "\n", encoding="utf-8")

        second = StreamedFileStore(base, store_settings)
        await second.init()
        try:
            assert [row.row_number for row in await second.list_page(5, 10, 0)] == [1, 2]
            assert await second.count_data_rows(5, exact=True) == 2
            assert (await second.get_row(5, 2)).fields == ["name2", "2"]
        finally:
            await second.close()

    async def test_cache_ceiling_falls_back_to_scans(self, tmp_path, store_settings):
        capped = StreamedFileStore(tmp_path / "capped", store_settings.model_copy(update={"max_cached_rows": 2}))
        await capped.init()
        try:
            await capped.create_file(9, 1, "f.csv", "f.csv")
            await capped.append_rows(9, [_header(9)] + _rows(9, 1, 5))
            await capped.flush(9)

            assert (await capped.get_row(9, 1)).fields == ["name1", "1"]
            assert (await capped.get_row(9, 5)).fields == ["name5", "5"]
            assert await capped.get_row(9, 6) is None
        finally:
            await capped.close()

    async def test_exact_count_tracks_later_appends(self, store, file_id):
        await store.append_rows(file_id, [_header(file_id)] + _rows(file_id, 1, 3))
        assert await store.count_data_rows(file_id, exact=True) == 3

        await store.append_rows(file_id, _rows(file_id, 4, 2))
        assert await store.count_data_rows(file_id) == 5

    async def test_unknown_file_reads(self, store):
        assert await store.get_header(999) is None
        assert await store.get_row(999, 1) is None
        assert await store.list_page(999, 10, 0) == []


class TestMetadata:
    async def test_indexes_written_on_create(self, store, file_id):
        files = json.loads((store.base_dir / "csv_files.json").read_text(encoding="utf-8"))
        owners = json.loads((store.base_dir / "users.json").read_text(encoding="utf-8"))

        assert [entry["id"] for entry in files] == [file_id]
        assert files[0]["original_name"] == "big.csv"
        assert owners[0]["id"] == 1
        assert owners[0]["username"] == "alice"
        assert owners[0]["file_count"] == 1
        assert "password" not in owners[0]

    async def test_duplicate_file_id_rejected(self, store, file_id):
        with pytest.raises(StorageError):
            await store.create_file(file_id, 1, "again.csv", "again.csv")

    async def test_list_files_newest_first(self, store, file_id):
        await store.create_file(8, 1, "later.csv", "later.csv")
        await store.create_file(9, 2, "someone_else.csv", "someone_else.csv")

        assert [record.id for record in await store.list_files_for_user(1)] == [8, file_id]
        assert await store.count_user_files(1) == 2


class TestDelete:
    async def test_delete_with_pending_timer(self, store, file_id):
        await store.append_rows(file_id, [_header(file_id)] + _rows(file_id, 1, 2))
        assert store.has_pending_timer(file_id)

        assert await store.delete_file(file_id) is True
        await asyncio.sleep(0.3)

        assert not store.log_path(file_id).exists()
        assert await store.get_file(file_id) is None
        assert await store.get_row(file_id, 1) is None
        assert await store.delete_file(file_id) is False

    async def test_delete_removes_log_and_index_entry(self, store, file_id):
        await store.append_rows(file_id, [_header(file_id)] + _rows(file_id, 1, 2))
        await store.flush(file_id)
        assert store.log_path(file_id).exists()

        await store.delete_file(file_id)

        assert not store.log_path(file_id).exists()
        files = json.loads((store.base_dir / "csv_files.json").read_text(encoding="utf-8"))
        owners = json.loads((store.base_dir / "users.json").read_text(encoding="utf-8"))
        assert files == []
        assert owners == []

    async def test_delete_user_removes_all_their_files(self, store, file_id):
        await store.create_file(8, 1, "second.csv", "second.csv")
        await store.create_file(9, 2, "keep.csv", "keep.csv")
        await store.append_rows(8, _rows(8, 1, 2))

        assert await store.delete_user(1) == 2

        assert await store.list_files_for_user(1) == []
        assert await store.get_file(9) is not None
        owners = json.loads((store.base_dir / "users.json").read_text(encoding="utf-8"))
        assert [owner["id"] for owner in owners] == [2]


class TestLifecycle:
    async def test_use_before_init_raises(self, tmp_path, store_settings):
        streamed = StreamedFileStore(tmp_path / "never", store_settings)
        with pytest.raises(StorageError):
            await streamed.get_file(1)

    async def test_closed_store_cannot_reopen(self, tmp_path, store_settings):
        streamed = StreamedFileStore(tmp_path / "closed", store_settings)
        await streamed.init()
        await streamed.close()
        with pytest.raises(StorageError):
            await streamed.init()

    async def test_close_flushes_pending_rows(self, tmp_path, store_settings):
        streamed = StreamedFileStore(tmp_path / "closing", store_settings)
        await streamed.init()
        await streamed.create_file(1, 1, "f.csv", "f.csv")
        await streamed.append_rows(1, _rows(1, 1, 3))
        await streamed.close()

        assert len(_log_lines(streamed, 1)) == 3
