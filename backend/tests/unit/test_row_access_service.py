"""
Tests for RowAccessService against both backends.
"""

import pytest

from csvhub.exceptions import NotFoundError, ValidationError
from csvhub.services.ingestion_service import IngestionService
from csvhub.services.row_access_service import RowAccessService, RowFilter
from csvhub.storage.records import BackendKind

PEOPLE = (
    "name,city,joined\n"
    "Ann,Paris,2024-01-05\n"
    "Bob,paris,2024-02-10\n"
    "Cy,Berlin,not a date\n"
    "Dee,PARISIAN,2024-03-01\n"
    "Eve,Rome,2024-01-20\n"
)

SIZES = {
    BackendKind.RECORD_STORE: None,
    BackendKind.STREAMED_STORE: 2000 * 1024 * 1024,
}


@pytest.fixture
def ingest(storage, write_csv):
    service = IngestionService(storage)

    async def _ingest(user, content=PEOPLE, kind=BackendKind.RECORD_STORE, name="people.csv"):
        path = write_csv(content, name)
        size = path.stat().st_size
        record = await service.register_file(user.id, name, name, SIZES[kind] or size, username=user.username)
        await service.ingest(record, path, size)
        return record

    return _ingest


@pytest.fixture
def rows(storage):
    return RowAccessService(storage)


@pytest.fixture(params=[BackendKind.RECORD_STORE, BackendKind.STREAMED_STORE], ids=lambda kind: kind.value)
def kind(request):
    return request.param


class TestPaging:
    async def test_first_page(self, rows, ingest, user, kind):
        record = await ingest(user, kind=kind)

        page = await rows.get_page(record.id, page=1, page_size=2, user_id=user.id)

        assert page.headers == ["name", "city", "joined"]
        assert [row["name"] for row in page.rows] == ["Ann", "Bob"]
        assert page.rows[0]["_rowNumber"] == 1
        assert page.total_rows == 5
        assert page.total_pages == 3

    async def test_middle_and_last_page(self, rows, ingest, user, kind):
        record = await ingest(user, kind=kind)

        middle = await rows.get_page(record.id, page=2, page_size=2)
        last = await rows.get_page(record.id, page=3, page_size=2)
        beyond = await rows.get_page(record.id, page=9, page_size=2)

        assert [row["name"] for row in middle.rows] == ["Cy", "Dee"]
        assert [row["name"] for row in last.rows] == ["Eve"]
        assert beyond.rows == []

    async def test_response_shape(self, rows, ingest, user, kind):
        record = await ingest(user, kind=kind)

        payload = (await rows.get_page(record.id, page=1, page_size=10)).to_dict()

        assert payload["file"]["id"] == record.id
        assert payload["file"]["name"] == "people.csv"
        assert payload["file"]["totalRows"] == 5
        assert payload["file"]["backend"] == kind.value
        assert payload["pagination"] == {"currentPage": 1, "pageSize": 10, "totalRows": 5, "totalPages": 1}

    async def test_short_rows_are_padded(self, rows, ingest, user):
        record = await ingest(user, content="a,b,c\n1\n2,3,4\n")

        page = await rows.get_page(record.id)

        assert page.rows[0] == {"_rowNumber": 1, "a": "1", "b": "", "c": ""}

    @pytest.mark.parametrize("page,page_size", [(0, 10), (1, 0), (1, 10_001)])
    async def test_invalid_paging(self, rows, ingest, user, page, page_size):
        record = await ingest(user)

        with pytest.raises(ValidationError):
            await rows.get_page(record.id, page=page, page_size=page_size)


class TestFiltering:
    async def test_keyword_is_case_insensitive_substring(self, rows, ingest, user, kind):
        record = await ingest(user, kind=kind)

        page = await rows.get_page(record.id, page_size=10, row_filter=RowFilter(column="city", keyword="PARIS"))

        assert [row["name"] for row in page.rows] == ["Ann", "Bob", "Dee"]
        assert page.total_rows == 3
        assert page.filtered

    async def test_filtered_paging_counts_matches(self, rows, ingest, user, kind):
        record = await ingest(user, kind=kind)

        page = await rows.get_page(
            record.id, page=2, page_size=2, row_filter=RowFilter(column="city", keyword="paris")
        )

        assert [row["name"] for row in page.rows] == ["Dee"]
        assert page.total_rows == 3
        assert page.total_pages == 2

    async def test_date_range_is_inclusive_and_skips_unparseable(self, rows, ingest, user, kind):
        record = await ingest(user, kind=kind)

        page = await rows.get_page(
            record.id,
            page_size=10,
            row_filter=RowFilter(column="joined", date_from="2024-01-05", date_to="2024-02-10"),
        )

        assert [row["name"] for row in page.rows] == ["Ann", "Bob", "Eve"]

    async def test_keyword_and_date_combine(self, rows, ingest, user):
        record = await ingest(user)

        page = await rows.get_page(
            record.id, page_size=10, row_filter=RowFilter(column="joined", keyword="2024-01", date_to="2024-01-10")
        )

        assert [row["name"] for row in page.rows] == ["Ann"]

    async def test_filter_without_condition_is_ignored(self, rows, ingest, user):
        record = await ingest(user)

        page = await rows.get_page(record.id, page_size=10, row_filter=RowFilter(column="city"))

        assert page.total_rows == 5
        assert not page.filtered

    async def test_unknown_column(self, rows, ingest, user):
        record = await ingest(user)

        with pytest.raises(ValidationError):
            await rows.get_page(record.id, row_filter=RowFilter(column="country", keyword="x"))

    async def test_invalid_date_bound(self, rows, ingest, user):
        record = await ingest(user)

        with pytest.raises(ValidationError):
            await rows.get_page(record.id, row_filter=RowFilter(column="joined", date_from="someday"))


class TestSingleRow:
    async def test_get_row(self, rows, ingest, user, kind):
        record = await ingest(user, kind=kind)

        row = await rows.get_row(record.id, 2, user_id=user.id)

        assert row == {
            "headers": ["name", "city", "joined"],
            "data": {"name": "Bob", "city": "paris", "joined": "2024-02-10"},
            "rowNumber": 2,
        }

    @pytest.mark.parametrize("row_number", [0, -1, 6])
    async def test_missing_row(self, rows, ingest, user, kind, row_number):
        record = await ingest(user, kind=kind)

        with pytest.raises(NotFoundError):
            await rows.get_row(record.id, row_number)


class TestOwnership:
    async def test_other_users_file_is_not_found(self, rows, ingest, storage, user):
        record = await ingest(user)
        mallory = await storage.record_store.create_user("mallory", "hash")

        with pytest.raises(NotFoundError):
            await rows.get_page(record.id, user_id=mallory.id)
        with pytest.raises(NotFoundError):
            await rows.get_row(record.id, 1, user_id=mallory.id)
        with pytest.raises(NotFoundError):
            await rows.delete_file(record.id, user_id=mallory.id)

    async def test_unknown_file(self, rows):
        with pytest.raises(NotFoundError):
            await rows.get_page(4242)


class TestListingAndDeletes:
    async def test_list_merges_both_backends_newest_first(self, rows, ingest, user):
        small = await ingest(user, name="small.csv")
        large = await ingest(user, kind=BackendKind.STREAMED_STORE, name="large.csv")

        files = await rows.list_files_for_user(user.id)

        assert [record.id for record in files] == [large.id, small.id]
        assert [record.backend for record in files] == [BackendKind.STREAMED_STORE, BackendKind.RECORD_STORE]

    async def test_delete_removes_rows_and_upload(self, rows, storage, user, make_upload):
        result = await IngestionService(storage).upload_and_ingest(user.id, make_upload("people.csv", PEOPLE.encode()))
        record = await storage.record_store.get_file(result.file_id)
        upload_path = storage.settings.resolved_upload_dir / record.stored_filename
        assert upload_path.exists()

        await rows.delete_file(record.id, user_id=user.id)

        assert not upload_path.exists()
        assert await storage.find_file(record.id) is None
        assert await storage.record_store.count_data_rows(record.id) == 0

    async def test_delete_streamed_file(self, rows, ingest, storage, user):
        record = await ingest(user, kind=BackendKind.STREAMED_STORE)
        log_path = storage.streamed_store.log_path(record.id)

        await rows.delete_file(record.id)

        assert not log_path.exists()
        assert await storage.find_file(record.id) is None

    async def test_batch_delete_skips_missing(self, rows, ingest, storage, user):
        first = await ingest(user, name="a.csv")
        second = await ingest(user, kind=BackendKind.STREAMED_STORE, name="b.csv")

        deleted = await rows.batch_delete_files([first.id, 9999, second.id], user_id=user.id)

        assert deleted == 2
        assert await rows.list_files_for_user(user.id) == []

    async def test_batch_delete_requires_ids(self, rows):
        with pytest.raises(ValidationError):
            await rows.batch_delete_files([])
