import pytest

from cloudsync.db.store import StoreError
from cloudsync.db.tables import TableName
from cloudsync.domain.sync.reader import fetch_range, fetch_range_frame

SALES = TableName.SALES.value
PAGE_SIZE = 2000
SALES_KEY = ("date", "sku_code")


def _seed_sales(store, count, day="2024-03-15"):
    rows = [{"date": day, "sku_code": f"SKU{i:06d}", "paid_amount": i} for i in range(count)]
    store.seed(SALES, rows, SALES_KEY)
    return rows


@pytest.mark.parametrize("count", [0, 1, PAGE_SIZE, PAGE_SIZE + 1, 3 * PAGE_SIZE])
def test_range_is_complete_without_duplicates(store, count):
    _seed_sales(store, count)

    rows = fetch_range(store, TableName.SALES, "date", "2024-03-01", "2024-03-31", page_size=PAGE_SIZE)

    assert len(rows) == count
    assert len({row["sku_code"] for row in rows}) == count


@pytest.mark.parametrize(
    "count, expected_requests",
    [(0, 1), (1, 1), (PAGE_SIZE, 2), (PAGE_SIZE + 1, 2), (3 * PAGE_SIZE, 4)],
)
def test_short_or_empty_page_ends_pagination(store, count, expected_requests):
    _seed_sales(store, count)

    fetch_range(store, TableName.SALES, "date", "2024-03-01", "2024-03-31", page_size=PAGE_SIZE)

    assert len(store.select_calls) == expected_requests
    offsets = [offset for _, offset, _ in store.select_calls]
    assert offsets == [page * PAGE_SIZE for page in range(expected_requests)]


def test_bounds_are_inclusive(store):
    for day in ("2024-02-29", "2024-03-01", "2024-03-15", "2024-03-31", "2024-04-01"):
        _seed_sales(store, 3, day=day)

    rows = fetch_range(store, SALES, "date", "2024-03-01", "2024-03-31", page_size=PAGE_SIZE)

    assert sorted({row["date"] for row in rows}) == ["2024-03-01", "2024-03-15", "2024-03-31"]
    assert [row["date"] for row in rows] == sorted(row["date"] for row in rows)


def test_failure_mid_pagination_truncates_to_completed_pages(store):
    _seed_sales(store, 25)

    def fail_third_page(table, offset):
        if offset >= 20:
            return StoreError("canceling statement due to statement timeout", code="57014")
        return None

    store.select_failure = fail_third_page

    rows = fetch_range(store, SALES, "date", "2024-03-01", "2024-03-31", page_size=10)

    assert len(rows) == 20
    assert [row["sku_code"] for row in rows] == [f"SKU{i:06d}" for i in range(20)]


def test_failure_on_first_page_returns_empty(store):
    _seed_sales(store, 5)
    store.select_failure = lambda table, offset: StoreError("permission denied", code="42501")

    assert fetch_range(store, SALES, "date", None, None) == []


def test_unexpected_client_exceptions_do_not_escape(store):
    _seed_sales(store, 15)

    def broken(table, offset):
        if offset:
            raise RuntimeError("socket closed")
        return None

    store.select_failure = broken

    rows = fetch_range(store, SALES, "date", None, None, page_size=10)
    assert len(rows) == 10


def test_open_bounds_read_everything(store):
    _seed_sales(store, 4, day="2023-12-31")
    _seed_sales(store, 4, day="2024-06-01")

    assert len(fetch_range(store, SALES, "date", None, None)) == 8
    assert len(fetch_range(store, SALES, "date", "2024-01-01", None)) == 4


@pytest.mark.parametrize("page_size", [0, -1])
def test_invalid_page_size_is_rejected(store, page_size):
    with pytest.raises(ValueError):
        fetch_range(store, SALES, "date", None, None, page_size=page_size)

    assert store.select_calls == []


def test_frame_has_known_columns_even_when_empty(store):
    frame = fetch_range_frame(store, TableName.SALES, "date", "2024-01-01", "2024-01-31")

    assert frame.empty
    assert "paid_amount" in frame.columns


def test_frame_contains_rows(store):
    _seed_sales(store, 3)

    frame = fetch_range_frame(store, TableName.SALES, "date", "2024-03-01", "2024-03-31")

    assert len(frame) == 3
    assert frame["paid_amount"].sum() == 3
