"""
SqlStoreClient SQL exercised against in-memory SQLite, which accepts the same
ON CONFLICT ... DO UPDATE upsert syntax as Postgres.
"""
import pytest
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from cloudsync.db.store import StoreError, _to_store_error
from cloudsync.domain.sync import service
from cloudsync.domain.sync.errors import SyncErrorKind, classify_exception
from cloudsync.domain.sync.reader import fetch_range
from cloudsync.domain.sync.uploader import BatchUploadController

SALES_KEY = ("date", "sku_code")


def _count(engine, table="fact_shangzhi"):
    with engine.connect() as conn:
        return conn.execute(text(f"SELECT COUNT(*) FROM {table}")).scalar()


def test_upsert_inserts_then_updates_on_conflict_key(sql_client, sqlite_engine):
    sql_client.upsert("fact_shangzhi", [
        {"date": "2024-05-01", "sku_code": "A1", "paid_amount": 10.0},
        {"date": "2024-05-01", "sku_code": "B2", "paid_amount": 20.0},
    ], SALES_KEY)
    sql_client.upsert("fact_shangzhi", [
        {"date": "2024-05-01", "sku_code": "A1", "paid_amount": 99.0},
    ], SALES_KEY)

    assert _count(sqlite_engine) == 2
    with sqlite_engine.connect() as conn:
        amount = conn.execute(text(
            "SELECT paid_amount FROM fact_shangzhi WHERE sku_code = 'A1'"
        )).scalar()
    assert amount == 99.0


def test_explicit_none_overwrites_stale_values(sql_client, sqlite_engine):
    sql_client.upsert("fact_shangzhi", [{"date": "2024-05-01", "sku_code": "A1", "pv": 5}], SALES_KEY)
    sql_client.upsert("fact_shangzhi", [{"date": "2024-05-01", "sku_code": "A1", "pv": None}], SALES_KEY)

    with sqlite_engine.connect() as conn:
        pv = conn.execute(text("SELECT pv FROM fact_shangzhi")).scalar()
    assert pv is None


def test_key_only_rows_do_nothing_on_conflict(sql_client, sqlite_engine):
    rows = [{"date": "2024-05-01", "sku_code": "A1"}]
    sql_client.upsert("fact_shangzhi", rows, SALES_KEY)
    sql_client.upsert("fact_shangzhi", rows, SALES_KEY)

    assert _count(sqlite_engine) == 1


def test_empty_upsert_is_a_no_op(sql_client, sqlite_engine):
    sql_client.upsert("fact_shangzhi", [], SALES_KEY)
    assert _count(sqlite_engine) == 0


def test_select_range_orders_filters_and_pages(sql_client):
    rows = [
        {"date": day, "sku_code": sku}
        for day in ("2024-05-03", "2024-05-01", "2024-05-02", "2024-06-01")
        for sku in ("B", "A")
    ]
    sql_client.upsert("fact_shangzhi", rows, SALES_KEY)

    first = sql_client.select_range(
        "fact_shangzhi", "date", "2024-05-01", "2024-05-31", offset=0, limit=4, tiebreak=SALES_KEY
    )
    second = sql_client.select_range(
        "fact_shangzhi", "date", "2024-05-01", "2024-05-31", offset=4, limit=4, tiebreak=SALES_KEY
    )

    keys = [(row["date"], row["sku_code"]) for row in first + second]
    assert keys == [
        ("2024-05-01", "A"), ("2024-05-01", "B"),
        ("2024-05-02", "A"), ("2024-05-02", "B"),
        ("2024-05-03", "A"), ("2024-05-03", "B"),
    ]


def test_delete_with_predicate_and_all_rows(sql_client, sqlite_engine):
    sql_client.upsert("fact_shangzhi", [
        {"date": "2024-05-01", "sku_code": "A"},
        {"date": "2024-05-01", "sku_code": "B"},
        {"date": "2024-05-02", "sku_code": "A"},
    ], SALES_KEY)

    assert sql_client.delete("fact_shangzhi", {"sku_code": "A"}) == 2
    assert _count(sqlite_engine) == 1
    assert sql_client.delete("fact_shangzhi", None) == 1
    assert _count(sqlite_engine) == 0


def test_empty_predicate_is_refused(sql_client):
    with pytest.raises(ValueError):
        sql_client.delete("fact_shangzhi", {})


def test_constraint_violations_become_validation_store_errors(sql_client):
    with pytest.raises(StoreError) as excinfo:
        sql_client.upsert("fact_shangzhi", [{"date": None, "sku_code": "A"}], SALES_KEY)

    assert "NOT NULL" in excinfo.value.message.upper()
    assert classify_exception(excinfo.value) is SyncErrorKind.VALIDATION


def test_missing_table_is_reported_as_store_error(sql_client):
    with pytest.raises(StoreError) as excinfo:
        sql_client.select_range("fact_missing", "date", None, None, offset=0, limit=10)

    assert "no such table" in excinfo.value.message


def test_quoted_identifiers_reject_empty_names(sql_client):
    with pytest.raises(ValueError):
        sql_client.select_range("fact_shangzhi", "", None, None, offset=0, limit=10)


def test_upload_and_range_read_end_to_end(sql_client, sleeps):
    controller = BatchUploadController(sql_client, pause_seconds=0.0, sleep=sleeps.append)
    records = [
        {"id": i, "date": f"2024-07-{(i % 30) + 1:02d} 10:00:00", "sku_code": f"SKU{i:04d}", "pv": i}
        for i in range(450)
    ]

    result = controller.upload("fact_shangzhi", records)
    controller.upload("fact_shangzhi", records)
    rows = fetch_range(sql_client, "fact_shangzhi", "date", "2024-07-01", "2024-07-31", page_size=100)

    assert result.written == 450
    assert len(rows) == 450
    assert len({row["sku_code"] for row in rows}) == 450


def test_dropped_connection_is_transient_not_capacity():
    dropped = OperationalError(
        "INSERT INTO fact_shangzhi ...",
        {},
        Exception("server closed the connection unexpectedly"),
        connection_invalidated=True,
    )

    error = _to_store_error(dropped)

    assert error.status is None
    assert error.code == "08006"
    assert classify_exception(error) is SyncErrorKind.TRANSIENT


def test_dropped_connection_retries_the_same_batch(store, controller, sleeps):
    failures = iter([True])

    def drop_once(table, records):
        if next(failures, False):
            return _to_store_error(OperationalError(
                "INSERT", {}, Exception("SSL SYSCALL error: EOF detected"), connection_invalidated=True
            ))
        return None

    store.upsert_failure = drop_once
    result = controller.upload("fact_shangzhi", [
        {"date": "2024-05-01", "sku_code": f"SKU{i:03d}"} for i in range(60)
    ])

    assert result.written == 60
    assert [size for _, size in store.upsert_calls] == [60, 60]
    assert sleeps == [1.5]


def test_config_text_round_trips_through_sql(sql_client, sleeps):
    controller = BatchUploadController(sql_client, pause_seconds=0.0, sleep=sleeps.append)

    service.save_config(sql_client, "threshold", "123", controller)
    service.save_config(sql_client, "targets", {"gmv": 5000}, controller)

    assert service.load_config(sql_client, "threshold") == "123"
    assert service.load_config(sql_client, "targets") == {"gmv": 5000}
