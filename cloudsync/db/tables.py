"""
Closed registry of the tables the sync engine may touch.

Each table is looked up by ``TableName`` and carries the static facts the
upload controller and range reader need: remote name, conflict key, whether
rows are append-only facts (server-generated ids), the date field, known
columns and the sentinels used to fill empty natural-key fields.
"""
import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Tuple, Union

from sqlalchemy import text
from sqlalchemy.engine import Engine

logger = logging.getLogger(__name__)

# Placeholder for an empty advertising account so (date, sku, account) stays a complete key.
UNASSIGNED_ACCOUNT = "unassigned"

CLOUD_SYNC_CONFIG_KEY = "cloud_sync_config"


class TableName(str, Enum):
    SALES = "fact_shangzhi"
    AD_SPEND = "fact_jingzhuntong"
    CUSTOMER_SERVICE = "fact_customer_service"
    APP_CONFIG = "app_config"
    PRODUCTS = "dim_skus"


@dataclass(frozen=True)
class TableSpec:
    name: TableName
    conflict_key: Tuple[str, ...]
    columns: Tuple[str, ...]
    append_only: bool = False
    date_field: Optional[str] = None
    json_fields: Tuple[str, ...] = ()
    key_defaults: Dict[str, str] = field(default_factory=dict)

    @property
    def remote_name(self) -> str:
        return self.name.value


TABLE_SPECS: Dict[TableName, TableSpec] = {
    TableName.SALES: TableSpec(
        name=TableName.SALES,
        conflict_key=("date", "sku_code"),
        columns=(
            "date", "sku_code", "shop_name", "paid_amount", "paid_items",
            "pv", "uv", "paid_users", "paid_customers",
        ),
        append_only=True,
        date_field="date",
    ),
    TableName.AD_SPEND: TableSpec(
        name=TableName.AD_SPEND,
        conflict_key=("date", "tracked_sku_id", "account_nickname"),
        columns=(
            "date", "account_nickname", "tracked_sku_id", "tracked_sku_name",
            "cost", "clicks", "impressions", "total_order_amount", "total_orders",
        ),
        append_only=True,
        date_field="date",
        key_defaults={"account_nickname": UNASSIGNED_ACCOUNT},
    ),
    TableName.CUSTOMER_SERVICE: TableSpec(
        name=TableName.CUSTOMER_SERVICE,
        conflict_key=("date", "agent_account"),
        columns=("date", "agent_account", "chats"),
        append_only=True,
        date_field="date",
    ),
    TableName.APP_CONFIG: TableSpec(
        name=TableName.APP_CONFIG,
        conflict_key=("key",),
        columns=("key", "data"),
        json_fields=("data",),
    ),
    TableName.PRODUCTS: TableSpec(
        name=TableName.PRODUCTS,
        conflict_key=("id",),
        columns=(
            "id", "name", "code", "shop_id", "brand", "category", "model",
            "mode", "status", "advertising_status", "cost_price", "selling_price",
            "promo_price", "jd_commission", "warehouse_stock", "factory_stock",
            "is_statistics_enabled",
        ),
    ),
}

# Push order for full snapshots; dimension and config tables are handled separately.
FACT_TABLES: Tuple[TableName, ...] = (
    TableName.SALES,
    TableName.AD_SPEND,
    TableName.CUSTOMER_SERVICE,
)


def get_table_spec(table: Union[TableName, str]) -> TableSpec:
    """
    Resolve a table by enum member or remote name.

    Raises:
        ValueError: If the table is not part of the sync registry
    """
    try:
        name = table if isinstance(table, TableName) else TableName(table)
    except ValueError:
        allowed = ", ".join(member.value for member in TableName)
        raise ValueError(f"Unknown sync table '{table}'. Expected one of: {allowed}")
    return TABLE_SPECS[name]


_tables_initialized = False
_tables_init_lock = threading.Lock()


def ensure_sync_tables(engine: Engine) -> None:
    """Create the sync tables (with the unique constraints backing each conflict key) on-demand."""
    global _tables_initialized
    if _tables_initialized:
        return

    with _tables_init_lock:
        if _tables_initialized:
            return
        _create_sync_tables(engine)
        _tables_initialized = True


def _create_sync_tables(engine: Engine) -> None:
    create_sql = """
    CREATE TABLE IF NOT EXISTS app_config (
        key TEXT PRIMARY KEY,
        data JSONB,
        updated_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
    );

    CREATE TABLE IF NOT EXISTS fact_shangzhi (
        id BIGSERIAL PRIMARY KEY,
        date DATE NOT NULL,
        sku_code TEXT NOT NULL,
        shop_name TEXT,
        paid_amount NUMERIC,
        paid_items INTEGER,
        pv INTEGER,
        uv INTEGER,
        paid_users INTEGER,
        paid_customers INTEGER,
        created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
        UNIQUE (date, sku_code)
    );

    CREATE TABLE IF NOT EXISTS fact_jingzhuntong (
        id BIGSERIAL PRIMARY KEY,
        date DATE NOT NULL,
        account_nickname TEXT NOT NULL,
        tracked_sku_id TEXT NOT NULL,
        tracked_sku_name TEXT,
        cost NUMERIC,
        clicks INTEGER,
        impressions INTEGER,
        total_order_amount NUMERIC,
        total_orders INTEGER,
        UNIQUE (date, tracked_sku_id, account_nickname)
    );

    CREATE TABLE IF NOT EXISTS fact_customer_service (
        id BIGSERIAL PRIMARY KEY,
        date DATE NOT NULL,
        agent_account TEXT NOT NULL,
        chats INTEGER,
        UNIQUE (date, agent_account)
    );

    CREATE TABLE IF NOT EXISTS dim_skus (
        id TEXT PRIMARY KEY,
        name TEXT,
        code TEXT,
        shop_id TEXT,
        brand TEXT,
        category TEXT,
        model TEXT,
        mode TEXT,
        status TEXT,
        advertising_status TEXT,
        cost_price NUMERIC,
        selling_price NUMERIC,
        promo_price NUMERIC,
        jd_commission NUMERIC,
        warehouse_stock INTEGER,
        factory_stock INTEGER,
        is_statistics_enabled BOOLEAN
    );

    CREATE INDEX IF NOT EXISTS idx_fact_shangzhi_date ON fact_shangzhi(date);
    CREATE INDEX IF NOT EXISTS idx_fact_jingzhuntong_date ON fact_jingzhuntong(date);
    CREATE INDEX IF NOT EXISTS idx_fact_customer_service_date ON fact_customer_service(date);
    """

    with engine.begin() as conn:
        conn.execute(text(create_sql))
    logger.info("Sync tables ready: %s", ", ".join(member.value for member in TableName))
