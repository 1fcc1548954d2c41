"""
Paginated range reader.

Best-effort by design: a failure mid-pagination truncates the result to the
pages already fetched instead of raising, because every caller is a read-only
analytics view where a partial table beats an error screen.
"""
import logging
from typing import Any, Dict, List, Optional, Union

import pandas as pd

from cloudsync.core.config import settings
from cloudsync.db.store import TabularStoreClient
from cloudsync.db.tables import TableName, get_table_spec

logger = logging.getLogger(__name__)

Record = Dict[str, Any]


def fetch_range(
    client: TabularStoreClient,
    table: Union[TableName, str],
    field: str,
    low: Any,
    high: Any,
    page_size: Optional[int] = None,
) -> List[Record]:
    """
    Fetch every row of ``table`` with ``low <= field <= high``, in ``field`` order.

    Args:
        client: Store client
        table: Sync table (enum member or remote name)
        field: Column the range and ordering apply to
        low: Inclusive lower bound, or None for unbounded
        high: Inclusive upper bound, or None for unbounded
        page_size: Rows per request (default ``settings.sync_page_size``)

    Returns:
        Concatenated rows; truncated at the first failing page
    """
    spec = get_table_spec(table)
    size = settings.sync_page_size if page_size is None else page_size
    if size <= 0:
        raise ValueError(f"page_size must be positive, got {size}")

    rows: List[Record] = []
    page = 0
    while True:
        try:
            batch = client.select_range(
                spec.remote_name,
                field,
                low,
                high,
                offset=page * size,
                limit=size,
                tiebreak=spec.conflict_key,
            )
        except Exception as exc:
            logger.warning(
                "Range read of %s stopped at page %d (%d rows kept): %s",
                spec.remote_name,
                page,
                len(rows),
                exc,
            )
            break

        if not batch:
            break
        rows.extend(batch)
        if len(batch) < size:
            break
        page += 1

    logger.info("Fetched %d rows from %s where %s in [%s, %s]", len(rows), spec.remote_name, field, low, high)
    return rows


def fetch_range_frame(
    client: TabularStoreClient,
    table: Union[TableName, str],
    field: str,
    low: Any,
    high: Any,
    page_size: Optional[int] = None,
) -> pd.DataFrame:
    """Same as ``fetch_range`` but shaped as a DataFrame with the table's known columns."""
    spec = get_table_spec(table)
    rows = fetch_range(client, spec.name, field, low, high, page_size=page_size)
    if not rows:
        return pd.DataFrame(columns=list(spec.columns))
    return pd.DataFrame.from_records(rows)
