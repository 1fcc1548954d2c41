import logging
import socket
from contextlib import closing
from typing import Optional

from psycopg2.extras import register_default_jsonb
from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import make_url

from cloudsync.core.config import settings
from cloudsync.db.store import SqlStoreClient

logger = logging.getLogger(__name__)

_engine: Optional[Engine] = None
_store_client: Optional[SqlStoreClient] = None


def _report_connection_failure(exc: Exception) -> None:
    """Log high-signal diagnostics when the process cannot reach the hosted store."""
    logger.warning("Could not connect to the sync store: %s", exc)
    logger.warning("The service will start but sync operations will fail until the connection succeeds.")

    try:
        url = make_url(settings.database_url)
    except Exception as parse_error:  # pragma: no cover
        logger.warning("Unable to parse DATABASE_URL (%s); skipping detailed diagnostics.", parse_error)
        return

    logger.warning(
        "Store settings: dialect=%s driver=%s host=%s port=%s database=%s username=%s",
        url.get_backend_name(),
        url.get_driver_name() or "default",
        url.host or "localhost",
        url.port or "(default)",
        url.database,
        url.username,
    )

    host = url.host or "localhost"
    port = url.port or 5432

    try:
        with closing(socket.create_connection((host, port), timeout=2)):
            logger.warning("Socket check: able to reach %s:%s, check credentials and database name", host, port)
    except OSError as socket_err:
        logger.warning("Socket check: unable to reach %s:%s (%s)", host, port, socket_err)


def _keep_json_as_text(dbapi_connection, connection_record) -> None:
    """Return JSONB columns as their JSON text so config data is decoded exactly once."""
    register_default_jsonb(dbapi_connection, loads=lambda value: value)


def _create_engine() -> Engine:
    engine = create_engine(settings.database_url, pool_pre_ping=True)
    if engine.dialect.driver == "psycopg2":
        event.listen(engine, "connect", _keep_json_as_text)
    return engine


def get_engine() -> Engine:
    global _engine
    if _engine is None:
        try:
            _engine = _create_engine()
            # Test connection eagerly so failures surface immediately.
            with _engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except Exception as e:
            _report_connection_failure(e)
            # Create the engine anyway so callers can proceed (may still fail later).
            _engine = _create_engine()
    return _engine


def get_store_client() -> SqlStoreClient:
    """Process-wide store client on the shared engine; usable as a FastAPI dependency."""
    global _store_client
    if _store_client is None:
        _store_client = SqlStoreClient(get_engine())
    return _store_client
