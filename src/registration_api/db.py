import logging
import threading
from contextlib import contextmanager
from typing import Any, Dict, Optional, Sequence

import psycopg2
import psycopg2.extras
from psycopg2.pool import PoolError, ThreadedConnectionPool

from registration_api.config import DatabaseConfig

logger = logging.getLogger(__name__)

USERS_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS users (
    id            SERIAL PRIMARY KEY,
    full_name     VARCHAR(255) NOT NULL,
    mobile_number VARCHAR(15) NOT NULL,
    created_at    TIMESTAMP DEFAULT CURRENT_TIMESTAMP
)
"""


class PoolTimeoutError(PoolError):
    """No connection became free within the configured acquire timeout."""


class PoolSaturatedError(PoolError):
    """The wait queue for connections is already at its configured depth."""


# PUBLIC_INTERFACE
def describe_error(exc: BaseException, config: DatabaseConfig) -> Dict[str, Any]:
    """Collect diagnostic fields for a database failure, without the password."""
    diag = getattr(exc, "diag", None)
    state = getattr(exc, "pgcode", None) or getattr(diag, "sqlstate", None)
    return {
        "message": str(exc).strip(),
        "error": type(exc).__name__,
        "state": state,
        "errno": getattr(exc, "errno", None),
        "fatal": isinstance(exc, (psycopg2.OperationalError, psycopg2.InterfaceError)),
        "host": config.host,
        "user": config.user,
        "database": config.database,
    }


class DatabasePool:
    """Bounded pool of PostgreSQL connections shared by the request handlers.

    psycopg2's ThreadedConnectionPool fails immediately once ``maxconn``
    connections are checked out. A semaphore in front of it turns that into
    waiting: callers queue until a connection is released, optionally bounded
    by ``acquire_timeout`` and ``max_waiting``.
    """

    def __init__(self, config: DatabaseConfig):
        self.config = config
        # minconn defaults to 0, so building the pool opens no connection.
        self._pool = ThreadedConnectionPool(
            minconn=min(config.pool_min, config.pool_max),
            maxconn=config.pool_max,
            host=config.host,
            port=config.port,
            user=config.user,
            password=config.password,
            dbname=config.database,
            sslmode=config.sslmode,
            connect_timeout=config.connect_timeout,
        )
        self._slots = threading.BoundedSemaphore(config.pool_max)
        self._lock = threading.Lock()
        self._waiting = 0
        self._closed = False

    @property
    def waiting(self) -> int:
        """Number of callers currently queued for a connection."""
        return self._waiting

    @property
    def closed(self) -> bool:
        return self._closed

    def _acquire_slot(self) -> None:
        if self._closed:
            raise PoolError("connection pool is closed")
        if self._slots.acquire(blocking=False):
            return

        with self._lock:
            if self.config.max_waiting and self._waiting >= self.config.max_waiting:
                raise PoolSaturatedError(
                    f"{self._waiting} callers already waiting for a database connection"
                )
            self._waiting += 1
        try:
            acquired = self._slots.acquire(timeout=self.config.acquire_timeout)
        finally:
            with self._lock:
                self._waiting -= 1
        if not acquired:
            raise PoolTimeoutError(
                f"no database connection available after {self.config.acquire_timeout}s"
            )

    def _return(self, conn) -> None:
        if self._pool.closed:
            conn.close()
            return
        self._pool.putconn(conn, close=bool(conn.closed))

    @contextmanager
    def connection(self):
        """Check out one connection; it goes back to the pool on every exit path."""
        self._acquire_slot()
        try:
            conn = self._pool.getconn()
        except Exception:
            self._slots.release()
            raise
        try:
            yield conn
        except Exception:
            if not conn.closed:
                try:
                    conn.rollback()
                except psycopg2.Error as e:
                    logger.warning(f"Rollback failed, discarding connection: {e}")
                    conn.close()
            raise
        finally:
            try:
                self._return(conn)
            finally:
                self._slots.release()

    # PUBLIC_INTERFACE
    def fetch_one(self, query: str, params: Optional[Sequence[Any]] = None) -> Optional[Dict[str, Any]]:
        """Fetch a single row as a dict, or None."""
        with self.connection() as conn:
            with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
                cur.execute(query, params or [])
                row = cur.fetchone()
                return dict(row) if row else None

    # PUBLIC_INTERFACE
    def execute_returning_one(self, query: str, params: Optional[Sequence[Any]] = None) -> Dict[str, Any]:
        """Execute a statement with RETURNING and return the first row as dict."""
        with self.connection() as conn:
            with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
                cur.execute(query, params or [])
                row = cur.fetchone()
                if not row:
                    conn.rollback()
                    raise RuntimeError("Expected one row returned, got none.")
                conn.commit()
                return dict(row)

    # PUBLIC_INTERFACE
    def healthcheck(self) -> None:
        """Run SELECT 1; raises the underlying error if storage is unreachable."""
        self.fetch_one("SELECT 1")

    # PUBLIC_INTERFACE
    def check_connectivity(self) -> bool:
        """Open one connection at startup and log the outcome. Never raises."""
        logger.info(
            f"Attempting connection with host={self.config.host} "
            f"user={self.config.user} database={self.config.database}"
        )
        try:
            with self.connection() as conn:
                logger.info(f"Database connection established with backend PID {conn.get_backend_pid()}")
        except psycopg2.Error as e:
            logger.error(f"Connection error details: {describe_error(e, self.config)}")
            return False
        logger.info("Database connected successfully!")
        return True

    # PUBLIC_INTERFACE
    def ensure_schema(self) -> bool:
        """Create the users table if it does not exist.

        Safe to call on every start. Failures are logged and reported through
        the return value; whether they are fatal is the caller's decision.
        """
        try:
            with self.connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(USERS_TABLE_SQL)
                conn.commit()
        except psycopg2.Error as e:
            logger.error(f"Error creating users table: {describe_error(e, self.config)}")
            return False
        logger.info("Users table created or already exists.")
        return True

    # PUBLIC_INTERFACE
    def close(self) -> None:
        """Close every pooled connection. Later checkouts raise PoolError."""
        if self._closed:
            return
        self._closed = True
        self._pool.closeall()
        logger.info("Database connection pool closed.")
