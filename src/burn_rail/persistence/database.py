"""
Database Connection Layer

Supports SQLite (dev) and PostgreSQL (production) with automatic schema creation.
"""

import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Generator, List, Optional, Sequence, Tuple
import structlog

from ..core.errors import PersistenceUnavailable

logger = structlog.get_logger()

# Schema version for migrations
SCHEMA_VERSION = 1

SCHEMA_SQL = """
-- Per-wallet balances (amounts in token base units)
CREATE TABLE IF NOT EXISTS wallet_balances (
    wallet_address TEXT PRIMARY KEY,
    deposited_units INTEGER NOT NULL DEFAULT 0,
    consumed_units INTEGER NOT NULL DEFAULT 0,
    current_units INTEGER NOT NULL DEFAULT 0 CHECK (current_units >= 0),
    created_at TEXT NOT NULL,
    last_updated TEXT NOT NULL
);

-- Append-only wallet transactions
CREATE TABLE IF NOT EXISTS wallet_transactions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    wallet_address TEXT NOT NULL,
    tx_type TEXT NOT NULL,
    amount_units INTEGER NOT NULL,
    tx_hash TEXT UNIQUE,
    timestamp TEXT NOT NULL,
    metadata TEXT,
    FOREIGN KEY (wallet_address) REFERENCES wallet_balances(wallet_address)
);

-- Usage records awaiting (or done with) settlement
CREATE TABLE IF NOT EXISTS usage_records (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    record_id TEXT NOT NULL UNIQUE,
    wallet_address TEXT NOT NULL,
    request_type TEXT NOT NULL,
    usd_cost TEXT NOT NULL,
    token_price TEXT,
    tokens_burned_units INTEGER NOT NULL,
    settled INTEGER NOT NULL DEFAULT 0,
    settlement_tx_hash TEXT,
    timestamp TEXT NOT NULL
);

-- Confirmed settlement transactions
CREATE TABLE IF NOT EXISTS settlements (
    tx_hash TEXT PRIMARY KEY,
    record_count INTEGER NOT NULL,
    total_units INTEGER NOT NULL,
    burn_units INTEGER NOT NULL,
    treasury_units INTEGER NOT NULL,
    settled_at TEXT NOT NULL
);

-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TEXT NOT NULL
);

-- Indexes for performance
CREATE INDEX IF NOT EXISTS idx_tx_wallet ON wallet_transactions(wallet_address);
CREATE INDEX IF NOT EXISTS idx_usage_wallet ON usage_records(wallet_address);
CREATE INDEX IF NOT EXISTS idx_usage_settled ON usage_records(settled, seq);
"""

POSTGRES_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS wallet_balances (
    wallet_address TEXT PRIMARY KEY,
    deposited_units BIGINT NOT NULL DEFAULT 0,
    consumed_units BIGINT NOT NULL DEFAULT 0,
    current_units BIGINT NOT NULL DEFAULT 0 CHECK (current_units >= 0),
    created_at TIMESTAMPTZ NOT NULL,
    last_updated TIMESTAMPTZ NOT NULL
);

CREATE TABLE IF NOT EXISTS wallet_transactions (
    id BIGSERIAL PRIMARY KEY,
    wallet_address TEXT NOT NULL REFERENCES wallet_balances(wallet_address),
    tx_type TEXT NOT NULL,
    amount_units BIGINT NOT NULL,
    tx_hash TEXT UNIQUE,
    timestamp TIMESTAMPTZ NOT NULL,
    metadata JSONB
);

CREATE TABLE IF NOT EXISTS usage_records (
    seq BIGSERIAL PRIMARY KEY,
    record_id TEXT NOT NULL UNIQUE,
    wallet_address TEXT NOT NULL,
    request_type TEXT NOT NULL,
    usd_cost NUMERIC NOT NULL,
    token_price NUMERIC,
    tokens_burned_units BIGINT NOT NULL,
    settled SMALLINT NOT NULL DEFAULT 0,
    settlement_tx_hash TEXT,
    timestamp TIMESTAMPTZ NOT NULL
);

CREATE TABLE IF NOT EXISTS settlements (
    tx_hash TEXT PRIMARY KEY,
    record_count INTEGER NOT NULL,
    total_units BIGINT NOT NULL,
    burn_units BIGINT NOT NULL,
    treasury_units BIGINT NOT NULL,
    settled_at TIMESTAMPTZ NOT NULL
);

CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TIMESTAMPTZ NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_tx_wallet ON wallet_transactions(wallet_address);
CREATE INDEX IF NOT EXISTS idx_usage_wallet ON usage_records(wallet_address);
CREATE INDEX IF NOT EXISTS idx_usage_settled ON usage_records(settled, seq);
"""


class QueryResult:
    """Rows and affected-row count of a single statement."""

    def __init__(self, rows: List[Dict[str, Any]], rowcount: int):
        self.rows = rows
        self.rowcount = rowcount

    def first(self) -> Optional[Dict[str, Any]]:
        return self.rows[0] if self.rows else None


class Transaction:
    """A unit of work on one connection. Commits on exit, rolls back on error."""

    def __init__(self, db: "Database", conn: Any):
        self._db = db
        self._conn = conn

    def execute(self, query: str, params: Sequence[Any] = ()) -> QueryResult:
        return self._db._run(self._conn, query, params)


class Database:
    """
    Database connection manager with SQLite and PostgreSQL support.

    Usage:
        db = Database("sqlite:///burn_rail.db", timeout=10.0)
        db.initialize()
        with db.transaction() as tx:
            tx.execute("UPDATE wallet_balances SET ...", (...))
    """

    def __init__(self, database_url: str, timeout: float = 10.0):
        self.database_url = database_url
        self.timeout = timeout
        self.is_postgres = self.database_url.startswith("postgres")
        self._local = threading.local()
        self._lock = threading.Lock()
        self._initialized = False

        if self.is_postgres:
            import psycopg2
            self.integrity_errors: Tuple[type, ...] = (psycopg2.IntegrityError,)
            self._unavailable_errors: Tuple[type, ...] = (
                psycopg2.OperationalError,
                psycopg2.InterfaceError,
            )
        else:
            self.integrity_errors = (sqlite3.IntegrityError,)
            self._unavailable_errors = (sqlite3.OperationalError,)

    def _get_sqlite_path(self) -> str:
        """Extract SQLite file path from URL."""
        if self.database_url.startswith("sqlite:///"):
            return self.database_url[10:]
        return "burn_rail.db"

    def _sqlite_conn(self) -> sqlite3.Connection:
        """Thread-local SQLite connection with WAL mode for concurrency."""
        conn = getattr(self._local, "conn", None)
        if conn is None:
            conn = sqlite3.connect(
                self._get_sqlite_path(),
                check_same_thread=False,
                timeout=self.timeout,
                isolation_level=None,
            )
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")
            conn.execute("PRAGMA foreign_keys=ON")
            self._local.conn = conn
        return conn

    @contextmanager
    def _postgres_connection(self) -> Generator[Any, None, None]:
        import psycopg2
        from psycopg2.extras import RealDictCursor

        conn = psycopg2.connect(
            self.database_url,
            cursor_factory=RealDictCursor,
            connect_timeout=int(self.timeout),
            options=f"-c statement_timeout={int(self.timeout * 1000)}",
        )
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    @contextmanager
    def transaction(self, immediate: bool = True) -> Generator[Transaction, None, None]:
        """
        Run several statements atomically.

        SQLite write transactions start with BEGIN IMMEDIATE so concurrent
        writers queue on the database lock instead of failing on lock upgrade.
        """
        try:
            if self.is_postgres:
                with self._postgres_connection() as conn:
                    yield Transaction(self, conn)
            else:
                conn = self._sqlite_conn()
                conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
                try:
                    yield Transaction(self, conn)
                    conn.execute("COMMIT")
                except BaseException:
                    conn.execute("ROLLBACK")
                    raise
        except self._unavailable_errors as e:
            logger.error("database_unavailable", error=str(e))
            raise PersistenceUnavailable("Database unavailable", {"error": str(e)})

    def _run(self, conn: Any, query: str, params: Sequence[Any]) -> QueryResult:
        if self.is_postgres:
            cursor = conn.cursor()
            cursor.execute(query.replace("?", "%s"), tuple(params))
        else:
            cursor = conn.execute(query, tuple(params))
        rows = [dict(row) for row in cursor.fetchall()] if cursor.description else []
        return QueryResult(rows, cursor.rowcount)

    def initialize(self) -> None:
        """Initialize database schema."""
        if self._initialized:
            return

        with self._lock:
            if self._initialized:
                return

            now = datetime.now(timezone.utc).isoformat()
            try:
                if self.is_postgres:
                    with self._postgres_connection() as conn:
                        cursor = conn.cursor()
                        cursor.execute(POSTGRES_SCHEMA_SQL)
                        cursor.execute(
                            "INSERT INTO schema_version (version, applied_at) VALUES (%s, %s) "
                            "ON CONFLICT (version) DO NOTHING",
                            (SCHEMA_VERSION, now),
                        )
                else:
                    conn = self._sqlite_conn()
                    conn.executescript(SCHEMA_SQL)
                    conn.execute(
                        "INSERT OR IGNORE INTO schema_version (version, applied_at) VALUES (?, ?)",
                        (SCHEMA_VERSION, now),
                    )
            except self._unavailable_errors as e:
                logger.error("database_init_failed", error=str(e))
                raise PersistenceUnavailable("Database unavailable", {"error": str(e)})

            self._initialized = True
            logger.info("database_initialized", url=self.database_url[:20] + "...", is_postgres=self.is_postgres)

    def execute(self, query: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        """Execute a single statement and return results as list of dicts."""
        with self.transaction(immediate=False) as tx:
            return tx.execute(query, params).rows

    def close(self) -> None:
        """Close this thread's SQLite connection."""
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            conn.close()
            self._local.conn = None
