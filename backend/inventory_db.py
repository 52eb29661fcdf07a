"""
Inventory persistence - PostgreSQL with SQLite fallback.

Schema creation, a reconnecting connection wrapper, and the queries used
by the batch runner, the CLI, the API and the dashboard. Functions take a
DB-API connection and never commit; callers own the transaction.
"""

import sqlite3  # Always available for fallback/reconnect
import time
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence, Tuple

try:
    import psycopg2
    HAS_POSTGRES = True
except ImportError:
    HAS_POSTGRES = False

import settings
from inventory_extractor import InventoryRecord, extract_style_id, size_value


# =============================================================================
# Schema
# =============================================================================

_SCHEMA = [
    '''CREATE TABLE IF NOT EXISTS monitored_urls (
        url_id {pk},
        url TEXT NOT NULL UNIQUE,
        style_id TEXT,
        label TEXT,
        is_active {bool} DEFAULT {true},
        created_at TEXT NOT NULL,
        last_scraped_at TEXT,
        last_status TEXT,
        last_error TEXT
    )''',
    '''CREATE TABLE IF NOT EXISTS inventory (
        inventory_id {pk},
        style_id TEXT NOT NULL,
        product_name TEXT,
        color_code TEXT NOT NULL,
        color_name TEXT,
        size_us TEXT NOT NULL,
        quantity INTEGER NOT NULL DEFAULT 0,
        raw_quantity TEXT,
        url TEXT,
        batch_id INTEGER,
        extracted_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        UNIQUE(style_id, color_code, size_us)
    )''',
    '''CREATE TABLE IF NOT EXISTS scrape_batches (
        batch_id {pk},
        started_at TEXT NOT NULL,
        completed_at TEXT,
        status TEXT NOT NULL DEFAULT 'running',
        triggered_by TEXT,
        urls_total INTEGER DEFAULT 0,
        urls_succeeded INTEGER DEFAULT 0,
        urls_failed INTEGER DEFAULT 0,
        records_saved INTEGER DEFAULT 0
    )''',
    '''CREATE TABLE IF NOT EXISTS scrape_logs (
        log_id {pk},
        batch_id INTEGER,
        url TEXT NOT NULL,
        status TEXT NOT NULL,
        records_found INTEGER DEFAULT 0,
        error TEXT,
        created_at TEXT NOT NULL
    )''',
    'CREATE INDEX IF NOT EXISTS idx_inventory_style ON inventory(style_id)',
    'CREATE INDEX IF NOT EXISTS idx_scrape_logs_batch ON scrape_logs(batch_id)',
]

_POSTGRES_TYPES = {'pk': 'SERIAL PRIMARY KEY', 'bool': 'BOOLEAN', 'true': 'TRUE'}
_SQLITE_TYPES = {'pk': 'INTEGER PRIMARY KEY AUTOINCREMENT', 'bool': 'INTEGER', 'true': '1'}


def create_schema(conn) -> None:
    """Create all tables if missing."""
    types = _POSTGRES_TYPES if is_postgres(conn) else _SQLITE_TYPES
    cursor = conn.cursor()
    for statement in _SCHEMA:
        cursor.execute(statement.format(**types))
    conn.commit()


# =============================================================================
# Connections
# =============================================================================

def get_postgres_url() -> Optional[str]:
    """Get PostgreSQL connection URL from environment."""
    return settings.get_database_url()


def is_postgres(conn) -> bool:
    """Check if connection is PostgreSQL."""
    return HAS_POSTGRES and hasattr(conn, 'info')


def db_placeholder(conn) -> str:
    """Return the correct placeholder for the database type."""
    return '%s' if is_postgres(conn) else '?'


def init_postgres_database(db_url: str):
    """Connect to PostgreSQL and make sure the schema exists."""
    conn = psycopg2.connect(db_url)
    create_schema(conn)
    print("  PostgreSQL database initialized", flush=True)
    return conn


def init_sqlite_database(db_path: str):
    """Open (or create) a SQLite database with the schema (fallback)."""
    conn = sqlite3.connect(db_path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    create_schema(conn)
    if db_path != ':memory:':
        print(f"  SQLite database initialized: {db_path}", flush=True)
    return conn


def init_database(db_path: str = None):
    """
    Initialize database with schema.
    Uses PostgreSQL if available, falls back to SQLite.
    """
    postgres_url = get_postgres_url()
    if settings.USE_POSTGRES and HAS_POSTGRES and postgres_url:
        return init_postgres_database(postgres_url)
    if not HAS_POSTGRES:
        print("  (psycopg2 not installed, using SQLite)", flush=True)
    elif not postgres_url:
        print("  (DATABASE_URL not set, using SQLite)", flush=True)
    return init_sqlite_database(db_path or settings.DATABASE_FILE)


class DatabaseConnection:
    """
    Wrapper for database connection that handles automatic reconnection.
    Detects closed connections and reconnects transparently.
    """

    def __init__(self, db_path: str = None):
        self.db_path = db_path or settings.DATABASE_FILE
        self.postgres_url = None
        self._conn = None
        self._is_postgres = False

    def connect(self):
        """Establish database connection."""
        self.postgres_url = get_postgres_url()
        if settings.USE_POSTGRES and HAS_POSTGRES and self.postgres_url:
            self._conn = init_postgres_database(self.postgres_url)
            self._is_postgres = True
        else:
            self._conn = init_sqlite_database(self.db_path)
            self._is_postgres = False
        return self._conn

    def reconnect(self):
        """Reconnect to database after connection loss."""
        print("  Reconnecting to database...", flush=True)
        self._close_quietly()

        if self._is_postgres and self.postgres_url:
            self._conn = psycopg2.connect(self.postgres_url)
            print("  Database reconnected (PostgreSQL)", flush=True)
        else:
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            print(f"  Database reconnected (SQLite: {self.db_path})", flush=True)
        return self._conn

    def is_connection_error(self, error: Exception) -> bool:
        """Check if exception is a connection-related error."""
        error_str = str(error).lower()
        connection_errors = [
            'connection already closed',
            'connection is closed',
            'server closed the connection',
            'could not receive data',
            'ssl syscall error',
            'operation timed out',
            'connection refused',
            'connection reset',
            'broken pipe',
            'network is unreachable',
            'cannot operate on a closed database',
        ]
        return any(err in error_str for err in connection_errors)

    def execute_with_retry(self, func, *args, max_retries: int = 3, **kwargs):
        """
        Execute a database function with automatic reconnection on failure.

        Args:
            func: Function to execute (should take conn as first argument)
            *args: Additional arguments to pass to func
            max_retries: Maximum number of reconnection attempts
            **kwargs: Keyword arguments to pass to func

        Returns:
            Result of func
        """
        last_error = None
        for attempt in range(max_retries):
            try:
                return func(self._conn, *args, **kwargs)
            except Exception as e:
                last_error = e
                if not self.is_connection_error(e) or attempt == max_retries - 1:
                    raise
                print(f"  Database error: {e}", flush=True)
                self.reconnect()
                time.sleep(1)
        raise last_error

    @property
    def conn(self):
        """Get the underlying connection (for direct access when needed)."""
        return self._conn

    def cursor(self):
        return self._conn.cursor()

    def commit(self):
        """Commit the current transaction with retry."""
        for attempt in range(3):
            try:
                self._conn.commit()
                return
            except Exception as e:
                if self.is_connection_error(e) and attempt < 2:
                    self.reconnect()
                else:
                    raise

    def rollback(self):
        if self._conn is not None:
            self._conn.rollback()

    def _close_quietly(self):
        if self._conn is None:
            return
        try:
            self._conn.close()
        except Exception as e:
            print(f"  Ignoring close error: {e}", flush=True)

    def close(self):
        """Close the database connection."""
        self._close_quietly()
        self._conn = None


# =============================================================================
# Helpers
# =============================================================================

def _now() -> str:
    return datetime.now().isoformat()


def fetch_all_dicts(cursor) -> List[Dict[str, Any]]:
    """Fetch remaining rows as dicts (works for sqlite3 and psycopg2 cursors)."""
    columns = [col[0] for col in cursor.description]
    return [dict(zip(columns, row)) for row in cursor.fetchall()]


def fetch_one_dict(cursor) -> Optional[Dict[str, Any]]:
    row = cursor.fetchone()
    if row is None:
        return None
    columns = [col[0] for col in cursor.description]
    return dict(zip(columns, row))


def _insert_returning_id(conn, sql: str, params: Sequence, id_column: str) -> int:
    cursor = conn.cursor()
    if is_postgres(conn):
        cursor.execute(f'{sql} RETURNING {id_column}', params)
        return cursor.fetchone()[0]
    cursor.execute(sql, params)
    return cursor.lastrowid


def _count(conn, sql: str, params: Sequence = ()) -> int:
    cursor = conn.cursor()
    cursor.execute(sql, params)
    return cursor.fetchone()[0]


# =============================================================================
# Inventory
# =============================================================================

def upsert_inventory_records(conn, records: Sequence[InventoryRecord],
                             batch_id: Optional[int] = None) -> int:
    """
    Insert or update inventory rows keyed by (style_id, color_code, size_us).

    Last write wins: quantity, raw quantity, names, url, batch id and
    timestamps are overwritten on conflict. Returns rows written.
    """
    if not records:
        return 0

    ph = db_placeholder(conn)
    cursor = conn.cursor()
    now = _now()
    sql = f'''
        INSERT INTO inventory
            (style_id, product_name, color_code, color_name, size_us,
             quantity, raw_quantity, url, batch_id, extracted_at, updated_at)
        VALUES ({ph}, {ph}, {ph}, {ph}, {ph}, {ph}, {ph}, {ph}, {ph}, {ph}, {ph})
        ON CONFLICT (style_id, color_code, size_us) DO UPDATE SET
            product_name = excluded.product_name,
            color_name = excluded.color_name,
            quantity = excluded.quantity,
            raw_quantity = excluded.raw_quantity,
            url = excluded.url,
            batch_id = excluded.batch_id,
            extracted_at = excluded.extracted_at,
            updated_at = excluded.updated_at
    '''
    for record in records:
        cursor.execute(sql, (
            record.style_id, record.product_name, record.color_code, record.color_name,
            record.size_us, record.quantity, record.raw_quantity, record.url,
            batch_id, record.extracted_at, now,
        ))
    return len(records)


def get_inventory(conn, style_id: Optional[str] = None, color_code: Optional[str] = None,
                  search: Optional[str] = None, in_stock_only: bool = False,
                  limit: int = 100, offset: int = 0) -> Tuple[List[Dict], int]:
    """Filtered, paginated inventory rows plus the total matching count."""
    ph = db_placeholder(conn)
    where = []
    params: List[Any] = []

    if style_id:
        where.append(f'style_id = {ph}')
        params.append(style_id.upper())
    if color_code:
        where.append(f'color_code = {ph}')
        params.append(color_code)
    if search:
        where.append(f'(LOWER(product_name) LIKE {ph} OR LOWER(style_id) LIKE {ph})')
        pattern = f'%{search.lower()}%'
        params.extend([pattern, pattern])
    if in_stock_only:
        where.append('quantity > 0')

    where_clause = f"WHERE {' AND '.join(where)}" if where else ''
    total = _count(conn, f'SELECT COUNT(*) FROM inventory {where_clause}', params)

    cursor = conn.cursor()
    cursor.execute(
        f'''SELECT inventory_id, style_id, product_name, color_code, color_name, size_us,
                   quantity, raw_quantity, url, batch_id, extracted_at, updated_at
            FROM inventory {where_clause}
            ORDER BY style_id, color_code, inventory_id
            LIMIT {ph} OFFSET {ph}''',
        params + [limit, offset],
    )
    return fetch_all_dicts(cursor), total


def get_inventory_for_style(conn, style_id: str) -> List[Dict]:
    """All rows for one style, ordered by color then numeric size."""
    ph = db_placeholder(conn)
    cursor = conn.cursor()
    cursor.execute(
        f'''SELECT inventory_id, style_id, product_name, color_code, color_name, size_us,
                   quantity, raw_quantity, url, batch_id, extracted_at, updated_at
            FROM inventory WHERE style_id = {ph}''',
        (style_id.upper(),),
    )
    rows = fetch_all_dicts(cursor)
    rows.sort(key=lambda r: (r['color_code'], size_value(r['size_us']) or 0.0, r['size_us']))
    return rows


def get_inventory_for_batch(conn, batch_id: int) -> List[Dict]:
    """Rows last written by a batch (rows overwritten by a later batch are excluded)."""
    ph = db_placeholder(conn)
    cursor = conn.cursor()
    cursor.execute(
        f'''SELECT style_id, product_name, color_code, color_name, size_us,
                   quantity, raw_quantity, url, extracted_at
            FROM inventory WHERE batch_id = {ph}
            ORDER BY style_id, color_code, inventory_id''',
        (batch_id,),
    )
    return fetch_all_dicts(cursor)


def list_styles(conn) -> List[Dict]:
    """One row per style with color count, total quantity and last extraction time."""
    cursor = conn.cursor()
    cursor.execute('''
        SELECT style_id,
               MAX(product_name) AS product_name,
               COUNT(DISTINCT color_code) AS colors,
               COUNT(*) AS records,
               SUM(quantity) AS total_quantity,
               MAX(extracted_at) AS last_extracted_at
        FROM inventory
        GROUP BY style_id
        ORDER BY style_id
    ''')
    return fetch_all_dicts(cursor)


def get_inventory_summary(conn) -> Dict[str, Any]:
    """Totals for the dashboard header."""
    cursor = conn.cursor()
    cursor.execute('''
        SELECT COUNT(*) AS records,
               COUNT(DISTINCT style_id) AS styles,
               SUM(CASE WHEN quantity > 0 THEN 1 ELSE 0 END) AS in_stock_records,
               SUM(quantity) AS total_quantity,
               MAX(extracted_at) AS last_extracted_at
        FROM inventory
    ''')
    summary = fetch_one_dict(cursor) or {}
    summary['in_stock_records'] = summary.get('in_stock_records') or 0
    summary['total_quantity'] = summary.get('total_quantity') or 0
    summary['active_urls'] = _count(
        conn, f'SELECT COUNT(*) FROM monitored_urls WHERE is_active = {db_placeholder(conn)}',
        (True,))
    return summary


# =============================================================================
# Monitored URLs
# =============================================================================

def get_url_by_value(conn, url: str) -> Optional[Dict]:
    ph = db_placeholder(conn)
    cursor = conn.cursor()
    cursor.execute(f'SELECT * FROM monitored_urls WHERE url = {ph}', (url,))
    return fetch_one_dict(cursor)


def add_url(conn, url: str, label: Optional[str] = None) -> Optional[int]:
    """Add a URL to the monitored list. Returns url_id, or None if it already exists."""
    url = url.strip()
    if get_url_by_value(conn, url):
        return None
    ph = db_placeholder(conn)
    return _insert_returning_id(
        conn,
        f'''INSERT INTO monitored_urls (url, style_id, label, is_active, created_at)
            VALUES ({ph}, {ph}, {ph}, {ph}, {ph})''',
        (url, extract_style_id(url), label, True, _now()),
        'url_id',
    )


def list_urls(conn, active_only: bool = False) -> List[Dict]:
    ph = db_placeholder(conn)
    cursor = conn.cursor()
    if active_only:
        cursor.execute(f'SELECT * FROM monitored_urls WHERE is_active = {ph} ORDER BY url_id',
                       (True,))
    else:
        cursor.execute('SELECT * FROM monitored_urls ORDER BY url_id')
    return fetch_all_dicts(cursor)


def get_url(conn, url_id: int) -> Optional[Dict]:
    ph = db_placeholder(conn)
    cursor = conn.cursor()
    cursor.execute(f'SELECT * FROM monitored_urls WHERE url_id = {ph}', (url_id,))
    return fetch_one_dict(cursor)


def set_url_active(conn, url_id: int, is_active: bool) -> bool:
    ph = db_placeholder(conn)
    cursor = conn.cursor()
    cursor.execute(f'UPDATE monitored_urls SET is_active = {ph} WHERE url_id = {ph}',
                   (is_active, url_id))
    return cursor.rowcount > 0


def delete_url(conn, url_id: int) -> bool:
    ph = db_placeholder(conn)
    cursor = conn.cursor()
    cursor.execute(f'DELETE FROM monitored_urls WHERE url_id = {ph}', (url_id,))
    return cursor.rowcount > 0


def mark_url_scraped(conn, url: str, status: str, error: Optional[str] = None) -> None:
    """Record the outcome of the latest scrape on the URL's row (if monitored)."""
    ph = db_placeholder(conn)
    cursor = conn.cursor()
    cursor.execute(
        f'''UPDATE monitored_urls SET last_scraped_at = {ph}, last_status = {ph}, last_error = {ph}
            WHERE url = {ph}''',
        (_now(), status, error, url),
    )


# =============================================================================
# Per-URL outcomes
# =============================================================================
# Each outcome is one transaction that commits itself, so a reconnect retry
# through DatabaseConnection.execute_with_retry replays every write of the
# URL rather than only the statement that hit the dropped connection.

def run_in_transaction(conn, func, *args, **kwargs):
    """Run func(conn, ...) and commit, as one retryable unit."""
    result = func(conn, *args, **kwargs)
    conn.commit()
    return result


def save_url_result(conn, records: Sequence[InventoryRecord], batch_id: Optional[int],
                    url: str) -> int:
    """Upsert a URL's records, log the success and update its monitored row. Commits."""
    saved = upsert_inventory_records(conn, records, batch_id)
    insert_scrape_log(conn, batch_id, url, 'success', len(records))
    mark_url_scraped(conn, url, 'success')
    conn.commit()
    return saved


def save_url_failure(conn, batch_id: Optional[int], url: str, error: str) -> None:
    """Log a failed URL and record the error on its monitored row. Commits."""
    insert_scrape_log(conn, batch_id, url, 'failed', 0, error)
    mark_url_scraped(conn, url, 'failed', error)
    conn.commit()


# =============================================================================
# Batches and logs
# =============================================================================

def create_batch(conn, urls_total: int, triggered_by: str = 'manual') -> int:
    ph = db_placeholder(conn)
    return _insert_returning_id(
        conn,
        f'''INSERT INTO scrape_batches (started_at, status, triggered_by, urls_total)
            VALUES ({ph}, {ph}, {ph}, {ph})''',
        (_now(), 'running', triggered_by, urls_total),
        'batch_id',
    )


def finish_batch(conn, batch_id: int, status: str, urls_succeeded: int,
                 urls_failed: int, records_saved: int) -> None:
    ph = db_placeholder(conn)
    cursor = conn.cursor()
    cursor.execute(
        f'''UPDATE scrape_batches
            SET completed_at = {ph}, status = {ph}, urls_succeeded = {ph},
                urls_failed = {ph}, records_saved = {ph}
            WHERE batch_id = {ph}''',
        (_now(), status, urls_succeeded, urls_failed, records_saved, batch_id),
    )


def list_batches(conn, limit: int = 20, offset: int = 0) -> Tuple[List[Dict], int]:
    ph = db_placeholder(conn)
    total = _count(conn, 'SELECT COUNT(*) FROM scrape_batches')
    cursor = conn.cursor()
    cursor.execute(
        f'SELECT * FROM scrape_batches ORDER BY batch_id DESC LIMIT {ph} OFFSET {ph}',
        (limit, offset),
    )
    return fetch_all_dicts(cursor), total


def get_batch(conn, batch_id: int) -> Optional[Dict]:
    ph = db_placeholder(conn)
    cursor = conn.cursor()
    cursor.execute(f'SELECT * FROM scrape_batches WHERE batch_id = {ph}', (batch_id,))
    return fetch_one_dict(cursor)


def insert_scrape_log(conn, batch_id: Optional[int], url: str, status: str,
                      records_found: int = 0, error: Optional[str] = None) -> int:
    ph = db_placeholder(conn)
    return _insert_returning_id(
        conn,
        f'''INSERT INTO scrape_logs (batch_id, url, status, records_found, error, created_at)
            VALUES ({ph}, {ph}, {ph}, {ph}, {ph}, {ph})''',
        (batch_id, url, status, records_found, error, _now()),
        'log_id',
    )


def list_scrape_logs(conn, batch_id: Optional[int] = None, status: Optional[str] = None,
                     limit: int = 50, offset: int = 0) -> Tuple[List[Dict], int]:
    ph = db_placeholder(conn)
    where = []
    params: List[Any] = []
    if batch_id is not None:
        where.append(f'batch_id = {ph}')
        params.append(batch_id)
    if status:
        where.append(f'status = {ph}')
        params.append(status)
    where_clause = f"WHERE {' AND '.join(where)}" if where else ''

    total = _count(conn, f'SELECT COUNT(*) FROM scrape_logs {where_clause}', params)
    cursor = conn.cursor()
    cursor.execute(
        f'''SELECT * FROM scrape_logs {where_clause}
            ORDER BY log_id DESC LIMIT {ph} OFFSET {ph}''',
        params + [limit, offset],
    )
    return fetch_all_dicts(cursor), total


def cleanup_old_logs(conn, days: int = 30) -> int:
    """Delete scrape logs older than specified days. Returns count deleted."""
    ph = db_placeholder(conn)
    cutoff = (datetime.now() - timedelta(days=days)).isoformat()
    cursor = conn.cursor()
    cursor.execute(f'DELETE FROM scrape_logs WHERE created_at < {ph}', (cutoff,))
    deleted = cursor.rowcount
    if deleted > 0:
        print(f"  Cleaned up {deleted} log rows older than {days} days", flush=True)
    return deleted
