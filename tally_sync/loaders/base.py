"""
Base database loader utilities.

Provides connection management and bookkeeping (schema setup, row counts,
checkpoints and the sync log).
"""
from __future__ import annotations
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional
import psycopg
from psycopg.rows import dict_row
from loguru import logger
from ..config import SyncConfig


def get_connection(config: Optional[SyncConfig] = None):
    """
    Create a database connection.

    Returns an autocommit psycopg connection that yields rows as dicts.
    """
    config = config or SyncConfig.from_env()
    conn = psycopg.connect(config.db_url, autocommit=True, row_factory=dict_row)
    return conn


@contextmanager
def transaction(conn) -> Generator:
    """
    Context manager for database transactions.

    Automatically commits on success, rolls back on exception.
    """
    with conn.transaction():
        yield


class DatabaseLoader:
    """
    Base class for database operations.

    Provides common functionality:
    - Connection management
    - Schema setup
    - Checkpoint management
    - Sync logging
    """

    def __init__(self, config: Optional[SyncConfig] = None, conn=None):
        self.config = config or SyncConfig.from_env()
        self._conn = conn

    @property
    def conn(self):
        """Get or create database connection."""
        if self._conn is None or self._conn.closed:
            self._conn = get_connection(self.config)
        return self._conn

    @property
    def schema(self) -> str:
        return self.config.db_schema

    def table(self, name: str) -> str:
        """Schema-qualified table name."""
        return f"{self.schema}.{name}"

    def close(self):
        """Close database connection."""
        if self._conn is not None and not self._conn.closed:
            self._conn.close()
            self._conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def ensure_schema(self, schema: Optional[str] = None):
        """Create schema if it doesn't exist."""
        schema = schema or self.schema
        with self.conn.cursor() as cur:
            cur.execute(f"CREATE SCHEMA IF NOT EXISTS {schema}")

    def execute_ddl(self, ddl_path: str | Path, schema: Optional[str] = None):
        """Execute DDL from a SQL file inside ``schema``."""
        ddl_file = Path(ddl_path)
        if not ddl_file.exists():
            raise FileNotFoundError(f"DDL file not found: {ddl_path}")

        schema = schema or self.schema
        ddl = ddl_file.read_text(encoding="utf-8")
        self.ensure_schema(schema)
        with transaction(self.conn):
            with self.conn.cursor() as cur:
                cur.execute(f"SET LOCAL search_path TO {schema}, public")
                cur.execute(ddl)
        logger.info(f"Executed DDL from {ddl_file.name} in schema {schema}")

    def count_rows(self, table_name: str, tenant: bool = True) -> int:
        """Row count for a table, limited to the configured tenant by default."""
        sql = f"SELECT COUNT(*) AS cnt FROM {table_name}"
        params: tuple = ()
        if tenant:
            sql += " WHERE company_id = %s AND division_id = %s"
            params = (self.config.company_id, self.config.division_id)
        with self.conn.cursor() as cur:
            cur.execute(sql, params)
            result = cur.fetchone()
            return result["cnt"] if result else 0

    def table_exists(self, schema: str, table_name: str) -> bool:
        with self.conn.cursor() as cur:
            cur.execute(
                """
                SELECT 1 FROM information_schema.tables
                WHERE table_schema = %s AND table_name = %s
                """,
                (schema, table_name),
            )
            return cur.fetchone() is not None

    def column_exists(self, schema: str, table_name: str, column: str) -> bool:
        with self.conn.cursor() as cur:
            cur.execute(
                """
                SELECT 1 FROM information_schema.columns
                WHERE table_schema = %s AND table_name = %s AND column_name = %s
                """,
                (schema, table_name, column),
            )
            return cur.fetchone() is not None

    def update_checkpoint(
        self,
        entity_name: str,
        last_alter_id: int | None = None,
        row_count: int = 0,
        status: str = "completed",
        error_message: str | None = None,
    ):
        """Update sync checkpoint for an entity."""
        with self.conn.cursor() as cur:
            cur.execute(
                f"""
                INSERT INTO {self.table("sync_checkpoint")}
                    (entity_name, company_id, division_id, last_alter_id, last_sync_at,
                     row_count, status, error_message)
                VALUES (%s, %s, %s, %s, NOW(), %s, %s, %s)
                ON CONFLICT (entity_name, company_id, division_id) DO UPDATE SET
                    last_alter_id = EXCLUDED.last_alter_id,
                    last_sync_at = EXCLUDED.last_sync_at,
                    row_count = EXCLUDED.row_count,
                    status = EXCLUDED.status,
                    error_message = EXCLUDED.error_message
                """,
                (
                    entity_name,
                    self.config.company_id,
                    self.config.division_id,
                    last_alter_id,
                    row_count,
                    status,
                    error_message,
                ),
            )

    def log_sync(
        self,
        sync_type: str,
        entity_name: str | None = None,
        rows_processed: int = 0,
        status: str = "running",
        error_message: str | None = None,
    ) -> int:
        """Log a sync operation and return the log ID."""
        with self.conn.cursor() as cur:
            cur.execute(
                f"""
                INSERT INTO {self.table("sync_log")}
                    (company_id, division_id, sync_type, entity_name, rows_processed, status, error_message)
                VALUES (%s, %s, %s, %s, %s, %s, %s)
                RETURNING id
                """,
                (
                    self.config.company_id,
                    self.config.division_id,
                    sync_type,
                    entity_name,
                    rows_processed,
                    status,
                    error_message,
                ),
            )
            result = cur.fetchone()
            return result["id"] if result else 0

    def update_sync_log(
        self,
        log_id: int,
        rows_processed: int | None = None,
        rows_inserted: int | None = None,
        rows_updated: int | None = None,
        status: str | None = None,
        error_message: str | None = None,
    ):
        """Update an existing sync log entry."""
        updates = []
        params = []

        if rows_processed is not None:
            updates.append("rows_processed = %s")
            params.append(rows_processed)
        if rows_inserted is not None:
            updates.append("rows_inserted = %s")
            params.append(rows_inserted)
        if rows_updated is not None:
            updates.append("rows_updated = %s")
            params.append(rows_updated)
        if status is not None:
            updates.append("status = %s")
            params.append(status)
            if status in ("completed", "failed", "partial"):
                updates.append("completed_at = NOW()")
                updates.append("duration_seconds = EXTRACT(EPOCH FROM (NOW() - started_at))")
        if error_message is not None:
            updates.append("error_message = %s")
            params.append(error_message)

        if not updates:
            return

        params.append(log_id)

        with self.conn.cursor() as cur:
            cur.execute(
                f"""
                UPDATE {self.table("sync_log")}
                SET {", ".join(updates)}
                WHERE id = %s
                """,
                params,
            )
