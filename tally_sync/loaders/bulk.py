"""
Bulk writes of mirrored Tally rows.

All writes are keyed by (guid, company_id, division_id).
"""
from __future__ import annotations
from typing import Iterator, Optional, Sequence
import psycopg
from psycopg import errors as pg_errors
from loguru import logger

from .base import DatabaseLoader, transaction
from ..sync_types import OPERATIONS, ChangeSummary, TableResult
from ..tables import CONFLICT_KEY


def chunked(rows: Sequence[dict], size: int) -> Iterator[Sequence[dict]]:
    """Split rows into consecutive chunks of at most ``size``."""
    if size <= 0:
        raise ValueError("chunk size must be positive")
    for start in range(0, len(rows), size):
        yield rows[start:start + size]


def with_tenant(rows: Sequence[dict], company_id: str, division_id: str) -> list[dict]:
    """Copy rows with the tenant columns set."""
    return [{**row, "company_id": company_id, "division_id": division_id} for row in rows]


def columns_of(rows: Sequence[dict]) -> list[str]:
    """Ordered union of the keys of all rows."""
    columns: dict[str, None] = {}
    for row in rows:
        columns.update(dict.fromkeys(row))
    return list(columns)


class BulkLoader(DatabaseLoader):
    """
    Writes batches of rows into the mirrored tables.

    - process_table: replace/upsert/append in chunks with a per-table result
    - sync_records: change-detected upsert classifying every row
    - insert_ignore: tenant wipe followed by insert-or-skip
    """

    def process_table(
        self,
        table: str,
        operation: str,
        rows: Sequence[dict],
        company_id: Optional[str] = None,
        division_id: Optional[str] = None,
        batch_size: Optional[int] = None,
    ) -> TableResult:
        """
        Import ``rows`` into ``table``.

        ``replace`` deletes the tenant's rows first. On a unique violation,
        ``upsert`` falls back to updating the chunk row by row. Any other
        chunk failure stops the table and is reported in the result.
        """
        if operation not in OPERATIONS:
            raise ValueError(f"Unknown operation: {operation}. Valid: {list(OPERATIONS)}")

        company_id = company_id or self.config.company_id
        division_id = division_id or self.config.division_id
        batch_size = batch_size or self.config.batch_size
        result = TableResult(table_name=table)
        rows = with_tenant(rows, company_id, division_id)
        target = self.table(table)

        try:
            if operation == "replace":
                with self.conn.cursor() as cur:
                    cur.execute(
                        f"DELETE FROM {target} WHERE company_id = %s AND division_id = %s",
                        (company_id, division_id),
                    )
                    logger.debug(f"Cleared {cur.rowcount} existing rows from {target}")
        except psycopg.Error as e:
            logger.error(f"Failed to clear {target}: {e}")
            return result.fail(f"Failed to clear existing data: {e}", failed=len(rows))

        for n, chunk in enumerate(chunked(rows, batch_size), start=1):
            try:
                self._insert_chunk(target, chunk)
                result.processed_count += len(chunk)
            except pg_errors.UniqueViolation as e:
                if operation != "upsert":
                    logger.error(f"{table} chunk {n} failed: {e}")
                    result.fail(f"Batch {n} failed: {e}", failed=len(rows) - result.processed_count)
                    break
                logger.debug(f"{table} chunk {n} has existing rows, updating row by row")
                self._update_rows(target, chunk, result)
            except psycopg.Error as e:
                logger.error(f"{table} chunk {n} failed: {e}")
                result.fail(f"Batch {n} failed: {e}", failed=len(rows) - result.processed_count)
                break

        logger.info(
            f"{table}: {operation} processed {result.processed_count}, failed {result.failed_count}"
        )
        return result

    def _insert_chunk(self, target: str, chunk: Sequence[dict]):
        columns = columns_of(chunk)
        sql = (
            f"INSERT INTO {target} ({', '.join(columns)}) "
            f"VALUES ({', '.join(f'%({c})s' for c in columns)})"
        )
        params = [{c: row.get(c) for c in columns} for row in chunk]
        with transaction(self.conn):
            with self.conn.cursor() as cur:
                cur.executemany(sql, params)

    def _update_rows(self, target: str, chunk: Sequence[dict], result: TableResult):
        """Per-row fallback: update existing rows, insert the rest."""
        for row in chunk:
            columns = [c for c in row if c not in CONFLICT_KEY]
            update_sql = (
                f"UPDATE {target} SET {', '.join(f'{c} = %({c})s' for c in columns)} "
                f"WHERE guid = %(guid)s AND company_id = %(company_id)s AND division_id = %(division_id)s"
            )
            try:
                with self.conn.cursor() as cur:
                    cur.execute(update_sql, row)
                    if cur.rowcount == 0:
                        self._insert_chunk(target, [row])
                result.processed_count += 1
            except psycopg.Error as e:
                result.failed_count += 1
                result.errors.append(f"Row {row.get('guid')}: {e}")
                logger.warning(f"Failed to upsert {row.get('guid')} into {target}: {e}")

    def sync_records(
        self,
        table: str,
        rows: Sequence[dict],
        compare_columns: Optional[Sequence[str]] = None,
    ) -> ChangeSummary:
        """
        Upsert rows, rewriting a stored row only when a compared column changed.

        Each row is classified as inserted, updated or ignored (unchanged).
        """
        summary = ChangeSummary(table=table)
        if not rows:
            return summary

        rows = with_tenant(rows, self.config.company_id, self.config.division_id)
        target = self.table(table)
        columns = columns_of(rows)
        update_columns = [c for c in columns if c not in CONFLICT_KEY]
        compare = list(compare_columns or update_columns)

        sql = (
            f"INSERT INTO {target} AS t ({', '.join(columns)}) "
            f"VALUES ({', '.join(f'%({c})s' for c in columns)}) "
            f"ON CONFLICT ({', '.join(CONFLICT_KEY)}) DO UPDATE SET "
            f"{', '.join(f'{c} = EXCLUDED.{c}' for c in update_columns)} "
            f"WHERE ({', '.join(f't.{c}' for c in compare)}) "
            f"IS DISTINCT FROM ({', '.join(f'EXCLUDED.{c}' for c in compare)}) "
            f"RETURNING (xmax = 0) AS inserted"
        )

        with self.conn.cursor() as cur:
            for row in rows:
                cur.execute(sql, {c: row.get(c) for c in columns})
                returned = cur.fetchone()
                if returned is None:
                    summary.add("ignored")
                elif returned["inserted"]:
                    summary.add("inserted")
                else:
                    summary.add("updated")

        logger.info(
            f"{table}: {summary.inserted} inserted, {summary.updated} updated, "
            f"{summary.ignored} unchanged"
        )
        return summary

    def insert_ignore(self, table: str, rows: Sequence[dict], company_id: Optional[str] = None) -> int:
        """
        Replace a company's rows: delete them, then insert each row,
        skipping any that still conflict. Returns the number inserted.
        """
        company_id = company_id or self.config.company_id
        target = self.table(table)
        rows = with_tenant(rows, company_id, self.config.division_id)
        inserted = 0

        with self.conn.cursor() as cur:
            cur.execute(f"DELETE FROM {target} WHERE company_id = %s", (company_id,))
            for row in rows:
                columns = list(row)
                cur.execute(
                    f"INSERT INTO {target} ({', '.join(columns)}) "
                    f"VALUES ({', '.join(f'%({c})s' for c in columns)}) "
                    f"ON CONFLICT DO NOTHING",
                    row,
                )
                inserted += cur.rowcount

        logger.info(f"{table}: inserted {inserted} of {len(rows)} rows")
        return inserted

