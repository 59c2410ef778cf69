"""
Chunked bulk import of parsed Tally tables.

Each table is split into chunks of ``batch_size`` rows and sent through the
configured sink: direct Postgres (BulkLoader) or the tally-bulk-import Edge
Function. A failed chunk stops its table; other tables carry on.
"""
from __future__ import annotations
from typing import Iterable, Optional, Union
import psycopg
from loguru import logger

from .config import SyncConfig
from .edge import EdgeFunctionClient
from .errors import ConfigError, TallySyncError
from .loaders.bulk import BulkLoader, chunked, with_tenant
from .sync_types import OPERATIONS, ImportSummary, TablePayload, TableResult

TableInput = Union[TablePayload, tuple[str, str, list[dict]]]


class BulkImporter:
    """
    Usage:
        importer = BulkImporter(config)
        summary = importer.import_tables([
            ("mst_group", "replace", groups),
            ("trn_voucher", "upsert", vouchers),
        ])
    """

    def __init__(
        self,
        config: Optional[SyncConfig] = None,
        loader: Optional[BulkLoader] = None,
        edge: Optional[EdgeFunctionClient] = None,
        import_type: str = "full_sync",
    ):
        self.config = config or SyncConfig.from_env()
        self.sink = self.config.sink
        if self.sink not in ("postgres", "edge"):
            raise ConfigError(f"Unknown sink: {self.sink}")
        self.loader = loader
        self.edge = edge
        self.import_type = import_type

    def _loader(self) -> BulkLoader:
        if self.loader is None:
            self.loader = BulkLoader(self.config)
        return self.loader

    def _edge(self) -> EdgeFunctionClient:
        if self.edge is None:
            self.edge = EdgeFunctionClient(self.config)
        return self.edge

    def import_tables(self, tables: Iterable[TableInput]) -> ImportSummary:
        """Import every table and summarize the per-table results."""
        results = []
        for entry in tables:
            if isinstance(entry, TablePayload):
                table, operation, rows = entry.table_name, entry.operation, entry.data
            else:
                table, operation, rows = entry
            results.append(self.import_table(table, operation, rows))

        summary = ImportSummary.from_results(results)
        logger.info(summary.message)
        return summary

    def import_table(self, table: str, operation: str, rows: list[dict]) -> TableResult:
        """Import one table chunk by chunk; only the first chunk of a replace replaces."""
        result = TableResult(table_name=table)
        if operation not in OPERATIONS:
            return result.fail(f"Unknown operation: {operation}", failed=len(rows))

        rows = with_tenant(rows, self.config.company_id, self.config.division_id)
        if not rows:
            logger.info(f"{table}: nothing to import")
            return result

        sent = 0
        for n, chunk in enumerate(chunked(rows, self.config.batch_size)):
            op = "append" if operation == "replace" and n > 0 else operation
            try:
                chunk_result = self._send(table, op, list(chunk))
            except (TallySyncError, psycopg.Error) as e:
                logger.error(f"{table} chunk {n + 1} failed: {e}")
                result.fail(str(e), failed=len(rows) - sent)
                break
            sent += len(chunk)

            result.processed_count += chunk_result.processed_count
            result.failed_count += chunk_result.failed_count
            result.errors.extend(chunk_result.errors)
            if not chunk_result.success:
                # rows in the chunks after this one were never sent
                result.success = False
                result.failed_count += len(rows) - sent
                logger.error(f"{table} chunk {n + 1} failed: {'; '.join(chunk_result.errors)}")
                break

            logger.debug(f"{table} chunk {n + 1}: {chunk_result.processed_count} rows")

        return result

    def _send(self, table: str, operation: str, chunk: list[dict]) -> TableResult:
        if self.sink == "edge":
            return self._edge().bulk_import(table, operation, chunk, import_type=self.import_type)
        return self._loader().process_table(table, operation, chunk, batch_size=len(chunk))
