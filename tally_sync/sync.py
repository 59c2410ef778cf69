"""
Main sync orchestration for tally-sync.

Each table goes through Fetch -> Parse -> Transform -> Upsert -> Report.

Provides:
- Full sync: all masters plus vouchers for a date range
- Incremental sync: all masters plus recent vouchers
- TDL report sync: generic F01..Fnn reports per table
- Railway sync: paged JSON from the Railway proxy
- Reconciliation and vt validation
"""
from __future__ import annotations
import argparse
import sys
from datetime import date, timedelta
from typing import Optional, Sequence
import psycopg
from loguru import logger

from .config import SyncConfig, configure_logging
from .client import TallyClient
from .errors import ConfigError, TallyConnectionError, TallyResponseError, TallySyncError
from .importer import BulkImporter
from .loaders import BulkLoader, Reconciler
from .loaders.bulk import chunked
from .models import SCHEMA_FILE, VT_SCHEMA_FILE
from .parsers.masters import (
    parse_groups,
    parse_ledgers,
    parse_stock_items,
    parse_voucher_types,
    parse_cost_centres,
    parse_godowns,
    parse_units,
)
from .parsers.railway import normalize_records
from .parsers.tdl import parse_report
from .parsers.transactions import parse_vouchers
from .railway import RailwayClient
from .requests import render
from .sync_types import TableResult
from .tables import RAILWAY_TABLES, TDL_TABLES, TRANSACTION_TABLES, get_tdl_table

MODES = ("full", "incremental", "masters", "vouchers", "tdl", "railway", "reconcile", "validate")

TALLY_DATE_FORMAT = "%d-%b-%Y"


class TallySync:
    """
    Main synchronization orchestrator.

    Usage:
        with TallySync() as sync:
            sync.run_full_sync()
            sync.sync_masters(["ledgers", "stock_items"])
            sync.sync_vouchers(from_date=date(2024, 4, 1))
    """

    # Master entity configurations
    MASTER_ENTITIES = {
        "groups": {"template": "groups", "parser": parse_groups, "table": "mst_group"},
        "ledgers": {"template": "ledgers", "parser": parse_ledgers, "table": "mst_ledger"},
        "voucher_types": {
            "template": "voucher_types",
            "parser": parse_voucher_types,
            "table": "mst_vouchertype",
        },
        "units": {"template": "units", "parser": parse_units, "table": "mst_uom"},
        "godowns": {"template": "godowns", "parser": parse_godowns, "table": "mst_godown"},
        "cost_centres": {
            "template": "cost_centres",
            "parser": parse_cost_centres,
            "table": "mst_cost_centre",
        },
        "stock_items": {
            "template": "stock_items",
            "parser": parse_stock_items,
            "table": "mst_stock_item",
        },
    }

    def __init__(
        self,
        config: Optional[SyncConfig] = None,
        client: Optional[TallyClient] = None,
        loader: Optional[BulkLoader] = None,
        importer: Optional[BulkImporter] = None,
        railway: Optional[RailwayClient] = None,
    ):
        self.config = config or SyncConfig.from_env()
        self.client = client or TallyClient(self.config)
        self.loader = loader or BulkLoader(self.config)
        self.importer = importer or BulkImporter(self.config, loader=self.loader)
        self._railway = railway
        self._reconciler: Optional[Reconciler] = None

    @property
    def railway(self) -> RailwayClient:
        if self._railway is None:
            self._railway = RailwayClient(self.config)
        return self._railway

    @property
    def reconciler(self) -> Reconciler:
        if self._reconciler is None:
            self._reconciler = Reconciler(self.config)
        return self._reconciler

    @property
    def uses_database(self) -> bool:
        """Checkpoints and the sync log live in Postgres; the edge sink has none."""
        return self.config.sink == "postgres"

    def _render(
        self,
        template: str,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None,
        **context,
    ) -> str:
        context["company"] = self.config.tally_company
        if from_date:
            context["from_date"] = from_date.strftime(TALLY_DATE_FORMAT)
        if to_date:
            context["to_date"] = to_date.strftime(TALLY_DATE_FORMAT)
        return render(template, **context)

    def test_connection(self) -> dict:
        """Test connection to Tally."""
        return self.client.test_connection()

    def initialize_schema(self):
        """Create the mirrored tables and the vt schema if they don't exist."""
        self.loader.execute_ddl(SCHEMA_FILE)
        self.loader.execute_ddl(VT_SCHEMA_FILE, schema=self.config.vt_schema)
        logger.info("Database schema initialized")

    # Upsert

    def _write(self, table: str, rows: list[dict], operation: str = "upsert") -> TableResult:
        """
        Write parsed rows. Upserts into Postgres go through change detection
        so unchanged rows are not rewritten; everything else goes through
        the chunked importer.
        """
        if operation == "upsert" and self.uses_database:
            result = TableResult(table_name=table)
            for chunk in chunked(rows, self.config.batch_size):
                summary = self.loader.sync_records(table, chunk)
                result.processed_count += summary.total
            return result
        return self.importer.import_table(table, operation, rows)

    def _checkpoint(self, entity: str, rows: list[dict], result: TableResult):
        if not self.uses_database:
            return
        alter_ids = [r["alter_id"] for r in rows if r.get("alter_id")]
        self.loader.update_checkpoint(
            entity,
            last_alter_id=max(alter_ids) if alter_ids else None,
            row_count=result.processed_count,
            status="completed" if result.success else "failed",
            error_message="; ".join(result.errors) or None,
        )

    def _fail_checkpoint(self, entity: str, error: Exception):
        if not self.uses_database:
            return
        try:
            self.loader.update_checkpoint(entity, status="failed", error_message=str(error))
        except psycopg.Error as e:
            logger.error(f"Could not record failure of {entity}: {e}")

    # Masters

    def sync_master(self, entity_name: str) -> TableResult:
        """
        Sync a single master entity.

        Args:
            entity_name: Name of entity (e.g., 'ledgers', 'stock_items')

        Returns:
            TableResult for the entity's table
        """
        if entity_name not in self.MASTER_ENTITIES:
            raise ValueError(f"Unknown entity: {entity_name}. Valid: {list(self.MASTER_ENTITIES.keys())}")

        entity_config = self.MASTER_ENTITIES[entity_name]
        logger.info(f"Syncing {entity_name}...")

        try:
            xml_response = self.client.post_xml(self._render(entity_config["template"]))
            rows = entity_config["parser"](xml_response)
            result = self._write(entity_config["table"], rows)
            self._checkpoint(entity_name, rows, result)
        except Exception as e:
            logger.error(f"Failed to sync {entity_name}: {e}")
            self._fail_checkpoint(entity_name, e)
            raise

        logger.info(f"  Synced {result.processed_count} {entity_name}")
        return result

    def sync_masters(self, entities: Optional[Sequence[str]] = None) -> dict[str, TableResult]:
        """
        Sync multiple master entities. A failing entity is recorded and the
        rest still run.
        """
        entities = entities or list(self.MASTER_ENTITIES.keys())

        results = {}
        for entity in entities:
            try:
                results[entity] = self.sync_master(entity)
            except (TallySyncError, psycopg.Error, ValueError) as e:
                results[entity] = TableResult(
                    table_name=self.MASTER_ENTITIES.get(entity, {}).get("table", entity)
                ).fail(str(e))
        return results

    # Vouchers

    def sync_vouchers(
        self,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None,
        batch_days: int = 15,
    ) -> dict[str, TableResult]:
        """
        Sync vouchers with their accounting and inventory entries.

        The range is fetched in windows of ``batch_days`` to keep each Tally
        request small. A failing window is recorded and later windows still run.

        Args:
            from_date: Start date (defaults to the current financial year start)
            to_date: End date (defaults to today)
        """
        today = date.today()
        if from_date is None:
            fy_start_year = today.year if today.month >= 4 else today.year - 1
            from_date = date(fy_start_year, 4, 1)
        if to_date is None:
            to_date = today

        logger.info(f"Syncing vouchers from {from_date} to {to_date}")

        totals = {t: TableResult(table_name=t) for t in TRANSACTION_TABLES}
        parsed_keys = {"trn_voucher": "vouchers", "trn_accounting": "accounting", "trn_inventory": "inventory"}
        last_alter_id = None

        current = from_date
        window = 0
        while current <= to_date:
            window += 1
            window_end = min(current + timedelta(days=batch_days - 1), to_date)
            logger.info(f"  Window {window}: {current} to {window_end}")

            try:
                xml_response = self.client.post_xml(
                    self._render("vouchers", from_date=current, to_date=window_end)
                )
                parsed = parse_vouchers(xml_response)
                for table, key in parsed_keys.items():
                    r = self._write(table, parsed[key])
                    totals[table].processed_count += r.processed_count
                    totals[table].failed_count += r.failed_count
                    if not r.success:
                        totals[table].fail(f"{current}..{window_end}: {'; '.join(r.errors)}")
                ids = [v["alter_id"] for v in parsed["vouchers"] if v.get("alter_id")]
                if ids:
                    last_alter_id = max(ids + [last_alter_id or 0])
            except (TallySyncError, psycopg.Error) as e:
                logger.error(f"  Error processing window {current} to {window_end}: {e}")
                for result in totals.values():
                    result.fail(f"{current}..{window_end}: {e}")

            current = window_end + timedelta(days=1)

        if self.uses_database:
            ok = all(r.success for r in totals.values())
            self.loader.update_checkpoint(
                "vouchers",
                last_alter_id=last_alter_id,
                row_count=totals["trn_voucher"].processed_count,
                status="completed" if ok else "failed",
                error_message=None if ok else "; ".join(totals["trn_voucher"].errors)[:1000],
            )

        logger.info(
            "Voucher sync complete: "
            + ", ".join(f"{t}={r.processed_count}" for t, r in totals.items())
        )
        return totals

    # TDL reports

    def sync_tdl_table(
        self,
        table_name: str,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None,
    ) -> TableResult:
        """Export one table through the generic TDL report and replace its rows."""
        table = get_tdl_table(table_name)
        logger.info(f"Syncing {table_name} via TDL report...")

        try:
            xml_response = self.client.post_xml(
                self._render("tdl_report", from_date=from_date, to_date=to_date, table=table)
            )
            rows = parse_report(xml_response, table)
            result = self._write(table_name, rows, operation="replace")
            self._checkpoint(table_name, rows, result)
        except Exception as e:
            logger.error(f"Failed to sync {table_name}: {e}")
            self._fail_checkpoint(table_name, e)
            raise
        return result

    def sync_tdl_tables(
        self,
        tables: Optional[Sequence[str]] = None,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None,
    ) -> dict[str, TableResult]:
        tables = tables or list(TDL_TABLES.keys())
        results = {}
        for name in tables:
            try:
                results[name] = self.sync_tdl_table(name, from_date, to_date)
            except (TallySyncError, psycopg.Error, ValueError) as e:
                results[name] = TableResult(table_name=name).fail(str(e))
        return results

    # Railway proxy

    def sync_railway(self, tables: Optional[Sequence[str]] = None) -> dict[str, TableResult]:
        """
        Pull tables from the Railway proxy page by page and upsert each page.

        Args:
            tables: Railway API table names (e.g. 'ledgers'), or None for all
        """
        tables = tables or list(RAILWAY_TABLES.keys())
        results = {}
        for api_table in tables:
            if api_table not in RAILWAY_TABLES:
                results[api_table] = TableResult(table_name=api_table).fail(
                    f"Unknown Railway table: {api_table}"
                )
                continue

            mapping = RAILWAY_TABLES[api_table]
            result = TableResult(table_name=mapping.table)
            logger.info(f"Syncing {api_table} from Railway into {mapping.table}...")
            try:
                for page in self.railway.iter_batches(api_table, self.config.batch_size):
                    r = self._write(mapping.table, normalize_records(page, api_table))
                    result.processed_count += r.processed_count
                    result.failed_count += r.failed_count
                    if not r.success:
                        result.fail("; ".join(r.errors))
                        break
            except (TallySyncError, psycopg.Error) as e:
                logger.error(f"Railway sync of {api_table} failed: {e}")
                result.fail(str(e))

            results[api_table] = result
            logger.info(f"  {mapping.table}: {result.processed_count} rows")
        return results

    # Full / incremental

    def _run_logged(self, sync_type: str, work) -> dict:
        log_id = self.loader.log_sync(sync_type, status="running") if self.uses_database else None
        try:
            results = work()
        except Exception as e:
            if log_id is not None:
                self.loader.update_sync_log(log_id, status="failed", error_message=str(e))
            raise

        table_results = [r for group in results.values() for r in group.values()]
        ok = all(r.success for r in table_results)
        if log_id is not None:
            self.loader.update_sync_log(
                log_id,
                rows_processed=sum(r.processed_count for r in table_results),
                status="completed" if ok else "partial",
                error_message=None if ok else "; ".join(
                    f"{r.table_name}: {e}" for r in table_results for e in r.errors
                )[:2000],
            )
        return results

    def run_full_sync(
        self,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None,
        include_transactions: bool = True,
    ) -> dict:
        """
        Run a complete sync of all masters and, optionally, vouchers.

        Returns:
            {"masters": {...}, "transactions": {...}} of TableResults
        """

        def work():
            if self.uses_database:
                self.initialize_schema()
            logger.info("=== Syncing Master Data ===")
            results = {"masters": self.sync_masters(), "transactions": {}}
            if include_transactions:
                logger.info("=== Syncing Vouchers ===")
                results["transactions"] = self.sync_vouchers(from_date, to_date)
            logger.info("=== Full Sync Complete ===")
            return results

        return self._run_logged("full", work)

    def run_incremental_sync(self, days: int = 7) -> dict:
        """
        Re-sync all masters and the last ``days`` of vouchers.

        Unchanged rows are skipped by change detection, so re-reading masters
        costs reads, not writes.
        """

        def work():
            logger.info("=== Incremental Master Sync ===")
            results = {"masters": self.sync_masters()}
            logger.info("=== Incremental Voucher Sync ===")
            results["transactions"] = self.sync_vouchers(from_date=date.today() - timedelta(days=days))
            logger.info("=== Incremental Sync Complete ===")
            return results

        return self._run_logged("incremental", work)

    # Reconciliation

    def reconcile(self, tables: Optional[Sequence[str]] = None) -> dict:
        """Link entries, fix voucher totals and migrate backups into vt."""
        reconciler = self.reconciler
        linked = reconciler.link_voucher_entries()
        totals = reconciler.recalculate_voucher_totals()
        migrated = reconciler.migrate_backup_to_vt(tables)
        return {
            "linked": linked,
            "voucher_totals_updated": totals,
            "migrated": {r.table_name: r for r in migrated},
        }

    def validate(self, compare: Optional[Sequence[str]] = None) -> dict:
        """Score the vt schema; ``compare`` lists mirrored tables to diff against backup and vt."""
        report = self.reconciler.validate_vt()
        results = {
            "health_score": round(report.health_score, 1),
            "total_records": report.total_records,
            "total_issues": report.total_issues,
            "tables": {r.table: r.issue_count for r in report.results},
            "message": report.message,
        }
        for table in compare or ():
            c = self.reconciler.compare_sources(table)
            results.setdefault("drift", {})[table] = (
                "in sync" if c.in_sync
                else f"legacy={c.legacy_count} backup={c.backup_count} vt={c.vt_count}"
            )
        return results

    def close(self):
        """Close all connections."""
        self.client.close()
        self.loader.close()
        if self._railway is not None:
            self._railway.close()
        if self._reconciler is not None:
            self._reconciler.close()
        if self.importer.edge is not None:
            self.importer.edge.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


def run_sync(
    mode: str = "incremental",
    entities: Optional[list[str]] = None,
    from_date: Optional[date] = None,
    to_date: Optional[date] = None,
    config: Optional[SyncConfig] = None,
) -> dict:
    """
    Convenience function to run sync.

    Args:
        mode: one of MODES
        entities: masters for 'masters', table names for 'tdl', 'reconcile'
            and 'validate',
            Railway table names for 'railway'
        from_date: Start date for vouchers
        to_date: End date for vouchers
        config: Optional config override

    Returns:
        Dict with sync results
    """
    if mode not in MODES:
        raise ValueError(f"Unknown mode: {mode}. Valid: {', '.join(MODES)}")

    with TallySync(config) as sync:
        if mode == "full":
            return sync.run_full_sync(from_date, to_date)
        elif mode == "incremental":
            return sync.run_incremental_sync()
        elif mode == "masters":
            return {"masters": sync.sync_masters(entities)}
        elif mode == "vouchers":
            return {"transactions": sync.sync_vouchers(from_date, to_date)}
        elif mode == "tdl":
            return {"tdl": sync.sync_tdl_tables(entities, from_date, to_date)}
        elif mode == "railway":
            return {"railway": sync.sync_railway(entities)}
        elif mode == "reconcile":
            return sync.reconcile(entities)
        return {"validation": sync.validate(entities)}


def has_failures(results: dict) -> bool:
    """True if any TableResult anywhere in ``results`` failed."""
    for value in results.values():
        if isinstance(value, TableResult) and not value.success:
            return True
        if isinstance(value, dict) and has_failures(value):
            return True
    return False


def print_results(results: dict, indent: int = 0):
    pad = "  " * indent
    for key, value in results.items():
        if isinstance(value, dict):
            print(f"{pad}{key}:")
            print_results(value, indent + 1)
        elif isinstance(value, TableResult):
            status = "OK" if value.success else f"FAILED ({'; '.join(value.errors)[:200]})"
            print(f"{pad}{key}: {value.processed_count} processed, {value.failed_count} failed - {status}")
        else:
            print(f"{pad}{key}: {value}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tally-sync",
        description="Sync Tally data into Postgres and reconcile the vt schema",
    )
    parser.add_argument(
        "--mode",
        choices=MODES,
        default="incremental",
        help="Sync mode (default: incremental)",
    )
    parser.add_argument(
        "--entities",
        nargs="*",
        help="Entities/tables to sync (masters, tdl, railway and reconcile modes)",
    )
    parser.add_argument(
        "--from-date",
        type=lambda s: date.fromisoformat(s),
        help="Start date for vouchers (YYYY-MM-DD)",
    )
    parser.add_argument(
        "--to-date",
        type=lambda s: date.fromisoformat(s),
        help="End date for vouchers (YYYY-MM-DD)",
    )
    parser.add_argument(
        "--init-only",
        action="store_true",
        help="Only initialize database schema, don't sync",
    )
    parser.add_argument(
        "--test-connection",
        action="store_true",
        help="Test Tally connection and exit",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """CLI entry point. Returns the process exit code."""
    args = build_parser().parse_args(argv)
    config = SyncConfig.from_env()
    configure_logging("DEBUG" if args.verbose else config.log_level, config.log_file)

    errors = config.validate()
    if errors:
        for error in errors:
            logger.error(f"Configuration error: {error}")
        return 1

    try:
        if args.test_connection or args.init_only:
            with TallySync(config) as sync:
                if args.test_connection:
                    result = sync.test_connection()
                    print(f"Connection test: {result}")
                    return 0 if result["status"] == "connected" else 1
                sync.initialize_schema()
                print("Schema initialized successfully")
                return 0

        results = run_sync(
            mode=args.mode,
            entities=args.entities,
            from_date=args.from_date,
            to_date=args.to_date,
            config=config,
        )
        print("\n=== Sync Results ===")
        print_results(results)
        return 1 if has_failures(results) else 0

    except TallyConnectionError as e:
        logger.error(f"Connection error: {e}")
        return 1
    except TallyResponseError as e:
        logger.error(f"Tally error: {e}")
        return 1
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        return 1
    except Exception as e:
        logger.exception(f"Sync failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
