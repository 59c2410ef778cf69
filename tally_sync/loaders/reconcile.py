"""
Reconciliation between the mirrored tables, their bkp_ backups and the vt schema.

Operations:
- link_voucher_entries: repair entry -> voucher GUID links
- recalculate_voucher_totals: voucher totals from accounting entries
- migrate_backup_to_vt: copy backup tables into vt and resolve references
- validate_vt: per-table health checks with an overall score
- compare_sources: row/GUID drift between the three copies of a table
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Optional, Sequence
import psycopg
from loguru import logger

from .base import DatabaseLoader
from ..sync_types import SourceComparison, TableResult, ValidationReport, ValidationResult
from ..tables import MASTER_TABLES, TRANSACTION_TABLES


@dataclass(frozen=True)
class VtRef:
    """Resolve ``column`` by matching ``source_column`` to ``target.match``."""

    column: str
    source_column: str
    target: str
    match: str = "name"


@dataclass(frozen=True)
class VtTable:
    source: str
    target: str
    columns: tuple[str, ...]
    refs: tuple[VtRef, ...] = ()


VT_TABLES: dict[str, VtTable] = {
    t.source: t
    for t in (
        VtTable(
            "mst_group",
            "groups",
            ("name", "parent", "primary_group", "is_revenue", "affects_gross_profit"),
            (VtRef("parent_id", "parent", "groups"),),
        ),
        VtTable(
            "mst_ledger",
            "ledgers",
            ("name", "parent", "opening_balance", "closing_balance", "gstn", "it_pan"),
            (VtRef("group_id", "parent", "groups"),),
        ),
        VtTable("mst_uom", "units_of_measure", ("name", "formalname", "conversion")),
        VtTable(
            "mst_stock_item",
            "stock_items",
            ("name", "parent", "uom", "opening_balance", "opening_value", "closing_balance", "closing_value"),
            (VtRef("uom_id", "uom", "units_of_measure"),),
        ),
        VtTable(
            "mst_godown",
            "godowns",
            ("name", "parent"),
            (VtRef("parent_id", "parent", "godowns"),),
        ),
        VtTable(
            "mst_cost_centre",
            "cost_centres",
            ("name", "parent", "category"),
            (VtRef("parent_id", "parent", "cost_centres"),),
        ),
        VtTable(
            "mst_vouchertype",
            "voucher_types",
            ("name", "parent", "affects_stock"),
            (VtRef("parent_id", "parent", "voucher_types"),),
        ),
        VtTable(
            "trn_voucher",
            "vouchers",
            ("voucher_type", "voucher_number", "date", "party_name", "narration", "total_amount", "final_amount"),
            (VtRef("voucher_type_id", "voucher_type", "voucher_types"),),
        ),
        VtTable(
            "trn_accounting",
            "ledger_entries",
            ("voucher_guid", "ledger", "amount", "is_party_ledger"),
            (
                VtRef("voucher_id", "voucher_guid", "vouchers", match="tally_guid"),
                VtRef("ledger_id", "ledger", "ledgers"),
            ),
        ),
        VtTable(
            "trn_inventory",
            "inventory_entries",
            ("voucher_guid", "item", "quantity", "rate", "amount", "godown"),
            (
                VtRef("voucher_id", "voucher_guid", "vouchers", match="tally_guid"),
                VtRef("stock_item_id", "item", "stock_items"),
            ),
        ),
    )
}

# Marker inside synthetic entry GUIDs: "{voucher_guid}-ledger-{ledger}"
ENTRY_GUID_MARKERS = {"trn_accounting": "-ledger-", "trn_inventory": "-inventory-"}


class Reconciler(DatabaseLoader):
    """
    Keeps the mirrored tables, the backups and the vt schema consistent.

    Every statement is limited to the configured tenant.
    """

    @property
    def tenant_params(self) -> dict:
        return {"company_id": self.config.company_id, "division_id": self.config.division_id}

    def vt_table(self, name: str) -> str:
        return f"{self.config.vt_schema}.{name}"

    def backup_table(self, name: str) -> str:
        return self.table(f"{self.config.backup_prefix}{name}")

    def link_voucher_entries(self) -> dict[str, int]:
        """
        Point accounting/inventory entries at their voucher.

        Entries whose voucher_guid matches no voucher are linked by
        voucher_number (and voucher_type, when set). Tables without a
        voucher_number column fall back to the voucher GUID embedded in the
        entry's own synthetic GUID.
        """
        vouchers = self.table("trn_voucher")
        results = {}

        for table, marker in ENTRY_GUID_MARKERS.items():
            entries = self.table(table)
            if self.column_exists(self.schema, table, "voucher_number"):
                sql = f"""
                    UPDATE {entries} e
                    SET voucher_guid = v.guid
                    FROM {vouchers} v
                    WHERE v.company_id = e.company_id
                      AND v.division_id = e.division_id
                      AND v.voucher_number = e.voucher_number
                      AND (e.voucher_type = '' OR e.voucher_type = v.voucher_type)
                      AND e.voucher_number <> ''
                      AND e.company_id = %(company_id)s
                      AND e.division_id = %(division_id)s
                      AND NOT EXISTS (
                          SELECT 1 FROM {vouchers} x
                          WHERE x.guid = e.voucher_guid
                            AND x.company_id = e.company_id
                            AND x.division_id = e.division_id
                      )
                """
                params = self.tenant_params
            else:
                sql = f"""
                    UPDATE {entries}
                    SET voucher_guid = split_part(guid, %(marker)s, 1)
                    WHERE COALESCE(voucher_guid, '') = ''
                      AND position(%(marker)s IN guid) > 0
                      AND company_id = %(company_id)s
                      AND division_id = %(division_id)s
                """
                params = {**self.tenant_params, "marker": marker}

            with self.conn.cursor() as cur:
                cur.execute(sql, params)
                results[table] = cur.rowcount
            logger.info(f"Linked {results[table]} {table} rows to vouchers")

        return results

    def recalculate_voucher_totals(self) -> int:
        """
        Set voucher total/final amount to the sum of its positive accounting
        amounts, touching only vouchers whose stored total differs.
        """
        sql = f"""
            UPDATE {self.table("trn_voucher")} v
            SET total_amount = s.total, final_amount = s.total
            FROM (
                SELECT voucher_guid, company_id, division_id,
                       ROUND(COALESCE(SUM(amount) FILTER (WHERE amount > 0), 0), 2) AS total
                FROM {self.table("trn_accounting")}
                WHERE company_id = %(company_id)s AND division_id = %(division_id)s
                GROUP BY voucher_guid, company_id, division_id
            ) s
            WHERE v.guid = s.voucher_guid
              AND v.company_id = s.company_id
              AND v.division_id = s.division_id
              AND (v.total_amount IS DISTINCT FROM s.total OR v.final_amount IS DISTINCT FROM s.total)
        """
        with self.conn.cursor() as cur:
            cur.execute(sql, self.tenant_params)
            updated = cur.rowcount
        logger.info(f"Recalculated totals for {updated} vouchers")
        return updated

    def migrate_backup_to_vt(self, tables: Optional[Sequence[str]] = None) -> list[TableResult]:
        """
        Copy ``bkp_<table>`` rows into the vt schema, then resolve name/GUID
        references to vt ids. A failing table is reported and the rest go on.
        """
        tables = list(tables or (*MASTER_TABLES, *TRANSACTION_TABLES))
        unknown = [t for t in tables if t not in VT_TABLES]
        if unknown:
            raise ValueError(f"No vt mapping for: {unknown}. Valid: {list(VT_TABLES)}")

        results = []
        migrated = []
        for name in tables:
            mapping = VT_TABLES[name]
            result = TableResult(table_name=mapping.target)
            backup = f"{self.config.backup_prefix}{name}"
            if not self.table_exists(self.schema, backup):
                logger.warning(f"Backup table {self.schema}.{backup} not found, skipping")
                results.append(result.fail(f"{backup} does not exist"))
                continue
            try:
                result.processed_count = self._copy_to_vt(mapping)
                migrated.append(mapping)
            except psycopg.Error as e:
                logger.error(f"Migration of {backup} to {self.vt_table(mapping.target)} failed: {e}")
                result.fail(str(e))
            results.append(result)

        for mapping in migrated:
            for ref in mapping.refs:
                try:
                    self._resolve_ref(mapping, ref)
                except psycopg.Error as e:
                    logger.error(f"Resolving {mapping.target}.{ref.column} failed: {e}")
                    next(r for r in results if r.table_name == mapping.target).fail(str(e))

        return results

    def _copy_to_vt(self, mapping: VtTable) -> int:
        columns = ", ".join(mapping.columns)
        updates = ", ".join(f"{c} = EXCLUDED.{c}" for c in mapping.columns)
        sql = f"""
            INSERT INTO {self.vt_table(mapping.target)}
                (company_id, division_id, tally_guid, {columns})
            SELECT company_id, division_id, guid, {columns}
            FROM {self.backup_table(mapping.source)}
            WHERE company_id = %(company_id)s AND division_id = %(division_id)s
            ON CONFLICT (company_id, division_id, tally_guid) DO UPDATE SET
                {updates}, updated_at = NOW()
        """
        with self.conn.cursor() as cur:
            cur.execute(sql, self.tenant_params)
            count = cur.rowcount
        logger.info(f"Migrated {count} rows into {self.vt_table(mapping.target)}")
        return count

    def _resolve_ref(self, mapping: VtTable, ref: VtRef) -> int:
        target = self.vt_table(mapping.target)
        sql = f"""
            UPDATE {target} c
            SET {ref.column} = p.id
            FROM {self.vt_table(ref.target)} p
            WHERE p.company_id = c.company_id
              AND p.division_id = c.division_id
              AND p.{ref.match} = c.{ref.source_column}
              AND c.company_id = %(company_id)s
              AND c.division_id = %(division_id)s
              AND c.{ref.column} IS DISTINCT FROM p.id
        """
        with self.conn.cursor() as cur:
            cur.execute(sql, self.tenant_params)
            count = cur.rowcount
        logger.debug(f"Resolved {count} {mapping.target}.{ref.column} references")
        return count

    def validate_vt(self, tables: Optional[Sequence[str]] = None) -> ValidationReport:
        """Check every vt table and score the overall health."""
        targets = tables or [m.target for m in VT_TABLES.values()]
        by_target = {m.target: m for m in VT_TABLES.values()}
        results = []
        for target in targets:
            try:
                results.append(self._validate_table(by_target[target]))
            except psycopg.Error as e:
                logger.error(f"Validation of {self.vt_table(target)} failed: {e}")
                results.append(ValidationResult(table=target, issues=[str(e)]))

        report = ValidationReport(results=results)
        logger.info(report.message)
        return report

    def _scalar(self, sql: str, params: Optional[dict] = None) -> int:
        with self.conn.cursor() as cur:
            cur.execute(sql, params or self.tenant_params)
            row = cur.fetchone()
            return (row["n"] if row else 0) or 0

    def _validate_table(self, mapping: VtTable) -> ValidationResult:
        table = self.vt_table(mapping.target)
        where = "company_id = %(company_id)s AND division_id = %(division_id)s"
        result = ValidationResult(table=mapping.target)

        result.record_count = self._scalar(f"SELECT COUNT(*) AS n FROM {table} WHERE {where}")
        result.duplicates = self._scalar(
            f"SELECT COUNT(*) - COUNT(DISTINCT tally_guid) AS n FROM {table} WHERE {where}"
        )

        for ref in mapping.refs:
            missing = self._scalar(
                f"""
                SELECT COUNT(*) AS n FROM {table}
                WHERE {where}
                  AND COALESCE({ref.source_column}::text, '') <> ''
                  AND {ref.column} IS NULL
                """
            )
            if missing:
                result.missing_references += missing
                logger.warning(f"{missing} {mapping.target} rows reference a missing {ref.target} row")

        for label, condition in _EXTRA_CHECKS.get(mapping.target, ()):
            count = self._scalar(f"SELECT COUNT(*) AS n FROM {table} WHERE {where} AND ({condition})")
            if count:
                result.issues.append(f"{count} {mapping.target} {label}")

        return result

    def compare_sources(self, table: str, sample: int = 20) -> SourceComparison:
        """Compare ``table`` with its backup and its vt counterpart."""
        if table not in VT_TABLES:
            raise ValueError(f"No vt mapping for {table}. Valid: {list(VT_TABLES)}")

        legacy = self._guids(self.table(table), "guid")
        backup = self._guids(self.backup_table(table), "guid")
        vt = self._guids(self.vt_table(VT_TABLES[table].target), "tally_guid")

        comparison = SourceComparison(
            table=table,
            legacy_count=len(legacy),
            backup_count=len(backup),
            vt_count=len(vt),
            missing_in_backup=sorted(legacy - backup)[:sample],
            missing_in_vt=sorted(backup - vt)[:sample],
        )
        logger.info(
            f"{table}: legacy={comparison.legacy_count} backup={comparison.backup_count} "
            f"vt={comparison.vt_count}"
        )
        return comparison

    def _guids(self, table: str, column: str) -> set[str]:
        with self.conn.cursor() as cur:
            cur.execute(
                f"SELECT {column} AS guid FROM {table} "
                f"WHERE company_id = %(company_id)s AND division_id = %(division_id)s",
                self.tenant_params,
            )
            return {r["guid"] for r in cur.fetchall()}


_EXTRA_CHECKS: dict[str, tuple[tuple[str, str], ...]] = {
    "groups": (("are self-referencing", "parent_id = id"),),
    "ledgers": (("have null balance values", "opening_balance IS NULL OR closing_balance IS NULL"),),
    "units_of_measure": (("have invalid conversion factors", "conversion IS NULL OR conversion <= 0"),),
    "vouchers": (("have no date", "date IS NULL"),),
}
