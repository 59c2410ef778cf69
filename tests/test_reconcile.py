"""
Tests for vt reconciliation, validation scoring and source comparison.
"""
import pytest
from unittest.mock import patch
from psycopg import errors as pg_errors

from conftest import make_conn, make_cursor
from tally_sync.loaders.reconcile import VT_TABLES, Reconciler
from tally_sync.sync_types import ValidationReport, ValidationResult


class TestHealthScore:

    def test_no_records_is_healthy(self):
        report = ValidationReport(results=[ValidationResult(table="groups")])
        assert report.health_score == 100.0
        assert report.success

    def test_score_from_issue_ratio(self):
        report = ValidationReport(results=[
            ValidationResult(table="groups", record_count=80, duplicates=2),
            ValidationResult(table="ledgers", record_count=20, missing_references=3, issues=["bad"]),
        ])
        assert report.total_records == 100
        assert report.total_issues == 6
        assert report.health_score == pytest.approx(94.0)
        assert "94.0%" in report.message
        assert not report.success

    def test_score_floors_at_zero(self):
        report = ValidationReport(results=[ValidationResult(table="groups", record_count=1, duplicates=5)])
        assert report.health_score == 0.0


class TestReconciler:

    @pytest.fixture
    def cursor(self):
        return make_cursor(rowcount=4)

    @pytest.fixture
    def reconciler(self, config, cursor):
        return Reconciler(config, conn=make_conn(cursor))

    def test_link_by_voucher_number(self, reconciler, cursor):
        with patch.object(Reconciler, "column_exists", return_value=True):
            linked = reconciler.link_voucher_entries()

        assert linked == {"trn_accounting": 4, "trn_inventory": 4}
        sql = cursor.execute.call_args_list[0].args[0]
        assert "v.voucher_number = e.voucher_number" in sql
        assert "NOT EXISTS" in sql

    def test_link_by_guid_prefix_without_voucher_number(self, reconciler, cursor):
        with patch.object(Reconciler, "column_exists", return_value=False):
            reconciler.link_voucher_entries()

        markers = [c.args[1]["marker"] for c in cursor.execute.call_args_list]
        assert markers == ["-ledger-", "-inventory-"]
        assert "split_part(guid" in cursor.execute.call_args_list[0].args[0]

    def test_recalculate_totals(self, reconciler, cursor, config):
        assert reconciler.recalculate_voucher_totals() == 4
        sql, params = cursor.execute.call_args.args
        assert "FILTER (WHERE amount > 0)" in sql
        assert "IS DISTINCT FROM s.total" in sql
        assert params == {"company_id": config.company_id, "division_id": config.division_id}

    def test_migrate_unknown_table(self, reconciler):
        with pytest.raises(ValueError):
            reconciler.migrate_backup_to_vt(["mst_bills"])

    def test_migrate_copies_and_resolves(self, reconciler, cursor):
        with patch.object(Reconciler, "table_exists", return_value=True):
            results = reconciler.migrate_backup_to_vt(["mst_group", "mst_ledger"])

        assert [(r.table_name, r.success, r.processed_count) for r in results] == [
            ("groups", True, 4),
            ("ledgers", True, 4),
        ]
        statements = [c.args[0] for c in cursor.execute.call_args_list]
        assert "FROM public.bkp_mst_group" in statements[0]
        assert "ON CONFLICT (company_id, division_id, tally_guid) DO UPDATE" in statements[0]
        assert "INSERT INTO vt.ledgers" in statements[1]
        # one reference update per VtRef after both copies
        assert "SET parent_id = p.id" in statements[2]
        assert "SET group_id = p.id" in statements[3]

    def test_migrate_missing_backup_continues(self, reconciler):
        with patch.object(Reconciler, "table_exists", side_effect=[False, True]):
            results = reconciler.migrate_backup_to_vt(["mst_uom", "mst_godown"])
        assert not results[0].success
        assert "bkp_mst_uom" in results[0].errors[0]
        assert results[1].success

    def test_migrate_copy_failure_reported(self, reconciler, cursor):
        cursor.execute.side_effect = [pg_errors.UndefinedColumn("no column"), None, None]
        with patch.object(Reconciler, "table_exists", return_value=True):
            results = reconciler.migrate_backup_to_vt(["mst_uom", "mst_godown"])
        assert not results[0].success
        assert results[1].success

    def test_validate_table(self, config):
        # count, duplicates, missing parent_id, self-referencing check
        cursor = make_cursor()
        cursor.fetchone.side_effect = [{"n": 10}, {"n": 1}, {"n": 2}, {"n": 0}]
        reconciler = Reconciler(config, conn=make_conn(cursor))

        report = reconciler.validate_vt(["groups"])

        result = report.results[0]
        assert result.record_count == 10
        assert result.duplicates == 1
        assert result.missing_references == 2
        assert result.issues == []
        assert report.health_score == pytest.approx(70.0)

    def test_validate_reports_query_errors(self, config):
        cursor = make_cursor()
        cursor.execute.side_effect = pg_errors.UndefinedTable("missing")
        report = Reconciler(config, conn=make_conn(cursor)).validate_vt(["vouchers"])
        assert report.results[0].issues

    def test_compare_sources(self, config):
        cursor = make_cursor()
        cursor.fetchall.side_effect = [
            [{"guid": "a"}, {"guid": "b"}, {"guid": "c"}],
            [{"guid": "a"}, {"guid": "b"}],
            [{"guid": "a"}],
        ]
        reconciler = Reconciler(config, conn=make_conn(cursor))

        comparison = reconciler.compare_sources("mst_group")

        assert (comparison.legacy_count, comparison.backup_count, comparison.vt_count) == (3, 2, 1)
        assert comparison.missing_in_backup == ["c"]
        assert comparison.missing_in_vt == ["b"]
        assert not comparison.in_sync
        tables = [c.args[0].split("FROM ")[1].split(" ")[0] for c in cursor.execute.call_args_list]
        assert tables == ["public.mst_group", "public.bkp_mst_group", "vt.groups"]

    def test_every_mirrored_table_has_vt_mapping(self):
        from tally_sync.tables import MASTER_TABLES, TRANSACTION_TABLES
        assert set(VT_TABLES) == set(MASTER_TABLES) | set(TRANSACTION_TABLES)
