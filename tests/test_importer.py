"""
Tests for chunked bulk import across sinks.
"""
import pytest
from unittest.mock import Mock

from tally_sync.errors import BulkImportError, ConfigError
from tally_sync.importer import BulkImporter
from tally_sync.sync_types import TablePayload, TableResult


def rows_for(n, prefix="g"):
    return [{"guid": f"{prefix}-{i}", "name": f"Name {i}"} for i in range(n)]


class TestBulkImporterPostgres:

    @pytest.fixture
    def importer(self, config, fake_loader):
        return BulkImporter(config, loader=fake_loader)

    def test_chunks_and_tenant_enrichment(self, importer, fake_loader, config):
        result = importer.import_table("mst_group", "upsert", rows_for(5))

        assert result.success
        assert result.processed_count == 5
        assert [c[2] for c in fake_loader.calls] == [2, 2, 1]
        stored = next(iter(fake_loader.tables["mst_group"].values()))
        assert stored["company_id"] == config.company_id
        assert stored["division_id"] == config.division_id

    def test_upsert_is_idempotent(self, importer, fake_loader):
        """Same batch twice leaves the same rows keyed by GUID."""
        batch = rows_for(5)
        importer.import_table("mst_ledger", "upsert", batch)
        first = fake_loader.count("mst_ledger")
        importer.import_table("mst_ledger", "upsert", batch)

        assert first == 5
        assert fake_loader.count("mst_ledger") == first

    def test_replace_only_first_chunk_replaces(self, importer, fake_loader):
        importer.import_table("mst_group", "replace", rows_for(5))
        assert [c[1] for c in fake_loader.calls] == ["replace", "append", "append"]
        assert fake_loader.count("mst_group") == 5

        importer.import_table("mst_group", "replace", rows_for(3, prefix="new"))
        assert fake_loader.count("mst_group") == 3

    def test_empty_rows(self, importer, fake_loader):
        result = importer.import_table("mst_group", "upsert", [])
        assert result.success
        assert result.processed_count == 0
        assert fake_loader.calls == []

    def test_unknown_operation(self, importer, fake_loader):
        result = importer.import_table("mst_group", "merge", rows_for(2))
        assert not result.success
        assert result.failed_count == 2
        assert fake_loader.calls == []

    def test_failed_table_does_not_stop_others(self, config):
        loader = Mock()
        loader.process_table.side_effect = [
            TableResult(table_name="mst_group", processed_count=2),
            TableResult(table_name="mst_group", success=False, failed_count=2, errors=["Batch 1 failed"]),
            TableResult(table_name="mst_ledger", processed_count=1),
        ]
        importer = BulkImporter(config, loader=loader)

        summary = importer.import_tables([
            ("mst_group", "upsert", rows_for(5)),
            TablePayload(table_name="mst_ledger", operation="append", data=rows_for(1)),
        ])

        assert not summary.success
        group, ledger = summary.table_results
        assert not group.success
        assert group.processed_count == 2
        assert group.failed_count == 3
        assert ledger.success
        assert ledger.processed_count == 1
        assert summary.total_processed == 3
        assert summary.total_failed == 3
        # the third chunk of mst_group was never sent
        assert loader.process_table.call_count == 3

    @pytest.mark.parametrize("second_chunk", [
        TableResult(table_name="mst_group", success=False, failed_count=2, errors=["Batch 1 failed"]),
        BulkImportError("mst_group", "Batch 1 failed"),
    ])
    def test_unsent_rows_counted_as_failed(self, config, second_chunk):
        loader = Mock()
        loader.process_table.side_effect = [
            TableResult(table_name="mst_group", processed_count=2),
            second_chunk,
        ]
        importer = BulkImporter(config, loader=loader)

        result = importer.import_table("mst_group", "upsert", rows_for(5))

        assert not result.success
        assert result.processed_count == 2
        assert result.failed_count == 3
        assert result.processed_count + result.failed_count == 5


class TestBulkImporterEdge:

    @pytest.fixture
    def edge_config(self, config):
        config.sink = "edge"
        return config

    def test_routes_to_edge(self, edge_config):
        edge = Mock()
        edge.bulk_import.side_effect = lambda table, op, chunk, import_type: TableResult(
            table_name=table, processed_count=len(chunk)
        )
        importer = BulkImporter(edge_config, edge=edge, import_type="master_only")

        summary = importer.import_tables([("mst_group", "replace", rows_for(3))])

        assert summary.success
        assert summary.total_processed == 3
        ops = [c.args[1] for c in edge.bulk_import.call_args_list]
        assert ops == ["replace", "append"]
        assert edge.bulk_import.call_args.kwargs["import_type"] == "master_only"

    def test_exhausted_retries_reported_per_table(self, edge_config):
        edge = Mock()
        edge.bulk_import.side_effect = [
            BulkImportError("mst_group", "Failed to import mst_group after 5 attempts: HTTP 503"),
            TableResult(table_name="mst_ledger", processed_count=1),
        ]
        importer = BulkImporter(edge_config, edge=edge)

        summary = importer.import_tables([
            ("mst_group", "upsert", rows_for(2)),
            ("mst_ledger", "upsert", rows_for(1)),
        ])

        group, ledger = summary.table_results
        assert not group.success
        assert "mst_group" in group.errors[0]
        assert group.failed_count == 2
        assert ledger.success

    def test_unknown_sink(self, config):
        config.sink = "s3"
        with pytest.raises(ConfigError):
            BulkImporter(config)
