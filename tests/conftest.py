"""Shared fixtures for tally-sync tests."""
from unittest.mock import MagicMock
import pytest

from tally_sync.config import SyncConfig
from tally_sync.retry import RetryPolicy
from tally_sync.sync_types import TableResult

COMPANY_ID = "11111111-1111-4111-8111-111111111111"
DIVISION_ID = "22222222-2222-4222-8222-222222222222"


def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line(
        "markers", "integration: mark test as integration test (requires Tally and DB)"
    )


def pytest_collection_modifyitems(config, items):
    if config.getoption("-m"):
        return
    skip = pytest.mark.skip(reason="integration test; run with -m integration")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip)


@pytest.fixture
def config():
    return SyncConfig(
        tally_url="http://tally.test:9000",
        tally_company="Acme Traders",
        railway_url="https://railway.test",
        railway_api_key="railway-key",
        functions_url="https://project.test/functions/v1",
        api_key="edge-key",
        db_url="postgresql://user:pw@localhost:5432/test",
        db_schema="public",
        vt_schema="vt",
        backup_prefix="bkp_",
        company_id=COMPANY_ID,
        division_id=DIVISION_ID,
        batch_size=2,
        request_timeout=30,
        retry_attempts=5,
        retry_delay=0.01,
        sink="postgres",
        log_file=None,
    )


@pytest.fixture
def no_sleep_policy():
    """Retry policy that never actually waits."""
    return RetryPolicy(attempts=5, delay=0.5, sleep=lambda s: None)


class FakeLoader:
    """
    In-memory stand-in for BulkLoader.process_table.

    Rows are keyed by (guid, company_id, division_id) like the real tables.
    """

    def __init__(self):
        self.tables: dict[str, dict[tuple, dict]] = {}
        self.calls: list[tuple[str, str, int]] = []

    def process_table(self, table, operation, rows, company_id=None, division_id=None, batch_size=None):
        self.calls.append((table, operation, len(rows)))
        store = self.tables.setdefault(table, {})
        if operation == "replace":
            tenants = {(r["company_id"], r["division_id"]) for r in rows}
            for key in [k for k in store if k[1:] in tenants]:
                del store[key]
        for row in rows:
            store[(row["guid"], row["company_id"], row["division_id"])] = dict(row)
        return TableResult(table_name=table, processed_count=len(rows))

    def count(self, table):
        return len(self.tables.get(table, {}))


@pytest.fixture
def fake_loader():
    return FakeLoader()


def make_cursor(fetchone=None, fetchall=None, rowcount=0):
    """A MagicMock cursor usable as ``with conn.cursor() as cur``."""
    cur = MagicMock()
    cur.fetchone.return_value = fetchone
    cur.fetchall.return_value = fetchall or []
    cur.rowcount = rowcount
    return cur


def make_conn(cursor):
    conn = MagicMock()
    conn.closed = False
    conn.cursor.return_value.__enter__.return_value = cursor
    return conn
