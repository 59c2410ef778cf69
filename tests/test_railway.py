"""
Tests for the Railway proxy client and record normalization.
"""
import pytest
import requests
from unittest.mock import Mock

from tally_sync.errors import RailwayError
from tally_sync.parsers.railway import clean_string, normalize_record, normalize_records
from tally_sync.railway import RailwayClient, extract_records
from tally_sync.tables import RAILWAY_TABLES


def response(status=200, body=None):
    r = Mock()
    r.status_code = status
    r.json.return_value = body if body is not None else {}
    r.text = str(body)
    return r


class TestExtractRecords:

    def test_shapes(self):
        rows = [{"guid": "a"}]
        assert extract_records({"data": rows}) == rows
        assert extract_records({"records": rows}) == rows
        assert extract_records({"data": {"records": rows}}) == rows
        assert extract_records(rows) == rows

    def test_unexpected_shapes(self):
        assert extract_records({"something": 1}, "ledgers") == []
        assert extract_records("oops", "ledgers") == []


class TestNormalize:

    def test_clean_string(self):
        assert clean_string("  Acme\x07 Ltd\n ") == "Acme Ltd"

    def test_ledger_defaults(self):
        rec = normalize_record({"name": " Cash ", "parent": None, "mailing_name": ""}, "mst_ledger")
        assert rec["name"] == "Cash"
        assert rec["parent"] == ""
        assert rec["mailing_name"] == "Cash"
        assert rec["gstn"] == ""

    def test_uom_defaults(self):
        rec = normalize_record({"name": "Kgs", "conversion": "1000 grams", "is_simple_unit": None}, "mst_uom")
        assert rec["base_units"] == "Kgs"
        assert rec["formalname"] == "Kgs"
        assert rec["conversion"] == 1000
        assert rec["is_simple_unit"] is True

        rec = normalize_record({"name": "Box", "is_simple_unit": "No"}, "mst_uom")
        assert rec["conversion"] == 1
        assert rec["is_simple_unit"] is False

    def test_voucher_renames_and_whitelist(self):
        record = {
            "guid": "v-1",
            "alterid": 9,
            "party_ledger_name": "Acme",
            "reference": "PO-7",
            "date": "2024-04-15",
            "unexpected": "dropped",
        }
        rec = normalize_record(record, RAILWAY_TABLES["vouchers"])
        assert rec["alter_id"] == 9
        assert rec["party_name"] == "Acme"
        assert rec["reference_number"] == "PO-7"
        assert "unexpected" not in rec
        assert "alterid" not in rec

    def test_entry_date_rename(self):
        rows = normalize_records([{"guid": "e-1", "voucher_date": "2024-04-15", "is_deemedpositive": True}], "accounting_entries")
        assert rows == [{"guid": "e-1", "date": "2024-04-15", "is_deemed_positive": True}]


class TestRailwayClient:

    @pytest.fixture
    def client(self, config, no_sleep_policy):
        client = RailwayClient(config, retry_policy=no_sleep_policy)
        client.session = Mock()
        return client

    def test_auth_header(self, config):
        client = RailwayClient(config)
        assert client.session.headers["Authorization"] == "Bearer railway-key"

    def test_query_posts_tenant_url(self, client, config):
        client.session.request.return_value = response(body={"data": [{"guid": "a"}]})
        rows = client.query("ledgers", limit=10, offset=20)

        assert rows == [{"guid": "a"}]
        method, url = client.session.request.call_args.args
        assert method == "POST"
        assert url == f"https://railway.test/api/v1/query/{config.company_id}/{config.division_id}"
        assert client.session.request.call_args.kwargs["json"] == {
            "table": "ledgers", "filters": {}, "limit": 10, "offset": 20,
        }

    def test_query_failure_body(self, client):
        client.session.request.return_value = response(body={"success": False, "error": "bad table"})
        with pytest.raises(RailwayError, match="bad table"):
            client.query("nope")

    def test_client_error_not_retried(self, client):
        client.session.request.return_value = response(status=404, body={"error": "missing"})
        with pytest.raises(RailwayError):
            client.query("ledgers")
        assert client.session.request.call_count == 1

    def test_server_error_retried(self, client):
        client.session.request.side_effect = [
            response(status=503),
            response(body={"data": [{"guid": "a"}]}),
        ]
        assert client.query("ledgers") == [{"guid": "a"}]
        assert client.session.request.call_count == 2

    def test_iter_batches_pages_until_short_page(self, client):
        client.session.request.side_effect = [
            response(body={"data": [{"guid": "1"}, {"guid": "2"}]}),
            response(body={"data": [{"guid": "3"}]}),
        ]
        pages = list(client.iter_batches("ledgers", batch_size=2))
        assert pages == [[{"guid": "1"}, {"guid": "2"}], [{"guid": "3"}]]
        offsets = [c.kwargs["json"]["offset"] for c in client.session.request.call_args_list]
        assert offsets == [0, 2]

    def test_iter_batches_stops_on_empty_page(self, client):
        client.session.request.side_effect = [
            response(body={"data": [{"guid": "1"}, {"guid": "2"}]}),
            response(body={"data": []}),
        ]
        assert len(list(client.iter_batches("ledgers", batch_size=2))) == 1

    def test_health(self, client):
        client.session.request.return_value = response(body={"status": "ok"})
        assert client.health() == {"status": "ok"}
        assert client.session.request.call_args.args[1].endswith("/api/v1/health")

    def test_network_errors_wrapped_after_retries(self, client):
        client.session.request.side_effect = requests.Timeout("read timed out")
        with pytest.raises(RailwayError, match="after 5 attempts"):
            client.query("ledgers")
        assert client.session.request.call_count == 5

    def test_health_invalid_json(self, client):
        r = Mock(status_code=200, text="<html>Application failed to respond</html>")
        r.json.side_effect = ValueError("Expecting value")
        client.session.request.return_value = r
        with pytest.raises(RailwayError, match="invalid JSON"):
            client.health()
