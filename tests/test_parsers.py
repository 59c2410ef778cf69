"""
Tests for XML parsers.

Tests parsing of various Tally XML formats.
"""
import pytest
from datetime import date
from tally_sync.parsers.base import (
    sanitize_xml,
    iter_elements,
    parse_tally_date,
    format_tally_date,
    parse_float,
    parse_bool,
    parse_int,
    parse_quantity,
    synthetic_guid,
    extract_alter_id,
)
from tally_sync.parsers.masters import (
    parse_groups,
    parse_ledgers,
    parse_stock_items,
    parse_units,
    parse_godowns,
)
from tally_sync.parsers.transactions import parse_vouchers


class TestBaseParsers:
    """Tests for base parsing utilities."""

    def test_sanitize_xml_removes_control_chars(self):
        xml = "test\x00\x01\x02value"
        result = sanitize_xml(xml)
        assert "\x00" not in result
        assert "\x01" not in result
        assert result == "testvalue"

    def test_sanitize_xml_removes_char_refs(self):
        assert sanitize_xml("<N>a&#4;b</N>") == "<N>ab</N>"
        assert sanitize_xml("<N>a&#10;b</N>") == "<N>a&#10;b</N>"

    def test_sanitize_xml_fixes_ampersands(self):
        xml = "<name>A & B</name>"
        assert sanitize_xml(xml) == "<name>A &amp; B</name>"
        assert sanitize_xml("<n>A &amp; B</n>") == "<n>A &amp; B</n>"

    def test_parse_tally_date_yyyymmdd(self):
        assert parse_tally_date("20240401") == date(2024, 4, 1)

    def test_parse_tally_date_iso(self):
        assert parse_tally_date("2024-04-01") == date(2024, 4, 1)

    def test_parse_tally_date_dmy(self):
        assert parse_tally_date("01-Apr-2024") == date(2024, 4, 1)

    def test_parse_tally_date_empty(self):
        assert parse_tally_date("") is None
        assert parse_tally_date(None) is None
        assert parse_tally_date("ñ") is None

    def test_format_tally_date(self):
        """YYYYMMDD becomes YYYY-MM-DD."""
        assert format_tally_date("20240401") == "2024-04-01"
        assert format_tally_date("20231231") == "2023-12-31"
        assert format_tally_date("") is None

    def test_parse_float_variants(self):
        assert parse_float("123.45") == 123.45
        assert parse_float("1,234.56") == 1234.56
        assert parse_float("(123.45)") == -123.45
        assert parse_float("500.00 Cr") == -500.0
        assert parse_float("500.00 Dr") == 500.0
        assert parse_float("₹ 1,000") == 1000.0

    def test_parse_float_empty(self):
        assert parse_float("") == 0.0
        assert parse_float("", default=100) == 100
        assert parse_float("abc") == 0.0

    def test_parse_bool(self):
        assert parse_bool("Yes") is True
        assert parse_bool("1") is True
        assert parse_bool("No") is False
        assert parse_bool("0") is False
        assert parse_bool(None) is False
        assert parse_bool("maybe", default=True) is True

    def test_parse_int(self):
        assert parse_int("1,234") == 1234
        assert parse_int("12.0") == 12
        assert parse_int("") == 0

    def test_parse_quantity_with_unit(self):
        assert parse_quantity("10 Nos") == 10.0
        assert parse_quantity("-2.5 kg") == -2.5
        assert parse_quantity("") == 0.0

    def test_synthetic_guid_is_deterministic(self):
        a = synthetic_guid("group", "Sundry Debtors")
        assert a == synthetic_guid("group", "Sundry Debtors")
        assert a != synthetic_guid("group", "Sundry Creditors")
        assert a.startswith("gen-")
        assert len(a) == len("gen-") + 16

    def test_extract_alter_id_with_spaces(self):
        elem = next(iter_elements("<X><ALTERID> 1 234</ALTERID></X>", "X"))
        assert extract_alter_id(elem) == 1234

    def test_iter_elements_empty(self):
        assert list(iter_elements("", "GROUP")) == []
        assert list(iter_elements(None, "GROUP")) == []
        assert list(iter_elements("   ", "GROUP")) == []


class TestMasterParsers:
    """Tests for master data parsers."""

    def test_parse_groups(self, groups_xml):
        groups = parse_groups(groups_xml)
        assert len(groups) == 2

        debtors = groups[0]
        assert debtors["guid"] == "grp-guid-1"
        assert debtors["name"] == "Sundry Debtors"
        assert debtors["parent"] == "Current Assets"
        assert debtors["alter_id"] == 12
        assert debtors["is_deemed_positive"] is True
        assert debtors["is_revenue"] is False

    def test_parse_groups_synthesizes_missing_guid(self, groups_xml):
        groups = parse_groups(groups_xml)
        assert groups[1]["guid"] == synthetic_guid("group", "Indirect Expenses")

    def test_parse_groups_skips_nameless(self):
        xml = "<ENVELOPE><GROUP><PARENT>X</PARENT></GROUP></ENVELOPE>"
        assert parse_groups(xml) == []

    def test_parse_ledgers(self):
        xml = """
        <ENVELOPE>
            <LEDGER NAME="Acme Distributors & Co">
                <GUID>led-guid-1</GUID>
                <PARENT>Sundry Debtors</PARENT>
                <OPENINGBALANCE>-1500.00</OPENINGBALANCE>
                <CLOSINGBALANCE>2,500.50</CLOSINGBALANCE>
                <PARTYGSTIN>27AAAAA0000A1Z5</PARTYGSTIN>
                <ADDRESS.LIST>
                    <ADDRESS>12 Main Road</ADDRESS>
                    <ADDRESS>Pune</ADDRESS>
                </ADDRESS.LIST>
            </LEDGER>
        </ENVELOPE>
        """
        ledgers = parse_ledgers(xml)
        assert len(ledgers) == 1
        led = ledgers[0]
        assert led["name"] == "Acme Distributors & Co"
        assert led["mailing_name"] == "Acme Distributors & Co"
        assert led["opening_balance"] == -1500.0
        assert led["closing_balance"] == 2500.5
        assert led["gstn"] == "27AAAAA0000A1Z5"
        assert led["mailing_address"] == "12 Main Road, Pune"

    def test_parse_stock_items(self):
        xml = """
        <ENVELOPE>
            <STOCKITEM NAME="Widget">
                <GUID>si-1</GUID>
                <PARENT>Hardware</PARENT>
                <OPENINGBALANCE>10 Nos</OPENINGBALANCE>
                <OPENINGVALUE>-1000.00</OPENINGVALUE>
            </STOCKITEM>
        </ENVELOPE>
        """
        items = parse_stock_items(xml)
        assert items[0]["opening_balance"] == 10.0
        assert items[0]["opening_value"] == -1000.0
        assert items[0]["uom"] == "Nos"

    def test_parse_units_defaults(self):
        xml = "<ENVELOPE><UNIT NAME=\"Box\"><GUID>u-1</GUID></UNIT></ENVELOPE>"
        unit = parse_units(xml)[0]
        assert unit["formalname"] == "Box"
        assert unit["base_units"] == "Box"
        assert unit["conversion"] == 1
        assert unit["is_simple_unit"] is True

    def test_parse_godowns_empty_response(self):
        assert parse_godowns("") == []
        assert parse_godowns("<ENVELOPE><BODY><DATA/></BODY></ENVELOPE>") == []


class TestVoucherParser:
    """Tests for voucher parsing."""

    def test_voucher_round_trip(self, voucher_xml):
        """A voucher fragment parses to the exact GUID, date and amount."""
        result = parse_vouchers(voucher_xml)

        assert len(result["vouchers"]) == 1
        v = result["vouchers"][0]
        assert v["guid"] == "abc-123-guid"
        assert v["date"] == date(2024, 4, 15)
        assert v["voucher_type"] == "Sales"
        assert v["voucher_number"] == "S-101"
        assert v["party_name"] == "Acme Distributors"
        assert v["total_amount"] == 1180.0
        assert v["final_amount"] == 1180.0
        assert v["alter_id"] == 77

    def test_accounting_entries(self, voucher_xml):
        entries = parse_vouchers(voucher_xml)["accounting"]
        assert len(entries) == 3

        party = entries[0]
        assert party["guid"] == "abc-123-guid-ledger-Acme Distributors"
        assert party["voucher_guid"] == "abc-123-guid"
        assert party["amount"] == -1180.0
        assert party["is_party_ledger"] is True
        assert party["date"] == date(2024, 4, 15)

        amounts = sorted(e["amount"] for e in entries)
        assert amounts == [-1180.0, 180.0, 1000.0]

    def test_inventory_entries(self, voucher_xml):
        entries = parse_vouchers(voucher_xml)["inventory"]
        assert len(entries) == 1
        inv = entries[0]
        assert inv["guid"] == "abc-123-guid-inventory-Widget"
        assert inv["quantity"] == 10.0
        assert inv["rate"] == 100.0
        assert inv["amount"] == 1000.0
        assert inv["godown"] == "Main Location"

    def test_repeated_ledger_gets_suffixed_guid(self):
        xml = """
        <ENVELOPE>
            <VOUCHER>
                <GUID>v-1</GUID>
                <DATE>20240401</DATE>
                <ALLLEDGERENTRIES.LIST><LEDGERNAME>Cash</LEDGERNAME><AMOUNT>100</AMOUNT></ALLLEDGERENTRIES.LIST>
                <ALLLEDGERENTRIES.LIST><LEDGERNAME>Cash</LEDGERNAME><AMOUNT>50</AMOUNT></ALLLEDGERENTRIES.LIST>
            </VOUCHER>
        </ENVELOPE>
        """
        guids = [e["guid"] for e in parse_vouchers(xml)["accounting"]]
        assert guids == ["v-1-ledger-Cash", "v-1-ledger-Cash-2"]

    def test_voucher_without_guid_uses_type_number_date(self):
        xml = """
        <ENVELOPE>
            <VOUCHER VCHTYPE="Receipt">
                <VOUCHERNUMBER>R-9</VOUCHERNUMBER>
                <DATE>20240402</DATE>
                <AMOUNT>-250.00</AMOUNT>
            </VOUCHER>
        </ENVELOPE>
        """
        v = parse_vouchers(xml)["vouchers"][0]
        assert v["guid"] == "Receipt/R-9/20240402"
        assert v["total_amount"] == 250.0

    def test_empty_xml(self):
        """Empty input gives no records and no errors."""
        for xml in ("", "<ENVELOPE></ENVELOPE>", "<ENVELOPE><BODY><DATA><COLLECTION/></DATA></BODY></ENVELOPE>"):
            result = parse_vouchers(xml)
            assert result == {"vouchers": [], "accounting": [], "inventory": []}

    def test_parse_is_deterministic(self, voucher_xml):
        assert parse_vouchers(voucher_xml) == parse_vouchers(voucher_xml)


@pytest.fixture
def groups_xml():
    return """
    <ENVELOPE>
        <HEADER>
            <VERSION>1</VERSION>
            <STATUS>1</STATUS>
        </HEADER>
        <BODY>
            <DATA>
                <COLLECTION>
                    <GROUP NAME="Sundry Debtors">
                        <GUID>grp-guid-1</GUID>
                        <ALTERID>12</ALTERID>
                        <PARENT>Current Assets</PARENT>
                        <ISREVENUE>No</ISREVENUE>
                        <ISDEEMEDPOSITIVE>Yes</ISDEEMEDPOSITIVE>
                    </GROUP>
                    <GROUP NAME="Indirect Expenses">
                        <PARENT>Primary</PARENT>
                        <ISREVENUE>Yes</ISREVENUE>
                    </GROUP>
                </COLLECTION>
            </DATA>
        </BODY>
    </ENVELOPE>
    """


@pytest.fixture
def voucher_xml():
    return """
    <ENVELOPE>
        <BODY>
            <DATA>
                <COLLECTION>
                    <VOUCHER VCHTYPE="Sales">
                        <GUID>abc-123-guid</GUID>
                        <ALTERID>77</ALTERID>
                        <DATE>20240415</DATE>
                        <VOUCHERTYPENAME>Sales</VOUCHERTYPENAME>
                        <VOUCHERNUMBER>S-101</VOUCHERNUMBER>
                        <PARTYLEDGERNAME>Acme Distributors</PARTYLEDGERNAME>
                        <ISINVOICE>Yes</ISINVOICE>
                        <ALLLEDGERENTRIES.LIST>
                            <LEDGERNAME>Acme Distributors</LEDGERNAME>
                            <ISPARTYLEDGER>Yes</ISPARTYLEDGER>
                            <ISDEEMEDPOSITIVE>Yes</ISDEEMEDPOSITIVE>
                            <AMOUNT>-1180.00</AMOUNT>
                        </ALLLEDGERENTRIES.LIST>
                        <ALLLEDGERENTRIES.LIST>
                            <LEDGERNAME>Sales Account</LEDGERNAME>
                            <AMOUNT>1000.00</AMOUNT>
                        </ALLLEDGERENTRIES.LIST>
                        <ALLLEDGERENTRIES.LIST>
                            <LEDGERNAME>Output GST</LEDGERNAME>
                            <AMOUNT>180.00</AMOUNT>
                        </ALLLEDGERENTRIES.LIST>
                        <ALLINVENTORYENTRIES.LIST>
                            <STOCKITEMNAME>Widget</STOCKITEMNAME>
                            <RATE>100.00/Nos</RATE>
                            <AMOUNT>1000.00</AMOUNT>
                            <ACTUALQTY> 10 Nos</ACTUALQTY>
                            <BILLEDQTY> 10 Nos</BILLEDQTY>
                            <BATCHALLOCATIONS.LIST>
                                <GODOWNNAME>Main Location</GODOWNNAME>
                            </BATCHALLOCATIONS.LIST>
                        </ALLINVENTORYENTRIES.LIST>
                    </VOUCHER>
                </COLLECTION>
            </DATA>
        </BODY>
    </ENVELOPE>
    """
