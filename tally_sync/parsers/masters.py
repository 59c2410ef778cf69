"""
Parsers for Tally master data.

Each parser function takes XML text and returns a list of flat dictionaries
ready for database insertion. Parent groups/ledgers are kept as name strings.

A record that fails to parse is logged and skipped; it never aborts the
batch.
"""
from __future__ import annotations
from typing import Callable
from lxml import etree
from loguru import logger
from .base import (
    iter_elements,
    text,
    first_value,
    parse_float,
    parse_bool,
    parse_int,
    parse_quantity,
    extract_alter_id,
    synthetic_guid,
)


def _collect(
    xml_text: str,
    tag: str,
    entity: str,
    build: Callable[[etree._Element, str], dict],
) -> list[dict]:
    """Run build() on every <tag> element, skipping nameless or broken records."""
    records = []
    skipped = 0
    for elem in iter_elements(xml_text, tag):
        name = first_value(elem, "NAME")
        if not name:
            continue
        try:
            record = build(elem, name)
        except Exception as e:
            skipped += 1
            logger.warning(f"Skipping {entity} '{name}': {e}")
            continue
        if not record.get("guid"):
            record["guid"] = synthetic_guid(entity, name)
        records.append(record)

    if skipped:
        logger.warning(f"Skipped {skipped} unparseable {entity} records")
    logger.debug(f"Parsed {len(records)} {entity} records")
    return records


def _address(elem: etree._Element) -> str:
    lines = [a.text.strip() for a in elem.findall(".//ADDRESS.LIST/ADDRESS") if a.text and a.text.strip()]
    return ", ".join(lines) if lines else (text(elem, "ADDRESS") or "")


def parse_groups(xml_text: str) -> list[dict]:
    """Parse account groups. Hierarchy is carried by the PARENT name."""

    def build(elem, name):
        parent = text(elem, "PARENT") or ""
        return {
            "guid": first_value(elem, "GUID"),
            "alter_id": extract_alter_id(elem),
            "name": name,
            "parent": parent,
            "primary_group": text(elem, "PRIMARYGROUP") or parent,
            "is_revenue": parse_bool(text(elem, "ISREVENUE")),
            "is_deemed_positive": parse_bool(text(elem, "ISDEEMEDPOSITIVE")),
            "is_reserved": parse_bool(first_value(elem, "RESERVEDNAME") and "Yes"),
            "affects_gross_profit": parse_bool(text(elem, "AFFECTSGROSSPROFIT")),
            "sort_position": parse_int(text(elem, "SORTPOSITION")),
        }

    return _collect(xml_text, "GROUP", "group", build)


def parse_ledgers(xml_text: str) -> list[dict]:
    """Parse ledgers (accounts)."""

    def build(elem, name):
        return {
            "guid": first_value(elem, "GUID"),
            "alter_id": extract_alter_id(elem),
            "name": name,
            "parent": text(elem, "PARENT") or "",
            "alias": text(elem, "ALIAS") or "",
            "mailing_name": text(elem, "MAILINGNAME") or name,
            "mailing_address": _address(elem),
            "mailing_state": text(elem, "LEDSTATENAME") or text(elem, "STATENAME") or "",
            "mailing_country": text(elem, "COUNTRYNAME") or "",
            "mailing_pincode": text(elem, "PINCODE") or "",
            "email": text(elem, "EMAIL") or "",
            "it_pan": text(elem, "INCOMETAXNUMBER") or "",
            "gstn": text(elem, "PARTYGSTIN") or elem.findtext(".//GSTIN", default="").strip(),
            "gst_registration_type": text(elem, "GSTREGISTRATIONTYPE") or "",
            "opening_balance": parse_float(text(elem, "OPENINGBALANCE")),
            "closing_balance": parse_float(text(elem, "CLOSINGBALANCE")),
            "is_revenue": parse_bool(text(elem, "ISREVENUE")),
            "is_deemed_positive": parse_bool(text(elem, "ISDEEMEDPOSITIVE")),
            "bill_credit_period": parse_int(text(elem, "BILLCREDITPERIOD")),
            "credit_limit": parse_float(text(elem, "CREDITLIMIT")),
        }

    return _collect(xml_text, "LEDGER", "ledger", build)


def parse_stock_items(xml_text: str) -> list[dict]:
    """Parse stock items with opening/closing positions."""

    def build(elem, name):
        return {
            "guid": first_value(elem, "GUID"),
            "alter_id": extract_alter_id(elem),
            "name": name,
            "parent": text(elem, "PARENT") or "",
            "category": text(elem, "CATEGORY") or "",
            "alias": text(elem, "ALIAS") or "",
            "uom": text(elem, "BASEUNITS") or "Nos",
            "opening_balance": parse_quantity(text(elem, "OPENINGBALANCE")),
            "opening_rate": parse_float(text(elem, "OPENINGRATE")),
            "opening_value": parse_float(text(elem, "OPENINGVALUE")),
            "closing_balance": parse_quantity(text(elem, "CLOSINGBALANCE")),
            "closing_rate": parse_float(text(elem, "CLOSINGRATE")),
            "closing_value": parse_float(text(elem, "CLOSINGVALUE")),
            "gst_hsn_code": text(elem, "HSNCODE") or elem.findtext(".//HSNCODE", default="").strip(),
        }

    return _collect(xml_text, "STOCKITEM", "stock item", build)


def parse_voucher_types(xml_text: str) -> list[dict]:
    """Parse voucher types."""

    def build(elem, name):
        return {
            "guid": first_value(elem, "GUID"),
            "alter_id": extract_alter_id(elem),
            "name": name,
            "parent": text(elem, "PARENT") or "",
            "numbering_method": text(elem, "NUMBERINGMETHOD") or "",
            "is_deemed_positive": parse_bool(text(elem, "ISDEEMEDPOSITIVE")),
            "affects_stock": parse_bool(text(elem, "AFFECTSSTOCK")),
        }

    return _collect(xml_text, "VOUCHERTYPE", "voucher type", build)


def parse_cost_centres(xml_text: str) -> list[dict]:
    """Parse cost centres."""

    def build(elem, name):
        return {
            "guid": first_value(elem, "GUID"),
            "alter_id": extract_alter_id(elem),
            "name": name,
            "parent": text(elem, "PARENT") or "",
            "category": text(elem, "CATEGORY") or "",
        }

    return _collect(xml_text, "COSTCENTRE", "cost centre", build)


def parse_godowns(xml_text: str) -> list[dict]:
    """Parse godowns (warehouses)."""

    def build(elem, name):
        return {
            "guid": first_value(elem, "GUID"),
            "alter_id": extract_alter_id(elem),
            "name": name,
            "parent": text(elem, "PARENT") or "",
            "address": _address(elem),
        }

    return _collect(xml_text, "GODOWN", "godown", build)


def parse_units(xml_text: str) -> list[dict]:
    """Parse units of measure."""

    def build(elem, name):
        return {
            "guid": first_value(elem, "GUID"),
            "alter_id": extract_alter_id(elem),
            "name": name,
            "formalname": text(elem, "ORIGINALNAME") or text(elem, "FORMALNAME") or name,
            "is_simple_unit": parse_bool(text(elem, "ISSIMPLEUNIT"), default=True),
            "base_units": text(elem, "BASEUNITS") or name,
            "additional_units": text(elem, "ADDITIONALUNITS") or "",
            "conversion": parse_int(text(elem, "CONVERSION"), default=1) or 1,
        }

    return _collect(xml_text, "UNIT", "unit", build)
