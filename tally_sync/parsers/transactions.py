"""
Parsers for Tally transaction data.

Handles vouchers and their entries:
- Accounting (ledger) entries
- Inventory entries

Entries carry synthetic GUIDs derived from the voucher GUID so that the
same voucher always produces the same child keys.
"""
from __future__ import annotations
from collections import Counter
from lxml import etree
from loguru import logger
from .base import (
    iter_elements,
    text,
    first_value,
    parse_tally_date,
    parse_float,
    parse_bool,
    parse_quantity,
    extract_alter_id,
    synthetic_guid,
)

VOUCHER_TAG = "VOUCHER"
LEDGER_ENTRY_TAGS = ("LEDGERENTRIES.LIST", "ALLLEDGERENTRIES.LIST")
INVENTORY_ENTRY_TAGS = ("INVENTORYENTRIES.LIST", "ALLINVENTORYENTRIES.LIST")


def parse_vouchers(xml_text: str) -> dict:
    """
    Parse vouchers and their entries from Tally XML.

    Returns dict with keys:
    - vouchers: list of voucher header dicts
    - accounting: list of accounting entry dicts
    - inventory: list of inventory entry dicts
    """
    vouchers = []
    accounting = []
    inventory = []
    skipped = 0

    for elem in iter_elements(xml_text, VOUCHER_TAG):
        try:
            voucher = _parse_voucher(elem)
            acc = _parse_accounting_entries(elem, voucher)
            inv = _parse_inventory_entries(elem, voucher)
        except Exception as e:
            skipped += 1
            logger.warning(f"Skipping voucher {first_value(elem, 'VCHNUMBER', 'VOUCHERNUMBER')}: {e}")
            continue

        if acc:
            voucher["total_amount"] = round(sum(e["amount"] for e in acc if e["amount"] > 0), 2)
            voucher["final_amount"] = voucher["total_amount"]

        vouchers.append(voucher)
        accounting.extend(acc)
        inventory.extend(inv)

    if skipped:
        logger.warning(f"Skipped {skipped} unparseable vouchers")
    logger.debug(
        f"Parsed {len(vouchers)} vouchers, {len(accounting)} accounting entries, "
        f"{len(inventory)} inventory entries"
    )

    return {
        "vouchers": vouchers,
        "accounting": accounting,
        "inventory": inventory,
    }


def voucher_guid(elem: etree._Element) -> str:
    """
    GUID of a voucher element.

    Tally's own GUID when present; otherwise ``type/number/date``, and a
    content hash when the voucher has no number either.
    """
    guid = first_value(elem, "GUID")
    if guid:
        return guid

    vnum = first_value(elem, "VCHNUMBER", "VOUCHERNUMBER")
    vtype = first_value(elem, "VCHTYPE", "VOUCHERTYPENAME") or ""
    vdate = text(elem, "DATE") or ""
    if vnum:
        return f"{vtype}/{vnum}/{vdate}"
    return synthetic_guid("voucher", etree.tostring(elem, encoding="unicode"))


def _parse_voucher(elem: etree._Element) -> dict:
    voucher_type = first_value(elem, "VCHTYPE", "VOUCHERTYPENAME") or ""
    amount = parse_float(text(elem, "AMOUNT"))

    return {
        "guid": voucher_guid(elem),
        "alter_id": extract_alter_id(elem),
        "voucher_type": voucher_type,
        "voucher_number": first_value(elem, "VCHNUMBER", "VOUCHERNUMBER", default=""),
        "reference_number": text(elem, "REFERENCE") or text(elem, "REFERENCENUMBER") or "",
        "date": parse_tally_date(text(elem, "DATE")),
        "reference_date": parse_tally_date(text(elem, "REFERENCEDATE")),
        "party_name": text(elem, "PARTYLEDGERNAME") or text(elem, "PARTYNAME") or "",
        "place_of_supply": text(elem, "PLACEOFSUPPLY") or "",
        "narration": text(elem, "NARRATION") or "",
        "total_amount": abs(amount),
        "final_amount": abs(amount),
        "is_invoice": parse_bool(first_value(elem, "ISINVOICE")),
        "is_accounting_voucher": parse_bool(first_value(elem, "ISACCOUNTINGVOUCHER")),
        "is_inventory_voucher": parse_bool(first_value(elem, "ISINVENTORYVOUCHER")),
        "is_order_voucher": parse_bool(first_value(elem, "ISORDERVOUCHER")),
        "is_cancelled": parse_bool(text(elem, "ISCANCELLED")),
        "is_optional": parse_bool(text(elem, "ISOPTIONAL")),
    }


def _entry_guid(voucher_guid: str, kind: str, name: str, seen: Counter) -> str:
    base = f"{voucher_guid}-{kind}-{name}"
    seen[base] += 1
    return base if seen[base] == 1 else f"{base}-{seen[base]}"


def _parse_accounting_entries(elem: etree._Element, voucher: dict) -> list[dict]:
    """Parse accounting (ledger) entries from a voucher."""
    entries = []
    seen: Counter = Counter()

    for tag in LEDGER_ENTRY_TAGS:
        for le in elem.findall(tag):
            ledger = text(le, "LEDGERNAME") or text(le, "NAME")
            if not ledger:
                continue
            entries.append({
                "guid": _entry_guid(voucher["guid"], "ledger", ledger, seen),
                "voucher_guid": voucher["guid"],
                "voucher_number": voucher["voucher_number"],
                "voucher_type": voucher["voucher_type"],
                "date": voucher["date"],
                "ledger": ledger,
                "amount": parse_float(text(le, "AMOUNT")),
                "is_party_ledger": parse_bool(text(le, "ISPARTYLEDGER")),
                "is_deemed_positive": parse_bool(text(le, "ISDEEMEDPOSITIVE")),
                "gst_class": text(le, "GSTCLASS") or "",
            })

    return entries


def _parse_inventory_entries(elem: etree._Element, voucher: dict) -> list[dict]:
    """Parse inventory entries from a voucher."""
    entries = []
    seen: Counter = Counter()

    for tag in INVENTORY_ENTRY_TAGS:
        for ie in elem.findall(tag):
            item = text(ie, "STOCKITEMNAME")
            if not item:
                continue
            alloc = ie.find("BATCHALLOCATIONS.LIST")
            entries.append({
                "guid": _entry_guid(voucher["guid"], "inventory", item, seen),
                "voucher_guid": voucher["guid"],
                "voucher_number": voucher["voucher_number"],
                "voucher_type": voucher["voucher_type"],
                "date": voucher["date"],
                "item": item,
                "quantity": parse_quantity(text(ie, "ACTUALQTY") or text(ie, "BILLEDQTY")),
                "rate": parse_float((text(ie, "RATE") or "").split("/")[0]),
                "amount": parse_float(text(ie, "AMOUNT")),
                "godown": text(alloc, "GODOWNNAME") or "",
                "tracking_number": text(alloc, "TRACKINGNUMBER") or "",
                "order_number": text(alloc, "ORDERNO") or "",
            })

    return entries
