"""
Normalization of JSON records served by the Railway proxy.

Railway rows mostly match our columns already; this trims strings, applies
the NOT NULL defaults our tables expect and drops unknown columns.
"""
from __future__ import annotations
import re
from typing import Any
from .base import parse_bool, parse_int
from ..tables import RAILWAY_TABLES, RailwayTable

CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")

# Columns that must not be NULL, with the default used when they are
NOT_NULL_DEFAULTS: dict[str, dict[str, Any]] = {
    "mst_group": {"parent": "", "primary_group": ""},
    "mst_ledger": {
        "parent": "",
        "alias": "",
        "mailing_address": "",
        "mailing_state": "",
        "mailing_country": "",
        "mailing_pincode": "",
        "email": "",
        "it_pan": "",
        "gstn": "",
        "gst_registration_type": "",
    },
    "mst_godown": {"parent": "", "address": ""},
    "mst_uom": {"additional_units": ""},
}


def clean_string(value: str) -> str:
    return CONTROL_CHARS.sub("", value.strip())


def normalize_record(record: dict, table: str | RailwayTable) -> dict:
    """
    Normalize one Railway record for insertion into ``table``.

    ``table`` is either our table name or a RailwayTable mapping; with a
    mapping, source column names are renamed and only whitelisted columns are
    kept.
    """
    mapping = table if isinstance(table, RailwayTable) else None
    table_name = mapping.table if mapping else table

    normalized = {}
    for key, value in record.items():
        if mapping:
            key = mapping.renames.get(key, key)
        normalized[key] = clean_string(value) if isinstance(value, str) else value

    for column, default in NOT_NULL_DEFAULTS.get(table_name, {}).items():
        if not normalized.get(column):
            normalized[column] = default

    if table_name == "mst_ledger":
        normalized["mailing_name"] = normalized.get("mailing_name") or normalized.get("name") or ""

    if table_name == "mst_uom":
        name = normalized.get("name")
        normalized["base_units"] = normalized.get("base_units") or name or "Nos"
        normalized["formalname"] = normalized.get("formalname") or name or ""
        conversion = normalized.get("conversion")
        if conversion is None:
            normalized["conversion"] = 1
        else:
            normalized["conversion"] = parse_int(re.sub(r"[^\d]", "", str(conversion)), default=1) or 1
        simple = normalized.get("is_simple_unit")
        normalized["is_simple_unit"] = True if simple is None else parse_bool(str(simple))

    if mapping:
        allowed = set(mapping.columns)
        normalized = {k: v for k, v in normalized.items() if k in allowed}
    return normalized


def normalize_records(records: list[dict], api_table: str) -> list[dict]:
    """Normalize a page of records fetched for a Railway API table."""
    mapping = RAILWAY_TABLES[api_table]
    return [normalize_record(r, mapping) for r in records]
