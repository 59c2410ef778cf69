"""
Parser for the generic TDL report output.

The report emits one flat run of ``<F01>...<Fnn>`` tags per row directly
under ``<ENVELOPE>``; a new ``<F01>`` starts the next row. Values are coerced
by the field type declared in the table definition.
"""
from __future__ import annotations
from collections import Counter
from typing import Any
from loguru import logger
from .base import (
    iter_elements,
    parse_tally_date,
    parse_float,
    parse_bool,
    parse_quantity,
    synthetic_guid,
)
from ..tables import NUMERIC_TYPES, TdlField, TdlTable

# Tally writes $$StrByCharCode:241 for empty dates
EMPTY_MARKER = "ñ"


def field_tag(index: int) -> str:
    """XML tag of the index-th (0-based) report field: F01, F02, ..."""
    return f"F{index + 1:02d}"


def coerce(value: str | None, field_type: str) -> Any:
    """Convert one raw report value to its typed form."""
    if value is not None:
        value = value.strip()
    if not value or value == EMPTY_MARKER:
        return default_for(field_type)

    if field_type == "quantity":
        return parse_quantity(value)
    if field_type == "number":
        num = parse_float(value)
        return int(num) if num.is_integer() else num
    if field_type in NUMERIC_TYPES:
        return parse_float(value)
    if field_type == "logical":
        return parse_bool(value)
    if field_type == "date":
        return parse_tally_date(value)
    return value


def default_for(field_type: str) -> Any:
    if field_type in NUMERIC_TYPES:
        return 0
    if field_type == "logical":
        return False
    if field_type == "date":
        return None
    return ""


def parse_report(xml_text: str, table: TdlTable) -> list[dict]:
    """
    Parse TDL report output for ``table`` into records.

    Missing text fields fall back to sensible defaults (unit names to
    ``Nos``, name-like fields to the record name), ``name`` defaults to
    ``Unknown`` and records without a GUID get a deterministic one.
    """
    fields = table.fields
    tags = [field_tag(i) for i in range(len(fields))]
    index_of = {tag: i for i, tag in enumerate(tags)}

    rows: list[list[str | None]] = []
    for elem in iter_elements(xml_text, tags):
        i = index_of[elem.tag]
        if i == 0 or not rows:
            rows.append([None] * len(fields))
        rows[-1][i] = elem.text

    records = []
    seen: Counter = Counter()
    for values in rows:
        try:
            record = _build_record(values, fields)
            _fill_keys(record, table, seen)
        except Exception as e:
            logger.warning(f"Skipping {table.name} row {values[:3]}: {e}")
            continue
        records.append(record)

    logger.debug(f"Parsed {len(records)} {table.name} rows from TDL report")
    return records


def _build_record(values: list[str | None], fields: tuple[TdlField, ...]) -> dict:
    record = {f.name: coerce(v, f.type) for f, v in zip(fields, values)}

    names = {f.name for f in fields}
    if "name" in names and not record["name"]:
        record["name"] = "Unknown"

    for f in fields:
        if f.type != "text" or record[f.name]:
            continue
        if "unit" in f.name or f.name == "uom":
            record[f.name] = "Nos"
        elif f.name != "name" and ("name" in f.name or "formal" in f.name):
            record[f.name] = record.get("name") or ""
    return record


def _fill_keys(record: dict, table: TdlTable, seen: Counter):
    if table.entry_kind:
        base = f"{record.get('voucher_guid', '')}-{table.entry_kind}-{record.get(table.entry_key, '')}"
        seen[base] += 1
        record["guid"] = base if seen[base] == 1 else f"{base}-{seen[base]}"
    elif not record.get("guid"):
        record["guid"] = synthetic_guid(table.name, *sorted((k, str(v)) for k, v in record.items()))
