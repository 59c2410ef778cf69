"""
Parsers for Tally data.

- Masters: Groups, Ledgers, Stock Items, Voucher Types, Cost Centres, Godowns, Units
- Transactions: Vouchers with accounting and inventory entries
- TDL: generic F01..Fnn report output
- Railway: JSON records from the Railway proxy
"""

from .base import (
    sanitize_xml,
    iter_elements,
    parse_tally_date,
    format_tally_date,
    parse_float,
    parse_int,
    parse_bool,
    parse_quantity,
    synthetic_guid,
)
from .masters import (
    parse_groups,
    parse_ledgers,
    parse_stock_items,
    parse_voucher_types,
    parse_cost_centres,
    parse_godowns,
    parse_units,
)
from .transactions import parse_vouchers
from .tdl import parse_report
from .railway import normalize_record, normalize_records

__all__ = [
    # Base
    "sanitize_xml",
    "iter_elements",
    "parse_tally_date",
    "format_tally_date",
    "parse_float",
    "parse_int",
    "parse_bool",
    "parse_quantity",
    "synthetic_guid",
    # Masters
    "parse_groups",
    "parse_ledgers",
    "parse_stock_items",
    "parse_voucher_types",
    "parse_cost_centres",
    "parse_godowns",
    "parse_units",
    # Transactions
    "parse_vouchers",
    # TDL / Railway
    "parse_report",
    "normalize_record",
    "normalize_records",
]
