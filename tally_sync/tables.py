"""
Table definitions for the mirrored Tally tables.

- TABLE_COLUMNS: data columns of every mirrored table (tenant columns excluded)
- TDL_TABLES: TDL report definitions used by the generic report request
- RAILWAY_TABLES: how Railway proxy tables map onto ours
"""
from __future__ import annotations
import re
from dataclasses import dataclass, field
from typing import Optional

TENANT_COLUMNS = ("company_id", "division_id")
CONFLICT_KEY = ("guid", "company_id", "division_id")

TABLE_COLUMNS: dict[str, tuple[str, ...]] = {
    "mst_group": (
        "guid", "alter_id", "name", "parent", "primary_group", "is_revenue",
        "is_deemed_positive", "is_reserved", "affects_gross_profit", "sort_position",
    ),
    "mst_ledger": (
        "guid", "alter_id", "name", "parent", "alias", "mailing_name", "mailing_address",
        "mailing_state", "mailing_country", "mailing_pincode", "email", "it_pan", "gstn",
        "gst_registration_type", "opening_balance", "closing_balance", "is_revenue",
        "is_deemed_positive", "bill_credit_period", "credit_limit",
    ),
    "mst_stock_item": (
        "guid", "alter_id", "name", "parent", "category", "alias", "uom",
        "opening_balance", "opening_rate", "opening_value", "closing_balance",
        "closing_rate", "closing_value", "gst_hsn_code",
    ),
    "mst_vouchertype": (
        "guid", "alter_id", "name", "parent", "numbering_method", "is_deemed_positive",
        "affects_stock",
    ),
    "mst_cost_centre": ("guid", "alter_id", "name", "parent", "category"),
    "mst_godown": ("guid", "alter_id", "name", "parent", "address"),
    "mst_uom": (
        "guid", "alter_id", "name", "formalname", "is_simple_unit", "base_units",
        "additional_units", "conversion",
    ),
    "trn_voucher": (
        "guid", "alter_id", "voucher_type", "voucher_number", "reference_number", "date",
        "reference_date", "party_name", "place_of_supply", "narration", "total_amount",
        "final_amount", "is_invoice", "is_accounting_voucher", "is_inventory_voucher",
        "is_order_voucher", "is_cancelled", "is_optional",
    ),
    "trn_accounting": (
        "guid", "voucher_guid", "voucher_number", "voucher_type", "date", "ledger",
        "amount", "is_party_ledger", "is_deemed_positive", "gst_class",
    ),
    "trn_inventory": (
        "guid", "voucher_guid", "voucher_number", "voucher_type", "date", "item",
        "quantity", "rate", "amount", "godown", "tracking_number", "order_number",
    ),
}

MASTER_TABLES = (
    "mst_group",
    "mst_ledger",
    "mst_vouchertype",
    "mst_uom",
    "mst_godown",
    "mst_cost_centre",
    "mst_stock_item",
)
TRANSACTION_TABLES = ("trn_voucher", "trn_accounting", "trn_inventory")

FIELD_TYPES = ("text", "logical", "date", "number", "amount", "quantity", "rate")
NUMERIC_TYPES = ("number", "amount", "quantity", "rate")

# Plain method names ($Name, $..Guid) get a type-specific formula; anything
# else is already a formula
SIMPLE_FIELD = re.compile(r"^(\.\.)?[a-zA-Z0-9_]+$")


@dataclass(frozen=True)
class TdlField:
    """One output column of a TDL report: column name, TDL expression and type."""

    name: str
    expr: str
    type: str = "text"

    def __post_init__(self):
        if self.type not in FIELD_TYPES:
            raise ValueError(f"Unknown field type {self.type!r} for {self.name}")

    @property
    def expression(self) -> str:
        """TDL <SET> formula producing this field's value in report output."""
        if not SIMPLE_FIELD.match(self.expr):
            return self.expr

        ref = f"${self.expr}"
        if self.type == "logical":
            return f"if {ref} then 1 else 0"
        if self.type == "date":
            return f'if $$IsEmpty:{ref} then $$StrByCharCode:241 else $$PyrlYYYYMMDDFormat:{ref}:"-"'
        if self.type == "number":
            return f'if $$IsEmpty:{ref} then "0" else $$String:{ref}'
        if self.type == "amount":
            return (
                f"$$StringFindAndReplace:(if $$IsDebit:{ref} then -$$NumValue:{ref} "
                f'else $$NumValue:{ref}):"(-)":"-"'
            )
        if self.type == "quantity":
            return (
                f'$$StringFindAndReplace:(if $$IsInwards:{ref} then $$Number:$$String:{ref}:"TailUnits" '
                f'else -$$Number:$$String:{ref}:"TailUnits"):"(-)":"-"'
            )
        if self.type == "rate":
            return f"if $$IsEmpty:{ref} then 0 else $$Number:{ref}"
        return ref


@dataclass(frozen=True)
class TdlTable:
    """
    A table exported through the generic TDL report.

    ``collection`` may walk into sub-collections with dots, e.g.
    ``Voucher.AllLedgerEntries``; each hop becomes one nested PART/LINE.
    ``entry_kind`` marks voucher entry tables whose GUIDs derive from the
    parent voucher GUID.
    """

    name: str
    collection: str
    fields: tuple[TdlField, ...]
    fetch: tuple[str, ...] = ()
    filters: tuple[str, ...] = ()
    entry_kind: Optional[str] = None
    entry_key: Optional[str] = None

    @property
    def routes(self) -> list[str]:
        return ["MyCollection"] + self.collection.split(".")[1:]

    @property
    def collection_type(self) -> str:
        return self.collection.split(".")[0]

    @property
    def is_transaction(self) -> bool:
        return self.name.startswith("trn_")


def _f(name: str, expr: str, type: str = "text") -> TdlField:
    return TdlField(name, expr, type)


TDL_TABLES: dict[str, TdlTable] = {
    "mst_group": TdlTable(
        name="mst_group",
        collection="Group",
        fields=(
            _f("guid", "Guid"),
            _f("alter_id", "AlterId", "number"),
            _f("name", "Name"),
            _f("parent", 'if $$IsEqual:$Parent:$$SysName:Primary then "" else $Parent'),
            _f("primary_group", "_PrimaryGroup"),
            _f("is_revenue", "IsRevenue", "logical"),
            _f("is_deemed_positive", "IsDeemedPositive", "logical"),
            _f("is_reserved", "if $$IsSysName:$Name then 1 else 0", "logical"),
            _f("affects_gross_profit", "AffectsGrossProfit", "logical"),
            _f("sort_position", "SortPosition", "number"),
        ),
    ),
    "mst_ledger": TdlTable(
        name="mst_ledger",
        collection="Ledger",
        fields=(
            _f("guid", "Guid"),
            _f("alter_id", "AlterId", "number"),
            _f("name", "Name"),
            _f("parent", 'if $$IsEqual:$Parent:$$SysName:Primary then "" else $Parent'),
            _f("alias", "OnlyAlias"),
            _f("mailing_name", "MailingName"),
            _f("mailing_state", "LedStateName"),
            _f("mailing_country", "CountryName"),
            _f("mailing_pincode", "PinCode"),
            _f("email", "Email"),
            _f("it_pan", "IncomeTaxNumber"),
            _f("gstn", "PartyGSTIN"),
            _f("gst_registration_type", "GSTRegistrationType"),
            _f("opening_balance", "OpeningBalance", "amount"),
            _f("closing_balance", "ClosingBalance", "amount"),
            _f("is_revenue", "IsRevenue", "logical"),
            _f("is_deemed_positive", "IsDeemedPositive", "logical"),
            _f("bill_credit_period", "BillCreditPeriod", "number"),
            _f("credit_limit", "CreditLimit", "amount"),
        ),
        fetch=("MailingName", "LedStateName", "CountryName", "PinCode", "Email"),
    ),
    "mst_vouchertype": TdlTable(
        name="mst_vouchertype",
        collection="VoucherType",
        fields=(
            _f("guid", "Guid"),
            _f("alter_id", "AlterId", "number"),
            _f("name", "Name"),
            _f("parent", "Parent"),
            _f("numbering_method", "NumberingMethod"),
            _f("is_deemed_positive", "IsDeemedPositive", "logical"),
            _f("affects_stock", "AffectsStock", "logical"),
        ),
    ),
    "mst_uom": TdlTable(
        name="mst_uom",
        collection="Unit",
        fields=(
            _f("guid", "Guid"),
            _f("alter_id", "AlterId", "number"),
            _f("name", "Name"),
            _f("formalname", "OriginalName"),
            _f("is_simple_unit", "IsSimpleUnit", "logical"),
            _f("base_units", "BaseUnits"),
            _f("additional_units", "AdditionalUnits"),
            _f("conversion", "Conversion", "number"),
        ),
    ),
    "mst_godown": TdlTable(
        name="mst_godown",
        collection="Godown",
        fields=(
            _f("guid", "Guid"),
            _f("alter_id", "AlterId", "number"),
            _f("name", "Name"),
            _f("parent", 'if $$IsEqual:$Parent:$$SysName:Primary then "" else $Parent'),
        ),
    ),
    "mst_cost_centre": TdlTable(
        name="mst_cost_centre",
        collection="CostCentre",
        fields=(
            _f("guid", "Guid"),
            _f("alter_id", "AlterId", "number"),
            _f("name", "Name"),
            _f("parent", 'if $$IsEqual:$Parent:$$SysName:Primary then "" else $Parent'),
            _f("category", "Category"),
        ),
    ),
    "mst_stock_item": TdlTable(
        name="mst_stock_item",
        collection="StockItem",
        fields=(
            _f("guid", "Guid"),
            _f("alter_id", "AlterId", "number"),
            _f("name", "Name"),
            _f("parent", 'if $$IsEqual:$Parent:$$SysName:Primary then "" else $Parent'),
            _f("category", "Category"),
            _f("alias", "OnlyAlias"),
            _f("uom", "BaseUnits"),
            _f("opening_balance", "OpeningBalance", "quantity"),
            _f("opening_rate", "OpeningRate", "rate"),
            _f("opening_value", "OpeningValue", "amount"),
            _f("closing_balance", "ClosingBalance", "quantity"),
            _f("closing_rate", "ClosingRate", "rate"),
            _f("closing_value", "ClosingValue", "amount"),
        ),
    ),
    "trn_voucher": TdlTable(
        name="trn_voucher",
        collection="Voucher",
        fields=(
            _f("guid", "Guid"),
            _f("alter_id", "AlterId", "number"),
            _f("date", "Date", "date"),
            _f("voucher_type", "VoucherTypeName"),
            _f("voucher_number", "VoucherNumber"),
            _f("reference_number", "Reference"),
            _f("reference_date", "ReferenceDate", "date"),
            _f("narration", "Narration"),
            _f("party_name", "PartyLedgerName"),
            _f("place_of_supply", "PlaceOfSupply"),
            _f("is_invoice", "IsInvoice", "logical"),
            _f("is_accounting_voucher", "IsAccountingVoucher", "logical"),
            _f("is_inventory_voucher", "IsInventoryVoucher", "logical"),
            _f("is_order_voucher", "IsOrderVoucher", "logical"),
        ),
        fetch=("PartyLedgerName", "Narration", "Reference"),
        filters=("NOT $IsCancelled", "NOT $IsOptional"),
    ),
    "trn_accounting": TdlTable(
        name="trn_accounting",
        collection="Voucher.AllLedgerEntries",
        fields=(
            _f("voucher_guid", "..Guid"),
            _f("voucher_number", "..VoucherNumber"),
            _f("voucher_type", "..VoucherTypeName"),
            _f("date", "..Date", "date"),
            _f("ledger", "LedgerName"),
            _f("amount", "Amount", "amount"),
            _f("is_party_ledger", "IsPartyLedger", "logical"),
            _f("is_deemed_positive", "IsDeemedPositive", "logical"),
        ),
        fetch=("AllLedgerEntries",),
        filters=("NOT $IsCancelled", "NOT $IsOptional"),
        entry_kind="ledger",
        entry_key="ledger",
    ),
    "trn_inventory": TdlTable(
        name="trn_inventory",
        collection="Voucher.AllInventoryEntries",
        fields=(
            _f("voucher_guid", "..Guid"),
            _f("voucher_number", "..VoucherNumber"),
            _f("voucher_type", "..VoucherTypeName"),
            _f("date", "..Date", "date"),
            _f("item", "StockItemName"),
            _f("quantity", "BilledQty", "quantity"),
            _f("rate", "Rate", "rate"),
            _f("amount", "Amount", "amount"),
        ),
        fetch=("AllInventoryEntries",),
        filters=("NOT $IsCancelled", "NOT $IsOptional"),
        entry_kind="inventory",
        entry_key="item",
    ),
}


@dataclass(frozen=True)
class RailwayTable:
    """A table served by the Railway proxy and the local table it lands in."""

    api_table: str
    table: str
    key: str = "guid"
    renames: dict[str, str] = field(default_factory=dict)

    @property
    def columns(self) -> tuple[str, ...]:
        return TABLE_COLUMNS[self.table] + TENANT_COLUMNS


_COMMON_RENAMES = {"alterid": "alter_id", "is_deemedpositive": "is_deemed_positive"}

RAILWAY_TABLES: dict[str, RailwayTable] = {
    t.api_table: t
    for t in (
        RailwayTable("groups", "mst_group", renames=_COMMON_RENAMES),
        RailwayTable("ledgers", "mst_ledger", renames=_COMMON_RENAMES),
        RailwayTable("stock_items", "mst_stock_item", renames=_COMMON_RENAMES),
        RailwayTable("voucher_types", "mst_vouchertype", renames=_COMMON_RENAMES),
        RailwayTable("cost_centers", "mst_cost_centre", renames=_COMMON_RENAMES),
        RailwayTable("godowns", "mst_godown", renames=_COMMON_RENAMES),
        RailwayTable("uoms", "mst_uom", renames=_COMMON_RENAMES),
        RailwayTable(
            "vouchers",
            "trn_voucher",
            renames={
                **_COMMON_RENAMES,
                "party_ledger_name": "party_name",
                "reference": "reference_number",
            },
        ),
        RailwayTable(
            "accounting_entries",
            "trn_accounting",
            renames={**_COMMON_RENAMES, "voucher_date": "date"},
        ),
        RailwayTable(
            "inventory_entries",
            "trn_inventory",
            renames={**_COMMON_RENAMES, "voucher_date": "date"},
        ),
    )
}


def get_tdl_table(name: str) -> TdlTable:
    if name not in TDL_TABLES:
        raise ValueError(f"Unknown table: {name}. Valid: {list(TDL_TABLES.keys())}")
    return TDL_TABLES[name]
