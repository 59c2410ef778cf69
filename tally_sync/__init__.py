"""
tally-sync - Tally data synchronization into Postgres/Supabase.

Fetches master and transaction data from TallyPrime (HTTP XML or the Railway
JSON proxy), parses and normalizes it, upserts it per tenant and reconciles
the vt schema.

Key Features:
- Full and incremental sync modes
- Masters: Groups, Ledgers, Stock Items, Units, Godowns, Cost Centres, Voucher Types
- Transactions: Vouchers with accounting and inventory entries
- Direct Postgres or Edge Function sinks with chunked, retried imports
- Reconciliation and health scoring of the vt schema

Usage:
    # Incremental sync (default)
    python -m tally_sync

    # Full sync
    python -m tally_sync --mode full

    # Sync specific masters
    python -m tally_sync --mode masters --entities ledgers stock_items
"""

__version__ = "1.0.0"

from .config import SyncConfig
from .sync import TallySync, run_sync

__all__ = ["SyncConfig", "TallySync", "run_sync", "__version__"]
