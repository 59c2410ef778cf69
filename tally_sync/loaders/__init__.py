"""
Database loaders for Tally data.

- DatabaseLoader: connection management and bookkeeping
- BulkLoader: chunked replace/upsert/append and change-detected upserts
- Reconciler: backup/vt reconciliation and validation
"""

from .base import DatabaseLoader, get_connection
from .bulk import BulkLoader
from .reconcile import Reconciler

__all__ = [
    "DatabaseLoader",
    "get_connection",
    "BulkLoader",
    "Reconciler",
]
