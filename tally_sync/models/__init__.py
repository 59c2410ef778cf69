"""
Database models for tally-sync.

Holds the PostgreSQL DDL for the mirrored tables and the vt schema.
"""
from pathlib import Path

# Path to schema files
SCHEMA_FILE = Path(__file__).parent / "schema.sql"
VT_SCHEMA_FILE = Path(__file__).parent / "vt_schema.sql"
