"""
Storage module for the realm core - the local replica.

This module handles:
- Table definitions (key, indexed columns, unique constraints, multi-valued index)
- SQLite table primitives and transactions

Invariants:
    - Only access/ modules write rows; workflows open transactions and the
      user directory reads the users table for identity lookups
    - Multi-row changes that must not be observed half done use transaction()
"""

from .local_store import LocalStore
from .tables import ENTITY_TABLES, TABLES, TableDef

__all__ = [
    "ENTITY_TABLES",
    "LocalStore",
    "TABLES",
    "TableDef",
]
