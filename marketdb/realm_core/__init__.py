"""
MarketDB realm core - realm-partitioned data and access control for a marketplace.

Buyers and vendors share the same mutable tables (products, stores, carts,
orders). Every row belongs to a realm; every mutation is authorized against
the roles the caller holds in that realm.

Architecture:
    ┌──────────────┐     ┌────────────────┐     ┌──────────────┐
    │ HTTP API /   │────▶│  RealmService  │────▶│ Onboarding / │
    │ admin CLI    │     │   (facade)     │     │ Cart / Vendor│
    └──────────────┘     └───────┬────────┘     └──────┬───────┘
                                 │                     │
                                 ▼                     ▼
                        ┌──────────────────────────────────────┐
                        │             EntityStore              │
                        │  (authorize + mutate under a lock)   │
                        └──────┬────────────────────────┬──────┘
                               │                        │
                               ▼                        ▼
                        ┌─────────────┐     ┌──────────────────────┐
                        │ PolicyEngine│────▶│ RealmRegistry /      │
                        │             │     │ MembershipIndex      │
                        └─────────────┘     └──────────┬───────────┘
                                                       ▼
                                              ┌─────────────────┐
                                              │ LocalStore      │
                                              │ (SQLite replica)│
                                              └─────────────────┘

Invariants:
    - Every mutation names the user context and the realm it is scoped to
    - Only EntityStore, RealmRegistry and MembershipIndex touch LocalStore
    - Public access grants read and nothing else
    - A shop realm is never observable without its store

How to change safely:
    - Extend the capability tables in access/policy.py, never bypass them
    - Add entity types in schema/types.py together with their table definition
"""

from ._version import __version__

__all__ = ["__version__"]
