"""
Access module for the realm core - realms, memberships, policy and gated CRUD.

This module handles:
- Realm creation and lookup (RealmRegistry)
- Role grants per realm and user (MembershipIndex)
- Allow/Deny decisions (PolicyEngine)
- Policy-gated typed collections (EntityStore)

Invariants:
    - PolicyEngine is consulted before every EntityStore mutation
    - authorize + mutate run under one (realm_id, entity_type) lock
    - Public access never grants write

How to change safely:
    - Change capabilities only in policy.py tables
    - Add tests for every new role or entity type
"""

from .entity_store import EntityStore
from .locks import KeyedLocks
from .membership import MembershipIndex
from .policy import PUBLIC_ACCESS, ROLE_CAPABILITIES, Capability, Decision, PolicyEngine
from .realms import RealmRegistry, shop_realm_id, slugify, user_realm_id

__all__ = [
    "Capability",
    "Decision",
    "EntityStore",
    "KeyedLocks",
    "MembershipIndex",
    "PUBLIC_ACCESS",
    "PolicyEngine",
    "ROLE_CAPABILITIES",
    "RealmRegistry",
    "shop_realm_id",
    "slugify",
    "user_realm_id",
]
