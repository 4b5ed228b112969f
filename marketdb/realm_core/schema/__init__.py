"""
Schema module for the realm core - record types and vocabularies.

Invariants:
    - Enum values are persisted and never renamed
    - Every EntityType has exactly one record class in ENTITY_CLASSES
"""

from .types import (
    ENTITY_CLASSES,
    PRODUCT_CATEGORIES,
    CartItem,
    Entity,
    EntityType,
    Member,
    Order,
    Product,
    Realm,
    RealmType,
    Role,
    Store,
    User,
    UserContext,
    UserRole,
    now_ms,
    user_id_of,
)

__all__ = [
    "ENTITY_CLASSES",
    "PRODUCT_CATEGORIES",
    "CartItem",
    "Entity",
    "EntityType",
    "Member",
    "Order",
    "Product",
    "Realm",
    "RealmType",
    "Role",
    "Store",
    "User",
    "UserContext",
    "UserRole",
    "now_ms",
    "user_id_of",
]
