"""
Core type definitions for the realm-partitioned marketplace data model.

This module defines:
- RealmType, Role, UserRole: closed vocabularies used by the policy tables
- EntityType: the typed collections managed by EntityStore
- Realm, Member, User, Store, Product, CartItem, Order: the records themselves

Invariants:
    - realm_id is globally unique and a realm's type never changes
    - At most one Member row per (realm_id, user_id); roles accumulate in it
    - User.role is a cached projection of Member.roles, never the source of truth
    - Exactly one Store per shop realm
    - Product price and stock are never negative

How to change safely:
    - Add new entity types together with a table definition in storage/tables.py
    - Add capabilities for the new type in access/policy.py
    - Never rename enum values; they are persisted
"""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from typing import Any, ClassVar


def now_ms() -> int:
    """Current time as Unix milliseconds."""
    return int(time.time() * 1000)


class RealmType(Enum):
    """Kinds of realm.

    A user realm is a buyer's private space (profile, cart, orders).
    A shop realm is a vendor's store and catalogue.
    """

    USER = "user"
    SHOP = "shop"


class Role(Enum):
    """Roles a user can hold inside one realm.

    OWNER is never stored in a Member row; it is implied by Realm.owner_user_id.
    """

    BUYER = "buyer"
    VENDOR = "vendor"
    OWNER = "owner"


class UserRole(Enum):
    """Cached marketplace role shown on the User row."""

    BUYER = "buyer"
    VENDOR = "vendor"
    UNREGISTERED = "unregistered"


class EntityType(Enum):
    """Typed collections stored per realm."""

    PRODUCT = "product"
    STORE = "store"
    MEMBER = "member"
    REALM = "realm"
    USER = "user"
    CART_ITEM = "cart_item"
    ORDER = "order"

    @classmethod
    def from_str(cls, value: str) -> EntityType:
        """Convert a string to an EntityType.

        Raises:
            ValueError: If value is not a known entity type
        """
        for kind in cls:
            if kind.value == value:
                return kind
        valid = [k.value for k in cls]
        raise ValueError(f"Invalid entity type '{value}'. Valid types: {valid}")


PRODUCT_CATEGORIES: tuple[str, ...] = (
    "electronics",
    "clothing",
    "food",
    "home",
    "beauty",
    "other",
)


class Entity:
    """Mixin giving records a uniform row representation.

    Subclasses are dataclasses and set ENTITY_TYPE and KEY.
    """

    ENTITY_TYPE: ClassVar[EntityType]
    KEY: ClassVar[str] = "id"

    @property
    def key(self) -> str:
        return getattr(self, self.KEY)

    def to_row(self) -> dict[str, Any]:
        """Convert to a JSON-compatible dictionary for storage."""
        row = asdict(self)
        for name, value in row.items():
            if isinstance(value, Enum):
                row[name] = value.value
        return row

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Any:
        """Create from a stored dictionary, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in row.items() if k in known})


@dataclass
class Realm(Entity):
    """A named partition of the shared tables.

    Attributes:
        realm_id: Globally unique id ("shop/<slug>" or "user/<user_id>")
        type: Realm kind, immutable once set
        name: Display name
        owner_user_id: User who created the realm
        created_at: Creation timestamp (Unix ms)
    """

    ENTITY_TYPE: ClassVar[EntityType] = EntityType.REALM
    KEY: ClassVar[str] = "realm_id"

    realm_id: str
    type: RealmType
    name: str
    owner_user_id: str
    created_at: int = field(default_factory=now_ms)

    def __post_init__(self) -> None:
        if isinstance(self.type, str):
            self.type = RealmType(self.type)


@dataclass
class Member(Entity):
    """Roles one user holds in one realm."""

    ENTITY_TYPE: ClassVar[EntityType] = EntityType.MEMBER

    id: str
    realm_id: str
    user_id: str
    roles: list[str] = field(default_factory=list)
    email: str = ""
    name: str = ""
    accepted_at: int = field(default_factory=now_ms)

    @property
    def role_set(self) -> set[Role]:
        return {Role(r) for r in self.roles}


@dataclass
class User(Entity):
    """A marketplace user.

    realm_id is the user's private realm; the row lives there.
    """

    ENTITY_TYPE: ClassVar[EntityType] = EntityType.USER

    id: str
    email: str
    name: str
    role: UserRole = UserRole.BUYER
    realm_id: str = ""

    def __post_init__(self) -> None:
        if isinstance(self.role, str):
            self.role = UserRole(self.role)


@dataclass
class Store(Entity):
    """The storefront bound 1:1 to a shop realm."""

    ENTITY_TYPE: ClassVar[EntityType] = EntityType.STORE

    id: str
    name: str
    realm_id: str
    owner_user_id: str
    description: str = ""
    image: str = ""


@dataclass
class Product(Entity):
    """A catalogue entry in a shop realm.

    Attributes:
        vendor_id: Id of the Store owned by the same realm
        categories: One or more entries of PRODUCT_CATEGORIES
    """

    ENTITY_TYPE: ClassVar[EntityType] = EntityType.PRODUCT

    id: str
    name: str
    price: float
    stock: int
    realm_id: str
    vendor_id: str = ""
    owner_user_id: str = ""
    description: str = ""
    image: str = ""
    categories: list[str] = field(default_factory=list)
    created_at: int = field(default_factory=now_ms)


@dataclass
class CartItem(Entity):
    """One cart line in a buyer's private realm."""

    ENTITY_TYPE: ClassVar[EntityType] = EntityType.CART_ITEM

    id: str
    realm_id: str
    user_id: str
    product_id: str
    quantity: int = 1


@dataclass
class Order(Entity):
    """A placed order, kept in the buyer's private realm.

    items holds snapshots: {"product_id", "name", "price", "quantity"}.
    """

    ENTITY_TYPE: ClassVar[EntityType] = EntityType.ORDER

    id: str
    realm_id: str
    user_id: str
    vendor_id: str
    items: list[dict[str, Any]] = field(default_factory=list)
    total: float = 0.0
    status: str = "placed"
    created_at: int = field(default_factory=now_ms)


ENTITY_CLASSES: dict[EntityType, type] = {
    EntityType.REALM: Realm,
    EntityType.MEMBER: Member,
    EntityType.USER: User,
    EntityType.STORE: Store,
    EntityType.PRODUCT: Product,
    EntityType.CART_ITEM: CartItem,
    EntityType.ORDER: Order,
}


@dataclass(frozen=True)
class UserContext:
    """Identity of the caller, threaded explicitly through every call.

    Supplied by the identity collaborator after it has authenticated the
    user; the core never sees credentials. Anonymous callers pass None.
    """

    user_id: str
    email: str = ""
    name: str = ""
    role: UserRole = UserRole.BUYER


def user_id_of(ctx: UserContext | None) -> str | None:
    return ctx.user_id if ctx is not None else None
