"""
Realm-tagged typed collections gated by the policy engine.

EntityStore is the only write path for Product, Store, User, CartItem and
Order rows (Realm and Member rows are written by RealmRegistry and
MembershipIndex, and the policy tables grant nobody create on them here).

Every mutation:
    1. opens (or joins) a LocalStore transaction
    2. takes the (realm_id, entity_type) lock
    3. calls PolicyEngine.authorize for the scoped realm and the target
       entity's own realm
    4. validates the record
    5. writes through LocalStore
and releases the lock only after the write, so no other writer in the same
process can slip between the check and the mutation.

Lock order is always: workflow locks, then the storage write lock, then
keyed realm and member locks.

Invariants:
    - A Deny never leaves a partial write behind
    - Unscoped get/query is only served for publicly readable types
    - realm_id and ownership fields never change through update()
    - Product.vendor_id resolves to the store of the product's realm and its
      owner holds the vendor role there
    - A shop realm keeps exactly one store

How to change safely:
    - New validation rules go in the _check_* methods, after authorization
    - Never add a write path that skips _mutating()
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import fields
from enum import Enum
from typing import Any

from ..errors import ConstraintViolation, NotFoundError, ValidationError
from ..schema import (
    ENTITY_CLASSES,
    PRODUCT_CATEGORIES,
    CartItem,
    Entity,
    EntityType,
    Order,
    Product,
    Realm,
    RealmType,
    Role,
    Store,
    User,
    UserContext,
    UserRole,
    user_id_of,
)
from ..storage import ENTITY_TABLES, LocalStore
from .locks import KeyedLocks
from .membership import MembershipIndex
from .policy import Capability, PolicyEngine
from .realms import RealmRegistry, user_realm_id

logger = logging.getLogger(__name__)


# Fields update() refuses to change, per entity type
IMMUTABLE_FIELDS: dict[EntityType, frozenset[str]] = {
    EntityType.REALM: frozenset({"realm_id", "type", "owner_user_id", "created_at"}),
    EntityType.MEMBER: frozenset({"id", "realm_id", "user_id", "roles"}),
    EntityType.USER: frozenset({"id", "realm_id"}),
    EntityType.STORE: frozenset({"id", "realm_id", "owner_user_id"}),
    EntityType.PRODUCT: frozenset({"id", "realm_id", "vendor_id", "owner_user_id", "created_at"}),
    EntityType.CART_ITEM: frozenset({"id", "realm_id", "user_id", "product_id"}),
    EntityType.ORDER: frozenset({"id", "realm_id", "user_id", "vendor_id", "created_at"}),
}

# Which realm type each entity type may live in
REALM_TYPE_OF: dict[EntityType, RealmType] = {
    EntityType.STORE: RealmType.SHOP,
    EntityType.PRODUCT: RealmType.SHOP,
    EntityType.USER: RealmType.USER,
    EntityType.CART_ITEM: RealmType.USER,
    EntityType.ORDER: RealmType.USER,
}


class EntityStore:
    """Policy-gated CRUD over the realm-partitioned tables.

    Thread safety:
        Writes are serialized per (realm_id, entity_type) with re-entrant
        locks; reads take no lock and see the latest committed state.

    Example:
        >>> entities = EntityStore(store, registry, membership, policy)
        >>> product = entities.add(vendor_ctx, "shop/acme", Product(...))
        >>> entities.update(vendor_ctx, "shop/acme", EntityType.PRODUCT, product.id, {"stock": 3})
        >>> entities.query(None, EntityType.PRODUCT, category="food")
    """

    def __init__(
        self,
        store: LocalStore,
        realms: RealmRegistry,
        membership: MembershipIndex,
        policy: PolicyEngine,
        locks: KeyedLocks | None = None,
    ) -> None:
        self._store = store
        self._realms = realms
        self._membership = membership
        self.policy = policy
        self._locks = locks or KeyedLocks()

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    @contextmanager
    def _writing(self, realm_id: str, entity_type: EntityType) -> Iterator[None]:
        """Storage transaction first, then the (realm_id, entity_type) lock."""
        with self._store.transaction(), self._locks.hold("realm", realm_id, entity_type.value):
            yield

    @contextmanager
    def _mutating(
        self,
        ctx: UserContext | None,
        realm_id: str,
        entity_type: EntityType,
        operation: Capability,
        target_realm_id: str,
    ) -> Iterator[None]:
        """Hold the write locks and authorize; the body performs the write."""
        with self._writing(realm_id, entity_type):
            self.policy.authorize_or_raise(
                user_id_of(ctx), realm_id, entity_type, operation, target_realm_id
            )
            yield

    def add(self, ctx: UserContext | None, realm_id: str, entity: Entity) -> Any:
        """Create an entity in a realm.

        Args:
            ctx: Caller, None for anonymous
            realm_id: Realm the operation is scoped to
            entity: New record; its realm_id must equal realm_id

        Returns:
            The stored entity

        Raises:
            PermissionDeniedError: If the policy denies CREATE
            ValidationError: If the record is invalid or collides with a
                unique constraint
            NotFoundError: If the scoped realm doesn't exist
        """
        entity_type = entity.ENTITY_TYPE
        table = ENTITY_TABLES[entity_type]

        with self._mutating(ctx, realm_id, entity_type, Capability.CREATE, entity.realm_id):
            self._check(entity, existing=None)
            try:
                self._store.insert(table, entity.to_row())
            except ConstraintViolation as e:
                raise ValidationError(
                    f"{entity_type.value} conflicts with an existing row: {e}",
                    errors=[str(e)],
                ) from e

        logger.debug(
            "Added entity",
            extra={"realm_id": realm_id, "entity_type": entity_type.value, "id": entity.key},
        )
        return entity

    def update(
        self,
        ctx: UserContext | None,
        realm_id: str,
        entity_type: EntityType,
        entity_id: str,
        patch: dict[str, Any],
    ) -> Any:
        """Merge patch into an entity.

        Raises:
            NotFoundError: If the entity doesn't exist
            PermissionDeniedError: If the policy denies UPDATE (including
                REALM_MISMATCH when the entity lives in another realm)
            ValidationError: If the patch touches immutable fields or the
                merged record is invalid
        """
        table = ENTITY_TABLES[entity_type]
        cls = ENTITY_CLASSES[entity_type]

        with self._writing(realm_id, entity_type):
            row = self._load(entity_type, entity_id)
            existing = cls.from_row(row)
            with self._mutating(ctx, realm_id, entity_type, Capability.UPDATE, existing.realm_id):
                forbidden = sorted(set(patch) & IMMUTABLE_FIELDS[entity_type])
                if forbidden:
                    raise ValidationError(
                        f"Cannot change {', '.join(forbidden)} of {entity_type.value}",
                        field_name=forbidden[0],
                    )
                unknown = sorted(set(patch) - {f.name for f in fields(cls)})
                if unknown:
                    raise ValidationError(
                        f"Unknown field(s) {', '.join(unknown)} for {entity_type.value}",
                        field_name=unknown[0],
                    )
                try:
                    merged = cls.from_row({**row, **_plain(patch)})
                except TypeError as e:
                    raise ValidationError(f"Invalid {entity_type.value}: {e}", errors=[str(e)]) from e
                self._check(merged, existing=existing)
                try:
                    stored = self._store.update(table, entity_id, merged.to_row())
                except ConstraintViolation as e:
                    raise ValidationError(
                        f"{entity_type.value} conflicts with an existing row: {e}",
                        errors=[str(e)],
                    ) from e

        logger.debug(
            "Updated entity",
            extra={"realm_id": realm_id, "entity_type": entity_type.value, "id": entity_id},
        )
        return cls.from_row(stored)

    def delete(
        self,
        ctx: UserContext | None,
        realm_id: str,
        entity_type: EntityType,
        entity_id: str,
    ) -> None:
        """Delete an entity.

        Raises:
            NotFoundError: If the entity doesn't exist
            PermissionDeniedError: If the policy denies DELETE
            ValidationError: If deleting would leave a shop realm without
                its store
        """
        table = ENTITY_TABLES[entity_type]
        cls = ENTITY_CLASSES[entity_type]

        with self._writing(realm_id, entity_type):
            existing = cls.from_row(self._load(entity_type, entity_id))
            with self._mutating(ctx, realm_id, entity_type, Capability.DELETE, existing.realm_id):
                if entity_type == EntityType.STORE:
                    raise ValidationError(
                        "A shop realm must keep its store; update it instead",
                        field_name="id",
                    )
                self._store.delete(table, entity_id)

        logger.debug(
            "Deleted entity",
            extra={"realm_id": realm_id, "entity_type": entity_type.value, "id": entity_id},
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, ctx: UserContext | None, entity_type: EntityType, entity_id: str) -> Any:
        """Read one entity, authorized against the realm it lives in.

        Raises:
            NotFoundError: If the entity doesn't exist
            PermissionDeniedError: If the caller may not read it
        """
        entity = ENTITY_CLASSES[entity_type].from_row(self._load(entity_type, entity_id))
        self.policy.authorize_or_raise(
            user_id_of(ctx), entity.realm_id, entity_type, Capability.READ
        )
        return entity

    def query(
        self,
        ctx: UserContext | None,
        entity_type: EntityType,
        realm_id: str | None = None,
        *,
        owner_user_id: str | None = None,
        user_id: str | None = None,
        vendor_id: str | None = None,
        category: str | None = None,
        predicate: Callable[[Any], bool] | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[Any]:
        """Query entities over indexed fields.

        Args:
            ctx: Caller, None for anonymous
            entity_type: Collection to query
            realm_id: Realm scope; required unless the type is publicly readable
            owner_user_id, user_id, vendor_id: Equality filters on indexed columns
            category: Multi-valued category membership (products)
            predicate: Extra in-memory filter applied to each entity
            limit: Maximum results
            offset: Pagination offset

        Raises:
            PermissionDeniedError: If the caller may not read the scoped realm
            ValidationError: For unscoped queries on non-public types, or a
                filter the collection doesn't index
        """
        cls = ENTITY_CLASSES[entity_type]
        where: dict[str, Any] = {}
        if realm_id is not None:
            self.policy.authorize_or_raise(user_id_of(ctx), realm_id, entity_type, Capability.READ)
            where["realm_id"] = realm_id
        elif not self._publicly_readable(entity_type):
            raise ValidationError(
                f"Queries on {entity_type.value} must be scoped to a realm",
                field_name="realm_id",
            )

        for column, value in (
            ("owner_user_id", owner_user_id),
            ("user_id", user_id),
            ("vendor_id", vendor_id),
        ):
            if value is not None:
                where[column] = value

        try:
            rows = self._store.scan(ENTITY_TABLES[entity_type], where=where, contains=category)
        except ValueError as e:
            raise ValidationError(str(e)) from e

        entities = [cls.from_row(r) for r in rows]
        if realm_id is None:
            entities = self._readable(ctx, entity_type, entities)
        if predicate is not None:
            entities = [e for e in entities if predicate(e)]
        end = offset + limit if limit is not None else None
        return entities[offset:end]

    def vendor_orders(self, ctx: UserContext | None, realm_id: str) -> list[Order]:
        """Orders placed with the store of a shop realm.

        Orders live in the buyers' private realms; this is the only read path
        that crosses them, and it is gated on Order READ in the shop realm.

        Raises:
            PermissionDeniedError: If the caller may not read orders there
            NotFoundError: If the realm has no store
        """
        self.policy.authorize_or_raise(user_id_of(ctx), realm_id, EntityType.ORDER, Capability.READ)
        store = self.store_of(realm_id)
        if store is None:
            raise NotFoundError("store", realm_id, f"No store in realm {realm_id}")
        rows = self._store.scan(ENTITY_TABLES[EntityType.ORDER], where={"vendor_id": store.id})
        return [Order.from_row(r) for r in rows]

    def _publicly_readable(self, entity_type: EntityType) -> bool:
        return any(
            etype == entity_type and Capability.READ in caps
            for (_, etype), caps in self.policy.public_access.items()
        )

    def _readable(self, ctx: UserContext | None, entity_type: EntityType, entities: list[Any]) -> list[Any]:
        allowed: dict[str, bool] = {}
        result = []
        for entity in entities:
            if entity.realm_id not in allowed:
                allowed[entity.realm_id] = bool(
                    self.policy.authorize(user_id_of(ctx), entity.realm_id, entity_type, Capability.READ)
                )
            if allowed[entity.realm_id]:
                result.append(entity)
        return result

    def _load(self, entity_type: EntityType, entity_id: str) -> dict[str, Any]:
        row = self._store.get(ENTITY_TABLES[entity_type], entity_id)
        if row is None:
            raise NotFoundError(entity_type.value, entity_id)
        return row

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _check(self, entity: Any, existing: Any | None) -> None:
        entity_type = entity.ENTITY_TYPE
        if not entity.key:
            raise ValidationError(f"{entity_type.value} id is required", field_name=entity.KEY)

        expected = REALM_TYPE_OF.get(entity_type)
        if expected is not None:
            realm = self._realms.get(entity.realm_id)
            if realm.type != expected:
                raise ValidationError(
                    f"{entity_type.value} must live in a {expected.value} realm, "
                    f"{realm.realm_id} is a {realm.type.value} realm",
                    field_name="realm_id",
                )
        else:
            realm = None

        checker = getattr(self, f"_check_{entity_type.value}", None)
        if checker is not None:
            checker(entity, realm, existing)

    def _check_realm(self, realm: Realm, _: Any, existing: Realm | None) -> None:
        if not _is_text(realm.name):
            raise ValidationError("Realm name is required", field_name="name")

    def _check_product(self, product: Product, realm: Realm, existing: Product | None) -> None:
        errors = []
        if not _is_text(product.name):
            errors.append("name is required")
        if not _is_number(product.price):
            errors.append("price must be a number")
        elif product.price < 0:
            errors.append("price must be >= 0")
        if not _is_number(product.stock) or not float(product.stock).is_integer():
            errors.append("stock must be a whole number")
        elif product.stock < 0:
            errors.append("stock must be >= 0")
        if not isinstance(product.categories, list) or not product.categories:
            errors.append("at least one category is required")
        elif any(c not in PRODUCT_CATEGORIES for c in product.categories):
            unknown = [c for c in product.categories if c not in PRODUCT_CATEGORIES]
            errors.append(f"unknown categories {unknown}; valid: {list(PRODUCT_CATEGORIES)}")
        if errors:
            raise ValidationError(f"Invalid product: {'; '.join(errors)}", errors=errors)

        if existing is not None:
            return

        vendor = self._membership.get_member(realm.realm_id, product.owner_user_id)
        if vendor is None or Role.VENDOR.value not in vendor.roles:
            raise ValidationError(
                f"Product owner {product.owner_user_id or '<none>'} is not a vendor of {realm.realm_id}",
                field_name="owner_user_id",
            )
        store = self.store_of(realm.realm_id)
        if store is None or store.id != product.vendor_id:
            raise ValidationError(
                f"vendor_id must be the store of {realm.realm_id}",
                field_name="vendor_id",
            )

    def _check_store(self, store: Store, realm: Realm, existing: Store | None) -> None:
        if not _is_text(store.name):
            raise ValidationError("Store name is required", field_name="name")
        if existing is not None:
            return
        if store.owner_user_id != realm.owner_user_id:
            raise ValidationError(
                f"Store owner must be the owner of {realm.realm_id}",
                field_name="owner_user_id",
            )
        if self.store_of(realm.realm_id) is not None:
            raise ValidationError(
                f"{realm.realm_id} already has a store",
                field_name="realm_id",
            )

    def _check_user(self, user: User, realm: Realm, existing: User | None) -> None:
        if not _is_text(user.email) or "@" not in user.email:
            raise ValidationError("A valid email is required", field_name="email")
        if not _is_text(user.name):
            raise ValidationError("Name is required", field_name="name")
        if user.realm_id != user_realm_id(user.id):
            raise ValidationError(
                f"User {user.id} must live in {user_realm_id(user.id)}",
                field_name="realm_id",
            )
        if existing is not None and user.role != existing.role:
            # The cached role may only move to what memberships say
            derived = (
                UserRole.VENDOR
                if self._membership.realms_of(user.id, Role.VENDOR)
                else UserRole.BUYER
            )
            if user.role != derived:
                raise ValidationError(
                    f"User role is derived from memberships and must be '{derived.value}'",
                    field_name="role",
                )

    def _check_cart_item(self, item: CartItem, realm: Realm, existing: CartItem | None) -> None:
        if item.user_id != realm.owner_user_id:
            raise ValidationError("Cart lines belong to the realm owner", field_name="user_id")
        if not _is_number(item.quantity) or not float(item.quantity).is_integer() or item.quantity < 1:
            raise ValidationError("quantity must be a whole number >= 1", field_name="quantity")
        if existing is None and self._store.get(ENTITY_TABLES[EntityType.PRODUCT], item.product_id) is None:
            raise NotFoundError("product", item.product_id)

    def _check_order(self, order: Order, realm: Realm, existing: Order | None) -> None:
        if order.user_id != realm.owner_user_id:
            raise ValidationError("Orders belong to the realm owner", field_name="user_id")
        if not _is_number(order.total) or order.total < 0:
            raise ValidationError("total must be a number >= 0", field_name="total")
        if not order.items:
            raise ValidationError("An order needs at least one item", field_name="items")

    def store_of(self, realm_id: str) -> Store | None:
        """The store bound to a shop realm, if any (no authorization)."""
        rows = self._store.scan(ENTITY_TABLES[EntityType.STORE], where={"realm_id": realm_id}, limit=1)
        return Store.from_row(rows[0]) if rows else None


def _plain(patch: dict[str, Any]) -> dict[str, Any]:
    return {k: (v.value if isinstance(v, Enum) else v) for k, v in patch.items()}


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def _is_text(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())
