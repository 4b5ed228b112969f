"""
Vendor dashboard.

Everything a vendor does with their own shop realm(s): find them, list and
add products, read order totals and edit the store. All reads and writes go
through EntityStore, so a vendor of one shop gets REALM_MISMATCH or
NOT_A_MEMBER when touching another.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any

from ..access import EntityStore, MembershipIndex
from ..errors import NotFoundError
from ..schema import EntityType, Product, Realm, Role, Store, UserContext
from .accounts import require_user

logger = logging.getLogger(__name__)


class VendorDashboard:
    """Facade over EntityStore for the vendor side of the marketplace.

    Example:
        >>> dashboard = VendorDashboard(membership, entities)
        >>> [realm] = dashboard.my_realms(ctx)
        >>> dashboard.add_product(ctx, realm.realm_id, name="Scarf", price=12.5,
        ...                       stock=4, categories=["clothing"])
        >>> dashboard.summary(ctx, realm.realm_id)["product_count"]
        1
    """

    def __init__(self, membership: MembershipIndex, entities: EntityStore) -> None:
        self._membership = membership
        self._entities = entities

    def my_realms(self, ctx: UserContext | None) -> list[Realm]:
        """Shop realms where the caller holds the vendor role."""
        ctx = require_user(ctx, EntityType.REALM, "read")
        return self._membership.realms_of(ctx.user_id, Role.VENDOR)

    def store(self, ctx: UserContext | None, realm_id: str) -> Store:
        """The store of a shop realm.

        Raises:
            NotFoundError: If the realm has no store
        """
        stores = self._entities.query(ctx, EntityType.STORE, realm_id)
        if not stores:
            raise NotFoundError("store", realm_id, f"No store in realm {realm_id}")
        return stores[0]

    def my_products(self, ctx: UserContext | None, realm_id: str) -> list[Product]:
        ctx = require_user(ctx, EntityType.PRODUCT, "read")
        return self._entities.query(ctx, EntityType.PRODUCT, realm_id)

    def add_product(
        self,
        ctx: UserContext | None,
        realm_id: str,
        *,
        name: str,
        price: float,
        stock: int,
        categories: list[str],
        description: str = "",
        image: str = "",
    ) -> Product:
        """Add a product, filling vendor_id and owner_user_id.

        Raises:
            PermissionDeniedError: If the caller isn't a vendor of realm_id
            ValidationError: If the product is invalid
        """
        ctx = require_user(ctx, EntityType.PRODUCT, "create")
        store = self.store(ctx, realm_id)
        product = Product(
            id=uuid.uuid4().hex,
            name=name,
            price=price,
            stock=stock,
            realm_id=realm_id,
            vendor_id=store.id,
            owner_user_id=ctx.user_id,
            description=description,
            image=image,
            categories=list(categories),
        )
        return self._entities.add(ctx, realm_id, product)

    def update_store(self, ctx: UserContext | None, realm_id: str, patch: dict[str, Any]) -> Store:
        ctx = require_user(ctx, EntityType.STORE, "update")
        store = self.store(ctx, realm_id)
        updated = self._entities.update(ctx, realm_id, EntityType.STORE, store.id, patch)
        logger.info("Updated store", extra={"realm_id": realm_id, "store_id": store.id})
        return updated

    def summary(self, ctx: UserContext | None, realm_id: str) -> dict[str, Any]:
        """Store, product count, order count and revenue for a shop realm.

        Raises:
            PermissionDeniedError: If the caller may not read the realm's orders
        """
        ctx = require_user(ctx, EntityType.ORDER, "read")
        store = self.store(ctx, realm_id)
        products = self._entities.query(ctx, EntityType.PRODUCT, realm_id)
        orders = self._entities.vendor_orders(ctx, realm_id)
        return {
            "store": store.to_row(),
            "product_count": len(products),
            "order_count": len(orders),
            "revenue": round(sum(o.total for o in orders), 2),
        }
