"""
Buyer-side cart and checkout.

Cart lines and orders live in the buyer's private realm and are written
through EntityStore like every other entity. Products are read through the
public catalogue.

Invariants:
    - One cart line per (user, product); adding again bumps its quantity
    - Checkout writes one Order per store and empties the cart in a single
      storage transaction
    - Order lines snapshot the product name and price at checkout time
"""

from __future__ import annotations

import logging
import uuid
from collections import defaultdict
from typing import Any

from ..access import EntityStore, KeyedLocks, user_realm_id
from ..errors import ValidationError
from ..schema import CartItem, EntityType, Order, Product, UserContext
from ..storage import LocalStore
from .accounts import require_user

logger = logging.getLogger(__name__)


class CartService:
    """Cart operations for the signed-in buyer.

    Example:
        >>> cart = CartService(store, entities)
        >>> cart.add_to_cart(ctx, product.id)
        >>> cart.cart_count(ctx)
        1
        >>> orders = cart.checkout(ctx)
    """

    def __init__(self, store: LocalStore, entities: EntityStore, locks: KeyedLocks | None = None) -> None:
        self._store = store
        self._entities = entities
        self._locks = locks or KeyedLocks()

    def add_to_cart(self, ctx: UserContext | None, product_id: str, quantity: int = 1) -> CartItem:
        """Add a product to the cart, or bump the quantity of its line.

        Raises:
            NotFoundError: If the product doesn't exist
            ValidationError: If quantity < 1 or exceeds the product's stock
        """
        ctx = require_user(ctx, EntityType.CART_ITEM, "create")
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 1:
            raise ValidationError("quantity must be a whole number >= 1", field_name="quantity")
        realm_id = user_realm_id(ctx.user_id)

        with self._locks.hold("cart", ctx.user_id):
            product: Product = self._entities.get(ctx, EntityType.PRODUCT, product_id)
            line = self._line_for(ctx, realm_id, product_id)
            wanted = quantity + (line.quantity if line else 0)
            if wanted > product.stock:
                raise ValidationError(
                    f"Only {product.stock} of {product.name} in stock",
                    field_name="quantity",
                )

            if line is not None:
                return self._entities.update(
                    ctx, realm_id, EntityType.CART_ITEM, line.id, {"quantity": wanted}
                )
            return self._entities.add(
                ctx,
                realm_id,
                CartItem(
                    id=uuid.uuid4().hex,
                    realm_id=realm_id,
                    user_id=ctx.user_id,
                    product_id=product_id,
                    quantity=quantity,
                ),
            )

    def list_cart(self, ctx: UserContext | None) -> list[CartItem]:
        ctx = require_user(ctx, EntityType.CART_ITEM, "read")
        return self._entities.query(
            ctx, EntityType.CART_ITEM, user_realm_id(ctx.user_id), user_id=ctx.user_id
        )

    def cart_count(self, ctx: UserContext | None) -> int:
        """Total quantity across cart lines (0 for anonymous callers)."""
        if ctx is None:
            return 0
        return sum(item.quantity for item in self.list_cart(ctx))

    def remove_from_cart(self, ctx: UserContext | None, item_id: str) -> None:
        ctx = require_user(ctx, EntityType.CART_ITEM, "delete")
        with self._locks.hold("cart", ctx.user_id):
            self._entities.delete(ctx, user_realm_id(ctx.user_id), EntityType.CART_ITEM, item_id)

    def checkout(self, ctx: UserContext | None) -> list[Order]:
        """Turn the cart into one Order per store.

        Returns:
            The placed orders

        Raises:
            ValidationError: If the cart is empty or a line exceeds stock
            NotFoundError: If a product in the cart no longer exists
        """
        ctx = require_user(ctx, EntityType.ORDER, "create")
        realm_id = user_realm_id(ctx.user_id)

        with self._locks.hold("cart", ctx.user_id):
            lines = self.list_cart(ctx)
            if not lines:
                raise ValidationError("Cart is empty", field_name="cart")

            by_vendor: dict[str, list[dict[str, Any]]] = defaultdict(list)
            for line in lines:
                product: Product = self._entities.get(ctx, EntityType.PRODUCT, line.product_id)
                if line.quantity > product.stock:
                    raise ValidationError(
                        f"Only {product.stock} of {product.name} in stock",
                        field_name="quantity",
                        errors=[line.product_id],
                    )
                by_vendor[product.vendor_id].append(
                    {
                        "product_id": product.id,
                        "name": product.name,
                        "price": product.price,
                        "quantity": line.quantity,
                    }
                )

            orders = []
            with self._store.transaction():
                for vendor_id, items in by_vendor.items():
                    order = Order(
                        id=uuid.uuid4().hex,
                        realm_id=realm_id,
                        user_id=ctx.user_id,
                        vendor_id=vendor_id,
                        items=items,
                        total=round(sum(i["price"] * i["quantity"] for i in items), 2),
                    )
                    orders.append(self._entities.add(ctx, realm_id, order))
                for line in lines:
                    self._entities.delete(ctx, realm_id, EntityType.CART_ITEM, line.id)

        logger.info(
            "Checked out cart",
            extra={"user_id": ctx.user_id, "orders": len(orders), "lines": len(lines)},
        )
        return orders

    def _line_for(self, ctx: UserContext, realm_id: str, product_id: str) -> CartItem | None:
        lines = self._entities.query(
            ctx,
            EntityType.CART_ITEM,
            realm_id,
            user_id=ctx.user_id,
            predicate=lambda item: item.product_id == product_id,
        )
        return lines[0] if lines else None
