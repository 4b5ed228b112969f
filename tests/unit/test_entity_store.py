"""
Unit tests for the policy-gated entity store.

Tests cover:
- Authorized CRUD and denial without side effects
- Product, store and user validation
- Realm mismatch on update
- Public and scoped queries
"""

import uuid

import pytest

from marketdb.realm_core.errors import (
    DenyReason,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from marketdb.realm_core.schema import EntityType, Product, Store, UserRole

SHOP = "shop/fashion-store"


def make_product(store_id, owner, realm_id=SHOP, **overrides):
    fields = {
        "id": uuid.uuid4().hex,
        "name": "Silk Scarf",
        "price": 25.0,
        "stock": 10,
        "realm_id": realm_id,
        "vendor_id": store_id,
        "owner_user_id": owner,
        "categories": ["clothing"],
    }
    fields.update(overrides)
    return Product(**fields)


class TestEntityStore:
    """Tests for EntityStore."""

    @pytest.fixture
    def shop(self, service, ann):
        """Ann runs the Fashion Store."""
        return service.become_vendor(ann, "Fashion Store", "Clothes", "img.png")

    @pytest.fixture
    def entities(self, service):
        return service.entities

    def test_vendor_adds_product(self, entities, ann, shop):
        product = entities.add(ann, SHOP, make_product(shop.store_id, ann.user_id))

        fetched = entities.get(None, EntityType.PRODUCT, product.id)
        assert fetched.name == "Silk Scarf"
        assert fetched.vendor_id == shop.store_id

    def test_anonymous_add_denied_without_write(self, entities, store, shop):
        product = make_product(shop.store_id, "ann")

        with pytest.raises(PermissionDeniedError) as exc_info:
            entities.add(None, SHOP, product)

        assert exc_info.value.reason == DenyReason.NOT_A_MEMBER
        assert store.get("products", product.id) is None

    def test_buyer_add_denied(self, entities, bob, shop, store):
        product = make_product(shop.store_id, bob.user_id)

        with pytest.raises(PermissionDeniedError) as exc_info:
            entities.add(bob, SHOP, product)

        assert exc_info.value.reason == DenyReason.NOT_A_MEMBER
        assert store.count("products") == 0

    def test_entity_tagged_with_other_realm(self, entities, ann, shop):
        """The scoped realm must be the entity's own realm."""
        product = make_product(shop.store_id, ann.user_id)
        with pytest.raises(PermissionDeniedError) as exc_info:
            entities.add(ann, "user/ann", product)
        assert exc_info.value.reason == DenyReason.REALM_MISMATCH

    @pytest.mark.parametrize(
        "overrides",
        [
            {"price": -1.0},
            {"stock": -3},
            {"stock": 1.5},
            {"name": "  "},
            {"categories": []},
            {"categories": ["weapons"]},
            {"price": "abc"},
            {"price": None},
            {"price": True},
            {"price": float("nan")},
            {"stock": "7"},
            {"name": None},
            {"categories": "clothing"},
        ],
    )
    def test_invalid_product(self, entities, ann, shop, overrides):
        with pytest.raises(ValidationError):
            entities.add(ann, SHOP, make_product(shop.store_id, ann.user_id, **overrides))

    def test_product_owner_must_be_vendor(self, entities, ann, bob, shop):
        with pytest.raises(ValidationError) as exc_info:
            entities.add(ann, SHOP, make_product(shop.store_id, bob.user_id))
        assert exc_info.value.field_name == "owner_user_id"

    def test_product_vendor_id_must_be_realm_store(self, entities, ann, shop):
        with pytest.raises(ValidationError) as exc_info:
            entities.add(ann, SHOP, make_product("some-other-store", ann.user_id))
        assert exc_info.value.field_name == "vendor_id"

    def test_update_product(self, entities, ann, shop):
        product = entities.add(ann, SHOP, make_product(shop.store_id, ann.user_id))

        updated = entities.update(ann, SHOP, EntityType.PRODUCT, product.id, {"stock": 3, "price": 20})

        assert updated.stock == 3
        assert updated.price == 20
        assert entities.get(None, EntityType.PRODUCT, product.id).stock == 3

    def test_update_immutable_field(self, entities, ann, shop):
        product = entities.add(ann, SHOP, make_product(shop.store_id, ann.user_id))

        with pytest.raises(ValidationError) as exc_info:
            entities.update(ann, SHOP, EntityType.PRODUCT, product.id, {"realm_id": "shop/other"})
        assert exc_info.value.field_name == "realm_id"

    def test_update_unknown_field(self, entities, ann, shop):
        product = entities.add(ann, SHOP, make_product(shop.store_id, ann.user_id))

        with pytest.raises(ValidationError) as exc_info:
            entities.update(ann, SHOP, EntityType.PRODUCT, product.id, {"colour": "red"})
        assert exc_info.value.field_name == "colour"

    def test_update_negative_stock(self, entities, ann, shop):
        product = entities.add(ann, SHOP, make_product(shop.store_id, ann.user_id))

        with pytest.raises(ValidationError):
            entities.update(ann, SHOP, EntityType.PRODUCT, product.id, {"stock": -1})
        assert entities.get(ann, EntityType.PRODUCT, product.id).stock == 10

    def test_update_string_price(self, entities, ann, shop):
        product = entities.add(ann, SHOP, make_product(shop.store_id, ann.user_id))

        with pytest.raises(ValidationError) as exc_info:
            entities.update(ann, SHOP, EntityType.PRODUCT, product.id, {"price": "5"})

        assert "price must be a number" in exc_info.value.errors
        assert entities.get(None, EntityType.PRODUCT, product.id).price == 25.0

    def test_update_cart_quantity_must_be_whole_number(self, service, entities, ann, bob, shop):
        product = entities.add(ann, SHOP, make_product(shop.store_id, ann.user_id))
        line = service.cart.add_to_cart(bob, product.id)

        with pytest.raises(ValidationError) as exc_info:
            entities.update(bob, "user/bob", EntityType.CART_ITEM, line.id, {"quantity": "2"})

        assert exc_info.value.field_name == "quantity"

    def test_update_missing(self, entities, ann, shop):
        with pytest.raises(NotFoundError):
            entities.update(ann, SHOP, EntityType.PRODUCT, "missing", {"stock": 1})

    def test_delete_product(self, entities, ann, shop):
        product = entities.add(ann, SHOP, make_product(shop.store_id, ann.user_id))

        entities.delete(ann, SHOP, EntityType.PRODUCT, product.id)

        with pytest.raises(NotFoundError):
            entities.get(None, EntityType.PRODUCT, product.id)

    def test_delete_store_refused(self, entities, ann, shop, store):
        with pytest.raises(ValidationError):
            entities.delete(ann, SHOP, EntityType.STORE, shop.store_id)
        assert store.get("stores", shop.store_id) is not None

    def test_second_store_refused(self, entities, ann, shop):
        extra = Store(id="s2", name="Annex", realm_id=SHOP, owner_user_id=ann.user_id)
        with pytest.raises(ValidationError):
            entities.add(ann, SHOP, extra)

    def test_update_store(self, entities, ann, shop):
        updated = entities.update(ann, SHOP, EntityType.STORE, shop.store_id, {"description": "New"})
        assert updated.description == "New"

    def test_read_other_users_profile_denied(self, entities, ann, bob):
        with pytest.raises(PermissionDeniedError) as exc_info:
            entities.get(bob, EntityType.USER, ann.user_id)
        assert exc_info.value.reason == DenyReason.NOT_A_MEMBER

    def test_read_own_profile(self, entities, bob):
        user = entities.get(bob, EntityType.USER, bob.user_id)
        assert user.email == "bob@example.com"
        assert user.role == UserRole.BUYER

    def test_user_role_only_follows_memberships(self, entities, bob):
        with pytest.raises(ValidationError) as exc_info:
            entities.update(bob, "user/bob", EntityType.USER, bob.user_id, {"role": "vendor"})
        assert exc_info.value.field_name == "role"

    def test_user_profile_update(self, entities, bob):
        updated = entities.update(bob, "user/bob", EntityType.USER, bob.user_id, {"name": "Robert"})
        assert updated.name == "Robert"

    def test_public_query_across_shops(self, entities, ann, shop):
        entities.add(ann, SHOP, make_product(shop.store_id, ann.user_id, name="Scarf"))
        entities.add(
            ann, SHOP, make_product(shop.store_id, ann.user_id, name="Soap", categories=["beauty", "home"])
        )

        names = [p.name for p in entities.query(None, EntityType.PRODUCT)]
        assert names == ["Scarf", "Soap"]
        assert [p.name for p in entities.query(None, EntityType.PRODUCT, category="home")] == ["Soap"]
        assert [p.name for p in entities.query(None, EntityType.PRODUCT, limit=1, offset=1)] == ["Soap"]

    def test_query_with_predicate(self, entities, ann, shop):
        entities.add(ann, SHOP, make_product(shop.store_id, ann.user_id, name="Cheap", price=1.0))
        entities.add(ann, SHOP, make_product(shop.store_id, ann.user_id, name="Dear", price=99.0))

        result = entities.query(None, EntityType.PRODUCT, SHOP, predicate=lambda p: p.price > 50)
        assert [p.name for p in result] == ["Dear"]

    def test_unscoped_member_query_refused(self, entities, ann, shop):
        with pytest.raises(ValidationError) as exc_info:
            entities.query(ann, EntityType.MEMBER)
        assert exc_info.value.field_name == "realm_id"

    def test_scoped_member_query(self, entities, ann, bob, shop):
        members = entities.query(ann, EntityType.MEMBER, SHOP)
        assert [m.user_id for m in members] == ["ann"]

        with pytest.raises(PermissionDeniedError):
            entities.query(bob, EntityType.MEMBER, SHOP)

    def test_other_users_cart_denied(self, entities, ann, bob):
        with pytest.raises(PermissionDeniedError):
            entities.query(bob, EntityType.CART_ITEM, "user/ann")

    def test_unindexed_filter(self, entities, ann, shop):
        with pytest.raises(ValidationError):
            entities.query(ann, EntityType.STORE, SHOP, user_id="ann")
