"""
Unit tests for realm naming and the realm registry.

Tests cover:
- Slug derivation
- Realm creation and lookup
- Collision policies (reject, suffix)
"""

import pytest

from marketdb.realm_core.access import RealmRegistry, shop_realm_id, slugify, user_realm_id
from marketdb.realm_core.config import RealmConfig, SlugCollisionPolicy
from marketdb.realm_core.errors import DuplicateRealmError, NotFoundError, ValidationError
from marketdb.realm_core.schema import RealmType


class TestSlugify:
    """Tests for slug derivation."""

    def test_simple_name(self):
        assert slugify("Fashion Store") == "fashion-store"

    def test_collapses_punctuation(self):
        assert slugify("  Tom's   Tools & Co. ") == "tom-s-tools-co"

    def test_non_ascii_dropped(self):
        assert slugify("Café Crème") == "caf-cr-me"

    def test_truncates_without_trailing_dash(self):
        assert slugify("abc def", max_length=4) == "abc"

    def test_shop_realm_id(self):
        assert shop_realm_id("Grocery Market") == "shop/grocery-market"

    def test_shop_realm_id_empty_slug(self):
        with pytest.raises(ValidationError) as exc_info:
            shop_realm_id("!!!")
        assert exc_info.value.field_name == "name"

    def test_user_realm_id(self):
        assert user_realm_id("u1") == "user/u1"


class TestRealmRegistry:
    """Tests for RealmRegistry."""

    @pytest.fixture
    def registry(self, store):
        return RealmRegistry(store)

    def test_create_shop_realm(self, registry):
        realm = registry.create(RealmType.SHOP, "Fashion Store", "u1")

        assert realm.realm_id == "shop/fashion-store"
        assert realm.type == RealmType.SHOP
        assert realm.owner_user_id == "u1"
        assert registry.get("shop/fashion-store") == realm

    def test_create_user_realm(self, registry):
        realm = registry.create(RealmType.USER, "Ann", "ann")
        assert realm.realm_id == "user/ann"
        assert realm.type == RealmType.USER

    def test_get_missing(self, registry):
        with pytest.raises(NotFoundError) as exc_info:
            registry.get("shop/missing")
        assert exc_info.value.resource_type == "realm"
        assert registry.find("shop/missing") is None
        assert registry.exists("shop/missing") is False

    def test_duplicate_rejected(self, registry):
        """The default policy rejects a taken slug and keeps the original."""
        registry.create(RealmType.SHOP, "Fashion Store", "u1")

        with pytest.raises(DuplicateRealmError) as exc_info:
            registry.create(RealmType.SHOP, "fashion  store!", "u2")

        assert exc_info.value.realm_id == "shop/fashion-store"
        assert registry.get("shop/fashion-store").owner_user_id == "u1"

    def test_duplicate_suffixed(self, store):
        registry = RealmRegistry(store, RealmConfig(slug_collision=SlugCollisionPolicy.SUFFIX))

        first = registry.create(RealmType.SHOP, "Fashion Store", "u1")
        second = registry.create(RealmType.SHOP, "Fashion Store", "u2")
        third = registry.create(RealmType.SHOP, "Fashion Store", "u3")

        assert first.realm_id == "shop/fashion-store"
        assert second.realm_id == "shop/fashion-store-2"
        assert third.realm_id == "shop/fashion-store-3"
        assert registry.get("shop/fashion-store").owner_user_id == "u1"

    def test_owner_and_name_required(self, registry):
        with pytest.raises(ValidationError):
            registry.create(RealmType.SHOP, "Acme", "")
        with pytest.raises(ValidationError):
            registry.create(RealmType.SHOP, "   ", "u1")

    def test_list_by_owner(self, registry):
        registry.create(RealmType.SHOP, "Acme", "u1")
        registry.create(RealmType.SHOP, "Beta", "u2")
        registry.create(RealmType.USER, "Ann", "u1")

        ids = [r.realm_id for r in registry.list_by_owner("u1")]
        assert ids == ["shop/acme", "user/u1"]
