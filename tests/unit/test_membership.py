"""
Unit tests for the membership index.

Tests cover:
- Idempotent grants and role union
- Implicit owner role
- Reverse lookup of a user's realms
"""

import pytest

from marketdb.realm_core.access import MembershipIndex, RealmRegistry
from marketdb.realm_core.errors import NotFoundError, ValidationError
from marketdb.realm_core.schema import RealmType, Role


class TestMembershipIndex:
    """Tests for MembershipIndex."""

    @pytest.fixture
    def registry(self, store):
        registry = RealmRegistry(store)
        registry.create(RealmType.SHOP, "Acme", "owner")
        registry.create(RealmType.SHOP, "Beta", "owner")
        return registry

    @pytest.fixture
    def index(self, store, registry):
        return MembershipIndex(store, registry)

    def test_grant_creates_member(self, index):
        member = index.grant("shop/acme", "u1", Role.VENDOR, email="u1@x.io", name="U1")

        assert member.realm_id == "shop/acme"
        assert member.roles == ["vendor"]
        assert member.email == "u1@x.io"
        assert index.roles_of("u1", "shop/acme") == {Role.VENDOR}

    def test_grant_is_idempotent(self, index, store):
        """Granting the same role twice keeps one row with the role once."""
        index.grant("shop/acme", "u1", Role.VENDOR)
        index.grant("shop/acme", "u1", Role.VENDOR)

        rows = store.scan("members", where={"realm_id": "shop/acme", "user_id": "u1"})
        assert len(rows) == 1
        assert rows[0]["roles"] == ["vendor"]

    def test_grant_two_roles_yields_union(self, index, store):
        index.grant("shop/acme", "u1", Role.VENDOR)
        member = index.grant("shop/acme", "u1", Role.BUYER)

        assert set(member.roles) == {"vendor", "buyer"}
        assert store.count("members", where={"user_id": "u1"}) == 1
        assert index.roles_of("u1", "shop/acme") == {Role.VENDOR, Role.BUYER}

    def test_grant_owner_rejected(self, index):
        with pytest.raises(ValidationError):
            index.grant("shop/acme", "u1", Role.OWNER)

    def test_grant_in_missing_realm(self, index):
        with pytest.raises(NotFoundError):
            index.grant("shop/missing", "u1", Role.VENDOR)

    def test_roles_of_non_member(self, index):
        assert index.roles_of("u1", "shop/acme") == set()
        assert index.roles_of(None, "shop/acme") == set()

    def test_owner_holds_implicit_owner_role(self, index):
        assert index.roles_of("owner", "shop/acme") == {Role.OWNER}
        index.grant("shop/acme", "owner", Role.VENDOR)
        assert index.roles_of("owner", "shop/acme") == {Role.OWNER, Role.VENDOR}

    def test_realms_of(self, index):
        index.grant("shop/acme", "u1", Role.VENDOR)
        index.grant("shop/beta", "u1", Role.BUYER)

        assert [r.realm_id for r in index.realms_of("u1")] == ["shop/acme", "shop/beta"]
        assert [r.realm_id for r in index.realms_of("u1", Role.VENDOR)] == ["shop/acme"]
        assert index.realms_of("u2") == []

    def test_get_member(self, index):
        assert index.get_member("shop/acme", "u1") is None
        index.grant("shop/acme", "u1", Role.VENDOR)
        assert index.get_member("shop/acme", "u1").user_id == "u1"
