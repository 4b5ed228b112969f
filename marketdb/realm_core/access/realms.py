"""
Realm registry.

Creates and looks up realms. A shop realm's id is derived from its name
("Fashion Store" -> "shop/fashion-store"); a user realm's id is derived
from its owner ("user/<user_id>").

Invariants:
    - realm_id is globally unique; an existing realm is never overwritten
    - A realm's type never changes after creation
    - Slug collisions follow RealmConfig.slug_collision (reject or suffix)

How to change safely:
    - Changing slugify() changes ids of future realms only; never re-slug
      existing rows
"""

from __future__ import annotations

import logging
import re

from ..config import RealmConfig, SlugCollisionPolicy
from ..errors import ConstraintViolation, DuplicateRealmError, NotFoundError, ValidationError
from ..schema import Realm, RealmType
from ..storage import LocalStore

logger = logging.getLogger(__name__)

SHOP_PREFIX = "shop/"
USER_PREFIX = "user/"

_NON_SLUG = re.compile(r"[^a-z0-9]+")


def slugify(name: str, max_length: int = 64) -> str:
    """Lowercase, collapse runs of other characters to "-", trim.

    Example:
        >>> slugify("Fashion Store")
        'fashion-store'
        >>> slugify("  Café & Co. ")
        'caf-co'
    """
    slug = _NON_SLUG.sub("-", name.lower()).strip("-")
    return slug[:max_length].rstrip("-")


def shop_realm_id(name: str, max_length: int = 64) -> str:
    """Derive the shop realm id for a store name.

    Raises:
        ValidationError: If the name has no slug-able characters
    """
    slug = slugify(name, max_length)
    if not slug:
        raise ValidationError(f"Store name '{name}' does not produce a realm id", field_name="name")
    return SHOP_PREFIX + slug


def user_realm_id(user_id: str) -> str:
    return USER_PREFIX + user_id


class RealmRegistry:
    """Creates and resolves realms.

    Thread safety:
        Creation relies on the realms primary key; two racing creates of
        the same id resolve to one success and one DuplicateRealmError.

    Example:
        >>> registry = RealmRegistry(store)
        >>> realm = registry.create(RealmType.SHOP, "Fashion Store", "u1")
        >>> realm.realm_id
        'shop/fashion-store'
    """

    TABLE = "realms"

    def __init__(self, store: LocalStore, config: RealmConfig | None = None) -> None:
        self._store = store
        self.config = config or RealmConfig()

    def derive_id(self, realm_type: RealmType, name: str, owner_user_id: str) -> str:
        """Id a new realm would receive, before collision handling."""
        if realm_type == RealmType.SHOP:
            return shop_realm_id(name, self.config.slug_max_length)
        return user_realm_id(owner_user_id)

    def create(self, realm_type: RealmType, name: str, owner_user_id: str) -> Realm:
        """Create a realm.

        Args:
            realm_type: USER or SHOP
            name: Display name (the slug source for shop realms)
            owner_user_id: Creating user

        Returns:
            The created Realm

        Raises:
            DuplicateRealmError: If the id is taken and the policy is REJECT
            ValidationError: If the name or owner is empty
        """
        if not owner_user_id:
            raise ValidationError("Realm owner is required", field_name="owner_user_id")
        if not name or not name.strip():
            raise ValidationError("Realm name is required", field_name="name")

        base_id = self.derive_id(realm_type, name, owner_user_id)
        realm_id = base_id
        if (
            realm_type == RealmType.SHOP
            and self.config.slug_collision == SlugCollisionPolicy.SUFFIX
        ):
            realm_id = self._first_free(base_id)

        realm = Realm(realm_id=realm_id, type=realm_type, name=name.strip(), owner_user_id=owner_user_id)
        try:
            self._store.insert(self.TABLE, realm.to_row())
        except ConstraintViolation as e:
            raise DuplicateRealmError(realm_id) from e

        logger.info(
            "Created realm",
            extra={"realm_id": realm_id, "type": realm_type.value, "owner": owner_user_id},
        )
        return realm

    def _first_free(self, base_id: str) -> str:
        candidate = base_id
        n = 1
        while self.exists(candidate):
            n += 1
            candidate = f"{base_id}-{n}"
        return candidate

    def get(self, realm_id: str) -> Realm:
        """Look up a realm.

        Raises:
            NotFoundError: If no such realm exists
        """
        row = self._store.get(self.TABLE, realm_id)
        if row is None:
            raise NotFoundError("realm", realm_id)
        return Realm.from_row(row)

    def find(self, realm_id: str) -> Realm | None:
        row = self._store.get(self.TABLE, realm_id)
        return Realm.from_row(row) if row else None

    def exists(self, realm_id: str) -> bool:
        return self._store.get(self.TABLE, realm_id) is not None

    def list_by_owner(self, user_id: str) -> list[Realm]:
        """All realms created by a user, oldest first."""
        rows = self._store.scan(self.TABLE, where={"owner_user_id": user_id})
        return [Realm.from_row(r) for r in rows]

