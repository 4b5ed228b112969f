"""
Membership index.

Maps (realm_id, user_id) to the set of roles the user holds in that realm
and answers the reverse question "which realms does this user belong to".

Invariants:
    - At most one Member row per (realm_id, user_id)
    - grant() is idempotent; a second grant adds to the role set instead of
      creating a row
    - Role.OWNER is never stored; it is derived from Realm.owner_user_id

How to change safely:
    - Keep grant() a read-merge-write inside a storage transaction, under
      the (realm_id, user_id) lock taken after it
"""

from __future__ import annotations

import logging
import uuid

from ..errors import ValidationError
from ..schema import Member, Realm, Role
from ..storage import LocalStore
from .locks import KeyedLocks
from .realms import RealmRegistry

logger = logging.getLogger(__name__)


class MembershipIndex:
    """Role grants per realm and user.

    Example:
        >>> index = MembershipIndex(store, registry)
        >>> index.grant("shop/acme", "u1", Role.VENDOR, email="a@x.io", name="Ann")
        >>> index.roles_of("u1", "shop/acme")
        {<Role.VENDOR: 'vendor'>}
    """

    TABLE = "members"

    def __init__(
        self,
        store: LocalStore,
        realms: RealmRegistry,
        locks: KeyedLocks | None = None,
    ) -> None:
        self._store = store
        self._realms = realms
        self._locks = locks or KeyedLocks()

    def grant(
        self,
        realm_id: str,
        user_id: str,
        role: Role,
        email: str = "",
        name: str = "",
    ) -> Member:
        """Grant a role, creating the Member row on first grant.

        Args:
            realm_id: Realm to grant in (must exist)
            user_id: Grantee
            role: Role to add (OWNER cannot be granted)
            email: Profile email stored on a new row
            name: Profile name stored on a new row

        Returns:
            The Member row after the grant

        Raises:
            NotFoundError: If the realm doesn't exist
            ValidationError: If role is OWNER
        """
        if role == Role.OWNER:
            raise ValidationError("The owner role is implied by realm ownership", field_name="role")
        self._realms.get(realm_id)

        with self._store.transaction(), self._locks.hold("member", realm_id, user_id):
            existing = self.get_member(realm_id, user_id)
            if existing is not None:
                if role.value in existing.roles:
                    return existing
                roles = [*existing.roles, role.value]
                row = self._store.update(self.TABLE, existing.id, {"roles": roles})
                member = Member.from_row(row)
            else:
                member = Member(
                    id=uuid.uuid4().hex,
                    realm_id=realm_id,
                    user_id=user_id,
                    roles=[role.value],
                    email=email,
                    name=name,
                )
                self._store.insert(self.TABLE, member.to_row())

        logger.info(
            "Granted role",
            extra={"realm_id": realm_id, "user_id": user_id, "role": role.value},
        )
        return member

    def get_member(self, realm_id: str, user_id: str) -> Member | None:
        rows = self._store.scan(self.TABLE, where={"realm_id": realm_id, "user_id": user_id}, limit=1)
        return Member.from_row(rows[0]) if rows else None

    def roles_of(self, user_id: str | None, realm_id: str) -> set[Role]:
        """Roles a user holds in a realm (empty if none or anonymous).

        Includes Role.OWNER when the user owns the realm.
        """
        if not user_id:
            return set()
        member = self.get_member(realm_id, user_id)
        roles = member.role_set if member else set()
        realm = self._realms.find(realm_id)
        if realm is not None and realm.owner_user_id == user_id:
            roles.add(Role.OWNER)
        return roles

    def realms_of(self, user_id: str, role: Role | None = None) -> list[Realm]:
        """Realms the user belongs to, optionally only where role is held.

        This is how a vendor finds their own shop realm(s).
        """
        rows = self._store.scan(self.TABLE, where={"user_id": user_id})
        realms: list[Realm] = []
        for row in rows:
            member = Member.from_row(row)
            if role is not None and role.value not in member.roles:
                continue
            realm = self._realms.find(member.realm_id)
            if realm is not None:
                realms.append(realm)
        return realms

