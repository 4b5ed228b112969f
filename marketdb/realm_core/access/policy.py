"""
Policy engine for the realm core.

This module decides whether a user may perform an operation on an entity
type inside a realm:
- Capabilities (create, read, update, delete) per entity type
- Per-role capability tables, keyed by realm type
- Public-read overrides for catalogue data in shop realms

Resolution order:
    1. The target entity's realm differs from the scoped realm -> REALM_MISMATCH
    2. Public access for (realm type, entity type) covers the operation -> allow
    3. The user holds no role in the realm -> NOT_A_MEMBER
    4. Union of capabilities over the user's roles covers it -> allow,
       otherwise INSUFFICIENT_ROLE

Invariants:
    - Public access can only ever grant READ
    - Anonymous callers never get past step 2
    - The realm owner holds the implicit OWNER role in their realm
    - Every mutating entry point in EntityStore goes through authorize()

How to change safely:
    - Capability changes are made in the tables below and nowhere else
    - New roles must be additive; add tests for every new (role, entity) cell
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Flag
from typing import Mapping

from ..errors import DenyReason, PermissionDeniedError
from ..schema import EntityType, RealmType, Role
from .membership import MembershipIndex
from .realms import RealmRegistry

logger = logging.getLogger(__name__)


class Capability(Flag):
    """Operations that can be granted on an entity type."""

    NONE = 0
    CREATE = 1
    READ = 2
    UPDATE = 4
    DELETE = 8
    CRUD = CREATE | READ | UPDATE | DELETE

    @classmethod
    def from_str(cls, value: str) -> Capability:
        """Parse a single operation name ("create", "read", ...).

        Raises:
            ValueError: If value is not one of the four operations
        """
        try:
            cap = cls[value.upper()]
        except KeyError:
            cap = None
        if cap not in _SINGLE_OPERATIONS:
            valid = [c.name.lower() for c in _SINGLE_OPERATIONS]
            raise ValueError(f"Invalid operation '{value}'. Valid operations: {valid}")
        return cap


_SINGLE_OPERATIONS = (Capability.CREATE, Capability.READ, Capability.UPDATE, Capability.DELETE)


CapabilityTable = Mapping[RealmType, Mapping[Role, Mapping[EntityType, Capability]]]
PublicAccessTable = Mapping[tuple[RealmType, EntityType], Capability]


ROLE_CAPABILITIES: CapabilityTable = {
    RealmType.SHOP: {
        Role.VENDOR: {
            EntityType.PRODUCT: Capability.CRUD,
            EntityType.STORE: Capability.CRUD,
            EntityType.ORDER: Capability.READ,
            EntityType.MEMBER: Capability.READ,
            EntityType.REALM: Capability.READ,
        },
        Role.OWNER: {
            EntityType.STORE: Capability.CRUD,
            EntityType.REALM: Capability.READ | Capability.UPDATE,
            EntityType.MEMBER: Capability.READ,
        },
    },
    RealmType.USER: {
        Role.BUYER: {
            EntityType.CART_ITEM: Capability.CRUD,
            EntityType.ORDER: Capability.CRUD,
            EntityType.PRODUCT: Capability.READ,
            EntityType.STORE: Capability.READ,
            EntityType.USER: Capability.READ | Capability.UPDATE,
            EntityType.MEMBER: Capability.READ,
            EntityType.REALM: Capability.READ,
        },
        Role.OWNER: {
            EntityType.USER: Capability.CREATE | Capability.READ | Capability.UPDATE,
            EntityType.MEMBER: Capability.READ,
            EntityType.REALM: Capability.READ,
        },
    },
}


PUBLIC_ACCESS: PublicAccessTable = {
    (RealmType.SHOP, EntityType.PRODUCT): Capability.READ,
    (RealmType.SHOP, EntityType.STORE): Capability.READ,
}


def validate_public_access(table: PublicAccessTable) -> None:
    """Reject public access entries that grant anything beyond READ.

    Raises:
        ValueError: If an entry covers create, update or delete
    """
    for (realm_type, entity_type), caps in table.items():
        if caps & ~Capability.READ:
            raise ValueError(
                f"Public access for {realm_type.value}/{entity_type.value} "
                f"may only grant read, got {caps}"
            )


validate_public_access(PUBLIC_ACCESS)


@dataclass(frozen=True)
class Decision:
    """Outcome of an authorization check.

    Attributes:
        allowed: Whether the operation may proceed
        reason: Why it was denied (None when allowed)
    """

    allowed: bool
    reason: DenyReason | None = None

    @classmethod
    def allow(cls) -> Decision:
        return cls(True)

    @classmethod
    def deny(cls, reason: DenyReason) -> Decision:
        return cls(False, reason)

    def __bool__(self) -> bool:
        return self.allowed

    def to_dict(self) -> dict[str, object]:
        return {
            "allowed": self.allowed,
            "reason": self.reason.value if self.reason else None,
        }


class PolicyEngine:
    """Resolves Allow/Deny for (user, realm, entity type, operation).

    Thread safety:
        Stateless apart from its read-only tables; reads go to the local
        replica's latest committed state (or the caller's open transaction).

    Example:
        >>> engine = PolicyEngine(registry, membership)
        >>> engine.authorize(None, "shop/acme", EntityType.PRODUCT, Capability.READ)
        Decision(allowed=True, reason=None)
        >>> engine.authorize(None, "shop/acme", EntityType.PRODUCT, Capability.UPDATE)
        Decision(allowed=False, reason=<DenyReason.NOT_A_MEMBER: 'not_a_member'>)
    """

    def __init__(
        self,
        realms: RealmRegistry,
        membership: MembershipIndex,
        role_capabilities: CapabilityTable | None = None,
        public_access: PublicAccessTable | None = None,
    ) -> None:
        self._realms = realms
        self._membership = membership
        self.role_capabilities = role_capabilities if role_capabilities is not None else ROLE_CAPABILITIES
        self.public_access = public_access if public_access is not None else PUBLIC_ACCESS
        validate_public_access(self.public_access)

    def authorize(
        self,
        user_id: str | None,
        realm_id: str,
        entity_type: EntityType,
        operation: Capability,
        target_realm_id: str | None = None,
    ) -> Decision:
        """Decide whether the operation may proceed.

        Args:
            user_id: Caller, None for anonymous
            realm_id: Realm the operation is scoped to
            entity_type: Entity type being touched
            operation: One of CREATE, READ, UPDATE, DELETE
            target_realm_id: The target entity's own realm, if known

        Returns:
            Decision

        Raises:
            NotFoundError: If realm_id doesn't exist
            ValueError: If operation is not a single capability
        """
        if operation not in _SINGLE_OPERATIONS:
            raise ValueError(f"authorize() takes a single operation, got {operation}")

        if target_realm_id is not None and target_realm_id != realm_id:
            return self._denied(DenyReason.REALM_MISMATCH, user_id, realm_id, entity_type, operation)

        realm = self._realms.get(realm_id)

        if operation in self.public_access.get((realm.type, entity_type), Capability.NONE):
            return Decision.allow()

        roles = self._membership.roles_of(user_id, realm_id)
        if not roles:
            return self._denied(DenyReason.NOT_A_MEMBER, user_id, realm_id, entity_type, operation)

        if operation in self._union(realm.type, roles, entity_type):
            return Decision.allow()
        return self._denied(DenyReason.INSUFFICIENT_ROLE, user_id, realm_id, entity_type, operation)

    def authorize_or_raise(
        self,
        user_id: str | None,
        realm_id: str,
        entity_type: EntityType,
        operation: Capability,
        target_realm_id: str | None = None,
    ) -> None:
        """Authorize and raise if denied.

        Raises:
            PermissionDeniedError: If the decision is Deny
        """
        decision = self.authorize(user_id, realm_id, entity_type, operation, target_realm_id)
        if not decision:
            raise PermissionDeniedError(
                decision.reason,
                user_id,
                realm_id,
                entity_type.value,
                operation.name.lower(),
            )

    def capabilities(
        self,
        user_id: str | None,
        realm_id: str,
        entity_type: EntityType,
    ) -> Capability:
        """Everything the user may do on entity_type in realm_id."""
        realm = self._realms.get(realm_id)
        public = self.public_access.get((realm.type, entity_type), Capability.NONE)
        roles = self._membership.roles_of(user_id, realm_id)
        return public | self._union(realm.type, roles, entity_type)

    def _union(self, realm_type: RealmType, roles: set[Role], entity_type: EntityType) -> Capability:
        by_role = self.role_capabilities.get(realm_type, {})
        caps = Capability.NONE
        for role in roles:
            caps |= by_role.get(role, {}).get(entity_type, Capability.NONE)
        return caps

    def _denied(
        self,
        reason: DenyReason,
        user_id: str | None,
        realm_id: str,
        entity_type: EntityType,
        operation: Capability,
    ) -> Decision:
        logger.info(
            "Authorization denied",
            extra={
                "reason": reason.value,
                "user_id": user_id,
                "realm_id": realm_id,
                "entity_type": entity_type.value,
                "operation": operation.name.lower(),
            },
        )
        return Decision.deny(reason)
