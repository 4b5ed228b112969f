"""
User directory.

Registration is the implicit membership path: a new user gets a private
realm "user/<user_id>", the buyer role in it, and a User row living there.
Credentials are handled by the identity collaborator; this module only
turns an authenticated user id into a UserContext.
"""

from __future__ import annotations

import logging
import uuid

from ..access import EntityStore, MembershipIndex, RealmRegistry
from ..errors import DenyReason, NotFoundError, PermissionDeniedError, ValidationError
from ..schema import EntityType, RealmType, Role, User, UserContext, UserRole
from ..storage import LocalStore

logger = logging.getLogger(__name__)


def require_user(ctx: UserContext | None, entity_type: EntityType, operation: str) -> UserContext:
    """Return ctx, or raise NOT_A_MEMBER for anonymous callers.

    Used by workflows whose target realm is derived from the caller.
    """
    if ctx is None or not ctx.user_id:
        raise PermissionDeniedError(DenyReason.NOT_A_MEMBER, None, "", entity_type.value, operation)
    return ctx


class UserDirectory:
    """Registration and identity lookups.

    Example:
        >>> users = UserDirectory(store, registry, membership, entities)
        >>> ann = users.register("ann@example.com", "Ann")
        >>> ann.realm_id
        'user/...'
        >>> ctx = users.context_for(ann.id)
    """

    TABLE = "users"

    def __init__(
        self,
        store: LocalStore,
        realms: RealmRegistry,
        membership: MembershipIndex,
        entities: EntityStore,
    ) -> None:
        self._store = store
        self._realms = realms
        self._membership = membership
        self._entities = entities

    def register(self, email: str, name: str, user_id: str | None = None) -> User:
        """Register a buyer.

        Args:
            email: Unique email (case-insensitive)
            name: Display name
            user_id: Id assigned by the identity collaborator, generated if None

        Returns:
            The new User

        Raises:
            ValidationError: If the email is malformed or already registered,
                or the name is empty
        """
        email = (email or "").strip().lower()
        name = (name or "").strip()
        if "@" not in email:
            raise ValidationError("A valid email is required", field_name="email")
        if not name:
            raise ValidationError("Name is required", field_name="name")
        if self.lookup_by_email(email) is not None:
            raise ValidationError(f"Email already registered: {email}", field_name="email")

        user_id = user_id or uuid.uuid4().hex
        ctx = UserContext(user_id=user_id, email=email, name=name)

        with self._store.transaction():
            realm = self._realms.create(RealmType.USER, name, user_id)
            self._membership.grant(realm.realm_id, user_id, Role.BUYER, email=email, name=name)
            user = self._entities.add(
                ctx,
                realm.realm_id,
                User(id=user_id, email=email, name=name, role=UserRole.BUYER, realm_id=realm.realm_id),
            )

        logger.info("Registered user", extra={"user_id": user_id, "realm_id": realm.realm_id})
        return user

    def get_user(self, user_id: str) -> User:
        """Raises NotFoundError if the user isn't registered."""
        row = self._store.get(self.TABLE, user_id)
        if row is None:
            raise NotFoundError("user", user_id)
        return User.from_row(row)

    def context_for(self, user_id: str) -> UserContext:
        """Identity of an already-authenticated user.

        Raises:
            NotFoundError: If the user isn't registered
        """
        user = self.get_user(user_id)
        return UserContext(user_id=user.id, email=user.email, name=user.name, role=user.role)

    def lookup_by_email(self, email: str) -> User | None:
        rows = self._store.scan(self.TABLE, where={"email": email.strip().lower()}, limit=1)
        return User.from_row(rows[0]) if rows else None
