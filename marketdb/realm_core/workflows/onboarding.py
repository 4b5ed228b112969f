"""
Vendor onboarding workflow.

Promotes a buyer into a vendor:
    1. derive_realm_id   - slugify the store name into "shop/<slug>"
    2. create_realm      - RealmRegistry.create(SHOP, store_name, user)
    3. create_store      - the Store row bound 1:1 to the new realm
    4. grant_vendor      - MembershipIndex.grant(realm, user, VENDOR)
    5. update_user_role  - User.role cache -> vendor

All five steps run inside one LocalStore.transaction(), so a failure at any
step rolls back every earlier step and no other connection ever sees a realm
without its store. The workflow holds the ("onboarding", user_id) lock and
the ("realm", realm_id) lock for the whole run.

State machine:
    BUYER -> ONBOARDING -> VENDOR (terminal)

Invariants:
    - A successful run leaves exactly one Store in the new realm
    - A failed run leaves no realm, store, member row or role change
    - Two concurrent runs for the same user never create two realms
    - A failed rollback is reported as OnboardingFailure(rollback_failed=True)

How to change safely:
    - New steps go inside the transaction block and must set `step` first
    - Never commit between steps
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass
from enum import Enum

from ..access import EntityStore, KeyedLocks, MembershipIndex, RealmRegistry, user_realm_id
from ..errors import AlreadyVendorError, OnboardingFailure, RollbackError
from ..schema import EntityType, RealmType, Role, Store, UserContext, UserRole
from ..storage import LocalStore
from .accounts import require_user

logger = logging.getLogger(__name__)


class OnboardingState(Enum):
    """Where a user is in the buyer-to-vendor state machine."""

    BUYER = "buyer"
    ONBOARDING = "onboarding"
    VENDOR = "vendor"


@dataclass(frozen=True)
class VendorResult:
    """Outcome of a successful become_vendor call.

    Attributes:
        realm_id: The new shop realm
        store_id: The store bound to it
    """

    realm_id: str
    store_id: str

    def to_dict(self) -> dict[str, str]:
        return {"realm_id": self.realm_id, "store_id": self.store_id}


# Steps that run before anything is written; their errors surface as-is
_PRE_WRITE_STEPS = frozenset({"derive_realm_id", "create_realm"})


class VendorOnboardingWorkflow:
    """Runs become_vendor as one rollback-capable unit.

    Thread safety:
        Runs for the same user serialize on ("onboarding", user_id); the
        second one observes the VENDOR state and raises AlreadyVendorError.
        Runs deriving the same realm id serialize on ("realm", realm_id).

    Example:
        >>> workflow = VendorOnboardingWorkflow(store, registry, membership, entities)
        >>> result = workflow.become_vendor(ctx, "Fashion Store", "Clothes", "img.png")
        >>> result.realm_id
        'shop/fashion-store'
    """

    def __init__(
        self,
        store: LocalStore,
        realms: RealmRegistry,
        membership: MembershipIndex,
        entities: EntityStore,
        locks: KeyedLocks | None = None,
    ) -> None:
        self._store = store
        self._realms = realms
        self._membership = membership
        self._entities = entities
        self._locks = locks or KeyedLocks()
        self._in_flight: set[str] = set()
        self._in_flight_lock = threading.Lock()

    def state_of(self, user_id: str) -> OnboardingState:
        """Current onboarding state of a user."""
        with self._in_flight_lock:
            if user_id in self._in_flight:
                return OnboardingState.ONBOARDING
        if self._membership.realms_of(user_id, Role.VENDOR):
            return OnboardingState.VENDOR
        return OnboardingState.BUYER

    def become_vendor(
        self,
        ctx: UserContext | None,
        store_name: str,
        store_description: str = "",
        store_image: str = "",
    ) -> VendorResult:
        """Create a shop realm and its store and make the caller its vendor.

        Args:
            ctx: The registered user being promoted
            store_name: Store display name; the realm id is its slug
            store_description: Store description
            store_image: Store image URL

        Returns:
            VendorResult with the new realm and store ids

        Raises:
            PermissionDeniedError: If ctx is anonymous
            NotFoundError: If the user is not registered
            AlreadyVendorError: If the user is already a vendor
            ValidationError: If the store name yields no realm id
            DuplicateRealmError: If the realm id is taken (reject policy)
            OnboardingFailure: If a later step failed; everything was rolled
                back unless rollback_failed is set
        """
        ctx = require_user(ctx, EntityType.REALM, "create")
        user_id = ctx.user_id
        user_realm = user_realm_id(user_id)

        with self._locks.hold("onboarding", user_id):
            # Registered users only; reads the User row through the policy
            user = self._entities.get(ctx, EntityType.USER, user_id)

            existing = self._membership.realms_of(user_id, Role.VENDOR)
            if existing:
                raise AlreadyVendorError(user_id, [r.realm_id for r in existing])

            step = "derive_realm_id"
            realm_id = self._realms.derive_id(RealmType.SHOP, store_name, user_id)

            with self._locks.hold("realm", realm_id):
                self._enter(user_id)
                logger.info(
                    "Onboarding started",
                    extra={"user_id": user_id, "realm_id": realm_id},
                )
                try:
                    with self._store.transaction():
                        step = "create_realm"
                        realm = self._realms.create(RealmType.SHOP, store_name, user_id)

                        step = "create_store"
                        store = self._entities.add(
                            ctx,
                            realm.realm_id,
                            Store(
                                id=uuid.uuid4().hex,
                                name=realm.name,
                                realm_id=realm.realm_id,
                                owner_user_id=user_id,
                                description=store_description,
                                image=store_image,
                            ),
                        )

                        step = "grant_vendor"
                        self._membership.grant(
                            realm.realm_id,
                            user_id,
                            Role.VENDOR,
                            email=ctx.email or user.email,
                            name=ctx.name or user.name,
                        )

                        step = "update_user_role"
                        self._entities.update(
                            ctx, user_realm, EntityType.USER, user_id, {"role": UserRole.VENDOR}
                        )

                        step = "commit"
                except RollbackError as e:
                    cause = e.cause or e
                    logger.error(
                        f"Onboarding rollback failed at {step}: {e}",
                        extra={"user_id": user_id, "realm_id": realm_id, "step": step},
                    )
                    raise OnboardingFailure(step, cause, rollback_failed=True) from e
                except Exception as e:
                    if step in _PRE_WRITE_STEPS:
                        raise
                    logger.warning(
                        f"Onboarding failed at {step}, rolled back: {e}",
                        extra={"user_id": user_id, "realm_id": realm_id, "step": step},
                    )
                    raise OnboardingFailure(step, e) from e
                finally:
                    self._leave(user_id)

        logger.info(
            "Onboarding complete",
            extra={"user_id": user_id, "realm_id": realm.realm_id, "store_id": store.id},
        )
        return VendorResult(realm_id=realm.realm_id, store_id=store.id)

    def _enter(self, user_id: str) -> None:
        with self._in_flight_lock:
            self._in_flight.add(user_id)

    def _leave(self, user_id: str) -> None:
        with self._in_flight_lock:
            self._in_flight.discard(user_id)
