"""
RealmService - the facade exposed to the UI/workflow layer.

Wires one LocalStore to the registry, membership index, policy engine,
entity store and workflows, sharing a single KeyedLocks table so the
per-realm and per-user locks are process-wide.

Exposed operations:
    - authorize(ctx, realm_id, entity_type, operation) -> Decision
    - add / get / update / delete / query over every entity type
    - become_vendor(ctx, store_name, description, image) -> VendorResult
    - realms_of(user_id, role) -> list[Realm]
    - users / cart / vendor: the workflow objects

How to change safely:
    - Add collaborators here, not as module-level singletons
"""

from __future__ import annotations

import logging
from typing import Any

from .access import (
    Capability,
    Decision,
    EntityStore,
    KeyedLocks,
    MembershipIndex,
    PolicyEngine,
    RealmRegistry,
)
from .config import CoreConfig, RealmConfig
from .schema import Entity, EntityType, Realm, Role, UserContext, user_id_of
from .storage import LocalStore
from .workflows import (
    CartService,
    OnboardingState,
    UserDirectory,
    VendorDashboard,
    VendorOnboardingWorkflow,
    VendorResult,
)

logger = logging.getLogger(__name__)


class RealmService:
    """All realm core operations behind one object.

    Example:
        >>> service = RealmService.from_config(CoreConfig.from_env())
        >>> ann = service.users.register("ann@example.com", "Ann")
        >>> ctx = service.users.context_for(ann.id)
        >>> service.become_vendor(ctx, "Fashion Store")
        VendorResult(realm_id='shop/fashion-store', store_id='...')
    """

    def __init__(self, store: LocalStore, realm_config: RealmConfig | None = None) -> None:
        self.store = store
        self.locks = KeyedLocks()
        self.realms = RealmRegistry(store, realm_config)
        self.membership = MembershipIndex(store, self.realms, self.locks)
        self.policy = PolicyEngine(self.realms, self.membership)
        self.entities = EntityStore(store, self.realms, self.membership, self.policy, self.locks)
        self.users = UserDirectory(store, self.realms, self.membership, self.entities)
        self.onboarding = VendorOnboardingWorkflow(
            store, self.realms, self.membership, self.entities, self.locks
        )
        self.cart = CartService(store, self.entities, self.locks)
        self.vendor = VendorDashboard(self.membership, self.entities)

    @classmethod
    def from_config(cls, config: CoreConfig) -> RealmService:
        """Open (and initialize) the local replica described by config."""
        store = LocalStore.from_config(config.storage)
        store.initialize()
        logger.info(f"Realm service ready on {store.db_path}")
        return cls(store, config.realms)

    # ------------------------------------------------------------------
    # Authorization
    # ------------------------------------------------------------------

    def authorize(
        self,
        ctx: UserContext | None,
        realm_id: str,
        entity_type: EntityType,
        operation: Capability,
        target_realm_id: str | None = None,
    ) -> Decision:
        return self.policy.authorize(user_id_of(ctx), realm_id, entity_type, operation, target_realm_id)

    def realms_of(self, user_id: str, role: Role | None = None) -> list[Realm]:
        return self.membership.realms_of(user_id, role)

    # ------------------------------------------------------------------
    # Entity CRUD
    # ------------------------------------------------------------------

    def add(self, ctx: UserContext | None, realm_id: str, entity: Entity) -> Any:
        return self.entities.add(ctx, realm_id, entity)

    def get(self, ctx: UserContext | None, entity_type: EntityType, entity_id: str) -> Any:
        return self.entities.get(ctx, entity_type, entity_id)

    def update(
        self,
        ctx: UserContext | None,
        realm_id: str,
        entity_type: EntityType,
        entity_id: str,
        patch: dict[str, Any],
    ) -> Any:
        return self.entities.update(ctx, realm_id, entity_type, entity_id, patch)

    def delete(
        self,
        ctx: UserContext | None,
        realm_id: str,
        entity_type: EntityType,
        entity_id: str,
    ) -> None:
        self.entities.delete(ctx, realm_id, entity_type, entity_id)

    def query(
        self,
        ctx: UserContext | None,
        entity_type: EntityType,
        realm_id: str | None = None,
        **filters: Any,
    ) -> list[Any]:
        return self.entities.query(ctx, entity_type, realm_id, **filters)

    # ------------------------------------------------------------------
    # Onboarding
    # ------------------------------------------------------------------

    def become_vendor(
        self,
        ctx: UserContext | None,
        store_name: str,
        store_description: str = "",
        store_image: str = "",
    ) -> VendorResult:
        return self.onboarding.become_vendor(ctx, store_name, store_description, store_image)

    def onboarding_state(self, user_id: str) -> OnboardingState:
        return self.onboarding.state_of(user_id)
