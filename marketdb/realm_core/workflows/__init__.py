"""
Workflows built on the access layer.

- UserDirectory: registration (private realm + buyer role) and identity lookups
- VendorOnboardingWorkflow: buyer -> vendor promotion as one transaction
- CartService: cart lines and checkout in the buyer's realm
- VendorDashboard: product, order and store views of a vendor's shop realm

None of these write to LocalStore directly except through RealmRegistry,
MembershipIndex and EntityStore.
"""

from .accounts import UserDirectory, require_user
from .onboarding import OnboardingState, VendorOnboardingWorkflow, VendorResult
from .shopping import CartService
from .vendor import VendorDashboard

__all__ = [
    "CartService",
    "OnboardingState",
    "UserDirectory",
    "VendorDashboard",
    "VendorOnboardingWorkflow",
    "VendorResult",
    "require_user",
]
