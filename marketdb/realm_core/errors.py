"""
Error types for the realm core.

This module defines every exception raised by the core:
- RealmDbError: Base exception
- NotFoundError: Missing realm, store, product, member or user
- PermissionDeniedError: Policy denial, always carrying a DenyReason
- DuplicateRealmError: Realm slug collision
- ValidationError: Bad field values or forbidden changes
- AlreadyVendorError: Onboarding requested from the terminal Vendor state
- OnboardingFailure: A vendor onboarding step failed (rolled back)
- StorageError, ConstraintViolation, RollbackError: Storage collaborator failures

Invariants:
    - All errors inherit from RealmDbError
    - Every error has a stable machine-readable code
    - Denials distinguish "not signed in / not a member" from "wrong role"
      and from "wrong realm"
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional


class DenyReason(Enum):
    """Why the policy engine refused an operation."""

    NOT_A_MEMBER = "not_a_member"
    INSUFFICIENT_ROLE = "insufficient_role"
    REALM_MISMATCH = "realm_mismatch"


class RealmDbError(Exception):
    """Base exception for all realm core errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "REALMDB_ERROR"
        self.details = details or {}


class NotFoundError(RealmDbError):
    """Resource not found.

    Raised when:
    - Realm doesn't exist
    - Entity id doesn't resolve in its collection
    - Member or user lookup misses
    """

    def __init__(
        self,
        resource_type: str,
        resource_id: str,
        message: Optional[str] = None,
    ) -> None:
        super().__init__(
            message or f"{resource_type} not found: {resource_id}",
            code="NOT_FOUND",
            details={
                "resource_type": resource_type,
                "resource_id": resource_id,
            },
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class PermissionDeniedError(RealmDbError):
    """The policy engine denied the operation.

    Attributes:
        reason: DenyReason for the refusal
        user_id: Caller, None when anonymous
        realm_id: Realm the operation was scoped to
        entity_type: Entity type name
        operation: Capability name that was requested
    """

    def __init__(
        self,
        reason: DenyReason,
        user_id: Optional[str],
        realm_id: str,
        entity_type: str,
        operation: str,
    ) -> None:
        actor = user_id or "anonymous"
        super().__init__(
            f"Permission denied ({reason.value}): {actor} cannot {operation} "
            f"{entity_type} in {realm_id}",
            code="PERMISSION_DENIED",
            details={
                "reason": reason.value,
                "user_id": user_id,
                "realm_id": realm_id,
                "entity_type": entity_type,
                "operation": operation,
            },
        )
        self.reason = reason
        self.user_id = user_id
        self.realm_id = realm_id
        self.entity_type = entity_type
        self.operation = operation


class DuplicateRealmError(RealmDbError):
    """A realm with the derived id already exists."""

    def __init__(self, realm_id: str) -> None:
        super().__init__(
            f"Realm already exists: {realm_id}",
            code="DUPLICATE_REALM",
            details={"realm_id": realm_id},
        )
        self.realm_id = realm_id


class ValidationError(RealmDbError):
    """Field validation failed.

    Raised when:
    - Required field is missing
    - Price or stock is negative
    - A patch touches an immutable field
    - The target realm has the wrong type for the entity
    """

    def __init__(
        self,
        message: str,
        field_name: Optional[str] = None,
        errors: Optional[List[str]] = None,
    ) -> None:
        super().__init__(
            message,
            code="VALIDATION_ERROR",
            details={"field": field_name, "errors": errors or []},
        )
        self.field_name = field_name
        self.errors = errors or []


class AlreadyVendorError(RealmDbError):
    """Onboarding was requested by a user who is already a vendor."""

    def __init__(self, user_id: str, realm_ids: List[str]) -> None:
        super().__init__(
            f"User {user_id} is already a vendor of {', '.join(realm_ids)}",
            code="ALREADY_VENDOR",
            details={"user_id": user_id, "realm_ids": realm_ids},
        )
        self.user_id = user_id
        self.realm_ids = realm_ids


class OnboardingFailure(RealmDbError):
    """Vendor onboarding failed at a step.

    Completed steps were rolled back before this is raised, unless
    rollback_failed is set, in which case the local replica needs repair.

    Attributes:
        step: Name of the step that failed
        cause: Underlying exception
        rollback_failed: Whether undoing the earlier steps also failed
    """

    def __init__(
        self,
        step: str,
        cause: BaseException,
        rollback_failed: bool = False,
    ) -> None:
        state = "rollback failed" if rollback_failed else "rolled back"
        super().__init__(
            f"Onboarding failed at step '{step}' ({state}): {cause}",
            code="ONBOARDING_FAILED",
            details={
                "step": step,
                "cause": str(cause),
                "cause_code": getattr(cause, "code", type(cause).__name__),
                "rollback_failed": rollback_failed,
            },
        )
        self.step = step
        self.cause = cause
        self.rollback_failed = rollback_failed


class StorageError(RealmDbError):
    """The local storage collaborator failed."""

    def __init__(self, message: str, table: Optional[str] = None) -> None:
        super().__init__(message, code="STORAGE_ERROR", details={"table": table})
        self.table = table


class ConstraintViolation(StorageError):
    """A unique constraint rejected a write."""

    def __init__(self, message: str, table: Optional[str] = None) -> None:
        super().__init__(message, table=table)
        self.code = "CONSTRAINT_VIOLATION"


class RollbackError(StorageError):
    """Rolling back a storage transaction failed.

    Attributes:
        cause: The exception that made the transaction roll back, if known
    """

    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.code = "ROLLBACK_FAILED"
        self.cause = cause
        if cause is not None:
            self.details["cause"] = str(cause)
