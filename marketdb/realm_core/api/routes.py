"""
API routes for the MarketDB HTTP API.

REST endpoints over RealmService. Caller identity arrives in the X-User-ID
header, set by the identity collaborator in front of this API after it has
authenticated the user; no header means anonymous.

Every handler is a plain (sync) function: the realm core is synchronous and
FastAPI runs these in its threadpool. Errors are raised as RealmDbError and
mapped to HTTP responses by the handlers in app.py.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field

from ..access import Capability
from ..errors import NotFoundError, ValidationError
from ..schema import ENTITY_CLASSES, EntityType, Role, UserContext
from ..service import RealmService
from .settings import ApiSettings

logger = logging.getLogger(__name__)

router = APIRouter(tags=["MarketDB"])


# --- Request/Response Models ---


class RegisterRequest(BaseModel):
    """Request to register a buyer."""

    email: str = Field(..., description="Unique email")
    name: str = Field(..., description="Display name")
    user_id: str | None = Field(None, description="Id assigned by the identity provider")


class AuthorizeRequest(BaseModel):
    """Request for an authorization decision."""

    realm_id: str = Field(..., description="Realm the operation is scoped to")
    entity_type: str = Field(..., description="Entity type, e.g. product")
    operation: str = Field(..., description="create, read, update or delete")
    target_realm_id: str | None = Field(None, description="The target entity's own realm")


class DecisionResponse(BaseModel):
    """Authorization decision."""

    allowed: bool
    reason: str | None = None


class BecomeVendorRequest(BaseModel):
    """Request to promote the caller to vendor."""

    store_name: str = Field(..., description="Store name; the shop realm id is its slug")
    store_description: str = Field("", description="Store description")
    store_image: str = Field("", description="Store image URL")


class VendorResultResponse(BaseModel):
    """Outcome of onboarding."""

    realm_id: str
    store_id: str


class EntityCreateRequest(BaseModel):
    """Request to create an entity."""

    data: dict[str, Any] = Field(..., description="Entity fields")


class EntityUpdateRequest(BaseModel):
    """Request to update an entity."""

    patch: dict[str, Any] = Field(..., description="Fields to update")


class CartAddRequest(BaseModel):
    """Request to add a product to the cart."""

    product_id: str
    quantity: int = Field(1, ge=1)


class ProductCreateRequest(BaseModel):
    """Request to add a product to a vendor's store."""

    name: str
    price: float
    stock: int
    categories: list[str]
    description: str = ""
    image: str = ""


class PaginatedResponse(BaseModel):
    """Paginated list response."""

    items: list[dict[str, Any]]
    offset: int
    limit: int
    has_more: bool


# --- Dependencies ---


def get_service(request: Request) -> RealmService:
    """Get the realm service from app state."""
    return request.app.state.service


def get_settings(request: Request) -> ApiSettings:
    return request.app.state.settings


def get_user_context(
    request: Request,
    service: RealmService = Depends(get_service),
) -> UserContext | None:
    """Resolve the X-User-ID header to a UserContext (None if absent)."""
    user_id = request.headers.get("X-User-ID")
    if not user_id:
        return None
    try:
        return service.users.context_for(user_id)
    except NotFoundError:
        raise HTTPException(status_code=401, detail=f"Unknown user {user_id}") from None


def _entity_type(value: str) -> EntityType:
    try:
        return EntityType.from_str(value)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e)) from None


def _page_limit(limit: int | None, settings: ApiSettings) -> int:
    return min(limit or settings.default_page_size, settings.max_page_size)


def _paginate(items: list[Any], offset: int, limit: int) -> PaginatedResponse:
    has_more = len(items) > limit
    return PaginatedResponse(
        items=[i.to_row() for i in items[:limit]],
        offset=offset,
        limit=limit,
        has_more=has_more,
    )


# --- Identity Routes ---


@router.post("/users", status_code=201)
def register_user(
    request: RegisterRequest,
    service: RealmService = Depends(get_service),
):
    """Register a buyer with a private realm."""
    user = service.users.register(request.email, request.name, user_id=request.user_id)
    return user.to_row()


@router.get("/users/me")
def get_me(
    ctx: UserContext | None = Depends(get_user_context),
    service: RealmService = Depends(get_service),
):
    """The caller's User row."""
    if ctx is None:
        raise HTTPException(status_code=401, detail="Sign in required")
    return service.get(ctx, EntityType.USER, ctx.user_id).to_row()


@router.get("/users/me/realms")
def get_my_realms(
    role: str | None = Query(None, description="Only realms where this role is held"),
    ctx: UserContext | None = Depends(get_user_context),
    service: RealmService = Depends(get_service),
):
    """Realms the caller belongs to."""
    if ctx is None:
        raise HTTPException(status_code=401, detail="Sign in required")
    try:
        role_filter = Role(role) if role else None
    except ValueError:
        raise ValidationError(f"Unknown role '{role}'", field_name="role") from None
    return [r.to_row() for r in service.realms_of(ctx.user_id, role_filter)]


# --- Authorization ---


@router.post("/authorize", response_model=DecisionResponse)
def authorize(
    request: AuthorizeRequest,
    ctx: UserContext | None = Depends(get_user_context),
    service: RealmService = Depends(get_service),
):
    """Ask the policy engine for a decision without performing anything."""
    try:
        operation = Capability.from_str(request.operation)
    except ValueError as e:
        raise ValidationError(str(e), field_name="operation") from e
    decision = service.authorize(
        ctx,
        request.realm_id,
        _entity_type(request.entity_type),
        operation,
        request.target_realm_id,
    )
    return decision.to_dict()


# --- Onboarding ---


@router.post("/vendor/onboard", response_model=VendorResultResponse, status_code=201)
def become_vendor(
    request: BecomeVendorRequest,
    ctx: UserContext | None = Depends(get_user_context),
    service: RealmService = Depends(get_service),
):
    """Create the caller's shop realm and store and make them its vendor."""
    result = service.become_vendor(
        ctx, request.store_name, request.store_description, request.store_image
    )
    return result.to_dict()


@router.get("/vendor/onboard")
def onboarding_state(
    ctx: UserContext | None = Depends(get_user_context),
    service: RealmService = Depends(get_service),
):
    if ctx is None:
        raise HTTPException(status_code=401, detail="Sign in required")
    return {"user_id": ctx.user_id, "state": service.onboarding_state(ctx.user_id).value}


# --- Generic Entity Routes ---


@router.get("/entities/{entity_type}", response_model=PaginatedResponse)
def list_entities(
    entity_type: str,
    realm_id: str | None = Query(None, description="Realm scope"),
    owner_user_id: str | None = Query(None),
    user_id: str | None = Query(None),
    vendor_id: str | None = Query(None),
    category: str | None = Query(None),
    offset: int = Query(0, ge=0, description="Pagination offset"),
    limit: int | None = Query(None, ge=1, description="Page size"),
    ctx: UserContext | None = Depends(get_user_context),
    service: RealmService = Depends(get_service),
    settings: ApiSettings = Depends(get_settings),
):
    """Query one collection, scoped to a realm unless it is publicly readable."""
    page = _page_limit(limit, settings)
    items = service.query(
        ctx,
        _entity_type(entity_type),
        realm_id,
        owner_user_id=owner_user_id,
        user_id=user_id,
        vendor_id=vendor_id,
        category=category,
        limit=page + 1,
        offset=offset,
    )
    return _paginate(items, offset, page)


@router.get("/entities/{entity_type}/{entity_id}")
def get_entity(
    entity_type: str,
    entity_id: str,
    ctx: UserContext | None = Depends(get_user_context),
    service: RealmService = Depends(get_service),
):
    return service.get(ctx, _entity_type(entity_type), entity_id).to_row()


@router.post("/entities/{entity_type}", status_code=201)
def create_entity(
    entity_type: str,
    request: EntityCreateRequest,
    realm_id: str = Query(..., description="Realm the operation is scoped to"),
    ctx: UserContext | None = Depends(get_user_context),
    service: RealmService = Depends(get_service),
):
    """Create an entity; data.realm_id defaults to the scoped realm."""
    etype = _entity_type(entity_type)
    data = {"realm_id": realm_id, **request.data}
    try:
        entity = ENTITY_CLASSES[etype].from_row(data)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Invalid {etype.value}: {e}") from e
    return service.add(ctx, realm_id, entity).to_row()


@router.patch("/entities/{entity_type}/{entity_id}")
def update_entity(
    entity_type: str,
    entity_id: str,
    request: EntityUpdateRequest,
    realm_id: str = Query(..., description="Realm the operation is scoped to"),
    ctx: UserContext | None = Depends(get_user_context),
    service: RealmService = Depends(get_service),
):
    """Update an existing entity. Only the specified fields are changed."""
    updated = service.update(ctx, realm_id, _entity_type(entity_type), entity_id, request.patch)
    return updated.to_row()


@router.delete("/entities/{entity_type}/{entity_id}", status_code=204)
def delete_entity(
    entity_type: str,
    entity_id: str,
    realm_id: str = Query(..., description="Realm the operation is scoped to"),
    ctx: UserContext | None = Depends(get_user_context),
    service: RealmService = Depends(get_service),
):
    service.delete(ctx, realm_id, _entity_type(entity_type), entity_id)


# --- Catalogue ---


@router.get("/products", response_model=PaginatedResponse)
def list_products(
    category: str | None = Query(None, description="Filter by category"),
    offset: int = Query(0, ge=0),
    limit: int | None = Query(None, ge=1),
    ctx: UserContext | None = Depends(get_user_context),
    service: RealmService = Depends(get_service),
    settings: ApiSettings = Depends(get_settings),
):
    """Public product catalogue across all shop realms."""
    page = _page_limit(limit, settings)
    items = service.query(ctx, EntityType.PRODUCT, category=category, limit=page + 1, offset=offset)
    return _paginate(items, offset, page)


# --- Cart ---


@router.get("/cart")
def list_cart(
    ctx: UserContext | None = Depends(get_user_context),
    service: RealmService = Depends(get_service),
):
    return [item.to_row() for item in service.cart.list_cart(ctx)]


@router.get("/cart/count")
def cart_count(
    ctx: UserContext | None = Depends(get_user_context),
    service: RealmService = Depends(get_service),
):
    return {"count": service.cart.cart_count(ctx)}


@router.post("/cart", status_code=201)
def add_to_cart(
    request: CartAddRequest,
    ctx: UserContext | None = Depends(get_user_context),
    service: RealmService = Depends(get_service),
):
    return service.cart.add_to_cart(ctx, request.product_id, request.quantity).to_row()


@router.delete("/cart/{item_id}", status_code=204)
def remove_from_cart(
    item_id: str,
    ctx: UserContext | None = Depends(get_user_context),
    service: RealmService = Depends(get_service),
):
    service.cart.remove_from_cart(ctx, item_id)


@router.post("/cart/checkout", status_code=201)
def checkout(
    ctx: UserContext | None = Depends(get_user_context),
    service: RealmService = Depends(get_service),
):
    """Place one order per store from the cart."""
    return [order.to_row() for order in service.cart.checkout(ctx)]


# --- Vendor Dashboard ---


@router.get("/vendor/realms")
def vendor_realms(
    ctx: UserContext | None = Depends(get_user_context),
    service: RealmService = Depends(get_service),
):
    return [r.to_row() for r in service.vendor.my_realms(ctx)]


@router.get("/vendor/summary")
def vendor_summary(
    realm_id: str = Query(..., description="Shop realm"),
    ctx: UserContext | None = Depends(get_user_context),
    service: RealmService = Depends(get_service),
):
    return service.vendor.summary(ctx, realm_id)


@router.post("/vendor/products", status_code=201)
def vendor_add_product(
    request: ProductCreateRequest,
    realm_id: str = Query(..., description="Shop realm"),
    ctx: UserContext | None = Depends(get_user_context),
    service: RealmService = Depends(get_service),
):
    product = service.vendor.add_product(ctx, realm_id, **request.model_dump())
    return product.to_row()


@router.patch("/vendor/store")
def vendor_update_store(
    request: EntityUpdateRequest,
    realm_id: str = Query(..., description="Shop realm"),
    ctx: UserContext | None = Depends(get_user_context),
    service: RealmService = Depends(get_service),
):
    return service.vendor.update_store(ctx, realm_id, request.patch).to_row()
