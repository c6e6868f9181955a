"""
Back-office admin API.

All routes require a superadmin (see backoffice.platform.admin_context).
The caller's user id is recorded as the actor of every mutation.

Endpoints:
- GET  /api/v1/admin/features/catalog
- GET  /api/v1/admin/dashboard
- GET  /api/v1/admin/restaurants?search=
- POST /api/v1/admin/restaurants/onboard
- GET  /api/v1/admin/restaurants/{id}
- GET  /api/v1/admin/restaurants/{id}/features
- PUT  /api/v1/admin/restaurants/{id}/features
- PUT  /api/v1/admin/restaurants/{id}/plan
- GET  /api/v1/admin/subscriptions?status=
- POST /api/v1/admin/restaurants/{id}/subscription/activate|deactivate|cancel
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field, field_validator

from backoffice.database.session import get_db_session
from backoffice.models.subscription import SubscriptionStatus
from backoffice.platform.admin_context import AdminContext, require_superadmin
from backoffice.services.admin_service import AdminService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/admin", tags=["admin"])


# Request/Response models

class FeatureToggleRequest(BaseModel):
    """Request to enable or disable one feature."""
    feature_key: str = Field(..., min_length=1, max_length=64)
    enabled: bool


class PlanChangeRequest(BaseModel):
    plan_tier: str = Field(..., min_length=1, description="starter, premium or enterprise")


class OnboardRequest(BaseModel):
    """Request to onboard a new restaurant."""
    restaurant_name: str = Field(..., min_length=1, max_length=255)
    plan_tier: str = Field(..., min_length=1)
    slug: Optional[str] = Field(None, max_length=255)
    address: Optional[str] = None
    phone: Optional[str] = Field(None, max_length=50)
    timezone: Optional[str] = Field(None, max_length=64)
    owner_id: Optional[str] = Field(None, max_length=255)
    trial_ends_at: Optional[datetime] = None

    @field_validator("restaurant_name")
    @classmethod
    def name_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("restaurant_name must not be blank")
        return v.strip()


class CatalogResponse(BaseModel):
    features: List[Dict[str, Any]]
    plans: List[Dict[str, Any]]


class FeaturesResponse(BaseModel):
    features: List[Dict[str, Any]]


class PlanResponse(BaseModel):
    plan: Dict[str, Any]


class RestaurantResponse(BaseModel):
    restaurant: Dict[str, Any]


class RestaurantsResponse(BaseModel):
    restaurants: List[Dict[str, Any]]


class SubscriptionsResponse(BaseModel):
    subscriptions: List[Dict[str, Any]]


class OkResponse(BaseModel):
    ok: bool = True


def get_admin_service(db_session=Depends(get_db_session)) -> AdminService:
    """Get admin service instance."""
    return AdminService(db_session)


# Routes

@router.get("/features/catalog", response_model=CatalogResponse)
def get_feature_catalog(
    admin: AdminContext = Depends(require_superadmin),
    service: AdminService = Depends(get_admin_service),
):
    """Feature definitions in catalog order and plans in tier order."""
    return service.get_catalog()


@router.get("/dashboard")
def get_dashboard(
    admin: AdminContext = Depends(require_superadmin),
    service: AdminService = Depends(get_admin_service),
):
    return service.get_dashboard()


@router.get("/restaurants", response_model=RestaurantsResponse)
def list_restaurants(
    search: Optional[str] = Query(None, max_length=255, description="Match on name or slug"),
    admin: AdminContext = Depends(require_superadmin),
    service: AdminService = Depends(get_admin_service),
):
    return RestaurantsResponse(restaurants=service.list_restaurants(search))


@router.post(
    "/restaurants/onboard",
    response_model=RestaurantResponse,
    status_code=status.HTTP_201_CREATED,
)
def onboard_restaurant(
    request: OnboardRequest,
    admin: AdminContext = Depends(require_superadmin),
    service: AdminService = Depends(get_admin_service),
):
    """
    Create a restaurant on a plan.

    Seeds feature rows from the plan and starts a trial subscription.
    """
    restaurant = service.onboard_restaurant(
        name=request.restaurant_name,
        plan_tier=request.plan_tier,
        actor_id=admin.user_id,
        slug=request.slug,
        address=request.address,
        phone=request.phone,
        timezone=request.timezone,
        owner_id=request.owner_id,
        trial_ends_at=request.trial_ends_at,
    )
    return RestaurantResponse(restaurant=restaurant)


@router.get("/restaurants/{restaurant_id}", response_model=RestaurantResponse)
def get_restaurant(
    restaurant_id: str,
    admin: AdminContext = Depends(require_superadmin),
    service: AdminService = Depends(get_admin_service),
):
    return RestaurantResponse(restaurant=service.get_restaurant(restaurant_id))


@router.get("/restaurants/{restaurant_id}/features", response_model=FeaturesResponse)
def get_restaurant_features(
    restaurant_id: str,
    admin: AdminContext = Depends(require_superadmin),
    service: AdminService = Depends(get_admin_service),
):
    return FeaturesResponse(features=service.get_features(restaurant_id))


@router.put("/restaurants/{restaurant_id}/features", response_model=FeaturesResponse)
def toggle_restaurant_feature(
    restaurant_id: str,
    request: FeatureToggleRequest,
    admin: AdminContext = Depends(require_superadmin),
    service: AdminService = Depends(get_admin_service),
):
    """
    Enable or disable one feature.

    Never cascades: a toggle that would break a dependency is rejected
    with 409 and the offending keys.
    """
    features = service.toggle_feature(
        restaurant_id,
        request.feature_key,
        request.enabled,
        actor_id=admin.user_id,
    )
    return FeaturesResponse(features=features)


@router.put("/restaurants/{restaurant_id}/plan", response_model=PlanResponse)
def set_restaurant_plan(
    restaurant_id: str,
    request: PlanChangeRequest,
    admin: AdminContext = Depends(require_superadmin),
    service: AdminService = Depends(get_admin_service),
):
    """Apply a plan: resets every feature to the plan's defaults."""
    plan = service.set_plan(restaurant_id, request.plan_tier, actor_id=admin.user_id)
    return PlanResponse(plan=plan)


@router.get("/subscriptions", response_model=SubscriptionsResponse)
def list_subscriptions(
    status_filter: Optional[SubscriptionStatus] = Query(None, alias="status"),
    admin: AdminContext = Depends(require_superadmin),
    service: AdminService = Depends(get_admin_service),
):
    subscriptions = service.list_subscriptions(
        status_filter.value if status_filter else None
    )
    return SubscriptionsResponse(subscriptions=subscriptions)


@router.post("/restaurants/{restaurant_id}/subscription/activate", response_model=OkResponse)
def activate_subscription(
    restaurant_id: str,
    admin: AdminContext = Depends(require_superadmin),
    service: AdminService = Depends(get_admin_service),
):
    service.activate_subscription(restaurant_id, actor_id=admin.user_id)
    return OkResponse()


@router.post("/restaurants/{restaurant_id}/subscription/deactivate", response_model=OkResponse)
def deactivate_subscription(
    restaurant_id: str,
    admin: AdminContext = Depends(require_superadmin),
    service: AdminService = Depends(get_admin_service),
):
    service.deactivate_subscription(restaurant_id, actor_id=admin.user_id)
    return OkResponse()


@router.post("/restaurants/{restaurant_id}/subscription/cancel", response_model=OkResponse)
def cancel_subscription(
    restaurant_id: str,
    admin: AdminContext = Depends(require_superadmin),
    service: AdminService = Depends(get_admin_service),
):
    service.cancel_subscription(restaurant_id, actor_id=admin.user_id)
    return OkResponse()
