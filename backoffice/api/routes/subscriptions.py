"""
Restaurant subscription read API.

GET /api/v1/restaurants/{id}/subscription → {subscription: {..., events}}
Events are newest first.
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from backoffice.api.routes.admin import get_admin_service
from backoffice.platform.admin_context import AdminContext, require_superadmin
from backoffice.services.admin_service import AdminService

router = APIRouter(prefix="/api/v1/restaurants", tags=["subscriptions"])


class SubscriptionDetailResponse(BaseModel):
    subscription: Dict[str, Any]


@router.get("/{restaurant_id}/subscription", response_model=SubscriptionDetailResponse)
def get_restaurant_subscription(
    restaurant_id: str,
    admin: AdminContext = Depends(require_superadmin),
    service: AdminService = Depends(get_admin_service),
):
    return SubscriptionDetailResponse(subscription=service.get_subscription(restaurant_id))
