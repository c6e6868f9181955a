"""
Payment event intake from the billing gateway.

SECURITY: Every request MUST carry an HMAC-SHA256 signature of the raw body
in X-Billing-Signature (base64), keyed with BILLING_WEBHOOK_SECRET.

Delivery is at-least-once; events are deduplicated on event_id.
"""

import base64
import hashlib
import hmac
import logging
import os
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field, ValidationError
from starlette.concurrency import run_in_threadpool

from backoffice.api.routes.admin import get_admin_service
from backoffice.services.admin_service import AdminService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/billing", tags=["billing"])

SIGNATURE_HEADER = "X-Billing-Signature"


class PaymentEventRequest(BaseModel):
    """Payment outcome reported by the gateway."""
    event_id: str = Field(..., min_length=1, max_length=255)
    restaurant_id: str = Field(..., min_length=1)
    type: Literal["payment_succeeded", "payment_failed"]
    amount: Optional[int] = Field(None, ge=0, description="Minor currency units")
    currency: Optional[str] = Field(None, max_length=10)
    card_brand: Optional[str] = Field(None, max_length=32)
    card_last_four: Optional[str] = Field(None, min_length=4, max_length=4)


class PaymentEventResponse(BaseModel):
    processed: bool
    status: str


def sign_payload(data: bytes, secret: str) -> str:
    """Base64 HMAC-SHA256 of a raw body."""
    digest = hmac.new(secret.encode("utf-8"), data, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("utf-8")


def verify_signature(data: bytes, signature: Optional[str], secret: Optional[str]) -> bool:
    if not signature or not secret:
        return False
    # Constant-time comparison to prevent timing attacks
    return hmac.compare_digest(sign_payload(data, secret), signature)


async def verified_body(request: Request) -> bytes:
    """
    Raw body of a correctly signed request.

    Declared ahead of the service dependency so unsigned requests are
    refused before a database session is opened.
    """
    secret = os.getenv("BILLING_WEBHOOK_SECRET")
    if not secret:
        logger.error("BILLING_WEBHOOK_SECRET not configured")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Billing event verification not configured",
        )

    body = await request.body()
    if not verify_signature(body, request.headers.get(SIGNATURE_HEADER), secret):
        logger.warning("Invalid billing event signature")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid signature",
        )
    return body


@router.post("/events", response_model=PaymentEventResponse)
async def receive_payment_event(
    body: bytes = Depends(verified_body),
    service: AdminService = Depends(get_admin_service),
):
    try:
        event = PaymentEventRequest.model_validate_json(body)
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=e.errors(include_url=False),
        )

    logger.info("Payment event received", extra={
        "event_id": event.event_id,
        "tenant_id": event.restaurant_id,
        "type": event.type,
    })

    result = await run_in_threadpool(
        service.ingest_payment,
        event.restaurant_id,
        succeeded=event.type == "payment_succeeded",
        external_event_id=event.event_id,
        amount=event.amount,
        currency=event.currency,
        card_brand=event.card_brand,
        card_last_four=event.card_last_four,
    )
    return PaymentEventResponse(**result)
