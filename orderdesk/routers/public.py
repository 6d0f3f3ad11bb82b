"""
Unauthenticated endpoints: store registration, storefront, order tracking,
public kitchen display and the payment webhook.
"""

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, Header, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from orderdesk.core.exceptions import AppException
from orderdesk.database import get_db
from orderdesk.schemas import (
    CheckInRequest,
    CheckInResult,
    CheckoutRequest,
    CompanyCredentials,
    CompanyRegister,
    CouponValidateRequest,
    CouponValidation,
    OrderOut,
    OrderPlaced,
    PublicMenu,
    TrackingResponse,
    WaiterCallOut,
    WaiterCallRequest,
)
from orderdesk.services import companies, coupons, kitchen, menu, orders, tables
from orderdesk.services.payment import BasePaymentService, get_payment_service
from orderdesk.services.realtime import ChangeFeed, get_change_feed

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/api/companies/register",
    response_model=CompanyCredentials,
    status_code=status.HTTP_201_CREATED,
    tags=["Companies"],
    summary="Register a Store",
)
async def register_company(
    data: CompanyRegister,
    db: AsyncSession = Depends(get_db),
) -> CompanyCredentials:
    """
    Create a store awaiting approval.

    The staff and kitchen display tokens are only returned here and on
    rotation; keep them safe.
    """
    company = await companies.register_company(db, data)
    return CompanyCredentials.model_validate(company)


# =============================================================================
# STOREFRONT
# =============================================================================

@router.get("/api/public/{slug}/menu", response_model=PublicMenu, tags=["Storefront"])
async def get_menu(slug: str, db: AsyncSession = Depends(get_db)) -> PublicMenu:
    return await menu.public_menu(db, slug)


@router.post(
    "/api/public/{slug}/orders",
    response_model=OrderPlaced,
    status_code=status.HTTP_201_CREATED,
    tags=["Storefront"],
    summary="Place Order",
)
async def place_order(
    slug: str,
    data: CheckoutRequest,
    db: AsyncSession = Depends(get_db),
    payments: BasePaymentService = Depends(get_payment_service),
    feed: ChangeFeed = Depends(get_change_feed),
) -> OrderPlaced:
    """
    Checkout from the public menu.

    Orders paid online return the payment ``client_secret``; the order stays
    ``pending`` payment until the provider webhook confirms it.
    """
    logger.info(f"Checkout at {slug} for: {data.customer_name}")
    return await orders.place_order(db, slug, data, payments, feed)


@router.post("/api/public/{slug}/coupons/validate", response_model=CouponValidation, tags=["Storefront"])
async def validate_coupon(
    slug: str,
    data: CouponValidateRequest,
    db: AsyncSession = Depends(get_db),
) -> CouponValidation:
    company = await orders.get_company_by_slug(db, slug)
    coupon, discount = await coupons.validate_coupon(db, company.id, data.code, data.subtotal)
    return CouponValidation(
        code=coupon.code,
        discount_type=coupon.discount_type,
        discount_value=coupon.discount_value,
        discount_amount=discount,
    )


@router.post("/api/public/{slug}/tables/check-in", response_model=CheckInResult, tags=["Storefront"])
async def table_check_in(
    slug: str,
    data: CheckInRequest,
    db: AsyncSession = Depends(get_db),
) -> CheckInResult:
    return await tables.check_in(db, slug, data)


@router.post(
    "/api/public/{slug}/tables/calls",
    response_model=WaiterCallOut,
    status_code=status.HTTP_201_CREATED,
    tags=["Storefront"],
)
async def call_waiter(
    slug: str,
    data: WaiterCallRequest,
    db: AsyncSession = Depends(get_db),
    feed: ChangeFeed = Depends(get_change_feed),
) -> WaiterCallOut:
    """Call the waiter or ask for the bill from an open table session."""
    return await tables.call_waiter(db, slug, data, feed)


@router.get("/api/track/{order_id}", response_model=TrackingResponse, tags=["Storefront"])
async def track_order(order_id: str, db: AsyncSession = Depends(get_db)) -> TrackingResponse:
    return await orders.track_order(db, order_id)


# =============================================================================
# PUBLIC KITCHEN DISPLAY
# =============================================================================

@router.get("/api/kds/{kds_token}", response_model=list[OrderOut], tags=["Kitchen"])
async def public_kitchen_board(kds_token: str, db: AsyncSession = Depends(get_db)) -> list[OrderOut]:
    company = await kitchen.company_by_kds_token(db, kds_token)
    return await kitchen.kitchen_board(db, company.id)


@router.post("/api/kds/{kds_token}/orders/{order_id}/advance", response_model=OrderOut, tags=["Kitchen"])
async def public_kitchen_advance(
    kds_token: str,
    order_id: str,
    db: AsyncSession = Depends(get_db),
    feed: ChangeFeed = Depends(get_change_feed),
) -> OrderOut:
    company = await kitchen.company_by_kds_token(db, kds_token)
    order = await kitchen.kitchen_advance(db, company, order_id, feed)
    return OrderOut.model_validate(order)


# =============================================================================
# PAYMENT WEBHOOK
# =============================================================================

@router.post("/webhook/payments", tags=["Webhooks"], summary="Payment Provider Webhook")
async def payment_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
    db: AsyncSession = Depends(get_db),
    payments: BasePaymentService = Depends(get_payment_service),
    feed: ChangeFeed = Depends(get_change_feed),
) -> dict[str, Any]:
    """
    Receive payment events.

    Configure this URL in the provider dashboard:
        https://your-domain.com/webhook/payments
    """
    body = await request.body()
    event = await payments.verify_webhook(body, stripe_signature)
    if event is None:
        raise AppException("Invalid webhook signature or payload", status_code=400, code="INVALID_WEBHOOK")

    logger.info(f"Payment webhook received: {event.get('type', 'unknown')}")
    order = await orders.mark_paid_from_webhook(db, event, feed)
    return {
        "received": True,
        "order_id": order.id if order else None,
        "payment_status": order.payment_status.value if order else None,
    }
