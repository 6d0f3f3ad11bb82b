"""
Staff endpoints (``X-Store-Token``): store account, orders, point of sale,
dispatch, kitchen, subscription, activity and reports.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from orderdesk.core.security import get_current_company
from orderdesk.database import get_db
from orderdesk.models import Company
from orderdesk.schemas import (
    ActivityOut,
    AssignDriverRequest,
    AssignResult,
    BroadcastResult,
    CancelRequest,
    CompanyCredentials,
    CompanyOut,
    CompanySettingsUpdate,
    ConvertToDeliveryRequest,
    DriverCreate,
    DriverFinancials,
    DriverOut,
    DriverUpdate,
    DriverWithToken,
    OrderFilter,
    OrderListResponse,
    OrderOut,
    Period,
    PlanOut,
    PosOrderRequest,
    ReportQueued,
    StatusChangeResponse,
    StatusUpdate,
    SubscribeRequest,
    SubscriptionStatusOut,
)
from orderdesk.services import activity, billing, companies, dispatch, kitchen, orders
from orderdesk.services.notifications import BaseNotificationService, get_notification_service
from orderdesk.services.payment import BasePaymentService, get_payment_service
from orderdesk.services.realtime import ChangeFeed, get_change_feed
from orderdesk.tasks import export_orders_report

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/store")


# =============================================================================
# ACCOUNT
# =============================================================================

@router.get("/me", response_model=CompanyOut, tags=["Store"])
async def current_store(company: Company = Depends(get_current_company)) -> CompanyOut:
    return CompanyOut.model_validate(company)


@router.patch("/settings", response_model=CompanyOut, tags=["Store"])
async def update_settings(
    data: CompanySettingsUpdate,
    company: Company = Depends(get_current_company),
    db: AsyncSession = Depends(get_db),
) -> CompanyOut:
    return CompanyOut.model_validate(await companies.update_settings(db, company, data))


@router.post("/token/rotate", response_model=CompanyCredentials, tags=["Store"])
async def rotate_token(
    company: Company = Depends(get_current_company),
    db: AsyncSession = Depends(get_db),
) -> CompanyCredentials:
    return CompanyCredentials.model_validate(await companies.rotate_api_token(db, company))


@router.post("/kds-token/regenerate", response_model=CompanyCredentials, tags=["Kitchen"])
async def regenerate_kds_token(
    company: Company = Depends(get_current_company),
    db: AsyncSession = Depends(get_db),
) -> CompanyCredentials:
    return CompanyCredentials.model_validate(await kitchen.regenerate_kds_token(db, company))


# =============================================================================
# ORDERS
# =============================================================================

@router.get("/orders", response_model=OrderListResponse, tags=["Orders"], summary="List Orders")
async def list_orders(
    filter: OrderFilter = Query(OrderFilter.ACTIVE),
    period: Period = Query(Period.ALL),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    company: Company = Depends(get_current_company),
    db: AsyncSession = Depends(get_db),
) -> OrderListResponse:
    """Paginated orders, newest first."""
    total, rows = await orders.list_orders(db, company.id, filter, period, skip, limit)
    return OrderListResponse(total=total, orders=[OrderOut.model_validate(o) for o in rows])


@router.post("/orders", response_model=OrderOut, status_code=status.HTTP_201_CREATED, tags=["Orders"], summary="Point-of-Sale Order")
async def create_pos_order(
    data: PosOrderRequest,
    company: Company = Depends(get_current_company),
    db: AsyncSession = Depends(get_db),
    feed: ChangeFeed = Depends(get_change_feed),
) -> OrderOut:
    return OrderOut.model_validate(await orders.create_pos_order(db, company, data, feed))


@router.get("/orders/{order_id}", response_model=OrderOut, tags=["Orders"])
async def get_order(
    order_id: str,
    company: Company = Depends(get_current_company),
    db: AsyncSession = Depends(get_db),
) -> OrderOut:
    return OrderOut.model_validate(await orders.get_order(db, company.id, order_id))


@router.post("/orders/{order_id}/advance", response_model=StatusChangeResponse, tags=["Orders"])
async def advance_order(
    order_id: str,
    company: Company = Depends(get_current_company),
    db: AsyncSession = Depends(get_db),
    notifier: BaseNotificationService = Depends(get_notification_service),
    feed: ChangeFeed = Depends(get_change_feed),
) -> StatusChangeResponse:
    return await orders.advance_order(db, company, order_id, notifier, feed)


@router.patch("/orders/{order_id}/status", response_model=StatusChangeResponse, tags=["Orders"])
async def update_status(
    order_id: str,
    data: StatusUpdate,
    company: Company = Depends(get_current_company),
    db: AsyncSession = Depends(get_db),
    notifier: BaseNotificationService = Depends(get_notification_service),
    payments: BasePaymentService = Depends(get_payment_service),
    feed: ChangeFeed = Depends(get_change_feed),
) -> StatusChangeResponse:
    return await orders.update_status(db, company, order_id, data.status, notifier, payments, feed)


@router.post("/orders/{order_id}/cancel", response_model=StatusChangeResponse, tags=["Orders"])
async def cancel_order(
    order_id: str,
    data: CancelRequest,
    company: Company = Depends(get_current_company),
    db: AsyncSession = Depends(get_db),
    payments: BasePaymentService = Depends(get_payment_service),
    feed: ChangeFeed = Depends(get_change_feed),
) -> StatusChangeResponse:
    return await orders.cancel_order(db, company, order_id, data.reason, payments, feed)


@router.post("/orders/{order_id}/convert-to-delivery", response_model=OrderOut, tags=["Orders"])
async def convert_to_delivery(
    order_id: str,
    data: ConvertToDeliveryRequest,
    company: Company = Depends(get_current_company),
    db: AsyncSession = Depends(get_db),
    feed: ChangeFeed = Depends(get_change_feed),
) -> OrderOut:
    order = await orders.convert_to_delivery(db, company, order_id, data.address, feed)
    return OrderOut.model_validate(order)


# =============================================================================
# DISPATCH
# =============================================================================

@router.post("/orders/{order_id}/assign", response_model=AssignResult, tags=["Dispatch"])
async def assign_driver(
    order_id: str,
    data: AssignDriverRequest,
    company: Company = Depends(get_current_company),
    db: AsyncSession = Depends(get_db),
    notifier: BaseNotificationService = Depends(get_notification_service),
    feed: ChangeFeed = Depends(get_change_feed),
) -> AssignResult:
    """Assign to a driver; a busy driver gets the order queued."""
    return await dispatch.assign_driver(db, company, order_id, data.driver_id, notifier, feed)


@router.post("/orders/{order_id}/reassign", response_model=AssignResult, tags=["Dispatch"])
async def reassign_driver(
    order_id: str,
    data: AssignDriverRequest,
    company: Company = Depends(get_current_company),
    db: AsyncSession = Depends(get_db),
    notifier: BaseNotificationService = Depends(get_notification_service),
    feed: ChangeFeed = Depends(get_change_feed),
) -> AssignResult:
    return await dispatch.reassign_driver(db, company, order_id, data.driver_id, notifier, feed)


@router.post("/orders/{order_id}/broadcast", response_model=BroadcastResult, tags=["Dispatch"])
async def broadcast_order(
    order_id: str,
    company: Company = Depends(get_current_company),
    db: AsyncSession = Depends(get_db),
    feed: ChangeFeed = Depends(get_change_feed),
) -> BroadcastResult:
    """Offer a ready order to every available driver."""
    return await dispatch.broadcast_order(db, company, order_id, feed)


@router.get("/drivers", response_model=list[DriverOut], tags=["Dispatch"])
async def list_drivers(
    active_only: bool = Query(False),
    company: Company = Depends(get_current_company),
    db: AsyncSession = Depends(get_db),
) -> list[DriverOut]:
    return [DriverOut.model_validate(d) for d in await dispatch.list_drivers(db, company.id, active_only)]


@router.post("/drivers", response_model=DriverWithToken, status_code=status.HTTP_201_CREATED, tags=["Dispatch"])
async def create_driver(
    data: DriverCreate,
    company: Company = Depends(get_current_company),
    db: AsyncSession = Depends(get_db),
) -> DriverWithToken:
    return DriverWithToken.model_validate(await dispatch.create_driver(db, company.id, data))


@router.patch("/drivers/{driver_id}", response_model=DriverOut, tags=["Dispatch"])
async def update_driver(
    driver_id: str,
    data: DriverUpdate,
    company: Company = Depends(get_current_company),
    db: AsyncSession = Depends(get_db),
) -> DriverOut:
    return DriverOut.model_validate(await dispatch.update_driver(db, company.id, driver_id, data))


@router.delete("/drivers/{driver_id}", status_code=status.HTTP_204_NO_CONTENT, tags=["Dispatch"])
async def delete_driver(
    driver_id: str,
    company: Company = Depends(get_current_company),
    db: AsyncSession = Depends(get_db),
) -> None:
    await dispatch.delete_driver(db, company.id, driver_id)


@router.post("/drivers/{driver_id}/token", response_model=DriverWithToken, tags=["Dispatch"])
async def regenerate_driver_token(
    driver_id: str,
    company: Company = Depends(get_current_company),
    db: AsyncSession = Depends(get_db),
) -> DriverWithToken:
    return DriverWithToken.model_validate(await dispatch.regenerate_token(db, company.id, driver_id))


@router.get("/drivers/{driver_id}/financials", response_model=DriverFinancials, tags=["Dispatch"])
async def driver_financials(
    driver_id: str,
    company: Company = Depends(get_current_company),
    db: AsyncSession = Depends(get_db),
) -> DriverFinancials:
    driver = await dispatch.get_driver(db, company.id, driver_id)
    return await dispatch.driver_financials(db, driver)


@router.post("/drivers/{driver_id}/pay", tags=["Dispatch"])
async def pay_driver(
    driver_id: str,
    company: Company = Depends(get_current_company),
    db: AsyncSession = Depends(get_db),
) -> dict:
    return await dispatch.pay_driver(db, company.id, driver_id)


# =============================================================================
# KITCHEN
# =============================================================================

@router.get("/kitchen", response_model=list[OrderOut], tags=["Kitchen"])
async def kitchen_board(
    company: Company = Depends(get_current_company),
    db: AsyncSession = Depends(get_db),
) -> list[OrderOut]:
    return await kitchen.kitchen_board(db, company.id)


@router.post("/kitchen/orders/{order_id}/advance", response_model=OrderOut, tags=["Kitchen"])
async def kitchen_advance(
    order_id: str,
    company: Company = Depends(get_current_company),
    db: AsyncSession = Depends(get_db),
    feed: ChangeFeed = Depends(get_change_feed),
) -> OrderOut:
    return OrderOut.model_validate(await kitchen.kitchen_advance(db, company, order_id, feed))


# =============================================================================
# SUBSCRIPTION
# =============================================================================

@router.get("/plans", response_model=list[PlanOut], tags=["Subscription"])
async def list_plans(
    company: Company = Depends(get_current_company),
    db: AsyncSession = Depends(get_db),
) -> list[PlanOut]:
    return [PlanOut.model_validate(p) for p in await billing.list_plans(db)]


@router.get("/subscription", response_model=SubscriptionStatusOut, tags=["Subscription"])
async def subscription_status(
    company: Company = Depends(get_current_company),
    db: AsyncSession = Depends(get_db),
) -> SubscriptionStatusOut:
    return await billing.get_subscription_status(db, company)


@router.post("/subscription", response_model=SubscriptionStatusOut, tags=["Subscription"])
async def subscribe(
    data: SubscribeRequest,
    company: Company = Depends(get_current_company),
    db: AsyncSession = Depends(get_db),
    payments: BasePaymentService = Depends(get_payment_service),
) -> SubscriptionStatusOut:
    await billing.subscribe(db, company, data.plan_key, payments)
    return await billing.get_subscription_status(db, company)


# =============================================================================
# ACTIVITY & REPORTS
# =============================================================================

@router.get("/activity", tags=["Activity"])
async def list_activity(
    entity_type: Optional[str] = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    company: Company = Depends(get_current_company),
    db: AsyncSession = Depends(get_db),
) -> dict:
    total, entries = await activity.list_activity(db, company.id, skip, limit, entity_type)
    return {"total": total, "entries": [ActivityOut.model_validate(e) for e in entries]}


@router.post("/reports/orders", response_model=ReportQueued, status_code=status.HTTP_202_ACCEPTED, tags=["Reports"])
async def export_orders(company: Company = Depends(get_current_company)) -> ReportQueued:
    """Queue an Excel export of every order of the store."""
    task = export_orders_report.delay(company.id)
    logger.info(f"Report export queued for {company.slug}: {task.id}")
    return ReportQueued(task_id=task.id, message="Relatório em processamento")
