"""Driver app endpoints (``X-Driver-Token``)."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from orderdesk.core.security import driver_by_token, get_current_driver
from orderdesk.database import get_db
from orderdesk.models import DeliveryDriver
from orderdesk.schemas import (
    DriverFinancials,
    DriverLogin,
    DriverOfferOut,
    DriverOut,
    NotificationOut,
    OfferOut,
    OrderOut,
    StartDeliveriesRequest,
)
from orderdesk.services import dispatch
from orderdesk.services.realtime import ChangeFeed, get_change_feed

router = APIRouter(prefix="/api/driver", tags=["Driver"])


@router.post("/login", response_model=DriverOut)
async def driver_login(data: DriverLogin, db: AsyncSession = Depends(get_db)) -> DriverOut:
    """Exchange an access token for the driver profile."""
    return DriverOut.model_validate(await driver_by_token(db, data.access_token))


@router.get("/me", response_model=DriverOut)
async def me(driver: DeliveryDriver = Depends(get_current_driver)) -> DriverOut:
    return DriverOut.model_validate(driver)


@router.post("/availability", response_model=DriverOut)
async def set_availability(
    available: bool = Query(...),
    driver: DeliveryDriver = Depends(get_current_driver),
    db: AsyncSession = Depends(get_db),
    feed: ChangeFeed = Depends(get_change_feed),
) -> DriverOut:
    return DriverOut.model_validate(await dispatch.set_availability(db, driver, available, feed))


@router.get("/orders", response_model=list[OrderOut])
async def my_orders(
    driver: DeliveryDriver = Depends(get_current_driver),
    db: AsyncSession = Depends(get_db),
) -> list[OrderOut]:
    return [OrderOut.model_validate(o) for o in await dispatch.driver_orders(db, driver)]


@router.post("/orders/{order_id}/accept", response_model=OrderOut)
async def accept_delivery(
    order_id: str,
    driver: DeliveryDriver = Depends(get_current_driver),
    db: AsyncSession = Depends(get_db),
    feed: ChangeFeed = Depends(get_change_feed),
) -> OrderOut:
    return OrderOut.model_validate(await dispatch.driver_accept_delivery(db, driver, order_id, feed))


@router.post("/orders/{order_id}/start", response_model=OrderOut)
async def start_delivery(
    order_id: str,
    driver: DeliveryDriver = Depends(get_current_driver),
    db: AsyncSession = Depends(get_db),
    feed: ChangeFeed = Depends(get_change_feed),
) -> OrderOut:
    return OrderOut.model_validate(await dispatch.start_delivery(db, driver, order_id, feed))


@router.post("/orders/start", response_model=list[OrderOut])
async def start_deliveries(
    data: StartDeliveriesRequest,
    driver: DeliveryDriver = Depends(get_current_driver),
    db: AsyncSession = Depends(get_db),
    feed: ChangeFeed = Depends(get_change_feed),
) -> list[OrderOut]:
    """Leave with several orders at once."""
    started = await dispatch.start_deliveries(db, driver, data.order_ids, feed)
    return [OrderOut.model_validate(o) for o in started]


@router.post("/orders/{order_id}/complete")
async def complete_delivery(
    order_id: str,
    driver: DeliveryDriver = Depends(get_current_driver),
    db: AsyncSession = Depends(get_db),
    feed: ChangeFeed = Depends(get_change_feed),
) -> dict:
    order, next_order = await dispatch.complete_delivery(db, driver, order_id, feed)
    return {
        "order": OrderOut.model_validate(order),
        "next_order": OrderOut.model_validate(next_order) if next_order else None,
    }


@router.get("/offers", response_model=list[DriverOfferOut])
async def my_offers(
    driver: DeliveryDriver = Depends(get_current_driver),
    db: AsyncSession = Depends(get_db),
) -> list[DriverOfferOut]:
    return [
        DriverOfferOut(offer=OfferOut.model_validate(offer), order=OrderOut.model_validate(order))
        for offer, order in await dispatch.driver_offers(db, driver)
    ]


@router.post("/offers/{offer_id}/accept", response_model=OrderOut)
async def accept_offer(
    offer_id: str,
    driver: DeliveryDriver = Depends(get_current_driver),
    db: AsyncSession = Depends(get_db),
    feed: ChangeFeed = Depends(get_change_feed),
) -> OrderOut:
    """First acceptance wins; later ones get 409 ORDER_ALREADY_TAKEN."""
    return OrderOut.model_validate(await dispatch.accept_offer(db, driver, offer_id, feed))


@router.post("/offers/{offer_id}/reject", response_model=OfferOut)
async def reject_offer(
    offer_id: str,
    driver: DeliveryDriver = Depends(get_current_driver),
    db: AsyncSession = Depends(get_db),
) -> OfferOut:
    return OfferOut.model_validate(await dispatch.reject_offer(db, driver, offer_id))


@router.get("/financials", response_model=DriverFinancials)
async def financials(
    driver: DeliveryDriver = Depends(get_current_driver),
    db: AsyncSession = Depends(get_db),
) -> DriverFinancials:
    return await dispatch.driver_financials(db, driver)


@router.get("/notifications", response_model=list[NotificationOut])
async def notifications(
    unread_only: bool = Query(False),
    driver: DeliveryDriver = Depends(get_current_driver),
    db: AsyncSession = Depends(get_db),
) -> list[NotificationOut]:
    return [NotificationOut.model_validate(n) for n in await dispatch.list_notifications(db, driver, unread_only)]


@router.post("/notifications/{notification_id}/read", response_model=NotificationOut)
async def mark_read(
    notification_id: str,
    driver: DeliveryDriver = Depends(get_current_driver),
    db: AsyncSession = Depends(get_db),
) -> NotificationOut:
    return NotificationOut.model_validate(await dispatch.mark_notification_read(db, driver, notification_id))
