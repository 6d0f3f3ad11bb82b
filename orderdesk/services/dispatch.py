"""
Driver dispatch.

Two ways an order reaches a driver:

* **assignment** by staff: the driver is claimed with a conditional update on
  ``is_available``; a busy driver gets the order queued behind their current
  work and the queue advances as deliveries complete.
* **broadcast**: every active, available driver receives an offer; the first
  to accept claims the order with a conditional update on
  ``delivery_driver_id IS NULL`` and the other offers expire.

Driver lifecycle: ``available → pending_acceptance → in_delivery → available``.
"""

import logging
import secrets
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from orderdesk.core.exceptions import ConflictError, NotFoundError, ValidationError
from orderdesk.models import (
    Company,
    CustomerAddress,
    DeliveryDriver,
    DriverDelivery,
    DriverStatus,
    EarningStatus,
    Notification,
    OfferStatus,
    Order,
    OrderOffer,
    OrderStatus,
    utcnow,
)
from orderdesk.schemas import (
    AssignResult,
    BroadcastResult,
    DriverCreate,
    DriverDeliveryOut,
    DriverFinancials,
    DriverUpdate,
)
from orderdesk.services import messaging
from orderdesk.services.activity import log_activity
from orderdesk.services.notifications import BaseNotificationService
from orderdesk.services.realtime import ChangeFeed

logger = logging.getLogger(__name__)

ASSIGNABLE_STATUSES = (OrderStatus.READY, OrderStatus.AWAITING_DRIVER, OrderStatus.QUEUED)
ACTIVE_ASSIGNMENT_STATUSES = (
    OrderStatus.AWAITING_DRIVER,
    OrderStatus.QUEUED,
    OrderStatus.READY,
    OrderStatus.OUT_FOR_DELIVERY,
)
# the driver is working on these; queued orders wait behind them
BUSY_STATUSES = (OrderStatus.AWAITING_DRIVER, OrderStatus.READY, OrderStatus.OUT_FOR_DELIVERY)


# =============================================================================
# DRIVERS
# =============================================================================

def new_access_token() -> str:
    return secrets.token_urlsafe(32)


async def list_drivers(db: AsyncSession, company_id: str, active_only: bool = False) -> list[DeliveryDriver]:
    query = select(DeliveryDriver).where(DeliveryDriver.company_id == company_id)
    if active_only:
        query = query.where(DeliveryDriver.is_active.is_(True))
    result = await db.execute(query.order_by(DeliveryDriver.driver_name))
    return list(result.scalars().all())


async def get_driver(db: AsyncSession, company_id: str, driver_id: str) -> DeliveryDriver:
    driver = await db.get(DeliveryDriver, driver_id)
    if driver is None or driver.company_id != company_id:
        raise NotFoundError("Driver", driver_id, code="DRIVER_NOT_FOUND")
    return driver


async def create_driver(db: AsyncSession, company_id: str, data: DriverCreate) -> DeliveryDriver:
    driver = DeliveryDriver(company_id=company_id, access_token=new_access_token(), **data.model_dump())
    db.add(driver)
    await db.commit()
    logger.info(f"🛵 Driver {driver.driver_name} registered for company {company_id}")
    return driver


async def update_driver(db: AsyncSession, company_id: str, driver_id: str, data: DriverUpdate) -> DeliveryDriver:
    driver = await get_driver(db, company_id, driver_id)
    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(driver, field, value)
    if data.is_active is False:
        driver.is_available = False
        driver.driver_status = DriverStatus.OFFLINE
    await db.commit()
    return driver


async def delete_driver(db: AsyncSession, company_id: str, driver_id: str) -> None:
    driver = await get_driver(db, company_id, driver_id)
    await db.delete(driver)
    await db.commit()


async def regenerate_token(db: AsyncSession, company_id: str, driver_id: str) -> DeliveryDriver:
    driver = await get_driver(db, company_id, driver_id)
    driver.access_token = new_access_token()
    await db.commit()
    logger.info(f"Access token regenerated for driver {driver.driver_name}")
    return driver


async def set_availability(db: AsyncSession, driver: DeliveryDriver, available: bool, feed: ChangeFeed) -> DeliveryDriver:
    driver.is_available = available
    driver.driver_status = DriverStatus.AVAILABLE if available else DriverStatus.OFFLINE
    await db.commit()
    feed.publish_change(driver.company_id, "delivery_drivers", "UPDATE", driver, driver_id=driver.id)
    logger.info(f"Driver {driver.driver_name} is now {driver.driver_status.value}")
    return driver


# =============================================================================
# SHARED STEPS (staged on the caller's transaction)
# =============================================================================

async def cancel_pending_offers(db: AsyncSession, order_id: str, status: OfferStatus = OfferStatus.CANCELLED) -> int:
    result = await db.execute(
        update(OrderOffer)
        .where(OrderOffer.order_id == order_id, OrderOffer.status == OfferStatus.PENDING)
        .values(status=status, responded_at=utcnow())
        .execution_options(synchronize_session="fetch")
    )
    return result.rowcount or 0


async def release_driver(db: AsyncSession, driver_id: str) -> Optional[Order]:
    """
    Let a driver's queue move on after one of their orders left it.

    The order must already be detached, cancelled or deleted. Returns the
    order promoted from the queue, if any.
    """
    driver = await db.get(DeliveryDriver, driver_id)
    if driver is None:
        return None
    await db.flush()
    return await process_driver_queue(db, driver)


async def _claim_driver(db: AsyncSession, driver: DeliveryDriver) -> bool:
    """Atomically take an available driver; False when someone else got there first."""
    result = await db.execute(
        update(DeliveryDriver)
        .where(
            DeliveryDriver.id == driver.id,
            DeliveryDriver.company_id == driver.company_id,
            DeliveryDriver.is_available.is_(True),
        )
        .values(driver_status=DriverStatus.PENDING_ACCEPTANCE, is_available=False)
        .execution_options(synchronize_session="fetch")
    )
    return (result.rowcount or 0) > 0


def _notify(db: AsyncSession, driver: DeliveryDriver, title: str, message: str, data: dict) -> None:
    db.add(Notification(company_id=driver.company_id, driver_id=driver.id, title=title, message=message, data=data))


async def _get_order(db: AsyncSession, company_id: str, order_id: str) -> Order:
    order = await db.get(Order, order_id)
    if order is None or order.company_id != company_id:
        raise NotFoundError("Order", order_id, code="ORDER_NOT_FOUND")
    return order


async def _next_queue_position(db: AsyncSession, driver_id: str) -> int:
    result = await db.execute(
        select(func.max(Order.queue_position)).where(
            Order.delivery_driver_id == driver_id,
            Order.status == OrderStatus.QUEUED,
        )
    )
    return (result.scalar() or 0) + 1


async def _is_busy(db: AsyncSession, driver_id: str) -> bool:
    query = select(func.count(Order.id)).where(
        Order.delivery_driver_id == driver_id,
        Order.status.in_(BUSY_STATUSES),
    )
    return ((await db.execute(query)).scalar() or 0) > 0


# =============================================================================
# ASSIGNMENT
# =============================================================================

async def assign_driver(
    db: AsyncSession,
    company: Company,
    order_id: str,
    driver_id: str,
    notifier: BaseNotificationService,
    feed: ChangeFeed,
) -> AssignResult:
    """
    Assign an order to a driver, queueing it when the driver is busy.

    Raises:
        NotFoundError: DRIVER_NOT_FOUND / ORDER_NOT_FOUND
        ValidationError: DRIVER_INACTIVE
        ConflictError: INVALID_STATUS when the order is not ready for dispatch
    """
    driver = await get_driver(db, company.id, driver_id)
    if not driver.is_active:
        raise ValidationError(f"Driver {driver.driver_name} is inactive", code="DRIVER_INACTIVE")

    order = await _get_order(db, company.id, order_id)
    if order.status not in ASSIGNABLE_STATUSES:
        raise ConflictError(
            f"Order in status {order.status.value} cannot be assigned",
            code="INVALID_STATUS",
        )

    if order.delivery_driver_id == driver.id:
        queued = order.status == OrderStatus.QUEUED
        return AssignResult(
            driver_name=driver.driver_name,
            queued=queued,
            queue_position=order.queue_position,
            message="Pedido já atribuído a este entregador",
        )

    await cancel_pending_offers(db, order.id)

    promoted = None
    previous_driver_id = order.delivery_driver_id
    if previous_driver_id:
        order.delivery_driver_id = None
        order.queue_position = None
        promoted = await release_driver(db, previous_driver_id)

    claimed = await _claim_driver(db, driver)
    if claimed:
        order.status = OrderStatus.AWAITING_DRIVER
        order.queue_position = None
    else:
        order.status = OrderStatus.QUEUED
        order.queue_position = await _next_queue_position(db, driver.id)
    order.delivery_driver_id = driver.id
    queued = not claimed

    if queued:
        _notify(
            db, driver,
            "Pedido adicionado à fila",
            f"Pedido #{order.ref} - Posição {order.queue_position} na fila",
            {"order_id": order.id, "company_id": company.id, "queue_position": order.queue_position},
        )
        message = f"Pedido adicionado à fila (posição {order.queue_position})"
    else:
        _notify(
            db, driver,
            "Nova entrega disponível",
            f"Pedido #{order.ref}",
            {"order_id": order.id, "company_id": company.id},
        )
        message = "Pedido atribuído ao entregador"

    await db.commit()
    await db.refresh(driver)

    logger.info(
        f"🛵 Order {order.ref} → {driver.driver_name} "
        f"({'queued #' + str(order.queue_position) if queued else 'awaiting acceptance'})"
    )
    feed.publish_change(company.id, "orders", "UPDATE", order, driver_id=driver.id)
    feed.publish_change(company.id, "delivery_drivers", "UPDATE", driver, driver_id=driver.id)
    if promoted is not None:
        feed.publish_change(company.id, "orders", "UPDATE", promoted, driver_id=previous_driver_id)

    if company.notifications_enabled:
        result = await notifier.send_driver_assignment(driver.driver_phone, company.name, order.ref, queued)
        if not result.success:
            logger.warning(f"Driver notification failed for order {order.ref}: {result.error_message}")

    link = None
    if company.whatsapp_driver_share_enabled:
        address = await db.get(CustomerAddress, order.delivery_address_id) if order.delivery_address_id else None
        link = messaging.driver_order_link(driver, order, address)

    return AssignResult(
        driver_name=driver.driver_name,
        queued=queued,
        queue_position=order.queue_position,
        message=message,
        whatsapp_link=link,
    )


async def reassign_driver(
    db: AsyncSession,
    company: Company,
    order_id: str,
    driver_id: str,
    notifier: BaseNotificationService,
    feed: ChangeFeed,
) -> AssignResult:
    """Move an order to another driver, freeing the current one."""
    order = await _get_order(db, company.id, order_id)
    previous_driver_id = order.delivery_driver_id
    if previous_driver_id == driver_id:
        raise ConflictError("Order is already assigned to this driver", code="SAME_DRIVER")

    promoted = None
    if previous_driver_id:
        if order.status in (OrderStatus.OUT_FOR_DELIVERY, OrderStatus.AWAITING_DRIVER, OrderStatus.QUEUED):
            order.status = OrderStatus.READY
        order.delivery_driver_id = None
        order.queue_position = None
        promoted = await release_driver(db, previous_driver_id)
    await cancel_pending_offers(db, order.id)

    log_activity(
        db, company.id, "reassign", "order",
        entity_id=order.id,
        entity_name=f"Pedido #{order.ref}",
        description="Entregador reatribuído",
        old_data={"delivery_driver_id": previous_driver_id},
        new_data={"delivery_driver_id": driver_id},
    )
    await db.flush()

    result = await assign_driver(db, company, order.id, driver_id, notifier, feed)
    if promoted is not None:
        feed.publish_change(company.id, "orders", "UPDATE", promoted, driver_id=previous_driver_id)
    return result


# =============================================================================
# BROADCAST OFFERS
# =============================================================================

async def broadcast_order(db: AsyncSession, company: Company, order_id: str, feed: ChangeFeed) -> BroadcastResult:
    """Offer a ready order to every active, available driver."""
    order = await _get_order(db, company.id, order_id)
    if order.status != OrderStatus.READY:
        raise ConflictError("Only ready orders can be offered to drivers", code="INVALID_STATUS")

    drivers = (
        await db.execute(
            select(DeliveryDriver).where(
                DeliveryDriver.company_id == company.id,
                DeliveryDriver.is_active.is_(True),
                DeliveryDriver.is_available.is_(True),
            )
        )
    ).scalars().all()

    if not drivers:
        logger.info(f"No available drivers to offer order {order.ref}")
        return BroadcastResult(offers_created=0, driver_names=[])

    await cancel_pending_offers(db, order.id)
    offers = [OrderOffer(company_id=company.id, order_id=order.id, driver_id=d.id) for d in drivers]
    db.add_all(offers)
    for driver in drivers:
        _notify(db, driver, "Nova oferta de entrega", f"Pedido #{order.ref}", {"order_id": order.id})
    order.status = OrderStatus.AWAITING_DRIVER
    await db.commit()

    logger.info(f"📣 Order {order.ref} offered to {len(drivers)} drivers")
    feed.publish_change(company.id, "orders", "UPDATE", order)
    for offer in offers:
        feed.publish_change(company.id, "order_offers", "INSERT", offer, driver_id=offer.driver_id)

    return BroadcastResult(offers_created=len(offers), driver_names=[d.driver_name for d in drivers])


async def _get_driver_offer(db: AsyncSession, driver: DeliveryDriver, offer_id: str) -> OrderOffer:
    offer = await db.get(OrderOffer, offer_id)
    if offer is None or offer.driver_id != driver.id:
        raise NotFoundError("Offer", offer_id, code="OFFER_NOT_FOUND")
    if offer.status != OfferStatus.PENDING:
        raise ConflictError("Offer is no longer available", code="OFFER_UNAVAILABLE")
    return offer


async def accept_offer(db: AsyncSession, driver: DeliveryDriver, offer_id: str, feed: ChangeFeed) -> Order:
    """First driver to accept takes the order; later acceptances get a 409."""
    offer = await _get_driver_offer(db, driver, offer_id)

    claim = await db.execute(
        update(Order)
        .where(
            Order.id == offer.order_id,
            Order.delivery_driver_id.is_(None),
            Order.status.in_((OrderStatus.AWAITING_DRIVER, OrderStatus.READY)),
        )
        .values(delivery_driver_id=driver.id, status=OrderStatus.OUT_FOR_DELIVERY, queue_position=None)
        .execution_options(synchronize_session="fetch")
    )
    if not claim.rowcount:
        offer.status = OfferStatus.EXPIRED
        offer.responded_at = utcnow()
        await db.commit()
        logger.info(f"Offer {offer.id} lost: order already taken")
        raise ConflictError("Order was already accepted by another driver", code="ORDER_ALREADY_TAKEN")

    offer.status = OfferStatus.ACCEPTED
    offer.responded_at = utcnow()
    await cancel_pending_offers(db, offer.order_id, status=OfferStatus.EXPIRED)
    driver.driver_status = DriverStatus.IN_DELIVERY
    driver.is_available = False
    await db.commit()

    order = await db.get(Order, offer.order_id)
    await db.refresh(order)
    logger.info(f"✅ {driver.driver_name} accepted order {order.ref}")
    feed.publish_change(driver.company_id, "orders", "UPDATE", order, driver_id=driver.id)
    feed.publish_change(driver.company_id, "delivery_drivers", "UPDATE", driver, driver_id=driver.id)
    return order


async def reject_offer(db: AsyncSession, driver: DeliveryDriver, offer_id: str) -> OrderOffer:
    offer = await _get_driver_offer(db, driver, offer_id)
    offer.status = OfferStatus.REJECTED
    offer.responded_at = utcnow()
    await db.commit()
    logger.info(f"{driver.driver_name} rejected offer {offer.id}")
    return offer


# =============================================================================
# DRIVER-SIDE DELIVERY FLOW
# =============================================================================

async def _get_driver_order(db: AsyncSession, driver: DeliveryDriver, order_id: str) -> Order:
    order = await db.get(Order, order_id)
    if order is None or order.delivery_driver_id != driver.id:
        raise NotFoundError("Order", order_id, code="ORDER_NOT_FOUND")
    return order


def _publish_driver_update(feed: ChangeFeed, driver: DeliveryDriver, order: Order) -> None:
    feed.publish_change(driver.company_id, "orders", "UPDATE", order, driver_id=driver.id)
    feed.publish_change(driver.company_id, "delivery_drivers", "UPDATE", driver, driver_id=driver.id)


async def driver_accept_delivery(db: AsyncSession, driver: DeliveryDriver, order_id: str, feed: ChangeFeed) -> Order:
    """Driver confirms an assigned order: ``awaiting_driver → ready``."""
    order = await _get_driver_order(db, driver, order_id)
    if order.status != OrderStatus.AWAITING_DRIVER:
        raise ConflictError("Order is not awaiting acceptance", code="INVALID_STATUS")

    order.status = OrderStatus.READY
    driver.driver_status = DriverStatus.IN_DELIVERY
    driver.is_available = False
    await db.commit()

    logger.info(f"{driver.driver_name} accepted delivery {order.ref}")
    _publish_driver_update(feed, driver, order)
    return order


async def start_delivery(db: AsyncSession, driver: DeliveryDriver, order_id: str, feed: ChangeFeed) -> Order:
    order = await _get_driver_order(db, driver, order_id)
    if order.status not in (OrderStatus.READY, OrderStatus.AWAITING_DRIVER):
        raise ConflictError(f"Cannot start delivery from {order.status.value}", code="INVALID_STATUS")

    order.status = OrderStatus.OUT_FOR_DELIVERY
    driver.driver_status = DriverStatus.IN_DELIVERY
    driver.is_available = False
    await db.commit()

    logger.info(f"🚀 {driver.driver_name} started delivery {order.ref}")
    _publish_driver_update(feed, driver, order)
    return order


async def start_deliveries(db: AsyncSession, driver: DeliveryDriver, order_ids: list[str], feed: ChangeFeed) -> list[Order]:
    """Batch form of ``start_delivery``; all orders must be startable."""
    orders = [await _get_driver_order(db, driver, order_id) for order_id in order_ids]
    blocked = [o.ref for o in orders if o.status not in (OrderStatus.READY, OrderStatus.AWAITING_DRIVER)]
    if blocked:
        raise ConflictError(f"Orders cannot be started: {', '.join(blocked)}", code="INVALID_STATUS")

    for order in orders:
        order.status = OrderStatus.OUT_FOR_DELIVERY
    driver.driver_status = DriverStatus.IN_DELIVERY
    driver.is_available = False
    await db.commit()

    logger.info(f"🚀 {driver.driver_name} started {len(orders)} deliveries")
    for order in orders:
        _publish_driver_update(feed, driver, order)
    return orders


async def process_driver_queue(db: AsyncSession, driver: DeliveryDriver) -> Optional[Order]:
    """
    Advance the queue of ``driver``.

    While the driver still has an order in hand the queue is only renumbered
    from 1. Otherwise the head of the queue becomes ``awaiting_driver`` and
    the rest are renumbered; with nothing queued the driver becomes
    available. Staged on the caller's transaction.
    """
    queued = (
        await db.execute(
            select(Order)
            .where(Order.delivery_driver_id == driver.id, Order.status == OrderStatus.QUEUED)
            .order_by(Order.queue_position, Order.created_at)
        )
    ).scalars().all()

    if await _is_busy(db, driver.id):
        for position, order in enumerate(queued, start=1):
            order.queue_position = position
        return None

    if queued:
        head, rest = queued[0], queued[1:]
        head.status = OrderStatus.AWAITING_DRIVER
        head.queue_position = None
        for position, order in enumerate(rest, start=1):
            order.queue_position = position
        driver.driver_status = DriverStatus.PENDING_ACCEPTANCE
        driver.is_available = False
        _notify(db, driver, "Próxima entrega", f"Pedido #{head.ref}", {"order_id": head.id, "remaining": len(rest)})
        logger.info(f"Queue advanced for {driver.driver_name}: {head.ref} ({len(rest)} remaining)")
        return head

    driver.driver_status = DriverStatus.AVAILABLE
    driver.is_available = True
    return None


async def complete_delivery(db: AsyncSession, driver: DeliveryDriver, order_id: str, feed: ChangeFeed) -> tuple[Order, Optional[Order]]:
    """
    Mark an order delivered and record the driver's earning.

    Returns:
        The delivered order and the next order promoted from the queue
    """
    order = await _get_driver_order(db, driver, order_id)
    if order.status != OrderStatus.OUT_FOR_DELIVERY:
        raise ConflictError("Only orders out for delivery can be completed", code="INVALID_STATUS")

    now = utcnow()
    order.status = OrderStatus.DELIVERED
    order.delivered_at = now
    db.add(
        DriverDelivery(
            company_id=driver.company_id,
            driver_id=driver.id,
            order_id=order.id,
            delivery_fee_earned=driver.per_delivery_fee or 0.0,
            delivered_at=now,
        )
    )
    await db.flush()

    next_order = await process_driver_queue(db, driver)
    await db.commit()

    logger.info(f"📦 {driver.driver_name} delivered order {order.ref}")
    _publish_driver_update(feed, driver, order)
    if next_order is not None:
        feed.publish_change(driver.company_id, "orders", "UPDATE", next_order, driver_id=driver.id)
    return order, next_order


# =============================================================================
# DRIVER VIEWS & FINANCIALS
# =============================================================================

async def driver_orders(db: AsyncSession, driver: DeliveryDriver) -> list[Order]:
    result = await db.execute(
        select(Order)
        .where(Order.delivery_driver_id == driver.id, Order.status.in_(ACTIVE_ASSIGNMENT_STATUSES))
        .order_by(Order.queue_position.is_(None).desc(), Order.queue_position, Order.created_at)
    )
    return list(result.scalars().all())


async def driver_offers(db: AsyncSession, driver: DeliveryDriver) -> list[tuple[OrderOffer, Order]]:
    result = await db.execute(
        select(OrderOffer, Order)
        .join(Order, Order.id == OrderOffer.order_id)
        .where(OrderOffer.driver_id == driver.id, OrderOffer.status == OfferStatus.PENDING)
        .order_by(OrderOffer.created_at)
    )
    return [(offer, order) for offer, order in result.all()]


async def driver_financials(db: AsyncSession, driver: DeliveryDriver) -> DriverFinancials:
    deliveries = (
        await db.execute(
            select(DriverDelivery)
            .where(DriverDelivery.driver_id == driver.id)
            .order_by(DriverDelivery.delivered_at.desc())
        )
    ).scalars().all()

    pending = sum(d.delivery_fee_earned for d in deliveries if d.status == EarningStatus.PENDING)
    paid = sum(d.delivery_fee_earned for d in deliveries if d.status == EarningStatus.PAID)
    return DriverFinancials(
        pending_earnings=round(pending, 2),
        total_paid=round(paid, 2),
        delivery_count=len(deliveries),
        deliveries=[DriverDeliveryOut.model_validate(d) for d in deliveries],
    )


async def pay_driver(db: AsyncSession, company_id: str, driver_id: str) -> dict:
    """Settle every pending earning of a driver."""
    driver = await get_driver(db, company_id, driver_id)
    pending = (
        await db.execute(
            select(DriverDelivery).where(
                DriverDelivery.driver_id == driver.id,
                DriverDelivery.status == EarningStatus.PENDING,
            )
        )
    ).scalars().all()

    now = utcnow()
    amount = 0.0
    for delivery in pending:
        delivery.status = EarningStatus.PAID
        delivery.paid_at = now
        amount += delivery.delivery_fee_earned
    await db.commit()

    logger.info(f"💰 Paid {driver.driver_name}: {len(pending)} deliveries, {amount:.2f}")
    return {"driver_id": driver.id, "deliveries_paid": len(pending), "amount": round(amount, 2)}


async def list_notifications(db: AsyncSession, driver: DeliveryDriver, unread_only: bool = False) -> list[Notification]:
    query = select(Notification).where(Notification.driver_id == driver.id)
    if unread_only:
        query = query.where(Notification.is_read.is_(False))
    result = await db.execute(query.order_by(Notification.created_at.desc()).limit(100))
    return list(result.scalars().all())


async def mark_notification_read(db: AsyncSession, driver: DeliveryDriver, notification_id: str) -> Notification:
    notification = await db.get(Notification, notification_id)
    if notification is None or notification.driver_id != driver.id:
        raise NotFoundError("Notification", notification_id)
    notification.is_read = True
    await db.commit()
    return notification
