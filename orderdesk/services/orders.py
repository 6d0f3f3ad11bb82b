"""
Order intake and lifecycle.

Orders enter through the public storefront (``place_order``) or the point of
sale (``create_pos_order``) and then walk the status flow of their source.
Every committed change is published on the change feed.
"""

import logging
from datetime import timedelta
from typing import Optional

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from orderdesk.core.config import get_settings
from orderdesk.core.exceptions import ConflictError, NotFoundError, PaymentError, ValidationError
from orderdesk.models import (
    Company,
    CompanyStatus,
    Coupon,
    Customer,
    CustomerAddress,
    DeliveryDriver,
    Order,
    OrderItem,
    OrderSource,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    Product,
    TableSession,
    new_id,
    utcnow,
)
from orderdesk.schemas import (
    AddressIn,
    CheckoutRequest,
    DeliveryType,
    OrderFilter,
    OrderItemIn,
    OrderOut,
    OrderPlaced,
    OrderItemOut,
    Period,
    PosOrderRequest,
    StatusChangeResponse,
    TrackingResponse,
)
from orderdesk.services import billing, coupons, messaging, order_flow, tables
from orderdesk.services.activity import log_activity
from orderdesk.services.dispatch import cancel_pending_offers, release_driver
from orderdesk.services.notifications import BaseNotificationService
from orderdesk.services.payment import BasePaymentService
from orderdesk.services.realtime import ChangeFeed, row_to_dict

logger = logging.getLogger(__name__)

PERIOD_DAYS = {Period.WEEK: 7, Period.MONTH: 30}


# =============================================================================
# LOOKUPS
# =============================================================================

async def get_company_by_slug(db: AsyncSession, slug: str) -> Company:
    company = (await db.execute(select(Company).where(Company.slug == slug))).scalar_one_or_none()
    if company is None:
        raise NotFoundError("Company", slug, code="COMPANY_NOT_FOUND")
    return company


async def get_order(db: AsyncSession, company_id: str, order_id: str) -> Order:
    order = await db.get(Order, order_id)
    if order is None or order.company_id != company_id:
        raise NotFoundError("Order", order_id, code="ORDER_NOT_FOUND")
    return order


# =============================================================================
# INTAKE HELPERS
# =============================================================================

async def resolve_items(db: AsyncSession, company_id: str, lines: list[OrderItemIn]) -> tuple[list[dict], float]:
    """
    Price cart lines against the company's active products.

    Returns:
        Item column values and the subtotal

    Raises:
        ValidationError: PRODUCT_UNAVAILABLE for unknown or inactive products
    """
    product_ids = {line.product_id for line in lines}
    products = {
        p.id: p
        for p in (
            await db.execute(
                select(Product).where(
                    Product.company_id == company_id,
                    Product.id.in_(product_ids),
                    Product.is_active.is_(True),
                )
            )
        ).scalars().all()
    }

    items = []
    subtotal = 0.0
    for line in lines:
        product = products.get(line.product_id)
        if product is None:
            raise ValidationError(f"Product {line.product_id} is not available", code="PRODUCT_UNAVAILABLE")

        unit_price = round(product.effective_price + sum(o.price_modifier for o in line.options), 2)
        total_price = round(unit_price * line.quantity, 2)
        subtotal += total_price
        items.append({
            "product_id": product.id,
            "product_name": product.name,
            "quantity": line.quantity,
            "unit_price": unit_price,
            "total_price": total_price,
            "options": [o.model_dump() for o in line.options],
            "notes": line.notes,
            "requires_preparation": product.requires_preparation,
        })
    return items, round(subtotal, 2)


async def _upsert_customer(
    db: AsyncSession,
    company_id: str,
    name: str,
    phone: Optional[str],
    email: Optional[str],
) -> Optional[Customer]:
    if not email:
        return None
    customer = (
        await db.execute(select(Customer).where(Customer.company_id == company_id, Customer.email == email))
    ).scalar_one_or_none()
    if customer is None:
        customer = Customer(company_id=company_id, name=name, phone=phone, email=email)
        db.add(customer)
    else:
        customer.name = name
        customer.phone = phone or customer.phone
    await db.flush()
    return customer


def _add_address(db: AsyncSession, company_id: str, address: AddressIn, customer: Optional[Customer]) -> CustomerAddress:
    row = CustomerAddress(
        company_id=company_id,
        customer_id=customer.id if customer else None,
        **address.model_dump(),
    )
    db.add(row)
    return row


async def _consume_coupon(db: AsyncSession, coupon: Coupon) -> None:
    """Increment usage, guarded against exceeding ``max_uses`` concurrently."""
    result = await db.execute(
        update(Coupon)
        .where(
            Coupon.id == coupon.id,
            or_(Coupon.max_uses.is_(None), Coupon.current_uses < Coupon.max_uses),
        )
        .values(current_uses=Coupon.current_uses + 1)
        .execution_options(synchronize_session="fetch")
    )
    if not result.rowcount:
        raise ValidationError(f"Coupon {coupon.code} has reached its usage limit", code="COUPON_EXHAUSTED")


async def _reload(db: AsyncSession, order: Order) -> Order:
    await db.refresh(order, attribute_names=["items"])
    return order


# =============================================================================
# PUBLIC CHECKOUT
# =============================================================================

async def place_order(
    db: AsyncSession,
    slug: str,
    data: CheckoutRequest,
    payments: BasePaymentService,
    feed: ChangeFeed,
) -> OrderPlaced:
    """
    Create an order from the public storefront.

    Raises:
        NotFoundError: unknown store
        ConflictError: STORE_UNAVAILABLE / STORE_CLOSED
        ValidationError: product, minimum order, table session or coupon rejections
        SubscriptionLimitError: store reached its monthly revenue limit
        PaymentError: the online payment intent could not be created
    """
    settings = get_settings()
    company = await get_company_by_slug(db, slug)
    if company.status != CompanyStatus.APPROVED:
        raise ConflictError("Store is not accepting orders", code="STORE_UNAVAILABLE")
    if not company.is_open:
        raise ConflictError("Store is closed", code="STORE_CLOSED")

    await billing.ensure_within_limit(db, company)

    source = OrderSource(data.source.value)
    items, subtotal = await resolve_items(db, company.id, data.items)

    session: Optional[TableSession] = None
    if source == OrderSource.TABLE:
        session = await tables.get_open_session_by_token(db, company.id, data.table_session_token)
        if session is None:
            raise ValidationError("Table session is not open", code="TABLE_SESSION_INVALID")
    elif company.min_order_value and subtotal < company.min_order_value:
        raise ValidationError(
            f"Minimum order value is {company.min_order_value:.2f}",
            code="MIN_ORDER_VALUE",
        )

    coupon, discount = None, 0.0
    if data.coupon_code:
        coupon, discount = await coupons.validate_coupon(db, company.id, data.coupon_code, subtotal)

    delivery_fee = company.delivery_fee if source == OrderSource.ONLINE else 0.0
    total = round(subtotal - discount + delivery_fee, 2)

    if coupon is not None:
        try:
            await _consume_coupon(db, coupon)
        except ValidationError:
            await db.rollback()
            raise

    order_id = new_id()
    client_secret = None
    payment_intent_id = None
    if data.payment_method == PaymentMethod.ONLINE:
        intent = await payments.create_payment_intent(
            amount=total,
            metadata={"order_id": order_id, "company_id": company.id},
        )
        if not intent.success:
            await db.rollback()
            logger.warning(f"Payment intent failed for {slug}: {intent.error_message}")
            raise PaymentError(intent.error_message or "Payment could not be started")
        client_secret = intent.client_secret
        payment_intent_id = intent.payment_intent_id

    customer = await _upsert_customer(db, company.id, data.customer_name, data.customer_phone, data.customer_email)
    address = _add_address(db, company.id, data.address, customer) if source == OrderSource.ONLINE else None
    await db.flush()

    order = Order(
        id=order_id,
        company_id=company.id,
        customer_id=customer.id if customer else None,
        customer_name=data.customer_name,
        customer_phone=data.customer_phone,
        customer_email=data.customer_email,
        delivery_address_id=address.id if address else None,
        source=source,
        status=OrderStatus.PENDING,
        payment_method=data.payment_method,
        payment_status=PaymentStatus.PENDING,
        payment_intent_id=payment_intent_id,
        needs_change=data.needs_change,
        change_for=data.change_for,
        subtotal=subtotal,
        delivery_fee=delivery_fee,
        discount_amount=discount,
        total=total,
        coupon_id=coupon.id if coupon else None,
        notes=data.notes,
        table_session_id=session.id if session else None,
        estimated_delivery_time=utcnow() + timedelta(minutes=settings.estimated_delivery_minutes),
        items=[OrderItem(**item) for item in items],
    )
    db.add(order)
    await db.commit()

    order = await _reload(db, order)
    logger.info(f"🧾 New {source.value} order {order.ref} at {slug}: {order.total:.2f}")
    feed.publish_change(company.id, "orders", "INSERT", order)

    return OrderPlaced(
        message="Pedido realizado com sucesso!",
        order=OrderOut.model_validate(order),
        client_secret=client_secret,
    )


# =============================================================================
# POINT OF SALE
# =============================================================================

POS_SOURCES = {
    DeliveryType.DELIVERY: OrderSource.POS,
    DeliveryType.PICKUP: OrderSource.PICKUP,
    DeliveryType.TABLE: OrderSource.TABLE,
}


async def create_pos_order(db: AsyncSession, company: Company, data: PosOrderRequest, feed: ChangeFeed) -> Order:
    """Staff-entered order; starts confirmed."""
    source = POS_SOURCES[data.delivery_type]
    items, subtotal = await resolve_items(db, company.id, data.items)

    if data.table_session_id:
        session = await db.get(TableSession, data.table_session_id)
        if session is None or session.company_id != company.id:
            raise NotFoundError("Table session", data.table_session_id)

    customer = await _upsert_customer(db, company.id, data.customer_name, data.customer_phone, data.customer_email)
    address = None
    if data.delivery_type == DeliveryType.DELIVERY:
        address = _add_address(db, company.id, data.address, customer)
        await db.flush()

    delivery_fee = company.delivery_fee if data.delivery_type == DeliveryType.DELIVERY else 0.0
    order = Order(
        company_id=company.id,
        customer_id=customer.id if customer else None,
        customer_name=data.customer_name,
        customer_phone=data.customer_phone,
        customer_email=data.customer_email,
        delivery_address_id=address.id if address else None,
        source=source,
        status=OrderStatus.CONFIRMED,
        payment_method=data.payment_method,
        needs_change=data.needs_change,
        change_for=data.change_for,
        subtotal=subtotal,
        delivery_fee=delivery_fee,
        total=round(subtotal + delivery_fee, 2),
        notes=data.notes,
        table_session_id=data.table_session_id,
        items=[OrderItem(**item) for item in items],
    )
    db.add(order)
    await db.commit()

    order = await _reload(db, order)
    logger.info(f"🧾 POS {source.value} order {order.ref} for company {company.slug}: {order.total:.2f}")
    feed.publish_change(company.id, "orders", "INSERT", order)
    return order


# =============================================================================
# QUERIES
# =============================================================================

def _filter_clauses(status_filter: OrderFilter) -> list:
    terminal = list(order_flow.TERMINAL_STATUSES)
    if status_filter == OrderFilter.ACTIVE:
        return [Order.status.not_in(terminal)]
    if status_filter == OrderFilter.COMPLETED:
        return [Order.status == OrderStatus.DELIVERED]
    if status_filter == OrderFilter.CANCELLED:
        return [Order.status == OrderStatus.CANCELLED]
    if status_filter in (OrderFilter.PICKUP, OrderFilter.POS, OrderFilter.TABLE):
        return [Order.source == OrderSource(status_filter.value), Order.status.not_in(terminal)]
    return []


def _period_start(period: Period):
    now = utcnow()
    if period == Period.TODAY:
        return now.replace(hour=0, minute=0, second=0, microsecond=0)
    if period in PERIOD_DAYS:
        return now - timedelta(days=PERIOD_DAYS[period])
    return None


async def list_orders(
    db: AsyncSession,
    company_id: str,
    status_filter: OrderFilter = OrderFilter.ACTIVE,
    period: Period = Period.ALL,
    skip: int = 0,
    limit: int = 50,
) -> tuple[int, list[Order]]:
    """Orders of a company, newest first; ``period`` narrows completed, cancelled and all."""
    clauses = [Order.company_id == company_id, *_filter_clauses(status_filter)]
    if status_filter in (OrderFilter.COMPLETED, OrderFilter.CANCELLED, OrderFilter.ALL):
        start = _period_start(period)
        if start is not None:
            clauses.append(Order.created_at >= start)

    total = (await db.execute(select(func.count(Order.id)).where(*clauses))).scalar() or 0
    result = await db.execute(
        select(Order).where(*clauses).order_by(Order.created_at.desc()).offset(skip).limit(limit)
    )
    return total, list(result.scalars().all())


async def track_order(db: AsyncSession, order_id: str) -> TrackingResponse:
    """Public tracking view of an order."""
    order = await db.get(Order, order_id)
    if order is None:
        raise NotFoundError("Order", order_id, code="ORDER_NOT_FOUND")

    driver_name = None
    if order.delivery_driver_id:
        driver = await db.get(DeliveryDriver, order.delivery_driver_id)
        driver_name = driver.driver_name if driver else None

    return TrackingResponse(
        id=order.id,
        ref=order.ref,
        status=order.status,
        status_label=order_flow.status_label(order.status, order.source),
        message=order_flow.customer_message(order.status),
        source=order.source,
        items=[OrderItemOut.model_validate(i) for i in order.items],
        subtotal=order.subtotal,
        delivery_fee=order.delivery_fee,
        discount_amount=order.discount_amount,
        total=order.total,
        driver_name=driver_name,
        queue_position=order.queue_position,
        estimated_delivery_time=order.estimated_delivery_time,
        created_at=order.created_at,
    )


# =============================================================================
# STATUS CHANGES
# =============================================================================

async def _notify_customer(company: Company, order: Order, notifier: BaseNotificationService) -> None:
    if not company.notifications_enabled or order.status == OrderStatus.CANCELLED:
        return
    result = await notifier.send_order_status(
        company_name=company.name,
        order_ref=order.ref,
        customer_phone=order.customer_phone,
        customer_email=order.customer_email,
        status_message=order_flow.customer_message(order.status),
    )
    if not result.success:
        logger.warning(f"Customer notification failed for order {order.ref}: {result.error_message}")


def _whatsapp_link(company: Company, order: Order) -> Optional[str]:
    if not company.whatsapp_notifications_enabled:
        return None
    return messaging.customer_status_link(order, order.status)


async def _apply_status(
    db: AsyncSession,
    company: Company,
    order: Order,
    target: OrderStatus,
    notifier: BaseNotificationService,
    feed: ChangeFeed,
) -> StatusChangeResponse:
    previous = order.status
    order.status = target
    if target == OrderStatus.DELIVERED and order.delivered_at is None:
        order.delivered_at = utcnow()
    log_activity(
        db, company.id, "status_change", "order",
        entity_id=order.id,
        entity_name=f"Pedido #{order.ref}",
        description=f"{order_flow.status_label(previous, order.source)} → {order_flow.status_label(target, order.source)}",
        old_data={"status": previous.value},
        new_data={"status": target.value},
    )
    promoted = None
    if target == OrderStatus.DELIVERED and order.delivery_driver_id:
        promoted = await release_driver(db, order.delivery_driver_id)
    await db.commit()

    logger.info(f"Order {order.ref}: {previous.value} → {target.value}")
    feed.publish_change(company.id, "orders", "UPDATE", order, old={"status": previous.value}, driver_id=order.delivery_driver_id)
    _publish_promoted(feed, company, promoted)
    await _notify_customer(company, order, notifier)

    return StatusChangeResponse(order=OrderOut.model_validate(order), whatsapp_link=_whatsapp_link(company, order))


async def advance_order(
    db: AsyncSession,
    company: Company,
    order_id: str,
    notifier: BaseNotificationService,
    feed: ChangeFeed,
) -> StatusChangeResponse:
    """Move an order to the next status of its flow."""
    order = await get_order(db, company.id, order_id)
    target = order_flow.next_status(order.status, order.source)
    if target is None:
        raise ConflictError(f"Order in status {order.status.value} has no next status", code="NO_NEXT_STATUS")
    return await _apply_status(db, company, order, target, notifier, feed)


async def update_status(
    db: AsyncSession,
    company: Company,
    order_id: str,
    target: OrderStatus,
    notifier: BaseNotificationService,
    payments: BasePaymentService,
    feed: ChangeFeed,
) -> StatusChangeResponse:
    """Set an explicit status; ``cancelled`` goes through ``cancel_order``."""
    order = await get_order(db, company.id, order_id)
    if not order_flow.can_transition(order.status, target, order.source):
        raise ConflictError(
            f"Cannot change order from {order.status.value} to {target.value}",
            code="INVALID_TRANSITION",
        )
    if target == OrderStatus.CANCELLED:
        return await cancel_order(db, company, order_id, "Cancelado pelo estabelecimento", payments, feed)
    return await _apply_status(db, company, order, target, notifier, feed)


def _publish_promoted(feed: ChangeFeed, company: Company, promoted: Optional[Order]) -> None:
    if promoted is not None:
        feed.publish_change(company.id, "orders", "UPDATE", promoted, driver_id=promoted.delivery_driver_id)


async def cancel_order(
    db: AsyncSession,
    company: Company,
    order_id: str,
    reason: str,
    payments: BasePaymentService,
    feed: ChangeFeed,
) -> StatusChangeResponse:
    """
    Cancel an order, or delete it when it has no items.

    Pending offers are cancelled and the assigned driver released. A table
    session left without other active orders is closed. Paid online orders
    are refunded; a refund failure is logged and the order stays paid.
    """
    order = await get_order(db, company.id, order_id)
    if order.status in order_flow.TERMINAL_STATUSES:
        raise ConflictError(f"Order is already {order.status.value}", code="INVALID_TRANSITION")

    await cancel_pending_offers(db, order.id)
    driver_id = order.delivery_driver_id

    if order.table_session_id:
        await tables.close_session_if_idle(db, order.table_session_id, excluding_order_id=order.id)

    if not order.items:
        snapshot = row_to_dict(order)
        log_activity(
            db, company.id, "delete", "order",
            entity_id=order.id,
            entity_name=f"Pedido #{order.ref}",
            description="Pedido sem itens removido",
            old_data={"status": order.status.value, "total": order.total},
        )
        await db.delete(order)
        promoted = await release_driver(db, driver_id) if driver_id else None
        await db.commit()
        logger.info(f"🗑️ Orphan order {order.ref} deleted")
        feed.publish_change(company.id, "orders", "DELETE", old=snapshot)
        _publish_promoted(feed, company, promoted)
        return StatusChangeResponse(deleted=True)

    previous = order.status
    order.status = OrderStatus.CANCELLED
    order.cancellation_reason = reason
    order.queue_position = None
    log_activity(
        db, company.id, "cancel", "order",
        entity_id=order.id,
        entity_name=f"Pedido #{order.ref}",
        description=reason,
        old_data={"status": previous.value},
        new_data={"status": OrderStatus.CANCELLED.value},
    )

    if (
        order.payment_method == PaymentMethod.ONLINE
        and order.payment_status == PaymentStatus.PAID
        and order.payment_intent_id
    ):
        refund = await payments.refund_payment(order.payment_intent_id, reason=reason)
        if refund.success:
            order.payment_status = PaymentStatus.REFUNDED
            logger.info(f"💸 Order {order.ref} refunded ({refund.refund_id})")
        else:
            logger.error(f"Refund failed for order {order.ref}: {refund.error_message}")

    promoted = await release_driver(db, driver_id) if driver_id else None
    await db.commit()
    logger.info(f"❌ Order {order.ref} cancelled: {reason}")
    feed.publish_change(company.id, "orders", "UPDATE", order, old={"status": previous.value}, driver_id=order.delivery_driver_id)
    _publish_promoted(feed, company, promoted)
    return StatusChangeResponse(order=OrderOut.model_validate(order), whatsapp_link=_whatsapp_link(company, order))


async def convert_to_delivery(
    db: AsyncSession,
    company: Company,
    order_id: str,
    address: AddressIn,
    feed: ChangeFeed,
) -> Order:
    """Turn a pickup order into a delivery at the company's fee."""
    order = await get_order(db, company.id, order_id)
    if order.source != OrderSource.PICKUP:
        raise ConflictError("Only pickup orders can be converted to delivery", code="NOT_PICKUP")
    if order.status in order_flow.TERMINAL_STATUSES:
        raise ConflictError(f"Order is already {order.status.value}", code="INVALID_STATUS")

    row = _add_address(db, company.id, address, None)
    row.customer_id = order.customer_id
    await db.flush()

    order.source = OrderSource.POS
    order.delivery_address_id = row.id
    order.delivery_fee = company.delivery_fee
    order.total = round(order.subtotal - order.discount_amount + company.delivery_fee, 2)
    log_activity(
        db, company.id, "convert", "order",
        entity_id=order.id,
        entity_name=f"Pedido #{order.ref}",
        description="Retirada convertida em entrega",
        new_data={"delivery_fee": order.delivery_fee, "total": order.total},
    )
    await db.commit()

    logger.info(f"Order {order.ref} converted to delivery")
    feed.publish_change(company.id, "orders", "UPDATE", order)
    return order


async def mark_paid_from_webhook(db: AsyncSession, event: dict, feed: ChangeFeed) -> Optional[Order]:
    """
    Apply a verified payment event.

    Only ``payment_intent.succeeded`` and ``payment_intent.payment_failed``
    are handled; the order is matched on its payment intent id.
    """
    event_type = event.get("type")
    intent = (event.get("data") or {}).get("object") or {}
    intent_id = intent.get("id")
    if event_type not in ("payment_intent.succeeded", "payment_intent.payment_failed") or not intent_id:
        logger.debug(f"Ignoring payment event {event_type}")
        return None

    order = (
        await db.execute(select(Order).where(Order.payment_intent_id == intent_id))
    ).scalar_one_or_none()
    if order is None:
        logger.warning(f"Payment event {event_type} for unknown intent {intent_id}")
        return None

    order.payment_status = (
        PaymentStatus.PAID if event_type == "payment_intent.succeeded" else PaymentStatus.FAILED
    )
    await db.commit()

    logger.info(f"💳 Order {order.ref} payment {order.payment_status.value}")
    feed.publish_change(order.company_id, "orders", "UPDATE", order)
    return order
