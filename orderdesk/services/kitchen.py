"""
Kitchen display.

The board lists confirmed and preparing orders, oldest first, showing only
the items that go through the kitchen. The display is opened either by
staff or through the store's public ``kds_token`` link.
"""

import logging
import secrets

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from orderdesk.core.exceptions import ConflictError, NotFoundError
from orderdesk.models import Company, Order, OrderStatus
from orderdesk.schemas import OrderItemOut, OrderOut
from orderdesk.services.activity import log_activity
from orderdesk.services.realtime import ChangeFeed

logger = logging.getLogger(__name__)

KITCHEN_STATUSES = (OrderStatus.CONFIRMED, OrderStatus.PREPARING)
KITCHEN_NEXT = {
    OrderStatus.CONFIRMED: OrderStatus.PREPARING,
    OrderStatus.PREPARING: OrderStatus.READY,
}


async def company_by_kds_token(db: AsyncSession, token: str) -> Company:
    company = (await db.execute(select(Company).where(Company.kds_token == token))).scalar_one_or_none()
    if company is None:
        raise NotFoundError("Kitchen display", code="KDS_NOT_FOUND")
    return company


async def kitchen_board(db: AsyncSession, company_id: str) -> list[OrderOut]:
    result = await db.execute(
        select(Order)
        .where(Order.company_id == company_id, Order.status.in_(KITCHEN_STATUSES))
        .order_by(Order.created_at)
    )
    board = []
    for order in result.scalars().all():
        view = OrderOut.model_validate(order)
        view.items = [OrderItemOut.model_validate(i) for i in order.items if i.requires_preparation]
        board.append(view)
    return board


async def kitchen_advance(db: AsyncSession, company: Company, order_id: str, feed: ChangeFeed) -> Order:
    """``confirmed → preparing → ready``; anything else is a conflict."""
    order = await db.get(Order, order_id)
    if order is None or order.company_id != company.id:
        raise NotFoundError("Order", order_id, code="ORDER_NOT_FOUND")

    target = KITCHEN_NEXT.get(order.status)
    if target is None:
        raise ConflictError(f"Order in status {order.status.value} is not in the kitchen", code="INVALID_STATUS")

    previous = order.status
    order.status = target
    log_activity(
        db, company.id, "status_change", "order",
        entity_id=order.id,
        entity_name=f"Pedido #{order.ref}",
        description=f"Cozinha: {previous.value} → {target.value}",
        old_data={"status": previous.value},
        new_data={"status": target.value},
    )
    await db.commit()

    logger.info(f"👨‍🍳 Kitchen moved order {order.ref} to {target.value}")
    feed.publish_change(company.id, "orders", "UPDATE", order, old={"status": previous.value})
    return order


async def regenerate_kds_token(db: AsyncSession, company: Company) -> Company:
    company.kds_token = secrets.token_urlsafe(24)
    await db.commit()
    logger.info(f"Kitchen display token regenerated for {company.slug}")
    return company
