"""
Comandas (tabs) for counter and table service.

A tab number comes from a pre-printed card (``GeneratedComanda``), is typed
in by staff, or is the next free number. Closing or cancelling a tab frees
its pre-printed card for reuse.
"""

import logging
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from orderdesk.core.exceptions import ConflictError, NotFoundError, ValidationError
from orderdesk.models import (
    Comanda,
    ComandaItem,
    ComandaPayment,
    ComandaStatus,
    GeneratedComanda,
    TableSession,
    utcnow,
)
from orderdesk.schemas import ComandaClose, ComandaHistory, ComandaOpen, OrderItemIn
from orderdesk.services.orders import resolve_items
from orderdesk.services.realtime import ChangeFeed

logger = logging.getLogger(__name__)


async def list_comandas(
    db: AsyncSession,
    company_id: str,
    status: Optional[ComandaStatus] = ComandaStatus.OPEN,
    number: Optional[int] = None,
) -> list[Comanda]:
    query = select(Comanda).where(Comanda.company_id == company_id)
    if status is not None:
        query = query.where(Comanda.status == status)
    if number is not None:
        query = query.where(Comanda.number == number)
    result = await db.execute(query.order_by(Comanda.created_at.desc()))
    return list(result.scalars().all())


async def get_comanda(db: AsyncSession, company_id: str, comanda_id: str) -> Comanda:
    comanda = await db.get(Comanda, comanda_id)
    if comanda is None or comanda.company_id != company_id:
        raise NotFoundError("Comanda", comanda_id, code="COMANDA_NOT_FOUND")
    return comanda


def _require_open(comanda: Comanda) -> None:
    if comanda.status != ComandaStatus.OPEN:
        raise ConflictError(f"Comanda #{comanda.number} is {comanda.status.value}", code="COMANDA_NOT_OPEN")


def _recompute_total(comanda: Comanda) -> float:
    comanda.total = round(sum(i.total_price for i in comanda.items), 2)
    return comanda.total


async def _next_number(db: AsyncSession, company_id: str) -> int:
    result = await db.execute(
        select(func.max(Comanda.number)).where(
            Comanda.company_id == company_id,
            Comanda.status != ComandaStatus.CANCELLED,
        )
    )
    return (result.scalar() or 0) + 1


async def _release_generated(db: AsyncSession, comanda: Comanda) -> None:
    result = await db.execute(select(GeneratedComanda).where(GeneratedComanda.comanda_id == comanda.id))
    for card in result.scalars().all():
        card.used_at = None
        card.comanda_id = None


# =============================================================================
# LIFECYCLE
# =============================================================================

async def open_comanda(db: AsyncSession, company_id: str, data: ComandaOpen, feed: ChangeFeed) -> Comanda:
    """
    Raises:
        NotFoundError: unknown pre-printed card or table session
        ConflictError: COMANDA_IN_USE when the number already has an open tab
    """
    if data.table_session_id:
        session = await db.get(TableSession, data.table_session_id)
        if session is None or session.company_id != company_id:
            raise NotFoundError("Table session", data.table_session_id)

    card: Optional[GeneratedComanda] = None
    if data.generated_comanda_id:
        card = await db.get(GeneratedComanda, data.generated_comanda_id)
        if card is None or card.company_id != company_id:
            raise NotFoundError("Generated comanda", data.generated_comanda_id)
        number = card.number
    elif data.manual_number is not None:
        number = data.manual_number
    else:
        number = await _next_number(db, company_id)

    in_use = (
        await db.execute(
            select(func.count(Comanda.id)).where(
                Comanda.company_id == company_id,
                Comanda.number == number,
                Comanda.status == ComandaStatus.OPEN,
            )
        )
    ).scalar()
    if in_use:
        raise ConflictError(f"Comanda #{number} is already open", code="COMANDA_IN_USE")

    comanda = Comanda(
        company_id=company_id,
        number=number,
        customer_name=data.customer_name,
        customer_phone=data.customer_phone,
        notes=data.notes,
        is_manual_number=card is not None or data.manual_number is not None,
        table_session_id=data.table_session_id,
        items=[],
    )
    db.add(comanda)
    await db.flush()
    if card is not None:
        card.used_at = utcnow()
        card.comanda_id = comanda.id
    await db.commit()

    logger.info(f"📋 Comanda #{number} opened for company {company_id}")
    feed.publish_change(company_id, "comandas", "INSERT", comanda)
    return comanda


async def add_items(
    db: AsyncSession,
    company_id: str,
    comanda_id: str,
    lines: list[OrderItemIn],
    feed: ChangeFeed,
) -> Comanda:
    comanda = await get_comanda(db, company_id, comanda_id)
    _require_open(comanda)

    items, _ = await resolve_items(db, company_id, lines)
    for item in items:
        item.pop("requires_preparation")
        comanda.items.append(ComandaItem(**item))
    _recompute_total(comanda)
    await db.commit()

    logger.info(f"Comanda #{comanda.number}: {len(items)} items added, total {comanda.total:.2f}")
    feed.publish_change(company_id, "comandas", "UPDATE", comanda)
    return comanda


async def remove_item(db: AsyncSession, company_id: str, comanda_id: str, item_id: str, feed: ChangeFeed) -> Comanda:
    comanda = await get_comanda(db, company_id, comanda_id)
    _require_open(comanda)

    item = next((i for i in comanda.items if i.id == item_id), None)
    if item is None:
        raise NotFoundError("Comanda item", item_id)
    comanda.items.remove(item)
    _recompute_total(comanda)
    await db.commit()

    feed.publish_change(company_id, "comandas", "UPDATE", comanda)
    return comanda


async def close_comanda(db: AsyncSession, company_id: str, comanda_id: str, data: ComandaClose, feed: ChangeFeed) -> Comanda:
    """
    Settle a tab. Cash must cover the total and yields change; other methods
    are recorded as receiving exactly the total.
    """
    comanda = await get_comanda(db, company_id, comanda_id)
    _require_open(comanda)
    total = _recompute_total(comanda)

    if data.payment_method == ComandaPayment.DINHEIRO:
        received = data.amount_received if data.amount_received is not None else total
        if received < total:
            raise ValidationError(
                f"Amount received {received:.2f} is less than the total {total:.2f}",
                code="INSUFFICIENT_AMOUNT",
            )
        change = round(received - total, 2)
    else:
        received, change = total, 0.0

    comanda.status = ComandaStatus.CLOSED
    comanda.payment_method = data.payment_method
    comanda.amount_received = received
    comanda.change_amount = change
    comanda.closed_at = utcnow()
    await _release_generated(db, comanda)
    await db.commit()

    logger.info(f"✅ Comanda #{comanda.number} closed: {total:.2f} ({data.payment_method.value}, troco {change:.2f})")
    feed.publish_change(company_id, "comandas", "UPDATE", comanda)
    return comanda


async def cancel_comanda(db: AsyncSession, company_id: str, comanda_id: str, feed: ChangeFeed) -> Comanda:
    comanda = await get_comanda(db, company_id, comanda_id)
    _require_open(comanda)

    comanda.status = ComandaStatus.CANCELLED
    comanda.closed_at = utcnow()
    await _release_generated(db, comanda)
    await db.commit()

    logger.info(f"Comanda #{comanda.number} cancelled")
    feed.publish_change(company_id, "comandas", "UPDATE", comanda)
    return comanda


async def comanda_history(db: AsyncSession, company_id: str, number: int) -> ComandaHistory:
    """Past closed and cancelled tabs that used ``number``, newest first."""
    result = await db.execute(
        select(Comanda)
        .where(
            Comanda.company_id == company_id,
            Comanda.number == number,
            Comanda.status.in_((ComandaStatus.CLOSED, ComandaStatus.CANCELLED)),
        )
        .order_by(Comanda.closed_at.desc())
        .limit(20)
    )
    past = result.scalars().all()
    return ComandaHistory(
        number=number,
        total_uses=len(past),
        total_value=round(sum(c.total for c in past), 2),
        last_value=past[0].total if past else 0.0,
        history=[{"date": c.closed_at or c.created_at, "total": c.total, "status": c.status} for c in past],
    )


# =============================================================================
# PRE-PRINTED CARDS
# =============================================================================

async def generate_comandas(db: AsyncSession, company_id: str, start: int, count: int) -> list[GeneratedComanda]:
    """Create cards ``start .. start+count-1``; numbers that already exist are skipped."""
    wanted = range(start, start + count)
    existing = set(
        (
            await db.execute(
                select(GeneratedComanda.number).where(
                    GeneratedComanda.company_id == company_id,
                    GeneratedComanda.number.in_(list(wanted)),
                )
            )
        ).scalars().all()
    )
    cards = [GeneratedComanda(company_id=company_id, number=n) for n in wanted if n not in existing]
    db.add_all(cards)
    await db.commit()

    logger.info(f"🖨️ {len(cards)} comanda cards generated for company {company_id} ({len(existing)} skipped)")
    return cards


async def available_generated(db: AsyncSession, company_id: str) -> list[GeneratedComanda]:
    """Unused cards whose number has no open tab."""
    open_numbers = select(Comanda.number).where(
        Comanda.company_id == company_id,
        Comanda.status == ComandaStatus.OPEN,
    )
    result = await db.execute(
        select(GeneratedComanda)
        .where(
            GeneratedComanda.company_id == company_id,
            GeneratedComanda.used_at.is_(None),
            GeneratedComanda.number.not_in(open_numbers),
        )
        .order_by(GeneratedComanda.number)
    )
    return list(result.scalars().all())
