"""Discount coupons: staff management and checkout validation."""

import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from orderdesk.core.exceptions import ConflictError, NotFoundError, ValidationError
from orderdesk.models import Coupon, DiscountType, utcnow
from orderdesk.schemas import CouponCreate, CouponUpdate

logger = logging.getLogger(__name__)


def normalize_code(code: str) -> str:
    return code.strip().upper()


def compute_discount(coupon: Coupon, subtotal: float) -> float:
    """Discount for ``subtotal``, never more than the subtotal itself."""
    if coupon.discount_type == DiscountType.PERCENTAGE:
        discount = subtotal * coupon.discount_value / 100
    else:
        discount = coupon.discount_value
    return round(min(discount, subtotal), 2)


async def validate_coupon(db: AsyncSession, company_id: str, code: str, subtotal: float) -> tuple[Coupon, float]:
    """
    Check a coupon against a cart subtotal.

    Checks run in order: existence/active, expiry, minimum order value,
    usage limit.

    Returns:
        The coupon and the discount amount

    Raises:
        ValidationError: with a COUPON_* code describing the rejection
    """
    normalized = normalize_code(code)
    result = await db.execute(
        select(Coupon).where(
            Coupon.company_id == company_id,
            Coupon.code == normalized,
            Coupon.is_active.is_(True),
        )
    )
    coupon = result.scalar_one_or_none()

    if coupon is None:
        raise ValidationError(f"Coupon {normalized} is not valid", code="COUPON_INVALID")
    if coupon.expires_at is not None and coupon.expires_at < utcnow():
        raise ValidationError(f"Coupon {normalized} has expired", code="COUPON_EXPIRED")
    if coupon.min_order_value and subtotal < coupon.min_order_value:
        raise ValidationError(
            f"Coupon {normalized} requires a minimum order of {coupon.min_order_value:.2f}",
            code="COUPON_MIN_ORDER",
        )
    if coupon.max_uses is not None and coupon.current_uses >= coupon.max_uses:
        raise ValidationError(f"Coupon {normalized} has reached its usage limit", code="COUPON_EXHAUSTED")

    return coupon, compute_discount(coupon, subtotal)


async def list_coupons(db: AsyncSession, company_id: str) -> list[Coupon]:
    result = await db.execute(
        select(Coupon).where(Coupon.company_id == company_id).order_by(Coupon.created_at.desc())
    )
    return list(result.scalars().all())


async def get_coupon(db: AsyncSession, company_id: str, coupon_id: str) -> Coupon:
    coupon = await db.get(Coupon, coupon_id)
    if coupon is None or coupon.company_id != company_id:
        raise NotFoundError("Coupon", coupon_id)
    return coupon


async def create_coupon(db: AsyncSession, company_id: str, data: CouponCreate) -> Coupon:
    values = data.model_dump()
    values["code"] = normalize_code(data.code)
    coupon = Coupon(company_id=company_id, **values)
    db.add(coupon)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError(f"Coupon {values['code']} already exists", code="COUPON_EXISTS")

    logger.info(f"🎟️ Coupon {coupon.code} created for company {company_id}")
    return coupon


async def update_coupon(db: AsyncSession, company_id: str, coupon_id: str, data: CouponUpdate) -> Coupon:
    coupon = await get_coupon(db, company_id, coupon_id)
    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(coupon, field, value)
    await db.commit()
    return coupon


async def delete_coupon(db: AsyncSession, company_id: str, coupon_id: str) -> None:
    coupon = await get_coupon(db, company_id, coupon_id)
    await db.delete(coupon)
    await db.commit()
    logger.info(f"Coupon {coupon.code} deleted")
