"""
Subscription plans and revenue limits.

A store's plan caps its monthly order revenue. The effective limit is the
plan limit plus any bonus granted by a platform admin; ``-1`` means
unlimited. Paid plans run for ``subscription_period_days``; expired
subscriptions get ``subscription_grace_days`` before dropping to free.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from orderdesk.core.config import get_settings
from orderdesk.core.exceptions import (
    ConflictError,
    NotFoundError,
    PaymentError,
    SubscriptionLimitError,
    ValidationError,
)
from orderdesk.models import (
    Company,
    Order,
    OrderStatus,
    SubscriptionPlan,
    SubscriptionStatus,
    utcnow,
)
from orderdesk.schemas import PlanIn, PlanOut, PlanUpdate, SubscriptionStatusOut
from orderdesk.services.payment import BasePaymentService

logger = logging.getLogger(__name__)

FREE_PLAN_KEY = "free"
UNLIMITED = -1

DEFAULT_PLANS = [
    {"key": "free", "name": "Plano Gratuito", "revenue_limit": 2000, "price": 0},
    {"key": "basic", "name": "Plano Básico", "revenue_limit": 10000, "price": 99},
    {"key": "growth", "name": "Plano Crescimento", "revenue_limit": 30000, "price": 149},
    {"key": "pro", "name": "Plano Pro", "revenue_limit": 50000, "price": 199},
]


# =============================================================================
# PURE HELPERS
# =============================================================================

def usage(monthly_revenue: float, revenue_limit: float) -> tuple[float, bool, bool]:
    """
    Usage of a revenue limit.

    Returns:
        (usage_percentage, is_near_limit, is_at_limit); near is [80, 100),
        at is >= 100, an unlimited plan is never near or at its limit.
    """
    if revenue_limit == UNLIMITED:
        return 0.0, False, False
    if revenue_limit <= 0:
        return 100.0, False, True
    percentage = monthly_revenue / revenue_limit * 100
    return round(percentage, 2), 80 <= percentage < 100, percentage >= 100


def recommended_plan(
    current_key: str,
    monthly_revenue: float,
    plans: list[SubscriptionPlan],
) -> Optional[SubscriptionPlan]:
    """
    Cheapest upgrade that fits ``monthly_revenue``.

    Plans are ordered by limit (unlimited last); downgrades and the current
    plan are skipped. Falls back to the largest plan.
    """
    if not plans:
        return None

    ordered = sorted(plans, key=lambda p: (p.revenue_limit == UNLIMITED, p.revenue_limit))
    current = next((p for p in ordered if p.key == current_key), None)
    current_limit = current.revenue_limit if current else 0

    for plan in ordered:
        if plan.key == current_key:
            continue
        if plan.revenue_limit != UNLIMITED and plan.revenue_limit <= current_limit:
            continue
        if plan.revenue_limit == UNLIMITED or plan.revenue_limit > monthly_revenue:
            return plan
    return ordered[-1]


def month_start(now: Optional[datetime] = None) -> datetime:
    now = now or utcnow()
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


# =============================================================================
# PLANS
# =============================================================================

async def seed_default_plans(db: AsyncSession) -> int:
    """Insert the default plans that are missing; returns how many were created."""
    existing = set((await db.execute(select(SubscriptionPlan.key))).scalars().all())
    created = 0
    for plan in DEFAULT_PLANS:
        if plan["key"] in existing:
            continue
        db.add(SubscriptionPlan(**plan))
        created += 1
    if created:
        await db.commit()
        logger.info(f"💳 Seeded {created} default subscription plans")
    return created


async def list_plans(db: AsyncSession, active_only: bool = True) -> list[SubscriptionPlan]:
    query = select(SubscriptionPlan).order_by(SubscriptionPlan.price)
    if active_only:
        query = query.where(SubscriptionPlan.is_active.is_(True))
    return list((await db.execute(query)).scalars().all())


async def get_plan(db: AsyncSession, key: str, active_only: bool = True) -> SubscriptionPlan:
    query = select(SubscriptionPlan).where(SubscriptionPlan.key == key)
    if active_only:
        query = query.where(SubscriptionPlan.is_active.is_(True))
    plan = (await db.execute(query)).scalar_one_or_none()
    if plan is None:
        raise NotFoundError("Plan", key)
    return plan


async def create_plan(db: AsyncSession, data: PlanIn) -> SubscriptionPlan:
    plan = SubscriptionPlan(**data.model_dump())
    db.add(plan)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError(f"Plan {data.key} already exists")
    logger.info(f"Plan {plan.key} created")
    return plan


async def update_plan(db: AsyncSession, plan_id: str, data: PlanUpdate) -> SubscriptionPlan:
    plan = await db.get(SubscriptionPlan, plan_id)
    if plan is None:
        raise NotFoundError("Plan", plan_id)
    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(plan, field, value)
    await db.commit()
    return plan


# =============================================================================
# SUBSCRIPTION STATUS
# =============================================================================

async def compute_monthly_revenue(db: AsyncSession, company_id: str, now: Optional[datetime] = None) -> float:
    """Sum of non-cancelled order totals since the first of the month."""
    result = await db.execute(
        select(func.coalesce(func.sum(Order.total), 0.0)).where(
            Order.company_id == company_id,
            Order.status != OrderStatus.CANCELLED,
            Order.created_at >= month_start(now),
        )
    )
    return round(float(result.scalar() or 0.0), 2)


async def _effective_plan(db: AsyncSession, company: Company, now: datetime) -> tuple[str, str, float]:
    """(plan key, plan name, effective limit) after applying expiry rules."""
    settings = get_settings()
    bonus = company.revenue_limit_bonus or 0.0

    in_grace = (
        company.subscription_status == SubscriptionStatus.GRACE_PERIOD
        and company.subscription_grace_end_date is not None
        and company.subscription_grace_end_date > now
    )

    if company.subscription_status == SubscriptionStatus.ACTIVE or in_grace:
        expired = (
            company.subscription_status == SubscriptionStatus.ACTIVE
            and company.subscription_end_date is not None
            and company.subscription_end_date < now
        )
        if expired:
            logger.info(f"Subscription of {company.slug} expired, resetting to free")
            company.subscription_status = SubscriptionStatus.FREE
            company.subscription_plan = FREE_PLAN_KEY
            company.subscription_end_date = None
            await db.commit()
        else:
            plan = (
                await db.execute(
                    select(SubscriptionPlan).where(
                        SubscriptionPlan.key == company.subscription_plan,
                        SubscriptionPlan.is_active.is_(True),
                    )
                )
            ).scalar_one_or_none()
            if plan is not None:
                limit = UNLIMITED if plan.revenue_limit == UNLIMITED else plan.revenue_limit + bonus
                return plan.key, plan.name, limit

    return FREE_PLAN_KEY, "Plano Gratuito", settings.free_plan_revenue_limit + bonus


async def get_subscription_status(db: AsyncSession, company: Company, now: Optional[datetime] = None) -> SubscriptionStatusOut:
    now = now or utcnow()
    plan_key, plan_name, limit = await _effective_plan(db, company, now)

    revenue = await compute_monthly_revenue(db, company.id, now)
    if company.monthly_revenue != revenue:
        company.monthly_revenue = revenue
        await db.commit()

    percentage, near, at = usage(revenue, limit)
    recommended = None
    if near or at:
        plan = recommended_plan(plan_key, revenue, await list_plans(db))
        recommended = PlanOut.model_validate(plan) if plan else None

    return SubscriptionStatusOut(
        status=company.subscription_status,
        plan_key=plan_key,
        plan_name=plan_name,
        revenue_limit=limit,
        monthly_revenue=revenue,
        usage_percentage=percentage,
        is_near_limit=near,
        is_at_limit=at,
        is_unlimited=limit == UNLIMITED,
        subscription_end_date=company.subscription_end_date,
        recommended_plan=recommended,
    )


async def ensure_within_limit(db: AsyncSession, company: Company) -> None:
    """Reject new orders for a store that reached its revenue limit."""
    status = await get_subscription_status(db, company)
    if status.is_at_limit:
        logger.warning(
            f"⚠️ {company.slug} at revenue limit "
            f"({status.monthly_revenue:.2f}/{status.revenue_limit:.2f})"
        )
        raise SubscriptionLimitError()


async def subscribe(
    db: AsyncSession,
    company: Company,
    plan_key: str,
    payments: BasePaymentService,
) -> Company:
    """Charge a paid plan and activate it for one period."""
    settings = get_settings()
    plan = await get_plan(db, plan_key)

    if plan.key == FREE_PLAN_KEY or plan.price <= 0:
        raise ValidationError("Only paid plans can be subscribed", code="PLAN_NOT_PAID")

    result = await payments.process_payment(
        amount=plan.price,
        customer_email=company.owner_email,
        description=f"{settings.app_name} - {plan.name}",
        metadata={"company_id": company.id, "plan_key": plan.key},
    )
    if not result.success:
        logger.warning(f"Subscription charge failed for {company.slug}: {result.error_message}")
        raise PaymentError(result.error_message or "Payment failed")

    now = utcnow()
    company.subscription_status = SubscriptionStatus.ACTIVE
    company.subscription_plan = plan.key
    company.subscription_end_date = now + timedelta(days=settings.subscription_period_days)
    company.subscription_grace_end_date = None
    await db.commit()

    logger.info(f"✅ {company.slug} subscribed to {plan.key} until {company.subscription_end_date:%Y-%m-%d}")
    return company


async def check_subscription_expirations(db: AsyncSession, now: Optional[datetime] = None) -> dict:
    """
    Daily sweep: expired active subscriptions enter the grace period; grace
    periods that ran out drop the store to the free plan.
    """
    settings = get_settings()
    now = now or utcnow()

    expiring = (
        await db.execute(
            select(Company).where(
                Company.subscription_status == SubscriptionStatus.ACTIVE,
                Company.subscription_end_date.is_not(None),
                Company.subscription_end_date < now,
            )
        )
    ).scalars().all()
    for company in expiring:
        company.subscription_status = SubscriptionStatus.GRACE_PERIOD
        company.subscription_grace_end_date = now + timedelta(days=settings.subscription_grace_days)
        logger.info(f"⏳ {company.slug} entered grace period until {company.subscription_grace_end_date:%Y-%m-%d}")

    lapsed = (
        await db.execute(
            select(Company).where(
                Company.subscription_status == SubscriptionStatus.GRACE_PERIOD,
                Company.subscription_grace_end_date.is_not(None),
                Company.subscription_grace_end_date < now,
            )
        )
    ).scalars().all()
    for company in lapsed:
        company.subscription_status = SubscriptionStatus.EXPIRED
        company.subscription_plan = FREE_PLAN_KEY
        company.subscription_end_date = None
        company.subscription_grace_end_date = None
        logger.info(f"❌ {company.slug} subscription expired, now on the free plan")

    await db.commit()
    return {"grace_period": len(expiring), "expired": len(lapsed)}
