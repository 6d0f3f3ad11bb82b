"""
Store registration, settings and platform administration.

Stores register themselves as ``pending`` and take orders once a platform
admin approves them. Approved stores that never configure a menu nor receive
an order are suspended by a daily sweep.
"""

import logging
import re
import secrets
import unicodedata
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import exists, select
from sqlalchemy.ext.asyncio import AsyncSession

from orderdesk.core.config import get_settings
from orderdesk.core.exceptions import ConflictError, NotFoundError
from orderdesk.models import Category, Company, CompanyStatus, Order, Product, utcnow
from orderdesk.schemas import CompanyRegister, CompanySettingsUpdate
from orderdesk.services.notifications import BaseNotificationService

logger = logging.getLogger(__name__)


def slugify(name: str) -> str:
    """'Pizzaria São João' -> 'pizzaria-sao-joao'"""
    ascii_name = unicodedata.normalize("NFKD", name).encode("ascii", "ignore").decode()
    slug = re.sub(r"[^a-z0-9]+", "-", ascii_name.lower()).strip("-")
    return slug or "loja"


async def _unique_slug(db: AsyncSession, base: str) -> str:
    taken = set(
        (
            await db.execute(select(Company.slug).where(Company.slug.like(f"{base}%")))
        ).scalars().all()
    )
    if base not in taken:
        return base
    suffix = 2
    while f"{base}-{suffix}" in taken:
        suffix += 1
    return f"{base}-{suffix}"


def new_store_token() -> str:
    return secrets.token_urlsafe(32)


async def register_company(db: AsyncSession, data: CompanyRegister) -> Company:
    """Create a pending store with fresh credentials."""
    settings = get_settings()
    if data.slug:
        taken = (await db.execute(select(Company.id).where(Company.slug == data.slug))).scalar_one_or_none()
        if taken:
            raise ConflictError(f"Slug {data.slug} is already in use", code="SLUG_TAKEN")
        slug = data.slug
    else:
        slug = await _unique_slug(db, slugify(data.name))

    company = Company(
        name=data.name,
        slug=slug,
        owner_email=data.owner_email,
        phone=data.phone,
        delivery_fee=settings.default_delivery_fee,
        api_token=new_store_token(),
        kds_token=secrets.token_urlsafe(24),
    )
    db.add(company)
    await db.commit()

    logger.info(f"🏪 Store {company.slug} registered, awaiting approval")
    return company


async def update_settings(db: AsyncSession, company: Company, data: CompanySettingsUpdate) -> Company:
    changes = data.model_dump(exclude_unset=True)
    for field, value in changes.items():
        setattr(company, field, value)
    await db.commit()
    logger.info(f"Settings of {company.slug} updated: {', '.join(changes) or 'nothing'}")
    return company


async def rotate_api_token(db: AsyncSession, company: Company) -> Company:
    company.api_token = new_store_token()
    await db.commit()
    logger.info(f"🔑 Staff token rotated for {company.slug}")
    return company


# =============================================================================
# PLATFORM ADMIN
# =============================================================================

async def list_companies(db: AsyncSession, status: Optional[CompanyStatus] = None) -> list[Company]:
    query = select(Company).order_by(Company.created_at.desc())
    if status is not None:
        query = query.where(Company.status == status)
    return list((await db.execute(query)).scalars().all())


async def get_company(db: AsyncSession, company_id: str) -> Company:
    company = await db.get(Company, company_id)
    if company is None:
        raise NotFoundError("Company", company_id, code="COMPANY_NOT_FOUND")
    return company


async def set_status(db: AsyncSession, company_id: str, status: CompanyStatus) -> Company:
    company = await get_company(db, company_id)
    company.status = status
    if status == CompanyStatus.APPROVED:
        company.approved_at = utcnow()
    await db.commit()
    logger.info(f"Store {company.slug} is now {status.value}")
    return company


async def set_revenue_bonus(db: AsyncSession, company_id: str, amount: float) -> Company:
    company = await get_company(db, company_id)
    company.revenue_limit_bonus = amount
    await db.commit()
    logger.info(f"Revenue bonus of {company.slug} set to {amount:.2f}")
    return company


async def suspend_inactive_companies(
    db: AsyncSession,
    notifier: BaseNotificationService,
    now: Optional[datetime] = None,
) -> list[str]:
    """
    Suspend approved stores idle for ``inactivity_suspension_days``.

    A store is idle when it has no orders, no products, no categories and no
    published menu. Owners get an email; a failed email does not undo the
    suspension. Returns the suspended slugs.
    """
    settings = get_settings()
    days = settings.inactivity_suspension_days
    cutoff = (now or utcnow()) - timedelta(days=days)

    idle = (
        await db.execute(
            select(Company).where(
                Company.status == CompanyStatus.APPROVED,
                Company.menu_published.is_(False),
                Company.updated_at < cutoff,
                ~exists().where(Order.company_id == Company.id),
                ~exists().where(Product.company_id == Company.id),
                ~exists().where(Category.company_id == Company.id),
            )
        )
    ).scalars().all()

    for company in idle:
        company.status = CompanyStatus.SUSPENDED
    await db.commit()

    reason = (
        f"Sua empresa permaneceu {days} dias sem receber pedidos e sem configurar o cardápio. "
        "Configure seus produtos e categorias para reativar sua conta."
    )
    for company in idle:
        logger.info(f"⛔ Store {company.slug} suspended for inactivity")
        result = await notifier.send_email(
            to_email=company.owner_email,
            subject=f"{settings.app_name}: conta suspensa",
            body_html=f"<p>{reason}</p>",
            body_text=reason,
        )
        if not result.success:
            logger.warning(f"Suspension email to {company.owner_email} failed: {result.error_message}")

    return [c.slug for c in idle]
