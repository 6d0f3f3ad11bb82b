"""
Request authentication dependencies.

Staff send ``X-Store-Token`` (the company's api_token), drivers send
``X-Driver-Token`` and platform admins ``X-Admin-Token``.
"""

import logging
import secrets
from typing import Optional

from fastapi import Depends, Header
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from orderdesk.core.config import get_settings
from orderdesk.core.exceptions import ForbiddenError, UnauthorizedError
from orderdesk.database import get_db
from orderdesk.models import Company, CompanyStatus, DeliveryDriver

logger = logging.getLogger(__name__)


async def company_by_token(db: AsyncSession, token: Optional[str]) -> Company:
    if not token:
        raise UnauthorizedError("Missing store token")
    company = (await db.execute(select(Company).where(Company.api_token == token))).scalar_one_or_none()
    if company is None:
        raise UnauthorizedError("Invalid store token")
    if company.status == CompanyStatus.SUSPENDED:
        raise ForbiddenError("Store is suspended")
    return company


async def driver_by_token(db: AsyncSession, token: Optional[str]) -> DeliveryDriver:
    """Resolve an active driver; used by the login endpoint and the driver app."""
    if not token:
        raise UnauthorizedError("Missing driver token")
    driver = (
        await db.execute(select(DeliveryDriver).where(DeliveryDriver.access_token == token))
    ).scalar_one_or_none()
    if driver is None:
        raise UnauthorizedError("Invalid driver token")
    if not driver.is_active:
        raise ForbiddenError("Driver is inactive")
    return driver


async def get_current_company(
    x_store_token: Optional[str] = Header(None, alias="X-Store-Token"),
    db: AsyncSession = Depends(get_db),
) -> Company:
    return await company_by_token(db, x_store_token)


async def get_current_driver(
    x_driver_token: Optional[str] = Header(None, alias="X-Driver-Token"),
    db: AsyncSession = Depends(get_db),
) -> DeliveryDriver:
    return await driver_by_token(db, x_driver_token)


async def require_admin(x_admin_token: Optional[str] = Header(None, alias="X-Admin-Token")) -> None:
    expected = get_settings().admin_api_key
    if not x_admin_token or not secrets.compare_digest(x_admin_token, expected):
        logger.warning("Rejected admin request with invalid token")
        raise UnauthorizedError("Invalid admin token")
