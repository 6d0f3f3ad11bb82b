"""Platform administration (``X-Admin-Token``)."""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from orderdesk.core.security import require_admin
from orderdesk.database import get_db
from orderdesk.models import CompanyStatus
from orderdesk.schemas import (
    CompanyOut,
    PlanIn,
    PlanOut,
    PlanUpdate,
    RevenueBonusRequest,
    SubscriptionStatusOut,
)
from orderdesk.services import billing, companies
from orderdesk.services.notifications import BaseNotificationService, get_notification_service

router = APIRouter(prefix="/api/admin", tags=["Admin"], dependencies=[Depends(require_admin)])


@router.get("/companies", response_model=list[CompanyOut])
async def list_companies(
    status_filter: Optional[CompanyStatus] = Query(None, alias="status"),
    db: AsyncSession = Depends(get_db),
) -> list[CompanyOut]:
    return [CompanyOut.model_validate(c) for c in await companies.list_companies(db, status_filter)]


@router.post("/companies/{company_id}/approve", response_model=CompanyOut)
async def approve_company(company_id: str, db: AsyncSession = Depends(get_db)) -> CompanyOut:
    return CompanyOut.model_validate(await companies.set_status(db, company_id, CompanyStatus.APPROVED))


@router.post("/companies/{company_id}/suspend", response_model=CompanyOut)
async def suspend_company(company_id: str, db: AsyncSession = Depends(get_db)) -> CompanyOut:
    return CompanyOut.model_validate(await companies.set_status(db, company_id, CompanyStatus.SUSPENDED))


@router.put("/companies/{company_id}/revenue-bonus", response_model=CompanyOut)
async def set_revenue_bonus(
    company_id: str,
    data: RevenueBonusRequest,
    db: AsyncSession = Depends(get_db),
) -> CompanyOut:
    return CompanyOut.model_validate(await companies.set_revenue_bonus(db, company_id, data.amount))


@router.get("/companies/{company_id}/subscription", response_model=SubscriptionStatusOut)
async def company_subscription(company_id: str, db: AsyncSession = Depends(get_db)) -> SubscriptionStatusOut:
    company = await companies.get_company(db, company_id)
    return await billing.get_subscription_status(db, company)


@router.get("/plans", response_model=list[PlanOut])
async def list_plans(db: AsyncSession = Depends(get_db)) -> list[PlanOut]:
    return [PlanOut.model_validate(p) for p in await billing.list_plans(db, active_only=False)]


@router.post("/plans", response_model=PlanOut, status_code=status.HTTP_201_CREATED)
async def create_plan(data: PlanIn, db: AsyncSession = Depends(get_db)) -> PlanOut:
    return PlanOut.model_validate(await billing.create_plan(db, data))


@router.patch("/plans/{plan_id}", response_model=PlanOut)
async def update_plan(plan_id: str, data: PlanUpdate, db: AsyncSession = Depends(get_db)) -> PlanOut:
    return PlanOut.model_validate(await billing.update_plan(db, plan_id, data))


@router.post("/maintenance/subscriptions")
async def run_subscription_sweep(db: AsyncSession = Depends(get_db)) -> dict:
    """Run the daily subscription expiration sweep now."""
    return await billing.check_subscription_expirations(db)


@router.post("/maintenance/inactive-companies")
async def run_inactivity_sweep(
    db: AsyncSession = Depends(get_db),
    notifier: BaseNotificationService = Depends(get_notification_service),
) -> dict:
    """Run the daily inactivity suspension sweep now."""
    suspended = await companies.suspend_inactive_companies(db, notifier)
    return {"suspended": suspended, "count": len(suspended)}
