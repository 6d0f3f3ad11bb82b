"""Per-company audit trail of staff actions."""

import logging
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from orderdesk.models import ActivityLog

logger = logging.getLogger(__name__)


def log_activity(
    db: AsyncSession,
    company_id: str,
    action_type: str,
    entity_type: str,
    entity_id: Optional[str] = None,
    entity_name: Optional[str] = None,
    description: Optional[str] = None,
    old_data: Optional[dict] = None,
    new_data: Optional[dict] = None,
) -> ActivityLog:
    """Stage an activity entry; it is written with the caller's commit."""
    entry = ActivityLog(
        company_id=company_id,
        action_type=action_type,
        entity_type=entity_type,
        entity_id=entity_id,
        entity_name=entity_name,
        description=description,
        old_data=old_data,
        new_data=new_data,
    )
    db.add(entry)
    logger.debug(f"Activity {action_type} {entity_type} {entity_id}: {description}")
    return entry


async def list_activity(
    db: AsyncSession,
    company_id: str,
    skip: int = 0,
    limit: int = 50,
    entity_type: Optional[str] = None,
) -> tuple[int, list[ActivityLog]]:
    query = select(ActivityLog).where(ActivityLog.company_id == company_id)
    count_query = select(func.count(ActivityLog.id)).where(ActivityLog.company_id == company_id)
    if entity_type:
        query = query.where(ActivityLog.entity_type == entity_type)
        count_query = count_query.where(ActivityLog.entity_type == entity_type)

    total = (await db.execute(count_query)).scalar() or 0
    result = await db.execute(query.order_by(ActivityLog.created_at.desc()).offset(skip).limit(limit))
    return total, list(result.scalars().all())
