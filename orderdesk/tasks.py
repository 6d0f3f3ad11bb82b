"""
Celery Tasks
Report exports and the daily subscription and inactivity sweeps.

Tasks are synchronous Celery entry points around the async services; each
run drives its own event loop and disposes the engine pool afterwards.
"""

import asyncio
import logging
import time
from datetime import datetime
from typing import Any, Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from orderdesk.celery_worker import celery_app
from orderdesk.database import async_session_maker, engine
from orderdesk.services import billing, companies, reports
from orderdesk.services.notifications import get_notification_service

logger = logging.getLogger(__name__)


def run_with_session(work: Callable[[AsyncSession], Awaitable[Any]]) -> Any:
    async def runner():
        try:
            async with async_session_maker() as session:
                return await work(session)
        finally:
            await engine.dispose()

    return asyncio.run(runner())


@celery_app.task(
    bind=True,
    max_retries=3,
    default_retry_delay=5,
    autoretry_for=(Exception,),
    retry_backoff=True
)
def export_orders_report(self, company_id: str) -> dict:
    """
    Export every order of a store to its Excel workbook.

    Args:
        company_id: Store to export

    Returns:
        dict: Result of the export operation
    """
    task_id = self.request.id
    logger.info(f"📋 Task {task_id}: exporting orders of company {company_id}")
    start_time = time.time()

    result = run_with_session(lambda db: reports.export_orders_report(db, company_id))

    elapsed = round(time.time() - start_time, 3)
    result['task_id'] = task_id
    result['processing_time_seconds'] = elapsed

    if result['success']:
        logger.info(f"✅ Task {task_id}: report ready in {elapsed}s")
    else:
        logger.warning(f"⚠️ Task {task_id}: export failed - {result['message']}")

    return result


@celery_app.task(
    autoretry_for=(Exception,),
    max_retries=3,
    retry_backoff=True
)
def check_subscription_expirations() -> dict:
    """Move lapsed subscriptions into the grace period or back to free."""
    result = run_with_session(billing.check_subscription_expirations)
    logger.info(f"Subscription sweep: {result}")
    return {**result, 'timestamp': datetime.now().isoformat()}


@celery_app.task(
    autoretry_for=(Exception,),
    max_retries=3,
    retry_backoff=True
)
def suspend_inactive_companies() -> dict:
    """Suspend approved stores that never set up a menu nor took an order."""
    notifier = get_notification_service()
    suspended = run_with_session(lambda db: companies.suspend_inactive_companies(db, notifier))
    logger.info(f"Inactivity sweep: {len(suspended)} stores suspended")
    return {
        'suspended': suspended,
        'count': len(suspended),
        'timestamp': datetime.now().isoformat()
    }
