"""
Table service.

Customers scan a QR code with the table number; check-in returns the open
session for that table or opens one once name and phone are known. Table
orders carry the session token, and so do waiter calls: the customer can
call the waiter or ask for the bill, and staff resolve the call.
"""

import logging
import secrets
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from orderdesk.core.exceptions import ConflictError, NotFoundError, ValidationError
from orderdesk.models import (
    Company,
    DiningTable,
    Order,
    OrderStatus,
    SessionStatus,
    TableSession,
    WaiterCall,
    WaiterCallStatus,
    WaiterCallType,
    utcnow,
)
from orderdesk.schemas import (
    CheckInRequest,
    CheckInResult,
    TableIn,
    TableOut,
    TableSessionOut,
    WaiterCallOut,
    WaiterCallRequest,
)
from orderdesk.services.realtime import ChangeFeed

logger = logging.getLogger(__name__)


def _table_name(table: DiningTable) -> str:
    return table.name or f"Mesa {table.table_number}"


# =============================================================================
# TABLE CRUD
# =============================================================================

async def list_tables(db: AsyncSession, company_id: str) -> list[DiningTable]:
    result = await db.execute(
        select(DiningTable).where(DiningTable.company_id == company_id).order_by(DiningTable.table_number)
    )
    return list(result.scalars().all())


async def get_table(db: AsyncSession, company_id: str, table_id: str) -> DiningTable:
    table = await db.get(DiningTable, table_id)
    if table is None or table.company_id != company_id:
        raise NotFoundError("Table", table_id)
    return table


async def create_table(db: AsyncSession, company_id: str, data: TableIn) -> DiningTable:
    table = DiningTable(company_id=company_id, **data.model_dump())
    db.add(table)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError(f"Table {data.table_number} already exists", code="TABLE_EXISTS")
    return table


async def update_table(db: AsyncSession, company_id: str, table_id: str, data: TableIn) -> DiningTable:
    table = await get_table(db, company_id, table_id)
    for field, value in data.model_dump().items():
        setattr(table, field, value)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError(f"Table {data.table_number} already exists", code="TABLE_EXISTS")
    return table


async def delete_table(db: AsyncSession, company_id: str, table_id: str) -> None:
    table = await get_table(db, company_id, table_id)
    await db.delete(table)
    await db.commit()


# =============================================================================
# SESSIONS
# =============================================================================

async def open_session_for(db: AsyncSession, table_id: str) -> Optional[TableSession]:
    result = await db.execute(
        select(TableSession)
        .where(TableSession.table_id == table_id, TableSession.status == SessionStatus.OPEN)
        .order_by(TableSession.opened_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def get_open_session_by_token(db: AsyncSession, company_id: str, token: str) -> Optional[TableSession]:
    result = await db.execute(
        select(TableSession).where(
            TableSession.company_id == company_id,
            TableSession.session_token == token,
            TableSession.status == SessionStatus.OPEN,
        )
    )
    return result.scalar_one_or_none()


async def list_open_sessions(db: AsyncSession, company_id: str) -> list[TableSession]:
    result = await db.execute(
        select(TableSession)
        .where(TableSession.company_id == company_id, TableSession.status == SessionStatus.OPEN)
        .order_by(TableSession.opened_at)
    )
    return list(result.scalars().all())


async def check_in(db: AsyncSession, slug: str, data: CheckInRequest) -> CheckInResult:
    """Resolve a table by store slug and number, opening a session when needed."""
    company = (await db.execute(select(Company).where(Company.slug == slug))).scalar_one_or_none()
    if company is None:
        return CheckInResult(success=False, reason="company_not_found", message="Estabelecimento não encontrado")

    table = (
        await db.execute(
            select(DiningTable).where(
                DiningTable.company_id == company.id,
                DiningTable.table_number == data.table_number,
                DiningTable.is_active.is_(True),
            )
        )
    ).scalar_one_or_none()
    if table is None:
        return CheckInResult(success=False, reason="table_not_found", message="Mesa não encontrada")

    table_out = TableOut.model_validate(table)
    session = await open_session_for(db, table.id)
    if session is not None:
        return CheckInResult(success=True, table=table_out, session=TableSessionOut.model_validate(session))

    if not (data.customer_name and data.customer_phone):
        return CheckInResult(
            success=False,
            needs_customer_data=True,
            table=table_out,
            message="Por favor, informe seus dados para abrir a mesa.",
        )

    session = TableSession(
        company_id=company.id,
        table_id=table.id,
        session_token=secrets.token_urlsafe(24),
        customer_name=data.customer_name,
        customer_phone=data.customer_phone,
        customer_email=data.customer_email,
        customer_count=data.customer_count or 1,
    )
    db.add(session)
    await db.commit()

    logger.info(f"🍽️ {company.slug}: {_table_name(table)} opened for {data.customer_name}")
    return CheckInResult(
        success=True,
        new_session=True,
        table=table_out,
        session=TableSessionOut.model_validate(session),
    )


async def close_session(db: AsyncSession, company_id: str, session_id: str) -> TableSession:
    session = await db.get(TableSession, session_id)
    if session is None or session.company_id != company_id:
        raise NotFoundError("Table session", session_id)
    if session.status == SessionStatus.CLOSED:
        raise ConflictError("Table session is already closed", code="SESSION_CLOSED")

    session.status = SessionStatus.CLOSED
    session.closed_at = utcnow()
    await db.commit()
    logger.info(f"Table session {session.id} closed")
    return session


async def close_session_if_idle(db: AsyncSession, session_id: str, excluding_order_id: Optional[str] = None) -> bool:
    """
    Close a session with no remaining non-cancelled orders.

    Staged on the caller's transaction; returns whether the session closed.
    """
    query = select(func.count(Order.id)).where(
        Order.table_session_id == session_id,
        Order.status != OrderStatus.CANCELLED,
    )
    if excluding_order_id:
        query = query.where(Order.id != excluding_order_id)
    remaining = (await db.execute(query)).scalar() or 0
    if remaining:
        return False

    session = await db.get(TableSession, session_id)
    if session is None or session.status == SessionStatus.CLOSED:
        return False
    session.status = SessionStatus.CLOSED
    session.closed_at = utcnow()
    logger.info(f"Table session {session_id} closed, no active orders left")
    return True


# =============================================================================
# WAITER CALLS
# =============================================================================

CALL_LABELS = {
    WaiterCallType.WAITER: "Chamou garçom",
    WaiterCallType.BILL: "Pediu a conta",
}


async def _call_out(db: AsyncSession, call: WaiterCall) -> WaiterCallOut:
    table = await db.get(DiningTable, call.table_id)
    return WaiterCallOut(
        id=call.id,
        table_id=call.table_id,
        session_id=call.session_id,
        table_name=_table_name(table) if table else "Mesa ?",
        call_type=call.call_type,
        label=CALL_LABELS[call.call_type],
        status=call.status,
        created_at=call.created_at,
        resolved_at=call.resolved_at,
    )


async def call_waiter(db: AsyncSession, slug: str, data: WaiterCallRequest, feed: ChangeFeed) -> WaiterCallOut:
    """
    Register a call from an open table session.

    A pending call of the same type for the session is returned as-is, so a
    customer tapping twice does not page staff twice.

    Raises:
        NotFoundError: COMPANY_NOT_FOUND
        ValidationError: TABLE_SESSION_INVALID when the token is unknown or closed
    """
    company = (await db.execute(select(Company).where(Company.slug == slug))).scalar_one_or_none()
    if company is None:
        raise NotFoundError("Company", slug, code="COMPANY_NOT_FOUND")

    session = await get_open_session_by_token(db, company.id, data.session_token)
    if session is None:
        raise ValidationError("Table session is not open", code="TABLE_SESSION_INVALID")

    pending = (
        await db.execute(
            select(WaiterCall).where(
                WaiterCall.session_id == session.id,
                WaiterCall.call_type == data.call_type,
                WaiterCall.status == WaiterCallStatus.PENDING,
            )
        )
    ).scalar_one_or_none()
    if pending is not None:
        return await _call_out(db, pending)

    call = WaiterCall(
        company_id=company.id,
        table_id=session.table_id,
        session_id=session.id,
        call_type=data.call_type,
    )
    db.add(call)
    await db.commit()

    out = await _call_out(db, call)
    logger.info(f"🔔 {company.slug}: {out.table_name} {out.label.lower()}")
    feed.publish_change(company.id, "waiter_calls", "INSERT", call)
    return out


async def list_waiter_calls(db: AsyncSession, company_id: str, pending_only: bool = True) -> list[WaiterCallOut]:
    query = select(WaiterCall).where(WaiterCall.company_id == company_id)
    if pending_only:
        query = query.where(WaiterCall.status == WaiterCallStatus.PENDING)
    calls = (await db.execute(query.order_by(WaiterCall.created_at))).scalars().all()
    return [await _call_out(db, call) for call in calls]


async def resolve_waiter_call(db: AsyncSession, company_id: str, call_id: str, feed: ChangeFeed) -> WaiterCallOut:
    call = await db.get(WaiterCall, call_id)
    if call is None or call.company_id != company_id:
        raise NotFoundError("Waiter call", call_id, code="WAITER_CALL_NOT_FOUND")
    if call.status == WaiterCallStatus.RESOLVED:
        raise ConflictError("Waiter call is already resolved", code="WAITER_CALL_RESOLVED")

    call.status = WaiterCallStatus.RESOLVED
    call.resolved_at = utcnow()
    await db.commit()
    feed.publish_change(company_id, "waiter_calls", "UPDATE", call, old={"status": WaiterCallStatus.PENDING.value})
    return await _call_out(db, call)
