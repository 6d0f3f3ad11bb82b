"""
Order report export with concurrency control.

Each store gets its own workbook under ``data_directory``; writers serialise
on a per-file ``FileLock`` so concurrent workers never interleave.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any

import pandas as pd
from filelock import FileLock, Timeout
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from orderdesk.core.config import get_settings
from orderdesk.core.exceptions import NotFoundError
from orderdesk.models import Company, Order
from orderdesk.services import order_flow

logger = logging.getLogger(__name__)


class ReportManager:
    """Excel writer for per-store order reports."""

    ORDER_COLUMNS = [
        "order_id",
        "ref",
        "date_time",
        "source",
        "status",
        "status_label",
        "customer_name",
        "customer_phone",
        "customer_email",
        "items",
        "payment_method",
        "payment_status",
        "subtotal",
        "delivery_fee",
        "discount_amount",
        "total",
        "cancellation_reason",
        "delivered_at",
    ]
    SHEET_NAME = "pedidos"

    @classmethod
    def data_dir(cls) -> Path:
        path = Path(get_settings().data_directory)
        if not path.exists():
            path.mkdir(parents=True, exist_ok=True)
            logger.info(f"Created data directory: {path}")
        return path

    @classmethod
    def report_path(cls, slug: str) -> Path:
        return cls.data_dir() / f"orders_{slug}.xlsx"

    @staticmethod
    def order_row(order: Order) -> dict[str, Any]:
        return {
            "order_id": order.id,
            "ref": order.ref,
            "date_time": order.created_at.isoformat(),
            "source": order.source.value,
            "status": order.status.value,
            "status_label": order_flow.status_label(order.status, order.source),
            "customer_name": order.customer_name,
            "customer_phone": order.customer_phone,
            "customer_email": order.customer_email,
            "items": "; ".join(f"{i.quantity}x {i.product_name}" for i in order.items),
            "payment_method": order_flow.payment_label(order.payment_method),
            "payment_status": order.payment_status.value,
            "subtotal": order.subtotal,
            "delivery_fee": order.delivery_fee,
            "discount_amount": order.discount_amount,
            "total": order.total,
            "cancellation_reason": order.cancellation_reason,
            "delivered_at": order.delivered_at.isoformat() if order.delivered_at else None,
        }

    @classmethod
    def write_orders(cls, slug: str, rows: list[dict[str, Any]]) -> dict[str, Any]:
        """
        Replace the store's workbook with ``rows`` plus a totals line.

        Returns:
            Result dict with success, message, path and row count
        """
        path = cls.report_path(slug)
        lock_path = path.with_suffix(".xlsx.lock")
        timeout = get_settings().report_lock_timeout
        result = {"success": False, "message": "", "path": str(path), "rows": len(rows), "exported_at": None}

        try:
            with FileLock(str(lock_path), timeout=timeout):
                logger.debug(f"Lock acquired for {path.name}")

                df = pd.DataFrame(rows, columns=cls.ORDER_COLUMNS)
                if not df.empty:
                    billed = df[df["status"] != "cancelled"]
                    totals = {column: None for column in cls.ORDER_COLUMNS}
                    totals.update(
                        ref="TOTAL",
                        subtotal=round(billed["subtotal"].sum(), 2),
                        delivery_fee=round(billed["delivery_fee"].sum(), 2),
                        discount_amount=round(billed["discount_amount"].sum(), 2),
                        total=round(billed["total"].sum(), 2),
                    )
                    df = pd.concat([df, pd.DataFrame([totals])], ignore_index=True)

                df.to_excel(str(path), sheet_name=cls.SHEET_NAME, index=False, engine="openpyxl")

                export_time = datetime.now().isoformat()
                result.update(success=True, message=f"{len(rows)} orders exported", exported_at=export_time)
                logger.info(f"📊 Report {path.name}: {len(rows)} orders")

        except Timeout:
            result["message"] = f"Lock timeout ({timeout}s)"
            logger.error(f"Lock timeout for {path.name}")

        return result

    @classmethod
    def read_orders(cls, slug: str) -> list[dict[str, Any]]:
        path = cls.report_path(slug)
        if not path.exists():
            return []
        df = pd.read_excel(path, sheet_name=cls.SHEET_NAME, engine="openpyxl")
        return df.to_dict("records")


async def export_orders_report(db: AsyncSession, company_id: str) -> dict[str, Any]:
    """Load every order of a store and write its workbook."""
    company = await db.get(Company, company_id)
    if company is None:
        raise NotFoundError("Company", company_id, code="COMPANY_NOT_FOUND")

    result = await db.execute(
        select(Order).where(Order.company_id == company_id).order_by(Order.created_at)
    )
    rows = [ReportManager.order_row(order) for order in result.scalars().all()]
    return ReportManager.write_orders(company.slug, rows)
