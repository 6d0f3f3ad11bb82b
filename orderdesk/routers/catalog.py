"""Staff endpoints for menu, coupons, tables and comandas."""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from orderdesk.core.security import get_current_company
from orderdesk.database import get_db
from orderdesk.models import Company, ComandaStatus
from orderdesk.schemas import (
    CategoryIn,
    CategoryOut,
    CategoryUpdate,
    ComandaClose,
    ComandaHistory,
    ComandaItemsIn,
    ComandaOpen,
    ComandaOut,
    CouponCreate,
    CouponOut,
    CouponUpdate,
    GenerateComandasRequest,
    GeneratedComandaOut,
    ProductIn,
    ProductOut,
    ProductUpdate,
    TableIn,
    TableOut,
    TableSessionOut,
    WaiterCallOut,
)
from orderdesk.services import comandas, coupons, menu, tables
from orderdesk.services.realtime import ChangeFeed, get_change_feed

router = APIRouter(prefix="/api/store")


# =============================================================================
# MENU
# =============================================================================

@router.get("/categories", response_model=list[CategoryOut], tags=["Menu"])
async def list_categories(
    company: Company = Depends(get_current_company),
    db: AsyncSession = Depends(get_db),
) -> list[CategoryOut]:
    return [CategoryOut.model_validate(c) for c in await menu.list_categories(db, company.id)]


@router.post("/categories", response_model=CategoryOut, status_code=status.HTTP_201_CREATED, tags=["Menu"])
async def create_category(
    data: CategoryIn,
    company: Company = Depends(get_current_company),
    db: AsyncSession = Depends(get_db),
) -> CategoryOut:
    return CategoryOut.model_validate(await menu.create_category(db, company.id, data))


@router.patch("/categories/{category_id}", response_model=CategoryOut, tags=["Menu"])
async def update_category(
    category_id: str,
    data: CategoryUpdate,
    company: Company = Depends(get_current_company),
    db: AsyncSession = Depends(get_db),
) -> CategoryOut:
    return CategoryOut.model_validate(await menu.update_category(db, company.id, category_id, data))


@router.delete("/categories/{category_id}", status_code=status.HTTP_204_NO_CONTENT, tags=["Menu"])
async def delete_category(
    category_id: str,
    company: Company = Depends(get_current_company),
    db: AsyncSession = Depends(get_db),
) -> None:
    await menu.delete_category(db, company.id, category_id)


@router.get("/products", response_model=list[ProductOut], tags=["Menu"])
async def list_products(
    company: Company = Depends(get_current_company),
    db: AsyncSession = Depends(get_db),
) -> list[ProductOut]:
    return [ProductOut.model_validate(p) for p in await menu.list_products(db, company.id)]


@router.post("/products", response_model=ProductOut, status_code=status.HTTP_201_CREATED, tags=["Menu"])
async def create_product(
    data: ProductIn,
    company: Company = Depends(get_current_company),
    db: AsyncSession = Depends(get_db),
) -> ProductOut:
    return ProductOut.model_validate(await menu.create_product(db, company.id, data))


@router.patch("/products/{product_id}", response_model=ProductOut, tags=["Menu"])
async def update_product(
    product_id: str,
    data: ProductUpdate,
    company: Company = Depends(get_current_company),
    db: AsyncSession = Depends(get_db),
) -> ProductOut:
    return ProductOut.model_validate(await menu.update_product(db, company.id, product_id, data))


@router.delete("/products/{product_id}", status_code=status.HTTP_204_NO_CONTENT, tags=["Menu"])
async def delete_product(
    product_id: str,
    company: Company = Depends(get_current_company),
    db: AsyncSession = Depends(get_db),
) -> None:
    await menu.delete_product(db, company.id, product_id)


# =============================================================================
# COUPONS
# =============================================================================

@router.get("/coupons", response_model=list[CouponOut], tags=["Coupons"])
async def list_coupons(
    company: Company = Depends(get_current_company),
    db: AsyncSession = Depends(get_db),
) -> list[CouponOut]:
    return [CouponOut.model_validate(c) for c in await coupons.list_coupons(db, company.id)]


@router.post("/coupons", response_model=CouponOut, status_code=status.HTTP_201_CREATED, tags=["Coupons"])
async def create_coupon(
    data: CouponCreate,
    company: Company = Depends(get_current_company),
    db: AsyncSession = Depends(get_db),
) -> CouponOut:
    return CouponOut.model_validate(await coupons.create_coupon(db, company.id, data))


@router.patch("/coupons/{coupon_id}", response_model=CouponOut, tags=["Coupons"])
async def update_coupon(
    coupon_id: str,
    data: CouponUpdate,
    company: Company = Depends(get_current_company),
    db: AsyncSession = Depends(get_db),
) -> CouponOut:
    return CouponOut.model_validate(await coupons.update_coupon(db, company.id, coupon_id, data))


@router.delete("/coupons/{coupon_id}", status_code=status.HTTP_204_NO_CONTENT, tags=["Coupons"])
async def delete_coupon(
    coupon_id: str,
    company: Company = Depends(get_current_company),
    db: AsyncSession = Depends(get_db),
) -> None:
    await coupons.delete_coupon(db, company.id, coupon_id)


# =============================================================================
# TABLES
# =============================================================================

@router.get("/tables", response_model=list[TableOut], tags=["Tables"])
async def list_tables(
    company: Company = Depends(get_current_company),
    db: AsyncSession = Depends(get_db),
) -> list[TableOut]:
    return [TableOut.model_validate(t) for t in await tables.list_tables(db, company.id)]


@router.post("/tables", response_model=TableOut, status_code=status.HTTP_201_CREATED, tags=["Tables"])
async def create_table(
    data: TableIn,
    company: Company = Depends(get_current_company),
    db: AsyncSession = Depends(get_db),
) -> TableOut:
    return TableOut.model_validate(await tables.create_table(db, company.id, data))


@router.put("/tables/{table_id}", response_model=TableOut, tags=["Tables"])
async def update_table(
    table_id: str,
    data: TableIn,
    company: Company = Depends(get_current_company),
    db: AsyncSession = Depends(get_db),
) -> TableOut:
    return TableOut.model_validate(await tables.update_table(db, company.id, table_id, data))


@router.delete("/tables/{table_id}", status_code=status.HTTP_204_NO_CONTENT, tags=["Tables"])
async def delete_table(
    table_id: str,
    company: Company = Depends(get_current_company),
    db: AsyncSession = Depends(get_db),
) -> None:
    await tables.delete_table(db, company.id, table_id)


@router.get("/table-sessions", response_model=list[TableSessionOut], tags=["Tables"])
async def list_open_sessions(
    company: Company = Depends(get_current_company),
    db: AsyncSession = Depends(get_db),
) -> list[TableSessionOut]:
    return [TableSessionOut.model_validate(s) for s in await tables.list_open_sessions(db, company.id)]


@router.post("/table-sessions/{session_id}/close", response_model=TableSessionOut, tags=["Tables"])
async def close_session(
    session_id: str,
    company: Company = Depends(get_current_company),
    db: AsyncSession = Depends(get_db),
) -> TableSessionOut:
    return TableSessionOut.model_validate(await tables.close_session(db, company.id, session_id))


@router.get("/waiter-calls", response_model=list[WaiterCallOut], tags=["Tables"])
async def list_waiter_calls(
    pending_only: bool = Query(True),
    company: Company = Depends(get_current_company),
    db: AsyncSession = Depends(get_db),
) -> list[WaiterCallOut]:
    return await tables.list_waiter_calls(db, company.id, pending_only)


@router.post("/waiter-calls/{call_id}/resolve", response_model=WaiterCallOut, tags=["Tables"])
async def resolve_waiter_call(
    call_id: str,
    company: Company = Depends(get_current_company),
    db: AsyncSession = Depends(get_db),
    feed: ChangeFeed = Depends(get_change_feed),
) -> WaiterCallOut:
    return await tables.resolve_waiter_call(db, company.id, call_id, feed)


# =============================================================================
# COMANDAS
# =============================================================================

@router.get("/comandas", response_model=list[ComandaOut], tags=["Comandas"])
async def list_comandas(
    status_filter: Optional[ComandaStatus] = Query(ComandaStatus.OPEN, alias="status"),
    number: Optional[int] = Query(None, ge=1),
    company: Company = Depends(get_current_company),
    db: AsyncSession = Depends(get_db),
) -> list[ComandaOut]:
    rows = await comandas.list_comandas(db, company.id, status_filter, number)
    return [ComandaOut.model_validate(c) for c in rows]


@router.post("/comandas", response_model=ComandaOut, status_code=status.HTTP_201_CREATED, tags=["Comandas"])
async def open_comanda(
    data: ComandaOpen,
    company: Company = Depends(get_current_company),
    db: AsyncSession = Depends(get_db),
    feed: ChangeFeed = Depends(get_change_feed),
) -> ComandaOut:
    return ComandaOut.model_validate(await comandas.open_comanda(db, company.id, data, feed))


@router.get("/comandas/generated", response_model=list[GeneratedComandaOut], tags=["Comandas"])
async def available_generated(
    company: Company = Depends(get_current_company),
    db: AsyncSession = Depends(get_db),
) -> list[GeneratedComandaOut]:
    return [GeneratedComandaOut.model_validate(g) for g in await comandas.available_generated(db, company.id)]


@router.post("/comandas/generated", response_model=list[GeneratedComandaOut], status_code=status.HTTP_201_CREATED, tags=["Comandas"])
async def generate_comandas(
    data: GenerateComandasRequest,
    company: Company = Depends(get_current_company),
    db: AsyncSession = Depends(get_db),
) -> list[GeneratedComandaOut]:
    cards = await comandas.generate_comandas(db, company.id, data.start, data.count)
    return [GeneratedComandaOut.model_validate(g) for g in cards]


@router.get("/comandas/history/{number}", response_model=ComandaHistory, tags=["Comandas"])
async def comanda_history(
    number: int,
    company: Company = Depends(get_current_company),
    db: AsyncSession = Depends(get_db),
) -> ComandaHistory:
    return await comandas.comanda_history(db, company.id, number)


@router.get("/comandas/{comanda_id}", response_model=ComandaOut, tags=["Comandas"])
async def get_comanda(
    comanda_id: str,
    company: Company = Depends(get_current_company),
    db: AsyncSession = Depends(get_db),
) -> ComandaOut:
    return ComandaOut.model_validate(await comandas.get_comanda(db, company.id, comanda_id))


@router.post("/comandas/{comanda_id}/items", response_model=ComandaOut, tags=["Comandas"])
async def add_comanda_items(
    comanda_id: str,
    data: ComandaItemsIn,
    company: Company = Depends(get_current_company),
    db: AsyncSession = Depends(get_db),
    feed: ChangeFeed = Depends(get_change_feed),
) -> ComandaOut:
    return ComandaOut.model_validate(await comandas.add_items(db, company.id, comanda_id, data.items, feed))


@router.delete("/comandas/{comanda_id}/items/{item_id}", response_model=ComandaOut, tags=["Comandas"])
async def remove_comanda_item(
    comanda_id: str,
    item_id: str,
    company: Company = Depends(get_current_company),
    db: AsyncSession = Depends(get_db),
    feed: ChangeFeed = Depends(get_change_feed),
) -> ComandaOut:
    return ComandaOut.model_validate(await comandas.remove_item(db, company.id, comanda_id, item_id, feed))


@router.post("/comandas/{comanda_id}/close", response_model=ComandaOut, tags=["Comandas"])
async def close_comanda(
    comanda_id: str,
    data: ComandaClose,
    company: Company = Depends(get_current_company),
    db: AsyncSession = Depends(get_db),
    feed: ChangeFeed = Depends(get_change_feed),
) -> ComandaOut:
    return ComandaOut.model_validate(await comandas.close_comanda(db, company.id, comanda_id, data, feed))


@router.post("/comandas/{comanda_id}/cancel", response_model=ComandaOut, tags=["Comandas"])
async def cancel_comanda(
    comanda_id: str,
    company: Company = Depends(get_current_company),
    db: AsyncSession = Depends(get_db),
    feed: ChangeFeed = Depends(get_change_feed),
) -> ComandaOut:
    return ComandaOut.model_validate(await comandas.cancel_comanda(db, company.id, comanda_id, feed))
