"""Menu management: categories, products and the public storefront menu."""

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from orderdesk.core.exceptions import NotFoundError, ValidationError
from orderdesk.models import Category, Company, CompanyStatus, Product
from orderdesk.schemas import (
    CategoryIn,
    CategoryOut,
    CategoryUpdate,
    MenuCategory,
    ProductIn,
    ProductOut,
    ProductUpdate,
    PublicMenu,
)

logger = logging.getLogger(__name__)


# =============================================================================
# CATEGORIES
# =============================================================================

async def list_categories(db: AsyncSession, company_id: str) -> list[Category]:
    result = await db.execute(
        select(Category).where(Category.company_id == company_id).order_by(Category.sort_order, Category.name)
    )
    return list(result.scalars().all())


async def get_category(db: AsyncSession, company_id: str, category_id: str) -> Category:
    category = await db.get(Category, category_id)
    if category is None or category.company_id != company_id:
        raise NotFoundError("Category", category_id)
    return category


async def create_category(db: AsyncSession, company_id: str, data: CategoryIn) -> Category:
    category = Category(company_id=company_id, **data.model_dump())
    db.add(category)
    await db.commit()
    logger.info(f"Category {category.name} created for company {company_id}")
    return category


async def update_category(db: AsyncSession, company_id: str, category_id: str, data: CategoryUpdate) -> Category:
    category = await get_category(db, company_id, category_id)
    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(category, field, value)
    await db.commit()
    return category


async def delete_category(db: AsyncSession, company_id: str, category_id: str) -> None:
    category = await get_category(db, company_id, category_id)
    await db.delete(category)
    await db.commit()


# =============================================================================
# PRODUCTS
# =============================================================================

async def list_products(db: AsyncSession, company_id: str) -> list[Product]:
    result = await db.execute(
        select(Product).where(Product.company_id == company_id).order_by(Product.sort_order, Product.name)
    )
    return list(result.scalars().all())


async def get_product(db: AsyncSession, company_id: str, product_id: str) -> Product:
    product = await db.get(Product, product_id)
    if product is None or product.company_id != company_id:
        raise NotFoundError("Product", product_id)
    return product


async def _check_category(db: AsyncSession, company_id: str, category_id) -> None:
    if category_id is None:
        return
    category = await db.get(Category, category_id)
    if category is None or category.company_id != company_id:
        raise ValidationError(f"Category {category_id} does not belong to this store", code="INVALID_CATEGORY")


async def create_product(db: AsyncSession, company_id: str, data: ProductIn) -> Product:
    await _check_category(db, company_id, data.category_id)
    product = Product(company_id=company_id, **data.model_dump())
    db.add(product)
    await db.commit()
    logger.info(f"Product {product.name} created for company {company_id}")
    return product


async def update_product(db: AsyncSession, company_id: str, product_id: str, data: ProductUpdate) -> Product:
    product = await get_product(db, company_id, product_id)
    changes = data.model_dump(exclude_unset=True)
    if "category_id" in changes:
        await _check_category(db, company_id, changes["category_id"])
    for field, value in changes.items():
        setattr(product, field, value)
    await db.commit()
    return product


async def delete_product(db: AsyncSession, company_id: str, product_id: str) -> None:
    product = await get_product(db, company_id, product_id)
    await db.delete(product)
    await db.commit()


# =============================================================================
# STOREFRONT
# =============================================================================

async def public_menu(db: AsyncSession, slug: str) -> PublicMenu:
    """Active categories (by ``sort_order``) with their active products."""
    company = (await db.execute(select(Company).where(Company.slug == slug))).scalar_one_or_none()
    if company is None or company.status != CompanyStatus.APPROVED or not company.menu_published:
        raise NotFoundError("Menu", slug, code="MENU_NOT_FOUND")

    categories = (
        await db.execute(
            select(Category)
            .where(Category.company_id == company.id, Category.is_active.is_(True))
            .order_by(Category.sort_order, Category.name)
        )
    ).scalars().all()
    products = (
        await db.execute(
            select(Product)
            .where(Product.company_id == company.id, Product.is_active.is_(True))
            .order_by(Product.sort_order, Product.name)
        )
    ).scalars().all()

    by_category: dict[str, list[ProductOut]] = {}
    for product in products:
        if product.category_id:
            by_category.setdefault(product.category_id, []).append(ProductOut.model_validate(product))

    return PublicMenu(
        company_name=company.name,
        slug=company.slug,
        is_open=company.is_open,
        delivery_fee=company.delivery_fee,
        min_order_value=company.min_order_value,
        categories=[
            MenuCategory(category=CategoryOut.model_validate(c), products=by_category.get(c.id, []))
            for c in categories
            if by_category.get(c.id)
        ],
    )
