"""
目录查询接口
履约引擎只通过这里读取商品规格、仓库、客户，不做任何写入
"""
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hz_core.models.catalog import ProductVariant, Warehouse, Customer


@dataclass(frozen=True)
class CustomerInfo:
    """客户信息（只读视图）"""
    id: int
    type: str
    status: str
    company_name: str


class CatalogLookup:
    """目录查询"""

    async def product_variant_exists(self, session: AsyncSession, product_variant_id: int) -> bool:
        stmt = select(ProductVariant.id).where(ProductVariant.id == product_variant_id)
        result = await session.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def warehouse_exists(self, session: AsyncSession, warehouse_id: int) -> bool:
        stmt = select(Warehouse.id).where(Warehouse.id == warehouse_id)
        result = await session.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def customer_by_id(self, session: AsyncSession, customer_id: int) -> Optional[CustomerInfo]:
        stmt = select(Customer).where(Customer.id == customer_id)
        result = await session.execute(stmt)
        customer = result.scalar_one_or_none()
        if customer is None:
            return None

        return CustomerInfo(
            id=customer.id,
            type=customer.type,
            status=customer.status,
            company_name=customer.company_name
        )
