"""
目录协作方数据模型
商品规格、仓库、客户只保留履约引擎需要的字段，完整的目录建模不在本服务内
"""
from datetime import datetime
from enum import Enum

from sqlalchemy import CheckConstraint, Index, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, BigIntPK, enum_values, utcnow


class CustomerType(str, Enum):
    """客户类型"""
    RETAIL = "RETAIL"
    B2B = "B2B"
    WHOLESALE = "WHOLESALE"


class CustomerStatus(str, Enum):
    """客户状态"""
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    SUSPENDED = "SUSPENDED"


class ProductVariant(Base):
    """商品规格表"""
    __tablename__ = "product_variants"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    sku: Mapped[str] = mapped_column(Text, nullable=False, unique=True, comment="规格SKU")
    name: Mapped[str] = mapped_column(Text, nullable=False, default="", comment="规格名称")

    created_at: Mapped[datetime] = mapped_column(
        nullable=False,
        default=utcnow,
        server_default=func.now(),
        comment="记录创建时间"
    )


class Warehouse(Base):
    """仓库表"""
    __tablename__ = "warehouses"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False, unique=True, comment="仓库名称")
    location: Mapped[str] = mapped_column(Text, nullable=False, default="", comment="仓库地址")

    created_at: Mapped[datetime] = mapped_column(
        nullable=False,
        default=utcnow,
        server_default=func.now(),
        comment="记录创建时间"
    )


class Customer(Base):
    """客户表"""
    __tablename__ = "customers"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    type: Mapped[str] = mapped_column(Text, nullable=False, comment="客户类型")
    company_name: Mapped[str] = mapped_column(Text, nullable=False, comment="公司名称")
    status: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default=CustomerStatus.ACTIVE.value,
        comment="客户状态"
    )

    created_at: Mapped[datetime] = mapped_column(
        nullable=False,
        default=utcnow,
        server_default=func.now(),
        comment="记录创建时间"
    )

    __table_args__ = (
        CheckConstraint(f"type IN ({enum_values(CustomerType)})", name="ck_customers_type"),
        CheckConstraint(f"status IN ({enum_values(CustomerStatus)})", name="ck_customers_status"),
        Index("ix_customers_type", "type"),
    )
