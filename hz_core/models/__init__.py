"""
Hazel 数据模型包
"""
from .base import Base
from .catalog import ProductVariant, Warehouse, Customer, CustomerType, CustomerStatus
from .inventory import StockLocation, LedgerEntry, InventoryItemType
from .orders import Order, OrderItem, OrderChannel, OrderStatus
from .reservations import Reservation, ReservationState

__all__ = [
    "Base",
    "ProductVariant",
    "Warehouse",
    "Customer",
    "CustomerType",
    "CustomerStatus",
    "StockLocation",
    "LedgerEntry",
    "InventoryItemType",
    "Order",
    "OrderItem",
    "OrderChannel",
    "OrderStatus",
    "Reservation",
    "ReservationState",
]
