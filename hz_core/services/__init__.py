"""
Hazel 核心服务模块
"""
from .base import BaseService
from .catalog import CatalogLookup, CustomerInfo
from .ledger import InventoryLedgerStore
from .stock import StockLocationRegistry, StockLocationUpdate, UNSET
from .reservations import ReservationManager, ReservationResult, ItemReservationOutcome
from .orders import OrdersService
from .returns import ReturnProcessor
from .inventory import InventoryService

__all__ = [
    "BaseService",
    "CatalogLookup",
    "CustomerInfo",
    "InventoryLedgerStore",
    "StockLocationRegistry",
    "StockLocationUpdate",
    "UNSET",
    "ReservationManager",
    "ReservationResult",
    "ItemReservationOutcome",
    "OrdersService",
    "ReturnProcessor",
    "InventoryService",
]
