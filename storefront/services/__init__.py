"""Cart-to-order services."""

from .cart_merge import CartMergeService, merge_lines
from .cart_service import CartService
from .catalog_service import CatalogService, ProductSnapshot
from .notifications import HttpNotifier, LogNotifier, dispatch_safely
from .order_service import OrderService
from .order_status import OrderStatusService
from .regions import RegionDirectory

__all__ = [
    "CartMergeService",
    "merge_lines",
    "CartService",
    "CatalogService",
    "ProductSnapshot",
    "HttpNotifier",
    "LogNotifier",
    "dispatch_safely",
    "OrderService",
    "OrderStatusService",
    "RegionDirectory",
]
